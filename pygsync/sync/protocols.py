"""Contracts the reconciliation core consumes.

``DriveClient`` and ``LocalStore`` implement the two store protocols; tests
substitute in-memory fakes.
"""

from typing import Callable, NamedTuple, Optional, Protocol

from ..models import DriveFile


class LocalStat(NamedTuple):
    mtime_ms: int
    size: int


class RemoteStore(Protocol):
    """Remote object store holding the synced tree."""

    def find_or_create_container(
        self, name: str, parent_id: Optional[str] = None
    ) -> str: ...

    def list_children(
        self, container_id: str, page_token: Optional[str] = None
    ) -> tuple[list[DriveFile], Optional[str]]: ...

    def get_metadata(self, file_id: str) -> DriveFile: ...

    def download(self, file_id: str) -> bytes: ...

    def upload(
        self,
        name: str,
        content: bytes,
        mime_type: str,
        parent_id: str,
        existing_id: Optional[str] = None,
        modified_at: Optional[int] = None,
    ) -> DriveFile: ...

    def trash(self, file_id: str) -> None: ...


class LocalStoreProtocol(Protocol):
    """Local filesystem tree, addressed by '/'-separated relative paths."""

    def list_all_entries(
        self, prune: Optional[Callable[[str], bool]] = None
    ) -> list[tuple[str, bool]]: ...

    def stat(self, path: str) -> LocalStat: ...

    def read_bytes(self, path: str) -> bytes: ...

    def write_bytes(
        self, path: str, data: bytes, modified_at: Optional[int] = None
    ) -> None: ...

    def copy_file(self, source: str, destination: str) -> None: ...

    def ensure_container(self, path: str) -> None: ...

    def exists(self, path: str) -> bool: ...

    def list_container(self, path: str) -> tuple[list[str], list[str]]: ...

    def remove_empty_container(self, path: str) -> None: ...

    def move_to_trash(self, path: str) -> None: ...


class WatermarkStore(Protocol):
    """Persisted state owned by the session."""

    def get_watermark(self) -> int: ...

    def set_watermark(self, value: int) -> None: ...

    def get_root_id(self) -> Optional[str]: ...

    def set_root_id(self, root_id: Optional[str]) -> None: ...

    def try_lock(self) -> bool:
        """Take the run lock of this pair without waiting; False if held."""
        ...

    def unlock(self) -> None: ...
