"""Shared fixtures: an in-memory Drive and an in-memory watermark store."""

import threading
from typing import Optional

import pytest

from pygsync.exceptions import GSyncNotFoundError
from pygsync.models import DriveFile
from pygsync.sync.models import PathEntry
from pygsync.utils import FOLDER_MIME_TYPE, format_rfc3339_ms, now_ms


class FakeRemoteStore:
    """Drive-like store holding folders and files in memory."""

    ROOT = "root"

    def __init__(self, page_size: int = 100):
        self.page_size = page_size
        self.items: dict[str, DriveFile] = {}
        self.contents: dict[str, bytes] = {}
        self.calls: list[tuple[str, str]] = []
        self.fail_uploads: set[str] = set()
        self._counter = 0
        self._lock = threading.Lock()

    def _new_id(self) -> str:
        self._counter += 1
        return f"id{self._counter}"

    def add_folder(self, name: str, parent_id: str = ROOT, modified_at: int = 1) -> str:
        with self._lock:
            folder_id = self._new_id()
            self.items[folder_id] = DriveFile(
                id=folder_id,
                name=name,
                mime_type=FOLDER_MIME_TYPE,
                modified_time=format_rfc3339_ms(modified_at),
                parents=[parent_id],
            )
            return folder_id

    def add_file(
        self,
        name: str,
        parent_id: str,
        content: bytes = b"",
        modified_at: int = 1,
        mime_type: str = "text/markdown",
    ) -> str:
        with self._lock:
            file_id = self._new_id()
            self.items[file_id] = DriveFile(
                id=file_id,
                name=name,
                mime_type=mime_type,
                modified_time=format_rfc3339_ms(modified_at),
                size=len(content),
                parents=[parent_id],
            )
            self.contents[file_id] = content
            return file_id

    def children(self, container_id: str) -> list[DriveFile]:
        return sorted(
            (
                f
                for f in self.items.values()
                if container_id in f.parents and not f.trashed
            ),
            key=lambda f: (f.name, f.id),
        )

    def tree(self, root_id: str) -> dict[str, Optional[bytes]]:
        """Flatten a folder into {path: content}, None for folders."""
        result: dict[str, Optional[bytes]] = {}
        pending = [(root_id, "")]
        while pending:
            folder_id, prefix = pending.pop()
            for item in self.children(folder_id):
                path = f"{prefix}/{item.name}" if prefix else item.name
                if item.is_folder:
                    result[path] = None
                    pending.append((item.id, path))
                else:
                    result[path] = self.contents[item.id]
        return result

    # RemoteStore protocol

    def find_or_create_container(
        self, name: str, parent_id: Optional[str] = None
    ) -> str:
        self.calls.append(("find_or_create_container", name))
        parent = parent_id or self.ROOT
        for item in self.children(parent):
            if item.is_folder and item.name == name:
                return item.id
        return self.add_folder(name, parent, modified_at=now_ms())

    def list_children(self, container_id: str, page_token: Optional[str] = None):
        self.calls.append(("list_children", container_id))
        items = self.children(container_id)
        start = int(page_token or 0)
        end = start + self.page_size
        next_token = str(end) if end < len(items) else None
        return items[start:end], next_token

    def get_metadata(self, file_id: str) -> DriveFile:
        self.calls.append(("get_metadata", file_id))
        if file_id not in self.items:
            raise GSyncNotFoundError("Resource not found", status_code=404)
        return self.items[file_id]

    def download(self, file_id: str) -> bytes:
        self.calls.append(("download", file_id))
        if file_id not in self.contents:
            raise GSyncNotFoundError("Resource not found", status_code=404)
        return self.contents[file_id]

    def upload(
        self,
        name: str,
        content: bytes,
        mime_type: str,
        parent_id: str,
        existing_id: Optional[str] = None,
        modified_at: Optional[int] = None,
    ) -> DriveFile:
        self.calls.append(("upload", name))
        if name in self.fail_uploads:
            raise OSError(f"simulated failure for {name}")
        modified = modified_at if modified_at is not None else now_ms()
        if existing_id:
            with self._lock:
                old = self.items[existing_id]
                old.modified_time = format_rfc3339_ms(modified)
                old.size = len(content)
                self.contents[existing_id] = content
                return old
        file_id = self.add_file(name, parent_id, content, modified, mime_type)
        return self.items[file_id]

    def trash(self, file_id: str) -> None:
        self.calls.append(("trash", file_id))
        self.items[file_id].trashed = True


class MemoryWatermarkStore:
    """Watermark store kept in memory."""

    def __init__(self, watermark: int = 0, root_id: Optional[str] = None):
        self.watermark = watermark
        self.root_id = root_id
        self._run_lock = threading.Lock()

    def try_lock(self) -> bool:
        return self._run_lock.acquire(blocking=False)

    def unlock(self) -> None:
        if self._run_lock.locked():
            self._run_lock.release()

    def get_watermark(self) -> int:
        return self.watermark

    def set_watermark(self, value: int) -> None:
        self.watermark = max(self.watermark, value)

    def get_root_id(self) -> Optional[str]:
        return self.root_id

    def set_root_id(self, root_id: Optional[str]) -> None:
        self.root_id = root_id


def local_file(path: str, mtime: int, size: int = 1) -> PathEntry:
    return PathEntry(
        path=path, name=path.rsplit("/", 1)[-1], local_modified_at=mtime, size=size
    )


def remote_file(path: str, mtime: int, remote_id: Optional[str] = None) -> PathEntry:
    return PathEntry(
        path=path,
        name=path.rsplit("/", 1)[-1],
        remote_modified_at=mtime,
        remote_id=remote_id or f"r-{path}",
    )


def local_dir(path: str, mtime: int = 1) -> PathEntry:
    return PathEntry(
        path=path,
        name=path.rsplit("/", 1)[-1],
        is_container=True,
        local_modified_at=mtime,
    )


def remote_dir(path: str, mtime: int = 1) -> PathEntry:
    return PathEntry(
        path=path,
        name=path.rsplit("/", 1)[-1],
        is_container=True,
        remote_modified_at=mtime,
        remote_id=f"r-{path}",
    )


@pytest.fixture
def fake_remote():
    """Create an empty in-memory Drive."""
    return FakeRemoteStore()


@pytest.fixture
def memory_state():
    """Create an empty in-memory watermark store."""
    return MemoryWatermarkStore()
