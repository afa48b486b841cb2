"""Store operations for executing a sync plan."""

import logging
import threading
from typing import Optional

from ..exceptions import GSyncAPIError, GSyncAuthenticationError, TransientIOFailure
from ..utils import detect_mime_type, parent_path
from .models import Index, PathEntry, ResolutionKind, ResolvedAction
from .protocols import LocalStoreProtocol, RemoteStore

logger = logging.getLogger(__name__)


class SyncOperations:
    """Unified upload/download/delete interface over both stores."""

    def __init__(
        self,
        remote: RemoteStore,
        local: LocalStoreProtocol,
        root_id: str,
        remote_index: Optional[Index] = None,
    ):
        """Initialize sync operations.

        Args:
            remote: Remote store
            local: Local store
            root_id: ID of the sync-root folder
            remote_index: Remote index of this run, used to seed the folder cache
        """
        self.remote = remote
        self.local = local
        self.root_id = root_id
        self._folder_ids: dict[str, str] = {"": root_id}
        self._folder_lock = threading.Lock()

        for entry in (remote_index or {}).values():
            if entry.is_container and entry.remote_id:
                self._folder_ids[entry.path] = entry.remote_id

    def ensure_remote_folder(self, path: str) -> str:
        """Make sure every segment of a folder path exists remotely.

        Segments already known are taken from the cache; only missing ones
        are looked up and created. Creation is serialized so two workers
        never create the same folder twice.

        Args:
            path: Relative folder path ("" for the sync root)

        Returns:
            Drive ID of the folder
        """
        cached = self._folder_ids.get(path)
        if cached is not None:
            return cached

        with self._folder_lock:
            parent_id = self.root_id
            current = ""
            for segment in path.split("/"):
                current = f"{current}/{segment}" if current else segment
                folder_id = self._folder_ids.get(current)
                if folder_id is None:
                    logger.debug(f"Ensuring remote folder: {current}")
                    folder_id = self.remote.find_or_create_container(
                        segment, parent_id
                    )
                    self._folder_ids[current] = folder_id
                parent_id = folder_id
            return parent_id

    def upload_entry(self, entry: PathEntry) -> None:
        """Upload a local file (or create a remote folder).

        The remote modification time is set to the local one, so both sides
        compare equal on the next run.
        """
        if entry.is_container:
            self._guard(entry.path, self.ensure_remote_folder, entry.path)
            return

        def _upload() -> None:
            parent_id = self.ensure_remote_folder(parent_path(entry.path))
            content = self.local.read_bytes(entry.path)
            mtime = self.local.stat(entry.path).mtime_ms
            self.remote.upload(
                name=entry.name,
                content=content,
                mime_type=detect_mime_type(entry.path),
                parent_id=parent_id,
                existing_id=entry.remote_id,
                modified_at=mtime,
            )

        self._guard(entry.path, _upload)

    def download_entry(self, entry: PathEntry) -> None:
        """Download a remote file (or create a local directory).

        The local modification time is set to the remote one.
        """
        if entry.is_container:
            self._guard(entry.path, self.local.ensure_container, entry.path)
            return
        if not entry.remote_id:
            raise TransientIOFailure(entry.path, "remote entry has no ID")

        def _download() -> None:
            content = self.remote.download(entry.remote_id)
            self.local.write_bytes(
                entry.path, content, modified_at=entry.remote_modified_at
            )

        self._guard(entry.path, _download)

    def delete_local_entry(self, entry: PathEntry) -> None:
        """Trash a local file, or remove a local directory if it is empty."""
        if entry.is_container:
            self._guard(entry.path, self.local.remove_empty_container, entry.path)
        else:
            self._guard(entry.path, self.local.move_to_trash, entry.path)

    def delete_remote_entry(self, entry: PathEntry) -> None:
        """Move a remote file or folder to the Drive trash."""
        if not entry.remote_id:
            raise TransientIOFailure(entry.path, "remote entry has no ID")
        self._guard(entry.path, self.remote.trash, entry.remote_id)

    def apply_resolution(self, action: ResolvedAction) -> None:
        """Carry out a resolved conflict."""
        if action.kind == ResolutionKind.UPLOAD:
            self.upload_entry(action.entry)
        elif action.kind == ResolutionKind.DOWNLOAD:
            self.download_entry(action.entry)
        else:
            self.keep_both(action)

    def keep_both(self, action: ResolvedAction) -> None:
        """Keep the local version under a conflict name, then take the remote.

        The copy is uploaded right away so that the next run sees it on both
        sides instead of as a stale local-only file.
        """
        copy_path = action.conflict_copy_path
        if not copy_path:
            raise TransientIOFailure(action.path, "keep-both without a copy path")

        logger.debug(f"Keeping local version of {action.path} as {copy_path}")
        self._guard(copy_path, self.local.copy_file, action.path, copy_path)
        self.upload_entry(
            PathEntry(path=copy_path, name=copy_path.rsplit("/", 1)[-1])
        )
        self.download_entry(action.entry)

    @staticmethod
    def _guard(path: str, func, *args) -> None:
        """Run one store call, reporting I/O errors as per-item failures."""
        try:
            func(*args)
        except GSyncAuthenticationError:
            raise
        except (OSError, GSyncAPIError) as e:
            raise TransientIOFailure(path, str(e)) from e
