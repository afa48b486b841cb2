"""Local filesystem adapter for the vault tree."""

import logging
import os
import shutil
from collections import deque
from pathlib import Path
from typing import Callable, Optional

from send2trash import send2trash

from ..utils import normalize_path
from .protocols import LocalStat

logger = logging.getLogger(__name__)


class LocalStore:
    """Reads and writes files below a root directory.

    All paths are relative to the root and use forward slashes, so they
    compare equal to remote paths on every platform.
    """

    def __init__(self, root: Path, use_trash: bool = True):
        """Initialize local store.

        Args:
            root: Vault root directory
            use_trash: Move deleted files to the system trash; otherwise unlink
        """
        self.root = Path(root)
        self.use_trash = use_trash

    def _abs(self, path: str) -> Path:
        relative = normalize_path(path)
        if ".." in relative.split("/"):
            raise ValueError(f"Path escapes the vault root: {path}")
        return self.root / relative if relative else self.root

    def list_all_entries(
        self, prune: Optional[Callable[[str], bool]] = None
    ) -> list[tuple[str, bool]]:
        """Enumerate every file and directory below the root.

        Args:
            prune: Predicate on relative paths; matching directories are not
                   entered and matching entries are not returned

        Returns:
            List of (relative_path, is_directory) tuples
        """
        entries: list[tuple[str, bool]] = []
        pending: deque[Path] = deque([self.root])

        while pending:
            directory = pending.popleft()
            try:
                children = sorted(directory.iterdir())
            except PermissionError:
                logger.warning(f"Permission denied, skipping: {directory}")
                continue

            for item in children:
                # Use as_posix() to ensure forward slashes on all platforms
                relative_path = item.relative_to(self.root).as_posix()
                if prune is not None and prune(relative_path):
                    continue

                if item.is_symlink() and item.is_dir():
                    logger.debug(f"Not following symlinked directory: {relative_path}")
                    continue
                if item.is_dir():
                    entries.append((relative_path, True))
                    pending.append(item)
                elif item.is_file():
                    entries.append((relative_path, False))

        return entries

    def stat(self, path: str) -> LocalStat:
        st = self._abs(path).stat()
        return LocalStat(mtime_ms=st.st_mtime_ns // 1_000_000, size=st.st_size)

    def read_bytes(self, path: str) -> bytes:
        return self._abs(path).read_bytes()

    def write_bytes(
        self, path: str, data: bytes, modified_at: Optional[int] = None
    ) -> None:
        """Write a file atomically, creating parent directories.

        Args:
            path: Relative file path
            data: File content
            modified_at: Modification time to set (milliseconds)
        """
        target = self._abs(path)
        target.parent.mkdir(parents=True, exist_ok=True)

        tmp = target.with_name(f".{target.name}.pygsync-tmp")
        try:
            tmp.write_bytes(data)
            if modified_at is not None:
                ns = modified_at * 1_000_000
                os.utime(tmp, ns=(ns, ns))
            os.replace(tmp, target)
        finally:
            if tmp.exists():
                tmp.unlink()

    def copy_file(self, source: str, destination: str) -> None:
        """Duplicate a file, preserving content (not the timestamp)."""
        target = self._abs(destination)
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(self._abs(source), target)

    def ensure_container(self, path: str) -> None:
        self._abs(path).mkdir(parents=True, exist_ok=True)

    def exists(self, path: str) -> bool:
        return self._abs(path).exists()

    def list_container(self, path: str) -> tuple[list[str], list[str]]:
        """List the direct children of a directory.

        Returns:
            Tuple of (file names, directory names)
        """
        files: list[str] = []
        containers: list[str] = []
        for item in sorted(self._abs(path).iterdir()):
            (containers if item.is_dir() else files).append(item.name)
        return files, containers

    def remove_empty_container(self, path: str) -> None:
        """Remove a directory only if it has no children.

        Returns silently when the directory is missing or not empty.
        """
        target = self._abs(path)
        if not target.is_dir():
            return
        files, containers = self.list_container(path)
        if files or containers:
            logger.debug(f"Not removing non-empty directory: {path}")
            return
        target.rmdir()

    def move_to_trash(self, path: str) -> None:
        """Delete a file, via the system trash when enabled."""
        target = self._abs(path)
        if not target.exists():
            return
        if self.use_trash:
            send2trash(str(target))
        else:
            target.unlink()
