"""Tree indexing for sync operations.

Both indexers produce a flat mapping from relative path to ``PathEntry``,
so the planner never needs to know which storage medium a tree lives on.
"""

import logging
from collections import deque
from typing import Optional

from ..exceptions import GSyncAPIError, GSyncAuthenticationError, StructuralFailure
from ..models import DriveFile
from .filters import ExclusionFilter
from .models import Index, PathEntry
from .protocols import LocalStoreProtocol, RemoteStore

logger = logging.getLogger(__name__)

# Guards against a store that never stops paginating one folder
MAX_PAGES_PER_CONTAINER = 10_000


class LocalIndexer:
    """Builds the index of the local tree."""

    def __init__(self, store: LocalStoreProtocol, exclusion: ExclusionFilter):
        self.store = store
        self.exclusion = exclusion

    def build_index(self) -> Index:
        """Enumerate and stat every non-excluded local file and directory.

        Files that disappear or become unreadable between listing and stat
        are skipped.

        Returns:
            Index of local entries (empty for an empty tree)
        """
        index: Index = {}

        for path, is_dir in self.store.list_all_entries(
            prune=self.exclusion.should_exclude
        ):
            if self.exclusion.should_exclude(path):
                continue
            try:
                st = self.store.stat(path)
            except OSError as e:
                logger.debug(f"Skipping unreadable local entry {path}: {e}")
                continue

            index[path] = PathEntry(
                path=path,
                name=path.rsplit("/", 1)[-1],
                is_container=is_dir,
                local_modified_at=st.mtime_ms,
                size=0 if is_dir else st.size,
            )

        logger.debug(f"Indexed {len(index)} local entries")
        return index


class RemoteIndexer:
    """Builds the index of the remote tree below the sync-root folder.

    Folders are walked with an explicit worklist instead of recursion, and
    every folder listing is fully drained before the next one starts.
    """

    def __init__(
        self, store: RemoteStore, exclusion: ExclusionFilter, root_id: str
    ):
        self.store = store
        self.exclusion = exclusion
        self.root_id = root_id

    def _list_all(self, container_id: str) -> list[DriveFile]:
        """List every child of a folder, following pagination.

        Raises:
            StructuralFailure: If pagination repeats a token or never ends
        """
        children: list[DriveFile] = []
        seen_tokens: set[str] = set()
        page_token: Optional[str] = None

        for _ in range(MAX_PAGES_PER_CONTAINER):
            files, page_token = self.store.list_children(container_id, page_token)
            children.extend(files)
            if not page_token:
                return children
            if page_token in seen_tokens:
                raise StructuralFailure(
                    f"Listing of folder {container_id} repeated page token "
                    f"{page_token!r}"
                )
            seen_tokens.add(page_token)

        raise StructuralFailure(
            f"Listing of folder {container_id} exceeded "
            f"{MAX_PAGES_PER_CONTAINER} pages"
        )

    def build_index(self) -> Index:
        """Walk the remote tree and index every non-excluded entry.

        Returns:
            Index of remote entries (empty for an empty tree)

        Raises:
            GSyncAuthenticationError: If the credential is rejected
            StructuralFailure: If the tree cannot be listed
        """
        index: Index = {}
        visited: set[str] = set()
        pending: deque[tuple[str, str]] = deque([(self.root_id, "")])

        try:
            while pending:
                container_id, prefix = pending.popleft()
                if container_id in visited:
                    continue
                visited.add(container_id)

                for item in self._list_all(container_id):
                    self._add_entry(index, pending, item, prefix)
        except GSyncAuthenticationError:
            raise
        except GSyncAPIError as e:
            raise StructuralFailure(f"Failed to list remote tree: {e}") from e

        logger.debug(
            f"Indexed {len(index)} remote entries in {len(visited)} folder(s)"
        )
        return index

    def _add_entry(
        self,
        index: Index,
        pending: "deque[tuple[str, str]]",
        item: DriveFile,
        prefix: str,
    ) -> None:
        if not item.name or "/" in item.name:
            logger.warning(f"Skipping remote item with unusable name: {item.name!r}")
            return

        path = f"{prefix}/{item.name}" if prefix else item.name
        if self.exclusion.should_exclude(path):
            return
        if item.is_google_doc:
            logger.debug(f"Skipping native Google document: {path}")
            return

        entry = PathEntry(
            path=path,
            name=item.name,
            is_container=item.is_folder,
            remote_modified_at=item.modified_at or 0,
            size=0 if item.is_folder else item.size,
            remote_id=item.id,
            content_hash=None if item.is_folder else item.md5_checksum,
        )

        existing = index.get(path)
        if existing is not None:
            # Drive allows siblings with equal names; paths must stay unique
            logger.warning(f"Duplicate remote path {path}, keeping the newest")
            if existing.is_container or (
                existing.remote_modified_at or 0
            ) >= (entry.remote_modified_at or 0):
                return

        index[path] = entry
        if item.is_folder:
            pending.append((item.id, path))
