"""Sync planning: decide an action for every path from two indices.

The planner is a pure function of the local index, the remote index and the
watermark (the last instant both trees were known to agree). For each path
in the union of both indices:

===========  ============  ==========================================  =============
local        remote        timestamps                                  decision
===========  ============  ==========================================  =============
present      absent        W == 0 or local > W                         upload
present      absent        W != 0 and local <= W                       delete local
absent       present       W == 0 or remote > W                        download
absent       present       W != 0 and remote <= W                      delete remote
file         file          W != 0 and both sides > W and they differ   conflict
file         file          local strictly newer and local > W          upload
file         file          remote strictly newer and remote > W        download
container    container     -                                           no-op
===========  ============  ==========================================  =============

Equal timestamps are a no-op. A zero watermark (first run) never produces
a conflict.

Known ambiguity: deletion is inferred purely from absence on one side plus
staleness of the other side. Whether the missing side actually held the
item at the previous watermark is never checked. A path that was excluded
during earlier runs and is later un-excluded therefore looks like a
deletion of the stale side's copy.
"""

import logging
from dataclasses import replace
from typing import Optional

from .models import ConflictCase, Index, PathEntry, SyncPlan

logger = logging.getLogger(__name__)


class SyncPlanner:
    """Computes an immutable SyncPlan. Performs no I/O."""

    def plan(self, local: Index, remote: Index, watermark: int) -> SyncPlan:
        """Compare two indices against the watermark.

        Args:
            local: Index of the local tree
            remote: Index of the remote tree
            watermark: Last converged instant (ms); 0 for a first sync

        Returns:
            SyncPlan with disjoint categories
        """
        uploads: list[PathEntry] = []
        downloads: list[PathEntry] = []
        delete_local: list[PathEntry] = []
        delete_remote: list[PathEntry] = []
        conflicts: list[ConflictCase] = []

        for path in sorted(set(local) | set(remote)):
            local_entry = local.get(path)
            remote_entry = remote.get(path)

            if local_entry is not None and remote_entry is None:
                if self._changed_since(local_entry.local_modified_at, watermark):
                    uploads.append(local_entry)
                else:
                    delete_local.append(local_entry)

            elif remote_entry is not None and local_entry is None:
                if self._changed_since(remote_entry.remote_modified_at, watermark):
                    downloads.append(remote_entry)
                else:
                    delete_remote.append(remote_entry)

            elif local_entry is not None and remote_entry is not None:
                self._compare_existing(
                    local_entry, remote_entry, watermark, uploads, downloads, conflicts
                )

        delete_local = self._prune_container_deletes(delete_local, local)
        delete_remote = self._prune_container_deletes(delete_remote, remote)

        plan = SyncPlan(
            uploads=tuple(uploads),
            downloads=tuple(downloads),
            delete_local=tuple(self._deletion_order(delete_local)),
            delete_remote=tuple(self._deletion_order(delete_remote)),
            conflicts=tuple(conflicts),
        )
        logger.debug(f"Planned {plan.summary()} with watermark {watermark}")
        return plan

    @staticmethod
    def _changed_since(timestamp: Optional[int], watermark: int) -> bool:
        return watermark == 0 or (timestamp or 0) > watermark

    def _compare_existing(
        self,
        local_entry: PathEntry,
        remote_entry: PathEntry,
        watermark: int,
        uploads: list[PathEntry],
        downloads: list[PathEntry],
        conflicts: list[ConflictCase],
    ) -> None:
        """Decide for a path present on both sides."""
        if local_entry.is_container and remote_entry.is_container:
            # Containers are never diffed by content
            return

        if local_entry.is_container != remote_entry.is_container:
            logger.warning(
                f"Skipping {local_entry.path}: it is a "
                f"{'folder' if local_entry.is_container else 'file'} locally "
                f"but a {'folder' if remote_entry.is_container else 'file'} remotely"
            )
            return

        local_mtime = local_entry.local_modified_at or 0
        remote_mtime = remote_entry.remote_modified_at or 0

        if local_mtime == remote_mtime:
            return

        if (
            watermark != 0
            and local_mtime > watermark
            and remote_mtime > watermark
        ):
            conflicts.append(
                ConflictCase(path=local_entry.path, local=local_entry, remote=remote_entry)
            )
        elif local_mtime > remote_mtime and local_mtime > watermark:
            # Carry the remote id so the upload updates the file in place
            uploads.append(self._merge(local_entry, remote_entry))
        elif remote_mtime > local_mtime and remote_mtime > watermark:
            downloads.append(self._merge(remote_entry, local_entry))

    @staticmethod
    def _merge(primary: PathEntry, other: PathEntry) -> PathEntry:
        """Combine both sides' metadata for a path present on both."""
        return replace(
            primary,
            local_modified_at=(
                primary.local_modified_at
                if primary.local_modified_at is not None
                else other.local_modified_at
            ),
            remote_modified_at=(
                primary.remote_modified_at
                if primary.remote_modified_at is not None
                else other.remote_modified_at
            ),
            remote_id=primary.remote_id or other.remote_id,
            content_hash=primary.content_hash or other.content_hash,
        )

    @staticmethod
    def _prune_container_deletes(
        deletes: list[PathEntry], side: Index
    ) -> list[PathEntry]:
        """Drop container deletions that would take surviving descendants along.

        Args:
            deletes: Entries scheduled for deletion on one side
            side: The index of that side

        Returns:
            Deletions where every container's descendants are also deleted
        """
        doomed = {e.path for e in deletes}
        kept: list[PathEntry] = []

        for entry in deletes:
            if entry.is_container:
                prefix = entry.path + "/"
                survivors = [
                    p for p in side if p.startswith(prefix) and p not in doomed
                ]
                if survivors:
                    logger.debug(
                        f"Keeping container {entry.path}: "
                        f"{len(survivors)} descendant(s) survive"
                    )
                    continue
            kept.append(entry)

        # Pruning a container may leave its ancestors with a survivor
        if len(kept) != len(deletes):
            return SyncPlanner._prune_container_deletes(kept, side)
        return kept

    @staticmethod
    def _deletion_order(deletes: list[PathEntry]) -> list[PathEntry]:
        """Files first in path order, then containers deepest first."""
        files = sorted((e for e in deletes if not e.is_container), key=lambda e: e.path)
        containers = sorted(
            (e for e in deletes if e.is_container),
            key=lambda e: (-e.depth, e.path),
        )
        return files + containers
