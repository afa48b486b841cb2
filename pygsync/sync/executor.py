"""Plan execution with per-category barriers and per-item error isolation."""

import logging
import threading
import time
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Optional, Union

from ..exceptions import GSyncAuthenticationError
from ..utils import DEFAULT_MAX_WORKERS
from .models import (
    ConflictPolicy,
    ItemFailure,
    PathEntry,
    ResolvedAction,
    RunOutcome,
    RunResult,
    SyncAction,
    SyncPlan,
)
from .operations import SyncOperations
from .progress import ProgressSink, SyncProgressEvent, SyncProgressInfo, emit
from .resolver import ConflictResolver

logger = logging.getLogger(__name__)

Item = Union[PathEntry, ResolvedAction]

_RESULT_COUNTERS = {
    SyncAction.CONFLICT: "conflicts_resolved",
    SyncAction.UPLOAD: "uploaded",
    SyncAction.DOWNLOAD: "downloaded",
    SyncAction.DELETE_LOCAL: "deleted_local",
    SyncAction.DELETE_REMOTE: "deleted_remote",
}


class PlanExecutor:
    """Carries out a SyncPlan against both stores.

    Categories run strictly one after another: conflicts, uploads,
    downloads, local deletions, remote deletions. Inside a category items
    run on a thread pool. A failing item is recorded and never stops the
    remaining items, except for an authentication failure: it aborts the
    execution, since every later item would fail the same way.
    """

    def __init__(
        self,
        operations: SyncOperations,
        max_workers: int = DEFAULT_MAX_WORKERS,
        progress: Optional[ProgressSink] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        """Initialize plan executor.

        Args:
            operations: Store operations bound to this run
            max_workers: Parallel workers per category
            progress: Optional progress sink
            cancel_event: Set to stop starting new items
        """
        self.operations = operations
        self.max_workers = max(1, max_workers)
        self.progress = progress
        self.cancel_event = cancel_event or threading.Event()
        self._lock = threading.Lock()
        self._completed = 0
        self._total = 0
        self._fatal: Optional[GSyncAuthenticationError] = None

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    @property
    def stopped(self) -> bool:
        """Whether no further items may start."""
        return self._fatal is not None or self.cancelled

    def execute(
        self,
        plan: SyncPlan,
        policy: "ConflictPolicy | str" = ConflictPolicy.PREFER_NEWER,
        resolved: Optional[Sequence[ResolvedAction]] = None,
    ) -> RunResult:
        """Execute every item of a plan.

        Args:
            plan: Plan to carry out
            policy: Conflict policy, used when ``resolved`` is not given
            resolved: Conflicts already resolved by the caller

        Returns:
            RunResult with per-category counts and item failures
        """
        if resolved is None:
            resolved = ConflictResolver(policy).resolve_all(plan.conflicts)

        result = RunResult(plan=plan)
        self._completed = 0
        self._total = plan.total
        self._fatal = None

        ops = self.operations
        categories: list[tuple[SyncAction, Sequence[Item], Callable]] = [
            (SyncAction.CONFLICT, resolved, ops.apply_resolution),
            (SyncAction.UPLOAD, plan.uploads, ops.upload_entry),
            (SyncAction.DOWNLOAD, plan.downloads, ops.download_entry),
            (SyncAction.DELETE_LOCAL, plan.delete_local, ops.delete_local_entry),
            (SyncAction.DELETE_REMOTE, plan.delete_remote, ops.delete_remote_entry),
        ]

        for action, items, func in categories:
            if not items:
                continue
            logger.debug(f"Executing {len(items)} {action.value} item(s)")

            if action in (SyncAction.DELETE_LOCAL, SyncAction.DELETE_REMOTE):
                # Containers go last and one at a time, deepest first
                files = [i for i in items if not i.is_container]
                containers = [i for i in items if i.is_container]
                self._run_parallel(action, files, func, result)
                self._run_sequential(action, containers, func, result)
            else:
                self._run_parallel(action, items, func, result)

        if self._fatal is not None:
            result.outcome = RunOutcome.ABORTED
            result.error = f"Authentication failed: {self._fatal}"
        elif self.cancelled:
            result.outcome = RunOutcome.CANCELLED
        elif result.failures:
            result.outcome = RunOutcome.PARTIAL
        else:
            result.outcome = RunOutcome.SUCCESS

        logger.debug(
            f"Execution finished: {result.completed_count} done, "
            f"{result.failed_count} failed, {result.skipped} skipped"
        )
        return result

    def _run_one(
        self, action: SyncAction, item: Item, func: Callable, result: RunResult
    ) -> None:
        """Run a single item and account for it."""
        if self.stopped:
            with self._lock:
                result.skipped += 1
            return

        path = item.path
        start = time.time()
        error: Optional[Exception] = None
        try:
            func(item)
        except GSyncAuthenticationError as e:
            error = e
            with self._lock:
                if self._fatal is None:
                    self._fatal = e
        except Exception as e:
            error = e
        elapsed = time.time() - start

        with self._lock:
            if error is None:
                counter = _RESULT_COUNTERS[action]
                setattr(result, counter, getattr(result, counter) + 1)
                logger.debug(f"Completed {action.value} {path} in {elapsed:.2f}s")
            else:
                result.failures.append(ItemFailure(path, action, str(error)))
                logger.error(f"Failed to {action.value} {path}: {error}")
            self._completed += 1
            completed = self._completed

            # Emitted under the lock so observers never see the count go back
            emit(
                self.progress,
                SyncProgressInfo(
                    event=SyncProgressEvent.ITEM_DONE,
                    message=action.value,
                    completed=completed,
                    total=self._total,
                    path=path,
                ),
            )

    def _run_sequential(
        self,
        action: SyncAction,
        items: Sequence[Item],
        func: Callable,
        result: RunResult,
    ) -> None:
        for item in items:
            self._run_one(action, item, func, result)

    def _run_parallel(
        self,
        action: SyncAction,
        items: Sequence[Item],
        func: Callable,
        result: RunResult,
    ) -> None:
        if not items:
            return
        if self.max_workers == 1 or len(items) == 1:
            self._run_sequential(action, items, func, result)
            return

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = [
                executor.submit(self._run_one, action, item, func, result)
                for item in items
            ]
            for future in as_completed(futures):
                # _run_one records item errors itself
                future.result()
