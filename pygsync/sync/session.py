"""One reconciliation run, from preparing the remote root to the watermark."""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional

from ..config import SyncSettings
from ..exceptions import (
    GSyncAPIError,
    GSyncAuthenticationError,
    GSyncNotFoundError,
    StructuralFailure,
    SyncBusyError,
)
from ..utils import format_timestamp, now_ms
from .executor import PlanExecutor
from .filters import ExclusionFilter
from .models import Index, RunOutcome, RunResult, SessionState
from .operations import SyncOperations
from .planner import SyncPlanner
from .progress import ProgressSink, SyncProgressEvent, SyncProgressInfo, emit
from .protocols import LocalStoreProtocol, RemoteStore, WatermarkStore
from .resolver import ConflictResolver
from .scanner import LocalIndexer, RemoteIndexer

logger = logging.getLogger(__name__)


class SyncSession:
    """Runs sync between one vault and one Drive folder.

    State machine::

        IDLE -> PREPARING -> INDEXING -> PLANNING -> RESOLVING -> EXECUTING -> IDLE

    Only one run may be active per vault and Drive folder; a concurrent call
    to :meth:`run`, from this session or any other one sharing the state
    store's lock, fails immediately with :class:`SyncBusyError`. The
    watermark only advances when execution finishes (even with item
    failures) and is left alone when the run aborts or is cancelled.
    """

    def __init__(
        self,
        settings: SyncSettings,
        remote: RemoteStore,
        local: LocalStoreProtocol,
        state_store: WatermarkStore,
        progress: Optional[ProgressSink] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        """Initialize sync session.

        Args:
            settings: Vault settings
            remote: Remote store
            local: Local store rooted at the vault
            state_store: Watermark and root-ID persistence
            progress: Optional progress sink
            clock: Millisecond clock (injectable for tests)
        """
        self.settings = settings
        self.remote = remote
        self.local = local
        self.state_store = state_store
        self.progress = progress
        self.clock = clock or now_ms

        self.exclusion = ExclusionFilter(
            excluded_folders=settings.excluded_folders,
            excluded_extensions=settings.excluded_extensions,
            include_hidden=settings.include_hidden,
        )
        self.planner = SyncPlanner()

        self._run_lock = threading.Lock()
        self._cancel_event = threading.Event()
        self._state = SessionState.IDLE

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    def cancel(self) -> None:
        """Ask the active run to stop starting new items."""
        if self.is_running:
            logger.info("Cancellation requested")
        self._cancel_event.set()

    def _enter(self, state: SessionState, message: str = "") -> None:
        logger.debug(f"Session state: {self._state.value} -> {state.value}")
        self._state = state
        event = {
            SessionState.PREPARING: SyncProgressEvent.PREPARING,
            SessionState.INDEXING: SyncProgressEvent.INDEXING,
            SessionState.PLANNING: SyncProgressEvent.PLANNING,
            SessionState.EXECUTING: SyncProgressEvent.EXECUTING,
        }.get(state)
        if event is not None:
            emit(self.progress, SyncProgressInfo(event=event, message=message))

    def run(self, dry_run: bool = False, full: bool = False) -> RunResult:
        """Run one sync.

        Args:
            dry_run: Stop after planning and resolving; change nothing
            full: Ignore the watermark for this run (first-sync semantics)

        Returns:
            RunResult describing the run

        Raises:
            SyncBusyError: If a run is already active
        """
        if not self._run_lock.acquire(blocking=False):
            raise SyncBusyError("A sync is already running for this vault")

        try:
            # Other sessions and processes syncing the same pair share this lock
            if not self.state_store.try_lock():
                raise SyncBusyError(
                    "Another sync is already running for this vault "
                    f"and folder {self.settings.folder_name!r}"
                )
            try:
                self._cancel_event.clear()
                started_at = self.clock()
                result = self._run(started_at, dry_run=dry_run, full=full)
                result.started_at = started_at
                emit(
                    self.progress,
                    SyncProgressInfo(
                        event=SyncProgressEvent.FINISHED,
                        message=result.outcome.value,
                    ),
                )
                return result
            finally:
                self.state_store.unlock()
        finally:
            self._state = SessionState.IDLE
            self._run_lock.release()

    def _abort(self, reason: str) -> RunResult:
        logger.error(f"Sync aborted: {reason}")
        return RunResult(
            outcome=RunOutcome.ABORTED,
            error=reason,
            watermark=self.state_store.get_watermark(),
        )

    def _run(self, started_at: int, dry_run: bool, full: bool) -> RunResult:
        previous = self.state_store.get_watermark()

        self._enter(SessionState.PREPARING, self.settings.folder_name)
        try:
            root_id, root_changed = self._prepare_root(persist=not dry_run)
        except (GSyncAPIError, StructuralFailure) as e:
            return self._abort(str(e))

        self._enter(SessionState.INDEXING)
        try:
            local_index, remote_index = self._build_indices(root_id)
        except (GSyncAPIError, StructuralFailure) as e:
            return self._abort(str(e))
        except OSError as e:
            return self._abort(f"Cannot read vault: {e}")

        self._enter(SessionState.PLANNING)
        watermark = 0 if full or root_changed else previous
        if root_changed and previous:
            logger.warning(
                "Remote folder was replaced; treating this run as a first sync"
            )
        logger.debug(f"Planning against watermark {format_timestamp(watermark)}")
        plan = self.planner.plan(local_index, remote_index, watermark)

        self._enter(SessionState.RESOLVING)
        resolver = ConflictResolver(self.settings.conflict_policy, clock=self.clock)
        resolved = resolver.resolve_all(plan.conflicts)

        if dry_run:
            return RunResult(outcome=RunOutcome.SUCCESS, plan=plan, watermark=previous)

        self._enter(SessionState.EXECUTING)
        operations = SyncOperations(self.remote, self.local, root_id, remote_index)
        executor = PlanExecutor(
            operations,
            max_workers=self.settings.max_workers,
            progress=self.progress,
            cancel_event=self._cancel_event,
        )
        result = executor.execute(plan, resolved=resolved)

        if result.outcome == RunOutcome.CANCELLED:
            logger.info("Sync cancelled; watermark left unchanged")
        elif result.outcome == RunOutcome.ABORTED:
            logger.error(f"Sync aborted: {result.error}")
        else:
            self.state_store.set_watermark(max(previous, started_at))
        result.watermark = self.state_store.get_watermark()
        return result

    def _prepare_root(self, persist: bool = True) -> tuple[str, bool]:
        """Locate (or create) the sync-root folder.

        Returns:
            Tuple of (root folder ID, whether it differs from the stored one)
        """
        stored = self.state_store.get_root_id()
        if stored:
            try:
                meta = self.remote.get_metadata(stored)
                if meta.is_folder and not meta.trashed:
                    return stored, False
                logger.warning(
                    f"Stored sync folder {stored} is no longer usable, "
                    "looking it up again"
                )
            except GSyncAuthenticationError:
                raise
            except GSyncNotFoundError:
                logger.warning(f"Stored sync folder {stored} no longer exists")

        root_id = self.remote.find_or_create_container(self.settings.folder_name)
        if persist:
            self.state_store.set_root_id(root_id)
        return root_id, bool(stored) and root_id != stored

    def _build_indices(self, root_id: str) -> tuple[Index, Index]:
        """Index both trees concurrently."""
        local_indexer = LocalIndexer(self.local, self.exclusion)
        remote_indexer = RemoteIndexer(self.remote, self.exclusion, root_id)

        with ThreadPoolExecutor(max_workers=2) as pool:
            local_future = pool.submit(local_indexer.build_index)
            remote_future = pool.submit(remote_indexer.build_index)
            # Wait for both before surfacing an error from either
            local_error = local_future.exception()
            remote_error = remote_future.exception()

        if remote_error is not None:
            raise remote_error
        if local_error is not None:
            raise local_error
        return local_future.result(), remote_future.result()
