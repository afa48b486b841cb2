"""CLI progress display for sync operations.

This module provides a Rich-based progress display fed by the
SyncProgressInfo events a SyncSession emits.
"""

from typing import Optional

from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)

from .sync.models import RunResult
from .sync.progress import SyncProgressEvent, SyncProgressInfo
from .sync.session import SyncSession

_PHASE_DESCRIPTIONS = {
    SyncProgressEvent.PREPARING: "Locating remote folder...",
    SyncProgressEvent.INDEXING: "Scanning local and remote files...",
    SyncProgressEvent.PLANNING: "Planning changes...",
    SyncProgressEvent.EXECUTING: "Syncing",
}


class SyncProgressDisplay:
    """Rich-based progress display for sync operations.

    Shows the current phase while preparing and indexing, then a bar of
    completed plan items with the path most recently finished.
    """

    def __init__(self) -> None:
        """Initialize the progress display."""
        self._progress: Optional[Progress] = None
        self._task: Optional[TaskID] = None

    def handle_event(self, info: SyncProgressInfo) -> None:
        """Handle a progress event from the session.

        Args:
            info: Progress information
        """
        if self._progress is None or self._task is None:
            return

        if info.event in _PHASE_DESCRIPTIONS:
            self._progress.update(
                self._task, description=_PHASE_DESCRIPTIONS[info.event]
            )

        elif info.event == SyncProgressEvent.ITEM_DONE:
            self._progress.update(
                self._task,
                description="Syncing",
                completed=info.completed or 0,
                total=info.total,
                current=info.path or "",
            )

        elif info.event == SyncProgressEvent.FINISHED:
            self._progress.update(
                self._task, description=f"Sync {info.message}", current=""
            )

    def __enter__(self) -> "SyncProgressDisplay":
        """Enter context manager - start progress display."""
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TextColumn("[cyan]{task.fields[current]}"),
            TimeElapsedColumn(),
            refresh_per_second=4,
        )
        self._progress.__enter__()
        self._task = self._progress.add_task("Starting...", total=None, current="")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit context manager - stop progress display."""
        if self._progress is not None:
            self._progress.__exit__(exc_type, exc_val, exc_tb)
            self._progress = None
            self._task = None


def run_sync_with_progress(
    session: SyncSession, dry_run: bool = False, full: bool = False
) -> RunResult:
    """Run a sync session with a Rich progress display.

    Args:
        session: Configured SyncSession
        dry_run: If True, only compute the plan
        full: If True, ignore the watermark for this run

    Returns:
        RunResult of the run
    """
    # For dry-run, don't show progress bar (just text output)
    if dry_run:
        return session.run(dry_run=True, full=full)

    with SyncProgressDisplay() as display:
        session.progress = display.handle_event
        try:
            return session.run(dry_run=False, full=full)
        finally:
            session.progress = None
