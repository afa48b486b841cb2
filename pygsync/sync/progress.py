"""Progress reporting for sync runs."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class SyncProgressEvent(str, Enum):
    """Phases reported to a progress sink."""

    PREPARING = "preparing"
    INDEXING = "indexing"
    PLANNING = "planning"
    EXECUTING = "executing"
    ITEM_DONE = "item_done"
    FINISHED = "finished"


@dataclass(frozen=True)
class SyncProgressInfo:
    """One progress notification."""

    event: SyncProgressEvent
    message: str = ""
    completed: Optional[int] = None
    total: Optional[int] = None
    path: Optional[str] = None


ProgressSink = Callable[[SyncProgressInfo], None]


def emit(sink: Optional[ProgressSink], info: SyncProgressInfo) -> None:
    """Deliver a notification; a failing sink never affects the run."""
    if sink is None:
        return
    try:
        sink(info)
    except Exception as e:
        logger.warning(f"Progress callback failed: {e}")
