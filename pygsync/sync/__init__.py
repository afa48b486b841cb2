"""Sync engine for pygsync - two-tree reconciliation against Google Drive."""

from .executor import PlanExecutor
from .filters import ExclusionFilter
from .local import LocalStore
from .models import (
    ConflictCase,
    ConflictPolicy,
    Index,
    ItemFailure,
    PathEntry,
    ResolutionKind,
    ResolvedAction,
    RunOutcome,
    RunResult,
    SessionState,
    SyncAction,
    SyncPlan,
)
from .operations import SyncOperations
from .planner import SyncPlanner
from .progress import ProgressSink, SyncProgressEvent, SyncProgressInfo
from .resolver import ConflictResolver
from .scanner import LocalIndexer, RemoteIndexer
from .session import SyncSession
from .state import SyncState, SyncStateStore

__all__ = [
    "SyncSession",
    "SyncPlanner",
    "ConflictResolver",
    "PlanExecutor",
    "SyncOperations",
    "LocalIndexer",
    "RemoteIndexer",
    "LocalStore",
    "ExclusionFilter",
    "SyncState",
    "SyncStateStore",
    "ConflictCase",
    "ConflictPolicy",
    "Index",
    "ItemFailure",
    "PathEntry",
    "ResolutionKind",
    "ResolvedAction",
    "RunOutcome",
    "RunResult",
    "SessionState",
    "SyncAction",
    "SyncPlan",
    "ProgressSink",
    "SyncProgressEvent",
    "SyncProgressInfo",
]
