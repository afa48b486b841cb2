"""Data model for one reconciliation run."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class ConflictPolicy(str, Enum):
    """How a path changed on both sides since the last sync is resolved."""

    PREFER_LOCAL = "prefer-local"
    """Upload the local version"""

    PREFER_REMOTE = "prefer-remote"
    """Download the remote version"""

    PREFER_NEWER = "prefer-newer"
    """Strictly newer side wins; ties download"""

    KEEP_BOTH = "keep-both"
    """Keep a renamed local copy, then download the remote version"""

    @classmethod
    def parse(cls, value: "str | ConflictPolicy") -> "ConflictPolicy":
        """Parse a policy name, accepting short aliases.

        Examples:
            >>> ConflictPolicy.parse("newer")
            <ConflictPolicy.PREFER_NEWER: 'prefer-newer'>
        """
        if isinstance(value, ConflictPolicy):
            return value
        normalized = value.strip().lower().replace("_", "-")
        normalized = _POLICY_ALIASES.get(normalized, normalized)
        try:
            return cls(normalized)
        except ValueError:
            valid = ", ".join(p.value for p in cls)
            raise ValueError(
                f"Unknown conflict policy '{value}' (expected one of: {valid})"
            ) from None


_POLICY_ALIASES = {
    "local": "prefer-local",
    "remote": "prefer-remote",
    "newer": "prefer-newer",
    "ask": "keep-both",
}


class SyncAction(str, Enum):
    """Per-item actions carried out by the executor."""

    UPLOAD = "upload"
    DOWNLOAD = "download"
    DELETE_LOCAL = "delete_local"
    DELETE_REMOTE = "delete_remote"
    CONFLICT = "conflict"


class ResolutionKind(str, Enum):
    """Concrete outcome of resolving a conflict."""

    UPLOAD = "upload"
    DOWNLOAD = "download"
    KEEP_BOTH = "keep_both"


class SessionState(str, Enum):
    """States of a SyncSession."""

    IDLE = "idle"
    PREPARING = "preparing"
    INDEXING = "indexing"
    PLANNING = "planning"
    RESOLVING = "resolving"
    EXECUTING = "executing"


class RunOutcome(str, Enum):
    """How a run ended."""

    SUCCESS = "success"
    PARTIAL = "partial"
    ABORTED = "aborted"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class PathEntry:
    """One item of a local or remote tree."""

    path: str
    """Normalized '/'-separated path relative to the tree root"""

    name: str
    """Last path segment"""

    is_container: bool = False
    """Directory (local) or folder (remote)"""

    local_modified_at: Optional[int] = None
    """Last local write (ms since epoch); None without a local counterpart"""

    remote_modified_at: Optional[int] = None
    """Last remote write (ms since epoch); None without a remote counterpart"""

    size: int = 0
    """Size in bytes (0 for containers)"""

    remote_id: Optional[str] = None
    """Drive file ID once the item exists remotely"""

    content_hash: Optional[str] = None
    """MD5 checksum supplied by Drive, when present"""

    @property
    def modified_at(self) -> int:
        """Whichever modification time this entry carries (0 if none)."""
        if self.local_modified_at is not None:
            return self.local_modified_at
        return self.remote_modified_at or 0

    @property
    def depth(self) -> int:
        return self.path.count("/")


Index = dict[str, PathEntry]


@dataclass(frozen=True)
class ConflictCase:
    """A path changed on both sides since the watermark."""

    path: str
    local: PathEntry
    remote: PathEntry


@dataclass(frozen=True)
class ResolvedAction:
    """A conflict turned into something the executor can carry out."""

    kind: ResolutionKind
    case: ConflictCase
    entry: PathEntry
    """Entry to upload (local, carrying the remote id) or download (remote)"""

    conflict_copy_path: Optional[str] = None
    """Where keep-both stores the local copy"""

    @property
    def path(self) -> str:
        return self.case.path


@dataclass(frozen=True)
class SyncPlan:
    """Disjoint, ordered action lists computed once per run."""

    uploads: tuple[PathEntry, ...] = ()
    downloads: tuple[PathEntry, ...] = ()
    delete_local: tuple[PathEntry, ...] = ()
    delete_remote: tuple[PathEntry, ...] = ()
    conflicts: tuple[ConflictCase, ...] = ()

    @property
    def total(self) -> int:
        return (
            len(self.uploads)
            + len(self.downloads)
            + len(self.delete_local)
            + len(self.delete_remote)
            + len(self.conflicts)
        )

    @property
    def is_empty(self) -> bool:
        return self.total == 0

    def paths(self) -> dict[str, list[str]]:
        """Paths per category, for display and assertions."""
        return {
            "uploads": [e.path for e in self.uploads],
            "downloads": [e.path for e in self.downloads],
            "delete_local": [e.path for e in self.delete_local],
            "delete_remote": [e.path for e in self.delete_remote],
            "conflicts": [c.path for c in self.conflicts],
        }

    def summary(self) -> dict[str, int]:
        """Number of items per category."""
        return {category: len(paths) for category, paths in self.paths().items()}


@dataclass
class ItemFailure:
    """One plan item that could not be carried out."""

    path: str
    action: SyncAction
    error: str


@dataclass
class RunResult:
    """Outcome of a sync run (or of executing a plan)."""

    outcome: RunOutcome = RunOutcome.SUCCESS
    uploaded: int = 0
    downloaded: int = 0
    deleted_local: int = 0
    deleted_remote: int = 0
    conflicts_resolved: int = 0
    failures: list[ItemFailure] = field(default_factory=list)
    skipped: int = 0
    """Items never attempted because the run was cancelled or aborted"""

    started_at: int = 0
    watermark: int = 0
    """Watermark after the run"""

    error: Optional[str] = None
    """Abort reason"""

    plan: Optional[SyncPlan] = None

    @property
    def failed_count(self) -> int:
        return len(self.failures)

    @property
    def completed_count(self) -> int:
        return (
            self.uploaded
            + self.downloaded
            + self.deleted_local
            + self.deleted_remote
            + self.conflicts_resolved
        )

    @property
    def ok(self) -> bool:
        """True for success and partial success."""
        return self.outcome in (RunOutcome.SUCCESS, RunOutcome.PARTIAL)

    def to_dict(self) -> dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "uploaded": self.uploaded,
            "downloaded": self.downloaded,
            "deleted_local": self.deleted_local,
            "deleted_remote": self.deleted_remote,
            "conflicts_resolved": self.conflicts_resolved,
            "failed": self.failed_count,
            "failures": [
                {"path": f.path, "action": f.action.value, "error": f.error}
                for f in self.failures
            ],
            "skipped": self.skipped,
            "started_at": self.started_at,
            "watermark": self.watermark,
            "error": self.error,
        }
