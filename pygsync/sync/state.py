"""Persistence of the sync watermark and remote root.

The state is what lets a run tell "deleted on the other side" apart from
"created on this side": anything untouched since the watermark that exists
on only one side was deleted from the other.
"""

import fcntl
import hashlib
import json
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import IO, Optional

from ..utils import format_rfc3339_ms

logger = logging.getLogger(__name__)


@dataclass
class SyncState:
    """Persisted state of one vault/remote-folder pair."""

    local_path: str
    """Vault directory that was synced"""

    remote_name: str
    """Name of the sync-root folder in Drive"""

    watermark: int = 0
    """Start time (ms) of the last completed run; 0 before the first"""

    root_id: Optional[str] = None
    """Drive ID of the sync-root folder"""

    last_sync: Optional[str] = None
    """ISO timestamp of the last completed run"""

    def to_dict(self) -> dict:
        """Convert state to dictionary for JSON serialization."""
        return {
            "local_path": self.local_path,
            "remote_name": self.remote_name,
            "watermark": self.watermark,
            "root_id": self.root_id,
            "last_sync": self.last_sync,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SyncState":
        """Create SyncState from dictionary."""
        return cls(
            local_path=data.get("local_path", ""),
            remote_name=data.get("remote_name", ""),
            watermark=int(data.get("watermark") or 0),
            root_id=data.get("root_id"),
            last_sync=data.get("last_sync"),
        )


class SyncStateStore:
    """Stores SyncState as JSON, one file per vault/remote-folder pair.

    Files live in the state directory, keyed by a hash of the absolute vault
    path and the remote folder name. Implements the watermark store used by
    ``SyncSession``.
    """

    def __init__(
        self,
        local_path: Path,
        remote_name: str,
        state_dir: Optional[Path] = None,
    ):
        """Initialize state store.

        Args:
            local_path: Vault directory
            remote_name: Sync-root folder name
            state_dir: Directory for state files. Defaults to
                      ~/.config/pygsync/sync_state/
        """
        if state_dir is None:
            state_dir = Path.home() / ".config" / "pygsync" / "sync_state"
        self.state_dir = Path(state_dir)
        self.local_path = Path(local_path)
        self.remote_name = remote_name
        self._lock = threading.Lock()
        self._lock_handle: Optional[IO[str]] = None
        self._state = self._load()

    def _get_state_key(self) -> str:
        """Generate a unique key for this vault/remote pair."""
        # Use absolute path for consistency
        local_abs = str(self.local_path.resolve())
        combined = f"{local_abs}:{self.remote_name}"
        return hashlib.sha256(combined.encode()).hexdigest()[:16]

    @property
    def state_file(self) -> Path:
        return self.state_dir / f"{self._get_state_key()}.json"

    @property
    def lock_file(self) -> Path:
        return self.state_dir / f"{self._get_state_key()}.lock"

    @property
    def state(self) -> SyncState:
        return self._state

    def _new_state(self) -> SyncState:
        return SyncState(
            local_path=str(self.local_path.resolve()),
            remote_name=self.remote_name,
        )

    def _load(self) -> SyncState:
        state_file = self.state_file
        if not state_file.exists():
            logger.debug(f"No sync state found at {state_file}")
            return self._new_state()

        try:
            with open(state_file, encoding="utf-8") as f:
                data = json.load(f)
            state = SyncState.from_dict(data)
            logger.debug(
                f"Loaded sync state with watermark {state.watermark} "
                f"from {state.last_sync}"
            )
            return state
        except (json.JSONDecodeError, AttributeError, TypeError, ValueError) as e:
            logger.warning(f"Failed to load sync state, starting fresh: {e}")
            return self._new_state()

    def _save(self) -> None:
        try:
            self.state_dir.mkdir(parents=True, exist_ok=True)
            with open(self.state_file, "w", encoding="utf-8") as f:
                json.dump(self._state.to_dict(), f, indent=2)
            logger.debug(f"Saved sync state to {self.state_file}")
        except OSError as e:
            logger.warning(f"Failed to save sync state: {e}")

    def get_watermark(self) -> int:
        with self._lock:
            return self._state.watermark

    def set_watermark(self, value: int) -> None:
        """Advance the watermark; it never moves backwards."""
        with self._lock:
            if value < self._state.watermark:
                logger.debug(
                    f"Ignoring watermark {value} below {self._state.watermark}"
                )
                return
            self._state.watermark = value
            self._state.last_sync = datetime.now().isoformat()
            self._save()
        logger.debug(f"Watermark set to {format_rfc3339_ms(value)}")

    def get_root_id(self) -> Optional[str]:
        with self._lock:
            return self._state.root_id

    def set_root_id(self, root_id: Optional[str]) -> None:
        with self._lock:
            self._state.root_id = root_id
            self._save()

    def try_lock(self) -> bool:
        """Take the run lock of this vault/remote pair without waiting.

        The lock is an exclusive ``flock`` on a file next to the state file,
        so it is shared by every store instance and every process using the
        same state directory. The OS drops it if the process dies.

        Returns:
            True if the lock was taken, False if another run holds it
        """
        with self._lock:
            if self._lock_handle is not None:
                return False

            self.state_dir.mkdir(parents=True, exist_ok=True)
            handle = open(self.lock_file, "a", encoding="utf-8")
            try:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                handle.close()
                logger.debug(f"Run lock {self.lock_file} is held elsewhere")
                return False

            self._lock_handle = handle
            # Another holder may have saved since this store was created
            self._state = self._load()
            return True

    def unlock(self) -> None:
        """Release the run lock taken by :meth:`try_lock`."""
        with self._lock:
            if self._lock_handle is None:
                return
            try:
                fcntl.flock(self._lock_handle.fileno(), fcntl.LOCK_UN)
            finally:
                self._lock_handle.close()
                self._lock_handle = None

    def clear(self) -> bool:
        """Forget the watermark and root ID.

        Returns:
            True if state was cleared, False if no state existed
        """
        with self._lock:
            self._state = self._new_state()
            state_file = self.state_file
            if state_file.exists():
                state_file.unlink()
                logger.debug(f"Cleared sync state at {state_file}")
                return True
            return False
