"""Configuration management for pygsync."""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from .exceptions import GSyncConfigError
from .utils import DEFAULT_MAX_WORKERS

logger = logging.getLogger(__name__)

CONFIG_DIR_ENV = "GSYNC_CONFIG_DIR"
CONFIG_FILE_NAME = "config.json"

DEFAULT_EXCLUDED_FOLDERS = [".obsidian", ".git", ".trash"]


@dataclass
class SyncSettings:
    """Settings for one vault, passed explicitly into a SyncSession."""

    folder_name: str
    """Name of the sync-root folder on Google Drive"""

    excluded_folders: list[str] = field(
        default_factory=lambda: list(DEFAULT_EXCLUDED_FOLDERS)
    )
    """Folder prefixes (relative to the vault root) never synced"""

    excluded_extensions: list[str] = field(default_factory=list)
    """File extensions never synced (with or without leading dot)"""

    include_hidden: bool = False
    """Whether dot-files and dot-folders are synced"""

    conflict_policy: str = "prefer-newer"
    """Policy applied when both sides changed since the last sync"""

    max_workers: int = DEFAULT_MAX_WORKERS
    """Parallel transfers within one plan category"""

    use_trash: bool = True
    """Move locally deleted files to the system trash instead of unlinking"""

    def __post_init__(self) -> None:
        # Deferred: the pygsync.sync package imports this module
        from .sync.models import ConflictPolicy

        if not self.folder_name or not self.folder_name.strip("/"):
            raise GSyncConfigError("Remote folder name must not be empty")
        self.folder_name = self.folder_name.strip("/")
        if self.max_workers < 1:
            raise GSyncConfigError("max_workers must be at least 1")
        try:
            self.conflict_policy = ConflictPolicy.parse(self.conflict_policy).value
        except ValueError as e:
            raise GSyncConfigError(str(e)) from e

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SyncSettings":
        """Create SyncSettings from a (camelCase or snake_case) dictionary."""

        def pick(snake: str, camel: str, default: Any) -> Any:
            if snake in data:
                return data[snake]
            return data.get(camel, default)

        folder_name = pick("folder_name", "syncFolderName", None)
        if not folder_name:
            raise GSyncConfigError("Missing required field: folder_name")

        return cls(
            folder_name=folder_name,
            excluded_folders=list(
                pick("excluded_folders", "excludedFolders", DEFAULT_EXCLUDED_FOLDERS)
            ),
            excluded_extensions=list(
                pick("excluded_extensions", "excludedExtensions", [])
            ),
            include_hidden=bool(pick("include_hidden", "includeHiddenFiles", False)),
            conflict_policy=pick(
                "conflict_policy", "conflictResolution", "prefer-newer"
            ),
            max_workers=int(pick("max_workers", "maxWorkers", DEFAULT_MAX_WORKERS)),
            use_trash=bool(pick("use_trash", "useTrash", True)),
        )


class Config:
    """Reads and writes ~/.config/pygsync/config.json.

    Environment variables take precedence over values stored in the file.
    """

    def __init__(self, config_dir: Optional[Path] = None):
        self._config_dir = config_dir
        self._data: Optional[dict[str, Any]] = None

    # -------------------------------------------------------------------------
    # Paths
    # -------------------------------------------------------------------------

    def get_config_dir(self) -> Path:
        """Directory holding the config file and sync state."""
        if self._config_dir is not None:
            return self._config_dir
        env_dir = os.environ.get(CONFIG_DIR_ENV)
        if env_dir:
            return Path(env_dir)
        return Path.home() / ".config" / "pygsync"

    def get_config_path(self) -> Path:
        return self.get_config_dir() / CONFIG_FILE_NAME

    def get_state_dir(self) -> Path:
        return self.get_config_dir() / "sync_state"

    # -------------------------------------------------------------------------
    # File access
    # -------------------------------------------------------------------------

    def _load(self) -> dict[str, Any]:
        if self._data is not None:
            return self._data

        path = self.get_config_path()
        if not path.exists():
            self._data = {}
            return self._data

        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise GSyncConfigError(f"Failed to read config file {path}: {e}") from e

        if not isinstance(data, dict):
            raise GSyncConfigError(f"Config file {path} must contain a JSON object")
        self._data = data
        return self._data

    def _save(self, updates: dict[str, Any]) -> None:
        data = dict(self._load())
        data.update(updates)

        path = self.get_config_path()
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        # Credentials live in this file
        os.chmod(path, 0o600)

        self._data = data
        logger.debug(f"Saved configuration to {path}")

    def _get(self, env_var: str, key: str) -> Optional[str]:
        value = os.environ.get(env_var)
        if value:
            return value
        stored = self._load().get(key)
        return str(stored) if stored else None

    # -------------------------------------------------------------------------
    # Credentials
    # -------------------------------------------------------------------------

    @property
    def client_id(self) -> Optional[str]:
        return self._get("GSYNC_CLIENT_ID", "client_id")

    @property
    def client_secret(self) -> Optional[str]:
        return self._get("GSYNC_CLIENT_SECRET", "client_secret")

    @property
    def refresh_token(self) -> Optional[str]:
        return self._get("GSYNC_REFRESH_TOKEN", "refresh_token")

    @property
    def access_token(self) -> Optional[str]:
        return self._get("GSYNC_ACCESS_TOKEN", "access_token")

    @property
    def token_expiry(self) -> int:
        return int(self._load().get("token_expiry", 0) or 0)

    def is_configured(self) -> bool:
        """Whether any usable credential is available."""
        return bool(
            self.access_token
            or (self.client_id and self.client_secret and self.refresh_token)
        )

    def save_credentials(
        self, client_id: str, client_secret: str, refresh_token: str
    ) -> None:
        """Store OAuth client credentials and a refresh token."""
        self._save(
            {
                "client_id": client_id,
                "client_secret": client_secret,
                "refresh_token": refresh_token,
                "access_token": "",
                "token_expiry": 0,
            }
        )

    def save_access_token(self, access_token: str, expires_at: int) -> None:
        """Cache a refreshed access token."""
        self._save({"access_token": access_token, "token_expiry": expires_at})

    # -------------------------------------------------------------------------
    # Sync defaults
    # -------------------------------------------------------------------------

    def get_sync_defaults(self) -> dict[str, Any]:
        """Default SyncSettings fields stored under the "sync" key."""
        defaults = self._load().get("sync", {})
        return defaults if isinstance(defaults, dict) else {}


config = Config()
