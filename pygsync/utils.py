"""Utility functions for pygsync."""

import mimetypes
import time
from datetime import datetime, timezone
from pathlib import PurePosixPath
from typing import Optional

# =============================================================================
# Constants
# =============================================================================

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"

# Native Google documents have no downloadable byte content
GOOGLE_APPS_MIME_PREFIX = "application/vnd.google-apps."

DEFAULT_MAX_RETRIES: int = 3
DEFAULT_RETRY_DELAY: float = 1.0  # seconds

DEFAULT_MAX_WORKERS: int = 4

CONFLICT_MARKER = "_conflict_"

# Vault file types that mimetypes may not know
_MIME_OVERRIDES = {
    ".md": "text/markdown",
    ".canvas": "application/json",
    ".webp": "image/webp",
}


# =============================================================================
# Timestamp utilities
# =============================================================================


def now_ms() -> int:
    """Current wall-clock time in integer milliseconds since the epoch."""
    return time.time_ns() // 1_000_000


def parse_rfc3339_ms(timestamp_str: Optional[str]) -> Optional[int]:
    """Parse an RFC 3339 timestamp from the Drive API into milliseconds.

    Args:
        timestamp_str: Timestamp such as "2025-01-15T10:30:00.123Z"

    Returns:
        Milliseconds since the epoch, or None if parsing fails
    """
    if not timestamp_str:
        return None

    try:
        # The 'Z' suffix indicates UTC time
        if timestamp_str.endswith("Z"):
            timestamp_str = timestamp_str[:-1] + "+00:00"
        dt = datetime.fromisoformat(timestamp_str)
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return int(round(dt.timestamp() * 1000))
    except (ValueError, AttributeError):
        return None


def format_rfc3339_ms(timestamp_ms: int) -> str:
    """Format milliseconds since the epoch as an RFC 3339 UTC string.

    Examples:
        >>> format_rfc3339_ms(0)
        '1970-01-01T00:00:00.000Z'
    """
    dt = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{timestamp_ms % 1000:03d}Z"


def format_timestamp(timestamp_ms: int) -> str:
    """Format a watermark for display ("never" for zero)."""
    if not timestamp_ms:
        return "never"
    return datetime.fromtimestamp(timestamp_ms / 1000).strftime("%Y-%m-%d %H:%M:%S")


# =============================================================================
# Size formatting utilities
# =============================================================================


def format_size(size_bytes: int) -> str:
    """Format file size in human-readable format.

    Args:
        size_bytes: Size in bytes

    Returns:
        Formatted size string (e.g., "1.5 MB", "256 B")
    """
    if size_bytes < 1024:
        return f"{size_bytes} B"
    elif size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    elif size_bytes < 1024 * 1024 * 1024:
        return f"{size_bytes / 1024 / 1024:.1f} MB"
    else:
        return f"{size_bytes / 1024 / 1024 / 1024:.1f} GB"


# =============================================================================
# Path utilities
# =============================================================================


def normalize_path(path: str) -> str:
    """Normalize a relative path to forward slashes without empty segments.

    Examples:
        >>> normalize_path("/notes//daily/")
        'notes/daily'
        >>> normalize_path("a\\\\b.md")
        'a/b.md'
    """
    parts = [p for p in path.replace("\\", "/").split("/") if p and p != "."]
    return "/".join(parts)


def parent_path(path: str) -> str:
    """Return the parent of a relative path ("" for top-level entries)."""
    head, _, _ = path.rpartition("/")
    return head


def detect_mime_type(path: str) -> str:
    """Guess the MIME type of a file from its name.

    Args:
        path: File path or name

    Returns:
        MIME type string (defaults to 'application/octet-stream')
    """
    suffix = PurePosixPath(path).suffix.lower()
    if suffix in _MIME_OVERRIDES:
        return _MIME_OVERRIDES[suffix]

    mime_type, _ = mimetypes.guess_type(path)
    return mime_type or "application/octet-stream"


def conflict_copy_path(path: str, timestamp_ms: int) -> str:
    """Build the name of the local copy kept by the keep-both policy.

    The marker and timestamp go before the last extension, in the same
    directory as the original.

    Examples:
        >>> conflict_copy_path("notes/c.md", 1700000000000)
        'notes/c_conflict_1700000000000.md'
        >>> conflict_copy_path("Makefile", 5)
        'Makefile_conflict_5'
    """
    directory = parent_path(path)
    name = path.rsplit("/", 1)[-1]

    stem, dot, ext = name.rpartition(".")
    if not dot or not stem:
        # No extension (or a dot-file like ".env")
        stem, ext_part = name, ""
    else:
        ext_part = f".{ext}"

    new_name = f"{stem}{CONFLICT_MARKER}{timestamp_ms}{ext_part}"
    return f"{directory}/{new_name}" if directory else new_name
