"""Exceptions for pygsync."""


class GSyncError(Exception):
    """Base exception for all pygsync errors."""


class GSyncConfigError(GSyncError):
    """Raised when configuration is missing or invalid."""


class GSyncAPIError(GSyncError):
    """Raised when a Google Drive API request fails."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class GSyncAuthenticationError(GSyncAPIError):
    """Raised when no valid credential is available or it was rejected."""


class GSyncPermissionError(GSyncAPIError):
    """Raised when access to a resource is forbidden."""


class GSyncNotFoundError(GSyncAPIError):
    """Raised when a resource does not exist."""


class GSyncRateLimitError(GSyncAPIError):
    """Raised when the API rate limit is exceeded."""


class GSyncNetworkError(GSyncAPIError):
    """Raised on connection-level failures."""


class GSyncInvalidResponseError(GSyncAPIError):
    """Raised when the API returns a body that cannot be decoded."""


# =============================================================================
# Sync run taxonomy
# =============================================================================


# A run without a usable credential aborts before indexing.
AuthFailure = GSyncAuthenticationError


class SyncError(GSyncError):
    """Base exception for reconciliation errors."""


class TransientIOFailure(SyncError):
    """A single item's network or disk operation failed.

    Raised inside the executor and recorded per item; never aborts a run.
    """

    def __init__(self, path: str, message: str):
        super().__init__(f"{path}: {message}")
        self.path = path


class StructuralFailure(SyncError):
    """Building an index failed (store unreachable, listing never ends)."""


class ConflictPolicyExhausted(SyncError):
    """No resolution exists for a conflict. Indicates a programming error."""


class SyncBusyError(SyncError):
    """Another run is already active for this vault."""
