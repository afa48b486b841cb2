"""pygsync - keep a local notes vault in sync with a Google Drive folder."""

from .api import DriveClient
from .auth import OAuthTokenProvider, StaticTokenProvider
from .exceptions import (
    ConflictPolicyExhausted,
    GSyncAPIError,
    GSyncAuthenticationError,
    GSyncConfigError,
    GSyncError,
    GSyncInvalidResponseError,
    GSyncNetworkError,
    GSyncNotFoundError,
    GSyncPermissionError,
    GSyncRateLimitError,
    StructuralFailure,
    SyncBusyError,
    SyncError,
    TransientIOFailure,
)
from .models import DriveFile

__version__ = "0.1.0"

__all__ = [
    "DriveClient",
    "DriveFile",
    "OAuthTokenProvider",
    "StaticTokenProvider",
    "GSyncError",
    "GSyncAPIError",
    "GSyncAuthenticationError",
    "GSyncConfigError",
    "GSyncInvalidResponseError",
    "GSyncNetworkError",
    "GSyncNotFoundError",
    "GSyncPermissionError",
    "GSyncRateLimitError",
    "SyncError",
    "TransientIOFailure",
    "StructuralFailure",
    "ConflictPolicyExhausted",
    "SyncBusyError",
]
