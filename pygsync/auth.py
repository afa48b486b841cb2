"""Credential providers for the Google Drive client."""

import logging
import threading
from typing import Any, Callable, Optional, Protocol

import click
import httpx

from .config import config
from .exceptions import GSyncAuthenticationError, GSyncNetworkError
from .output import OutputFormatter
from .utils import now_ms

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"

# Refresh this long before the access token actually expires
REFRESH_MARGIN_MS = 5 * 60 * 1000


class TokenProvider(Protocol):
    """Supplies a bearer token for each API request."""

    def get_token(self) -> str:
        """Return a valid access token or raise GSyncAuthenticationError."""
        ...  # pragma: no cover


class StaticTokenProvider:
    """Returns a fixed access token (e.g. from GSYNC_ACCESS_TOKEN)."""

    def __init__(self, token: str):
        self.token = token

    def get_token(self) -> str:
        if not self.token:
            raise GSyncAuthenticationError("No access token configured")
        return self.token


class OAuthTokenProvider:
    """Refreshes a Google OAuth access token using a stored refresh token."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        refresh_token: str,
        access_token: Optional[str] = None,
        expires_at: int = 0,
        on_refresh: Optional[Callable[[str, int], None]] = None,
        timeout: float = 30.0,
    ):
        """Initialize the provider.

        Args:
            client_id: OAuth client ID
            client_secret: OAuth client secret
            refresh_token: Long-lived refresh token
            access_token: Cached access token, if any
            expires_at: Expiry of the cached token (milliseconds since epoch)
            on_refresh: Called with (access_token, expires_at) after a refresh
            timeout: HTTP timeout for the token endpoint
        """
        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_token = refresh_token
        self.access_token = access_token
        self.expires_at = expires_at
        self.on_refresh = on_refresh
        self.timeout = timeout
        self._lock = threading.Lock()

    def _is_fresh(self) -> bool:
        return bool(self.access_token) and now_ms() < self.expires_at - REFRESH_MARGIN_MS

    def get_token(self) -> str:
        with self._lock:
            if not self._is_fresh():
                self.refresh()
            if not self.access_token:
                raise GSyncAuthenticationError("Token refresh returned no access token")
            return self.access_token

    def refresh(self) -> None:
        """Exchange the refresh token for a new access token.

        Raises:
            GSyncAuthenticationError: If credentials are missing or rejected
            GSyncNetworkError: If the token endpoint cannot be reached
        """
        if not (self.client_id and self.client_secret and self.refresh_token):
            raise GSyncAuthenticationError(
                "OAuth credentials not configured. Run 'pygsync init' first."
            )

        logger.debug("Refreshing access token")
        try:
            response = httpx.post(
                GOOGLE_TOKEN_URL,
                data={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "refresh_token": self.refresh_token,
                    "grant_type": "refresh_token",
                },
                timeout=self.timeout,
            )
        except httpx.RequestError as e:
            raise GSyncNetworkError(f"Network error during token refresh: {e}") from e

        if response.status_code != 200:
            raise GSyncAuthenticationError(
                f"Token refresh failed with status {response.status_code}",
                status_code=response.status_code,
            )

        data: dict[str, Any] = response.json()
        token = data.get("access_token")
        if not token:
            raise GSyncAuthenticationError("Token endpoint returned no access token")

        self.access_token = token
        self.expires_at = now_ms() + int(data.get("expires_in", 3600)) * 1000

        if self.on_refresh is not None:
            self.on_refresh(self.access_token, self.expires_at)


def create_token_provider() -> TokenProvider:
    """Build a token provider from the global configuration.

    A static access token (environment) wins over stored OAuth credentials.

    Raises:
        GSyncAuthenticationError: If nothing usable is configured
    """
    if config.access_token and not config.refresh_token:
        return StaticTokenProvider(config.access_token)

    if config.client_id and config.client_secret and config.refresh_token:
        return OAuthTokenProvider(
            client_id=config.client_id,
            client_secret=config.client_secret,
            refresh_token=config.refresh_token,
            access_token=config.access_token,
            expires_at=config.token_expiry,
            on_refresh=config.save_access_token,
        )

    raise GSyncAuthenticationError(
        "No Google Drive credentials configured. "
        "Run 'pygsync init' or set GSYNC_ACCESS_TOKEN."
    )


def require_token_provider(ctx: Any, out: OutputFormatter) -> TokenProvider:
    """Return a token provider for a CLI command or exit with an error."""
    try:
        return create_token_provider()
    except GSyncAuthenticationError as e:
        out.error(str(e))
        ctx.exit(1)
        raise click.Abort() from e  # Unreachable, but helps type checker
