"""API client for Google Drive (REST v3)."""

from __future__ import annotations

import json
import logging
import random
import time
from typing import Any, Optional

import httpx

from .auth import TokenProvider
from .exceptions import (
    GSyncAPIError,
    GSyncAuthenticationError,
    GSyncInvalidResponseError,
    GSyncNetworkError,
    GSyncNotFoundError,
    GSyncPermissionError,
    GSyncRateLimitError,
)
from .models import DRIVE_FILE_FIELDS, DriveFile, FileListPage
from .utils import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_RETRY_DELAY,
    FOLDER_MIME_TYPE,
    format_rfc3339_ms,
)

logger = logging.getLogger(__name__)

DRIVE_API_BASE = "https://www.googleapis.com/drive/v3"
DRIVE_UPLOAD_BASE = "https://www.googleapis.com/upload/drive/v3"

MULTIPART_BOUNDARY = "-------pygsync_boundary"


def escape_query_value(value: str) -> str:
    """Escape a string literal for use inside a Drive search query.

    Examples:
        >>> escape_query_value("it's")
        "it\\\\'s"
    """
    return value.replace("\\", "\\\\").replace("'", "\\'")


def build_multipart_body(
    metadata: dict[str, Any], content: bytes, mime_type: str
) -> bytes:
    """Build a ``multipart/related`` body for Drive's multipart upload type.

    Args:
        metadata: File resource metadata (JSON part)
        content: File bytes (media part)
        mime_type: MIME type of the media part

    Returns:
        Encoded request body
    """
    delimiter = f"\r\n--{MULTIPART_BOUNDARY}\r\n".encode()
    close_delimiter = f"\r\n--{MULTIPART_BOUNDARY}--".encode()

    return b"".join(
        [
            delimiter,
            b"Content-Type: application/json; charset=UTF-8\r\n\r\n",
            json.dumps(metadata).encode("utf-8"),
            delimiter,
            f"Content-Type: {mime_type}\r\n\r\n".encode(),
            content,
            close_delimiter,
        ]
    )


class DriveClient:
    """Client for the Google Drive API, scoped to what sync needs."""

    def __init__(
        self,
        token_provider: TokenProvider,
        api_url: str = DRIVE_API_BASE,
        upload_url: str = DRIVE_UPLOAD_BASE,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        timeout: float = 60.0,
        page_size: int = 1000,
    ):
        """Initialize Google Drive API client.

        Args:
            token_provider: Supplies the bearer token for each request
            api_url: Base URL of the metadata API
            upload_url: Base URL of the upload API
            max_retries: Maximum number of retry attempts (default: 3)
            retry_delay: Initial delay between retries in seconds (default: 1.0)
            timeout: Request timeout in seconds (default: 60.0)
            page_size: Entries requested per listing page
        """
        self.token_provider = token_provider
        self.api_url = api_url.rstrip("/")
        self.upload_url = upload_url.rstrip("/")
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.timeout = timeout
        self.page_size = page_size

        self._client: httpx.Client | None = None

    def _get_client(self) -> httpx.Client:
        """Get or create the httpx client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.Client(
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
            )
        return self._client

    def close(self) -> None:
        """Close the client and release connections."""
        if self._client is not None and not self._client.is_closed:
            self._client.close()
            self._client = None

    def __enter__(self) -> DriveClient:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # =========================
    # Request plumbing
    # =========================

    def _calculate_retry_delay(self, attempt: int) -> float:
        """Calculate delay before next retry using exponential backoff.

        Args:
            attempt: Current attempt number (0-based)

        Returns:
            Delay in seconds
        """
        base_delay = self.retry_delay * (2**attempt)
        # Add jitter: +/- 25% of base delay
        jitter = base_delay * 0.25 * (2 * random.random() - 1)
        return base_delay + jitter

    def _handle_http_error(
        self, e: httpx.HTTPStatusError, attempt: int
    ) -> tuple[GSyncAPIError, bool]:
        """Map an HTTP error to a typed exception and decide on retrying.

        Args:
            e: The HTTP error exception
            attempt: Current attempt number

        Returns:
            Tuple of (exception to raise, should_retry)
        """
        status_code = e.response.status_code

        if status_code == 401:
            raise GSyncAuthenticationError(
                "Access token rejected - re-run 'pygsync init'",
                status_code=status_code,
            ) from e
        elif status_code == 403:
            raise GSyncPermissionError(
                "Access forbidden - check your permissions",
                status_code=status_code,
            ) from e
        elif status_code == 404:
            raise GSyncNotFoundError(
                "Resource not found", status_code=status_code
            ) from e
        elif status_code == 429:
            error: GSyncAPIError = GSyncRateLimitError(
                "Rate limit exceeded - please try again later",
                status_code=status_code,
            )
            return (error, attempt < self.max_retries)

        error_msg = f"API request failed with status {status_code}"
        try:
            if e.response.content:
                error_data = e.response.json()
                if isinstance(error_data, dict):
                    detail = error_data.get("error")
                    if isinstance(detail, dict):
                        detail = detail.get("message")
                    if detail:
                        error_msg = f"{error_msg}: {detail}"
        except ValueError:
            # Body is not JSON; keep the status-based message
            pass

        error = GSyncAPIError(error_msg, status_code=status_code)
        should_retry = 500 <= status_code < 600 and attempt < self.max_retries
        return (error, should_retry)

    def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request with authentication and retry logic.

        Raises:
            GSyncAPIError: If the request fails after all retries
        """
        client = self._get_client()
        last_exception: GSyncAPIError | None = None

        for attempt in range(self.max_retries + 1):
            headers = dict(kwargs.pop("headers", None) or {})
            headers["Authorization"] = f"Bearer {self.token_provider.get_token()}"
            try:
                response = client.request(method, url, headers=headers, **kwargs)
                response.raise_for_status()
                return response

            except httpx.HTTPStatusError as e:
                error, should_retry = self._handle_http_error(e, attempt)
                last_exception = error

                if should_retry:
                    retry_after = e.response.headers.get("Retry-After")
                    if (
                        isinstance(error, GSyncRateLimitError)
                        and retry_after
                        and retry_after.isdigit()
                    ):
                        delay = float(retry_after)
                    else:
                        delay = self._calculate_retry_delay(attempt)
                    logger.debug(
                        f"{method} {url} failed ({error}), retrying in {delay:.1f}s"
                    )
                    time.sleep(delay)
                    kwargs["headers"] = headers
                    continue
                raise error from e

            except httpx.RequestError as e:
                last_exception = GSyncNetworkError(f"Network error: {e}")
                if attempt < self.max_retries:
                    delay = self._calculate_retry_delay(attempt)
                    logger.debug(f"{method} {url} network error, retrying: {e}")
                    time.sleep(delay)
                    kwargs["headers"] = headers
                    continue
                raise last_exception from e

        # If we get here, we've exhausted all retries
        if last_exception:
            raise last_exception
        raise GSyncAPIError("Request failed after all retry attempts")

    def _request(self, method: str, endpoint: str, **kwargs: Any) -> Any:
        """Make a metadata API request and return the decoded JSON body."""
        url = f"{self.api_url}/{endpoint.lstrip('/')}"
        response = self._send(method, url, **kwargs)

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise GSyncInvalidResponseError(
                "Invalid JSON response from Google Drive"
            ) from e

    # =========================
    # Folder operations
    # =========================

    def find_folder(self, name: str, parent_id: Optional[str] = None) -> Optional[str]:
        """Find a non-trashed folder by name.

        Args:
            name: Folder name
            parent_id: Parent folder ID (None searches everywhere visible)

        Returns:
            Folder ID of the first match, or None
        """
        query = (
            f"name='{escape_query_value(name)}' "
            f"and mimeType='{FOLDER_MIME_TYPE}' and trashed=false"
        )
        if parent_id:
            query += f" and '{escape_query_value(parent_id)}' in parents"

        result = self._request(
            "GET", "files", params={"q": query, "fields": "files(id,name)"}
        )
        files = result.get("files") or []
        return files[0]["id"] if files else None

    def create_folder(self, name: str, parent_id: Optional[str] = None) -> DriveFile:
        """Create a folder.

        Args:
            name: Folder name
            parent_id: Parent folder ID (None for My Drive root)

        Returns:
            The created folder resource
        """
        metadata: dict[str, Any] = {"name": name, "mimeType": FOLDER_MIME_TYPE}
        if parent_id:
            metadata["parents"] = [parent_id]

        logger.debug(f"Creating folder {name!r} under {parent_id or 'root'}")
        result = self._request(
            "POST", "files", params={"fields": DRIVE_FILE_FIELDS}, json=metadata
        )
        return DriveFile.from_api_response(result)

    def find_or_create_container(
        self, name: str, parent_id: Optional[str] = None
    ) -> str:
        """Return the ID of a folder, creating it if missing (idempotent).

        Args:
            name: Folder name
            parent_id: Parent folder ID (None for My Drive root)

        Returns:
            Folder ID
        """
        folder_id = self.find_folder(name, parent_id)
        if folder_id:
            return folder_id
        return self.create_folder(name, parent_id).id

    # =========================
    # Listing and metadata
    # =========================

    def list_children(
        self, container_id: str, page_token: Optional[str] = None
    ) -> tuple[list[DriveFile], Optional[str]]:
        """List one page of the non-trashed children of a folder.

        Args:
            container_id: Folder ID
            page_token: Token from the previous page, if any

        Returns:
            Tuple of (entries, next_page_token or None)
        """
        params: dict[str, Any] = {
            "q": f"'{escape_query_value(container_id)}' in parents and trashed=false",
            "fields": f"nextPageToken,files({DRIVE_FILE_FIELDS})",
            "pageSize": self.page_size,
        }
        if page_token:
            params["pageToken"] = page_token

        page = FileListPage.from_api_response(
            self._request("GET", "files", params=params)
        )
        return page.files, page.next_page_token

    def get_metadata(self, file_id: str) -> DriveFile:
        """Get the metadata of a single file or folder."""
        result = self._request(
            "GET", f"files/{file_id}", params={"fields": DRIVE_FILE_FIELDS}
        )
        return DriveFile.from_api_response(result)

    # =========================
    # Transfers
    # =========================

    def download(self, file_id: str) -> bytes:
        """Download the content of a file.

        Args:
            file_id: Drive file ID

        Returns:
            File content
        """
        url = f"{self.api_url}/files/{file_id}"
        response = self._send("GET", url, params={"alt": "media"})
        return response.content

    def upload(
        self,
        name: str,
        content: bytes,
        mime_type: str,
        parent_id: str,
        existing_id: Optional[str] = None,
        modified_at: Optional[int] = None,
    ) -> DriveFile:
        """Upload a file, creating it or replacing an existing file's content.

        Args:
            name: File name
            content: File bytes
            mime_type: MIME type of the content
            parent_id: Folder to create the file in (ignored on update)
            existing_id: Update this file in place instead of creating one
            modified_at: Modification time to record (milliseconds)

        Returns:
            The uploaded file resource
        """
        metadata: dict[str, Any] = {"name": name}
        if not existing_id:
            metadata["parents"] = [parent_id]
        if modified_at is not None:
            metadata["modifiedTime"] = format_rfc3339_ms(modified_at)

        body = build_multipart_body(metadata, content, mime_type)
        if existing_id:
            method, url = "PATCH", f"{self.upload_url}/files/{existing_id}"
        else:
            method, url = "POST", f"{self.upload_url}/files"

        response = self._send(
            method,
            url,
            params={"uploadType": "multipart", "fields": DRIVE_FILE_FIELDS},
            content=body,
            headers={
                "Content-Type": f"multipart/related; boundary={MULTIPART_BOUNDARY}"
            },
        )
        try:
            return DriveFile.from_api_response(response.json())
        except (ValueError, KeyError) as e:
            raise GSyncInvalidResponseError(f"Invalid upload response: {e}") from e

    def trash(self, file_id: str) -> None:
        """Move a file or folder to the Drive trash."""
        self._request("PATCH", f"files/{file_id}", json={"trashed": True})
