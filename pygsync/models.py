"""Data models for Google Drive API responses."""

from dataclasses import dataclass, field
from typing import Any, Optional

from .utils import FOLDER_MIME_TYPE, GOOGLE_APPS_MIME_PREFIX, parse_rfc3339_ms

# Fields requested for every file resource
DRIVE_FILE_FIELDS = "id,name,mimeType,modifiedTime,size,md5Checksum,parents,trashed"


@dataclass
class DriveFile:
    """A file or folder resource returned by the Drive v3 API."""

    id: str
    name: str
    mime_type: str
    modified_time: Optional[str] = None
    size: int = 0
    md5_checksum: Optional[str] = None
    parents: list[str] = field(default_factory=list)
    trashed: bool = False

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "DriveFile":
        """Create DriveFile from a Drive API file resource.

        Args:
            data: File resource dictionary

        Returns:
            DriveFile instance
        """
        try:
            size = int(data.get("size") or 0)
        except (TypeError, ValueError):
            size = 0

        return cls(
            id=data["id"],
            name=data.get("name", ""),
            mime_type=data.get("mimeType", "application/octet-stream"),
            modified_time=data.get("modifiedTime"),
            size=size,
            md5_checksum=data.get("md5Checksum"),
            parents=list(data.get("parents") or []),
            trashed=bool(data.get("trashed", False)),
        )

    @property
    def is_folder(self) -> bool:
        """Whether this resource is a folder."""
        return self.mime_type == FOLDER_MIME_TYPE

    @property
    def is_google_doc(self) -> bool:
        """Whether this is a native Google document (not downloadable as bytes)."""
        return not self.is_folder and self.mime_type.startswith(GOOGLE_APPS_MIME_PREFIX)

    @property
    def modified_at(self) -> Optional[int]:
        """Last modification time in milliseconds since the epoch."""
        return parse_rfc3339_ms(self.modified_time)


@dataclass
class FileListPage:
    """One page of a ``files.list`` response."""

    files: list[DriveFile]
    next_page_token: Optional[str] = None

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "FileListPage":
        """Create FileListPage from a ``files.list`` response body."""
        return cls(
            files=[DriveFile.from_api_response(f) for f in data.get("files", [])],
            next_page_token=data.get("nextPageToken") or None,
        )
