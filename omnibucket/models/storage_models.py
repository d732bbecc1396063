"""
Result and value types returned by storage adapters and the storage service.

Listing rows and item-operation results are transient dataclasses; none of
them are persisted.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Optional


class FileItemType(str, Enum):
    """Kind of a listing row."""

    FILE = "file"
    FOLDER = "folder"


@dataclass
class ConnectionResult:
    connected: bool
    error: Optional[str] = None


@dataclass
class BucketInfo:
    name: str
    creation_date: Optional[str] = None


@dataclass
class FileItem:
    """
    One row of a bucket listing.

    ``id`` is the full object key, or the prefix (with trailing slash) for
    folders, and doubles as the row's path.
    """

    id: str
    name: str
    type: FileItemType
    size: Optional[int] = None
    modified: Optional[str] = None
    mime_type: Optional[str] = None

    @property
    def is_folder(self) -> bool:
        return self.type == FileItemType.FOLDER

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["type"] = self.type.value
        return data


@dataclass
class ListObjectsOptions:
    prefix: str = ""
    cursor: Optional[str] = None
    max_keys: int = 100


@dataclass
class ListObjectsResult:
    files: list[FileItem] = field(default_factory=list)
    next_cursor: Optional[str] = None
    has_more: bool = False


@dataclass
class FileMetadata:
    content_type: Optional[str] = None
    size: Optional[int] = None


@dataclass
class CreateBucketOptions:
    region: Optional[str] = None
    location_constraint: Optional[str] = None


@dataclass
class UploadResult:
    success: bool
    error: Optional[str] = None


@dataclass
class DeleteResult:
    success: bool
    error: Optional[str] = None
    deleted_count: Optional[int] = None


@dataclass
class RenameResult:
    success: bool
    error: Optional[str] = None
    new_key: Optional[str] = None
    copied: bool = False  # copy half done; source may still exist on failure


@dataclass
class MoveResult:
    success: bool
    error: Optional[str] = None
    new_key: Optional[str] = None
    copied: bool = False


@dataclass
class CreateFolderResult:
    success: bool
    error: Optional[str] = None


@dataclass
class ObjectUrlResult:
    url: str
    expires_at: str


@dataclass
class DownloadResult:
    success: bool
    file_path: Optional[str] = None
    error: Optional[str] = None


@dataclass
class BucketResult:
    """Outcome of a bucket create/delete issued through the service."""

    success: bool
    error: Optional[str] = None


@dataclass
class ProviderStats:
    buckets: list[BucketInfo] = field(default_factory=list)

    @property
    def bucket_count(self) -> int:
        return len(self.buckets)


__all__ = [
    "FileItemType",
    "ConnectionResult",
    "BucketInfo",
    "FileItem",
    "ListObjectsOptions",
    "ListObjectsResult",
    "FileMetadata",
    "CreateBucketOptions",
    "UploadResult",
    "DeleteResult",
    "RenameResult",
    "MoveResult",
    "CreateFolderResult",
    "ObjectUrlResult",
    "DownloadResult",
    "BucketResult",
    "ProviderStats",
]
