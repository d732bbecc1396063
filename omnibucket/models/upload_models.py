"""
Data models for upload orchestration and upload history.

UploadTask is the in-memory, observer-facing row for one planned artifact.
UploadHistoryRecord and BucketRecord are the persisted rows owned by the
metadata store. CompressionPreset describes one image compression target.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, Field

from .provider import utc_now


class UploadStatus(str, Enum):
    """Status of one upload task or history record."""

    PENDING = "pending"
    COMPRESSING = "compressing"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    ERROR = "error"
    PAUSED = "paused"  # reserved, nothing transitions into it


TERMINAL_STATUSES = frozenset({UploadStatus.COMPLETED, UploadStatus.ERROR})


class UploadSource(str, Enum):
    """How a file entered the app."""

    APP = "app"
    DRAG_DROP = "drag-drop"
    PASTE = "paste"


class HistoryItemType(str, Enum):
    FILE = "file"
    FOLDER = "folder"


# Persisted rows


class UploadHistoryRecord(BaseModel):
    """One completed or attempted upload."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    provider_id: str
    bucket: str
    key: str
    name: str
    type: HistoryItemType = HistoryItemType.FILE
    size: Optional[int] = None
    mime_type: Optional[str] = None
    uploaded_at: datetime = Field(default_factory=utc_now)
    upload_source: UploadSource = UploadSource.APP
    is_compressed: bool = False
    original_size: Optional[int] = None
    compression_preset_id: Optional[str] = None
    status: UploadStatus = UploadStatus.COMPLETED
    error_message: Optional[str] = None


class BucketRecord(BaseModel):
    """App-level metadata for a bucket, created when a custom domain is set."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    provider_id: str
    name: str
    custom_domain: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class HistoryListFilters(BaseModel):
    provider_id: Optional[str] = None
    bucket: Optional[str] = None
    query: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    file_types: Optional[list[str]] = None
    sort_by: Literal["uploaded_at", "name", "size"] = "uploaded_at"
    sort_direction: Literal["asc", "desc"] = "desc"
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=50, ge=1, le=100)


class HistoryPage(BaseModel):
    items: list[UploadHistoryRecord]
    total: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        return (self.total + self.page_size - 1) // self.page_size if self.total else 0


class HistoryStats(BaseModel):
    total_count: int = 0
    total_size: int = 0
    completed_count: int = 0
    error_count: int = 0


# Compression


class CompressionPreset(BaseModel):
    """Target dimensions and encoding for one compressed variant."""

    id: str
    name: str = Field(..., min_length=1, max_length=50)
    max_width: int = Field(..., ge=1, le=10000)
    max_height: int = Field(..., ge=1, le=10000)
    quality: int = Field(..., ge=1, le=100)
    format: Literal["webp", "jpeg", "png", "original"] = "webp"
    fit: Literal["cover", "contain", "fill", "inside", "outside"] = "inside"
    aspect_ratio: Optional[str] = None  # "16:9", "4:3", "1:1"


@dataclass
class CompressionResult:
    success: bool
    content: Optional[bytes] = None
    width: Optional[int] = None
    height: Optional[int] = None
    format: Optional[str] = None
    compressed_size: Optional[int] = None
    error: Optional[str] = None


@dataclass
class BlurHashResult:
    content: bytes
    width: int
    height: int


@dataclass
class ImageInfo:
    width: int
    height: int
    format: Optional[str] = None
    size: int = 0


# Upload run inputs


@dataclass
class UploadTarget:
    provider_id: str
    bucket: str
    prefix: str = ""


@dataclass
class UploadFileItem:
    """A file selected for upload, with its per-file options."""

    filename: str
    content: bytes
    content_type: Optional[str] = None
    preset_id: Optional[str] = None
    cropped_content: Optional[bytes] = None
    last_modified: Optional[float] = None
    source: UploadSource = UploadSource.APP
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass
class UploadOptions:
    keep_original: bool = False
    generate_blurhash: bool = False


@dataclass
class UploadTask:
    """One planned upload artifact, as shown to observers."""

    filename: str
    key: str
    provider_id: str
    bucket: str
    source_file_id: str
    status: UploadStatus = UploadStatus.PENDING
    progress: float = 0.0
    size: int = 0
    original_size: Optional[int] = None
    compressed_size: Optional[int] = None
    preset_id: Optional[str] = None
    error: Optional[str] = None
    db_record_id: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utc_now)
    updated_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


__all__ = [
    "UploadStatus",
    "TERMINAL_STATUSES",
    "UploadSource",
    "HistoryItemType",
    "UploadHistoryRecord",
    "BucketRecord",
    "HistoryListFilters",
    "HistoryPage",
    "HistoryStats",
    "CompressionPreset",
    "CompressionResult",
    "BlurHashResult",
    "ImageInfo",
    "UploadTarget",
    "UploadFileItem",
    "UploadOptions",
    "UploadTask",
]
