"""
File and key utility functions for object storage operations.

This module provides MIME type detection, object key/path manipulation,
listing order, image detection and the filename conventions used for
generated upload artifacts.
"""

import mimetypes
from collections.abc import Iterator, Sequence
from datetime import datetime, timezone
from typing import Any, Optional, TypeVar
from urllib.parse import quote

from ..models.storage_models import FileItem, FileItemType

T = TypeVar("T")

DEFAULT_CONTENT_TYPE = "application/octet-stream"
FOLDER_CONTENT_TYPE = "application/x-directory"


class FileUtils:
    """Utility class for object keys, MIME types and listing rows."""

    # Extension lookups that must not depend on the host's mime database
    MIME_TYPES: dict[str, str] = {
        "jpg": "image/jpeg",
        "jpeg": "image/jpeg",
        "png": "image/png",
        "gif": "image/gif",
        "webp": "image/webp",
        "svg": "image/svg+xml",
        "mp4": "video/mp4",
        "webm": "video/webm",
        "mp3": "audio/mpeg",
        "wav": "audio/wav",
        "pdf": "application/pdf",
        "zip": "application/zip",
        "json": "application/json",
        "txt": "text/plain",
        "html": "text/html",
        "css": "text/css",
        "js": "application/javascript",
    }

    # Images the upload pipeline can compress
    IMAGE_MIME_TYPES: frozenset[str] = frozenset(
        {"image/jpeg", "image/jpg", "image/png", "image/webp", "image/gif"}
    )

    def __init__(self):
        """Initialize file utilities."""
        mimetypes.init()

    def get_extension(self, filename: str) -> str:
        """Lower-case extension without the dot, or an empty string."""
        name = filename.rsplit("/", 1)[-1]
        if "." not in name:
            return ""
        return name.rsplit(".", 1)[-1].lower()

    def get_mime_type(self, filename: str) -> Optional[str]:
        """
        Derive a MIME type from the file extension.

        Args:
            filename: File name or object key

        Returns:
            The MIME type, or None when the extension is unknown
        """
        extension = self.get_extension(filename)
        if not extension:
            return None
        if extension in self.MIME_TYPES:
            return self.MIME_TYPES[extension]
        guessed, _ = mimetypes.guess_type(f"file.{extension}")
        return guessed

    def resolve_content_type(self, key: str, explicit: Optional[str] = None) -> str:
        """Explicit type first, then the extension lookup, then octet-stream."""
        if explicit:
            return explicit
        return self.get_mime_type(key) or DEFAULT_CONTENT_TYPE

    def is_image(self, filename: str, content_type: Optional[str] = None) -> bool:
        """Check whether a file is a compressible image."""
        if content_type and content_type.lower() in self.IMAGE_MIME_TYPES:
            return True
        mime_type = self.get_mime_type(filename)
        return mime_type in self.IMAGE_MIME_TYPES if mime_type else False

    # Keys and prefixes

    def get_name_from_key(self, key: str) -> str:
        """Last non-empty path segment of a key or prefix."""
        segments = [segment for segment in key.split("/") if segment]
        return segments[-1] if segments else ""

    def get_basename(self, key: str) -> str:
        """Last segment of a key; empty when the key ends with a slash."""
        return key.rsplit("/", 1)[-1]

    def get_parent_path(self, key: str) -> str:
        """Directory part of a key including its trailing slash."""
        if "/" not in key:
            return ""
        return key.rsplit("/", 1)[0] + "/"

    def normalize_prefix(self, prefix: Optional[str]) -> str:
        """Strip leading slashes and make sure a non-empty prefix ends with one."""
        if not prefix:
            return ""
        normalized = prefix.lstrip("/")
        if normalized and not normalized.endswith("/"):
            normalized += "/"
        return normalized

    def folder_key(self, path: str) -> str:
        """Key of a folder marker: the path with exactly one trailing slash."""
        return path.rstrip("/") + "/"

    def join_key(self, prefix: str, name: str) -> str:
        return f"{self.normalize_prefix(prefix)}{name}"

    def encode_key(self, key: str) -> str:
        """URL-encode each path segment, keeping '/' as separator."""
        return "/".join(quote(segment, safe="") for segment in key.split("/"))

    # Listing rows

    def make_folder_item(self, prefix: str) -> FileItem:
        return FileItem(id=prefix, name=self.get_name_from_key(prefix), type=FileItemType.FOLDER)

    def make_file_item(
        self,
        key: str,
        size: Optional[int] = None,
        modified: Any = None,
        mime_type: Optional[str] = None,
    ) -> Optional[FileItem]:
        """
        Build a file row, or None when the key has no file name.

        Keys ending with '/' are the prefix marker objects some providers
        use for empty folders and are never listed as files.
        """
        name = self.get_basename(key)
        if not name:
            return None
        return FileItem(
            id=key,
            name=name,
            type=FileItemType.FILE,
            size=size,
            modified=to_iso(modified),
            mime_type=mime_type or self.get_mime_type(name),
        )

    def sort_file_items(self, items: list[FileItem]) -> list[FileItem]:
        """
        Order a listing page.

        Folders first, by name. Files by modification time, newest first,
        undated files last.
        """
        return sorted(items, key=_listing_sort_key)

    def chunked(self, items: Sequence[T], size: int) -> Iterator[list[T]]:
        """Yield consecutive slices of at most ``size`` items."""
        if size < 1:
            raise ValueError("Chunk size must be positive")
        for start in range(0, len(items), size):
            yield list(items[start : start + size])

    # Generated artifact names

    def split_filename(self, filename: str) -> tuple[str, str]:
        """Split into (base, extension); extension has no dot."""
        if "." not in filename or (filename.startswith(".") and filename.count(".") == 1):
            return filename, ""
        base, extension = filename.rsplit(".", 1)
        return base, extension

    def format_extension(self, image_format: str) -> str:
        return "jpg" if image_format.lower() == "jpeg" else image_format.lower()

    def build_preset_filename(
        self, filename: str, preset_name: str, width: Optional[int], height: Optional[int], image_format: str
    ) -> str:
        """``{base}_{preset}_{w}x{h}.{ext}`` with jpeg written as jpg."""
        base, _ = self.split_filename(filename)
        return f"{base}_{preset_name}_{width}x{height}.{self.format_extension(image_format)}"

    def build_original_filename(self, filename: str, width: Optional[int], height: Optional[int]) -> str:
        """``{base}_original_{w}x{h}.{ext}``; dimensions are left out when unknown."""
        base, extension = self.split_filename(filename)
        suffix = f"_original_{width}x{height}" if width and height else "_original"
        return f"{base}{suffix}.{extension}" if extension else f"{base}{suffix}"

    def build_blurhash_filename(self, filename: str) -> str:
        base, _ = self.split_filename(filename)
        return f"{base}_blurhash.webp"


def to_iso(value: Any) -> Optional[str]:
    """Normalize provider timestamps to ISO 8601 strings in UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat()
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc).isoformat()
    parsed = parse_timestamp(str(value))
    return parsed.isoformat() if parsed else str(value)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _listing_sort_key(item: FileItem) -> tuple:
    if item.type == FileItemType.FOLDER:
        return (0, 0, item.name, 0.0)
    modified = parse_timestamp(item.modified)
    if modified is None:
        return (1, 1, "", 0.0)
    return (1, 0, "", -modified.timestamp())


# Global instance for convenience
file_utils = FileUtils()


__all__ = [
    "FileUtils",
    "file_utils",
    "to_iso",
    "parse_timestamp",
    "DEFAULT_CONTENT_TYPE",
    "FOLDER_CONTENT_TYPE",
]
