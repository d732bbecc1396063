"""
Abstract storage adapter interface for multi-provider object storage.

This module defines the capability contract every provider adapter
satisfies, the exception hierarchy for storage failures, and the parts of
each operation that are the same on every provider: listing
normalization, content-type resolution, batched deletes, rename and move
composed from copy + delete, and signed URL expiry stamps.

Concrete adapters implement the small set of provider-native primitives
(``_list_page``, ``_list_all_keys``, ``_put_object``, ``_delete_key``,
``_delete_batch``, ``_copy_object``, ``_sign_url`` and the bucket calls).

Item operations (upload, delete, rename, move, create folder) never raise:
failures come back as result objects carrying the provider's own message.
Bucket operations and URL generation raise StorageError.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, ClassVar, Optional

import structlog

from ..models.storage_models import (
    BucketInfo,
    ConnectionResult,
    CreateBucketOptions,
    CreateFolderResult,
    DeleteResult,
    FileItem,
    FileMetadata,
    ListObjectsOptions,
    ListObjectsResult,
    MoveResult,
    ObjectUrlResult,
    RenameResult,
    UploadResult,
)
from .file_utils import FOLDER_CONTENT_TYPE, file_utils

logger = structlog.get_logger(__name__)

# Largest bulk delete accepted by S3, OSS and COS; applied to every provider
DELETE_BATCH_SIZE = 1000
DEFAULT_URL_EXPIRES_IN = 3600


class StorageError(Exception):
    """Base exception for storage operations."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}


class StorageNotFoundError(StorageError):
    """Bucket or object not found."""

    pass


class StoragePermissionError(StorageError):
    """Credentials rejected or access denied."""

    pass


class StorageNetworkError(StorageError):
    """Endpoint unreachable or request timed out."""

    pass


class UnsupportedProviderError(StorageError):
    """No adapter exists for the provider kind."""

    pass


class BatchDeleteError(StorageError):
    """A bulk delete reported per-key failures."""

    def __init__(self, message: str, deleted_count: int, failed: dict[str, str]):
        super().__init__(message, error_code="BATCH_DELETE_FAILED", details={"failed": failed})
        self.deleted_count = deleted_count
        self.failed = failed


NOT_FOUND_CODES = frozenset({"NoSuchKey", "NoSuchBucket", "NotFound", "404", "not_found"})
PERMISSION_CODES = frozenset(
    {"AccessDenied", "Forbidden", "403", "InvalidAccessKeyId", "SignatureDoesNotMatch", "Unauthorized", "401"}
)
NETWORK_CODES = frozenset({"RequestTimeout", "ServiceUnavailable", "SlowDown", "503", "504"})


def classify_error(
    message: str,
    error_code: str | None,
    status_code: int | None = None,
    details: dict[str, Any] | None = None,
) -> StorageError:
    """Map a provider error code onto the StorageError hierarchy."""
    code = error_code or ""
    status = str(status_code) if status_code else ""
    if code in NOT_FOUND_CODES or status == "404":
        error_class: type[StorageError] = StorageNotFoundError
    elif code in PERMISSION_CODES or status in ("401", "403"):
        error_class = StoragePermissionError
    elif code in NETWORK_CODES or status in ("503", "504"):
        error_class = StorageNetworkError
    else:
        error_class = StorageError
    return error_class(message, error_code=error_code, status_code=status_code, details=details)


@dataclass
class ObjectEntry:
    """One object as returned by a provider listing call."""

    key: str
    size: Optional[int] = None
    modified: Any = None
    mime_type: Optional[str] = None


@dataclass
class ListPage:
    """One provider listing page, before normalization."""

    prefixes: list[str] = field(default_factory=list)
    objects: list[ObjectEntry] = field(default_factory=list)
    next_cursor: Optional[str] = None
    truncated: bool = False


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class StorageAdapter(ABC):
    """
    Abstract base class for provider adapters.

    One instance wraps one provider descriptor. Adapters are cheap to
    construct; the SDK client is created in the constructor unless one is
    injected.
    """

    provider_type: ClassVar[str] = ""
    delete_batch_size: ClassVar[int] = DELETE_BATCH_SIZE

    def __init__(self, provider: Any):
        """Initialize the adapter for a provider descriptor."""
        self.provider = provider

    # Connection

    async def test_connection(self) -> ConnectionResult:
        """
        Perform the cheapest authenticated call the provider supports.

        Returns:
            ConnectionResult; never raises
        """
        try:
            await self._probe()
            return ConnectionResult(connected=True)
        except Exception as e:
            message = self._error_message(e)
            logger.warning(f"Connection test failed: {message}", provider_type=self.provider_type)
            return ConnectionResult(connected=False, error=message)

    async def _probe(self) -> None:
        await self.list_buckets()

    # Buckets

    @abstractmethod
    async def list_buckets(self) -> list[BucketInfo]:
        """
        List all buckets of the account.

        Raises:
            StorageError: on transport or authentication failure
        """
        pass

    @abstractmethod
    async def create_bucket(self, name: str, options: CreateBucketOptions | None = None) -> None:
        """
        Create a bucket; the region option is forwarded where the provider needs one.

        Raises:
            StorageError: if the provider rejects the request
        """
        pass

    @abstractmethod
    async def delete_bucket(self, name: str) -> None:
        """
        Delete an (empty) bucket.

        Raises:
            StorageError: if the provider rejects the request
        """
        pass

    # Objects

    async def list_objects(self, bucket: str, options: ListObjectsOptions | None = None) -> ListObjectsResult:
        """
        List one level of a bucket below a prefix.

        Common prefixes become folder rows, objects become file rows. Prefix
        marker objects (empty name) are skipped. The page is sorted with
        folders first by name, then files newest first, undated files last.

        Raises:
            StorageError: on transport or authentication failure
        """
        options = options or ListObjectsOptions()
        prefix = options.prefix or ""
        page = await self._guard(
            f"list objects in {bucket}", self._list_page(bucket, prefix, options.cursor, options.max_keys)
        )

        files: list[FileItem] = []
        for common_prefix in page.prefixes:
            if file_utils.get_name_from_key(common_prefix):
                files.append(file_utils.make_folder_item(common_prefix))
        for entry in page.objects:
            item = file_utils.make_file_item(entry.key, entry.size, entry.modified, entry.mime_type)
            if item is not None:
                files.append(item)

        return ListObjectsResult(
            files=file_utils.sort_file_items(files),
            next_cursor=page.next_cursor if page.truncated else None,
            has_more=page.truncated,
        )

    async def upload_file(
        self,
        bucket: str,
        key: str,
        content: bytes,
        metadata: FileMetadata | None = None,
    ) -> UploadResult:
        """
        Upload bytes under a key.

        Content type: explicit metadata, then the extension lookup, then
        application/octet-stream.
        """
        if not key:
            return UploadResult(success=False, error="Object key is required")
        content_type = file_utils.resolve_content_type(key, metadata.content_type if metadata else None)
        logger.debug("Uploading object", bucket=bucket, key=key, content_type=content_type, size=len(content))
        try:
            await self._put_object(bucket, key, content, content_type)
        except Exception as e:
            message = self._error_message(e)
            logger.error(f"Upload failed: {message}", bucket=bucket, key=key)
            return UploadResult(success=False, error=message)
        logger.info("Upload successful", bucket=bucket, key=key)
        return UploadResult(success=True)

    async def delete_object(self, bucket: str, key: str, is_folder: bool = False) -> DeleteResult:
        """
        Delete one object, or everything below a folder prefix.

        Folder deletes resolve the complete key set before the first delete
        call and then delete in batches of at most ``delete_batch_size``.
        An empty folder is a success with a count of 0.
        """
        try:
            if not is_folder:
                await self._delete_key(bucket, key)
                return DeleteResult(success=True, deleted_count=1)

            prefix = file_utils.folder_key(key)
            keys = await self._list_all_keys(bucket, prefix)
            if not keys:
                return DeleteResult(success=True, deleted_count=0)
            deleted = await self._delete_in_batches(bucket, keys)
            return DeleteResult(success=True, deleted_count=deleted)
        except BatchDeleteError as e:
            return DeleteResult(success=False, error=e.message, deleted_count=e.deleted_count)
        except Exception as e:
            message = self._error_message(e)
            logger.error(f"Delete failed: {message}", bucket=bucket, key=key, is_folder=is_folder)
            return DeleteResult(success=False, error=message)

    async def delete_objects(self, bucket: str, keys: list[str]) -> DeleteResult:
        """Delete many keys with the same batching as folder deletes."""
        if not keys:
            return DeleteResult(success=True, deleted_count=0)
        try:
            deleted = await self._delete_in_batches(bucket, list(keys))
            return DeleteResult(success=True, deleted_count=deleted)
        except BatchDeleteError as e:
            return DeleteResult(success=False, error=e.message, deleted_count=e.deleted_count)
        except Exception as e:
            message = self._error_message(e)
            logger.error(f"Bulk delete failed: {message}", bucket=bucket, count=len(keys))
            return DeleteResult(success=False, error=message)

    async def _delete_in_batches(self, bucket: str, keys: list[str]) -> int:
        deleted = 0
        for batch in file_utils.chunked(keys, self.delete_batch_size):
            failed = await self._delete_batch(bucket, batch)
            if failed:
                deleted += len(batch) - len(failed)
                first_key, first_message = next(iter(failed.items()))
                logger.error(
                    f"Bulk delete reported {len(failed)} failure(s)",
                    bucket=bucket,
                    first_key=first_key,
                    deleted=deleted,
                )
                raise BatchDeleteError(first_message, deleted_count=deleted, failed=failed)
            deleted += len(batch)
            logger.debug("Deleted batch", bucket=bucket, batch_size=len(batch), deleted=deleted, total=len(keys))
        return deleted

    async def rename_object(self, bucket: str, source_key: str, new_name: str) -> RenameResult:
        """
        Rename an object within its directory.

        Copy to the new key, then delete the source. Not atomic: if the
        delete fails the result reports failure with ``copied=True`` and both
        objects exist.
        """
        if not new_name or "/" in new_name:
            return RenameResult(success=False, error=f"Invalid name: {new_name!r}")
        new_key = file_utils.get_parent_path(source_key) + new_name
        success, error, copied = await self._relocate(bucket, source_key, new_key)
        return RenameResult(success=success, error=error, new_key=new_key if success else None, copied=copied)

    async def move_object(self, bucket: str, source_key: str, destination_prefix: str) -> MoveResult:
        """Move an object to ``destination_prefix + basename(source_key)`` in the same bucket."""
        new_key = file_utils.normalize_prefix(destination_prefix) + file_utils.get_basename(source_key)
        success, error, copied = await self._relocate(bucket, source_key, new_key)
        return MoveResult(success=success, error=error, new_key=new_key if success else None, copied=copied)

    async def move_objects(self, bucket: str, source_keys: list[str], destination_prefix: str) -> MoveResult:
        """Move keys one after another; the first failure stops the run and is returned."""
        for source_key in source_keys:
            result = await self.move_object(bucket, source_key, destination_prefix)
            if not result.success:
                return result
        return MoveResult(success=True)

    async def _relocate(self, bucket: str, source_key: str, new_key: str) -> tuple[bool, Optional[str], bool]:
        if new_key == source_key:
            return True, None, False
        try:
            await self._copy_object(bucket, source_key, new_key)
        except Exception as e:
            message = self._error_message(e)
            logger.error(f"Copy failed: {message}", bucket=bucket, source_key=source_key, new_key=new_key)
            return False, message, False
        try:
            await self._delete_key(bucket, source_key)
        except Exception as e:
            message = self._error_message(e)
            logger.error(
                f"Source delete failed after copy: {message}", bucket=bucket, source_key=source_key, new_key=new_key
            )
            return False, message, True
        return True, None, True

    # Folders

    async def create_folder(self, bucket: str, path: str) -> CreateFolderResult:
        """Make a folder visible in listings using the provider's folder strategy."""
        if not path.strip("/"):
            return CreateFolderResult(success=False, error="Folder path is required")
        try:
            await self.emulate_folder(bucket, path)
        except Exception as e:
            message = self._error_message(e)
            logger.error(f"Create folder failed: {message}", bucket=bucket, path=path)
            return CreateFolderResult(success=False, error=message)
        return CreateFolderResult(success=True)

    async def emulate_folder(self, bucket: str, path: str) -> None:
        """Create a zero-byte directory object at ``path/``."""
        await self._put_object(bucket, file_utils.folder_key(path), b"", FOLDER_CONTENT_TYPE)

    # URLs

    async def get_object_url(
        self, bucket: str, key: str, expires_in: int = DEFAULT_URL_EXPIRES_IN
    ) -> ObjectUrlResult:
        """
        Issue a time-limited signed URL.

        ``expires_at`` is computed locally as now + expires_in.

        Raises:
            StorageError: if signing fails
        """
        url = await self._guard(f"sign url for {key}", self._sign_url(bucket, key, expires_in))
        expires_at = (utc_now() + timedelta(seconds=expires_in)).isoformat()
        return ObjectUrlResult(url=url, expires_at=expires_at)

    # Provider primitives

    @abstractmethod
    async def _list_page(self, bucket: str, prefix: str, cursor: Optional[str], max_keys: int) -> ListPage:
        """Fetch one delimiter-grouped listing page."""
        pass

    @abstractmethod
    async def _list_all_keys(self, bucket: str, prefix: str) -> list[str]:
        """Every key below ``prefix``, following pagination to the end."""
        pass

    @abstractmethod
    async def _put_object(self, bucket: str, key: str, content: bytes, content_type: str) -> None:
        pass

    @abstractmethod
    async def _delete_key(self, bucket: str, key: str) -> None:
        pass

    @abstractmethod
    async def _delete_batch(self, bucket: str, keys: list[str]) -> dict[str, str]:
        """Delete up to ``delete_batch_size`` keys; return ``{key: message}`` for keys that failed."""
        pass

    @abstractmethod
    async def _copy_object(self, bucket: str, source_key: str, destination_key: str) -> None:
        pass

    @abstractmethod
    async def _sign_url(self, bucket: str, key: str, expires_in: int) -> str:
        pass

    # Helpers

    async def _run_sync(self, func, *args, **kwargs):
        """Run a blocking SDK call in the default executor."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, lambda: func(*args, **kwargs))

    async def _guard(self, operation: str, awaitable):
        """Await a provider call, converting native failures to StorageError."""
        try:
            return await awaitable
        except StorageError:
            raise
        except Exception as e:
            raise self._translate_error(e, operation) from e

    def _translate_error(self, error: Exception, operation: str) -> StorageError:
        """Convert a native SDK exception; adapters refine the code lookup."""
        message = self._error_message(error)
        logger.error(f"Storage error during {operation}: {message}", provider_type=self.provider_type)
        return StorageError(message, details={"operation": operation})

    def _error_message(self, error: Exception) -> str:
        """The provider's own message for an exception."""
        if isinstance(error, StorageError):
            return error.message
        return str(error) or error.__class__.__name__


__all__ = [
    "StorageAdapter",
    "ObjectEntry",
    "ListPage",
    "StorageError",
    "StorageNotFoundError",
    "StoragePermissionError",
    "StorageNetworkError",
    "UnsupportedProviderError",
    "BatchDeleteError",
    "classify_error",
    "DELETE_BATCH_SIZE",
    "DEFAULT_URL_EXPIRES_IN",
]
