"""
Aliyun OSS storage adapter built on the oss2 SDK.

oss2 is blocking, so every call runs in the default executor. Bucket
handles are created per call; they hold no connection state of their own.
"""

from collections.abc import Callable
from typing import Any, Optional

import oss2
import structlog
from oss2.exceptions import OssError, RequestError

from ..models.storage_models import BucketInfo, CreateBucketOptions
from .cloud_storage import (
    ListPage,
    ObjectEntry,
    StorageAdapter,
    StorageError,
    StorageNetworkError,
    classify_error,
)
from .file_utils import to_iso

logger = structlog.get_logger(__name__)

DEFAULT_OSS_REGION = "oss-cn-hangzhou"
OSS_LIST_LIMIT = 1000


def oss_endpoint(region: Optional[str], endpoint: Optional[str] = None) -> str:
    """Service endpoint for a region, or the configured endpoint with a scheme."""
    if endpoint:
        return endpoint if "://" in endpoint else f"https://{endpoint}"
    return f"https://{region or DEFAULT_OSS_REGION}.aliyuncs.com"


class OssStorage(StorageAdapter):
    """Adapter for the ``aliyun-oss`` provider kind."""

    provider_type = "aliyun-oss"

    def __init__(
        self,
        provider: Any,
        service: Any | None = None,
        bucket_factory: Callable[[str], Any] | None = None,
    ):
        """
        Initialize the adapter.

        Args:
            provider: Aliyun OSS provider descriptor
            service: Replacement for ``oss2.Service`` (bucket listing)
            bucket_factory: Replacement for building ``oss2.Bucket`` handles
        """
        super().__init__(provider)
        self.endpoint = oss_endpoint(provider.region, provider.endpoint)
        self._auth = oss2.Auth(provider.access_key_id, provider.secret_access_key)
        self._service = service or oss2.Service(self._auth, self.endpoint)
        self._bucket_factory = bucket_factory

    def _bucket(self, name: str, endpoint: Optional[str] = None) -> Any:
        if self._bucket_factory is not None:
            return self._bucket_factory(name)
        return oss2.Bucket(self._auth, endpoint or self.endpoint, name)

    # Buckets

    async def list_buckets(self) -> list[BucketInfo]:
        buckets: list[BucketInfo] = []
        marker = ""
        while True:
            result = await self._guard(
                "list buckets", self._run_sync(self._service.list_buckets, marker=marker, max_keys=OSS_LIST_LIMIT)
            )
            buckets.extend(
                BucketInfo(name=bucket.name, creation_date=to_iso(bucket.creation_date)) for bucket in result.buckets
            )
            if not result.is_truncated:
                return buckets
            marker = result.next_marker

    async def create_bucket(self, name: str, options: CreateBucketOptions | None = None) -> None:
        region = options.region if options else None
        endpoint = oss_endpoint(region) if region else None
        bucket = self._bucket(name, endpoint)
        await self._guard(f"create bucket {name}", self._run_sync(bucket.create_bucket, oss2.BUCKET_ACL_PRIVATE))
        logger.info("Bucket created", bucket=name, provider_type=self.provider_type)

    async def delete_bucket(self, name: str) -> None:
        bucket = self._bucket(name)
        await self._guard(f"delete bucket {name}", self._run_sync(bucket.delete_bucket))
        logger.info("Bucket deleted", bucket=name, provider_type=self.provider_type)

    # Primitives

    async def _list_page(self, bucket: str, prefix: str, cursor: Optional[str], max_keys: int) -> ListPage:
        result = await self._run_sync(
            self._bucket(bucket).list_objects,
            prefix=prefix,
            delimiter="/",
            marker=cursor or "",
            max_keys=max_keys,
        )
        return ListPage(
            prefixes=list(result.prefix_list),
            objects=[
                ObjectEntry(key=obj.key, size=obj.size, modified=obj.last_modified) for obj in result.object_list
            ],
            next_cursor=result.next_marker or None,
            truncated=bool(result.is_truncated),
        )

    async def _list_all_keys(self, bucket: str, prefix: str) -> list[str]:
        handle = self._bucket(bucket)
        keys: list[str] = []
        marker = ""
        while True:
            result = await self._run_sync(handle.list_objects, prefix=prefix, marker=marker, max_keys=OSS_LIST_LIMIT)
            keys.extend(obj.key for obj in result.object_list)
            if not result.is_truncated:
                return keys
            marker = result.next_marker

    async def _put_object(self, bucket: str, key: str, content: bytes, content_type: str) -> None:
        await self._run_sync(self._bucket(bucket).put_object, key, content, headers={"Content-Type": content_type})

    async def _delete_key(self, bucket: str, key: str) -> None:
        await self._run_sync(self._bucket(bucket).delete_object, key)

    async def _delete_batch(self, bucket: str, keys: list[str]) -> dict[str, str]:
        result = await self._run_sync(self._bucket(bucket).batch_delete_objects, keys)
        # OSS lists missing keys as deleted; anything unlisted was not removed
        confirmed = set(result.deleted_keys)
        return {key: "Object was not deleted" for key in keys if key not in confirmed}

    async def _copy_object(self, bucket: str, source_key: str, destination_key: str) -> None:
        await self._run_sync(self._bucket(bucket).copy_object, bucket, source_key, destination_key)

    async def _sign_url(self, bucket: str, key: str, expires_in: int) -> str:
        return await self._run_sync(self._bucket(bucket).sign_url, "GET", key, expires_in)

    # Errors

    def _translate_error(self, error: Exception, operation: str) -> StorageError:
        message = self._error_message(error)
        logger.error(f"OSS error during {operation}: {message}", provider_type=self.provider_type)
        details = {"operation": operation}
        if isinstance(error, RequestError):
            return StorageNetworkError(message, error_code="RequestError", details=details)
        if isinstance(error, OssError):
            details["request_id"] = error.request_id
            return classify_error(message, error.code, error.status, details)
        return StorageError(message, details=details)

    def _error_message(self, error: Exception) -> str:
        if isinstance(error, OssError):
            return error.message or error.code or str(error)
        return super()._error_message(error)


__all__ = ["OssStorage", "oss_endpoint"]
