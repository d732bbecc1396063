"""
Tencent COS storage adapter built on cos-python-sdk-v5.

The COS client is bound to one region; bucket creation in another region
builds a second client for that call.
"""

from typing import Any, Optional

import structlog
from qcloud_cos import CosConfig, CosS3Client
from qcloud_cos.cos_exception import CosClientError, CosServiceError

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

DEFAULT_COS_REGION = "ap-guangzhou"
COS_LIST_LIMIT = 1000


def _as_list(value: Any) -> list:
    """COS responses give a dict for single-element lists and None for empty ones."""
    if value is None:
        return []
    if isinstance(value, dict):
        return [value]
    return list(value)


def _is_true(value: Any) -> bool:
    return str(value).lower() == "true"


class CosStorage(StorageAdapter):
    """Adapter for the ``tencent-cos`` provider kind."""

    provider_type = "tencent-cos"

    def __init__(self, provider: Any, client: Any | None = None):
        """Initialize the adapter; ``client`` replaces the CosS3Client when given."""
        super().__init__(provider)
        self.region = provider.region or DEFAULT_COS_REGION
        self._client = client or self._create_client(self.region)

    def _create_client(self, region: str) -> Any:
        config_kwargs: dict[str, Any] = {
            "Region": region,
            "SecretId": self.provider.access_key_id,
            "SecretKey": self.provider.secret_access_key,
            "Scheme": "https",
        }
        if self.provider.endpoint:
            config_kwargs["ServiceDomain"] = self.provider.endpoint
        return CosS3Client(CosConfig(**config_kwargs))

    # Buckets

    async def list_buckets(self) -> list[BucketInfo]:
        response = await self._guard("list buckets", self._run_sync(self._client.list_buckets))
        buckets = _as_list((response.get("Buckets") or {}).get("Bucket"))
        return [
            BucketInfo(name=bucket["Name"], creation_date=to_iso(bucket.get("CreationDate"))) for bucket in buckets
        ]

    async def create_bucket(self, name: str, options: CreateBucketOptions | None = None) -> None:
        region = (options.region if options else None) or self.region
        client = self._client if region == self.region else self._create_client(region)
        await self._guard(f"create bucket {name}", self._run_sync(client.create_bucket, Bucket=name))
        logger.info("Bucket created", bucket=name, region=region)

    async def delete_bucket(self, name: str) -> None:
        await self._guard(f"delete bucket {name}", self._run_sync(self._client.delete_bucket, Bucket=name))
        logger.info("Bucket deleted", bucket=name)

    # Primitives

    async def _list_page(self, bucket: str, prefix: str, cursor: Optional[str], max_keys: int) -> ListPage:
        response = await self._run_sync(
            self._client.list_objects,
            Bucket=bucket,
            Prefix=prefix,
            Delimiter="/",
            Marker=cursor or "",
            MaxKeys=max_keys,
        )
        return ListPage(
            prefixes=[entry["Prefix"] for entry in _as_list(response.get("CommonPrefixes"))],
            objects=[
                ObjectEntry(key=obj["Key"], size=int(obj.get("Size", 0)), modified=obj.get("LastModified"))
                for obj in _as_list(response.get("Contents"))
            ],
            next_cursor=response.get("NextMarker") or None,
            truncated=_is_true(response.get("IsTruncated")),
        )

    async def _list_all_keys(self, bucket: str, prefix: str) -> list[str]:
        keys: list[str] = []
        marker = ""
        while True:
            response = await self._run_sync(
                self._client.list_objects, Bucket=bucket, Prefix=prefix, Marker=marker, MaxKeys=COS_LIST_LIMIT
            )
            contents = _as_list(response.get("Contents"))
            keys.extend(obj["Key"] for obj in contents)
            if not _is_true(response.get("IsTruncated")):
                return keys
            marker = response.get("NextMarker") or (contents[-1]["Key"] if contents else "")
            if not marker:
                return keys

    async def _put_object(self, bucket: str, key: str, content: bytes, content_type: str) -> None:
        await self._run_sync(self._client.put_object, Bucket=bucket, Body=content, Key=key, ContentType=content_type)

    async def _delete_key(self, bucket: str, key: str) -> None:
        await self._run_sync(self._client.delete_object, Bucket=bucket, Key=key)

    async def _delete_batch(self, bucket: str, keys: list[str]) -> dict[str, str]:
        response = await self._run_sync(
            self._client.delete_objects,
            Bucket=bucket,
            Delete={"Object": [{"Key": key} for key in keys], "Quiet": "true"},
        )
        failed: dict[str, str] = {}
        for error in _as_list(response.get("Error")):
            if error.get("Code") == "NoSuchKey":
                continue
            failed[error["Key"]] = error.get("Message") or error.get("Code", "Delete failed")
        return failed

    async def _copy_object(self, bucket: str, source_key: str, destination_key: str) -> None:
        # The SDK turns this into {bucket}.cos.{region}.myqcloud.com/{quoted key}
        copy_source = {"Bucket": bucket, "Key": source_key, "Region": self.region}
        await self._run_sync(self._client.copy_object, Bucket=bucket, Key=destination_key, CopySource=copy_source)

    async def _sign_url(self, bucket: str, key: str, expires_in: int) -> str:
        return await self._run_sync(
            self._client.get_presigned_url, Bucket=bucket, Key=key, Method="GET", Expired=expires_in
        )

    # Errors

    def _translate_error(self, error: Exception, operation: str) -> StorageError:
        message = self._error_message(error)
        logger.error(f"COS error during {operation}: {message}", region=self.region)
        details = {"operation": operation}
        if isinstance(error, CosServiceError):
            details["request_id"] = error.get_request_id()
            return classify_error(message, error.get_error_code(), error.get_status_code(), details)
        if isinstance(error, CosClientError):
            return StorageNetworkError(message, error_code="CosClientError", details=details)
        return StorageError(message, details=details)

    def _error_message(self, error: Exception) -> str:
        if isinstance(error, CosServiceError):
            return error.get_error_msg() or error.get_error_code() or str(error)
        return super()._error_message(error)


__all__ = ["CosStorage"]
