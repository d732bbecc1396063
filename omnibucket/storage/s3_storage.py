"""
S3-compatible storage adapter.

Serves the ``aws-s3``, ``cloudflare-r2`` and ``minio`` provider kinds
through boto3. The variants only differ in how the endpoint, region and
addressing style are resolved.
"""

from typing import Any, Optional

import boto3
import structlog
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from ..models.provider import S3_COMPATIBLE_TYPES, ProviderType, S3CompatibleProvider
from ..models.storage_models import BucketInfo, CreateBucketOptions
from .cloud_storage import (
    ListPage,
    ObjectEntry,
    StorageAdapter,
    StorageError,
    StorageNetworkError,
    StoragePermissionError,
    UnsupportedProviderError,
    classify_error,
)
from .file_utils import to_iso

logger = structlog.get_logger(__name__)

DEFAULT_AWS_REGION = "us-east-1"
DEFAULT_MINIO_ENDPOINT = "http://localhost:9000"
R2_ENDPOINT_TEMPLATE = "https://{account_id}.r2.cloudflarestorage.com"
R2_FALLBACK_ENDPOINT = "https://r2.cloudflarestorage.com"


def resolve_s3_endpoint(provider: S3CompatibleProvider) -> tuple[Optional[str], str, bool]:
    """
    Work out (endpoint_url, region, path_style) for an S3-family provider.

    AWS uses its regional endpoints unless one is given. R2 derives its
    endpoint from the account id and always signs for region ``auto``.
    MinIO defaults to a local server with path-style addressing.
    """
    if provider.type == ProviderType.CLOUDFLARE_R2.value:
        endpoint = provider.endpoint
        if not endpoint:
            endpoint = (
                R2_ENDPOINT_TEMPLATE.format(account_id=provider.account_id)
                if provider.account_id
                else R2_FALLBACK_ENDPOINT
            )
        return endpoint, provider.region or "auto", True
    if provider.type == ProviderType.MINIO.value:
        return provider.endpoint or DEFAULT_MINIO_ENDPOINT, provider.region or DEFAULT_AWS_REGION, True
    return provider.endpoint or None, provider.region or DEFAULT_AWS_REGION, bool(provider.endpoint)


class S3Storage(StorageAdapter):
    """
    Adapter for any S3 API implementation.

    Listing uses ``list_objects_v2`` with ``Delimiter='/'``; the continuation
    token is passed through as the opaque cursor.
    """

    provider_type = "s3"

    def __init__(self, provider: S3CompatibleProvider, client: Any | None = None):
        """Initialize the adapter; ``client`` replaces the boto3 client when given."""
        if provider.type not in S3_COMPATIBLE_TYPES:
            raise UnsupportedProviderError(
                f"{provider.type} is not an S3-compatible provider", error_code="UNSUPPORTED_PROVIDER"
            )
        super().__init__(provider)
        self.provider_type = provider.type
        self.endpoint_url, self.region, self.path_style = resolve_s3_endpoint(provider)
        self._s3_client = client or self._create_client()

    def _create_client(self) -> Any:
        session = boto3.Session(
            aws_access_key_id=self.provider.access_key_id,
            aws_secret_access_key=self.provider.secret_access_key,
            region_name=self.region,
        )
        boto_config = Config(
            signature_version="s3v4",
            retries={"max_attempts": 3, "mode": "adaptive"},
            s3={"addressing_style": "path" if self.path_style else "auto"},
        )
        client_kwargs: dict[str, Any] = {"config": boto_config, "region_name": self.region}
        if self.endpoint_url:
            client_kwargs["endpoint_url"] = self.endpoint_url
        return session.client("s3", **client_kwargs)

    # Buckets

    async def list_buckets(self) -> list[BucketInfo]:
        response = await self._guard("list buckets", self._run_sync(self._s3_client.list_buckets))
        return [
            BucketInfo(name=bucket["Name"], creation_date=to_iso(bucket.get("CreationDate")))
            for bucket in response.get("Buckets", [])
        ]

    async def create_bucket(self, name: str, options: CreateBucketOptions | None = None) -> None:
        params: dict[str, Any] = {"Bucket": name}
        region = None
        if options:
            region = options.location_constraint or options.region
        region = region or self.provider.region
        # us-east-1 rejects an explicit location constraint
        if self.provider.type == ProviderType.AWS_S3.value and region and region != DEFAULT_AWS_REGION:
            params["CreateBucketConfiguration"] = {"LocationConstraint": region}
        await self._guard(f"create bucket {name}", self._run_sync(self._s3_client.create_bucket, **params))
        logger.info("Bucket created", bucket=name, provider_type=self.provider_type)

    async def delete_bucket(self, name: str) -> None:
        await self._guard(f"delete bucket {name}", self._run_sync(self._s3_client.delete_bucket, Bucket=name))
        logger.info("Bucket deleted", bucket=name, provider_type=self.provider_type)

    # Primitives

    async def _list_page(self, bucket: str, prefix: str, cursor: Optional[str], max_keys: int) -> ListPage:
        params: dict[str, Any] = {"Bucket": bucket, "Prefix": prefix, "Delimiter": "/", "MaxKeys": max_keys}
        if cursor:
            params["ContinuationToken"] = cursor
        response = await self._run_sync(self._s3_client.list_objects_v2, **params)
        return ListPage(
            prefixes=[entry["Prefix"] for entry in response.get("CommonPrefixes", [])],
            objects=[
                ObjectEntry(key=obj["Key"], size=obj.get("Size"), modified=obj.get("LastModified"))
                for obj in response.get("Contents", [])
            ],
            next_cursor=response.get("NextContinuationToken"),
            truncated=bool(response.get("IsTruncated")),
        )

    async def _list_all_keys(self, bucket: str, prefix: str) -> list[str]:
        keys: list[str] = []
        token: Optional[str] = None
        while True:
            params: dict[str, Any] = {"Bucket": bucket, "Prefix": prefix}
            if token:
                params["ContinuationToken"] = token
            response = await self._run_sync(self._s3_client.list_objects_v2, **params)
            keys.extend(obj["Key"] for obj in response.get("Contents", []))
            if not response.get("IsTruncated"):
                return keys
            token = response.get("NextContinuationToken")

    async def _put_object(self, bucket: str, key: str, content: bytes, content_type: str) -> None:
        await self._run_sync(
            self._s3_client.put_object, Bucket=bucket, Key=key, Body=content, ContentType=content_type
        )

    async def _delete_key(self, bucket: str, key: str) -> None:
        await self._run_sync(self._s3_client.delete_object, Bucket=bucket, Key=key)

    async def _delete_batch(self, bucket: str, keys: list[str]) -> dict[str, str]:
        response = await self._run_sync(
            self._s3_client.delete_objects,
            Bucket=bucket,
            Delete={"Objects": [{"Key": key} for key in keys], "Quiet": True},
        )
        failed: dict[str, str] = {}
        for error in response.get("Errors", []):
            # Deleting a missing key is not a failure
            if error.get("Code") == "NoSuchKey":
                continue
            failed[error["Key"]] = error.get("Message") or error.get("Code", "Delete failed")
        return failed

    async def _copy_object(self, bucket: str, source_key: str, destination_key: str) -> None:
        await self._run_sync(
            self._s3_client.copy_object,
            Bucket=bucket,
            Key=destination_key,
            CopySource={"Bucket": bucket, "Key": source_key},
        )

    async def _sign_url(self, bucket: str, key: str, expires_in: int) -> str:
        return await self._run_sync(
            self._s3_client.generate_presigned_url,
            ClientMethod="get_object",
            Params={"Bucket": bucket, "Key": key},
            ExpiresIn=expires_in,
        )

    # Errors

    def _translate_error(self, error: Exception, operation: str) -> StorageError:
        message = self._error_message(error)
        logger.error(f"S3 error during {operation}: {message}", provider_type=self.provider_type)
        details = {"operation": operation}
        if isinstance(error, ClientError):
            error_code = error.response.get("Error", {}).get("Code", "UNKNOWN")
            status_code = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
            return classify_error(message, error_code, status_code, details)
        if isinstance(error, NoCredentialsError):
            return StoragePermissionError(message, error_code="NO_CREDENTIALS", details=details)
        if isinstance(error, BotoCoreError):
            return StorageNetworkError(message, error_code=error.__class__.__name__, details=details)
        return StorageError(message, details=details)

    def _error_message(self, error: Exception) -> str:
        if isinstance(error, ClientError):
            return error.response.get("Error", {}).get("Message") or str(error)
        return super()._error_message(error)


__all__ = ["S3Storage", "resolve_s3_endpoint"]
