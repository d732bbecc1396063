"""
Storage service facade used by the rest of the application.

Builds an adapter per call from the provider descriptor and adds what the
adapters do not do themselves: upload-history side effects, the provider's
last-operation timestamp, plain and custom-domain URLs, and downloads to
local files.

Side effects are best-effort. A failed history write is logged and never
undoes the storage mutation that already happened.
"""

from collections.abc import Callable
from pathlib import Path
from typing import Any, Optional
from urllib.parse import quote

import aiofiles
import aiohttp
import structlog

from omnibucket.factories.storage_factory import create_adapter
from omnibucket.models.provider import ProviderType
from omnibucket.models.storage_models import (
    BucketInfo,
    BucketResult,
    ConnectionResult,
    CreateBucketOptions,
    CreateFolderResult,
    DeleteResult,
    DownloadResult,
    FileMetadata,
    ListObjectsOptions,
    ListObjectsResult,
    MoveResult,
    ObjectUrlResult,
    ProviderStats,
    RenameResult,
    UploadResult,
)
from omnibucket.models.upload_models import BucketRecord, HistoryItemType
from omnibucket.storage.cloud_storage import DEFAULT_URL_EXPIRES_IN, StorageAdapter, UnsupportedProviderError
from omnibucket.storage.file_utils import file_utils
from omnibucket.storage.cos_storage import DEFAULT_COS_REGION
from omnibucket.storage.oss_storage import DEFAULT_OSS_REGION
from omnibucket.storage.s3_storage import DEFAULT_AWS_REGION, DEFAULT_MINIO_ENDPOINT, R2_FALLBACK_ENDPOINT
from omnibucket.utils.validators import StorageInputValidator

logger = structlog.get_logger(__name__)

DOWNLOAD_CHUNK_SIZE = 65536
DOWNLOAD_TIMEOUT = 300


def get_plain_object_url(provider: Any, bucket: str, key: str) -> str:
    """
    Build an unsigned public-style URL from provider metadata alone.

    No network I/O. Bucket and key are URL-encoded per path segment.

    Raises:
        UnsupportedProviderError: for an unknown provider type
    """
    encoded_key = file_utils.encode_key(key)
    encoded_bucket = quote(bucket, safe="")
    provider_type = provider.type
    endpoint = (getattr(provider, "endpoint", None) or "").rstrip("/")
    region = getattr(provider, "region", None)

    if provider_type == ProviderType.AWS_S3.value:
        if endpoint:
            return f"{endpoint}/{encoded_bucket}/{encoded_key}"
        return f"https://{encoded_bucket}.s3.{region or DEFAULT_AWS_REGION}.amazonaws.com/{encoded_key}"

    if provider_type == ProviderType.CLOUDFLARE_R2.value:
        if endpoint:
            return f"{endpoint}/{encoded_bucket}/{encoded_key}"
        if provider.account_id:
            return f"https://{provider.account_id}.r2.cloudflarestorage.com/{encoded_bucket}/{encoded_key}"
        return f"{R2_FALLBACK_ENDPOINT}/{encoded_bucket}/{encoded_key}"

    if provider_type == ProviderType.MINIO.value:
        return f"{endpoint or DEFAULT_MINIO_ENDPOINT}/{encoded_bucket}/{encoded_key}"

    if provider_type == ProviderType.ALIYUN_OSS.value:
        if endpoint:
            if bucket in endpoint:
                return f"{endpoint}/{encoded_key}"
            return f"{endpoint}/{encoded_bucket}/{encoded_key}"
        return f"https://{encoded_bucket}.{region or DEFAULT_OSS_REGION}.aliyuncs.com/{encoded_key}"

    if provider_type == ProviderType.TENCENT_COS.value:
        if endpoint:
            return f"{endpoint}/{encoded_key}"
        return f"https://{encoded_bucket}.cos.{region or DEFAULT_COS_REGION}.myqcloud.com/{encoded_key}"

    if provider_type == ProviderType.SUPABASE.value:
        project_url = provider.project_url.rstrip("/")
        return f"{project_url}/storage/v1/object/public/{encoded_bucket}/{encoded_key}"

    raise UnsupportedProviderError(f"Unsupported provider type: {provider_type}", error_code="UNSUPPORTED_PROVIDER")


class StorageService:
    """Provider-agnostic storage operations with application side effects."""

    def __init__(
        self,
        provider_repository: Any = None,
        bucket_repository: Any = None,
        history_repository: Any = None,
        adapter_factory: Callable[[Any], StorageAdapter] = create_adapter,
        signed_url_expires_in: int = DEFAULT_URL_EXPIRES_IN,
        download_chunk_size: int = DOWNLOAD_CHUNK_SIZE,
        download_timeout: int = DOWNLOAD_TIMEOUT,
    ):
        self.provider_repository = provider_repository
        self.bucket_repository = bucket_repository
        self.history_repository = history_repository
        self.adapter_factory = adapter_factory
        self.signed_url_expires_in = signed_url_expires_in
        self.download_chunk_size = download_chunk_size
        self.download_timeout = download_timeout

    def get_adapter(self, provider: Any) -> StorageAdapter:
        return self.adapter_factory(provider)

    # Side effects

    def _best_effort(self, description: str, func: Optional[Callable[..., Any]], *args: Any, **kwargs: Any) -> Any:
        """Run a metadata write; log and swallow its failure."""
        if func is None:
            return None
        try:
            return func(*args, **kwargs)
        except Exception as e:
            logger.warning(f"Failed to {description}: {e}")
            return None

    def _touch_provider(self, provider: Any) -> None:
        if self.provider_repository is not None:
            self._best_effort(
                "update provider last operation time",
                self.provider_repository.update_last_operation_at,
                provider.id,
            )

    def _history(self, method: str) -> Optional[Callable[..., Any]]:
        if self.history_repository is None:
            return None
        return getattr(self.history_repository, method)

    # Connection and buckets

    async def test_connection(self, provider: Any) -> ConnectionResult:
        return await self.get_adapter(provider).test_connection()

    async def list_buckets(self, provider: Any) -> list[BucketInfo]:
        return await self.get_adapter(provider).list_buckets()

    async def create_bucket(
        self, provider: Any, name: str, options: CreateBucketOptions | None = None
    ) -> BucketResult:
        """Create a bucket; provider failures come back in the result."""
        name = StorageInputValidator.validate_bucket_name(name)
        try:
            await self.get_adapter(provider).create_bucket(name, options)
        except Exception as e:
            logger.error(f"Failed to create bucket: {e}", provider_id=provider.id, bucket=name)
            return BucketResult(success=False, error=str(e))
        self._touch_provider(provider)
        return BucketResult(success=True)

    async def delete_bucket(self, provider: Any, name: str) -> BucketResult:
        """Delete a bucket and its local settings row."""
        try:
            await self.get_adapter(provider).delete_bucket(name)
        except Exception as e:
            logger.error(f"Failed to delete bucket: {e}", provider_id=provider.id, bucket=name)
            return BucketResult(success=False, error=str(e))
        if self.bucket_repository is not None:
            self._best_effort("delete bucket settings", self.bucket_repository.delete, provider.id, name)
        self._touch_provider(provider)
        return BucketResult(success=True)

    async def get_provider_stats(self, provider: Any) -> ProviderStats:
        return ProviderStats(buckets=await self.list_buckets(provider))

    # Objects

    async def list_objects(
        self, provider: Any, bucket: str, options: ListObjectsOptions | None = None
    ) -> ListObjectsResult:
        return await self.get_adapter(provider).list_objects(bucket, options)

    async def upload_file(
        self,
        provider: Any,
        bucket: str,
        key: str,
        content: bytes,
        metadata: FileMetadata | None = None,
    ) -> UploadResult:
        result = await self.get_adapter(provider).upload_file(bucket, key, content, metadata)
        if result.success:
            self._touch_provider(provider)
        return result

    async def delete_object(self, provider: Any, bucket: str, key: str, is_folder: bool = False) -> DeleteResult:
        """Delete an object or folder, then drop the matching history rows."""
        result = await self.get_adapter(provider).delete_object(bucket, key, is_folder)
        if result.success:
            if is_folder:
                self._best_effort(
                    "delete folder history",
                    self._history("delete_by_prefix"),
                    provider.id,
                    bucket,
                    file_utils.folder_key(key),
                )
            else:
                self._best_effort("delete history record", self._history("delete_by_key"), provider.id, bucket, key)
            self._touch_provider(provider)
        return result

    async def delete_objects(self, provider: Any, bucket: str, keys: list[str]) -> DeleteResult:
        result = await self.get_adapter(provider).delete_objects(bucket, keys)
        if result.success:
            self._best_effort("delete history records", self._history("delete_by_keys"), provider.id, bucket, keys)
            self._touch_provider(provider)
        return result

    async def rename_object(self, provider: Any, bucket: str, source_key: str, new_name: str) -> RenameResult:
        result = await self.get_adapter(provider).rename_object(bucket, source_key, new_name)
        if result.success:
            self._touch_provider(provider)
        return result

    async def move_object(self, provider: Any, bucket: str, source_key: str, destination_prefix: str) -> MoveResult:
        result = await self.get_adapter(provider).move_object(bucket, source_key, destination_prefix)
        if result.success:
            self._touch_provider(provider)
        return result

    async def move_objects(
        self, provider: Any, bucket: str, source_keys: list[str], destination_prefix: str
    ) -> MoveResult:
        result = await self.get_adapter(provider).move_objects(bucket, source_keys, destination_prefix)
        if result.success:
            self._touch_provider(provider)
        return result

    async def create_folder(self, provider: Any, bucket: str, path: str) -> CreateFolderResult:
        """Create a folder and record it in the upload history."""
        result = await self.get_adapter(provider).create_folder(bucket, path)
        if result.success:
            folder_key = file_utils.folder_key(path)
            self._best_effort(
                "record folder creation",
                self._history("record_upload"),
                provider_id=provider.id,
                bucket=bucket,
                key=folder_key,
                name=file_utils.get_name_from_key(folder_key),
                item_type=HistoryItemType.FOLDER,
                size=0,
            )
            self._touch_provider(provider)
        return result

    # URLs

    async def get_object_url(
        self, provider: Any, bucket: str, key: str, expires_in: Optional[int] = None
    ) -> ObjectUrlResult:
        expires_in = StorageInputValidator.validate_expires_in(expires_in or self.signed_url_expires_in)
        return await self.get_adapter(provider).get_object_url(bucket, key, expires_in)

    def get_plain_object_url(self, provider: Any, bucket: str, key: str) -> str:
        return get_plain_object_url(provider, bucket, key)

    def get_bucket_domain(self, provider_id: str, bucket: str) -> Optional[str]:
        if self.bucket_repository is None:
            return None
        record = self.bucket_repository.find_by_provider_and_name(provider_id, bucket)
        return record.custom_domain if record else None

    def update_bucket_domain(self, provider_id: str, bucket: str, custom_domain: Optional[str]) -> BucketRecord:
        """Set or clear (empty value) a bucket's custom domain."""
        domain = (custom_domain or "").strip().rstrip("/") or None
        return self.bucket_repository.create_or_update(provider_id, bucket, domain)

    def get_public_object_url(self, provider: Any, bucket: str, key: str) -> str:
        """Custom-domain URL when one is configured, else the plain URL."""
        domain = self.get_bucket_domain(provider.id, bucket)
        if domain:
            if "://" not in domain:
                domain = f"https://{domain}"
            return f"{domain}/{file_utils.encode_key(key)}"
        return get_plain_object_url(provider, bucket, key)

    # Downloads

    async def download_to_file(self, provider: Any, bucket: str, key: str, file_path: str | Path) -> DownloadResult:
        """
        Fetch an object through a signed URL and stream it to ``file_path``.

        The body is written to a ``.part`` file next to the target and moved into
        place once complete, so a failed transfer never leaves a truncated file.
        """
        target = Path(file_path)
        partial = target.with_name(f"{target.name}.part")
        try:
            signed = await self.get_object_url(provider, bucket, key, DEFAULT_URL_EXPIRES_IN)
            target.parent.mkdir(parents=True, exist_ok=True)

            timeout = aiohttp.ClientTimeout(total=self.download_timeout)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(signed.url) as response:
                    if response.status != 200:
                        message = f"Download failed with HTTP {response.status}"
                        logger.error(message, bucket=bucket, key=key)
                        return DownloadResult(success=False, error=message)

                    downloaded_bytes = 0
                    async with aiofiles.open(partial, "wb") as f:
                        async for chunk in response.content.iter_chunked(self.download_chunk_size):
                            await f.write(chunk)
                            downloaded_bytes += len(chunk)
            partial.replace(target)

            logger.info(f"Downloaded {downloaded_bytes} bytes", bucket=bucket, key=key, file_path=str(target))
            return DownloadResult(success=True, file_path=str(target))
        except Exception as e:
            partial.unlink(missing_ok=True)
            logger.error(f"Error downloading object: {e}", bucket=bucket, key=key)
            return DownloadResult(success=False, error=str(e))
