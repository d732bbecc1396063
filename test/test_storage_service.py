from pathlib import Path
from types import SimpleNamespace
from typing import Any, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import InMemoryAdapter

from omnibucket.core.metadata_store import BucketRepository, ProviderRepository, UploadHistoryRepository
from omnibucket.models.provider import (
    AliyunOssProvider,
    AwsS3Provider,
    CloudflareR2Provider,
    MinioProvider,
    SupabaseProvider,
    TencentCosProvider,
)
from omnibucket.models.upload_models import HistoryItemType
from omnibucket.services.storage_service import StorageService, get_plain_object_url
from omnibucket.storage.cloud_storage import UnsupportedProviderError
from omnibucket.utils.validators import ValidationException


class TestPlainObjectUrl:
    """Unsigned URLs built from descriptor metadata only."""

    def test_aws_virtual_host(self) -> None:
        provider = AwsS3Provider(name="a", access_key_id="k", secret_access_key="s", region="us-west-2")
        assert get_plain_object_url(provider, "b", "x/y.png") == "https://b.s3.us-west-2.amazonaws.com/x/y.png"

    def test_aws_default_region_and_endpoint(self) -> None:
        provider = AwsS3Provider(name="a", access_key_id="k", secret_access_key="s")
        assert get_plain_object_url(provider, "b", "k") == "https://b.s3.us-east-1.amazonaws.com/k"
        provider = AwsS3Provider(name="a", access_key_id="k", secret_access_key="s", endpoint="https://s3.local/")
        assert get_plain_object_url(provider, "b", "k") == "https://s3.local/b/k"

    def test_r2_with_account_id(self, r2_provider: CloudflareR2Provider) -> None:
        assert get_plain_object_url(r2_provider, "b", "k") == "https://acc123.r2.cloudflarestorage.com/b/k"

    def test_r2_without_endpoint_or_account(self) -> None:
        provider = CloudflareR2Provider(name="r2", access_key_id="k", secret_access_key="s")
        assert get_plain_object_url(provider, "b", "k") == "https://r2.cloudflarestorage.com/b/k"

    def test_minio(self, minio_provider: MinioProvider) -> None:
        assert get_plain_object_url(minio_provider, "b", "k") == "http://minio.local:9000/b/k"
        provider = MinioProvider(name="m", access_key_id="k", secret_access_key="s")
        assert get_plain_object_url(provider, "b", "k") == "http://localhost:9000/b/k"

    def test_oss(self, oss_provider: AliyunOssProvider) -> None:
        assert get_plain_object_url(oss_provider, "b", "k") == "https://b.oss-cn-shanghai.aliyuncs.com/k"

    def test_cos(self, cos_provider: TencentCosProvider) -> None:
        assert get_plain_object_url(cos_provider, "b", "k") == "https://b.cos.ap-shanghai.myqcloud.com/k"

    def test_supabase(self, supabase_provider: SupabaseProvider) -> None:
        assert (
            get_plain_object_url(supabase_provider, "b", "k")
            == "https://proj.supabase.co/storage/v1/object/public/b/k"
        )

    def test_key_is_encoded_per_segment(self, cos_provider: TencentCosProvider) -> None:
        url = get_plain_object_url(cos_provider, "b", "my photos/a b#1.png")
        assert url.endswith("/my%20photos/a%20b%231.png")

    def test_unknown_type_raises(self) -> None:
        with pytest.raises(UnsupportedProviderError):
            get_plain_object_url(SimpleNamespace(type="unknown"), "b", "k")


@pytest.fixture
def adapter() -> InMemoryAdapter:
    return InMemoryAdapter(objects={"bucket": {}})


@pytest.fixture
def service(
    adapter: InMemoryAdapter,
    provider_repository: ProviderRepository,
    bucket_repository: BucketRepository,
    history_repository: UploadHistoryRepository,
) -> StorageService:
    return StorageService(
        provider_repository=provider_repository,
        bucket_repository=bucket_repository,
        history_repository=history_repository,
        adapter_factory=lambda provider: adapter,
    )


@pytest.fixture
def stored_provider(provider_repository: ProviderRepository) -> AwsS3Provider:
    return provider_repository.create(
        {"type": "aws-s3", "name": "aws", "access_key_id": "k", "secret_access_key": "s"}
    )


class TestStorageServiceSideEffects:
    @pytest.mark.asyncio
    async def test_upload_touches_provider(
        self, service: StorageService, stored_provider: AwsS3Provider, provider_repository: ProviderRepository
    ) -> None:
        result = await service.upload_file(stored_provider, "bucket", "a.txt", b"x")
        assert result.success
        assert provider_repository.find_by_id(stored_provider.id).last_operation_at is not None

    @pytest.mark.asyncio
    async def test_create_folder_records_history(
        self, service: StorageService, stored_provider: AwsS3Provider, history_repository: UploadHistoryRepository
    ) -> None:
        result = await service.create_folder(stored_provider, "bucket", "photos/2024")
        assert result.success
        page = history_repository.list()
        assert page.total == 1
        assert page.items[0].key == "photos/2024/"
        assert page.items[0].type == HistoryItemType.FOLDER

    @pytest.mark.asyncio
    async def test_folder_delete_removes_nested_history(
        self,
        service: StorageService,
        adapter: InMemoryAdapter,
        stored_provider: AwsS3Provider,
        history_repository: UploadHistoryRepository,
    ) -> None:
        for key in ("docs/a.txt", "docs/sub/b.txt", "other.txt"):
            adapter.objects["bucket"][key] = b"x"
            history_repository.record_upload(stored_provider.id, "bucket", key, key.rsplit("/", 1)[-1])

        result = await service.delete_object(stored_provider, "bucket", "docs", is_folder=True)

        assert result.deleted_count == 2
        assert [record.key for record in history_repository.list().items] == ["other.txt"]

    @pytest.mark.asyncio
    async def test_history_failure_does_not_fail_delete(
        self, adapter: InMemoryAdapter, stored_provider: AwsS3Provider
    ) -> None:
        history = MagicMock()
        history.delete_by_key.side_effect = RuntimeError("disk full")
        service = StorageService(history_repository=history, adapter_factory=lambda provider: adapter)
        adapter.objects["bucket"]["a.txt"] = b"x"

        result = await service.delete_object(stored_provider, "bucket", "a.txt")

        assert result.success
        history.delete_by_key.assert_called_once_with(stored_provider.id, "bucket", "a.txt")

    @pytest.mark.asyncio
    async def test_failed_upload_does_not_touch_provider(
        self, service: StorageService, adapter: InMemoryAdapter, stored_provider: AwsS3Provider,
        provider_repository: ProviderRepository,
    ) -> None:
        adapter.put_error = RuntimeError("Access Denied")
        result = await service.upload_file(stored_provider, "bucket", "a.txt", b"x")
        assert result.error == "Access Denied"
        assert provider_repository.find_by_id(stored_provider.id).last_operation_at is None

    @pytest.mark.asyncio
    async def test_delete_bucket_removes_bucket_record(
        self, service: StorageService, stored_provider: AwsS3Provider, bucket_repository: BucketRepository
    ) -> None:
        bucket_repository.create_or_update(stored_provider.id, "bucket", "cdn.example.com")
        result = await service.delete_bucket(stored_provider, "bucket")
        assert result.success
        assert bucket_repository.find_by_provider_and_name(stored_provider.id, "bucket") is None

    @pytest.mark.asyncio
    async def test_provider_stats_counts_buckets(
        self, service: StorageService, adapter: InMemoryAdapter, stored_provider: AwsS3Provider, mocker: Any
    ) -> None:
        buckets = [SimpleNamespace(name="a"), SimpleNamespace(name="b")]
        mocker.patch.object(adapter, "list_buckets", AsyncMock(return_value=buckets))
        stats = await service.get_provider_stats(stored_provider)
        assert stats.bucket_count == 2

    @pytest.mark.asyncio
    async def test_create_bucket_validates_name(self, service: StorageService, stored_provider: AwsS3Provider) -> None:
        with pytest.raises(ValidationException):
            await service.create_bucket(stored_provider, "")

    @pytest.mark.asyncio
    async def test_signed_url_uses_default_expiry(self, service: StorageService, stored_provider: AwsS3Provider) -> None:
        result = await service.get_object_url(stored_provider, "bucket", "a.txt")
        assert result.url.endswith("expires=3600")

    @pytest.mark.asyncio
    async def test_signed_url_rejects_long_expiry(self, service: StorageService, stored_provider: AwsS3Provider) -> None:
        with pytest.raises(ValidationException):
            await service.get_object_url(stored_provider, "bucket", "a.txt", 8 * 24 * 3600)


class TestBucketDomains:
    def test_public_url_prefers_custom_domain(self, service: StorageService, stored_provider: AwsS3Provider) -> None:
        service.update_bucket_domain(stored_provider.id, "bucket", "cdn.example.com/")
        assert service.get_public_object_url(stored_provider, "bucket", "a b.png") == "https://cdn.example.com/a%20b.png"

    def test_clearing_domain_falls_back_to_plain_url(
        self, service: StorageService, stored_provider: AwsS3Provider
    ) -> None:
        service.update_bucket_domain(stored_provider.id, "bucket", "https://cdn.example.com")
        service.update_bucket_domain(stored_provider.id, "bucket", "")
        assert service.get_bucket_domain(stored_provider.id, "bucket") is None
        assert service.get_public_object_url(stored_provider, "bucket", "k").startswith("https://bucket.s3.")


class FakeContent:
    def __init__(self, chunks: list[bytes], error: Optional[Exception] = None):
        self.chunks = chunks
        self.error = error

    async def iter_chunked(self, size: int):
        for chunk in self.chunks:
            yield chunk
        if self.error is not None:
            raise self.error


class FakeResponse:
    def __init__(self, status: int, chunks: list[bytes], error: Optional[Exception] = None):
        self.status = status
        self.content = FakeContent(chunks, error)

    async def __aenter__(self) -> "FakeResponse":
        return self

    async def __aexit__(self, *args: Any) -> None:
        return None


class FakeSession:
    def __init__(self, response: FakeResponse):
        self.response = response
        self.requested: list[str] = []

    def get(self, url: str) -> FakeResponse:
        self.requested.append(url)
        return self.response

    async def __aenter__(self) -> "FakeSession":
        return self

    async def __aexit__(self, *args: Any) -> None:
        return None


class TestDownload:
    @pytest.mark.asyncio
    async def test_download_streams_to_file(
        self, mocker: Any, service: StorageService, stored_provider: AwsS3Provider, temp_dir: Path
    ) -> None:
        session = FakeSession(FakeResponse(200, [b"hello ", b"world"]))
        mocker.patch("omnibucket.services.storage_service.aiohttp.ClientSession", return_value=session)
        target = temp_dir / "out" / "a.txt"

        result = await service.download_to_file(stored_provider, "bucket", "a.txt", target)

        assert result.success
        assert target.read_bytes() == b"hello world"
        assert session.requested == ["https://signed.example/bucket/a.txt?expires=3600"]

    @pytest.mark.asyncio
    async def test_interrupted_download_leaves_no_file(
        self, mocker: Any, service: StorageService, stored_provider: AwsS3Provider, temp_dir: Path
    ) -> None:
        response = FakeResponse(200, [b"partial-bytes"], error=ConnectionResetError("connection reset mid-stream"))
        mocker.patch("omnibucket.services.storage_service.aiohttp.ClientSession", return_value=FakeSession(response))
        target = temp_dir / "a.txt"

        result = await service.download_to_file(stored_provider, "bucket", "a.txt", target)

        assert result.success is False
        assert result.error == "connection reset mid-stream"
        assert not target.exists(), "A failed download should not leave a truncated file"
        assert list(temp_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_failed_download_keeps_existing_file(
        self, mocker: Any, service: StorageService, stored_provider: AwsS3Provider, temp_dir: Path
    ) -> None:
        target = temp_dir / "a.txt"
        target.write_bytes(b"previous")
        response = FakeResponse(200, [b"new"], error=ConnectionResetError("reset"))
        mocker.patch("omnibucket.services.storage_service.aiohttp.ClientSession", return_value=FakeSession(response))

        result = await service.download_to_file(stored_provider, "bucket", "a.txt", target)

        assert result.success is False
        assert target.read_bytes() == b"previous"

    @pytest.mark.asyncio
    async def test_download_http_error(
        self, mocker: Any, service: StorageService, stored_provider: AwsS3Provider, temp_dir: Path
    ) -> None:
        mocker.patch(
            "omnibucket.services.storage_service.aiohttp.ClientSession",
            return_value=FakeSession(FakeResponse(403, [])),
        )
        result = await service.download_to_file(stored_provider, "bucket", "a.txt", temp_dir / "a.txt")
        assert result.success is False
        assert "403" in result.error

    @pytest.mark.asyncio
    async def test_download_signing_failure(
        self, service: StorageService, stored_provider: AwsS3Provider, adapter: InMemoryAdapter, temp_dir: Path
    ) -> None:
        adapter._sign_url = AsyncMock(side_effect=RuntimeError("SignatureDoesNotMatch"))
        result = await service.download_to_file(stored_provider, "bucket", "a.txt", temp_dir / "a.txt")
        assert result.success is False
        assert "SignatureDoesNotMatch" in result.error
