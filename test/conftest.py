import tempfile
from collections.abc import Generator
from io import BytesIO
from pathlib import Path
from typing import Any, Optional

import pytest
import structlog
import structlog.testing
from PIL import Image

from omnibucket.core.metadata_store import (
    BucketRepository,
    MetadataStore,
    ProviderRepository,
    UploadHistoryRepository,
)
from omnibucket.core.task_manager import UploadTaskRegistry
from omnibucket.models.provider import (
    AliyunOssProvider,
    AwsS3Provider,
    CloudflareR2Provider,
    MinioProvider,
    SupabaseProvider,
    TencentCosProvider,
)
from omnibucket.storage.cloud_storage import ListPage, ObjectEntry, StorageAdapter


@pytest.fixture
def temp_dir() -> Generator[Path]:
    with tempfile.TemporaryDirectory() as tmpdirname:
        yield Path(tmpdirname)


@pytest.fixture(autouse=True)
def captured_logs() -> Generator[list[dict[str, Any]]]:
    """Route structlog events into a list so nothing reaches stdout."""
    with structlog.testing.capture_logs() as logs:
        yield logs


# Provider descriptors


@pytest.fixture
def aws_provider() -> AwsS3Provider:
    return AwsS3Provider(name="aws", access_key_id="AKIA", secret_access_key="secret", region="eu-west-1")


@pytest.fixture
def r2_provider() -> CloudflareR2Provider:
    return CloudflareR2Provider(name="r2", access_key_id="key", secret_access_key="secret", account_id="acc123")


@pytest.fixture
def minio_provider() -> MinioProvider:
    return MinioProvider(
        name="minio", access_key_id="minio", secret_access_key="minio123", endpoint="http://minio.local:9000"
    )


@pytest.fixture
def oss_provider() -> AliyunOssProvider:
    return AliyunOssProvider(name="oss", access_key_id="id", secret_access_key="secret", region="oss-cn-shanghai")


@pytest.fixture
def cos_provider() -> TencentCosProvider:
    return TencentCosProvider(name="cos", access_key_id="id", secret_access_key="secret", region="ap-shanghai")


@pytest.fixture
def supabase_provider() -> SupabaseProvider:
    return SupabaseProvider(name="supa", project_url="https://proj.supabase.co", service_role_key="service-key")


# Stores


@pytest.fixture
def metadata_store() -> MetadataStore:
    return MetadataStore()


@pytest.fixture
def provider_repository(metadata_store: MetadataStore) -> ProviderRepository:
    return ProviderRepository(metadata_store)


@pytest.fixture
def bucket_repository(metadata_store: MetadataStore) -> BucketRepository:
    return BucketRepository(metadata_store)


@pytest.fixture
def history_repository(metadata_store: MetadataStore) -> UploadHistoryRepository:
    return UploadHistoryRepository(metadata_store)


@pytest.fixture
def task_registry() -> UploadTaskRegistry:
    return UploadTaskRegistry()


# Images


def make_image_bytes(width: int = 640, height: int = 480, image_format: str = "JPEG") -> bytes:
    buffer = BytesIO()
    Image.new("RGB", (width, height), color=(200, 80, 40)).save(buffer, format=image_format)
    return buffer.getvalue()


@pytest.fixture
def jpeg_bytes() -> bytes:
    return make_image_bytes()


# In-memory adapter


class InMemoryAdapter(StorageAdapter):
    """Adapter over a dict of bucket -> {key: bytes}, recording primitive calls."""

    provider_type = "memory"

    def __init__(self, provider: Any = None, objects: Optional[dict[str, dict[str, bytes]]] = None):
        super().__init__(provider)
        self.objects: dict[str, dict[str, bytes]] = objects if objects is not None else {}
        self.content_types: dict[tuple[str, str], str] = {}
        self.calls: list[tuple] = []
        self.batch_failures: dict[str, str] = {}
        self.copy_error: Optional[Exception] = None
        self.delete_error: Optional[Exception] = None
        self.put_error: Optional[Exception] = None

    async def list_buckets(self):
        return []

    async def create_bucket(self, name, options=None):
        self.objects.setdefault(name, {})

    async def delete_bucket(self, name):
        self.objects.pop(name, None)

    async def _list_page(self, bucket, prefix, cursor, max_keys):
        self.calls.append(("list_page", prefix, cursor))
        keys = sorted(key for key in self.objects.get(bucket, {}) if key.startswith(prefix))
        page = ListPage()
        for key in keys:
            rest = key[len(prefix) :]
            if "/" in rest:
                folder = prefix + rest.split("/", 1)[0] + "/"
                if folder not in page.prefixes:
                    page.prefixes.append(folder)
            else:
                page.objects.append(ObjectEntry(key=key, size=len(self.objects[bucket][key])))
        return page

    async def _list_all_keys(self, bucket, prefix):
        self.calls.append(("list_all", prefix))
        return sorted(key for key in self.objects.get(bucket, {}) if key.startswith(prefix))

    async def _put_object(self, bucket, key, content, content_type):
        self.calls.append(("put", key, content_type))
        if self.put_error is not None:
            raise self.put_error
        self.objects.setdefault(bucket, {})[key] = content
        self.content_types[(bucket, key)] = content_type

    async def _delete_key(self, bucket, key):
        self.calls.append(("delete", key))
        if self.delete_error is not None:
            raise self.delete_error
        self.objects.get(bucket, {}).pop(key, None)

    async def _delete_batch(self, bucket, keys):
        self.calls.append(("delete_batch", len(keys)))
        failed = {key: self.batch_failures[key] for key in keys if key in self.batch_failures}
        for key in keys:
            if key not in failed:
                self.objects.get(bucket, {}).pop(key, None)
        return failed

    async def _copy_object(self, bucket, source_key, destination_key):
        self.calls.append(("copy", source_key, destination_key))
        if self.copy_error is not None:
            raise self.copy_error
        self.objects[bucket][destination_key] = self.objects[bucket][source_key]

    async def _sign_url(self, bucket, key, expires_in):
        return f"https://signed.example/{bucket}/{key}?expires={expires_in}"


@pytest.fixture
def memory_adapter() -> InMemoryAdapter:
    return InMemoryAdapter()
