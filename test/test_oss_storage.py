from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from omnibucket.models.provider import AliyunOssProvider
from omnibucket.models.storage_models import ListObjectsOptions
from omnibucket.storage.oss_storage import OssStorage, oss_endpoint


@pytest.fixture
def oss_bucket() -> MagicMock:
    return MagicMock()


@pytest.fixture
def oss_service() -> MagicMock:
    return MagicMock()


@pytest.fixture
def adapter(oss_provider: AliyunOssProvider, oss_service: MagicMock, oss_bucket: MagicMock) -> OssStorage:
    return OssStorage(oss_provider, service=oss_service, bucket_factory=lambda name: oss_bucket)


def test_oss_endpoint() -> None:
    assert oss_endpoint("oss-cn-beijing") == "https://oss-cn-beijing.aliyuncs.com"
    assert oss_endpoint(None) == "https://oss-cn-hangzhou.aliyuncs.com"
    assert oss_endpoint("ignored", "oss.example.com") == "https://oss.example.com"


@pytest.mark.asyncio
async def test_list_buckets_follows_marker(adapter: OssStorage, oss_service: MagicMock) -> None:
    oss_service.list_buckets.side_effect = [
        SimpleNamespace(buckets=[SimpleNamespace(name="a", creation_date=1700000000)], is_truncated=True, next_marker="a"),
        SimpleNamespace(buckets=[SimpleNamespace(name="b", creation_date=None)], is_truncated=False, next_marker=""),
    ]
    buckets = await adapter.list_buckets()
    assert [bucket.name for bucket in buckets] == ["a", "b"]
    assert buckets[0].creation_date.startswith("2023-11-14")
    assert oss_service.list_buckets.call_args_list[1].kwargs["marker"] == "a"


@pytest.mark.asyncio
async def test_list_objects_uses_marker_cursor(adapter: OssStorage, oss_bucket: MagicMock) -> None:
    oss_bucket.list_objects.return_value = SimpleNamespace(
        prefix_list=["docs/sub/"],
        object_list=[SimpleNamespace(key="docs/a.txt", size=3, last_modified=1700000000)],
        next_marker="docs/a.txt",
        is_truncated=True,
    )
    result = await adapter.list_objects("bucket", ListObjectsOptions(prefix="docs/", cursor="m1", max_keys=1))

    oss_bucket.list_objects.assert_called_once_with(prefix="docs/", delimiter="/", marker="m1", max_keys=1)
    assert [item.id for item in result.files] == ["docs/sub/", "docs/a.txt"]
    assert result.next_cursor == "docs/a.txt"


@pytest.mark.asyncio
async def test_upload_passes_content_type_header(adapter: OssStorage, oss_bucket: MagicMock) -> None:
    result = await adapter.upload_file("bucket", "a.webp", b"data")
    assert result.success
    oss_bucket.put_object.assert_called_once_with("a.webp", b"data", headers={"Content-Type": "image/webp"})


@pytest.mark.asyncio
async def test_unconfirmed_keys_fail_bulk_delete(adapter: OssStorage, oss_bucket: MagicMock) -> None:
    oss_bucket.batch_delete_objects.return_value = SimpleNamespace(deleted_keys=["a"])
    result = await adapter.delete_objects("bucket", ["a", "b"])
    assert result.success is False
    assert result.deleted_count == 1


@pytest.mark.asyncio
async def test_move_copies_within_bucket(adapter: OssStorage, oss_bucket: MagicMock) -> None:
    result = await adapter.move_object("bucket", "in/a.txt", "out")
    assert result.success
    oss_bucket.copy_object.assert_called_once_with("bucket", "in/a.txt", "out/a.txt")
    oss_bucket.delete_object.assert_called_once_with("in/a.txt")


@pytest.mark.asyncio
async def test_sign_url(adapter: OssStorage, oss_bucket: MagicMock) -> None:
    oss_bucket.sign_url.return_value = "https://bucket.oss/a.txt?Signature=x"
    result = await adapter.get_object_url("bucket", "a.txt", 300)
    oss_bucket.sign_url.assert_called_once_with("GET", "a.txt", 300)
    assert result.url.endswith("Signature=x")
