from unittest.mock import MagicMock

import pytest

from omnibucket.models.provider import SupabaseProvider
from omnibucket.models.storage_models import ListObjectsOptions
from omnibucket.storage.cloud_storage import StorageError, StoragePermissionError
from omnibucket.storage.supabase_storage import SupabaseStorage


@pytest.fixture
def supabase_client() -> MagicMock:
    return MagicMock()


@pytest.fixture
def bucket_api(supabase_client: MagicMock) -> MagicMock:
    return supabase_client.storage.from_.return_value


@pytest.fixture
def adapter(supabase_provider: SupabaseProvider, supabase_client: MagicMock) -> SupabaseStorage:
    return SupabaseStorage(supabase_provider, client=supabase_client)


@pytest.mark.asyncio
async def test_list_objects_offset_cursor(adapter: SupabaseStorage, bucket_api: MagicMock) -> None:
    bucket_api.list.return_value = [
        {"name": "nested", "metadata": None},
        {"name": "a.png", "metadata": {"size": 5, "mimetype": "image/png"}, "updated_at": "2024-05-01T00:00:00Z"},
    ]
    result = await adapter.list_objects("bucket", ListObjectsOptions(prefix="pics", cursor="2", max_keys=2))

    path, options = bucket_api.list.call_args.args
    assert path == "pics"
    assert options["offset"] == 2
    assert options["limit"] == 2
    assert [item.id for item in result.files] == ["pics/nested/", "pics/a.png"]
    assert result.files[1].mime_type == "image/png"
    assert result.next_cursor == "4"


@pytest.mark.asyncio
async def test_folder_delete_walks_tree(adapter: SupabaseStorage, bucket_api: MagicMock) -> None:
    listings = {
        "top": [{"name": "sub", "metadata": None}, {"name": "a.txt", "metadata": {"size": 1}}],
        "top/sub": [{"name": "b.txt", "metadata": {"size": 1}}],
    }
    bucket_api.list.side_effect = lambda path, options: listings.get(path, [])

    result = await adapter.delete_object("bucket", "top", is_folder=True)

    assert result.success
    assert result.deleted_count == 2
    removed = bucket_api.remove.call_args.args[0]
    assert sorted(removed) == ["top/a.txt", "top/sub/b.txt"]


@pytest.mark.asyncio
async def test_create_folder_uploads_keep_file(adapter: SupabaseStorage, bucket_api: MagicMock) -> None:
    result = await adapter.create_folder("bucket", "new")
    assert result.success
    bucket_api.upload.assert_called_once_with(
        "new/.keep", b"", file_options={"content-type": "text/plain", "upsert": "true"}
    )


@pytest.mark.asyncio
async def test_signed_url_key_variants(adapter: SupabaseStorage, bucket_api: MagicMock) -> None:
    bucket_api.create_signed_url.return_value = {"signedURL": "https://proj.supabase.co/sign/x"}
    result = await adapter.get_object_url("bucket", "a.txt", 60)
    assert result.url == "https://proj.supabase.co/sign/x"


@pytest.mark.asyncio
async def test_missing_signed_url_raises(adapter: SupabaseStorage, bucket_api: MagicMock) -> None:
    bucket_api.create_signed_url.return_value = {}
    with pytest.raises(StorageError):
        await adapter.get_object_url("bucket", "a.txt", 60)


def test_client_requires_a_key() -> None:
    provider = SupabaseProvider(name="supa", project_url="https://proj.supabase.co")
    adapter = SupabaseStorage(provider)
    with pytest.raises(StoragePermissionError):
        _ = adapter.storage
