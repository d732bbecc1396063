from types import SimpleNamespace
from typing import Any

import pytest

from omnibucket.factories.storage_factory import create_adapter
from omnibucket.storage.cloud_storage import UnsupportedProviderError
from omnibucket.storage.cos_storage import CosStorage
from omnibucket.storage.oss_storage import OssStorage
from omnibucket.storage.s3_storage import S3Storage
from omnibucket.storage.supabase_storage import SupabaseStorage


class TestStorageFactory:
    """Test suite for the adapter factory."""

    @pytest.mark.parametrize(
        ("fixture_name", "adapter_class"),
        [
            ("aws_provider", S3Storage),
            ("r2_provider", S3Storage),
            ("minio_provider", S3Storage),
            ("oss_provider", OssStorage),
            ("cos_provider", CosStorage),
            ("supabase_provider", SupabaseStorage),
        ],
    )
    def test_creates_adapter_for_each_kind(self, request: Any, fixture_name: str, adapter_class: type) -> None:
        """Every supported kind maps to its adapter, bound to the descriptor."""
        provider = request.getfixturevalue(fixture_name)
        adapter = create_adapter(provider)
        assert isinstance(adapter, adapter_class)
        assert adapter.provider is provider

    def test_unknown_kind_raises(self) -> None:
        """Unknown kinds fail synchronously before any network call."""
        with pytest.raises(UnsupportedProviderError, match="Unsupported provider type: backblaze-b2"):
            create_adapter(SimpleNamespace(type="backblaze-b2"))

    def test_missing_type_raises(self) -> None:
        with pytest.raises(UnsupportedProviderError):
            create_adapter(SimpleNamespace())
