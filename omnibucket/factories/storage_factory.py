"""
Factory for creating storage adapters.
"""

from typing import Any

from omnibucket.models.provider import S3_COMPATIBLE_TYPES, ProviderType
from omnibucket.storage.cloud_storage import StorageAdapter, UnsupportedProviderError
from omnibucket.storage.cos_storage import CosStorage
from omnibucket.storage.oss_storage import OssStorage
from omnibucket.storage.s3_storage import S3Storage
from omnibucket.storage.supabase_storage import SupabaseStorage

ADAPTER_CLASSES: dict[str, type[StorageAdapter]] = {
    **{provider_type: S3Storage for provider_type in S3_COMPATIBLE_TYPES},
    ProviderType.ALIYUN_OSS.value: OssStorage,
    ProviderType.TENCENT_COS.value: CosStorage,
    ProviderType.SUPABASE.value: SupabaseStorage,
}


def create_adapter(provider: Any) -> StorageAdapter:
    """Create the adapter for a provider descriptor.

    Raises:
        UnsupportedProviderError: if the descriptor's type has no adapter
    """
    provider_type = getattr(provider, "type", None)
    adapter_class = ADAPTER_CLASSES.get(provider_type) if isinstance(provider_type, str) else None
    if adapter_class is None:
        raise UnsupportedProviderError(
            f"Unsupported provider type: {provider_type}",
            error_code="UNSUPPORTED_PROVIDER",
            details={"provider_type": provider_type},
        )
    return adapter_class(provider)
