"""
Provider descriptors for the supported object-storage services.

A provider descriptor is pure data: it identifies one storage account
(kind + credentials + optional region/endpoint/account id). The ``type``
field is the discriminant and cannot change once the descriptor exists.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class ProviderType(str, Enum):
    """Supported provider kinds."""

    AWS_S3 = "aws-s3"
    CLOUDFLARE_R2 = "cloudflare-r2"
    MINIO = "minio"
    ALIYUN_OSS = "aliyun-oss"
    TENCENT_COS = "tencent-cos"
    SUPABASE = "supabase"


S3_COMPATIBLE_TYPES = frozenset(
    {ProviderType.AWS_S3.value, ProviderType.CLOUDFLARE_R2.value, ProviderType.MINIO.value}
)


class BaseProvider(BaseModel):
    """Fields shared by every provider kind."""

    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str = Field(..., min_length=1)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    last_operation_at: Optional[datetime] = None
    bucket: Optional[str] = None  # default bucket hint

    @property
    def kind(self) -> ProviderType:
        return ProviderType(self.type)  # type: ignore[attr-defined]


class KeyPairProvider(BaseProvider):
    """Providers authenticated with an access key pair."""

    access_key_id: str
    secret_access_key: str
    region: Optional[str] = None
    endpoint: Optional[str] = None


class AwsS3Provider(KeyPairProvider):
    type: Literal["aws-s3"] = Field(default="aws-s3", frozen=True)


class CloudflareR2Provider(KeyPairProvider):
    type: Literal["cloudflare-r2"] = Field(default="cloudflare-r2", frozen=True)
    account_id: Optional[str] = None


class MinioProvider(KeyPairProvider):
    type: Literal["minio"] = Field(default="minio", frozen=True)


class AliyunOssProvider(KeyPairProvider):
    type: Literal["aliyun-oss"] = Field(default="aliyun-oss", frozen=True)


class TencentCosProvider(KeyPairProvider):
    type: Literal["tencent-cos"] = Field(default="tencent-cos", frozen=True)


class SupabaseProvider(BaseProvider):
    type: Literal["supabase"] = Field(default="supabase", frozen=True)
    project_url: str
    anon_key: Optional[str] = None
    service_role_key: Optional[str] = None


S3CompatibleProvider = Union[AwsS3Provider, CloudflareR2Provider, MinioProvider]

Provider = Annotated[
    Union[
        AwsS3Provider,
        CloudflareR2Provider,
        MinioProvider,
        AliyunOssProvider,
        TencentCosProvider,
        SupabaseProvider,
    ],
    Field(discriminator="type"),
]

_provider_adapter: TypeAdapter = TypeAdapter(Provider)

# Fields that may be changed through an update, per variant family
_KEY_PAIR_UPDATABLE = {"access_key_id", "secret_access_key", "region", "endpoint"}
_UPDATABLE_FIELDS = {
    ProviderType.AWS_S3: _KEY_PAIR_UPDATABLE,
    ProviderType.CLOUDFLARE_R2: _KEY_PAIR_UPDATABLE | {"account_id"},
    ProviderType.MINIO: _KEY_PAIR_UPDATABLE,
    ProviderType.ALIYUN_OSS: _KEY_PAIR_UPDATABLE,
    ProviderType.TENCENT_COS: _KEY_PAIR_UPDATABLE,
    ProviderType.SUPABASE: {"project_url", "anon_key", "service_role_key"},
}


def parse_provider(data: dict[str, Any]) -> Provider:
    """
    Build the matching provider variant from a plain mapping.

    Raises:
        pydantic.ValidationError: if the discriminant is unknown or a
            required field of the variant is missing
    """
    return _provider_adapter.validate_python(data)


def apply_provider_update(provider: Provider, changes: dict[str, Any]) -> Provider:
    """
    Return a copy of ``provider`` with the allowed fields updated.

    ``name`` and ``bucket`` can be changed on every variant, credentials only
    on the variant that owns them. ``type`` and ``id`` are never touched.
    """
    allowed = {"name", "bucket"} | _UPDATABLE_FIELDS[provider.kind]
    update = {key: value for key, value in changes.items() if key in allowed and value is not None}
    data = provider.model_dump()
    data.update(update)
    data["updated_at"] = utc_now()
    return parse_provider(data)


__all__ = [
    "ProviderType",
    "S3_COMPATIBLE_TYPES",
    "BaseProvider",
    "KeyPairProvider",
    "AwsS3Provider",
    "CloudflareR2Provider",
    "MinioProvider",
    "AliyunOssProvider",
    "TencentCosProvider",
    "SupabaseProvider",
    "S3CompatibleProvider",
    "Provider",
    "parse_provider",
    "apply_provider_update",
    "utc_now",
]
