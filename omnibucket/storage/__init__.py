"""
Multi-provider object storage module.

This module provides the storage adapter abstraction and one adapter per
provider family: S3-compatible services (AWS S3, Cloudflare R2, MinIO)
through boto3, Aliyun OSS through oss2, Tencent COS through
cos-python-sdk-v5 and Supabase Storage through supabase-py.
"""

from .cloud_storage import (
    DEFAULT_URL_EXPIRES_IN,
    DELETE_BATCH_SIZE,
    BatchDeleteError,
    ListPage,
    ObjectEntry,
    StorageAdapter,
    StorageError,
    StorageNetworkError,
    StorageNotFoundError,
    StoragePermissionError,
    UnsupportedProviderError,
)
from .cos_storage import CosStorage
from .file_utils import FileUtils, file_utils
from .oss_storage import OssStorage
from .s3_storage import S3Storage
from .supabase_storage import SupabaseStorage

__all__ = [
    # Abstract interface
    "StorageAdapter",
    "ListPage",
    "ObjectEntry",
    # Concrete implementations
    "S3Storage",
    "OssStorage",
    "CosStorage",
    "SupabaseStorage",
    # Constants
    "DELETE_BATCH_SIZE",
    "DEFAULT_URL_EXPIRES_IN",
    # Exceptions
    "StorageError",
    "StorageNotFoundError",
    "StoragePermissionError",
    "StorageNetworkError",
    "UnsupportedProviderError",
    "BatchDeleteError",
    # Utilities
    "FileUtils",
    "file_utils",
]
