"""
Input validation for storage and upload requests.

Validators raise ValidationException before any network call is made.
"""

import re
from typing import Any

from omnibucket.utils.env_config import MAX_UPLOAD_CONCURRENCY, MIN_UPLOAD_CONCURRENCY


class ValidationConfig:
    """Configuration for validation parameters."""

    # Bucket names across providers: S3/OSS/COS are lower-case DNS labels,
    # Supabase also allows upper case and underscores
    BUCKET_NAME_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9._-]{1,61}[A-Za-z0-9]$"
    MAX_EXPIRES_IN = 7 * 24 * 3600  # SigV4 ceiling


# Custom Exceptions


class ValidationException(Exception):
    """Base exception for validation errors."""

    def __init__(self, message: str, field: str | None = None, code: str | None = None):
        self.message = message
        self.field = field
        self.code = code
        super().__init__(message)


# Standardized Error Messages


class ErrorMessages:
    """Standardized error messages for consistent user experience."""

    BUCKET_REQUIRED = "Bucket name is required"
    BUCKET_INVALID = "Bucket name '{name}' is invalid"
    CONCURRENCY_OUT_OF_RANGE = "Concurrency must be between {min_value} and {max_value}"
    EXPIRES_OUT_OF_RANGE = "Expiry must be between 1 and {max_value} seconds"


class StorageInputValidator:
    """Validates storage operation inputs."""

    @staticmethod
    def validate_bucket_name(name: Any) -> str:
        if not isinstance(name, str) or not name.strip():
            raise ValidationException(ErrorMessages.BUCKET_REQUIRED, field="bucket", code="BUCKET_REQUIRED")
        name = name.strip()
        if not re.match(ValidationConfig.BUCKET_NAME_PATTERN, name) or ".." in name:
            raise ValidationException(
                ErrorMessages.BUCKET_INVALID.format(name=name), field="bucket", code="BUCKET_INVALID"
            )
        return name

    @staticmethod
    def validate_expires_in(expires_in: Any) -> int:
        if not isinstance(expires_in, int) or not 1 <= expires_in <= ValidationConfig.MAX_EXPIRES_IN:
            raise ValidationException(
                ErrorMessages.EXPIRES_OUT_OF_RANGE.format(max_value=ValidationConfig.MAX_EXPIRES_IN),
                field="expires_in",
                code="EXPIRES_OUT_OF_RANGE",
            )
        return expires_in


class UploadValidator:
    """Validates upload orchestration inputs."""

    @staticmethod
    def validate_concurrency(value: Any) -> int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationException(
                ErrorMessages.CONCURRENCY_OUT_OF_RANGE.format(
                    min_value=MIN_UPLOAD_CONCURRENCY, max_value=MAX_UPLOAD_CONCURRENCY
                ),
                field="concurrency",
                code="CONCURRENCY_INVALID",
            )
        if not MIN_UPLOAD_CONCURRENCY <= value <= MAX_UPLOAD_CONCURRENCY:
            raise ValidationException(
                ErrorMessages.CONCURRENCY_OUT_OF_RANGE.format(
                    min_value=MIN_UPLOAD_CONCURRENCY, max_value=MAX_UPLOAD_CONCURRENCY
                ),
                field="concurrency",
                code="CONCURRENCY_OUT_OF_RANGE",
            )
        return value
