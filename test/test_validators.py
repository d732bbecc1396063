import pytest

from omnibucket.utils.validators import StorageInputValidator, UploadValidator, ValidationException


def test_bucket_name_valid() -> None:
    assert StorageInputValidator.validate_bucket_name("  my-assets.v2 ") == "my-assets.v2", (
        "Valid bucket name should be returned stripped"
    )
    assert StorageInputValidator.validate_bucket_name("Public_Images") == "Public_Images"


@pytest.mark.parametrize("name", ["", "   ", None, "ab", "-leading", "trailing-", "a..b", "has space", "x" * 64])
def test_bucket_name_invalid(name) -> None:
    with pytest.raises(ValidationException) as exc_info:
        StorageInputValidator.validate_bucket_name(name)
    assert exc_info.value.field == "bucket"


def test_bucket_name_required_code() -> None:
    with pytest.raises(ValidationException, match="Bucket name is required") as exc_info:
        StorageInputValidator.validate_bucket_name("")
    assert exc_info.value.code == "BUCKET_REQUIRED"


def test_expires_in_bounds() -> None:
    assert StorageInputValidator.validate_expires_in(1) == 1
    assert StorageInputValidator.validate_expires_in(604800) == 604800, "Seven days should be accepted"
    for value in (0, -5, 604801, "3600"):
        with pytest.raises(ValidationException, match="Expiry must be between 1 and 604800 seconds"):
            StorageInputValidator.validate_expires_in(value)


def test_concurrency_bounds() -> None:
    assert UploadValidator.validate_concurrency(1) == 1
    assert UploadValidator.validate_concurrency(20) == 20
    with pytest.raises(ValidationException, match="Concurrency must be between 1 and 20") as exc_info:
        UploadValidator.validate_concurrency(21)
    assert exc_info.value.code == "CONCURRENCY_OUT_OF_RANGE"


def test_concurrency_rejects_non_integers() -> None:
    for value in (True, 2.5, "5", None):
        with pytest.raises(ValidationException) as exc_info:
            UploadValidator.validate_concurrency(value)
        assert exc_info.value.code == "CONCURRENCY_INVALID"
