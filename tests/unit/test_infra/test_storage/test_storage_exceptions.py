"""Unit tests for the storage error taxonomy and native error mapping."""

from __future__ import annotations

import errno

from botocore.exceptions import ClientError
import pytest

from polystore.core.exceptions import AppException
from polystore.infra.storage.exceptions import (
    StorageAccessDeniedError,
    StorageConfigError,
    StorageError,
    StorageNotFoundError,
    StorageOperationNotSupportedError,
    StorageProviderNotFoundError,
    StorageQuotaExceededError,
    map_boto_error,
    map_os_error,
)


def _client_error(code: str, message: str = "boom") -> ClientError:
    return ClientError(
        {
            "Error": {"Code": code, "Message": message},
            "ResponseMetadata": {"RequestId": "req-123"},
        },
        "GetObject",
    )


@pytest.mark.unit
class TestStorageError:
    """Test StorageError fields."""

    def test_is_app_exception(self):
        error = StorageError("failed", code="CONNECTION_ERROR", provider="s3", status_code=503)

        assert isinstance(error, AppException)
        assert error.status_code == 503
        assert error.type == "connection-error"
        assert error.extra == {"provider": "s3"}
        assert str(error) == "failed"

    def test_problem_detail(self):
        error = StorageNotFoundError("docs/a.txt", provider="primary")

        problem = error.to_problem_detail()

        assert problem["status"] == 404
        assert problem["title"] == "Not Found"
        assert problem["detail"] == "File not found: docs/a.txt"
        assert problem["key"] == "docs/a.txt"
        assert problem["provider"] == "primary"

    def test_config_error_lists_errors(self):
        error = StorageConfigError(["a", "b"], provider="s3", warnings=["w"])

        assert error.message == "Invalid storage configuration: a; b"
        assert error.extra["warnings"] == ["w"]

    def test_provider_not_found(self):
        error = StorageProviderNotFoundError("archive")

        assert error.code == "PROVIDER_NOT_FOUND"
        assert error.name == "archive"


@pytest.mark.unit
class TestMapBotoError:
    """Test botocore ClientError mapping."""

    @pytest.mark.parametrize("code", ["NoSuchKey", "NoSuchBucket", "404"])
    def test_not_found(self, code):
        error = _client_error(code)

        mapped = map_boto_error(error, operation="download", key="a.txt")

        assert isinstance(mapped, StorageNotFoundError)
        assert mapped.key == "a.txt"
        assert mapped.cause is error
        assert mapped.extra["request_id"] == "req-123"

    @pytest.mark.parametrize("code", ["AccessDenied", "ExpiredToken", "403"])
    def test_access_denied(self, code):
        mapped = map_boto_error(_client_error(code), operation="upload", key="a.txt")

        assert isinstance(mapped, StorageAccessDeniedError)
        assert mapped.status_code == 403

    def test_quota(self):
        mapped = map_boto_error(_client_error("QuotaExceeded"), operation="upload")

        assert isinstance(mapped, StorageQuotaExceededError)

    def test_not_implemented(self):
        mapped = map_boto_error(_client_error("NotImplemented"), operation="move")

        assert isinstance(mapped, StorageOperationNotSupportedError)
        assert mapped.operation == "move"

    def test_other_codes_keep_vendor_code(self):
        mapped = map_boto_error(
            _client_error("SlowDown", "Please reduce your request rate."),
            operation="upload",
            key="a.txt",
            provider="archive",
        )

        assert type(mapped) is StorageError
        assert mapped.code == "SLOWDOWN"
        assert mapped.message == "Upload failed: Please reduce your request rate."
        assert mapped.provider == "archive"
        assert mapped.extra["key"] == "a.txt"


@pytest.mark.unit
class TestMapOSError:
    """Test filesystem error mapping."""

    def test_file_not_found(self):
        error = FileNotFoundError(errno.ENOENT, "No such file", "/data/a.txt")

        mapped = map_os_error(error, "a.txt")

        assert isinstance(mapped, StorageNotFoundError)
        assert mapped.provider == "local"
        assert mapped.cause is error

    def test_permission_denied(self):
        mapped = map_os_error(PermissionError(errno.EACCES, "denied"), "a.txt")

        assert isinstance(mapped, StorageAccessDeniedError)

    def test_disk_full(self):
        mapped = map_os_error(OSError(errno.ENOSPC, "No space left on device"), "a.txt")

        assert isinstance(mapped, StorageQuotaExceededError)
        assert mapped.status_code == 507

    def test_other_errors(self):
        mapped = map_os_error(OSError(errno.EIO, "I/O error"), "a.txt", operation="upload")

        assert type(mapped) is StorageError
        assert mapped.code == "EIO"
        assert mapped.message == "Upload failed: I/O error"
