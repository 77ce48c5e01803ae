"""Storage error taxonomy.

Every backend normalises its native failures into the exceptions defined
here, so vendor error types never leak past the backend contract. The
original exception is kept on ``error.cause`` and chained as ``__cause__``
when raised with ``raise ... from``.

Example:
    ```python
    from polystore.infra.storage.exceptions import (
        StorageNotFoundError,
        map_boto_error,
    )

    try:
        await client.get_object(Bucket=bucket, Key=key)
    except ClientError as e:
        raise map_boto_error(e, operation="download", key=key, provider="s3") from e
    ```
"""

from __future__ import annotations

import errno
from typing import TYPE_CHECKING, Any

from polystore.core.exceptions import AppException

if TYPE_CHECKING:
    from botocore.exceptions import ClientError


class StorageError(AppException):
    """Base exception for all storage-related errors.

    Attributes:
        message: Human-readable error message.
        code: Error code identifier for programmatic error handling.
        provider: Provider kind or registered name the error came from.
        cause: Original exception raised by the backend, if any.
        status_code: HTTP status code equivalent.
        extra: Additional context (key, operation, vendor error code).

    Example:
        ```python
        raise StorageError(
            message="Failed to connect to storage backend",
            code="CONNECTION_ERROR",
            provider="s3",
            status_code=503,
            metadata={"endpoint": "s3.amazonaws.com"},
        )
        ```
    """

    def __init__(
        self,
        message: str,
        code: str = "STORAGE_ERROR",
        provider: str | None = None,
        cause: BaseException | None = None,
        status_code: int = 500,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Initialize storage error.

        Args:
            message: Human-readable error message.
            code: Error code for programmatic handling.
            provider: Provider the error originated from.
            cause: Underlying exception.
            status_code: HTTP status code (default: 500).
            metadata: Additional error context.
        """
        self.code = code
        self.message = message
        self.provider = provider
        self.cause = cause
        extra = dict(metadata or {})
        if provider is not None:
            extra.setdefault("provider", provider)
        super().__init__(
            status_code=status_code,
            detail=message,
            type=code.lower().replace("_", "-"),
            extra=extra,
        )


class StorageNotFoundError(StorageError):
    """Raised when the requested object does not exist."""

    def __init__(
        self,
        key: str,
        provider: str | None = None,
        cause: BaseException | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self.key = key
        super().__init__(
            message=f"File not found: {key}",
            code="NOT_FOUND",
            provider=provider,
            cause=cause,
            status_code=404,
            metadata={"key": key, **(metadata or {})},
        )


class StorageAccessDeniedError(StorageError):
    """Raised when the backend refuses access to an object or bucket."""

    def __init__(
        self,
        key: str,
        provider: str | None = None,
        cause: BaseException | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self.key = key
        super().__init__(
            message=f"Access denied: {key}",
            code="ACCESS_DENIED",
            provider=provider,
            cause=cause,
            status_code=403,
            metadata={"key": key, **(metadata or {})},
        )


class StorageQuotaExceededError(StorageError):
    """Raised when a write would exceed the backend's storage quota."""

    def __init__(
        self,
        provider: str | None = None,
        cause: BaseException | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message=f"Storage quota exceeded for provider: {provider}",
            code="QUOTA_EXCEEDED",
            provider=provider,
            cause=cause,
            status_code=507,
            metadata=metadata,
        )


class StorageOperationNotSupportedError(StorageError):
    """Raised when a backend does not implement an optional capability.

    Example:
        ```python
        raise StorageOperationNotSupportedError("update_metadata", provider="gcs")
        ```
    """

    def __init__(
        self,
        operation: str,
        provider: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        self.operation = operation
        super().__init__(
            message=f"Operation '{operation}' is not supported by provider: {provider}",
            code="OPERATION_NOT_SUPPORTED",
            provider=provider,
            cause=cause,
            status_code=501,
            metadata={"operation": operation},
        )


class StorageProviderNotFoundError(StorageError):
    """Raised when a named provider is not registered."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(
            message=f"Provider not found: {name}",
            code="PROVIDER_NOT_FOUND",
            provider=name,
            status_code=404,
        )


class StorageCannotRemoveDefaultError(StorageError):
    """Raised when removing the default provider from the registry."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(
            message=f"Cannot remove default provider: {name}",
            code="CANNOT_REMOVE_DEFAULT",
            provider=name,
            status_code=409,
        )


class StorageInitializationError(StorageError):
    """Raised when the storage manager fails to start its providers."""

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(
            message=message,
            code="INITIALIZATION_ERROR",
            provider=provider,
            cause=cause,
            status_code=503,
        )


class StorageConfigError(StorageError):
    """Raised when a provider configuration fails validation.

    Attributes:
        errors: Validation error messages.
        warnings: Non-fatal validation findings.
    """

    def __init__(
        self,
        errors: list[str],
        provider: str | None = None,
        warnings: list[str] | None = None,
    ) -> None:
        self.errors = list(errors)
        self.warnings = list(warnings or [])
        super().__init__(
            message=f"Invalid storage configuration: {'; '.join(self.errors)}",
            code="INVALID_CONFIG",
            provider=provider,
            status_code=400,
            metadata={"errors": self.errors, "warnings": self.warnings},
        )


class StorageUnsupportedProviderError(StorageError):
    """Raised when no adapter is available for a provider kind."""

    def __init__(self, provider: str) -> None:
        super().__init__(
            message=f"Unsupported storage provider: {provider}",
            code="UNSUPPORTED_PROVIDER",
            provider=provider,
            status_code=501,
        )


class StorageSyncError(StorageError):
    """Raised when a sync cannot enumerate the source provider."""

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(
            message=message,
            code="SYNC_ERROR",
            provider=provider,
            cause=cause,
            status_code=500,
        )


# ============================================================================
# Native error mapping
# ============================================================================

_NOT_FOUND_CODES = frozenset({"NoSuchKey", "NoSuchBucket", "NotFound", "404"})

_ACCESS_DENIED_CODES = frozenset(
    {
        "AccessDenied",
        "ExpiredToken",
        "InvalidAccessKeyId",
        "SignatureDoesNotMatch",
        "InvalidToken",
        "TokenRefreshRequired",
        "AllAccessDisabled",
        "403",
    }
)

_QUOTA_CODES = frozenset({"QuotaExceeded", "TooManyBuckets", "AccountProblem"})

_NOT_SUPPORTED_CODES = frozenset({"NotImplemented", "MethodNotAllowed"})


def map_boto_error(
    error: ClientError,
    operation: str,
    key: str | None = None,
    provider: str | None = "s3",
) -> StorageError:
    """Map a botocore ClientError to the storage error taxonomy.

    Args:
        error: The botocore ClientError exception to map.
        operation: The storage operation being performed (e.g., "upload").
        key: Optional object key being operated on.
        provider: Provider name to attach to the error.

    Returns:
        StorageError: Appropriate taxonomy exception with ``cause`` set.

    Error Code Mappings:
        - NoSuchKey, NoSuchBucket, 404 -> StorageNotFoundError
        - AccessDenied, ExpiredToken, InvalidAccessKeyId, 403 -> StorageAccessDeniedError
        - QuotaExceeded, TooManyBuckets -> StorageQuotaExceededError
        - NotImplemented -> StorageOperationNotSupportedError
        - Others -> StorageError
    """
    error_info = error.response.get("Error", {})
    error_code = str(error_info.get("Code", "Unknown"))
    error_message = error_info.get("Message", str(error))

    metadata: dict[str, Any] = {
        "operation": operation,
        "aws_error_code": error_code,
        "aws_error_message": error_message,
        "request_id": error.response.get("ResponseMetadata", {}).get("RequestId"),
    }
    if "BucketName" in error_info:
        metadata["bucket"] = error_info["BucketName"]  # type: ignore[typeddict-item]

    if error_code in _NOT_FOUND_CODES:
        return StorageNotFoundError(key or "", provider=provider, cause=error, metadata=metadata)

    if error_code in _ACCESS_DENIED_CODES:
        return StorageAccessDeniedError(
            key or "", provider=provider, cause=error, metadata=metadata
        )

    if error_code in _QUOTA_CODES:
        return StorageQuotaExceededError(provider=provider, cause=error, metadata=metadata)

    if error_code in _NOT_SUPPORTED_CODES:
        return StorageOperationNotSupportedError(operation, provider=provider, cause=error)

    if key:
        metadata["key"] = key
    return StorageError(
        message=f"{operation.capitalize()} failed: {error_message}",
        code=error_code.upper() if error_code != "Unknown" else "STORAGE_ERROR",
        provider=provider,
        cause=error,
        metadata=metadata,
    )


def map_os_error(
    error: OSError,
    key: str,
    provider: str | None = "local",
    operation: str | None = None,
) -> StorageError:
    """Map a filesystem OSError to the storage error taxonomy.

    Args:
        error: The OSError raised by the filesystem call.
        key: Object key being operated on.
        provider: Provider name to attach to the error.
        operation: Optional operation name for the generic fallback message.

    Returns:
        StorageError: Appropriate taxonomy exception with ``cause`` set.
    """
    if isinstance(error, FileNotFoundError) or error.errno == errno.ENOENT:
        return StorageNotFoundError(key, provider=provider, cause=error)

    if isinstance(error, PermissionError) or error.errno in {errno.EACCES, errno.EPERM}:
        return StorageAccessDeniedError(key, provider=provider, cause=error)

    if error.errno in {errno.ENOSPC, getattr(errno, "EDQUOT", errno.ENOSPC)}:
        return StorageQuotaExceededError(provider=provider, cause=error, metadata={"key": key})

    label = operation or "operation"
    return StorageError(
        message=f"{label.capitalize()} failed: {error.strerror or error}",
        code=errno.errorcode.get(error.errno, "STORAGE_ERROR") if error.errno else "STORAGE_ERROR",
        provider=provider,
        cause=error,
        metadata={"key": key, "operation": operation},
    )
