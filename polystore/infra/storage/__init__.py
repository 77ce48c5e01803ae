"""Unified object storage across named providers.

This module provides a provider-agnostic storage layer with:
- StorageManager facade over any number of named backends
- Local filesystem and S3-compatible reference backends
- Retry with exponential backoff and jitter
- In-memory metrics mirrored to Prometheus, OpenTelemetry spans
- TTL cache for metadata lookups
- Storage and provider events
- Cross-provider copy and synchronization

Quick Start:
    from polystore.core.settings import StorageManagerSettings, create_local_config
    from polystore.infra.storage import StorageManager, UploadOptions

    settings = StorageManagerSettings(
        default_provider="primary",
        providers={"primary": create_local_config("/var/data")},
    )
    async with StorageManager(settings) as storage:
        await storage.upload("docs/readme.txt", "hello", UploadOptions(mime_type="text/plain"))

    # Audit trail
    unsubscribe = storage.subscribe(lambda event: audit.write(event))

    # Attribute events to a caller
    with storage_context(user_id="u-1", tenant_id="t-1"):
        await storage.delete("docs/readme.txt")
"""

from __future__ import annotations

from polystore.core.settings.storage import StorageConfig, StorageProviderType

from .backends import (
    ByteRange,
    DownloadOptions,
    HttpMethod,
    ListOptions,
    ListResult,
    MetadataUpdate,
    MultipartPart,
    ResponseType,
    SignedUrlOptions,
    StorageBackend,
    StorageConfigValidator,
    StorageMetadata,
    StorageObject,
    SyncResult,
    UploadOptions,
    ValidationResult,
    create_storage_backend,
    register_backend_builder,
    test_connection,
    unregister_backend_builder,
)
from .cache import TTLCache
from .collector import MetricsCollector, StorageMetric, StorageOperation, TimeRange
from .context import StorageCaller, get_storage_caller, storage_context
from .events import (
    EventBus,
    ProviderEvent,
    ProviderEventType,
    StorageEvent,
    StorageEventType,
)

# Exceptions
from .exceptions import (
    StorageAccessDeniedError,
    StorageCannotRemoveDefaultError,
    StorageConfigError,
    StorageError,
    StorageInitializationError,
    StorageNotFoundError,
    StorageOperationNotSupportedError,
    StorageProviderNotFoundError,
    StorageQuotaExceededError,
    StorageSyncError,
    StorageUnsupportedProviderError,
)
from .manager import StorageManager
from .registry import ProviderRegistry

__all__ = [
    # Facade
    "StorageManager",
    "ProviderRegistry",
    # Backends
    "StorageBackend",
    "StorageConfig",
    "StorageConfigValidator",
    "StorageProviderType",
    "ValidationResult",
    "create_storage_backend",
    "register_backend_builder",
    "test_connection",
    "unregister_backend_builder",
    # Records
    "ByteRange",
    "DownloadOptions",
    "HttpMethod",
    "ListOptions",
    "ListResult",
    "MetadataUpdate",
    "MultipartPart",
    "ResponseType",
    "SignedUrlOptions",
    "StorageMetadata",
    "StorageObject",
    "SyncResult",
    "UploadOptions",
    # Observability
    "EventBus",
    "MetricsCollector",
    "ProviderEvent",
    "ProviderEventType",
    "StorageEvent",
    "StorageEventType",
    "StorageMetric",
    "StorageOperation",
    "TTLCache",
    "TimeRange",
    # Caller context
    "StorageCaller",
    "get_storage_caller",
    "storage_context",
    # Exceptions
    "StorageAccessDeniedError",
    "StorageCannotRemoveDefaultError",
    "StorageConfigError",
    "StorageError",
    "StorageInitializationError",
    "StorageNotFoundError",
    "StorageOperationNotSupportedError",
    "StorageProviderNotFoundError",
    "StorageQuotaExceededError",
    "StorageSyncError",
    "StorageUnsupportedProviderError",
]
