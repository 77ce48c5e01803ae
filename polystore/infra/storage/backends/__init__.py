"""Storage backends package.

Provides protocol-based abstraction for multiple storage backends.
"""

from polystore.core.settings.storage import StorageProviderType

from .factory import (
    create_storage_backend,
    register_backend_builder,
    test_connection,
    unregister_backend_builder,
)
from .protocol import (
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
    StorageMetadata,
    StorageObject,
    SyncResult,
    UploadOptions,
)
from .validation import StorageConfigValidator, ValidationResult

__all__ = [
    "ByteRange",
    "DownloadOptions",
    "HttpMethod",
    "ListOptions",
    "ListResult",
    "MetadataUpdate",
    "MultipartPart",
    "ResponseType",
    "SignedUrlOptions",
    "StorageBackend",
    "StorageConfigValidator",
    "StorageMetadata",
    "StorageObject",
    "StorageProviderType",
    "SyncResult",
    "UploadOptions",
    "ValidationResult",
    "create_storage_backend",
    "register_backend_builder",
    "test_connection",
    "unregister_backend_builder",
]
