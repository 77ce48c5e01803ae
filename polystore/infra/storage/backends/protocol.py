"""Storage backend protocol and normalized data structures.

This module defines:
- Protocol interface that all storage backends must implement
- Normalized data structures for cross-backend compatibility
- Option records accepted by backend operations
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable, Sequence

DEFAULT_MIME_TYPE = "application/octet-stream"
DEFAULT_CHUNK_SIZE = 64 * 1024

# ============================================================================
# Enumerations
# ============================================================================


class ResponseType(StrEnum):
    """Shape of the value returned by a download."""

    BUFFER = "buffer"
    STREAM = "stream"
    TEXT = "text"
    JSON = "json"


class HttpMethod(StrEnum):
    """HTTP method a signed URL is valid for."""

    GET = "GET"
    PUT = "PUT"
    DELETE = "DELETE"


# ============================================================================
# Normalized Data Structures
# ============================================================================


@dataclass(frozen=True)
class StorageMetadata:
    """Normalized object metadata across all storage backends.

    Attributes:
        size: Object size in bytes
        mime_type: MIME type
        last_modified: Last modification timestamp
        etag: Entity tag for version identification
        cache_control: Cache-Control header value
        content_encoding: Content-Encoding header value
        custom_metadata: Backend-agnostic custom metadata
    """

    size: int
    mime_type: str = DEFAULT_MIME_TYPE
    last_modified: datetime | None = None
    etag: str | None = None
    cache_control: str | None = None
    content_encoding: str | None = None
    custom_metadata: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.size < 0:
            raise ValueError(f"size must be non-negative, got {self.size}")


@dataclass(frozen=True)
class StorageObject:
    """A stored object as returned by upload, copy and listing operations.

    Attributes:
        key: Object key/path
        size: Object size in bytes
        last_modified: Last modification timestamp (UTC)
        etag: Entity tag
        metadata: Full metadata when the backend returned it
        url: Canonical URL for the object
        public_url: Publicly reachable URL, when the object is public
    """

    key: str
    size: int
    last_modified: datetime
    etag: str | None = None
    metadata: StorageMetadata | None = None
    url: str | None = None
    public_url: str | None = None

    def __post_init__(self) -> None:
        if self.size < 0:
            raise ValueError(f"size must be non-negative, got {self.size}")


@dataclass(frozen=True)
class MetadataUpdate:
    """Partial metadata update; fields left as None are unchanged."""

    mime_type: str | None = None
    cache_control: str | None = None
    content_encoding: str | None = None
    custom_metadata: dict[str, str] | None = None

    def apply(self, current: StorageMetadata) -> StorageMetadata:
        """Return ``current`` with this update merged in."""
        custom = dict(current.custom_metadata)
        if self.custom_metadata is not None:
            custom.update(self.custom_metadata)
        return StorageMetadata(
            size=current.size,
            mime_type=self.mime_type or current.mime_type,
            last_modified=current.last_modified,
            etag=current.etag,
            cache_control=(
                self.cache_control if self.cache_control is not None else current.cache_control
            ),
            content_encoding=(
                self.content_encoding
                if self.content_encoding is not None
                else current.content_encoding
            ),
            custom_metadata=custom,
        )


@dataclass(frozen=True)
class ByteRange:
    """Inclusive byte range ``[start, end]``; ``end=None`` reads to the end."""

    start: int
    end: int | None = None

    def __post_init__(self) -> None:
        if self.start < 0:
            raise ValueError(f"start must be non-negative, got {self.start}")
        if self.end is not None and self.end < self.start:
            raise ValueError(f"end ({self.end}) must be >= start ({self.start})")

    def to_header(self) -> str:
        """Render as an HTTP Range header value."""
        end = "" if self.end is None else str(self.end)
        return f"bytes={self.start}-{end}"

    def slice(self, data: bytes) -> bytes:
        """Apply the range to an in-memory buffer."""
        stop = None if self.end is None else self.end + 1
        return data[self.start : stop]


@dataclass(frozen=True)
class UploadOptions:
    """Options for an upload.

    Attributes:
        mime_type: MIME type (defaults to application/octet-stream)
        cache_control: Cache-Control header value
        content_encoding: Content-Encoding header value
        custom_metadata: Custom metadata stored with the object
        is_public: Make the object publicly readable where supported
        progress_callback: Called with a percentage between 0 and 100
    """

    mime_type: str | None = None
    cache_control: str | None = None
    content_encoding: str | None = None
    custom_metadata: dict[str, str] = field(default_factory=dict)
    is_public: bool = False
    progress_callback: Callable[[float], None] | None = None


@dataclass(frozen=True)
class DownloadOptions:
    """Options for a download."""

    range: ByteRange | None = None
    response_type: ResponseType = ResponseType.BUFFER


@dataclass(frozen=True)
class ListOptions:
    """Options for listing objects.

    Attributes:
        prefix: Only return keys starting with this prefix
        max_results: Page size
        page_token: Continuation token from a previous page
        delimiter: Group keys sharing a prefix up to this delimiter
        include_metadata: Populate StorageObject.metadata
    """

    prefix: str | None = None
    max_results: int = 1000
    page_token: str | None = None
    delimiter: str | None = None
    include_metadata: bool = False

    def __post_init__(self) -> None:
        if self.max_results < 1:
            raise ValueError(f"max_results must be at least 1, got {self.max_results}")


@dataclass(frozen=True)
class ListResult:
    """One page of a listing."""

    objects: list[StorageObject] = field(default_factory=list)
    prefixes: list[str] = field(default_factory=list)
    next_page_token: str | None = None
    is_truncated: bool = False


@dataclass(frozen=True)
class SignedUrlOptions:
    """Options for a signed URL."""

    expires_in: int = 3600
    method: HttpMethod = HttpMethod.GET
    content_type: str | None = None
    custom_metadata: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class MultipartPart:
    """A completed part of a multipart upload."""

    part_number: int
    etag: str


@dataclass(frozen=True)
class SyncResult:
    """Outcome of a provider synchronization.

    Attributes:
        copied: Keys copied successfully
        failed: Keys that could not be copied
    """

    copied: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


# ============================================================================
# Storage Backend Protocol
# ============================================================================


@runtime_checkable
class StorageBackend(Protocol):
    """Protocol interface for storage backends.

    Backends normalise vendor errors into the storage error taxonomy; vendor
    exception types never cross this interface. Optional capabilities
    (``update_metadata``, ``move``, ``delete_many`` and multipart) raise
    StorageOperationNotSupportedError when a backend cannot honour them.

    Example:
        class MemoryBackend:
            @property
            def name(self) -> str:
                return "memory"

            async def upload(self, key, data, options=None) -> StorageObject:
                ...
    """

    # ========================================================================
    # Properties
    # ========================================================================

    @property
    def name(self) -> str:
        """Provider kind (e.g., 'local', 's3')."""
        ...

    @property
    def bucket_name(self) -> str:
        """Container this backend operates on."""
        ...

    @property
    def region(self) -> str | None:
        """Geographic region, if any."""
        ...

    @property
    def is_ready(self) -> bool:
        """Check if backend is initialized and ready for operations."""
        ...

    @property
    def supports_atomic_move(self) -> bool:
        """Whether ``move`` is a single atomic rename."""
        ...

    @property
    def supports_multipart(self) -> bool:
        """Whether multipart uploads are implemented."""
        ...

    # ========================================================================
    # Lifecycle Management
    # ========================================================================

    async def startup(self) -> None:
        """Initialize backend (create clients, directories, etc.)."""
        ...

    async def shutdown(self) -> None:
        """Gracefully shutdown backend (close connections, cleanup resources)."""
        ...

    async def health_check(self) -> bool:
        """Check backend health and connectivity.

        Returns:
            True if healthy, False otherwise
        """
        ...

    # ========================================================================
    # Core Object Operations
    # ========================================================================

    async def upload(
        self,
        key: str,
        data: bytes,
        options: UploadOptions | None = None,
    ) -> StorageObject:
        """Upload an object.

        Raises:
            StorageAccessDeniedError: If the backend refuses the write
            StorageQuotaExceededError: If the write exceeds the quota
            StorageError: If upload fails
        """
        ...

    async def download(self, key: str, byte_range: ByteRange | None = None) -> bytes:
        """Download an object (or an inclusive byte range of it).

        Raises:
            StorageNotFoundError: If object doesn't exist
        """
        ...

    def stream(
        self,
        key: str,
        byte_range: ByteRange | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> AsyncIterator[bytes]:
        """Stream an object in chunks.

        Raises:
            StorageNotFoundError: If object doesn't exist (on first iteration)
        """
        ...

    async def delete(self, key: str) -> None:
        """Delete an object.

        Raises:
            StorageNotFoundError: If object doesn't exist
        """
        ...

    async def delete_many(self, keys: Sequence[str]) -> list[str]:
        """Delete several objects in one request.

        Returns:
            Keys that could not be deleted
        """
        ...

    async def exists(self, key: str) -> bool:
        """Check if an object exists."""
        ...

    async def get_metadata(self, key: str) -> StorageMetadata:
        """Get object metadata without downloading content.

        Raises:
            StorageNotFoundError: If object doesn't exist
        """
        ...

    async def update_metadata(self, key: str, update: MetadataUpdate) -> StorageMetadata:
        """Merge ``update`` into the object's metadata and return the result."""
        ...

    # ========================================================================
    # Listing
    # ========================================================================

    async def list(self, options: ListOptions | None = None) -> ListResult:
        """List one page of objects."""
        ...

    async def list_by_prefix(
        self,
        prefix: str,
        options: ListOptions | None = None,
    ) -> ListResult:
        """List one page of objects under ``prefix``."""
        ...

    # ========================================================================
    # URLs
    # ========================================================================

    def get_public_url(self, key: str) -> str:
        """Return the public URL for ``key`` without any I/O."""
        ...

    async def get_signed_url(self, key: str, options: SignedUrlOptions | None = None) -> str:
        """Generate a time-limited signed URL."""
        ...

    # ========================================================================
    # Copy / Move
    # ========================================================================

    async def copy(self, source_key: str, dest_key: str) -> StorageObject:
        """Copy an object within this backend."""
        ...

    async def move(self, source_key: str, dest_key: str) -> StorageObject:
        """Move an object within this backend."""
        ...

    # ========================================================================
    # Multipart Uploads (Optional)
    # ========================================================================

    async def create_multipart_upload(
        self,
        key: str,
        options: UploadOptions | None = None,
    ) -> str:
        """Start a multipart upload and return its upload id."""
        ...

    async def upload_part(
        self,
        key: str,
        upload_id: str,
        part_number: int,
        data: bytes,
    ) -> MultipartPart:
        """Upload one part of a multipart upload."""
        ...

    async def complete_multipart_upload(
        self,
        key: str,
        upload_id: str,
        parts: Sequence[MultipartPart],
    ) -> StorageObject:
        """Assemble uploaded parts into the final object."""
        ...

    async def abort_multipart_upload(self, key: str, upload_id: str) -> None:
        """Discard a multipart upload and its parts."""
        ...
