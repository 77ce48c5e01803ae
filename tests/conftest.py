"""Pytest configuration and shared fixtures.

Organization:
    - Settings Fixtures: cache reset between tests
    - Backend Fixtures: in-memory StorageBackend with failure injection
    - Manager Fixtures: StorageManager wired to fake backends, no real sleeps
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from datetime import UTC, datetime
import hashlib
from typing import TYPE_CHECKING, Any
from unittest.mock import AsyncMock

import pytest

from polystore.core.settings import StorageManagerSettings, clear_settings_cache
from polystore.infra.logging.context import clear_log_context
from polystore.infra.storage.backends.protocol import (
    DEFAULT_MIME_TYPE,
    ListOptions,
    ListResult,
    MultipartPart,
    SignedUrlOptions,
    StorageMetadata,
    StorageObject,
)
from polystore.infra.storage.collector import MetricsCollector
from polystore.infra.storage.exceptions import (
    StorageNotFoundError,
    StorageOperationNotSupportedError,
)
from polystore.infra.storage.manager import StorageManager
from polystore.utils.retry import RetryPolicy, RetryStrategy

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, AsyncIterator, Sequence

    from polystore.infra.storage.backends.protocol import (
        ByteRange,
        MetadataUpdate,
        UploadOptions,
    )


# ============================================================================
# Settings Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    """Make every test load settings from a clean slate."""
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Keep log context bound in one test out of the next."""
    clear_log_context()
    yield
    clear_log_context()


# ============================================================================
# Backend Fixtures
# ============================================================================


@dataclass
class _Failure:
    error: Exception
    times: int | None
    keys: frozenset[str] | None


class FakeBackend:
    """In-memory StorageBackend.

    ``calls`` counts every invocation per operation. ``fail`` makes an
    operation raise, optionally only for some keys or a number of times.
    """

    def __init__(
        self,
        name: str = "fake",
        bucket_name: str = "bucket",
        *,
        atomic_move: bool = True,
        batch_delete: bool = True,
        multipart: bool = True,
        healthy: bool = True,
    ) -> None:
        self._name = name
        self._bucket_name = bucket_name
        self._atomic_move = atomic_move
        self._batch_delete = batch_delete
        self._multipart = multipart
        self.healthy = healthy
        self.objects: dict[str, tuple[bytes, StorageMetadata]] = {}
        self.uploads: dict[str, dict[int, bytes]] = {}
        self.calls: Counter[str] = Counter()
        self.started = False
        self._failures: dict[str, _Failure] = {}

    # -- failure injection -------------------------------------------------

    def fail(
        self,
        operation: str,
        error: Exception | None = None,
        times: int | None = None,
        keys: Sequence[str] | None = None,
    ) -> None:
        self._failures[operation] = _Failure(
            error=error or RuntimeError(f"{operation} failed"),
            times=times,
            keys=frozenset(keys) if keys is not None else None,
        )

    def _enter(self, operation: str, key: str | None = None) -> None:
        self.calls[operation] += 1
        failure = self._failures.get(operation)
        if failure is None:
            return
        if failure.keys is not None and key not in failure.keys:
            return
        if failure.times is not None:
            if failure.times <= 0:
                return
            failure.times -= 1
        raise failure.error

    def put(self, key: str, data: bytes, mime_type: str = DEFAULT_MIME_TYPE) -> None:
        self.objects[key] = (
            data,
            StorageMetadata(
                size=len(data),
                mime_type=mime_type,
                last_modified=datetime.now(UTC),
                etag=hashlib.md5(data).hexdigest(),
            ),
        )

    def _get(self, key: str) -> tuple[bytes, StorageMetadata]:
        try:
            return self.objects[key]
        except KeyError:
            raise StorageNotFoundError(key, provider=self._name) from None

    def _object(self, key: str) -> StorageObject:
        data, metadata = self.objects[key]
        return StorageObject(
            key=key,
            size=len(data),
            last_modified=metadata.last_modified,
            etag=metadata.etag,
            metadata=metadata,
        )

    # -- properties --------------------------------------------------------

    @property
    def name(self) -> str:
        return self._name

    @property
    def bucket_name(self) -> str:
        return self._bucket_name

    @property
    def region(self) -> str | None:
        return None

    @property
    def is_ready(self) -> bool:
        return self.started

    @property
    def supports_atomic_move(self) -> bool:
        return self._atomic_move

    @property
    def supports_multipart(self) -> bool:
        return self._multipart

    # -- lifecycle ---------------------------------------------------------

    async def startup(self) -> None:
        self._enter("startup")
        self.started = True

    async def shutdown(self) -> None:
        self._enter("shutdown")
        self.started = False

    async def health_check(self) -> bool:
        self._enter("health_check")
        return self.healthy

    # -- objects -----------------------------------------------------------

    async def upload(
        self,
        key: str,
        data: bytes,
        options: UploadOptions | None = None,
    ) -> StorageObject:
        self._enter("upload", key)
        if options and options.progress_callback:
            options.progress_callback(0.0)
        self.objects[key] = (
            bytes(data),
            StorageMetadata(
                size=len(data),
                mime_type=(options.mime_type if options else None) or DEFAULT_MIME_TYPE,
                last_modified=datetime.now(UTC),
                etag=hashlib.md5(data).hexdigest(),
                cache_control=options.cache_control if options else None,
                content_encoding=options.content_encoding if options else None,
                custom_metadata=dict(options.custom_metadata) if options else {},
            ),
        )
        if options and options.progress_callback:
            options.progress_callback(100.0)
        return self._object(key)

    async def download(self, key: str, byte_range: ByteRange | None = None) -> bytes:
        self._enter("download", key)
        data, _ = self._get(key)
        return byte_range.slice(data) if byte_range else data

    async def stream(
        self,
        key: str,
        byte_range: ByteRange | None = None,
        chunk_size: int = 4,
    ) -> AsyncIterator[bytes]:
        self._enter("stream", key)
        data, _ = self._get(key)
        if byte_range:
            data = byte_range.slice(data)
        for offset in range(0, len(data), chunk_size):
            yield data[offset : offset + chunk_size]

    async def delete(self, key: str) -> None:
        self._enter("delete", key)
        self._get(key)
        del self.objects[key]

    async def delete_many(self, keys: Sequence[str]) -> list[str]:
        if not self._batch_delete:
            raise StorageOperationNotSupportedError("delete_many", provider=self._name)
        self._enter("delete_many")
        failed = []
        for key in keys:
            failure = self._failures.get("delete")
            if failure is not None and failure.keys is not None and key in failure.keys:
                failed.append(key)
                continue
            self.objects.pop(key, None)
        return failed

    async def exists(self, key: str) -> bool:
        self._enter("exists", key)
        return key in self.objects

    async def get_metadata(self, key: str) -> StorageMetadata:
        self._enter("get_metadata", key)
        return self._get(key)[1]

    async def update_metadata(self, key: str, update: MetadataUpdate) -> StorageMetadata:
        self._enter("update_metadata", key)
        data, current = self._get(key)
        merged = update.apply(current)
        self.objects[key] = (data, merged)
        return merged

    # -- listing -----------------------------------------------------------

    async def list(self, options: ListOptions | None = None) -> ListResult:
        self._enter("list")
        options = options or ListOptions()
        keys = sorted(k for k in self.objects if k.startswith(options.prefix or ""))
        if options.page_token:
            keys = [k for k in keys if k > options.page_token]
        page = keys[: options.max_results]
        truncated = len(keys) > len(page)
        return ListResult(
            objects=[self._object(k) for k in page],
            next_page_token=page[-1] if truncated else None,
            is_truncated=truncated,
        )

    async def list_by_prefix(self, prefix: str, options: ListOptions | None = None) -> ListResult:
        options = options or ListOptions()
        return await self.list(
            ListOptions(
                prefix=prefix,
                max_results=options.max_results,
                page_token=options.page_token,
            )
        )

    # -- urls --------------------------------------------------------------

    def get_public_url(self, key: str) -> str:
        self._enter("get_public_url", key)
        return f"https://fake.example/{self._bucket_name}/{key}"

    async def get_signed_url(self, key: str, options: SignedUrlOptions | None = None) -> str:
        self._enter("get_signed_url", key)
        options = options or SignedUrlOptions()
        return (
            f"https://fake.example/{self._bucket_name}/{key}"
            f"?method={options.method}&expires={options.expires_in}"
        )

    # -- copy / move -------------------------------------------------------

    async def copy(self, source_key: str, dest_key: str) -> StorageObject:
        self._enter("copy", source_key)
        self.objects[dest_key] = self._get(source_key)
        return self._object(dest_key)

    async def move(self, source_key: str, dest_key: str) -> StorageObject:
        if not self._atomic_move:
            raise StorageOperationNotSupportedError("move", provider=self._name)
        self._enter("move", source_key)
        self.objects[dest_key] = self._get(source_key)
        del self.objects[source_key]
        return self._object(dest_key)

    # -- multipart ---------------------------------------------------------

    def _require_multipart(self, operation: str) -> None:
        if not self._multipart:
            raise StorageOperationNotSupportedError(operation, provider=self._name)

    async def create_multipart_upload(
        self,
        key: str,
        options: UploadOptions | None = None,
    ) -> str:
        self._require_multipart("create_multipart_upload")
        self._enter("create_multipart_upload", key)
        upload_id = f"upload-{len(self.uploads) + 1}"
        self.uploads[upload_id] = {}
        return upload_id

    async def upload_part(
        self,
        key: str,
        upload_id: str,
        part_number: int,
        data: bytes,
    ) -> MultipartPart:
        self._require_multipart("upload_part")
        self._enter("upload_part", key)
        self.uploads[upload_id][part_number] = data
        return MultipartPart(part_number=part_number, etag=hashlib.md5(data).hexdigest())

    async def complete_multipart_upload(
        self,
        key: str,
        upload_id: str,
        parts: Sequence[MultipartPart],
    ) -> StorageObject:
        self._require_multipart("complete_multipart_upload")
        self._enter("complete_multipart_upload", key)
        staged = self.uploads.pop(upload_id)
        self.put(key, b"".join(staged[p.part_number] for p in parts))
        return self._object(key)

    async def abort_multipart_upload(self, key: str, upload_id: str) -> None:
        self._require_multipart("abort_multipart_upload")
        self._enter("abort_multipart_upload", key)
        self.uploads.pop(upload_id, None)


@pytest.fixture
def fake_backend() -> FakeBackend:
    """Unstarted in-memory backend."""
    return FakeBackend()


@pytest.fixture
def make_backend():
    """Factory for FakeBackend instances with custom capabilities.

    Example:
        def test_fallback(make_backend):
            backend = make_backend(atomic_move=False)
    """
    return FakeBackend


# ============================================================================
# Manager Fixtures
# ============================================================================


@pytest.fixture
def sleep() -> AsyncMock:
    """Replacement for asyncio.sleep that records requested delays."""
    return AsyncMock()


@pytest.fixture
def retry_policy(sleep: AsyncMock) -> RetryPolicy:
    """Two retries, deterministic delays, no real waiting."""
    return RetryPolicy(
        RetryStrategy(
            max_retries=2,
            base_delay_ms=100,
            exponential_backoff=True,
            max_jitter_ms=0,
        ),
        sleep=sleep,
    )


@pytest.fixture
def storage_settings() -> StorageManagerSettings:
    return StorageManagerSettings(default_provider="primary", providers={})


def build_manager(
    settings: StorageManagerSettings,
    retry_policy: RetryPolicy,
    **kwargs: Any,
) -> StorageManager:
    return StorageManager(
        settings,
        retry_policy=retry_policy,
        metrics=kwargs.pop("metrics", MetricsCollector(export_prometheus=False)),
        **kwargs,
    )


@pytest.fixture
def manager_factory(retry_policy: RetryPolicy):
    """Build uninitialized managers sharing the test retry policy.

    Example:
        def test_atomic(manager_factory):
            storage = manager_factory(settings, cache=TTLCache(clock=clock))
    """

    def factory(
        settings: StorageManagerSettings | None = None,
        **kwargs: Any,
    ) -> StorageManager:
        return build_manager(
            settings or StorageManagerSettings(default_provider="primary", providers={}),
            retry_policy,
            **kwargs,
        )

    return factory


@pytest.fixture
async def manager(
    storage_settings: StorageManagerSettings,
    retry_policy: RetryPolicy,
) -> AsyncGenerator[StorageManager]:
    """Initialized manager with fake "primary" (default) and "backup" providers."""
    storage = build_manager(storage_settings, retry_policy)
    await storage.register_backend("primary", FakeBackend("fake", "primary-bucket"))
    await storage.register_backend("backup", FakeBackend("fake", "backup-bucket"))
    await storage.initialize()
    yield storage
    await storage.shutdown()


@pytest.fixture
def primary(manager: StorageManager) -> FakeBackend:
    return manager.get_provider("primary")  # type: ignore[return-value]


@pytest.fixture
def backup(manager: StorageManager) -> FakeBackend:
    return manager.get_provider("backup")  # type: ignore[return-value]
