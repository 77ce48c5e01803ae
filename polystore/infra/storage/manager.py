"""Unified storage facade over any number of named backends.

This module provides the main interface for storage operations with:
- Named providers with one default, added and removed at runtime
- Retry with exponential backoff and jitter around every backend call
- One StorageMetric per operation, mirrored to Prometheus and traced
- A TTL cache for metadata lookups
- Storage and provider events for audit or notification subscribers
- Cross-provider copy and prefix-scoped synchronization

There is no module-level instance; applications construct a manager and
own its lifecycle.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
import json
import logging
import time
from typing import TYPE_CHECKING, Any, TypeVar

from polystore.core.settings import get_storage_settings
from polystore.utils.retry import RetryPolicy

from .backends.factory import create_storage_backend
from .backends.protocol import (
    DownloadOptions,
    ListOptions,
    ResponseType,
    SyncResult,
    UploadOptions,
)
from .cache import TTLCache
from .collector import MetricsCollector, StorageOperation
from .events import EventBus, StorageEvent, StorageEventType
from .exceptions import (
    StorageError,
    StorageInitializationError,
    StorageNotFoundError,
    StorageOperationNotSupportedError,
    StorageSyncError,
)
from .instrumentation import track_storage_operation
from .operations.batch import run_batch
from .registry import ProviderRegistry

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable, Iterable, Sequence
    from types import TracebackType

    from polystore.core.settings.storage import StorageConfig, StorageManagerSettings

    from .backends.protocol import (
        ListResult,
        MetadataUpdate,
        MultipartPart,
        SignedUrlOptions,
        StorageBackend,
        StorageMetadata,
        StorageObject,
    )
    from .collector import StorageMetric, TimeRange
    from .events import ProviderEvent

logger = logging.getLogger(__name__)

R = TypeVar("R")

UploadData = bytes | bytearray | memoryview | str


class StorageManager:
    """Storage facade with retries, metrics, caching and events.

    Every operation runs against the default provider unless ``provider=``
    names another registered one.

    Example:
        settings = StorageManagerSettings(
            default_provider="primary",
            providers={"primary": create_local_config("/var/data")},
        )
        async with StorageManager(settings) as storage:
            await storage.upload(
                "docs/readme.txt", "hello", UploadOptions(mime_type="text/plain")
            )
            text = await storage.download(
                "docs/readme.txt", DownloadOptions(response_type=ResponseType.TEXT)
            )
    """

    def __init__(
        self,
        settings: StorageManagerSettings | None = None,
        backend_factory: Callable[[StorageConfig], StorageBackend] | None = None,
        retry_policy: RetryPolicy | None = None,
        cache: TTLCache[StorageMetadata] | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        """Initialize storage manager.

        Args:
            settings: Optional settings override. If not provided,
                     loads from environment via get_storage_settings()
            backend_factory: Builds a backend from a StorageConfig
            retry_policy: Retry policy (defaults to settings.retry)
            cache: Metadata cache (defaults to settings.cache_*)
            metrics: Metrics collector (defaults to settings.metrics_*)
        """
        self._settings = settings or get_storage_settings()
        self._registry = ProviderRegistry(
            self._settings.default_provider,
            backend_factory=backend_factory or create_storage_backend,
        )
        self._retry = retry_policy or RetryPolicy.from_settings(self._settings.retry)
        self._cache: TTLCache[StorageMetadata] = (
            cache
            if cache is not None
            else TTLCache(
                max_entries=self._settings.cache_max_entries,
                default_ttl=self._settings.cache_ttl_seconds,
            )
        )
        self._metrics = (
            metrics
            if metrics is not None
            else MetricsCollector(
                retention=timedelta(hours=self._settings.metrics_retention_hours),
                max_records=self._settings.metrics_max_records,
            )
        )
        self._events: EventBus[StorageEvent] = EventBus("storage")
        self._sweepers: list[asyncio.Task[None]] = []
        self._initialized = False

    @property
    def settings(self) -> StorageManagerSettings:
        return self._settings

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    @property
    def cache(self) -> TTLCache[StorageMetadata]:
        return self._cache

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics

    @property
    def default_provider(self) -> str:
        return self._registry.default_name

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    # ========== Lifecycle ==========

    async def initialize(self) -> None:
        """Start every configured provider and the periodic sweeps.

        Backends registered with ``register_backend`` beforehand are started
        too. On failure every provider started so far is shut down again.

        Raises:
            StorageInitializationError: If a provider cannot be built or started
            StorageProviderNotFoundError: If the default provider is missing
        """
        if self._initialized:
            return

        logger.info(
            "Initializing storage manager",
            extra={
                "default_provider": self.default_provider,
                "providers": sorted(self._settings.providers),
            },
        )

        try:
            for name, config in self._settings.providers.items():
                await self._registry.add(name, config)
            for name, backend in self._registry.items():
                if not backend.is_ready:
                    await self._start_backend(name, backend)
            self._registry.get()
        except StorageError:
            await self._registry.clear()
            raise

        self._start_sweepers()
        self._initialized = True
        logger.info(
            "Storage manager initialized",
            extra={"providers": self._registry.list()},
        )

    async def shutdown(self) -> None:
        """Cancel the sweeps and shut every provider down."""
        for task in self._sweepers:
            task.cancel()
        await asyncio.gather(*self._sweepers, return_exceptions=True)
        self._sweepers.clear()

        await self._registry.clear()
        self._initialized = False
        logger.info("Storage manager shutdown complete")

    async def __aenter__(self) -> StorageManager:
        await self.initialize()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.shutdown()

    # ========== Object Operations ==========

    async def upload(
        self,
        key: str,
        data: UploadData,
        options: UploadOptions | None = None,
        provider: str | None = None,
    ) -> StorageObject:
        """Upload ``data`` under ``key``; strings are encoded as UTF-8.

        Raises:
            StorageAccessDeniedError: If the backend refuses the write
            StorageQuotaExceededError: If the write exceeds the quota
        """
        payload = _as_bytes(data)
        name = self._resolve(provider)

        obj = await self._execute(
            StorageOperation.UPLOAD,
            name,
            lambda backend: backend.upload(key, payload, options),
            key=key,
            size=len(payload),
        )
        self._emit(StorageEventType.UPLOAD, name, key, size=obj.size, metadata=_object_details(obj))
        return obj

    async def download(
        self,
        key: str,
        options: DownloadOptions | None = None,
        provider: str | None = None,
    ) -> Any:
        """Download an object in the shape ``options.response_type`` asks for.

        Returns bytes (buffer), an async iterator of byte chunks (stream),
        a str decoded as UTF-8 (text) or the parsed document (json).

        Raises:
            StorageNotFoundError: If the object doesn't exist
        """
        options = options or DownloadOptions()
        name = self._resolve(provider)

        if options.response_type is ResponseType.STREAM:
            return await self._open_stream(name, key, options)

        data: bytes = await self._execute(
            StorageOperation.DOWNLOAD,
            name,
            lambda backend: backend.download(key, options.range),
            key=key,
            measure=len,
        )
        self._emit(StorageEventType.DOWNLOAD, name, key, size=len(data))

        match options.response_type:
            case ResponseType.TEXT:
                return _decode(data, key, name, parse_json=False)
            case ResponseType.JSON:
                return _decode(data, key, name, parse_json=True)
            case _:
                return data

    async def delete(self, key: str, provider: str | None = None) -> None:
        """Delete an object; deleting a missing key succeeds silently."""
        name = self._resolve(provider)
        await self._execute(
            StorageOperation.DELETE,
            name,
            lambda backend: _delete_if_present(backend, key),
            key=key,
        )
        self._emit(StorageEventType.DELETE, name, key)

    async def delete_many(self, keys: Iterable[str], provider: str | None = None) -> list[str]:
        """Best-effort deletion of several objects.

        Uses the backend's batch delete when it has one, otherwise deletes
        key by key with at most ``max_concurrency`` requests in flight.

        Returns:
            Keys that could not be deleted
        """
        keys = list(keys)
        if not keys:
            return []

        name = self._resolve(provider)
        self._registry.get(name)

        async def delete_all(backend: StorageBackend) -> list[str]:
            failed = await self._retry.execute(
                _unsupported_as_none, backend.delete_many, keys, operation="delete_many"
            )
            if failed is not None:
                return list(failed)

            logger.debug(
                "Backend has no batch delete; deleting key by key",
                extra={"provider_name": name, "count": len(keys)},
            )
            batch = await run_batch(
                keys,
                lambda key: self._retry.execute(
                    _delete_if_present, backend, key, operation="delete"
                ),
                max_concurrency=self._settings.max_concurrency,
                name="delete_many",
            )
            return batch.failed_keys

        try:
            failed = await self._execute(
                StorageOperation.DELETE,
                name,
                delete_all,
                retry=False,
                attributes={"count": len(keys)},
            )
        except Exception as e:
            logger.warning(
                "Batch delete failed",
                extra={"provider_name": name, "count": len(keys), "error": str(e)},
            )
            return keys

        failed_keys = set(failed)
        for key in keys:
            if key not in failed_keys:
                self._emit(StorageEventType.DELETE, name, key)
        return failed

    async def exists(self, key: str, provider: str | None = None) -> bool:
        name = self._resolve(provider)
        return await self._execute(
            StorageOperation.METADATA,
            name,
            lambda backend: backend.exists(key),
            key=key,
        )

    async def get_metadata(self, key: str, provider: str | None = None) -> StorageMetadata:
        """Return object metadata, served from the cache within its TTL.

        Raises:
            StorageNotFoundError: If the object doesn't exist
        """
        name = self._resolve(provider)
        cache_key = f"{name}:metadata:{key}"

        if self._settings.enable_caching:
            cached = self._cache.get(cache_key)
            if cached is not None:
                return cached

        metadata = await self._execute(
            StorageOperation.METADATA,
            name,
            lambda backend: backend.get_metadata(key),
            key=key,
        )

        if self._settings.enable_caching:
            self._cache.set(cache_key, metadata, self._settings.cache_ttl_seconds)
        return metadata

    async def update_metadata(
        self,
        key: str,
        update: MetadataUpdate,
        provider: str | None = None,
    ) -> StorageMetadata:
        """Merge ``update`` into the object's metadata.

        The metadata cache is not refreshed; cached lookups may return the
        previous metadata until their TTL elapses.

        Raises:
            StorageOperationNotSupportedError: If the backend cannot update metadata
        """
        name = self._resolve(provider)
        return await self._execute(
            StorageOperation.METADATA,
            name,
            lambda backend: backend.update_metadata(key, update),
            key=key,
        )

    # ========== Listing ==========

    async def list(
        self,
        options: ListOptions | None = None,
        provider: str | None = None,
    ) -> ListResult:
        name = self._resolve(provider)
        return await self._execute(
            StorageOperation.LIST,
            name,
            lambda backend: backend.list(options),
            attributes={"prefix": options.prefix} if options and options.prefix else None,
        )

    async def list_by_prefix(
        self,
        prefix: str,
        options: ListOptions | None = None,
        provider: str | None = None,
    ) -> ListResult:
        name = self._resolve(provider)
        return await self._execute(
            StorageOperation.LIST,
            name,
            lambda backend: backend.list_by_prefix(prefix, options),
            attributes={"prefix": prefix},
        )

    async def iter_objects(
        self,
        prefix: str | None = None,
        provider: str | None = None,
        page_size: int = 1000,
    ) -> AsyncIterator[StorageObject]:
        """Yield every object under ``prefix``, following continuation tokens."""
        token: str | None = None
        while True:
            page = await self.list(
                ListOptions(prefix=prefix, max_results=page_size, page_token=token),
                provider=provider,
            )
            for obj in page.objects:
                yield obj

            token = page.next_page_token
            if not page.is_truncated or not token:
                return

    # ========== URLs ==========

    def get_public_url(self, key: str, provider: str | None = None) -> str:
        """Build the public URL for ``key``; performs no I/O."""
        name = self._resolve(provider)
        backend = self._registry.get(name)
        started = time.perf_counter()
        try:
            url = backend.get_public_url(key)
        except Exception as e:
            self._record(StorageOperation.URL, name, started, error=e)
            raise
        self._record(StorageOperation.URL, name, started)
        return url

    async def get_signed_url(
        self,
        key: str,
        options: SignedUrlOptions | None = None,
        provider: str | None = None,
    ) -> str:
        """Generate a time-limited URL allowing ``options.method`` on ``key``."""
        name = self._resolve(provider)
        return await self._execute(
            StorageOperation.URL,
            name,
            lambda backend: backend.get_signed_url(key, options),
            key=key,
        )

    # ========== Copy / Move ==========

    async def copy(
        self,
        source_key: str,
        dest_key: str,
        provider: str | None = None,
    ) -> StorageObject:
        name = self._resolve(provider)
        obj = await self._execute(
            StorageOperation.COPY,
            name,
            lambda backend: backend.copy(source_key, dest_key),
            key=dest_key,
            measure=_object_size,
            attributes={"source_key": source_key},
        )
        self._emit(
            StorageEventType.COPY,
            name,
            dest_key,
            size=obj.size,
            metadata={"source_key": source_key},
        )
        return obj

    async def move(
        self,
        source_key: str,
        dest_key: str,
        provider: str | None = None,
    ) -> StorageObject:
        """Move an object within one provider.

        Backends without a native move get copy followed by delete, which
        is not atomic: a failure between the two steps leaves both objects
        in place. With ``require_atomic_move`` such backends are refused.

        Raises:
            StorageOperationNotSupportedError: If an atomic move is required
                but the backend cannot provide one
        """
        name = self._resolve(provider)
        require_atomic = self._settings.require_atomic_move

        async def move_object(backend: StorageBackend) -> StorageObject:
            if require_atomic and not backend.supports_atomic_move:
                raise StorageOperationNotSupportedError("move", provider=name)

            moved = await self._retry.execute(
                _unsupported_as_none, backend.move, source_key, dest_key, operation="move"
            )
            if moved is not None:
                return moved
            if require_atomic:
                raise StorageOperationNotSupportedError("move", provider=name)

            logger.debug(
                "Backend has no native move; copying then deleting",
                extra={"provider_name": name, "key": source_key, "dest_key": dest_key},
            )
            copied = await self._retry.execute(
                backend.copy, source_key, dest_key, operation="copy"
            )
            await self._retry.execute(_delete_if_present, backend, source_key, operation="delete")
            return copied

        obj = await self._execute(
            StorageOperation.MOVE,
            name,
            move_object,
            key=dest_key,
            retry=False,
            measure=_object_size,
            attributes={"source_key": source_key},
        )
        self._emit(
            StorageEventType.MOVE,
            name,
            dest_key,
            size=obj.size,
            metadata={"source_key": source_key},
        )
        return obj

    async def copy_between_providers(
        self,
        source_provider: str,
        source_key: str,
        dest_provider: str,
        dest_key: str,
    ) -> StorageObject:
        """Copy an object from one provider to another.

        The object is buffered fully in memory; the MIME type and custom
        metadata of the source are carried over.
        """
        source = self._registry.get(source_provider)

        async def copy_across(destination: StorageBackend) -> StorageObject:
            data = await self._retry.execute(source.download, source_key, operation="download")
            metadata = await self._retry.execute(
                source.get_metadata, source_key, operation="metadata"
            )
            options = UploadOptions(
                mime_type=metadata.mime_type,
                cache_control=metadata.cache_control,
                content_encoding=metadata.content_encoding,
                custom_metadata=dict(metadata.custom_metadata),
            )
            return await self._retry.execute(
                destination.upload, dest_key, data, options, operation="upload"
            )

        details = {"source_provider": source_provider, "source_key": source_key}
        obj = await self._execute(
            StorageOperation.COPY,
            dest_provider,
            copy_across,
            key=dest_key,
            retry=False,
            measure=_object_size,
            attributes=details,
        )
        self._emit(StorageEventType.COPY, dest_provider, dest_key, size=obj.size, metadata=details)
        return obj

    async def sync_providers(
        self,
        source_provider: str,
        dest_provider: str,
        prefix: str | None = None,
    ) -> SyncResult:
        """Copy every object under ``prefix`` from one provider to another.

        Individual copy failures are collected in ``SyncResult.failed``.

        Raises:
            StorageSyncError: If the source cannot be listed
        """
        self._registry.get(source_provider)
        self._registry.get(dest_provider)

        try:
            keys = [obj.key async for obj in self.iter_objects(prefix, provider=source_provider)]
        except Exception as e:
            raise StorageSyncError(
                f"Failed to list provider '{source_provider}' for sync",
                provider=source_provider,
                cause=e,
            ) from e

        batch = await run_batch(
            keys,
            lambda key: self.copy_between_providers(source_provider, key, dest_provider, key),
            max_concurrency=self._settings.max_concurrency,
            name="sync_providers",
        )
        result = SyncResult(copied=batch.succeeded_keys, failed=batch.failed_keys)

        logger.info(
            "Provider sync completed",
            extra={
                "source_provider": source_provider,
                "dest_provider": dest_provider,
                "prefix": prefix,
                "copied": len(result.copied),
                "failed": len(result.failed),
            },
        )
        return result

    # ========== Multipart Uploads ==========

    async def create_multipart_upload(
        self,
        key: str,
        options: UploadOptions | None = None,
        provider: str | None = None,
    ) -> str:
        name = self._multipart_provider(provider)
        return await self._execute(
            StorageOperation.UPLOAD,
            name,
            lambda backend: backend.create_multipart_upload(key, options),
            key=key,
        )

    async def upload_part(
        self,
        key: str,
        upload_id: str,
        part_number: int,
        data: UploadData,
        provider: str | None = None,
    ) -> MultipartPart:
        payload = _as_bytes(data)
        name = self._multipart_provider(provider)
        return await self._execute(
            StorageOperation.UPLOAD,
            name,
            lambda backend: backend.upload_part(key, upload_id, part_number, payload),
            key=key,
            size=len(payload),
            attributes={"part_number": part_number},
        )

    async def complete_multipart_upload(
        self,
        key: str,
        upload_id: str,
        parts: Sequence[MultipartPart],
        provider: str | None = None,
    ) -> StorageObject:
        name = self._multipart_provider(provider)
        obj = await self._execute(
            StorageOperation.UPLOAD,
            name,
            lambda backend: backend.complete_multipart_upload(key, upload_id, parts),
            key=key,
            measure=_object_size,
            attributes={"parts": len(parts)},
        )
        self._emit(StorageEventType.UPLOAD, name, key, size=obj.size, metadata=_object_details(obj))
        return obj

    async def abort_multipart_upload(
        self,
        key: str,
        upload_id: str,
        provider: str | None = None,
    ) -> None:
        name = self._multipart_provider(provider)
        await self._execute(
            StorageOperation.UPLOAD,
            name,
            lambda backend: backend.abort_multipart_upload(key, upload_id),
            key=key,
        )

    # ========== Health ==========

    async def health_check(self, provider: str | None = None) -> dict[str, bool]:
        """Probe one provider, or all of them, concurrently.

        A probe that raises counts as unhealthy.

        Raises:
            StorageProviderNotFoundError: If ``provider`` is not registered
        """
        if provider is not None:
            backend = self._registry.get(provider)
            return {provider: await _probe(provider, backend)}

        items = self._registry.items()
        results = await asyncio.gather(*(_probe(name, backend) for name, backend in items))
        return {name: healthy for (name, _), healthy in zip(items, results, strict=True)}

    # ========== Provider Management ==========

    def get_provider(self, name: str | None = None) -> StorageBackend:
        return self._registry.get(name)

    async def add_provider(self, name: str, config: StorageConfig) -> StorageBackend:
        """Build, start and register a provider at runtime."""
        return await self._registry.add(name, config)

    async def remove_provider(self, name: str) -> None:
        """Unregister and shut down a provider.

        Raises:
            StorageCannotRemoveDefaultError: If ``name`` is the default provider
        """
        await self._registry.remove(name)

    def list_providers(self) -> list[str]:
        return self._registry.list()

    async def register_backend(self, name: str, backend: StorageBackend) -> None:
        """Register a pre-built backend under ``name``.

        Once the manager is initialized the backend is started here;
        before that, ``initialize`` starts it.
        """
        if self._initialized and not backend.is_ready:
            await self._start_backend(name, backend)

        previous = self._registry.register(name, backend)
        if previous is not None and previous is not backend:
            try:
                await previous.shutdown()
            except Exception:
                logger.exception(
                    "Failed to shut down replaced storage provider",
                    extra={"provider_name": name, "provider": previous.name},
                )

    # ========== Observability ==========

    async def get_metrics(
        self,
        provider: str | None = None,
        time_range: TimeRange | None = None,
    ) -> list[StorageMetric]:
        return self._metrics.query(provider=provider, time_range=time_range)

    def subscribe(self, handler: Callable[[StorageEvent], Any]) -> Callable[[], None]:
        """Receive a StorageEvent for every successful data operation."""
        return self._events.subscribe(handler)

    def subscribe_providers(self, handler: Callable[[ProviderEvent], Any]) -> Callable[[], None]:
        """Receive a ProviderEvent whenever a provider is added or removed."""
        return self._registry.events.subscribe(handler)

    # ========== Internals ==========

    def _resolve(self, provider: str | None) -> str:
        return provider or self._registry.default_name

    def _multipart_provider(self, provider: str | None) -> str:
        name = self._resolve(provider)
        if not self._registry.get(name).supports_multipart:
            raise StorageOperationNotSupportedError("multipart_upload", provider=name)
        return name

    async def _execute(
        self,
        operation: StorageOperation,
        name: str,
        func: Callable[[StorageBackend], Awaitable[R]],
        key: str | None = None,
        size: int | None = None,
        retry: bool = True,
        measure: Callable[[R], int | None] | None = None,
        attributes: dict[str, Any] | None = None,
    ) -> R:
        """Run ``func`` against provider ``name`` and record exactly one metric.

        Args:
            retry: Wrap ``func`` in the retry policy; composite operations
                retry their individual backend calls instead
            measure: Derives the metric size from the result
        """
        backend = self._registry.get(name)
        started = time.perf_counter()

        try:
            async with track_storage_operation(
                operation.value,
                name,
                key=key,
                bucket=backend.bucket_name,
                size_bytes=size,
                attributes=attributes,
            ) as ctx:
                if retry:
                    result = await self._retry.execute(func, backend, operation=operation.value)
                else:
                    result = await func(backend)
                if measure is not None:
                    size = measure(result)
                    ctx["size"] = size
        except Exception as e:
            self._record(operation, name, started, size=size, error=e)
            raise

        self._record(operation, name, started, size=size)
        return result

    def _record(
        self,
        operation: StorageOperation,
        provider: str,
        started: float,
        size: int | None = None,
        error: BaseException | None = None,
    ) -> None:
        if not self._settings.enable_metrics:
            return
        self._metrics.record(
            operation,
            provider,
            duration_ms=(time.perf_counter() - started) * 1000,
            size=size,
            success=error is None,
            error=str(error) if error is not None else None,
            error_type=type(error).__name__ if error is not None else None,
        )

    def _emit(
        self,
        type: StorageEventType,
        provider: str,
        key: str,
        size: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self._events.emit(StorageEvent.create(type, provider, key, size=size, metadata=metadata))

    async def _open_stream(
        self,
        name: str,
        key: str,
        options: DownloadOptions,
    ) -> AsyncIterator[bytes]:
        # The first chunk is read eagerly so a missing key fails here, under retry.
        async def first_chunk(backend: StorageBackend) -> tuple[AsyncIterator[bytes], bytes]:
            chunks = backend.stream(key, byte_range=options.range)
            try:
                return chunks, await anext(chunks)
            except StopAsyncIteration:
                return chunks, b""
            except Exception:
                await _close(chunks)
                raise

        chunks, first = await self._execute(
            StorageOperation.DOWNLOAD,
            name,
            first_chunk,
            key=key,
        )
        self._emit(StorageEventType.DOWNLOAD, name, key)
        return _prepend(first, chunks)

    def _start_sweepers(self) -> None:
        if self._settings.enable_caching:
            self._sweepers.append(
                asyncio.create_task(
                    _sweep_periodically(
                        "cache", self._cache.sweep, self._settings.cache_sweep_interval_seconds
                    ),
                    name="polystore-cache-sweep",
                )
            )
        if self._settings.enable_metrics:
            self._sweepers.append(
                asyncio.create_task(
                    _sweep_periodically(
                        "metrics",
                        self._metrics.sweep,
                        self._settings.metrics_sweep_interval_seconds,
                    ),
                    name="polystore-metrics-sweep",
                )
            )

    @staticmethod
    async def _start_backend(name: str, backend: StorageBackend) -> None:
        try:
            await backend.startup()
        except Exception as e:
            raise StorageInitializationError(
                f"Failed to initialize provider '{name}': {e}",
                provider=name,
                cause=e,
            ) from e


# ========== Helpers ==========


def _as_bytes(data: UploadData) -> bytes:
    if isinstance(data, str):
        return data.encode("utf-8")
    if isinstance(data, bytes):
        return data
    if isinstance(data, bytearray | memoryview):
        return bytes(data)
    raise TypeError(f"Unsupported upload payload type: {type(data).__name__}")


def _decode(data: bytes, key: str, provider: str, parse_json: bool) -> Any:
    try:
        text = data.decode("utf-8")
        return json.loads(text) if parse_json else text
    except ValueError as e:
        raise StorageError(
            message=f"Object '{key}' could not be decoded as {'JSON' if parse_json else 'text'}",
            code="DECODE_ERROR",
            provider=provider,
            cause=e,
            status_code=422,
            metadata={"key": key},
        ) from e


def _object_size(obj: StorageObject) -> int:
    return obj.size


def _object_details(obj: StorageObject) -> dict[str, Any]:
    details: dict[str, Any] = {}
    if obj.etag:
        details["etag"] = obj.etag
    if obj.metadata is not None:
        details["mime_type"] = obj.metadata.mime_type
        if obj.metadata.custom_metadata:
            details["custom_metadata"] = dict(obj.metadata.custom_metadata)
    return details


async def _delete_if_present(backend: StorageBackend, key: str) -> None:
    try:
        await backend.delete(key)
    except StorageNotFoundError:
        logger.debug(
            "Delete of missing object ignored",
            extra={"provider": backend.name, "key": key},
        )


async def _unsupported_as_none(
    func: Callable[..., Awaitable[R]],
    *args: Any,
) -> R | None:
    try:
        return await func(*args)
    except StorageOperationNotSupportedError:
        return None


async def _probe(name: str, backend: StorageBackend) -> bool:
    try:
        return bool(await backend.health_check())
    except Exception as e:
        logger.warning(
            "Storage health check failed",
            extra={"provider_name": name, "error": str(e)},
        )
        return False


async def _close(chunks: AsyncIterator[bytes]) -> None:
    aclose = getattr(chunks, "aclose", None)
    if aclose is not None:
        await aclose()


async def _prepend(first: bytes, rest: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
    try:
        if first:
            yield first
        async for chunk in rest:
            yield chunk
    finally:
        await _close(rest)


async def _sweep_periodically(name: str, sweep: Callable[[], int], interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            sweep()
        except Exception:
            logger.exception("Periodic sweep failed", extra={"sweep": name})
