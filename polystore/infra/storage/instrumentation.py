"""Storage operation instrumentation with OpenTelemetry spans.

Every facade operation runs inside ``track_storage_operation``, which opens
a ``storage.<operation>`` span and keeps the in-progress gauge current. The
per-operation Prometheus counters are fed by the MetricsCollector so that
both views always agree on the number of operations.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from opentelemetry.trace import Status, StatusCode

from polystore.infra.tracing.opentelemetry import get_tracer

from . import metrics

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

_tracer = get_tracer("polystore.storage")


@asynccontextmanager
async def track_storage_operation(
    operation: str,
    provider: str,
    key: str | None = None,
    bucket: str | None = None,
    size_bytes: int | None = None,
    attributes: dict[str, Any] | None = None,
) -> AsyncIterator[dict[str, Any]]:
    """Wrap a storage operation in an OpenTelemetry span.

    The yielded dict can be updated by the caller; its entries are attached
    to the span as ``storage.result.<name>`` when the block succeeds.

    Args:
        operation: Operation name (upload, download, delete, copy, move, list, ...)
        provider: Registered provider name
        key: Object key
        bucket: Bucket name
        size_bytes: Payload size in bytes (for uploads)
        attributes: Additional span attributes

    Yields:
        A context dictionary for result attributes

    Example:
        async with track_storage_operation("upload", "primary", key="a.txt") as ctx:
            obj = await backend.upload(...)
            ctx["result_size"] = obj.size
    """
    span_attributes: dict[str, Any] = {
        "storage.operation": operation,
        "storage.provider": provider,
    }
    if key:
        span_attributes["storage.key"] = key
    if bucket:
        span_attributes["storage.bucket"] = bucket
    if size_bytes is not None:
        span_attributes["storage.size_bytes"] = size_bytes
    if attributes:
        for k, v in attributes.items():
            span_attributes[f"storage.{k}"] = str(v)

    context: dict[str, Any] = {}
    metrics.storage_operations_in_progress.inc()

    with _tracer.start_as_current_span(
        f"storage.{operation}",
        attributes=span_attributes,
        record_exception=False,
        set_status_on_exception=False,
    ) as span:
        try:
            yield context
            for k, v in context.items():
                span.set_attribute(f"storage.result.{k}", str(v))
            span.set_status(Status(StatusCode.OK))
        except Exception as e:
            span.record_exception(e)
            span.set_status(Status(StatusCode.ERROR, str(e)))
            raise
        finally:
            metrics.storage_operations_in_progress.dec()
