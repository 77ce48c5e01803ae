"""Storage metrics for Prometheus monitoring.

Mirrors every StorageMetric recorded by the in-process collector into
Prometheus series:
- Operation counters by operation, provider and status
- Operation duration histogram
- Object size distribution
- Error tracking by type

All metrics are registered with the shared REGISTRY from the prometheus module.

Usage:
    from polystore.infra.storage.metrics import (
        record_operation_success,
        record_operation_error,
    )

    record_operation_success("upload", "primary", duration_seconds=1.5, size_bytes=1048576)
    record_operation_error("download", "primary", "StorageNotFoundError", duration_seconds=0.1)
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

from polystore.infra.metrics.prometheus import REGISTRY

# Covers latency from 10ms to 30s for network operations
STORAGE_LATENCY_BUCKETS = (0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0)

# 1KB to 100MB
STORAGE_SIZE_BUCKETS = (1024, 10240, 102400, 1048576, 10485760, 52428800, 104857600)

storage_operations_total = Counter(
    "polystore_operations_total",
    "Total storage operations",
    ["operation", "provider", "status"],
    registry=REGISTRY,
)

storage_operation_duration_seconds = Histogram(
    "polystore_operation_duration_seconds",
    "Storage operation duration in seconds",
    ["operation", "provider"],
    buckets=STORAGE_LATENCY_BUCKETS,
    registry=REGISTRY,
)

storage_object_size_bytes = Histogram(
    "polystore_object_size_bytes",
    "Size of objects uploaded/downloaded in bytes",
    ["operation", "provider"],
    buckets=STORAGE_SIZE_BUCKETS,
    registry=REGISTRY,
)

storage_errors_total = Counter(
    "polystore_errors_total",
    "Storage operation errors by type",
    ["operation", "provider", "error_type"],
    registry=REGISTRY,
)

storage_operations_in_progress = Gauge(
    "polystore_operations_in_progress",
    "Number of storage operations currently running",
    registry=REGISTRY,
)


def record_operation_success(
    operation: str,
    provider: str,
    duration_seconds: float,
    size_bytes: int | None = None,
) -> None:
    """Record a successful storage operation.

    Args:
        operation: The operation type (e.g., 'upload', 'download', 'delete')
        provider: Registered provider name
        duration_seconds: Operation duration in seconds
        size_bytes: Optional object size in bytes
    """
    storage_operations_total.labels(operation=operation, provider=provider, status="success").inc()
    storage_operation_duration_seconds.labels(operation=operation, provider=provider).observe(
        duration_seconds
    )
    if size_bytes is not None:
        storage_object_size_bytes.labels(operation=operation, provider=provider).observe(
            size_bytes
        )


def record_operation_error(
    operation: str,
    provider: str,
    error_type: str,
    duration_seconds: float,
) -> None:
    """Record a failed storage operation.

    Args:
        operation: The operation type
        provider: Registered provider name
        error_type: The error class name (e.g., 'StorageNotFoundError')
        duration_seconds: Operation duration in seconds before failure
    """
    storage_operations_total.labels(operation=operation, provider=provider, status="error").inc()
    storage_operation_duration_seconds.labels(operation=operation, provider=provider).observe(
        duration_seconds
    )
    storage_errors_total.labels(
        operation=operation, provider=provider, error_type=error_type
    ).inc()
