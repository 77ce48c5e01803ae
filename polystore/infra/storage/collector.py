"""In-process metrics for storage operations.

The collector keeps a bounded, time-windowed history of StorageMetric
records that can be queried by provider and time range. Every record is
also mirrored into the Prometheus series defined in ``metrics``.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import TYPE_CHECKING, Final

from . import metrics as prometheus_metrics

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

DEFAULT_RETENTION: Final[timedelta] = timedelta(hours=24)

DEFAULT_MAX_RECORDS: Final[int] = 100_000


class StorageOperation(StrEnum):
    """Operations tracked by the metrics collector."""

    UPLOAD = "upload"
    DOWNLOAD = "download"
    DELETE = "delete"
    LIST = "list"
    METADATA = "metadata"
    URL = "url"
    COPY = "copy"
    MOVE = "move"


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class StorageMetric:
    """One completed facade operation.

    Attributes:
        provider: Registered provider name
        operation: Operation kind
        duration_ms: Wall time including retries
        size: Payload size in bytes, when known
        success: Whether the operation succeeded
        error: Error message on failure
        timestamp: When the operation completed (UTC)
    """

    provider: str
    operation: StorageOperation
    duration_ms: float
    success: bool
    size: int | None = None
    error: str | None = None
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class TimeRange:
    """Inclusive ``[start, end]`` window for metric queries."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ValueError("end must not be earlier than start")

    def __contains__(self, moment: object) -> bool:
        return isinstance(moment, datetime) and self.start <= moment <= self.end


class MetricsCollector:
    """Bounded, thread-safe ring of StorageMetric records.

    Example:
        collector = MetricsCollector(retention=timedelta(hours=1))
        collector.record(StorageOperation.UPLOAD, "primary", duration_ms=12.5, size=1024)
        collector.query(provider="primary")
    """

    def __init__(
        self,
        retention: timedelta = DEFAULT_RETENTION,
        max_records: int = DEFAULT_MAX_RECORDS,
        clock: Callable[[], datetime] = _utcnow,
        export_prometheus: bool = True,
    ) -> None:
        """Initialize collector.

        Args:
            retention: Age after which metrics are dropped by ``sweep``.
            max_records: Ring capacity; the oldest record is dropped when full.
            clock: UTC time source (injectable for tests).
            export_prometheus: Mirror records into Prometheus series.
        """
        self.retention = retention
        self.max_records = max_records
        self._clock = clock
        self._export_prometheus = export_prometheus
        self._metrics: deque[StorageMetric] = deque(maxlen=max_records)
        self._lock = threading.Lock()

    def record(
        self,
        operation: StorageOperation | str,
        provider: str,
        duration_ms: float,
        size: int | None = None,
        success: bool = True,
        error: str | None = None,
        error_type: str | None = None,
    ) -> StorageMetric | None:
        """Append one metric stamped with the current time.

        Never raises; failures are logged.

        Args:
            error_type: Exception class name, used only as a Prometheus label.

        Returns:
            The recorded metric, or None when recording failed.
        """
        try:
            metric = StorageMetric(
                provider=provider,
                operation=StorageOperation(operation),
                duration_ms=duration_ms,
                size=size,
                success=success,
                error=error,
                timestamp=self._clock(),
            )
            with self._lock:
                self._metrics.append(metric)
            if self._export_prometheus:
                self._export(metric, error_type)
        except Exception:
            logger.exception(
                "Failed to record storage metric",
                extra={"operation": str(operation), "provider": provider},
            )
            return None
        return metric

    def query(
        self,
        provider: str | None = None,
        time_range: TimeRange | None = None,
    ) -> list[StorageMetric]:
        """Return metrics matching ``provider`` and ``time_range``, oldest first."""
        with self._lock:
            snapshot = list(self._metrics)
        return [
            m
            for m in snapshot
            if (provider is None or m.provider == provider)
            and (time_range is None or m.timestamp in time_range)
        ]

    def sweep(self) -> int:
        """Drop metrics older than the retention window.

        Returns:
            Number of metrics removed.
        """
        cutoff = self._clock() - self.retention
        removed = 0
        with self._lock:
            # deque is ordered by timestamp
            while self._metrics and self._metrics[0].timestamp < cutoff:
                self._metrics.popleft()
                removed += 1
        if removed:
            logger.debug("Swept expired storage metrics", extra={"removed": removed})
        return removed

    def clear(self) -> None:
        with self._lock:
            self._metrics.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._metrics)

    @staticmethod
    def _export(metric: StorageMetric, error_type: str | None) -> None:
        duration_seconds = metric.duration_ms / 1000
        if metric.success:
            prometheus_metrics.record_operation_success(
                operation=metric.operation.value,
                provider=metric.provider,
                duration_seconds=duration_seconds,
                size_bytes=metric.size,
            )
        else:
            prometheus_metrics.record_operation_error(
                operation=metric.operation.value,
                provider=metric.provider,
                error_type=error_type or "StorageError",
                duration_seconds=duration_seconds,
            )
