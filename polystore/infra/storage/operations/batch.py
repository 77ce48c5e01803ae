"""Bounded fan-out for per-key storage operations.

Used wherever the storage manager has to apply one operation to many keys
(per-key deletion fallback, provider sync):
- Concurrency control via a semaphore
- Per-key outcome tracking; one failing key never aborts the others
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
import time
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable

logger = logging.getLogger(__name__)


@dataclass
class BatchResult:
    """Result of a batch operation."""

    total: int
    successful: int
    failed: int
    results: list[dict[str, Any]] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def success_rate(self) -> float:
        """Calculate success rate as percentage."""
        if self.total == 0:
            return 100.0
        return (self.successful / self.total) * 100

    @property
    def succeeded_keys(self) -> list[str]:
        return [r["key"] for r in self.results if r["success"]]

    @property
    def failed_keys(self) -> list[str]:
        return [r["key"] for r in self.results if not r["success"]]


async def run_batch(
    keys: Iterable[str],
    operation: Callable[[str], Awaitable[Any]],
    max_concurrency: int = 10,
    name: str = "batch",
) -> BatchResult:
    """Apply ``operation`` to every key with at most ``max_concurrency`` in flight.

    Args:
        keys: Keys to process
        operation: Coroutine function called once per key
        max_concurrency: Maximum concurrent calls
        name: Operation name for log records

    Returns:
        BatchResult with one entry per key, in input order
    """
    if max_concurrency < 1:
        raise ValueError("max_concurrency must be at least 1")

    start_time = time.perf_counter()
    semaphore = asyncio.Semaphore(max_concurrency)

    async def run_one(key: str) -> dict[str, Any]:
        async with semaphore:
            try:
                await operation(key)
                result: dict[str, Any] = {"key": key, "success": True, "error": None}
            except Exception as e:
                logger.warning(
                    f"{name} failed for key",
                    extra={"operation": name, "key": key, "error": str(e)},
                )
                result = {"key": key, "success": False, "error": str(e)}
        return result

    results = await asyncio.gather(*(run_one(key) for key in keys))
    successful = sum(1 for r in results if r["success"])

    batch = BatchResult(
        total=len(results),
        successful=successful,
        failed=len(results) - successful,
        results=list(results),
        duration_seconds=time.perf_counter() - start_time,
    )
    logger.info(
        f"{name} completed",
        extra={
            "operation": name,
            "total": batch.total,
            "successful": batch.successful,
            "failed": batch.failed,
            "success_rate": round(batch.success_rate, 2),
            "duration_seconds": round(batch.duration_seconds, 3),
        },
    )
    return batch
