from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, TypeVar

from .strategies import RetryStrategy

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from polystore.core.settings.storage import RetrySettings

logger = logging.getLogger(__name__)

R = TypeVar("R")


class RetryPolicy:
    """Runs a coroutine function with bounded retries.

    Stateless between calls. After the last attempt the final exception is
    re-raised unchanged, so callers see the same error type the backend
    raised.

    Example:
        policy = RetryPolicy(RetryStrategy(max_retries=3, base_delay_ms=200))
        data = await policy.execute(backend.download, "a.txt", operation="download")
    """

    def __init__(
        self,
        strategy: RetryStrategy | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        on_retry: Callable[[BaseException, int], None] | None = None,
    ) -> None:
        self.strategy = strategy or RetryStrategy()
        self._sleep = sleep
        self._on_retry = on_retry

    @classmethod
    def from_settings(
        cls,
        settings: RetrySettings,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        on_retry: Callable[[BaseException, int], None] | None = None,
    ) -> RetryPolicy:
        strategy = RetryStrategy(
            max_retries=settings.max_retries,
            base_delay_ms=settings.base_delay_ms,
            exponential_backoff=settings.exponential_backoff,
            max_jitter_ms=settings.max_jitter_ms,
        )
        return cls(strategy, sleep=sleep, on_retry=on_retry)

    async def execute(
        self,
        func: Callable[..., Awaitable[R]],
        *args: Any,
        operation: str | None = None,
        **kwargs: Any,
    ) -> R:
        """Await ``func(*args, **kwargs)``, retrying on failure.

        Args:
            func: Coroutine function to call.
            operation: Name used in log records (defaults to ``func.__name__``).
        """
        strategy = self.strategy
        name = operation or getattr(func, "__name__", "operation")

        for attempt in range(strategy.max_attempts):
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                if not strategy.should_retry(e):
                    raise

                if attempt >= strategy.max_attempts - 1:
                    logger.warning(
                        f"All retry attempts exhausted for {name}",
                        extra={
                            "operation": name,
                            "attempts": attempt + 1,
                            "last_exception": str(e),
                        },
                    )
                    raise

                delay = strategy.calculate_delay(attempt)
                logger.debug(
                    f"Retrying {name} after {delay:.2f}s (attempt {attempt + 1}/{strategy.max_attempts})",
                    extra={
                        "operation": name,
                        "attempt": attempt + 1,
                        "max_attempts": strategy.max_attempts,
                        "delay": delay,
                        "exception": str(e),
                    },
                )

                if self._on_retry:
                    self._on_retry(e, attempt + 1)

                await self._sleep(delay)

        msg = "Retry logic error: exhausted all attempts"
        raise RuntimeError(msg)
