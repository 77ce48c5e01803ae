from __future__ import annotations

import random
from collections.abc import Callable


class RetryStrategy:
    """Delay and retry-eligibility rules for a retry loop.

    ``max_retries`` counts retries after the first attempt, so a call is
    attempted at most ``max_retries + 1`` times. The delay before retry
    ``n`` (0-based) is ``base_delay_ms * 2**n`` when exponential, otherwise
    ``base_delay_ms``, plus uniform jitter in ``[0, max_jitter_ms)``.
    """

    def __init__(
        self,
        max_retries: int = 3,
        base_delay_ms: float = 1000.0,
        exponential_backoff: bool = True,
        max_jitter_ms: float = 1000.0,
        exceptions: tuple[type[BaseException], ...] = (Exception,),
        retry_if: Callable[[BaseException], bool] | None = None,
        random_source: Callable[[], float] = random.random,
    ) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        if base_delay_ms < 0 or max_jitter_ms < 0:
            raise ValueError("delays must be non-negative")
        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms
        self.exponential_backoff = exponential_backoff
        self.max_jitter_ms = max_jitter_ms
        self.exceptions = exceptions
        self.retry_if = retry_if
        self._random = random_source

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def should_retry(self, exception: BaseException) -> bool:
        if not isinstance(exception, self.exceptions):
            return False
        if self.retry_if is not None:
            return self.retry_if(exception)
        return True

    def calculate_delay(self, attempt: int) -> float:
        """Seconds to wait after the failed 0-based ``attempt``."""
        delay_ms = self.base_delay_ms
        if self.exponential_backoff:
            delay_ms *= 2**attempt
        delay_ms += self._random() * self.max_jitter_ms
        return delay_ms / 1000
