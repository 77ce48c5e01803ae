from __future__ import annotations

from polystore.utils.retry.policy import RetryPolicy
from polystore.utils.retry.strategies import RetryStrategy

__all__ = ["RetryPolicy", "RetryStrategy"]
