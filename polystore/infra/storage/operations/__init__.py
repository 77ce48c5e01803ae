"""Multi-key storage operations."""

from .batch import BatchResult, run_batch

__all__ = ["BatchResult", "run_batch"]
