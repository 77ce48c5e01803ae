"""Structured logging for the storage layer."""

from __future__ import annotations

from .config import build_logging_config, configure_logging
from .context import (
    ContextInjectingFilter,
    clear_log_context,
    get_log_context,
    set_log_context,
)
from .formatters import JSONFormatter

__all__ = [
    "ContextInjectingFilter",
    "JSONFormatter",
    "build_logging_config",
    "clear_log_context",
    "configure_logging",
    "get_log_context",
    "set_log_context",
]
