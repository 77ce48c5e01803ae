"""Logging configuration setup.

The storage layer itself only ever calls ``logging.getLogger(__name__)``.
Applications embedding it may call :func:`configure_logging` once at startup
to get:
- dictConfig-based configuration of the root logger
- ContextInjectingFilter for automatic context propagation
- JSONL format for machine parsing, or plain text for local development
"""

from __future__ import annotations

import logging
import logging.config
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from polystore.core.settings.logs import LoggingSettings

logger = logging.getLogger(__name__)


def configure_logging(settings: LoggingSettings | None = None, **overrides: Any) -> None:
    """Configure the root logger with dictConfig.

    Args:
        settings: Logging settings. Loaded from the environment if None.
        **overrides: Field overrides applied on top of ``settings``
            (e.g. ``level="DEBUG"``, ``json_logs=False``).

    Example:
        ```python
        from polystore.infra.logging import configure_logging

        configure_logging(level="DEBUG", json_logs=False)
        ```
    """
    if settings is None:
        from polystore.core.settings.loader import get_logging_settings

        settings = get_logging_settings()
    if overrides:
        settings = settings.model_copy(update=overrides)

    logging.config.dictConfig(build_logging_config(settings))
    logging.captureWarnings(True)
    logger.debug(
        "Logging configured",
        extra={"level": settings.level, "json_logs": settings.json_logs},
    )


def build_logging_config(settings: LoggingSettings) -> dict[str, Any]:
    """Build the dictConfig mapping for the given settings.

    Args:
        settings: Logging settings.

    Returns:
        A ``logging.config.dictConfig`` compatible dict.
    """
    if settings.json_logs:
        formatter_name = "json"
        formatters: dict[str, Any] = {
            "json": {
                "()": "polystore.infra.logging.formatters.JSONFormatter",
                "static": {"service": settings.service_name},
            }
        }
    else:
        formatter_name = "text"
        formatters = {
            "text": {
                "format": "%(asctime)s - %(levelname)s - %(name)s - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            }
        }

    filters: dict[str, Any] = {}
    handler_filters: list[str] = []
    if settings.include_context:
        filters["context"] = {
            "()": "polystore.infra.logging.context.ContextInjectingFilter",
        }
        handler_filters.append("context")

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": formatters,
        "filters": filters,
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stderr",
                "formatter": formatter_name,
                "filters": handler_filters,
            }
        },
        "loggers": {
            name: {"level": level} for name, level in settings.logger_levels.items()
        },
        "root": {
            "level": settings.level,
            "handlers": ["console"],
        },
    }
