"""Settings for the storage layer, loaded from environment and .env files."""

from __future__ import annotations

from .loader import clear_settings_cache, get_logging_settings, get_storage_settings
from .logs import LoggingSettings, LogLevel
from .storage import (
    RetrySettings,
    StorageConfig,
    StorageManagerSettings,
    StorageProviderType,
    create_local_config,
    create_s3_config,
)

__all__ = [
    "LogLevel",
    "LoggingSettings",
    "RetrySettings",
    "StorageConfig",
    "StorageManagerSettings",
    "StorageProviderType",
    "clear_settings_cache",
    "create_local_config",
    "create_s3_config",
    "get_logging_settings",
    "get_storage_settings",
]
