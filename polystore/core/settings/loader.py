"""LRU-cached settings loaders.

Settings are loaded and validated once, then cached for the lifetime of the process.

Usage:
    from polystore.core.settings.loader import get_storage_settings

    settings = get_storage_settings()  # First call: loads and validates
    settings = get_storage_settings()  # Subsequent calls: returns cached instance

Testing:
    In tests, clear the cache to force reload:
    clear_settings_cache()

    Or construct settings directly:
    settings = StorageManagerSettings(default_provider="primary", providers={...})
"""

from __future__ import annotations

from functools import lru_cache

from .logs import LoggingSettings
from .storage import StorageManagerSettings


@lru_cache(maxsize=1)
def get_storage_settings() -> StorageManagerSettings:
    """Get cached storage manager settings.

    Returns:
        Validated and frozen StorageManagerSettings instance.
    """
    return StorageManagerSettings()


@lru_cache(maxsize=1)
def get_logging_settings() -> LoggingSettings:
    """Get cached logging settings.

    Returns:
        Validated and frozen LoggingSettings instance.
    """
    return LoggingSettings()


def clear_settings_cache() -> None:
    """Clear every cached settings instance.

    Useful in tests that change environment variables between cases.
    """
    get_storage_settings.cache_clear()
    get_logging_settings.cache_clear()
