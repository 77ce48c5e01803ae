"""Backend factory for creating storage backends from a StorageConfig."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from polystore.core.settings.storage import StorageProviderType
from polystore.infra.storage.exceptions import (
    StorageConfigError,
    StorageUnsupportedProviderError,
)

from .validation import StorageConfigValidator

if TYPE_CHECKING:
    from collections.abc import Callable

    from polystore.core.settings.storage import StorageConfig

    from .protocol import StorageBackend

    BackendBuilder = Callable[[StorageConfig], StorageBackend]

logger = logging.getLogger(__name__)

_builders: dict[StorageProviderType, BackendBuilder] = {}
_builders_lock = threading.Lock()


def register_backend_builder(
    provider: StorageProviderType | str,
    builder: BackendBuilder,
) -> None:
    """Register an adapter for a provider kind.

    Lets applications plug in adapters (e.g. GCS or Azure) that live
    outside this package. A registered builder takes precedence over the
    built-in adapters.

    Example:
        register_backend_builder("gcs", lambda config: GCSBackend(config))
    """
    with _builders_lock:
        _builders[StorageProviderType(provider)] = builder


def unregister_backend_builder(provider: StorageProviderType | str) -> None:
    with _builders_lock:
        _builders.pop(StorageProviderType(provider), None)


def create_storage_backend(
    config: StorageConfig,
    validate: bool = True,
    validator: StorageConfigValidator | None = None,
) -> StorageBackend:
    """Factory function to create the backend matching ``config.provider``.

    The backend is returned unstarted; callers own ``startup()``.

    Args:
        config: Provider configuration
        validate: Validate the config before constructing the backend
        validator: Validator to use (defaults to StorageConfigValidator)

    Returns:
        Backend implementing the StorageBackend protocol

    Raises:
        StorageConfigError: If the config fails validation
        StorageUnsupportedProviderError: If no adapter exists for the provider

    Example:
        backend = create_storage_backend(create_local_config("/tmp/store"))
        await backend.startup()
        await backend.upload("file.txt", b"data")
        await backend.shutdown()
    """
    if validate:
        result = (validator or StorageConfigValidator()).validate(config)
        if not result.valid:
            raise StorageConfigError(
                result.errors,
                provider=str(config.provider),
                warnings=result.warnings,
            )
        for warning in result.warnings:
            logger.warning(
                "Storage configuration warning",
                extra={"provider": str(config.provider), "warning": warning},
            )

    with _builders_lock:
        builder = _builders.get(config.provider)
    if builder is not None:
        return builder(config)

    match config.provider:
        case StorageProviderType.LOCAL:
            from .local.backend import LocalBackend

            return LocalBackend(config)

        case StorageProviderType.S3:
            from .s3.backend import S3Backend

            return S3Backend(config)

        case _:
            raise StorageUnsupportedProviderError(str(config.provider))


async def test_connection(config: StorageConfig) -> bool:
    """Probe a configuration without registering it.

    Builds the backend, starts it, runs its health check and shuts it
    down again. Any failure yields False.
    """
    try:
        backend = create_storage_backend(config)
    except Exception as e:
        logger.warning(
            "Storage connection test failed",
            extra={"provider": str(config.provider), "error": str(e)},
        )
        return False

    try:
        await backend.startup()
        return await backend.health_check()
    except Exception as e:
        logger.warning(
            "Storage connection test failed",
            extra={"provider": str(config.provider), "error": str(e)},
        )
        return False
    finally:
        try:
            await backend.shutdown()
        except Exception:
            logger.exception(
                "Failed to shut down backend after connection test",
                extra={"provider": str(config.provider)},
            )
