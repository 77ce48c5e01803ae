"""Named storage backends with one default.

The registry owns the backends it holds: ``add`` starts a backend before
publishing it, ``remove`` and ``clear`` shut backends down. Reads and
writes of the name map are guarded by a lock so handlers running on other
threads never observe a half-updated map.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from .backends.factory import create_storage_backend
from .events import EventBus, ProviderEvent, ProviderEventType
from .exceptions import (
    StorageCannotRemoveDefaultError,
    StorageError,
    StorageInitializationError,
    StorageProviderNotFoundError,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from polystore.core.settings.storage import StorageConfig

    from .backends.protocol import StorageBackend

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Map of provider name to started backend.

    Example:
        registry = ProviderRegistry("primary")
        await registry.add("primary", create_local_config("/tmp/store"))
        backend = registry.get()          # default
        backend = registry.get("backup")  # StorageProviderNotFoundError if unknown
    """

    def __init__(
        self,
        default_name: str,
        backend_factory: Callable[[StorageConfig], StorageBackend] = create_storage_backend,
        events: EventBus[ProviderEvent] | None = None,
    ) -> None:
        self._default_name = default_name
        self._backend_factory = backend_factory
        self.events: EventBus[ProviderEvent] = (
            events if events is not None else EventBus("providers")
        )
        self._backends: dict[str, StorageBackend] = {}
        self._lock = threading.Lock()

    @property
    def default_name(self) -> str:
        return self._default_name

    def get(self, name: str | None = None) -> StorageBackend:
        """Return the backend registered as ``name`` (the default when None).

        Raises:
            StorageProviderNotFoundError: If no backend has that name
        """
        resolved = name or self._default_name
        with self._lock:
            backend = self._backends.get(resolved)
        if backend is None:
            raise StorageProviderNotFoundError(resolved)
        return backend

    def register(self, name: str, backend: StorageBackend) -> StorageBackend | None:
        """Publish an already constructed backend under ``name``.

        The caller owns ``startup()`` of the new backend and ``shutdown()``
        of the returned one.

        Returns:
            The backend previously registered under ``name``, if any
        """
        with self._lock:
            previous = self._backends.get(name)
            self._backends[name] = backend

        logger.info(
            "Storage provider registered",
            extra={"provider_name": name, "provider": backend.name},
        )
        self.events.emit(ProviderEvent(ProviderEventType.PROVIDER_ADDED, name, backend.name))
        return previous

    async def add(self, name: str, config: StorageConfig) -> StorageBackend:
        """Build, start and register a backend for ``config``.

        Replacing an existing name shuts the old backend down once the new
        one is published.

        Raises:
            StorageInitializationError: If the backend cannot be built or started
        """
        try:
            backend = self._backend_factory(config)
            await backend.startup()
        except StorageError as e:
            raise StorageInitializationError(
                f"Failed to initialize provider '{name}': {e.message}",
                provider=name,
                cause=e,
            ) from e
        except Exception as e:
            raise StorageInitializationError(
                f"Failed to initialize provider '{name}': {e}",
                provider=name,
                cause=e,
            ) from e

        previous = self.register(name, backend)
        if previous is not None and previous is not backend:
            await self._shutdown(name, previous)
        return backend

    async def remove(self, name: str) -> None:
        """Unregister and shut down ``name``; unknown names are ignored.

        Raises:
            StorageCannotRemoveDefaultError: If ``name`` is the default provider
        """
        if name == self._default_name:
            raise StorageCannotRemoveDefaultError(name)

        with self._lock:
            backend = self._backends.pop(name, None)
        if backend is None:
            return

        await self._shutdown(name, backend)
        logger.info(
            "Storage provider removed",
            extra={"provider_name": name, "provider": backend.name},
        )
        self.events.emit(ProviderEvent(ProviderEventType.PROVIDER_REMOVED, name, backend.name))

    def list(self) -> list[str]:
        """Registered names in registration order."""
        with self._lock:
            return [*self._backends]

    def items(self) -> list[tuple[str, StorageBackend]]:
        with self._lock:
            return [*self._backends.items()]

    async def clear(self) -> None:
        """Shut down and drop every backend, the default included."""
        with self._lock:
            backends = [*self._backends.items()]
            self._backends.clear()

        for name, backend in backends:
            await self._shutdown(name, backend)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._backends

    def __len__(self) -> int:
        with self._lock:
            return len(self._backends)

    @staticmethod
    async def _shutdown(name: str, backend: StorageBackend) -> None:
        try:
            await backend.shutdown()
        except Exception:
            logger.exception(
                "Failed to shut down storage provider",
                extra={"provider_name": name, "provider": backend.name},
            )
