"""Storage lifecycle events and an in-process event bus.

Events are fire-and-forget: handlers run synchronously on the emitting
task, a failing handler is logged and never affects the operation that
emitted the event, nor the remaining handlers.

Usage:
    bus: EventBus[StorageEvent] = EventBus("storage")
    unsubscribe = bus.subscribe(lambda event: print(event.type, event.key))
    ...
    unsubscribe()
"""

from __future__ import annotations

import inspect
import logging
import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from .context import get_storage_caller

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StorageEventType(StrEnum):
    """Data operations that emit a StorageEvent on success."""

    UPLOAD = "upload"
    DOWNLOAD = "download"
    DELETE = "delete"
    COPY = "copy"
    MOVE = "move"


class ProviderEventType(StrEnum):
    """Registry changes."""

    PROVIDER_ADDED = "provider_added"
    PROVIDER_REMOVED = "provider_removed"


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class StorageEvent:
    """A completed data operation.

    Attributes:
        type: Operation that completed
        provider: Registered provider name
        key: Object key (destination key for copy and move)
        size: Payload size in bytes, when known
        metadata: Operation-specific details (e.g. source key for copy)
        timestamp: When the event was emitted (UTC)
        user_id: Acting user bound with storage_context()
        tenant_id: Acting tenant bound with storage_context()
    """

    type: StorageEventType
    provider: str
    key: str
    size: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=_utcnow)
    user_id: str | None = None
    tenant_id: str | None = None

    @classmethod
    def create(
        cls,
        type: StorageEventType,
        provider: str,
        key: str,
        size: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> StorageEvent:
        """Build an event stamped with the caller bound to the current task."""
        caller = get_storage_caller()
        return cls(
            type=type,
            provider=provider,
            key=key,
            size=size,
            metadata=metadata or {},
            user_id=caller.user_id,
            tenant_id=caller.tenant_id,
        )


@dataclass(frozen=True)
class ProviderEvent:
    """A provider was added to or removed from the registry."""

    type: ProviderEventType
    name: str
    provider: str
    timestamp: datetime = field(default_factory=_utcnow)


class EventBus(Generic[T]):
    """Synchronous broadcast to a set of subscribers."""

    def __init__(self, name: str = "storage") -> None:
        self._name = name
        self._handlers: list[Callable[[T], Any]] = []
        self._lock = threading.Lock()

    def subscribe(self, handler: Callable[[T], Any]) -> Callable[[], None]:
        """Register ``handler`` and return a function that unregisters it.

        Handlers must be synchronous callables; a coroutine returned by a
        handler is closed without running. The returned function is
        idempotent.
        """
        with self._lock:
            self._handlers.append(handler)

        def unsubscribe() -> None:
            with self._lock:
                try:
                    self._handlers.remove(handler)
                except ValueError:
                    pass

        return unsubscribe

    def emit(self, event: T) -> None:
        """Deliver ``event`` to a snapshot of the current subscribers."""
        with self._lock:
            handlers = tuple(self._handlers)

        for handler in handlers:
            try:
                result = handler(event)
            except Exception:
                logger.exception(
                    "Event handler failed",
                    extra={"bus": self._name, "handler": getattr(handler, "__name__", repr(handler))},
                )
                continue
            if inspect.iscoroutine(result):
                result.close()
                logger.warning(
                    "Async event handler ignored",
                    extra={"bus": self._name, "handler": getattr(handler, "__name__", repr(handler))},
                )

    def clear(self) -> None:
        """Remove every subscriber."""
        with self._lock:
            self._handlers.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._handlers)
