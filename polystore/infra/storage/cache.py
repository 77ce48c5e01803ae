"""Short-lived in-process cache for metadata lookups.

Entries expire lazily on read and are swept periodically by the storage
manager. The cache is bounded: once ``max_entries`` is reached the least
recently used entry is evicted.

Writes through the manager do not invalidate cached metadata, so a lookup
may return stale metadata until the entry's TTL elapses.
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from typing import TYPE_CHECKING, Any, Final, Generic, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable

V = TypeVar("V")

# ============================================================================
# Constants
# ============================================================================

DEFAULT_TTL_SECONDS: Final[float] = 300.0

DEFAULT_MAX_ENTRIES: Final[int] = 10_000


# ============================================================================
# TTL Cache
# ============================================================================


class TTLCache(Generic[V]):
    """Bounded LRU cache with per-entry expiry.

    Thread-safe.

    Example:
        cache: TTLCache[StorageMetadata] = TTLCache()
        cache.set("primary:metadata:a.txt", metadata, ttl_seconds=300)
        cache.get("primary:metadata:a.txt")  # metadata, until it expires

    Attributes:
        max_entries: Maximum entries before LRU eviction.
        default_ttl: TTL used when ``set`` is called without one.
    """

    def __init__(
        self,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize cache.

        Args:
            max_entries: Maximum entries before LRU eviction.
            default_ttl: TTL in seconds used when ``set`` omits one.
            clock: Monotonic time source (injectable for tests).
        """
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self.default_ttl = default_ttl
        self._clock = clock

        # {key: (expires_at, value)} in LRU order, oldest first
        self._entries: OrderedDict[str, tuple[float, V]] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> V | None:
        """Return the cached value, or None when missing or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return value

    def set(self, key: str, value: V, ttl_seconds: float | None = None) -> None:
        """Store ``value`` under ``key`` for ``ttl_seconds``."""
        ttl = self.default_ttl if ttl_seconds is None else ttl_seconds
        with self._lock:
            self._entries[key] = (self._clock() + ttl, value)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def delete(self, key: str) -> bool:
        """Remove ``key``. Returns True if it was present."""
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def sweep(self) -> int:
        """Drop every expired entry.

        Returns:
            Number of entries removed.
        """
        now = self._clock()
        with self._lock:
            expired = [k for k, (expires_at, _) in self._entries.items() if expires_at <= now]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def stats(self) -> dict[str, Any]:
        with self._lock:
            return {"entries": len(self._entries), "max_entries": self.max_entries}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.get(key) is not None
