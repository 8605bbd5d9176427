"""Bounded key/value cache with per-entry TTL."""
import time
from collections import OrderedDict
from typing import Any, Callable, Generic, Optional, TypeVar

V = TypeVar("V")


class BoundedCache(Generic[V]):
    """
    Ordered map evicting the oldest inserted entry when full.

    Entries expire ``ttl`` seconds after they were set; expiry is checked
    at read time, so stale entries linger until touched or evicted.
    """

    def __init__(
        self,
        max_size: int = 50,
        ttl: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.ttl = ttl
        self._clock = clock
        self._entries: "OrderedDict[str, tuple[V, float, float]]" = OrderedDict()

    def set(self, key: str, value: V, ttl: Optional[float] = None) -> None:
        """Store a value, evicting the oldest entry if the cache is full."""
        if key in self._entries:
            del self._entries[key]
        elif len(self._entries) >= self.max_size:
            self._entries.popitem(last=False)
        self._entries[key] = (value, self._clock(), self.ttl if ttl is None else ttl)

    def get(self, key: str, default: Any = None) -> Optional[V]:
        """Return a live value, or ``default`` when missing or expired."""
        entry = self._entries.get(key)
        if entry is None:
            return default
        if self._expired(entry):
            del self._entries[key]
            return default
        return entry[0]

    def has(self, key: str) -> bool:
        """Check whether a live entry exists for ``key``."""
        entry = self._entries.get(key)
        if entry is None:
            return False
        if self._expired(entry):
            del self._entries[key]
            return False
        return True

    def clear(self) -> None:
        """Drop every entry."""
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.has(key)

    def _expired(self, entry: "tuple[V, float, float]") -> bool:
        _, stored_at, ttl = entry
        return self._clock() - stored_at > ttl
