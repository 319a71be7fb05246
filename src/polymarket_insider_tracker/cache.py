"""Bounded in-memory cache with lazy TTL expiry.

Entries expire on read once their age exceeds the TTL; there is no
background sweep. When the cache is full, storing a new key evicts the
entry that was stored longest ago.
"""

from __future__ import annotations

import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

K = TypeVar("K")
V = TypeVar("V")


@dataclass(frozen=True)
class CacheStats:
    """Hit/miss counters for a cache."""

    size: int
    hits: int
    misses: int

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    def to_dict(self) -> dict[str, float | int]:
        return {
            "size": self.size,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hit_rate,
        }


class TTLCache(Generic[K, V]):
    """Ordered map of ``key -> (stored_at, value)``.

    Args:
        ttl_seconds: Maximum entry age before it is treated as missing.
        max_size: Hard bound on the number of stored entries.
        clock: Returns the current time in seconds. Injectable for tests.
        on_evict: Called with ``(key, value)`` when an entry is evicted for space.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float,
        max_size: int,
        clock: Callable[[], float] = time.monotonic,
        on_evict: Callable[[K, V], None] | None = None,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self._ttl = ttl_seconds
        self._max_size = max_size
        self._clock = clock
        self._on_evict = on_evict
        self._entries: OrderedDict[K, tuple[float, V]] = OrderedDict()
        self._hits = 0
        self._misses = 0

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def _is_expired(self, stored_at: float) -> bool:
        return self._clock() - stored_at > self._ttl

    def get(self, key: K) -> V | None:
        """Return the live value for ``key`` or None, counting hits and misses."""
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None
        stored_at, value = entry
        if self._is_expired(stored_at):
            del self._entries[key]
            self._misses += 1
            return None
        self._hits += 1
        return value

    def peek(self, key: K) -> V | None:
        """Like ``get`` but without touching counters or removing expired entries."""
        entry = self._entries.get(key)
        if entry is None or self._is_expired(entry[0]):
            return None
        return entry[1]

    def set(self, key: K, value: V) -> None:
        if key in self._entries:
            del self._entries[key]
        elif len(self._entries) >= self._max_size:
            oldest_key, (_, oldest_value) = self._entries.popitem(last=False)
            if self._on_evict is not None:
                self._on_evict(oldest_key, oldest_value)
        self._entries[key] = (self._clock(), value)

    def delete(self, key: K) -> bool:
        return self._entries.pop(key, None) is not None

    def __contains__(self, key: object) -> bool:
        entry = self._entries.get(key)  # type: ignore[call-overload]
        return entry is not None and not self._is_expired(entry[0])

    def __len__(self) -> int:
        return len(self._entries)

    def keys(self) -> list[K]:
        return [k for k, (stored_at, _) in self._entries.items() if not self._is_expired(stored_at)]

    def values(self) -> list[V]:
        return [v for stored_at, v in self._entries.values() if not self._is_expired(stored_at)]

    def clear(self) -> None:
        self._entries.clear()
        self._hits = 0
        self._misses = 0

    def stats(self) -> CacheStats:
        return CacheStats(size=len(self._entries), hits=self._hits, misses=self._misses)
