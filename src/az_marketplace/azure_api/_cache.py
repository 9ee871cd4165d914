"""In-memory TTL caches for catalog responses."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")

# Publishers, offers and SKUs change rarely; five minutes keeps navigation
# snappy without serving stale catalogs for long.
DEFAULT_CACHE_TTL = 300.0


@dataclass(frozen=True)
class CacheConfig:
    publishers_ttl: float = DEFAULT_CACHE_TTL
    offers_ttl: float = DEFAULT_CACHE_TTL
    skus_ttl: float = DEFAULT_CACHE_TTL


@dataclass
class CacheEntry(Generic[T]):
    data: T
    timestamp: float
    ttl: float


class TTLCache(Generic[T]):
    """Map of string keys to entries that expire lazily on read.

    Keys are namespaced by subscription id so that :meth:`clear_prefix`
    drops everything cached for one subscription.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, CacheEntry[T]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> T | None:
        """Return the cached value, evicting it first if it has expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() - entry.timestamp > entry.ttl:
                del self._entries[key]
                return None
            return entry.data

    def set(self, key: str, data: T, ttl: float) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(data=data, timestamp=self._clock(), ttl=ttl)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def clear_prefix(self, prefix: str) -> int:
        """Delete every key starting with *prefix*; return how many went."""
        with self._lock:
            stale = [key for key in self._entries if key.startswith(prefix)]
            for key in stale:
                del self._entries[key]
            return len(stale)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)
