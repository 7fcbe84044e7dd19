"""
Bounded LRU cache whose entries go stale after a TTL but are not dropped.

get() only returns fresh values. get_stale() returns whatever was stored
last, which lets a caller show the previous usage numbers when a refresh
fails. Entries leave the cache through LRU eviction, delete(), or
cleanup_expired().
"""

import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], float]


@dataclass
class CacheEntry(Generic[T]):
    value: T
    stored_at: float
    ttl_seconds: float

    def is_fresh(self, now: float) -> bool:
        return now - self.stored_at < self.ttl_seconds


class LRUCache(Generic[T]):
    """
    LRU cache with per-entry TTL.

    ``clock`` must be monotonic; tests pass a fake one.
    """

    def __init__(
        self,
        max_size: int = 100,
        default_ttl_seconds: float = 120,
        name: str = "cache",
        clock: Clock = time.monotonic,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.default_ttl_seconds = default_ttl_seconds
        self.name = name
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry[T]]" = OrderedDict()
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> Optional[T]:
        """Fresh value for ``key``, or None. A hit marks the key recently used."""
        entry = self._entries.get(key)
        if entry is None or not entry.is_fresh(self._clock()):
            self._misses += 1
            return None
        self._entries.move_to_end(key)
        self._hits += 1
        return entry.value

    def get_stale(self, key: str) -> Optional[T]:
        entry = self._entries.get(key)
        return None if entry is None else entry.value

    def set(self, key: str, value: T, ttl_seconds: Optional[float] = None) -> None:
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._entries.pop(key, None)
        while len(self._entries) >= self.max_size:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("%s: evicted %s", self.name, evicted)
        self._entries[key] = CacheEntry(value=value, stored_at=self._clock(), ttl_seconds=ttl)

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def expire(self, key: str) -> bool:
        """Mark ``key`` stale without dropping it; get_stale() still sees it."""
        entry = self._entries.get(key)
        if entry is None:
            return False
        entry.stored_at = float("-inf")
        return True

    def expire_prefix(self, prefix: str) -> int:
        return sum(self.expire(key) for key in list(self._entries) if key.startswith(prefix))

    def delete_prefix(self, prefix: str) -> int:
        doomed = [key for key in self._entries if key.startswith(prefix)]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def cleanup_expired(self) -> int:
        now = self._clock()
        doomed = [key for key, entry in self._entries.items() if not entry.is_fresh(now)]
        for key in doomed:
            del self._entries[key]
        if doomed:
            logger.debug("%s: dropped %d expired entries", self.name, len(doomed))
        return len(doomed)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def stats(self) -> Dict[str, Any]:
        lookups = self._hits + self._misses
        return {
            "name": self.name,
            "size": len(self._entries),
            "max_size": self.max_size,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self._hits / lookups, 3) if lookups else 0.0,
        }
