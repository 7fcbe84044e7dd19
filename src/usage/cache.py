"""
Client-side cache for usage statistics.

Keeps the usage screen and upgrade prompts responsive without a network
round trip on every render. The cache is only ever a display aid: allow
or deny decisions always go to the server.
"""

import logging
import time
from typing import Awaitable, Callable, Optional, TypeVar

from src.types.usage import UsageStats
from src.utils.cache import Clock, LRUCache

logger = logging.getLogger(__name__)

T = TypeVar("T")

Fetcher = Callable[[], Awaitable[T]]


class UsageCache:
    """
    Per-user usage cache.

    Keys: "{user_id}" for stats, "{user_id}:{resource_id}" for resources.
    On a failed refresh the last known value is returned, even if stale;
    with no value ever seen, the caller's default.
    """

    def __init__(
        self,
        stats_ttl_seconds: float = 120,
        resource_ttl_seconds: float = 60,
        max_size: int = 500,
        clock: Clock = time.monotonic,
    ):
        self.stats_ttl_seconds = stats_ttl_seconds
        self.resource_ttl_seconds = resource_ttl_seconds
        self._cache: LRUCache = LRUCache(
            max_size=max_size,
            default_ttl_seconds=stats_ttl_seconds,
            name="usage",
            clock=clock,
        )

    @staticmethod
    def resource_key(user_id: str, resource_id: str) -> str:
        return f"{user_id}:{resource_id}"

    async def _get(
        self,
        key: str,
        ttl: float,
        fetcher: Fetcher,
        force_refresh: bool,
        default: Optional[T],
    ) -> Optional[T]:
        if not force_refresh:
            cached = self._cache.get(key)
            if cached is not None:
                return cached

        try:
            value = await fetcher()
        except Exception as e:
            stale = self._cache.get_stale(key)
            if stale is not None:
                logger.warning(f"Usage refresh failed, serving cached value for {key}: {e}")
                return stale
            logger.warning(f"Usage refresh failed with nothing cached for {key}: {e}")
            return default

        self._cache.set(key, value, ttl)
        return value

    async def get_stats(
        self,
        user_id: str,
        fetcher: Fetcher,
        force_refresh: bool = False,
        default: Optional[UsageStats] = None,
    ) -> UsageStats:
        """Cached stats for a user; zero stats when nothing is known."""
        return await self._get(
            user_id,
            self.stats_ttl_seconds,
            fetcher,
            force_refresh,
            default if default is not None else UsageStats.zero(),
        )

    async def get_resource(
        self,
        user_id: str,
        resource_id: str,
        fetcher: Fetcher,
        force_refresh: bool = False,
        default: Optional[T] = None,
    ) -> Optional[T]:
        return await self._get(
            self.resource_key(user_id, resource_id),
            self.resource_ttl_seconds,
            fetcher,
            force_refresh,
            default,
        )

    def invalidate(self, user_id: str) -> None:
        """
        Force the next read of a user's entries to refetch (after recording usage).

        Values are kept as last-known fallbacks for a failed refresh.
        """
        self._cache.expire(user_id)
        self._cache.expire_prefix(f"{user_id}:")

    def clear(self) -> None:
        self._cache.clear()

    @property
    def stats(self) -> dict:
        return self._cache.stats
