"""
In-process LRU cache with TTL

Used for carrier reference data that changes rarely (Venipak pickup point
lists, refreshed daily). Keys are normalized (lowercased, stripped) so
"lt" and "LT " hit the same entry.

Usage:
    from app.core.ttl_cache import pickup_points_cache

    points = await pickup_points_cache.get_or_fetch("LT", fetch_points)
"""
import logging
import time
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from app.core.config import settings

logger = logging.getLogger(__name__)


class TTLCache:
    """
    LRU cache with TTL for list-valued lookups.

    Thread-safe for single-threaded async usage (standard in asyncio).
    Empty results are never stored so a failed upstream fetch is retried
    on the next request instead of being served for a whole TTL.
    """

    def __init__(self, ttl_seconds: int = 3600, max_size: int = 100, name: str = "cache"):
        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        self.name = name
        self._cache: "OrderedDict[str, Tuple[float, List[Dict]]]" = OrderedDict()
        self._hits = 0
        self._misses = 0

    @staticmethod
    def _make_key(key: str) -> str:
        return key.lower().strip()

    def get(self, key: str) -> Optional[List[Dict]]:
        """Return cached value or None if missing/expired."""
        cache_key = self._make_key(key)

        if cache_key not in self._cache:
            self._misses += 1
            return None

        timestamp, value = self._cache[cache_key]

        if time.monotonic() - timestamp > self.ttl_seconds:
            del self._cache[cache_key]
            self._misses += 1
            logger.debug(f"[{self.name}] Expired: {cache_key}")
            return None

        self._cache.move_to_end(cache_key)
        self._hits += 1
        return value

    def set(self, key: str, value: List[Dict]) -> None:
        cache_key = self._make_key(key)

        while len(self._cache) >= self.max_size:
            self._cache.popitem(last=False)

        self._cache[cache_key] = (time.monotonic(), value)
        logger.debug(f"[{self.name}] Stored: {cache_key} ({len(value)} entries)")

    async def get_or_fetch(
        self,
        key: str,
        fetch_func: Callable[[str], Awaitable[List[Dict]]],
    ) -> List[Dict]:
        """
        Get from cache or fetch and cache.

        Args:
            key: Cache key (e.g. country code)
            fetch_func: Async function called with the key on a miss

        Returns:
            Cached or freshly fetched list
        """
        cached = self.get(key)
        if cached is not None:
            return cached

        results = await fetch_func(key)
        if results:
            self.set(key, results)
        return results or []

    def clear(self) -> int:
        """Clear all cached entries; returns how many were dropped."""
        count = len(self._cache)
        self._cache.clear()
        logger.info(f"[{self.name}] Cleared {count} entries")
        return count

    def get_stats(self) -> Dict[str, Any]:
        total = self._hits + self._misses
        return {
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self._hits / total, 4) if total > 0 else 0.0,
            "size": len(self._cache),
            "max_size": self.max_size,
            "ttl_seconds": self.ttl_seconds,
        }


# Venipak pickup points by country; the carrier publishes one list per day
pickup_points_cache = TTLCache(
    ttl_seconds=settings.SHIPPING_PICKUP_POINTS_CACHE_SECONDS,
    max_size=50,
    name="PICKUP_POINTS",
)
