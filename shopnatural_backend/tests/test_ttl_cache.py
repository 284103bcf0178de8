"""
Tests for the pickup point TTL cache.
"""
from unittest.mock import AsyncMock, patch

import pytest

from app.core.ttl_cache import TTLCache


class TestTTLCache:

    @pytest.mark.asyncio
    async def test_get_or_fetch_caches_by_normalized_key(self):
        cache = TTLCache(ttl_seconds=60, name="TEST")
        fetch = AsyncMock(return_value=[{"code": "LT-1"}])

        first = await cache.get_or_fetch("LT", fetch)
        second = await cache.get_or_fetch(" lt ", fetch)

        assert first == second == [{"code": "LT-1"}]
        fetch.assert_awaited_once_with("LT")
        stats = cache.get_stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["size"] == 1

    @pytest.mark.asyncio
    async def test_empty_results_are_not_cached(self):
        cache = TTLCache(ttl_seconds=60)
        fetch = AsyncMock(return_value=[])

        assert await cache.get_or_fetch("LV", fetch) == []
        assert await cache.get_or_fetch("LV", fetch) == []
        assert fetch.await_count == 2

    def test_entries_expire(self):
        cache = TTLCache(ttl_seconds=10)
        with patch("app.core.ttl_cache.time.monotonic", return_value=100.0):
            cache.set("EE", [{"code": "EE-1"}])
        with patch("app.core.ttl_cache.time.monotonic", return_value=105.0):
            assert cache.get("EE") == [{"code": "EE-1"}]
        with patch("app.core.ttl_cache.time.monotonic", return_value=111.0):
            assert cache.get("EE") is None

    def test_lru_eviction(self):
        cache = TTLCache(ttl_seconds=60, max_size=2)
        cache.set("LT", [{"code": 1}])
        cache.set("LV", [{"code": 2}])
        cache.get("LT")
        cache.set("EE", [{"code": 3}])

        assert cache.get("LV") is None
        assert cache.get("LT") is not None
        assert cache.clear() == 2
