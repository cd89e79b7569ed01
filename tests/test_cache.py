"""Tests for cache backends and the keyed cache helper."""
from unittest.mock import AsyncMock, MagicMock

import pytest

from revolucare.cache import KeyedCache, MemoryCache, RedisCache
from revolucare.models.care_plan import CarePlan


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _plan(**overrides) -> CarePlan:
    data = {
        "client_id": "client-1",
        "created_by_id": "cm-1",
        "title": "Mobility Plan",
        "description": "Improve client mobility over 90 days",
    }
    data.update(overrides)
    return CarePlan(**data)


class TestMemoryCache:
    @pytest.mark.asyncio
    async def test_set_and_get(self):
        cache = MemoryCache()
        await cache.set("k", "v", 60)
        assert await cache.get("k") == "v"

    @pytest.mark.asyncio
    async def test_entries_expire(self):
        clock = FakeClock()
        cache = MemoryCache(clock=clock)
        await cache.set("k", "v", 10)
        clock.now += 9
        assert await cache.get("k") == "v"
        clock.now += 1
        assert await cache.get("k") is None

    @pytest.mark.asyncio
    async def test_delete_counts_removed_keys(self):
        cache = MemoryCache()
        await cache.set("a", "1", 60)
        await cache.set("b", "2", 60)
        assert await cache.delete("a", "b", "missing") == 2

    @pytest.mark.asyncio
    async def test_keys_matches_glob_pattern(self):
        cache = MemoryCache()
        await cache.set("client-care-plans:c1:abc", "x", 60)
        await cache.set("client-care-plans:c1:def", "x", 60)
        await cache.set("client-care-plans:c2:abc", "x", 60)
        keys = await cache.keys("client-care-plans:c1:*")
        assert sorted(keys) == ["client-care-plans:c1:abc", "client-care-plans:c1:def"]

    @pytest.mark.asyncio
    async def test_escaped_pattern_matches_literally(self):
        cache = MemoryCache()
        await cache.set("client-care-plans:c*:abc", "x", 60)
        await cache.set("client-care-plans:c1:abc", "x", 60)
        await cache.set("client-care-plans:[c]:abc", "x", 60)
        await cache.set("client-care-plans:c:abc", "x", 60)

        assert await cache.keys(cache.escape_pattern("client-care-plans:c*") + ":*") == ["client-care-plans:c*:abc"]
        assert await cache.keys(cache.escape_pattern("client-care-plans:[c]") + ":*") == ["client-care-plans:[c]:abc"]


class TestRedisCache:
    @pytest.mark.asyncio
    async def test_set_uses_setex(self):
        client = MagicMock()
        client.setex = AsyncMock()
        cache = RedisCache(client)
        await cache.set("care-plan:1", "{}", 3600)
        client.setex.assert_awaited_once_with("care-plan:1", 3600, "{}")

    @pytest.mark.asyncio
    async def test_delete_without_keys_skips_round_trip(self):
        client = MagicMock()
        client.delete = AsyncMock()
        cache = RedisCache(client)
        assert await cache.delete() == 0
        client.delete.assert_not_awaited()

    def test_escape_pattern_uses_backslashes(self):
        cache = RedisCache(MagicMock())
        assert cache.escape_pattern("client-care-plans:c*[1]?\\") == "client-care-plans:c\\*\\[1\\]\\?\\\\"


class TestKeyedCache:
    @pytest.mark.asyncio
    async def test_key_format(self):
        cache = KeyedCache(MemoryCache(), "client-care-plans", CarePlan, 60)
        assert cache.key("c1", "abc") == "client-care-plans:c1:abc"

    @pytest.mark.asyncio
    async def test_round_trip_model(self):
        cache = KeyedCache(MemoryCache(), "care-plan", CarePlan, 60)
        plan = _plan()
        await cache.set(plan, plan.id)
        cached = await cache.get(plan.id)
        assert cached == plan

    @pytest.mark.asyncio
    async def test_get_or_load_loads_once(self):
        cache = KeyedCache(MemoryCache(), "care-plan", CarePlan, 60)
        plan = _plan()
        loader = AsyncMock(return_value=plan)

        first = await cache.get_or_load(loader, plan.id)
        second = await cache.get_or_load(loader, plan.id)

        assert first == second == plan
        loader.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_get_or_load_does_not_cache_missing(self):
        backend = MemoryCache()
        cache = KeyedCache(backend, "care-plan", CarePlan, 60)
        loader = AsyncMock(return_value=None)
        assert await cache.get_or_load(loader, "nope") is None
        assert await backend.get("care-plan:nope") is None

    @pytest.mark.asyncio
    async def test_invalidate_prefix(self):
        backend = MemoryCache()
        cache = KeyedCache(backend, "client-care-plans", CarePlan, 60)
        plan = _plan()
        await cache.set(plan, "c1", "f1")
        await cache.set(plan, "c1", "f2")
        await cache.set(plan, "c2", "f1")

        await cache.invalidate_prefix("c1")

        assert await cache.get("c1", "f1") is None
        assert await cache.get("c1", "f2") is None
        assert await cache.get("c2", "f1") == plan

    @pytest.mark.asyncio
    async def test_invalidate_prefix_treats_glob_characters_literally(self):
        backend = MemoryCache()
        cache = KeyedCache(backend, "client-care-plans", CarePlan, 60)
        plan = _plan()
        await cache.set(plan, "c*", "f1")
        await cache.set(plan, "c1", "f1")

        await cache.invalidate_prefix("c*")

        assert await cache.get("c*", "f1") is None
        assert await cache.get("c1", "f1") == plan

    @pytest.mark.asyncio
    async def test_value_loaded_before_invalidation_is_not_cached(self):
        backend = MemoryCache()
        cache = KeyedCache(backend, "care-plan", CarePlan, 60)
        stale = _plan()

        async def _loader():
            await cache.invalidate(stale.id)
            return stale

        assert await cache.get_or_load(_loader, stale.id) == stale
        assert await backend.get(f"care-plan:{stale.id}") is None

    @pytest.mark.asyncio
    async def test_invalidation_during_write_removes_written_value(self):
        backend = MemoryCache()
        cache = KeyedCache(backend, "care-plan", CarePlan, 60)
        stale = _plan()
        write = backend.set

        async def _set_then_invalidate(key, value, ttl_seconds):
            cache.generation += 1
            await write(key, value, ttl_seconds)

        backend.set = _set_then_invalidate

        await cache.get_or_load(AsyncMock(return_value=stale), stale.id)

        assert await backend.get(f"care-plan:{stale.id}") is None

    @pytest.mark.asyncio
    async def test_undecodable_entry_is_discarded(self):
        backend = MemoryCache()
        cache = KeyedCache(backend, "care-plan", CarePlan, 60)
        await backend.set("care-plan:1", "not json", 60)
        assert await cache.get("1") is None
        assert await backend.get("care-plan:1") is None

    @pytest.mark.asyncio
    async def test_backend_failures_never_raise(self):
        backend = MagicMock()
        backend.get = AsyncMock(side_effect=ConnectionError("redis down"))
        backend.set = AsyncMock(side_effect=ConnectionError("redis down"))
        backend.delete = AsyncMock(side_effect=ConnectionError("redis down"))
        backend.keys = AsyncMock(side_effect=ConnectionError("redis down"))
        cache = KeyedCache(backend, "care-plan", CarePlan, 60)
        plan = _plan()

        assert await cache.get(plan.id) is None
        await cache.set(plan, plan.id)
        await cache.invalidate(plan.id)
        await cache.invalidate_prefix("c1")

        loaded = await cache.get_or_load(AsyncMock(return_value=plan), plan.id)
        assert loaded == plan
