"""
Counter Store Tests

In-memory backend behaviour the rate limiter and OTP flow rely on.
"""

import pytest

from app.core.counter_store import (
    CounterStoreError,
    InMemoryCounterStore,
    create_counter_store,
)


@pytest.mark.asyncio
@pytest.mark.unit
class TestInMemoryCounterStore:

    async def test_set_and_get(self, store):
        assert await store.set("k", "v") is True
        assert await store.get("k") == "v"
        assert await store.get("missing") is None

    async def test_value_expires_with_clock(self, store, clock):
        await store.set("k", "v", ttl=10)

        clock.advance(9)
        assert await store.get("k") == "v"

        clock.advance(1)
        assert await store.get("k") is None

    async def test_set_without_ttl_clears_previous_expiry(self, store, clock):
        await store.set("k", "v", ttl=10)
        await store.set("k", "w")

        clock.advance(60)

        assert await store.get("k") == "w"
        assert store.ttl("k") is None

    async def test_lpush_prepends(self, store):
        await store.lpush("list", "1")
        await store.lpush("list", "2", "3")

        assert await store.lrange("list", 0, -1) == ["3", "2", "1"]
        assert await store.lrange("list", 0, 0) == ["3"]
        assert await store.llen("list") == 3

    async def test_list_operations_on_missing_key(self, store):
        assert await store.lrange("nothing", 0, -1) == []
        assert await store.llen("nothing") == 0

    async def test_expire_applies_to_lists(self, store, clock):
        await store.lpush("list", "1")
        assert await store.expire("list", 5) is True

        clock.advance(5)

        assert await store.llen("list") == 0

    async def test_expire_missing_key(self, store):
        assert await store.expire("missing", 5) is False

    async def test_delete_counts_existing_keys(self, store):
        await store.set("a", "1")
        await store.lpush("b", "1")

        assert await store.delete("a", "b", "c") == 2
        assert await store.delete("a") == 0

    async def test_wrong_type_raises(self, store):
        await store.set("scalar", "1")
        await store.lpush("list", "1")

        with pytest.raises(CounterStoreError):
            await store.lpush("scalar", "2")
        with pytest.raises(CounterStoreError):
            await store.get("list")


@pytest.mark.asyncio
@pytest.mark.unit
class TestCreateCounterStore:

    async def test_memory_backend(self):
        store = await create_counter_store("memory", "redis://localhost:6379/0")

        assert isinstance(store, InMemoryCounterStore)
        await store.close()

    async def test_unreachable_redis_falls_back_to_memory(self):
        store = await create_counter_store(
            "redis", "redis://127.0.0.1:1/0", socket_timeout=0.2
        )

        assert isinstance(store, InMemoryCounterStore)
