"""
Identifier Rate Limiter Tests

Sliding attempt window, lockout lifecycle and store failure handling.
"""

import pytest

from app.core.counter_store import CounterStoreError, InMemoryCounterStore
from app.schemas.security_state import AttemptWindow, Lockout
from app.services.rate_limiter import (
    LOCKED_REASON,
    LOCKOUT_TRIGGERED_REASON,
    IdentifierRateLimiter,
)


class BrokenStore(InMemoryCounterStore):
    """Store whose reads and writes all fail."""

    async def get(self, key):
        raise CounterStoreError("connection refused")

    async def lpush(self, key, *values):
        raise CounterStoreError("connection refused")

    async def delete(self, *keys):
        raise CounterStoreError("connection refused")


class LockoutWriteFailsStore(InMemoryCounterStore):
    async def set(self, key, value, ttl=None):
        raise CounterStoreError("READONLY replica")


@pytest.fixture
def limiter(store, config, clock) -> IdentifierRateLimiter:
    return IdentifierRateLimiter(store, config, clock)


@pytest.mark.asyncio
@pytest.mark.unit
class TestAttemptWindow:

    async def test_attempts_up_to_limit_are_allowed(self, limiter, config):
        for _ in range(config.max_attempts):
            decision = await limiter.check("user@test.com")
            assert decision.allowed is True

    async def test_sixth_attempt_locks_identifier(self, limiter):
        for _ in range(5):
            await limiter.check("user@test.com")

        decision = await limiter.check("user@test.com")

        assert decision.allowed is False
        assert decision.reason == LOCKOUT_TRIGGERED_REASON
        assert "too many" in decision.reason.lower()

    async def test_locked_identifier_stays_blocked(self, limiter, clock):
        for _ in range(6):
            await limiter.check("user@test.com")
        clock.advance(60)

        decision = await limiter.check("user@test.com")

        assert decision.allowed is False
        assert decision.reason == LOCKED_REASON

    async def test_lockout_releases_after_duration(self, limiter, clock, config):
        for _ in range(6):
            await limiter.check("user@test.com")

        clock.advance(config.lockout_duration_seconds + 1)
        decision = await limiter.check("user@test.com")

        assert decision.allowed is True

    async def test_identifier_is_case_insensitive(self, limiter, store):
        for _ in range(5):
            await limiter.check("User@Test.com")

        decision = await limiter.check("user@test.COM")

        assert decision.allowed is False
        assert await store.get(Lockout.key("user@test.com")) is not None

    async def test_attempts_outside_window_are_pruned(self, limiter, store, clock, config):
        for _ in range(5):
            await limiter.check("user@test.com")

        clock.advance(config.window_seconds + 1)
        decision = await limiter.check("user@test.com")

        assert decision.allowed is True
        assert await store.llen(AttemptWindow.key("user@test.com")) == 1

    async def test_window_key_expires_with_window(self, limiter, store, config):
        await limiter.check("user@test.com")

        ttl = store.ttl(AttemptWindow.key("user@test.com"))

        assert ttl == pytest.approx(config.window_seconds)

    async def test_lockout_stores_expiry_with_ttl(self, limiter, store, clock, config):
        for _ in range(6):
            await limiter.check("user@test.com")

        key = Lockout.key("user@test.com")
        lockout = Lockout.parse("user@test.com", await store.get(key))

        expected_ms = int(clock().timestamp() * 1000) + config.lockout_duration_seconds * 1000
        assert lockout.expires_at_ms == expected_ms
        assert store.ttl(key) == pytest.approx(config.lockout_duration_seconds)

    async def test_bypass_records_nothing(self, limiter, store):
        for _ in range(10):
            decision = await limiter.check("vip@test.com", bypass=True)
            assert decision.allowed is True

        assert await store.llen(AttemptWindow.key("vip@test.com")) == 0


@pytest.mark.asyncio
@pytest.mark.unit
class TestClear:

    async def test_clear_removes_attempts_and_lockout(self, limiter, store):
        for _ in range(6):
            await limiter.check("user@test.com")

        await limiter.clear("USER@test.com")

        assert await store.get(Lockout.key("user@test.com")) is None
        assert await store.llen(AttemptWindow.key("user@test.com")) == 0
        assert (await limiter.check("user@test.com")).allowed is True

    async def test_clear_twice_is_harmless(self, limiter, store):
        await limiter.check("user@test.com")

        await limiter.clear("user@test.com")
        await limiter.clear("user@test.com")

        assert await store.get(Lockout.key("user@test.com")) is None
        assert await store.llen(AttemptWindow.key("user@test.com")) == 0


@pytest.mark.asyncio
@pytest.mark.unit
class TestStoreFailures:

    async def test_store_outage_allows_login(self, config, clock):
        limiter = IdentifierRateLimiter(BrokenStore(clock=clock), config, clock)

        for _ in range(10):
            decision = await limiter.check("user@test.com")
            assert decision.allowed is True

    async def test_clear_absorbs_store_errors(self, config, clock):
        limiter = IdentifierRateLimiter(BrokenStore(clock=clock), config, clock)

        await limiter.clear("user@test.com")

    async def test_failed_lockout_write_still_blocks(self, config, clock):
        limiter = IdentifierRateLimiter(LockoutWriteFailsStore(clock=clock), config, clock)

        for _ in range(5):
            await limiter.check("user@test.com")
        decision = await limiter.check("user@test.com")

        assert decision.allowed is False
        assert decision.reason == LOCKOUT_TRIGGERED_REASON
