"""
Shared Counter Store

Key/value + list store with TTL support used for attempt windows, lockouts
and OTP sessions. Redis is the production backend; the in-memory backend
serves single-process development and the test suite.

Backends raise on infrastructure errors. Whether an error blocks or allows
a login is decided by the caller through the failure policy table, not here.
"""

import abc
from typing import Dict, List, Optional, Union

import redis.asyncio as redis

from app.core.clock import Clock, utc_now
from app.core.utils import logger


class CounterStoreError(Exception):
    """Raised when the counter store cannot serve a request."""


class CounterStore(abc.ABC):
    """Contract shared by all counter store backends."""

    @abc.abstractmethod
    async def get(self, key: str) -> Optional[str]: ...

    @abc.abstractmethod
    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> bool: ...

    @abc.abstractmethod
    async def delete(self, *keys: str) -> int: ...

    @abc.abstractmethod
    async def expire(self, key: str, ttl: int) -> bool: ...

    @abc.abstractmethod
    async def lpush(self, key: str, *values: str) -> int: ...

    @abc.abstractmethod
    async def lrange(self, key: str, start: int, stop: int) -> List[str]: ...

    @abc.abstractmethod
    async def llen(self, key: str) -> int: ...

    async def close(self) -> None:
        return None


class InMemoryCounterStore(CounterStore):
    """Process-local store following Redis semantics for the operations used."""

    def __init__(self, clock: Clock = utc_now):
        self._clock = clock
        self._data: Dict[str, Union[str, List[str]]] = {}
        self._expiry: Dict[str, float] = {}

    def _now(self) -> float:
        return self._clock().timestamp()

    def _purge_if_expired(self, key: str) -> None:
        deadline = self._expiry.get(key)
        if deadline is not None and self._now() >= deadline:
            self._data.pop(key, None)
            self._expiry.pop(key, None)

    def _list(self, key: str, create: bool = False) -> Optional[List[str]]:
        self._purge_if_expired(key)
        value = self._data.get(key)
        if value is None:
            if not create:
                return None
            value = []
            self._data[key] = value
        if not isinstance(value, list):
            raise CounterStoreError(f"WRONGTYPE key {key} does not hold a list")
        return value

    async def get(self, key: str) -> Optional[str]:
        self._purge_if_expired(key)
        value = self._data.get(key)
        if isinstance(value, list):
            raise CounterStoreError(f"WRONGTYPE key {key} holds a list")
        return value

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        self._data[key] = str(value)
        if ttl:
            self._expiry[key] = self._now() + ttl
        else:
            self._expiry.pop(key, None)
        return True

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            self._purge_if_expired(key)
            if self._data.pop(key, None) is not None:
                removed += 1
            self._expiry.pop(key, None)
        return removed

    async def expire(self, key: str, ttl: int) -> bool:
        self._purge_if_expired(key)
        if key not in self._data:
            return False
        self._expiry[key] = self._now() + ttl
        return True

    async def lpush(self, key: str, *values: str) -> int:
        items = self._list(key, create=True)
        for value in values:
            items.insert(0, str(value))
        return len(items)

    async def lrange(self, key: str, start: int, stop: int) -> List[str]:
        items = self._list(key) or []
        length = len(items)
        if start < 0:
            start = max(length + start, 0)
        if stop < 0:
            stop = length + stop
        return list(items[start : stop + 1])

    async def llen(self, key: str) -> int:
        items = self._list(key)
        return len(items) if items else 0

    def ttl(self, key: str) -> Optional[float]:
        """Remaining lifetime in seconds, or None when the key has no expiry."""
        self._purge_if_expired(key)
        deadline = self._expiry.get(key)
        if deadline is None:
            return None
        return deadline - self._now()


class RedisCounterStore(CounterStore):
    """Redis backed store (redis.asyncio)."""

    def __init__(self, redis_url: str, socket_timeout: Optional[float] = None):
        self.redis_url = redis_url
        self.socket_timeout = socket_timeout
        self._client: Optional["redis.Redis"] = None

    def _get_client(self) -> "redis.Redis":
        if self._client is None:
            self._client = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_timeout=self.socket_timeout,
                socket_connect_timeout=self.socket_timeout,
            )
        return self._client

    async def get(self, key: str) -> Optional[str]:
        return await self._get_client().get(key)

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        client = self._get_client()
        if ttl:
            return bool(await client.set(key, value, ex=ttl))
        return bool(await client.set(key, value))

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return await self._get_client().delete(*keys)

    async def expire(self, key: str, ttl: int) -> bool:
        return bool(await self._get_client().expire(key, ttl))

    async def lpush(self, key: str, *values: str) -> int:
        return await self._get_client().lpush(key, *values)

    async def lrange(self, key: str, start: int, stop: int) -> List[str]:
        return await self._get_client().lrange(key, start, stop)

    async def llen(self, key: str) -> int:
        return await self._get_client().llen(key)

    async def ping(self) -> bool:
        return bool(await self._get_client().ping())

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


async def create_counter_store(
    store_type: str, redis_url: str, socket_timeout: Optional[float] = None
) -> CounterStore:
    """
    Build the configured backend.

    Falls back to the in-memory store when Redis is requested but the server
    does not answer a ping at startup.
    """
    if store_type == "redis":
        store = RedisCounterStore(redis_url, socket_timeout=socket_timeout)
        try:
            await store.ping()
            logger.log_info({"event_type": "counter_store_initialized", "backend": "redis"})
            return store
        except Exception as e:
            logger.log_warning(
                {
                    "event_type": "redis_connection_failed",
                    "error": str(e),
                    "fallback": "memory",
                }
            )
            await store.close()

    logger.log_info({"event_type": "counter_store_initialized", "backend": "memory"})
    return InMemoryCounterStore()
