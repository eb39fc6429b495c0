from __future__ import annotations

import abc
import asyncio
import json
import logging
import time
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Optional

from redis import asyncio as aioredis

logger = logging.getLogger(__name__)

KEY_PREFIX = "pricecompare:"


class CacheStore(abc.ABC):
    """Key/value storage with per-entry expiry. Values must be JSON-safe."""

    @abc.abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        raise NotImplementedError

    @abc.abstractmethod
    async def set(self, key: str, value: Any, ttl: int) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    async def clear(self) -> None:
        raise NotImplementedError

    async def ping(self) -> bool:
        return True

    async def aclose(self) -> None:
        return None


class MemoryCacheStore(CacheStore):
    """In-process store. Oldest entries are evicted once ``max_entries`` is reached."""

    def __init__(self, max_entries: int = 1024, clock: Callable[[], float] = time.monotonic) -> None:
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, str]] = OrderedDict()

    async def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, payload = entry
        if expires_at <= self._clock():
            del self._entries[key]
            return None
        # Stored as JSON so callers never share mutable objects
        return json.loads(payload)

    async def set(self, key: str, value: Any, ttl: int) -> None:
        self._entries.pop(key, None)
        self._entries[key] = (self._clock() + ttl, json.dumps(value))
        self._evict()

    def _evict(self) -> None:
        now = self._clock()
        for key in [k for k, (expires_at, _) in self._entries.items() if expires_at <= now]:
            del self._entries[key]
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    async def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class RedisCacheStore(CacheStore):
    """Redis-backed store shared between API instances."""

    def __init__(self, redis_url: str, prefix: str = KEY_PREFIX) -> None:
        self.prefix = prefix
        self._redis = aioredis.from_url(str(redis_url), decode_responses=True)

    async def get(self, key: str) -> Optional[Any]:
        value = await self._redis.get(self.prefix + key)
        if value is None:
            return None
        return json.loads(value)

    async def set(self, key: str, value: Any, ttl: int) -> None:
        # The 'ex' parameter sets the TTL in seconds.
        await self._redis.set(self.prefix + key, json.dumps(value), ex=ttl)

    async def clear(self) -> None:
        async for key in self._redis.scan_iter(match=f"{self.prefix}*"):
            await self._redis.delete(key)

    async def ping(self) -> bool:
        return await self._redis.ping()

    async def aclose(self) -> None:
        await self._redis.aclose()


class ResultCache:
    """
    Short-TTL memoization of comparison results.

    Concurrent misses on one key share a single in-flight computation, so a
    burst of identical requests hits the external source once. Store errors
    are logged and treated as misses; a broken cache never fails a request.
    A TTL of 0 bypasses the cache entirely.
    """

    def __init__(self, store: CacheStore, ttl: int) -> None:
        self.store = store
        self.ttl = ttl
        self._inflight: dict[str, asyncio.Future] = {}
        self._lock = asyncio.Lock()

    async def _read(self, key: str) -> Optional[Any]:
        try:
            return await self.store.get(key)
        except Exception as e:
            logger.warning(f"Cache read failed for {key}: {e}")
            return None

    async def _compute_and_store(self, key: str, compute: Callable[[], Awaitable[Any]], ttl: int) -> Any:
        value = await compute()
        try:
            await self.store.set(key, value, ttl)
        except Exception as e:
            logger.warning(f"Cache write failed for {key}: {e}")
        return value

    async def get_or_compute(
        self,
        key: str,
        compute: Callable[[], Awaitable[Any]],
        ttl: Optional[int] = None,
    ) -> Any:
        ttl = self.ttl if ttl is None else ttl
        if not ttl:
            return await compute()

        cached = await self._read(key)
        if cached is not None:
            logger.debug(f"Cache hit: {key}")
            return cached

        async with self._lock:
            task = self._inflight.get(key)
            if task is None:
                # A computation may have finished and been forgotten since the first read
                cached = await self._read(key)
                if cached is not None:
                    logger.debug(f"Cache hit: {key}")
                    return cached

                task = asyncio.ensure_future(self._compute_and_store(key, compute, ttl))
                self._inflight[key] = task

                def _forget(done: asyncio.Future, key: str = key) -> None:
                    if self._inflight.get(key) is done:
                        del self._inflight[key]
                    # Retrieve the error even when every waiter was cancelled
                    if not done.cancelled():
                        done.exception()

                task.add_done_callback(_forget)
            else:
                logger.debug(f"Joining in-flight computation: {key}")

        # A cancelled caller must not cancel the computation others are waiting on
        return await asyncio.shield(task)

    async def clear(self) -> None:
        await self.store.clear()

    async def aclose(self) -> None:
        await self.store.aclose()


__all__ = ["CacheStore", "MemoryCacheStore", "RedisCacheStore", "ResultCache"]
