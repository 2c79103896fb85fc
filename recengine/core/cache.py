import json
import math
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any, NamedTuple, Optional

import redis.asyncio as redis
from cachetools import TLRUCache
from loguru import logger

from recengine.core.config import settings
from recengine.core.errors import CacheUnavailable


class _Miss:
    """Sentinel returned by cache reads for absent or expired keys."""

    _instance: Optional["_Miss"] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISS"


MISS = _Miss()


class _Entry(NamedTuple):
    value: str
    expires_at: float


class CacheBackend(ABC):
    """Raw string key/value operations. Backends raise CacheUnavailable on connection errors."""

    @abstractmethod
    async def get(self, key: str) -> str | None: ...

    @abstractmethod
    async def set(self, key: str, value: str, ttl: float | None = None) -> None: ...

    @abstractmethod
    async def increment(self, key: str, ttl: float | None = None) -> int: ...

    @abstractmethod
    async def delete(self, key: str) -> None: ...

    @abstractmethod
    async def ttl(self, key: str) -> float | None: ...

    async def close(self) -> None:
        return None


class MemoryCacheBackend(CacheBackend):
    """
    Bounded in-process backend.

    Entries expire by their own TTL and the least recently used entry is evicted
    once ``maxsize`` is reached. No operation suspends between read and write, so
    each call is atomic with respect to other coroutines on the same loop.
    """

    def __init__(self, maxsize: int = 10_000, timer: Callable[[], float] = time.monotonic):
        self._timer = timer
        self._data: TLRUCache = TLRUCache(maxsize=maxsize, ttu=self._time_to_use, timer=timer)

    @staticmethod
    def _time_to_use(_key: str, entry: _Entry, _now: float) -> float:
        return entry.expires_at

    def _expiry(self, ttl: float | None) -> float:
        return self._timer() + ttl if ttl else math.inf

    def __len__(self) -> int:
        self._data.expire()
        return len(self._data)

    async def get(self, key: str) -> str | None:
        # drop expired entries so a stale read is also a removal
        self._data.expire()
        entry = self._data.get(key)
        return entry.value if entry is not None else None

    async def set(self, key: str, value: str, ttl: float | None = None) -> None:
        self._data[key] = _Entry(value, self._expiry(ttl))

    async def increment(self, key: str, ttl: float | None = None) -> int:
        self._data.expire()
        entry = self._data.get(key)
        if entry is None:
            count = 1
            expires_at = self._expiry(ttl)
        else:
            count = int(entry.value) + 1
            expires_at = entry.expires_at
        self._data[key] = _Entry(str(count), expires_at)
        return count

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def ttl(self, key: str) -> float | None:
        self._data.expire()
        entry = self._data.get(key)
        if entry is None or entry.expires_at == math.inf:
            return None
        return max(0.0, entry.expires_at - self._timer())


class RedisCacheBackend(CacheBackend):
    """Redis backend shared by every process of the deployment."""

    def __init__(self, url: str | None = None):
        self.url = url or settings.REDIS_URL
        self._client: redis.Redis | None = None

    async def get_client(self) -> redis.Redis:
        if self._client is None:
            if not self.url:
                raise CacheUnavailable("REDIS_URL is not configured")

            logger.info("Initializing Redis cache client")
            self._client = redis.from_url(
                self.url,
                decode_responses=True,
                encoding="utf-8",
                socket_connect_timeout=5,
                socket_timeout=5,
                max_connections=getattr(settings, "REDIS_MAX_CONNECTIONS", 100),
                health_check_interval=30,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            try:
                await self._client.close()
                logger.info("Redis cache client closed")
            except Exception as exc:
                logger.warning(f"Failed to close Redis cache client: {exc}")
            finally:
                self._client = None

    async def get(self, key: str) -> str | None:
        try:
            client = await self.get_client()
            return await client.get(key)
        except (redis.RedisError, OSError) as exc:
            raise CacheUnavailable(f"GET {key} failed: {exc}") from exc

    async def set(self, key: str, value: str, ttl: float | None = None) -> None:
        try:
            client = await self.get_client()
            if ttl:
                await client.set(key, value, px=int(ttl * 1000))
            else:
                await client.set(key, value)
        except (redis.RedisError, OSError) as exc:
            raise CacheUnavailable(f"SET {key} failed: {exc}") from exc

    async def increment(self, key: str, ttl: float | None = None) -> int:
        try:
            client = await self.get_client()
            async with client.pipeline(transaction=True) as pipe:
                pipe.incr(key)
                if ttl:
                    # NX keeps the expiry set by the first increment of the window
                    pipe.pexpire(key, int(ttl * 1000), nx=True)
                results = await pipe.execute()
            return int(results[0])
        except (redis.RedisError, OSError) as exc:
            raise CacheUnavailable(f"INCR {key} failed: {exc}") from exc

    async def delete(self, key: str) -> None:
        try:
            client = await self.get_client()
            await client.delete(key)
        except (redis.RedisError, OSError) as exc:
            raise CacheUnavailable(f"DEL {key} failed: {exc}") from exc

    async def ttl(self, key: str) -> float | None:
        try:
            client = await self.get_client()
            remaining_ms = await client.pttl(key)
        except (redis.RedisError, OSError) as exc:
            raise CacheUnavailable(f"PTTL {key} failed: {exc}") from exc
        if remaining_ms is None or remaining_ms < 0:
            return None
        return remaining_ms / 1000.0


class SharedCache:
    """
    Generic cache wrapper for the application.
    Handles key prefixing, JSON serialization, and error handling.

    ``get`` returns ``MISS`` for absent or expired keys, which is distinct from a
    stored ``None``. Read and write failures are logged and degrade to a miss or a
    no-op; ``increment`` and ``ttl`` raise ``CacheUnavailable`` so counters can
    decide how to fail.
    """

    _instance: Optional["SharedCache"] = None

    def __init__(self, backend: CacheBackend, prefix: str = ""):
        self.backend = backend
        self.prefix = prefix

    @classmethod
    def get_instance(cls) -> "SharedCache":
        if cls._instance is None:
            if settings.CACHE_BACKEND == "redis":
                backend: CacheBackend = RedisCacheBackend(settings.REDIS_URL)
            else:
                backend = MemoryCacheBackend(maxsize=settings.CACHE_MAX_ENTRIES)
            cls._instance = SharedCache(backend, prefix=settings.REDIS_KEY_PREFIX)
        return cls._instance

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def get(self, key: str) -> Any:
        try:
            raw = await self.backend.get(self._key(key))
        except CacheUnavailable as e:
            logger.error(f"Cache GET failed for {key}: {e}")
            return MISS
        if raw is None:
            return MISS
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            logger.warning(f"Dropping undecodable cache value for {key}")
            return MISS

    async def set(self, key: str, value: Any, ttl: float | None = None) -> bool:
        try:
            await self.backend.set(self._key(key), json.dumps(value, default=str), ttl)
            return True
        except CacheUnavailable as e:
            logger.error(f"Cache SET failed for {key}: {e}")
            return False

    async def increment(self, key: str, ttl: float | None = None) -> int:
        return await self.backend.increment(self._key(key), ttl)

    async def ttl(self, key: str) -> float | None:
        return await self.backend.ttl(self._key(key))

    async def delete(self, key: str) -> None:
        try:
            await self.backend.delete(self._key(key))
        except CacheUnavailable as e:
            logger.warning(f"Cache DELETE failed for {key}: {e}")

    async def close(self) -> None:
        await self.backend.close()


shared_cache = SharedCache.get_instance()
