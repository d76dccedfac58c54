"""Expiring counter cache used for rate limiting.

Two backends share the CacheStore protocol:
- RedisCacheStore: shared across workers, increments run as a Lua script
- MemoryCacheStore: per-process, for single-instance and test deployments
"""

import asyncio
import threading
import time
from typing import Optional, Protocol

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from otpauth.core.config import settings
from otpauth.core.logging import get_logger

logger = get_logger("cache")


class CacheStore(Protocol):
    async def incr_with_ttl(self, key: str, ttl_seconds: int) -> int: ...

    async def get_int(self, key: str) -> int: ...

    async def delete(self, key: str) -> None: ...

    async def ping(self) -> bool: ...

    async def purge_expired(self) -> int: ...

    async def close(self) -> None: ...


class RedisCacheStore:
    """Redis-backed counters.

    INCR and the first EXPIRE run inside one script so concurrent requests
    cannot lose updates or leave a counter without a TTL.
    """

    _INCR_WITH_TTL_SCRIPT = """
local count = redis.call('INCR', KEYS[1])
if count == 1 then
  redis.call('EXPIRE', KEYS[1], tonumber(ARGV[1]))
end
return count
"""

    def __init__(self, redis_url: str, *, socket_timeout: float = 5.0):
        self.redis_url = redis_url
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        self._incr_with_ttl = self.client.register_script(self._INCR_WITH_TTL_SCRIPT)

    async def incr_with_ttl(self, key: str, ttl_seconds: int) -> int:
        count = await self._incr_with_ttl(keys=[key], args=[max(1, int(ttl_seconds))])
        return int(count)

    async def get_int(self, key: str) -> int:
        value = await self.client.get(key)
        return int(value) if value is not None else 0

    async def delete(self, key: str) -> None:
        await self.client.delete(key)

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except (RedisError, OSError) as e:
            logger.warning(f"Redis ping failed: {e}")
            return False

    async def purge_expired(self) -> int:
        # Redis expires keys itself
        return 0

    async def close(self) -> None:
        await self.client.aclose()


class MemoryCacheStore:
    """In-process counters with monotonic-clock expiry."""

    def __init__(self) -> None:
        # key -> (count, expires_at_monotonic)
        self._counters: dict[str, tuple[int, float]] = {}
        self._lock = asyncio.Lock()

    def _live(self, key: str, now: float) -> Optional[tuple[int, float]]:
        entry = self._counters.get(key)
        if entry is None:
            return None
        if entry[1] <= now:
            del self._counters[key]
            return None
        return entry

    async def incr_with_ttl(self, key: str, ttl_seconds: int) -> int:
        async with self._lock:
            now = time.monotonic()
            entry = self._live(key, now)
            if entry is None:
                entry = (1, now + max(1, int(ttl_seconds)))
            else:
                entry = (entry[0] + 1, entry[1])
            self._counters[key] = entry
            return entry[0]

    async def get_int(self, key: str) -> int:
        async with self._lock:
            entry = self._live(key, time.monotonic())
            return entry[0] if entry else 0

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._counters.pop(key, None)

    async def ping(self) -> bool:
        return True

    async def purge_expired(self) -> int:
        """Drop counters whose window has closed. Returns how many were removed."""
        async with self._lock:
            now = time.monotonic()
            expired = [key for key, entry in self._counters.items() if entry[1] <= now]
            for key in expired:
                del self._counters[key]
            return len(expired)

    async def clear(self) -> None:
        async with self._lock:
            self._counters.clear()

    async def close(self) -> None:
        await self.clear()


_store: CacheStore | None = None
_store_lock = threading.Lock()


def get_cache_store() -> CacheStore:
    """Get the process-wide cache store (thread-safe)."""
    global _store
    if _store is None:
        with _store_lock:
            if _store is None:
                if settings.redis_url:
                    logger.info("Using Redis cache store for rate limiting")
                    _store = RedisCacheStore(
                        settings.redis_url, socket_timeout=settings.redis_socket_timeout
                    )
                else:
                    logger.info("REDIS_URL not set; using in-process cache store")
                    _store = MemoryCacheStore()
    return _store


async def close_cache_store() -> None:
    global _store
    if _store is not None:
        await _store.close()
        _store = None
