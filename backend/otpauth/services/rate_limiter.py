"""Fixed-window counters keyed by phone number.

A window opens on the first increment and lasts window_seconds; the
counter disappears with it. Increments are a single atomic operation
against the cache store.
"""

from dataclasses import dataclass

from otpauth.core.cache import CacheStore
from otpauth.core.logging import get_logger

logger = get_logger("rate_limiter")

SEND_KEY_PREFIX = "otp:send"
VERIFY_KEY_PREFIX = "otp:verify"


def send_key(phone_number: str) -> str:
    return f"{SEND_KEY_PREFIX}:{phone_number}"


def verify_key(phone_number: str) -> str:
    return f"{VERIFY_KEY_PREFIX}:{phone_number}"


@dataclass(frozen=True)
class RateLimitStatus:
    count: int
    limit: int
    window_seconds: int

    @property
    def exceeded(self) -> bool:
        return self.count > self.limit

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.count)


class RateLimiter:
    """Per-key attempt counters backed by a CacheStore."""

    def __init__(self, store: CacheStore):
        self._store = store

    async def increment_and_check(
        self, key: str, max_count: int, window_seconds: int
    ) -> RateLimitStatus:
        """Count one attempt and report whether the limit is now exceeded."""
        count = await self._store.incr_with_ttl(key, window_seconds)
        status = RateLimitStatus(count=count, limit=max_count, window_seconds=window_seconds)
        if status.exceeded:
            logger.warning(f"Rate limit exceeded for {key.rsplit(':', 1)[0]} ({count}/{max_count})")
        return status

    async def current(self, key: str) -> int:
        return await self._store.get_int(key)

    async def is_limited(self, key: str, max_count: int) -> bool:
        """True once max_count attempts have been recorded in the window."""
        return await self.current(key) >= max_count

    async def reset(self, key: str) -> None:
        await self._store.delete(key)
