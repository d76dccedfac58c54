"""Token cleanup service - periodically sweeps expired auth rows.

Request handlers already treat expired rows as invalid; this only keeps
the tables from growing without bound.
"""

import asyncio
import threading
from collections.abc import Callable
from dataclasses import dataclass, replace
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from otpauth.core import CacheStore, async_session_maker, get_cache_store, settings
from otpauth.core.logging import get_logger
from otpauth.models.base import utcnow
from otpauth.services.stores import BlacklistStore, OtpStore, RefreshTokenStore

logger = get_logger("cleanup")

# Delay before the first sweep so startup is not slowed down
INITIAL_DELAY_SECONDS = 60


@dataclass(frozen=True)
class CleanupReport:
    otp_codes: int = 0
    refresh_tokens: int = 0
    blacklisted_tokens: int = 0
    cache_counters: int = 0

    @property
    def total(self) -> int:
        return self.otp_codes + self.refresh_tokens + self.blacklisted_tokens


class TokenCleanupService:
    """Background service that deletes expired OTP codes and tokens."""

    _instance: Optional["TokenCleanupService"] = None
    _instance_lock: threading.Lock = threading.Lock()

    def __init__(
        self,
        interval_seconds: int | None = None,
        session_factory: Callable[[], AsyncSession] | None = None,
        cache_store: CacheStore | None = None,
    ):
        self._running = False
        self._task: asyncio.Task | None = None
        self._interval = interval_seconds or settings.cleanup_interval_seconds
        self._session_factory = session_factory or async_session_maker
        self._cache_store = cache_store

    @classmethod
    def get_instance(cls) -> "TokenCleanupService":
        """Get singleton instance of the cleanup service (thread-safe)."""
        if cls._instance is None:
            with cls._instance_lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    @property
    def interval_seconds(self) -> int:
        return self._interval

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self, initial_delay: float = INITIAL_DELAY_SECONDS) -> None:
        """Start the background cleanup task."""
        if self._running:
            logger.warning("Token cleanup service is already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._cleanup_loop(initial_delay))
        logger.info(f"Token cleanup service started (interval: {self._interval}s)")

    async def stop(self) -> None:
        """Stop the background cleanup task."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Token cleanup service stopped")

    async def _cleanup_loop(self, initial_delay: float) -> None:
        await asyncio.sleep(initial_delay)

        while self._running:
            try:
                await self.run_cleanup_now()
            except Exception as e:
                logger.error(f"Error in token cleanup: {e}")

            await asyncio.sleep(self._interval)

    async def run_cleanup_now(self) -> CleanupReport:
        """Run one sweep and return how many rows and counters were removed."""
        now = utcnow()
        async with self._session_factory() as db:
            try:
                report = CleanupReport(
                    otp_codes=await OtpStore(db).delete_expired(now),
                    refresh_tokens=await RefreshTokenStore(db).delete_expired(now),
                    blacklisted_tokens=await BlacklistStore(db).delete_expired(now),
                )
                await db.commit()
            except Exception:
                logger.exception("Error during token cleanup")
                await db.rollback()
                raise

        # In-process rate-limit counters are otherwise only dropped when read again
        cache_store = self._cache_store or get_cache_store()
        report = replace(report, cache_counters=await cache_store.purge_expired())

        if report.total > 0 or report.cache_counters > 0:
            logger.info(
                f"Token cleanup: removed {report.otp_codes} OTP codes, "
                f"{report.refresh_tokens} refresh tokens, "
                f"{report.blacklisted_tokens} blacklist entries, "
                f"{report.cache_counters} expired rate-limit counters"
            )
        return report
