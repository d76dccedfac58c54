"""Persistence for OTP codes, refresh tokens and blacklisted JTIs.

Stores add, flush and execute; they never commit. The calling service owns
the transaction boundary.
"""

import hashlib
import secrets
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import delete, exists, func, select, update
from sqlalchemy.engine import CursorResult
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from otpauth.core.config import settings
from otpauth.models import OtpCode, RefreshToken, TokenBlacklist
from otpauth.models.base import utcnow

# 48 random bytes -> 64 URL-safe characters
REFRESH_TOKEN_BYTES = 48


def digest_refresh_token(raw_token: str) -> str:
    """SHA-256 hex digest used as the lookup key for a refresh token."""
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


class OtpStore:
    """OtpCode rows, keyed by canonical phone number."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def latest_for_phone(self, phone_number: str) -> OtpCode | None:
        result = await self.session.execute(
            select(OtpCode)
            .where(OtpCode.phone_number == phone_number)
            .order_by(OtpCode.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def find_active(self, phone_number: str, now: datetime | None = None) -> OtpCode | None:
        now = now or utcnow()
        result = await self.session.execute(
            select(OtpCode)
            .where(
                OtpCode.phone_number == phone_number,
                OtpCode.consumed_at.is_(None),
                OtpCode.expires_at > now,
            )
            .order_by(OtpCode.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def create(self, phone_number: str, code: str, expires_at: datetime) -> OtpCode:
        otp = OtpCode(phone_number=phone_number, code=code, expires_at=expires_at)
        self.session.add(otp)
        await self.session.flush()
        return otp

    async def consume(self, otp: OtpCode, now: datetime | None = None) -> bool:
        """Mark a code consumed. False if another request consumed it first."""
        now = now or utcnow()
        result: CursorResult[Any] = await self.session.execute(  # type: ignore[assignment]
            update(OtpCode)
            .where(OtpCode.id == otp.id, OtpCode.consumed_at.is_(None))
            .values(consumed_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        set_committed_value(otp, "consumed_at", now)
        return True

    async def consume_active_for_phone(self, phone_number: str, now: datetime | None = None) -> int:
        """Consume every active code for a phone. Returns the count."""
        now = now or utcnow()
        result: CursorResult[Any] = await self.session.execute(  # type: ignore[assignment]
            update(OtpCode)
            .where(
                OtpCode.phone_number == phone_number,
                OtpCode.consumed_at.is_(None),
                OtpCode.expires_at > now,
            )
            .values(consumed_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def delete_expired(self, now: datetime | None = None) -> int:
        now = now or utcnow()
        result: CursorResult[Any] = await self.session.execute(  # type: ignore[assignment]
            delete(OtpCode).where(OtpCode.expires_at < now)
        )
        return result.rowcount


class RefreshTokenStore:
    """RefreshToken rows. Raw token values are never persisted."""

    def __init__(self, session: AsyncSession, lifetime: timedelta | None = None):
        self.session = session
        self.lifetime = lifetime or timedelta(days=settings.refresh_token_lifetime_days)

    async def create(self, user_id: UUID, now: datetime | None = None) -> tuple[str, RefreshToken]:
        """Create a token for a user. Returns (raw_token, record)."""
        now = now or utcnow()
        raw_token = secrets.token_urlsafe(REFRESH_TOKEN_BYTES)
        record = RefreshToken(
            token_digest=digest_refresh_token(raw_token),
            user_id=user_id,
            expires_at=now + self.lifetime,
            created_at=now,
            updated_at=now,
        )
        self.session.add(record)
        await self.session.flush()
        return raw_token, record

    async def find(self, raw_token: str) -> RefreshToken | None:
        result = await self.session.execute(
            select(RefreshToken).where(RefreshToken.token_digest == digest_refresh_token(raw_token))
        )
        return result.scalar_one_or_none()

    async def delete(self, record: RefreshToken) -> int:
        """Delete one token. Returns 0 if another transaction removed it first."""
        result: CursorResult[Any] = await self.session.execute(  # type: ignore[assignment]
            delete(RefreshToken).where(RefreshToken.id == record.id)
        )
        return result.rowcount

    async def delete_all_for_user(self, user_id: UUID) -> int:
        result: CursorResult[Any] = await self.session.execute(  # type: ignore[assignment]
            delete(RefreshToken).where(RefreshToken.user_id == user_id)
        )
        return result.rowcount

    async def count_for_user(self, user_id: UUID) -> int:
        result = await self.session.execute(
            select(func.count(RefreshToken.id)).where(RefreshToken.user_id == user_id)
        )
        return result.scalar() or 0

    async def delete_expired(self, now: datetime | None = None) -> int:
        now = now or utcnow()
        result: CursorResult[Any] = await self.session.execute(  # type: ignore[assignment]
            delete(RefreshToken).where(RefreshToken.expires_at < now)
        )
        return result.rowcount


class BlacklistStore:
    """TokenBlacklist rows, one per revoked JTI."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, jti: str, user_id: UUID, expires_at: datetime) -> TokenBlacklist:
        entry = TokenBlacklist(jti=jti, user_id=user_id, expires_at=expires_at)
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def contains(self, jti: str) -> bool:
        result = await self.session.execute(select(exists().where(TokenBlacklist.jti == jti)))
        return bool(result.scalar())

    async def delete_expired(self, now: datetime | None = None) -> int:
        now = now or utcnow()
        result: CursorResult[Any] = await self.session.execute(  # type: ignore[assignment]
            delete(TokenBlacklist).where(TokenBlacklist.expires_at < now)
        )
        return result.rowcount
