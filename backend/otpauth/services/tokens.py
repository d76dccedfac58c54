"""Token pair issuance, refresh-token rotation, revocation and signout."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

import jwt
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from otpauth.core.config import Settings
from otpauth.core.logging import get_logger
from otpauth.models import User
from otpauth.models.base import utcnow
from otpauth.services.errors import ErrorKind, Result, fail, ok
from otpauth.services.stores import BlacklistStore, RefreshTokenStore
from otpauth.services.token_codec import TokenClaims, TokenCodec

logger = get_logger("tokens")


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    token_type: str
    expires_in: int
    access_jti: str
    refresh_expires_at: datetime

    def as_response(self) -> dict[str, Any]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "token_type": self.token_type,
            "expires_in": self.expires_in,
        }


@dataclass(frozen=True)
class RefreshOutcome:
    access_token: str
    token_type: str
    expires_in: int
    refresh_token: str | None = None

    @property
    def rotated(self) -> bool:
        return self.refresh_token is not None

    def as_response(self) -> dict[str, Any]:
        response: dict[str, Any] = {
            "access_token": self.access_token,
            "token_type": self.token_type,
            "expires_in": self.expires_in,
        }
        if self.refresh_token is not None:
            response["refresh_token"] = self.refresh_token
        return response


class TokenIssuer:
    """Creates an access token plus a new refresh chain for a user.

    Every call opens an independent refresh chain, so one user can hold a
    session per device.
    """

    def __init__(
        self,
        session: AsyncSession,
        codec: TokenCodec,
        refresh_lifetime: timedelta,
        token_type: str = "Bearer",
    ):
        self.session = session
        self.codec = codec
        self.refresh_lifetime = refresh_lifetime
        self.token_type = token_type
        self.refresh_tokens = RefreshTokenStore(session, refresh_lifetime)

    @classmethod
    def from_settings(cls, session: AsyncSession, settings: Settings) -> "TokenIssuer":
        return cls(
            session=session,
            codec=TokenCodec.from_settings(settings),
            refresh_lifetime=timedelta(days=settings.refresh_token_lifetime_days),
            token_type=settings.token_type,
        )

    async def issue(self, user: User) -> Result[TokenPair]:
        try:
            encoded = self.codec.encode(user.id)
        except jwt.PyJWTError as e:
            logger.exception(f"Access token encoding failed for user {user.id}")
            return fail(ErrorKind.SYSTEM, "Token generation failed", detail=str(e))

        try:
            raw_refresh, record = await self.refresh_tokens.create(user.id)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.exception(f"Failed to create refresh token for user {user.id}")
            return fail(ErrorKind.SYSTEM, "Failed to create refresh token", detail=str(e))

        return ok(
            TokenPair(
                access_token=encoded.token,
                refresh_token=raw_refresh,
                token_type=self.token_type,
                expires_in=self.codec.lifetime_seconds,
                access_jti=encoded.jti,
                refresh_expires_at=record.expires_at,
            )
        )


class RefreshCoordinator:
    """Exchanges a refresh token for a new access token.

    The refresh token is rotated only once it is older than half its
    lifetime; younger tokens stay valid and untouched.
    """

    def __init__(self, session: AsyncSession, issuer: TokenIssuer):
        self.session = session
        self.issuer = issuer
        self.refresh_tokens = issuer.refresh_tokens

    def should_rotate(self, created_at: datetime, now: datetime) -> bool:
        return (now - created_at) > (self.issuer.refresh_lifetime / 2)

    async def refresh(self, presented_token: str | None) -> Result[RefreshOutcome]:
        if not presented_token:
            return fail(ErrorKind.MISSING_TOKEN, "Refresh token is required")

        now = utcnow()
        try:
            record = await self.refresh_tokens.find(presented_token)
            if record is None:
                return fail(ErrorKind.NOT_FOUND, "Invalid refresh token")

            if record.expires_at < now:
                await self.refresh_tokens.delete(record)
                await self.session.commit()
                logger.info(f"Expired refresh token {record.id} removed")
                return fail(ErrorKind.EXPIRED, "Refresh token has expired")

            user = await self.session.get(User, record.user_id)
            if user is None or not user.is_active:
                await self.refresh_tokens.delete(record)
                await self.session.commit()
                logger.warning(f"Refresh token {record.id} has no active owner; removed")
                return fail(ErrorKind.NOT_FOUND, "User not found")
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.exception("Refresh token lookup failed")
            return fail(ErrorKind.SYSTEM, "Token refresh failed", detail=str(e))

        try:
            encoded = self.issuer.codec.encode(user.id)
        except jwt.PyJWTError as e:
            logger.exception(f"Access token encoding failed for user {user.id}")
            return fail(ErrorKind.SYSTEM, "Token generation failed", detail=str(e))

        new_refresh: str | None = None
        if self.should_rotate(record.created_at, now):
            # Read before a rollback expires the instances
            user_id, record_id = user.id, record.id
            try:
                # New token is flushed before the old one is deleted
                new_refresh, _ = await self.refresh_tokens.create(user_id, now=now)
                removed = await self.refresh_tokens.delete(record)
                if removed != 1:
                    # A concurrent refresh already rotated this token
                    await self.session.rollback()
                    logger.warning(f"Refresh token {record_id} was rotated concurrently")
                    return fail(ErrorKind.NOT_FOUND, "Invalid refresh token")
                await self.session.commit()
            except SQLAlchemyError as e:
                await self.session.rollback()
                logger.exception(f"Refresh token rotation failed for user {user_id}")
                return fail(ErrorKind.SYSTEM, "Token refresh failed", detail=str(e))
            logger.info(f"Rotated refresh token for user {user_id}")

        return ok(
            RefreshOutcome(
                access_token=encoded.token,
                token_type=self.issuer.token_type,
                expires_in=self.issuer.codec.lifetime_seconds,
                refresh_token=new_refresh,
            )
        )


class TokenBlacklist:
    """Revocation registry for access tokens."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.store = BlacklistStore(session)

    async def blacklist(self, jti: str, user_id: UUID, expires_at: datetime) -> Result[bool]:
        """Revoke a JTI. Returns ok(False) if it was already revoked."""
        try:
            if await self.store.contains(jti):
                return ok(False)
            await self.store.add(jti, user_id, expires_at)
            await self.session.commit()
        except IntegrityError:
            # Concurrent signout with the same token won the insert
            await self.session.rollback()
            return ok(False)
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.exception(f"Failed to blacklist token {jti}")
            return fail(ErrorKind.SYSTEM, "Failed to invalidate token", detail=str(e))
        return ok(True)

    async def is_blacklisted(self, jti: str) -> bool:
        return await self.store.contains(jti)


class SignoutService:
    """Signs a user out.

    Blacklists the presented access token and deletes every refresh token
    the user owns. Other access tokens the user holds stay valid until they
    expire. Always reports success; backend failures are only logged.
    """

    def __init__(self, session: AsyncSession, refresh_lifetime: timedelta):
        self.session = session
        self.blacklist = TokenBlacklist(session)
        self.refresh_tokens = RefreshTokenStore(session, refresh_lifetime)

    async def signout(self, user: User, claims: TokenClaims) -> dict[str, Any]:
        # Read before any rollback expires the instance
        user_id = user.id
        result = await self.blacklist.blacklist(claims.jti, user_id, claims.expires_at)
        if not result.is_ok:
            logger.error(f"Signout for user {user_id}: blacklist failed, continuing")

        try:
            revoked = await self.refresh_tokens.delete_all_for_user(user_id)
            await self.session.commit()
            logger.info(f"User {user_id} signed out; revoked {revoked} refresh tokens")
        except SQLAlchemyError:
            await self.session.rollback()
            logger.exception(f"Signout for user {user_id}: refresh token revocation failed")

        return {
            "message": "Successfully signed out",
            "signed_out_at": utcnow(),
        }
