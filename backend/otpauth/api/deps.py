"""FastAPI dependencies wiring services to the request."""

from datetime import timedelta
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from otpauth.api.errors import FailureError
from otpauth.core import get_cache_store, get_db, settings
from otpauth.services.authenticator import AuthenticatedUser, Authenticator
from otpauth.services.otp import OtpIssuer, OtpVerifier
from otpauth.services.rate_limiter import RateLimiter
from otpauth.services.sms import SmsSender, get_sms_sender
from otpauth.services.token_codec import TokenCodec
from otpauth.services.tokens import RefreshCoordinator, SignoutService, TokenIssuer

DbSession = Annotated[AsyncSession, Depends(get_db)]


def _refresh_lifetime() -> timedelta:
    return timedelta(days=settings.refresh_token_lifetime_days)


@lru_cache
def get_token_codec() -> TokenCodec:
    return TokenCodec.from_settings(settings)


@lru_cache
def get_sender() -> SmsSender:
    return get_sms_sender(settings)


def get_rate_limiter() -> RateLimiter:
    return RateLimiter(get_cache_store())


def get_token_issuer(
    db: DbSession, codec: TokenCodec = Depends(get_token_codec)
) -> TokenIssuer:
    return TokenIssuer(
        session=db,
        codec=codec,
        refresh_lifetime=_refresh_lifetime(),
        token_type=settings.token_type,
    )


def get_otp_issuer(
    db: DbSession,
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
    sender: SmsSender = Depends(get_sender),
) -> OtpIssuer:
    return OtpIssuer(db, rate_limiter, sender, settings)


def get_otp_verifier(
    db: DbSession,
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
    issuer: TokenIssuer = Depends(get_token_issuer),
) -> OtpVerifier:
    return OtpVerifier(db, rate_limiter, issuer, settings)


def get_refresh_coordinator(
    db: DbSession, issuer: TokenIssuer = Depends(get_token_issuer)
) -> RefreshCoordinator:
    return RefreshCoordinator(db, issuer)


def get_signout_service(db: DbSession) -> SignoutService:
    return SignoutService(db, _refresh_lifetime())


async def get_current_user(
    request: Request,
    db: DbSession,
    codec: TokenCodec = Depends(get_token_codec),
) -> AuthenticatedUser:
    """Dependency resolving the authenticated user from header or cookie."""
    result = await Authenticator(db, codec).authenticate(request.headers, request.cookies)
    if not result.is_ok:
        raise FailureError(result.failure, credential=True)  # type: ignore[arg-type]
    return result.unwrap()


CurrentUser = Annotated[AuthenticatedUser, Depends(get_current_user)]
