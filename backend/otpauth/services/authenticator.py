"""Request-time access token gate."""

from collections.abc import Mapping
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from otpauth.core.logging import get_logger
from otpauth.models import User
from otpauth.services.errors import ErrorKind, Result, fail, ok
from otpauth.services.stores import BlacklistStore
from otpauth.services.token_codec import TokenClaims, TokenCodec

logger = get_logger("authenticator")

ACCESS_TOKEN_COOKIE = "access_token"
BEARER_PREFIX = "bearer "


@dataclass(frozen=True)
class AuthenticatedUser:
    user: User
    claims: TokenClaims


def extract_token(headers: Mapping[str, str], cookies: Mapping[str, str]) -> str | None:
    """Pull the access token from the Authorization header or cookie.

    The header wins when both are present. The "Bearer " prefix is optional
    so cookies holding a raw token work too. The scheme name is
    case-insensitive.
    """
    raw = headers.get("Authorization") or headers.get("authorization")
    if not raw:
        raw = cookies.get(ACCESS_TOKEN_COOKIE)
    if not raw:
        return None
    raw = raw.strip()
    if raw[: len(BEARER_PREFIX)].lower() == BEARER_PREFIX:
        raw = raw[len(BEARER_PREFIX) :].strip()
    return raw or None


class Authenticator:
    """Validates a presented access token and resolves its user. Read-only."""

    def __init__(self, session: AsyncSession, codec: TokenCodec):
        self.session = session
        self.codec = codec
        self.blacklist = BlacklistStore(session)

    async def authenticate(
        self, headers: Mapping[str, str], cookies: Mapping[str, str]
    ) -> Result[AuthenticatedUser]:
        return await self.authenticate_token(extract_token(headers, cookies))

    async def authenticate_token(self, token: str | None) -> Result[AuthenticatedUser]:
        if not token:
            return fail(ErrorKind.MISSING_TOKEN, "Authentication token is missing")

        decoded = self.codec.decode(token)
        if not decoded.is_ok:
            return decoded

        claims = decoded.unwrap()
        try:
            if await self.blacklist.contains(claims.jti):
                logger.warning(
                    f"Revoked token presented for user {claims.subject}",
                    extra={"user_id": claims.subject, "jti": claims.jti},
                )
                return fail(ErrorKind.UNAUTHORIZED, "Token has been revoked")

            user = await self.session.get(User, claims.user_id)
        except SQLAlchemyError as e:
            logger.exception("Token authentication lookup failed")
            return fail(ErrorKind.SYSTEM, "Authentication failed", detail=str(e))

        if user is None:
            logger.warning(f"Token subject {claims.subject} does not exist")
            return fail(ErrorKind.UNAUTHORIZED, "User not found")
        if not user.is_active:
            logger.warning(f"Token presented for inactive user {user.id}")
            return fail(ErrorKind.UNAUTHORIZED, "User account is deactivated")

        return ok(AuthenticatedUser(user=user, claims=claims))
