"""Signed access tokens (JWT, HMAC-SHA256 family)."""

import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

import jwt

from otpauth.core.config import MIN_JWT_SECRET_LENGTH, Settings
from otpauth.core.logging import get_logger
from otpauth.services.errors import ErrorKind, Result, fail, ok

logger = get_logger("token_codec")

REQUIRED_CLAIMS = ["sub", "jti", "iat", "exp", "iss", "aud"]


@dataclass(frozen=True)
class EncodedToken:
    token: str
    jti: str
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class TokenClaims:
    subject: str
    jti: str
    issued_at: datetime
    expires_at: datetime
    issuer: str
    audience: str

    @property
    def user_id(self) -> UUID:
        return UUID(self.subject)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "TokenClaims":
        aud = payload["aud"]
        return cls(
            subject=str(UUID(str(payload["sub"]))),
            jti=str(payload["jti"]),
            issued_at=datetime.fromtimestamp(payload["iat"], tz=UTC),
            expires_at=datetime.fromtimestamp(payload["exp"], tz=UTC),
            issuer=payload["iss"],
            audience=aud[0] if isinstance(aud, list) else aud,
        )


class TokenCodec:
    """Encodes and verifies access tokens.

    decode() never raises: every failure comes back as a typed Result.
    """

    def __init__(
        self,
        secret: str,
        issuer: str,
        audience: str,
        lifetime: timedelta,
        algorithm: str = "HS256",
    ):
        if not secret or len(secret) < MIN_JWT_SECRET_LENGTH:
            raise ValueError(
                f"Signing secret must be at least {MIN_JWT_SECRET_LENGTH} characters long"
            )
        self._secret = secret
        self.issuer = issuer
        self.audience = audience
        self.lifetime = lifetime
        self.algorithm = algorithm

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenCodec":
        return cls(
            secret=settings.jwt_secret_key,
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
            lifetime=timedelta(seconds=settings.access_token_lifetime_seconds),
            algorithm=settings.jwt_algorithm,
        )

    @property
    def lifetime_seconds(self) -> int:
        return int(self.lifetime.total_seconds())

    def encode(self, subject_id: UUID | str) -> EncodedToken:
        # Second resolution so iat/exp round-trip exactly through the JWT
        issued_at = datetime.now(UTC).replace(microsecond=0)
        expires_at = issued_at + self.lifetime
        jti = secrets.token_hex(16)  # 128 bits
        payload = {
            "sub": str(subject_id),
            "jti": jti,
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
            "iss": self.issuer,
            "aud": self.audience,
        }
        token = jwt.encode(payload, self._secret, algorithm=self.algorithm)
        return EncodedToken(token=str(token), jti=jti, issued_at=issued_at, expires_at=expires_at)

    def decode(self, token: str) -> Result[TokenClaims]:
        if not token:
            return fail(ErrorKind.MISSING_TOKEN, "Token is missing")
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                issuer=self.issuer,
                audience=self.audience,
                options={"require": REQUIRED_CLAIMS},
            )
        except jwt.ExpiredSignatureError as e:
            logger.info(f"Expired access token: {e}")
            return fail(ErrorKind.EXPIRED, "Token has expired", detail=str(e))
        except (jwt.InvalidIssuerError, jwt.InvalidAudienceError) as e:
            logger.warning(f"Invalid token issuer/audience: {e}")
            return fail(ErrorKind.INVALID_ISSUER_OR_AUDIENCE, "Invalid token source", detail=str(e))
        except jwt.InvalidSignatureError as e:
            logger.warning(f"Token signature verification failed: {e}")
            return fail(ErrorKind.BAD_SIGNATURE, "Token verification failed", detail=str(e))
        except jwt.PyJWTError as e:
            logger.warning(f"Token decode error: {e}")
            return fail(ErrorKind.MALFORMED, "Invalid token format", detail=str(e))

        try:
            claims = TokenClaims.from_payload(payload)
        except (KeyError, TypeError, ValueError, OverflowError) as e:
            logger.warning(f"Token claims are malformed: {e}")
            return fail(ErrorKind.MALFORMED, "Invalid token format", detail=str(e))
        return ok(claims)
