"""One-time code issuance and verification."""

import hmac
import secrets
from datetime import timedelta
from typing import Any

from redis.exceptions import RedisError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from otpauth.core.config import Settings
from otpauth.core.logging import get_logger
from otpauth.models import OtpCode, User
from otpauth.models.base import utcnow
from otpauth.services.errors import ErrorKind, Result, fail, ok
from otpauth.services.phone import mask_phone, normalize_phone
from otpauth.services.rate_limiter import RateLimiter, send_key, verify_key
from otpauth.services.sms import SmsSender
from otpauth.services.stores import OtpStore
from otpauth.services.tokens import TokenIssuer

logger = get_logger("otp")

# Cache backends may raise these on timeouts or connection loss
CACHE_ERRORS = (RedisError, OSError)

ACCOUNT_DISABLED_MESSAGE = "User account is deactivated"


def generate_code(length: int = 6) -> str:
    """Cryptographically random numeric code, zero-padded to length."""
    return f"{secrets.randbelow(10**length):0{length}d}"


def codes_match(expected: str, provided: str) -> bool:
    """Constant-time comparison of two codes."""
    return hmac.compare_digest(expected.encode("utf-8"), provided.encode("utf-8"))


class OtpIssuer:
    """Generates, stores and sends a fresh code for a phone number."""

    def __init__(
        self,
        session: AsyncSession,
        rate_limiter: RateLimiter,
        sms_sender: SmsSender,
        settings: Settings,
    ):
        self.session = session
        self.rate_limiter = rate_limiter
        self.sms_sender = sms_sender
        self.settings = settings
        self.store = OtpStore(session)

    async def send_otp(self, raw_phone: str | None) -> Result[dict[str, Any]]:
        """Issue and deliver a new code.

        The send counter is incremented atomically before anything is
        written, so every request that passes validation uses a slot in the
        window, including ones that later fail with a system or delivery
        error.
        """
        normalized = normalize_phone(raw_phone)
        if not normalized.is_ok:
            return normalized
        phone = normalized.unwrap()
        masked = mask_phone(phone)

        try:
            status = await self.rate_limiter.increment_and_check(
                send_key(phone),
                self.settings.otp_max_send_attempts,
                self.settings.otp_send_window_seconds,
            )
        except CACHE_ERRORS as e:
            logger.exception(f"Rate limit check failed for {masked}")
            return fail(ErrorKind.SYSTEM, "System error. Please try again later.", detail=str(e))
        if status.exceeded:
            return fail(
                ErrorKind.RATE_LIMITED,
                "Too many OTP requests. Please try again later.",
                retry_after=self.settings.otp_send_window_seconds,
            )

        try:
            replaced = await self.store.consume_active_for_phone(phone)
            await self.session.commit()
            if replaced:
                logger.debug(f"Invalidated {replaced} active OTP(s) for {masked}")
        except SQLAlchemyError as e:
            # A stale code left active is still superseded by the newer one
            await self.session.rollback()
            logger.error(f"Failed to invalidate existing OTP for {masked}: {e}")

        code = generate_code(self.settings.otp_length)
        expires_at = utcnow() + timedelta(minutes=self.settings.otp_expiry_minutes)
        try:
            otp = await self.store.create(phone, code, expires_at)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.exception(f"Failed to create OTP record for {masked}")
            return fail(
                ErrorKind.SYSTEM, "Failed to generate OTP. Please try again.", detail=str(e)
            )

        try:
            sent = await self.sms_sender.send(phone, code)
        except Exception as e:
            logger.exception(f"SMS sender raised for {masked}")
            sent = False
            detail = str(e)
        else:
            detail = None
        if not sent:
            # The stored code stays valid; the caller may retry delivery
            return fail(
                ErrorKind.SEND_FAILED, "Failed to send OTP. Please try again.", detail=detail
            )

        logger.info(f"OTP sent to {masked}")
        return ok(
            {
                "message": "OTP sent successfully",
                "phone_number": masked,
                "expires_in_minutes": otp.minutes_until_expiry(),
                "sent_at": otp.created_at,
            }
        )


class OtpVerifier:
    """Checks a submitted code and signs the phone's owner in."""

    def __init__(
        self,
        session: AsyncSession,
        rate_limiter: RateLimiter,
        token_issuer: TokenIssuer,
        settings: Settings,
    ):
        self.session = session
        self.rate_limiter = rate_limiter
        self.token_issuer = token_issuer
        self.settings = settings
        self.store = OtpStore(session)

    def _validate_code(self, code: str | None) -> Result[str]:
        length = self.settings.otp_length
        code = (code or "").strip()
        if len(code) != length or not code.isdigit():
            return fail(
                ErrorKind.VALIDATION,
                "Invalid OTP code format",
                fields={"code": f"must be exactly {length} digits"},
            )
        return ok(code)

    async def verify_otp(self, raw_phone: str | None, code: str | None) -> Result[dict[str, Any]]:
        normalized = normalize_phone(raw_phone)
        if not normalized.is_ok:
            return normalized
        checked = self._validate_code(code)
        if not checked.is_ok:
            return checked
        phone = normalized.unwrap()
        submitted = checked.unwrap()
        masked = mask_phone(phone)
        attempts_key = verify_key(phone)

        # Every attempt is counted at the gate, so parallel guesses cannot
        # slip past the cap before their mismatches are recorded
        try:
            attempts = await self.rate_limiter.increment_and_check(
                attempts_key,
                self.settings.otp_max_verify_attempts,
                self.settings.otp_verify_window_seconds,
            )
        except CACHE_ERRORS as e:
            logger.exception(f"Rate limit check failed for {masked}")
            return fail(ErrorKind.SYSTEM, "Verification failed. Please try again.", detail=str(e))
        if attempts.exceeded:
            logger.warning(f"Verification attempts exhausted for {masked}")
            return fail(
                ErrorKind.RATE_LIMITED,
                "Too many verification attempts. Please request a new OTP.",
                retry_after=self.settings.otp_verify_window_seconds,
            )

        try:
            otp = await self.store.latest_for_phone(phone)
        except SQLAlchemyError as e:
            logger.exception(f"OTP lookup failed for {masked}")
            return fail(ErrorKind.SYSTEM, "Verification failed. Please try again.", detail=str(e))

        failure = self._check_usable(otp)
        if failure is not None:
            return failure

        if not codes_match(otp.code, submitted):
            logger.info(f"Invalid OTP submitted for {masked}")
            return fail(ErrorKind.INVALID_CODE, "Invalid OTP code. Please check and try again.")

        # A deactivated account must not burn the code
        try:
            existing = await self._get_user(phone)
        except SQLAlchemyError as e:
            logger.exception(f"User lookup failed for {masked}")
            return fail(ErrorKind.SYSTEM, "Verification failed. Please try again.", detail=str(e))
        if existing is not None and not existing.is_active:
            logger.warning(f"OTP verified for deactivated account {masked}")
            return fail(ErrorKind.ACCOUNT_DISABLED, ACCOUNT_DISABLED_MESSAGE)

        try:
            consumed = await self.store.consume(otp)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.exception(f"Failed to consume OTP for {masked}")
            return fail(ErrorKind.SYSTEM, "Verification failed. Please try again.", detail=str(e))
        if not consumed:
            return fail(
                ErrorKind.ALREADY_CONSUMED, "OTP has already been used. Please request a new OTP."
            )

        try:
            await self.rate_limiter.reset(attempts_key)
        except CACHE_ERRORS:
            logger.exception(f"Failed to clear verification attempts for {masked}")

        user_result = await self.find_or_create_user(phone)
        if not user_result.is_ok:
            return user_result
        user = user_result.unwrap()

        tokens = await self.token_issuer.issue(user)
        if not tokens.is_ok:
            logger.error(f"Token generation failed for user {user.id}")
            return tokens
        pair = tokens.unwrap()

        logger.info(f"OTP verified for {masked}")
        return ok(
            {
                "message": "OTP verified successfully",
                "phone_number": masked,
                "verified_at": utcnow(),
                **pair.as_response(),
                "user": {
                    "id": str(user.id),
                    "phone_number": user.phone_number,
                    "full_name": user.full_name,
                    "otp_verified": user.otp_verified,
                },
            }
        )

    def _check_usable(self, otp: OtpCode | None) -> Result[Any] | None:
        if otp is None:
            return fail(
                ErrorKind.NOT_FOUND,
                "No active OTP found for this phone number. Please request a new OTP.",
            )
        if otp.is_expired():
            return fail(ErrorKind.EXPIRED, "OTP has expired. Please request a new OTP.")
        if otp.is_consumed:
            return fail(
                ErrorKind.ALREADY_CONSUMED, "OTP has already been used. Please request a new OTP."
            )
        return None

    async def find_or_create_user(self, phone: str) -> Result[User]:
        masked = mask_phone(phone)
        try:
            user = await self._get_user(phone)
            if user is None:
                user = User(phone_number=phone, otp_verified=True)
                self.session.add(user)
                try:
                    await self.session.commit()
                    logger.info(f"Created new user for phone: {masked}")
                except IntegrityError:
                    # Another request created the same phone's user first
                    await self.session.rollback()
                    user = await self._get_user(phone)
                    if user is None:
                        return fail(ErrorKind.SYSTEM, "Account setup failed")
            elif not user.otp_verified:
                user.otp_verified = True
                await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.exception(f"User lookup/creation failed for {masked}")
            return fail(ErrorKind.SYSTEM, "Account setup failed", detail=str(e))

        if not user.is_active:
            return fail(ErrorKind.ACCOUNT_DISABLED, ACCOUNT_DISABLED_MESSAGE)
        return ok(user)

    async def _get_user(self, phone: str) -> User | None:
        result = await self.session.execute(select(User).where(User.phone_number == phone))
        return result.scalar_one_or_none()
