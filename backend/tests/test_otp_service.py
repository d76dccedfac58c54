"""Tests for OTP issuance and verification."""

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import select

from otpauth.models import OtpCode, RefreshToken, User
from otpauth.models.base import utcnow
from otpauth.services.errors import ErrorKind
from otpauth.services.otp import OtpIssuer, OtpVerifier, codes_match, generate_code
from otpauth.services.rate_limiter import send_key, verify_key

from tests.conftest import TEST_PHONE, RecordingSmsSender


async def _otp_rows(db_session) -> list[OtpCode]:
    db_session.expire_all()
    result = await db_session.execute(
        select(OtpCode).where(OtpCode.phone_number == TEST_PHONE).order_by(OtpCode.created_at)
    )
    return list(result.scalars().all())


class TestCodeHelpers:
    def test_generate_code_is_numeric_and_padded(self):
        for _ in range(200):
            code = generate_code(6)
            assert len(code) == 6
            assert code.isdigit()

    def test_codes_match(self):
        assert codes_match("012345", "012345")
        assert not codes_match("012345", "012346")
        assert not codes_match("012345", "12345")


class TestSendOtp:
    @pytest.mark.asyncio
    async def test_send_creates_code_and_delivers_it(self, otp_issuer, sms_sender, db_session):
        result = await otp_issuer.send_otp("0300-1234567")

        assert result.is_ok
        data = result.unwrap()
        assert data["message"] == "OTP sent successfully"
        assert data["phone_number"] == "+92300123****"
        assert data["expires_in_minutes"] == 5

        rows = await _otp_rows(db_session)
        assert len(rows) == 1
        otp = rows[0]
        assert len(otp.code) == 6 and otp.code.isdigit()
        assert otp.expires_at > otp.created_at
        assert otp.consumed_at is None
        assert sms_sender.sent == [(TEST_PHONE, otp.code)]

    @pytest.mark.asyncio
    async def test_invalid_phone_rejected_before_anything_else(self, otp_issuer, sms_sender):
        result = await otp_issuer.send_otp("12345")

        assert result.failure.kind == ErrorKind.VALIDATION
        assert sms_sender.sent == []

    @pytest.mark.asyncio
    async def test_new_code_consumes_previous_one(self, otp_issuer, db_session):
        await otp_issuer.send_otp(TEST_PHONE)
        await otp_issuer.send_otp(TEST_PHONE)

        rows = await _otp_rows(db_session)
        assert len(rows) == 2
        assert rows[0].consumed_at is not None
        assert rows[1].consumed_at is None

    @pytest.mark.asyncio
    async def test_send_rate_limit(self, otp_issuer, test_settings):
        for _ in range(test_settings.otp_max_send_attempts):
            assert (await otp_issuer.send_otp(TEST_PHONE)).is_ok

        result = await otp_issuer.send_otp(TEST_PHONE)

        assert result.failure.kind == ErrorKind.RATE_LIMITED
        assert result.failure.retry_after == test_settings.otp_send_window_seconds

    @pytest.mark.asyncio
    async def test_send_rate_limit_is_per_phone(self, otp_issuer, test_settings):
        for _ in range(test_settings.otp_max_send_attempts):
            await otp_issuer.send_otp(TEST_PHONE)

        assert (await otp_issuer.send_otp("+923009999999")).is_ok

    @pytest.mark.asyncio
    async def test_delivery_failure_keeps_code(self, db_session, rate_limiter, test_settings):
        failing_sender = RecordingSmsSender(succeed=False)
        issuer = OtpIssuer(db_session, rate_limiter, failing_sender, test_settings)

        result = await issuer.send_otp(TEST_PHONE)

        assert result.failure.kind == ErrorKind.SEND_FAILED
        rows = await _otp_rows(db_session)
        assert len(rows) == 1
        assert rows[0].consumed_at is None

    @pytest.mark.asyncio
    async def test_sender_exception_is_send_failed(self, db_session, rate_limiter, test_settings):
        class ExplodingSender:
            async def send(self, phone_number, code):
                raise RuntimeError("gateway down")

        issuer = OtpIssuer(db_session, rate_limiter, ExplodingSender(), test_settings)

        result = await issuer.send_otp(TEST_PHONE)

        assert result.failure.kind == ErrorKind.SEND_FAILED
        assert result.failure.detail == "gateway down"

    @pytest.mark.asyncio
    async def test_failed_delivery_still_uses_send_slot(
        self, db_session, rate_limiter, test_settings
    ):
        failing_sender = RecordingSmsSender(succeed=False)
        issuer = OtpIssuer(db_session, rate_limiter, failing_sender, test_settings)

        assert (await issuer.send_otp(TEST_PHONE)).failure.kind == ErrorKind.SEND_FAILED

        assert await rate_limiter.current(send_key(TEST_PHONE)) == 1


class TestVerifyOtp:
    @pytest.mark.asyncio
    async def test_verify_creates_user_and_issues_tokens(
        self, otp_issuer, otp_verifier, sms_sender, db_session
    ):
        await otp_issuer.send_otp(TEST_PHONE)

        result = await otp_verifier.verify_otp("03001234567", sms_sender.last_code)

        assert result.is_ok
        data = result.unwrap()
        assert data["message"] == "OTP verified successfully"
        assert data["token_type"] == "Bearer"
        assert data["access_token"]
        assert data["refresh_token"]
        assert data["user"]["phone_number"] == TEST_PHONE
        assert data["user"]["otp_verified"] is True

        users = (await db_session.execute(select(User))).scalars().all()
        assert [u.phone_number for u in users] == [TEST_PHONE]
        tokens = (await db_session.execute(select(RefreshToken))).scalars().all()
        assert len(tokens) == 1
        assert tokens[0].token_digest != data["refresh_token"]

    @pytest.mark.asyncio
    async def test_existing_user_reused(
        self, otp_issuer, otp_verifier, sms_sender, user_factory, db_session
    ):
        user = await user_factory(phone_number=TEST_PHONE, full_name="Ayesha")
        await otp_issuer.send_otp(TEST_PHONE)

        data = (await otp_verifier.verify_otp(TEST_PHONE, sms_sender.last_code)).unwrap()

        assert data["user"]["id"] == str(user.id)
        assert data["user"]["full_name"] == "Ayesha"
        users = (await db_session.execute(select(User))).scalars().all()
        assert len(users) == 1

    @pytest.mark.asyncio
    async def test_inactive_user_rejected_without_burning_code(
        self, otp_issuer, otp_verifier, sms_sender, user_factory, db_session
    ):
        await user_factory(phone_number=TEST_PHONE, is_active=False)
        await otp_issuer.send_otp(TEST_PHONE)

        result = await otp_verifier.verify_otp(TEST_PHONE, sms_sender.last_code)

        assert result.failure.kind == ErrorKind.ACCOUNT_DISABLED
        assert result.failure.message == "User account is deactivated"
        assert (await _otp_rows(db_session))[0].consumed_at is None

    @pytest.mark.asyncio
    async def test_code_cannot_be_used_twice(self, otp_issuer, otp_verifier, sms_sender):
        await otp_issuer.send_otp(TEST_PHONE)
        code = sms_sender.last_code

        assert (await otp_verifier.verify_otp(TEST_PHONE, code)).is_ok
        second = await otp_verifier.verify_otp(TEST_PHONE, code)

        assert second.failure.kind == ErrorKind.ALREADY_CONSUMED

    @pytest.mark.asyncio
    async def test_no_code_sent(self, otp_verifier):
        result = await otp_verifier.verify_otp(TEST_PHONE, "123456")
        assert result.failure.kind == ErrorKind.NOT_FOUND

    @pytest.mark.asyncio
    async def test_expired_code(self, otp_issuer, otp_verifier, sms_sender, db_session):
        await otp_issuer.send_otp(TEST_PHONE)
        otp = (await _otp_rows(db_session))[0]
        otp.expires_at = utcnow() - timedelta(seconds=1)
        await db_session.commit()

        result = await otp_verifier.verify_otp(TEST_PHONE, sms_sender.last_code)

        assert result.failure.kind == ErrorKind.EXPIRED

    @pytest.mark.asyncio
    async def test_superseded_code_is_rejected(self, otp_issuer, otp_verifier, sms_sender):
        await otp_issuer.send_otp(TEST_PHONE)
        first_code = sms_sender.last_code
        await otp_issuer.send_otp(TEST_PHONE)
        second_code = sms_sender.last_code

        if first_code != second_code:
            result = await otp_verifier.verify_otp(TEST_PHONE, first_code)
            assert result.failure.kind == ErrorKind.INVALID_CODE
        assert (await otp_verifier.verify_otp(TEST_PHONE, second_code)).is_ok

    @pytest.mark.asyncio
    @pytest.mark.parametrize("code", ["12345", "1234567", "12a456", "", None])
    async def test_malformed_code(self, otp_verifier, code):
        result = await otp_verifier.verify_otp(TEST_PHONE, code)

        assert result.failure.kind == ErrorKind.VALIDATION
        assert "code" in result.failure.fields

    @pytest.mark.asyncio
    async def test_wrong_code_counts_attempt(
        self, otp_issuer, otp_verifier, sms_sender, rate_limiter
    ):
        await otp_issuer.send_otp(TEST_PHONE)
        wrong = "000000" if sms_sender.last_code != "000000" else "111111"

        result = await otp_verifier.verify_otp(TEST_PHONE, wrong)

        assert result.failure.kind == ErrorKind.INVALID_CODE
        assert await rate_limiter.current(verify_key(TEST_PHONE)) == 1

    @pytest.mark.asyncio
    async def test_attempt_cap_blocks_correct_code(
        self, db_session, rate_limiter, token_issuer, otp_issuer, sms_sender, test_settings
    ):
        strict = test_settings.model_copy(update={"otp_max_verify_attempts": 3})
        verifier = OtpVerifier(db_session, rate_limiter, token_issuer, strict)
        await otp_issuer.send_otp(TEST_PHONE)
        code = sms_sender.last_code
        wrong = "000000" if code != "000000" else "111111"

        for _ in range(3):
            result = await verifier.verify_otp(TEST_PHONE, wrong)
            assert result.failure.kind == ErrorKind.INVALID_CODE

        blocked = await verifier.verify_otp(TEST_PHONE, code)
        assert blocked.failure.kind == ErrorKind.RATE_LIMITED
        assert blocked.failure.retry_after == strict.otp_verify_window_seconds

        # Once the window is gone the same code works
        await rate_limiter.reset(verify_key(TEST_PHONE))
        assert (await verifier.verify_otp(TEST_PHONE, code)).is_ok
        assert (await _otp_rows(db_session))[0].consumed_at is not None

        again = await verifier.verify_otp(TEST_PHONE, code)
        assert again.failure.kind == ErrorKind.ALREADY_CONSUMED

    @pytest.mark.asyncio
    async def test_default_attempt_cap(self, otp_issuer, otp_verifier, sms_sender, test_settings):
        await otp_issuer.send_otp(TEST_PHONE)
        code = sms_sender.last_code
        wrong = "000000" if code != "000000" else "111111"

        for _ in range(test_settings.otp_max_verify_attempts):
            await otp_verifier.verify_otp(TEST_PHONE, wrong)

        result = await otp_verifier.verify_otp(TEST_PHONE, code)
        assert result.failure.kind == ErrorKind.RATE_LIMITED

    @pytest.mark.asyncio
    async def test_success_clears_attempt_counter(
        self, otp_issuer, otp_verifier, sms_sender, rate_limiter
    ):
        await otp_issuer.send_otp(TEST_PHONE)
        code = sms_sender.last_code
        wrong = "000000" if code != "000000" else "111111"
        await otp_verifier.verify_otp(TEST_PHONE, wrong)

        assert (await otp_verifier.verify_otp(TEST_PHONE, code)).is_ok
        assert await rate_limiter.current(verify_key(TEST_PHONE)) == 0

    @pytest.mark.asyncio
    async def test_consume_is_conditional(self, otp_issuer, sms_sender, db_session):
        from otpauth.services.stores import OtpStore

        await otp_issuer.send_otp(TEST_PHONE)
        otp = (await _otp_rows(db_session))[0]
        store = OtpStore(db_session)

        assert await store.consume(otp) is True
        assert otp.consumed_at is not None
        assert await store.consume(otp) is False


class TestConcurrentVerification:
    """Parallel requests, each on its own database session."""

    CODE = "123456"
    WRONG = "654321"

    async def _seed_code(self, session_factory):
        from otpauth.services.stores import OtpStore

        async with session_factory() as session:
            await OtpStore(session).create(
                TEST_PHONE, self.CODE, utcnow() + timedelta(minutes=5)
            )
            await session.commit()

    async def _verify(self, session_factory, rate_limiter, codec, settings, code):
        from otpauth.services.tokens import TokenIssuer

        async with session_factory() as session:
            issuer = TokenIssuer(session, codec, timedelta(days=90))
            verifier = OtpVerifier(session, rate_limiter, issuer, settings)
            return await verifier.verify_otp(TEST_PHONE, code)

    @pytest.mark.asyncio
    async def test_parallel_guesses_cannot_exceed_attempt_cap(
        self, concurrent_session_factory, rate_limiter, codec, test_settings
    ):
        await self._seed_code(concurrent_session_factory)

        results = await asyncio.gather(
            *(
                self._verify(
                    concurrent_session_factory, rate_limiter, codec, test_settings, self.WRONG
                )
                for _ in range(30)
            )
        )

        kinds = [r.failure.kind for r in results]
        assert kinds.count(ErrorKind.INVALID_CODE) == test_settings.otp_max_verify_attempts
        assert kinds.count(ErrorKind.RATE_LIMITED) == 30 - test_settings.otp_max_verify_attempts

    @pytest.mark.asyncio
    async def test_parallel_correct_codes_consume_once(
        self, concurrent_session_factory, rate_limiter, codec, test_settings
    ):
        await self._seed_code(concurrent_session_factory)

        results = await asyncio.gather(
            *(
                self._verify(
                    concurrent_session_factory, rate_limiter, codec, test_settings, self.CODE
                )
                for _ in range(2)
            )
        )

        assert sum(r.is_ok for r in results) == 1
        failed = [r.failure.kind for r in results if not r.is_ok]
        assert failed == [ErrorKind.ALREADY_CONSUMED]
        async with concurrent_session_factory() as session:
            users = (await session.execute(select(User))).scalars().all()
            tokens = (await session.execute(select(RefreshToken))).scalars().all()
        assert len(users) == 1
        assert len(tokens) == 1
