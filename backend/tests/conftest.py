"""Pytest configuration and fixtures for otpauth tests.

Database handling:
- TEST_DATABASE_URL selects a real database (e.g. postgresql+asyncpg://...)
- Otherwise an in-memory SQLite database (aiosqlite) is created per test
"""

import os
from collections.abc import AsyncGenerator
from datetime import timedelta

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool, StaticPool

# Set test environment variables before importing otpauth modules
TEST_JWT_SECRET = "test-jwt-secret-" + "0" * 48
os.environ["JWT_SECRET_KEY"] = TEST_JWT_SECRET
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ.pop("REDIS_URL", None)
os.environ.pop("SMS_GATEWAY_URL", None)

TEST_DATABASE_URL = os.environ.get("TEST_DATABASE_URL", "sqlite+aiosqlite://")
TEST_PHONE = "+923001234567"


class RecordingSmsSender:
    """SMS sender that remembers what it was asked to send."""

    def __init__(self, succeed: bool = True):
        self.succeed = succeed
        self.sent: list[tuple[str, str]] = []

    async def send(self, phone_number: str, code: str) -> bool:
        self.sent.append((phone_number, code))
        return self.succeed

    @property
    def last_code(self) -> str:
        return self.sent[-1][1]


# --- Database Fixtures ---


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Create a database engine with all tables for one test."""
    from otpauth.models import BaseModel

    if TEST_DATABASE_URL.startswith("sqlite"):
        engine = create_async_engine(TEST_DATABASE_URL, poolclass=StaticPool)
    else:
        engine = create_async_engine(TEST_DATABASE_URL, poolclass=NullPool)

    async with engine.begin() as conn:
        await conn.run_sync(BaseModel.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(BaseModel.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def concurrent_session_factory(tmp_path):
    """Session factory whose sessions each hold their own connection.

    The default in-memory engine shares one connection, so it cannot run
    transactions side by side. SQLite uses a file here instead.
    """
    from otpauth.models import BaseModel

    if TEST_DATABASE_URL.startswith("sqlite"):
        engine = create_async_engine(
            f"sqlite+aiosqlite:///{tmp_path / 'concurrency.db'}",
            poolclass=NullPool,
            connect_args={"timeout": 30},
        )
    else:
        engine = create_async_engine(TEST_DATABASE_URL, poolclass=NullPool)

    async with engine.begin() as conn:
        await conn.run_sync(BaseModel.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(BaseModel.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for testing."""
    async with session_factory() as session:
        yield session
        await session.rollback()


# --- Service Fixtures ---


@pytest.fixture
def test_settings():
    from otpauth.core.config import Settings

    return Settings(jwt_secret_key=TEST_JWT_SECRET, environment="test", _env_file=None)


@pytest.fixture
def cache_store():
    from otpauth.core.cache import MemoryCacheStore

    return MemoryCacheStore()


@pytest.fixture
def rate_limiter(cache_store):
    from otpauth.services.rate_limiter import RateLimiter

    return RateLimiter(cache_store)


@pytest.fixture
def sms_sender():
    return RecordingSmsSender()


@pytest.fixture
def codec(test_settings):
    from otpauth.services.token_codec import TokenCodec

    return TokenCodec.from_settings(test_settings)


@pytest.fixture
def token_issuer(db_session, codec, test_settings):
    from otpauth.services.tokens import TokenIssuer

    return TokenIssuer(
        session=db_session,
        codec=codec,
        refresh_lifetime=timedelta(days=test_settings.refresh_token_lifetime_days),
        token_type=test_settings.token_type,
    )


@pytest.fixture
def refresh_coordinator(db_session, token_issuer):
    from otpauth.services.tokens import RefreshCoordinator

    return RefreshCoordinator(db_session, token_issuer)


@pytest.fixture
def otp_issuer(db_session, rate_limiter, sms_sender, test_settings):
    from otpauth.services.otp import OtpIssuer

    return OtpIssuer(db_session, rate_limiter, sms_sender, test_settings)


@pytest.fixture
def otp_verifier(db_session, rate_limiter, token_issuer, test_settings):
    from otpauth.services.otp import OtpVerifier

    return OtpVerifier(db_session, rate_limiter, token_issuer, test_settings)


# --- Test Factories ---


@pytest.fixture
def user_factory(db_session):
    """Factory for creating test User objects."""
    from otpauth.models import User

    counter = {"n": 0}

    async def _create_user(phone_number: str | None = None, **kwargs) -> User:
        if phone_number is None:
            counter["n"] += 1
            phone_number = f"+92300{counter['n']:07d}"
        user = User(phone_number=phone_number, otp_verified=True, **kwargs)
        db_session.add(user)
        await db_session.commit()
        await db_session.refresh(user)
        return user

    return _create_user


# --- HTTP Client ---


@pytest_asyncio.fixture(scope="function")
async def async_client(
    db_session: AsyncSession, rate_limiter, sms_sender
) -> AsyncGenerator[AsyncClient, None]:
    """Async test client with database, cache and SMS overrides."""
    from otpauth.api.deps import get_rate_limiter, get_sender
    from otpauth.core.database import get_db
    from otpauth.main import app

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_rate_limiter] = lambda: rate_limiter
    app.dependency_overrides[get_sender] = lambda: sms_sender

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
