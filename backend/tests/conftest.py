"""Shared fixtures for the quota test suite.

Tests run against a throwaway SQLite file by default. Set
TEST_DATABASE_URL to a postgresql+asyncpg URL to run the same suite
against PostgreSQL.
"""

import os
import uuid
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from pydantic import SecretStr
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from nexus_quota.core.config import settings
from nexus_quota.core.database import build_engine
from nexus_quota.models import Base, User

# Test user IDs (consistent across tests for predictable auth)
TEST_USER_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")
TEST_ADMIN_ID = uuid.UUID("00000000-0000-0000-0000-0000000000ad")

# Security: test-only secrets. Production uses real secrets from env.
TEST_AUTH_SECRET = "test-secret-key-that-is-at-least-32-characters-long"  # nosec B105
TEST_BILLING_SECRET = "test-billing-webhook-secret"  # nosec B105


def create_test_jwt(
    user_id: uuid.UUID = TEST_USER_ID,
    *,
    secret: str = TEST_AUTH_SECRET,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a signed JWT for test authentication.

    Args:
        user_id: User UUID to encode in the sub claim.
        secret: Signing secret (must match settings.auth_secret in tests).
        expires_delta: Time until expiration. Defaults to 1 hour.

    Returns:
        Encoded JWT string.
    """
    now = datetime.now(UTC)
    payload = {
        "sub": str(user_id),
        "aud": settings.auth_audience,
        "iss": settings.auth_issuer,
        "exp": now + (expires_delta or timedelta(hours=1)),
        "iat": now,
    }
    return jwt.encode(payload, secret, algorithm="HS256")


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    """Database URL for one test."""
    return os.environ.get(
        "TEST_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'quota.db'}"
    )


@pytest_asyncio.fixture(scope="function")
async def db_engine(database_url: str) -> AsyncGenerator[AsyncEngine, None]:
    """Create the test engine and schema, dropped afterwards."""
    engine = build_engine(database_url)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory for tests that need several independent sessions."""
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


async def make_user(
    db: AsyncSession,
    *,
    tier: str = "free",
    user_id: uuid.UUID | None = None,
    is_admin: bool = False,
) -> User:
    """Insert and commit a user.

    Args:
        db: Database session.
        tier: Subscription tier.
        user_id: Explicit id. Random when omitted.
        is_admin: Admin flag.

    Returns:
        The committed User.
    """
    uid = user_id or uuid.uuid4()
    user = User(
        id=uid,
        email=f"{uid.hex}@example.com",
        subscription_tier=tier,
        is_admin=is_admin,
    )
    db.add(user)
    await db.commit()
    return user


@pytest_asyncio.fixture
async def free_user(db_session: AsyncSession) -> User:
    """A free-tier user."""
    return await make_user(db_session, tier="free")


@pytest_asyncio.fixture
async def pro_user(db_session: AsyncSession) -> User:
    """A pro-tier user with no balance yet."""
    return await make_user(db_session, tier="pro")


# =============================================================================
# API Test Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def test_user(db_session: AsyncSession) -> User:
    """The authenticated API user (pro tier)."""
    return await make_user(db_session, tier="pro", user_id=TEST_USER_ID)


@pytest_asyncio.fixture
async def admin_user(db_session: AsyncSession) -> User:
    """An admin user."""
    return await make_user(db_session, tier="free", user_id=TEST_ADMIN_ID, is_admin=True)


async def _client_for(
    session_factory: async_sessionmaker[AsyncSession],
    cookies: dict[str, str] | None,
) -> AsyncGenerator[AsyncClient, None]:
    from nexus_quota.core.database import get_db
    from nexus_quota.main import app

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db

    original_auth_enabled = settings.auth_enabled
    original_auth_secret = settings.auth_secret
    original_billing_secret = settings.billing_webhook_secret
    settings.auth_enabled = True
    settings.auth_secret = SecretStr(TEST_AUTH_SECRET)
    settings.billing_webhook_secret = SecretStr(TEST_BILLING_SECRET)

    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport, base_url="http://test", cookies=cookies
    ) as ac:
        yield ac

    settings.auth_enabled = original_auth_enabled
    settings.auth_secret = original_auth_secret
    settings.billing_webhook_secret = original_billing_secret
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
    test_user: User,  # noqa: ARG001 - ensures user exists
) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client authenticated as TEST_USER_ID via JWT cookie."""
    async for ac in _client_for(
        session_factory, {settings.auth_cookie_name: create_test_jwt(TEST_USER_ID)}
    ):
        yield ac


@pytest_asyncio.fixture
async def admin_client(
    session_factory: async_sessionmaker[AsyncSession],
    admin_user: User,  # noqa: ARG001 - ensures admin exists
) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client authenticated as TEST_ADMIN_ID."""
    async for ac in _client_for(
        session_factory, {settings.auth_cookie_name: create_test_jwt(TEST_ADMIN_ID)}
    ):
        yield ac


@pytest_asyncio.fixture
async def unauthenticated_client(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client with auth enabled but no cookie."""
    async for ac in _client_for(session_factory, None):
        yield ac
