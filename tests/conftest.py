import os
import time
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from dotenv import load_dotenv
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Optional overrides for local runs; the defaults below need no services.
env_test_path = os.path.join(os.path.dirname(__file__), "..", ".env.test")
if os.path.exists(env_test_path):
    load_dotenv(env_test_path, override=True)

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("PAYSTACK_SECRET_KEY", "sk_test_billing")
os.environ.setdefault("MPESA_CALLBACK_TOKEN", "mpesa-callback-token")
os.environ.setdefault("FRONTEND_URL", "http://localhost:3000")

from libs.common.config import get_settings  # noqa: E402

get_settings.cache_clear()
settings = get_settings()

from libs.db.base import Base  # noqa: E402
from services.billing_service import models as _billing_models  # noqa: E402,F401
from services.billing_service.models import (  # noqa: E402
    PaymentProvider as ProviderName,
)
from tests.fakes import FakeMpesa, FakePaystack, RecordingNotifier  # noqa: E402

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture
async def test_engine():
    """
    Fresh in-memory database per test.

    StaticPool keeps the single connection alive so every session in the
    test sees the same tables.
    """
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(test_engine):
    return async_sessionmaker(
        bind=test_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    session = session_factory()
    try:
        yield session
    finally:
        await session.close()


@pytest.fixture
def paystack() -> FakePaystack:
    return FakePaystack()


@pytest.fixture
def mpesa() -> FakeMpesa:
    return FakeMpesa()


@pytest.fixture
def providers(paystack, mpesa):
    """Provider lookup handing out the fakes."""
    registry = {ProviderName.PAYSTACK: paystack, ProviderName.MPESA: mpesa}
    return lambda name: registry[ProviderName(name)]


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest_asyncio.fixture
async def client(
    db_session, providers, notifier
) -> AsyncGenerator[AsyncClient, None]:
    """
    Yield an AsyncClient bound to the billing app with DB, provider and
    notifier dependencies overridden.
    """
    from libs.db.session import get_async_db
    from services.billing_service.app.main import app
    from services.billing_service.providers import get_provider_lookup
    from services.billing_service.services.notifier import get_notifier

    app.dependency_overrides[get_async_db] = lambda: db_session
    app.dependency_overrides[get_provider_lookup] = lambda: providers
    app.dependency_overrides[get_notifier] = lambda: notifier

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


def make_token(
    user_id: str = "acct-parent-1",
    email: str = "parent@example.com",
    role: str = "authenticated",
    **claims,
) -> str:
    """Mint a Supabase-style HS256 access token."""
    payload = {
        "sub": user_id,
        "email": email,
        "role": role,
        "exp": int(time.time()) + 3600,
        **claims,
    }
    return jwt.encode(payload, settings.SUPABASE_JWT_SECRET, algorithm="HS256")


@pytest.fixture
def auth_headers():
    """
    Return a factory building Authorization headers for a given account.
    """

    def _headers(**kwargs) -> dict:
        return {"Authorization": f"Bearer {make_token(**kwargs)}"}

    return _headers
