"""
Shared pytest configuration for backend tests.

Each test gets a fresh SQLite database file (aiosqlite) unless
TEST_DATABASE_URL points at a Postgres test database.

SAFETY: a TEST_DATABASE_URL whose database name does not contain "test" is
refused, so a misconfigured environment can never drop real tables.
"""

import os
import tempfile

# Settings are read at import time; configure them before importing cancha.
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("JWT_SECRET", "test-secret-for-cancha-leconte-sessions-0123456789")
os.environ.setdefault("PASSWORD_SALT_ROUNDS", "4")
os.environ.setdefault("WHATSAPP_WEBHOOK_VERIFY_TOKEN", "test-verify-token")
os.environ.setdefault("APP_URL", "http://testserver")
os.environ.setdefault(
    "DATABASE_URL",
    f"sqlite+aiosqlite:///{os.path.join(tempfile.gettempdir(), 'cancha_app_test.db')}",
)

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

from cancha.database.db import Base, get_db_session


def _resolve_test_database_url(tmp_path) -> str:
    url = os.getenv("TEST_DATABASE_URL", "")
    if not url:
        return f"sqlite+aiosqlite:///{tmp_path / 'cancha_test.db'}"

    db_name = url.rsplit("/", 1)[-1].split("?")[0]
    if "test" not in db_name.lower():
        raise RuntimeError(
            f"SAFETY: Refusing to run tests against database '{db_name}'. "
            f"Set TEST_DATABASE_URL to a database whose name contains 'test'."
        )
    return url


@pytest.fixture(autouse=True)
def reset_endpoint_limits():
    """Clear the in-memory slowapi counters between tests."""
    from cancha.api.routes import limiter

    limiter.reset()
    yield
    limiter.reset()


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """Create a test database engine with all tables."""
    # NullPool avoids reusing connections across event loops
    engine = create_async_engine(
        _resolve_test_database_url(tmp_path),
        echo=False,
        poolclass=NullPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    # Code that opens its own sessions (attempt log, audit log, cleanup)
    # must hit the same database as the fixtures
    from cancha.database import db

    test_session_maker = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )
    original_async_session_local = db.AsyncSessionLocal
    db.AsyncSessionLocal = test_session_maker

    yield engine

    db.AsyncSessionLocal = original_async_session_local
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine):
    """Database session bound to the test engine."""
    async_session_maker = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.rollback()
            await session.close()


@pytest_asyncio.fixture
async def client(db_session):
    """HTTP client for the app with get_db_session bound to the test database."""
    from cancha.api.main import app

    async def override_get_db_session():
        yield db_session

    app.dependency_overrides[get_db_session] = override_get_db_session
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as http_client:
        yield http_client
    app.dependency_overrides.pop(get_db_session, None)

