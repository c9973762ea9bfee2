"""
Pytest configuration and fixtures for testing
"""
import asyncio
import os

# Settings are read at import time; pin them before any app module loads
os.environ["ENV"] = "test"
os.environ["JWT_SECRET_KEY"] = "test-jwt-secret-key"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["REDIS_URL"] = ""
os.environ["RESEND_API_KEY"] = ""
os.environ["RAZORPAY_KEY_ID"] = "rzp_test_key"
os.environ["RAZORPAY_KEY_SECRET"] = "test_razorpay_secret"
os.environ["RAZORPAY_WEBHOOK_SECRET"] = "test_webhook_secret"
os.environ["GOOGLE_CLIENT_ID"] = "test-client.apps.googleusercontent.com"

from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from auth_utils import hash_password, issue_token
from config.plans import token_lifetime
from crud.user import UserRepository
from database import Base, get_db
from utils.token_revoker import InMemoryTokenRevoker, get_token_revoker

TEST_PASSWORD = "TestPass123"


@pytest.fixture
def test_engine(tmp_path):
    """A throwaway SQLite file per test; NullPool keeps connections off shared event loops."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        echo=False,
        poolclass=NullPool,
    )
    yield engine
    asyncio.run(engine.dispose())


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


async def _create_tables(engine):
    # Import models to ensure they're registered with Base
    import database_models  # noqa: F401
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@pytest.fixture
async def test_db(test_engine, session_factory):
    """
    Fixture that provides an isolated SQLite database session for each test.

    Tables are created before the test runs; the file is discarded afterwards.
    """
    await _create_tables(test_engine)
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


@pytest.fixture
def revoker():
    return InMemoryTokenRevoker()


@pytest.fixture
def run_db(test_engine, session_factory):
    """
    Run ``fn(session)`` against the test database from a synchronous test and
    commit. Returned rows stay readable (expire_on_commit is off).
    """
    asyncio.run(_create_tables(test_engine))

    def _run(fn):
        async def _inner():
            async with session_factory() as session:
                result = await fn(session)
                await session.commit()
                return result
        return asyncio.run(_inner())
    return _run


@pytest.fixture
def client(run_db, session_factory, revoker):
    """FastAPI TestClient fixture with test database and revocation store overrides"""
    from main import app

    # Override get_db dependency to use test database
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_token_revoker] = lambda: revoker

    test_client = TestClient(app)
    yield test_client

    # Cleanup: remove dependency override
    app.dependency_overrides.clear()


@pytest.fixture
def create_user(run_db):
    """
    Insert a password user directly, optionally with a plan last changed
    ``days_ago`` days back.
    """
    def _create(email="user@example.com", plan="free", verified=None, days_ago=0,
                password=TEST_PASSWORD, name="Test User", has_used_trial=False):
        async def _insert(session):
            repo = UserRepository(session)
            user = await repo.create_user({
                "email": email,
                "name": name,
                "hashed_password": hash_password(password),
                "plan": plan,
                "verified": plan != "free" if verified is None else verified,
            })
            changed_at = datetime.utcnow() - timedelta(days=days_ago)
            return await repo.update_user(user, {
                "updated_at": changed_at,
                "has_used_trial": has_used_trial,
            })
        return run_db(_insert)
    return _create


def token_for(user, plan=None):
    plan = plan or user.plan
    return issue_token(user, plan=plan, expires_in=token_lifetime(plan))


def bearer(token):
    return {"Authorization": f"Bearer {token}"}
