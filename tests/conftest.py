"""
Test configuration and fixtures.

Provides:
- A fresh SQLite database per test (file under tmp_path)
- In-memory object storage, a fake AI provider and inline AI execution
- A tenant (org, conference, track) and the root super admin
- HTTPX AsyncClient bound to the app with the test database
"""
import os

os.environ["TESTING"] = "1"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SUPER_ADMIN_EMAILS"] = "root@example.com"
os.environ["PAYMENT_WEBHOOK_SECRET"] = "test-webhook-secret"
os.environ["AI_EXECUTION_MODE"] = "inline"
os.environ["AI_DEFAULT_PROVIDER"] = "gemini"
os.environ["JWT_SECRET"] = "test-jwt-secret"

from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from confapp.core.database.base import Base
from confapp.core.database.engine import get_db, import_models
from confapp.features.ai.executors import InlineExecutor, set_analysis_executor
from confapp.features.ai.providers import ProviderRegistry, set_provider_registry
from confapp.features.submissions.storage import InMemoryStorageProvider, set_storage
from confapp.features.users.models import User
from confapp.main import app

from tests.helpers import ROOT_EMAIL, FakeProvider, Tenant, make_tenant, make_user


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture
async def engine(tmp_path):
    import_models()
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# =============================================================================
# Collaborators
# =============================================================================

@pytest.fixture(autouse=True)
def storage():
    provider = InMemoryStorageProvider()
    set_storage(provider)
    yield provider
    set_storage(None)


@pytest.fixture(autouse=True)
def provider():
    fake = FakeProvider()
    set_provider_registry(ProviderRegistry([fake]))
    yield fake
    set_provider_registry(None)


@pytest.fixture(autouse=True)
def executor():
    inline = InlineExecutor()
    set_analysis_executor(inline)
    yield inline
    set_analysis_executor(None)


# =============================================================================
# Data Fixtures
# =============================================================================

@pytest.fixture
async def root(db) -> User:
    user = await make_user(db, ROOT_EMAIL, "Root")
    await db.commit()
    return user


@pytest.fixture
async def tenant(db) -> Tenant:
    return await make_tenant(db)


# =============================================================================
# Client Fixtures
# =============================================================================

@pytest.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """AsyncClient whose requests use the per-test database."""
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()
