"""Root conftest for engine, API and repository tests.

Provides:
- In-memory SQLite database (replaces production engine)
- FakeInvoker standing in for the external agent service
- Async HTTP client over the FastAPI app
"""

from __future__ import annotations

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

import app.database as db_module
from app.database import Base

# Import all ORM models so they register with Base.metadata
import app.models.db  # noqa: F401

# Register node kinds
import agentflow.nodes  # noqa: F401

from agentflow.store import InMemoryDefinitionStore
from agentflow.engine.records import ExecutionRecordManager

from tests.fakes import FakeInvoker


@pytest.fixture
def fake_invoker() -> FakeInvoker:
    return FakeInvoker()


@pytest.fixture
def memory_store() -> InMemoryDefinitionStore:
    return InMemoryDefinitionStore()


@pytest.fixture
def records(memory_store: InMemoryDefinitionStore) -> ExecutionRecordManager:
    return ExecutionRecordManager(memory_store)


# ---------------------------------------------------------------------------
# In-memory async SQLite engine (StaticPool shares one connection)
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def test_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Fresh in-memory SQLite engine per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def test_session(test_engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """Per-test database session."""
    factory = async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False,
    )
    async with factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def sql_database(test_engine: AsyncEngine) -> AsyncGenerator[AsyncEngine, None]:
    """Point app.database (and everything using get_session_ctx) at the test engine."""
    original_engine = db_module.engine
    original_factory = db_module.async_session_factory
    db_module.use_engine(test_engine)
    try:
        yield test_engine
    finally:
        db_module.engine = original_engine
        db_module.async_session_factory = original_factory


# ---------------------------------------------------------------------------
# FastAPI test client: test DB engine + fake agent invoker
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def client(
    sql_database: AsyncEngine,
    fake_invoker: FakeInvoker,
) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client for testing FastAPI routes.

    Background chain runs started by a test are awaited (or cancelled)
    before the engine is torn down.
    """
    from app import runs
    from app.main import app

    runs.set_invoker(fake_invoker)
    try:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac
    finally:
        await runs.close_runs()
