"""
ShelVey Orchestrator - Test Fixtures
====================================

Shared pytest fixtures for all tests.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from shelvey.api.deps import get_clock, get_effect_drain
from shelvey.api.main import app
from shelvey.core.database import Base, get_db
from shelvey.core.workflow import EscalationEngine, PhaseOrchestrator


# ==========================================================================
# Test Database Setup
# ==========================================================================

# Use in-memory SQLite for tests (fast)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

test_engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    bind=test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


# ==========================================================================
# Clock
# ==========================================================================

class FakeClock:
    """Mutable clock. Call to read, advance() to move time forward."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc))


# ==========================================================================
# Database Fixtures
# ==========================================================================

@pytest_asyncio.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Provide a clean database session for each test.

    Creates all tables before test, drops after.
    """
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with TestingSessionLocal() as session:
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def session_factory(db_session: AsyncSession):
    """Session factory for components that open their own session."""

    @asynccontextmanager
    async def factory() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    return factory


@pytest_asyncio.fixture
async def session_pair(tmp_path) -> AsyncGenerator[tuple[AsyncSession, AsyncSession], None]:
    """
    Two sessions on one file database for interleaving writers.

    The in-memory engine shares a single connection, so it cannot hold two
    transactions at once.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'race.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
    async with factory() as first, factory() as second:
        yield first, second

    await engine.dispose()


# ==========================================================================
# Service Fixtures
# ==========================================================================

@pytest.fixture
def orchestrator(db_session: AsyncSession, clock: FakeClock) -> PhaseOrchestrator:
    return PhaseOrchestrator(db_session, clock=clock)


@pytest.fixture
def escalations(db_session: AsyncSession, clock: FakeClock) -> EscalationEngine:
    return EscalationEngine(db_session, clock=clock)


@pytest.fixture
def project_id() -> UUID:
    return uuid4()


@pytest_asyncio.fixture
async def initialized_project(orchestrator: PhaseOrchestrator, project_id: UUID) -> UUID:
    """Project with all six phases created; phase 1 active."""
    await orchestrator.initialize_project(project_id, user_id="user-1", name="Test Shop")
    return project_id


# ==========================================================================
# HTTP Client
# ==========================================================================

@pytest.fixture
def drain_calls() -> list[str]:
    """Records outbox drains scheduled by the API."""
    return []


@pytest_asyncio.fixture(scope="function")
async def client(
    db_session: AsyncSession,
    clock: FakeClock,
    drain_calls: list[str],
) -> AsyncGenerator[AsyncClient, None]:
    """
    Provide test HTTP client with database, clock and outbox overrides.
    """
    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    async def record_drain() -> None:
        drain_calls.append("drain")

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_effect_drain] = lambda: record_drain

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
