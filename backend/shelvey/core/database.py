"""
ShelVey Orchestrator - Database Connection
===========================================

One async engine per process. Every workflow transition runs in a single
session and commits once; the request dependency and the scheduler share
the same session scope.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any, Optional

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from shelvey.core.config import Settings, settings


class Base(DeclarativeBase):
    """Declarative base for the workflow tables."""


def _enable_sqlite_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
    # Phases, teams and deliverables rely on ON DELETE CASCADE
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(config: Optional[Settings] = None) -> AsyncEngine:
    """
    Engine for the configured DATABASE_URL.

    SQLite gets a shared-thread connection with foreign keys enforced;
    PostgreSQL gets a pre-pinged pool sized from settings.
    """
    config = config or settings
    options: dict[str, Any] = {"echo": config.DATABASE_ECHO}

    if config.is_sqlite:
        options["connect_args"] = {"check_same_thread": False}
    else:
        options.update(
            pool_size=config.DATABASE_POOL_SIZE,
            max_overflow=config.DATABASE_MAX_OVERFLOW,
            pool_pre_ping=True,
        )

    async_engine = create_async_engine(config.DATABASE_URL, **options)
    if config.is_sqlite:
        event.listen(async_engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
    return async_engine


engine = build_engine()

# Loaded attributes survive commit: the services return ORM rows after
# committing and AsyncSession cannot lazy-load expired state.
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


@asynccontextmanager
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Session scope outside a request (scheduler, outbox drain)."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding the request's session."""
    async with get_db_session() as session:
        yield session


async def init_db() -> None:
    """Create missing tables. Migrations under alembic/ own the schema in production."""
    from shelvey.core import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    await engine.dispose()
