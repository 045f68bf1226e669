"""Persistence: async engine, session factory, and Base for SQLAlchemy ORM.

Engine and session factory are created lazily on first use so import does
not trigger Settings validation. Schema migration tooling is out of scope;
init_models() creates tables for development and tests.
"""

import logging
from typing import Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from mailsync.core.config import Settings, get_settings

logger = logging.getLogger(__name__)

# Set by init_engine() on first use; avoids get_settings() at import time.
engine: AsyncEngine | None = None
AsyncSessionLocal: async_sessionmaker[AsyncSession] | None = None


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy declarative models."""


def build_engine(database_url: str, *, echo: bool = False, **overrides: Any) -> AsyncEngine:
    """Create an async engine with pool settings suited to the backend.

    SQLite (aiosqlite) does not accept pool sizing arguments.
    """
    kwargs: dict[str, Any] = {"echo": echo}
    if not database_url.startswith("sqlite"):
        settings = get_settings()
        kwargs.update(
            pool_pre_ping=True,
            pool_size=settings.db_pool_size if settings.db_pool_size is not None else 20,
            max_overflow=(
                settings.db_max_overflow if settings.db_max_overflow is not None else 30
            ),
            pool_recycle=3600,
        )
    kwargs.update(overrides)
    new_engine = create_async_engine(database_url, **kwargs)
    if database_url.startswith("sqlite"):
        _enable_sqlite_savepoints(new_engine)
    return new_engine


def _enable_sqlite_savepoints(target: AsyncEngine) -> None:
    """Let SQLAlchemy emit BEGIN itself so SAVEPOINT works on SQLite."""

    @event.listens_for(target.sync_engine, "connect")
    def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(target.sync_engine, "begin")
    def _on_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN")


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
        autocommit=False,
    )


def init_engine(settings: Settings | None = None) -> None:
    """Create engine and AsyncSessionLocal once, from settings or the cached Settings."""
    global engine, AsyncSessionLocal
    if AsyncSessionLocal is not None:
        return
    settings = settings or get_settings()
    engine = build_engine(settings.database_url, echo=settings.database_echo)
    AsyncSessionLocal = build_session_factory(engine)


def get_engine() -> AsyncEngine:
    """Return the process-wide engine, creating it on first use."""
    init_engine()
    assert engine is not None
    return engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the process-wide session factory."""
    init_engine()
    assert AsyncSessionLocal is not None
    return AsyncSessionLocal


async def init_models(bind: AsyncEngine | None = None) -> None:
    """Create all tables (development and tests only)."""
    # Register models on Base.metadata.
    from mailsync.infrastructure.persistence import models  # noqa: F401

    if bind is None:
        init_engine()
        bind = engine
    assert bind is not None
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables ensured")


async def dispose_engine() -> None:
    """Close pooled connections (shutdown)."""
    global engine, AsyncSessionLocal
    if engine is not None:
        await engine.dispose()
    engine = None
    AsyncSessionLocal = None
