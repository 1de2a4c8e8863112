"""Async database engine and session management.

Configures the SQLAlchemy async engine and provides dependency injection
for database sessions. PostgreSQL (asyncpg) is the production backend;
SQLite (aiosqlite) is supported for local runs and tests.
"""

from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from nexus_quota.core.config import settings


def configure_sqlite_locking(engine: AsyncEngine) -> None:
    """Make every SQLite transaction take the write lock up front.

    pysqlite defers BEGIN until the first DML statement, so a transaction
    that reads before it writes can hit SQLITE_BUSY on lock upgrade instead
    of waiting. BEGIN IMMEDIATE serializes writers through the busy
    timeout, which is the SQLite counterpart of the per-row locks the
    ledger takes on PostgreSQL.

    Args:
        engine: Async engine bound to a sqlite+aiosqlite URL.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(
        dbapi_connection: Any, _connection_record: Any
    ) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(url: str, *, echo: bool = False) -> AsyncEngine:
    """Create an async engine with backend-specific locking configured.

    Args:
        url: SQLAlchemy async database URL.
        echo: Whether to log emitted SQL.

    Returns:
        Configured AsyncEngine.
    """
    if url.startswith("sqlite"):
        engine = create_async_engine(url, echo=echo)
        configure_sqlite_locking(engine)
        return engine
    return create_async_engine(url, echo=echo, pool_pre_ping=True)


engine = build_engine(
    settings.database_url,
    echo=settings.environment == "development",
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency that provides a database session."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
