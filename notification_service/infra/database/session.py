"""Database session management.

PostgreSQL through psycopg3 in production, aiosqlite when no database is
configured (local development).
"""

from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import TYPE_CHECKING

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from notification_service.core.settings import get_app_settings, get_db_settings

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)



def use_immediate_transactions(async_engine: AsyncEngine) -> AsyncEngine:
    """Make every SQLite transaction start with ``BEGIN IMMEDIATE``.

    The driver's own transaction handling defers BEGIN until the first write
    and breaks SAVEPOINT. With this hook a transaction takes the write lock
    on its first statement, so concurrent writers queue up instead of
    reading stale counts, and ``session.begin_nested()`` works.
    """

    @event.listens_for(async_engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):  # noqa: ARG001
        dbapi_connection.isolation_level = None

    @event.listens_for(async_engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return async_engine


db_settings = get_db_settings()
app_settings = get_app_settings()

engine_kwargs = db_settings.sqlalchemy_engine_kwargs()
engine_kwargs["echo"] = engine_kwargs["echo"] or app_settings.debug
engine = create_async_engine(db_settings.get_sqlalchemy_url(), **engine_kwargs)
if engine.dialect.name == "sqlite":
    use_immediate_transactions(engine)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


@asynccontextmanager
async def get_async_session() -> AsyncGenerator[AsyncSession]:
    """Get async database session.

    Yields:
        Database session that is automatically closed.

    Example:
        async with get_async_session() as session:
            removed = await in_app_service.cleanup(session)
            await session.commit()
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_database() -> None:
    """Verify connectivity and create missing tables.

    Raises:
        Exception: Propagates driver errors when the database is unreachable.
    """
    from notification_service.core.database import Base
    from notification_service.features.notifications import models  # noqa: F401

    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
            if db_settings.create_tables:
                await conn.run_sync(Base.metadata.create_all)
    except Exception as e:
        logger.error(
            "Failed to connect to database",
            extra={"postgres": db_settings.is_configured, "error": str(e)},
        )
        raise

    logger.info(
        "Database connection established successfully",
        extra={"postgres": db_settings.is_configured, "create_tables": db_settings.create_tables},
    )


async def close_database() -> None:
    """Dispose the engine and its connection pool."""
    logger.info("Closing database connection")
    await engine.dispose()
    logger.info("Database connection closed successfully")


__all__ = [
    "AsyncSessionLocal",
    "close_database",
    "engine",
    "get_async_session",
    "init_database",
    "use_immediate_transactions",
]
