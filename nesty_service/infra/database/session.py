"""Async engine and session factory.

Sessions are created with `expire_on_commit=False`: the nested-set engine
commits inside its operations and callers keep reading node attributes
afterwards, which would otherwise trigger lazy loads outside the greenlet.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from nesty_service.core.database.base import Base
from nesty_service.core.settings import get_db_settings

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from sqlalchemy import MetaData

    from nesty_service.core.settings import DatabaseSettings

logger = logging.getLogger(__name__)


def install_sqlite_savepoint_support(engine: AsyncEngine) -> None:
    """Let SQLAlchemy, not pysqlite, emit BEGIN so SAVEPOINT works.

    pysqlite starts transactions lazily on its own, which breaks nested
    transactions (begin_nested). Disabling its handling and emitting BEGIN
    from the "begin" event restores them.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
        _ = connection_record
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN")


def create_engine(settings: DatabaseSettings | None = None, **kwargs: Any) -> AsyncEngine:
    """Build the AsyncEngine for the configured database.

    Args:
        settings: Database settings (defaults to get_db_settings())
        **kwargs: Extra create_async_engine() arguments
    """
    settings = settings or get_db_settings()
    options: dict[str, Any] = {"echo": settings.echo}
    if not settings.is_sqlite:
        options["pool_pre_ping"] = settings.pool_pre_ping
    options.update(kwargs)

    engine = create_async_engine(settings.get_sqlalchemy_url(), **options)
    if settings.is_sqlite:
        install_sqlite_savepoint_support(engine)

    logger.debug(
        "Database engine created",
        extra={"dialect": engine.dialect.name, "sqlite": settings.is_sqlite},
    )
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@asynccontextmanager
async def get_async_session(
    factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """Get async database session.

    Yields:
        Database session that is automatically closed.

    Example:
        async with get_async_session(factory) as session:
            await engine.make_root(session, Category(name="Catalog"))
    """
    async with factory() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_database(engine: AsyncEngine, metadata: MetaData = Base.metadata) -> None:
    """Check connectivity and create any missing tables.

    Raises:
        sqlalchemy.exc.DBAPIError: If the database cannot be reached
    """
    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
            await conn.run_sync(metadata.create_all)
    except Exception as e:
        logger.error(
            "Failed to initialize database",
            extra={"dialect": engine.dialect.name, "error": str(e)},
        )
        raise
    logger.info(
        "Database initialized",
        extra={"dialect": engine.dialect.name, "tables": len(metadata.tables)},
    )


async def close_database(engine: AsyncEngine) -> None:
    """Dispose the engine's connection pool."""
    logger.info("Closing database connection")
    await engine.dispose()


__all__ = [
    "close_database",
    "create_engine",
    "create_session_factory",
    "get_async_session",
    "init_database",
    "install_sqlite_savepoint_support",
]
