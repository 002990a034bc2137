"""Pytest configuration and shared fixtures.

Organization:
    - Database Fixtures: in-memory SQLite engine with SAVEPOINT support,
      sessions created the way the library expects (expire_on_commit=False)
    - Tree Fixtures: nested-set engine over the Category test model
    - Utility Fixtures: query counting
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Any

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from nesty_service.core.database.base import Base
from nesty_service.core.database.hierarchy import NestedSetEngine
from nesty_service.core.events import TreeEventHooks
from nesty_service.core.settings import NestedSetSettings
from nesty_service.infra.database import create_session_factory, install_sqlite_savepoint_support
from tests.fixtures.tree_models import Category

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

# Keep tests independent of any local conf/ directory
os.environ.setdefault("NESTY_CONFIG_DIR", "/nonexistent")
os.environ.setdefault("DB_CONFIG_DIR", "/nonexistent")
os.environ.setdefault("LOGGING_CONFIG_DIR", "/nonexistent")


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine]:
    """Create async SQLAlchemy engine with in-memory SQLite.

    StaticPool keeps the single in-memory connection alive for the whole
    test; the savepoint hooks make begin_nested() work under pysqlite.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
    )
    install_sqlite_savepoint_support(engine)

    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
async def db_session(db_engine: AsyncEngine) -> AsyncGenerator[AsyncSession]:
    """Create async database session with automatic table creation and cleanup."""
    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = create_session_factory(db_engine)
    async with factory() as session:
        try:
            yield session
        finally:
            await session.rollback()

    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


# ============================================================================
# Tree Fixtures
# ============================================================================


@pytest.fixture
def hooks() -> TreeEventHooks:
    return TreeEventHooks()


@pytest.fixture
def tree(hooks: TreeEventHooks) -> NestedSetEngine[Category]:
    """Nested-set engine that verifies every touched tree before committing."""
    return NestedSetEngine(
        Category,
        hooks=hooks,
        settings=NestedSetSettings(verify_after_mutation=True),
    )


# ============================================================================
# Utility Fixtures
# ============================================================================


@pytest.fixture
def query_counter(db_engine: AsyncEngine) -> list[str]:
    """Collect every SQL statement executed on the engine.

    Example:
        async def test_cached(query_counter, ...):
            before = len(query_counter)
            ...
            assert len(query_counter) == before
    """
    statements: list[str] = []

    def _record(conn: Any, cursor: Any, statement: str, *args: Any) -> None:
        statements.append(statement)

    event.listen(db_engine.sync_engine, "before_cursor_execute", _record)
    yield statements
    event.remove(db_engine.sync_engine, "before_cursor_execute", _record)
