"""Tests for database session helpers."""

from __future__ import annotations

import pytest
from sqlalchemy import text

from nesty_service.core.database.hierarchy import NestedSetEngine
from nesty_service.core.settings import DatabaseSettings, NestedSetSettings
from nesty_service.infra.database import (
    close_database,
    create_engine,
    create_session_factory,
    get_async_session,
    init_database,
)
from tests.fixtures.tree_models import Category, intervals


@pytest.fixture
async def file_engine(tmp_path):
    settings = DatabaseSettings(DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'nesty.db'}")
    engine = create_engine(settings)
    yield engine
    await close_database(engine)


@pytest.mark.unit
async def test_init_database_creates_tables(file_engine):
    await init_database(file_engine)

    async with file_engine.connect() as conn:
        result = await conn.execute(
            text("SELECT name FROM sqlite_master WHERE type='table' AND name='categories'")
        )
        assert result.scalar_one() == "categories"


@pytest.mark.unit
async def test_sessions_keep_attributes_after_commit(file_engine):
    await init_database(file_engine)
    factory = create_session_factory(file_engine)

    async with get_async_session(factory) as session:
        category = Category(name="S", lft=1, rgt=2, tree_id=2)
        session.add(category)
        await session.commit()
        assert category.name == "S"


@pytest.mark.unit
async def test_savepoints_work_on_sqlite(file_engine):
    await init_database(file_engine)
    factory = create_session_factory(file_engine)
    tree = NestedSetEngine(Category, settings=NestedSetSettings(verify_after_mutation=True))

    async with get_async_session(factory) as session:
        async with session.begin():
            root = Category(name="R")
            await tree.make_root(session, root)
            nested = await session.begin_nested()
            await tree.last_child_of(session, Category(name="A"), root)
            await nested.rollback()

        assert await intervals(session) == {"R": (1, 2, 1)}


@pytest.mark.unit
async def test_create_engine_passes_overrides():
    settings = DatabaseSettings(DATABASE_URL="sqlite+aiosqlite:///:memory:", echo=False)
    engine = create_engine(settings, echo=True)
    try:
        assert engine.echo is True
        assert engine.dialect.name == "sqlite"
    finally:
        await close_database(engine)
