"""Tests for the range store and gap allocator."""

from __future__ import annotations

import pytest
from sqlalchemy.exc import DBAPIError

from nesty_service.core.database.exceptions import (
    NodeNotFoundError,
    RepositoryError,
    StoreConflictError,
)
from nesty_service.core.database.hierarchy import (
    GapAllocator,
    NestedSetColumns,
    RangeStore,
)
from nesty_service.core.database.hierarchy.store import is_conflict_error
from tests.fixtures.tree_models import Category, build_tree, intervals


class _DriverError(Exception):
    def __init__(self, message: str, sqlstate: str | None = None) -> None:
        super().__init__(message)
        self.sqlstate = sqlstate


def _dbapi_error(message: str, sqlstate: str | None = None) -> DBAPIError:
    return DBAPIError("UPDATE categories", {}, _DriverError(message, sqlstate))


@pytest.fixture
def store() -> RangeStore[Category]:
    return RangeStore(Category, NestedSetColumns())


@pytest.mark.unit
class TestConflictDetection:
    @pytest.mark.parametrize("sqlstate", ["40001", "40P01"])
    def test_serialization_sqlstates(self, sqlstate):
        assert is_conflict_error(_dbapi_error("conflict", sqlstate))

    def test_sqlite_lock_message(self):
        assert is_conflict_error(_dbapi_error("database is locked"))

    def test_other_errors(self):
        assert not is_conflict_error(_dbapi_error("no such table: categories", "42P01"))

    async def test_transaction_maps_conflicts(self, store, db_session):
        with pytest.raises(StoreConflictError) as exc_info:
            async with store.transaction(db_session, operation="child_of.last"):
                raise _dbapi_error("could not serialize access", "40001")

        assert exc_info.value.retryable is True
        assert exc_info.value.details == {"operation": "child_of.last"}

    async def test_transaction_reraises_other_driver_errors(self, store, db_session):
        with pytest.raises(DBAPIError):
            async with store.transaction(db_session, operation="delete"):
                raise _dbapi_error("disk I/O error")


@pytest.mark.unit
class TestRangeStore:
    def test_rejects_model_without_columns(self):
        with pytest.raises(RepositoryError, match="no attribute 'lo'"):
            RangeStore(Category, NestedSetColumns(left="lo"))

    async def test_get_or_raise(self, store, db_session):
        with pytest.raises(NodeNotFoundError) as exc_info:
            await store.get_or_raise(db_session, 404)

        assert exc_info.value.identifier == {"id": 404}
        assert await store.find_by_key(db_session, 404) is None

    async def test_max_of_empty_table(self, store, db_session):
        assert await store.max_of(db_session, store.tree) is None

    async def test_update_where_returns_rowcount(self, tree, store, db_session):
        await build_tree(tree, db_session, ("R", [("A", []), ("B", [])]))

        async with store.transaction(db_session):
            affected = await store.update_where(
                db_session,
                {store.left: store.left + 0},
                store.tree == 1,
                store.left > 1,
            )

        assert affected == 2

    async def test_select_intervals_in_left_order(self, tree, store, db_session):
        nodes = await build_tree(tree, db_session, ("R", [("A", [("A1", [])]), ("B", [])]))

        rows = await store.select_intervals(db_session, 1)

        assert rows == [
            (nodes["R"].id, 1, 8),
            (nodes["A"].id, 2, 5),
            (nodes["A1"].id, 3, 4),
            (nodes["B"].id, 6, 7),
        ]

    async def test_count_where(self, tree, store, db_session):
        await build_tree(tree, db_session, ("R", [("A", [("A1", [])]), ("B", [])]))

        assert await store.count_where(db_session, store.tree == 1) == 4
        assert await store.count_where(db_session, store.tree == 2) == 0


@pytest.mark.unit
class TestGapAllocator:
    async def test_gap_opens_hole(self, tree, store, db_session):
        await build_tree(tree, db_session, ("R", [("A", []), ("B", [])]))

        await GapAllocator(store).gap(db_session, 4, tree=1)

        assert await intervals(db_session) == {
            "R": (1, 8, 1),
            "A": (2, 3, 1),
            "B": (6, 7, 1),
        }

    async def test_gap_closes_hole(self, tree, store, db_session):
        await build_tree(tree, db_session, ("R", [("A", []), ("B", [])]))
        gaps = GapAllocator(store)
        await gaps.gap(db_session, 4, tree=1)

        await gaps.gap(db_session, 4, -2, tree=1)

        assert await intervals(db_session) == {
            "R": (1, 6, 1),
            "A": (2, 3, 1),
            "B": (4, 5, 1),
        }

    async def test_zero_size_issues_no_statements(self, tree, store, db_session, query_counter):
        await build_tree(tree, db_session, ("R", [("A", [])]))
        before = len(query_counter)

        await GapAllocator(store).shift(db_session, 2, 0, 1)

        assert len(query_counter) == before

    async def test_gap_only_touches_its_tree(self, tree, store, db_session):
        await build_tree(tree, db_session, ("R", [("A", [])]))
        await build_tree(tree, db_session, ("Q", [("X", [])]))

        await GapAllocator(store).gap(db_session, 2, tree=2)

        assert await intervals(db_session, tree_id=1) == {"R": (1, 4, 1), "A": (2, 3, 1)}
        assert await intervals(db_session, tree_id=2) == {"Q": (1, 6, 2), "X": (4, 5, 2)}
