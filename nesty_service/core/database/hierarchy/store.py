"""Range store: the bulk operations the nested-set engine needs from SQL.

A thin layer over an AsyncSession and one mapped model. Every write is a
single set-based UPDATE or DELETE filtered by tree and interval predicates;
nothing here knows about node semantics.

Bulk updates run with `synchronize_session=False`, so in-session copies of
shifted rows are not touched. Reads that feed the engine therefore use
`populate_existing` and the engine refreshes the nodes it hands back.

Example:
    store = RangeStore(Category, NestedSetColumns())

    async with store.transaction(session, operation="gap"):
        await store.update_where(
            session,
            {store.left: store.left + 2},
            store.tree == 1,
            store.left >= 4,
        )
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, cast

from sqlalchemy import delete as sql_delete
from sqlalchemy import func, inspect, select, update
from sqlalchemy.exc import DBAPIError

from nesty_service.core.database.exceptions import (
    NodeNotFoundError,
    RepositoryError,
    StoreConflictError,
)
from nesty_service.infra.logging import get_lazy_logger

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Mapping, Sequence

    from sqlalchemy.ext.asyncio import AsyncSession
    from sqlalchemy.orm import InstrumentedAttribute
    from sqlalchemy.sql import ColumnElement

    from nesty_service.core.database.hierarchy.columns import NestedSetColumns

# SQLSTATE codes for serialization failure and deadlock
_CONFLICT_SQLSTATES = frozenset({"40001", "40P01"})
_CONFLICT_MESSAGES = ("database is locked", "could not serialize access", "deadlock detected")


def is_conflict_error(exc: DBAPIError) -> bool:
    """Whether a driver error means a concurrent transaction won a race."""
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in _CONFLICT_SQLSTATES:
        return True
    text = str(orig).lower()
    return any(message in text for message in _CONFLICT_MESSAGES)


class RangeStore[T]:
    """Set-based reads and writes over the interval columns of one model.

    Provides:
        - find_by_key / get_or_raise / refresh
        - select_where / select_keys / count_where / max_of
        - update_where / delete_where
        - transaction(): scoped atomic unit (transaction or SAVEPOINT)
    """

    __slots__ = ("model", "columns", "_logger", "_lazy")

    def __init__(self, model: type[T], columns: NestedSetColumns) -> None:
        """Initialize store.

        Args:
            model: SQLAlchemy model class with the interval columns
            columns: Names of the interval attributes

        Raises:
            RepositoryError: If the model lacks one of the configured attributes
        """
        for attr in columns.interval:
            if not hasattr(model, attr):
                raise RepositoryError(
                    f"{model.__name__} has no attribute {attr!r}",
                    details={"model": model.__name__, "columns": list(columns.interval)},
                )
        self.model = model
        self.columns = columns
        # Standard logger for INFO/WARNING/ERROR
        self._logger = logging.getLogger(f"nesty.store.{model.__name__}")
        # Lazy logger for DEBUG
        self._lazy = get_lazy_logger(f"nesty.store.{model.__name__}")

    # ------------------------------------------------------------------
    # Column and instance helpers
    # ------------------------------------------------------------------

    @property
    def left(self) -> InstrumentedAttribute[int]:
        return getattr(self.model, self.columns.left)

    @property
    def right(self) -> InstrumentedAttribute[int]:
        return getattr(self.model, self.columns.right)

    @property
    def tree(self) -> InstrumentedAttribute[int]:
        return getattr(self.model, self.columns.tree)

    @property
    def pk(self) -> InstrumentedAttribute[Any]:
        """Primary key attribute (first primary key column)."""
        mapper = inspect(self.model)
        pk_cols = mapper.primary_key
        return cast("InstrumentedAttribute[Any]", getattr(self.model, mapper.get_property_by_column(pk_cols[0]).key))

    def interval(self, instance: T) -> tuple[int, int, int]:
        """Return `(left, right, tree)` as currently held by the instance."""
        return (
            getattr(instance, self.columns.left),
            getattr(instance, self.columns.right),
            getattr(instance, self.columns.tree),
        )

    def set_interval(self, instance: T, left: int, right: int, tree: int) -> None:
        setattr(instance, self.columns.left, left)
        setattr(instance, self.columns.right, right)
        setattr(instance, self.columns.tree, tree)

    def is_persisted(self, instance: T) -> bool:
        return inspect(instance).has_identity

    def key_of(self, instance: T) -> Any:
        """Primary key of a persisted instance, None for a new one."""
        identity = inspect(instance).identity
        return identity[0] if identity else None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def find_by_key(self, session: AsyncSession, key: Any) -> T | None:
        """Load a row by key, overwriting any stale in-session copy.

        Returns:
            The instance, or None if the key does not exist
        """
        instance = await session.get(self.model, key, populate_existing=True)
        self._lazy.debug(
            lambda: f"store.find_by_key: {self.model.__name__}({key}) -> {'found' if instance else 'not found'}"
        )
        return instance

    async def get_or_raise(self, session: AsyncSession, key: Any) -> T:
        """Load a row by key.

        Raises:
            NodeNotFoundError: If the key does not exist
        """
        instance = await self.find_by_key(session, key)
        if instance is None:
            self._logger.info(
                "Node not found",
                extra={"entity": self.model.__name__, "id": str(key), "operation": "store.get_or_raise"},
            )
            raise NodeNotFoundError(self.model.__name__, {"id": key})
        return instance

    async def refresh(self, session: AsyncSession, instance: T) -> T:
        """Re-read a persisted instance from the database in place.

        Raises:
            NodeNotFoundError: If the row no longer exists
        """
        return await self.get_or_raise(session, self.key_of(instance))

    async def select_where(
        self,
        session: AsyncSession,
        *criteria: ColumnElement[bool],
        order_by: Sequence[Any] | None = None,
        limit: int | None = None,
    ) -> list[T]:
        """Return matching rows (a fresh list per call)."""
        stmt = select(self.model).where(*criteria).execution_options(populate_existing=True)
        if order_by:
            stmt = stmt.order_by(*order_by)
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def select_keys(
        self,
        session: AsyncSession,
        *criteria: ColumnElement[bool],
        order_by: Sequence[Any] | None = None,
    ) -> list[Any]:
        """Return primary keys of matching rows without loading instances."""
        stmt = select(self.pk).where(*criteria)
        if order_by:
            stmt = stmt.order_by(*order_by)
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def select_intervals(
        self,
        session: AsyncSession,
        tree: int,
    ) -> list[tuple[Any, int, int]]:
        """Return `(key, left, right)` for every row of a tree, in left order."""
        stmt = (
            select(self.pk, self.left, self.right)
            .where(self.tree == tree)
            .order_by(self.left)
        )
        result = await session.execute(stmt)
        return [(key, left, right) for key, left, right in result.all()]

    async def count_where(self, session: AsyncSession, *criteria: ColumnElement[bool]) -> int:
        stmt = select(func.count()).select_from(self.model).where(*criteria)
        return (await session.execute(stmt)).scalar_one()

    async def max_of(
        self,
        session: AsyncSession,
        column: InstrumentedAttribute[Any],
        *criteria: ColumnElement[bool],
    ) -> Any:
        """Maximum of a column over matching rows, None when nothing matches."""
        stmt = select(func.max(column)).where(*criteria)
        return (await session.execute(stmt)).scalar_one()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def update_where(
        self,
        session: AsyncSession,
        values: Mapping[Any, Any],
        *criteria: ColumnElement[bool],
    ) -> int:
        """Apply one bulk UPDATE and return the affected row count.

        Args:
            session: Database session
            values: Attribute -> new value or expression (e.g. {left: left + 2})
            *criteria: WHERE clauses, combined with AND
        """
        stmt = (
            update(self.model)
            .where(*criteria)
            .values(dict(values))
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        affected: int = result.rowcount
        self._lazy.debug(
            lambda: f"store.update_where: {self.model.__name__} -> {affected} rows"
        )
        return affected

    async def delete_where(self, session: AsyncSession, *criteria: ColumnElement[bool]) -> int:
        """Apply one bulk DELETE and return the affected row count.

        Deleted instances present in the session are removed from it.
        """
        stmt = (
            sql_delete(self.model)
            .where(*criteria)
            .execution_options(synchronize_session="fetch")
        )
        result = await session.execute(stmt)
        deleted: int = result.rowcount

        # WARNING level for bulk deletes > 10 (audit-worthy)
        if deleted > 10:
            self._logger.warning(
                "Bulk delete executed",
                extra={"entity": self.model.__name__, "deleted": deleted, "operation": "store.delete_where"},
            )
        else:
            self._lazy.debug(lambda: f"store.delete_where: {self.model.__name__} -> {deleted} deleted")
        return deleted

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def transaction(
        self,
        session: AsyncSession,
        *,
        operation: str | None = None,
    ) -> AsyncIterator[AsyncSession]:
        """Scope a group of writes as one atomic unit.

        Starts a transaction when the session has none, otherwise a SAVEPOINT
        inside the caller's transaction. Pending ORM changes are flushed first.
        Commits (or releases the savepoint) on success and rolls back on any
        exception.

        Raises:
            StoreConflictError: If the store reports a serialization conflict
        """
        try:
            if session.in_transaction():
                async with session.begin_nested():
                    await session.flush()
                    yield session
            else:
                async with session.begin():
                    await session.flush()
                    yield session
        except DBAPIError as exc:
            if is_conflict_error(exc):
                self._logger.warning(
                    "Transaction conflict",
                    extra={"entity": self.model.__name__, "operation": operation},
                )
                raise StoreConflictError(
                    "Concurrent transaction conflict; retry the operation",
                    operation=operation,
                ) from exc
            raise


__all__ = [
    "RangeStore",
    "is_conflict_error",
]
