"""Ancestor chains and paths by interval containment."""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING, Any

from nesty_service.core.database.exceptions import InvalidFormatError, NodeNotPersistedError
from nesty_service.infra.logging import get_lazy_logger

if TYPE_CHECKING:
    from collections.abc import Callable

    from sqlalchemy.ext.asyncio import AsyncSession

    from nesty_service.core.database.hierarchy.store import RangeStore

_lazy = get_lazy_logger(__name__)


class PathFormat(StrEnum):
    ARRAY = "array"
    STRING = "string"


class AncestorResolver[T]:
    """Derives the root-first ancestor chain of a node."""

    def __init__(self, store: RangeStore[T]) -> None:
        self.store = store

    async def ancestors(self, session: AsyncSession, node: T, *, include_self: bool = False) -> list[T]:
        """Rows of the same tree whose interval strictly contains node.left.

        A root has no ancestors and returns without querying.
        """
        store = self.store
        if not store.is_persisted(node):
            raise NodeNotPersistedError("node", store.model.__name__)

        left, _, tree = store.interval(node)
        if left == 1:
            chain: list[T] = []
        else:
            chain = await store.select_where(
                session,
                store.tree == tree,
                store.left < left,
                store.right > left,
                order_by=[store.left],
            )
            _lazy.debug(lambda: f"ancestors: tree={tree} left={left} -> {len(chain)} rows")

        if include_self:
            chain.append(node)
        return chain

    async def path(
        self,
        session: AsyncSession,
        node: T,
        column: str | Callable[[T], Any] | None = None,
        *,
        fmt: PathFormat | str = PathFormat.ARRAY,
        separator: str = "/",
    ) -> list[Any] | str:
        """Map ancestors plus `node` through `column`.

        Args:
            session: Database session
            node: Persisted node
            column: Attribute name or callable; defaults to the name column
            fmt: "array" returns a list, "string" joins with `separator`
            separator: Joiner for the string format

        Raises:
            InvalidFormatError: fmt is neither "array" nor "string"

        Example:
            >>> await resolver.path(session, laptops, fmt="string", separator=" > ")
            'Electronics > Computers > Laptops'
        """
        try:
            out = PathFormat(fmt)
        except ValueError:
            raise InvalidFormatError(fmt, tuple(f.value for f in PathFormat)) from None

        if column is None:
            column = self.store.columns.name
        extract = column if callable(column) else (lambda record: getattr(record, column))

        values = [extract(record) for record in await self.ancestors(session, node, include_self=True)]
        if out is PathFormat.STRING:
            return separator.join(str(value) for value in values)
        return values


__all__ = ["AncestorResolver", "PathFormat"]
