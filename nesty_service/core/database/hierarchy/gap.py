"""Gap allocation: the single primitive behind every structural mutation."""

from __future__ import annotations

from typing import TYPE_CHECKING

from nesty_service.infra.logging import get_lazy_logger

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from nesty_service.core.database.hierarchy.store import RangeStore

_lazy = get_lazy_logger(__name__)


class GapAllocator[T]:
    """Opens and closes holes in the interval number line of one tree.

    `gap(start, size, tree)` adds `size` to every left >= start and, in a
    separate update, to every right >= start. A positive size opens a hole,
    a negative size closes one.
    """

    def __init__(self, store: RangeStore[T]) -> None:
        self.store = store

    async def shift(self, session: AsyncSession, start: int, size: int, tree: int) -> None:
        """Apply the two updates inside the caller's transaction scope."""
        if size == 0:
            return

        store = self.store
        lefts = await store.update_where(
            session,
            {store.left: store.left + size},
            store.tree == tree,
            store.left >= start,
        )
        rights = await store.update_where(
            session,
            {store.right: store.right + size},
            store.tree == tree,
            store.right >= start,
        )
        _lazy.debug(
            lambda: f"gap: tree={tree} start={start} size={size:+d} -> {lefts} lefts, {rights} rights"
        )

    async def gap(self, session: AsyncSession, start: int, size: int = 2, *, tree: int) -> None:
        """Shift a tree as one atomic unit (its own transaction or savepoint)."""
        async with self.store.transaction(session, operation="gap"):
            await self.shift(session, start, size, tree)


__all__ = ["GapAllocator"]
