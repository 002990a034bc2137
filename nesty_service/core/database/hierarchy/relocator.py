"""Subtree relocation through the negative half of the number line.

Relocating a subtree of unknown size happens in three steps, each a bulk
update, all inside the caller's transaction:

    park      shift the subtree by -right so it occupies [-size, 0], then
              close the hole it left in its tree
    re-tag    (cross-tree only) move the parked rows to the destination tree
    reinsert  open a hole of size + 1 at the target left and shift the
              parked rows up by left + size

Valid intervals start at 1, so parked rows can never collide with a live
row in any tree. Before reinserting, the number of non-positive rows in the
destination tree must equal the number of rows parked; anything else means
the destination already held stray parked rows and the move is unsafe.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from nesty_service.core.database.exceptions import InvariantViolationError
from nesty_service.infra.logging import get_lazy_logger

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from nesty_service.core.database.hierarchy.gap import GapAllocator
    from nesty_service.core.database.hierarchy.store import RangeStore

logger = logging.getLogger(__name__)
_lazy = get_lazy_logger(__name__)


@dataclass(frozen=True, slots=True)
class ParkedSubtree:
    """A subtree currently parked at [-size, 0].

    Attributes:
        tree: Tree the parked rows are tagged with
        size: right - left of the subtree root
        count: Number of parked rows (subtree root included)
    """

    tree: int
    size: int
    count: int

    @property
    def width(self) -> int:
        """Width the subtree occupies once reinserted."""
        return self.size + 1


class SubtreeRelocator[T]:
    """Park, re-tag and reinsert subtrees."""

    def __init__(self, store: RangeStore[T], gaps: GapAllocator[T]) -> None:
        self.store = store
        self.gaps = gaps

    async def remove_from_tree(self, session: AsyncSession, node: T) -> ParkedSubtree:
        """Park `node` and its descendants and compact the tree they left.

        `node` must hold its current interval (refresh it first).
        """
        store = self.store
        left, right, tree = store.interval(node)
        size = right - left

        count = await store.update_where(
            session,
            {store.left: store.left - right, store.right: store.right - right},
            store.tree == tree,
            store.left >= left,
            store.right <= right,
        )
        await self.gaps.shift(session, left, -(size + 1), tree)

        _lazy.debug(lambda: f"relocator.park: tree={tree} [{left},{right}] -> {count} rows parked")
        return ParkedSubtree(tree=tree, size=size, count=count)

    async def move_to_tree(self, session: AsyncSession, parked: ParkedSubtree, tree: int) -> ParkedSubtree:
        """Re-tag the parked rows with `tree`; intervals are untouched."""
        if tree == parked.tree:
            return parked

        store = self.store
        await store.update_where(
            session,
            {store.tree: tree},
            store.tree == parked.tree,
            store.left >= -parked.size,
            store.right <= 0,
        )
        _lazy.debug(lambda: f"relocator.retag: {parked.count} rows tree {parked.tree} -> {tree}")
        return ParkedSubtree(tree=tree, size=parked.size, count=parked.count)

    async def reinsert_in_tree(self, session: AsyncSession, parked: ParkedSubtree, left: int) -> None:
        """Land the parked subtree with its root at `left`.

        Raises:
            InvariantViolationError: If the destination tree holds non-positive
                rows other than the parked ones
        """
        store = self.store
        stray = await store.count_where(session, store.tree == parked.tree, store.left <= 0)
        if stray != parked.count:
            logger.error(
                "Parked range collision",
                extra={"tree_id": parked.tree, "expected": parked.count, "found": stray},
            )
            raise InvariantViolationError(
                "Destination tree holds rows in the parked range",
                tree_id=parked.tree,
                errors=[f"expected {parked.count} non-positive rows, found {stray}"],
            )

        await self.gaps.shift(session, left, parked.width, parked.tree)

        offset = left + parked.size
        await store.update_where(
            session,
            {store.left: store.left + offset, store.right: store.right + offset},
            store.tree == parked.tree,
            store.left >= -parked.size,
            store.left <= 0,
        )
        _lazy.debug(lambda: f"relocator.reinsert: tree={parked.tree} left={left} offset={offset:+d}")


__all__ = ["ParkedSubtree", "SubtreeRelocator"]
