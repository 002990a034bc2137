"""Nested-set engine: every structural mutation of a tree forest.

All operations take an explicit AsyncSession whose instances they mutate.
Node instances must belong to that session. Sessions should be created with
`expire_on_commit=False` so nodes stay readable after the engine commits.

Each structural operation runs in one RangeStore.transaction scope:

    1. reload the node and reference node (intervals may be stale)
    2. check the move is legal
    3. apply the gap / relocation arithmetic
    4. optionally verify every touched tree
    5. reload the node and reference node again

and afterwards invalidates cached children of everything it touched.

Example:
    engine = NestedSetEngine(Category)

    root = Category(name="Catalog")
    await engine.make_root(session, root)           # [1, 2]

    books = Category(name="Books")
    await engine.last_child_of(session, books, root)  # books [2, 3], root [1, 4]
"""

from __future__ import annotations

import logging
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from nesty_service.core.database.exceptions import (
    InvalidMoveError,
    InvalidPositionError,
    NodeNotPersistedError,
    RootRequiredError,
)
from nesty_service.core.database.hierarchy.ancestors import AncestorResolver, PathFormat
from nesty_service.core.database.hierarchy.gap import GapAllocator
from nesty_service.core.database.hierarchy.materializer import (
    HierarchyReader,
    get_cached_parent,
    invalidate_children,
)
from nesty_service.core.database.hierarchy.relocator import SubtreeRelocator
from nesty_service.core.database.hierarchy.store import RangeStore
from nesty_service.core.database.hierarchy.verify import TreeReport, assert_valid_tree, verify_tree
from nesty_service.core.events import SubtreeDeletedEvent, TreeDeletedEvent, TreeEventHooks
from nesty_service.core.settings import get_nested_set_settings
from nesty_service.infra.logging import get_lazy_logger, log_context, set_log_context

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from sqlalchemy.ext.asyncio import AsyncSession

    from nesty_service.core.database.hierarchy.columns import NestedSetColumns
    from nesty_service.core.settings import NestedSetSettings

logger = logging.getLogger(__name__)
_lazy = get_lazy_logger(__name__)

# Width of a freshly inserted leaf: [left, left + 1]
EMPTY_NODE_WIDTH = 2


class Position(StrEnum):
    """Where a node lands relative to its reference node."""

    FIRST = "first"
    LAST = "last"
    PREVIOUS = "previous"
    NEXT = "next"


CHILD_POSITIONS = (Position.FIRST, Position.LAST)
SIBLING_POSITIONS = (Position.PREVIOUS, Position.NEXT)


def coerce_position(position: Position | str, allowed: tuple[Position, ...]) -> Position:
    """Validate a position token.

    Raises:
        InvalidPositionError: If the token is unknown or not allowed here
    """
    try:
        pos = Position(position)
    except ValueError:
        pos = None
    if pos not in allowed:
        raise InvalidPositionError(position, tuple(p.value for p in allowed))
    return pos


class NestedSetEngine[T]:
    """Structural operations for one nested-set model.

    Args:
        model: Mapped class carrying the interval columns
        columns: Column mapping. Defaults to the model's
            __nested_set_columns__, which NestedSetMixin always defines, so
            the NestedSetSettings column names only apply to models that
            declare their interval columns without the mixin
        hooks: Event hooks called after whole-subtree deletes
        settings: Engine settings; defaults to get_nested_set_settings()
    """

    def __init__(
        self,
        model: type[T],
        columns: NestedSetColumns | None = None,
        *,
        hooks: TreeEventHooks | None = None,
        settings: NestedSetSettings | None = None,
    ) -> None:
        settings = settings or get_nested_set_settings()
        if columns is None:
            columns = getattr(model, "__nested_set_columns__", None) or settings.to_columns()

        self.model = model
        self.columns = columns
        self.verify_after_mutation = settings.verify_after_mutation
        self.hooks = hooks if hooks is not None else TreeEventHooks()

        self.store: RangeStore[T] = RangeStore(model, columns)
        self.gaps = GapAllocator(self.store)
        self.relocator = SubtreeRelocator(self.store, self.gaps)
        self.reader = HierarchyReader(self.store)
        self.resolver = AncestorResolver(self.store)

    # ------------------------------------------------------------------
    # Pure queries
    # ------------------------------------------------------------------

    def is_root(self, node: T) -> bool:
        return self.store.interval(node)[0] == 1

    def size(self, node: T) -> int:
        left, right, _ = self.store.interval(node)
        return right - left

    def descendant_count(self, node: T) -> int:
        return (self.size(node) - 1) // 2

    # ------------------------------------------------------------------
    # Root creation and promotion
    # ------------------------------------------------------------------

    async def make_root(self, session: AsyncSession, node: T) -> T:
        """Make `node` the root of a fresh tree.

        A new node becomes [1, 2] in tree max(tree) + 1. An existing root is
        left alone. An existing non-root is moved, with its descendants, to a
        fresh tree and its left becomes 1.
        """
        store = self.store
        is_new = not store.is_persisted(node)
        if is_new:
            self._detach_pending(session, node)

        with log_context(operation="make_root"):
            async with store.transaction(session, operation="make_root"):
                if is_new:
                    tree = await self._next_tree(session)
                    set_log_context(tree_id=tree)
                    await self._insert_new(session, node, 1, tree)
                    touched = {tree}
                else:
                    await store.refresh(session, node)
                    left, _, old_tree = store.interval(node)
                    set_log_context(tree_id=old_tree)
                    if left == 1:
                        _lazy.debug(lambda: f"engine.make_root: {store.key_of(node)} already a root")
                        return node

                    old_parent = get_cached_parent(node)
                    parked = await self.relocator.remove_from_tree(session, node)
                    tree = await self._next_tree(session)
                    parked = await self.relocator.move_to_tree(session, parked, tree)
                    await self.relocator.reinsert_in_tree(session, parked, 1)
                    touched = {old_tree, tree}
                    self._invalidate(old_parent)

                await self._verify(session, touched)
                await store.refresh(session, node)

            self._invalidate(node)
            logger.info(
                "Node promoted to root" if not is_new else "Root created",
                extra={"id": store.key_of(node), "tree_id": tree, "operation": "make_root"},
            )
        return node

    # ------------------------------------------------------------------
    # Attach as child / sibling
    # ------------------------------------------------------------------

    async def child_of(
        self,
        session: AsyncSession,
        node: T,
        parent: T,
        position: Position | str = Position.LAST,
    ) -> T:
        """Attach (or move) `node` as the first or last child of `parent`.

        Raises:
            InvalidPositionError: position is not "first" or "last"
            NodeNotPersistedError: parent was never saved
            InvalidMoveError: parent is node itself or one of its descendants
        """
        pos = coerce_position(position, CHILD_POSITIONS)

        def target(p_left: int, p_right: int) -> int:
            return p_left + 1 if pos is Position.FIRST else p_right

        return await self._attach(session, node, parent, "parent", f"child_of.{pos}", target)

    async def first_child_of(self, session: AsyncSession, node: T, parent: T) -> T:
        return await self.child_of(session, node, parent, Position.FIRST)

    async def last_child_of(self, session: AsyncSession, node: T, parent: T) -> T:
        return await self.child_of(session, node, parent, Position.LAST)

    async def sibling_of(
        self,
        session: AsyncSession,
        node: T,
        sibling: T,
        position: Position | str = Position.NEXT,
    ) -> T:
        """Attach (or move) `node` directly before or after `sibling`.

        Raises:
            InvalidPositionError: position is not "previous" or "next"
            NodeNotPersistedError: sibling was never saved
            InvalidMoveError: sibling is a root, or lies inside node's subtree
        """
        pos = coerce_position(position, SIBLING_POSITIONS)

        def target(s_left: int, s_right: int) -> int:
            return s_left if pos is Position.PREVIOUS else s_right + 1

        return await self._attach(session, node, sibling, "sibling", f"sibling_of.{pos}", target)

    async def previous_sibling_of(self, session: AsyncSession, node: T, sibling: T) -> T:
        return await self.sibling_of(session, node, sibling, Position.PREVIOUS)

    async def next_sibling_of(self, session: AsyncSession, node: T, sibling: T) -> T:
        return await self.sibling_of(session, node, sibling, Position.NEXT)

    async def _attach(
        self,
        session: AsyncSession,
        node: T,
        reference: T,
        role: str,
        operation: str,
        target: Callable[[int, int], int],
    ) -> T:
        store = self.store
        self._require_persisted(reference, role)
        is_new = not store.is_persisted(node)
        if is_new:
            self._detach_pending(session, node)

        with log_context(operation=operation):
            async with store.transaction(session, operation=operation):
                await store.refresh(session, reference)
                r_left, r_right, tree = store.interval(reference)
                set_log_context(tree_id=tree)
                if role == "sibling" and r_left == 1:
                    raise InvalidMoveError(
                        "A root node cannot have siblings",
                        details={"sibling": store.key_of(reference), "tree_id": tree},
                    )

                if is_new:
                    await self._insert_new(session, node, target(r_left, r_right), tree)
                    touched = {tree}
                    old_parent = None
                else:
                    await store.refresh(session, node)
                    n_left, n_right, old_tree = store.interval(node)
                    if old_tree == tree and n_left <= r_left and r_right <= n_right:
                        raise InvalidMoveError(
                            f"Cannot move a node relative to itself or its descendants ({role})",
                            details={"id": store.key_of(node), role: store.key_of(reference)},
                        )

                    old_parent = get_cached_parent(node)
                    parked = await self.relocator.remove_from_tree(session, node)
                    # The reference may have shifted when the subtree left
                    await store.refresh(session, reference)
                    r_left, r_right, tree = store.interval(reference)
                    parked = await self.relocator.move_to_tree(session, parked, tree)
                    await self.relocator.reinsert_in_tree(session, parked, target(r_left, r_right))
                    touched = {old_tree, tree}

                await self._verify(session, touched)
                await store.refresh(session, node)
                await store.refresh(session, reference)

            self._invalidate(node, reference, old_parent, get_cached_parent(reference))
            logger.info(
                "Node attached" if is_new else "Node moved",
                extra={
                    "id": store.key_of(node),
                    role: store.key_of(reference),
                    "tree_id": tree,
                    "operation": operation,
                },
            )
        return node

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    async def delete(self, session: AsyncSession, node: T) -> int:
        """Delete one node and promote its children to its former level.

        A root delegates to delete_root(). Returns the number of rows deleted.
        """
        store = self.store
        self._require_persisted(node, "node")

        with log_context(operation="delete"):
            async with store.transaction(session, operation="delete"):
                await store.refresh(session, node)
                left, right, tree = store.interval(node)
                key = store.key_of(node)
                set_log_context(tree_id=tree)
                if left == 1:
                    return await self._delete_tree(session, key, tree)

                parent = get_cached_parent(node)
                deleted = await store.delete_where(session, store.pk == key)
                # Descendants move up one level: [l, r] -> [l - 1, r - 1]
                await store.update_where(
                    session,
                    {store.left: store.left - 1, store.right: store.right - 1},
                    store.tree == tree,
                    store.left > left,
                    store.right < right,
                )
                # The row's own two boundary values are gone
                await store.update_where(
                    session,
                    {store.left: store.left - EMPTY_NODE_WIDTH},
                    store.tree == tree,
                    store.left > right,
                )
                await store.update_where(
                    session,
                    {store.right: store.right - EMPTY_NODE_WIDTH},
                    store.tree == tree,
                    store.right > right,
                )
                await self._verify(session, {tree})

            self._invalidate(node, parent)
            logger.info("Node deleted", extra={"id": key, "tree_id": tree, "operation": "delete"})
        return deleted

    async def delete_with_children(self, session: AsyncSession, node: T) -> int:
        """Delete a node and all its descendants, then close the gap.

        A root delegates to delete_root(). Returns the number of rows deleted.
        """
        store = self.store
        self._require_persisted(node, "node")

        with log_context(operation="delete_with_children"):
            async with store.transaction(session, operation="delete_with_children"):
                await store.refresh(session, node)
                left, right, tree = store.interval(node)
                key = store.key_of(node)
                set_log_context(tree_id=tree)
                if left == 1:
                    return await self._delete_tree(session, key, tree)

                parent = get_cached_parent(node)
                deleted = await store.delete_where(
                    session,
                    store.tree == tree,
                    store.left >= left,
                    store.right <= right,
                )
                await self.gaps.shift(session, left, -(right - left + 1), tree)
                await self._verify(session, {tree})
                await self.hooks.dispatch(
                    SubtreeDeletedEvent(
                        tree_id=tree, node_id=key, left=left, right=right, deleted_count=deleted
                    )
                )

            self._invalidate(node, parent)
            logger.info(
                "Subtree deleted",
                extra={"id": key, "tree_id": tree, "deleted": deleted, "operation": "delete_with_children"},
            )
        return deleted

    async def delete_root(self, session: AsyncSession, node: T) -> int:
        """Delete every row of the tree `node` is the root of.

        Raises:
            NodeNotPersistedError: node was never saved
            RootRequiredError: node is not a root
        """
        store = self.store
        self._require_persisted(node, "node")

        with log_context(operation="delete_root"):
            async with store.transaction(session, operation="delete_root"):
                await store.refresh(session, node)
                left, _, tree = store.interval(node)
                set_log_context(tree_id=tree)
                if left != 1:
                    raise RootRequiredError("delete_root", store.key_of(node))
                return await self._delete_tree(session, store.key_of(node), tree)

    async def _delete_tree(self, session: AsyncSession, key: Any, tree: int) -> int:
        deleted = await self.store.delete_where(session, self.store.tree == tree)
        await self.hooks.dispatch(TreeDeletedEvent(tree_id=tree, root_id=key, deleted_count=deleted))
        logger.info(
            "Tree deleted",
            extra={"id": key, "tree_id": tree, "deleted": deleted, "operation": "delete_root"},
        )
        return deleted

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def reload(self, session: AsyncSession, node: T) -> T:
        """Re-read `node` from the store and drop its cached children.

        Raises:
            NodeNotPersistedError: node was never saved
            NodeNotFoundError: the row no longer exists
        """
        self._require_persisted(node, "node")
        fresh = await self.store.refresh(session, node)
        invalidate_children(fresh)
        return fresh

    async def get_parent(self, session: AsyncSession, node: T) -> T | None:
        """Immediate parent by interval containment, None for a root."""
        store = self.store
        self._require_persisted(node, "node")
        left, right, tree = store.interval(node)
        if left == 1:
            return None
        rows = await store.select_where(
            session,
            store.tree == tree,
            store.left < left,
            store.right > right,
            order_by=[store.left.desc()],
            limit=1,
        )
        return rows[0] if rows else None

    async def get_roots(self, session: AsyncSession) -> list[T]:
        """Every root in the forest, ordered by tree."""
        store = self.store
        return await store.select_where(session, store.left == 1, order_by=[store.tree])

    async def children(
        self,
        session: AsyncSession,
        node: T,
        *,
        depth: int | None = None,
        refresh: bool = False,
    ) -> list[T]:
        """Direct children of `node`; see HierarchyReader.children()."""
        return await self.reader.children(session, node, depth=depth, refresh=refresh)

    async def ancestors(self, session: AsyncSession, node: T, *, include_self: bool = False) -> list[T]:
        return await self.resolver.ancestors(session, node, include_self=include_self)

    async def path(
        self,
        session: AsyncSession,
        node: T,
        column: str | Callable[[T], Any] | None = None,
        fmt: PathFormat | str = PathFormat.ARRAY,
        separator: str = "/",
    ) -> list[Any] | str:
        """Ancestors plus `node` mapped through `column`; see AncestorResolver.path()."""
        return await self.resolver.path(session, node, column, fmt=fmt, separator=separator)

    async def verify_tree(self, session: AsyncSession, tree: int) -> TreeReport:
        """Check every interval invariant of one tree."""
        return await verify_tree(self.store, session, tree)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_persisted(self, node: T, role: str) -> None:
        if not self.store.is_persisted(node):
            raise NodeNotPersistedError(role, self.model.__name__)

    @staticmethod
    def _detach_pending(session: AsyncSession, node: T) -> None:
        # A pending node has no interval yet and must not be flushed early
        if node in session:
            session.expunge(node)

    async def _next_tree(self, session: AsyncSession) -> int:
        current = await self.store.max_of(session, self.store.tree)
        return (current or 0) + 1

    async def _insert_new(self, session: AsyncSession, node: T, left: int, tree: int) -> None:
        await self.gaps.shift(session, left, EMPTY_NODE_WIDTH, tree)
        self.store.set_interval(node, left, left + EMPTY_NODE_WIDTH - 1, tree)
        session.add(node)
        await session.flush()
        _lazy.debug(lambda: f"engine.insert: tree={tree} [{left},{left + 1}]")

    async def _verify(self, session: AsyncSession, trees: Iterable[int]) -> None:
        if not self.verify_after_mutation:
            return
        for tree in sorted(set(trees)):
            await assert_valid_tree(self.store, session, tree)

    @staticmethod
    def _invalidate(*nodes: Any) -> None:
        for node in nodes:
            if node is not None:
                invalidate_children(node)


__all__ = [
    "CHILD_POSITIONS",
    "EMPTY_NODE_WIDTH",
    "SIBLING_POSITIONS",
    "NestedSetEngine",
    "Position",
    "coerce_position",
]
