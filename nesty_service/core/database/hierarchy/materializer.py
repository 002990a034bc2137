"""Rebuild an in-memory hierarchy from flat, depth-annotated rows.

A nested-set subtree comes back from the database as a flat list ordered by
`left`, which is preorder. Each row carries its depth relative to the queried
node, so parent links can be recovered in one pass with a stack of open
ancestors: pop every open node whose depth is >= the incoming row's depth,
then the row belongs to whatever remains on top (or to the queried node when
the stack is empty).

Nodes live in an arena addressed by index. The stack and the child lists
only hold indices, so nothing aliases a growing list.

Cached children on a record are one of three states:

    Unloaded   never read (or invalidated by a mutation)
    Empty      read, and the node is known to have no children
    Loaded     read, with the child records in left order
"""

from __future__ import annotations

import weakref
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select
from sqlalchemy.orm import aliased

from nesty_service.core.database.exceptions import NodeNotPersistedError
from nesty_service.infra.logging import get_lazy_logger

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

    from nesty_service.core.database.hierarchy.store import RangeStore

_lazy = get_lazy_logger(__name__)

# Instance attributes used for the in-memory caches on tree records
CHILDREN_ATTR = "_nested_children"
PARENT_ATTR = "_nested_parent"


@dataclass(frozen=True, slots=True)
class Unloaded:
    """Children were never read for this node."""


@dataclass(frozen=True, slots=True)
class Empty:
    """Children were read and there are none."""


@dataclass(frozen=True, slots=True)
class Loaded:
    """Children were read; `nodes` holds them in left order."""

    nodes: tuple[Any, ...]


type ChildrenState = Unloaded | Empty | Loaded

UNLOADED = Unloaded()
EMPTY = Empty()


def children_state(nodes: Sequence[Any]) -> ChildrenState:
    """Return Loaded for a non-empty sequence, Empty otherwise."""
    return Loaded(tuple(nodes)) if nodes else EMPTY


def get_children_state(record: Any) -> ChildrenState:
    return getattr(record, CHILDREN_ATTR, UNLOADED)


def set_children_state(record: Any, state: ChildrenState) -> None:
    setattr(record, CHILDREN_ATTR, state)


def invalidate_children(record: Any) -> None:
    """Forget cached children so the next read queries again."""
    set_children_state(record, UNLOADED)


def get_cached_parent(record: Any) -> Any | None:
    """Return the parent linked by the last subtree read, if still alive."""
    ref = getattr(record, PARENT_ATTR, None)
    return ref() if ref is not None else None


def set_cached_parent(record: Any, parent: Any | None) -> None:
    setattr(record, PARENT_ATTR, weakref.ref(parent) if parent is not None else None)


@dataclass(slots=True)
class ArenaNode[T]:
    """One materialized row.

    Attributes:
        record: The row object
        depth: Depth reported by the query
        level: 1 for direct children of the queried node, 2 below them, ...
        parent: Arena index of the parent, None for top-level rows
        children: Arena indices of direct children in left order
    """

    record: T
    depth: int
    level: int
    parent: int | None = None
    children: list[int] = field(default_factory=list)


@dataclass(slots=True)
class HierarchyArena[T]:
    """Index-addressed forest produced by materialize()."""

    nodes: list[ArenaNode[T]] = field(default_factory=list)
    roots: list[int] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.nodes)

    def records(self, indices: Iterable[int]) -> list[T]:
        return [self.nodes[i].record for i in indices]

    def children_of(self, index: int) -> list[T]:
        return self.records(self.nodes[index].children)

    def children_of_node(self, node: ArenaNode[T]) -> list[T]:
        return self.records(node.children)

    def top_level(self) -> list[T]:
        return self.records(self.roots)


def materialize[T](rows: Iterable[tuple[T, int]]) -> HierarchyArena[T]:
    """Build parent/child links from `(record, depth)` rows in left order.

    Args:
        rows: Rows of one subtree, ordered by left ascending

    Returns:
        Arena whose `roots` are the rows with no open ancestor

    Example:
        >>> arena = materialize([("A", 0), ("B", 1), ("C", 1), ("D", 2)])
        >>> arena.top_level()
        ['A']
        >>> arena.children_of(0)
        ['B', 'C']
        >>> arena.children_of(2)
        ['D']
    """
    arena: HierarchyArena[T] = HierarchyArena()
    stack: list[int] = []

    for record, depth in rows:
        while stack and arena.nodes[stack[-1]].depth >= depth:
            stack.pop()

        index = len(arena.nodes)
        if stack:
            parent = stack[-1]
            arena.nodes.append(
                ArenaNode(record, depth, arena.nodes[parent].level + 1, parent)
            )
            arena.nodes[parent].children.append(index)
        else:
            arena.nodes.append(ArenaNode(record, depth, 1))
            arena.roots.append(index)

        stack.append(index)

    return arena


def attach[T](owner: Any, arena: HierarchyArena[T], *, depth_limit: int | None = None) -> None:
    """Write cached children and parent links from an arena onto the records.

    Nodes on the deepest loaded level keep Unloaded children when a
    depth limit cut the read short, since nothing is known below them.

    Args:
        owner: The node whose subtree was read
        arena: Result of materialize()
        depth_limit: Number of levels that were read, None for the whole subtree
    """
    set_children_state(owner, children_state(arena.top_level()))

    for node in arena.nodes:
        parent_record = owner if node.parent is None else arena.nodes[node.parent].record
        set_cached_parent(node.record, parent_record)

        if node.children:
            set_children_state(node.record, Loaded(tuple(arena.children_of_node(node))))
        elif depth_limit is not None and node.level >= depth_limit:
            set_children_state(node.record, UNLOADED)
        else:
            set_children_state(node.record, EMPTY)


class HierarchyReader[T]:
    """Reads subtrees and materializes them onto the records.

    Example:
        reader = HierarchyReader(store)
        children = await reader.children(session, category)
        grandchildren = category.children[0].children  # already cached
    """

    def __init__(self, store: RangeStore[T]) -> None:
        self.store = store

    async def descendants_with_depth(
        self,
        session: AsyncSession,
        node: T,
        *,
        depth: int | None = None,
    ) -> list[tuple[T, int]]:
        """Return `(record, depth)` for every descendant, in left order.

        Depth counts the strict ancestors between a row and `node`, so direct
        children have depth 0.

        Args:
            session: Database session
            node: Persisted node whose subtree is read
            depth: Only return rows with depth < this value (None for all)
        """
        store = self.store
        left, right, tree = store.interval(node)

        outer = aliased(store.model)
        o_left = getattr(outer, store.columns.left)
        o_right = getattr(outer, store.columns.right)
        o_tree = getattr(outer, store.columns.tree)

        # Strict ancestors of `outer` below `node`
        depth_expr = (
            select(func.count())
            .select_from(store.model)
            .where(
                store.tree == o_tree,
                store.left > left,
                store.left < o_left,
                store.right > o_right,
            )
            .correlate(outer)
            .scalar_subquery()
        )

        stmt = (
            select(outer, depth_expr.label("depth"))
            .where(o_tree == tree, o_left > left, o_right < right)
            .order_by(o_left)
            .execution_options(populate_existing=True)
        )
        if depth is not None:
            stmt = stmt.where(depth_expr < depth)

        result = await session.execute(stmt)
        rows = [(record, int(row_depth)) for record, row_depth in result.all()]

        _lazy.debug(
            lambda: f"tree.descendants: tree={tree} [{left},{right}] depth<{depth} -> {len(rows)} rows"
        )
        return rows

    async def children(
        self,
        session: AsyncSession,
        node: T,
        *,
        depth: int | None = None,
        refresh: bool = False,
    ) -> list[T]:
        """Return the direct children of `node`, loading and caching its subtree.

        A cached Empty or Loaded state answers without a query unless
        `refresh` is set.

        Args:
            session: Database session
            node: Persisted node
            depth: Number of levels to load (None loads the whole subtree)
            refresh: Ignore the cache and query again

        Raises:
            NodeNotPersistedError: If node was never saved
            ValueError: If depth is not a positive integer
        """
        if not self.store.is_persisted(node):
            raise NodeNotPersistedError("node", self.store.model.__name__)
        if depth is not None and depth < 1:
            raise ValueError("depth must be >= 1")

        if not refresh:
            match get_children_state(node):
                case Empty():
                    return []
                case Loaded(nodes):
                    return list(nodes)

        rows = await self.descendants_with_depth(session, node, depth=depth)
        arena = materialize(rows)
        attach(node, arena, depth_limit=depth)
        return arena.top_level()


def to_hierarchy(
    node: Any,
    fields: Sequence[str],
    *,
    key_field: str = "id",
    children_field: str = "children",
) -> dict[str, Any]:
    """Convert a loaded subtree into nested dicts.

    The output has the shape BulkSynchronizer.sync() accepts. Nodes whose
    children were never loaded get no `children` key.

    Args:
        node: Root of the subtree (children already read)
        fields: Attributes to copy from each record
        key_field: Output key holding the record key
        children_field: Output key holding the child list
    """
    data: dict[str, Any] = {key_field: getattr(node, key_field)}
    for name in fields:
        data[name] = getattr(node, name)

    match get_children_state(node):
        case Loaded(nodes):
            data[children_field] = [
                to_hierarchy(child, fields, key_field=key_field, children_field=children_field)
                for child in nodes
            ]
        case Empty():
            data[children_field] = []

    return data


__all__ = [
    "EMPTY",
    "UNLOADED",
    "ArenaNode",
    "ChildrenState",
    "Empty",
    "HierarchyArena",
    "HierarchyReader",
    "Loaded",
    "Unloaded",
    "attach",
    "children_state",
    "get_cached_parent",
    "get_children_state",
    "invalidate_children",
    "materialize",
    "set_cached_parent",
    "set_children_state",
    "to_hierarchy",
]
