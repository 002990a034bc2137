"""Reconcile a persisted tree with a nested input description.

Input items are mappings with an optional `id`, payload fields and an
optional `children` list (the shape to_hierarchy() produces):

    [
        {"id": 4, "name": "Books", "children": [{"name": "Poetry"}]},
        {"name": "Music"},
    ]

Items with an id are updated and re-attached as the last child of their
input parent, items without one are created there. Descendants of the root
that the input no longer mentions are deleted with their subtrees at the
end. The whole reconciliation is one transaction.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import inspect as sa_inspect

from nesty_service.core.database.exceptions import RepositoryError, RootRequiredError
from nesty_service.infra.logging import log_context

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

    from nesty_service.core.database.hierarchy.engine import NestedSetEngine

logger = logging.getLogger(__name__)


class TreeItem(BaseModel):
    """One input node. Unknown keys are payload fields."""

    id: Any | None = None
    children: list[TreeItem] = Field(default_factory=list)

    model_config = ConfigDict(extra="allow", frozen=True)

    @property
    def payload(self) -> dict[str, Any]:
        return dict(self.model_extra or {})


@dataclass(frozen=True, slots=True)
class Proceed[T]:
    """Continue the sync, persisting `node` as the root."""

    node: T


@dataclass(frozen=True, slots=True)
class Abort:
    """Stop the sync without writing anything."""

    reason: str | None = None


type PersistDecision = Proceed[Any] | Abort
type BeforePersist = Callable[[Any], PersistDecision | Awaitable[PersistDecision]]


@dataclass(slots=True)
class SyncResult[T]:
    """Outcome of BulkSynchronizer.sync().

    Attributes:
        root: The root node (None when aborted before a new root was saved)
        aborted: True when before_persist returned Abort
        reason: Reason given by Abort
        created: Keys of newly created nodes, in walk order
        updated: Keys of existing nodes that were updated and re-attached
        deleted: Keys of nodes removed because the input omitted them
    """

    root: T | None
    aborted: bool = False
    reason: str | None = None
    created: list[Any] = field(default_factory=list)
    updated: list[Any] = field(default_factory=list)
    deleted: list[Any] = field(default_factory=list)


class _Aborted(Exception):
    def __init__(self, reason: str | None) -> None:
        super().__init__(reason)
        self.reason = reason


class BulkSynchronizer[T]:
    """Uses a NestedSetEngine as its only mutation surface."""

    def __init__(self, engine: NestedSetEngine[T]) -> None:
        self.engine = engine
        self.store = engine.store
        mapper = sa_inspect(engine.model)
        reserved = {*engine.columns.interval, *(col.key for col in mapper.primary_key)}
        self._writable = frozenset(mapper.column_attrs.keys()) - reserved
        self._reserved = frozenset(reserved)

    async def sync(
        self,
        session: AsyncSession,
        items: Sequence[Mapping[str, Any] | TreeItem],
        root_key: Any | None = None,
        *,
        root_fields: Mapping[str, Any] | None = None,
        before_persist: BeforePersist | None = None,
    ) -> SyncResult[T]:
        """Make the tree under `root_key` match `items`.

        Args:
            session: Database session
            items: Top-level input items (children of the root)
            root_key: Key of an existing root, None to create a fresh root
            root_fields: Payload applied to the root before persisting
            before_persist: Called with the root; returns Proceed(node) or Abort()

        Raises:
            NodeNotFoundError: root_key or an item id does not exist
            RootRequiredError: root_key is not a root
            InvalidMoveError: the input nests a node inside itself
            pydantic.ValidationError: items are malformed (before any write)
        """
        tree_items = [TreeItem.model_validate(item) for item in items]
        store = self.store

        with log_context(operation="sync"):
            try:
                async with store.transaction(session, operation="sync"):
                    return await self._sync(session, tree_items, root_key, root_fields, before_persist)
            except _Aborted as aborted:
                logger.info("Sync aborted", extra={"root_key": root_key, "reason": aborted.reason})
                root = await store.find_by_key(session, root_key) if root_key is not None else None
                return SyncResult(root=root, aborted=True, reason=aborted.reason)

    async def _sync(
        self,
        session: AsyncSession,
        items: list[TreeItem],
        root_key: Any | None,
        root_fields: Mapping[str, Any] | None,
        before_persist: BeforePersist | None,
    ) -> SyncResult[T]:
        engine, store = self.engine, self.store

        if root_key is not None:
            root = await store.get_or_raise(session, root_key)
            if not engine.is_root(root):
                raise RootRequiredError("sync", root_key)
        else:
            root = engine.model()
        self._fill(root, root_fields or {})

        if before_persist is not None:
            decision = before_persist(root)
            if inspect.isawaitable(decision):
                decision = await decision
            match decision:
                case Abort(reason):
                    raise _Aborted(reason)
                case Proceed(node):
                    root = node
                case _:
                    raise TypeError(f"before_persist must return Proceed or Abort, got {decision!r}")

        if store.is_persisted(root):
            # Root edits must reach the row before any refresh re-reads it
            await session.flush()
        else:
            await engine.make_root(session, root)

        left, right, tree = store.interval(root)
        existing = set(
            await store.select_keys(session, store.tree == tree, store.left > left, store.right < right)
        )

        result: SyncResult[T] = SyncResult(root=root)
        await self._walk(session, items, root, existing, result)

        leftovers = await store.select_keys(session, store.pk.in_(existing), order_by=[store.left]) if existing else []
        for key in leftovers:
            node = await store.find_by_key(session, key)
            # Already removed with an earlier leftover ancestor
            if node is not None:
                await engine.delete_with_children(session, node)
        result.deleted = list(leftovers)

        await store.refresh(session, root)
        logger.info(
            "Tree synchronized",
            extra={
                "id": store.key_of(root),
                "tree_id": tree,
                "created_count": len(result.created),
                "updated_count": len(result.updated),
                "deleted_count": len(result.deleted),
                "operation": "sync",
            },
        )
        return result

    async def _walk(
        self,
        session: AsyncSession,
        items: list[TreeItem],
        parent: T,
        existing: set[Any],
        result: SyncResult[T],
    ) -> None:
        engine, store = self.engine, self.store

        for item in items:
            if item.id is not None:
                node = await store.get_or_raise(session, item.id)
                key = store.key_of(node)
                self._fill(node, item.payload)
                await engine.last_child_of(session, node, parent)
                existing.discard(key)
                result.updated.append(key)
            else:
                node = engine.model()
                self._fill(node, item.payload)
                await engine.last_child_of(session, node, parent)
                result.created.append(store.key_of(node))

            if item.children:
                await self._walk(session, item.children, node, existing, result)

    def _fill(self, node: T, values: Mapping[str, Any]) -> None:
        for name, value in values.items():
            if name in self._reserved or name == "children":
                continue
            if name not in self._writable:
                raise RepositoryError(
                    f"{self.engine.model.__name__} has no writable field {name!r}",
                    details={"field": name},
                )
            setattr(node, name, value)


__all__ = [
    "Abort",
    "BeforePersist",
    "BulkSynchronizer",
    "PersistDecision",
    "Proceed",
    "SyncResult",
    "TreeItem",
]
