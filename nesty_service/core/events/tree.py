"""Events fired by whole-subtree deletes."""

from __future__ import annotations

from typing import Any, ClassVar

from pydantic import Field

from nesty_service.core.events.base import DomainEvent


class SubtreeDeletedEvent(DomainEvent):
    """A non-root node and all its descendants were deleted.

    `left` and `right` are the interval the subtree occupied before the
    gap was closed.
    """

    event_type: ClassVar[str] = "tree.subtree_deleted"

    tree_id: int
    node_id: Any
    left: int = Field(ge=1)
    right: int = Field(ge=2)
    deleted_count: int = Field(ge=0)


class TreeDeletedEvent(DomainEvent):
    """Every row of a tree was deleted."""

    event_type: ClassVar[str] = "tree.deleted"

    tree_id: int
    root_id: Any
    deleted_count: int = Field(ge=0)


__all__ = ["SubtreeDeletedEvent", "TreeDeletedEvent"]
