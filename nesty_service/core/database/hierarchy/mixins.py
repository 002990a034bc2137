"""Mixin for models stored as nested sets.

Adds the interval columns (`lft`, `rgt`, `tree_id`) and the in-memory
navigation caches filled by subtree reads. Structural changes go through
NestedSetEngine; nothing here writes to the database.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, ClassVar

from sqlalchemy import Integer, inspect
from sqlalchemy.orm import Mapped, mapped_column

from nesty_service.core.database.hierarchy.columns import DEFAULT_COLUMNS, NestedSetColumns
from nesty_service.core.database.hierarchy.materializer import (
    Empty,
    Loaded,
    Unloaded,
    get_cached_parent,
    get_children_state,
    invalidate_children,
)

if TYPE_CHECKING:
    from nesty_service.core.database.hierarchy.materializer import ChildrenState


class NestedSetMixin:
    """Mixin for models with nested-set interval columns.

    Example:
        >>> from nesty_service.core.database import Base, IntegerPKMixin
        >>>
        >>> class Category(Base, IntegerPKMixin, NestedSetMixin):
        ...     __tablename__ = "categories"
        ...     name: Mapped[str] = mapped_column(String(255))
        >>>
        >>> engine = NestedSetEngine(Category)
        >>> electronics = Category(name="Electronics")
        >>> await engine.make_root(session, electronics)
        >>> laptops = Category(name="Laptops")
        >>> await engine.last_child_of(session, laptops, electronics)
        >>> await engine.children(session, electronics)
        [<Category Laptops>]

    Note:
        - Column attributes are named after NestedSetColumns defaults; models
          using other names declare their own columns and set
          __nested_set_columns__
        - The properties below never query the database
    """

    __allow_unmapped__ = True

    __nested_set_columns__: ClassVar[NestedSetColumns] = DEFAULT_COLUMNS

    lft: Mapped[int] = mapped_column(
        Integer,
        index=True,
        comment="Left boundary of the nested-set interval",
    )
    rgt: Mapped[int] = mapped_column(
        Integer,
        index=True,
        comment="Right boundary of the nested-set interval",
    )
    tree_id: Mapped[int] = mapped_column(
        Integer,
        index=True,
        comment="Tree partition identifier",
    )

    def _interval_value(self, column: str) -> Any:
        return getattr(self, getattr(self.__nested_set_columns__, column))

    @property
    def is_persisted(self) -> bool:
        """Whether this instance has been flushed to the database."""
        return inspect(self).has_identity

    @property
    def is_root(self) -> bool:
        """True iff left == 1."""
        return self._interval_value("left") == 1

    @property
    def size(self) -> int:
        """right - left (1 for a leaf)."""
        return self._interval_value("right") - self._interval_value("left")

    @property
    def descendant_count(self) -> int:
        """Number of descendants derived from the interval width."""
        return (self.size - 1) // 2

    @property
    def children_state(self) -> ChildrenState:
        """Cached children: Unloaded, Empty or Loaded."""
        return get_children_state(self)

    @property
    def children(self) -> list[Any] | None:
        """Cached direct children, [] when known empty, None when not loaded."""
        match get_children_state(self):
            case Loaded(nodes):
                return list(nodes)
            case Empty():
                return []
            case Unloaded():
                return None
        return None

    @property
    def parent(self) -> Any | None:
        """Parent linked by the last subtree read, None if unknown."""
        return get_cached_parent(self)

    def invalidate_children(self) -> None:
        """Forget cached children."""
        invalidate_children(self)

    def __repr__(self) -> str:
        # Loaded state only; an expired attribute must not trigger IO here
        cols = self.__nested_set_columns__
        loaded = inspect(self).dict
        name = loaded.get(cols.name)
        label = f" {name!r}" if name is not None else ""
        return (
            f"<{type(self).__name__}{label} "
            f"tree={loaded.get(cols.tree)} "
            f"[{loaded.get(cols.left)}, {loaded.get(cols.right)}]>"
        )


__all__ = [
    "NestedSetMixin",
]
