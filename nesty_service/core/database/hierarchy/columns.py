"""Column mapping for nested-set models."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class NestedSetColumns:
    """Names of the model attributes the engine reads and writes.

    Built once (usually from NestedSetSettings.to_columns()) and handed to
    the engine; never mutated afterwards.

    Attributes:
        left: Left boundary of the node interval
        right: Right boundary of the node interval
        tree: Tree partition identifier
        name: Default column for path() output
    """

    left: str = "lft"
    right: str = "rgt"
    tree: str = "tree_id"
    name: str = "name"

    @property
    def interval(self) -> tuple[str, str, str]:
        """The three columns owned exclusively by the engine."""
        return (self.left, self.right, self.tree)


DEFAULT_COLUMNS = NestedSetColumns()

__all__ = ["DEFAULT_COLUMNS", "NestedSetColumns"]
