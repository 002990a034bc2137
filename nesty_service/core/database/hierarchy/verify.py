"""Full interval invariant checks for one tree.

check_intervals() is a pure function over `(key, left, right)` rows in left
order, so it can be tested without a database. verify_tree() loads a tree
and runs it.

Checked, per tree:
    - every left < right and every value is positive
    - exactly one row with left == 1, and it is the outermost row
    - the root's right equals 2 * row count
    - no two intervals partially overlap
    - children tile their parent: each child starts right after the previous
      sibling (or the parent's left) and the last child ends at parent.right - 1
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from nesty_service.core.database.exceptions import InvariantViolationError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

    from nesty_service.core.database.hierarchy.store import RangeStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TreeReport:
    """Outcome of verify_tree()."""

    tree_id: int
    node_count: int
    errors: tuple[str, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return not self.errors


def check_intervals(rows: Sequence[tuple[Any, int, int]]) -> list[str]:
    """Return every invariant violation found in `rows` (empty list when valid).

    Args:
        rows: `(key, left, right)` for a whole tree, ordered by left

    Example:
        >>> check_intervals([(1, 1, 6), (2, 2, 3), (3, 4, 5)])
        []
        >>> check_intervals([(1, 1, 6), (2, 2, 3)])
        ['root 1: right 6 != 2 * 2', 'node 1: children end at 3, expected 5']
    """
    if not rows:
        return []

    errors: list[str] = []
    for key, left, right in rows:
        if left <= 0 or right <= 0:
            errors.append(f"node {key}: non-positive interval [{left}, {right}]")
        if left >= right:
            errors.append(f"node {key}: left {left} >= right {right}")

    roots = [key for key, left, _ in rows if left == 1]
    if len(roots) != 1:
        errors.append(f"expected exactly one root, found {len(roots)}")

    root_key, root_left, root_right = rows[0]
    if root_left == 1 and root_right != 2 * len(rows):
        errors.append(f"root {root_key}: right {root_right} != 2 * {len(rows)}")

    # Each stack entry: (key, left, right, next expected child left)
    stack: list[list[Any]] = []
    for key, left, right in rows:
        while stack and stack[-1][2] < left:
            _close(stack.pop(), errors)

        if stack:
            parent = stack[-1]
            if right > parent[2]:
                errors.append(
                    f"node {key}: [{left}, {right}] overlaps parent {parent[0]} [{parent[1]}, {parent[2]}]"
                )
            elif left != parent[3]:
                errors.append(f"node {key}: starts at {left}, expected {parent[3]}")
            parent[3] = right + 1
        elif key != root_key:
            errors.append(f"node {key}: [{left}, {right}] lies outside the root")

        stack.append([key, left, right, left + 1])

    while stack:
        _close(stack.pop(), errors)

    return errors


def _close(entry: list[Any], errors: list[str]) -> None:
    key, _, right, expected = entry
    if expected != right:
        errors.append(f"node {key}: children end at {expected - 1}, expected {right - 1}")


async def verify_tree(store: RangeStore[Any], session: AsyncSession, tree: int) -> TreeReport:
    """Load one tree and check every interval invariant."""
    rows = await store.select_intervals(session, tree)
    return TreeReport(tree_id=tree, node_count=len(rows), errors=tuple(check_intervals(rows)))


async def assert_valid_tree(store: RangeStore[Any], session: AsyncSession, tree: int) -> TreeReport:
    """Like verify_tree(), but raise on any violation.

    Raises:
        InvariantViolationError: If the tree breaks an invariant
    """
    report = await verify_tree(store, session, tree)
    if not report.ok:
        logger.error(
            "Tree invariant violation",
            extra={"tree_id": tree, "errors": list(report.errors)},
        )
        raise InvariantViolationError(
            f"Tree {tree} violates nested-set invariants",
            tree_id=tree,
            errors=list(report.errors),
        )
    return report


__all__ = [
    "TreeReport",
    "assert_valid_tree",
    "check_intervals",
    "verify_tree",
]
