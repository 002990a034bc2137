"""Nested-set (MPTT) trees on top of SQLAlchemy.

Usage:
    from nesty_service.core.database.hierarchy import NestedSetEngine, NestedSetMixin

    class Category(Base, IntegerPKMixin, NestedSetMixin):
        name: Mapped[str] = mapped_column(String(255))

    engine = NestedSetEngine(Category)
    await engine.make_root(session, root)
    await engine.last_child_of(session, child, root)
    await engine.path(session, child, fmt="string")  # "root/child"
"""

from nesty_service.core.database.hierarchy.ancestors import AncestorResolver, PathFormat
from nesty_service.core.database.hierarchy.columns import DEFAULT_COLUMNS, NestedSetColumns
from nesty_service.core.database.hierarchy.engine import (
    EMPTY_NODE_WIDTH,
    NestedSetEngine,
    Position,
)
from nesty_service.core.database.hierarchy.gap import GapAllocator
from nesty_service.core.database.hierarchy.materializer import (
    EMPTY,
    UNLOADED,
    ChildrenState,
    Empty,
    HierarchyArena,
    HierarchyReader,
    Loaded,
    Unloaded,
    materialize,
    to_hierarchy,
)
from nesty_service.core.database.hierarchy.mixins import NestedSetMixin
from nesty_service.core.database.hierarchy.relocator import ParkedSubtree, SubtreeRelocator
from nesty_service.core.database.hierarchy.store import RangeStore
from nesty_service.core.database.hierarchy.sync import (
    Abort,
    BulkSynchronizer,
    Proceed,
    SyncResult,
    TreeItem,
)
from nesty_service.core.database.hierarchy.verify import (
    TreeReport,
    assert_valid_tree,
    check_intervals,
    verify_tree,
)

__all__ = [
    "DEFAULT_COLUMNS",
    "EMPTY",
    "EMPTY_NODE_WIDTH",
    "UNLOADED",
    "Abort",
    "AncestorResolver",
    "BulkSynchronizer",
    "ChildrenState",
    "Empty",
    "GapAllocator",
    "HierarchyArena",
    "HierarchyReader",
    "Loaded",
    "NestedSetColumns",
    "NestedSetEngine",
    "NestedSetMixin",
    "ParkedSubtree",
    "PathFormat",
    "Position",
    "Proceed",
    "RangeStore",
    "SubtreeRelocator",
    "SyncResult",
    "TreeItem",
    "TreeReport",
    "Unloaded",
    "assert_valid_tree",
    "check_intervals",
    "materialize",
    "to_hierarchy",
    "verify_tree",
]
