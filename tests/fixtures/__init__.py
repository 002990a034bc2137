"""Test fixtures for pytest.

This module re-exports commonly used test models and helpers for easier importing.
"""

from .tree_models import Category, Region, Zone, build_tree, intervals

__all__ = [
    "Category",
    "Region",
    "Zone",
    "build_tree",
    "intervals",
]
