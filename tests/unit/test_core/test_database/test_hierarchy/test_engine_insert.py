"""Tests for creating roots, children and siblings."""

from __future__ import annotations

import pytest

from nesty_service.core.database.exceptions import (
    InvalidMoveError,
    InvalidPositionError,
    NodeNotPersistedError,
)
from nesty_service.core.database.hierarchy import Position
from tests.fixtures.tree_models import Category, build_tree, intervals


@pytest.mark.unit
class TestMakeRoot:
    async def test_new_node_becomes_first_tree(self, tree, db_session):
        root = Category(name="R")

        await tree.make_root(db_session, root)

        assert (root.lft, root.rgt, root.tree_id) == (1, 2, 1)
        assert root.id is not None
        assert tree.is_root(root)
        assert root.is_root

    async def test_each_new_root_gets_next_tree(self, tree, db_session):
        first = await tree.make_root(db_session, Category(name="R1"))
        second = await tree.make_root(db_session, Category(name="R2"))

        assert first.tree_id == 1
        assert second.tree_id == 2
        assert [r.name for r in await tree.get_roots(db_session)] == ["R1", "R2"]

    async def test_existing_root_is_left_alone(self, tree, db_session):
        nodes = await build_tree(tree, db_session, ("R", [("A", [])]))
        before = await intervals(db_session)

        await tree.make_root(db_session, nodes["R"])

        assert await intervals(db_session) == before

    async def test_pending_node_is_not_flushed_early(self, tree, db_session):
        root = Category(name="R")
        db_session.add(root)

        await tree.make_root(db_session, root)

        assert (root.lft, root.rgt) == (1, 2)


@pytest.mark.unit
class TestChildOf:
    async def test_build_and_verify_scenario(self, tree, db_session):
        root = await tree.make_root(db_session, Category(name="R"))
        assert (root.lft, root.rgt, root.tree_id) == (1, 2, 1)

        x = await tree.last_child_of(db_session, Category(name="X"), root)
        assert (x.lft, x.rgt) == (2, 3)
        assert (root.lft, root.rgt) == (1, 4)

        y = await tree.last_child_of(db_session, Category(name="Y"), root)
        assert (y.lft, y.rgt) == (4, 5)
        assert (root.lft, root.rgt) == (1, 6)

        children = await tree.children(db_session, root)
        assert [c.name for c in children] == ["X", "Y"]
        assert await tree.path(db_session, y) == ["R", "Y"]

    async def test_first_child_goes_before_existing_children(self, tree, db_session):
        nodes = await build_tree(tree, db_session, ("R", [("A", [])]))

        await tree.first_child_of(db_session, Category(name="F"), nodes["R"])

        assert await intervals(db_session) == {
            "R": (1, 6, 1),
            "F": (2, 3, 1),
            "A": (4, 5, 1),
        }

    async def test_nested_children_widen_every_ancestor(self, tree, db_session):
        await build_tree(
            tree,
            db_session,
            ("R", [("A", [("A1", []), ("A2", [])]), ("B", [])]),
        )

        assert await intervals(db_session) == {
            "R": (1, 10, 1),
            "A": (2, 7, 1),
            "A1": (3, 4, 1),
            "A2": (5, 6, 1),
            "B": (8, 9, 1),
        }

    async def test_position_accepts_strings(self, tree, db_session):
        root = await tree.make_root(db_session, Category(name="R"))

        node = await tree.child_of(db_session, Category(name="A"), root, "first")

        assert (node.lft, node.rgt) == (2, 3)

    async def test_invalid_position(self, tree, db_session):
        root = await tree.make_root(db_session, Category(name="R"))

        with pytest.raises(InvalidPositionError) as exc_info:
            await tree.child_of(db_session, Category(name="A"), root, "middle")

        assert exc_info.value.allowed == ("first", "last")
        assert await intervals(db_session) == {"R": (1, 2, 1)}

    async def test_sibling_position_rejected_for_child(self, tree, db_session):
        root = await tree.make_root(db_session, Category(name="R"))

        with pytest.raises(InvalidPositionError):
            await tree.child_of(db_session, Category(name="A"), root, Position.NEXT)

    async def test_unsaved_parent(self, tree, db_session):
        with pytest.raises(NodeNotPersistedError) as exc_info:
            await tree.last_child_of(db_session, Category(name="A"), Category(name="P"))

        assert exc_info.value.role == "parent"


@pytest.mark.unit
class TestSiblingOf:
    async def test_previous_and_next_sibling(self, tree, db_session):
        nodes = await build_tree(tree, db_session, ("R", [("A", [])]))

        await tree.previous_sibling_of(db_session, Category(name="B"), nodes["A"])
        a = await tree.reload(db_session, nodes["A"])
        await tree.next_sibling_of(db_session, Category(name="C"), a)

        assert await intervals(db_session) == {
            "R": (1, 8, 1),
            "B": (2, 3, 1),
            "A": (4, 5, 1),
            "C": (6, 7, 1),
        }

    async def test_next_sibling_inside_nested_level(self, tree, db_session):
        nodes = await build_tree(tree, db_session, ("R", [("A", [("A1", [])]), ("B", [])]))

        await tree.sibling_of(db_session, Category(name="A2"), nodes["A1"], "next")

        assert await intervals(db_session) == {
            "R": (1, 10, 1),
            "A": (2, 7, 1),
            "A1": (3, 4, 1),
            "A2": (5, 6, 1),
            "B": (8, 9, 1),
        }

    async def test_root_cannot_get_a_sibling(self, tree, db_session):
        root = await tree.make_root(db_session, Category(name="R"))

        with pytest.raises(InvalidMoveError):
            await tree.next_sibling_of(db_session, Category(name="S"), root)

        assert await intervals(db_session) == {"R": (1, 2, 1)}

    async def test_invalid_sibling_position(self, tree, db_session):
        nodes = await build_tree(tree, db_session, ("R", [("A", [])]))

        with pytest.raises(InvalidPositionError) as exc_info:
            await tree.sibling_of(db_session, Category(name="B"), nodes["A"], "last")

        assert exc_info.value.allowed == ("previous", "next")

    async def test_unsaved_sibling(self, tree, db_session):
        with pytest.raises(NodeNotPersistedError) as exc_info:
            await tree.next_sibling_of(db_session, Category(name="A"), Category(name="S"))

        assert exc_info.value.role == "sibling"


@pytest.mark.unit
class TestPureQueries:
    async def test_size_and_descendant_count(self, tree, db_session):
        nodes = await build_tree(tree, db_session, ("R", [("A", [("A1", [])]), ("B", [])]))
        root = await tree.reload(db_session, nodes["R"])

        assert tree.size(root) == 7
        assert tree.descendant_count(root) == 3
        assert root.size == 7
        assert root.descendant_count == 3
        assert tree.size(nodes["B"]) == 1
        assert not tree.is_root(nodes["B"])
