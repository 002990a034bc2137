"""Tests for children materialization, ancestors, paths and lookups."""

from __future__ import annotations

import pytest

from nesty_service.core.database.exceptions import (
    InvalidFormatError,
    NodeNotFoundError,
    NodeNotPersistedError,
)
from nesty_service.core.database.hierarchy import EMPTY, UNLOADED, Loaded, PathFormat, to_hierarchy
from tests.fixtures.tree_models import Category, build_tree

SHAPE = ("R", [("A", [("A1", []), ("A2", [])]), ("B", [])])


@pytest.mark.unit
class TestChildren:
    async def test_reads_and_links_whole_subtree(self, tree, db_session):
        nodes = await build_tree(tree, db_session, SHAPE)
        root = await tree.reload(db_session, nodes["R"])

        children = await tree.children(db_session, root)

        assert [c.name for c in children] == ["A", "B"]
        a, b = children
        assert a is nodes["A"]
        assert [c.name for c in a.children] == ["A1", "A2"]
        assert b.children == []
        assert b.children_state is EMPTY
        assert isinstance(root.children_state, Loaded)
        assert a.children[1].parent is a
        assert a.parent is root

    async def test_cached_children_skip_the_database(self, tree, db_session, query_counter):
        nodes = await build_tree(tree, db_session, SHAPE)
        root = await tree.reload(db_session, nodes["R"])
        await tree.children(db_session, root)
        leaf = await tree.reload(db_session, nodes["B"])
        assert await tree.children(db_session, leaf) == []

        before = len(query_counter)
        assert [c.name for c in await tree.children(db_session, root)] == ["A", "B"]
        assert await tree.children(db_session, leaf) == []
        assert len(query_counter) == before

        await tree.children(db_session, root, refresh=True)
        assert len(query_counter) == before + 1

    async def test_depth_limit(self, tree, db_session):
        nodes = await build_tree(tree, db_session, SHAPE)
        root = await tree.reload(db_session, nodes["R"])

        children = await tree.children(db_session, root, depth=1)

        assert [c.name for c in children] == ["A", "B"]
        assert children[0].children is None
        assert children[0].children_state is UNLOADED

    async def test_two_levels(self, tree, db_session):
        nodes = await build_tree(tree, db_session, ("R", [("A", [("A1", [("A11", [])])])]))
        root = await tree.reload(db_session, nodes["R"])

        (a,) = await tree.children(db_session, root, depth=2)

        assert [c.name for c in a.children] == ["A1"]
        assert a.children[0].children is None

    async def test_mutation_invalidates_cache(self, tree, db_session):
        nodes = await build_tree(tree, db_session, SHAPE)
        root = await tree.reload(db_session, nodes["R"])
        await tree.children(db_session, root)

        await tree.last_child_of(db_session, Category(name="C"), root)

        assert root.children is None
        assert [c.name for c in await tree.children(db_session, root)] == ["A", "B", "C"]

    async def test_unsaved_node(self, tree, db_session):
        with pytest.raises(NodeNotPersistedError):
            await tree.children(db_session, Category(name="X"))

    async def test_depth_must_be_positive(self, tree, db_session):
        root = await tree.make_root(db_session, Category(name="R"))

        with pytest.raises(ValueError, match="depth"):
            await tree.children(db_session, root, depth=0)

    async def test_to_hierarchy_round_trip_shape(self, tree, db_session):
        nodes = await build_tree(tree, db_session, ("R", [("A", [("A1", [])]), ("B", [])]))
        root = await tree.reload(db_session, nodes["R"])
        await tree.children(db_session, root)

        data = to_hierarchy(root, ["name"])

        assert data["name"] == "R"
        assert [c["name"] for c in data["children"]] == ["A", "B"]
        assert data["children"][0]["children"] == [
            {"id": nodes["A1"].id, "name": "A1", "children": []}
        ]


@pytest.mark.unit
class TestAncestorsAndPath:
    async def test_ancestors_root_first(self, tree, db_session):
        nodes = await build_tree(tree, db_session, SHAPE)
        a2 = await tree.reload(db_session, nodes["A2"])

        assert [n.name for n in await tree.ancestors(db_session, a2)] == ["R", "A"]
        assert [n.name for n in await tree.ancestors(db_session, a2, include_self=True)] == [
            "R",
            "A",
            "A2",
        ]

    async def test_root_has_no_ancestors_without_query(self, tree, db_session, query_counter):
        root = await tree.make_root(db_session, Category(name="R"))
        before = len(query_counter)

        assert await tree.ancestors(db_session, root) == []
        assert await tree.path(db_session, root) == ["R"]
        assert len(query_counter) == before

    async def test_path_formats(self, tree, db_session):
        nodes = await build_tree(tree, db_session, SHAPE)
        a1 = await tree.reload(db_session, nodes["A1"])

        assert await tree.path(db_session, a1) == ["R", "A", "A1"]
        assert await tree.path(db_session, a1, fmt="string") == "R/A/A1"
        assert await tree.path(db_session, a1, fmt=PathFormat.STRING, separator=" > ") == "R > A > A1"
        assert await tree.path(db_session, a1, lambda n: n.name.lower()) == ["r", "a", "a1"]
        assert await tree.path(db_session, a1, "id") == [nodes["R"].id, nodes["A"].id, a1.id]

    async def test_invalid_format(self, tree, db_session, query_counter):
        root = await tree.make_root(db_session, Category(name="R"))
        before = len(query_counter)

        with pytest.raises(InvalidFormatError) as exc_info:
            await tree.path(db_session, root, fmt="json")

        assert exc_info.value.allowed == ("array", "string")
        assert len(query_counter) == before


@pytest.mark.unit
class TestLookups:
    async def test_get_parent(self, tree, db_session):
        nodes = await build_tree(tree, db_session, SHAPE)
        a1 = await tree.reload(db_session, nodes["A1"])
        b = await tree.reload(db_session, nodes["B"])
        root = await tree.reload(db_session, nodes["R"])

        assert (await tree.get_parent(db_session, a1)).name == "A"
        assert (await tree.get_parent(db_session, b)).name == "R"
        assert await tree.get_parent(db_session, root) is None

    async def test_reload_refreshes_stale_interval(self, tree, db_session):
        nodes = await build_tree(tree, db_session, ("R", [("A", []), ("B", [])]))
        b = nodes["B"]
        assert (b.lft, b.rgt) == (4, 5)

        await tree.first_child_of(db_session, Category(name="F"), nodes["R"])
        assert (b.lft, b.rgt) == (4, 5)

        await tree.reload(db_session, b)
        assert (b.lft, b.rgt) == (6, 7)

    async def test_reload_errors(self, tree, db_session):
        with pytest.raises(NodeNotPersistedError):
            await tree.reload(db_session, Category(name="X"))

        nodes = await build_tree(tree, db_session, ("R", [("A", [])]))
        await tree.delete_with_children(db_session, nodes["A"])

        with pytest.raises(NodeNotFoundError):
            await tree.store.get_or_raise(db_session, nodes["A"].id)
