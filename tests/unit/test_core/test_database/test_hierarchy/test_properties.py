"""Randomized operation sequences that must keep every tree valid."""

from __future__ import annotations

import random

import pytest
from sqlalchemy import select

from nesty_service.core.database.exceptions import InvalidMoveError
from tests.fixtures.tree_models import Category

SEEDS = [7, 1234, 20240517]
STEPS = 60


async def _all_nodes(session) -> list[Category]:
    result = await session.execute(
        select(Category).order_by(Category.tree_id, Category.lft).execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def _assert_forest_valid(tree, session) -> None:
    nodes = await _all_nodes(session)
    tree_ids = {node.tree_id for node in nodes}
    for tree_id in tree_ids:
        report = await tree.verify_tree(session, tree_id)
        assert report.ok, report.errors
        assert report.node_count == sum(1 for node in nodes if node.tree_id == tree_id)
    roots = await tree.get_roots(session)
    assert {root.tree_id for root in roots} == tree_ids


@pytest.mark.unit
@pytest.mark.slow
@pytest.mark.parametrize("seed", SEEDS)
async def test_random_operations_keep_trees_valid(tree, db_session, seed):
    rng = random.Random(seed)
    counter = 0

    def new_node() -> Category:
        nonlocal counter
        counter += 1
        return Category(name=f"n{counter}")

    await tree.make_root(db_session, new_node())

    for _ in range(STEPS):
        nodes = await _all_nodes(db_session)
        if not nodes:
            await tree.make_root(db_session, new_node())
            continue

        op = rng.choice(["insert", "insert", "insert", "move", "move", "delete", "prune", "root"])
        node = rng.choice(nodes)
        reference = rng.choice(nodes)
        expected = len(nodes)

        if op == "insert":
            if tree.is_root(reference) or rng.random() < 0.5:
                await tree.child_of(db_session, new_node(), reference, rng.choice(["first", "last"]))
            else:
                await tree.sibling_of(db_session, new_node(), reference, rng.choice(["previous", "next"]))
            expected += 1
        elif op == "move":
            try:
                if tree.is_root(reference) or rng.random() < 0.5:
                    await tree.child_of(db_session, node, reference, rng.choice(["first", "last"]))
                else:
                    await tree.sibling_of(db_session, node, reference, rng.choice(["previous", "next"]))
            except InvalidMoveError:
                pass
        elif op == "delete":
            was_root = tree.is_root(node)
            removed = await tree.delete(db_session, node)
            if not was_root:
                assert removed == 1
            expected -= removed
        elif op == "prune":
            removed = await tree.delete_with_children(db_session, node)
            expected -= removed
        else:
            await tree.make_root(db_session, node)

        await _assert_forest_valid(tree, db_session)
        assert len(await _all_nodes(db_session)) == expected


@pytest.mark.unit
@pytest.mark.slow
async def test_delete_frees_exactly_two_slots(tree, db_session):
    rng = random.Random(99)
    root = Category(name="root")
    await tree.make_root(db_session, root)
    for i in range(25):
        nodes = await _all_nodes(db_session)
        await tree.last_child_of(db_session, Category(name=f"c{i}"), rng.choice(nodes))

    while True:
        nodes = [node for node in await _all_nodes(db_session) if not tree.is_root(node)]
        if not nodes:
            break
        target = rng.choice(nodes)
        root = await tree.reload(db_session, root)
        width = root.rgt

        await tree.delete(db_session, target)

        root = await tree.reload(db_session, root)
        assert root.rgt == width - 2
        report = await tree.verify_tree(db_session, root.tree_id)
        assert report.ok, report.errors
