# tests/repositories/test_tree.py
"""Tests for nestedrbac/repositories/tree.py module."""

import random
from asyncio import CancelledError, create_task, gather, sleep

import pytest
from sqlalchemy import update

from nestedrbac.configs import Settings
from nestedrbac.db import Database
from nestedrbac.errors import (
    ConstraintViolationError,
    InvalidOperationError,
    MutationTimeoutError,
    NotFoundError,
)
from nestedrbac.models import RoleDB
from nestedrbac.repositories import IntervalTreeStore


async def snapshot(store: IntervalTreeStore[RoleDB]) -> list[tuple[int | None, int, int]]:
    return [(node.id, node.lft, node.rght) for node, _ in await store.full_tree()]


async def assert_nested_set(store: IntervalTreeStore[RoleDB]) -> None:
    """Check proper nesting, density and the single root from Python."""
    nodes = [node for node, _ in await store.full_tree()]
    bounds = sorted([node.lft for node in nodes] + [node.rght for node in nodes])
    assert bounds == list(range(bounds[0], bounds[0] + 2 * len(nodes)))

    roots = [node for node in nodes if node.lft == bounds[0]]
    assert len(roots) == 1
    assert roots[0].rght == bounds[-1]

    for node in nodes:
        assert (node.rght - node.lft) % 2 == 1
        inside = [other for other in nodes if node.lft < other.lft < node.rght]
        assert all(other.rght < node.rght for other in inside)
        assert len(inside) == (node.rght - node.lft - 1) // 2


class TestInsertChild:
    """Tests for leftmost child insertion."""

    async def test_seeded_root_bounds(self, role_store: IntervalTreeStore[RoleDB]) -> None:
        """Reset seeds a single root at (0, 1)."""
        root = await role_store.root()
        assert (root.lft, root.rght) == (0, 1)
        assert await role_store.count() == 1

    async def test_children_are_inserted_leftmost(
        self,
        role_store: IntervalTreeStore[RoleDB],
        root_id: int,
    ) -> None:
        """A second child lands left of the first and the root widens by two each time."""
        a = await role_store.insert_child(root_id, title="a")
        node_a = await role_store.get(a)
        assert (node_a.lft, node_a.rght) == (1, 2)
        assert (await role_store.get(root_id)).rght == 3

        b = await role_store.insert_child(root_id, title="b")
        node_a = await role_store.get(a)
        node_b = await role_store.get(b)
        root = await role_store.get(root_id)

        assert (root.lft, root.rght) == (0, 5)
        assert (node_b.lft, node_b.rght) == (1, 2)
        assert (node_a.lft, node_a.rght) == (3, 4)
        assert node_b.rght < node_a.lft
        for node in (node_a, node_b):
            assert root.lft < node.lft < node.rght < root.rght
        assert [child.id for child in await role_store.children(root_id)] == [b, a]

    async def test_missing_parent(self, role_store: IntervalTreeStore[RoleDB]) -> None:
        """Inserting under an absent parent raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await role_store.insert_child(9999, title="orphan")

    async def test_second_root_rejected(self, role_store: IntervalTreeStore[RoleDB]) -> None:
        """A root can only be seeded into an empty table."""
        with pytest.raises(InvalidOperationError):
            await role_store.insert_child(None, title="another-root")
        assert await role_store.count() == 1


class TestInsertSibling:
    """Tests for sibling insertion."""

    async def test_sibling_goes_right_of_subtree(
        self,
        role_store: IntervalTreeStore[RoleDB],
        root_id: int,
    ) -> None:
        """The sibling is placed after the whole subtree of its left neighbour."""
        a = await role_store.insert_child(root_id, title="a")
        await role_store.insert_child(a, title="a1")
        b = await role_store.insert_sibling(a, title="b")

        node_a = await role_store.get(a)
        node_b = await role_store.get(b)
        assert node_b.lft == node_a.rght + 1
        assert [child.id for child in await role_store.children(root_id)] == [a, b]
        await assert_nested_set(role_store)

    async def test_sibling_of_root_rejected(
        self,
        role_store: IntervalTreeStore[RoleDB],
        root_id: int,
    ) -> None:
        """The root has no siblings."""
        with pytest.raises(InvalidOperationError):
            await role_store.insert_sibling(root_id, title="second-root")


class TestDelete:
    """Tests for node and subtree deletion."""

    async def test_delete_node_promotes_children(
        self,
        role_store: IntervalTreeStore[RoleDB],
        root_id: int,
    ) -> None:
        """Children of a deleted node move up to its parent."""
        a = await role_store.insert_child(root_id, title="a")
        a1 = await role_store.insert_child(a, title="a1")
        a2 = await role_store.insert_sibling(a1, title="a2")
        b = await role_store.insert_sibling(a, title="b")

        assert await role_store.delete_node(a) == [a]

        assert [child.id for child in await role_store.children(root_id)] == [a1, a2, b]
        assert await role_store.depth(a1) == 1
        assert not await role_store.exists(a)
        await assert_nested_set(role_store)

    async def test_delete_subtree(self, role_store: IntervalTreeStore[RoleDB], root_id: int) -> None:
        """A subtree disappears and the bounds to its right close the gap."""
        a = await role_store.insert_child(root_id, title="a")
        a1 = await role_store.insert_child(a, title="a1")
        a11 = await role_store.insert_child(a1, title="a11")
        b = await role_store.insert_sibling(a, title="b")

        removed = await role_store.delete_subtree(a)

        assert removed == [a, a1, a11]
        assert await role_store.count() == 2
        node_b = await role_store.get(b)
        assert (node_b.lft, node_b.rght) == (1, 2)
        await assert_nested_set(role_store)

    async def test_delete_root_leaves_table_unchanged(
        self,
        role_store: IntervalTreeStore[RoleDB],
        root_id: int,
    ) -> None:
        """Deleting the root fails and every bound stays where it was."""
        a = await role_store.insert_child(root_id, title="a")
        await role_store.insert_child(a, title="a1")
        before = await snapshot(role_store)

        with pytest.raises(InvalidOperationError):
            await role_store.delete_node(root_id)
        with pytest.raises(InvalidOperationError):
            await role_store.delete_subtree(root_id)

        assert await snapshot(role_store) == before

    async def test_delete_missing(self, role_store: IntervalTreeStore[RoleDB]) -> None:
        """Deleting an absent node raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await role_store.delete_node(4242)
        with pytest.raises(NotFoundError):
            await role_store.delete_subtree(4242)

    async def test_reinsert_after_subtree_delete(
        self,
        role_store: IntervalTreeStore[RoleDB],
        root_id: int,
    ) -> None:
        """Deleting a subtree then inserting under the same parent keeps the table valid."""
        a = await role_store.insert_child(root_id, title="a")
        a1 = await role_store.insert_child(a, title="a1")
        await role_store.insert_child(a1, title="a11")

        await role_store.delete_subtree(a1)
        replacement = await role_store.insert_child(a, title="a1")

        assert replacement != a1
        assert (await role_store.parent(replacement)).id == a  # type: ignore[union-attr]
        await role_store.verify()
        await assert_nested_set(role_store)


class TestReads:
    """Tests for read queries."""

    @pytest.fixture
    async def tree(self, role_store: IntervalTreeStore[RoleDB], root_id: int) -> dict[str, int]:
        """
        Build the tree used by the read tests.

        root
        ├── a
        │   ├── a1
        │   └── a2
        │       └── a21
        └── b
        """
        ids = {"root": root_id}
        ids["a"] = await role_store.insert_child(root_id, title="a")
        ids["b"] = await role_store.insert_sibling(ids["a"], title="b")
        ids["a1"] = await role_store.insert_child(ids["a"], title="a1")
        ids["a2"] = await role_store.insert_sibling(ids["a1"], title="a2")
        ids["a21"] = await role_store.insert_child(ids["a2"], title="a21")
        return ids

    async def test_children(self, role_store: IntervalTreeStore[RoleDB], tree: dict[str, int]) -> None:
        """Only direct children are returned, ordered by left bound."""
        children = await role_store.children(tree["a"])
        assert [child.title for child in children] == ["a1", "a2"]
        assert await role_store.children(tree["b"]) == []

    async def test_children_filtered_by_title(
        self,
        role_store: IntervalTreeStore[RoleDB],
        tree: dict[str, int],
    ) -> None:
        """A grandchild with the requested title is not a child."""
        assert await role_store.children(tree["root"], title="a21") == []
        matches = await role_store.children(tree["a2"], title="a21")
        assert [match.id for match in matches] == [tree["a21"]]

    async def test_children_in_one_statement(
        self,
        role_store: IntervalTreeStore[RoleDB],
        tree: dict[str, int],
        statement_log: list[str],
    ) -> None:
        """The parent lookup and its children are read by a single SELECT."""
        statement_log.clear()
        children = await role_store.children(tree["a"], title="a2")

        assert [child.id for child in children] == [tree["a2"]]
        assert len([statement for statement in statement_log if statement.startswith("SELECT")]) == 1

    async def test_children_of_missing_node(self, role_store: IntervalTreeStore[RoleDB]) -> None:
        with pytest.raises(NotFoundError):
            await role_store.children(31337)

    async def test_descendants_relative_depth(
        self,
        role_store: IntervalTreeStore[RoleDB],
        tree: dict[str, int],
    ) -> None:
        """Depth counts from the queried node by default."""
        result = await role_store.descendants(tree["a"])
        assert [(node.title, depth) for node, depth in result] == [("a1", 1), ("a2", 1), ("a21", 2)]

    async def test_descendants_absolute_depth(
        self,
        role_store: IntervalTreeStore[RoleDB],
        tree: dict[str, int],
    ) -> None:
        """Absolute depth counts from the tree root."""
        result = await role_store.descendants(tree["a"], absolute_depth=True)
        assert [(node.title, depth) for node, depth in result] == [("a1", 2), ("a2", 2), ("a21", 3)]

    async def test_descendant_count(self, role_store: IntervalTreeStore[RoleDB], tree: dict[str, int]) -> None:
        assert await role_store.descendant_count(tree["root"]) == 5
        assert await role_store.descendant_count(tree["a"]) == 3
        assert await role_store.descendant_count(tree["b"]) == 0

    async def test_path_and_depth(self, role_store: IntervalTreeStore[RoleDB], tree: dict[str, int]) -> None:
        """The path runs root first and is one longer than the depth."""
        for node_id in tree.values():
            path = await role_store.path(node_id)
            assert path[0].id == tree["root"]
            assert path[-1].id == node_id
            assert len(path) == await role_store.depth(node_id) + 1

        assert [node.title for node in await role_store.path(tree["a21"])] == ["root", "a", "a2", "a21"]

    async def test_parent(self, role_store: IntervalTreeStore[RoleDB], tree: dict[str, int]) -> None:
        assert await role_store.parent(tree["root"]) is None
        parent = await role_store.parent(tree["a21"])
        assert parent is not None
        assert parent.id == tree["a2"]

    async def test_every_node_is_a_child_of_its_parent_once(
        self,
        role_store: IntervalTreeStore[RoleDB],
        tree: dict[str, int],
    ) -> None:
        for node_id in tree.values():
            parent = await role_store.parent(node_id)
            if parent is None:
                continue
            siblings = [child.id for child in await role_store.children(parent.id)]  # type: ignore[arg-type]
            assert siblings.count(node_id) == 1

    async def test_sibling_at(self, role_store: IntervalTreeStore[RoleDB], tree: dict[str, int]) -> None:
        """Offsets move along the parent's children and never wrap."""
        right = await role_store.sibling_at(tree["a1"], 1)
        assert right is not None
        assert right.id == tree["a2"]

        left = await role_store.sibling_at(tree["a2"], -1)
        assert left is not None
        assert left.id == tree["a1"]

        same = await role_store.sibling_at(tree["a1"], 0)
        assert same is not None
        assert same.id == tree["a1"]

        assert await role_store.sibling_at(tree["a1"], -1) is None
        assert await role_store.sibling_at(tree["a2"], 1) is None
        assert await role_store.sibling_at(tree["a1"], -2) is None
        assert await role_store.sibling_at(tree["root"], 1) is None

    async def test_full_tree(self, role_store: IntervalTreeStore[RoleDB], tree: dict[str, int]) -> None:
        result = await role_store.full_tree()
        assert [(node.title, depth) for node, depth in result] == [
            ("root", 0),
            ("a", 1),
            ("a1", 2),
            ("a2", 2),
            ("a21", 3),
            ("b", 1),
        ]

    async def test_get_missing(self, role_store: IntervalTreeStore[RoleDB]) -> None:
        with pytest.raises(NotFoundError):
            await role_store.get(31337)
        with pytest.raises(NotFoundError):
            await role_store.path(31337)


class TestLeaves:
    """Tests for leaf queries on a five node tree."""

    async def test_only_grandchildren_when_every_child_has_one(
        self,
        role_store: IntervalTreeStore[RoleDB],
        root_id: int,
    ) -> None:
        a = await role_store.insert_child(root_id, title="a")
        b = await role_store.insert_sibling(a, title="b")
        a1 = await role_store.insert_child(a, title="a1")
        b1 = await role_store.insert_child(b, title="b1")

        leaves = await role_store.leaves()
        assert [leaf.id for leaf in leaves] == [a1, b1]

    async def test_childless_children_are_leaves(
        self,
        role_store: IntervalTreeStore[RoleDB],
        root_id: int,
    ) -> None:
        a = await role_store.insert_child(root_id, title="a")
        b = await role_store.insert_sibling(a, title="b")
        a1 = await role_store.insert_child(a, title="a1")
        a2 = await role_store.insert_sibling(a1, title="a2")

        assert [leaf.id for leaf in await role_store.leaves()] == [a1, a2, b]

    async def test_leaves_under_parent(self, role_store: IntervalTreeStore[RoleDB], root_id: int) -> None:
        """Restricting to a parent excludes the parent and everything outside it."""
        a = await role_store.insert_child(root_id, title="a")
        await role_store.insert_sibling(a, title="b")
        a1 = await role_store.insert_child(a, title="a1")

        assert [leaf.id for leaf in await role_store.leaves(a)] == [a1]
        assert await role_store.leaves(a1) == []


class TestRandomInterleavings:
    """Invariants hold after every step of seeded random mutation sequences."""

    @pytest.mark.parametrize("seed", [1, 7, 42, 2024, 99991])
    async def test_invariants_hold(
        self,
        role_store: IntervalTreeStore[RoleDB],
        root_id: int,
        seed: int,
    ) -> None:
        rng = random.Random(seed)
        for step in range(30):
            ids = [node.id for node, _ in await role_store.full_tree()]
            others = [node_id for node_id in ids if node_id != root_id]
            operation = rng.choice(["child", "child", "sibling", "node", "subtree"]) if others else "child"

            if operation == "child":
                await role_store.insert_child(rng.choice(ids), title=f"n{step}")  # type: ignore[arg-type]
            elif operation == "sibling":
                await role_store.insert_sibling(rng.choice(others), title=f"n{step}")  # type: ignore[arg-type]
            elif operation == "node":
                await role_store.delete_node(rng.choice(others))  # type: ignore[arg-type]
            else:
                await role_store.delete_subtree(rng.choice(others))  # type: ignore[arg-type]

            await role_store.verify()
            await assert_nested_set(role_store)


class TestConcurrentMutations:
    """Mutations started together are applied one at a time."""

    async def test_gathered_mutations(self, role_store: IntervalTreeStore[RoleDB], root_id: int) -> None:
        """Thirty inserts and deletes issued at once leave a valid tree."""
        ids = [await role_store.insert_child(root_id, title=f"c{i}") for i in range(10)]

        await gather(
            *(role_store.insert_child(root_id, title=f"r{i}") for i in range(10)),
            *(role_store.insert_sibling(ids[i], title=f"s{i}") for i in range(5)),
            *(role_store.delete_node(ids[i]) for i in range(5, 10)),
            *(role_store.insert_child(ids[i], title=f"g{i}") for i in range(5)),
        )

        assert await role_store.count() == 26
        await role_store.verify()
        await assert_nested_set(role_store)

    async def test_two_handles_on_one_file(
        self,
        role_store: IntervalTreeStore[RoleDB],
        root_id: int,
        test_settings: Settings,
    ) -> None:
        """Stores on separate engines queue on the database write lock."""
        other = Database(test_settings)
        other_store = IntervalTreeStore(other, RoleDB)
        try:
            await gather(
                *(role_store.insert_child(root_id, title=f"a{i}") for i in range(10)),
                *(other_store.insert_child(root_id, title=f"b{i}") for i in range(10)),
            )
        finally:
            await other.close()

        assert await role_store.count() == 21
        await role_store.verify()
        await assert_nested_set(role_store)


class TestMutationSafety:
    """Tests for rollback, timeout and invariant detection."""

    async def test_domain_error_rolls_back(self, role_store: IntervalTreeStore[RoleDB], root_id: int) -> None:
        """Steps composed in one mutation are undone together."""
        with pytest.raises(InvalidOperationError):
            async with role_store.mutation() as session:
                await role_store.insert_child(root_id, session=session, title="a")
                await role_store.delete_node(root_id, session=session)

        assert await role_store.count() == 1
        root = await role_store.root()
        assert (root.lft, root.rght) == (0, 1)

    async def test_density_violation_detected_before_commit(
        self,
        role_store: IntervalTreeStore[RoleDB],
        root_id: int,
    ) -> None:
        """A corrupted bound inside a mutation is caught and rolled back."""
        child = await role_store.insert_child(root_id, title="a")
        before = await snapshot(role_store)

        with pytest.raises(ConstraintViolationError):
            async with role_store.mutation() as session:
                await session.execute(
                    update(role_store.table)
                    .where(role_store.columns.id == child)
                    .values(rght=role_store.columns.rght + 1),
                )

        assert await snapshot(role_store) == before

    async def test_verify_detects_partial_overlap(
        self,
        role_store: IntervalTreeStore[RoleDB],
        root_id: int,
    ) -> None:
        """Dense bounds can still overlap partially; the full audit catches it."""
        role_store.database.settings.VERIFY_INVARIANTS = False
        a = await role_store.insert_child(root_id, title="a")
        b = await role_store.insert_sibling(a, title="b")
        c = await role_store.insert_sibling(b, title="c")

        async with role_store.mutation() as session:
            for node_id, (lft, rght) in {a: (1, 4), b: (2, 5), c: (3, 6)}.items():
                await session.execute(
                    update(role_store.table).where(role_store.columns.id == node_id).values(lft=lft, rght=rght),
                )

        with pytest.raises(ConstraintViolationError, match="overlapping"):
            await role_store.verify()

    async def test_timeout_rolls_back(self, role_store: IntervalTreeStore[RoleDB], root_id: int) -> None:
        """A mutation exceeding its budget raises MutationTimeoutError and leaves no trace."""
        role_store.database.settings.MUTATION_TIMEOUT = 0.2

        with pytest.raises(MutationTimeoutError):
            async with role_store.mutation() as session:
                await role_store.insert_child(root_id, session=session, title="slow")
                await sleep(5)

        assert await role_store.count() == 1

    async def test_cancellation_rolls_back_and_releases_lock(
        self,
        role_store: IntervalTreeStore[RoleDB],
        root_id: int,
    ) -> None:
        """A cancelled mutation leaves the table unchanged and later mutations proceed."""

        async def slow_insert() -> None:
            async with role_store.mutation() as session:
                await role_store.insert_child(root_id, session=session, title="cancelled")
                await sleep(5)

        task = create_task(slow_insert())
        await sleep(0.2)
        task.cancel()
        with pytest.raises(CancelledError):
            await task

        assert await role_store.count() == 1
        assert not role_store.database.mutation_lock(role_store.table_name).locked()
        await role_store.insert_child(root_id, title="after")
        assert await role_store.count() == 2
