"""
Nested-set interval tree storage.

Every node of a hierarchy table carries a ``[lft, rght]`` interval and
containment of intervals encodes ancestry. Structural mutations renumber
an unbounded range of rows, so each one is a handful of declarative range
``UPDATE`` statements executed in a single serialised transaction.
"""

from asyncio import timeout
from collections.abc import AsyncGenerator, Sequence
from contextlib import asynccontextmanager
from typing import Any, NamedTuple, cast

from sqlalchemy import (
    Column,
    ColumnElement,
    Select,
    and_,
    case,
    delete,
    exists,
    func,
    select,
    text,
    union,
    update,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from nestedrbac.db.database import Database
from nestedrbac.errors.database import MutationTimeoutError, StorageFailureError
from nestedrbac.errors.tree import ConstraintViolationError, InvalidOperationError, NotFoundError
from nestedrbac.models.tree import TreeNodeBase, table_of
from nestedrbac.monitoring import get_logger

logger = get_logger(__name__)


class Bounds(NamedTuple):
    """Interval of a single node."""

    id: int
    lft: int
    rght: int

    @property
    def width(self) -> int:
        return self.rght - self.lft + 1


class IntervalTreeStore[NodeT: TreeNodeBase]:
    """
    Ordered interval tree persisted in one table.

    Every public operation opens its own session (reads) or mutation
    transaction (writes). Passing ``session=`` obtained from
    :meth:`mutation` composes several steps into one transaction.

    Attributes:
        database: Database handle providing sessions and table locks.
        model: SQLModel table class of the hierarchy.
    """

    def __init__(self, database: Database, model: type[NodeT]) -> None:
        self.database = database
        self.model = model
        self.table = table_of(model)
        self.columns = self.table.c

    @property
    def table_name(self) -> str:
        return self.table.name

    # --- Sessions ---

    @asynccontextmanager
    async def mutation(self) -> AsyncGenerator[AsyncSession]:
        """
        Run a structural mutation in one serialised transaction.

        Order of acquisition: the ``MUTATION_TIMEOUT`` scope, the per-table
        in-process lock, the transaction, and on PostgreSQL a
        ``SHARE ROW EXCLUSIVE`` table lock. Aggregate density checks run
        before commit when ``VERIFY_INVARIANTS`` is enabled.

        Yields:
            AsyncSession: Session bound to the open transaction

        Raises:
            MutationTimeoutError: If the mutation exceeds its time budget
            ConstraintViolationError: If the density checks fail
            StorageFailureError: If the backend rejects a statement
        """
        config = self.database.settings
        try:
            async with (
                timeout(config.MUTATION_TIMEOUT),
                self.database.mutation_lock(self.table_name),
                self.database.transaction() as session,
            ):
                if self.database.dialect == "postgresql":
                    await session.execute(
                        text(f"LOCK TABLE {self.table_name} IN SHARE ROW EXCLUSIVE MODE"),
                    )
                yield session
                if config.VERIFY_INVARIANTS:
                    await self._check_density(session)
        except TimeoutError as e:
            logger.warning("Mutation timed out", table=self.table_name, timeout=config.MUTATION_TIMEOUT)
            mssg = f"Mutation on '{self.table_name}' exceeded {config.MUTATION_TIMEOUT}s and was rolled back"
            raise MutationTimeoutError(mssg) from e
        except SQLAlchemyError as e:
            mssg = f"Mutation on '{self.table_name}' failed: {e}"
            raise StorageFailureError(mssg) from e

    @asynccontextmanager
    async def mutating(self, session: AsyncSession | None = None) -> AsyncGenerator[AsyncSession]:
        """Reuse ``session`` when given, otherwise open a new :meth:`mutation`."""
        if session is not None:
            yield session
            return
        async with self.mutation() as new_session:
            yield new_session

    @asynccontextmanager
    async def reading(self, session: AsyncSession | None = None) -> AsyncGenerator[AsyncSession]:
        """Reuse ``session`` when given, otherwise open a short-lived read session."""
        if session is not None:
            yield session
            return
        try:
            async with self.database.session() as new_session:
                yield new_session
        except SQLAlchemyError as e:
            mssg = f"Read on '{self.table_name}' failed: {e}"
            raise StorageFailureError(mssg) from e

    # --- Reads ---

    def _select(self) -> Select[tuple[NodeT]]:
        # Bounds are shifted with Core updates, refresh any loaded instance.
        return select(self.model).execution_options(populate_existing=True)

    def _not_found(self, node_id: int) -> NotFoundError:
        return NotFoundError(f"{self.model.__name__} with ID {node_id} not found")

    async def bounds(self, node_id: int, *, session: AsyncSession | None = None) -> Bounds:
        """
        Return the interval of ``node_id``.

        Raises:
            NotFoundError: If the node does not exist
        """
        c = self.columns
        async with self.reading(session) as s:
            row = (await s.execute(select(c.id, c.lft, c.rght).where(c.id == node_id))).one_or_none()
        if row is None:
            raise self._not_found(node_id)
        return Bounds(*row)

    async def get(self, node_id: int, *, session: AsyncSession | None = None) -> NodeT:
        async with self.reading(session) as s:
            result = await s.execute(self._select().where(self.columns.id == node_id))
            node = result.scalar_one_or_none()
        if node is None:
            raise self._not_found(node_id)
        return node

    async def exists(self, node_id: int, *, session: AsyncSession | None = None) -> bool:
        async with self.reading(session) as s:
            found = await s.scalar(select(exists().where(self.columns.id == node_id)))
        return bool(found)

    async def count(self, *, session: AsyncSession | None = None) -> int:
        async with self.reading(session) as s:
            total = await s.scalar(select(func.count()).select_from(self.table))
        return total or 0

    async def root(self, *, session: AsyncSession | None = None) -> NodeT:
        """
        Return the node with the minimal left bound.

        Raises:
            NotFoundError: If the table is empty
        """
        async with self.reading(session) as s:
            result = await s.execute(self._select().order_by(self.columns.lft).limit(1))
            node = result.scalars().first()
        if node is None:
            mssg = f"Hierarchy '{self.table_name}' has no root"
            raise NotFoundError(mssg)
        return node

    async def children(
        self,
        node_id: int,
        *,
        title: str | None = None,
        session: AsyncSession | None = None,
    ) -> list[NodeT]:
        """
        Return the direct children of ``node_id`` ordered by left bound.

        Args:
            node_id: Parent node
            title: Only return children with this title
            session: Optional session to run in

        Returns:
            list[NodeT]: Children with no intermediate node below the parent
        """
        c = self.columns
        parent = self.table.alias("parent_node")
        between = self.table.alias("between_node")
        intermediate = (
            exists()
            .where(
                between.c.lft > parent.c.lft,
                between.c.lft < c.lft,
                between.c.rght > c.rght,
            )
            .correlate(self.table, parent)
        )
        onclause = and_(c.lft > parent.c.lft, c.rght < parent.c.rght, ~intermediate)
        if title is not None:
            onclause = and_(onclause, c.title == title)
        # Parent bounds and children are read by one statement.
        statement = (
            select(parent.c.id, self.model)
            .select_from(parent)
            .outerjoin(self.model, onclause)
            .where(parent.c.id == node_id)
            .order_by(c.lft)
            .execution_options(populate_existing=True)
        )
        async with self.reading(session) as s:
            rows = (await s.execute(statement)).all()
        if not rows:
            raise self._not_found(node_id)
        return [row[1] for row in rows if row[1] is not None]

    async def descendants(
        self,
        node_id: int,
        absolute_depth: bool = False,
        *,
        session: AsyncSession | None = None,
    ) -> list[tuple[NodeT, int]]:
        """
        Return the strict descendants of ``node_id`` with their depth.

        Args:
            node_id: Subtree root
            absolute_depth: Count depth from the tree root instead of ``node_id``
            session: Optional session to run in

        Returns:
            list[tuple[NodeT, int]]: ``(node, depth)`` pairs ordered by left bound
        """
        c = self.columns
        async with self.reading(session) as s:
            node = await self.bounds(node_id, session=s)
            result = await s.execute(
                self._select().where(c.lft > node.lft, c.rght < node.rght).order_by(c.lft),
            )
            rows = list(result.scalars())
            start = await self.depth(node_id, session=s) if absolute_depth else 0
        return self._with_depths(rows, start, [node.rght])

    async def descendant_count(self, node_id: int, *, session: AsyncSession | None = None) -> int:
        node = await self.bounds(node_id, session=session)
        return (node.rght - node.lft - 1) // 2

    async def path(self, node_id: int, *, session: AsyncSession | None = None) -> list[NodeT]:
        """Return the chain from the root to ``node_id`` inclusive, root first."""
        c = self.columns
        async with self.reading(session) as s:
            node = await self.bounds(node_id, session=s)
            result = await s.execute(
                self._select().where(c.lft <= node.lft, c.rght >= node.rght).order_by(c.lft),
            )
            return list(result.scalars())

    async def parent(self, node_id: int, *, session: AsyncSession | None = None) -> NodeT | None:
        c = self.columns
        async with self.reading(session) as s:
            node = await self.bounds(node_id, session=s)
            result = await s.execute(
                self._select()
                .where(c.lft < node.lft, c.rght > node.rght)
                .order_by(c.lft.desc())
                .limit(1),
            )
            return result.scalars().first()

    async def depth(self, node_id: int, *, session: AsyncSession | None = None) -> int:
        c = self.columns
        async with self.reading(session) as s:
            node = await self.bounds(node_id, session=s)
            ancestors = await s.scalar(
                select(func.count()).select_from(self.table).where(c.lft < node.lft, c.rght > node.rght),
            )
        return ancestors or 0

    async def sibling_at(
        self,
        node_id: int,
        offset: int,
        *,
        session: AsyncSession | None = None,
    ) -> NodeT | None:
        """
        Return the sibling ``offset`` positions away from ``node_id``.

        Negative offsets move left. Positions outside the parent's children
        return ``None`` and never wrap around; the root has no siblings.
        """
        async with self.reading(session) as s:
            parent = await self.parent(node_id, session=s)
            if parent is None:
                return None
            siblings = await self.children(cast("int", parent.id), session=s)
        position = next(i for i, sibling in enumerate(siblings) if sibling.id == node_id) + offset
        if 0 <= position < len(siblings):
            return siblings[position]
        return None

    async def leaves(
        self,
        parent_id: int | None = None,
        *,
        session: AsyncSession | None = None,
    ) -> list[NodeT]:
        """Return nodes without children, optionally only strict descendants of ``parent_id``."""
        c = self.columns
        statement = self._select().where(c.rght == c.lft + 1)
        async with self.reading(session) as s:
            if parent_id is not None:
                parent = await self.bounds(parent_id, session=s)
                statement = statement.where(c.lft > parent.lft, c.rght < parent.rght)
            result = await s.execute(statement.order_by(c.lft))
            return list(result.scalars())

    async def full_tree(self, *, session: AsyncSession | None = None) -> list[tuple[NodeT, int]]:
        """Return every node with its absolute depth, ordered by left bound."""
        async with self.reading(session) as s:
            result = await s.execute(self._select().order_by(self.columns.lft))
            rows = list(result.scalars())
        return self._with_depths(rows, 0, [])

    @staticmethod
    def _with_depths(
        nodes: Sequence[NodeT],
        start: int,
        enclosing: list[int],
    ) -> list[tuple[NodeT, int]]:
        # ``enclosing`` holds right bounds of the open ancestors.
        stack = list(enclosing)
        result: list[tuple[NodeT, int]] = []
        for node in nodes:
            while stack and stack[-1] < node.lft:
                stack.pop()
            result.append((node, start + len(stack)))
            stack.append(node.rght)
        return result

    # --- Mutations ---

    async def _shift(
        self,
        session: AsyncSession,
        column: Column[int],
        delta: int,
        *criteria: ColumnElement[bool],
    ) -> None:
        await session.execute(update(self.table).where(*criteria).values({column: column + delta}))

    async def _add(self, session: AsyncSession, lft: int, rght: int, values: dict[str, Any]) -> int:
        node = self.model(lft=lft, rght=rght, **values)
        session.add(node)
        await session.flush()
        return cast("int", node.id)

    async def _ensure_not_root(self, session: AsyncSession, node: Bounds, action: str) -> None:
        if await self.depth(node.id, session=session) == 0:
            logger.warning("Rejected root mutation", table=self.table_name, node_id=node.id, action=action)
            mssg = f"Cannot {action} the root of '{self.table_name}'"
            raise InvalidOperationError(mssg)

    async def insert_child(
        self,
        parent_id: int | None,
        *,
        session: AsyncSession | None = None,
        **values: Any,
    ) -> int:
        """
        Insert a node as the leftmost child of ``parent_id``.

        ``parent_id=None`` seeds the root of an empty table at ``(0, 1)``.

        Args:
            parent_id: Parent node, or None to seed the root
            session: Optional mutation session to compose with
            **values: Remaining column values of the new node

        Returns:
            int: ID of the new node

        Raises:
            NotFoundError: If ``parent_id`` does not exist
            InvalidOperationError: If seeding a root into a non-empty table
        """
        c = self.columns
        async with self.mutating(session) as s:
            if parent_id is None:
                if await self.count(session=s):
                    mssg = f"Hierarchy '{self.table_name}' already has a root"
                    raise InvalidOperationError(mssg)
                node_id = await self._add(s, 0, 1, values)
                logger.info("Root seeded", table=self.table_name, node_id=node_id)
                return node_id

            parent = await self.bounds(parent_id, session=s)
            await self._shift(s, c.lft, 2, c.lft > parent.lft)
            await self._shift(s, c.rght, 2, c.rght > parent.lft)
            node_id = await self._add(s, parent.lft + 1, parent.lft + 2, values)
            logger.info("Child inserted", table=self.table_name, node_id=node_id, parent_id=parent_id)
            return node_id

    async def insert_sibling(
        self,
        after_id: int,
        *,
        session: AsyncSession | None = None,
        **values: Any,
    ) -> int:
        """
        Insert a node immediately to the right of ``after_id``'s subtree.

        Raises:
            NotFoundError: If ``after_id`` does not exist
            InvalidOperationError: If ``after_id`` is the root
        """
        c = self.columns
        async with self.mutating(session) as s:
            after = await self.bounds(after_id, session=s)
            await self._ensure_not_root(s, after, "add a sibling to")
            await self._shift(s, c.lft, 2, c.lft > after.rght)
            await self._shift(s, c.rght, 2, c.rght > after.rght)
            node_id = await self._add(s, after.rght + 1, after.rght + 2, values)
            logger.info("Sibling inserted", table=self.table_name, node_id=node_id, after_id=after_id)
            return node_id

    async def delete_node(self, node_id: int, *, session: AsyncSession | None = None) -> list[int]:
        """
        Remove one node and promote its children one level up.

        Returns:
            list[int]: The removed ID

        Raises:
            NotFoundError: If the node does not exist
            InvalidOperationError: If the node is the root
        """
        c = self.columns
        async with self.mutating(session) as s:
            node = await self.bounds(node_id, session=s)
            await self._ensure_not_root(s, node, "delete")
            await s.execute(delete(self.table).where(c.id == node_id))
            await self._shift(s, c.lft, -1, c.lft > node.lft, c.lft < node.rght)
            await self._shift(s, c.rght, -1, c.rght > node.lft, c.rght < node.rght)
            await self._shift(s, c.lft, -2, c.lft > node.rght)
            await self._shift(s, c.rght, -2, c.rght > node.rght)
            logger.info("Node deleted", table=self.table_name, node_id=node_id)
            return [node_id]

    async def delete_subtree(self, node_id: int, *, session: AsyncSession | None = None) -> list[int]:
        """
        Remove a node and all of its descendants.

        Returns:
            list[int]: Removed IDs, ordered by left bound

        Raises:
            NotFoundError: If the node does not exist
            InvalidOperationError: If the node is the root
        """
        c = self.columns
        async with self.mutating(session) as s:
            node = await self.bounds(node_id, session=s)
            await self._ensure_not_root(s, node, "delete")
            inside = (c.lft >= node.lft, c.rght <= node.rght)
            removed = list((await s.execute(select(c.id).where(*inside).order_by(c.lft))).scalars())
            await s.execute(delete(self.table).where(*inside))
            await self._shift(s, c.lft, -node.width, c.lft > node.rght)
            await self._shift(s, c.rght, -node.width, c.rght > node.rght)
            logger.info("Subtree deleted", table=self.table_name, node_id=node_id, removed=len(removed))
            return removed

    async def update_values(
        self,
        node_id: int,
        values: dict[str, Any],
        *,
        session: AsyncSession | None = None,
    ) -> None:
        """Update non-structural columns of a node."""
        if {"id", "lft", "rght"} & values.keys():
            mssg = "Bounds and IDs can only change through structural mutations"
            raise InvalidOperationError(mssg)
        async with self.mutating(session) as s:
            await self.bounds(node_id, session=s)
            await s.execute(update(self.table).where(self.columns.id == node_id).values(**values))

    async def truncate(self, session: AsyncSession) -> None:
        await session.execute(delete(self.table))
        logger.info("Hierarchy truncated", table=self.table_name)

    # --- Invariants ---

    async def _check_density(self, session: AsyncSession) -> None:
        c = self.columns
        malformed = case(((c.rght - c.lft) % 2 == 0, 1), (c.rght < c.lft, 1), else_=0)
        total, low, high, bad_widths = (
            await session.execute(
                select(
                    func.count(),
                    func.min(c.lft),
                    func.max(c.rght),
                    func.coalesce(func.sum(malformed), 0),
                ).select_from(self.table),
            )
        ).one()
        if not total:
            return

        bounds = union(select(c.lft.label("bound")), select(c.rght.label("bound"))).subquery()
        distinct_bounds = await session.scalar(select(func.count()).select_from(bounds))
        roots = await session.scalar(
            select(func.count()).select_from(self.table).where(c.lft == low, c.rght == high),
        )

        problems: list[str] = []
        if bad_widths:
            problems.append(f"{bad_widths} node(s) with an even or negative width")
        if distinct_bounds != 2 * total:
            problems.append(f"{distinct_bounds} distinct bounds for {total} node(s)")
        if high - low + 1 != 2 * total:
            problems.append(f"bounds span {low}..{high} for {total} node(s)")
        if roots != 1:
            problems.append(f"{roots} node(s) span the whole table")
        if problems:
            logger.error("Nested-set invariant violated", table=self.table_name, problems=problems)
            mssg = f"Nested-set invariants violated in '{self.table_name}': " + "; ".join(problems)
            raise ConstraintViolationError(mssg)

    async def verify(self, *, session: AsyncSession | None = None) -> None:
        """
        Audit proper nesting, density and the single root of the whole table.

        Raises:
            ConstraintViolationError: On the first failing check
        """
        ancestor = self.table.alias("ancestor_node")
        node = self.table.alias("descendant_node")
        async with self.reading(session) as s:
            await self._check_density(s)

            overlaps = await s.scalar(
                select(func.count())
                .select_from(ancestor)
                .join(
                    node,
                    (node.c.lft > ancestor.c.lft)
                    & (node.c.lft < ancestor.c.rght)
                    & (node.c.rght > ancestor.c.rght),
                ),
            )
            if overlaps:
                mssg = f"{overlaps} partially overlapping interval pair(s) in '{self.table_name}'"
                raise ConstraintViolationError(mssg)

            miscounted = await s.execute(
                select(ancestor.c.id)
                .select_from(ancestor)
                .outerjoin(node, (node.c.lft > ancestor.c.lft) & (node.c.rght < ancestor.c.rght))
                .group_by(ancestor.c.id, ancestor.c.lft, ancestor.c.rght)
                .having(func.count(node.c.id) * 2 != ancestor.c.rght - ancestor.c.lft - 1),
            )
            bad_ids = list(miscounted.scalars())
            if bad_ids:
                mssg = f"Descendant counts disagree with bounds for IDs {bad_ids} in '{self.table_name}'"
                raise ConstraintViolationError(mssg)
