"""Titled hierarchy with slash-path addressing on top of an interval tree."""

from collections.abc import Sequence
from typing import cast

from sqlalchemy import Column, delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from nestedrbac.configs.settings import Settings
from nestedrbac.errors.tree import InvalidOperationError, NotFoundError, PreconditionFailedError
from nestedrbac.models.tree import TreeNodeBase
from nestedrbac.monitoring import get_logger
from nestedrbac.repositories.tree import IntervalTreeStore
from nestedrbac.utils.paths import join_path, split_path, validate_description, validate_title

logger = get_logger(__name__)


class HierarchyIndex[NodeT: TreeNodeBase]:
    """
    Role or permission hierarchy.

    Holds an :class:`IntervalTreeStore` for the structure and the
    assignment columns referencing this hierarchy, so removing nodes also
    removes the assignment rows that point at them in the same transaction.

    Attributes:
        store: Interval tree of the hierarchy table.
        references: Assignment columns holding IDs of this hierarchy.
    """

    def __init__(self, store: IntervalTreeStore[NodeT], references: Sequence[Column[int]] = ()) -> None:
        self.store = store
        self.references = tuple(references)

    @property
    def settings(self) -> Settings:
        return self.store.database.settings

    @property
    def name(self) -> str:
        return self.store.table_name

    # --- Paths ---

    async def path_to_id(self, path: str, *, session: AsyncSession | None = None) -> int:
        """
        Resolve a slash path to a node ID.

        The path is normalised and its length checked before any query
        runs. Each segment is then matched among the direct children of
        the previous node, starting from the root.

        Args:
            path: Path such as ``"/editor/reviewer"``; ``"/"`` is the root
            session: Optional session to run in

        Returns:
            int: ID of the addressed node

        Raises:
            InvalidOperationError: If the path is too long or malformed
            NotFoundError: If a segment does not resolve
        """
        titles = split_path(path, self.settings.MAX_PATH_LENGTH)
        async with self.store.reading(session) as s:
            node_id = cast("int", (await self.store.root(session=s)).id)
            for title in titles:
                matches = await self.store.children(node_id, title=title, session=s)
                if not matches:
                    mssg = f"Path '{path}' not found in '{self.name}'"
                    raise NotFoundError(mssg)
                node_id = cast("int", matches[0].id)
        return node_id

    async def id_to_path(self, node_id: int, *, session: AsyncSession | None = None) -> str:
        chain = await self.store.path(node_id, session=session)
        return join_path([node.title for node in chain[1:]])

    async def find_by_title(self, title: str, *, session: AsyncSession | None = None) -> int:
        """
        Return the ID of the only node titled ``title``.

        Raises:
            NotFoundError: If no node has the title
            InvalidOperationError: If several nodes share the title
        """
        c = self.store.columns
        async with self.store.reading(session) as s:
            ids = list((await s.execute(select(c.id).where(c.title == title).limit(2))).scalars())
        if not ids:
            mssg = f"No node titled '{title}' in '{self.name}'"
            raise NotFoundError(mssg)
        if len(ids) > 1:
            mssg = f"Title '{title}' is ambiguous in '{self.name}', use a path instead"
            raise InvalidOperationError(mssg)
        return ids[0]

    # --- Mutations ---

    async def _ensure_unique_title(
        self,
        session: AsyncSession,
        parent_id: int,
        title: str,
    ) -> None:
        if await self.store.children(parent_id, title=title, session=session):
            logger.warning("Duplicate sibling title", table=self.name, parent_id=parent_id, title=title)
            mssg = f"'{title}' already exists under node {parent_id} in '{self.name}'"
            raise InvalidOperationError(mssg)

    async def add(
        self,
        title: str,
        description: str = "",
        parent_id: int | None = None,
        *,
        session: AsyncSession | None = None,
    ) -> int:
        """
        Add a node as the leftmost child of ``parent_id`` (the root by default).

        Returns:
            int: ID of the new node

        Raises:
            InvalidOperationError: If the title is invalid or taken by a sibling
            NotFoundError: If ``parent_id`` does not exist
        """
        validate_title(title, self.settings.MAX_TITLE_LENGTH)
        validate_description(description)
        async with self.store.mutating(session) as s:
            if parent_id is None:
                parent_id = cast("int", (await self.store.root(session=s)).id)
            await self._ensure_unique_title(s, parent_id, title)
            return await self.store.insert_child(parent_id, session=s, title=title, description=description)

    async def add_path(
        self,
        path: str,
        descriptions: Sequence[str] | None = None,
        *,
        session: AsyncSession | None = None,
    ) -> int:
        """
        Create every missing segment of ``path`` in one transaction.

        Args:
            path: Slash path to create
            descriptions: Descriptions aligned with the path segments
            session: Optional mutation session to compose with

        Returns:
            int: ID of the last segment
        """
        titles = split_path(path, self.settings.MAX_PATH_LENGTH)
        for title in titles:
            validate_title(title, self.settings.MAX_TITLE_LENGTH)
        descriptions = list(descriptions or [])
        for description in descriptions:
            validate_description(description)

        async with self.store.mutating(session) as s:
            node_id = cast("int", (await self.store.root(session=s)).id)
            for index, title in enumerate(titles):
                existing = await self.store.children(node_id, title=title, session=s)
                if existing:
                    node_id = cast("int", existing[0].id)
                    continue
                description = descriptions[index] if index < len(descriptions) else ""
                node_id = await self.store.insert_child(
                    node_id,
                    session=s,
                    title=title,
                    description=description,
                )
        return node_id

    async def edit(
        self,
        node_id: int,
        title: str | None = None,
        description: str | None = None,
        *,
        session: AsyncSession | None = None,
    ) -> bool:
        """
        Change the title and/or description of a node.

        Returns:
            bool: False when there was nothing to change

        Raises:
            NotFoundError: If the node does not exist
            InvalidOperationError: If the new title is invalid or taken by a sibling
        """
        async with self.store.mutating(session) as s:
            node = await self.store.get(node_id, session=s)
            values: dict[str, str] = {}
            if title is not None and title != node.title:
                validate_title(title, self.settings.MAX_TITLE_LENGTH)
                parent = await self.store.parent(node_id, session=s)
                if parent is not None:
                    await self._ensure_unique_title(s, cast("int", parent.id), title)
                values["title"] = title
            if description is not None and description != node.description:
                values["description"] = validate_description(description)
            if not values:
                return False
            await self.store.update_values(node_id, values, session=s)
        logger.info("Node edited", table=self.name, node_id=node_id, fields=sorted(values))
        return True

    async def _purge_references(self, session: AsyncSession, node_ids: Sequence[int]) -> None:
        for column in self.references:
            await session.execute(delete(column.table).where(column.in_(node_ids)))

    async def remove(
        self,
        node_id: int,
        recursive: bool = False,
        *,
        session: AsyncSession | None = None,
    ) -> int:
        """
        Remove a node, or its whole subtree, and every assignment referencing it.

        Without ``recursive`` the children of the node move up one level.

        Returns:
            int: Number of removed nodes

        Raises:
            NotFoundError: If the node does not exist
            InvalidOperationError: If the node is the root
        """
        async with self.store.mutating(session) as s:
            if recursive:
                removed = await self.store.delete_subtree(node_id, session=s)
            else:
                removed = await self.store.delete_node(node_id, session=s)
            await self._purge_references(s, removed)
        return len(removed)

    async def reset(self, confirm: bool = False, *, session: AsyncSession | None = None) -> bool:
        """
        Remove every node and referencing assignment, then seed a single root.

        Raises:
            PreconditionFailedError: Unless ``confirm`` is True
        """
        if confirm is not True:
            logger.warning("Reset refused without confirmation", table=self.name)
            raise PreconditionFailedError
        async with self.store.mutating(session) as s:
            for column in self.references:
                await s.execute(delete(column.table))
            await self.store.truncate(s)
            await self.store.insert_child(
                None,
                session=s,
                title=self.settings.ROOT_TITLE,
                description=self.settings.ROOT_DESCRIPTION,
            )
        logger.info("Hierarchy reset", table=self.name)
        return True

    # --- Reads ---

    async def get_title(self, node_id: int, *, session: AsyncSession | None = None) -> str:
        return (await self.store.get(node_id, session=session)).title

    async def get_description(self, node_id: int, *, session: AsyncSession | None = None) -> str:
        return (await self.store.get(node_id, session=session)).description

    async def count(self, *, session: AsyncSession | None = None) -> int:
        return await self.store.count(session=session)

    async def exists(self, node_id: int, *, session: AsyncSession | None = None) -> bool:
        return await self.store.exists(node_id, session=session)

    async def get(self, node_id: int, *, session: AsyncSession | None = None) -> NodeT:
        return await self.store.get(node_id, session=session)

    async def root(self, *, session: AsyncSession | None = None) -> NodeT:
        return await self.store.root(session=session)

    async def children(self, node_id: int, *, session: AsyncSession | None = None) -> list[NodeT]:
        return await self.store.children(node_id, session=session)

    async def descendants(
        self,
        node_id: int,
        absolute_depth: bool = False,
        *,
        session: AsyncSession | None = None,
    ) -> list[tuple[NodeT, int]]:
        return await self.store.descendants(node_id, absolute_depth, session=session)

    async def path(self, node_id: int, *, session: AsyncSession | None = None) -> list[NodeT]:
        return await self.store.path(node_id, session=session)

    async def parent(self, node_id: int, *, session: AsyncSession | None = None) -> NodeT | None:
        return await self.store.parent(node_id, session=session)

    async def depth(self, node_id: int, *, session: AsyncSession | None = None) -> int:
        return await self.store.depth(node_id, session=session)

    async def sibling_at(
        self,
        node_id: int,
        offset: int,
        *,
        session: AsyncSession | None = None,
    ) -> NodeT | None:
        return await self.store.sibling_at(node_id, offset, session=session)

    async def leaves(
        self,
        parent_id: int | None = None,
        *,
        session: AsyncSession | None = None,
    ) -> list[NodeT]:
        return await self.store.leaves(parent_id, session=session)

    async def full_tree(self, *, session: AsyncSession | None = None) -> list[tuple[NodeT, int]]:
        return await self.store.full_tree(session=session)

    async def verify(self, *, session: AsyncSession | None = None) -> None:
        await self.store.verify(session=session)
