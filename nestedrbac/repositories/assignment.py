"""Assignment relations between subjects and hierarchy nodes."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any, cast

from sqlalchemy import ColumnElement, CursorResult, delete, func, insert, select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import SQLModel

from nestedrbac.db.database import Database
from nestedrbac.errors.database import StorageFailureError
from nestedrbac.errors.tree import NotFoundError, PreconditionFailedError
from nestedrbac.models.tree import TreeNodeBase, table_of
from nestedrbac.monitoring import get_logger
from nestedrbac.repositories.hierarchy import HierarchyIndex
from nestedrbac.utils.helpers import utc_now

logger = get_logger(__name__)


class AssignmentStore:
    """
    Repository for one ``(subject, object)`` assignment relation.

    Objects are always nodes of ``objects``. Subjects are nodes of
    ``subjects`` when given (role to permission), otherwise plain external
    IDs (user to role) whose baseline is ``root_subject_id``.

    Attributes:
        database: Database handle.
        model: SQLModel table class of the relation.
        subject_column: Column holding the subject ID.
        object_column: Column holding the object ID.
    """

    def __init__(
        self,
        database: Database,
        model: type[SQLModel],
        subject_field: str,
        object_field: str,
        objects: HierarchyIndex[Any],
        subjects: HierarchyIndex[Any] | None = None,
        root_subject_id: int | None = None,
    ) -> None:
        self.database = database
        self.model = model
        self.table = table_of(model)
        self.subject_column = self.table.c[subject_field]
        self.object_column = self.table.c[object_field]
        self.objects = objects
        self.subjects = subjects
        self.root_subject_id = root_subject_id

    @property
    def name(self) -> str:
        return self.table.name

    @asynccontextmanager
    async def _session(self, *, write: bool = False) -> AsyncGenerator[AsyncSession]:
        context = self.database.transaction() if write else self.database.session()
        try:
            async with context as session:
                yield session
        except SQLAlchemyError as e:
            mssg = f"Operation on '{self.name}' failed: {e}"
            raise StorageFailureError(mssg) from e

    async def _ensure_nodes(self, session: AsyncSession, subject_id: int, object_id: int) -> None:
        if not await self.objects.exists(object_id, session=session):
            mssg = f"{self.objects.name} node {object_id} not found"
            raise NotFoundError(mssg)
        if self.subjects is not None and not await self.subjects.exists(subject_id, session=session):
            mssg = f"{self.subjects.name} node {subject_id} not found"
            raise NotFoundError(mssg)

    async def _insert(self, session: AsyncSession, subject_id: int, object_id: int) -> bool:
        values = {
            self.subject_column.name: subject_id,
            self.object_column.name: object_id,
            "assigned_at": utc_now(),
        }
        match self.database.dialect:
            case "postgresql":
                statement = postgresql_insert(self.table).values(values).on_conflict_do_nothing()
            case "sqlite":
                statement = sqlite_insert(self.table).values(values).on_conflict_do_nothing()
            case _:
                if await self._exists(session, subject_id, object_id):
                    return False
                statement = insert(self.table).values(values)
                await session.execute(statement)
                return True
        result = await session.execute(statement.returning(self.object_column))
        return result.first() is not None

    async def _exists(self, session: AsyncSession, subject_id: int, object_id: int) -> bool:
        found = await session.scalar(
            select(func.count())
            .select_from(self.table)
            .where(self.subject_column == subject_id, self.object_column == object_id),
        )
        return bool(found)

    async def assign(self, subject_id: int, object_id: int) -> bool:
        """
        Assign ``object_id`` to ``subject_id``.

        Returns:
            bool: True if inserted, False if the pair already existed

        Raises:
            NotFoundError: If a referenced hierarchy node does not exist
        """
        async with self._session(write=True) as session:
            await self._ensure_nodes(session, subject_id, object_id)
            inserted = await self._insert(session, subject_id, object_id)
        if inserted:
            logger.info("Assigned", table=self.name, subject_id=subject_id, object_id=object_id)
        return inserted

    async def unassign(self, subject_id: int, object_id: int) -> int:
        """Remove one pair and return the number of removed rows."""
        return await self._delete(
            self.subject_column == subject_id,
            self.object_column == object_id,
        )

    async def unassign_all_for_subject(self, subject_id: int) -> int:
        return await self._delete(self.subject_column == subject_id)

    async def unassign_all_for_object(self, object_id: int) -> int:
        return await self._delete(self.object_column == object_id)

    async def _delete(self, *criteria: ColumnElement[bool]) -> int:
        async with self._session(write=True) as session:
            result = cast("CursorResult[Any]", await session.execute(delete(self.table).where(*criteria)))
            removed = result.rowcount
        logger.info("Unassigned", table=self.name, removed=removed)
        return removed

    async def list_objects_for(self, subject_id: int) -> set[int]:
        async with self._session() as session:
            result = await session.execute(
                select(self.object_column).where(self.subject_column == subject_id),
            )
            return set(result.scalars())

    async def list_subjects_for(self, object_id: int) -> set[int]:
        async with self._session() as session:
            result = await session.execute(
                select(self.subject_column).where(self.object_column == object_id),
            )
            return set(result.scalars())

    async def object_nodes_for(self, subject_id: int) -> list[TreeNodeBase]:
        """Return the assigned object nodes of ``subject_id`` ordered by ID."""
        node_columns = self.objects.store.columns
        async with self._session() as session:
            result = await session.execute(
                select(self.objects.store.model)
                .join(self.table, self.object_column == node_columns.id)
                .where(self.subject_column == subject_id)
                .order_by(node_columns.id),
            )
            return list(result.scalars())

    async def count_for(self, subject_id: int) -> int:
        async with self._session() as session:
            total = await session.scalar(
                select(func.count()).select_from(self.table).where(self.subject_column == subject_id),
            )
        return total or 0

    async def count(self) -> int:
        async with self._session() as session:
            total = await session.scalar(select(func.count()).select_from(self.table))
        return total or 0

    async def reset_assignments(self, confirm: bool = False) -> bool:
        """
        Remove every pair, then seed the baseline ``(root subject, root object)``.

        Raises:
            PreconditionFailedError: Unless ``confirm`` is True
            NotFoundError: If a hierarchy has no root
        """
        if confirm is not True:
            logger.warning("Reset refused without confirmation", table=self.name)
            raise PreconditionFailedError

        async with self._session(write=True) as session:
            await session.execute(delete(self.table))
            root_object = cast("int", (await self.objects.root(session=session)).id)
            if self.subjects is not None:
                root_subject = cast("int", (await self.subjects.root(session=session)).id)
            else:
                root_subject = cast("int", self.root_subject_id)
            await self._insert(session, root_subject, root_object)
        logger.info("Assignments reset", table=self.name, subject_id=root_subject, object_id=root_object)
        return True
