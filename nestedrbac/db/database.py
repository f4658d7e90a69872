"""Database engine, session and transaction management."""

from asyncio import CancelledError, Lock
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from logging import getLogger

from sqlalchemy import Connection, event
from sqlalchemy.exc import ArgumentError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlmodel import SQLModel

from nestedrbac.configs import Settings, pool_kwargs, settings
from nestedrbac.errors.base import RbacError
from nestedrbac.errors.database import DatabaseConfigurationError

logger = getLogger(__name__)

# Execution option naming the SQLite BEGIN mode of a transaction
SQLITE_BEGIN = "sqlite_begin"


def _configure_engine_events(engine: AsyncEngine) -> None:
    """Configure connection pool events for monitoring."""

    @event.listens_for(engine.sync_engine, "connect")
    def on_connect(dbapi_connection: object, connection_record: object) -> None:
        logger.debug("New database connection established")

    @event.listens_for(engine.sync_engine, "checkout")
    def on_checkout(
        dbapi_connection: object,
        connection_record: object,
        connection_proxy: object,
    ) -> None:
        logger.debug("Connection checked out from pool")

    @event.listens_for(engine.sync_engine, "checkin")
    def on_checkin(dbapi_connection: object, connection_record: object) -> None:
        logger.debug("Connection returned to pool")


def _enable_sqlite_foreign_keys(engine: AsyncEngine) -> None:
    """SQLite ignores ON DELETE CASCADE unless foreign keys are switched on per connection."""

    @event.listens_for(engine.sync_engine, "connect")
    def on_connect(dbapi_connection, connection_record) -> None:  # noqa: ANN001
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def _control_sqlite_transactions(engine: AsyncEngine) -> None:
    """
    Emit SQLite's ``BEGIN`` ourselves instead of letting the driver defer it.

    The driver only begins before the first DML statement, so reads at the
    start of a transaction would run outside it. Connections opened with
    the ``SQLITE_BEGIN`` execution option begin in that mode, e.g.
    ``IMMEDIATE`` to take the write lock before the first read.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def on_connect(dbapi_connection, connection_record) -> None:  # noqa: ANN001
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def on_begin(conn: Connection) -> None:
        mode = conn.get_execution_options().get(SQLITE_BEGIN)
        conn.exec_driver_sql(f"BEGIN {mode}" if mode else "BEGIN")


class Database:
    """
    Explicit database handle shared by every store of one engine instance.

    Holds the async engine, the session factory and one ``asyncio.Lock``
    per table. Stores bound to the same table share the lock, so
    structural mutations on that table are serialised in-process.

    Attributes:
        settings: Settings the engine was built from.
        engine: SQLAlchemy async engine.
        session_maker: Factory for ``AsyncSession`` objects.
    """

    def __init__(self, config: Settings | None = None, *, engine: AsyncEngine | None = None) -> None:
        self.settings = config or settings
        if engine is None:
            try:
                engine = create_async_engine(
                    self.settings.DATABASE_URL,
                    echo=self.settings.DATABASE_ECHO,
                    **pool_kwargs(self.settings),
                )
            except (ArgumentError, ImportError) as e:
                mssg = f"Cannot create engine for the configured DATABASE_URL: {e}"
                raise DatabaseConfigurationError(mssg) from e
        self.engine = engine

        if self.engine.dialect.name == "sqlite":
            _enable_sqlite_foreign_keys(self.engine)
            _control_sqlite_transactions(self.engine)
        if self.settings.DEBUG:
            _configure_engine_events(self.engine)

        self.session_maker: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        self._locks: dict[str, Lock] = {}

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    def mutation_lock(self, table_name: str) -> Lock:
        """Return the in-process lock serialising mutations on ``table_name``."""
        lock = self._locks.get(table_name)
        if lock is None:
            lock = self._locks[table_name] = Lock()
        return lock

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession]:
        """
        Short-lived session for reads.

        Every statement of the session reads the same committed snapshot:
        a deferred transaction on SQLite, ``REPEATABLE READ`` on PostgreSQL.

        Yields:
            AsyncSession: Session that only observes committed state
        """
        async with self.session_maker() as session:
            if self.dialect == "postgresql":
                await session.connection(execution_options={"isolation_level": "REPEATABLE READ"})
            yield session

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[AsyncSession]:
        """
        Context manager for explicit transaction management.

        Commits on successful exit. Any exception, including task
        cancellation, rolls the transaction back and is re-raised. On SQLite
        the transaction starts with ``BEGIN IMMEDIATE``, so writers from
        other processes queue before reading anything.

        Yields:
            AsyncSession: Database session within a transaction

        Example:
            ```python
            async with database.transaction() as session:
                session.add(RoleDB(title="editor", lft=1, rght=2))
            ```
        """
        async with self.session_maker() as session:
            try:
                if self.dialect == "sqlite":
                    await session.connection(execution_options={SQLITE_BEGIN: "IMMEDIATE"})
                yield session
                await session.commit()
            except RbacError:
                await session.rollback()
                raise
            except (Exception, CancelledError):
                await session.rollback()
                logger.exception("Transaction error")
                raise

    async def create_all(self) -> None:
        """
        Create every table registered on the SQLModel metadata.

        Note:
            Convenient for tests and development. Production schemas are
            managed by the Alembic migrations.
        """
        # Import all models to ensure they are registered
        from nestedrbac import models  # noqa: F401, PLC0415

        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)
        logger.info("Database initialized successfully!")

    async def drop_all(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.drop_all)

    async def close(self) -> None:
        """Dispose of the engine and its pooled connections."""
        await self.engine.dispose()
        logger.info("Database connections closed")


def create_database(config: Settings | None = None) -> Database:
    """Build a ``Database`` from ``config`` (the module settings by default)."""
    return Database(config)
