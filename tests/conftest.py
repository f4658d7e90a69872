# tests/conftest.py
"""Root pytest configuration and shared fixtures."""

from collections.abc import AsyncGenerator, Generator
from pathlib import Path

import pytest
from sqlalchemy import event

from nestedrbac.configs import Settings
from nestedrbac.db import Database
from nestedrbac.models import RoleDB
from nestedrbac.rbac import Rbac
from nestedrbac.repositories import HierarchyIndex, IntervalTreeStore


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Settings pointing at a fresh SQLite file per test."""
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'rbac.db'}",
        ENVIRONMENT="test",
        MUTATION_TIMEOUT=10.0,
    )


@pytest.fixture
async def database(test_settings: Settings) -> AsyncGenerator[Database]:
    """Database with every table created."""
    db = Database(test_settings)
    await db.create_all()
    yield db
    await db.close()


@pytest.fixture
async def rbac(database: Database) -> Rbac:
    """Facade reset to the baseline: one root role, one root permission."""
    manager = Rbac(database)
    await manager.reset(confirm=True)
    return manager


@pytest.fixture
def roles(rbac: Rbac) -> HierarchyIndex[RoleDB]:
    return rbac.roles


@pytest.fixture
def role_store(rbac: Rbac) -> IntervalTreeStore[RoleDB]:
    return rbac.roles.store


@pytest.fixture
async def root_id(role_store: IntervalTreeStore[RoleDB]) -> int:
    root = await role_store.root()
    assert root.id is not None
    return root.id


@pytest.fixture
def statement_log(database: Database) -> Generator[list[str]]:
    """SQL statements sent to the driver while the test runs."""
    statements: list[str] = []

    def record(conn, cursor, statement, parameters, context, executemany) -> None:  # noqa: ANN001
        statements.append(statement.strip())

    event.listen(database.engine.sync_engine, "before_cursor_execute", record)
    yield statements
    event.remove(database.engine.sync_engine, "before_cursor_execute", record)
