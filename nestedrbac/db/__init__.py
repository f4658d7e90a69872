"""Database access layer."""

from nestedrbac.db.database import Database, create_database

__all__ = ["Database", "create_database"]
