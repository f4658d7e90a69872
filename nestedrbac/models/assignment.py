"""Assignment relations between users, roles and permissions."""

from datetime import datetime
from typing import cast

from sqlalchemy import DateTime
from sqlalchemy.orm import declared_attr
from sqlmodel import Field, SQLModel

from nestedrbac.utils.helpers import utc_now


class UserRoleDB(SQLModel, table=True):
    """
    User to role assignment.

    Users are not stored by the engine, so ``user_id`` is a plain integer.
    The ``(user_id, role_id)`` pair is the primary key.
    """

    __tablename__ = cast("declared_attr[str]", "userroles")

    user_id: int = Field(primary_key=True, description="External user ID")
    role_id: int = Field(
        primary_key=True,
        foreign_key="roles.id",
        ondelete="CASCADE",
        description="Assigned role",
    )
    assigned_at: datetime = Field(
        default_factory=utc_now,
        sa_type=DateTime(timezone=True),  # pyright: ignore[reportArgumentType]
        nullable=False,
        description="Assignment timestamp (UTC)",
    )


class RolePermissionDB(SQLModel, table=True):
    """Role to permission grant."""

    __tablename__ = cast("declared_attr[str]", "rolepermissions")

    role_id: int = Field(
        primary_key=True,
        foreign_key="roles.id",
        ondelete="CASCADE",
        description="Granted role",
    )
    permission_id: int = Field(
        primary_key=True,
        foreign_key="permissions.id",
        ondelete="CASCADE",
        description="Granted permission",
    )
    assigned_at: datetime = Field(
        default_factory=utc_now,
        sa_type=DateTime(timezone=True),  # pyright: ignore[reportArgumentType]
        nullable=False,
        description="Assignment timestamp (UTC)",
    )
