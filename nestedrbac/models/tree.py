"""Nested-set node tables for the role and permission hierarchies."""

from typing import cast

from sqlalchemy import Table
from sqlalchemy.orm import declared_attr
from sqlmodel import Field, SQLModel

from nestedrbac.configs.settings import MAX_DESCRIPTION_LENGTH, TITLE_COLUMN_LENGTH


class TreeNodeBase(SQLModel):
    """
    Columns shared by every nested-set hierarchy table.

    ``lft`` and ``rght`` are unique across a table by construction only.
    A unique constraint would be tripped mid-statement by the range
    updates that shift bounds on some backends.
    """

    id: int | None = Field(
        default=None,
        primary_key=True,
        description="Node ID",
    )
    lft: int = Field(index=True, nullable=False, description="Left bound")
    rght: int = Field(index=True, nullable=False, description="Right bound")
    title: str = Field(
        max_length=TITLE_COLUMN_LENGTH,
        index=True,
        nullable=False,
        description="Title (unique among siblings, no '/')",
    )
    description: str = Field(
        default="",
        max_length=MAX_DESCRIPTION_LENGTH,
        nullable=False,
        description="Free text description",
    )


class RoleDB(TreeNodeBase, table=True):
    """Role hierarchy node."""

    __tablename__ = cast("declared_attr[str]", "roles")


class PermissionDB(TreeNodeBase, table=True):
    """Permission hierarchy node."""

    __tablename__ = cast("declared_attr[str]", "permissions")


def table_of(model: type[SQLModel]) -> Table:
    """Return the Core ``Table`` behind a SQLModel table class."""
    return cast("Table", model.__table__)  # pyright: ignore[reportAttributeAccessIssue]
