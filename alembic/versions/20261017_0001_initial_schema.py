"""
Initial schema: role and permission hierarchies and their assignments.

Revision ID: 0001
Revises:
Create Date: 2026-10-17

This migration creates the complete initial schema:
- roles, permissions: nested-set hierarchies (lft/rght interval bounds)
- userroles: user to role assignments
- rolepermissions: role to permission grants
"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# Revision identifiers, used by Alembic
revision: str = "0001"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

HIERARCHIES = ("roles", "permissions")


def upgrade() -> None:
    """Apply schema changes for this revision."""
    # Bounds are unique by construction; a unique constraint would trip mid-shift
    for table in HIERARCHIES:
        op.create_table(
            table,
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("lft", sa.Integer(), nullable=False),
            sa.Column("rght", sa.Integer(), nullable=False),
            sa.Column("title", sa.String(length=128), nullable=False),
            sa.Column("description", sa.String(length=1024), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(f"ix_{table}_lft", table, ["lft"], unique=False)
        op.create_index(f"ix_{table}_rght", table, ["rght"], unique=False)
        op.create_index(f"ix_{table}_title", table, ["title"], unique=False)

    op.create_table(
        "userroles",
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("role_id", sa.Integer(), nullable=False),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["role_id"], ["roles.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("user_id", "role_id"),
    )
    op.create_table(
        "rolepermissions",
        sa.Column("role_id", sa.Integer(), nullable=False),
        sa.Column("permission_id", sa.Integer(), nullable=False),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["role_id"], ["roles.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["permission_id"], ["permissions.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("role_id", "permission_id"),
    )


def downgrade() -> None:
    """Revert schema changes for this revision."""
    op.drop_table("rolepermissions")
    op.drop_table("userroles")

    for table in reversed(HIERARCHIES):
        op.drop_index(f"ix_{table}_title", table_name=table)
        op.drop_index(f"ix_{table}_rght", table_name=table)
        op.drop_index(f"ix_{table}_lft", table_name=table)
        op.drop_table(table)
