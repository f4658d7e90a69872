"""Database models for the engine."""

from nestedrbac.models.assignment import RolePermissionDB, UserRoleDB
from nestedrbac.models.tree import PermissionDB, RoleDB, TreeNodeBase, table_of

__all__ = [
    "PermissionDB",
    "RoleDB",
    "RolePermissionDB",
    "TreeNodeBase",
    "UserRoleDB",
    "table_of",
]
