"""Role-based access control over nested-set role and permission hierarchies."""

from nestedrbac.db import Database, create_database
from nestedrbac.rbac import AccessChecker, ById, ByPath, ByTitle, Identifier, Rbac
from nestedrbac.repositories import AssignmentStore, HierarchyIndex, IntervalTreeStore

__all__ = [
    "AccessChecker",
    "AssignmentStore",
    "ById",
    "ByPath",
    "ByTitle",
    "Database",
    "HierarchyIndex",
    "Identifier",
    "IntervalTreeStore",
    "Rbac",
    "create_database",
]
