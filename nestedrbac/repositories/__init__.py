"""Repositories for hierarchy and assignment storage."""

from nestedrbac.repositories.assignment import AssignmentStore
from nestedrbac.repositories.hierarchy import HierarchyIndex
from nestedrbac.repositories.tree import Bounds, IntervalTreeStore

__all__ = [
    "AssignmentStore",
    "Bounds",
    "HierarchyIndex",
    "IntervalTreeStore",
]
