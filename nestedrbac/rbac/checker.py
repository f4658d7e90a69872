"""
Access checks over the role and permission hierarchies.

Inheritance runs in two directions at once:

- roles inherit upward: a role holds every permission granted to any of
  its descendant roles;
- permissions inherit downward: granting a permission grants every
  permission below it.

Both directions reduce to interval containment, so each check is one
``EXISTS`` evaluated in the same statement that looks the anchors up.
"""

from collections.abc import Sequence
from typing import Any, NamedTuple

from sqlalchemy import Alias, ColumnElement, Exists, exists, select

from nestedrbac.errors.access import AccessDeniedError
from nestedrbac.errors.tree import NotFoundError
from nestedrbac.monitoring import get_logger
from nestedrbac.rbac.identifiers import IdentifierLike, resolve
from nestedrbac.repositories.assignment import AssignmentStore
from nestedrbac.repositories.hierarchy import HierarchyIndex

logger = get_logger(__name__)


class Anchor(NamedTuple):
    """Node a check is evaluated against, with its existence test."""

    hierarchy: str
    node_id: int
    found: Exists


class AccessChecker:
    """
    Read-only access queries.

    Each check is a single ``SELECT`` that looks up the anchor nodes and
    evaluates the containment joins against them, so bounds and grants
    are read from one snapshot.

    Attributes:
        roles: Role hierarchy.
        permissions: Permission hierarchy.
        role_permissions: Role to permission grants.
        user_roles: User to role assignments.
    """

    def __init__(
        self,
        roles: HierarchyIndex[Any],
        permissions: HierarchyIndex[Any],
        role_permissions: AssignmentStore,
        user_roles: AssignmentStore,
    ) -> None:
        self.roles = roles
        self.permissions = permissions
        self.role_permissions = role_permissions
        self.user_roles = user_roles
        self.database = roles.store.database

    @staticmethod
    def _anchor(hierarchy: HierarchyIndex[Any], name: str, node_id: int) -> tuple[Alias, Anchor]:
        node = hierarchy.store.table.alias(name)
        return node, Anchor(hierarchy.name, node_id, exists().where(node.c.id == node_id))

    async def _answer(self, anchors: Sequence[Anchor], *criteria: ColumnElement[bool]) -> bool:
        granted = exists().where(*criteria)
        statement = select(*(anchor.found for anchor in anchors), granted)
        async with self.roles.store.reading() as session:
            *found, answer = (await session.execute(statement)).one()
        for anchor, present in zip(anchors, found, strict=True):
            if not present:
                mssg = f"{anchor.hierarchy} node {anchor.node_id} not found"
                raise NotFoundError(mssg)
        return bool(answer)

    async def has_permission(self, role_id: int, permission_id: int) -> bool:
        """
        Check whether a role holds a permission.

        True if some role in ``{role} ∪ descendants(role)`` was granted some
        permission in ``{permission} ∪ ancestors(permission)``.

        Raises:
            NotFoundError: If the role or the permission does not exist
        """
        role, role_anchor = self._anchor(self.roles, "anchor_role", role_id)
        permission, permission_anchor = self._anchor(self.permissions, "anchor_permission", permission_id)
        role_node = self.roles.store.table
        permission_node = self.permissions.store.table
        grant = self.role_permissions
        return await self._answer(
            [role_anchor, permission_anchor],
            role.c.id == role_id,
            permission.c.id == permission_id,
            grant.subject_column == role_node.c.id,
            grant.object_column == permission_node.c.id,
            role_node.c.lft >= role.c.lft,
            role_node.c.rght <= role.c.rght,
            permission_node.c.lft <= permission.c.lft,
            permission_node.c.rght >= permission.c.rght,
        )

    async def user_has_permission(self, user_id: int, permission_id: int) -> bool:
        """
        Check whether any role assigned directly to ``user_id`` holds a permission.

        Raises:
            NotFoundError: If the permission does not exist
        """
        permission, permission_anchor = self._anchor(self.permissions, "anchor_permission", permission_id)
        direct = self.roles.store.table.alias("direct_role")
        role_node = self.roles.store.table
        permission_node = self.permissions.store.table
        grant = self.role_permissions
        membership = self.user_roles
        return await self._answer(
            [permission_anchor],
            permission.c.id == permission_id,
            membership.subject_column == user_id,
            membership.object_column == direct.c.id,
            role_node.c.lft >= direct.c.lft,
            role_node.c.rght <= direct.c.rght,
            grant.subject_column == role_node.c.id,
            grant.object_column == permission_node.c.id,
            permission_node.c.lft <= permission.c.lft,
            permission_node.c.rght >= permission.c.rght,
        )

    async def user_has_role(self, user_id: int, role_id: int) -> bool:
        """
        Check whether ``role_id`` is assigned to the user or below one of its roles.

        Raises:
            NotFoundError: If the role does not exist
        """
        role, role_anchor = self._anchor(self.roles, "anchor_role", role_id)
        direct = self.roles.store.table.alias("direct_role")
        membership = self.user_roles
        return await self._answer(
            [role_anchor],
            role.c.id == role_id,
            membership.subject_column == user_id,
            membership.object_column == direct.c.id,
            direct.c.lft <= role.c.lft,
            direct.c.rght >= role.c.rght,
        )

    async def check(self, permission: IdentifierLike, user_id: int) -> bool:
        """
        Check whether a user holds a permission.

        Args:
            permission: Permission ID, slash path, title or identifier
            user_id: External user ID

        Returns:
            bool: True if any role of the user holds the permission

        Raises:
            NotFoundError: If the permission does not resolve
        """
        permission_id = await resolve(self.permissions, permission)
        return await self.user_has_permission(user_id, permission_id)

    async def enforce(self, permission: IdentifierLike, user_id: int) -> None:
        """
        Guard variant of :meth:`check`.

        Raises:
            AccessDeniedError: If the user lacks the permission
            NotFoundError: If the permission does not resolve
        """
        if not await self.check(permission, user_id):
            logger.warning("Access denied", user_id=user_id, permission=str(permission))
            mssg = f"User {user_id} lacks permission {permission!r}"
            raise AccessDeniedError(mssg, user_id=user_id, permission=permission)
