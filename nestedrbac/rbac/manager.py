"""Facade wiring hierarchies, assignments and access checks together."""

from nestedrbac.db.database import Database, create_database
from nestedrbac.models import PermissionDB, RoleDB, RolePermissionDB, UserRoleDB, table_of
from nestedrbac.monitoring import get_logger
from nestedrbac.rbac.checker import AccessChecker
from nestedrbac.rbac.identifiers import IdentifierLike, resolve
from nestedrbac.repositories.assignment import AssignmentStore
from nestedrbac.repositories.hierarchy import HierarchyIndex
from nestedrbac.repositories.tree import IntervalTreeStore

logger = get_logger(__name__)


class Rbac:
    """
    Entry point of the engine.

    Example:
        ```python
        rbac = Rbac(create_database())
        await rbac.create_schema()
        await rbac.reset(confirm=True)
        editor = await rbac.roles.add_path("/editor")
        publish = await rbac.permissions.add_path("/content/publish")
        await rbac.assign(editor, "/content")
        await rbac.assign_user(42, "/editor")
        await rbac.enforce("/content/publish", 42)
        ```

    Attributes:
        roles: Role hierarchy.
        permissions: Permission hierarchy.
        role_permissions: Role to permission grants.
        user_roles: User to role assignments.
        checker: Access queries over all of the above.
    """

    def __init__(self, database: Database | None = None) -> None:
        self.database = database or create_database()
        user_roles_table = table_of(UserRoleDB)
        role_permissions_table = table_of(RolePermissionDB)

        self.roles = HierarchyIndex(
            IntervalTreeStore(self.database, RoleDB),
            references=[user_roles_table.c.role_id, role_permissions_table.c.role_id],
        )
        self.permissions = HierarchyIndex(
            IntervalTreeStore(self.database, PermissionDB),
            references=[role_permissions_table.c.permission_id],
        )
        self.role_permissions = AssignmentStore(
            self.database,
            RolePermissionDB,
            "role_id",
            "permission_id",
            objects=self.permissions,
            subjects=self.roles,
        )
        self.user_roles = AssignmentStore(
            self.database,
            UserRoleDB,
            "user_id",
            "role_id",
            objects=self.roles,
            root_subject_id=self.database.settings.ROOT_USER_ID,
        )
        self.checker = AccessChecker(self.roles, self.permissions, self.role_permissions, self.user_roles)

    async def create_schema(self) -> None:
        await self.database.create_all()

    async def close(self) -> None:
        await self.database.close()

    async def reset(self, confirm: bool = False) -> bool:
        """
        Reset both hierarchies and both relations to the baseline.

        The baseline is a root role and a root permission, the root role
        granted the root permission, and ``ROOT_USER_ID`` holding the root
        role.

        Raises:
            PreconditionFailedError: Unless ``confirm`` is True
        """
        await self.roles.reset(confirm)
        await self.permissions.reset(confirm)
        await self.role_permissions.reset_assignments(confirm)
        await self.user_roles.reset_assignments(confirm)
        logger.info("Access control reset", root_user_id=self.database.settings.ROOT_USER_ID)
        return True

    # --- Grants ---

    async def assign(self, role: IdentifierLike, permission: IdentifierLike) -> bool:
        role_id = await resolve(self.roles, role)
        permission_id = await resolve(self.permissions, permission)
        return await self.role_permissions.assign(role_id, permission_id)

    async def unassign(self, role: IdentifierLike, permission: IdentifierLike) -> int:
        role_id = await resolve(self.roles, role)
        permission_id = await resolve(self.permissions, permission)
        return await self.role_permissions.unassign(role_id, permission_id)

    async def assign_user(self, user_id: int, role: IdentifierLike) -> bool:
        role_id = await resolve(self.roles, role)
        return await self.user_roles.assign(user_id, role_id)

    async def unassign_user(self, user_id: int, role: IdentifierLike) -> int:
        role_id = await resolve(self.roles, role)
        return await self.user_roles.unassign(user_id, role_id)

    # --- Checks ---

    async def has_permission(self, role: IdentifierLike, permission: IdentifierLike) -> bool:
        role_id = await resolve(self.roles, role)
        permission_id = await resolve(self.permissions, permission)
        return await self.checker.has_permission(role_id, permission_id)

    async def user_has_role(self, user_id: int, role: IdentifierLike) -> bool:
        role_id = await resolve(self.roles, role)
        return await self.checker.user_has_role(user_id, role_id)

    async def check(self, permission: IdentifierLike, user_id: int) -> bool:
        return await self.checker.check(permission, user_id)

    async def enforce(self, permission: IdentifierLike, user_id: int) -> None:
        await self.checker.enforce(permission, user_id)
