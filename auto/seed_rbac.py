#!/usr/bin/env python3
"""
Seed RBAC Hierarchies Script.

Creates the schema, optionally resets both hierarchies to the baseline and
adds role paths, permission paths, grants and user assignments.

Usage:
    uv run python auto/seed_rbac.py --create-schema --reset --yes
    uv run python auto/seed_rbac.py -r /editor/reviewer -p /content/publish
    uv run python auto/seed_rbac.py -g /editor=/content -a 42=/editor/reviewer
    uv run python auto/seed_rbac.py --show

Environment Variables:
    DATABASE_URL: Target database (default from Settings)
"""

from argparse import ArgumentParser, Namespace, RawDescriptionHelpFormatter
from asyncio import run as asyncio_run
from dataclasses import dataclass, field
from pathlib import Path
from sys import exit as sys_exit
from sys import path as sys_path
from time import perf_counter
from traceback import print_exc
from typing import Any

# Add project root to path for imports
project_root = Path(__file__).parent.parent
sys_path.insert(0, str(project_root))

from nestedrbac.configs import settings  # noqa: E402
from nestedrbac.db import create_database  # noqa: E402
from nestedrbac.errors import RbacError  # noqa: E402
from nestedrbac.monitoring import bind_context, clear_context, configure_logging  # noqa: E402
from nestedrbac.rbac import Rbac  # noqa: E402
from nestedrbac.repositories import HierarchyIndex  # noqa: E402
from nestedrbac.utils import time_taken  # noqa: E402


@dataclass(frozen=True)
class SeedPlan:
    """
    Seeding steps gathered from the command line.

    Attributes
    ----------
    create_schema : bool
        Create missing tables first.
    reset : bool
        Reset both hierarchies and relations to the baseline.
    roles : list[str]
        Role paths to create.
    permissions : list[str]
        Permission paths to create.
    grants : list[tuple[int | str, int | str]]
        ``(role, permission)`` pairs to grant.
    user_roles : list[tuple[int, int | str]]
        ``(user_id, role)`` pairs to assign.
    show : bool
        Print both hierarchies when done.
    """

    create_schema: bool = False
    reset: bool = False
    roles: list[str] = field(default_factory=list)
    permissions: list[str] = field(default_factory=list)
    grants: list[tuple[int | str, int | str]] = field(default_factory=list)
    user_roles: list[tuple[int, int | str]] = field(default_factory=list)
    show: bool = False


def split_pair(value: str) -> tuple[str, str]:
    """
    Split a ``LEFT=RIGHT`` argument.

    Parameters
    ----------
    value : str
        Raw argument value.

    Returns
    -------
    tuple[str, str]
        Left and right side, stripped.

    Raises
    ------
    ValueError
        If the value has no ``=``.
    """
    left, sep, right = value.partition("=")
    if not sep or not left.strip() or not right.strip():
        msg = f"Expected LEFT=RIGHT, got '{value}'"
        raise ValueError(msg)
    return left.strip(), right.strip()


def as_identifier(value: str) -> int | str:
    """Numeric arguments address nodes by ID, anything else by path or title."""
    return int(value) if value.isdigit() else value


def build_plan(args: Namespace) -> SeedPlan:
    """
    Build a SeedPlan from parsed arguments.

    Parameters
    ----------
    args : argparse.Namespace
        Parsed command line arguments.

    Returns
    -------
    SeedPlan
        Steps to run.
    """
    user_roles = [(int(user), as_identifier(role)) for user, role in map(split_pair, args.assign_user)]
    grants = [(as_identifier(role), as_identifier(perm)) for role, perm in map(split_pair, args.grant)]
    return SeedPlan(
        create_schema=args.create_schema,
        reset=args.reset,
        roles=list(args.role),
        permissions=list(args.permission),
        grants=grants,
        user_roles=user_roles,
        show=args.show,
    )


def confirm_reset() -> bool:
    """
    Ask before wiping both hierarchies.

    Returns
    -------
    bool
        True if the operator confirmed.
    """
    try:
        answer = input("\nReset roles, permissions and all assignments? [y/N]: ").strip().lower()
    except (KeyboardInterrupt, EOFError):
        print("\n\n❌ Cancelled by user.")
        return False
    return answer in ("y", "yes")


async def render_tree(hierarchy: HierarchyIndex[Any]) -> list[str]:
    """
    Render a hierarchy as indented lines.

    Parameters
    ----------
    hierarchy : HierarchyIndex
        Hierarchy to render.

    Returns
    -------
    list[str]
        One line per node, root first.
    """
    return [
        f"{'  ' * depth}{node.title} (id={node.id}, [{node.lft}, {node.rght}])"
        for node, depth in await hierarchy.full_tree()
    ]


async def run_plan(rbac: Rbac, plan: SeedPlan) -> None:
    """
    Execute every step of the plan in order.

    Parameters
    ----------
    rbac : Rbac
        Engine facade bound to the target database.
    plan : SeedPlan
        Steps to run.
    """
    if plan.create_schema:
        await rbac.create_schema()
        print("✅ Schema created")

    if plan.reset:
        await rbac.reset(confirm=True)
        print(f"✅ Reset to baseline (root user {settings.ROOT_USER_ID})")

    for path in plan.roles:
        node_id = await rbac.roles.add_path(path)
        print(f"✅ Role {path} -> {node_id}")

    for path in plan.permissions:
        node_id = await rbac.permissions.add_path(path)
        print(f"✅ Permission {path} -> {node_id}")

    for role, permission in plan.grants:
        created = await rbac.assign(role, permission)
        print(f"{'✅' if created else '•'} Grant {role} -> {permission}")

    for user_id, role in plan.user_roles:
        created = await rbac.assign_user(user_id, role)
        print(f"{'✅' if created else '•'} User {user_id} -> {role}")

    if plan.show:
        for label, hierarchy in (("Roles", rbac.roles), ("Permissions", rbac.permissions)):
            print("=" * 60)
            print(label)
            print("-" * 60)
            print("\n".join(await render_tree(hierarchy)))


def parse_args() -> Namespace:
    """
    Parse command line arguments.

    Returns
    -------
    argparse.Namespace
        Parsed arguments with defaults applied.
    """
    parser = ArgumentParser(
        description="Seed role and permission hierarchies.",
        formatter_class=RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Fresh database with the baseline root role and permission
  uv run python auto/seed_rbac.py --create-schema --reset --yes

  # Paths, grants and user assignments
  uv run python auto/seed_rbac.py \\
    --role /editor/reviewer \\
    --permission /content/publish \\
    --grant /editor=/content \\
    --assign-user 42=/editor/reviewer \\
    --show
        """,
    )

    parser.add_argument("--create-schema", action="store_true", help="Create missing tables")
    parser.add_argument("--reset", action="store_true", help="Reset everything to the baseline")
    parser.add_argument("--yes", "-y", action="store_true", help="Do not ask before --reset")
    parser.add_argument("--role", "-r", action="append", default=[], help="Role path to create")
    parser.add_argument(
        "--permission",
        "-p",
        action="append",
        default=[],
        help="Permission path to create",
    )
    parser.add_argument(
        "--grant",
        "-g",
        action="append",
        default=[],
        help="ROLE=PERMISSION grant (ids, paths or titles)",
    )
    parser.add_argument(
        "--assign-user",
        "-a",
        action="append",
        default=[],
        help="USER_ID=ROLE assignment",
    )
    parser.add_argument("--show", "-s", action="store_true", help="Print both hierarchies")

    return parser.parse_args()


async def main() -> int:
    """
    Run the seeding process.

    Returns
    -------
    int
        Exit code (0 for success, 1 for error).
    """
    args = parse_args()
    try:
        plan = build_plan(args)
    except ValueError as e:
        print(f"\n❌ Error: {e}")
        return 1

    if plan.reset and not args.yes and not confirm_reset():
        print("❌ Cancelled.")
        return 1

    configure_logging()
    bind_context(operation="seed")
    start = perf_counter()
    rbac = Rbac(create_database())
    try:
        await run_plan(rbac, plan)
        print(f"\nDone in {time_taken(start)}")
        return 0
    except RbacError as e:
        print(f"\n❌ Error: {e}")
        return 1
    except Exception as e:  # noqa: BLE001
        print(f"\n❌ Unexpected error: {e}")
        print_exc()
        return 1
    finally:
        await rbac.close()
        clear_context()


if __name__ == "__main__":
    exit_code = asyncio_run(main())
    sys_exit(exit_code)
