"""Node identifiers accepted at the public API boundary."""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from sqlalchemy.ext.asyncio import AsyncSession

from nestedrbac.configs.settings import PATH_SEPARATOR
from nestedrbac.errors.tree import InvalidOperationError, NotFoundError

if TYPE_CHECKING:
    from nestedrbac.repositories.hierarchy import HierarchyIndex


@dataclass(frozen=True, slots=True)
class ById:
    """Node addressed by its primary key."""

    id: int


@dataclass(frozen=True, slots=True)
class ByPath:
    """Node addressed by its slash path, e.g. ``/editor/reviewer``."""

    path: str


@dataclass(frozen=True, slots=True)
class ByTitle:
    """Node addressed by a title that must be unique in its hierarchy."""

    title: str


type Identifier = ById | ByPath | ByTitle
type IdentifierLike = Identifier | int | str


def to_identifier(value: IdentifierLike) -> Identifier:
    """
    Tag a raw value.

    Integers become :class:`ById`, strings starting with ``/`` become
    :class:`ByPath` and any other string becomes :class:`ByTitle`.

    Raises:
        InvalidOperationError: For values of any other type
    """
    match value:
        case ById() | ByPath() | ByTitle():
            return value
        case bool():
            pass
        case int():
            return ById(value)
        case str() if value.startswith(PATH_SEPARATOR):
            return ByPath(value)
        case str():
            return ByTitle(value)
    mssg = f"Cannot identify a node by {value!r}"
    raise InvalidOperationError(mssg)


async def resolve(
    hierarchy: "HierarchyIndex[Any]",
    value: IdentifierLike,
    *,
    session: AsyncSession | None = None,
) -> int:
    """
    Resolve an identifier to an existing node ID of ``hierarchy``.

    Raises:
        NotFoundError: If the identifier does not resolve
        InvalidOperationError: If it is malformed or ambiguous
    """
    match to_identifier(value):
        case ById(node_id):
            if not await hierarchy.exists(node_id, session=session):
                mssg = f"{hierarchy.name} node {node_id} not found"
                raise NotFoundError(mssg)
            return node_id
        case ByPath(path):
            return await hierarchy.path_to_id(path, session=session)
        case ByTitle(title):
            return await hierarchy.find_by_title(title, session=session)
