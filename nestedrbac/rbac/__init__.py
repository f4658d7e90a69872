"""Access checks and the engine facade."""

from nestedrbac.rbac.checker import AccessChecker
from nestedrbac.rbac.identifiers import ById, ByPath, ByTitle, Identifier, IdentifierLike, resolve, to_identifier
from nestedrbac.rbac.manager import Rbac

__all__ = [
    "AccessChecker",
    "ById",
    "ByPath",
    "ByTitle",
    "Identifier",
    "IdentifierLike",
    "Rbac",
    "resolve",
    "to_identifier",
]
