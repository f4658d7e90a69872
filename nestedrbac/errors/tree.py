"""Errors raised by hierarchy reads and structural mutations."""

from nestedrbac.errors.base import RbacError


class NotFoundError(RbacError):
    """Raised when an id, path, or title does not resolve to a node."""

    def __init__(self, detail: str = "Node not found") -> None:
        super().__init__(detail)


class InvalidOperationError(RbacError):
    """Raised for operations the tree cannot perform, such as deleting the root."""

    def __init__(self, detail: str = "Invalid operation") -> None:
        super().__init__(detail)


class PreconditionFailedError(RbacError):
    """Raised when a destructive call is made without explicit confirmation."""

    def __init__(
        self,
        detail: str = "This operation requires explicit confirmation (confirm=True)",
    ) -> None:
        super().__init__(detail)


class ConstraintViolationError(RbacError):
    """Raised when the nested-set invariants no longer hold."""

    def __init__(self, detail: str = "Nested-set invariant violated") -> None:
        super().__init__(detail)
