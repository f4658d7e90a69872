from nestedrbac.errors.access import AccessDeniedError
from nestedrbac.errors.base import RbacError
from nestedrbac.errors.database import (
    DatabaseConfigurationError,
    MutationTimeoutError,
    StorageFailureError,
)
from nestedrbac.errors.tree import (
    ConstraintViolationError,
    InvalidOperationError,
    NotFoundError,
    PreconditionFailedError,
)

__all__ = [
    "RbacError",
    "AccessDeniedError",
    "ConstraintViolationError",
    "DatabaseConfigurationError",
    "InvalidOperationError",
    "MutationTimeoutError",
    "NotFoundError",
    "PreconditionFailedError",
    "StorageFailureError",
]
