from nestedrbac.errors.base import RbacError


class StorageFailureError(RbacError):
    """Base exception for storage backend failures."""

    def __init__(self, detail: str = "Storage backend failure") -> None:
        super().__init__(detail)


class DatabaseConfigurationError(StorageFailureError):
    """Exception raised when database configuration is invalid."""

    def __init__(
        self,
        detail: str = "Invalid database configuration",
    ) -> None:
        super().__init__(detail)


class MutationTimeoutError(StorageFailureError):
    """Exception raised when a structural mutation exceeds its time budget."""

    def __init__(
        self,
        detail: str = "Structural mutation timed out and was rolled back",
    ) -> None:
        super().__init__(detail)
