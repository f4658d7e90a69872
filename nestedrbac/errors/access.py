from nestedrbac.errors.base import RbacError


class AccessDeniedError(RbacError):
    """Raised by guard call sites when a user lacks a permission."""

    def __init__(
        self,
        detail: str = "Access denied",
        *,
        user_id: int | None = None,
        permission: object = None,
    ) -> None:
        super().__init__(detail)
        self.user_id = user_id
        self.permission = permission
