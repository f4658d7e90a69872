class RbacError(Exception):
    """Base exception class for access-control engine errors."""

    def __init__(self, detail: str = "Access control error") -> None:
        self.detail = detail

    def __str__(self) -> str:
        return self.detail
