"""Slash-path normalisation and title validation."""

from nestedrbac.configs.settings import MAX_DESCRIPTION_LENGTH, PATH_SEPARATOR
from nestedrbac.errors.tree import InvalidOperationError


def normalize_path(path: str, max_length: int) -> str:
    """
    Return ``path`` with a leading separator and no trailing one.

    Args:
        path: Raw slash path such as ``"a/b/"`` or ``"/a/b"``
        max_length: Longest accepted normalised path

    Returns:
        str: Normalised path; ``"/"`` addresses the root

    Raises:
        InvalidOperationError: If the path is too long or has empty segments
    """
    if not path.startswith(PATH_SEPARATOR):
        path = PATH_SEPARATOR + path
    if PATH_SEPARATOR * 2 in path:
        mssg = f"Path '{path}' contains an empty segment"
        raise InvalidOperationError(mssg)
    if len(path) > 1:
        path = path.removesuffix(PATH_SEPARATOR)
    if len(path) > max_length:
        mssg = f"Path exceeds {max_length} characters"
        raise InvalidOperationError(mssg)
    return path


def split_path(path: str, max_length: int) -> list[str]:
    """Split a slash path into titles below the root."""
    normalized = normalize_path(path, max_length)
    if normalized == PATH_SEPARATOR:
        return []
    return normalized[1:].split(PATH_SEPARATOR)


def join_path(titles: list[str]) -> str:
    return PATH_SEPARATOR + PATH_SEPARATOR.join(titles)


def validate_title(title: str, max_length: int) -> str:
    if not title:
        mssg = "Title must not be empty"
        raise InvalidOperationError(mssg)
    if PATH_SEPARATOR in title:
        mssg = f"Title '{title}' must not contain '{PATH_SEPARATOR}'"
        raise InvalidOperationError(mssg)
    if len(title) > max_length:
        mssg = f"Title exceeds {max_length} characters"
        raise InvalidOperationError(mssg)
    return title


def validate_description(description: str) -> str:
    if len(description) > MAX_DESCRIPTION_LENGTH:
        mssg = f"Description exceeds {MAX_DESCRIPTION_LENGTH} characters"
        raise InvalidOperationError(mssg)
    return description
