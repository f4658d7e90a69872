"""Utility helper functions."""

from nestedrbac.utils.helpers import time_taken, today_str, utc_now
from nestedrbac.utils.paths import (
    join_path,
    normalize_path,
    split_path,
    validate_description,
    validate_title,
)

__all__ = [
    "join_path",
    "normalize_path",
    "split_path",
    "time_taken",
    "today_str",
    "utc_now",
    "validate_description",
    "validate_title",
]
