from nestedrbac.configs.settings import (
    MAX_DESCRIPTION_LENGTH,
    PATH_SEPARATOR,
    TITLE_COLUMN_LENGTH,
    Settings,
    pool_kwargs,
    settings,
)

__all__ = [
    "MAX_DESCRIPTION_LENGTH",
    "PATH_SEPARATOR",
    "Settings",
    "TITLE_COLUMN_LENGTH",
    "pool_kwargs",
    "settings",
]
