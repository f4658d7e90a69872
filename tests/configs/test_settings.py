# tests/configs/test_settings.py
"""Tests for nestedrbac/configs/settings.py module."""

import pytest
from pydantic import ValidationError

from nestedrbac.configs import TITLE_COLUMN_LENGTH, Settings, pool_kwargs
from nestedrbac.models import PermissionDB, RoleDB


class TestSettings:
    """Tests for settings validation."""

    def test_defaults(self) -> None:
        config = Settings(_env_file=None)  # type: ignore[call-arg]
        assert config.ROOT_TITLE == "root"
        assert config.MAX_TITLE_LENGTH == 128
        assert config.VERIFY_INVARIANTS is True

    @pytest.mark.parametrize("title", ["", "a/b"])
    def test_root_title_rejected(self, title: str) -> None:
        with pytest.raises(ValidationError):
            Settings(ROOT_TITLE=title)

    @pytest.mark.parametrize("field", ["MAX_PATH_LENGTH", "MAX_TITLE_LENGTH", "MUTATION_TIMEOUT"])
    def test_limits_must_be_positive(self, field: str) -> None:
        with pytest.raises(ValidationError):
            Settings(**{field: 0})

    def test_environment_literal(self) -> None:
        with pytest.raises(ValidationError):
            Settings(ENVIRONMENT="moon")  # type: ignore[arg-type]

    def test_reads_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ROOT_USER_ID", "99")
        assert Settings().ROOT_USER_ID == 99


class TestPoolKwargs:
    """Tests for backend specific engine arguments."""

    def test_sqlite(self) -> None:
        kwargs = pool_kwargs(Settings(DATABASE_URL="sqlite+aiosqlite:///:memory:", STATEMENT_TIMEOUT_MS=5000))
        assert kwargs == {"connect_args": {"timeout": 5.0}}

    def test_postgres(self) -> None:
        kwargs = pool_kwargs(Settings(DATABASE_URL="postgresql+asyncpg://u:p@db/rbac", STATEMENT_TIMEOUT_MS=2000))
        assert kwargs["pool_pre_ping"] is True
        assert kwargs["connect_args"]["server_settings"]["lock_timeout"] == "2000"
        assert kwargs["connect_args"]["command_timeout"] == 2.0


class TestTitleLength:
    """Tests for the title limit against the stored column."""

    def test_limit_above_column_rejected(self) -> None:
        with pytest.raises(ValidationError, match="title column"):
            Settings(MAX_TITLE_LENGTH=TITLE_COLUMN_LENGTH + 1)

    def test_limit_at_column_accepted(self) -> None:
        assert Settings(MAX_TITLE_LENGTH=TITLE_COLUMN_LENGTH).MAX_TITLE_LENGTH == TITLE_COLUMN_LENGTH

    def test_column_matches_constant(self) -> None:
        assert RoleDB.__table__.c.title.type.length == TITLE_COLUMN_LENGTH  # type: ignore[attr-defined]
        assert PermissionDB.__table__.c.title.type.length == TITLE_COLUMN_LENGTH  # type: ignore[attr-defined]
