"""Tests for application configuration."""
import pytest
from pydantic import ValidationError

from core.config import Settings


class TestSecretSizeDefaults:
    """Tests for default secret sizes."""

    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Production defaults apply when nothing is configured."""
        for name in ("BCRYPT_ROUNDS", "RSA_KEY_SIZE", "REFRESH_TOKEN_LENGTH", "DB_POOL_SIZE"):
            monkeypatch.delenv(name, raising=False)
        settings = Settings(_env_file=None, database_url="postgresql+asyncpg://test")
        assert settings.access_key_length == 32
        assert settings.refresh_token_length == 32
        assert settings.auth_token_length == 32
        assert settings.rsa_key_size == 2048
        assert settings.bcrypt_rounds == 12
        assert settings.db_pool_size == 10

    def test_environment_variables_override_defaults(
        self,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Uppercase environment variables are read through their aliases."""
        monkeypatch.setenv("REFRESH_TOKEN_LENGTH", "48")
        monkeypatch.setenv("DB_ECHO", "true")
        settings = Settings(_env_file=None, database_url="postgresql+asyncpg://test")
        assert settings.refresh_token_length == 48
        assert settings.db_echo is True

    def test_database_url_is_required(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Settings cannot be built without a database URL."""
        monkeypatch.delenv("DATABASE_URL", raising=False)
        with pytest.raises(ValidationError):
            Settings(_env_file=None)


class TestSecretSizeValidation:
    """Tests for rejecting unusable secret sizes."""

    @pytest.mark.parametrize(
        "field",
        ["ACCESS_KEY_LENGTH", "REFRESH_TOKEN_LENGTH", "AUTH_TOKEN_LENGTH"],
    )
    def test_non_positive_lengths_rejected(self, field: str) -> None:
        """Zero-length opaque tokens would all collide."""
        with pytest.raises(ValidationError, match="positive integer"):
            Settings(_env_file=None, database_url="postgresql+asyncpg://test", **{field: 0})

    def test_small_rsa_key_rejected(self) -> None:
        with pytest.raises(ValidationError, match="at least 1024"):
            Settings(_env_file=None, database_url="postgresql+asyncpg://test", RSA_KEY_SIZE=512)

    @pytest.mark.parametrize("rounds", [3, 32])
    def test_bcrypt_rounds_out_of_range_rejected(self, rounds: int) -> None:
        with pytest.raises(ValidationError, match="bcrypt_rounds"):
            Settings(_env_file=None, database_url="postgresql+asyncpg://test", BCRYPT_ROUNDS=rounds)
