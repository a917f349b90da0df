"""Application configuration using pydantic-settings."""
from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Database
    database_url: str
    db_pool_size: int = Field(default=10, validation_alias="DB_POOL_SIZE")
    db_max_overflow: int = Field(default=20, validation_alias="DB_MAX_OVERFLOW")
    db_echo: bool = Field(default=False, validation_alias="DB_ECHO")

    # Secret material lengths
    access_key_length: int = Field(default=32, validation_alias="ACCESS_KEY_LENGTH")
    refresh_token_length: int = Field(default=32, validation_alias="REFRESH_TOKEN_LENGTH")
    auth_token_length: int = Field(default=32, validation_alias="AUTH_TOKEN_LENGTH")

    # Key generation and password hashing cost
    rsa_key_size: int = Field(default=2048, validation_alias="RSA_KEY_SIZE")
    bcrypt_rounds: int = Field(default=12, validation_alias="BCRYPT_ROUNDS")

    @model_validator(mode="after")
    def validate_secret_sizes(self) -> "Settings":
        """
        Reject secret sizes that would produce unusable credentials.

        Opaque tokens are used as lookup keys, so a zero or negative length
        would collapse every issued token onto the same value.
        """
        for name in ("access_key_length", "refresh_token_length", "auth_token_length"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be a positive integer")
        if self.rsa_key_size < 1024:
            raise ValueError("rsa_key_size must be at least 1024 bits")
        if not 4 <= self.bcrypt_rounds <= 31:
            raise ValueError("bcrypt_rounds must be between 4 and 31")
        return self


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
