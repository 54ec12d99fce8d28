"""Application settings loaded from environment variables.

Environment Configuration:
    TALENTLINK_ENV: Deployment environment (local | test | staging | prod)
    DATABASE_URL: Database connection string (required)

Auth Configuration:
    JWT_SECRET: HS256 secret shared with the identity service
                (required and >= 32 bytes in staging/prod)
    JWT_ISSUER: Expected `iss` claim (optional; unchecked when unset)
    JWT_LEEWAY_S: Clock skew allowance in seconds

Collaborators:
    POST_CATALOG_URL: Base URL of the talent-post service (optional)
    POST_CATALOG_TIMEOUT_S: HTTP timeout for post lookups

Chat limits:
    CHAT_MAX_CONTENT_LENGTH: Max characters per chat message
    REVIEW_MAX_CONTENT_LENGTH: Max characters per LinkU review
    LIVE_BUS_QUEUE_SIZE: Per-subscriber event queue bound (drop-oldest)
"""

from enum import Enum
from functools import lru_cache
from typing import Annotated

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings

# Used only when no secret is configured in local/test
DEV_JWT_SECRET = "talentlink-local-development-secret-key"
MIN_JWT_SECRET_BYTES = 32


class Environment(str, Enum):
    """Valid deployment environments."""

    LOCAL = "local"
    TEST = "test"
    STAGING = "staging"
    PROD = "prod"


class Settings(BaseSettings):
    """Application configuration.

    Settings are loaded from environment variables.
    Validation rules:
    - DATABASE_URL is always required
    - JWT_SECRET is required (and must be at least 32 bytes) in staging and prod
    - LIVE_BUS_QUEUE_SIZE must be >= 1
    """

    talentlink_env: Environment = Field(default=Environment.LOCAL, alias="TALENTLINK_ENV")
    database_url: Annotated[str, Field(alias="DATABASE_URL")]

    # Auth settings
    jwt_secret: str | None = Field(default=None, alias="JWT_SECRET")
    jwt_issuer: str | None = Field(default=None, alias="JWT_ISSUER")
    jwt_leeway_s: int = Field(default=60, alias="JWT_LEEWAY_S")

    # Post catalog (external talent-post service)
    post_catalog_url: str | None = Field(default=None, alias="POST_CATALOG_URL")
    post_catalog_timeout_s: float = Field(default=5.0, alias="POST_CATALOG_TIMEOUT_S")

    # Chat / review limits
    chat_max_content_length: int = Field(default=2000, alias="CHAT_MAX_CONTENT_LENGTH")
    review_max_content_length: int = Field(default=1000, alias="REVIEW_MAX_CONTENT_LENGTH")

    # Live bus
    live_bus_queue_size: int = Field(default=256, alias="LIVE_BUS_QUEUE_SIZE")

    # Logging
    log_json: bool = Field(default=True, alias="LOG_JSON")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @model_validator(mode="after")
    def validate_required_settings(self) -> "Settings":
        """Ensure environment-dependent settings are present and sane."""
        if self.talentlink_env in (Environment.STAGING, Environment.PROD):
            if not self.jwt_secret:
                raise ValueError(
                    f"JWT_SECRET is required for TALENTLINK_ENV={self.talentlink_env.value}"
                )
            if len(self.jwt_secret.encode("utf-8")) < MIN_JWT_SECRET_BYTES:
                raise ValueError(
                    f"JWT_SECRET must be at least {MIN_JWT_SECRET_BYTES} bytes "
                    f"for TALENTLINK_ENV={self.talentlink_env.value}"
                )

        if self.live_bus_queue_size < 1:
            raise ValueError("LIVE_BUS_QUEUE_SIZE must be >= 1")
        if self.chat_max_content_length < 1:
            raise ValueError("CHAT_MAX_CONTENT_LENGTH must be >= 1")

        return self

    @property
    def effective_jwt_secret(self) -> str:
        """Return the configured JWT secret, falling back to the dev secret in local/test."""
        return self.jwt_secret or DEV_JWT_SECRET


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ValidationError: If required settings are missing or invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache. Useful for testing."""
    get_settings.cache_clear()
