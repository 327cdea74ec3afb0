"""Application settings using Pydantic Settings for environment-based configuration."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Central configuration for alloyvec.

    All settings can be overridden via environment variables.
    Prefix is not used to allow standard env var names (e.g., DB_HOST).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: Literal["development", "staging", "production"] = "development"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # PostgreSQL / AlloyDB
    db_host: str = "localhost"
    db_port: int = Field(default=5432, ge=1, le=65535)
    db_name: str = "postgres"

    # Leave both unset to authenticate with an identity token
    db_user: str | None = None
    db_password: SecretStr | None = None
    db_iam_account_email: str | None = None

    # Set to connect through the AlloyDB connector instead of host/port
    db_instance_uri: str | None = Field(
        default=None,
        description="projects/<project>/locations/<region>/clusters/<cluster>/instances/<instance>",
    )
    db_ip_type: Literal["PUBLIC", "PRIVATE", "PSC"] = "PUBLIC"

    db_pool_min_size: int = Field(default=1, ge=0)
    db_pool_max_size: int = Field(default=10, ge=1)
    db_acquire_timeout: float = Field(
        default=30.0,
        gt=0.0,
        description="Seconds to wait for a free pooled connection",
    )
    db_command_timeout: float = Field(
        default=60.0,
        gt=0.0,
        description="Per-statement timeout in seconds",
    )

    # Identity-token auth
    tokeninfo_url: str = "https://oauth2.googleapis.com/tokeninfo"
    token_refresh_margin_seconds: float = Field(
        default=300.0,
        ge=0.0,
        description="Refresh the access token this long before it expires",
    )
    identity_http_timeout: float = Field(default=10.0, gt=0.0)

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    @property
    def static_credentials_configured(self) -> bool:
        """Check if both a user and a password are configured."""
        return self.db_user is not None and self.db_password is not None


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are loaded only once.
    Clear cache with get_settings.cache_clear() if needed.
    """
    return Settings()
