"""Configuration management using Pydantic Settings.

All configuration values are loaded from environment variables or a local
.env file. Every setting has a working default so a bare checkout can run a
capture without any configuration.
"""

from enum import Enum
from functools import lru_cache
from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Application environment types."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Session store limits and retry tuning mirror the production defaults;
    override them per deployment through the environment.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Application Settings
    APP_NAME: str = Field(default="APIScope", description="Application name")
    ENVIRONMENT: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Application environment (development/staging/production)",
    )
    DEBUG: bool = Field(default=False, description="Enable debug mode")
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")

    # Session Store Settings
    SESSION_TTL_MS: int = Field(
        default=3_600_000, gt=0, description="Maximum session age in milliseconds"
    )
    MAX_SESSIONS: int = Field(default=100, ge=1, description="Maximum number of stored sessions")
    CLEANUP_INTERVAL_MS: int = Field(
        default=900_000, gt=0, description="Background sweep interval in milliseconds"
    )
    SESSION_SIZE_WARNING_THRESHOLD: int = Field(
        default=50, ge=1, description="Log a warning once this many sessions are stored"
    )

    # Navigation Retry Settings
    NAVIGATION_MAX_RETRIES: int = Field(default=3, ge=0, description="Retries for page navigation")
    NAVIGATION_INITIAL_DELAY_MS: int = Field(
        default=1000, ge=0, description="First retry delay in milliseconds"
    )
    NAVIGATION_MAX_DELAY_MS: int = Field(
        default=8000, ge=0, description="Upper bound for a single retry delay in milliseconds"
    )
    NAVIGATION_BACKOFF_MULTIPLIER: float = Field(
        default=2.0, ge=1.0, description="Exponential backoff multiplier"
    )
    NAVIGATION_TIMEOUT_MS: int = Field(
        default=45_000, gt=0, description="Timeout for a single navigation attempt"
    )

    # Capture Settings
    CAPTURE_TIMEOUT_SECONDS: float = Field(
        default=120.0, gt=0, description="Overall capture timeout; partial results after expiry"
    )
    CAPTURE_QUEUE_SIZE: int = Field(
        default=1000, ge=1, description="Bounded event channel size per capture"
    )
    BROWSER_HEADLESS: bool = Field(default=True, description="Run Chromium headless")
    DEFAULT_USER_AGENT: str = Field(
        default=(
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
        ),
        description="User agent used when a capture does not supply one",
    )

    # API Settings
    API_PREFIX: str = Field(default="/api", description="API route prefix")
    CORS_ORIGINS: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="CORS allowed origins",
    )

    @field_validator("DEBUG", mode="before")
    @classmethod
    def set_debug_from_environment(cls, v: bool | None, info: Any) -> bool:
        """Automatically enable debug mode in development environment."""
        if v is None and "ENVIRONMENT" in info.data:
            return bool(info.data["ENVIRONMENT"] == Environment.DEVELOPMENT)
        return bool(v) if v is not None else False

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.ENVIRONMENT == Environment.DEVELOPMENT

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.ENVIRONMENT == Environment.PRODUCTION


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Settings: Application settings instance
    """
    return Settings()
