"""Tests for configuration management."""

import pytest
from pydantic import ValidationError

from apiscope.core.config import Environment, Settings, get_settings


def test_environment_enum() -> None:
    """Test Environment enum values."""
    assert Environment.DEVELOPMENT == "development"
    assert Environment.STAGING == "staging"
    assert Environment.PRODUCTION == "production"


def test_settings_defaults(monkeypatch) -> None:
    """Test that a bare environment yields the documented defaults."""
    for name in ("SESSION_TTL_MS", "MAX_SESSIONS", "CLEANUP_INTERVAL_MS", "ENVIRONMENT"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings(_env_file=None)

    assert settings.APP_NAME == "APIScope"
    assert settings.ENVIRONMENT == Environment.DEVELOPMENT
    assert settings.SESSION_TTL_MS == 3_600_000
    assert settings.MAX_SESSIONS == 100
    assert settings.CLEANUP_INTERVAL_MS == 900_000
    assert settings.SESSION_SIZE_WARNING_THRESHOLD == 50
    assert settings.NAVIGATION_MAX_RETRIES == 3
    assert settings.NAVIGATION_INITIAL_DELAY_MS == 1000
    assert settings.NAVIGATION_MAX_DELAY_MS == 8000
    assert settings.NAVIGATION_BACKOFF_MULTIPLIER == 2.0
    assert settings.NAVIGATION_TIMEOUT_MS == 45_000
    assert settings.CAPTURE_QUEUE_SIZE == 1000


def test_settings_from_environment(monkeypatch) -> None:
    """Test that environment variables override defaults."""
    monkeypatch.setenv("MAX_SESSIONS", "5")
    monkeypatch.setenv("SESSION_TTL_MS", "60000")
    monkeypatch.setenv("ENVIRONMENT", "production")

    settings = Settings(_env_file=None)

    assert settings.MAX_SESSIONS == 5
    assert settings.SESSION_TTL_MS == 60_000
    assert settings.is_production is True


def test_settings_reject_invalid_bounds() -> None:
    """Test that non-positive limits are rejected."""
    with pytest.raises(ValidationError) as exc_info:
        Settings(_env_file=None, MAX_SESSIONS=0)

    assert "MAX_SESSIONS" in str(exc_info.value)

    with pytest.raises(ValidationError):
        Settings(_env_file=None, NAVIGATION_BACKOFF_MULTIPLIER=0.5)


def test_settings_environment_properties() -> None:
    """Test environment property helpers."""
    dev_settings = Settings(_env_file=None, ENVIRONMENT=Environment.DEVELOPMENT)
    assert dev_settings.is_development is True
    assert dev_settings.is_production is False

    prod_settings = Settings(_env_file=None, ENVIRONMENT=Environment.PRODUCTION)
    assert prod_settings.is_development is False
    assert prod_settings.is_production is True


def test_get_settings_is_cached() -> None:
    """Test that get_settings returns one shared instance."""
    get_settings.cache_clear()

    assert get_settings() is get_settings()
