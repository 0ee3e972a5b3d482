"""Tests for application configuration."""

import pytest
from pydantic import ValidationError

from app.core.config import Settings, get_settings


def test_settings_has_defaults():
    """Settings should have sensible defaults."""
    settings = Settings()

    assert settings.app_name == "ForecastEngine"
    assert settings.app_env == "development"
    assert settings.debug is False
    assert settings.log_level == "INFO"
    assert settings.log_format == "json"


def test_settings_model_defaults():
    """Model tuning defaults match the fixed engine constants."""
    settings = Settings()

    assert settings.forecast_trend_alpha == 0.3
    assert settings.forecast_trend_beta == 0.1
    assert settings.forecast_ar_lags == 5
    assert settings.forecast_interval_z == 1.96
    assert settings.forecast_parallel_fits is True


def test_settings_is_development_property():
    """is_development should return True for development env."""
    settings = Settings(app_env="development")
    assert settings.is_development is True
    assert settings.is_production is False


def test_settings_is_production_property():
    """is_production should return True for production env."""
    settings = Settings(app_env="production")
    assert settings.is_development is False
    assert settings.is_production is True


def test_settings_is_testing_property():
    """is_testing should return True for testing env."""
    settings = Settings(app_env="testing")
    assert settings.is_testing is True


def test_get_settings_returns_singleton():
    """get_settings should return cached singleton."""
    settings1 = get_settings()
    settings2 = get_settings()

    assert settings1 is settings2


def test_settings_from_environment(monkeypatch):
    """Settings should load from environment variables."""
    monkeypatch.setenv("APP_NAME", "TestApp")
    monkeypatch.setenv("DEBUG", "true")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    monkeypatch.setenv("FORECAST_PARALLEL_FITS", "false")

    # Create new settings instance (not cached)
    settings = Settings()

    assert settings.app_name == "TestApp"
    assert settings.debug is True
    assert settings.log_level == "DEBUG"
    assert settings.forecast_parallel_fits is False


@pytest.mark.parametrize("value", [0.0, -0.1, 1.5])
def test_settings_rejects_invalid_smoothing_constant(value):
    """Smoothing constants outside (0, 1] are rejected."""
    with pytest.raises(ValidationError, match="Smoothing constant"):
        Settings(forecast_trend_alpha=value)


def test_settings_rejects_non_positive_timeout():
    """A zero deadline is rejected; None disables the deadline."""
    with pytest.raises(ValidationError, match="forecast_request_timeout_seconds"):
        Settings(forecast_request_timeout_seconds=0)

    assert Settings(forecast_request_timeout_seconds=None).forecast_request_timeout_seconds is None
