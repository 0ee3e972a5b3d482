"""Application configuration via Pydantic Settings v2."""

from functools import lru_cache
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    app_name: str = "ForecastEngine"
    app_env: Literal["development", "testing", "staging", "production"] = "development"
    debug: bool = False

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_format: Literal["json", "console"] = "json"

    # Model tuning (defaults are fixed; override only for experiments)
    forecast_trend_alpha: float = 0.3
    forecast_trend_beta: float = 0.1
    forecast_ar_lags: int = 5
    forecast_interval_z: float = 1.96

    # Execution
    forecast_parallel_fits: bool = True
    forecast_max_workers: int = 3
    forecast_request_timeout_seconds: float | None = 30.0

    @field_validator("forecast_trend_alpha", "forecast_trend_beta")
    @classmethod
    def validate_smoothing_constant(cls, v: float) -> float:
        """Validate that a smoothing constant lies in (0, 1].

        Args:
            v: Smoothing constant.

        Returns:
            Validated smoothing constant.

        Raises:
            ValueError: If the constant is outside (0, 1].
        """
        if not 0.0 < v <= 1.0:
            raise ValueError(f"Smoothing constant must be in (0, 1], got {v}")
        return v

    @field_validator("forecast_request_timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float | None) -> float | None:
        """Reject non-positive deadlines (use None to disable)."""
        if v is not None and v <= 0:
            raise ValueError("forecast_request_timeout_seconds must be positive or unset")
        return v

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.app_env == "development"

    @property
    def is_testing(self) -> bool:
        """Check if running in testing mode."""
        return self.app_env == "testing"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.app_env == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton."""
    return Settings()
