"""Core infrastructure: config, logging, middleware, exceptions."""

from app.core.config import Settings, get_settings
from app.core.exceptions import ForecastEngineError
from app.core.logging import forecast_log_context, get_logger, request_id_ctx

__all__ = [
    "ForecastEngineError",
    "Settings",
    "forecast_log_context",
    "get_logger",
    "get_settings",
    "request_id_ctx",
]
