"""Forecast engine exception taxonomy and FastAPI exception handlers.

Every engine failure is a ``ForecastEngineError`` subclass carrying a ``kind``
(the class name), a machine-readable ``code``, a human-readable message and,
where applicable, the offending ``field`` in ``details``. Handlers render them
as RFC 7807 Problem Details.
"""

from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError

from app.core.logging import get_logger
from app.core.problem_details import (
    ERROR_TYPES,
    ProblemDetailResponse,
    problem_response,
)

logger = get_logger(__name__)


# =============================================================================
# Exception Classes
# =============================================================================


class ForecastEngineError(Exception):
    """Base exception for forecast engine errors.

    Each subclass maps to an RFC 7807 problem type URI.
    """

    error_type_uri: str = ERROR_TYPES["INTERNAL_ERROR"]

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        status_code: int = 500,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize engine error.

        Args:
            message: Human-readable error message.
            code: Machine-readable error code.
            status_code: HTTP status code.
            details: Additional error context (e.g. {"field": "horizon_periods"}).
        """
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}

    @property
    def kind(self) -> str:
        """Error kind reported to callers (the exception class name)."""
        return type(self).__name__

    @property
    def field(self) -> str | None:
        """Offending request field, if the error is tied to one."""
        value = self.details.get("field")
        return str(value) if value is not None else None

    @property
    def title(self) -> str:
        """RFC 7807 title - short summary of problem type."""
        return self.code.replace("_", " ").title()

    def to_dict(self) -> dict[str, Any]:
        """Structured representation (kind + message + field)."""
        payload: dict[str, Any] = {"kind": self.kind, "message": self.message}
        if self.field is not None:
            payload["field"] = self.field
        return payload


class ValidationError(ForecastEngineError):
    """Malformed forecast request (bad horizon, lookback or enum value).

    Never retried; the caller must fix the input.
    """

    error_type_uri: str = ERROR_TYPES["VALIDATION_ERROR"]

    def __init__(
        self,
        message: str = "Validation failed",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            status_code=422,
            details=details,
        )


class InsufficientDataError(ForecastEngineError):
    """Fewer aggregated periods than the requested lookback.

    Not retried automatically; more history must arrive first.
    """

    error_type_uri: str = ERROR_TYPES["INSUFFICIENT_DATA"]

    def __init__(
        self,
        message: str = "Insufficient historical data",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            code="INSUFFICIENT_DATA",
            status_code=422,
            details=details,
        )


class ModelFitError(ForecastEngineError):
    """A single model failed to fit.

    Recovered inside an ensemble by excluding the model; fatal when it is the
    only requested model or every ensemble member fails.
    """

    error_type_uri: str = ERROR_TYPES["MODEL_FIT_ERROR"]

    def __init__(
        self,
        message: str = "Model fit failed",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            code="MODEL_FIT_ERROR",
            status_code=422,
            details=details,
        )


class InsufficientActualsError(ForecastEngineError):
    """No overlap between predictions and held-out actuals."""

    error_type_uri: str = ERROR_TYPES["INSUFFICIENT_ACTUALS"]

    def __init__(
        self,
        message: str = "No actuals available for evaluation",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            code="INSUFFICIENT_ACTUALS",
            status_code=422,
            details=details,
        )


class ForecastCancelledError(ForecastEngineError):
    """The caller cancelled the request between pipeline phases."""

    error_type_uri: str = ERROR_TYPES["FORECAST_CANCELLED"]

    def __init__(
        self,
        message: str = "Forecast request cancelled",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            code="FORECAST_CANCELLED",
            status_code=499,
            details=details,
        )


class ForecastTimeoutError(ForecastEngineError):
    """The per-request deadline elapsed before the pipeline completed."""

    error_type_uri: str = ERROR_TYPES["FORECAST_TIMEOUT"]

    def __init__(
        self,
        message: str = "Forecast request exceeded its deadline",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            code="FORECAST_TIMEOUT",
            status_code=504,
            details=details,
        )


class BadRequestError(ForecastEngineError):
    """Request is well-formed but cannot be served (e.g. too few forecasts to compare)."""

    error_type_uri: str = ERROR_TYPES["BAD_REQUEST"]

    def __init__(
        self,
        message: str = "Bad request",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            code="BAD_REQUEST",
            status_code=400,
            details=details,
        )


# =============================================================================
# Exception Handlers (RFC 7807)
# =============================================================================


async def forecast_engine_exception_handler(
    _request: Request,
    exc: ForecastEngineError,
) -> ProblemDetailResponse:
    """Render a ForecastEngineError as RFC 7807 Problem Details.

    Args:
        _request: FastAPI request object.
        exc: The raised exception.

    Returns:
        RFC 7807 Problem Detail response.
    """
    logger.warning(
        "app.error_handled",
        error=exc.message,
        error_kind=exc.kind,
        error_code=exc.code,
        status_code=exc.status_code,
        details=exc.details,
    )

    errors = [{"field": exc.field, "message": exc.message}] if exc.field else None

    return problem_response(
        status=exc.status_code,
        title=exc.title,
        detail=exc.message,
        error_code=exc.code,
        kind=exc.kind,
        errors=errors,
    )


async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> ProblemDetailResponse:
    """Render request-body validation failures as a ``ValidationError`` problem.

    Args:
        request: FastAPI request object.
        exc: Pydantic validation error raised by FastAPI.

    Returns:
        RFC 7807 Problem Detail response with field-level errors.
    """
    field_errors: list[dict[str, str]] = []
    for error in exc.errors():
        loc = error.get("loc", [])
        field_path = ".".join(str(part) for part in loc if part != "body")
        field_errors.append(
            {
                "field": field_path,
                "message": str(error.get("msg", "Validation failed")),
                "type": str(error.get("type", "unknown")),
            }
        )

    logger.warning(
        "app.validation_error",
        error_count=len(field_errors),
        path=str(request.url.path),
        fields=[e["field"] for e in field_errors],
    )

    return problem_response(
        status=422,
        title="Validation Error",
        detail=f"Request validation failed with {len(field_errors)} error(s).",
        error_code="VALIDATION_ERROR",
        kind="ValidationError",
        errors=field_errors,
    )


async def unhandled_exception_handler(
    request: Request,
    exc: Exception,
) -> ProblemDetailResponse:
    """Render unexpected exceptions without leaking internals."""
    logger.error(
        "app.unhandled_error",
        error=str(exc),
        error_type=type(exc).__name__,
        path=str(request.url.path),
        exc_info=True,
    )

    return problem_response(
        status=500,
        title="Internal Server Error",
        detail="An unexpected error occurred while generating the forecast.",
        error_code="INTERNAL_ERROR",
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register exception handlers with FastAPI app.

    Args:
        app: FastAPI application instance.
    """
    app.add_exception_handler(ForecastEngineError, forecast_engine_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, unhandled_exception_handler)
