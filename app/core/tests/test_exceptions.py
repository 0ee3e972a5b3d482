"""Tests for the engine error taxonomy and problem-detail rendering."""

import json

import pytest

from app.core.exceptions import (
    BadRequestError,
    ForecastCancelledError,
    ForecastEngineError,
    ForecastTimeoutError,
    InsufficientActualsError,
    InsufficientDataError,
    ModelFitError,
    ValidationError,
    forecast_engine_exception_handler,
)


@pytest.mark.parametrize(
    ("exc_class", "status_code", "code"),
    [
        (ValidationError, 422, "VALIDATION_ERROR"),
        (InsufficientDataError, 422, "INSUFFICIENT_DATA"),
        (ModelFitError, 422, "MODEL_FIT_ERROR"),
        (InsufficientActualsError, 422, "INSUFFICIENT_ACTUALS"),
        (ForecastCancelledError, 499, "FORECAST_CANCELLED"),
        (ForecastTimeoutError, 504, "FORECAST_TIMEOUT"),
        (BadRequestError, 400, "BAD_REQUEST"),
    ],
)
def test_error_classes_map_to_status_and_code(exc_class, status_code, code):
    """Each error kind carries its HTTP status and machine-readable code."""
    exc = exc_class()

    assert isinstance(exc, ForecastEngineError)
    assert exc.status_code == status_code
    assert exc.code == code
    assert exc.kind == exc_class.__name__


def test_error_exposes_field_from_details():
    """The offending field is read from details."""
    exc = ValidationError("horizon too large", details={"field": "horizon_periods"})

    assert exc.field == "horizon_periods"
    assert exc.to_dict() == {
        "kind": "ValidationError",
        "message": "horizon too large",
        "field": "horizon_periods",
    }


def test_error_without_field_omits_it():
    """Errors not tied to a field omit it from the structured form."""
    exc = ModelFitError("diverged")

    assert exc.field is None
    assert "field" not in exc.to_dict()


def test_title_is_derived_from_code():
    """RFC 7807 title is the humanized error code."""
    assert InsufficientDataError().title == "Insufficient Data"


@pytest.mark.asyncio
async def test_handler_renders_problem_details():
    """Engine errors render as problem+json with a kind extension."""
    exc = InsufficientDataError(
        "only 12 periods",
        details={"field": "lookback_periods"},
    )

    response = await forecast_engine_exception_handler(None, exc)  # type: ignore[arg-type]
    body = json.loads(response.body)

    assert response.status_code == 422
    assert response.media_type == "application/problem+json"
    assert body["kind"] == "InsufficientDataError"
    assert body["type"] == "/errors/insufficient-data"
    assert body["detail"] == "only 12 periods"
    assert body["errors"] == [{"field": "lookback_periods", "message": "only 12 periods"}]
