"""RFC 7807 Problem Details for forecast engine errors.

Every error leaving the HTTP surface is rendered as ``application/problem+json``
with a ``kind`` extension naming the engine error class, so callers can branch
on ``ValidationError`` / ``InsufficientDataError`` / ``ModelFitError`` /
``InsufficientActualsError`` without parsing messages.

Reference: https://datatracker.ietf.org/doc/html/rfc7807
"""

from typing import Any

from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from app.core.logging import request_id_ctx

ERROR_TYPE_BASE = "/errors"

ERROR_TYPES = {
    "VALIDATION_ERROR": f"{ERROR_TYPE_BASE}/validation",
    "INSUFFICIENT_DATA": f"{ERROR_TYPE_BASE}/insufficient-data",
    "MODEL_FIT_ERROR": f"{ERROR_TYPE_BASE}/model-fit",
    "INSUFFICIENT_ACTUALS": f"{ERROR_TYPE_BASE}/insufficient-actuals",
    "FORECAST_CANCELLED": f"{ERROR_TYPE_BASE}/cancelled",
    "FORECAST_TIMEOUT": f"{ERROR_TYPE_BASE}/timeout",
    "BAD_REQUEST": f"{ERROR_TYPE_BASE}/bad-request",
    "INTERNAL_ERROR": f"{ERROR_TYPE_BASE}/internal",
}


class ProblemDetail(BaseModel):
    """RFC 7807 problem document.

    Attributes:
        type: URI identifying the error type.
        title: Short human-readable summary of the problem type.
        status: HTTP status code.
        detail: Explanation specific to this occurrence.
        instance: URI reference for this occurrence.
        kind: Engine error class name (extension).
        code: Machine-readable error code (extension).
        errors: Field-level errors (extension, validation failures only).
        request_id: Request correlation ID (extension).
    """

    model_config = ConfigDict(extra="allow")

    type: str = Field(default="about:blank")
    title: str
    status: int = Field(..., ge=400, le=599)
    detail: str | None = None
    instance: str | None = None
    kind: str | None = None
    code: str | None = None
    errors: list[dict[str, Any]] | None = None
    request_id: str | None = None


class ProblemDetailResponse(JSONResponse):
    """JSON response with RFC 7807 content type."""

    media_type = "application/problem+json"


def create_problem_detail(
    status: int,
    title: str,
    detail: str | None = None,
    error_code: str = "INTERNAL_ERROR",
    kind: str | None = None,
    errors: list[dict[str, Any]] | None = None,
) -> ProblemDetail:
    """Create a ProblemDetail with type URI and request correlation filled in.

    Args:
        status: HTTP status code.
        title: Short problem summary.
        detail: Detailed explanation (optional).
        error_code: Internal error code for type URI lookup.
        kind: Engine error class name (optional).
        errors: Field-level errors (optional).

    Returns:
        Configured ProblemDetail instance.
    """
    request_id = request_id_ctx.get()

    return ProblemDetail(
        type=ERROR_TYPES.get(error_code, f"{ERROR_TYPE_BASE}/{error_code.lower()}"),
        title=title,
        status=status,
        detail=detail,
        instance=f"/requests/{request_id}" if request_id else None,
        kind=kind,
        code=error_code,
        errors=errors,
        request_id=request_id,
    )


def problem_response(
    status: int,
    title: str,
    detail: str | None = None,
    error_code: str = "INTERNAL_ERROR",
    kind: str | None = None,
    errors: list[dict[str, Any]] | None = None,
) -> ProblemDetailResponse:
    """Create a ProblemDetailResponse with problem+json content type."""
    problem = create_problem_detail(
        status=status,
        title=title,
        detail=detail,
        error_code=error_code,
        kind=kind,
        errors=errors,
    )

    return ProblemDetailResponse(
        status_code=status,
        content=problem.model_dump(exclude_none=True),
    )
