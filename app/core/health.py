"""Health check endpoint."""

from typing import Literal

from fastapi import APIRouter
from pydantic import BaseModel

from app.core.config import get_settings
from app.core.logging import get_logger
from app.features.forecasting.schemas import GRANULARITIES, MODEL_TYPES

logger = get_logger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response schema."""

    status: Literal["ok"]
    app_name: str
    models: list[str]
    granularities: list[str]


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Report liveness, the runnable model types and the supported granularities.

    The engine is stateless and performs no I/O, so liveness is readiness.
    """
    logger.debug("health.check_started")
    return HealthResponse(
        status="ok",
        app_name=get_settings().app_name,
        models=list(MODEL_TYPES),
        granularities=list(GRANULARITIES),
    )
