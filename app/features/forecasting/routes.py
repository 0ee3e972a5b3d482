"""Forecasting API routes over the in-process forecast engine."""

import asyncio
import threading

from fastapi import APIRouter, Depends, Request, status
from fastapi.concurrency import run_in_threadpool

from app.core.logging import get_logger
from app.features.forecasting.schemas import (
    CompareForecastsRequest,
    ForecastComparison,
    ForecastResult,
    GenerateForecastRequest,
)
from app.features.forecasting.service import ForecastingService

logger = get_logger(__name__)

router = APIRouter(prefix="/forecasting", tags=["forecasting"])


def get_forecasting_service() -> ForecastingService:
    """Provide a ForecastingService (overridable in tests)."""
    return ForecastingService()


async def cancel_on_disconnect(
    request: Request,
    cancel_event: threading.Event,
    poll_interval: float = 0.1,
) -> None:
    """Set ``cancel_event`` once the client goes away.

    Returns when the event is set, either here or by the caller.
    """
    while not cancel_event.is_set():
        if await request.is_disconnected():
            logger.info("forecasting.client_disconnected", path=request.url.path)
            cancel_event.set()
            return
        await asyncio.sleep(poll_interval)


@router.post(
    "/generate",
    response_model=ForecastResult,
    status_code=status.HTTP_200_OK,
    summary="Generate a multi-period demand forecast",
    description="""
Forecast revenue and quantity for one sales series from inline history.

**Model Types:**
- `trend`: Double exponential smoothing (level + trend)
- `autoregressive`: AR(5) on the differenced series with AIC/BIC diagnostics
- `seasonal`: Linear trend with a weekly seasonal multiplier
- `ensemble`: Weighted blend (0.4 / 0.3 / 0.3); failed members are excluded

**Errors:** RFC 7807 problem details with a `kind` of `ValidationError`,
`InsufficientDataError` or `ModelFitError`.
""",
)
async def generate_forecast(
    request: GenerateForecastRequest,
    http_request: Request,
    service: ForecastingService = Depends(get_forecasting_service),
) -> ForecastResult:
    """Run the forecast pipeline off the event loop.

    A client disconnect cancels the run at its next checkpoint.

    Args:
        request: Forecast request plus observations.
        http_request: Raw request, watched for client disconnects.
        service: Forecasting service from dependency.

    Returns:
        Completed forecast result.
    """
    logger.info(
        "forecasting.generate_request_received",
        series_id=request.series_id,
        model_type=request.model_type,
        n_observations=len(request.observations),
    )

    cancel_event = threading.Event()
    watcher = asyncio.create_task(cancel_on_disconnect(http_request, cancel_event))
    try:
        return await run_in_threadpool(
            service.generate_forecast,
            request.to_forecast_request(),
            request.observations,
            cancel_event=cancel_event,
        )
    finally:
        watcher.cancel()


@router.post(
    "/compare",
    response_model=ForecastComparison,
    status_code=status.HTTP_200_OK,
    summary="Rank forecasts by accuracy",
)
async def compare_forecasts(
    request: CompareForecastsRequest,
    service: ForecastingService = Depends(get_forecasting_service),
) -> ForecastComparison:
    """Rank submitted forecasts by R2 score, best first."""
    comparison = service.compare_forecasts(request.forecasts)

    logger.info(
        "forecasting.compare_completed",
        n_forecasts=len(request.forecasts),
        best_index=comparison.best_index,
        best_model_type=comparison.best_model_type,
    )
    return comparison
