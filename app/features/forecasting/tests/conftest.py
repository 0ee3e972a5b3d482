"""Test fixtures for forecasting module."""

from collections.abc import Callable
from datetime import date, timedelta

import numpy as np
import pytest

from app.core.config import Settings
from app.features.forecasting.aggregation import AggregatedSeries, aggregate
from app.features.forecasting.schemas import ForecastRequest, Observation

START_DATE = date(2024, 1, 1)


def make_observations(
    revenues: list[float] | np.ndarray,
    start: date = START_DATE,
    unit_price: float = 10.0,
) -> list[Observation]:
    """Build one daily observation per revenue value.

    Quantity is revenue / unit_price rounded, so the revenue-per-unit ratio
    of the last period is known.
    """
    return [
        Observation(
            date=start + timedelta(days=i),
            revenue=float(value),
            quantity=int(round(float(value) / unit_price)),
        )
        for i, value in enumerate(revenues)
    ]


def make_series(revenues: list[float] | np.ndarray) -> AggregatedSeries:
    """Aggregate daily revenues with no minimum period gate."""
    return aggregate(make_observations(revenues), "daily", min_periods=0)


@pytest.fixture
def observations_factory() -> Callable[..., list[Observation]]:
    """Factory for daily observations from raw revenues."""
    return make_observations


@pytest.fixture
def series_factory() -> Callable[[list[float] | np.ndarray], AggregatedSeries]:
    """Factory for daily AggregatedSeries from raw revenues."""
    return make_series


@pytest.fixture
def linear_observations() -> list[Observation]:
    """90 days of linearly increasing revenue: 100, 102, ..., 278."""
    return make_observations([100.0 + 2.0 * i for i in range(90)])


@pytest.fixture
def linear_series(linear_observations) -> AggregatedSeries:
    """Daily series of the linear observations."""
    return aggregate(linear_observations, "daily", min_periods=0)


@pytest.fixture
def weekly_pattern_series() -> AggregatedSeries:
    """8 weeks of a repeating weekly revenue pattern with mild noise."""
    rng = np.random.default_rng(42)
    pattern = np.array([80.0, 90.0, 100.0, 110.0, 130.0, 150.0, 120.0])
    values = np.tile(pattern, 8) + rng.normal(0, 2.0, size=56)
    return make_series(values)


@pytest.fixture
def constant_series() -> AggregatedSeries:
    """40 days of constant revenue (100)."""
    return make_series([100.0] * 40)


@pytest.fixture
def sequential_settings() -> Settings:
    """Settings with parallel fitting disabled and no deadline."""
    return Settings(forecast_parallel_fits=False, forecast_request_timeout_seconds=None)


@pytest.fixture
def linear_request() -> ForecastRequest:
    """Trend-only request over the linear fixture."""
    return ForecastRequest(
        series_id="store-1/sku-100",
        model_type="trend",
        period_granularity="daily",
        horizon_periods=14,
        lookback_periods=30,
    )


@pytest.fixture
async def forecasting_client(sequential_settings):
    """HTTP client whose forecasting service fits models sequentially."""
    from httpx import ASGITransport, AsyncClient

    from app.features.forecasting.routes import get_forecasting_service
    from app.features.forecasting.service import ForecastingService
    from app.main import app

    app.dependency_overrides[get_forecasting_service] = lambda: ForecastingService(
        settings=sequential_settings
    )

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def linear_payload(linear_observations) -> dict:
    """JSON body for POST /forecasting/generate over the linear fixture."""
    return {
        "series_id": "store-1/sku-100",
        "model_type": "trend",
        "period_granularity": "daily",
        "horizon_periods": 7,
        "lookback_periods": 30,
        "observations": [o.model_dump(mode="json") for o in linear_observations],
    }
