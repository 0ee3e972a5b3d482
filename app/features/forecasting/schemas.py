"""Pydantic schemas for forecast requests, results and API contracts.

Request and result models are immutable (frozen=True): a ForecastResult is
created once per request and handed to the caller unchanged.
"""

from __future__ import annotations

from datetime import date as date_type
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

ModelType = Literal["trend", "autoregressive", "seasonal", "ensemble"]
Granularity = Literal["daily", "weekly", "monthly"]

MODEL_TYPES: tuple[str, ...] = ("trend", "autoregressive", "seasonal", "ensemble")
GRANULARITIES: tuple[str, ...] = ("daily", "weekly", "monthly")

# Ensemble members, in combination order
COMPONENT_MODELS: tuple[str, ...] = ("trend", "autoregressive", "seasonal")


# =============================================================================
# Input Schemas
# =============================================================================


class Observation(BaseModel):
    """One historical sales fact read from the history store.

    Attributes:
        date: Calendar date of the sale.
        revenue: Non-negative revenue.
        quantity: Non-negative units sold.
    """

    model_config = ConfigDict(frozen=True)

    date: date_type
    revenue: float = Field(..., ge=0, allow_inf_nan=False)
    quantity: int = Field(..., ge=0)


class ForecastRequest(BaseModel):
    """Input contract for one forecast run.

    Attributes:
        series_id: Identifier of the sales series in the history store.
        model_type: Single model to run, or ``ensemble`` for all three.
        period_granularity: Bucket size for aggregation.
        horizon_periods: Number of future periods to predict.
        lookback_periods: Minimum number of aggregated periods of history.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    series_id: str = Field(..., min_length=1, description="Sales series identifier")
    model_type: ModelType = Field(default="ensemble")
    period_granularity: Granularity = Field(default="daily")
    horizon_periods: int = Field(
        default=30,
        ge=1,
        le=365,
        description="Number of periods to forecast",
    )
    lookback_periods: int = Field(
        default=365,
        ge=30,
        le=1095,
        description="Minimum number of aggregated periods required for training",
    )


class GenerateForecastRequest(ForecastRequest):
    """Request body for POST /forecasting/generate.

    Carries the request fields plus the materialized history to train on.
    """

    observations: list[Observation] = Field(..., min_length=1)

    def to_forecast_request(self) -> ForecastRequest:
        """Strip the inline history, keeping only the request echo."""
        return ForecastRequest(**self.model_dump(exclude={"observations"}))


# =============================================================================
# Output Schemas
# =============================================================================


class PredictionPoint(BaseModel):
    """One forecasted period.

    Invariant: 0 <= lower_bound <= predicted_revenue <= upper_bound.
    """

    model_config = ConfigDict(frozen=True)

    period_start: date_type
    predicted_revenue: float = Field(..., ge=0)
    predicted_quantity: float = Field(..., ge=0)
    confidence: float = Field(..., ge=0, le=1)
    lower_bound: float = Field(..., ge=0)
    upper_bound: float = Field(..., ge=0)

    @model_validator(mode="after")
    def validate_bounds(self) -> PredictionPoint:
        """Ensure the band brackets the point estimate."""
        if not self.lower_bound <= self.predicted_revenue <= self.upper_bound:
            raise ValueError(
                f"Bounds [{self.lower_bound}, {self.upper_bound}] do not contain "
                f"predicted_revenue={self.predicted_revenue}"
            )
        return self


class AccuracyMetrics(BaseModel):
    """Accuracy of predictions against held-out actuals.

    Attributes:
        mape: Mean absolute percentage error (percent, may exceed 100).
        rmse: Root mean squared error.
        mae: Mean absolute error.
        r2_score: Coefficient of determination (may be negative).
        evaluated_periods: Number of periods actually scored.
        degenerate: True when MAPE or R² fell back to a defined default.
    """

    model_config = ConfigDict(frozen=True)

    mape: float
    rmse: float = Field(..., ge=0)
    mae: float = Field(..., ge=0)
    r2_score: float
    evaluated_periods: int = Field(..., ge=0)
    degenerate: bool = False


class ModelDiagnostics(BaseModel):
    """Fit statistics of the autoregressive model."""

    model_config = ConfigDict(frozen=True)

    aic: float
    bic: float
    n_observations: int
    coefficients: list[float]
    residual_variance: float


class TrainingWindow(BaseModel):
    """Span of aggregated history the models were fitted on."""

    model_config = ConfigDict(frozen=True)

    start: date_type
    end: date_type
    observation_count: int = Field(..., ge=0)


class ForecastResult(BaseModel):
    """Engine output returned to the caller (and its persistence layer).

    Attributes:
        request: Echo of the validated request.
        status: Terminal pipeline state (always ``completed`` for a result).
        predictions: One point per horizon period, ascending by period_start.
        accuracy: Retrospective accuracy, or None when no actuals overlapped.
        training_window: Span and size of the training history.
        model_weights: Weights applied per contributing model.
        excluded_models: Ensemble members dropped after a fit failure.
        model_diagnostics: Autoregressive AIC/BIC when that model ran.
    """

    model_config = ConfigDict(frozen=True)

    request: ForecastRequest
    status: Literal["completed"] = "completed"
    predictions: list[PredictionPoint]
    accuracy: AccuracyMetrics | None
    training_window: TrainingWindow
    model_weights: dict[str, float]
    excluded_models: list[str] = Field(default_factory=list)
    model_diagnostics: ModelDiagnostics | None = None


# =============================================================================
# Comparison Schemas
# =============================================================================


class CompareForecastsRequest(BaseModel):
    """Request body for POST /forecasting/compare."""

    forecasts: list[ForecastResult] = Field(..., min_length=2)


class ForecastRanking(BaseModel):
    """One entry of a forecast comparison."""

    rank: int = Field(..., ge=1)
    index: int = Field(..., ge=0, description="Position in the submitted list")
    series_id: str
    model_type: ModelType
    accuracy: AccuracyMetrics | None


class ForecastComparison(BaseModel):
    """Forecasts ranked by R² (best first); unscored forecasts rank last."""

    rankings: list[ForecastRanking]
    best_index: int
    best_model_type: ModelType
