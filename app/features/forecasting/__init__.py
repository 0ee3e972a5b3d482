"""Forecast generation engine.

Turns raw time-stamped sales into multi-period demand predictions using
three independent models combined into a weighted ensemble, with accuracy
scoring against the most recent actuals.

Exports:
    Aggregation:
        - aggregate, AggregatedSeries, AggregatedPeriod

    Models:
        - BaseForecaster: Abstract base class for all forecasters
        - TrendSmoothingForecaster: Double exponential smoothing
        - AutoregressiveForecaster: AR(p) on the differenced series
        - SeasonalDecompositionForecaster: Trend x weekly season
        - model_factory: Create forecaster by model type

    Ensemble / Metrics:
        - EnsembleCombiner, AccuracyEvaluator

    Service:
        - ForecastingService: Orchestrates one forecast request
"""

from app.features.forecasting.aggregation import (
    AggregatedPeriod,
    AggregatedSeries,
    aggregate,
)
from app.features.forecasting.ensemble import EnsembleCombiner, EnsembleForecast
from app.features.forecasting.metrics import AccuracyEvaluator, MetricResult
from app.features.forecasting.models import (
    AutoregressiveForecast,
    AutoregressiveForecaster,
    BaseForecaster,
    FitResult,
    ModelForecast,
    SeasonalDecompositionForecaster,
    SeasonalForecast,
    TrendForecast,
    TrendSmoothingForecaster,
    model_factory,
)
from app.features.forecasting.schemas import (
    AccuracyMetrics,
    ForecastRequest,
    ForecastResult,
    Observation,
    PredictionPoint,
    TrainingWindow,
)
from app.features.forecasting.service import (
    ForecastingService,
    ForecastPhase,
    SalesHistoryReader,
)

__all__ = [
    "AccuracyEvaluator",
    "AccuracyMetrics",
    "AggregatedPeriod",
    "AggregatedSeries",
    "AutoregressiveForecast",
    "AutoregressiveForecaster",
    "BaseForecaster",
    "EnsembleCombiner",
    "EnsembleForecast",
    "FitResult",
    "ForecastPhase",
    "ForecastRequest",
    "ForecastResult",
    "ForecastingService",
    "MetricResult",
    "ModelForecast",
    "Observation",
    "PredictionPoint",
    "SalesHistoryReader",
    "SeasonalDecompositionForecaster",
    "SeasonalForecast",
    "TrainingWindow",
    "TrendForecast",
    "TrendSmoothingForecaster",
    "aggregate",
    "model_factory",
]
