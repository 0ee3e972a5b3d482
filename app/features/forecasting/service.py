"""Forecast orchestration: validation through evaluation for one request.

Pipeline states:
    VALIDATING -> AGGREGATING -> FITTING -> COMBINING -> EVALUATING -> COMPLETED
Any ForecastEngineError moves the run to FAILED and is re-raised; no partial
result is returned.

Each run is self-contained: forecasters are created fresh per run, the
aggregated series is read-only, and ensemble members may be fitted on a thread
pool with the same results as a sequential run.

Accuracy is a retrospective self-check: predictions are scored against the
most recent min(horizon, lookback) periods of the training series itself.
"""

from __future__ import annotations

import contextvars
import threading
import time
from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import date as date_type
from enum import Enum
from functools import partial
from typing import Any, Protocol

import numpy as np
from pydantic import ValidationError as PydanticValidationError

from app.core.config import Settings, get_settings
from app.core.exceptions import (
    BadRequestError,
    ForecastCancelledError,
    ForecastEngineError,
    ForecastTimeoutError,
    InsufficientActualsError,
    ModelFitError,
    ValidationError,
)
from app.core.logging import forecast_log_context, get_logger
from app.features.forecasting.aggregation import (
    AggregatedSeries,
    aggregate,
    period_start,
    shift_period,
)
from app.features.forecasting.ensemble import EnsembleCombiner
from app.features.forecasting.metrics import AccuracyEvaluator
from app.features.forecasting.models import (
    AutoregressiveForecast,
    BaseForecaster,
    ComponentForecast,
    ModelForecast,
    model_factory,
)
from app.features.forecasting.schemas import (
    COMPONENT_MODELS,
    AccuracyMetrics,
    ForecastComparison,
    ForecastRanking,
    ForecastRequest,
    ForecastResult,
    ModelDiagnostics,
    Observation,
    PredictionPoint,
    TrainingWindow,
)

logger = get_logger(__name__)

ForecasterFactory = Callable[[], BaseForecaster]


class ForecastPhase(str, Enum):
    """Pipeline state of a forecast run."""

    VALIDATING = "validating"
    AGGREGATING = "aggregating"
    FITTING = "fitting"
    COMBINING = "combining"
    EVALUATING = "evaluating"
    COMPLETED = "completed"
    FAILED = "failed"


class SalesHistoryReader(Protocol):
    """Read-only access to the historical sales store."""

    def fetch(
        self,
        series_id: str,
        period_start: date_type,
        period_end: date_type,
    ) -> Sequence[Observation]:
        """Observations of one series within [period_start, period_end], ascending by date."""
        ...


class ForecastingService:
    """Orchestrates aggregation, model fitting, ensembling and evaluation.

    Collaborators are injected so tests can substitute any of them:
    - forecasters: factory per component model type, called once per run
    - combiner: EnsembleCombiner
    - evaluator: AccuracyEvaluator

    CRITICAL: The service holds no per-request state; one instance may serve
    concurrent requests.
    """

    def __init__(
        self,
        forecasters: Mapping[str, ForecasterFactory] | None = None,
        combiner: EnsembleCombiner | None = None,
        evaluator: AccuracyEvaluator | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the forecasting service.

        Args:
            forecasters: Factories keyed by component model type. Missing
                types fall back to model_factory.
            combiner: Ensemble combiner (default weights if omitted).
            evaluator: Accuracy evaluator.
            settings: Settings (defaults to get_settings()).
        """
        self.settings = settings or get_settings()
        factories: dict[str, ForecasterFactory] = {
            name: partial(model_factory, name, self.settings) for name in COMPONENT_MODELS
        }
        factories.update(forecasters or {})
        self.forecasters = factories
        self.combiner = combiner or EnsembleCombiner()
        self.evaluator = evaluator or AccuracyEvaluator()

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def validate_request(self, request: ForecastRequest | Mapping[str, Any]) -> ForecastRequest:
        """Validate a request payload.

        Args:
            request: A ForecastRequest or a raw mapping of its fields.

        Returns:
            Validated ForecastRequest.

        Raises:
            ValidationError: If any field violates the request contract.
        """
        if isinstance(request, ForecastRequest):
            return request
        if not isinstance(request, Mapping):
            raise ValidationError(
                f"Forecast request must be a mapping, got {type(request).__name__}"
            )
        try:
            return ForecastRequest.model_validate(request)
        except PydanticValidationError as e:
            errors = e.errors()
            first = errors[0]
            field_name = ".".join(str(part) for part in first.get("loc", ()))
            raise ValidationError(
                f"Invalid forecast request: {field_name}: {first.get('msg')}",
                details={
                    "field": field_name,
                    "errors": [
                        {
                            "field": ".".join(str(p) for p in err.get("loc", ())),
                            "message": str(err.get("msg")),
                        }
                        for err in errors
                    ],
                },
            ) from e

    def generate_forecast(
        self,
        request: ForecastRequest | Mapping[str, Any],
        observations: Sequence[Observation],
        cancel_event: threading.Event | None = None,
    ) -> ForecastResult:
        """Run the full pipeline on materialized observations.

        Args:
            request: Forecast request (validated here).
            observations: Historical sales facts of the series.
            cancel_event: Optional cooperative cancellation signal, checked at
                every phase boundary.

        Returns:
            Immutable ForecastResult.

        Raises:
            ValidationError: If the request is malformed.
            InsufficientDataError: If fewer than lookback_periods periods exist.
            ModelFitError: If the requested model (or every ensemble member) fails.
            ForecastCancelledError: If cancel_event is set.
            ForecastTimeoutError: If the configured deadline elapses.
        """
        start_time = time.perf_counter()
        timeout = self.settings.forecast_request_timeout_seconds
        deadline = time.monotonic() + timeout if timeout is not None else None
        phase = ForecastPhase.VALIDATING

        def enter(next_phase: ForecastPhase) -> None:
            nonlocal phase
            self._checkpoint(next_phase, cancel_event, deadline)
            phase = next_phase
            logger.debug("forecasting.phase_started", phase=phase.value)

        try:
            enter(ForecastPhase.VALIDATING)
            validated = self.validate_request(request)

            with forecast_log_context(
                series_id=validated.series_id,
                model_type=validated.model_type,
            ):
                logger.info(
                    "forecasting.generate_started",
                    granularity=validated.period_granularity,
                    horizon_periods=validated.horizon_periods,
                    lookback_periods=validated.lookback_periods,
                    n_observations=len(observations),
                )

                enter(ForecastPhase.AGGREGATING)
                series = aggregate(
                    observations,
                    validated.period_granularity,
                    min_periods=validated.lookback_periods,
                )

                enter(ForecastPhase.FITTING)
                forecasts, excluded = self._fit_models(validated, series, cancel_event)

                enter(ForecastPhase.COMBINING)
                combined, weights = self._combine(validated, forecasts)

                enter(ForecastPhase.EVALUATING)
                accuracy = self._evaluate(validated, series, combined)

                enter(ForecastPhase.COMPLETED)
                duration_ms = (time.perf_counter() - start_time) * 1000
                result = self._assemble(
                    validated,
                    series,
                    forecasts,
                    combined,
                    weights,
                    excluded,
                    accuracy,
                )

                logger.info(
                    "forecasting.generate_completed",
                    n_observations=series.observation_count,
                    n_periods=len(series),
                    excluded_models=list(excluded),
                    r2_score=accuracy.r2_score if accuracy else None,
                    duration_ms=duration_ms,
                )
                return result

        except ForecastEngineError as e:
            logger.warning(
                "forecasting.generate_failed",
                state=ForecastPhase.FAILED.value,
                failed_phase=phase.value,
                error_kind=e.kind,
                error=e.message,
                details=e.details,
            )
            raise

    def generate_for_series(
        self,
        reader: SalesHistoryReader,
        request: ForecastRequest | Mapping[str, Any],
        as_of: date_type | None = None,
        cancel_event: threading.Event | None = None,
    ) -> ForecastResult:
        """Fetch the lookback window from the history store and forecast.

        The window covers ``lookback_periods`` periods ending with the period
        that contains ``as_of`` (inclusive).

        Args:
            reader: Historical sales store.
            request: Forecast request.
            as_of: Last day of history to use (defaults to today).
            cancel_event: Optional cooperative cancellation signal.

        Returns:
            ForecastResult for the fetched history.
        """
        validated = self.validate_request(request)
        end = as_of or date_type.today()
        granularity = validated.period_granularity
        window_start = shift_period(
            period_start(end, granularity),
            granularity,
            -(validated.lookback_periods - 1),
        )

        logger.info(
            "forecasting.history_fetch_started",
            series_id=validated.series_id,
            period_start=str(window_start),
            period_end=str(end),
        )
        observations = reader.fetch(validated.series_id, window_start, end)

        return self.generate_forecast(validated, observations, cancel_event=cancel_event)

    def compare_forecasts(self, results: Sequence[ForecastResult]) -> ForecastComparison:
        """Rank forecasts by R2 score, best first.

        Forecasts without accuracy rank last; ties keep submission order.

        Args:
            results: Two or more forecast results.

        Returns:
            ForecastComparison naming the best forecast.

        Raises:
            BadRequestError: If fewer than two results are given.
        """
        if len(results) < 2:
            raise BadRequestError(
                "At least 2 forecasts are required for comparison",
                details={"field": "forecasts", "count": len(results)},
            )

        def sort_key(item: tuple[int, ForecastResult]) -> tuple[bool, float]:
            accuracy = item[1].accuracy
            if accuracy is None:
                return (True, 0.0)
            return (False, -accuracy.r2_score)

        ordered = sorted(enumerate(results), key=sort_key)
        rankings = [
            ForecastRanking(
                rank=rank,
                index=index,
                series_id=result.request.series_id,
                model_type=result.request.model_type,
                accuracy=result.accuracy,
            )
            for rank, (index, result) in enumerate(ordered, start=1)
        ]
        best = rankings[0]
        return ForecastComparison(
            rankings=rankings,
            best_index=best.index,
            best_model_type=best.model_type,
        )

    # -------------------------------------------------------------------------
    # Phases
    # -------------------------------------------------------------------------

    @staticmethod
    def _checkpoint(
        phase: ForecastPhase,
        cancel_event: threading.Event | None,
        deadline: float | None,
    ) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise ForecastCancelledError(details={"phase": phase.value})
        if deadline is not None and time.monotonic() > deadline:
            raise ForecastTimeoutError(details={"phase": phase.value})

    def _run_model(
        self,
        model_type: str,
        series: AggregatedSeries,
        horizon: int,
        cancel_event: threading.Event | None,
    ) -> ComponentForecast:
        """Fit and predict one component model, converting numeric failures."""
        forecaster = self.forecasters[model_type]()
        try:
            forecast = forecaster.fit_and_predict(series, horizon, cancel_event=cancel_event)
        except (ArithmeticError, ValueError, np.linalg.LinAlgError) as e:
            raise ModelFitError(
                f"{model_type} model failed: {e}",
                details={"model_type": model_type},
            ) from e

        fit = forecaster.fit_result
        if fit is not None:
            logger.debug(
                "forecasting.model_fitted",
                fitted_model=model_type,
                n_observations=fit.n_observations,
                **fit.metrics,
            )
        return forecast

    def _fit_models(
        self,
        request: ForecastRequest,
        series: AggregatedSeries,
        cancel_event: threading.Event | None,
    ) -> tuple[dict[str, ComponentForecast], tuple[str, ...]]:
        """Fit the requested model, or every ensemble member.

        Returns:
            Tuple of (forecasts by model type, excluded model types).

        Raises:
            ModelFitError: If a single requested model fails, or all members fail.
        """
        is_ensemble = request.model_type == "ensemble"
        members = COMPONENT_MODELS if is_ensemble else (request.model_type,)
        horizon = request.horizon_periods

        outcomes: dict[str, ComponentForecast | ModelFitError] = {}
        if is_ensemble and self.settings.forecast_parallel_fits:
            with ThreadPoolExecutor(
                max_workers=min(self.settings.forecast_max_workers, len(members)),
                thread_name_prefix="forecast-fit",
            ) as executor:
                futures: dict[str, Future[ComponentForecast]] = {
                    name: executor.submit(
                        contextvars.copy_context().run,
                        self._run_model,
                        name,
                        series,
                        horizon,
                        cancel_event,
                    )
                    for name in members
                }
                for name, future in futures.items():
                    try:
                        outcomes[name] = future.result()
                    except ModelFitError as e:
                        outcomes[name] = e
        else:
            for name in members:
                try:
                    outcomes[name] = self._run_model(name, series, horizon, cancel_event)
                except ModelFitError as e:
                    if not is_ensemble:
                        raise
                    outcomes[name] = e

        forecasts = {
            name: outcome
            for name, outcome in outcomes.items()
            if isinstance(outcome, ModelForecast)
        }
        failures = {
            name: outcome
            for name, outcome in outcomes.items()
            if isinstance(outcome, ModelFitError)
        }

        for name, error in failures.items():
            logger.warning(
                "forecasting.model_excluded",
                excluded_model=name,
                error=error.message,
            )

        if not forecasts:
            raise ModelFitError(
                "All ensemble models failed to fit",
                details={
                    "model_type": request.model_type,
                    "failures": {name: err.message for name, err in failures.items()},
                },
            )

        return forecasts, tuple(name for name in members if name in failures)

    def _combine(
        self,
        request: ForecastRequest,
        forecasts: dict[str, ComponentForecast],
    ) -> tuple[ModelForecast, dict[str, float]]:
        if request.model_type != "ensemble":
            return forecasts[request.model_type], {request.model_type: 1.0}

        combined = self.combiner.combine(
            trend=forecasts.get("trend"),
            autoregressive=forecasts.get("autoregressive"),
            seasonal=forecasts.get("seasonal"),
        )
        return combined, combined.weights

    def _evaluate(
        self,
        request: ForecastRequest,
        series: AggregatedSeries,
        combined: ModelForecast,
    ) -> AccuracyMetrics | None:
        """Score predictions against the tail of the training series.

        Accuracy is diagnostic only: no overlap yields None, not a failure.
        """
        window = min(request.horizon_periods, request.lookback_periods)
        actual = series.revenue[-window:]
        try:
            return self.evaluator.evaluate(actual, combined.revenue[:window])
        except InsufficientActualsError as e:
            logger.info("forecasting.evaluation_skipped", reason=e.message)
            return None

    @staticmethod
    def _assemble(
        request: ForecastRequest,
        series: AggregatedSeries,
        forecasts: dict[str, ComponentForecast],
        combined: ModelForecast,
        weights: dict[str, float],
        excluded: tuple[str, ...],
        accuracy: AccuracyMetrics | None,
    ) -> ForecastResult:
        dates = series.forecast_dates(request.horizon_periods)
        predictions = [
            PredictionPoint(
                period_start=dates[h],
                predicted_revenue=float(combined.revenue[h]),
                predicted_quantity=float(combined.quantity[h]),
                confidence=combined.confidence,
                lower_bound=float(combined.lower[h]),
                upper_bound=float(combined.upper[h]),
            )
            for h in range(request.horizon_periods)
        ]

        diagnostics = None
        autoregressive = forecasts.get("autoregressive")
        if isinstance(autoregressive, AutoregressiveForecast):
            diagnostics = ModelDiagnostics(
                aic=autoregressive.aic,
                bic=autoregressive.bic,
                n_observations=autoregressive.n_observations,
                coefficients=list(autoregressive.coefficients),
                residual_variance=autoregressive.residual_variance,
            )

        return ForecastResult(
            request=request,
            predictions=predictions,
            accuracy=accuracy,
            training_window=TrainingWindow(
                start=series.start,
                end=series.end,
                observation_count=len(series),
            ),
            model_weights=weights,
            excluded_models=list(excluded),
            model_diagnostics=diagnostics,
        )
