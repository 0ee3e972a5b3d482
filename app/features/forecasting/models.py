"""Forecasting models with a unified scikit-learn-style interface.

All forecasters implement a common interface:
- fit(series, cancel_event=None) -> self
- predict(horizon) -> ModelForecast
- get_params() -> dict
- set_params(**params) -> self

Models:
- TrendSmoothingForecaster: double exponential smoothing (level + trend)
- AutoregressiveForecaster: ARIMA(p,1,0)-class fit by ordinary least squares
- SeasonalDecompositionForecaster: linear trend x weekly seasonal multiplier

CRITICAL: All implementations are deterministic; there is no randomness
anywhere in fitting or prediction.
"""

from __future__ import annotations

import math
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date as date_type
from typing import TYPE_CHECKING, Any, ClassVar

import numpy as np

from app.core.config import Settings, get_settings
from app.core.exceptions import ForecastCancelledError, ModelFitError, ValidationError
from app.core.logging import get_logger

if TYPE_CHECKING:
    from app.features.forecasting.aggregation import AggregatedSeries

logger = get_logger(__name__)

FloatArray = np.ndarray[Any, np.dtype[np.floating[Any]]]

# Fallback revenue-per-unit ratio when the last period sold nothing
DEFAULT_REVENUE_PER_UNIT = 1.0
DEFAULT_VOLATILITY = 0.1


# =============================================================================
# Model Outputs
# =============================================================================


@dataclass(frozen=True, eq=False)
class ModelForecast:
    """Per-step output of one model.

    Invariant: 0 <= lower <= revenue <= upper element-wise.

    Attributes:
        revenue: Point forecasts of revenue, shape [horizon].
        quantity: Point forecasts of quantity, shape [horizon].
        lower: Lower band, shape [horizon].
        upper: Upper band, shape [horizon].
        confidence: Fixed confidence the model reports for its points.
    """

    model_type: ClassVar[str] = "base"

    revenue: FloatArray
    quantity: FloatArray
    lower: FloatArray
    upper: FloatArray
    confidence: float

    @property
    def horizon(self) -> int:
        """Number of forecast steps."""
        return len(self.revenue)


@dataclass(frozen=True, eq=False)
class TrendForecast(ModelForecast):
    """Output of TrendSmoothingForecaster."""

    model_type: ClassVar[str] = "trend"

    level: float = 0.0
    trend: float = 0.0
    volatility: float = DEFAULT_VOLATILITY


@dataclass(frozen=True, eq=False)
class AutoregressiveForecast(ModelForecast):
    """Output of AutoregressiveForecaster, with model-selection statistics."""

    model_type: ClassVar[str] = "autoregressive"

    aic: float = 0.0
    bic: float = 0.0
    coefficients: tuple[float, ...] = ()
    residual_variance: float = 0.0
    n_observations: int = 0


@dataclass(frozen=True, eq=False)
class SeasonalForecast(ModelForecast):
    """Output of SeasonalDecompositionForecaster."""

    model_type: ClassVar[str] = "seasonal"

    baseline: float = 0.0
    slope: float = 0.0


ComponentForecast = TrendForecast | AutoregressiveForecast | SeasonalForecast


@dataclass
class FitResult:
    """Result of model fitting.

    Attributes:
        fitted: Whether the model was successfully fitted.
        n_observations: Number of aggregated periods used for fitting.
        train_start: First period of the training series.
        train_end: Last period of the training series.
        metrics: Fit statistics (e.g., {"aic": 512.3}).
    """

    fitted: bool
    n_observations: int
    train_start: date_type
    train_end: date_type
    metrics: dict[str, float] = field(default_factory=lambda: {})


# =============================================================================
# Shared Helpers
# =============================================================================


def revenue_per_unit(series: AggregatedSeries) -> float:
    """Revenue per unit of the most recent period.

    Falls back to DEFAULT_REVENUE_PER_UNIT (quantity tracks revenue) when the
    last period has zero quantity or zero revenue.
    """
    last_revenue = float(series.revenue[-1])
    last_quantity = float(series.quantity[-1])
    if last_quantity <= 0 or last_revenue <= 0:
        return DEFAULT_REVENUE_PER_UNIT
    return last_revenue / last_quantity


def quantity_from_revenue(revenue: FloatArray, ratio: float) -> FloatArray:
    """Convert predicted revenue to predicted quantity, clamped at zero."""
    return np.maximum(revenue / ratio, 0.0)


def clamp_band(
    revenue: FloatArray,
    lower: FloatArray,
    upper: FloatArray,
) -> tuple[FloatArray, FloatArray, FloatArray]:
    """Clamp forecasts to be non-negative and make the band bracket them.

    Returns:
        Tuple of (revenue, lower, upper) with 0 <= lower <= revenue <= upper.
    """
    revenue = np.maximum(revenue, 0.0)
    lower = np.clip(np.minimum(lower, revenue), 0.0, None)
    upper = np.maximum(upper, revenue)
    return revenue, lower, upper


def _check_cancelled(cancel_event: threading.Event | None, stage: str) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise ForecastCancelledError(details={"stage": stage})


# =============================================================================
# Base Class
# =============================================================================


class BaseForecaster(ABC):
    """Abstract base class for all forecasting models.

    Interface follows scikit-learn conventions:
    - fit(series, cancel_event=None) -> self
    - predict(horizon) -> ModelForecast
    - get_params() -> dict
    - set_params(**params) -> self

    A forecaster instance holds the fitted state of one series; create a new
    instance per request instead of sharing one across threads.
    """

    model_type: ClassVar[str] = "base"

    def __init__(self) -> None:
        """Initialize the forecaster."""
        self._is_fitted = False
        self._revenue_per_unit = DEFAULT_REVENUE_PER_UNIT
        self._fit_result: FitResult | None = None

    @abstractmethod
    def fit(
        self,
        series: AggregatedSeries,
        cancel_event: threading.Event | None = None,
    ) -> BaseForecaster:
        """Fit the model on an aggregated series.

        Args:
            series: Aggregated revenue/quantity history.
            cancel_event: Optional cooperative cancellation signal.

        Returns:
            self (for method chaining).

        Raises:
            ModelFitError: If the series cannot support this model.
            ForecastCancelledError: If cancel_event is set during fitting.
        """

    @abstractmethod
    def predict(self, horizon: int) -> ComponentForecast:
        """Generate forecasts for the specified horizon.

        Args:
            horizon: Number of steps to forecast.

        Returns:
            Component forecast with arrays of shape [horizon].

        Raises:
            RuntimeError: If model has not been fitted.
        """

    @abstractmethod
    def get_params(self) -> dict[str, Any]:
        """Get model parameters (scikit-learn convention)."""

    def set_params(self, **params: Any) -> BaseForecaster:  # noqa: ANN401
        """Set model parameters (scikit-learn convention).

        Args:
            **params: Parameter names and values to set.

        Returns:
            self (for method chaining).

        Raises:
            ValueError: If a parameter name is unknown.
        """
        valid = self.get_params()
        for key, value in params.items():
            if key not in valid:
                raise ValueError(f"Invalid parameter '{key}' for {type(self).__name__}")
            setattr(self, key, value)
        return self

    def fit_and_predict(
        self,
        series: AggregatedSeries,
        horizon: int,
        cancel_event: threading.Event | None = None,
    ) -> ComponentForecast:
        """Fit on ``series`` and forecast ``horizon`` steps."""
        return self.fit(series, cancel_event=cancel_event).predict(horizon)

    @property
    def is_fitted(self) -> bool:
        """Check if the model has been fitted."""
        return self._is_fitted

    @property
    def fit_result(self) -> FitResult | None:
        """Metadata of the last successful fit."""
        return self._fit_result

    def _require_fitted(self) -> None:
        if not self._is_fitted:
            raise RuntimeError("Model must be fitted before predict")

    def _record_fit(self, series: AggregatedSeries, metrics: dict[str, float]) -> None:
        self._revenue_per_unit = revenue_per_unit(series)
        self._fit_result = FitResult(
            fitted=True,
            n_observations=len(series),
            train_start=series.start,
            train_end=series.end,
            metrics=metrics,
        )
        self._is_fitted = True


# =============================================================================
# Trend Smoothing
# =============================================================================


class TrendSmoothingForecaster(BaseForecaster):
    """Double exponential smoothing (Holt's linear trend method).

    State is seeded from the first two observations:
        level = y[0], trend = y[1] - y[0]
    and updated for every later observation i:
        new_level = alpha * y[i] + (1 - alpha) * (level + trend)
        trend = beta * (new_level - level) + (1 - beta) * trend

    Forecast: y_hat[t+h] = level + trend * h, clamped at 0.
    Band: y_hat * (1 +/- volatility), volatility = population std / mean.

    Attributes:
        alpha: Level smoothing constant (default: 0.3).
        beta: Trend smoothing constant (default: 0.1).
    """

    model_type: ClassVar[str] = "trend"
    CONFIDENCE: ClassVar[float] = 0.8

    def __init__(self, alpha: float = 0.3, beta: float = 0.1) -> None:
        """Initialize the trend smoothing forecaster.

        Args:
            alpha: Level smoothing constant.
            beta: Trend smoothing constant.
        """
        super().__init__()
        self.alpha = alpha
        self.beta = beta
        self._level = 0.0
        self._trend = 0.0
        self._volatility = DEFAULT_VOLATILITY

    def fit(
        self,
        series: AggregatedSeries,
        cancel_event: threading.Event | None = None,
    ) -> TrendSmoothingForecaster:
        """Run the smoothing recursion over the revenue history."""
        _check_cancelled(cancel_event, "trend.fit")
        y = series.revenue
        if len(y) == 0:
            raise ModelFitError(
                "Cannot fit trend model on empty series",
                details={"model_type": self.model_type},
            )

        level = float(y[0])
        trend = float(y[1] - y[0]) if len(y) > 1 else 0.0
        for value in y[1:]:
            new_level = self.alpha * float(value) + (1 - self.alpha) * (level + trend)
            trend = self.beta * (new_level - level) + (1 - self.beta) * trend
            level = new_level

        self._level = level
        self._trend = trend
        self._volatility = self._coefficient_of_variation(y)
        self._record_fit(
            series,
            {"level": level, "trend": trend, "volatility": self._volatility},
        )
        return self

    @staticmethod
    def _coefficient_of_variation(y: FloatArray) -> float:
        if len(y) < 2:
            return DEFAULT_VOLATILITY
        mean = float(np.mean(y))
        if mean == 0:
            return DEFAULT_VOLATILITY
        volatility = float(np.std(y)) / mean
        # A flat history would give a zero-width band
        if volatility == 0 or not math.isfinite(volatility):
            return DEFAULT_VOLATILITY
        return volatility

    def predict(self, horizon: int) -> TrendForecast:
        """Extrapolate level + trend * h."""
        self._require_fitted()
        steps = np.arange(1, horizon + 1, dtype=np.float64)
        raw = self._level + self._trend * steps
        revenue = np.maximum(raw, 0.0)
        revenue, lower, upper = clamp_band(
            revenue,
            revenue * (1 - self._volatility),
            revenue * (1 + self._volatility),
        )
        return TrendForecast(
            revenue=revenue,
            quantity=quantity_from_revenue(revenue, self._revenue_per_unit),
            lower=lower,
            upper=upper,
            confidence=self.CONFIDENCE,
            level=self._level,
            trend=self._trend,
            volatility=self._volatility,
        )

    def get_params(self) -> dict[str, Any]:
        """Get model parameters."""
        return {"alpha": self.alpha, "beta": self.beta}


# =============================================================================
# Autoregressive (ARIMA(p,1,0))
# =============================================================================


class AutoregressiveForecaster(BaseForecaster):
    """AR(p) on the first difference, fitted by ordinary least squares.

    Fit:
        d[t] = y[t] - y[t-1]
        d[t] = phi_1 * d[t-1] + ... + phi_p * d[t-p] + e[t]

    Forecasts are produced recursively on the differences and re-integrated
    from the last observed level. The interval for step h uses the psi-weights
    of the integrated process, so it widens with h:
        var[h] = sigma^2 * sum_{j<h} (psi_0 + ... + psi_j)^2

    AIC/BIC use the Gaussian log-likelihood with k = p + 1 parameters
    (coefficients plus residual variance).

    Attributes:
        lags: Autoregressive order p (default: 5).
        interval_z: Normal quantile for the interval (default: 1.96, ~95%).
    """

    model_type: ClassVar[str] = "autoregressive"
    CONFIDENCE: ClassVar[float] = 0.75
    VARIANCE_FLOOR: ClassVar[float] = 1e-10

    def __init__(self, lags: int = 5, interval_z: float = 1.96) -> None:
        """Initialize the autoregressive forecaster.

        Args:
            lags: Autoregressive order on the differenced series.
            interval_z: Normal quantile for the prediction interval.
        """
        super().__init__()
        self.lags = lags
        self.interval_z = interval_z
        self._coefficients: FloatArray = np.zeros(lags, dtype=np.float64)
        self._history: FloatArray = np.zeros(lags, dtype=np.float64)
        self._last_level = 0.0
        self._sigma2 = 0.0
        self._aic = 0.0
        self._bic = 0.0
        self._n_effective = 0

    def fit(
        self,
        series: AggregatedSeries,
        cancel_event: threading.Event | None = None,
    ) -> AutoregressiveForecaster:
        """Difference once and solve the lagged least-squares problem.

        Raises:
            ModelFitError: If fewer than lags + 1 differenced points exist or
                the solution is not finite.
            ForecastCancelledError: If cancel_event is set between lag columns.
        """
        if self.lags < 1:
            raise ModelFitError(
                f"Autoregressive order must be at least 1, got {self.lags}",
                details={"model_type": self.model_type},
            )

        y = series.revenue
        diffs = np.diff(y)
        if len(diffs) < self.lags + 1:
            raise ModelFitError(
                f"Autoregressive fit needs at least {self.lags + 1} differenced points, "
                f"got {len(diffs)}",
                details={"model_type": self.model_type, "differenced_points": len(diffs)},
            )

        n_rows = len(diffs) - self.lags
        design = np.empty((n_rows, self.lags), dtype=np.float64)
        for lag in range(1, self.lags + 1):
            _check_cancelled(cancel_event, f"autoregressive.lag_{lag}")
            design[:, lag - 1] = diffs[self.lags - lag : len(diffs) - lag]
        target = diffs[self.lags :]

        try:
            coefficients = np.linalg.lstsq(design, target, rcond=None)[0]
        except np.linalg.LinAlgError as e:
            raise ModelFitError(
                f"Autoregressive least-squares solve failed: {e}",
                details={"model_type": self.model_type},
            ) from e

        if not np.all(np.isfinite(coefficients)):
            raise ModelFitError(
                "Autoregressive fit produced non-finite coefficients",
                details={"model_type": self.model_type},
            )

        residuals = target - design @ coefficients
        sigma2 = float(np.mean(residuals**2))
        n = len(target)
        k = self.lags + 1
        log_likelihood = -n / 2 * (
            1 + math.log(2 * math.pi) + math.log(max(sigma2, self.VARIANCE_FLOOR))
        )

        self._coefficients = coefficients
        self._history = np.array(diffs[-self.lags :], dtype=np.float64)
        self._last_level = float(y[-1])
        self._sigma2 = sigma2
        self._aic = 2 * k - 2 * log_likelihood
        self._bic = k * math.log(n) - 2 * log_likelihood
        self._n_effective = n

        logger.debug(
            "forecasting.autoregressive_fitted",
            lags=self.lags,
            n_observations=n,
            aic=self._aic,
            bic=self._bic,
        )

        self._record_fit(series, {"aic": self._aic, "bic": self._bic, "sigma2": sigma2})
        return self

    def _psi_weights(self, horizon: int) -> FloatArray:
        """MA(infinity) weights of the fitted AR process on the differences."""
        psi = np.zeros(horizon, dtype=np.float64)
        psi[0] = 1.0
        for j in range(1, horizon):
            for i in range(1, min(j, self.lags) + 1):
                psi[j] += self._coefficients[i - 1] * psi[j - i]
        return psi

    def predict(self, horizon: int) -> AutoregressiveForecast:
        """Recursive AR forecast, re-integrated, with widening interval.

        Raises:
            ModelFitError: If the recursion diverges to non-finite values.
        """
        self._require_fitted()

        window = list(self._history)
        level = self._last_level
        raw = np.empty(horizon, dtype=np.float64)
        for h in range(horizon):
            next_diff = float(np.dot(self._coefficients, window[::-1][: self.lags]))
            level += next_diff
            raw[h] = level
            window.append(next_diff)

        integrated_psi = np.cumsum(self._psi_weights(horizon))
        half_width = self.interval_z * np.sqrt(self._sigma2 * np.cumsum(integrated_psi**2))

        if not (np.all(np.isfinite(raw)) and np.all(np.isfinite(half_width))):
            raise ModelFitError(
                "Autoregressive forecast diverged",
                details={"model_type": self.model_type, "horizon": horizon},
            )

        revenue, lower, upper = clamp_band(raw, raw - half_width, raw + half_width)
        return AutoregressiveForecast(
            revenue=revenue,
            quantity=quantity_from_revenue(revenue, self._revenue_per_unit),
            lower=lower,
            upper=upper,
            confidence=self.CONFIDENCE,
            aic=self._aic,
            bic=self._bic,
            coefficients=tuple(float(c) for c in self._coefficients),
            residual_variance=self._sigma2,
            n_observations=self._n_effective,
        )

    def get_params(self) -> dict[str, Any]:
        """Get model parameters."""
        return {"lags": self.lags, "interval_z": self.interval_z}


# =============================================================================
# Seasonal Decomposition
# =============================================================================


class SeasonalDecompositionForecaster(BaseForecaster):
    """Linear trend on a recent baseline with a fixed sinusoidal season.

    Formula: y_hat[t+h] = (baseline + slope * h) * (1 + amplitude * sin(2*pi*h / m))

    - slope: OLS slope of revenue against index 0..n-1
    - baseline: mean revenue of the last ``baseline_window`` periods
    - m: season_length (7, applied regardless of granularity)

    Band: y_hat * (1 +/- band_width).

    Attributes:
        season_length: Seasonal period in steps (default: 7).
        amplitude: Seasonal multiplier amplitude (default: 0.1).
        baseline_window: Periods averaged for the baseline (default: 7).
        band_width: Relative half-width of the band (default: 0.15).
    """

    model_type: ClassVar[str] = "seasonal"
    CONFIDENCE: ClassVar[float] = 0.85

    def __init__(
        self,
        season_length: int = 7,
        amplitude: float = 0.1,
        baseline_window: int = 7,
        band_width: float = 0.15,
    ) -> None:
        """Initialize the seasonal decomposition forecaster."""
        super().__init__()
        self.season_length = season_length
        self.amplitude = amplitude
        self.baseline_window = baseline_window
        self.band_width = band_width
        self._baseline = 0.0
        self._slope = 0.0

    def fit(
        self,
        series: AggregatedSeries,
        cancel_event: threading.Event | None = None,
    ) -> SeasonalDecompositionForecaster:
        """Estimate the OLS slope and the recent baseline."""
        _check_cancelled(cancel_event, "seasonal.fit")
        y = series.revenue
        if len(y) == 0:
            raise ModelFitError(
                "Cannot fit seasonal model on empty series",
                details={"model_type": self.model_type},
            )

        self._slope = self._ols_slope(y)
        self._baseline = float(np.mean(y[-self.baseline_window :]))
        self._record_fit(series, {"baseline": self._baseline, "slope": self._slope})
        return self

    @staticmethod
    def _ols_slope(y: FloatArray) -> float:
        n = len(y)
        if n < 2:
            return 0.0
        x = np.arange(n, dtype=np.float64)
        sum_x = float(np.sum(x))
        sum_y = float(np.sum(y))
        sum_xy = float(np.dot(x, y))
        sum_xx = float(np.dot(x, x))
        return (n * sum_xy - sum_x * sum_y) / (n * sum_xx - sum_x * sum_x)

    def seasonal_multiplier(self, steps: FloatArray) -> FloatArray:
        """Weekly multiplier 1 + amplitude * sin(2*pi*h / season_length)."""
        return 1 + self.amplitude * np.sin(2 * np.pi * steps / self.season_length)

    def predict(self, horizon: int) -> SeasonalForecast:
        """Project the trend from the baseline and apply the season."""
        self._require_fitted()
        steps = np.arange(1, horizon + 1, dtype=np.float64)
        raw = (self._baseline + self._slope * steps) * self.seasonal_multiplier(steps)
        revenue = np.maximum(raw, 0.0)
        revenue, lower, upper = clamp_band(
            revenue,
            revenue * (1 - self.band_width),
            revenue * (1 + self.band_width),
        )
        return SeasonalForecast(
            revenue=revenue,
            quantity=quantity_from_revenue(revenue, self._revenue_per_unit),
            lower=lower,
            upper=upper,
            confidence=self.CONFIDENCE,
            baseline=self._baseline,
            slope=self._slope,
        )

    def get_params(self) -> dict[str, Any]:
        """Get model parameters."""
        return {
            "season_length": self.season_length,
            "amplitude": self.amplitude,
            "baseline_window": self.baseline_window,
            "band_width": self.band_width,
        }


def model_factory(model_type: str, settings: Settings | None = None) -> BaseForecaster:
    """Create a fresh forecaster for one component model type.

    Args:
        model_type: One of ``trend``, ``autoregressive``, ``seasonal``.
        settings: Settings supplying tunable constants (defaults to get_settings()).

    Returns:
        Unfitted forecaster instance.

    Raises:
        ValidationError: If model_type is not a component model.
    """
    settings = settings or get_settings()

    if model_type == "trend":
        return TrendSmoothingForecaster(
            alpha=settings.forecast_trend_alpha,
            beta=settings.forecast_trend_beta,
        )
    elif model_type == "autoregressive":
        return AutoregressiveForecaster(
            lags=settings.forecast_ar_lags,
            interval_z=settings.forecast_interval_z,
        )
    elif model_type == "seasonal":
        return SeasonalDecompositionForecaster()
    else:
        raise ValidationError(
            f"Unknown model type: {model_type}",
            details={"field": "model_type"},
        )
