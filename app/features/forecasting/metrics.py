"""Accuracy evaluation of forecasts against held-out actuals.

Supported Metrics:
- MAPE: Mean Absolute Percentage Error (percent; zero actuals are skipped)
- RMSE: Root Mean Squared Error
- MAE: Mean Absolute Error
- R2: Coefficient of determination

CRITICAL: No metric ever returns nan or inf. Undefined cases (all actuals
zero for MAPE, constant actuals for R2) report 0 and set ``degenerate``.
Scale-dependent metrics are computed on values divided by the largest
magnitude, so squaring very large revenues cannot overflow.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from app.core.exceptions import InsufficientActualsError
from app.features.forecasting.schemas import AccuracyMetrics

FloatArray = np.ndarray[Any, np.dtype[np.floating[Any]]]


@dataclass
class MetricResult:
    """Result of a single metric calculation.

    Attributes:
        name: Name of the metric.
        value: Calculated value (always finite).
        n_samples: Number of samples that contributed.
        degenerate: Whether the value is a fallback for an undefined metric.
        warnings: Warnings generated during calculation.
    """

    name: str
    value: float
    n_samples: int
    degenerate: bool = False
    warnings: list[str] = field(default_factory=lambda: [])


def _check_lengths(actuals: FloatArray, predictions: FloatArray) -> None:
    if len(actuals) != len(predictions):
        raise ValueError(
            f"Length mismatch: actuals={len(actuals)}, predictions={len(predictions)}"
        )


def _finite(result: MetricResult) -> MetricResult:
    """Replace an overflowed metric with 0 flagged as degenerate."""
    if math.isfinite(result.value):
        return result
    return MetricResult(
        name=result.name,
        value=0.0,
        n_samples=result.n_samples,
        degenerate=True,
        warnings=[*result.warnings, f"{result.name} is not representable; reported as 0"],
    )


def _rescale(
    actuals: FloatArray, predictions: FloatArray
) -> tuple[FloatArray, FloatArray, float]:
    """Divide both arrays by their largest magnitude.

    Returns:
        Tuple of (scaled actuals, scaled predictions, scale).
    """
    scale = float(
        max(np.max(np.abs(actuals), initial=0.0), np.max(np.abs(predictions), initial=0.0))
    )
    if scale == 0 or not np.isfinite(scale):
        return actuals, predictions, 1.0
    return actuals / scale, predictions / scale, scale


class AccuracyEvaluator:
    """Score predictions against actuals with MAPE, RMSE, MAE and R2."""

    @staticmethod
    def mape(actuals: FloatArray, predictions: FloatArray) -> MetricResult:
        """Mean Absolute Percentage Error.

        Formula: 100 * mean(|A - F| / |A|) over points with A != 0

        Points with a zero actual are skipped, not zero-filled. If every point
        is skipped the result is 0 with degenerate=True.

        Raises:
            ValueError: If arrays have different lengths.
        """
        _check_lengths(actuals, predictions)
        mask = actuals != 0
        n_skipped = int(np.sum(~mask))

        if not np.any(mask):
            return MetricResult(
                name="mape",
                value=0.0,
                n_samples=0,
                degenerate=True,
                warnings=["All actuals are zero; MAPE undefined"],
            )

        ratios = np.abs(actuals[mask] - predictions[mask]) / np.abs(actuals[mask])
        warnings = [f"{n_skipped} zero-actual samples skipped"] if n_skipped else []
        return MetricResult(
            name="mape",
            value=float(100.0 * np.mean(ratios)),
            n_samples=int(np.sum(mask)),
            warnings=warnings,
        )

    @staticmethod
    def rmse(actuals: FloatArray, predictions: FloatArray) -> MetricResult:
        """Root Mean Squared Error: sqrt(mean((A - F)^2))."""
        _check_lengths(actuals, predictions)
        scaled_actuals, scaled_predictions, scale = _rescale(actuals, predictions)
        value = scale * float(np.sqrt(np.mean((scaled_actuals - scaled_predictions) ** 2)))
        return MetricResult(name="rmse", value=value, n_samples=len(actuals))

    @staticmethod
    def mae(actuals: FloatArray, predictions: FloatArray) -> MetricResult:
        """Mean Absolute Error: mean(|A - F|)."""
        _check_lengths(actuals, predictions)
        scaled_actuals, scaled_predictions, scale = _rescale(actuals, predictions)
        value = scale * float(np.mean(np.abs(scaled_actuals - scaled_predictions)))
        return MetricResult(name="mae", value=value, n_samples=len(actuals))

    @staticmethod
    def r2(actuals: FloatArray, predictions: FloatArray) -> MetricResult:
        """Coefficient of determination.

        Formula: 1 - sum((A - F)^2) / sum((A - mean(A))^2)

        Constant actuals make the denominator zero; the result is then 0 with
        degenerate=True. Constancy is read from the actuals, not from the
        rounded mean.
        """
        _check_lengths(actuals, predictions)

        if len(actuals) == 0 or np.ptp(actuals) == 0:
            return MetricResult(
                name="r2",
                value=0.0,
                n_samples=len(actuals),
                degenerate=True,
                warnings=["Actuals are constant; R2 undefined"],
            )

        scaled_actuals, scaled_predictions, _ = _rescale(actuals, predictions)
        ss_res = float(np.sum((scaled_actuals - scaled_predictions) ** 2))
        ss_tot = float(np.sum((scaled_actuals - np.mean(scaled_actuals)) ** 2))
        # ss_tot underflows when actuals are tiny next to the predictions
        value = 1.0 - ss_res / ss_tot if ss_tot > 0 else -math.inf
        return MetricResult(name="r2", value=value, n_samples=len(actuals))

    def evaluate(
        self,
        actual: Sequence[float] | FloatArray,
        predicted: Sequence[float] | FloatArray,
    ) -> AccuracyMetrics:
        """Score the overlapping prefix of ``actual`` and ``predicted``.

        Args:
            actual: Held-out actual values.
            predicted: Predicted values, aligned from the first step.

        Returns:
            AccuracyMetrics with evaluated_periods = overlap length.

        Raises:
            InsufficientActualsError: If the overlap is empty.
        """
        actuals = np.asarray(actual, dtype=np.float64)
        predictions = np.asarray(predicted, dtype=np.float64)
        overlap = min(len(actuals), len(predictions))

        if overlap == 0:
            raise InsufficientActualsError(
                "No overlap between predictions and held-out actuals",
                details={"actuals": len(actuals), "predictions": len(predictions)},
            )

        actuals = actuals[:overlap]
        predictions = predictions[:overlap]

        with np.errstate(over="ignore", under="ignore", divide="ignore", invalid="ignore"):
            mape = _finite(self.mape(actuals, predictions))
            rmse = _finite(self.rmse(actuals, predictions))
            mae = _finite(self.mae(actuals, predictions))
            r2 = _finite(self.r2(actuals, predictions))

        return AccuracyMetrics(
            mape=mape.value,
            rmse=rmse.value,
            mae=mae.value,
            r2_score=r2.value,
            evaluated_periods=overlap,
            degenerate=any(m.degenerate for m in (mape, rmse, mae, r2)),
        )
