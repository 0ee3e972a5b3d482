"""Fixed-weight ensemble of the component forecasters.

Default weights: trend 0.4, autoregressive 0.3, seasonal 0.3.

When a member is missing (its fit failed), the remaining weights are
renormalized to sum to 1, e.g. without the autoregressive model:
trend 0.4 / 0.7 = 0.571..., seasonal 0.3 / 0.7 = 0.428...

Confidence is 0.9 for the full ensemble and 0.75 when degraded. The band is
+/-20% of the combined point estimate in both cases.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import ClassVar

import numpy as np

from app.core.exceptions import ModelFitError
from app.features.forecasting.models import ComponentForecast, ModelForecast, clamp_band
from app.features.forecasting.schemas import COMPONENT_MODELS

DEFAULT_WEIGHTS: dict[str, float] = {
    "trend": 0.4,
    "autoregressive": 0.3,
    "seasonal": 0.3,
}


@dataclass(frozen=True, eq=False)
class EnsembleForecast(ModelForecast):
    """Combined output plus the weights actually applied."""

    model_type: ClassVar[str] = "ensemble"

    weights: dict[str, float] = field(default_factory=lambda: {})
    excluded: tuple[str, ...] = ()

    @property
    def degraded(self) -> bool:
        """True when at least one member was excluded."""
        return bool(self.excluded)


class EnsembleCombiner:
    """Weighted blend of trend, autoregressive and seasonal forecasts.

    Attributes:
        weights: Base weight per member model.
        band_width: Relative half-width of the combined band.
    """

    FULL_CONFIDENCE: ClassVar[float] = 0.9
    DEGRADED_CONFIDENCE: ClassVar[float] = 0.75

    def __init__(
        self,
        weights: Mapping[str, float] | None = None,
        band_width: float = 0.2,
    ) -> None:
        """Initialize the combiner.

        Args:
            weights: Base weights keyed by member model type.
            band_width: Relative half-width of the combined band.

        Raises:
            ValueError: If a weight names an unknown model or is not positive.
        """
        weights = dict(weights or DEFAULT_WEIGHTS)
        unknown = set(weights) - set(COMPONENT_MODELS)
        if unknown:
            raise ValueError(f"Unknown ensemble members: {sorted(unknown)}")
        if any(w <= 0 for w in weights.values()):
            raise ValueError("Ensemble weights must be positive")
        self.weights = weights
        self.band_width = band_width

    def effective_weights(self, available: list[str]) -> dict[str, float]:
        """Renormalize base weights over the available members.

        Args:
            available: Member model types that produced forecasts.

        Returns:
            Weights for the available members, summing to 1.
        """
        total = sum(self.weights[name] for name in available)
        return {name: self.weights[name] / total for name in available}

    def combine(
        self,
        trend: ComponentForecast | None,
        autoregressive: ComponentForecast | None,
        seasonal: ComponentForecast | None,
    ) -> EnsembleForecast:
        """Blend member forecasts step by step.

        Args:
            trend: Trend smoothing forecast, or None if excluded.
            autoregressive: Autoregressive forecast, or None if excluded.
            seasonal: Seasonal decomposition forecast, or None if excluded.

        Returns:
            EnsembleForecast with weighted revenue and quantity.

        Raises:
            ModelFitError: If no member is available.
            ValueError: If member horizons differ, or a forecast sits in the
                wrong slot.
        """
        members = {
            "trend": trend,
            "autoregressive": autoregressive,
            "seasonal": seasonal,
        }
        for name, forecast in members.items():
            if forecast is not None and forecast.model_type != name:
                raise ValueError(
                    f"Ensemble slot '{name}' got a {forecast.model_type} forecast"
                )
        available = {
            name: forecast
            for name, forecast in members.items()
            if forecast is not None and name in self.weights
        }
        if not available:
            raise ModelFitError(
                "No ensemble member produced a forecast",
                details={"model_type": "ensemble"},
            )

        horizons = {forecast.horizon for forecast in available.values()}
        if len(horizons) != 1:
            raise ValueError(f"Ensemble members disagree on horizon: {sorted(horizons)}")

        weights = self.effective_weights(list(available))
        horizon = horizons.pop()
        revenue = np.zeros(horizon, dtype=np.float64)
        quantity = np.zeros(horizon, dtype=np.float64)
        for name, forecast in available.items():
            revenue += weights[name] * forecast.revenue
            quantity += weights[name] * forecast.quantity

        excluded = tuple(name for name in self.weights if name not in available)
        revenue, lower, upper = clamp_band(
            revenue,
            revenue * (1 - self.band_width),
            revenue * (1 + self.band_width),
        )

        return EnsembleForecast(
            revenue=revenue,
            quantity=np.maximum(quantity, 0.0),
            lower=lower,
            upper=upper,
            confidence=self.DEGRADED_CONFIDENCE if excluded else self.FULL_CONFIDENCE,
            weights=weights,
            excluded=excluded,
        )
