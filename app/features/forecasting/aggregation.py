"""Time-series aggregation: raw sales observations to regular periods.

Period keys:
- daily: ISO date
- weekly: ISO year-week (period starts on Monday)
- monthly: year-month (period starts on the 1st)

Gaps are not filled: a period with no observations simply does not appear.

CRITICAL: aggregate() is a pure function of its input. Revenue and quantity
are conserved: the sum over periods equals the sum over observations.
"""

from __future__ import annotations

import calendar
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date as date_type
from datetime import timedelta
from typing import TYPE_CHECKING, Any

import numpy as np
import pandas as pd

from app.core.exceptions import InsufficientDataError, ValidationError
from app.core.logging import get_logger

if TYPE_CHECKING:
    from app.features.forecasting.schemas import Granularity, Observation

logger = get_logger(__name__)

DEFAULT_MIN_PERIODS = 30

# pandas period aliases per granularity
PERIOD_FREQUENCIES: dict[str, str] = {
    "daily": "D",
    "weekly": "W-SUN",
    "monthly": "M",
}


@dataclass(frozen=True)
class AggregatedPeriod:
    """One bucket of summed sales.

    Attributes:
        period_start: First calendar day of the period.
        revenue: Sum of constituent revenues.
        quantity: Sum of constituent quantities.
    """

    period_start: date_type
    revenue: float
    quantity: float


@dataclass(frozen=True)
class AggregatedSeries:
    """Ordered, duplicate-free sequence of aggregated periods.

    Models read ``revenue`` and ``quantity`` as numpy arrays; the arrays are
    built once and marked read-only so concurrent fits cannot mutate them.

    Attributes:
        periods: Periods in strictly ascending period_start order.
        granularity: Bucket size used to build the periods.
        observation_count: Number of raw observations aggregated.
    """

    periods: tuple[AggregatedPeriod, ...]
    granularity: Granularity
    observation_count: int = 0
    revenue: np.ndarray[Any, np.dtype[np.floating[Any]]] = field(
        init=False, repr=False, compare=False
    )
    quantity: np.ndarray[Any, np.dtype[np.floating[Any]]] = field(
        init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        """Build read-only value arrays."""
        revenue = np.array([p.revenue for p in self.periods], dtype=np.float64)
        quantity = np.array([p.quantity for p in self.periods], dtype=np.float64)
        revenue.setflags(write=False)
        quantity.setflags(write=False)
        object.__setattr__(self, "revenue", revenue)
        object.__setattr__(self, "quantity", quantity)

    def __len__(self) -> int:
        return len(self.periods)

    @property
    def start(self) -> date_type:
        """First period start."""
        return self.periods[0].period_start

    @property
    def end(self) -> date_type:
        """Last period start."""
        return self.periods[-1].period_start

    def forecast_dates(self, horizon: int) -> list[date_type]:
        """Period starts for the ``horizon`` periods following the series."""
        return [shift_period(self.end, self.granularity, h) for h in range(1, horizon + 1)]


def period_start(day: date_type, granularity: Granularity) -> date_type:
    """Map a calendar date to the first day of its period.

    Args:
        day: Calendar date.
        granularity: Bucket size.

    Returns:
        The date itself (daily), the ISO-week Monday (weekly) or the 1st of
        the month (monthly).

    Raises:
        ValidationError: If granularity is unknown.
    """
    if granularity == "daily":
        return day
    if granularity == "weekly":
        return day - timedelta(days=day.weekday())
    if granularity == "monthly":
        return day.replace(day=1)
    raise ValidationError(
        f"Unsupported granularity: {granularity}",
        details={"field": "period_granularity"},
    )


def period_key(day: date_type, granularity: Granularity) -> str:
    """Human-readable grouping key (``2024-03-05``, ``2024-W10``, ``2024-03``)."""
    if granularity == "weekly":
        iso_year, iso_week, _ = day.isocalendar()
        return f"{iso_year}-W{iso_week:02d}"
    if granularity == "monthly":
        return f"{day.year}-{day.month:02d}"
    return period_start(day, granularity).isoformat()


def shift_period(start: date_type, granularity: Granularity, steps: int) -> date_type:
    """Move a period start by ``steps`` periods (negative moves back).

    Monthly shifts clamp the day to the target month's length.
    """
    if granularity == "daily":
        return start + timedelta(days=steps)
    if granularity == "weekly":
        return start + timedelta(weeks=steps)
    if granularity == "monthly":
        month_index = start.year * 12 + (start.month - 1) + steps
        year, month = divmod(month_index, 12)
        month += 1
        day = min(start.day, calendar.monthrange(year, month)[1])
        return date_type(year, month, day)
    raise ValidationError(
        f"Unsupported granularity: {granularity}",
        details={"field": "period_granularity"},
    )


def aggregate(
    observations: Sequence[Observation],
    granularity: Granularity,
    min_periods: int = DEFAULT_MIN_PERIODS,
) -> AggregatedSeries:
    """Group observations into periods and sum revenue and quantity.

    Args:
        observations: Raw sales facts in any order.
        granularity: Bucket size.
        min_periods: Minimum number of distinct periods required.

    Returns:
        AggregatedSeries ordered ascending by period_start.

    Raises:
        InsufficientDataError: If fewer than ``min_periods`` periods result.
        ValidationError: If granularity is unknown.
    """
    frequency = PERIOD_FREQUENCIES.get(granularity)
    if frequency is None:
        raise ValidationError(
            f"Unsupported granularity: {granularity}",
            details={"field": "period_granularity"},
        )

    df = pd.DataFrame(
        {
            "date": pd.to_datetime([o.date for o in observations]),
            "revenue": np.array([o.revenue for o in observations], dtype=np.float64),
            "quantity": np.array([o.quantity for o in observations], dtype=np.float64),
        }
    )
    # W-SUN periods run Monday..Sunday, matching ISO weeks
    df["period_start"] = df["date"].dt.to_period(frequency).dt.start_time

    grouped = (
        df.groupby("period_start", sort=True)
        .agg(revenue=("revenue", "sum"), quantity=("quantity", "sum"))
        .sort_index()
    )

    if len(grouped) < min_periods:
        raise InsufficientDataError(
            f"Insufficient training data: {len(grouped)} {granularity} periods "
            f"available, at least {min_periods} required",
            details={
                "field": "lookback_periods",
                "available_periods": len(grouped),
                "required_periods": min_periods,
            },
        )

    periods = tuple(
        AggregatedPeriod(
            period_start=start.date(),
            revenue=float(revenue),
            quantity=float(quantity),
        )
        for start, revenue, quantity in zip(
            grouped.index,
            grouped["revenue"].to_numpy(),
            grouped["quantity"].to_numpy(),
            strict=True,
        )
    )

    series = AggregatedSeries(
        periods=periods,
        granularity=granularity,
        observation_count=len(observations),
    )
    if periods:
        logger.debug(
            "forecasting.aggregation_completed",
            granularity=granularity,
            n_observations=series.observation_count,
            n_periods=len(series),
            first_period=period_key(series.start, granularity),
            last_period=period_key(series.end, granularity),
        )
    return series
