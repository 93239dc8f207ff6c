"""
Usage projections.

Fits a least-squares trend to recent daily totals and projects it forward
with widening confidence bounds.
"""

import math
import statistics
from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import Iterable, List, Optional, Tuple

from claudelytics.errors import ConfigurationError
from claudelytics.serialization import to_dict
from .token_usage import TokenUsage

DEFAULT_HISTORY_DAYS = 30
DEFAULT_PROJECTION_DAYS = 30
TREND_THRESHOLD = 5.0
CONFIDENCE_DECAY = 0.03
Z_95 = 1.96


class TrendDirection(Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


@dataclass(frozen=True)
class DataPoint:
    date: date
    value: float


@dataclass(frozen=True)
class Projection:
    """Projected value for one future day with a 95% band."""
    date: date
    value: float
    lower_bound: float
    upper_bound: float
    confidence: float


@dataclass(frozen=True)
class UsageProjection:
    daily_average: float
    weekly_average: float
    monthly_average: float
    trend: TrendDirection
    growth_rate: float
    projections: List[Projection]
    estimated_monthly_cost: float
    days_until_limit: Optional[int] = None
    limit_date: Optional[date] = None

    def to_dict(self) -> dict:
        return to_dict(self)


@dataclass(frozen=True)
class TokenProjection:
    daily_average_tokens: int
    weekly_average_tokens: int
    monthly_average_tokens: int
    trend: TrendDirection
    growth_rate: float
    days_until_token_limit: Optional[int] = None
    token_limit_date: Optional[date] = None

    def to_dict(self) -> dict:
        return to_dict(self)


def linear_trend(values: List[float]) -> Tuple[TrendDirection, float]:
    """Direction and growth rate (slope as a percent of the mean).

    Fewer than three points is always stable.
    """
    n = len(values)
    if n < 3:
        return TrendDirection.STABLE, 0.0

    sum_x = sum(range(n))
    sum_y = sum(values)
    sum_xy = sum(i * y for i, y in enumerate(values))
    sum_x2 = sum(i * i for i in range(n))
    slope = (n * sum_xy - sum_x * sum_y) / (n * sum_x2 - sum_x * sum_x)
    mean = sum_y / n
    growth_rate = slope / mean * 100.0 if mean > 0 else 0.0

    if growth_rate > TREND_THRESHOLD:
        return TrendDirection.INCREASING, growth_rate
    if growth_rate < -TREND_THRESHOLD:
        return TrendDirection.DECREASING, growth_rate
    return TrendDirection.STABLE, growth_rate


class ProjectionCalculator:
    """Projections over the last ``history_days`` of daily totals."""

    def __init__(
        self,
        history_days: int = DEFAULT_HISTORY_DAYS,
        projection_days: int = DEFAULT_PROJECTION_DAYS,
        token_limit: Optional[int] = None,
        cost_limit: Optional[float] = None,
    ):
        if history_days <= 0:
            raise ConfigurationError("history_days must be > 0")
        if projection_days <= 0:
            raise ConfigurationError("projection_days must be > 0")
        self.history_days = history_days
        self.projection_days = projection_days
        self.token_limit = token_limit
        self.cost_limit = cost_limit

    def _history(self, days: Iterable[Tuple[date, TokenUsage]], today: date) -> List[Tuple[date, TokenUsage]]:
        start = today - timedelta(days=self.history_days)
        return sorted((day, usage) for day, usage in days if start <= day <= today)

    def calculate_projections(self, days: Iterable[Tuple[date, TokenUsage]], today: date) -> UsageProjection:
        """Cost projection from daily totals up to and including ``today``."""
        points = [DataPoint(day, usage.total_cost) for day, usage in self._history(days, today)]
        values = [p.value for p in points]

        daily_average = statistics.fmean(values) if values else 0.0
        weekly_average = sum(values[-7:]) if len(values) >= 7 else daily_average * 7
        monthly_average = sum(values[-30:]) if len(values) >= 30 else daily_average * 30
        trend, growth_rate = linear_trend(values)
        projections = self._project(points, growth_rate)
        days_until_limit, limit_date = self._limit_timing(points, daily_average, growth_rate, today)

        if projections:
            estimated_monthly_cost = sum(p.value for p in projections[:30])
        else:
            estimated_monthly_cost = daily_average * 30

        return UsageProjection(
            daily_average=daily_average,
            weekly_average=weekly_average,
            monthly_average=monthly_average,
            trend=trend,
            growth_rate=growth_rate,
            projections=projections,
            estimated_monthly_cost=estimated_monthly_cost,
            days_until_limit=days_until_limit,
            limit_date=limit_date,
        )

    def _project(self, points: List[DataPoint], growth_rate: float) -> List[Projection]:
        if not points:
            return []
        last = points[-1]
        daily_growth = 1.0 + growth_rate / 100.0
        std_dev = statistics.stdev(p.value for p in points) if len(points) >= 2 else 0.0

        projections = []
        for i in range(1, self.projection_days + 1):
            value = last.value * daily_growth ** i
            spread = std_dev * Z_95 * math.sqrt(i)
            projections.append(Projection(
                date=last.date + timedelta(days=i),
                value=value,
                lower_bound=max(0.0, value - spread),
                upper_bound=value + spread,
                confidence=1.0 / (1.0 + i * CONFIDENCE_DECAY),
            ))
        return projections

    def _limit_timing(
        self,
        points: List[DataPoint],
        daily_average: float,
        growth_rate: float,
        today: date,
    ) -> Tuple[Optional[int], Optional[date]]:
        if self.cost_limit is None or daily_average <= 0:
            return None, None

        month_start = today.replace(day=1)
        month_cost = sum(p.value for p in points if p.date >= month_start)
        if month_cost >= self.cost_limit:
            return 0, today

        daily_burn = daily_average * (1.0 + growth_rate / 100.0)
        if daily_burn <= 0:
            return None, None
        days = math.ceil((self.cost_limit - month_cost) / daily_burn)
        return days, today + timedelta(days=days)

    def calculate_token_projections(self, days: Iterable[Tuple[date, TokenUsage]], today: date) -> TokenProjection:
        history = self._history(days, today)
        tokens = [usage.total_tokens for _, usage in history]

        daily_average = sum(tokens) // len(tokens) if tokens else 0
        weekly_average = sum(tokens[-7:]) if len(tokens) >= 7 else daily_average * 7
        monthly_average = sum(tokens[-30:]) if len(tokens) >= 30 else daily_average * 30
        trend, growth_rate = linear_trend([float(t) for t in tokens])

        days_until, limit_date = None, None
        if self.token_limit is not None:
            month_start = today.replace(day=1)
            month_tokens = sum(usage.total_tokens for day, usage in history if day >= month_start)
            if month_tokens >= self.token_limit:
                days_until, limit_date = 0, today
            else:
                daily_burn = int(daily_average * (1.0 + growth_rate / 100.0))
                if daily_burn > 0:
                    days_until = (self.token_limit - month_tokens) // daily_burn
                    limit_date = today + timedelta(days=days_until)

        return TokenProjection(
            daily_average_tokens=daily_average,
            weekly_average_tokens=weekly_average,
            monthly_average_tokens=monthly_average,
            trend=trend,
            growth_rate=growth_rate,
            days_until_token_limit=days_until,
            token_limit_date=limit_date,
        )
