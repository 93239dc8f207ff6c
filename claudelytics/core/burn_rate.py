"""
Burn rate calculation.

Measures how fast tokens and dollars are consumed over a look-back window and
extrapolates the rate to a day and a month.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, List, Optional, Tuple

from claudelytics.errors import ConfigurationError
from .aggregators import TimelineAggregator
from .token_usage import TokenUsage

HOURS_PER_DAY = 24
DAYS_PER_MONTH = 30
MIN_SESSION_HOURS = 0.1

# Approximation used when only daily totals are available
ACTIVE_HOURS = range(9, 18)


@dataclass(frozen=True)
class BurnRate:
    """Consumption rate and its daily/monthly extrapolation."""
    tokens_per_hour: float
    cost_per_hour: float
    projected_daily_tokens: int
    projected_daily_cost: float
    projected_monthly_tokens: int
    projected_monthly_cost: float
    trend_percentage: float = 0.0
    hours_until_budget_limit: Optional[float] = None
    is_approximation: bool = False

    @classmethod
    def from_rates(
        cls,
        tokens_per_hour: float,
        cost_per_hour: float,
        trend_percentage: float = 0.0,
        hours_until_budget_limit: Optional[float] = None,
        is_approximation: bool = False,
    ) -> "BurnRate":
        return cls(
            tokens_per_hour=tokens_per_hour,
            cost_per_hour=cost_per_hour,
            projected_daily_tokens=int(tokens_per_hour * HOURS_PER_DAY),
            projected_daily_cost=cost_per_hour * HOURS_PER_DAY,
            projected_monthly_tokens=int(tokens_per_hour * HOURS_PER_DAY * DAYS_PER_MONTH),
            projected_monthly_cost=cost_per_hour * HOURS_PER_DAY * DAYS_PER_MONTH,
            trend_percentage=trend_percentage,
            hours_until_budget_limit=hours_until_budget_limit,
            is_approximation=is_approximation,
        )

    @classmethod
    def zero(cls) -> "BurnRate":
        return cls.from_rates(0.0, 0.0)


@dataclass(frozen=True)
class UsagePoint:
    """Tokens and cost observed at one instant."""
    timestamp: datetime
    tokens: float
    cost: float


def points_from_timeline(timeline: TimelineAggregator) -> List[UsagePoint]:
    return [
        UsagePoint(minute, usage.total_tokens, usage.total_cost)
        for minute, usage in timeline.points()
    ]


def points_from_daily(days: Iterable[Tuple[date, TokenUsage]]) -> List[UsagePoint]:
    """Spread each day's totals evenly over 09:00-17:00 UTC hourly points."""
    points = []
    share = len(ACTIVE_HOURS)
    for day, usage in days:
        for hour in ACTIVE_HOURS:
            points.append(UsagePoint(
                datetime.combine(day, time(hour), tzinfo=timezone.utc),
                usage.total_tokens / share,
                usage.total_cost / share,
            ))
    points.sort(key=lambda p: p.timestamp)
    return points


def calculate_trend(points: List[UsagePoint], start: datetime, end: datetime) -> float:
    """Percent change in tokens from the first to the second half of a window.

    The window is split at its time midpoint. Returns 0 when the first half
    has no tokens.
    """
    midpoint = start + (end - start) / 2
    first_half = sum(p.tokens for p in points if p.timestamp < midpoint)
    second_half = sum(p.tokens for p in points if p.timestamp >= midpoint)
    if first_half == 0:
        return 0.0
    return (second_half - first_half) / first_half * 100.0


class BurnRateCalculator:
    """Burn rate over a look-back window ending at an explicit ``now``."""

    def __init__(self, points: List[UsagePoint], is_approximation: bool = False):
        self.points = sorted(points, key=lambda p: p.timestamp)
        self.is_approximation = is_approximation

    @classmethod
    def from_timeline(cls, timeline: TimelineAggregator) -> "BurnRateCalculator":
        return cls(points_from_timeline(timeline))

    @classmethod
    def from_daily(cls, days: Iterable[Tuple[date, TokenUsage]]) -> "BurnRateCalculator":
        return cls(points_from_daily(days), is_approximation=True)

    def window(self, hours: float, now: datetime) -> List[UsagePoint]:
        """Points with ``start <= t <= now``.

        ``start`` is floored to the minute to line up with timeline buckets.
        """
        start = (now - timedelta(hours=hours)).replace(second=0, microsecond=0)
        return [p for p in self.points if start <= p.timestamp <= now]

    def calculate_burn_rate(self, hours: float, now: datetime) -> Optional[BurnRate]:
        """Burn rate over the last ``hours`` hours.

        Args:
            hours: Look-back window length, must be positive
            now: End of the window

        Returns:
            BurnRate, or None when the window holds no usage

        Raises:
            ConfigurationError: If ``hours`` is not positive
        """
        if hours <= 0:
            raise ConfigurationError("Burn rate window must be > 0 hours")

        points = self.window(hours, now)
        if not points:
            return None

        total_tokens = sum(p.tokens for p in points)
        total_cost = sum(p.cost for p in points)
        start = now - timedelta(hours=hours)
        return BurnRate.from_rates(
            tokens_per_hour=total_tokens / hours,
            cost_per_hour=total_cost / hours,
            trend_percentage=calculate_trend(points, start, now),
            is_approximation=self.is_approximation,
        )


def session_burn_rate(
    session_start: datetime,
    tokens: int,
    cost: float,
    now: datetime,
) -> BurnRate:
    """Average rate since ``session_start``; zero for sessions under 6 minutes."""
    elapsed_hours = (now - session_start).total_seconds() / 3600.0
    if elapsed_hours < MIN_SESSION_HOURS:
        return BurnRate.zero()
    return BurnRate.from_rates(tokens / elapsed_hours, cost / elapsed_hours)


def hours_until_limit(
    rate: BurnRate,
    used_tokens: int,
    used_cost: float,
    token_limit: Optional[int] = None,
    cost_limit: Optional[float] = None,
) -> Optional[float]:
    """Hours until the first configured limit is reached at the current rate.

    Returns None when no limit is set or no limit is approaching.
    """
    candidates = []
    if token_limit is not None and rate.tokens_per_hour > 0:
        candidates.append(max(0.0, (token_limit - used_tokens) / rate.tokens_per_hour))
    if cost_limit is not None and rate.cost_per_hour > 0:
        candidates.append(max(0.0, (cost_limit - used_cost) / rate.cost_per_hour))
    if not candidates:
        return None
    return min(candidates)
