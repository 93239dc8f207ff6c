"""
Real-time analytics and budget alerts.

Combines burn rates, budget projections, session metrics and efficiency
trends into one report, and raises alerts when usage crosses the configured
thresholds.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Dict, List, Mapping, Optional

from claudelytics.errors import ConfigurationError
from claudelytics.serialization import to_dict
from .aggregators import SessionBucket, TimelineAggregator
from .burn_rate import BurnRate, BurnRateCalculator, session_burn_rate
from .projections import TREND_THRESHOLD, TrendDirection
from .session_analytics import EFFICIENCY_REFERENCE, SessionAnalytics, efficiency_score
from .token_usage import TokenUsage

HIGH_BURN_RATE_PER_HOUR = 10.0
SPIKE_TREND_PERCENTAGE = 100.0
LOW_EFFICIENCY_SCORE = 50.0
ACTIVE_SESSION_WINDOW = timedelta(hours=1)
EFFICIENCY_WINDOW_DAYS = 7


@dataclass(frozen=True)
class BudgetConfig:
    """Optional spending limits and the alert threshold (fraction of a limit)."""
    daily: Optional[float] = None
    monthly: Optional[float] = None
    yearly: Optional[float] = None
    alert_threshold: float = 0.8

    def __post_init__(self):
        for name in ("daily", "monthly", "yearly"):
            value = getattr(self, name)
            if value is not None and value <= 0:
                raise ConfigurationError(f"{name} budget must be > 0")
        if not 0 < self.alert_threshold <= 1:
            raise ConfigurationError("alert_threshold must be in (0, 1]")


class AlertType(Enum):
    BUDGET_THRESHOLD = "budget_threshold"
    UNUSUAL_SPIKE = "unusual_spike"
    HIGH_BURN_RATE = "high_burn_rate"
    INEFFICIENT_USAGE = "inefficient_usage"
    PROJECTION_WARNING = "projection_warning"


class AlertSeverity(Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True)
class UsageAlert:
    alert_type: AlertType
    severity: AlertSeverity
    message: str
    timestamp: datetime
    recommended_action: Optional[str] = None


@dataclass(frozen=True)
class PeakBurnRate:
    tokens_per_hour: float
    cost_per_hour: float
    occurred_at: datetime


@dataclass(frozen=True)
class BurnRateAnalysis:
    current_hour: BurnRate
    last_3_hours: BurnRate
    last_24_hours: BurnRate
    tokens_per_minute: float
    cost_per_minute: float
    peak_burn_rate: PeakBurnRate


@dataclass(frozen=True)
class BudgetProjection:
    """Estimate against a limit. ``margin`` is negative when over budget."""
    estimated_cost: float
    budget_limit: Optional[float]
    utilization_percentage: float
    will_exceed: bool
    margin: float


@dataclass(frozen=True)
class TimeToLimits:
    hours_to_daily_limit: Optional[float] = None
    days_to_monthly_limit: Optional[float] = None
    days_to_yearly_limit: Optional[float] = None


@dataclass(frozen=True)
class BudgetProjections:
    daily_projection: BudgetProjection
    monthly_projection: BudgetProjection
    yearly_projection: BudgetProjection
    time_to_limits: TimeToLimits


@dataclass(frozen=True)
class SessionMetrics:
    active_session_count: int
    avg_tokens_per_session: float
    avg_cost_per_session: float
    avg_session_duration_seconds: float
    current_session_burn_rate: Optional[BurnRate]
    peak_usage_hours: List[int]
    efficiency_score: float


@dataclass(frozen=True)
class TrendMetric:
    current_value: float
    previous_value: float
    change_percentage: float
    direction: TrendDirection


@dataclass(frozen=True)
class EfficiencyTrends:
    tokens_per_dollar_trend: TrendMetric
    response_time_trend: TrendMetric
    cache_efficiency_trend: TrendMetric
    cost_efficiency_score: float


@dataclass(frozen=True)
class RealtimeAnalyticsReport:
    burn_rates: BurnRateAnalysis
    budget_projections: BudgetProjections
    session_metrics: SessionMetrics
    alerts: List[UsageAlert] = field(default_factory=list)
    efficiency_trends: Optional[EfficiencyTrends] = None

    def to_dict(self) -> dict:
        return to_dict(self)


def budget_projection(estimated_cost: float, limit: Optional[float]) -> BudgetProjection:
    if limit is None:
        return BudgetProjection(estimated_cost, None, 0.0, False, 0.0)
    return BudgetProjection(
        estimated_cost=estimated_cost,
        budget_limit=limit,
        utilization_percentage=estimated_cost / limit * 100.0,
        will_exceed=estimated_cost > limit,
        margin=limit - estimated_cost,
    )


def create_trend_metric(current: float, previous: float) -> TrendMetric:
    change = (current - previous) / previous * 100.0 if previous > 0 else 0.0
    if change > TREND_THRESHOLD:
        direction = TrendDirection.INCREASING
    elif change < -TREND_THRESHOLD:
        direction = TrendDirection.DECREASING
    else:
        direction = TrendDirection.STABLE
    return TrendMetric(current, previous, change, direction)


def _time_to_limit(limit: Optional[float], spent: float, rate: float) -> Optional[float]:
    if limit is None:
        return None
    if spent >= limit:
        return 0.0
    if rate <= 0:
        return None
    return (limit - spent) / rate


class RealtimeAnalytics:
    """Report builder over daily and session aggregates at an explicit ``now``.

    When a timeline is given, burn rates use per-minute event times;
    otherwise they fall back to spreading daily totals over working hours and
    are marked as approximations.
    """

    def __init__(
        self,
        daily: Mapping[date, TokenUsage],
        sessions: Mapping[str, SessionBucket],
        budget: Optional[BudgetConfig] = None,
        timeline: Optional[TimelineAggregator] = None,
    ):
        self.daily = dict(daily)
        self.sessions = dict(sessions)
        self.budget = budget or BudgetConfig()
        self.timeline = timeline

    def _calculator(self) -> BurnRateCalculator:
        if self.timeline is not None and len(self.timeline) > 0:
            return BurnRateCalculator.from_timeline(self.timeline)
        return BurnRateCalculator.from_daily(sorted(self.daily.items()))

    def generate_report(self, now: datetime) -> RealtimeAnalyticsReport:
        burn_rates = self.calculate_burn_rates(now)
        projections = self.calculate_budget_projections(burn_rates, now.date())
        trends = self.calculate_efficiency_trends(now.date())
        return RealtimeAnalyticsReport(
            burn_rates=burn_rates,
            budget_projections=projections,
            session_metrics=self.calculate_session_metrics(now),
            alerts=self.generate_alerts(burn_rates, projections, trends, now),
            efficiency_trends=trends,
        )

    def calculate_burn_rates(self, now: datetime) -> BurnRateAnalysis:
        calculator = self._calculator()
        zero = BurnRate.from_rates(0.0, 0.0, is_approximation=calculator.is_approximation)
        current_hour = calculator.calculate_burn_rate(1, now) or zero
        return BurnRateAnalysis(
            current_hour=current_hour,
            last_3_hours=calculator.calculate_burn_rate(3, now) or zero,
            last_24_hours=calculator.calculate_burn_rate(24, now) or zero,
            tokens_per_minute=current_hour.tokens_per_hour / 60.0,
            cost_per_minute=current_hour.cost_per_hour / 60.0,
            peak_burn_rate=self.find_peak_burn_rate(now),
        )

    def find_peak_burn_rate(self, now: datetime) -> PeakBurnRate:
        """Most expensive UTC hour; ties resolve to the earliest hour."""
        hourly: Dict[datetime, TokenUsage] = {}
        if self.timeline is not None and len(self.timeline) > 0:
            hourly = self.timeline.hourly()
        else:
            for bucket in self.sessions.values():
                if bucket.last_activity is None:
                    continue
                hour = bucket.last_activity.replace(minute=0, second=0, microsecond=0)
                hourly.setdefault(hour, TokenUsage()).add(bucket.usage)

        if not hourly:
            return PeakBurnRate(0.0, 0.0, now)
        peak = max(sorted(hourly), key=lambda h: hourly[h].total_cost)
        return PeakBurnRate(float(hourly[peak].total_tokens), hourly[peak].total_cost, peak)

    def calculate_budget_projections(self, burn_rates: BurnRateAnalysis, today: date) -> BudgetProjections:
        daily_rate = burn_rates.last_24_hours
        return BudgetProjections(
            daily_projection=budget_projection(daily_rate.projected_daily_cost, self.budget.daily),
            monthly_projection=budget_projection(daily_rate.projected_monthly_cost, self.budget.monthly),
            yearly_projection=budget_projection(daily_rate.projected_monthly_cost * 12, self.budget.yearly),
            time_to_limits=self.calculate_time_to_limits(burn_rates, today),
        )

    def _spent_between(self, start: date, end: date) -> float:
        return sum(usage.total_cost for day, usage in self.daily.items() if start <= day <= end)

    def calculate_time_to_limits(self, burn_rates: BurnRateAnalysis, today: date) -> TimeToLimits:
        """Time until each configured limit at the current rates.

        The daily limit uses the last hour's rate; monthly and yearly limits
        use the 24-hour projected daily cost. Zero means already reached.
        """
        daily_cost_rate = burn_rates.last_24_hours.projected_daily_cost
        return TimeToLimits(
            hours_to_daily_limit=_time_to_limit(
                self.budget.daily,
                self._spent_between(today, today),
                burn_rates.current_hour.cost_per_hour,
            ),
            days_to_monthly_limit=_time_to_limit(
                self.budget.monthly,
                self._spent_between(today.replace(day=1), today),
                daily_cost_rate,
            ),
            days_to_yearly_limit=_time_to_limit(
                self.budget.yearly,
                self._spent_between(today.replace(month=1, day=1), today),
                daily_cost_rate,
            ),
        )

    def calculate_session_metrics(self, now: datetime) -> SessionMetrics:
        analytics = SessionAnalytics(self.sessions)
        time_of_day = analytics.analyze_time_of_day()
        durations = analytics.analyze_session_durations()

        buckets = [b for b in self.sessions.values() if b.last_activity is not None]
        total = TokenUsage()
        for bucket in buckets:
            total.add(bucket.usage)
        count = len(buckets)

        cutoff = now - ACTIVE_SESSION_WINDOW
        active = [b for b in buckets if b.last_activity > cutoff]
        current_rate = None
        if active:
            latest = max(active, key=lambda b: b.last_activity)
            current_rate = session_burn_rate(
                latest.first_activity, latest.usage.total_tokens, latest.usage.total_cost, now
            )

        hours = sorted(
            time_of_day.hourly_usage,
            key=lambda h: (-time_of_day.hourly_usage[h].usage.total_tokens, h),
        )
        return SessionMetrics(
            active_session_count=len(active),
            avg_tokens_per_session=total.total_tokens / count if count else 0.0,
            avg_cost_per_session=total.total_cost / count if count else 0.0,
            avg_session_duration_seconds=durations.avg_session_duration_seconds,
            current_session_burn_rate=current_rate,
            peak_usage_hours=hours[:3],
            efficiency_score=efficiency_score(total),
        )

    def _day_metric(self, day: date, metric) -> float:
        usage = self.daily.get(day)
        return metric(usage) if usage is not None else 0.0

    @staticmethod
    def _response_metric(usage: TokenUsage) -> float:
        ratio = usage.output_input_ratio()
        return 100.0 / ratio if ratio > 0 else 100.0

    def calculate_efficiency_trends(self, today: date) -> EfficiencyTrends:
        yesterday = today - timedelta(days=1)
        week_ago = today - timedelta(days=EFFICIENCY_WINDOW_DAYS)

        def trend(metric) -> TrendMetric:
            return create_trend_metric(self._day_metric(today, metric), self._day_metric(yesterday, metric))

        recent = TokenUsage()
        for day, usage in self.daily.items():
            if week_ago <= day <= today:
                recent.add(usage)

        return EfficiencyTrends(
            tokens_per_dollar_trend=trend(TokenUsage.tokens_per_dollar),
            response_time_trend=trend(self._response_metric),
            cache_efficiency_trend=trend(TokenUsage.cache_efficiency),
            cost_efficiency_score=min(100.0, recent.tokens_per_dollar() / EFFICIENCY_REFERENCE * 100.0),
        )

    def _period_has_spend(self, today: date) -> bool:
        week_ago = today - timedelta(days=EFFICIENCY_WINDOW_DAYS)
        return self._spent_between(week_ago, today) > 0

    def generate_alerts(
        self,
        burn_rates: BurnRateAnalysis,
        projections: BudgetProjections,
        trends: EfficiencyTrends,
        now: datetime,
    ) -> List[UsageAlert]:
        """Evaluate the alert rules.

        Rules:
        - BudgetThreshold: daily utilization >= alert_threshold (Warning),
          >= 100% (Critical)
        - HighBurnRate: current hour above $10/h (Warning)
        - UnusualSpike: current hour trend above 100% (Warning)
        - InefficientUsage: 7-day efficiency score below 50 with spend (Info)
        - ProjectionWarning: projected monthly cost exceeds the limit (Warning)
        """
        alerts = []

        if self.budget.daily is not None:
            daily = projections.daily_projection
            utilization = daily.utilization_percentage / 100.0
            if utilization >= self.budget.alert_threshold:
                alerts.append(UsageAlert(
                    alert_type=AlertType.BUDGET_THRESHOLD,
                    severity=AlertSeverity.CRITICAL if utilization >= 1.0 else AlertSeverity.WARNING,
                    message=(
                        f"Daily budget utilization at {utilization * 100:.1f}% "
                        f"(${daily.estimated_cost:.2f} of ${self.budget.daily:.2f})"
                    ),
                    timestamp=now,
                    recommended_action="Consider reducing usage or adjusting daily budget",
                ))

        current = burn_rates.current_hour
        if current.cost_per_hour > HIGH_BURN_RATE_PER_HOUR:
            alerts.append(UsageAlert(
                alert_type=AlertType.HIGH_BURN_RATE,
                severity=AlertSeverity.WARNING,
                message=(
                    f"High burn rate detected: ${current.cost_per_hour:.2f}/hour "
                    f"({int(current.tokens_per_hour)} tokens/hour)"
                ),
                timestamp=now,
                recommended_action="Review current session activity for optimization opportunities",
            ))

        if current.trend_percentage > SPIKE_TREND_PERCENTAGE:
            alerts.append(UsageAlert(
                alert_type=AlertType.UNUSUAL_SPIKE,
                severity=AlertSeverity.WARNING,
                message=f"Usage spike detected: {current.trend_percentage:.1f}% increase in burn rate",
                timestamp=now,
                recommended_action="Check for runaway processes or inefficient queries",
            ))

        if trends.cost_efficiency_score < LOW_EFFICIENCY_SCORE and self._period_has_spend(now.date()):
            alerts.append(UsageAlert(
                alert_type=AlertType.INEFFICIENT_USAGE,
                severity=AlertSeverity.INFO,
                message=(
                    f"Low efficiency score: {trends.cost_efficiency_score:.1f}/100. "
                    "Consider optimizing token usage"
                ),
                timestamp=now,
                recommended_action="Review prompts for conciseness and leverage caching",
            ))

        monthly = projections.monthly_projection
        if monthly.will_exceed:
            alerts.append(UsageAlert(
                alert_type=AlertType.PROJECTION_WARNING,
                severity=AlertSeverity.WARNING,
                message=f"Monthly budget projection exceeds limit by ${-monthly.margin:.2f}",
                timestamp=now,
                recommended_action="Adjust usage patterns to stay within monthly budget",
            ))

        return alerts
