"""
Session pattern analysis.

Time-of-day, day-of-week, duration, frequency and cost-efficiency views over
the session aggregate. All functions are pure; nothing here reads files.
"""

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, List, Mapping, Optional

from claudelytics.serialization import to_dict
from .aggregators import SessionBucket
from .token_usage import TokenUsage

BUSINESS_HOURS = range(9, 18)
WEEKEND = (6, 7)
WEEKDAY_NAMES = {
    1: "Monday",
    2: "Tuesday",
    3: "Wednesday",
    4: "Thursday",
    5: "Friday",
    6: "Saturday",
    7: "Sunday",
}
EFFICIENCY_REFERENCE = 100_000.0
DEFAULT_COST_THRESHOLD = 10.0


def efficiency_score(usage: TokenUsage) -> float:
    """Tokens per dollar on a 0-100 scale, 100 at 100k tokens per dollar."""
    return min(100.0, usage.tokens_per_dollar() / EFFICIENCY_REFERENCE * 100.0)


@dataclass
class HourlyMetrics:
    usage: TokenUsage = field(default_factory=TokenUsage)
    session_count: int = 0


@dataclass(frozen=True)
class TimeOfDayAnalysis:
    hourly_usage: Dict[int, HourlyMetrics]
    peak_hour: int
    off_peak_hour: int
    business_hours_usage: TokenUsage
    after_hours_usage: TokenUsage


@dataclass(frozen=True)
class DayOfWeekAnalysis:
    daily_usage: Dict[str, TokenUsage]
    most_active_day: str
    least_active_day: str
    weekend_vs_weekday_ratio: float


@dataclass(frozen=True)
class SessionInfo:
    path: str
    duration_seconds: float
    tokens: int
    cost: float


@dataclass(frozen=True)
class DurationDistribution:
    under_5_min: int = 0
    min_5_to_30: int = 0
    min_30_to_60: int = 0
    hour_1_to_3: int = 0
    over_3_hours: int = 0


@dataclass(frozen=True)
class SessionDurationAnalysis:
    avg_session_duration_seconds: float
    longest_session: Optional[SessionInfo]
    shortest_session: Optional[SessionInfo]
    duration_distribution: DurationDistribution


@dataclass(frozen=True)
class SessionFrequencyAnalysis:
    sessions_per_day: float
    sessions_per_week: float
    days_with_usage: int
    longest_streak: int
    current_streak: int
    avg_sessions_per_active_day: float


@dataclass(frozen=True)
class CostEfficiencyAnalysis:
    most_expensive_session: Optional[SessionInfo]
    most_efficient_session: Optional[SessionInfo]
    least_efficient_session: Optional[SessionInfo]
    sessions_above_threshold: List[SessionInfo]
    cost_threshold: float


@dataclass(frozen=True)
class PatternReport:
    time_of_day: TimeOfDayAnalysis
    day_of_week: DayOfWeekAnalysis
    durations: SessionDurationAnalysis
    frequency: SessionFrequencyAnalysis
    cost_efficiency: CostEfficiencyAnalysis

    def to_dict(self) -> dict:
        return to_dict(self)


def _info(path: str, bucket: SessionBucket) -> SessionInfo:
    return SessionInfo(
        path=path,
        duration_seconds=bucket.duration.total_seconds(),
        tokens=bucket.usage.total_tokens,
        cost=bucket.usage.total_cost,
    )


class SessionAnalytics:
    """Pattern analysis over ``session_id -> SessionBucket``."""

    def __init__(self, sessions: Mapping[str, SessionBucket]):
        # Sessions without activity carry no timestamp to analyze
        self.sessions = {
            sid: bucket for sid, bucket in sorted(sessions.items())
            if bucket.last_activity is not None
        }

    def analyze_time_of_day(self) -> TimeOfDayAnalysis:
        """Histogram by the UTC hour of each session's last activity."""
        hourly: Dict[int, HourlyMetrics] = {}
        business = TokenUsage()
        after = TokenUsage()
        for bucket in self.sessions.values():
            hour = bucket.last_activity.hour
            metrics = hourly.setdefault(hour, HourlyMetrics())
            metrics.usage.add(bucket.usage)
            metrics.session_count += 1
            if hour in BUSINESS_HOURS:
                business.add(bucket.usage)
            else:
                after.add(bucket.usage)

        # Ties resolve to the earliest hour
        peak = max(sorted(hourly), key=lambda h: hourly[h].usage.total_tokens, default=0)
        off_peak = min(sorted(hourly), key=lambda h: hourly[h].usage.total_tokens, default=0)
        return TimeOfDayAnalysis(
            hourly_usage=dict(sorted(hourly.items())),
            peak_hour=peak,
            off_peak_hour=off_peak,
            business_hours_usage=business,
            after_hours_usage=after,
        )

    def analyze_day_of_week(self) -> DayOfWeekAnalysis:
        by_day: Dict[int, TokenUsage] = {}
        weekend = TokenUsage()
        weekday = TokenUsage()
        for bucket in self.sessions.values():
            iso_day = bucket.last_activity.isoweekday()
            by_day.setdefault(iso_day, TokenUsage()).add(bucket.usage)
            if iso_day in WEEKEND:
                weekend.add(bucket.usage)
            else:
                weekday.add(bucket.usage)

        most = max(sorted(by_day), key=lambda d: by_day[d].total_tokens, default=1)
        least = min(sorted(by_day), key=lambda d: by_day[d].total_tokens, default=7)
        ratio = weekend.total_tokens / weekday.total_tokens if weekday.total_tokens > 0 else 0.0
        return DayOfWeekAnalysis(
            daily_usage={WEEKDAY_NAMES[d]: usage for d, usage in sorted(by_day.items())},
            most_active_day=WEEKDAY_NAMES[most],
            least_active_day=WEEKDAY_NAMES[least],
            weekend_vs_weekday_ratio=ratio,
        )

    def analyze_session_durations(self) -> SessionDurationAnalysis:
        infos = [_info(sid, bucket) for sid, bucket in self.sessions.items()]
        if not infos:
            return SessionDurationAnalysis(0.0, None, None, DurationDistribution())

        counts = [0, 0, 0, 0, 0]
        for info in infos:
            minutes = info.duration_seconds / 60
            if minutes < 5:
                counts[0] += 1
            elif minutes < 30:
                counts[1] += 1
            elif minutes < 60:
                counts[2] += 1
            elif minutes < 180:
                counts[3] += 1
            else:
                counts[4] += 1

        return SessionDurationAnalysis(
            avg_session_duration_seconds=sum(i.duration_seconds for i in infos) / len(infos),
            longest_session=max(infos, key=lambda i: i.duration_seconds),
            shortest_session=min(infos, key=lambda i: i.duration_seconds),
            duration_distribution=DurationDistribution(*counts),
        )

    def analyze_session_frequency(self, today: date) -> SessionFrequencyAnalysis:
        """Sessions per day and usage streaks, counted by last-activity date.

        The current streak is kept only if the last active day is today or
        yesterday.
        """
        per_day: Dict[date, int] = {}
        for bucket in self.sessions.values():
            day = bucket.last_activity.date()
            per_day[day] = per_day.get(day, 0) + 1

        if not per_day:
            return SessionFrequencyAnalysis(0.0, 0.0, 0, 0, 0, 0.0)

        dates = sorted(per_day)
        longest = current = 1
        for prev, cur in zip(dates, dates[1:]):
            if cur - prev == timedelta(days=1):
                current += 1
                longest = max(longest, current)
            else:
                current = 1
        if (today - dates[-1]).days > 1:
            current = 0

        total_sessions = len(self.sessions)
        total_days = (dates[-1] - dates[0]).days + 1
        sessions_per_day = total_sessions / total_days
        return SessionFrequencyAnalysis(
            sessions_per_day=sessions_per_day,
            sessions_per_week=sessions_per_day * 7,
            days_with_usage=len(dates),
            longest_streak=longest,
            current_streak=current,
            avg_sessions_per_active_day=total_sessions / len(dates),
        )

    def analyze_cost_efficiency(self, cost_threshold: float = DEFAULT_COST_THRESHOLD) -> CostEfficiencyAnalysis:
        infos = [
            _info(sid, bucket) for sid, bucket in self.sessions.items()
            if bucket.usage.total_tokens > 0
        ]
        if not infos:
            return CostEfficiencyAnalysis(None, None, None, [], cost_threshold)

        def tokens_per_dollar(info: SessionInfo) -> float:
            return info.tokens / info.cost if info.cost > 0 else 0.0

        most_expensive = max(infos, key=lambda i: i.cost)
        priced = [i for i in infos if i.cost > 0]
        return CostEfficiencyAnalysis(
            most_expensive_session=most_expensive,
            most_efficient_session=max(infos, key=tokens_per_dollar),
            least_efficient_session=min(priced, key=tokens_per_dollar) if priced else most_expensive,
            sessions_above_threshold=[i for i in infos if i.cost > cost_threshold],
            cost_threshold=cost_threshold,
        )

    def generate_report(self, today: date, cost_threshold: float = DEFAULT_COST_THRESHOLD) -> PatternReport:
        return PatternReport(
            time_of_day=self.analyze_time_of_day(),
            day_of_week=self.analyze_day_of_week(),
            durations=self.analyze_session_durations(),
            frequency=self.analyze_session_frequency(today),
            cost_efficiency=self.analyze_cost_efficiency(cost_threshold),
        )
