"""
Usage aggregators.

Independent accumulators fed from the same event stream. Each one supports
``add_event`` for a single event and ``merge`` for combining per-file partial
results; both only ever grow the stored values, so merge order never changes
the outcome.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Tuple

from .token_usage import TokenUsage, UsageEvent


class DailyAggregator:
    """Usage keyed by the UTC calendar date of each event."""

    def __init__(self):
        self.days: Dict[date, TokenUsage] = {}

    def add_event(self, event: UsageEvent) -> None:
        self.days.setdefault(event.date, TokenUsage()).add(event.usage_with_cost())

    def merge(self, other: "DailyAggregator") -> None:
        for day, usage in other.days.items():
            self.days.setdefault(day, TokenUsage()).add(usage)

    def get(self, day: date) -> TokenUsage:
        """Usage for ``day``; an empty usage when the day has no events."""
        usage = self.days.get(day)
        return usage.copy() if usage is not None else TokenUsage()

    def items(self) -> List[Tuple[date, TokenUsage]]:
        return sorted(self.days.items())

    def __len__(self) -> int:
        return len(self.days)


@dataclass
class SessionBucket:
    """Usage of one session plus the span of its activity."""
    usage: TokenUsage = field(default_factory=TokenUsage)
    first_activity: Optional[datetime] = None
    last_activity: Optional[datetime] = None

    def record(self, usage: TokenUsage, first: datetime, last: datetime) -> None:
        self.usage.add(usage)
        if self.first_activity is None or first < self.first_activity:
            self.first_activity = first
        if self.last_activity is None or last > self.last_activity:
            self.last_activity = last

    @property
    def duration(self) -> timedelta:
        if self.first_activity is None or self.last_activity is None:
            return timedelta(0)
        return self.last_activity - self.first_activity


class SessionAggregator:
    """Usage keyed by session id (``project/.../session``)."""

    def __init__(self):
        self.sessions: Dict[str, SessionBucket] = {}

    def add_event(self, event: UsageEvent) -> None:
        bucket = self.sessions.setdefault(event.session_id, SessionBucket())
        bucket.record(event.usage_with_cost(), event.timestamp, event.timestamp)

    def merge(self, other: "SessionAggregator") -> None:
        for session_id, theirs in other.sessions.items():
            if theirs.first_activity is None:
                continue
            bucket = self.sessions.setdefault(session_id, SessionBucket())
            bucket.record(theirs.usage, theirs.first_activity, theirs.last_activity)

    def items(self) -> List[Tuple[str, SessionBucket]]:
        return sorted(self.sessions.items())

    def __len__(self) -> int:
        return len(self.sessions)


def _minute(ts: datetime) -> datetime:
    return ts.replace(second=0, microsecond=0)


class TimelineAggregator:
    """Usage in per-minute UTC buckets.

    Keeps event-level timing available to the burn-rate analysis with memory
    bounded by the number of distinct minutes rather than events.
    """

    def __init__(self):
        self.minutes: Dict[datetime, TokenUsage] = {}

    def add_event(self, event: UsageEvent) -> None:
        self.minutes.setdefault(_minute(event.timestamp), TokenUsage()).add(event.usage_with_cost())

    def merge(self, other: "TimelineAggregator") -> None:
        for minute, usage in other.minutes.items():
            self.minutes.setdefault(minute, TokenUsage()).add(usage)

    def points(self) -> List[Tuple[datetime, TokenUsage]]:
        """All buckets in time order."""
        return sorted(self.minutes.items())

    def hourly(self) -> Dict[datetime, TokenUsage]:
        """Roll the minute buckets up into UTC hours."""
        hours: Dict[datetime, TokenUsage] = {}
        for minute, usage in self.minutes.items():
            hours.setdefault(minute.replace(minute=0), TokenUsage()).add(usage)
        return hours

    def __len__(self) -> int:
        return len(self.minutes)
