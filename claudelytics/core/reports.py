"""
Report builders.

Turn the daily and session aggregates into sorted, serializable reports.
Every report carries totals equal to the sum of its rows.
"""

import calendar
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from claudelytics.ingest.parser import split_session_path
from claudelytics.serialization import FLATTEN, to_dict
from .aggregators import SessionBucket
from .token_usage import TokenUsage, sum_usage


class SortField(Enum):
    DATE = "date"
    COST = "cost"
    TOKENS = "tokens"
    EFFICIENCY = "efficiency"
    PROJECT = "project"


class SortOrder(Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass(frozen=True)
class DailyUsage:
    date: str
    usage: TokenUsage = field(metadata=FLATTEN)


@dataclass(frozen=True)
class SessionUsage:
    project_path: str
    session_id: str
    usage: TokenUsage = field(metadata=FLATTEN)
    last_activity: str = ""


@dataclass(frozen=True)
class MonthlyUsage:
    month: str
    year: int
    usage: TokenUsage = field(metadata=FLATTEN)
    days_active: int = 0
    avg_daily_cost: float = 0.0

    @property
    def month_number(self) -> int:
        return list(calendar.month_name).index(self.month)


@dataclass(frozen=True)
class DailyReport:
    daily: List[DailyUsage]
    totals: TokenUsage

    def to_dict(self) -> dict:
        return to_dict(self)


@dataclass(frozen=True)
class SessionReport:
    sessions: List[SessionUsage]
    totals: TokenUsage

    def to_dict(self) -> dict:
        return to_dict(self)


@dataclass(frozen=True)
class MonthlyReport:
    monthly: List[MonthlyUsage]
    totals: TokenUsage

    def to_dict(self) -> dict:
        return to_dict(self)


def _efficiency(usage: TokenUsage) -> float:
    return usage.tokens_per_dollar()


def _sorted(rows: list, key_for, sort_order: Optional[SortOrder]) -> list:
    reverse = (sort_order or SortOrder.DESC) == SortOrder.DESC
    return sorted(rows, key=key_for, reverse=reverse)


def _daily_key(field_: SortField):
    if field_ == SortField.COST:
        return lambda row: (row.usage.total_cost, row.date)
    if field_ == SortField.TOKENS:
        return lambda row: (row.usage.total_tokens, row.date)
    if field_ == SortField.EFFICIENCY:
        return lambda row: (_efficiency(row.usage), row.date)
    # Days have no project; fall back to date
    return lambda row: row.date


def generate_daily_report(
    days: Iterable[Tuple[date, TokenUsage]],
    sort_field: Optional[SortField] = None,
    sort_order: Optional[SortOrder] = None,
) -> DailyReport:
    """Daily rows, newest first unless another order is requested."""
    rows = [DailyUsage(day.isoformat(), usage.copy()) for day, usage in days]
    rows = _sorted(rows, _daily_key(sort_field or SortField.DATE), sort_order)
    return DailyReport(daily=rows, totals=sum_usage(row.usage for row in rows))


def _session_key(field_: SortField):
    def path(row):
        return (row.project_path, row.session_id)

    if field_ == SortField.DATE:
        return lambda row: (row.last_activity, path(row))
    if field_ == SortField.TOKENS:
        return lambda row: (row.usage.total_tokens, path(row))
    if field_ == SortField.EFFICIENCY:
        return lambda row: (_efficiency(row.usage), path(row))
    if field_ == SortField.PROJECT:
        return path
    return lambda row: (row.usage.total_cost, path(row))


def generate_session_report(
    sessions: Mapping[str, SessionBucket],
    sort_field: Optional[SortField] = None,
    sort_order: Optional[SortOrder] = None,
) -> SessionReport:
    """Session rows, most expensive first unless another order is requested."""
    rows = []
    for session_path, bucket in sessions.items():
        project_path, session_id = split_session_path(session_path)
        rows.append(SessionUsage(
            project_path=project_path,
            session_id=session_id,
            usage=bucket.usage.copy(),
            last_activity=bucket.last_activity.strftime("%Y-%m-%d") if bucket.last_activity else "",
        ))
    rows = _sorted(rows, _session_key(sort_field or SortField.COST), sort_order)
    return SessionReport(sessions=rows, totals=sum_usage(row.usage for row in rows))


def _monthly_key(field_: SortField):
    def period(row):
        return (row.year, row.month_number)

    if field_ == SortField.COST:
        return lambda row: (row.usage.total_cost, period(row))
    if field_ == SortField.TOKENS:
        return lambda row: (row.usage.total_tokens, period(row))
    if field_ == SortField.EFFICIENCY:
        return lambda row: (_efficiency(row.usage), period(row))
    return period


def generate_monthly_report(
    days: Iterable[Tuple[date, TokenUsage]],
    sort_field: Optional[SortField] = None,
    sort_order: Optional[SortOrder] = None,
) -> MonthlyReport:
    """Roll daily usage up into calendar months."""
    months: Dict[Tuple[int, int], Tuple[TokenUsage, int]] = {}
    for day, usage in days:
        total, active = months.get((day.year, day.month), (TokenUsage(), 0))
        total.add(usage)
        months[(day.year, day.month)] = (total, active + 1)

    rows = [
        MonthlyUsage(
            month=calendar.month_name[month],
            year=year,
            usage=usage,
            days_active=active,
            avg_daily_cost=usage.total_cost / active if active else 0.0,
        )
        for (year, month), (usage, active) in months.items()
    ]
    rows = _sorted(rows, _monthly_key(sort_field or SortField.DATE), sort_order)
    return MonthlyReport(monthly=rows, totals=sum_usage(row.usage for row in rows))
