"""
Configurable N-hour session blocks.

The UTC day is partitioned into blocks of ``block_hours`` starting at
midnight; the last block of a day is cut at the next midnight. Activity and
burn rate are evaluated at report time against an explicit ``now``.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, List, Optional, Set, Tuple

from claudelytics.errors import ConfigurationError
from claudelytics.serialization import to_dict
from .burn_rate import BurnRate, hours_until_limit, session_burn_rate
from .token_usage import TokenUsage, UsageEvent, sum_usage

DEFAULT_BLOCK_HOURS = 8
RECENT_DAYS = 30


@dataclass(frozen=True)
class SessionBlockConfig:
    """Block length and optional limits used for time-to-limit."""
    block_hours: int = DEFAULT_BLOCK_HOURS
    token_limit: Optional[int] = None
    cost_limit: Optional[float] = None

    def __post_init__(self):
        if isinstance(self.block_hours, bool) or not isinstance(self.block_hours, int):
            raise ConfigurationError("block_hours must be an integer")
        if not 1 <= self.block_hours <= 24:
            raise ConfigurationError("block_hours must be between 1 and 24")
        if self.token_limit is not None and self.token_limit <= 0:
            raise ConfigurationError("token_limit must be > 0")
        if self.cost_limit is not None and self.cost_limit <= 0:
            raise ConfigurationError("cost_limit must be > 0")


@dataclass
class SessionBlock:
    start_time: datetime
    end_time: datetime
    usage: TokenUsage = field(default_factory=TokenUsage)
    session_ids: Set[str] = field(default_factory=set)

    @property
    def session_count(self) -> int:
        return len(self.session_ids)

    def contains(self, ts: datetime) -> bool:
        return self.start_time <= ts < self.end_time


@dataclass(frozen=True)
class SessionBlockView:
    """A block as reported at a given ``now``."""
    start_time: datetime
    end_time: datetime
    usage: TokenUsage
    session_count: int
    is_active: bool
    burn_rate: Optional[BurnRate] = None


class SessionBlockManager:
    """Lazily created N-hour blocks keyed by ``(date, block_index)``."""

    def __init__(self, config: Optional[SessionBlockConfig] = None):
        self.config = config or SessionBlockConfig()
        self.blocks: Dict[Tuple[date, int], SessionBlock] = {}

    def block_bounds(self, ts: datetime) -> Tuple[Tuple[date, int], datetime, datetime]:
        hours = self.config.block_hours
        day = ts.date()
        index = ts.hour // hours
        start = datetime.combine(day, time(index * hours), tzinfo=timezone.utc)
        next_midnight = datetime.combine(day + timedelta(days=1), time(0), tzinfo=timezone.utc)
        end = min(start + timedelta(hours=hours), next_midnight)
        return (day, index), start, end

    def _block(self, ts: datetime) -> SessionBlock:
        key, start, end = self.block_bounds(ts)
        if key not in self.blocks:
            self.blocks[key] = SessionBlock(start, end)
        return self.blocks[key]

    def add_usage(self, ts: datetime, usage: TokenUsage, session_id: Optional[str] = None) -> None:
        block = self._block(ts)
        block.usage.add(usage)
        if session_id:
            block.session_ids.add(session_id)

    def add_event(self, event: UsageEvent) -> None:
        self.add_usage(event.timestamp, event.usage_with_cost(), event.session_id)

    def merge(self, other: "SessionBlockManager") -> None:
        if other.config.block_hours != self.config.block_hours:
            raise ValueError("Cannot merge session blocks with different block_hours")
        for key, theirs in other.blocks.items():
            mine = self.blocks.setdefault(key, SessionBlock(theirs.start_time, theirs.end_time))
            mine.usage.add(theirs.usage)
            mine.session_ids |= theirs.session_ids

    def get_all_blocks(self) -> List[SessionBlock]:
        return [self.blocks[key] for key in sorted(self.blocks)]

    def get_active_blocks(self, now: datetime) -> List[SessionBlock]:
        return [block for block in self.get_all_blocks() if block.contains(now)]

    def get_recent_blocks(self, now: datetime, days: int = RECENT_DAYS) -> List[SessionBlock]:
        cutoff = now - timedelta(days=days)
        return [block for block in self.get_all_blocks() if block.start_time > cutoff]

    def block_burn_rate(self, block: SessionBlock, now: datetime) -> BurnRate:
        rate = session_burn_rate(block.start_time, block.usage.total_tokens, block.usage.total_cost, now)
        limit_hours = hours_until_limit(
            rate,
            block.usage.total_tokens,
            block.usage.total_cost,
            token_limit=self.config.token_limit,
            cost_limit=self.config.cost_limit,
        )
        return BurnRate.from_rates(
            rate.tokens_per_hour,
            rate.cost_per_hour,
            hours_until_budget_limit=limit_hours,
        )

    def view(self, block: SessionBlock, now: datetime) -> SessionBlockView:
        active = block.contains(now)
        return SessionBlockView(
            start_time=block.start_time,
            end_time=block.end_time,
            usage=block.usage.copy(),
            session_count=block.session_count,
            is_active=active,
            burn_rate=self.block_burn_rate(block, now) if active else None,
        )

    def generate_report(self, now: datetime) -> "SessionBlockReport":
        views = [self.view(block, now) for block in self.get_all_blocks()]
        active = [v for v in views if v.is_active]
        return SessionBlockReport(
            config=self.config,
            total_blocks=len(views),
            active_blocks=len(active),
            recent_blocks=len(self.get_recent_blocks(now)),
            total_usage=sum_usage(v.usage for v in views),
            active_usage=sum_usage(v.usage for v in active),
            current_burn_rate=active[0].burn_rate if active else None,
            blocks=views,
        )


@dataclass(frozen=True)
class SessionBlockReport:
    config: SessionBlockConfig
    total_blocks: int
    active_blocks: int
    recent_blocks: int
    total_usage: TokenUsage
    active_usage: TokenUsage
    current_burn_rate: Optional[BurnRate]
    blocks: List[SessionBlockView]

    def to_dict(self) -> dict:
        return to_dict(self)
