"""
Five-hour billing blocks.

Each UTC day is split into five fixed blocks starting at 00, 05, 10, 15 and
20 UTC. Intervals are half-open, so an event at exactly 05:00 belongs to the
05:00 block.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, List, Optional, Set, Tuple

from claudelytics.serialization import FLATTEN, to_dict
from .token_usage import TokenUsage, UsageEvent, sum_usage

BILLING_BLOCK_HOURS = 5
BLOCKS_PER_DAY = 5
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S UTC"


def normalize_to_block_start(ts: datetime) -> datetime:
    """Start of the billing block containing ``ts``."""
    block_hour = (ts.hour // BILLING_BLOCK_HOURS) * BILLING_BLOCK_HOURS
    return datetime.combine(ts.date(), time(block_hour), tzinfo=timezone.utc)


@dataclass
class BillingBlock:
    start_time: datetime
    usage: TokenUsage = field(default_factory=TokenUsage)
    session_ids: Set[str] = field(default_factory=set)

    @property
    def end_time(self) -> datetime:
        return self.start_time + timedelta(hours=BILLING_BLOCK_HOURS)

    @property
    def block_index(self) -> int:
        return self.start_time.hour // BILLING_BLOCK_HOURS

    @property
    def session_count(self) -> int:
        """Number of distinct sessions with usage in this block."""
        return len(self.session_ids)

    @property
    def label(self) -> str:
        return f"{self.start_time.hour:02d}:00-{self.end_time.hour:02d}:00"

    def contains(self, ts: datetime) -> bool:
        return self.start_time <= ts < self.end_time


def _blocks_for_day(day: date) -> List[BillingBlock]:
    return [
        BillingBlock(datetime.combine(day, time(i * BILLING_BLOCK_HOURS), tzinfo=timezone.utc))
        for i in range(BLOCKS_PER_DAY)
    ]


class BillingBlockManager:
    """Fixed five-block grid for every UTC date that has usage."""

    def __init__(self):
        self.blocks: Dict[date, List[BillingBlock]] = {}

    def _day(self, day: date) -> List[BillingBlock]:
        if day not in self.blocks:
            self.blocks[day] = _blocks_for_day(day)
        return self.blocks[day]

    def add_usage(self, ts: datetime, usage: TokenUsage, session_id: Optional[str] = None) -> None:
        block = self._day(ts.date())[ts.hour // BILLING_BLOCK_HOURS]
        block.usage.add(usage)
        if session_id:
            block.session_ids.add(session_id)

    def add_event(self, event: UsageEvent) -> None:
        self.add_usage(event.timestamp, event.usage_with_cost(), event.session_id)

    def merge(self, other: "BillingBlockManager") -> None:
        for day, theirs in other.blocks.items():
            ours = self._day(day)
            for mine, block in zip(ours, theirs):
                mine.usage.add(block.usage)
                mine.session_ids |= block.session_ids

    def get_blocks_for_date(self, day: date) -> Optional[List[BillingBlock]]:
        return self.blocks.get(day)

    def get_all_blocks(self) -> List[Tuple[date, BillingBlock]]:
        return [(day, block) for day in sorted(self.blocks) for block in self.blocks[day]]

    def get_blocks_with_usage(self) -> List[Tuple[date, BillingBlock]]:
        return [(day, block) for day, block in self.get_all_blocks() if block.usage.total_tokens > 0]

    def get_current_block(self, now: datetime) -> Optional[BillingBlock]:
        for block in self.blocks.get(now.date(), []):
            if block.contains(now):
                return block
        return None

    def total_usage(self) -> TokenUsage:
        return sum_usage(block.usage for _, block in self.get_all_blocks())

    def usage_by_block_time(self) -> Dict[str, TokenUsage]:
        """Usage summed across dates by time-of-day label."""
        by_time: Dict[str, TokenUsage] = {}
        for _, block in self.get_all_blocks():
            by_time.setdefault(block.label, TokenUsage()).add(block.usage)
        return by_time

    def peak_usage_block(self) -> Optional[Tuple[date, BillingBlock]]:
        with_usage = self.get_blocks_with_usage()
        if not with_usage:
            return None
        return max(with_usage, key=lambda item: item[1].usage.total_tokens)

    def average_usage_per_block(self) -> TokenUsage:
        """Mean usage over blocks that have any usage; token counts truncate."""
        count = len(self.get_blocks_with_usage())
        if count == 0:
            return TokenUsage()
        total = self.total_usage()
        return TokenUsage(
            input_tokens=total.input_tokens // count,
            output_tokens=total.output_tokens // count,
            cache_creation_tokens=total.cache_creation_tokens // count,
            cache_read_tokens=total.cache_read_tokens // count,
            total_cost=total.total_cost / count,
        )

    def generate_report(self) -> "BillingBlockReport":
        peak = self.peak_usage_block()
        return BillingBlockReport(
            blocks=[BillingBlockSummary.from_block(day, block) for day, block in self.get_blocks_with_usage()],
            total_usage=self.total_usage(),
            peak_block=BillingBlockSummary.from_block(*peak) if peak else None,
            average_per_block=self.average_usage_per_block(),
            usage_by_time=self.usage_by_block_time(),
        )


@dataclass(frozen=True)
class BillingBlockSummary:
    date: str
    time_range: str
    start_time: str
    end_time: str
    usage: TokenUsage = field(metadata=FLATTEN)
    session_count: int = 0

    @classmethod
    def from_block(cls, day: date, block: BillingBlock) -> "BillingBlockSummary":
        return cls(
            date=day.isoformat(),
            time_range=block.label,
            start_time=block.start_time.strftime(TIMESTAMP_FORMAT),
            end_time=block.end_time.strftime(TIMESTAMP_FORMAT),
            usage=block.usage.copy(),
            session_count=block.session_count,
        )


@dataclass(frozen=True)
class BillingBlockReport:
    blocks: List[BillingBlockSummary]
    total_usage: TokenUsage
    peak_block: Optional[BillingBlockSummary]
    average_per_block: TokenUsage
    usage_by_time: Dict[str, TokenUsage]

    def to_dict(self) -> dict:
        return to_dict(self)
