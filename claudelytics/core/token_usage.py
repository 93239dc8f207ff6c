"""
Token counting and usage tracking.

Defines the value types every aggregator and report is built on.
"""

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import Optional


@dataclass
class TokenUsage:
    """Token counts and dollar cost for one event or an aggregate.

    Aggregators only ever grow these values through ``add``; the cost is
    the sum of per-event costs and is never recomputed from token totals.
    """
    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_tokens: int = 0
    cache_read_tokens: int = 0
    total_cost: float = 0.0

    @property
    def total_tokens(self) -> int:
        """Total tokens used across all four token kinds."""
        return (
            self.input_tokens
            + self.output_tokens
            + self.cache_creation_tokens
            + self.cache_read_tokens
        )

    def add(self, other: "TokenUsage") -> None:
        """Accumulate another usage into this one, componentwise."""
        self.input_tokens += other.input_tokens
        self.output_tokens += other.output_tokens
        self.cache_creation_tokens += other.cache_creation_tokens
        self.cache_read_tokens += other.cache_read_tokens
        self.total_cost += other.total_cost

    def copy(self) -> "TokenUsage":
        return replace(self)

    def is_empty(self) -> bool:
        return self.total_tokens == 0

    def tokens_per_dollar(self) -> float:
        if self.total_cost > 0:
            return self.total_tokens / self.total_cost
        return 0.0

    def output_input_ratio(self) -> float:
        if self.input_tokens > 0:
            return self.output_tokens / self.input_tokens
        return 0.0

    def cache_efficiency(self) -> float:
        """Share of prompt-side tokens served from cache, in percent."""
        prompt_side = self.input_tokens + self.cache_creation_tokens + self.cache_read_tokens
        if prompt_side == 0:
            return 0.0
        return self.cache_read_tokens / prompt_side * 100.0


def sum_usage(usages) -> TokenUsage:
    """Fold an iterable of TokenUsage into a fresh total."""
    total = TokenUsage()
    for usage in usages:
        total.add(usage)
    return total


@dataclass(frozen=True)
class UsageEvent:
    """One validated log record in canonical form.

    ``token_usage`` always carries a zero cost; the resolved dollar cost
    lives in ``cost`` so that on-wire and priced costs stay distinguishable.
    """
    timestamp: datetime
    session_id: str
    token_usage: TokenUsage = field(default_factory=TokenUsage)
    model: Optional[str] = None
    cost: Optional[float] = None

    @property
    def date(self) -> date:
        """UTC calendar date of the event."""
        return self.timestamp.date()

    def usage_with_cost(self) -> TokenUsage:
        usage = self.token_usage.copy()
        usage.total_cost = self.cost if self.cost is not None else 0.0
        return usage
