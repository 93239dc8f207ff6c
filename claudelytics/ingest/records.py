"""
On-wire record schema and validation.

A log line is a JSON object; only ``timestamp``, ``message.usage``,
``message.model`` and ``costUSD`` are read. Everything else is ignored.
"""

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional

from claudelytics.core.models_registry import ModelsRegistry
from claudelytics.core.token_usage import TokenUsage, UsageEvent
from claudelytics.errors import ConfigurationError

logger = logging.getLogger(__name__)

# on-wire key -> TokenUsage field
USAGE_FIELDS = {
    "input_tokens": "input_tokens",
    "output_tokens": "output_tokens",
    "cache_creation_input_tokens": "cache_creation_tokens",
    "cache_read_input_tokens": "cache_read_tokens",
}

DATE_FILTER_FORMAT = "%Y%m%d"
LAST_USABLE_DAY = date.max


class InvalidRecord(Exception):
    """A decoded record that does not describe countable usage."""


def parse_timestamp(value: Any) -> datetime:
    """Parse an RFC 3339 timestamp into an aware UTC datetime.

    Naive timestamps are taken to be UTC.
    """
    if not isinstance(value, str) or not value:
        raise InvalidRecord("missing timestamp")
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        ts = datetime.fromisoformat(text)
        ts = ts.replace(tzinfo=timezone.utc) if ts.tzinfo is None else ts.astimezone(timezone.utc)
    except (ValueError, OverflowError):
        raise InvalidRecord(f"unparseable timestamp {value!r}")
    # block ends and next-midnight bounds must stay representable
    if ts.date() >= LAST_USABLE_DAY:
        raise InvalidRecord(f"timestamp out of range {value!r}")
    return ts


def _token_count(usage: Dict[str, Any], key: str) -> int:
    value = usage.get(key, 0)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidRecord(f"{key} must be an integer")
    if value < 0:
        raise InvalidRecord(f"{key} cannot be negative")
    return value


def _wire_cost(record: Dict[str, Any]) -> Optional[float]:
    cost = record.get("costUSD")
    if isinstance(cost, bool) or not isinstance(cost, (int, float)):
        return None
    try:
        cost = float(cost)
    except OverflowError:
        return None
    if not math.isfinite(cost) or cost < 0:
        return None
    return cost


@dataclass(frozen=True)
class ParsedRecord:
    """A validated record before the session id and price are attached."""
    timestamp: datetime
    usage: TokenUsage
    model: Optional[str]
    cost_usd: Optional[float]

    def to_event(self, session_id: str, cost: Optional[float]) -> UsageEvent:
        return UsageEvent(
            timestamp=self.timestamp,
            session_id=session_id,
            token_usage=self.usage,
            model=self.model,
            cost=cost,
        )


def validate_record(record: Any) -> ParsedRecord:
    """Check a decoded JSON value against the record schema.

    Raises:
        InvalidRecord: If the record has no parseable timestamp, no usage
            block, a non-integer or negative count, or only zero counts
    """
    if not isinstance(record, dict):
        raise InvalidRecord("record is not a JSON object")

    timestamp = parse_timestamp(record.get("timestamp"))

    message = record.get("message")
    if not isinstance(message, dict):
        raise InvalidRecord("missing message")
    usage_block = message.get("usage")
    if not isinstance(usage_block, dict):
        raise InvalidRecord("missing usage block")

    counts = {attr: _token_count(usage_block, key) for key, attr in USAGE_FIELDS.items()}
    usage = TokenUsage(**counts)
    if usage.total_tokens == 0:
        raise InvalidRecord("record has no tokens")

    model = message.get("model")
    if not isinstance(model, str) or not model:
        model = None

    return ParsedRecord(timestamp=timestamp, usage=usage, model=model, cost_usd=_wire_cost(record))


def parse_date_filter(value: Optional[str], name: str) -> Optional[date]:
    """Parse a ``YYYYMMDD`` filter bound.

    Raises:
        ConfigurationError: If the value is not a valid date
    """
    if value is None:
        return None
    try:
        if len(value) != 8 or not value.isdigit():
            raise ValueError(value)
        return datetime.strptime(value, DATE_FILTER_FORMAT).date()
    except ValueError:
        raise ConfigurationError(f"Invalid {name} date '{value}': expected YYYYMMDD")


@dataclass(frozen=True)
class RecordFilter:
    """Inclusive UTC date range plus an optional model filter."""
    since: Optional[date] = None
    until: Optional[date] = None
    model: Optional[str] = None
    registry: Optional[ModelsRegistry] = None

    def __post_init__(self):
        if self.since is not None and self.until is not None and self.since > self.until:
            raise ConfigurationError(
                f"since ({self.since.isoformat()}) is after until ({self.until.isoformat()})"
            )

    @classmethod
    def from_strings(
        cls,
        since: Optional[str] = None,
        until: Optional[str] = None,
        model: Optional[str] = None,
    ) -> "RecordFilter":
        return cls(
            since=parse_date_filter(since, "since"),
            until=parse_date_filter(until, "until"),
            model=model or None,
            registry=ModelsRegistry.default() if model else None,
        )

    def accepts(self, record: ParsedRecord) -> bool:
        day = record.timestamp.date()
        if self.since is not None and day < self.since:
            return False
        if self.until is not None and day > self.until:
            return False
        if self.model is not None:
            if record.model is None:
                return False
            registry = self.registry or ModelsRegistry.default()
            return registry.matches_filter(record.model, self.model)
        return True
