"""
Conversion of report objects into JSON-compatible structures.

Dataclasses become dicts with snake_case keys, dates and datetimes become ISO
strings and enums are emitted by value. A dataclass field marked with
``FLATTEN`` metadata has its contents merged into the parent dict.
"""

import dataclasses
import json
from datetime import date, datetime
from enum import Enum
from typing import Any

from claudelytics.core.token_usage import TokenUsage

FLATTEN = {"flatten": True}


def to_jsonable(value: Any) -> Any:
    if isinstance(value, TokenUsage):
        return usage_to_dict(value)
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        result = {}
        for f in dataclasses.fields(value):
            converted = to_jsonable(getattr(value, f.name))
            if f.metadata.get("flatten") and isinstance(converted, dict):
                result.update(converted)
            else:
                result[f.name] = converted
        return result
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(to_jsonable(k)): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return sorted(to_jsonable(v) for v in value)
    return value


def usage_to_dict(usage) -> dict:
    return {
        "input_tokens": usage.input_tokens,
        "output_tokens": usage.output_tokens,
        "cache_creation_tokens": usage.cache_creation_tokens,
        "cache_read_tokens": usage.cache_read_tokens,
        "total_tokens": usage.total_tokens,
        "total_cost": usage.total_cost,
    }


def to_dict(report: Any) -> dict:
    """Serialize a report dataclass to a plain dict."""
    return to_jsonable(report)


def to_json(report: Any, indent: int = 2) -> str:
    return json.dumps(to_jsonable(report), indent=indent)
