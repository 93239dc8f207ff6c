"""
Offline pricing cache.

A convenience copy of the pricing table on disk. The cache is never required:
a missing, unreadable, stale or version-mismatched cache is simply ignored and
the built-in table is used.
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Dict, Optional

from claudelytics import __version__
from .pricing import DEFAULT_PRICES, ModelPricing

logger = logging.getLogger(__name__)

CACHE_VALIDITY = timedelta(days=7)
CACHE_FILENAME = "pricing_cache.json"


def default_cache_dir() -> Path:
    return Path.home() / ".cache" / "claudelytics"


class PricingCache:
    """Read and write ``pricing_cache.json`` under a cache directory."""

    def __init__(self, cache_dir: Optional[Path] = None, version: str = __version__):
        self.cache_dir = Path(cache_dir) if cache_dir is not None else default_cache_dir()
        self.version = version

    @property
    def path(self) -> Path:
        return self.cache_dir / CACHE_FILENAME

    def load(self, now: Optional[datetime] = None) -> Optional[Dict[str, ModelPricing]]:
        """Return the cached table, or None when there is no usable cache."""
        data = self._read()
        if data is None or not self._is_fresh(data, now):
            return None
        try:
            return {
                model: ModelPricing(**{k: _to_decimal(v) for k, v in rates.items()})
                for model, rates in data["pricing_data"].items()
            }
        except (TypeError, AttributeError, ArithmeticError) as e:
            logger.warning("Ignoring malformed pricing cache %s: %s", self.path, e)
            return None

    def save(self, prices: Optional[Dict[str, ModelPricing]] = None, now: Optional[datetime] = None) -> Path:
        """Write ``prices`` (default: the built-in table) to the cache file."""
        now = now or datetime.now(timezone.utc)
        prices = prices if prices is not None else DEFAULT_PRICES
        payload = {
            "pricing_data": {
                model: {
                    "input_cost_per_token": _to_str(p.input_cost_per_token),
                    "output_cost_per_token": _to_str(p.output_cost_per_token),
                    "cache_creation_cost_per_token": _to_str(p.cache_creation_cost_per_token),
                    "cache_read_cost_per_token": _to_str(p.cache_read_cost_per_token),
                }
                for model, p in prices.items()
            },
            "last_updated": now.isoformat(),
            "version": self.version,
        }
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2)
        logger.debug("Wrote pricing cache to %s", self.path)
        return self.path

    def clear(self) -> bool:
        """Delete the cache file. Returns True if a file was removed."""
        if self.path.exists():
            self.path.unlink()
            return True
        return False

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        data = self._read()
        return data is not None and self._is_fresh(data, now)

    def _read(self) -> Optional[dict]:
        if not self.path.exists():
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable pricing cache %s: %s", self.path, e)
            return None
        if not isinstance(data, dict) or not isinstance(data.get("pricing_data"), dict):
            return None
        return data

    def _is_fresh(self, data: dict, now: Optional[datetime]) -> bool:
        if data.get("version") != self.version:
            return False
        try:
            last_updated = datetime.fromisoformat(data["last_updated"])
        except (KeyError, TypeError, ValueError):
            return False
        if last_updated.tzinfo is None:
            last_updated = last_updated.replace(tzinfo=timezone.utc)
        now = now or datetime.now(timezone.utc)
        return now - last_updated < CACHE_VALIDITY


def _to_str(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


def _to_decimal(value) -> Optional[Decimal]:
    return Decimal(str(value)) if value is not None else None
