"""
Pricing calculations and rate management.

Resolves a model identifier to per-token rates and computes the dollar cost
of a TokenUsage. Resolution is a small chain of strategies: an optional
override table loaded from disk, then the built-in default table.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Dict, List, Optional

import yaml

from claudelytics.errors import ConfigurationError
from .models_registry import ModelsRegistry, detect_family
from .token_usage import TokenUsage

logger = logging.getLogger(__name__)

MILLION = Decimal("1000000")
CACHE_CREATION_MULTIPLIER = Decimal("1.25")
CACHE_READ_MULTIPLIER = Decimal("0.1")


@dataclass(frozen=True)
class ModelPricing:
    """Per-token pricing for a specific model. Missing rates cost nothing."""
    input_cost_per_token: Optional[Decimal] = None
    output_cost_per_token: Optional[Decimal] = None
    cache_creation_cost_per_token: Optional[Decimal] = None
    cache_read_cost_per_token: Optional[Decimal] = None

    @classmethod
    def per_million(cls, input_rate: str, output_rate: str) -> "ModelPricing":
        """Build pricing from dollars-per-million rates.

        Cache creation is charged at 1.25x input and cache reads at 0.1x input.
        """
        input_cost = Decimal(input_rate) / MILLION
        return cls(
            input_cost_per_token=input_cost,
            output_cost_per_token=Decimal(output_rate) / MILLION,
            cache_creation_cost_per_token=input_cost * CACHE_CREATION_MULTIPLIER,
            cache_read_cost_per_token=input_cost * CACHE_READ_MULTIPLIER,
        )

    def calculate_cost(self, usage: TokenUsage) -> float:
        total = Decimal(0)
        pairs = (
            (usage.input_tokens, self.input_cost_per_token),
            (usage.output_tokens, self.output_cost_per_token),
            (usage.cache_creation_tokens, self.cache_creation_cost_per_token),
            (usage.cache_read_tokens, self.cache_read_cost_per_token),
        )
        for tokens, rate in pairs:
            if rate is not None:
                total += Decimal(tokens) * rate
        return float(total)


# Canonical model per family, used by the family heuristic.
FAMILY_CANONICAL_MODELS = {
    "opus": "claude-opus-4-20250514",
    "sonnet": "claude-sonnet-4-20250514",
    "haiku": "claude-3-5-haiku-20241022",
}

# Fixed pricing table - no remote fetching
DEFAULT_PRICES: Dict[str, ModelPricing] = {
    "claude-opus-4-20250514": ModelPricing.per_million("15.00", "75.00"),
    "claude-3-opus-20240229": ModelPricing.per_million("15.00", "75.00"),
    "claude-sonnet-4-20250514": ModelPricing.per_million("3.00", "15.00"),
    "claude-3-7-sonnet-20250219": ModelPricing.per_million("3.00", "15.00"),
    "claude-3-5-sonnet-20241022": ModelPricing.per_million("3.00", "15.00"),
    "claude-3-5-haiku-20241022": ModelPricing.per_million("0.80", "4.00"),
    "claude-3-haiku-20240307": ModelPricing.per_million("0.25", "1.25"),
}


@dataclass(frozen=True)
class PricingTable:
    """Pricing keyed by canonical model name, with an alias index."""
    prices: Dict[str, ModelPricing]
    aliases: Dict[str, str] = field(default_factory=dict)

    def get_pricing(self, model: str) -> Optional[ModelPricing]:
        """Exact or alias lookup only."""
        if model in self.prices:
            return self.prices[model]
        canonical = self.aliases.get(model.lower())
        if canonical is not None:
            return self.prices.get(canonical)
        return None


class OverridePricingStrategy:
    """Prices loaded from a user file. Authoritative for the models it names."""

    def __init__(self, table: PricingTable):
        self.table = table

    def find_model_pricing(self, model: str) -> Optional[ModelPricing]:
        return self.table.get_pricing(model)

    def calculate_cost(self, model: str, usage: TokenUsage) -> Optional[float]:
        pricing = self.find_model_pricing(model)
        if pricing is None:
            return None
        return pricing.calculate_cost(usage)


class DefaultPricingStrategy:
    """Built-in prices with alias, family and partial-name fallbacks."""

    def __init__(
        self,
        prices: Optional[Dict[str, ModelPricing]] = None,
        registry: Optional[ModelsRegistry] = None,
    ):
        self.prices = dict(prices if prices is not None else DEFAULT_PRICES)
        self.registry = registry or ModelsRegistry.default()

    def find_model_pricing(self, model: str) -> Optional[ModelPricing]:
        """Resolve pricing for a model identifier.

        Order: exact key, registered alias, family heuristic, then partial
        substring match in either direction. First hit wins.
        """
        if model in self.prices:
            return self.prices[model]

        canonical = self.registry.resolve_alias(model)
        if canonical is not None and canonical in self.prices:
            return self.prices[canonical]

        family = detect_family(model)
        if family is not None:
            canonical = FAMILY_CANONICAL_MODELS[family]
            if canonical in self.prices:
                return self.prices[canonical]

        # Sorted for a deterministic pick when several keys match
        for key in sorted(self.prices):
            if key in model or model in key:
                return self.prices[key]

        return None

    def calculate_cost(self, model: str, usage: TokenUsage) -> Optional[float]:
        pricing = self.find_model_pricing(model)
        if pricing is None:
            return None
        return pricing.calculate_cost(usage)


class CompositeCostCalculator:
    """Tries each strategy in order; the first one that knows the model wins."""

    def __init__(self, strategies: Optional[List] = None):
        self.strategies = list(strategies) if strategies else [DefaultPricingStrategy()]

    def calculate_cost(self, model: Optional[str], usage: TokenUsage) -> Optional[float]:
        """Cost of ``usage`` under ``model``, or None for an unknown model."""
        if not model:
            return None
        for strategy in self.strategies:
            cost = strategy.calculate_cost(model, usage)
            if cost is not None:
                return cost
        return None

    def find_model_pricing(self, model: str) -> Optional[ModelPricing]:
        for strategy in self.strategies:
            pricing = strategy.find_model_pricing(model)
            if pricing is not None:
                return pricing
        return None


def calculate_cost(model: Optional[str], usage: TokenUsage) -> Optional[float]:
    """Calculate cost with the built-in pricing table only."""
    return _DEFAULT_CALCULATOR.calculate_cost(model, usage)


_DEFAULT_CALCULATOR = CompositeCostCalculator()


def resolve_event_cost(
    calculator: CompositeCostCalculator,
    model: Optional[str],
    usage: TokenUsage,
    cost_usd: Optional[float] = None,
) -> float:
    """Cost of one event: on-wire ``costUSD`` first, then pricing, else 0."""
    if cost_usd is not None:
        return cost_usd
    cost = calculator.calculate_cost(model, usage)
    if cost is None:
        logger.debug("No pricing for model %r; counting event at zero cost", model)
        return 0.0
    return cost


_RATE_KEYS = (
    "input_cost_per_token",
    "output_cost_per_token",
    "cache_creation_cost_per_token",
    "cache_read_cost_per_token",
)


def load_pricing_override(path: str) -> PricingTable:
    """Load and validate a pricing override file (YAML or JSON).

    Args:
        path: Path to the override file

    Returns:
        PricingTable with the overridden models and their aliases

    Raises:
        ConfigurationError: If the file is missing, unreadable or invalid
    """
    override_path = Path(path)
    if not override_path.exists():
        raise ConfigurationError(f"Pricing override file not found: {path}")

    try:
        with open(override_path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except (OSError, UnicodeDecodeError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Invalid pricing override file {path}: {e}") from e

    if not raw:
        raise ConfigurationError(f"Pricing override file is empty: {path}")
    if not isinstance(raw, dict):
        raise ConfigurationError("Pricing override must map model names to rates")

    prices: Dict[str, ModelPricing] = {}
    aliases: Dict[str, str] = {}
    for model_name, entry in raw.items():
        if not isinstance(entry, dict):
            raise ConfigurationError(f"Pricing for '{model_name}' must be a dictionary")

        unknown_keys = set(entry.keys()) - set(_RATE_KEYS) - {"aliases"}
        if unknown_keys:
            raise ConfigurationError(f"Unknown keys in pricing for '{model_name}': {unknown_keys}")

        rates = {key: _parse_rate(entry.get(key), f"{model_name}.{key}") for key in _RATE_KEYS}
        prices[str(model_name)] = ModelPricing(**rates)

        model_aliases = entry.get("aliases") or []
        if not isinstance(model_aliases, list):
            raise ConfigurationError(f"'aliases' for '{model_name}' must be a list")
        for alias in model_aliases:
            aliases[str(alias).lower()] = str(model_name)

    return PricingTable(prices=prices, aliases=aliases)


def _parse_rate(value, path: str) -> Optional[Decimal]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ConfigurationError(f"'{path}' must be a number")
    try:
        rate = Decimal(str(value))
    except InvalidOperation:
        raise ConfigurationError(f"'{path}' must be a number")
    if not rate.is_finite():
        raise ConfigurationError(f"'{path}' must be a finite number")
    if rate < 0:
        raise ConfigurationError(f"'{path}' cannot be negative")
    return rate


def build_cost_calculator(
    override_path: Optional[str] = None,
    cached_prices: Optional[Dict[str, ModelPricing]] = None,
    strict: bool = True,
) -> CompositeCostCalculator:
    """Assemble the pricing chain: override table, then defaults.

    Args:
        override_path: Optional pricing override file
        cached_prices: Optional table from the offline cache; replaces the
            built-in table when given
        strict: Raise on an invalid override file instead of falling back

    Raises:
        ConfigurationError: If ``strict`` and the override file is invalid
    """
    strategies: List = []
    if override_path:
        try:
            strategies.append(OverridePricingStrategy(load_pricing_override(override_path)))
        except ConfigurationError as e:
            if strict:
                raise
            logger.warning("Ignoring pricing override, using defaults: %s", e)

    prices = dict(DEFAULT_PRICES)
    if cached_prices:
        prices.update(cached_prices)
    strategies.append(DefaultPricingStrategy(prices))
    return CompositeCostCalculator(strategies)
