"""
Unit tests for pricing calculations.

Tests cost accuracy, model resolution order and override file validation.
"""

import os
import tempfile
from decimal import Decimal

import pytest
import yaml

from claudelytics.core.models_registry import ModelsRegistry
from claudelytics.core.pricing import (
    DEFAULT_PRICES,
    CompositeCostCalculator,
    DefaultPricingStrategy,
    ModelPricing,
    build_cost_calculator,
    calculate_cost,
    load_pricing_override,
    resolve_event_cost,
)
from claudelytics.core.token_usage import TokenUsage
from claudelytics.errors import ConfigurationError


class TestTokenUsage:
    """Test TokenUsage dataclass."""

    def test_total_tokens_calculation(self):
        """Verify total_tokens sums all four token kinds."""
        usage = TokenUsage(input_tokens=100, output_tokens=50, cache_creation_tokens=20, cache_read_tokens=5)
        assert usage.total_tokens == 175

    def test_add_is_componentwise(self):
        usage = TokenUsage(1, 2, 3, 4, 0.5)
        usage.add(TokenUsage(10, 20, 30, 40, 1.0))
        assert usage == TokenUsage(11, 22, 33, 44, 1.5)

    def test_ratios_with_zero_denominators(self):
        """Verify ratio helpers never divide by zero."""
        usage = TokenUsage()
        assert usage.tokens_per_dollar() == 0.0
        assert usage.output_input_ratio() == 0.0
        assert usage.cache_efficiency() == 0.0


class TestModelPricing:
    """Test per-token cost calculation."""

    def test_haiku_cost(self):
        """Verify 250 input and 450 output haiku tokens cost $0.002."""
        pricing = DEFAULT_PRICES["claude-3-5-haiku-20241022"]
        cost = pricing.calculate_cost(TokenUsage(input_tokens=250, output_tokens=450))
        assert cost == pytest.approx(0.002)

    def test_cache_multipliers(self):
        """Verify cache creation is 1.25x input and cache read is 0.1x input."""
        pricing = ModelPricing.per_million("3.00", "15.00")
        assert pricing.cache_creation_cost_per_token == Decimal("3.75") / Decimal(1000000)
        assert pricing.cache_read_cost_per_token == Decimal("0.3") / Decimal(1000000)

    def test_missing_rates_cost_nothing(self):
        pricing = ModelPricing(input_cost_per_token=Decimal("0.001"))
        assert pricing.calculate_cost(TokenUsage(input_tokens=10, output_tokens=1000)) == pytest.approx(0.01)


class TestModelResolution:
    """Test the default pricing resolution chain."""

    def setup_method(self):
        self.strategy = DefaultPricingStrategy()

    def test_exact_match(self):
        assert self.strategy.find_model_pricing("claude-3-opus-20240229") is DEFAULT_PRICES["claude-3-opus-20240229"]

    def test_alias_match(self):
        """Verify registry aliases resolve to their canonical model."""
        assert self.strategy.find_model_pricing("sonnet-3.7") is DEFAULT_PRICES["claude-3-7-sonnet-20250219"]

    def test_family_heuristic(self):
        """Verify an unknown model with a family name uses the family's canonical price."""
        pricing = self.strategy.find_model_pricing("some-future-opus-model")
        assert pricing is DEFAULT_PRICES["claude-opus-4-20250514"]

    def test_family_heuristic_before_partial_match(self):
        pricing = self.strategy.find_model_pricing("claude-3-haiku-20240307-v2")
        assert pricing is DEFAULT_PRICES["claude-3-5-haiku-20241022"]

    def test_partial_match(self):
        house = ModelPricing.per_million("1.00", "1.00")
        strategy = DefaultPricingStrategy(prices={"house-model": house})
        assert strategy.find_model_pricing("house-model-beta") is house
        assert strategy.find_model_pricing("house") is house

    def test_unknown_model(self):
        assert self.strategy.find_model_pricing("gpt-4") is None
        assert calculate_cost("gpt-4", TokenUsage(input_tokens=10)) is None

    def test_missing_model_has_no_cost(self):
        assert calculate_cost(None, TokenUsage(input_tokens=10)) is None

    def test_custom_registry(self):
        from claudelytics.core.models_registry import ModelInfo

        registry = ModelsRegistry()
        registry.register_model(ModelInfo("claude-3-5-haiku-20241022", "haiku", ("fast",)))
        strategy = DefaultPricingStrategy(registry=registry)
        assert strategy.find_model_pricing("fast") is DEFAULT_PRICES["claude-3-5-haiku-20241022"]


class TestEventCost:
    """Test cost resolution for a single event."""

    def test_wire_cost_wins(self):
        calculator = CompositeCostCalculator()
        usage = TokenUsage(input_tokens=1000)
        assert resolve_event_cost(calculator, "claude-3-5-haiku-20241022", usage, 1.5) == 1.5

    def test_priced_when_no_wire_cost(self):
        calculator = CompositeCostCalculator()
        usage = TokenUsage(input_tokens=1_000_000)
        assert resolve_event_cost(calculator, "claude-3-5-haiku-20241022", usage) == pytest.approx(0.8)

    def test_unknown_model_is_zero(self):
        calculator = CompositeCostCalculator()
        assert resolve_event_cost(calculator, "mystery", TokenUsage(input_tokens=5)) == 0.0
        assert resolve_event_cost(calculator, None, TokenUsage(input_tokens=5)) == 0.0


class TestPricingOverride:
    """Test loading and validating pricing override files."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write(self, data, filename: str = "pricing.yaml") -> str:
        path = os.path.join(self.temp_dir, filename)
        with open(path, "w", encoding="utf-8") as f:
            if isinstance(data, str):
                f.write(data)
            else:
                yaml.dump(data, f)
        return path

    def test_override_replaces_default_for_named_model(self):
        """Verify an override only changes the models it names."""
        path = self._write({
            "claude-3-5-haiku-20241022": {
                "input_cost_per_token": 0.00001,
                "output_cost_per_token": 0.00002,
            }
        })
        calculator = build_cost_calculator(path)
        usage = TokenUsage(input_tokens=100, output_tokens=100)
        assert calculator.calculate_cost("claude-3-5-haiku-20241022", usage) == pytest.approx(0.003)
        # Unaffected model keeps the default price
        expected = DEFAULT_PRICES["claude-sonnet-4-20250514"].calculate_cost(usage)
        assert calculator.calculate_cost("claude-sonnet-4-20250514", usage) == pytest.approx(expected)

    @pytest.mark.parametrize("rate", [".nan", ".inf", "NaN", "Infinity"])
    def test_non_finite_rate_rejected(self, rate):
        path = self._write(f"house-model:\n  input_cost_per_token: {rate}\n")
        with pytest.raises(ConfigurationError, match="finite"):
            load_pricing_override(path)

    def test_override_aliases(self):
        path = self._write({
            "house-model": {
                "input_cost_per_token": 0.001,
                "aliases": ["House"],
            }
        })
        table = load_pricing_override(path)
        assert table.get_pricing("house") is table.prices["house-model"]

    def test_json_override_is_accepted(self):
        path = self._write('{"m": {"output_cost_per_token": 0.5}}', "pricing.json")
        table = load_pricing_override(path)
        assert table.prices["m"].output_cost_per_token == Decimal("0.5")

    def test_missing_file_raises(self):
        with pytest.raises(ConfigurationError, match="not found"):
            load_pricing_override(os.path.join(self.temp_dir, "nope.yaml"))

    def test_unknown_keys_rejected(self):
        path = self._write({"m": {"input_cost_per_token": 0.1, "discount": 0.5}})
        with pytest.raises(ConfigurationError, match="Unknown keys"):
            load_pricing_override(path)

    def test_negative_rate_rejected(self):
        path = self._write({"m": {"input_cost_per_token": -1}})
        with pytest.raises(ConfigurationError, match="cannot be negative"):
            load_pricing_override(path)

    def test_boolean_rate_rejected(self):
        path = self._write({"m": {"input_cost_per_token": True}})
        with pytest.raises(ConfigurationError, match="must be a number"):
            load_pricing_override(path)

    def test_invalid_yaml_rejected(self):
        path = self._write("m: [unclosed")
        with pytest.raises(ConfigurationError, match="Invalid pricing override"):
            load_pricing_override(path)

    def test_non_strict_falls_back_to_defaults(self):
        """Verify a broken override is ignored when not strict."""
        path = self._write("just a string")
        calculator = build_cost_calculator(path, strict=False)
        assert len(calculator.strategies) == 1
        assert calculator.find_model_pricing("claude-3-opus-20240229") is not None

    def test_cached_prices_replace_defaults(self):
        cached = {"claude-3-opus-20240229": ModelPricing.per_million("1.00", "2.00")}
        calculator = build_cost_calculator(cached_prices=cached)
        cost = calculator.calculate_cost("claude-3-opus-20240229", TokenUsage(input_tokens=1_000_000))
        assert cost == pytest.approx(1.0)
