"""
Pricing calculations and rate management.

Handles cost computations for the supported AI models. All money leaving this
module is an integer count of minor units so ledger arithmetic stays exact
across millions of increments.
"""

from dataclasses import dataclass
from decimal import ROUND_UP, Decimal
from typing import Dict, Union

from .models import TokenUsage

# Minor unit is the micro-dollar: a single cheap analysis costs well under a cent
MINOR_UNITS_PER_USD = 1_000_000

_TOKENS_PER_MILLION = Decimal("1000000")

Amount = Union[Decimal, float, int, str]


@dataclass(frozen=True)
class ModelPricing:
    """Per-token pricing for a specific model."""
    input_cost_per_mtok: Decimal  # USD per 1M input tokens
    output_cost_per_mtok: Decimal  # USD per 1M output tokens


@dataclass(frozen=True)
class PricingTable:
    """Fixed pricing table for supported models."""
    prices: Dict[str, ModelPricing]

    def get_pricing(self, model: str) -> ModelPricing:
        """Get pricing for a specific model.

        Args:
            model: Model identifier

        Returns:
            ModelPricing for the model

        Raises:
            ValueError: If model is not supported
        """
        if model not in self.prices:
            raise ValueError(f"Unsupported model: {model}")
        return self.prices[model]


# Defaults used when a provider entry in the config omits its prices
PRICING_TABLE = PricingTable({
    "claude-3-5-haiku-20241022": ModelPricing(
        input_cost_per_mtok=Decimal("1.00"),
        output_cost_per_mtok=Decimal("5.00")
    ),
    "gpt-4o-mini": ModelPricing(
        input_cost_per_mtok=Decimal("0.15"),
        output_cost_per_mtok=Decimal("0.60")
    ),
    "deepseek-chat": ModelPricing(
        input_cost_per_mtok=Decimal("0.27"),
        output_cost_per_mtok=Decimal("1.10")
    ),
})


def usd_to_minor_units(amount: Amount) -> int:
    """Convert a dollar amount to minor units, rounding fractions UP.

    Floats are converted through ``str`` so ``0.1`` becomes exactly
    100000 minor units rather than its binary approximation.
    """
    value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    if value < 0:
        raise ValueError("amount cannot be negative")
    return int((value * MINOR_UNITS_PER_USD).to_integral_value(rounding=ROUND_UP))


def minor_units_to_usd(units: int) -> Decimal:
    """Convert minor units back to an exact dollar Decimal for display."""
    return Decimal(units) / Decimal(MINOR_UNITS_PER_USD)


def calculate_cost(pricing: ModelPricing, usage: TokenUsage) -> int:
    """Calculate total cost for token usage with conservative rounding.

    Args:
        pricing: Per-million-token rates
        usage: Token usage data

    Returns:
        Total cost in minor units, rounded UP to a whole unit
    """
    input_cost = (Decimal(usage.input_tokens) / _TOKENS_PER_MILLION) * pricing.input_cost_per_mtok
    output_cost = (Decimal(usage.output_tokens) / _TOKENS_PER_MILLION) * pricing.output_cost_per_mtok

    return usd_to_minor_units(input_cost + output_cost)


def calculate_model_cost(model: str, usage: TokenUsage) -> int:
    """Calculate cost for a model listed in :data:`PRICING_TABLE`.

    Raises:
        ValueError: If model is not supported
    """
    return calculate_cost(PRICING_TABLE.get_pricing(model), usage)
