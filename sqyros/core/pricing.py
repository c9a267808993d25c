"""Per-tier token pricing and cost estimation (amounts in cents)."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from decimal import ROUND_CEILING, Decimal
from types import MappingProxyType
from typing import Any

from sqyros.models.routing_models import DEFAULT_MODEL_TIER, ModelTier


@dataclass(frozen=True)
class ModelTierCostRate:
    """Cost in (fractional) cents per 1000 tokens."""

    input_cost_per_thousand_tokens: float
    output_cost_per_thousand_tokens: float

    def __post_init__(self) -> None:
        if self.input_cost_per_thousand_tokens < 0 or self.output_cost_per_thousand_tokens < 0:
            raise ValueError("Token rates must be non-negative")


MODEL_TIER_RATES: Mapping[ModelTier, ModelTierCostRate] = MappingProxyType(
    {
        # $3 / $15 per 1M tokens
        ModelTier.FAST: ModelTierCostRate(
            input_cost_per_thousand_tokens=0.3,
            output_cost_per_thousand_tokens=1.5,
        ),
        # $15 / $75 per 1M tokens
        ModelTier.ADVANCED: ModelTierCostRate(
            input_cost_per_thousand_tokens=1.5,
            output_cost_per_thousand_tokens=7.5,
        ),
    }
)


def rate_for(tier: Any, rates: Mapping[ModelTier, ModelTierCostRate] = MODEL_TIER_RATES) -> ModelTierCostRate:
    """Return the rate for `tier`, falling back to the default tier for unknown values."""
    resolved = ModelTier.coerce(tier)
    rate = rates.get(resolved)
    if rate is None:
        return rates[DEFAULT_MODEL_TIER]
    return rate


def estimate_cost_cents(
    tier: Any,
    input_tokens: int,
    output_tokens: int,
    rates: Mapping[ModelTier, ModelTierCostRate] = MODEL_TIER_RATES,
) -> int:
    """Cost of one call in whole cents, always rounded up."""
    if input_tokens < 0 or output_tokens < 0:
        raise ValueError("Token counts must be non-negative")
    rate = rate_for(tier, rates)
    # Decimal keeps 10_000 * 0.3 / 1000 at exactly 3, not 3.0000000000000004.
    cost = (
        Decimal(input_tokens) * Decimal(str(rate.input_cost_per_thousand_tokens))
        + Decimal(output_tokens) * Decimal(str(rate.output_cost_per_thousand_tokens))
    ) / 1000
    return int(cost.to_integral_value(rounding=ROUND_CEILING))
