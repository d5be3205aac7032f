"""
Pricing calculations and rate management.

Handles cost computations for routable models and the provider SKUs that
report under slightly different names.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Union

from .catalog import MODEL_CATALOG, ModelId
from .token_counter import TokenUsage

logger = logging.getLogger(__name__)

MILLION = Decimal("1000000")
CENTS_PER_DOLLAR = Decimal("100")
INPUT_SHARE = Decimal("0.3")
OUTPUT_SHARE = Decimal("0.7")


@dataclass(frozen=True)
class ModelPricing:
    """Per-token pricing for a specific model."""
    input_cost_per_million: Decimal  # USD per 1M input tokens
    output_cost_per_million: Decimal  # USD per 1M output tokens


# Applied when a model name cannot be canonicalized
DEFAULT_PRICING = ModelPricing(
    input_cost_per_million=Decimal("1.00"),
    output_cost_per_million=Decimal("1.00"),
)


def _pricing(input_cost: str, output_cost: str) -> ModelPricing:
    return ModelPricing(Decimal(input_cost), Decimal(output_cost))


@dataclass(frozen=True)
class PricingTable:
    """Fixed pricing table keyed by canonical model name."""
    prices: Dict[str, ModelPricing]

    def get_pricing(self, model: Union[str, ModelId]) -> ModelPricing:
        """Get pricing for a model, falling back to the default rate.

        Args:
            model: Model identifier or raw provider model string

        Returns:
            ModelPricing for the canonical model, or DEFAULT_PRICING
        """
        canonical = canonicalize_model_name(model)
        pricing = self.prices.get(canonical)
        if pricing is None:
            logger.warning(
                "Unknown model %r (canonical %r), using default rate", model, canonical
            )
            return DEFAULT_PRICING
        return pricing

    def is_known(self, model: Union[str, ModelId]) -> bool:
        return canonicalize_model_name(model) in self.prices


_ROUTABLE_PRICES = {
    descriptor.model_id.value: ModelPricing(
        input_cost_per_million=Decimal(str(descriptor.input_cost_per_million)),
        output_cost_per_million=Decimal(str(descriptor.output_cost_per_million)),
    )
    for descriptor in MODEL_CATALOG.values()
}

# SKUs providers may report besides the routable ones
_REPORTED_PRICES = {
    "gpt-4o": _pricing("2.50", "10.00"),
    "gpt-4-turbo": _pricing("10.00", "30.00"),
    "gpt-4": _pricing("30.00", "60.00"),
    "gpt-3.5-turbo": _pricing("0.50", "1.50"),
    "claude-3.5-sonnet": _pricing("3.00", "15.00"),
    "claude-3-opus": _pricing("15.00", "75.00"),
    "claude-3-sonnet": _pricing("3.00", "15.00"),
    "claude-3-haiku": _pricing("0.25", "1.25"),
    "gemini-2.5-flash": _pricing("0.00", "0.00"),
    "gemini-1.5-pro": _pricing("1.25", "5.00"),
    "gemini-pro": _pricing("0.50", "1.50"),
    "grok-beta": _pricing("0.00", "0.00"),
    "grok-2": _pricing("0.00", "0.00"),
    "llama-3.1-sonar": _pricing("0.20", "0.20"),
    "llama-3.1-sonar-large": _pricing("0.20", "0.20"),
    "dall-e-2": _pricing("0.00", "0.00"),
}

PRICING_TABLE = PricingTable({**_REPORTED_PRICES, **_ROUTABLE_PRICES})


def canonicalize_model_name(model: Union[str, ModelId]) -> str:
    """Map a raw provider model string onto a rate-table key.

    Rules are substring based so dated or suffixed SKUs
    (``gpt-4o-mini-2024-07-18``, ``claude-3-5-haiku-20241022``) resolve to
    their family. Annotations such as ``" (fallback)"`` are dropped.

    Args:
        model: Model identifier or raw provider string

    Returns:
        Canonical name; the lowercased input when no rule matches
    """
    if isinstance(model, ModelId):
        return model.value
    if not model:
        return "unknown"

    normalized = model.strip().lower().split(" ")[0]
    # Anthropic publishes both claude-3.5 and claude-3-5 spellings
    dotted = normalized.replace("claude-3-5", "claude-3.5")

    if "gpt-4o" in normalized:
        return "gpt-4o-mini" if "mini" in normalized else "gpt-4o"
    if "claude-3.5" in dotted:
        if "haiku" in dotted:
            return "claude-3.5-haiku"
        return "claude-3.5-sonnet"
    if "claude-3" in dotted:
        if "opus" in dotted:
            return "claude-3-opus"
        if "haiku" in dotted:
            return "claude-3-haiku"
        return "claude-3-sonnet"
    if "gemini-2.5" in normalized:
        return "gemini-2.5-flash"
    if "gemini-1.5" in normalized:
        return "gemini-1.5-pro" if "pro" in normalized else "gemini-1.5-flash"
    if "gemini-pro" in normalized:
        return "gemini-pro"
    if "grok-4" in normalized:
        return "grok-4-fast"
    if "grok-2" in normalized:
        return "grok-2"
    if "grok" in normalized:
        return "grok-beta"
    if "llama-3.1-sonar-large" in normalized:
        return "llama-3.1-sonar-large"
    if "llama-3.1-sonar" in normalized:
        return "llama-3.1-sonar"
    if "sonar" in normalized:
        return "perplexity-sonar"
    if "dall-e-3" in normalized:
        return "dall-e-3"
    if "dall-e-2" in normalized:
        return "dall-e-2"
    return normalized


def _to_cents(cost_usd: Decimal) -> int:
    return int((cost_usd * CENTS_PER_DOLLAR).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def calculate_cost_cents(model: Union[str, ModelId], input_tokens: int, output_tokens: int) -> int:
    """Calculate cost in cents with input and output priced independently.

    Args:
        model: Model identifier or raw provider string
        input_tokens: Prompt tokens
        output_tokens: Completion tokens

    Returns:
        Cost rounded half-up to the nearest cent
    """
    pricing = PRICING_TABLE.get_pricing(model)
    input_cost = (Decimal(input_tokens) / MILLION) * pricing.input_cost_per_million
    output_cost = (Decimal(output_tokens) / MILLION) * pricing.output_cost_per_million
    return _to_cents(input_cost + output_cost)


def estimate_cost_cents(model: Union[str, ModelId], total_tokens: int) -> int:
    """Cost for a combined token count, priced 30% input / 70% output."""
    pricing = PRICING_TABLE.get_pricing(model)
    tokens_in_million = Decimal(total_tokens) / MILLION
    cost = (
        tokens_in_million * INPUT_SHARE * pricing.input_cost_per_million
        + tokens_in_million * OUTPUT_SHARE * pricing.output_cost_per_million
    )
    return _to_cents(cost)


def calculate_cost(model: Union[str, ModelId], usage: TokenUsage) -> int:
    """Cost in cents for a TokenUsage."""
    return calculate_cost_cents(model, usage.prompt_tokens, usage.completion_tokens)
