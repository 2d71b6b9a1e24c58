"""
Cost calculation for upstream usage.

Two calculators with the same signature:
- calculate_cost: exact lookup by model prefix, zero for unknown models
- estimate_cost: substring match with Sonnet pricing as the default, used as
  the fallback when calculate_cost yields nothing
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# Model pricing per 1M tokens
# Format: {model_prefix: {"input", "output", "cache_write", "cache_read"}}
MODEL_PRICING: dict[str, dict[str, float]] = {
    # Claude models
    "claude-opus-4": {"input": 15.0, "output": 75.0, "cache_write": 18.75, "cache_read": 1.5},
    "claude-sonnet-4": {"input": 3.0, "output": 15.0, "cache_write": 3.75, "cache_read": 0.3},
    "claude-3-7-sonnet": {"input": 3.0, "output": 15.0, "cache_write": 3.75, "cache_read": 0.3},
    "claude-haiku-4": {"input": 1.0, "output": 5.0, "cache_write": 1.25, "cache_read": 0.1},
    "claude-3-5-haiku": {"input": 0.8, "output": 4.0, "cache_write": 1.0, "cache_read": 0.08},
    # OpenAI models
    "gpt-5": {"input": 1.25, "output": 10.0, "cache_write": 0.0, "cache_read": 0.125},
    "gpt-4.1": {"input": 2.0, "output": 8.0, "cache_write": 0.0, "cache_read": 0.5},
    "gpt-4o": {"input": 2.5, "output": 10.0, "cache_write": 0.0, "cache_read": 1.25},
    "o3": {"input": 2.0, "output": 8.0, "cache_write": 0.0, "cache_read": 0.5},
    "o1": {"input": 15.0, "output": 60.0, "cache_write": 0.0, "cache_read": 7.5},
}

DEFAULT_PRICING_MODEL = "claude-sonnet-4"


@dataclass
class CostBreakdown:
    """Detailed cost breakdown in USD."""

    input_cost_usd: float = 0.0
    output_cost_usd: float = 0.0
    cache_write_cost_usd: float = 0.0
    cache_read_cost_usd: float = 0.0

    @property
    def total_cost_usd(self) -> float:
        return (
            self.input_cost_usd
            + self.output_cost_usd
            + self.cache_write_cost_usd
            + self.cache_read_cost_usd
        )


def _tokens(usage: Mapping[str, float], key: str) -> float:
    value = usage.get(key) or 0
    return float(value)


def _cost_for(usage: Mapping[str, float], pricing: Mapping[str, float]) -> CostBreakdown:
    return CostBreakdown(
        input_cost_usd=_tokens(usage, "input_tokens") / 1_000_000 * pricing["input"],
        output_cost_usd=_tokens(usage, "output_tokens") / 1_000_000 * pricing["output"],
        cache_write_cost_usd=(
            _tokens(usage, "cache_creation_input_tokens") / 1_000_000 * pricing["cache_write"]
        ),
        cache_read_cost_usd=(
            _tokens(usage, "cache_read_input_tokens") / 1_000_000 * pricing["cache_read"]
        ),
    )


def _lookup_pricing(model: str) -> dict[str, float] | None:
    """Longest model prefix match."""
    model_lower = model.lower()
    matches = [prefix for prefix in MODEL_PRICING if model_lower.startswith(prefix)]
    if not matches:
        return None
    return MODEL_PRICING[max(matches, key=len)]


def calculate_cost(usage: Mapping[str, float], model: str) -> CostBreakdown:
    """
    Calculate cost from a usage payload.

    Args:
        usage: Anthropic-style usage (input_tokens, output_tokens,
            cache_creation_input_tokens, cache_read_input_tokens)
        model: Model identifier

    Returns:
        Cost breakdown. All zero when the model has no known pricing.
    """
    pricing = _lookup_pricing(model)
    if pricing is None:
        logger.debug(f"No pricing for model {model}")
        return CostBreakdown()
    return _cost_for(usage, pricing)


def estimate_cost(usage: Mapping[str, float], model: str) -> CostBreakdown:
    """Estimate cost, falling back to Sonnet pricing for unknown models."""
    model_lower = model.lower()
    base = next((name for name in MODEL_PRICING if name in model_lower), DEFAULT_PRICING_MODEL)
    return _cost_for(usage, MODEL_PRICING[base])
