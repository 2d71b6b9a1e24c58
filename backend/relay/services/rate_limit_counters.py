"""
Rate limit counter updates after a completed upstream request.

Sums the four token categories of a usage summary, prices them, applies the
API key's cost multiplier and increments the key's token and cost counters in
Redis.
"""

import logging
import math
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from relay.errors import CounterStoreUnavailableError
from relay.services.pricing import CostBreakdown, calculate_cost, estimate_cost
from relay.storage.redis import get_redis_client

if TYPE_CHECKING:
    from redis.asyncio.client import Redis as AsyncRedis

logger = logging.getLogger(__name__)

PricingFn = Callable[[Mapping[str, float], str], CostBreakdown | None]

# (key_id, account_type, model, cost) -> cost after the key's multiplier
RatedCostFn = Callable[[str, str | None, str, float], Awaitable[float]]


def _to_number(value: Any) -> float:
    """Coerce to a finite float, 0 otherwise."""
    if isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


@dataclass
class RateLimitInfo:
    """Redis keys of the per-key rate limit window counters."""

    token_count_key: str | None = None
    cost_count_key: str | None = None


@dataclass
class UsageSummary:
    """Token usage of a single upstream request."""

    input_tokens: float = 0
    output_tokens: float = 0
    cache_create_tokens: float = 0
    cache_read_tokens: float = 0

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "UsageSummary":
        """Build from camelCase relay fields or snake_case names."""

        def pick(*names: str) -> float:
            for name in names:
                if name in data:
                    return _to_number(data[name])
            return 0.0

        return cls(
            input_tokens=pick("inputTokens", "input_tokens"),
            output_tokens=pick("outputTokens", "output_tokens"),
            cache_create_tokens=pick("cacheCreateTokens", "cache_create_tokens"),
            cache_read_tokens=pick("cacheReadTokens", "cache_read_tokens"),
        )

    @property
    def total_tokens(self) -> float:
        return (
            _to_number(self.input_tokens)
            + _to_number(self.output_tokens)
            + _to_number(self.cache_create_tokens)
            + _to_number(self.cache_read_tokens)
        )

    def to_usage_payload(self) -> dict[str, float]:
        """Anthropic-style usage dict consumed by the pricing functions."""
        return {
            "input_tokens": _to_number(self.input_tokens),
            "output_tokens": _to_number(self.output_tokens),
            "cache_creation_input_tokens": _to_number(self.cache_create_tokens),
            "cache_read_input_tokens": _to_number(self.cache_read_tokens),
        }


@dataclass(frozen=True)
class CounterTotals:
    """Totals applied to the rate limit counters."""

    total_tokens: float = 0
    total_cost: float = 0.0
    rated_cost: float = 0.0


def _priced(pricing: PricingFn, usage: Mapping[str, float], model: str) -> float:
    try:
        cost = pricing(usage, model)
    except Exception as e:
        logger.debug(f"Pricing failed for {model}: {e}")
        return 0.0
    if cost is None:
        return 0.0
    total = cost.total_cost_usd
    return total if isinstance(total, int | float) else 0.0


async def update_rate_limit_counters(
    rate_limit_info: RateLimitInfo | None,
    usage_summary: UsageSummary | Mapping[str, Any],
    model: str,
    key_id: str | None = None,
    account_type: str | None = None,
    *,
    client: "AsyncRedis[str] | None" = None,
    pricing: PricingFn = calculate_cost,
    fallback_pricing: PricingFn = estimate_cost,
    rated_cost: RatedCostFn | None = None,
) -> CounterTotals:
    """
    Add a request's tokens and cost to the key's rate limit counters.

    Args:
        rate_limit_info: Counter keys for the API key, None if the key has no limits
        usage_summary: Token usage of the request
        model: Model used, for pricing
        key_id: API key ID, enables the cost multiplier
        account_type: Upstream account type, selects the multiplier's service
        client: Redis client. Defaults to the shared client.
        pricing: Primary cost calculator
        fallback_pricing: Used when the primary yields zero
        rated_cost: Applies the key's cost multiplier

    Returns:
        CounterTotals with tokens, real cost and rated cost

    Raises:
        CounterStoreUnavailableError: If Redis is not connected
    """
    if rate_limit_info is None:
        return CounterTotals()

    if client is None:
        client = await get_redis_client()
    if client is None:
        raise CounterStoreUnavailableError()

    if not isinstance(usage_summary, UsageSummary):
        usage_summary = UsageSummary.from_mapping(usage_summary)

    total_tokens = usage_summary.total_tokens
    if total_tokens > 0 and rate_limit_info.token_count_key:
        await client.incrby(rate_limit_info.token_count_key, round(total_tokens))

    usage = usage_summary.to_usage_payload()
    total_cost = _priced(pricing, usage, model)
    if total_cost == 0:
        total_cost = _priced(fallback_pricing, usage, model)

    cost_after_rate = total_cost
    if total_cost > 0 and key_id and rated_cost is not None:
        try:
            cost_after_rate = await rated_cost(key_id, account_type, model, total_cost)
        except Exception as e:
            logger.warning(f"Rated cost lookup failed for key {key_id}, using real cost: {e}")
            cost_after_rate = total_cost

    if cost_after_rate > 0 and rate_limit_info.cost_count_key:
        await client.incrbyfloat(rate_limit_info.cost_count_key, cost_after_rate)

    logger.debug(
        f"Updated rate limit counters: model={model}, tokens={total_tokens}, "
        f"cost=${total_cost:.6f}, rated=${cost_after_rate:.6f}"
    )

    return CounterTotals(
        total_tokens=total_tokens, total_cost=total_cost, rated_cost=cost_after_rate
    )
