"""Tests for usage cost calculation."""

import pytest

from relay.services.pricing import CostBreakdown, calculate_cost, estimate_cost

USAGE = {
    "input_tokens": 1000,
    "output_tokens": 500,
    "cache_creation_input_tokens": 200,
    "cache_read_input_tokens": 300,
}


class TestCalculateCost:
    """Tests for calculate_cost."""

    def test_sonnet(self):
        """Each token category uses its own rate."""
        cost = calculate_cost(USAGE, "claude-sonnet-4-20250514")
        assert cost.input_cost_usd == pytest.approx(0.003)
        assert cost.output_cost_usd == pytest.approx(0.0075)
        assert cost.cache_write_cost_usd == pytest.approx(0.00075)
        assert cost.cache_read_cost_usd == pytest.approx(0.00009)
        assert cost.total_cost_usd == pytest.approx(0.01134)

    def test_opus_pricier_than_sonnet(self):
        """Opus uses opus rates."""
        opus = calculate_cost(USAGE, "claude-opus-4-1-20250805")
        sonnet = calculate_cost(USAGE, "claude-sonnet-4-20250514")
        assert opus.total_cost_usd == pytest.approx(sonnet.total_cost_usd * 5)

    def test_longest_prefix_wins(self):
        """gpt-4.1 is not priced as a generic gpt-4 model."""
        cost = calculate_cost({"input_tokens": 1_000_000}, "gpt-4.1-mini")
        assert cost.input_cost_usd == pytest.approx(2.0)

    def test_unknown_model_is_zero(self):
        """Unknown models cost nothing here so the fallback kicks in."""
        assert calculate_cost(USAGE, "mystery-model").total_cost_usd == 0

    def test_missing_fields(self):
        """Absent token counts are zero."""
        cost = calculate_cost({"output_tokens": 1_000_000}, "claude-sonnet-4")
        assert cost.total_cost_usd == pytest.approx(15.0)


class TestEstimateCost:
    """Tests for estimate_cost."""

    def test_unknown_model_uses_sonnet(self):
        """Unknown models are estimated at Sonnet rates."""
        assert estimate_cost(USAGE, "mystery-model").total_cost_usd == pytest.approx(0.01134)

    def test_substring_match(self):
        """Provider-prefixed names still match."""
        cost = estimate_cost({"input_tokens": 1_000_000}, "anthropic/claude-opus-4")
        assert cost.input_cost_usd == pytest.approx(15.0)

    def test_breakdown_total(self):
        """total_cost_usd sums all parts."""
        breakdown = CostBreakdown(1.0, 2.0, 3.0, 4.0)
        assert breakdown.total_cost_usd == 10.0
