"""
Tests for budget pressure and cost filtering.
"""

import pytest

from chatroute import Config, CostThresholds, ModelRegistry, PlanTier
from chatroute.budget import calculate_budget_pressure, filter_by_budget


@pytest.fixture(scope="module")
def registry() -> ModelRegistry:
    return ModelRegistry(Config())


@pytest.fixture(scope="module")
def all_models(registry):
    return registry.list_models()


def _ids(models):
    return [m.id for m in models]


# ─────────────────────────────────────────────────────────────────────────────
# Pressure
# ─────────────────────────────────────────────────────────────────────────────

class TestBudgetPressure:

    def test_zero_up_to_half(self):
        assert calculate_budget_pressure(0, 1000) == 0.0
        assert calculate_budget_pressure(500, 1000) == 0.0

    def test_one_from_ninety_five_percent(self):
        assert calculate_budget_pressure(950, 1000) == 1.0
        assert calculate_budget_pressure(5000, 1000) == 1.0

    def test_linear_between(self):
        assert calculate_budget_pressure(725, 1000) == pytest.approx(0.5)

    def test_non_positive_limit_is_full_pressure(self):
        assert calculate_budget_pressure(0, 0) == 1.0
        assert calculate_budget_pressure(10, -5) == 1.0

    def test_monotonic_in_usage(self):
        values = [calculate_budget_pressure(used, 1000) for used in range(0, 1201, 10)]
        assert values == sorted(values)
        assert all(0.0 <= v <= 1.0 for v in values)


# ─────────────────────────────────────────────────────────────────────────────
# Cost filter
# ─────────────────────────────────────────────────────────────────────────────

class TestFilterByBudget:

    def test_low_pressure_is_unfiltered(self, all_models):
        assert filter_by_budget(all_models, 0.5, PlanTier.PRO, False) == all_models

    def test_above_point_six_drops_expensive(self, all_models):
        ids = _ids(filter_by_budget(all_models, 0.7, PlanTier.PRO, False))
        assert "claude-sonnet-4-5" not in ids
        assert "gpt-5.1" in ids

    def test_above_point_seven_five_keeps_medium(self, all_models):
        ids = _ids(filter_by_budget(all_models, 0.8, PlanTier.PRO, False))
        assert "gpt-5.1" not in ids
        assert "claude-haiku-4-5" in ids

    def test_above_point_nine_keeps_cheap(self, all_models):
        ids = _ids(filter_by_budget(all_models, 0.95, PlanTier.PRO, False))
        assert ids == ["gemini-2.0-flash", "gemini-2.5-flash", "mistral-large-3"]

    def test_above_point_nine_falls_back_to_cheapest(self, registry):
        pool = [registry.get_model("claude-sonnet-4-5"), registry.get_model("gpt-5.1")]
        assert _ids(filter_by_budget(pool, 0.95, PlanTier.PRO, False)) == ["gpt-5.1"]

    def test_medium_band_never_empties(self, registry):
        pool = [registry.get_model("claude-sonnet-4-5")]
        assert filter_by_budget(pool, 0.8, PlanTier.PRO, False) == pool

    def test_sovereign_is_exempt(self, all_models):
        assert filter_by_budget(all_models, 1.0, PlanTier.SOVEREIGN, False) == all_models

    def test_high_stakes_is_exempt(self, all_models):
        assert filter_by_budget(all_models, 1.0, PlanTier.STARTER, True) == all_models

    def test_apex_exempt_below_threshold(self, all_models):
        assert filter_by_budget(all_models, 0.85, PlanTier.APEX, False) == all_models

    def test_apex_filtered_at_threshold(self, all_models):
        filtered = filter_by_budget(all_models, 0.95, PlanTier.APEX, False)
        assert all(m.cost_per_1m <= 300 for m in filtered)

    def test_empty_input(self):
        assert filter_by_budget([], 1.0, PlanTier.STARTER, False) == []

    def test_custom_thresholds(self, all_models):
        strict = CostThresholds(cheap=30, medium=50, expensive=100)
        ids = _ids(filter_by_budget(all_models, 0.95, PlanTier.PRO, False, strict))
        assert ids == ["gemini-2.0-flash"]


class TestCostThresholds:

    def test_from_config(self):
        t = CostThresholds.from_config(Config())
        assert (t.cheap, t.medium, t.expensive, t.apex_budget_threshold) == (300, 500, 900, 0.9)

    def test_rejects_unordered(self):
        with pytest.raises(ValueError, match="cheap <= medium <= expensive"):
            CostThresholds(cheap=600, medium=500, expensive=900)
