"""
Tests for per-month goal plans and flex adjustment
"""
from datetime import date
from decimal import Decimal

import pytest

from app.domain.planning import (
    MonthlyRequirement, MonthlyGoalPlan, apply_flex_adjustment, simulate_flex_adjustment,
    flex_plan_amount, STRATEGY_BALANCED, STRATEGY_PRIORITIZE_URGENT, STRATEGY_PRIORITIZE_LARGEST,
    STRATEGY_MINIMIZE_RISK, RISK_LOW, RISK_MEDIUM, RISK_HIGH, REQUIREMENT_ON_TRACK,
    PLAN_STATE_DRAFT,
)


def req(goal_id, required, months=6, progress="0"):
    required = Decimal(required)
    return MonthlyRequirement(
        goal_id=goal_id,
        name=goal_id.upper(),
        currency="USD",
        target_amount=required * months,
        current_total=Decimal("0"),
        remaining=required * months,
        months_remaining=months,
        required_monthly=required,
        progress=Decimal(progress),
        deadline=date(2025, 12, 31),
        status=REQUIREMENT_ON_TRACK,
    )


def by_id(adjusted):
    return {a.goal_id: a for a in adjusted}


# === Goal plan ===

class TestMonthlyGoalPlan:
    def plan(self):
        return MonthlyGoalPlan.from_requirement(req("a", "100"), "2025-03")

    def test_new_plan_is_a_draft_at_the_requirement(self):
        plan = self.plan()

        assert plan.state == PLAN_STATE_DRAFT
        assert plan.is_draft is True
        assert plan.remaining_amount == Decimal("600")
        assert plan.effective_amount == Decimal("100")

    def test_protect_and_skip_are_exclusive(self):
        plan = self.plan()

        plan.toggle_protected()
        assert (plan.is_protected, plan.is_skipped) == (True, False)

        plan.toggle_skipped()
        assert (plan.is_protected, plan.is_skipped) == (False, True)
        assert plan.effective_amount == Decimal("0")

        plan.toggle_protected()
        assert (plan.is_protected, plan.is_skipped) == (True, False)

        plan.toggle_protected()
        assert (plan.is_protected, plan.is_skipped) == (False, False)

    def test_custom_amount_replaces_requirement_and_unskips(self):
        plan = self.plan()
        plan.toggle_skipped()

        plan.set_custom_amount(Decimal("42"))

        assert plan.is_skipped is False
        assert plan.effective_amount == Decimal("42")

        plan.set_custom_amount(None)
        assert plan.effective_amount == Decimal("100")

    def test_negative_custom_amount_rejected(self):
        with pytest.raises(ValueError):
            self.plan().set_custom_amount(Decimal("-1"))

    def test_refresh_keeps_overrides(self):
        plan = self.plan()
        plan.toggle_protected()
        plan.set_custom_amount(Decimal("80"))

        plan.refresh(req("a", "120", months=5))

        assert plan.required_monthly == Decimal("120")
        assert plan.months_remaining == 5
        assert plan.is_protected is True
        assert plan.custom_amount == Decimal("80")


def test_flex_plan_amount():
    plan = MonthlyGoalPlan.from_requirement(req("a", "100"), "2025-03")

    assert flex_plan_amount(plan, Decimal("1")) is None
    assert flex_plan_amount(plan, Decimal("0.5")) == Decimal("50.0")
    with pytest.raises(ValueError):
        flex_plan_amount(plan, Decimal("0"))


# === Flex adjustment ===

def test_reduction_with_protected_and_skipped_goals():
    requirements = [req("a", "100"), req("b", "200"), req("c", "50")]

    adjusted = apply_flex_adjustment(
        requirements, "0.5", protected_goal_ids=["b"], skipped_goal_ids=["c"],
    )

    assert [a.goal_id for a in adjusted] == ["a", "b", "c"]
    a, b, c = adjusted

    assert a.adjusted_amount == Decimal("50.0")
    assert a.reason == "Adjusted"
    assert a.has_been_reduced is True
    assert a.impact.change_percentage == Decimal("-50")
    assert a.impact.risk_level == RISK_MEDIUM
    assert a.impact.estimated_delay_months == 6

    assert b.adjusted_amount == Decimal("200")
    assert b.is_protected is True
    assert b.impact.risk_level == RISK_LOW

    assert c.adjusted_amount == Decimal("0")
    assert c.is_skipped is True
    assert c.reason == "Skipped this month"
    assert c.impact.risk_level == RISK_HIGH
    assert c.impact.estimated_delay_months == 0


def test_factor_is_clamped_and_amounts_held_between_floor_and_cap():
    requirements = [req("a", "100"), req("b", "300")]

    low = by_id(apply_flex_adjustment(requirements, "-1"))
    assert low["a"].adjustment_factor == Decimal("0")
    assert low["a"].adjusted_amount == Decimal("10.00")
    assert low["b"].adjusted_amount == Decimal("30.00")

    high = by_id(apply_flex_adjustment(requirements, "5"))
    assert high["a"].adjustment_factor == Decimal("2")
    assert high["a"].adjusted_amount == Decimal("150.00")
    assert high["b"].adjusted_amount == Decimal("450.00")


@pytest.mark.parametrize("strategy", [STRATEGY_BALANCED, STRATEGY_PRIORITIZE_LARGEST])
def test_capped_goals_get_no_share_of_the_excess(strategy):
    requirements = [req("a", "100", months=2), req("b", "300")]

    adjusted = by_id(apply_flex_adjustment(requirements, "2", strategy=strategy))

    assert adjusted["a"].adjusted_amount == Decimal("150.00")
    assert adjusted["b"].adjusted_amount == Decimal("450.00")
    assert adjusted["a"].redistribution_amount == Decimal("0")


def test_urgent_strategy_feeds_closest_deadline_first():
    requirements = [req("a", "100", months=2), req("b", "300", months=6)]

    adjusted = by_id(apply_flex_adjustment(requirements, "2", strategy=STRATEGY_PRIORITIZE_URGENT))

    # Excess above the cap: 50 + 150; each goal takes up to half its requirement
    assert adjusted["a"].redistribution_amount == Decimal("50.00")
    assert adjusted["a"].adjusted_amount == Decimal("200.00")
    assert adjusted["b"].redistribution_amount == Decimal("150.00")
    assert adjusted["a"].reason == "Urgent priority"
    assert adjusted["a"].has_been_increased is True


def test_risk_strategy_feeds_high_risk_goals_more():
    requirements = [req("a", "100", months=2), req("b", "300", months=6)]

    adjusted = by_id(apply_flex_adjustment(requirements, "2", strategy=STRATEGY_MINIMIZE_RISK))

    # a is high risk (two months left): up to 80%; b low risk: up to 30%
    assert adjusted["a"].redistribution_amount == Decimal("80.00")
    assert adjusted["b"].redistribution_amount == Decimal("90.00")
    assert adjusted["b"].reason == "Risk minimization"


def test_unknown_strategy_rejected():
    with pytest.raises(ValueError):
        apply_flex_adjustment([req("a", "100")], "0.5", strategy="random")


def test_simulation_totals():
    requirements = [req("a", "100"), req("b", "200"), req("c", "50")]

    simulation = simulate_flex_adjustment(
        requirements, "0.5", protected_goal_ids=["b"], skipped_goal_ids=["c"],
    )

    assert simulation.total_original == Decimal("350")
    assert simulation.total_adjusted == Decimal("250.0")
    assert simulation.total_savings == Decimal("100.0")
    assert simulation.total_reduced == Decimal("100.0")
    assert simulation.total_redistributed == Decimal("0")
    assert simulation.affected_goals == 0
    assert simulation.risk_by_goal_id == {"a": RISK_MEDIUM, "b": RISK_LOW, "c": RISK_HIGH}
    assert simulation.delay_by_goal_id == {"a": 6, "b": 0, "c": 0}
