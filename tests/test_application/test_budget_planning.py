"""
Tests for the budget planning service
"""
import asyncio
from datetime import date, timedelta
from decimal import Decimal

import pytest

from app.application.allocations import AllocationLedger
from app.application.budget_planning import BudgetPlanningService, PlanningValidationError
from app.application.goal_plans import MonthlyGoalPlanService
from app.domain.planning import LEVEL_AT_RISK, ReduceTarget, COMPLETION_LOWER_PAYMENTS
from app.domain.planning_settings import PlanningSettings

TODAY = date(2025, 1, 15)


@pytest.fixture
def service(db_session, rates):
    return BudgetPlanningService(db_session, rates, PlanningSettings(monthly_budget=Decimal("200")))


@pytest.fixture
def two_goals(make_goal):
    """a: 1200 over 12 months, b: 600 over 6 months"""
    a = make_goal(name="A", target="1200", deadline=TODAY + timedelta(days=360), start_date=TODAY)
    b = make_goal(name="B", target="600", deadline=TODAY + timedelta(days=180), start_date=TODAY)
    return a, b


def test_feasibility_uses_configured_budget(service, two_goals):
    result = asyncio.run(service.check_feasibility(today=TODAY))

    assert result.is_feasible is True
    assert result.minimum_required == Decimal("200")
    assert result.currency == "USD"


def test_allocations_lower_the_requirement(db_session, service, two_goals, make_asset):
    goal_a, _ = two_goals
    asset_id = make_asset(deposit="600")
    AllocationLedger(db_session).allocate(asset_id, goal_a, "600")

    result = asyncio.run(service.check_feasibility(today=TODAY))

    # a now needs 600 / 12 = 50
    assert result.minimum_required == Decimal("150")


def test_infeasible_budget_override(service, two_goals):
    result = asyncio.run(service.check_feasibility(monthly_budget="150", today=TODAY))

    assert result.is_feasible is False
    assert result.status_level == LEVEL_AT_RISK


def test_goal_in_another_currency_is_converted(db_session, make_goal, rates):
    make_goal(name="Trip", currency="EUR", target="1000", deadline=TODAY + timedelta(days=300), start_date=TODAY)
    service = BudgetPlanningService(db_session, rates)

    result = asyncio.run(service.check_feasibility(monthly_budget="55", currency="usd", today=TODAY))

    reduce = [s for s in result.suggestions if isinstance(s, ReduceTarget)][0]
    assert result.minimum_required == Decimal("110")
    assert reduce.currency == "EUR"
    assert reduce.new_amount == Decimal("500")


def test_goal_without_rate_is_skipped(db_session, service, two_goals, make_goal):
    odd = make_goal(name="Odd", currency="XYZ", target="100", deadline=TODAY + timedelta(days=60), start_date=TODAY)

    result = asyncio.run(service.check_feasibility(today=TODAY))

    assert result.is_feasible is True
    assert result.skipped_goal_ids == [odd]


def test_missing_budget_is_an_error(db_session, rates, two_goals):
    service = BudgetPlanningService(db_session, rates, PlanningSettings())

    with pytest.raises(PlanningValidationError):
        asyncio.run(service.check_feasibility(today=TODAY))


def test_negative_budget_is_an_error(service, two_goals):
    with pytest.raises(PlanningValidationError):
        asyncio.run(service.generate_schedule(monthly_budget="-5", today=TODAY))


def test_preview(service, two_goals):
    goal_a, goal_b = two_goals

    preview = asyncio.run(service.preview("200", today=TODAY))

    assert preview.feasibility.is_feasible is True
    assert preview.plan.total_amount == Decimal("1800")
    assert preview.plan.start_date == date(2025, 2, 1)
    assert [b.goal_id for b in preview.blocks] == [goal_b, goal_a]
    assert preview.stale_goal_ids == []


def test_preview_reports_stale_totals(db_session, service, two_goals, make_asset):
    goal_a, _ = two_goals
    doge = make_asset(currency="DOGE", deposit="100")
    AllocationLedger(db_session).allocate(doge, goal_a, "100")

    preview = asyncio.run(service.preview("200", today=TODAY))

    assert preview.stale_goal_ids == [goal_a]
    assert service.stale_goal_ids == [goal_a]


def test_monthly_requirements_in_goal_currency(db_session, make_goal, rates):
    make_goal(name="Trip", currency="EUR", target="1000", deadline=TODAY + timedelta(days=300), start_date=TODAY)

    requirements = asyncio.run(BudgetPlanningService(db_session, rates).monthly_requirements(TODAY))

    assert len(requirements) == 1
    assert requirements[0].currency == "EUR"
    assert requirements[0].required_monthly == Decimal("100")


def test_minimum_budget(service, two_goals):
    # b: 600 / 6 = 100, then a + b: 1800 / 12 = 150
    assert asyncio.run(service.minimum_budget(today=TODAY)) == Decimal("150.00")


# === Flex preview ===

def test_flex_preview_scales_every_goal(service, two_goals):
    goal_a, goal_b = two_goals

    simulation = asyncio.run(service.flex_preview("0.5", today=TODAY))

    assert [a.goal_id for a in simulation.adjusted] == [goal_a, goal_b]
    assert simulation.total_original == Decimal("200")
    assert simulation.total_adjusted == Decimal("100.0")


def test_flex_preview_reads_overrides_from_goal_plans(db_session, rates, service, two_goals):
    goal_a, goal_b = two_goals
    plans = MonthlyGoalPlanService(db_session, rates)
    asyncio.run(plans.sync_plans("2025-01", today=TODAY))
    plans.toggle_protected("2025-01", goal_a)

    simulation = asyncio.run(service.flex_preview("0.5", month_label="2025-01", today=TODAY))

    adjusted = {a.goal_id: a for a in simulation.adjusted}
    assert adjusted[goal_a].is_protected is True
    assert adjusted[goal_a].adjusted_amount == Decimal("100")
    assert adjusted[goal_b].adjusted_amount == Decimal("50.0")


def test_flex_preview_rejects_bad_input(service, two_goals):
    with pytest.raises(PlanningValidationError):
        asyncio.run(service.flex_preview("lots", today=TODAY))
    with pytest.raises(PlanningValidationError):
        asyncio.run(service.flex_preview("0.5", strategy="random", today=TODAY))
    with pytest.raises(PlanningValidationError):
        asyncio.run(service.flex_preview("0.5", month_label="2025-13", today=TODAY))


# === Recalculation ===

def test_recalculate_lower_payments(service, two_goals):
    # Plan at 200: b in payments 1-3, a in payments 4-9
    result = asyncio.run(service.recalculate_after_contribution(
        "400", 1, behavior=COMPLETION_LOWER_PAYMENTS, today=TODAY,
    ))

    assert result.previous.total_months == 9
    assert result.difference == Decimal("200")
    # (1800 - 400) / 8 remaining payments
    assert result.plan.monthly_budget == Decimal("175.00")
    assert result.new_monthly_amount == Decimal("175")
    assert result.months_saved is None


def test_recalculate_finish_faster(service, two_goals):
    result = asyncio.run(service.recalculate_after_contribution("400", 1, today=TODAY))

    assert result.plan.monthly_budget == Decimal("200")
    assert result.months_saved == 1
    assert result.new_monthly_amount is None


def test_recalculate_rejects_bad_input(service, two_goals):
    with pytest.raises(PlanningValidationError):
        asyncio.run(service.recalculate_after_contribution("-1", 1, today=TODAY))
    with pytest.raises(PlanningValidationError):
        asyncio.run(service.recalculate_after_contribution("400", 10, today=TODAY))
    with pytest.raises(PlanningValidationError):
        asyncio.run(service.recalculate_after_contribution("400", 1, behavior="pause", today=TODAY))
