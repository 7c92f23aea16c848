"""
Tests for per-month goal plans
"""
import asyncio
from decimal import Decimal

import pytest

from app.application.allocations import AllocationLedger
from app.application.execution import ExecutionTrackingService
from app.application.goal_plans import (
    MonthlyGoalPlanService, GoalPlanValidationError, GoalPlanNotFoundError, GoalPlanLockedError,
)
from app.application.goals import DeleteGoalUseCase
from app.domain.planning import PLAN_STATE_EXECUTING
from app.domain.planning_settings import PlanningSettings
from app.infrastructure.db.models import EventLog, MonthlyGoalPlanModel

MONTH = "2025-03"


@pytest.fixture
def service(db_session, rates, clock):
    return MonthlyGoalPlanService(db_session, rates, PlanningSettings(), clock)


@pytest.fixture
def goals(make_goal):
    """Two USD goals needing 100 / month each on 2025-03-10 (ten planning months)"""
    return make_goal(name="Car", target="1000"), make_goal(name="Sofa", target="1000")


def synced(service):
    return {p.goal_id: p for p in asyncio.run(service.sync_plans(MONTH))}


class TestSync:
    def test_creates_one_draft_plan_per_goal(self, db_session, service, goals):
        plans = synced(service)

        assert set(plans) == set(goals)
        for plan in plans.values():
            assert plan.state == "draft"
            assert plan.required_monthly == Decimal("100")
            assert plan.months_remaining == 10
            assert plan.custom_amount is None
        assert db_session.query(EventLog).filter_by(event_type="goal_plans_synced").count() == 1

    def test_resync_refreshes_figures_and_keeps_overrides(self, db_session, service, goals, make_goal, make_asset):
        car, _ = goals
        synced(service)
        service.toggle_protected(MONTH, car)
        service.set_custom_amount(MONTH, car, "80")

        asset = make_asset(deposit="100")
        AllocationLedger(db_session).allocate(asset, car, "100")
        bike = make_goal(name="Bike", target="500")
        plans = synced(service)

        assert plans[car].required_monthly == Decimal("90")
        assert plans[car].is_protected is True
        assert plans[car].custom_amount == Decimal("80")
        assert bike in plans
        assert len(service.plans_for(MONTH)) == 3

    def test_invalid_month_label(self, service, goals):
        with pytest.raises(ValueError):
            asyncio.run(service.sync_plans("March"))


class TestOverrides:
    def test_protect_and_skip_are_exclusive(self, service, goals):
        car, _ = goals
        synced(service)

        plan = service.toggle_skipped(MONTH, car)
        assert (plan.is_protected, plan.is_skipped) == (False, True)

        plan = service.toggle_protected(MONTH, car)
        assert (plan.is_protected, plan.is_skipped) == (True, False)

    def test_custom_amount(self, service, goals):
        car, _ = goals
        synced(service)
        service.toggle_skipped(MONTH, car)

        plan = service.set_custom_amount(MONTH, car, "75.50")
        assert plan.custom_amount == Decimal("75.50")
        assert plan.is_skipped is False

        plan = service.set_custom_amount(MONTH, car, None)
        assert plan.custom_amount is None

    @pytest.mark.parametrize("amount", ["-1", "lots"])
    def test_bad_custom_amount(self, service, goals, amount):
        synced(service)

        with pytest.raises(GoalPlanValidationError):
            service.set_custom_amount(MONTH, goals[0], amount)

    def test_unknown_plan(self, service, goals):
        synced(service)

        with pytest.raises(GoalPlanNotFoundError):
            service.toggle_protected(MONTH, "missing")
        with pytest.raises(GoalPlanNotFoundError):
            service.toggle_skipped("2025-04", goals[0])


class TestFlex:
    def test_scales_flexible_plans_only(self, service, goals):
        car, sofa = goals
        synced(service)
        service.toggle_protected(MONTH, car)

        plans = {p.goal_id: p for p in service.apply_flex_adjustment(MONTH, "0.5")}

        assert plans[car].custom_amount is None
        assert plans[sofa].custom_amount == Decimal("50")

    def test_factor_one_clears_custom_amount(self, service, goals):
        _, sofa = goals
        synced(service)
        service.set_custom_amount(MONTH, sofa, "70")

        plans = {p.goal_id: p for p in service.apply_flex_adjustment(MONTH, "1")}

        assert plans[sofa].custom_amount is None

    def test_factor_is_capped(self, service, goals):
        _, sofa = goals
        synced(service)

        plans = {p.goal_id: p for p in service.apply_flex_adjustment(MONTH, "3")}

        assert plans[sofa].custom_amount == Decimal("150")

    def test_completed_goal_cannot_be_scaled(self, db_session, service, goals, make_asset):
        car, _ = goals
        asset = make_asset(deposit="1000")
        AllocationLedger(db_session).allocate(asset, car, "1000")
        synced(service)

        with pytest.raises(GoalPlanValidationError):
            service.apply_flex_adjustment(MONTH, "0.5")

    def test_locked_once_month_is_executing(self, db_session, rates, clock, service, goals):
        synced(service)
        asyncio.run(ExecutionTrackingService(db_session, rates, PlanningSettings(), clock).start_tracking(MONTH))

        assert {p.state for p in service.plans_for(MONTH)} == {PLAN_STATE_EXECUTING}
        with pytest.raises(GoalPlanLockedError):
            service.apply_flex_adjustment(MONTH, "0.5")


def test_snapshot_uses_effective_amount(db_session, rates, clock, service, goals):
    car, sofa = goals
    synced(service)
    service.set_custom_amount(MONTH, car, "42")
    service.toggle_skipped(MONTH, sofa)

    tracking = ExecutionTrackingService(db_session, rates, PlanningSettings(), clock)
    asyncio.run(tracking.start_tracking(MONTH))

    required = {s.goal_id: s.required_amount for s in tracking.snapshot_for(MONTH)}
    assert required == {car: Decimal("42"), sofa: Decimal("0")}


def test_deleting_goal_removes_its_plans(db_session, service, goals):
    car, sofa = goals
    synced(service)

    DeleteGoalUseCase(db_session).execute(car)

    assert [p.goal_id for p in service.plans_for(MONTH)] == [sofa]
    assert db_session.query(MonthlyGoalPlanModel).filter_by(goal_id=car).count() == 0
