"""
Monthly planning API endpoints - per-goal requirements, fixed-budget plans, goal plans

Requirements, schedules, previews, flex simulation and recalculation are
recomputed from current goals, allocations and rates on every call. Only
the per-month goal plans under /goal-plans are persisted.
"""
import asyncio
from dataclasses import asdict
from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_rate_provider, get_planning_settings, http_error
from app.application.budget_planning import BudgetPlanningService, PlanningValidationError
from app.application.goal_plans import MonthlyGoalPlanService, effective_amount
from app.domain.execution import ExecutionError
from app.domain.planning import (
    FeasibilityResult, BudgetCalculatorPlan, AdjustmentSimulation,
    STRATEGY_BALANCED, COMPLETION_FINISH_FASTER,
)
from app.domain.planning_settings import PlanningSettings
from app.infrastructure.rates import RateProvider


router = APIRouter(prefix="/api/v1/planning", tags=["planning"])


class PreviewRequest(BaseModel):
    monthly_budget: str
    currency: str | None = None


class CustomAmountRequest(BaseModel):
    amount: str | None = None


class FlexRequest(BaseModel):
    adjustment: str


class FlexSimulationRequest(BaseModel):
    adjustment: str
    strategy: str = STRATEGY_BALANCED
    month_label: str | None = None
    protected_goal_ids: list[str] | None = None
    skipped_goal_ids: list[str] | None = None


class RecalculateRequest(BaseModel):
    actual_contribution: str
    payment_number: int
    behavior: str = COMPLETION_FINISH_FASTER
    monthly_budget: str | None = None
    currency: str | None = None


def _jsonable(value):
    """Decimals as strings, dates as ISO strings, recursively"""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return value


def _feasibility_dict(result: FeasibilityResult) -> dict:
    return _jsonable({
        "is_feasible": result.is_feasible,
        "monthly_budget": result.monthly_budget,
        "currency": result.currency,
        "minimum_required": result.minimum_required,
        "status_level": result.status_level,
        "total_shortfall": result.total_shortfall,
        "infeasible_goals": [asdict(g) for g in result.infeasible_goals],
        "suggestions": [{"kind": s.kind, **asdict(s)} for s in result.suggestions],
        "skipped_goal_ids": result.skipped_goal_ids,
        "late_goal_ids": result.late_goal_ids,
        "meets_all_deadlines": result.meets_all_deadlines,
        "has_rate_warnings": result.has_rate_warnings,
    })


def _plan_dict(plan: BudgetCalculatorPlan) -> dict:
    return _jsonable({
        "monthly_budget": plan.monthly_budget,
        "currency": plan.currency,
        "minimum_required": plan.minimum_required,
        "is_leveled": plan.is_leveled,
        "is_fully_funded": plan.is_fully_funded,
        "total_amount": plan.total_amount,
        "total_months": plan.total_months,
        "start_date": plan.start_date,
        "end_date": plan.end_date,
        "goal_remaining_by_id": plan.goal_remaining_by_id,
        "unfunded_by_goal_id": plan.unfunded_by_goal_id,
        "completion_date_by_goal_id": plan.completion_date_by_goal_id,
        "skipped_goal_ids": plan.skipped_goal_ids,
        "late_goal_ids": plan.late_goal_ids,
        "has_rate_warnings": plan.has_rate_warnings,
        "schedule": [
            {
                "payment_number": p.payment_number,
                "payment_date": p.payment_date,
                "total": p.total,
                "contributions": [asdict(c) for c in p.contributions],
            }
            for p in plan.schedule
        ],
    })


def _service(db, rates, settings) -> BudgetPlanningService:
    return BudgetPlanningService(db, rates, settings)


@router.get("/requirements")
def monthly_requirements(
    db: Session = Depends(get_db),
    rates: RateProvider = Depends(get_rate_provider),
    settings: PlanningSettings = Depends(get_planning_settings),
):
    """Per-goal mode: what each goal needs per month in its own currency"""
    requirements = asyncio.run(_service(db, rates, settings).monthly_requirements())
    return [_jsonable(asdict(r)) for r in requirements]


@router.get("/feasibility")
def check_feasibility(
    monthly_budget: str | None = None,
    currency: str | None = None,
    db: Session = Depends(get_db),
    rates: RateProvider = Depends(get_rate_provider),
    settings: PlanningSettings = Depends(get_planning_settings),
):
    try:
        result = asyncio.run(_service(db, rates, settings).check_feasibility(monthly_budget, currency))
    except PlanningValidationError as e:
        raise http_error(e)
    return _feasibility_dict(result)


@router.get("/schedule")
def generate_schedule(
    monthly_budget: str | None = None,
    currency: str | None = None,
    db: Session = Depends(get_db),
    rates: RateProvider = Depends(get_rate_provider),
    settings: PlanningSettings = Depends(get_planning_settings),
):
    try:
        plan = asyncio.run(_service(db, rates, settings).generate_schedule(monthly_budget, currency))
    except PlanningValidationError as e:
        raise http_error(e)
    return _plan_dict(plan)


@router.post("/preview")
def preview(
    req: PreviewRequest,
    db: Session = Depends(get_db),
    rates: RateProvider = Depends(get_rate_provider),
    settings: PlanningSettings = Depends(get_planning_settings),
):
    """What-if: feasibility, schedule and timeline blocks for any budget"""
    try:
        result = asyncio.run(_service(db, rates, settings).preview(req.monthly_budget, req.currency))
    except PlanningValidationError as e:
        raise http_error(e)
    return {
        "feasibility": _feasibility_dict(result.feasibility),
        "plan": _plan_dict(result.plan),
        "blocks": [_jsonable(asdict(b)) for b in result.blocks],
        "stale_goal_ids": result.stale_goal_ids,
    }


@router.get("/minimum-budget")
def minimum_budget(
    currency: str | None = None,
    db: Session = Depends(get_db),
    rates: RateProvider = Depends(get_rate_provider),
    settings: PlanningSettings = Depends(get_planning_settings),
):
    """Smallest monthly budget that meets every deadline"""
    service = _service(db, rates, settings)
    try:
        value = asyncio.run(service.minimum_budget(currency))
    except PlanningValidationError as e:
        raise http_error(e)
    return {"currency": (currency or settings.budget_currency).upper(), "minimum_budget": str(value)}


@router.post("/flex/simulate")
def simulate_flex(
    req: FlexSimulationRequest,
    db: Session = Depends(get_db),
    rates: RateProvider = Depends(get_rate_provider),
    settings: PlanningSettings = Depends(get_planning_settings),
):
    """What-if flex adjustment of the per-goal requirements"""
    try:
        simulation = asyncio.run(_service(db, rates, settings).flex_preview(
            req.adjustment,
            strategy=req.strategy,
            month_label=req.month_label,
            protected_goal_ids=req.protected_goal_ids,
            skipped_goal_ids=req.skipped_goal_ids,
        ))
    except PlanningValidationError as e:
        raise http_error(e)
    return _simulation_dict(simulation)


@router.post("/recalculate")
def recalculate(
    req: RecalculateRequest,
    db: Session = Depends(get_db),
    rates: RateProvider = Depends(get_rate_provider),
    settings: PlanningSettings = Depends(get_planning_settings),
):
    """Schedule after one payment was made with a different amount"""
    try:
        result = asyncio.run(_service(db, rates, settings).recalculate_after_contribution(
            req.actual_contribution,
            req.payment_number,
            behavior=req.behavior,
            monthly_budget=req.monthly_budget,
            currency=req.currency,
        ))
    except PlanningValidationError as e:
        raise http_error(e)
    return {
        "previous": _plan_dict(result.previous),
        "plan": _plan_dict(result.plan),
        "difference": str(result.difference),
        "new_monthly_amount": _jsonable(result.new_monthly_amount),
        "months_saved": result.months_saved,
    }


# ------------------------------------------------------------------
# Per-month goal plans
# ------------------------------------------------------------------


def _goal_plan_dict(plan) -> dict:
    return _jsonable({
        "id": plan.id,
        "goal_id": plan.goal_id,
        "month_label": plan.month_label,
        "currency": plan.currency,
        "required_monthly": plan.required_monthly,
        "remaining_amount": plan.remaining_amount,
        "months_remaining": plan.months_remaining,
        "status": plan.status,
        "state": plan.state,
        "custom_amount": plan.custom_amount,
        "is_protected": plan.is_protected,
        "is_skipped": plan.is_skipped,
        "effective_amount": effective_amount(plan),
    })


def _simulation_dict(simulation: AdjustmentSimulation) -> dict:
    return _jsonable({
        "total_original": simulation.total_original,
        "total_adjusted": simulation.total_adjusted,
        "total_savings": simulation.total_savings,
        "total_reduced": simulation.total_reduced,
        "total_redistributed": simulation.total_redistributed,
        "affected_goals": simulation.affected_goals,
        "adjusted": [
            {
                "goal_id": a.goal_id,
                "goal_name": a.requirement.name,
                "currency": a.requirement.currency,
                "required_monthly": a.requirement.required_monthly,
                "adjusted_amount": a.adjusted_amount,
                "reason": a.reason,
                "is_protected": a.is_protected,
                "is_skipped": a.is_skipped,
                "adjustment_factor": a.adjustment_factor,
                "redistribution_amount": a.redistribution_amount,
                "impact": asdict(a.impact),
            }
            for a in simulation.adjusted
        ],
    })


def _goal_plans(db, rates, settings) -> MonthlyGoalPlanService:
    return MonthlyGoalPlanService(db, rates, settings)


@router.get("/goal-plans/{month_label}")
def list_goal_plans(
    month_label: str,
    db: Session = Depends(get_db),
    rates: RateProvider = Depends(get_rate_provider),
    settings: PlanningSettings = Depends(get_planning_settings),
):
    try:
        plans = _goal_plans(db, rates, settings).plans_for(month_label)
    except ValueError as e:
        raise http_error(e)
    return [_goal_plan_dict(p) for p in plans]


@router.post("/goal-plans/{month_label}/sync")
def sync_goal_plans(
    month_label: str,
    db: Session = Depends(get_db),
    rates: RateProvider = Depends(get_rate_provider),
    settings: PlanningSettings = Depends(get_planning_settings),
):
    """Create or refresh one plan per active goal; overrides are kept"""
    try:
        plans = asyncio.run(_goal_plans(db, rates, settings).sync_plans(month_label))
    except ValueError as e:
        raise http_error(e)
    return [_goal_plan_dict(p) for p in plans]


@router.post("/goal-plans/{month_label}/{goal_id}/protect")
def toggle_protected(
    month_label: str,
    goal_id: str,
    db: Session = Depends(get_db),
    rates: RateProvider = Depends(get_rate_provider),
    settings: PlanningSettings = Depends(get_planning_settings),
):
    try:
        plan = _goal_plans(db, rates, settings).toggle_protected(month_label, goal_id)
    except ValueError as e:
        raise http_error(e)
    return _goal_plan_dict(plan)


@router.post("/goal-plans/{month_label}/{goal_id}/skip")
def toggle_skipped(
    month_label: str,
    goal_id: str,
    db: Session = Depends(get_db),
    rates: RateProvider = Depends(get_rate_provider),
    settings: PlanningSettings = Depends(get_planning_settings),
):
    try:
        plan = _goal_plans(db, rates, settings).toggle_skipped(month_label, goal_id)
    except ValueError as e:
        raise http_error(e)
    return _goal_plan_dict(plan)


@router.put("/goal-plans/{month_label}/{goal_id}/custom-amount")
def set_custom_amount(
    month_label: str,
    goal_id: str,
    req: CustomAmountRequest,
    db: Session = Depends(get_db),
    rates: RateProvider = Depends(get_rate_provider),
    settings: PlanningSettings = Depends(get_planning_settings),
):
    """Fixed amount for the month; a null amount goes back to the requirement"""
    try:
        plan = _goal_plans(db, rates, settings).set_custom_amount(month_label, goal_id, req.amount)
    except ValueError as e:
        raise http_error(e)
    return _goal_plan_dict(plan)


@router.post("/goal-plans/{month_label}/flex")
def apply_flex(
    month_label: str,
    req: FlexRequest,
    db: Session = Depends(get_db),
    rates: RateProvider = Depends(get_rate_provider),
    settings: PlanningSettings = Depends(get_planning_settings),
):
    """Scale every flexible draft plan of the month; 409 once the month is executing"""
    try:
        plans = _goal_plans(db, rates, settings).apply_flex_adjustment(month_label, req.adjustment)
    except (ExecutionError, ValueError) as e:
        raise http_error(e)
    return [_goal_plan_dict(p) for p in plans]
