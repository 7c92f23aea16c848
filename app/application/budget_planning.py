"""
Budget planning service - resolves totals and rates, then runs the pure planners

Rates are fetched once per call (goal currency -> budget currency). A goal
whose rate is unavailable gets rate_to_budget=None and the planners skip it
and flag the result.
"""
import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import List, Optional
from sqlalchemy.orm import Session

from app.application.allocations import AllocationLedger
from app.domain.planning import (
    PlanningGoal, MonthlyRequirement, FeasibilityAnalyzer, FeasibilityResult,
    ContributionScheduler, BudgetCalculatorPlan, ScheduledGoalBlock, AdjustmentSimulation,
    build_timeline_blocks, requirement_for, minimum_budget, simulate_flex_adjustment,
    contribution_difference, adjusted_schedule_summary,
    REDISTRIBUTION_STRATEGIES, STRATEGY_BALANCED, COMPLETION_BEHAVIORS, COMPLETION_FINISH_FASTER,
)
from app.domain.planning_settings import PlanningSettings
from app.infrastructure.rates import RateProvider, RateUnavailableError
from app.infrastructure.repositories import GoalRepository, MonthlyGoalPlanRepository
from app.utils.dates import utcnow, parse_month_label
from app.utils.validation import parse_amount, normalize_currency

logger = logging.getLogger(__name__)


class PlanningValidationError(ValueError):
    """Budget planning input error"""
    pass


@dataclass
class PlanPreview:
    """What-if result for one budget: nothing is persisted"""
    feasibility: FeasibilityResult
    plan: BudgetCalculatorPlan
    blocks: List[ScheduledGoalBlock]
    stale_goal_ids: List[str] = field(default_factory=list)


@dataclass
class Recalculation:
    """Plan before and after an off-plan contribution"""
    previous: BudgetCalculatorPlan
    plan: BudgetCalculatorPlan
    difference: Decimal
    new_monthly_amount: Optional[Decimal] = None
    months_saved: Optional[int] = None


class BudgetPlanningService:
    """
    Fixed-budget and per-goal planning over the active goals
    """

    def __init__(
        self,
        db: Session,
        rate_provider: RateProvider,
        settings: PlanningSettings | None = None,
    ):
        self.db = db
        self.rate_provider = rate_provider
        self.settings = settings or PlanningSettings()
        self.ledger = AllocationLedger(db, rate_provider)
        self.analyzer = FeasibilityAnalyzer(self.settings)
        self.scheduler = ContributionScheduler(self.settings)
        self._stale_goal_ids: List[str] = []

    async def build_planning_goals(self, currency: Optional[str] = None) -> List[PlanningGoal]:
        """Active goals with current totals and goal->budget rates resolved"""
        currency = self._currency(currency)
        self._stale_goal_ids = []
        goals: List[PlanningGoal] = []

        for goal in GoalRepository(self.db).get_active():
            total = await self.ledger.total_allocated_for_goal(goal.id)
            if total.is_stale:
                self._stale_goal_ids.append(goal.id)

            goals.append(PlanningGoal(
                goal_id=goal.id,
                name=goal.name,
                currency=goal.currency,
                target_amount=Decimal(goal.target_amount),
                current_total=total.amount,
                deadline=goal.deadline,
                emoji=goal.emoji,
                rate_to_budget=await self._rate(goal.currency, currency),
            ))
        return goals

    async def check_feasibility(
        self,
        monthly_budget=None,
        currency: Optional[str] = None,
        today: date | None = None,
    ) -> FeasibilityResult:
        currency = self._currency(currency)
        goals = await self.build_planning_goals(currency)
        return self.analyzer.analyze(goals, self._budget(monthly_budget), currency, self._today(today))

    async def generate_schedule(
        self,
        monthly_budget=None,
        currency: Optional[str] = None,
        today: date | None = None,
    ) -> BudgetCalculatorPlan:
        currency = self._currency(currency)
        goals = await self.build_planning_goals(currency)
        return self.scheduler.build_plan(goals, self._budget(monthly_budget), currency, self._today(today))

    async def preview(
        self,
        monthly_budget,
        currency: Optional[str] = None,
        today: date | None = None,
    ) -> PlanPreview:
        """Feasibility, schedule and timeline blocks for an arbitrary budget"""
        currency = self._currency(currency)
        budget = self._budget(monthly_budget)
        today = self._today(today)

        goals = await self.build_planning_goals(currency)
        plan = self.scheduler.build_plan(goals, budget, currency, today)
        return PlanPreview(
            feasibility=self.analyzer.analyze(goals, budget, currency, today),
            plan=plan,
            blocks=build_timeline_blocks(plan, goals),
            stale_goal_ids=list(self._stale_goal_ids),
        )

    async def monthly_requirements(self, today: date | None = None) -> List[MonthlyRequirement]:
        """Per-goal mode: each goal's own monthly requirement in its currency"""
        today = self._today(today)
        requirements = []
        for goal in GoalRepository(self.db).get_active():
            total = await self.ledger.total_allocated_for_goal(goal.id)
            requirements.append(requirement_for(PlanningGoal(
                goal_id=goal.id,
                name=goal.name,
                currency=goal.currency,
                target_amount=Decimal(goal.target_amount),
                current_total=total.amount,
                deadline=goal.deadline,
                emoji=goal.emoji,
            ), today))
        return requirements

    async def minimum_budget(self, currency: Optional[str] = None, today: date | None = None) -> Decimal:
        """Leveled budget: the smallest one that meets every deadline"""
        goals = await self.build_planning_goals(currency)
        return minimum_budget(goals, self._today(today))

    async def flex_preview(
        self,
        adjustment,
        strategy: str = STRATEGY_BALANCED,
        month_label: Optional[str] = None,
        protected_goal_ids=None,
        skipped_goal_ids=None,
        today: date | None = None,
    ) -> AdjustmentSimulation:
        """
        What-if flex adjustment over the per-goal requirements

        Protected and skipped goals default to the month's saved goal plans
        when month_label is given.
        """
        try:
            factor = parse_amount(adjustment)
        except ValueError as exc:
            raise PlanningValidationError(str(exc))
        if strategy not in REDISTRIBUTION_STRATEGIES:
            raise PlanningValidationError(f"Unknown redistribution strategy: {strategy}")

        if month_label is not None and (protected_goal_ids is None or skipped_goal_ids is None):
            try:
                parse_month_label(month_label)
            except ValueError as exc:
                raise PlanningValidationError(str(exc))
            saved = MonthlyGoalPlanRepository(self.db).for_month(month_label)
            if protected_goal_ids is None:
                protected_goal_ids = [p.goal_id for p in saved if p.is_protected]
            if skipped_goal_ids is None:
                skipped_goal_ids = [p.goal_id for p in saved if p.is_skipped]

        requirements = await self.monthly_requirements(today)
        return simulate_flex_adjustment(
            requirements,
            factor,
            protected_goal_ids or (),
            skipped_goal_ids or (),
            strategy,
        )

    async def recalculate_after_contribution(
        self,
        actual_contribution,
        payment_number: int,
        behavior: str = COMPLETION_FINISH_FASTER,
        monthly_budget=None,
        currency: Optional[str] = None,
        today: date | None = None,
    ) -> Recalculation:
        """
        Schedule after payment `payment_number` of the current plan was made
        with `actual_contribution` instead of the planned amount
        """
        currency = self._currency(currency)
        budget = self._budget(monthly_budget)
        today = self._today(today)
        try:
            actual = parse_amount(actual_contribution)
        except ValueError as exc:
            raise PlanningValidationError(str(exc))
        if actual < 0:
            raise PlanningValidationError("Contribution cannot be negative")
        if behavior not in COMPLETION_BEHAVIORS:
            raise PlanningValidationError(f"Unknown completion behavior: {behavior}")

        goals = await self.build_planning_goals(currency)
        plan = self.scheduler.build_plan(goals, budget, currency, today)
        try:
            recalculated = self.scheduler.recalculate_after_contribution(
                plan, goals, actual, payment_number, behavior, today,
            )
        except ValueError as exc:
            raise PlanningValidationError(str(exc))

        new_monthly, months_saved = adjusted_schedule_summary(plan, actual, payment_number, behavior)
        logger.info(
            "Plan recalculated after payment %d (%s): budget %s -> %s",
            payment_number, behavior, budget, recalculated.monthly_budget,
        )
        return Recalculation(
            previous=plan,
            plan=recalculated,
            difference=contribution_difference(plan, actual, payment_number),
            new_monthly_amount=new_monthly,
            months_saved=months_saved,
        )

    @property
    def stale_goal_ids(self) -> List[str]:
        """Goals whose last resolved total left out an asset"""
        return list(self._stale_goal_ids)

    async def _rate(self, goal_currency: str, budget_currency: str) -> Optional[Decimal]:
        if goal_currency.upper() == budget_currency.upper():
            return Decimal("1")
        try:
            return await self.rate_provider.rate(goal_currency.upper(), budget_currency.upper())
        except RateUnavailableError:
            logger.warning("Rate %s->%s unavailable, goal skipped in planning", goal_currency, budget_currency)
            return None

    def _currency(self, currency: Optional[str]) -> str:
        try:
            return normalize_currency(currency or self.settings.budget_currency)
        except ValueError as exc:
            raise PlanningValidationError(str(exc))

    def _budget(self, monthly_budget) -> Decimal:
        if monthly_budget is None:
            monthly_budget = self.settings.monthly_budget
        if monthly_budget is None:
            raise PlanningValidationError("Monthly budget is not set")
        try:
            budget = parse_amount(monthly_budget)
        except ValueError as exc:
            raise PlanningValidationError(str(exc))
        if budget < 0:
            raise PlanningValidationError("Monthly budget cannot be negative")
        return budget

    @staticmethod
    def _today(today: date | None) -> date:
        return today or utcnow().date()
