"""
Per-month goal plans - one row per goal per month with protect / skip / custom overrides

sync_plans refreshes the requirement figures from the live goal totals and
keeps the user's overrides. A plan's state follows the month's execution
record; flex adjustment is only allowed while every plan is still a draft.
"""
import logging
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Callable, List, Optional
from sqlalchemy.orm import Session

from app.application.budget_planning import BudgetPlanningService
from app.domain.execution import ExecutionError
from app.domain.planning import (
    MonthlyGoalPlan, PLAN_STATE_DRAFT, PLAN_FLEX_MAX_FACTOR, flex_plan_amount,
)
from app.domain.planning_settings import PlanningSettings
from app.infrastructure.db.models import MonthlyGoalPlanModel
from app.infrastructure.eventlog.repository import EventLogRepository
from app.infrastructure.rates import RateProvider
from app.infrastructure.repositories import MonthlyGoalPlanRepository, ExecutionRecordRepository
from app.utils.dates import utcnow, parse_month_label
from app.utils.validation import parse_amount

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class GoalPlanValidationError(ValueError):
    """Goal plan input error"""
    pass


class GoalPlanNotFoundError(GoalPlanValidationError):
    pass


class GoalPlanLockedError(ExecutionError):
    """The month is already executing or closed"""
    pass


def effective_amount(plan: MonthlyGoalPlanModel, required: Optional[Decimal] = None) -> Decimal:
    """What the user intends to contribute; `required` overrides the stored requirement"""
    if plan.is_skipped:
        return ZERO
    if plan.custom_amount is not None:
        return Decimal(plan.custom_amount)
    return required if required is not None else Decimal(plan.required_monthly)


class MonthlyGoalPlanService:
    """
    Per-goal monthly plans for one month ("YYYY-MM")
    """

    def __init__(
        self,
        db: Session,
        rate_provider: Optional[RateProvider] = None,
        settings: PlanningSettings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.rate_provider = rate_provider
        self.settings = settings or PlanningSettings()
        self.clock = clock
        self.plans = MonthlyGoalPlanRepository(db)
        self.event_repo = EventLogRepository(db)

    def plans_for(self, month_label: str) -> List[MonthlyGoalPlanModel]:
        parse_month_label(month_label)
        plans = self.plans.for_month(month_label)
        self._follow_record_state(month_label, plans)
        return plans

    async def sync_plans(self, month_label: str, today: date | None = None) -> List[MonthlyGoalPlanModel]:
        """
        Create or refresh one plan per active goal

        New goals get a fresh draft plan; existing plans keep protect, skip
        and custom amount.
        """
        parse_month_label(month_label)
        service = BudgetPlanningService(self.db, self.rate_provider, self.settings)
        requirements = await service.monthly_requirements(today or self.clock().date())

        existing = {p.goal_id: p for p in self.plans.for_month(month_label)}
        now = self.clock()
        state = self._record_state(month_label)
        synced: List[MonthlyGoalPlanModel] = []

        for requirement in requirements:
            row = existing.get(requirement.goal_id)
            if row is None:
                plan = MonthlyGoalPlan.from_requirement(requirement, month_label)
                row = self.plans.insert(MonthlyGoalPlanModel(
                    id=uuid.uuid4().hex,
                    goal_id=plan.goal_id,
                    month_label=month_label,
                    required_monthly=plan.required_monthly,
                    remaining_amount=plan.remaining_amount,
                    months_remaining=plan.months_remaining,
                    currency=plan.currency,
                    status=plan.status,
                    state=state,
                    custom_amount=None,
                    is_protected=False,
                    is_skipped=False,
                    created_at=now,
                ))
            else:
                plan = self._to_domain(row)
                plan.refresh(requirement)
                plan.state = state
                self._apply(row, plan)
            synced.append(row)

        self.event_repo.append_event(
            event_type="goal_plans_synced",
            entity_type=self.plans.entity_type,
            entity_id=month_label,
            payload={"month_label": month_label, "goal_ids": [r.goal_id for r in synced]},
        )
        self.db.commit()

        logger.info("Goal plans synced for %s (%d goals)", month_label, len(synced))
        return synced

    def toggle_protected(self, month_label: str, goal_id: str) -> MonthlyGoalPlanModel:
        return self._change(month_label, goal_id, "goal_plan_protect_toggled", lambda p: p.toggle_protected())

    def toggle_skipped(self, month_label: str, goal_id: str) -> MonthlyGoalPlanModel:
        return self._change(month_label, goal_id, "goal_plan_skip_toggled", lambda p: p.toggle_skipped())

    def set_custom_amount(self, month_label: str, goal_id: str, amount) -> MonthlyGoalPlanModel:
        """Fixed amount for this month; None goes back to the requirement"""
        if amount is not None:
            try:
                amount = parse_amount(amount)
            except ValueError as exc:
                raise GoalPlanValidationError(str(exc))
            if amount < 0:
                raise GoalPlanValidationError("Custom amount cannot be negative")
        return self._change(month_label, goal_id, "goal_plan_custom_amount_set", lambda p: p.set_custom_amount(amount))

    def apply_flex_adjustment(self, month_label: str, adjustment) -> List[MonthlyGoalPlanModel]:
        """
        Scale every flexible (not protected, not skipped) plan by `adjustment`

        The factor is clamped to 0..1.5 and written as a custom amount; a
        factor of 1 clears the custom amount.

        Raises:
            GoalPlanLockedError: a plan of the month is not a draft
            GoalPlanValidationError: bad factor, or a scaled amount is not positive
        """
        try:
            factor = min(PLAN_FLEX_MAX_FACTOR, max(ZERO, parse_amount(adjustment)))
        except ValueError as exc:
            raise GoalPlanValidationError(str(exc))

        plans = self.plans_for(month_label)
        if any(p.state != PLAN_STATE_DRAFT for p in plans):
            raise GoalPlanLockedError(f"Can only adjust draft plans ({month_label} is not a draft)")

        updated = []
        for row in plans:
            plan = self._to_domain(row)
            if plan.is_skipped or plan.is_protected:
                continue
            try:
                plan.custom_amount = flex_plan_amount(plan, factor)
            except ValueError as exc:
                raise GoalPlanValidationError(str(exc))
            updated.append((row, plan))

        for row, plan in updated:
            self._apply(row, plan)

        self.event_repo.append_event(
            event_type="goal_plans_flex_adjusted",
            entity_type=self.plans.entity_type,
            entity_id=month_label,
            payload={"month_label": month_label, "adjustment": str(factor)},
        )
        self.db.commit()

        logger.info("Flex %s applied to %d plans for %s", factor, len(updated), month_label)
        return plans

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _change(self, month_label: str, goal_id: str, event_type: str, mutate) -> MonthlyGoalPlanModel:
        parse_month_label(month_label)
        row = self.plans.get_by_month_and_goal(month_label, goal_id)
        if row is None:
            raise GoalPlanNotFoundError(f"No plan for goal {goal_id} in {month_label}")

        plan = self._to_domain(row)
        try:
            mutate(plan)
        except ValueError as exc:
            raise GoalPlanValidationError(str(exc))
        self._apply(row, plan)

        self.event_repo.append_event(
            event_type=event_type,
            entity_type=self.plans.entity_type,
            entity_id=row.id,
            payload={
                "month_label": month_label,
                "goal_id": goal_id,
                "is_protected": plan.is_protected,
                "is_skipped": plan.is_skipped,
                "custom_amount": str(plan.custom_amount) if plan.custom_amount is not None else None,
            },
        )
        self.db.commit()
        return row

    def _record_state(self, month_label: str) -> str:
        record = ExecutionRecordRepository(self.db).get_by_month(month_label)
        return record.status if record is not None else PLAN_STATE_DRAFT

    def _follow_record_state(self, month_label: str, plans: List[MonthlyGoalPlanModel]) -> None:
        state = self._record_state(month_label)
        stale = [p for p in plans if p.state != state]
        for row in stale:
            self.plans.update(row, state=state)
        if stale:
            self.db.commit()

    @staticmethod
    def _to_domain(row: MonthlyGoalPlanModel) -> MonthlyGoalPlan:
        return MonthlyGoalPlan(
            goal_id=row.goal_id,
            month_label=row.month_label,
            currency=row.currency,
            required_monthly=Decimal(row.required_monthly),
            remaining_amount=Decimal(row.remaining_amount),
            months_remaining=row.months_remaining,
            status=row.status,
            state=row.state,
            custom_amount=Decimal(row.custom_amount) if row.custom_amount is not None else None,
            is_protected=row.is_protected,
            is_skipped=row.is_skipped,
        )

    def _apply(self, row: MonthlyGoalPlanModel, plan: MonthlyGoalPlan) -> None:
        self.plans.update(
            row,
            required_monthly=plan.required_monthly,
            remaining_amount=plan.remaining_amount,
            months_remaining=plan.months_remaining,
            currency=plan.currency,
            status=plan.status,
            state=plan.state,
            custom_amount=plan.custom_amount,
            is_protected=plan.is_protected,
            is_skipped=plan.is_skipped,
        )
