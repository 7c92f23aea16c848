"""
Goal progress calculator - funded total, progress, days left, daily requirement
"""
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import List, Optional
from sqlalchemy.orm import Session

from app.application.allocations import AllocationLedger
from app.application.goals import get_goal_or_raise
from app.domain.allocation import GoalTotal
from app.domain.planning import days_remaining, months_remaining
from app.infrastructure.rates import RateProvider
from app.infrastructure.repositories import GoalRepository
from app.utils.dates import utcnow

ZERO = Decimal("0")


def progress_ratio(current_total: Decimal, target_amount: Decimal) -> Decimal:
    """current / target, floored at 0 and not capped (over-funded goals go above 1)"""
    if target_amount <= 0:
        return ZERO
    return max(ZERO, current_total / target_amount)


def progress_percent(ratio: Decimal) -> int:
    """Whole percent for display, 0..100"""
    return int(min(Decimal("100"), max(ZERO, ratio * 100)))


def daily_required(target_amount: Decimal, current_total: Decimal, days: int) -> Decimal:
    return max(ZERO, target_amount - current_total) / max(1, days)


@dataclass(frozen=True)
class GoalProgress:
    goal_id: str
    name: str
    currency: str
    target_amount: Decimal
    current_total: Decimal
    progress: Decimal
    progress_percent: int
    deadline: date
    days_remaining: int
    months_remaining: int
    daily_required: Decimal
    failed_asset_ids: tuple = ()

    @property
    def remaining(self) -> Decimal:
        return max(ZERO, self.target_amount - self.current_total)

    @property
    def is_stale(self) -> bool:
        return bool(self.failed_asset_ids)


class GoalProgressCalculator:
    """
    Progress of goals from their allocations

    current_total converts every allocation into the goal currency; a failed
    rate drops that asset and marks the result stale.
    """

    def __init__(self, db: Session, rate_provider: Optional[RateProvider] = None):
        self.db = db
        self.ledger = AllocationLedger(db, rate_provider)

    async def current_total(self, goal_id: str) -> GoalTotal:
        return await self.ledger.total_allocated_for_goal(goal_id)

    async def goal_progress(self, goal_id: str, today: date | None = None) -> GoalProgress:
        if today is None:
            today = utcnow().date()

        goal = get_goal_or_raise(self.db, goal_id)
        total = await self.current_total(goal_id)

        target = Decimal(goal.target_amount)
        ratio = progress_ratio(total.amount, target)
        days = days_remaining(goal.deadline, today)

        return GoalProgress(
            goal_id=goal.id,
            name=goal.name,
            currency=goal.currency,
            target_amount=target,
            current_total=total.amount,
            progress=ratio,
            progress_percent=progress_percent(ratio),
            deadline=goal.deadline,
            days_remaining=days,
            months_remaining=months_remaining(goal.deadline, today),
            daily_required=daily_required(target, total.amount, days),
            failed_asset_ids=total.failed_asset_ids,
        )

    async def progress_for_goals(
        self,
        goal_ids: Optional[List[str]] = None,
        today: date | None = None,
    ) -> List[GoalProgress]:
        """Progress for the given goals (default: all active goals, by deadline)"""
        if goal_ids is None:
            goal_ids = [g.id for g in GoalRepository(self.db).get_active()]
        return [await self.goal_progress(goal_id, today) for goal_id in goal_ids]
