"""
Goal use cases - create, edit, change status, delete (with allocation cascade)
"""
import logging
import uuid
from datetime import date
from decimal import Decimal
from sqlalchemy.orm import Session

from app.infrastructure.eventlog.repository import EventLogRepository
from app.infrastructure.db.models import GoalModel
from app.infrastructure.repositories import GoalRepository, MonthlyGoalPlanRepository
from app.domain.goal import Goal, GOAL_STATUSES
from app.utils.dates import utcnow
from app.utils.validation import parse_amount, normalize_currency

logger = logging.getLogger(__name__)


class GoalValidationError(ValueError):
    """Goal validation error"""
    pass


class GoalNotFoundError(GoalValidationError):
    pass


def _validate_target(value) -> Decimal:
    try:
        target = parse_amount(value)
    except ValueError as exc:
        raise GoalValidationError(str(exc))
    if target <= 0:
        raise GoalValidationError("Target amount must be greater than zero")
    return target


def get_goal_or_raise(db: Session, goal_id: str) -> GoalModel:
    goal = GoalRepository(db).get(goal_id)
    if not goal:
        raise GoalNotFoundError(f"Goal {goal_id} not found")
    return goal


class CreateGoalUseCase:
    """Use case: create a savings goal"""

    def __init__(self, db: Session):
        self.db = db
        self.goals = GoalRepository(db)
        self.event_repo = EventLogRepository(db)

    def execute(
        self,
        name: str,
        currency: str,
        target_amount,
        deadline: date,
        start_date: date | None = None,
        emoji: str | None = None,
        description: str | None = None,
    ) -> str:
        """
        Create a goal

        Args:
            name: Goal name (non-empty)
            currency: Goal currency (fiat code or crypto ticker)
            target_amount: Target (> 0)
            deadline: Must be after start_date
            start_date: Defaults to today (UTC)

        Returns:
            goal_id
        """
        name = (name or "").strip()
        if not name:
            raise GoalValidationError("Goal name cannot be empty")

        try:
            currency = normalize_currency(currency)
        except ValueError as exc:
            raise GoalValidationError(str(exc))

        target = _validate_target(target_amount)

        if start_date is None:
            start_date = utcnow().date()
        if deadline <= start_date:
            raise GoalValidationError("Deadline must be after the start date")

        goal_id = uuid.uuid4().hex
        now = utcnow()
        self.goals.insert(GoalModel(
            id=goal_id,
            name=name,
            currency=currency,
            target_amount=target,
            deadline=deadline,
            start_date=start_date,
            status="active",
            emoji=emoji,
            description=description,
            created_at=now,
            updated_at=now,
        ))

        self.event_repo.append_event(
            event_type="goal_created",
            entity_type=self.goals.entity_type,
            entity_id=goal_id,
            payload=Goal.create(goal_id, name, currency, target, deadline, start_date),
            idempotency_key=f"goal-create-{goal_id}",
        )
        self.db.commit()

        logger.info("Goal created: %s (%s %s by %s)", goal_id, target, currency, deadline)
        return goal_id


class UpdateGoalUseCase:
    """Use case: edit name, target, deadline, emoji, description"""

    EDITABLE = ("name", "target_amount", "deadline", "emoji", "description")

    def __init__(self, db: Session):
        self.db = db
        self.goals = GoalRepository(db)
        self.event_repo = EventLogRepository(db)

    def execute(self, goal_id: str, **changes) -> None:
        goal = get_goal_or_raise(self.db, goal_id)

        unknown = set(changes) - set(self.EDITABLE)
        if unknown:
            raise GoalValidationError(f"Cannot edit fields: {', '.join(sorted(unknown))}")

        if "name" in changes:
            changes["name"] = (changes["name"] or "").strip()
            if not changes["name"]:
                raise GoalValidationError("Goal name cannot be empty")

        if "target_amount" in changes:
            changes["target_amount"] = _validate_target(changes["target_amount"])

        deadline = changes.get("deadline", goal.deadline)
        if deadline <= goal.start_date:
            raise GoalValidationError("Deadline must be after the start date")

        if not changes:
            return

        self.goals.update(goal, **changes)
        self.event_repo.append_event(
            event_type="goal_updated",
            entity_type=self.goals.entity_type,
            entity_id=goal_id,
            payload=Goal.update(goal_id, **changes),
        )
        self.db.commit()


class ChangeGoalStatusUseCase:
    """Use case: mark a goal active / completed / archived"""

    def __init__(self, db: Session):
        self.db = db
        self.goals = GoalRepository(db)
        self.event_repo = EventLogRepository(db)

    def execute(self, goal_id: str, status: str) -> None:
        if status not in GOAL_STATUSES:
            raise GoalValidationError(f"Unknown goal status: {status}")

        goal = get_goal_or_raise(self.db, goal_id)
        if goal.status == status:
            return

        now = utcnow()
        self.goals.update(goal, status=status, status_changed_at=now)
        self.event_repo.append_event(
            event_type="goal_status_changed",
            entity_type=self.goals.entity_type,
            entity_id=goal_id,
            payload=Goal.change_status(goal_id, status, now),
        )
        self.db.commit()


class DeleteGoalUseCase:
    """
    Use case: delete a goal

    Cascade: the goal's allocations, allocation history and monthly plans go with it.
    """

    def __init__(self, db: Session):
        self.db = db
        self.goals = GoalRepository(db)
        self.event_repo = EventLogRepository(db)

    def execute(self, goal_id: str) -> None:
        from app.application.allocations import AllocationLedger

        goal = get_goal_or_raise(self.db, goal_id)

        removed = AllocationLedger(self.db).delete_for_goal(goal_id)
        MonthlyGoalPlanRepository(self.db).delete_where(goal_id=goal_id)
        self.goals.delete(goal)

        self.event_repo.append_event(
            event_type="goal_deleted",
            entity_type=self.goals.entity_type,
            entity_id=goal_id,
            payload=Goal.delete(goal_id),
        )
        self.db.commit()

        logger.info("Goal deleted: %s (%d allocations removed)", goal_id, removed)
