"""
Goal API endpoints
"""
import asyncio
from datetime import date

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_rate_provider, http_error
from app.application.goals import (
    CreateGoalUseCase, UpdateGoalUseCase, ChangeGoalStatusUseCase, DeleteGoalUseCase,
    GoalValidationError, get_goal_or_raise,
)
from app.application.progress import GoalProgressCalculator
from app.infrastructure.db.models import GoalModel
from app.infrastructure.rates import RateProvider
from app.infrastructure.repositories import GoalRepository


router = APIRouter(prefix="/api/v1/goals", tags=["goals"])


# === Request/Response models ===

class CreateGoalRequest(BaseModel):
    name: str
    currency: str
    target_amount: str
    deadline: date
    start_date: date | None = None
    emoji: str | None = None
    description: str | None = None


class UpdateGoalRequest(BaseModel):
    name: str | None = None
    target_amount: str | None = None
    deadline: date | None = None
    emoji: str | None = None
    description: str | None = None


class ChangeStatusRequest(BaseModel):
    status: str  # active / completed / archived


class GoalResponse(BaseModel):
    id: str
    name: str
    currency: str
    target_amount: str  # Decimal as string
    deadline: date
    start_date: date
    status: str
    emoji: str | None = None
    description: str | None = None


class GoalProgressResponse(BaseModel):
    goal_id: str
    currency: str
    target_amount: str
    current_total: str
    progress: str
    progress_percent: int
    days_remaining: int
    months_remaining: int
    daily_required: str
    is_stale: bool
    failed_asset_ids: list[str]


def _to_response(goal: GoalModel) -> GoalResponse:
    return GoalResponse(
        id=goal.id,
        name=goal.name,
        currency=goal.currency,
        target_amount=str(goal.target_amount),
        deadline=goal.deadline,
        start_date=goal.start_date,
        status=goal.status,
        emoji=goal.emoji,
        description=goal.description,
    )


# === Endpoints ===

@router.post("/", response_model=GoalResponse)
def create_goal(req: CreateGoalRequest, db: Session = Depends(get_db)):
    """Create a savings goal"""
    try:
        goal_id = CreateGoalUseCase(db).execute(
            name=req.name,
            currency=req.currency,
            target_amount=req.target_amount,
            deadline=req.deadline,
            start_date=req.start_date,
            emoji=req.emoji,
            description=req.description,
        )
    except GoalValidationError as e:
        raise http_error(e)

    return _to_response(get_goal_or_raise(db, goal_id))


@router.get("/", response_model=list[GoalResponse])
def list_goals(status: str | None = None, db: Session = Depends(get_db)):
    """Goals ordered by deadline, optionally filtered by status"""
    goals = GoalRepository(db).get_all(order_by=GoalModel.deadline.asc(), status=status)
    return [_to_response(g) for g in goals]


@router.get("/{goal_id}", response_model=GoalResponse)
def get_goal(goal_id: str, db: Session = Depends(get_db)):
    try:
        return _to_response(get_goal_or_raise(db, goal_id))
    except GoalValidationError as e:
        raise http_error(e)


@router.patch("/{goal_id}", response_model=GoalResponse)
def update_goal(goal_id: str, req: UpdateGoalRequest, db: Session = Depends(get_db)):
    changes = req.model_dump(exclude_unset=True)
    try:
        UpdateGoalUseCase(db).execute(goal_id, **changes)
    except GoalValidationError as e:
        raise http_error(e)
    return _to_response(get_goal_or_raise(db, goal_id))


@router.post("/{goal_id}/status", response_model=GoalResponse)
def change_goal_status(goal_id: str, req: ChangeStatusRequest, db: Session = Depends(get_db)):
    try:
        ChangeGoalStatusUseCase(db).execute(goal_id, req.status)
    except GoalValidationError as e:
        raise http_error(e)
    return _to_response(get_goal_or_raise(db, goal_id))


@router.delete("/{goal_id}", status_code=204)
def delete_goal(goal_id: str, db: Session = Depends(get_db)):
    """Delete a goal together with its allocations"""
    try:
        DeleteGoalUseCase(db).execute(goal_id)
    except GoalValidationError as e:
        raise http_error(e)


@router.get("/{goal_id}/progress", response_model=GoalProgressResponse)
def goal_progress(
    goal_id: str,
    db: Session = Depends(get_db),
    rates: RateProvider = Depends(get_rate_provider),
):
    try:
        p = asyncio.run(GoalProgressCalculator(db, rates).goal_progress(goal_id))
    except GoalValidationError as e:
        raise http_error(e)

    return GoalProgressResponse(
        goal_id=p.goal_id,
        currency=p.currency,
        target_amount=str(p.target_amount),
        current_total=str(p.current_total),
        progress=str(p.progress),
        progress_percent=p.progress_percent,
        days_remaining=p.days_remaining,
        months_remaining=p.months_remaining,
        daily_required=str(p.daily_required),
        is_stale=p.is_stale,
        failed_asset_ids=list(p.failed_asset_ids),
    )
