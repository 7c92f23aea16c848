"""
Monthly execution API endpoints - start / complete / undo per month ("YYYY-MM")
"""
import asyncio
from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_rate_provider, get_planning_settings, http_error
from app.application.execution import ExecutionTrackingService, ExecutionRecordNotFoundError
from app.domain.execution import ExecutionError
from app.domain.planning_settings import PlanningSettings
from app.infrastructure.db.models import MonthlyExecutionRecordModel
from app.infrastructure.rates import RateProvider


router = APIRouter(prefix="/api/v1/execution", tags=["execution"])


class ExecutionRecordResponse(BaseModel):
    id: str
    month_label: str
    status: str
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    can_undo_until: datetime | None = None
    tracked_goal_ids: list[str]


def _to_response(record: MonthlyExecutionRecordModel) -> ExecutionRecordResponse:
    return ExecutionRecordResponse(
        id=record.id,
        month_label=record.month_label,
        status=record.status,
        created_at=record.created_at,
        started_at=record.started_at,
        completed_at=record.completed_at,
        can_undo_until=record.can_undo_until,
        tracked_goal_ids=list(record.tracked_goal_ids or []),
    )


def get_execution_service(
    db: Session = Depends(get_db),
    rates: RateProvider = Depends(get_rate_provider),
    settings: PlanningSettings = Depends(get_planning_settings),
) -> ExecutionTrackingService:
    return ExecutionTrackingService(db, rates, settings)


@router.get("/active", response_model=ExecutionRecordResponse | None)
def active_record(service: ExecutionTrackingService = Depends(get_execution_service)):
    record = service.active_record()
    return _to_response(record) if record else None


@router.get("/history", response_model=list[ExecutionRecordResponse])
def completed_records(
    limit: int = 10,
    offset: int = 0,
    service: ExecutionTrackingService = Depends(get_execution_service),
):
    return [_to_response(r) for r in service.completed_records(limit=limit, offset=offset)]


@router.get("/{month_label}", response_model=ExecutionRecordResponse)
def get_record(month_label: str, service: ExecutionTrackingService = Depends(get_execution_service)):
    """Record for the month (created as draft on first access)"""
    try:
        return _to_response(service.get_or_create_draft(month_label))
    except ValueError as e:
        raise http_error(e)


@router.post("/{month_label}/start", response_model=ExecutionRecordResponse)
def start_tracking(month_label: str, service: ExecutionTrackingService = Depends(get_execution_service)):
    try:
        return _to_response(asyncio.run(service.start_tracking(month_label)))
    except ValueError as e:
        raise http_error(e)


@router.post("/{month_label}/complete", response_model=ExecutionRecordResponse)
def mark_complete(month_label: str, service: ExecutionTrackingService = Depends(get_execution_service)):
    try:
        record = asyncio.run(service.mark_complete(month_label))
    except ValueError as e:
        raise http_error(e)
    if record is None:
        raise http_error(ExecutionRecordNotFoundError(f"No execution record for {month_label}"))
    return _to_response(record)


@router.post("/{month_label}/undo-start", response_model=ExecutionRecordResponse)
def undo_start_tracking(month_label: str, service: ExecutionTrackingService = Depends(get_execution_service)):
    try:
        return _to_response(service.undo_start_tracking(month_label))
    except (ExecutionError, ValueError) as e:
        raise http_error(e)


@router.post("/{month_label}/undo-complete", response_model=ExecutionRecordResponse)
def undo_completion(month_label: str, service: ExecutionTrackingService = Depends(get_execution_service)):
    try:
        return _to_response(service.undo_completion(month_label))
    except (ExecutionError, ValueError) as e:
        raise http_error(e)


@router.get("/{month_label}/contributions")
def contribution_totals(month_label: str, service: ExecutionTrackingService = Depends(get_execution_service)):
    """Per-goal contributions this month (goal currency)"""
    try:
        totals = asyncio.run(service.contribution_totals(month_label))
    except (ExecutionError, ValueError) as e:
        raise http_error(e)
    return {goal_id: str(amount) for goal_id, amount in totals.items()}
