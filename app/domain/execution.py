"""
Monthly execution domain - draft -> executing -> closed with timed undo windows
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

STATUS_DRAFT = "draft"
STATUS_EXECUTING = "executing"
STATUS_CLOSED = "closed"

EXECUTION_STATUSES = (STATUS_DRAFT, STATUS_EXECUTING, STATUS_CLOSED)


class ExecutionError(Exception):
    """Illegal state transition; the record is left unchanged"""
    pass


class ExecutionNotActiveError(ExecutionError):
    """Record is not in the status the transition starts from"""
    pass


class UndoWindowExpiredError(ExecutionError):
    """now >= can_undo_until (or undo is disabled)"""
    pass


@dataclass
class MonthlyExecution:
    """
    One month's execution record

    start_tracking / mark_complete return False instead of raising when the
    record is not in the source status (idempotent automation triggers).
    The undo transitions raise and leave every field untouched on failure.
    """
    id: str
    month_label: str
    status: str
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    can_undo_until: Optional[datetime] = None
    tracked_goal_ids: List[str] = field(default_factory=list)

    def can_undo(self, now: datetime) -> bool:
        return self.can_undo_until is not None and now < self.can_undo_until

    def start_tracking(self, now: datetime, goal_ids: List[str], grace_period_hours: int) -> bool:
        if self.status != STATUS_DRAFT:
            return False
        self.status = STATUS_EXECUTING
        self.started_at = now
        self.can_undo_until = _undo_deadline(now, grace_period_hours)
        self.tracked_goal_ids = list(goal_ids)
        return True

    def mark_complete(self, now: datetime, grace_period_hours: int) -> bool:
        if self.status != STATUS_EXECUTING:
            return False
        self.status = STATUS_CLOSED
        self.completed_at = now
        self.can_undo_until = _undo_deadline(now, grace_period_hours)
        return True

    def undo_start_tracking(self, now: datetime) -> None:
        self._check_undo(STATUS_EXECUTING, now)
        self.status = STATUS_DRAFT
        self.started_at = None
        self.can_undo_until = None
        self.tracked_goal_ids = []

    def undo_completion(self, now: datetime) -> None:
        self._check_undo(STATUS_CLOSED, now)
        self.status = STATUS_EXECUTING
        self.completed_at = None
        self.can_undo_until = None

    def _check_undo(self, expected_status: str, now: datetime) -> None:
        if self.status != expected_status:
            raise ExecutionNotActiveError(
                f"Month {self.month_label} is {self.status}, expected {expected_status}"
            )
        if not self.can_undo(now):
            raise UndoWindowExpiredError(
                f"The undo grace period for {self.month_label} has expired"
            )

    @staticmethod
    def transition_payload(record: "MonthlyExecution", transition: str) -> Dict[str, Any]:
        """Event payload for execution_* events"""
        return {
            "record_id": record.id,
            "month_label": record.month_label,
            "transition": transition,
            "status": record.status,
            "can_undo_until": record.can_undo_until.isoformat() if record.can_undo_until else None,
        }


def _undo_deadline(now: datetime, grace_period_hours: int) -> Optional[datetime]:
    if grace_period_hours <= 0:
        return None
    return now + timedelta(hours=grace_period_hours)
