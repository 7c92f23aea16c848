"""
Goal domain entity - savings goal with a target, currency and deadline
"""
from datetime import date, datetime
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Any, Optional

GOAL_STATUS_ACTIVE = "active"
GOAL_STATUS_COMPLETED = "completed"
GOAL_STATUS_ARCHIVED = "archived"

GOAL_STATUSES = (GOAL_STATUS_ACTIVE, GOAL_STATUS_COMPLETED, GOAL_STATUS_ARCHIVED)


@dataclass
class Goal:
    """
    Goal domain entity

    Persisted as GoalModel; every change is also appended to event_log
    with one of the payloads below.
    """
    id: str
    name: str
    currency: str
    target_amount: Decimal
    deadline: date
    start_date: date
    status: str = GOAL_STATUS_ACTIVE
    emoji: Optional[str] = None
    description: Optional[str] = None

    @staticmethod
    def create(
        goal_id: str,
        name: str,
        currency: str,
        target_amount: Decimal,
        deadline: date,
        start_date: date,
    ) -> Dict[str, Any]:
        """
        Payload for goal_created

        Returns:
            Event payload for event_log
        """
        return {
            "goal_id": goal_id,
            "name": name,
            "currency": currency,
            "target_amount": str(target_amount),
            "deadline": deadline.isoformat(),
            "start_date": start_date.isoformat(),
        }

    @staticmethod
    def update(goal_id: str, **changes) -> Dict[str, Any]:
        """Payload for goal_updated (only the changed fields)"""
        payload: Dict[str, Any] = {"goal_id": goal_id}
        for key, value in changes.items():
            if isinstance(value, (date, datetime)):
                value = value.isoformat()
            elif isinstance(value, Decimal):
                value = str(value)
            payload[key] = value
        return payload

    @staticmethod
    def change_status(goal_id: str, status: str, changed_at: datetime) -> Dict[str, Any]:
        return {
            "goal_id": goal_id,
            "status": status,
            "status_changed_at": changed_at.isoformat(),
        }

    @staticmethod
    def delete(goal_id: str) -> Dict[str, Any]:
        return {"goal_id": goal_id}
