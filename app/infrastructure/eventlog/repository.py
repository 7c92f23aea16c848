"""
Event Log Repository - append-only change feed

Every mutation is recorded as an immutable event; observers poll it with a checkpoint.
"""
from datetime import datetime
from typing import Optional, Dict, Any, List
from sqlalchemy.orm import Session

from app.infrastructure.db.models import EventLog
from app.utils.dates import utcnow


class EventLogRepository:
    """
    Repository for the event log
    """

    def __init__(self, db: Session):
        self.db = db

    def append_event(
        self,
        event_type: str,
        entity_type: str,
        entity_id: str,
        payload: Dict[str, Any],
        occurred_at: Optional[datetime] = None,
        idempotency_key: Optional[str] = None,
    ) -> int:
        """
        Append an event to the log

        Args:
            event_type: Event type (e.g. "goal_created")
            entity_type: Table the event refers to ("goals", "allocations", ...)
            entity_id: Row id
            payload: Event data (stored as JSON)
            occurred_at: When it happened (default: now)
            idempotency_key: Idempotency key (optional)

        Returns:
            event_id: ID of the new event

        Raises:
            IntegrityError: if idempotency_key already exists

        Example:
            >>> repo = EventLogRepository(db)
            >>> event_id = repo.append_event(
            ...     event_type="goal_created",
            ...     entity_type="goals",
            ...     entity_id="4f1c...",
            ...     payload={"name": "Vacation"},
            ... )
        """
        if occurred_at is None:
            occurred_at = utcnow()

        event = EventLog(
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            payload_json=payload,
            occurred_at=occurred_at,
            idempotency_key=idempotency_key,
        )

        self.db.add(event)
        self.db.flush()  # get the ID without committing

        return event.id

    def get_event(self, event_id: int) -> Optional[EventLog]:
        return self.db.query(EventLog).filter(EventLog.id == event_id).first()

    def list_events_since(
        self,
        after_id: int = 0,
        limit: int = 200,
        entity_types: Optional[List[str]] = None,
        event_types: Optional[List[str]] = None,
    ) -> List[EventLog]:
        """
        Events with ID > after_id (checkpoint), ordered by ID ASC

        Args:
            after_id: Checkpoint
            limit: Max events per batch (default: 200)
            entity_types: Filter by entity type (optional)
            event_types: Filter by event type (optional)
        """
        query = self.db.query(EventLog).filter(EventLog.id > after_id)

        if entity_types:
            query = query.filter(EventLog.entity_type.in_(entity_types))
        if event_types:
            query = query.filter(EventLog.event_type.in_(event_types))

        return query.order_by(EventLog.id.asc()).limit(limit).all()

    def last_event_id(self, entity_types: Optional[List[str]] = None) -> int:
        query = self.db.query(EventLog.id)
        if entity_types:
            query = query.filter(EventLog.entity_type.in_(entity_types))
        last = query.order_by(EventLog.id.desc()).first()
        return last[0] if last else 0

    def count_events(self, event_types: Optional[List[str]] = None) -> int:
        query = self.db.query(EventLog)

        if event_types:
            query = query.filter(EventLog.event_type.in_(event_types))

        return query.count()
