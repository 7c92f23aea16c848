"""
Persistence repositories - one per entity

get / get_all / observe / insert / update / delete by id. No ORM relationships:
cascades are explicit calls made by the use cases.
"""
import time
from typing import Any, Generic, Iterator, List, Optional, Type, TypeVar

from sqlalchemy.orm import Session

from app.infrastructure.db.models import (
    GoalModel, AssetModel, TransactionModel, AllocationModel, AllocationHistoryModel,
    MonthlyExecutionRecordModel, ExecutionSnapshotModel, CompletedExecutionModel, MonthlyGoalPlanModel,
)
from app.infrastructure.eventlog.repository import EventLogRepository

ModelT = TypeVar("ModelT")


class BaseRepository(Generic[ModelT]):
    """
    Shared CRUD over a single table

    Subclasses set `model`. Filters are equality filters on column names;
    None values are ignored.
    """

    model: Type[ModelT]

    def __init__(self, db: Session):
        self.db = db
        self.event_repo = EventLogRepository(db)

    @property
    def entity_type(self) -> str:
        return self.model.__tablename__

    def get(self, entity_id: Any) -> Optional[ModelT]:
        return self.db.get(self.model, entity_id)

    def get_all(self, order_by=None, **filters) -> List[ModelT]:
        query = self.db.query(self.model)
        for column, value in filters.items():
            if value is None:
                continue
            query = query.filter(getattr(self.model, column) == value)
        if order_by is not None:
            query = query.order_by(order_by)
        return query.all()

    def insert(self, entity: ModelT) -> ModelT:
        self.db.add(entity)
        self.db.flush()
        return entity

    def update(self, entity: ModelT, **changes) -> ModelT:
        for column, value in changes.items():
            setattr(entity, column, value)
        self.db.flush()
        return entity

    def delete(self, entity: ModelT) -> None:
        self.db.delete(entity)
        self.db.flush()

    def delete_where(self, **filters) -> int:
        query = self.db.query(self.model)
        for column, value in filters.items():
            query = query.filter(getattr(self.model, column) == value)
        count = query.delete(synchronize_session="fetch")
        self.db.flush()
        return count

    def observe(
        self,
        poll_interval: float = 1.0,
        max_polls: Optional[int] = None,
        **filters,
    ) -> Iterator[List[ModelT]]:
        """
        Stream of matching rows

        Yields the current rows immediately, then again after every batch of
        change events for this table (checkpointed on the event log).

        Args:
            poll_interval: Seconds to sleep when nothing changed
            max_polls: Stop after this many consecutive empty polls (None = forever)
        """
        checkpoint = self.event_repo.last_event_id([self.entity_type])
        yield self.get_all(**filters)

        empty_polls = 0
        while max_polls is None or empty_polls < max_polls:
            events = self.event_repo.list_events_since(
                after_id=checkpoint,
                entity_types=[self.entity_type],
            )
            if not events:
                empty_polls += 1
                time.sleep(poll_interval)
                continue

            checkpoint = events[-1].id
            self.db.expire_all()
            yield self.get_all(**filters)
            empty_polls = 0


class GoalRepository(BaseRepository[GoalModel]):
    model = GoalModel

    def get_active(self) -> List[GoalModel]:
        return self.get_all(order_by=GoalModel.deadline.asc(), status="active")


class AssetRepository(BaseRepository[AssetModel]):
    model = AssetModel

    def get_by_address(self, chain_id: Optional[str], address: str) -> Optional[AssetModel]:
        query = self.db.query(AssetModel).filter(AssetModel.address == address)
        if chain_id is not None:
            query = query.filter(AssetModel.chain_id == chain_id)
        return query.first()


class TransactionRepository(BaseRepository[TransactionModel]):
    model = TransactionModel

    def for_asset(self, asset_id: str) -> List[TransactionModel]:
        return self.get_all(order_by=TransactionModel.date.asc(), asset_id=asset_id)


class AllocationRepository(BaseRepository[AllocationModel]):
    model = AllocationModel

    def get_by_asset_and_goal(self, asset_id: str, goal_id: str) -> Optional[AllocationModel]:
        return self.db.query(AllocationModel).filter(
            AllocationModel.asset_id == asset_id,
            AllocationModel.goal_id == goal_id,
        ).first()

    def for_asset(self, asset_id: str) -> List[AllocationModel]:
        return self.get_all(asset_id=asset_id)

    def for_goal(self, goal_id: str) -> List[AllocationModel]:
        return self.get_all(goal_id=goal_id)


class AllocationHistoryRepository(BaseRepository[AllocationHistoryModel]):
    model = AllocationHistoryModel


class ExecutionRecordRepository(BaseRepository[MonthlyExecutionRecordModel]):
    model = MonthlyExecutionRecordModel

    def get_by_month(self, month_label: str) -> Optional[MonthlyExecutionRecordModel]:
        return self.db.query(MonthlyExecutionRecordModel).filter(
            MonthlyExecutionRecordModel.month_label == month_label
        ).first()

    def get_executing(self) -> Optional[MonthlyExecutionRecordModel]:
        return self.db.query(MonthlyExecutionRecordModel).filter(
            MonthlyExecutionRecordModel.status == "executing"
        ).first()

    def get_closed(self, limit: int = 10, offset: int = 0) -> List[MonthlyExecutionRecordModel]:
        return (
            self.db.query(MonthlyExecutionRecordModel)
            .filter(MonthlyExecutionRecordModel.status == "closed")
            .order_by(MonthlyExecutionRecordModel.month_label.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )


class ExecutionSnapshotRepository(BaseRepository[ExecutionSnapshotModel]):
    model = ExecutionSnapshotModel

    def for_record(self, record_id: str) -> List[ExecutionSnapshotModel]:
        return self.get_all(record_id=record_id)


class CompletedExecutionRepository(BaseRepository[CompletedExecutionModel]):
    model = CompletedExecutionModel

    def for_record(self, record_id: str) -> Optional[CompletedExecutionModel]:
        return self.db.query(CompletedExecutionModel).filter(
            CompletedExecutionModel.record_id == record_id
        ).first()


class MonthlyGoalPlanRepository(BaseRepository[MonthlyGoalPlanModel]):
    model = MonthlyGoalPlanModel

    def for_month(self, month_label: str) -> List[MonthlyGoalPlanModel]:
        return self.get_all(order_by=MonthlyGoalPlanModel.goal_id.asc(), month_label=month_label)

    def get_by_month_and_goal(self, month_label: str, goal_id: str) -> Optional[MonthlyGoalPlanModel]:
        return self.db.query(MonthlyGoalPlanModel).filter(
            MonthlyGoalPlanModel.month_label == month_label,
            MonthlyGoalPlanModel.goal_id == goal_id,
        ).first()
