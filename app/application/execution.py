"""
Execution tracking service - monthly record lifecycle with snapshots

draft -> executing: snapshot per-goal totals, freeze tracked goals,
                    seed an allocation history baseline
executing -> closed: freeze exchange rates and final totals (CompletedExecution)
Both transitions open an undo window of settings.undo_grace_period_hours.
"""
import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, List, Optional
from sqlalchemy.orm import Session

from app.application.allocations import AllocationLedger
from app.application.goal_plans import effective_amount
from app.domain.execution import (
    MonthlyExecution, ExecutionError, STATUS_DRAFT, STATUS_EXECUTING, STATUS_CLOSED,
)
from app.domain.planning import PlanningGoal, requirement_for
from app.domain.planning_settings import PlanningSettings
from app.infrastructure.db.models import (
    MonthlyExecutionRecordModel, ExecutionSnapshotModel, CompletedExecutionModel,
    AllocationHistoryModel,
)
from app.infrastructure.eventlog.repository import EventLogRepository
from app.infrastructure.rates import RateProvider, RateUnavailableError
from app.infrastructure.repositories import (
    ExecutionRecordRepository, ExecutionSnapshotRepository, CompletedExecutionRepository,
    AllocationHistoryRepository, AssetRepository, GoalRepository, MonthlyGoalPlanRepository,
)
from app.utils.dates import utcnow, month_label as month_label_of, parse_month_label, as_naive_utc

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class ExecutionRecordNotFoundError(ExecutionError):
    pass


class ExecutionTrackingService:
    """
    Monthly execution records over the persistence layer

    The status rules live in app.domain.execution.MonthlyExecution; this
    service loads a record, applies the transition and persists the side
    effects (snapshot, baseline, completed execution).
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
        self.records = ExecutionRecordRepository(db)
        self.snapshots = ExecutionSnapshotRepository(db)
        self.completed = CompletedExecutionRepository(db)
        self.ledger = AllocationLedger(db, rate_provider)
        self.event_repo = EventLogRepository(db)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def current_month_label(self) -> str:
        return month_label_of(self.clock())

    def get_record(self, month_label: str) -> Optional[MonthlyExecutionRecordModel]:
        parse_month_label(month_label)
        return self.records.get_by_month(month_label)

    def active_record(self) -> Optional[MonthlyExecutionRecordModel]:
        return self.records.get_executing()

    def completed_records(self, limit: int = 10, offset: int = 0) -> List[MonthlyExecutionRecordModel]:
        return self.records.get_closed(limit=limit, offset=offset)

    def snapshot_for(self, month_label: str) -> List[ExecutionSnapshotModel]:
        record = self._require(month_label)
        return self.snapshots.for_record(record.id)

    def completed_execution_for(self, month_label: str) -> Optional[CompletedExecutionModel]:
        record = self._require(month_label)
        return self.completed.for_record(record.id)

    async def contribution_totals(self, month_label: str) -> Dict[str, Decimal]:
        """
        Contributed per tracked goal this month (goal currency)

        executing: live total - total at start; closed: frozen at completion;
        draft: nothing tracked yet.
        """
        record = self._require(month_label)
        if record.status == STATUS_CLOSED:
            completed = self.completed.for_record(record.id)
            if completed is not None:
                return {goal_id: Decimal(v) for goal_id, v in completed.contributed_totals.items()}
            return {}
        if record.status != STATUS_EXECUTING:
            return {}

        start_totals = {s.goal_id: Decimal(s.current_total_at_start) for s in self.snapshots.for_record(record.id)}
        totals: Dict[str, Decimal] = {}
        for goal_id in record.tracked_goal_ids:
            if GoalRepository(self.db).get(goal_id) is None:
                continue
            live = await self.ledger.total_allocated_for_goal(goal_id)
            totals[goal_id] = live.amount - start_totals.get(goal_id, ZERO)
        return totals

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def get_or_create_draft(self, month_label: str) -> MonthlyExecutionRecordModel:
        record = self.get_record(month_label)
        if record is not None:
            return record

        record = self.records.insert(MonthlyExecutionRecordModel(
            id=uuid.uuid4().hex,
            month_label=month_label,
            status=STATUS_DRAFT,
            created_at=self.clock(),
            tracked_goal_ids=[],
        ))
        self.event_repo.append_event(
            event_type="execution_record_created",
            entity_type=self.records.entity_type,
            entity_id=record.id,
            payload={"record_id": record.id, "month_label": month_label},
            idempotency_key=f"execution-record-{month_label}",
        )
        self.db.commit()
        return record

    async def start_tracking(self, month_label: Optional[str] = None) -> MonthlyExecutionRecordModel:
        """
        draft -> executing

        A record that is already executing or closed is returned unchanged.
        """
        month_label = month_label or self.current_month_label()
        record = self.get_or_create_draft(month_label)
        if record.status != STATUS_DRAFT:
            logger.info("Start tracking %s ignored: record is %s", month_label, record.status)
            return record

        now = self.clock()
        goals = GoalRepository(self.db).get_active()

        execution = self._to_domain(record)
        execution.start_tracking(now, [g.id for g in goals], self.settings.undo_grace_period_hours)

        today = now.date()
        plans = {p.goal_id: p for p in MonthlyGoalPlanRepository(self.db).for_month(month_label)}
        for goal in goals:
            total = await self.ledger.total_allocated_for_goal(goal.id)
            requirement = requirement_for(PlanningGoal(
                goal_id=goal.id,
                name=goal.name,
                currency=goal.currency,
                target_amount=Decimal(goal.target_amount),
                current_total=total.amount,
                deadline=goal.deadline,
            ), today)
            self.snapshots.insert(ExecutionSnapshotModel(
                record_id=record.id,
                goal_id=goal.id,
                goal_name=goal.name,
                currency=goal.currency,
                target_amount=Decimal(goal.target_amount),
                current_total_at_start=total.amount,
                required_amount=(
                    effective_amount(plans[goal.id], requirement.required_monthly)
                    if goal.id in plans else requirement.required_monthly
                ),
                created_at=now,
            ))

        self._seed_allocation_baseline(execution.tracked_goal_ids, now, month_label)
        self._apply(record, execution, "execution_started")
        self.db.commit()

        logger.info("Execution tracking started for %s (%d goals)", month_label, len(goals))
        return record

    async def mark_complete(self, month_label: Optional[str] = None) -> Optional[MonthlyExecutionRecordModel]:
        """
        executing -> closed, freezing rates and totals

        Returns None when the month has no record; any other status is a no-op.
        """
        month_label = month_label or self.current_month_label()
        record = self.get_record(month_label)
        if record is None:
            return None
        if record.status != STATUS_EXECUTING:
            logger.info("Mark complete %s ignored: record is %s", month_label, record.status)
            return record

        now = self.clock()
        start_totals = {s.goal_id: Decimal(s.current_total_at_start) for s in self.snapshots.for_record(record.id)}
        final_totals: Dict[str, str] = {}
        contributed: Dict[str, str] = {}

        for goal_id in record.tracked_goal_ids:
            if GoalRepository(self.db).get(goal_id) is None:
                continue
            total = await self.ledger.total_allocated_for_goal(goal_id)
            final_totals[goal_id] = str(total.amount)
            contributed[goal_id] = str(total.amount - start_totals.get(goal_id, ZERO))

        rates = await self._freeze_rates(record.tracked_goal_ids)

        execution = self._to_domain(record)
        execution.mark_complete(now, self.settings.undo_grace_period_hours)

        existing = self.completed.for_record(record.id)
        if existing is not None:
            self.completed.delete(existing)
        self.completed.insert(CompletedExecutionModel(
            record_id=record.id,
            month_label=month_label,
            completed_at=now,
            exchange_rates=rates,
            final_totals=final_totals,
            contributed_totals=contributed,
        ))

        self._apply(record, execution, "execution_completed")
        self.db.commit()

        logger.info("Execution for %s closed", month_label)
        return record

    def undo_start_tracking(self, month_label: str) -> MonthlyExecutionRecordModel:
        """
        executing -> draft inside the undo window, dropping the snapshot

        Raises:
            ExecutionNotActiveError / UndoWindowExpiredError (record unchanged)
        """
        record = self._require(month_label)
        execution = self._to_domain(record)
        execution.undo_start_tracking(self.clock())

        self.snapshots.delete_where(record_id=record.id)
        self._apply(record, execution, "execution_start_undone")
        self.db.commit()
        return record

    def undo_completion(self, month_label: str) -> MonthlyExecutionRecordModel:
        """
        closed -> executing inside the undo window, discarding the CompletedExecution

        Raises:
            ExecutionNotActiveError / UndoWindowExpiredError (record unchanged)
        """
        record = self._require(month_label)
        execution = self._to_domain(record)
        execution.undo_completion(self.clock())

        self.completed.delete_where(record_id=record.id)
        self._apply(record, execution, "execution_completion_undone")
        self.db.commit()
        return record

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require(self, month_label: str) -> MonthlyExecutionRecordModel:
        record = self.get_record(month_label)
        if record is None:
            raise ExecutionRecordNotFoundError(f"No execution record for {month_label}")
        return record

    @staticmethod
    def _to_domain(record: MonthlyExecutionRecordModel) -> MonthlyExecution:
        return MonthlyExecution(
            id=record.id,
            month_label=record.month_label,
            status=record.status,
            created_at=as_naive_utc(record.created_at),
            started_at=as_naive_utc(record.started_at),
            completed_at=as_naive_utc(record.completed_at),
            can_undo_until=as_naive_utc(record.can_undo_until),
            tracked_goal_ids=list(record.tracked_goal_ids or []),
        )

    def _apply(self, record: MonthlyExecutionRecordModel, execution: MonthlyExecution, event_type: str) -> None:
        self.records.update(
            record,
            status=execution.status,
            started_at=execution.started_at,
            completed_at=execution.completed_at,
            can_undo_until=execution.can_undo_until,
            tracked_goal_ids=list(execution.tracked_goal_ids),
        )
        self.event_repo.append_event(
            event_type=event_type,
            entity_type=self.records.entity_type,
            entity_id=record.id,
            payload=MonthlyExecution.transition_payload(execution, event_type),
        )

    def _seed_allocation_baseline(self, goal_ids: List[str], at: datetime, month_label: str) -> None:
        history = AllocationHistoryRepository(self.db)
        for goal_id in goal_ids:
            for allocation in self.ledger.allocations_for_goal(goal_id):
                history.insert(AllocationHistoryModel(
                    id=uuid.uuid4().hex,
                    asset_id=allocation.asset_id,
                    goal_id=goal_id,
                    amount=Decimal(allocation.amount),
                    timestamp=at,
                    month_label=month_label,
                ))

    async def _freeze_rates(self, goal_ids: List[str]) -> Dict[str, str]:
        """Asset->goal rates used by the tracked goals, as {"BTC->USD": "65000"}"""
        rates: Dict[str, str] = {}
        if self.rate_provider is None:
            return rates

        assets = AssetRepository(self.db)
        goals = GoalRepository(self.db)
        for goal_id in goal_ids:
            goal = goals.get(goal_id)
            if goal is None:
                continue
            for allocation in self.ledger.allocations_for_goal(goal_id):
                asset = assets.get(allocation.asset_id)
                if asset is None or asset.currency.upper() == goal.currency.upper():
                    continue
                key = f"{asset.currency.upper()}->{goal.currency.upper()}"
                if key in rates:
                    continue
                try:
                    rates[key] = str(await self.rate_provider.rate(asset.currency.upper(), goal.currency.upper()))
                except RateUnavailableError:
                    logger.warning("Rate %s unavailable while closing the month", key)
        return rates
