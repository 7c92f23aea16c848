"""
SQLAlchemy ORM models (goals, assets, allocations, execution tracking, goal plans)
"""
from decimal import Decimal
from datetime import date as date_type, datetime
from sqlalchemy import String, Text, TIMESTAMP, Date, func, Numeric, UniqueConstraint, Index, JSON, Boolean, Integer
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import JSONB

from app.infrastructure.db.session import Base


# PostgreSQL gets JSONB, everything else (SQLite) plain JSON
JSONType = JSON().with_variant(JSONB(), "postgresql")

# Crypto balances need 8 decimal places
Amount = Numeric(precision=28, scale=8)


class EventLog(Base):
    """
    Event log - append-only change feed

    Every mutating use case appends one event; repositories observe it.
    """
    __tablename__ = "event_log"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    event_type: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    entity_type: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    payload_json: Mapped[dict] = mapped_column(JSONType, nullable=False)

    occurred_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        index=True
    )
    idempotency_key: Mapped[str | None] = mapped_column(
        String(255),
        unique=True,
        nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False
    )


# ============================================================================
# Goals / Assets
# ============================================================================


class GoalModel(Base):
    """Savings goal"""
    __tablename__ = "goals"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    currency: Mapped[str] = mapped_column(String(10), nullable=False)
    target_amount: Mapped[Decimal] = mapped_column(Amount, nullable=False)
    deadline: Mapped[date_type] = mapped_column(Date, nullable=False)
    start_date: Mapped[date_type] = mapped_column(Date, nullable=False)

    status: Mapped[str] = mapped_column(String(16), nullable=False, server_default="active")  # active/completed/archived
    status_changed_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

    emoji: Mapped[str | None] = mapped_column(String(16), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )

    __table_args__ = (
        Index('ix_goals_status_deadline', 'status', 'deadline'),
    )


class AssetModel(Base):
    """Asset: on-chain wallet or manual balance"""
    __tablename__ = "assets"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)

    currency: Mapped[str] = mapped_column(String(10), nullable=False)
    chain_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    address: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Best-effort cache, may be stale or zero
    cached_onchain_balance: Mapped[Decimal] = mapped_column(Amount, nullable=False, server_default="0")
    onchain_balance_updated_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint('chain_id', 'address', name='uq_asset_chain_address'),
    )


class TransactionModel(Base):
    """Signed balance change of an asset (asset currency)"""
    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    asset_id: Mapped[str] = mapped_column(String(32), nullable=False, index=True)  # -> assets

    amount: Mapped[Decimal] = mapped_column(Amount, nullable=False)
    date: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    source: Mapped[str] = mapped_column(String(16), nullable=False, server_default="manual")  # manual / onChain

    external_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    counterparty: Mapped[str | None] = mapped_column(String(255), nullable=True)
    comment: Mapped[str | None] = mapped_column(String(512), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index('ix_transactions_asset_date', 'asset_id', 'date'),
    )


# ============================================================================
# Allocations (asset x goal)
# ============================================================================


class AllocationModel(Base):
    """Part of an asset's balance assigned to a goal (asset currency)"""
    __tablename__ = "allocations"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    asset_id: Mapped[str] = mapped_column(String(32), nullable=False, index=True)  # -> assets
    goal_id: Mapped[str] = mapped_column(String(32), nullable=False, index=True)  # -> goals

    amount: Mapped[Decimal] = mapped_column(Amount, nullable=False, server_default="0")

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )

    __table_args__ = (
        UniqueConstraint('asset_id', 'goal_id', name='uq_allocation_asset_goal'),
    )


class AllocationHistoryModel(Base):
    """Allocation target snapshot, appended on every allocation change"""
    __tablename__ = "allocation_history"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    asset_id: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    goal_id: Mapped[str] = mapped_column(String(32), nullable=False, index=True)

    amount: Mapped[Decimal] = mapped_column(Amount, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    month_label: Mapped[str] = mapped_column(String(7), nullable=False, index=True)  # "YYYY-MM"

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )


# ============================================================================
# Monthly execution tracking
# ============================================================================


class MonthlyExecutionRecordModel(Base):
    """Per-month execution record: draft -> executing -> closed"""
    __tablename__ = "monthly_execution_records"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    month_label: Mapped[str] = mapped_column(String(7), nullable=False, unique=True)  # "YYYY-MM" (UTC)
    status: Mapped[str] = mapped_column(String(16), nullable=False, server_default="draft")

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    can_undo_until: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

    tracked_goal_ids: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)


class ExecutionSnapshotModel(Base):
    """Funding state of one tracked goal at start-tracking time"""
    __tablename__ = "execution_snapshots"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    record_id: Mapped[str] = mapped_column(String(32), nullable=False, index=True)  # -> monthly_execution_records
    goal_id: Mapped[str] = mapped_column(String(32), nullable=False)

    goal_name: Mapped[str] = mapped_column(String(255), nullable=False)
    currency: Mapped[str] = mapped_column(String(10), nullable=False)
    target_amount: Mapped[Decimal] = mapped_column(Amount, nullable=False)
    current_total_at_start: Mapped[Decimal] = mapped_column(Amount, nullable=False, server_default="0")
    required_amount: Mapped[Decimal] = mapped_column(Amount, nullable=False, server_default="0")

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint('record_id', 'goal_id', name='uq_execution_snapshot_goal'),
    )


class CompletedExecutionModel(Base):
    """Frozen rates and totals at month close"""
    __tablename__ = "completed_executions"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    record_id: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    month_label: Mapped[str] = mapped_column(String(7), nullable=False)
    completed_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)

    exchange_rates: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)  # {"BTC->USD": "65000"}
    final_totals: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)  # {goal_id: "123.45"}
    contributed_totals: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)  # {goal_id: "23.45"}


# ============================================================================
# Per-month goal plans
# ============================================================================


class MonthlyGoalPlanModel(Base):
    """One goal's plan for one month with the user's protect / skip / custom overrides"""
    __tablename__ = "monthly_goal_plans"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    goal_id: Mapped[str] = mapped_column(String(32), nullable=False, index=True)  # -> goals
    month_label: Mapped[str] = mapped_column(String(7), nullable=False, index=True)  # "YYYY-MM"

    required_monthly: Mapped[Decimal] = mapped_column(Amount, nullable=False, server_default="0")
    remaining_amount: Mapped[Decimal] = mapped_column(Amount, nullable=False, server_default="0")
    months_remaining: Mapped[int] = mapped_column(Integer, nullable=False, server_default="1")
    currency: Mapped[str] = mapped_column(String(10), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)  # requirement status
    state: Mapped[str] = mapped_column(String(16), nullable=False, server_default="draft")

    custom_amount: Mapped[Decimal | None] = mapped_column(Amount, nullable=True)
    is_protected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_skipped: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )

    __table_args__ = (
        UniqueConstraint('month_label', 'goal_id', name='uq_goal_plan_month_goal'),
    )
