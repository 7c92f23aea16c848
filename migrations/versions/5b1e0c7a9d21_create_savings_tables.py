"""create_savings_tables

Revision ID: 5b1e0c7a9d21
Revises:
Create Date: 2026-10-19 10:12:41.503318

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB


# revision identifiers, used by Alembic.
revision: str = '5b1e0c7a9d21'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(JSONB(), "postgresql")
Amount = sa.Numeric(precision=28, scale=8)
NOW = sa.text('CURRENT_TIMESTAMP')


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'event_log',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.String(length=128), nullable=False),
        sa.Column('entity_type', sa.String(length=64), nullable=False),
        sa.Column('entity_id', sa.String(length=64), nullable=False),
        sa.Column('payload_json', JSONType, nullable=False),
        sa.Column('occurred_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('idempotency_key', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=NOW, nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('idempotency_key'),
    )
    op.create_index('ix_event_log_event_type', 'event_log', ['event_type'])
    op.create_index('ix_event_log_entity_type', 'event_log', ['entity_type'])
    op.create_index('ix_event_log_entity_id', 'event_log', ['entity_id'])
    op.create_index('ix_event_log_occurred_at', 'event_log', ['occurred_at'])

    op.create_table(
        'goals',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('currency', sa.String(length=10), nullable=False),
        sa.Column('target_amount', Amount, nullable=False),
        sa.Column('deadline', sa.Date(), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('status', sa.String(length=16), server_default='active', nullable=False),
        sa.Column('status_changed_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('emoji', sa.String(length=16), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=NOW, nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_goals_status_deadline', 'goals', ['status', 'deadline'])

    op.create_table(
        'assets',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('currency', sa.String(length=10), nullable=False),
        sa.Column('chain_id', sa.String(length=64), nullable=True),
        sa.Column('address', sa.String(length=255), nullable=True),
        sa.Column('cached_onchain_balance', Amount, server_default='0', nullable=False),
        sa.Column('onchain_balance_updated_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('chain_id', 'address', name='uq_asset_chain_address'),
    )

    op.create_table(
        'transactions',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('asset_id', sa.String(length=32), nullable=False),
        sa.Column('amount', Amount, nullable=False),
        sa.Column('date', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('source', sa.String(length=16), server_default='manual', nullable=False),
        sa.Column('external_id', sa.String(length=255), nullable=True),
        sa.Column('counterparty', sa.String(length=255), nullable=True),
        sa.Column('comment', sa.String(length=512), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=NOW, nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_transactions_asset_id', 'transactions', ['asset_id'])
    op.create_index('ix_transactions_asset_date', 'transactions', ['asset_id', 'date'])

    op.create_table(
        'allocations',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('asset_id', sa.String(length=32), nullable=False),
        sa.Column('goal_id', sa.String(length=32), nullable=False),
        sa.Column('amount', Amount, server_default='0', nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=NOW, nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('asset_id', 'goal_id', name='uq_allocation_asset_goal'),
    )
    op.create_index('ix_allocations_asset_id', 'allocations', ['asset_id'])
    op.create_index('ix_allocations_goal_id', 'allocations', ['goal_id'])

    op.create_table(
        'allocation_history',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('asset_id', sa.String(length=32), nullable=False),
        sa.Column('goal_id', sa.String(length=32), nullable=False),
        sa.Column('amount', Amount, nullable=False),
        sa.Column('timestamp', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('month_label', sa.String(length=7), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=NOW, nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_allocation_history_asset_id', 'allocation_history', ['asset_id'])
    op.create_index('ix_allocation_history_goal_id', 'allocation_history', ['goal_id'])
    op.create_index('ix_allocation_history_month_label', 'allocation_history', ['month_label'])

    op.create_table(
        'monthly_execution_records',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('month_label', sa.String(length=7), nullable=False),
        sa.Column('status', sa.String(length=16), server_default='draft', nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('started_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('completed_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('can_undo_until', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('tracked_goal_ids', JSONType, nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('month_label'),
    )

    op.create_table(
        'execution_snapshots',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('record_id', sa.String(length=32), nullable=False),
        sa.Column('goal_id', sa.String(length=32), nullable=False),
        sa.Column('goal_name', sa.String(length=255), nullable=False),
        sa.Column('currency', sa.String(length=10), nullable=False),
        sa.Column('target_amount', Amount, nullable=False),
        sa.Column('current_total_at_start', Amount, server_default='0', nullable=False),
        sa.Column('required_amount', Amount, server_default='0', nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('record_id', 'goal_id', name='uq_execution_snapshot_goal'),
    )
    op.create_index('ix_execution_snapshots_record_id', 'execution_snapshots', ['record_id'])

    op.create_table(
        'completed_executions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('record_id', sa.String(length=32), nullable=False),
        sa.Column('month_label', sa.String(length=7), nullable=False),
        sa.Column('completed_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('exchange_rates', JSONType, nullable=False),
        sa.Column('final_totals', JSONType, nullable=False),
        sa.Column('contributed_totals', JSONType, nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('record_id'),
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('completed_executions')
    op.drop_index('ix_execution_snapshots_record_id', table_name='execution_snapshots')
    op.drop_table('execution_snapshots')
    op.drop_table('monthly_execution_records')
    op.drop_index('ix_allocation_history_month_label', table_name='allocation_history')
    op.drop_index('ix_allocation_history_goal_id', table_name='allocation_history')
    op.drop_index('ix_allocation_history_asset_id', table_name='allocation_history')
    op.drop_table('allocation_history')
    op.drop_index('ix_allocations_goal_id', table_name='allocations')
    op.drop_index('ix_allocations_asset_id', table_name='allocations')
    op.drop_table('allocations')
    op.drop_index('ix_transactions_asset_date', table_name='transactions')
    op.drop_index('ix_transactions_asset_id', table_name='transactions')
    op.drop_table('transactions')
    op.drop_table('assets')
    op.drop_index('ix_goals_status_deadline', table_name='goals')
    op.drop_table('goals')
    op.drop_index('ix_event_log_occurred_at', table_name='event_log')
    op.drop_index('ix_event_log_entity_id', table_name='event_log')
    op.drop_index('ix_event_log_entity_type', table_name='event_log')
    op.drop_index('ix_event_log_event_type', table_name='event_log')
    op.drop_table('event_log')
