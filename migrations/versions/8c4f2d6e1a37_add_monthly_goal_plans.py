"""add_monthly_goal_plans

Revision ID: 8c4f2d6e1a37
Revises: 5b1e0c7a9d21
Create Date: 2026-10-19 15:40:08.117204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '8c4f2d6e1a37'
down_revision: Union[str, Sequence[str], None] = '5b1e0c7a9d21'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

Amount = sa.Numeric(precision=28, scale=8)
NOW = sa.text('CURRENT_TIMESTAMP')


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'monthly_goal_plans',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('goal_id', sa.String(length=32), nullable=False),
        sa.Column('month_label', sa.String(length=7), nullable=False),
        sa.Column('required_monthly', Amount, server_default='0', nullable=False),
        sa.Column('remaining_amount', Amount, server_default='0', nullable=False),
        sa.Column('months_remaining', sa.Integer(), server_default='1', nullable=False),
        sa.Column('currency', sa.String(length=10), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('state', sa.String(length=16), server_default='draft', nullable=False),
        sa.Column('custom_amount', Amount, nullable=True),
        sa.Column('is_protected', sa.Boolean(), nullable=False),
        sa.Column('is_skipped', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=NOW, nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('month_label', 'goal_id', name='uq_goal_plan_month_goal'),
    )
    op.create_index('ix_monthly_goal_plans_goal_id', 'monthly_goal_plans', ['goal_id'])
    op.create_index('ix_monthly_goal_plans_month_label', 'monthly_goal_plans', ['month_label'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_monthly_goal_plans_month_label', table_name='monthly_goal_plans')
    op.drop_index('ix_monthly_goal_plans_goal_id', table_name='monthly_goal_plans')
    op.drop_table('monthly_goal_plans')
