"""create allocation and budget tables

Revision ID: 3f9c2a71d5e0
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f9c2a71d5e0'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


MONEY = sa.Numeric(precision=36, scale=9)
PERCENT = sa.Numeric(precision=5, scale=2)


def upgrade() -> None:
    op.create_table(
        'wallet_balances',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('tenant_id', sa.String(64), nullable=False),
        sa.Column('wallet_id', sa.String(64), nullable=False),
        sa.Column('currency', sa.String(8), nullable=False, server_default='USD'),
        sa.Column('balance', MONEY, nullable=False, server_default='0'),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=False), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('tenant_id', 'wallet_id', name='uq_wallet_balance'),
    )

    op.create_table(
        'sub_accounts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('tenant_id', sa.String(64), nullable=False),
        sa.Column('wallet_id', sa.String(64), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('sub_account_type', sa.String(32), nullable=False, server_default='CUSTOM'),
        sa.Column('current_balance', MONEY, nullable=False, server_default='0'),
        sa.Column('monthly_budget', MONEY, nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('sort_order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=False), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=False), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('tenant_id', 'wallet_id', 'name', name='uq_sub_account_name'),
        sa.CheckConstraint('current_balance >= 0', name='ck_sub_account_balance_non_negative'),
    )
    op.create_index('ix_sub_account_wallet_active', 'sub_accounts', ['tenant_id', 'wallet_id', 'is_active'])

    op.create_table(
        'sub_account_transactions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('tenant_id', sa.String(64), nullable=False),
        sa.Column('sub_account_id', sa.Integer(), nullable=False, index=True),
        sa.Column('tx_type', sa.String(32), nullable=False),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('balance_before', MONEY, nullable=False),
        sa.Column('balance_after', MONEY, nullable=False),
        sa.Column('is_credit', sa.Boolean(), nullable=False),
        sa.Column('counterpart_sub_account_id', sa.Integer(), nullable=True),
        sa.Column('source_transaction_id', sa.String(128), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('reference', sa.String(128), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=False), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint('amount > 0', name='ck_sub_account_tx_amount_positive'),
    )
    op.create_index('ix_sub_account_tx_account_created', 'sub_account_transactions', ['sub_account_id', 'created_at'])

    op.create_table(
        'allocation_rules',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('tenant_id', sa.String(64), nullable=False),
        sa.Column('wallet_id', sa.String(64), nullable=False),
        sa.Column('sub_account_id', sa.Integer(), nullable=False, index=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('rule_type', sa.String(32), nullable=False),
        sa.Column('percentage', PERCENT, nullable=True),
        sa.Column('fixed_amount', MONEY, nullable=True),
        sa.Column('trigger_type', sa.String(32), nullable=False),
        sa.Column('min_trigger_amount', MONEY, nullable=True),
        sa.Column('frequency', sa.String(32), nullable=True),
        sa.Column('day_of_month', sa.SmallInteger(), nullable=True),
        sa.Column('day_of_week', sa.SmallInteger(), nullable=True),
        sa.Column('next_scheduled_at', sa.TIMESTAMP(timezone=False), nullable=True),
        sa.Column('last_executed_at', sa.TIMESTAMP(timezone=False), nullable=True),
        sa.Column('priority', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=False), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=False), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('tenant_id', 'wallet_id', 'name', name='uq_allocation_rule_name'),
    )
    op.create_index(
        'ix_allocation_rule_wallet_trigger', 'allocation_rules',
        ['tenant_id', 'wallet_id', 'trigger_type', 'is_active'],
    )
    op.create_index('ix_allocation_rule_next_scheduled', 'allocation_rules', ['next_scheduled_at'])

    op.create_table(
        'allocation_executions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('tenant_id', sa.String(64), nullable=False),
        sa.Column('rule_id', sa.Integer(), nullable=False, index=True),
        sa.Column('sub_account_id', sa.Integer(), nullable=False),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('trigger_amount', MONEY, nullable=True),
        sa.Column('triggered_by', sa.String(32), nullable=False),
        sa.Column('source_transaction_id', sa.String(128), nullable=True),
        sa.Column('status', sa.String(16), nullable=False, server_default='COMPLETED'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('executed_at', sa.TIMESTAMP(timezone=False), server_default=sa.func.now(), nullable=False),
    )
    op.create_index(
        'ix_allocation_execution_sub_account', 'allocation_executions',
        ['tenant_id', 'sub_account_id', 'executed_at'],
    )

    op.create_table(
        'budget_periods',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('tenant_id', sa.String(64), nullable=False),
        sa.Column('wallet_id', sa.String(64), nullable=False),
        sa.Column('sub_account_id', sa.Integer(), nullable=True),
        sa.Column('period_type', sa.String(16), nullable=False),
        sa.Column('start_date', sa.TIMESTAMP(timezone=False), nullable=False),
        sa.Column('end_date', sa.TIMESTAMP(timezone=False), nullable=False),
        sa.Column('budget_amount', MONEY, nullable=False),
        sa.Column('spent_amount', MONEY, nullable=False, server_default='0'),
        sa.Column('remaining_amount', MONEY, nullable=False),
        sa.Column('status', sa.String(16), nullable=False, server_default='ON_TRACK'),
        sa.Column('alert_threshold', PERCENT, nullable=False, server_default='80'),
        sa.Column('alert_sent', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('alert_sent_at', sa.TIMESTAMP(timezone=False), nullable=True),
        sa.Column('alert_dispatched_at', sa.TIMESTAMP(timezone=False), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=False), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=False), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint('budget_amount > 0', name='ck_budget_period_amount_positive'),
        sa.CheckConstraint('start_date <= end_date', name='ck_budget_period_dates'),
    )
    op.create_index('ix_budget_period_scope', 'budget_periods', ['tenant_id', 'wallet_id', 'sub_account_id'])
    op.create_index('ix_budget_period_window', 'budget_periods', ['start_date', 'end_date'])


def downgrade() -> None:
    op.drop_index('ix_budget_period_window', table_name='budget_periods')
    op.drop_index('ix_budget_period_scope', table_name='budget_periods')
    op.drop_table('budget_periods')
    op.drop_index('ix_allocation_execution_sub_account', table_name='allocation_executions')
    op.drop_table('allocation_executions')
    op.drop_index('ix_allocation_rule_next_scheduled', table_name='allocation_rules')
    op.drop_index('ix_allocation_rule_wallet_trigger', table_name='allocation_rules')
    op.drop_table('allocation_rules')
    op.drop_index('ix_sub_account_tx_account_created', table_name='sub_account_transactions')
    op.drop_table('sub_account_transactions')
    op.drop_index('ix_sub_account_wallet_active', table_name='sub_accounts')
    op.drop_table('sub_accounts')
    op.drop_table('wallet_balances')
