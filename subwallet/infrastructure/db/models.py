"""
SQLAlchemy ORM models (ledger, allocation rules, budgets + wallet read model)
"""
from datetime import datetime
from decimal import Decimal
from sqlalchemy import String, Integer, SmallInteger, Text, TIMESTAMP, func, Boolean, Numeric, UniqueConstraint, Index, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from subwallet.infrastructure.db.session import Base


# Fixed-point money: 36 digits, 9 after the point
MONEY = Numeric(precision=36, scale=9)
PERCENT = Numeric(precision=5, scale=2)


class WalletBalance(Base):
    """
    Read model: wallet balance as reported by the wallet service.

    The wallet service owns custody; this table only mirrors the latest known
    balance so allocations can be checked against the unallocated amount.
    """
    __tablename__ = "wallet_balances"

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    wallet_id: Mapped[str] = mapped_column(String(64), nullable=False)

    currency: Mapped[str] = mapped_column(String(8), nullable=False, server_default="USD")
    balance: Mapped[Decimal] = mapped_column(MONEY, nullable=False, server_default="0")

    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=False),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )

    __table_args__ = (
        UniqueConstraint('tenant_id', 'wallet_id', name='uq_wallet_balance'),
    )


class SubAccount(Base):
    """
    Virtual partition of a wallet balance.

    current_balance is a cache of the ledger (sub_account_transactions);
    it is only written through subwallet.application.ledger.
    """
    __tablename__ = "sub_accounts"

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    wallet_id: Mapped[str] = mapped_column(String(64), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    sub_account_type: Mapped[str] = mapped_column(String(32), nullable=False, server_default="CUSTOM")  # RENT, PAYROLL, ...

    current_balance: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    monthly_budget: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=False), default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=False), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        UniqueConstraint('tenant_id', 'wallet_id', 'name', name='uq_sub_account_name'),
        Index('ix_sub_account_wallet_active', 'tenant_id', 'wallet_id', 'is_active'),
        CheckConstraint('current_balance >= 0', name='ck_sub_account_balance_non_negative'),
    )


class SubAccountTransaction(Base):
    """
    Ledger entry: one immutable balance mutation of a sub-account.
    """
    __tablename__ = "sub_account_transactions"

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    sub_account_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)  # -> sub_accounts

    tx_type: Mapped[str] = mapped_column(String(32), nullable=False)  # ALLOCATION, EXPENSE, TRANSFER_IN, ...
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    balance_before: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    is_credit: Mapped[bool] = mapped_column(Boolean, nullable=False)

    counterpart_sub_account_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    source_transaction_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    reference: Mapped[str | None] = mapped_column(String(128), nullable=True)  # "RULE:<id>" / actor tag

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=False), default=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        Index('ix_sub_account_tx_account_created', 'sub_account_id', 'created_at'),
        CheckConstraint('amount > 0', name='ck_sub_account_tx_amount_positive'),
    )


class AllocationRule(Base):
    """
    Declarative rule that routes funds into a sub-account.
    """
    __tablename__ = "allocation_rules"

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    wallet_id: Mapped[str] = mapped_column(String(64), nullable=False)
    sub_account_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)  # -> sub_accounts

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    rule_type: Mapped[str] = mapped_column(String(32), nullable=False)  # PERCENTAGE / FIXED_AMOUNT / REMAINDER
    percentage: Mapped[Decimal | None] = mapped_column(PERCENT, nullable=True)
    fixed_amount: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True)

    trigger_type: Mapped[str] = mapped_column(String(32), nullable=False)  # ON_RECEIVE / ON_SCHEDULE / MANUAL
    min_trigger_amount: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True)

    frequency: Mapped[str | None] = mapped_column(String(32), nullable=True)  # DAILY / WEEKLY / BI_WEEKLY / MONTHLY / QUARTERLY
    day_of_month: Mapped[int | None] = mapped_column(SmallInteger, nullable=True)  # 1..31
    day_of_week: Mapped[int | None] = mapped_column(SmallInteger, nullable=True)  # 0=Sunday..6
    next_scheduled_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=False), nullable=True)
    last_executed_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=False), nullable=True)

    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=False), default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=False), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        UniqueConstraint('tenant_id', 'wallet_id', 'name', name='uq_allocation_rule_name'),
        Index('ix_allocation_rule_wallet_trigger', 'tenant_id', 'wallet_id', 'trigger_type', 'is_active'),
        Index('ix_allocation_rule_next_scheduled', 'next_scheduled_at'),
    )


class AllocationExecution(Base):
    """
    Audit record of one rule-driven allocation attempt (manual allocations are ledger-only).
    """
    __tablename__ = "allocation_executions"

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    rule_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)  # no FK: rules may be deleted
    sub_account_id: Mapped[int] = mapped_column(Integer, nullable=False)

    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    trigger_amount: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True)
    triggered_by: Mapped[str] = mapped_column(String(32), nullable=False)  # ON_RECEIVE / SCHEDULED / MANUAL
    source_transaction_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="COMPLETED")  # COMPLETED / FAILED
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    executed_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=False), default=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        Index('ix_allocation_execution_sub_account', 'tenant_id', 'sub_account_id', 'executed_at'),
    )


class BudgetPeriod(Base):
    """
    Spending cap for a wallet (sub_account_id IS NULL) or one sub-account over [start_date, end_date].
    """
    __tablename__ = "budget_periods"

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    wallet_id: Mapped[str] = mapped_column(String(64), nullable=False)
    sub_account_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    period_type: Mapped[str] = mapped_column(String(16), nullable=False)  # WEEKLY / MONTHLY / QUARTERLY / YEARLY / CUSTOM
    start_date: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=False), nullable=False)
    end_date: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=False), nullable=False)

    budget_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    spent_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    remaining_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="ON_TRACK")
    alert_threshold: Mapped[Decimal] = mapped_column(PERCENT, nullable=False, default=Decimal("80"))
    alert_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    alert_sent_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=False), nullable=True)
    alert_dispatched_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=False), default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=False), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        Index('ix_budget_period_scope', 'tenant_id', 'wallet_id', 'sub_account_id'),
        Index('ix_budget_period_window', 'start_date', 'end_date'),
        CheckConstraint('budget_amount > 0', name='ck_budget_period_amount_positive'),
        CheckConstraint('start_date <= end_date', name='ck_budget_period_dates'),
    )
