"""
Budget periods: CRUD, spend tracking, alert sweep, period roll-over.

Status transitions live in subwallet.domain.budget_period; this module
persists them. Alert delivery is exactly-once: record_spending only marks
the threshold crossing (alert_sent), check_budget_alerts is the single place
that hands alerts out and stamps alert_dispatched_at.
"""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import List, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session

from subwallet.application.errors import BudgetValidationError, NotFoundError
from subwallet.config import get_settings
from subwallet.domain.allocation import quantize_amount
from subwallet.domain.budget_period import (
    ALERT_STATUSES, PERIOD_MONTHLY, STATUS_COMPLETED, STATUS_EXCEEDED, STATUS_ON_TRACK,
    VALID_PERIOD_TYPES, apply_spend, default_period_bounds, derive_status, percent_used, worst_status,
)
from subwallet.domain.dates import month_bounds
from subwallet.infrastructure.db.models import BudgetPeriod, SubAccount, WalletBalance
from subwallet.utils.money import format_money, format_percent

logger = logging.getLogger(__name__)

OVERALL_BUDGET_NAME = "Overall Budget"
PERCENT_QUANT = Decimal("0.01")


def _to_decimal(value, field_name: str) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise BudgetValidationError(f"{field_name} must be a number")


def _validate_threshold(threshold: Decimal) -> None:
    if not (0 < threshold <= 100):
        raise BudgetValidationError("alert_threshold must be between 0 (exclusive) and 100")


def _scope_filter(query, tenant_id: str, wallet_id: str, sub_account_id: int | None):
    query = query.filter(BudgetPeriod.tenant_id == tenant_id, BudgetPeriod.wallet_id == wallet_id)
    if sub_account_id is None:
        return query.filter(BudgetPeriod.sub_account_id.is_(None))
    return query.filter(BudgetPeriod.sub_account_id == sub_account_id)


def get_budget_period(db: Session, tenant_id: str, budget_id: int) -> BudgetPeriod:
    period = db.query(BudgetPeriod).filter(
        BudgetPeriod.id == budget_id,
        BudgetPeriod.tenant_id == tenant_id,
    ).first()
    if not period:
        raise NotFoundError(f"Budget period #{budget_id} not found")
    return period


def list_budget_periods(
    db: Session,
    tenant_id: str,
    wallet_id: str,
    sub_account_id: int | None = None,
    status: str | None = None,
    active: bool = True,
    limit: int = 20,
    offset: int = 0,
    now: datetime | None = None,
) -> Tuple[List[BudgetPeriod], int]:
    """
    Periods of a wallet, newest start first.

    active=True keeps only periods whose window contains now.
    sub_account_id=None lists every scope (wallet-wide and per sub-account).
    """
    if now is None:
        now = datetime.utcnow()

    query = db.query(BudgetPeriod).filter(
        BudgetPeriod.tenant_id == tenant_id,
        BudgetPeriod.wallet_id == wallet_id,
    )
    if sub_account_id is not None:
        query = query.filter(BudgetPeriod.sub_account_id == sub_account_id)
    if status:
        query = query.filter(BudgetPeriod.status == status)
    if active:
        query = query.filter(
            BudgetPeriod.start_date <= now,
            BudgetPeriod.end_date >= now,
            BudgetPeriod.status != STATUS_COMPLETED,
        )

    total = query.count()
    periods = (
        query.order_by(BudgetPeriod.start_date.desc(), BudgetPeriod.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return periods, total


class CreateBudgetPeriodUseCase:
    """
    Use case: open a budget period for a wallet or one of its sub-accounts.

    Missing dates are derived from period_type; overlapping periods of the
    same scope are rejected.
    """

    def __init__(self, db: Session):
        self.db = db

    def execute(
        self,
        tenant_id: str,
        wallet_id: str,
        budget_amount,
        period_type: str = PERIOD_MONTHLY,
        start_date: datetime | date | None = None,
        end_date: datetime | date | None = None,
        sub_account_id: int | None = None,
        alert_threshold=None,
        now: datetime | None = None,
    ) -> BudgetPeriod:
        if now is None:
            now = datetime.utcnow()

        if period_type not in VALID_PERIOD_TYPES:
            raise BudgetValidationError(
                f"Invalid period type: {period_type}. Use WEEKLY, MONTHLY, QUARTERLY, YEARLY or CUSTOM"
            )

        budget_amount = quantize_amount(_to_decimal(budget_amount, "budget_amount"))
        if budget_amount <= 0:
            raise BudgetValidationError("budget_amount must be > 0")

        if alert_threshold is None:
            alert_threshold = get_settings().DEFAULT_ALERT_THRESHOLD
        alert_threshold = _to_decimal(alert_threshold, "alert_threshold")
        _validate_threshold(alert_threshold)

        start, end = self._resolve_dates(period_type, start_date, end_date, now)
        if start > end:
            raise BudgetValidationError("start_date must not be after end_date")

        if sub_account_id is not None:
            sub_account = self.db.query(SubAccount).filter(
                SubAccount.id == sub_account_id,
                SubAccount.tenant_id == tenant_id,
                SubAccount.wallet_id == wallet_id,
            ).first()
            if not sub_account:
                raise NotFoundError("Sub-account not found or does not belong to this wallet")

        overlapping = _scope_filter(self.db.query(BudgetPeriod), tenant_id, wallet_id, sub_account_id).filter(
            BudgetPeriod.start_date <= end,
            BudgetPeriod.end_date >= start,
        ).first()
        if overlapping:
            raise BudgetValidationError(
                f"Budget period overlaps existing period #{overlapping.id} "
                f"({overlapping.start_date:%Y-%m-%d} - {overlapping.end_date:%Y-%m-%d})"
            )

        period = BudgetPeriod(
            tenant_id=tenant_id,
            wallet_id=wallet_id,
            sub_account_id=sub_account_id,
            period_type=period_type,
            start_date=start,
            end_date=end,
            budget_amount=budget_amount,
            spent_amount=Decimal("0"),
            remaining_amount=budget_amount,
            status=STATUS_ON_TRACK,
            alert_threshold=alert_threshold,
            alert_sent=False,
            alert_sent_at=None,
            alert_dispatched_at=None,
        )
        self.db.add(period)
        self.db.commit()
        logger.info(
            "Budget period #%s created for %s/%s (sub-account=%s): %s..%s",
            period.id, tenant_id, wallet_id, sub_account_id, start, end,
        )
        return period

    @staticmethod
    def _resolve_dates(period_type, start_date, end_date, now) -> Tuple[datetime, datetime]:
        if start_date is None:
            start_date = now.date()
        if isinstance(start_date, datetime):
            default_start, default_end = default_period_bounds(period_type, start_date.date())
            start = start_date
        else:
            default_start, default_end = default_period_bounds(period_type, start_date)
            start = default_start

        if end_date is None:
            end = default_end
        elif isinstance(end_date, datetime):
            end = end_date
        else:
            end = datetime.combine(end_date, datetime.max.time())
        return start, end


class UpdateBudgetPeriodUseCase:
    """Use case: change amount / threshold of a running period"""

    def __init__(self, db: Session):
        self.db = db

    def execute(
        self,
        tenant_id: str,
        budget_id: int,
        budget_amount=None,
        alert_threshold=None,
        now: datetime | None = None,
    ) -> BudgetPeriod:
        if now is None:
            now = datetime.utcnow()

        period = get_budget_period(self.db, tenant_id, budget_id)
        if period.status == STATUS_COMPLETED:
            raise BudgetValidationError("Completed budget periods cannot be changed")

        if budget_amount is not None:
            budget_amount = quantize_amount(_to_decimal(budget_amount, "budget_amount"))
            if budget_amount <= 0:
                raise BudgetValidationError("budget_amount must be > 0")
        if alert_threshold is not None:
            alert_threshold = _to_decimal(alert_threshold, "alert_threshold")
            _validate_threshold(alert_threshold)

        period = self.db.query(BudgetPeriod).filter(
            BudgetPeriod.id == budget_id
        ).populate_existing().with_for_update().one()

        if budget_amount is not None:
            period.budget_amount = budget_amount
        if alert_threshold is not None:
            period.alert_threshold = alert_threshold

        budget = Decimal(period.budget_amount)
        spent = Decimal(period.spent_amount)
        period.remaining_amount = budget - spent
        period.status = derive_status(budget, spent, Decimal(period.alert_threshold))
        if period.status in ALERT_STATUSES and not period.alert_sent:
            period.alert_sent = True
            period.alert_sent_at = now
        period.updated_at = now

        self.db.commit()
        return period


class DeleteBudgetPeriodUseCase:
    def __init__(self, db: Session):
        self.db = db

    def execute(self, tenant_id: str, budget_id: int) -> None:
        period = get_budget_period(self.db, tenant_id, budget_id)
        self.db.delete(period)
        self.db.commit()


def record_spending(
    db: Session,
    tenant_id: str,
    wallet_id: str,
    amount,
    sub_account_id: int | None = None,
    now: datetime | None = None,
) -> int:
    """
    Add amount to every running period that covers this spend.

    Wallet-wide periods always count; the sub-account's own periods count
    when sub_account_id is given. The first threshold crossing marks
    alert_sent; the alert itself goes out through check_budget_alerts.

    Returns:
        number of periods updated
    """
    if now is None:
        now = datetime.utcnow()
    amount = quantize_amount(_to_decimal(amount, "amount"))
    if amount <= 0:
        raise BudgetValidationError("Spending amount must be > 0")

    scope = BudgetPeriod.sub_account_id.is_(None)
    if sub_account_id is not None:
        scope = or_(scope, BudgetPeriod.sub_account_id == sub_account_id)

    periods = (
        db.query(BudgetPeriod)
        .filter(
            BudgetPeriod.tenant_id == tenant_id,
            BudgetPeriod.wallet_id == wallet_id,
            scope,
            BudgetPeriod.status != STATUS_COMPLETED,
            BudgetPeriod.start_date <= now,
            BudgetPeriod.end_date >= now,
        )
        .order_by(BudgetPeriod.id)
        .populate_existing()
        .with_for_update()
        .all()
    )

    for period in periods:
        outcome = apply_spend(
            Decimal(period.budget_amount),
            Decimal(period.spent_amount),
            Decimal(period.alert_threshold),
            amount,
        )
        period.spent_amount = outcome.spent_amount
        period.remaining_amount = outcome.remaining_amount
        period.status = outcome.status
        if outcome.crossed_threshold and not period.alert_sent:
            period.alert_sent = True
            period.alert_sent_at = now
        period.updated_at = now

    db.commit()
    if periods:
        logger.info("Recorded spending %s on %d budget period(s) of wallet %s", amount, len(periods), wallet_id)
    return len(periods)


@dataclass
class BudgetAlert:
    budget_id: int
    tenant_id: str
    wallet_id: str
    sub_account_id: int | None
    status: str
    budget_amount: Decimal
    spent_amount: Decimal
    remaining_amount: Decimal
    percent_used: Decimal
    message: str


def _alert_message(period: BudgetPeriod, name: str, used: Decimal, currency: str) -> str:
    if period.status == STATUS_EXCEEDED:
        return (
            f"{name}: budget exceeded by {format_money(-Decimal(period.remaining_amount), currency)} "
            f"({format_percent(used)} of {format_money(period.budget_amount, currency)})"
        )
    return (
        f"{name}: {format_percent(used)} of {format_money(period.budget_amount, currency)} spent, "
        f"{format_money(period.remaining_amount, currency)} left"
    )


def _period_name(db: Session, period: BudgetPeriod) -> str:
    if period.sub_account_id is None:
        return OVERALL_BUDGET_NAME
    sub_account = db.query(SubAccount).filter(SubAccount.id == period.sub_account_id).first()
    return sub_account.name if sub_account else f"Sub-account #{period.sub_account_id}"


def check_budget_alerts(
    db: Session,
    tenant_id: str | None = None,
    now: datetime | None = None,
) -> List[BudgetAlert]:
    """
    Hand out alerts for WARNING / EXCEEDED periods not dispatched yet.

    Each period is returned at most once over its lifetime.
    """
    if now is None:
        now = datetime.utcnow()

    query = db.query(BudgetPeriod).filter(
        BudgetPeriod.status.in_(ALERT_STATUSES),
        BudgetPeriod.alert_dispatched_at.is_(None),
    )
    if tenant_id is not None:
        query = query.filter(BudgetPeriod.tenant_id == tenant_id)
    periods = query.order_by(BudgetPeriod.id).populate_existing().with_for_update().all()

    alerts: List[BudgetAlert] = []
    for period in periods:
        wallet = db.query(WalletBalance).filter(
            WalletBalance.tenant_id == period.tenant_id,
            WalletBalance.wallet_id == period.wallet_id,
        ).first()
        currency = wallet.currency if wallet else "USD"
        used = percent_used(Decimal(period.spent_amount), Decimal(period.budget_amount)).quantize(PERCENT_QUANT)

        alerts.append(BudgetAlert(
            budget_id=period.id,
            tenant_id=period.tenant_id,
            wallet_id=period.wallet_id,
            sub_account_id=period.sub_account_id,
            status=period.status,
            budget_amount=Decimal(period.budget_amount),
            spent_amount=Decimal(period.spent_amount),
            remaining_amount=Decimal(period.remaining_amount),
            percent_used=used,
            message=_alert_message(period, _period_name(db, period), used, currency),
        ))

        period.alert_sent = True
        if period.alert_sent_at is None:
            period.alert_sent_at = now
        period.alert_dispatched_at = now

    db.commit()
    for alert in alerts:
        logger.warning("Budget alert [%s] %s", alert.status, alert.message)
    return alerts


def complete_expired_budgets(db: Session, now: datetime | None = None) -> int:
    """Close every period whose end_date has passed. Safe to run repeatedly."""
    if now is None:
        now = datetime.utcnow()

    periods = db.query(BudgetPeriod).filter(
        BudgetPeriod.status != STATUS_COMPLETED,
        BudgetPeriod.end_date < now,
    ).all()
    for period in periods:
        period.status = STATUS_COMPLETED
        period.updated_at = now
    db.commit()

    if periods:
        logger.info("Completed %d expired budget period(s)", len(periods))
    return len(periods)


@dataclass
class BudgetSummaryLine:
    budget_id: int
    name: str
    sub_account_id: int | None
    period_type: str
    budget_amount: Decimal
    spent_amount: Decimal
    remaining_amount: Decimal
    percent_used: Decimal
    status: str


@dataclass
class BudgetSummary:
    wallet_id: str
    total_budget: Decimal
    total_spent: Decimal
    total_remaining: Decimal
    percent_used: Decimal
    status: str
    periods: List[BudgetSummaryLine] = field(default_factory=list)


def get_budget_summary(
    db: Session,
    tenant_id: str,
    wallet_id: str,
    period_type: str | None = None,
    now: datetime | None = None,
) -> BudgetSummary:
    """Totals and worst status over the wallet's running periods."""
    if now is None:
        now = datetime.utcnow()

    query = db.query(BudgetPeriod).filter(
        BudgetPeriod.tenant_id == tenant_id,
        BudgetPeriod.wallet_id == wallet_id,
        BudgetPeriod.status != STATUS_COMPLETED,
        BudgetPeriod.start_date <= now,
        BudgetPeriod.end_date >= now,
    )
    if period_type:
        query = query.filter(BudgetPeriod.period_type == period_type)
    periods = query.order_by(BudgetPeriod.id).all()

    lines = []
    for period in periods:
        budget = Decimal(period.budget_amount)
        spent = Decimal(period.spent_amount)
        lines.append(BudgetSummaryLine(
            budget_id=period.id,
            name=_period_name(db, period),
            sub_account_id=period.sub_account_id,
            period_type=period.period_type,
            budget_amount=budget,
            spent_amount=spent,
            remaining_amount=Decimal(period.remaining_amount),
            percent_used=percent_used(spent, budget).quantize(PERCENT_QUANT),
            status=period.status,
        ))

    total_budget = sum((line.budget_amount for line in lines), Decimal("0"))
    total_spent = sum((line.spent_amount for line in lines), Decimal("0"))
    return BudgetSummary(
        wallet_id=wallet_id,
        total_budget=total_budget,
        total_spent=total_spent,
        total_remaining=total_budget - total_spent,
        percent_used=percent_used(total_spent, total_budget).quantize(PERCENT_QUANT),
        status=worst_status(line.status for line in lines),
        periods=lines,
    )


def auto_create_monthly_budgets(
    db: Session,
    tenant_id: str,
    wallet_id: str,
    now: datetime | None = None,
) -> List[BudgetPeriod]:
    """
    Open this month's period for every active sub-account with a monthly_budget.

    A sub-account that already has an overlapping period is left alone, so
    running this twice in one month creates nothing the second time.
    """
    if now is None:
        now = datetime.utcnow()
    start, end = month_bounds(now.date())

    sub_accounts = db.query(SubAccount).filter(
        SubAccount.tenant_id == tenant_id,
        SubAccount.wallet_id == wallet_id,
        SubAccount.is_active == True,  # noqa: E712
        SubAccount.monthly_budget.isnot(None),
    ).order_by(SubAccount.sort_order, SubAccount.id).all()

    use_case = CreateBudgetPeriodUseCase(db)
    created = []
    for sub_account in sub_accounts:
        if Decimal(sub_account.monthly_budget) <= 0:
            continue
        try:
            created.append(use_case.execute(
                tenant_id, wallet_id, sub_account.monthly_budget,
                period_type=PERIOD_MONTHLY,
                start_date=start,
                end_date=end,
                sub_account_id=sub_account.id,
                now=now,
            ))
        except BudgetValidationError as e:
            logger.info("Monthly budget for sub-account #%s skipped: %s", sub_account.id, e)
    return created


def auto_create_monthly_budgets_for_all(db: Session, now: datetime | None = None) -> int:
    """Run auto_create_monthly_budgets for every wallet that has monthly budgets configured."""
    wallets = db.query(SubAccount.tenant_id, SubAccount.wallet_id).filter(
        SubAccount.is_active == True,  # noqa: E712
        SubAccount.monthly_budget.isnot(None),
    ).distinct().all()

    created = 0
    for tenant_id, wallet_id in wallets:
        created += len(auto_create_monthly_budgets(db, tenant_id, wallet_id, now=now))
    return created
