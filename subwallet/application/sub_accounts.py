"""
Sub-account use cases: lifecycle, expenses, transfers, reconciliation.

All balance changes go through subwallet.application.ledger.post_entry;
each use case commits exactly once.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, List, Tuple

from sqlalchemy.orm import Session

from subwallet.application.budgets import record_spending
from subwallet.application.errors import NotFoundError, SubAccountValidationError
from subwallet.application.ledger import LedgerReconciliation, lock_sub_account, post_entry, reconcile
from subwallet.application.wallets import WalletBalanceReader
from subwallet.domain.allocation import quantize_amount
from subwallet.domain.sub_account import (
    SUB_ACCOUNT_TYPES, TX_ADJUSTMENT, TX_EXPENSE, TX_RETURN_TO_MAIN, TX_TRANSFER_IN, TX_TRANSFER_OUT,
)
from subwallet.infrastructure.db.models import AllocationRule, SubAccount, SubAccountTransaction

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = ("name", "description", "sub_account_type", "monthly_budget", "sort_order", "is_active")


def _positive_amount(value) -> Decimal:
    try:
        amount = quantize_amount(Decimal(str(value)))
    except (InvalidOperation, ValueError):
        raise SubAccountValidationError("amount must be a number")
    if amount <= 0:
        raise SubAccountValidationError("amount must be > 0")
    return amount


def _validate_type(sub_account_type: str) -> None:
    if sub_account_type not in SUB_ACCOUNT_TYPES:
        raise SubAccountValidationError(f"Invalid sub-account type: {sub_account_type}")


def _validate_monthly_budget(monthly_budget) -> Decimal | None:
    if monthly_budget is None:
        return None
    try:
        value = Decimal(str(monthly_budget))
    except (InvalidOperation, ValueError):
        raise SubAccountValidationError("monthly_budget must be a number")
    if value <= 0:
        raise SubAccountValidationError("monthly_budget must be > 0")
    return value


def get_sub_account(db: Session, tenant_id: str, sub_account_id: int) -> SubAccount:
    sub_account = db.query(SubAccount).filter(
        SubAccount.id == sub_account_id,
        SubAccount.tenant_id == tenant_id,
    ).first()
    if not sub_account:
        raise NotFoundError(f"Sub-account #{sub_account_id} not found")
    return sub_account


def list_sub_accounts(
    db: Session,
    tenant_id: str,
    wallet_id: str,
    include_inactive: bool = False,
) -> List[SubAccount]:
    query = db.query(SubAccount).filter(
        SubAccount.tenant_id == tenant_id,
        SubAccount.wallet_id == wallet_id,
    )
    if not include_inactive:
        query = query.filter(SubAccount.is_active == True)  # noqa: E712
    return query.order_by(SubAccount.sort_order, SubAccount.id).all()


class CreateSubAccountUseCase:
    """
    Use case: create an empty sub-account in a wallet
    """

    def __init__(self, db: Session):
        self.db = db

    def execute(
        self,
        tenant_id: str,
        wallet_id: str,
        name: str,
        sub_account_type: str = "CUSTOM",
        description: str | None = None,
        monthly_budget=None,
        sort_order: int | None = None,
    ) -> SubAccount:
        name = (name or "").strip()
        if not name:
            raise SubAccountValidationError("Sub-account name cannot be empty")
        _validate_type(sub_account_type)
        monthly_budget = _validate_monthly_budget(monthly_budget)

        existing = self.db.query(SubAccount).filter(
            SubAccount.tenant_id == tenant_id,
            SubAccount.wallet_id == wallet_id,
            SubAccount.name == name,
        ).first()
        if existing:
            raise SubAccountValidationError(f"Sub-account «{name}» already exists in this wallet")

        if sort_order is None:
            sort_order = self.db.query(SubAccount).filter(
                SubAccount.tenant_id == tenant_id,
                SubAccount.wallet_id == wallet_id,
            ).count()

        sub_account = SubAccount(
            tenant_id=tenant_id,
            wallet_id=wallet_id,
            name=name,
            description=description,
            sub_account_type=sub_account_type,
            current_balance=Decimal("0"),
            monthly_budget=monthly_budget,
            is_active=True,
            sort_order=sort_order,
        )
        self.db.add(sub_account)
        self.db.commit()
        return sub_account


class UpdateSubAccountUseCase:
    def __init__(self, db: Session):
        self.db = db

    def execute(self, tenant_id: str, sub_account_id: int, **changes: Any) -> SubAccount:
        unknown = set(changes) - set(_UPDATABLE_FIELDS)
        if unknown:
            raise SubAccountValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        sub_account = get_sub_account(self.db, tenant_id, sub_account_id)

        if "name" in changes:
            name = (changes["name"] or "").strip()
            if not name:
                raise SubAccountValidationError("Sub-account name cannot be empty")
            duplicate = self.db.query(SubAccount).filter(
                SubAccount.tenant_id == tenant_id,
                SubAccount.wallet_id == sub_account.wallet_id,
                SubAccount.name == name,
                SubAccount.id != sub_account.id,
            ).first()
            if duplicate:
                raise SubAccountValidationError(f"Sub-account «{name}» already exists in this wallet")
            changes["name"] = name

        if "sub_account_type" in changes:
            _validate_type(changes["sub_account_type"])
        if "monthly_budget" in changes:
            changes["monthly_budget"] = _validate_monthly_budget(changes["monthly_budget"])
        if changes.get("is_active") is False and Decimal(sub_account.current_balance) > 0:
            raise SubAccountValidationError("Return the balance to the main wallet before deactivating")

        for key, value in changes.items():
            setattr(sub_account, key, value)
        sub_account.updated_at = datetime.utcnow()

        self.db.commit()
        return sub_account


class DeleteSubAccountUseCase:
    """
    Use case: retire a sub-account.

    Any balance goes back to the main wallet (RETURN_TO_MAIN entry), its
    allocation rules are deleted and the row is deactivated. Ledger history
    is kept.
    """

    def __init__(self, db: Session):
        self.db = db

    def execute(self, tenant_id: str, sub_account_id: int) -> Decimal:
        sub_account = lock_sub_account(self.db, tenant_id, sub_account_id)

        returned = Decimal(sub_account.current_balance)
        if returned > 0:
            post_entry(
                self.db, sub_account, TX_RETURN_TO_MAIN, returned,
                description="Sub-account closed: balance returned to main wallet",
                reference="DELETE",
            )

        self.db.query(AllocationRule).filter(
            AllocationRule.tenant_id == tenant_id,
            AllocationRule.sub_account_id == sub_account_id,
        ).delete(synchronize_session=False)

        sub_account.is_active = False
        sub_account.updated_at = datetime.utcnow()
        self.db.commit()

        logger.info("Sub-account #%s deactivated, %s returned to main wallet", sub_account_id, returned)
        return returned


class RecordExpenseUseCase:
    """
    Use case: spend from a sub-account.

    The EXPENSE debit commits first; budget tracking then runs for the
    sub-account's wallet. When wallet_id is given the sub-account must
    belong to it.
    """

    def __init__(self, db: Session):
        self.db = db

    def execute(
        self,
        tenant_id: str,
        sub_account_id: int,
        amount,
        description: str | None = None,
        source_transaction_id: str | None = None,
        now: datetime | None = None,
        wallet_id: str | None = None,
    ) -> SubAccountTransaction:
        amount = _positive_amount(amount)
        sub_account = lock_sub_account(self.db, tenant_id, sub_account_id)
        if wallet_id is not None and sub_account.wallet_id != wallet_id:
            raise NotFoundError(f"Sub-account #{sub_account_id} not found in wallet {wallet_id}")

        entry = post_entry(
            self.db, sub_account, TX_EXPENSE, amount,
            description=description,
            source_transaction_id=source_transaction_id,
        )
        self.db.commit()

        record_spending(
            self.db, tenant_id, sub_account.wallet_id, amount, sub_account_id=sub_account_id, now=now,
        )
        return entry


class TransferBetweenSubAccountsUseCase:
    """Use case: move funds between two sub-accounts of the same wallet"""

    def __init__(self, db: Session):
        self.db = db

    def execute(
        self,
        tenant_id: str,
        from_sub_account_id: int,
        to_sub_account_id: int,
        amount,
        description: str | None = None,
    ) -> Tuple[SubAccountTransaction, SubAccountTransaction]:
        amount = _positive_amount(amount)
        if from_sub_account_id == to_sub_account_id:
            raise SubAccountValidationError("Cannot transfer to the same sub-account")

        # Lock in id order so two opposite transfers cannot deadlock
        first_id, second_id = sorted((from_sub_account_id, to_sub_account_id))
        locked = {
            first_id: lock_sub_account(self.db, tenant_id, first_id),
            second_id: lock_sub_account(self.db, tenant_id, second_id),
        }
        source = locked[from_sub_account_id]
        target = locked[to_sub_account_id]
        if source.wallet_id != target.wallet_id:
            raise SubAccountValidationError("Transfers are only allowed within one wallet")

        outgoing = post_entry(
            self.db, source, TX_TRANSFER_OUT, amount,
            description=description or f"Transfer to {target.name}",
            counterpart_sub_account_id=target.id,
        )
        incoming = post_entry(
            self.db, target, TX_TRANSFER_IN, amount,
            description=description or f"Transfer from {source.name}",
            counterpart_sub_account_id=source.id,
        )
        self.db.commit()

        logger.info("Transferred %s from sub-account #%s to #%s", amount, source.id, target.id)
        return outgoing, incoming


class ReturnToMainWalletUseCase:
    def __init__(self, db: Session):
        self.db = db

    def execute(
        self,
        tenant_id: str,
        sub_account_id: int,
        amount,
        description: str | None = None,
    ) -> SubAccountTransaction:
        amount = _positive_amount(amount)
        sub_account = lock_sub_account(self.db, tenant_id, sub_account_id)
        entry = post_entry(
            self.db, sub_account, TX_RETURN_TO_MAIN, amount,
            description=description or "Returned to main wallet",
        )
        self.db.commit()
        return entry


class AdjustBalanceUseCase:
    """Use case: manual correction (ADJUSTMENT entry), reason is mandatory"""

    def __init__(self, db: Session):
        self.db = db

    def execute(
        self,
        tenant_id: str,
        sub_account_id: int,
        amount,
        is_credit: bool,
        reason: str,
    ) -> SubAccountTransaction:
        amount = _positive_amount(amount)
        reason = (reason or "").strip()
        if not reason:
            raise SubAccountValidationError("Adjustment reason cannot be empty")

        sub_account = lock_sub_account(self.db, tenant_id, sub_account_id)
        entry = post_entry(
            self.db, sub_account, TX_ADJUSTMENT, amount,
            is_credit=is_credit,
            description=reason,
            reference="ADJUSTMENT",
        )
        self.db.commit()
        logger.info(
            "Sub-account #%s adjusted %s%s: %s",
            sub_account_id, "+" if is_credit else "-", amount, reason,
        )
        return entry


def list_sub_account_transactions(
    db: Session,
    tenant_id: str,
    sub_account_id: int,
    limit: int = 20,
    offset: int = 0,
) -> Tuple[List[SubAccountTransaction], int]:
    get_sub_account(db, tenant_id, sub_account_id)
    query = db.query(SubAccountTransaction).filter(
        SubAccountTransaction.tenant_id == tenant_id,
        SubAccountTransaction.sub_account_id == sub_account_id,
    )
    total = query.count()
    entries = (
        query.order_by(SubAccountTransaction.created_at.desc(), SubAccountTransaction.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return entries, total


@dataclass
class WalletBalanceOverview:
    wallet_id: str
    total_balance: Decimal
    allocated_balance: Decimal
    unallocated_balance: Decimal
    sub_accounts: List[SubAccount] = field(default_factory=list)


def get_wallet_balance_overview(db: Session, tenant_id: str, wallet_id: str) -> WalletBalanceOverview:
    reader = WalletBalanceReader(db)
    total = reader.get_balance(tenant_id, wallet_id)
    allocated = reader.get_allocated_balance(tenant_id, wallet_id)
    return WalletBalanceOverview(
        wallet_id=wallet_id,
        total_balance=total,
        allocated_balance=allocated,
        unallocated_balance=max(total - allocated, Decimal("0")),
        sub_accounts=list_sub_accounts(db, tenant_id, wallet_id),
    )


def reconcile_sub_account(db: Session, tenant_id: str, sub_account_id: int) -> LedgerReconciliation:
    """Compare the cached balance with the ledger. Reports only, never fixes."""
    sub_account = get_sub_account(db, tenant_id, sub_account_id)
    result = reconcile(db, sub_account)
    if not result.is_consistent:
        logger.error(
            "Ledger mismatch on sub-account #%s: cached=%s ledger=%s drift=%s",
            sub_account_id, result.cached_balance, result.ledger_balance, result.drift,
        )
    return result


def reconcile_all(db: Session, tenant_id: str | None = None) -> List[LedgerReconciliation]:
    """Reconcile every sub-account; returns only the mismatches."""
    query = db.query(SubAccount)
    if tenant_id is not None:
        query = query.filter(SubAccount.tenant_id == tenant_id)

    mismatches = []
    for sub_account in query.order_by(SubAccount.id).all():
        result = reconcile(db, sub_account)
        if not result.is_consistent:
            logger.error(
                "Ledger mismatch on sub-account #%s: cached=%s ledger=%s drift=%s",
                sub_account.id, result.cached_balance, result.ledger_balance, result.drift,
            )
            mismatches.append(result)
    return mismatches
