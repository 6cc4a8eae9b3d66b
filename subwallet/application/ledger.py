"""
Ledger writer - the only code that changes SubAccount.current_balance.

Each call re-reads the sub-account row inside the current transaction
(SELECT ... FOR UPDATE, identity map bypassed), appends one immutable
SubAccountTransaction and updates the cached balance to balance_after.
Committing is left to the calling use case.
"""
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from subwallet.application.errors import InsufficientFundsError, NotFoundError, ValidationError
from subwallet.domain.allocation import AMOUNT_QUANT, quantize_amount
from subwallet.domain.sub_account import apply_entry, is_credit_entry
from subwallet.infrastructure.db.models import SubAccount, SubAccountTransaction


def lock_sub_account(
    db: Session,
    tenant_id: str,
    sub_account_id: int,
    require_active: bool = True,
) -> SubAccount:
    """Load the current row state under a row lock (no cached values)."""
    sub_account = (
        db.query(SubAccount)
        .filter(
            SubAccount.id == sub_account_id,
            SubAccount.tenant_id == tenant_id,
        )
        .populate_existing()
        .with_for_update()
        .first()
    )
    if not sub_account:
        raise NotFoundError(f"Sub-account #{sub_account_id} not found")
    if require_active and not sub_account.is_active:
        raise NotFoundError(f"Sub-account #{sub_account_id} is inactive")
    return sub_account


def post_entry(
    db: Session,
    sub_account: SubAccount,
    tx_type: str,
    amount: Decimal,
    is_credit: bool | None = None,
    description: str | None = None,
    reference: str | None = None,
    source_transaction_id: str | None = None,
    counterpart_sub_account_id: int | None = None,
) -> SubAccountTransaction:
    """
    Append a ledger entry for an already locked sub-account.

    Raises:
        ValidationError: amount <= 0
        InsufficientFundsError: a debit would take the balance below zero
    """
    amount = quantize_amount(Decimal(amount))
    if amount <= 0:
        raise ValidationError("amount must be > 0")

    credit = is_credit_entry(tx_type, is_credit)
    balance_before = sub_account.current_balance
    balance_after = apply_entry(balance_before, amount, credit)
    if balance_after < 0:
        raise InsufficientFundsError(
            f"Insufficient balance in sub-account #{sub_account.id}: available {balance_before}"
        )

    entry = SubAccountTransaction(
        tenant_id=sub_account.tenant_id,
        sub_account_id=sub_account.id,
        tx_type=tx_type,
        amount=amount,
        balance_before=balance_before,
        balance_after=balance_after,
        is_credit=credit,
        counterpart_sub_account_id=counterpart_sub_account_id,
        source_transaction_id=source_transaction_id,
        description=description,
        reference=reference,
    )
    db.add(entry)
    sub_account.current_balance = balance_after
    db.flush()
    return entry


@dataclass(frozen=True)
class LedgerReconciliation:
    sub_account_id: int
    cached_balance: Decimal
    ledger_balance: Decimal

    @property
    def is_consistent(self) -> bool:
        return self.cached_balance == self.ledger_balance

    @property
    def drift(self) -> Decimal:
        return self.cached_balance - self.ledger_balance


def ledger_balance(db: Session, sub_account_id: int) -> Decimal:
    """Balance derived from the ledger: credits - debits."""
    signed = case(
        (SubAccountTransaction.is_credit == True, SubAccountTransaction.amount),  # noqa: E712
        else_=-SubAccountTransaction.amount,
    )
    total = (
        db.query(func.coalesce(func.sum(signed), 0))
        .filter(SubAccountTransaction.sub_account_id == sub_account_id)
        .scalar()
    )
    # SQLite sums floats: round to nearest, not down
    return Decimal(str(total)).quantize(AMOUNT_QUANT)


def reconcile(db: Session, sub_account: SubAccount) -> LedgerReconciliation:
    return LedgerReconciliation(
        sub_account_id=sub_account.id,
        cached_balance=Decimal(sub_account.current_balance).quantize(AMOUNT_QUANT),
        ledger_balance=ledger_balance(db, sub_account.id),
    )
