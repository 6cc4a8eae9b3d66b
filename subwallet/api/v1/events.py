"""
Inbound events from the wallet service (funds received, expenses, balance feed)
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from subwallet.api.deps import get_db, get_tenant_id
from subwallet.application.allocation_engine import process_on_receive_allocations
from subwallet.application.budgets import record_spending
from subwallet.application.sub_accounts import RecordExpenseUseCase
from subwallet.application.wallets import SyncWalletBalanceUseCase
from subwallet.utils.validation import validate_and_normalize_amount


router = APIRouter(prefix="/api/v1/events", tags=["events"])


class FundsReceivedEvent(BaseModel):
    wallet_id: str
    amount: str
    source_transaction_id: str | None = None

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: str) -> str:
        return validate_and_normalize_amount(v)


class ExpenseEvent(BaseModel):
    wallet_id: str
    amount: str
    sub_account_id: int | None = None
    description: str | None = None
    source_transaction_id: str | None = None

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: str) -> str:
        return validate_and_normalize_amount(v)


class WalletBalanceEvent(BaseModel):
    wallet_id: str
    balance: str
    currency: str = "USD"

    @field_validator("balance")
    @classmethod
    def validate_balance(cls, v: str) -> str:
        return validate_and_normalize_amount(v)


class AllocationResultResponse(BaseModel):
    rule_id: int | None
    rule_name: str
    sub_account_id: int
    amount: str
    execution_id: str | None
    success: bool
    error: str | None


@router.post("/funds-received", response_model=list[AllocationResultResponse])
def funds_received(
    event: FundsReceivedEvent,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db)
):
    """Run the wallet's ON_RECEIVE rules over an inbound amount"""
    results = process_on_receive_allocations(
        db, tenant_id, event.wallet_id, event.amount,
        source_transaction_id=event.source_transaction_id,
    )
    return [
        AllocationResultResponse(
            rule_id=r.rule_id,
            rule_name=r.rule_name,
            sub_account_id=r.sub_account_id,
            amount=str(r.amount),
            execution_id=r.execution_id,
            success=r.success,
            error=r.error,
        )
        for r in results
    ]


@router.post("/expense")
def expense(
    event: ExpenseEvent,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db)
):
    """
    Expense paid from the wallet.

    With sub_account_id the sub-account is debited (budgets follow);
    without it only the wallet-wide budgets are charged.
    """
    if event.sub_account_id is not None:
        entry = RecordExpenseUseCase(db).execute(
            tenant_id, event.sub_account_id, event.amount,
            description=event.description,
            source_transaction_id=event.source_transaction_id,
            wallet_id=event.wallet_id,
        )
        return {"status": "recorded", "transaction_id": entry.id, "balance_after": str(entry.balance_after)}

    updated = record_spending(db, tenant_id, event.wallet_id, event.amount)
    return {"status": "recorded", "budget_periods_updated": updated}


@router.post("/wallet-balance")
def wallet_balance(
    event: WalletBalanceEvent,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db)
):
    """Latest balance pushed by the wallet service"""
    wallet = SyncWalletBalanceUseCase(db).execute(tenant_id, event.wallet_id, event.balance, event.currency)
    return {"wallet_id": wallet.wallet_id, "balance": str(wallet.balance), "currency": wallet.currency}
