"""
Sub-account API endpoints
"""
from datetime import datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from subwallet.api.deps import get_db, get_tenant_id
from subwallet.application.sub_accounts import (
    AdjustBalanceUseCase, CreateSubAccountUseCase, DeleteSubAccountUseCase, ReturnToMainWalletUseCase,
    TransferBetweenSubAccountsUseCase, UpdateSubAccountUseCase,
    get_sub_account, get_wallet_balance_overview, list_sub_account_transactions, list_sub_accounts,
    reconcile_sub_account,
)
from subwallet.infrastructure.db.models import SubAccount, SubAccountTransaction
from subwallet.utils.validation import validate_and_normalize_amount


router = APIRouter(prefix="/api/v1/sub-accounts", tags=["sub-accounts"])


# === Request/Response models ===

class CreateSubAccountRequest(BaseModel):
    wallet_id: str
    name: str
    sub_account_type: str = "CUSTOM"
    description: str | None = None
    monthly_budget: str | None = None
    sort_order: int | None = None

    @field_validator("monthly_budget")
    @classmethod
    def validate_monthly_budget(cls, v: str | None) -> str | None:
        if v is None:
            return v
        return validate_and_normalize_amount(v)


class UpdateSubAccountRequest(BaseModel):
    name: str | None = None
    description: str | None = None
    sub_account_type: str | None = None
    monthly_budget: str | None = None
    sort_order: int | None = None
    is_active: bool | None = None

    @field_validator("monthly_budget")
    @classmethod
    def validate_monthly_budget(cls, v: str | None) -> str | None:
        if v is None:
            return v
        return validate_and_normalize_amount(v)


class AmountRequest(BaseModel):
    amount: str
    description: str | None = None

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: str) -> str:
        return validate_and_normalize_amount(v)


class TransferRequest(AmountRequest):
    from_sub_account_id: int
    to_sub_account_id: int


class AdjustRequest(BaseModel):
    amount: str
    is_credit: bool
    reason: str

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: str) -> str:
        return validate_and_normalize_amount(v)


class SubAccountResponse(BaseModel):
    id: int
    wallet_id: str
    name: str
    description: str | None
    sub_account_type: str
    current_balance: str  # Decimal as string
    monthly_budget: str | None
    is_active: bool
    sort_order: int


class TransactionResponse(BaseModel):
    id: int
    sub_account_id: int
    tx_type: str
    amount: str
    balance_before: str
    balance_after: str
    is_credit: bool
    counterpart_sub_account_id: int | None
    source_transaction_id: str | None
    description: str | None
    reference: str | None
    created_at: datetime


class TransactionListResponse(BaseModel):
    items: list[TransactionResponse]
    total: int
    limit: int
    offset: int


class OverviewResponse(BaseModel):
    wallet_id: str
    total_balance: str
    allocated_balance: str
    unallocated_balance: str
    sub_accounts: list[SubAccountResponse]


class ReconciliationResponse(BaseModel):
    sub_account_id: int
    cached_balance: str
    ledger_balance: str
    drift: str
    is_consistent: bool


def _to_response(sub_account: SubAccount) -> SubAccountResponse:
    return SubAccountResponse(
        id=sub_account.id,
        wallet_id=sub_account.wallet_id,
        name=sub_account.name,
        description=sub_account.description,
        sub_account_type=sub_account.sub_account_type,
        current_balance=str(sub_account.current_balance),
        monthly_budget=None if sub_account.monthly_budget is None else str(sub_account.monthly_budget),
        is_active=sub_account.is_active,
        sort_order=sub_account.sort_order,
    )


def _tx_to_response(entry: SubAccountTransaction) -> TransactionResponse:
    return TransactionResponse(
        id=entry.id,
        sub_account_id=entry.sub_account_id,
        tx_type=entry.tx_type,
        amount=str(entry.amount),
        balance_before=str(entry.balance_before),
        balance_after=str(entry.balance_after),
        is_credit=entry.is_credit,
        counterpart_sub_account_id=entry.counterpart_sub_account_id,
        source_transaction_id=entry.source_transaction_id,
        description=entry.description,
        reference=entry.reference,
        created_at=entry.created_at,
    )


# === Endpoints ===

@router.post("/", response_model=SubAccountResponse)
def create_sub_account(
    req: CreateSubAccountRequest,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db)
):
    sub_account = CreateSubAccountUseCase(db).execute(
        tenant_id=tenant_id,
        wallet_id=req.wallet_id,
        name=req.name,
        sub_account_type=req.sub_account_type,
        description=req.description,
        monthly_budget=req.monthly_budget,
        sort_order=req.sort_order,
    )
    return _to_response(sub_account)


@router.get("/", response_model=list[SubAccountResponse])
def list_all(
    wallet_id: str,
    include_inactive: bool = False,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db)
):
    return [_to_response(s) for s in list_sub_accounts(db, tenant_id, wallet_id, include_inactive=include_inactive)]


@router.get("/overview", response_model=OverviewResponse)
def overview(
    wallet_id: str,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db)
):
    """Wallet total vs what the sub-accounts hold"""
    result = get_wallet_balance_overview(db, tenant_id, wallet_id)
    return OverviewResponse(
        wallet_id=result.wallet_id,
        total_balance=str(result.total_balance),
        allocated_balance=str(result.allocated_balance),
        unallocated_balance=str(result.unallocated_balance),
        sub_accounts=[_to_response(s) for s in result.sub_accounts],
    )


@router.post("/transfer")
def transfer(
    req: TransferRequest,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db)
):
    """Move funds between two sub-accounts of one wallet"""
    outgoing, incoming = TransferBetweenSubAccountsUseCase(db).execute(
        tenant_id, req.from_sub_account_id, req.to_sub_account_id, req.amount, description=req.description,
    )
    return {"outgoing": _tx_to_response(outgoing), "incoming": _tx_to_response(incoming)}


@router.get("/{sub_account_id}", response_model=SubAccountResponse)
def get_one(
    sub_account_id: int,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db)
):
    return _to_response(get_sub_account(db, tenant_id, sub_account_id))


@router.patch("/{sub_account_id}", response_model=SubAccountResponse)
def update_sub_account(
    sub_account_id: int,
    req: UpdateSubAccountRequest,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db)
):
    changes = req.model_dump(exclude_unset=True)
    sub_account = UpdateSubAccountUseCase(db).execute(tenant_id, sub_account_id, **changes)
    return _to_response(sub_account)


@router.delete("/{sub_account_id}")
def delete_sub_account(
    sub_account_id: int,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db)
):
    """Return the balance to the main wallet and deactivate"""
    returned = DeleteSubAccountUseCase(db).execute(tenant_id, sub_account_id)
    return {"status": "deleted", "returned_amount": str(returned)}


@router.post("/{sub_account_id}/return", response_model=TransactionResponse)
def return_to_main(
    sub_account_id: int,
    req: AmountRequest,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db)
):
    entry = ReturnToMainWalletUseCase(db).execute(tenant_id, sub_account_id, req.amount, description=req.description)
    return _tx_to_response(entry)


@router.post("/{sub_account_id}/adjust", response_model=TransactionResponse)
def adjust(
    sub_account_id: int,
    req: AdjustRequest,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db)
):
    entry = AdjustBalanceUseCase(db).execute(tenant_id, sub_account_id, req.amount, req.is_credit, req.reason)
    return _tx_to_response(entry)


@router.get("/{sub_account_id}/transactions", response_model=TransactionListResponse)
def transactions(
    sub_account_id: int,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db)
):
    entries, total = list_sub_account_transactions(db, tenant_id, sub_account_id, limit=limit, offset=offset)
    return TransactionListResponse(items=[_tx_to_response(e) for e in entries], total=total, limit=limit, offset=offset)


@router.get("/{sub_account_id}/reconcile", response_model=ReconciliationResponse)
def reconcile(
    sub_account_id: int,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db)
):
    """Cached balance vs ledger-derived balance (report only)"""
    result = reconcile_sub_account(db, tenant_id, sub_account_id)
    return ReconciliationResponse(
        sub_account_id=result.sub_account_id,
        cached_balance=str(result.cached_balance),
        ledger_balance=str(result.ledger_balance),
        drift=str(result.drift),
        is_consistent=result.is_consistent,
    )
