"""
Allocation API endpoints (manual allocation, history)
"""
from datetime import datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from subwallet.api.deps import get_db, get_tenant_id
from subwallet.application.allocation_engine import execute_manual_allocation, get_allocation_history
from subwallet.utils.validation import validate_and_normalize_amount


router = APIRouter(prefix="/api/v1/allocations", tags=["allocations"])


class ManualAllocationRequest(BaseModel):
    wallet_id: str
    sub_account_id: int
    amount: str
    description: str | None = None

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: str) -> str:
        return validate_and_normalize_amount(v)


class ManualAllocationResponse(BaseModel):
    execution_id: str
    sub_account_id: int
    amount: str


class ExecutionResponse(BaseModel):
    id: int
    rule_id: int
    sub_account_id: int
    amount: str
    trigger_amount: str | None
    triggered_by: str
    source_transaction_id: str | None
    status: str
    error_message: str | None
    executed_at: datetime


class HistoryResponse(BaseModel):
    items: list[ExecutionResponse]
    total: int
    limit: int
    offset: int


@router.post("/manual", response_model=ManualAllocationResponse)
def manual_allocation(
    req: ManualAllocationRequest,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db)
):
    """Move unallocated wallet funds into a sub-account"""
    execution_id = execute_manual_allocation(
        db, tenant_id, req.wallet_id, req.sub_account_id, req.amount, description=req.description,
    )
    return ManualAllocationResponse(execution_id=execution_id, sub_account_id=req.sub_account_id, amount=req.amount)


@router.get("/history/{sub_account_id}", response_model=HistoryResponse)
def allocation_history(
    sub_account_id: int,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db)
):
    """Rule executions of a sub-account, newest first"""
    executions, total = get_allocation_history(
        db, tenant_id, sub_account_id,
        start_date=start_date, end_date=end_date, limit=limit, offset=offset,
    )
    return HistoryResponse(
        items=[
            ExecutionResponse(
                id=e.id,
                rule_id=e.rule_id,
                sub_account_id=e.sub_account_id,
                amount=str(e.amount),
                trigger_amount=None if e.trigger_amount is None else str(e.trigger_amount),
                triggered_by=e.triggered_by,
                source_transaction_id=e.source_transaction_id,
                status=e.status,
                error_message=e.error_message,
                executed_at=e.executed_at,
            )
            for e in executions
        ],
        total=total,
        limit=limit,
        offset=offset,
    )
