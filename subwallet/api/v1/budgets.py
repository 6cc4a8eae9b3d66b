"""
Budget period API endpoints
"""
from datetime import datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from subwallet.api.deps import get_db, get_tenant_id
from subwallet.application.budgets import (
    CreateBudgetPeriodUseCase, DeleteBudgetPeriodUseCase, UpdateBudgetPeriodUseCase,
    auto_create_monthly_budgets, get_budget_period, get_budget_summary, list_budget_periods,
)
from subwallet.domain.budget_period import PERIOD_MONTHLY
from subwallet.infrastructure.db.models import BudgetPeriod
from subwallet.utils.validation import validate_and_normalize_amount


router = APIRouter(prefix="/api/v1/budgets", tags=["budgets"])


# === Request/Response models ===

class CreateBudgetRequest(BaseModel):
    wallet_id: str
    budget_amount: str
    period_type: str = PERIOD_MONTHLY
    sub_account_id: int | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    alert_threshold: str | None = None

    @field_validator("budget_amount")
    @classmethod
    def validate_budget_amount(cls, v: str) -> str:
        return validate_and_normalize_amount(v)

    @field_validator("alert_threshold")
    @classmethod
    def validate_threshold(cls, v: str | None) -> str | None:
        if v is None:
            return v
        return validate_and_normalize_amount(v, max_decimal_places=2)


class UpdateBudgetRequest(BaseModel):
    budget_amount: str | None = None
    alert_threshold: str | None = None

    @field_validator("budget_amount")
    @classmethod
    def validate_budget_amount(cls, v: str | None) -> str | None:
        if v is None:
            return v
        return validate_and_normalize_amount(v)

    @field_validator("alert_threshold")
    @classmethod
    def validate_threshold(cls, v: str | None) -> str | None:
        if v is None:
            return v
        return validate_and_normalize_amount(v, max_decimal_places=2)


class AutoMonthlyRequest(BaseModel):
    wallet_id: str


class BudgetResponse(BaseModel):
    id: int
    wallet_id: str
    sub_account_id: int | None
    period_type: str
    start_date: datetime
    end_date: datetime
    budget_amount: str  # Decimal as string
    spent_amount: str
    remaining_amount: str
    status: str
    alert_threshold: str
    alert_sent: bool
    alert_sent_at: datetime | None


class BudgetListResponse(BaseModel):
    items: list[BudgetResponse]
    total: int
    limit: int
    offset: int


class SummaryLineResponse(BaseModel):
    budget_id: int
    name: str
    sub_account_id: int | None
    period_type: str
    budget_amount: str
    spent_amount: str
    remaining_amount: str
    percent_used: str
    status: str


class SummaryResponse(BaseModel):
    wallet_id: str
    total_budget: str
    total_spent: str
    total_remaining: str
    percent_used: str
    status: str
    periods: list[SummaryLineResponse]


def _to_response(period: BudgetPeriod) -> BudgetResponse:
    return BudgetResponse(
        id=period.id,
        wallet_id=period.wallet_id,
        sub_account_id=period.sub_account_id,
        period_type=period.period_type,
        start_date=period.start_date,
        end_date=period.end_date,
        budget_amount=str(period.budget_amount),
        spent_amount=str(period.spent_amount),
        remaining_amount=str(period.remaining_amount),
        status=period.status,
        alert_threshold=str(period.alert_threshold),
        alert_sent=period.alert_sent,
        alert_sent_at=period.alert_sent_at,
    )


# === Endpoints ===

@router.post("/", response_model=BudgetResponse)
def create_budget(
    req: CreateBudgetRequest,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db)
):
    """Open a budget period (dates default from period_type)"""
    period = CreateBudgetPeriodUseCase(db).execute(
        tenant_id=tenant_id,
        wallet_id=req.wallet_id,
        budget_amount=req.budget_amount,
        period_type=req.period_type,
        start_date=req.start_date,
        end_date=req.end_date,
        sub_account_id=req.sub_account_id,
        alert_threshold=req.alert_threshold,
    )
    return _to_response(period)


@router.get("/", response_model=BudgetListResponse)
def list_budgets(
    wallet_id: str,
    sub_account_id: int | None = None,
    status: str | None = None,
    active: bool = True,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db)
):
    periods, total = list_budget_periods(
        db, tenant_id, wallet_id,
        sub_account_id=sub_account_id, status=status, active=active, limit=limit, offset=offset,
    )
    return BudgetListResponse(items=[_to_response(p) for p in periods], total=total, limit=limit, offset=offset)


@router.get("/summary", response_model=SummaryResponse)
def budget_summary(
    wallet_id: str,
    period_type: str | None = None,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db)
):
    """Totals and worst status over the wallet's running periods"""
    summary = get_budget_summary(db, tenant_id, wallet_id, period_type=period_type)
    return SummaryResponse(
        wallet_id=summary.wallet_id,
        total_budget=str(summary.total_budget),
        total_spent=str(summary.total_spent),
        total_remaining=str(summary.total_remaining),
        percent_used=str(summary.percent_used),
        status=summary.status,
        periods=[
            SummaryLineResponse(
                budget_id=line.budget_id,
                name=line.name,
                sub_account_id=line.sub_account_id,
                period_type=line.period_type,
                budget_amount=str(line.budget_amount),
                spent_amount=str(line.spent_amount),
                remaining_amount=str(line.remaining_amount),
                percent_used=str(line.percent_used),
                status=line.status,
            )
            for line in summary.periods
        ],
    )


@router.post("/auto-monthly", response_model=list[BudgetResponse])
def auto_monthly(
    req: AutoMonthlyRequest,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db)
):
    """Open this month's periods for sub-accounts with a monthly_budget"""
    created = auto_create_monthly_budgets(db, tenant_id, req.wallet_id)
    return [_to_response(p) for p in created]


@router.get("/{budget_id}", response_model=BudgetResponse)
def get_budget(
    budget_id: int,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db)
):
    return _to_response(get_budget_period(db, tenant_id, budget_id))


@router.patch("/{budget_id}", response_model=BudgetResponse)
def update_budget(
    budget_id: int,
    req: UpdateBudgetRequest,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db)
):
    period = UpdateBudgetPeriodUseCase(db).execute(
        tenant_id, budget_id,
        budget_amount=req.budget_amount,
        alert_threshold=req.alert_threshold,
    )
    return _to_response(period)


@router.delete("/{budget_id}")
def delete_budget(
    budget_id: int,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db)
):
    DeleteBudgetPeriodUseCase(db).execute(tenant_id, budget_id)
    return {"status": "deleted"}
