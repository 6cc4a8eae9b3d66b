"""
Allocation rule API endpoints
"""
from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from subwallet.api.deps import get_db, get_tenant_id
from subwallet.application.allocation_engine import preview_allocations
from subwallet.application.allocation_rules import (
    CreateAllocationRuleUseCase, DeleteAllocationRuleUseCase, UpdateAllocationRuleUseCase,
    list_allocation_rules,
)
from subwallet.domain.allocation import TRIGGER_ON_RECEIVE
from subwallet.infrastructure.db.models import AllocationRule
from subwallet.utils.validation import validate_and_normalize_amount


router = APIRouter(prefix="/api/v1/allocation-rules", tags=["allocation-rules"])


def _optional_amount(v: str | None) -> str | None:
    if v is None:
        return v
    return validate_and_normalize_amount(v)


# === Request/Response models ===

class CreateRuleRequest(BaseModel):
    wallet_id: str
    sub_account_id: int
    name: str
    rule_type: str  # PERCENTAGE / FIXED_AMOUNT / REMAINDER
    trigger_type: str  # ON_RECEIVE / ON_SCHEDULE / MANUAL
    percentage: str | None = None
    fixed_amount: str | None = None
    min_trigger_amount: str | None = None
    frequency: str | None = None
    day_of_month: int | None = None
    day_of_week: int | None = None
    priority: int = 0
    description: str | None = None

    @field_validator("percentage", "fixed_amount", "min_trigger_amount")
    @classmethod
    def validate_amounts(cls, v: str | None) -> str | None:
        return _optional_amount(v)


class UpdateRuleRequest(BaseModel):
    name: str | None = None
    description: str | None = None
    percentage: str | None = None
    fixed_amount: str | None = None
    min_trigger_amount: str | None = None
    frequency: str | None = None
    day_of_month: int | None = None
    day_of_week: int | None = None
    priority: int | None = None
    is_active: bool | None = None

    @field_validator("percentage", "fixed_amount", "min_trigger_amount")
    @classmethod
    def validate_amounts(cls, v: str | None) -> str | None:
        return _optional_amount(v)


class PreviewRequest(BaseModel):
    wallet_id: str
    amount: str
    trigger_type: str = TRIGGER_ON_RECEIVE

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: str) -> str:
        return validate_and_normalize_amount(v)


class RuleResponse(BaseModel):
    id: int
    wallet_id: str
    sub_account_id: int
    name: str
    description: str | None
    rule_type: str
    percentage: str | None  # Decimal as string
    fixed_amount: str | None
    trigger_type: str
    min_trigger_amount: str | None
    frequency: str | None
    day_of_month: int | None
    day_of_week: int | None
    next_scheduled_at: datetime | None
    last_executed_at: datetime | None
    priority: int
    is_active: bool


class PreviewLineResponse(BaseModel):
    rule_id: int
    rule_name: str
    rule_type: str
    sub_account_id: int
    sub_account_name: str
    calculated_amount: str
    current_balance: str
    after_balance: str
    sub_account_active: bool


def _str_or_none(value) -> str | None:
    return None if value is None else str(value)


def _to_response(rule: AllocationRule) -> RuleResponse:
    return RuleResponse(
        id=rule.id,
        wallet_id=rule.wallet_id,
        sub_account_id=rule.sub_account_id,
        name=rule.name,
        description=rule.description,
        rule_type=rule.rule_type,
        percentage=_str_or_none(rule.percentage),
        fixed_amount=_str_or_none(rule.fixed_amount),
        trigger_type=rule.trigger_type,
        min_trigger_amount=_str_or_none(rule.min_trigger_amount),
        frequency=rule.frequency,
        day_of_month=rule.day_of_month,
        day_of_week=rule.day_of_week,
        next_scheduled_at=rule.next_scheduled_at,
        last_executed_at=rule.last_executed_at,
        priority=rule.priority,
        is_active=rule.is_active,
    )


# === Endpoints ===

@router.post("/", response_model=RuleResponse)
def create_rule(
    req: CreateRuleRequest,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db)
):
    """Create an allocation rule"""
    rule = CreateAllocationRuleUseCase(db).execute(
        tenant_id=tenant_id,
        wallet_id=req.wallet_id,
        sub_account_id=req.sub_account_id,
        name=req.name,
        rule_type=req.rule_type,
        trigger_type=req.trigger_type,
        percentage=req.percentage,
        fixed_amount=req.fixed_amount,
        min_trigger_amount=req.min_trigger_amount,
        frequency=req.frequency,
        day_of_month=req.day_of_month,
        day_of_week=req.day_of_week,
        priority=req.priority,
        description=req.description,
    )
    return _to_response(rule)


@router.get("/", response_model=list[RuleResponse])
def list_rules(
    wallet_id: str,
    trigger_type: str | None = None,
    active_only: bool = False,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db)
):
    """Rules of a wallet in evaluation order"""
    rules = list_allocation_rules(db, tenant_id, wallet_id, trigger_type=trigger_type, active_only=active_only)
    return [_to_response(r) for r in rules]


@router.patch("/{rule_id}", response_model=RuleResponse)
def update_rule(
    rule_id: int,
    req: UpdateRuleRequest,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db)
):
    """Partial update; only the fields present in the body change"""
    changes = req.model_dump(exclude_unset=True)
    rule = UpdateAllocationRuleUseCase(db).execute(tenant_id, rule_id, **changes)
    return _to_response(rule)


@router.delete("/{rule_id}")
def delete_rule(
    rule_id: int,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db)
):
    DeleteAllocationRuleUseCase(db).execute(tenant_id, rule_id)
    return {"status": "deleted"}


@router.post("/preview", response_model=list[PreviewLineResponse])
def preview(
    req: PreviewRequest,
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db)
):
    """Dry run of the wallet's rules for an amount (nothing is written)"""
    previews = preview_allocations(db, tenant_id, req.wallet_id, req.amount, trigger_type=req.trigger_type)
    return [
        PreviewLineResponse(
            rule_id=p.rule_id,
            rule_name=p.rule_name,
            rule_type=p.rule_type,
            sub_account_id=p.sub_account_id,
            sub_account_name=p.sub_account_name,
            calculated_amount=str(p.calculated_amount),
            current_balance=str(p.current_balance),
            after_balance=str(p.after_balance),
            sub_account_active=p.sub_account_active,
        )
        for p in previews
    ]
