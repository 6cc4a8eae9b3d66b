"""
Allocation rule use cases (create / update / delete / list).

Rule configuration is validated up front; an invalid rule is never stored.
ON_SCHEDULE rules are armed on creation: next_scheduled_at = next_run(now).
"""
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List

from sqlalchemy.orm import Session

from subwallet.application.errors import AllocationRuleValidationError, NotFoundError
from subwallet.domain.allocation import (
    RULE_TYPE_PERCENTAGE, RULE_TYPE_FIXED_AMOUNT,
    TRIGGER_ON_SCHEDULE, VALID_RULE_TYPES, VALID_TRIGGERS,
)
from subwallet.domain.allocation_schedule import next_run, validate_anchors
from subwallet.infrastructure.db.models import AllocationRule, SubAccount


_UPDATABLE_FIELDS = (
    "name", "description", "percentage", "fixed_amount", "min_trigger_amount",
    "frequency", "day_of_month", "day_of_week", "priority", "is_active",
)
_SCHEDULE_FIELDS = ("frequency", "day_of_month", "day_of_week")


def _to_decimal(value, field: str) -> Decimal | None:
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise AllocationRuleValidationError(f"{field} must be a number")


def validate_rule_config(
    rule_type: str,
    trigger_type: str,
    percentage: Decimal | None,
    fixed_amount: Decimal | None,
    min_trigger_amount: Decimal | None,
    frequency: str | None,
    day_of_month: int | None,
    day_of_week: int | None,
) -> None:
    """
    Check one rule configuration.

    Raises:
        AllocationRuleValidationError: with the first problem found
    """
    if rule_type not in VALID_RULE_TYPES:
        raise AllocationRuleValidationError(
            f"Invalid rule type: {rule_type}. Use PERCENTAGE, FIXED_AMOUNT or REMAINDER"
        )
    if trigger_type not in VALID_TRIGGERS:
        raise AllocationRuleValidationError(
            f"Invalid trigger type: {trigger_type}. Use ON_RECEIVE, ON_SCHEDULE or MANUAL"
        )

    if rule_type == RULE_TYPE_PERCENTAGE:
        if percentage is None:
            raise AllocationRuleValidationError("percentage is required for PERCENTAGE rules")
        if not (0 < percentage <= 100):
            raise AllocationRuleValidationError("percentage must be between 0 (exclusive) and 100")
    elif percentage is not None:
        raise AllocationRuleValidationError("percentage is only allowed for PERCENTAGE rules")

    if rule_type == RULE_TYPE_FIXED_AMOUNT:
        if fixed_amount is None:
            raise AllocationRuleValidationError("fixed_amount is required for FIXED_AMOUNT rules")
        if fixed_amount <= 0:
            raise AllocationRuleValidationError("fixed_amount must be > 0")
    elif fixed_amount is not None:
        raise AllocationRuleValidationError("fixed_amount is only allowed for FIXED_AMOUNT rules")

    if min_trigger_amount is not None and min_trigger_amount < 0:
        raise AllocationRuleValidationError("min_trigger_amount must be >= 0")

    if trigger_type == TRIGGER_ON_SCHEDULE:
        if not frequency:
            raise AllocationRuleValidationError("frequency is required for ON_SCHEDULE rules")
    elif frequency is not None:
        raise AllocationRuleValidationError("frequency is only allowed for ON_SCHEDULE rules")

    try:
        validate_anchors(frequency, day_of_month, day_of_week)
    except ValueError as e:
        raise AllocationRuleValidationError(str(e)) from e


def get_rule(db: Session, tenant_id: str, rule_id: int) -> AllocationRule:
    rule = db.query(AllocationRule).filter(
        AllocationRule.id == rule_id,
        AllocationRule.tenant_id == tenant_id,
    ).first()
    if not rule:
        raise NotFoundError(f"Allocation rule #{rule_id} not found")
    return rule


def list_allocation_rules(
    db: Session,
    tenant_id: str,
    wallet_id: str,
    trigger_type: str | None = None,
    active_only: bool = False,
) -> List[AllocationRule]:
    """Rules of a wallet in evaluation order (priority desc, then creation order)."""
    query = db.query(AllocationRule).filter(
        AllocationRule.tenant_id == tenant_id,
        AllocationRule.wallet_id == wallet_id,
    )
    if trigger_type:
        query = query.filter(AllocationRule.trigger_type == trigger_type)
    if active_only:
        query = query.filter(AllocationRule.is_active == True)  # noqa: E712
    return query.order_by(AllocationRule.priority.desc(), AllocationRule.id.asc()).all()


class CreateAllocationRuleUseCase:
    """
    Use case: create an allocation rule for a sub-account of the wallet
    """

    def __init__(self, db: Session):
        self.db = db

    def execute(
        self,
        tenant_id: str,
        wallet_id: str,
        sub_account_id: int,
        name: str,
        rule_type: str,
        trigger_type: str,
        percentage=None,
        fixed_amount=None,
        min_trigger_amount=None,
        frequency: str | None = None,
        day_of_month: int | None = None,
        day_of_week: int | None = None,
        priority: int = 0,
        description: str | None = None,
        now: datetime | None = None,
    ) -> AllocationRule:
        if now is None:
            now = datetime.utcnow()

        name = (name or "").strip()
        if not name:
            raise AllocationRuleValidationError("Rule name cannot be empty")

        percentage = _to_decimal(percentage, "percentage")
        fixed_amount = _to_decimal(fixed_amount, "fixed_amount")
        min_trigger_amount = _to_decimal(min_trigger_amount, "min_trigger_amount")

        validate_rule_config(
            rule_type, trigger_type, percentage, fixed_amount, min_trigger_amount,
            frequency, day_of_month, day_of_week,
        )

        sub_account = self.db.query(SubAccount).filter(
            SubAccount.id == sub_account_id,
            SubAccount.tenant_id == tenant_id,
            SubAccount.wallet_id == wallet_id,
        ).first()
        if not sub_account:
            raise NotFoundError("Sub-account not found or does not belong to this wallet")

        duplicate = self.db.query(AllocationRule).filter(
            AllocationRule.tenant_id == tenant_id,
            AllocationRule.wallet_id == wallet_id,
            AllocationRule.name == name,
        ).first()
        if duplicate:
            raise AllocationRuleValidationError(f"Rule «{name}» already exists for this wallet")

        next_scheduled_at = None
        if trigger_type == TRIGGER_ON_SCHEDULE:
            next_scheduled_at = next_run(frequency, day_of_month, day_of_week, now)

        rule = AllocationRule(
            tenant_id=tenant_id,
            wallet_id=wallet_id,
            sub_account_id=sub_account_id,
            name=name,
            description=description,
            rule_type=rule_type,
            percentage=percentage,
            fixed_amount=fixed_amount,
            trigger_type=trigger_type,
            min_trigger_amount=min_trigger_amount,
            frequency=frequency,
            day_of_month=day_of_month,
            day_of_week=day_of_week,
            next_scheduled_at=next_scheduled_at,
            priority=priority or 0,
            is_active=True,
        )
        self.db.add(rule)
        self.db.commit()
        return rule


class UpdateAllocationRuleUseCase:
    """
    Use case: partial update of a rule.

    Changing frequency or an anchor re-arms next_scheduled_at from now.
    rule_type, trigger_type and the target sub-account are fixed after creation.
    """

    def __init__(self, db: Session):
        self.db = db

    def execute(
        self,
        tenant_id: str,
        rule_id: int,
        now: datetime | None = None,
        **changes: Any,
    ) -> AllocationRule:
        if now is None:
            now = datetime.utcnow()

        unknown = set(changes) - set(_UPDATABLE_FIELDS)
        if unknown:
            raise AllocationRuleValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        rule = get_rule(self.db, tenant_id, rule_id)

        merged: Dict[str, Any] = {f: getattr(rule, f) for f in _UPDATABLE_FIELDS}
        merged.update(changes)
        for field in ("percentage", "fixed_amount", "min_trigger_amount"):
            merged[field] = _to_decimal(merged[field], field)

        if "name" in changes:
            name = (changes["name"] or "").strip()
            if not name:
                raise AllocationRuleValidationError("Rule name cannot be empty")
            if name != rule.name:
                duplicate = self.db.query(AllocationRule).filter(
                    AllocationRule.tenant_id == tenant_id,
                    AllocationRule.wallet_id == rule.wallet_id,
                    AllocationRule.name == name,
                    AllocationRule.id != rule.id,
                ).first()
                if duplicate:
                    raise AllocationRuleValidationError(f"Rule «{name}» already exists for this wallet")
            merged["name"] = name

        validate_rule_config(
            rule.rule_type, rule.trigger_type,
            merged["percentage"], merged["fixed_amount"], merged["min_trigger_amount"],
            merged["frequency"], merged["day_of_month"], merged["day_of_week"],
        )

        for field in changes:
            setattr(rule, field, merged[field])

        if rule.trigger_type == TRIGGER_ON_SCHEDULE and any(f in changes for f in _SCHEDULE_FIELDS):
            rule.next_scheduled_at = next_run(rule.frequency, rule.day_of_month, rule.day_of_week, now)

        self.db.commit()
        return rule


class DeleteAllocationRuleUseCase:
    """Use case: delete a rule. Past executions are kept."""

    def __init__(self, db: Session):
        self.db = db

    def execute(self, tenant_id: str, rule_id: int) -> None:
        rule = get_rule(self.db, tenant_id, rule_id)
        self.db.delete(rule)
        self.db.commit()
