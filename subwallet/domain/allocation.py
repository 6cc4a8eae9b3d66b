"""
Allocation rule evaluator.

Pure and deterministic: maps an ordered set of rules and an inbound amount to
the list of allocations that should be credited to sub-accounts.

Two passes:
1. PERCENTAGE and FIXED_AMOUNT rules in priority order (higher first,
   ties keep creation order).
2. The first REMAINDER rule absorbs whatever is left. Only one remainder
   sink fires per evaluation.

The sum of the output never exceeds the evaluated amount.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_DOWN
from typing import Iterable, Union


RULE_TYPE_PERCENTAGE = "PERCENTAGE"
RULE_TYPE_FIXED_AMOUNT = "FIXED_AMOUNT"
RULE_TYPE_REMAINDER = "REMAINDER"
VALID_RULE_TYPES = frozenset({RULE_TYPE_PERCENTAGE, RULE_TYPE_FIXED_AMOUNT, RULE_TYPE_REMAINDER})

TRIGGER_ON_RECEIVE = "ON_RECEIVE"
TRIGGER_ON_SCHEDULE = "ON_SCHEDULE"
TRIGGER_MANUAL = "MANUAL"
VALID_TRIGGERS = frozenset({TRIGGER_ON_RECEIVE, TRIGGER_ON_SCHEDULE, TRIGGER_MANUAL})

# AllocationExecution.triggered_by
TRIGGERED_BY_ON_RECEIVE = "ON_RECEIVE"
TRIGGERED_BY_SCHEDULED = "SCHEDULED"
TRIGGERED_BY_MANUAL = "MANUAL"

EXECUTION_COMPLETED = "COMPLETED"
EXECUTION_FAILED = "FAILED"

# Matches Numeric(36, 9) storage
AMOUNT_QUANT = Decimal("0.000000001")
HUNDRED = Decimal("100")
ZERO = Decimal("0")


@dataclass(frozen=True)
class PercentageTerms:
    percentage: Decimal


@dataclass(frozen=True)
class FixedAmountTerms:
    fixed_amount: Decimal


@dataclass(frozen=True)
class RemainderTerms:
    pass


RuleTerms = Union[PercentageTerms, FixedAmountTerms, RemainderTerms]


@dataclass(frozen=True)
class RuleSpec:
    """What the evaluator needs to know about one allocation rule."""
    rule_id: int
    sub_account_id: int
    terms: RuleTerms
    priority: int = 0
    min_trigger_amount: Decimal | None = None
    is_active: bool = True
    name: str = ""


@dataclass(frozen=True)
class Allocation:
    rule_id: int
    sub_account_id: int
    amount: Decimal
    rule_name: str = ""


def quantize_amount(value: Decimal) -> Decimal:
    """Round down to storage precision (never rounds an allocation up)."""
    return value.quantize(AMOUNT_QUANT, rounding=ROUND_DOWN)


def terms_from_fields(
    rule_type: str,
    percentage: Decimal | None,
    fixed_amount: Decimal | None,
) -> RuleTerms:
    """Build the closed terms variant from the flat rule columns."""
    if rule_type == RULE_TYPE_PERCENTAGE:
        if percentage is None:
            raise ValueError("PERCENTAGE rule requires percentage")
        return PercentageTerms(percentage=Decimal(percentage))
    if rule_type == RULE_TYPE_FIXED_AMOUNT:
        if fixed_amount is None:
            raise ValueError("FIXED_AMOUNT rule requires fixed_amount")
        return FixedAmountTerms(fixed_amount=Decimal(fixed_amount))
    if rule_type == RULE_TYPE_REMAINDER:
        return RemainderTerms()
    raise ValueError(f"invalid rule_type: {rule_type}")


def rule_spec_from_db(row) -> RuleSpec:
    """Build RuleSpec from an AllocationRule DB row (any object with matching attributes)."""
    return RuleSpec(
        rule_id=row.id,
        sub_account_id=row.sub_account_id,
        terms=terms_from_fields(row.rule_type, row.percentage, row.fixed_amount),
        priority=row.priority or 0,
        min_trigger_amount=row.min_trigger_amount,
        is_active=bool(row.is_active),
        name=row.name or "",
    )


def _is_eligible(rule: RuleSpec, total_amount: Decimal) -> bool:
    if not rule.is_active:
        return False
    if rule.min_trigger_amount is not None and rule.min_trigger_amount > total_amount:
        return False
    return True


def _first_pass_amount(
    terms: RuleTerms,
    basis: Decimal,
    remaining: Decimal,
) -> Decimal:
    if isinstance(terms, PercentageTerms):
        # Percentage of the original basis, not of what is left
        amount = basis * terms.percentage / HUNDRED
    elif isinstance(terms, FixedAmountTerms):
        amount = terms.fixed_amount
    else:
        raise ValueError(f"unhandled rule terms in first pass: {terms!r}")
    return quantize_amount(min(amount, remaining))


def evaluate(
    rules: Iterable[RuleSpec],
    total_amount: Decimal,
    percentage_basis: Decimal | None = None,
) -> list[Allocation]:
    """
    Compute allocations for total_amount.

    Args:
        rules: candidate rules, in creation order
        total_amount: amount being distributed (> 0 to allocate anything)
        percentage_basis: base for PERCENTAGE rules (defaults to total_amount);
            scheduled sweeps pass the wallet balance here

    Returns:
        Allocations in the order they were decided: pass 1 by priority,
        then the remainder sink.
    """
    total_amount = Decimal(total_amount)
    basis = total_amount if percentage_basis is None else Decimal(percentage_basis)

    # sorted() is stable: equal priorities keep creation order
    ordered = sorted(
        (r for r in rules if _is_eligible(r, total_amount)),
        key=lambda r: r.priority,
        reverse=True,
    )

    allocations: list[Allocation] = []
    remaining = total_amount

    for rule in ordered:
        if isinstance(rule.terms, RemainderTerms):
            continue
        if remaining <= ZERO:
            break
        amount = _first_pass_amount(rule.terms, basis, remaining)
        if amount <= ZERO:
            continue
        allocations.append(Allocation(rule.rule_id, rule.sub_account_id, amount, rule.name))
        remaining -= amount

    sink = next((r for r in ordered if isinstance(r.terms, RemainderTerms)), None)
    if sink is not None:
        amount = quantize_amount(remaining)
        if amount > ZERO:
            allocations.append(Allocation(sink.rule_id, sink.sub_account_id, amount, sink.name))

    return allocations
