"""
Allocation execution engine.

ExecuteAllocationUseCase writes ONE allocation in ONE transaction:
sub-account row re-read under lock -> ALLOCATION ledger entry ->
AllocationExecution audit row (rule allocations only) -> commit.

The batch entry points (on-receive, scheduled sweep) run the evaluator and
hand each allocation to the engine separately, so a failing rule never
rolls back or blocks its siblings. Failures are stored as FAILED executions.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Tuple

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from subwallet.application.allocation_rules import list_allocation_rules
from subwallet.application.errors import (
    AllocationExecutionError, InsufficientFundsError, NotFoundError, ValidationError,
)
from subwallet.application.ledger import lock_sub_account, post_entry
from subwallet.application.wallets import WalletBalanceReader
from subwallet.domain.allocation import (
    EXECUTION_COMPLETED, EXECUTION_FAILED,
    TRIGGER_ON_RECEIVE, TRIGGER_ON_SCHEDULE,
    TRIGGERED_BY_MANUAL, TRIGGERED_BY_ON_RECEIVE, TRIGGERED_BY_SCHEDULED,
    evaluate, quantize_amount, rule_spec_from_db,
)
from subwallet.domain.allocation_schedule import next_run
from subwallet.domain.sub_account import TX_ALLOCATION
from subwallet.infrastructure.db.models import AllocationExecution, AllocationRule, SubAccount

logger = logging.getLogger(__name__)


@dataclass
class AllocationResult:
    rule_id: int | None
    rule_name: str
    sub_account_id: int
    amount: Decimal
    execution_id: str | None
    success: bool
    error: str | None = None


@dataclass
class AllocationPreview:
    rule_id: int
    rule_name: str
    rule_type: str
    sub_account_id: int
    sub_account_name: str
    calculated_amount: Decimal
    current_balance: Decimal
    after_balance: Decimal
    sub_account_active: bool = True


class ExecuteAllocationUseCase:
    """
    Use case: credit one allocation to a sub-account atomically.

    rule_id=None means a manual allocation: no audit row is written and the
    returned id is "MANUAL-<hex>".
    """

    def __init__(self, db: Session):
        self.db = db

    def execute(
        self,
        tenant_id: str,
        rule_id: int | None,
        sub_account_id: int,
        amount: Decimal,
        triggered_by: str,
        trigger_amount: Decimal | None = None,
        source_transaction_id: str | None = None,
        description: str | None = None,
        now: datetime | None = None,
    ) -> str:
        if now is None:
            now = datetime.utcnow()

        amount = quantize_amount(Decimal(amount))
        if amount <= 0:
            raise AllocationExecutionError("Allocation amount must be > 0")

        try:
            sub_account = lock_sub_account(self.db, tenant_id, sub_account_id)

            if rule_id is not None:
                reference = f"RULE:{rule_id}"
                default_description = f"Allocation by rule #{rule_id}"
            else:
                reference = TRIGGERED_BY_MANUAL
                default_description = "Manual allocation"

            post_entry(
                self.db, sub_account, TX_ALLOCATION, amount,
                description=description or default_description,
                reference=reference,
                source_transaction_id=source_transaction_id,
            )

            if rule_id is None:
                execution_id = f"MANUAL-{uuid.uuid4().hex}"
            else:
                execution = AllocationExecution(
                    tenant_id=tenant_id,
                    rule_id=rule_id,
                    sub_account_id=sub_account_id,
                    amount=amount,
                    trigger_amount=trigger_amount,
                    triggered_by=triggered_by,
                    source_transaction_id=source_transaction_id,
                    status=EXECUTION_COMPLETED,
                    executed_at=now,
                )
                self.db.add(execution)
                rule = self.db.query(AllocationRule).filter(AllocationRule.id == rule_id).first()
                if rule is not None:
                    rule.last_executed_at = now
                self.db.flush()
                execution_id = str(execution.id)

            self.db.commit()
        except (NotFoundError, ValidationError, InsufficientFundsError) as e:
            self.db.rollback()
            raise AllocationExecutionError(str(e)) from e
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("Allocation to sub-account #%s failed", sub_account_id)
            raise AllocationExecutionError(f"Database error: {e.__class__.__name__}") from e

        logger.info(
            "Allocated %s to sub-account #%s (%s, rule=%s)",
            amount, sub_account_id, triggered_by, rule_id,
        )
        return execution_id


def record_failed_execution(
    db: Session,
    tenant_id: str,
    rule_id: int,
    sub_account_id: int,
    amount: Decimal,
    triggered_by: str,
    error: str,
    trigger_amount: Decimal | None = None,
    source_transaction_id: str | None = None,
    now: datetime | None = None,
) -> AllocationExecution:
    """Store a FAILED audit row in its own transaction."""
    execution = AllocationExecution(
        tenant_id=tenant_id,
        rule_id=rule_id,
        sub_account_id=sub_account_id,
        amount=amount,
        trigger_amount=trigger_amount,
        triggered_by=triggered_by,
        source_transaction_id=source_transaction_id,
        status=EXECUTION_FAILED,
        error_message=error,
        executed_at=now or datetime.utcnow(),
    )
    db.add(execution)
    db.commit()
    return execution


def _active_sub_account_ids(db: Session, tenant_id: str, wallet_id: str) -> set:
    rows = db.query(SubAccount.id).filter(
        SubAccount.tenant_id == tenant_id,
        SubAccount.wallet_id == wallet_id,
        SubAccount.is_active == True,  # noqa: E712
    ).all()
    return {row[0] for row in rows}


def process_on_receive_allocations(
    db: Session,
    tenant_id: str,
    wallet_id: str,
    received_amount: Decimal,
    source_transaction_id: str | None = None,
    now: datetime | None = None,
) -> List[AllocationResult]:
    """
    Distribute an inbound amount over the wallet's active ON_RECEIVE rules.

    Each allocation commits on its own; failures are recorded and skipped.
    """
    if now is None:
        now = datetime.utcnow()
    received_amount = Decimal(received_amount)
    if received_amount <= 0:
        raise ValidationError("Received amount must be > 0")

    rules = list_allocation_rules(db, tenant_id, wallet_id, trigger_type=TRIGGER_ON_RECEIVE, active_only=True)
    if not rules:
        return []

    # an inactive sub-account keeps its share and fails in the engine
    names = {r.id: r.name for r in rules}
    specs = [rule_spec_from_db(r) for r in rules]
    allocations = evaluate(specs, received_amount)

    engine = ExecuteAllocationUseCase(db)
    results: List[AllocationResult] = []
    for allocation in allocations:
        try:
            execution_id = engine.execute(
                tenant_id, allocation.rule_id, allocation.sub_account_id, allocation.amount,
                TRIGGERED_BY_ON_RECEIVE,
                trigger_amount=received_amount,
                source_transaction_id=source_transaction_id,
                now=now,
            )
            results.append(AllocationResult(
                allocation.rule_id, names[allocation.rule_id], allocation.sub_account_id,
                allocation.amount, execution_id, True,
            ))
        except AllocationExecutionError as e:
            logger.warning("On-receive allocation by rule #%s failed: %s", allocation.rule_id, e)
            record_failed_execution(
                db, tenant_id, allocation.rule_id, allocation.sub_account_id, allocation.amount,
                TRIGGERED_BY_ON_RECEIVE, str(e),
                trigger_amount=received_amount,
                source_transaction_id=source_transaction_id,
                now=now,
            )
            results.append(AllocationResult(
                allocation.rule_id, names[allocation.rule_id], allocation.sub_account_id,
                allocation.amount, None, False, str(e),
            ))

    logger.info(
        "Processed %d on-receive allocations for wallet %s (%d ok)",
        len(results), wallet_id, sum(1 for r in results if r.success),
    )
    return results


def _run_scheduled_rule(db: Session, rule: AllocationRule, now: datetime) -> AllocationResult | None:
    reader = WalletBalanceReader(db)
    try:
        balance = reader.get_balance(rule.tenant_id, rule.wallet_id)
        unallocated = reader.get_unallocated_balance(rule.tenant_id, rule.wallet_id)
    except NotFoundError as e:
        record_failed_execution(
            db, rule.tenant_id, rule.id, rule.sub_account_id, Decimal("0"),
            TRIGGERED_BY_SCHEDULED, str(e), now=now,
        )
        return AllocationResult(rule.id, rule.name, rule.sub_account_id, Decimal("0"), None, False, str(e))

    sub_account_active = rule.sub_account_id in _active_sub_account_ids(db, rule.tenant_id, rule.wallet_id)
    if not sub_account_active:
        error = f"Sub-account #{rule.sub_account_id} is inactive"
        record_failed_execution(
            db, rule.tenant_id, rule.id, rule.sub_account_id, Decimal("0"),
            TRIGGERED_BY_SCHEDULED, error, trigger_amount=unallocated, now=now,
        )
        return AllocationResult(rule.id, rule.name, rule.sub_account_id, Decimal("0"), None, False, error)

    allocations = evaluate([rule_spec_from_db(rule)], unallocated, percentage_basis=balance)
    if not allocations:
        return None

    allocation = allocations[0]
    try:
        execution_id = ExecuteAllocationUseCase(db).execute(
            rule.tenant_id, rule.id, rule.sub_account_id, allocation.amount,
            TRIGGERED_BY_SCHEDULED,
            trigger_amount=unallocated,
            now=now,
        )
    except AllocationExecutionError as e:
        logger.warning("Scheduled allocation by rule #%s failed: %s", rule.id, e)
        record_failed_execution(
            db, rule.tenant_id, rule.id, rule.sub_account_id, allocation.amount,
            TRIGGERED_BY_SCHEDULED, str(e), trigger_amount=unallocated, now=now,
        )
        return AllocationResult(rule.id, rule.name, rule.sub_account_id, allocation.amount, None, False, str(e))

    return AllocationResult(rule.id, rule.name, rule.sub_account_id, allocation.amount, execution_id, True)


def _rearm(db: Session, rule_id: int, now: datetime) -> None:
    try:
        rule = db.query(AllocationRule).filter(AllocationRule.id == rule_id).populate_existing().first()
        rule.last_executed_at = now
        rule.next_scheduled_at = next_run(rule.frequency, rule.day_of_month, rule.day_of_week, now)
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("Failed to re-arm rule #%s", rule_id)


def process_scheduled_allocations(
    db: Session,
    tenant_id: str | None = None,
    now: datetime | None = None,
) -> List[AllocationResult]:
    """
    Sweep: run every due ON_SCHEDULE rule once, then re-arm it.

    A rule is re-armed even when it allocated nothing or failed; missed
    periods are skipped, not replayed.
    """
    if now is None:
        now = datetime.utcnow()

    query = db.query(AllocationRule).filter(
        AllocationRule.trigger_type == TRIGGER_ON_SCHEDULE,
        AllocationRule.is_active == True,  # noqa: E712
        or_(AllocationRule.next_scheduled_at.is_(None), AllocationRule.next_scheduled_at <= now),
    )
    if tenant_id is not None:
        query = query.filter(AllocationRule.tenant_id == tenant_id)
    due_ids = [r.id for r in query.order_by(AllocationRule.id).all()]

    results: List[AllocationResult] = []
    for rule_id in due_ids:
        rule = db.query(AllocationRule).filter(AllocationRule.id == rule_id).first()
        if rule is None:
            continue
        rule_name, sub_account_id = rule.name, rule.sub_account_id
        try:
            result = _run_scheduled_rule(db, rule, now)
        except Exception as e:
            db.rollback()
            logger.exception("Scheduled allocation by rule #%s crashed", rule_id)
            result = AllocationResult(rule_id, rule_name, sub_account_id, Decimal("0"), None, False, str(e))
        if result is not None:
            results.append(result)
        _rearm(db, rule_id, now)

    if due_ids:
        logger.info("Scheduled sweep: %d due rules, %d allocations attempted", len(due_ids), len(results))
    return results


def execute_manual_allocation(
    db: Session,
    tenant_id: str,
    wallet_id: str,
    sub_account_id: int,
    amount: Decimal,
    description: str | None = None,
) -> str:
    """
    Move part of the unallocated wallet balance into a sub-account.

    Raises:
        ValidationError: amount <= 0
        NotFoundError: sub-account missing, inactive or from another wallet
        InsufficientFundsError: amount exceeds the unallocated balance
    """
    amount = quantize_amount(Decimal(amount))
    if amount <= 0:
        raise ValidationError("Amount must be > 0")

    sub_account = db.query(SubAccount).filter(
        SubAccount.id == sub_account_id,
        SubAccount.tenant_id == tenant_id,
        SubAccount.wallet_id == wallet_id,
        SubAccount.is_active == True,  # noqa: E712
    ).first()
    if not sub_account:
        raise NotFoundError("Sub-account not found or inactive")

    unallocated = WalletBalanceReader(db).get_unallocated_balance(tenant_id, wallet_id)
    if amount > unallocated:
        raise InsufficientFundsError(f"Insufficient unallocated balance: available {unallocated}")

    return ExecuteAllocationUseCase(db).execute(
        tenant_id, None, sub_account_id, amount, TRIGGERED_BY_MANUAL, description=description,
    )


def preview_allocations(
    db: Session,
    tenant_id: str,
    wallet_id: str,
    amount: Decimal,
    trigger_type: str = TRIGGER_ON_RECEIVE,
) -> List[AllocationPreview]:
    """What the wallet's rules of trigger_type would do with amount (nothing is written)."""
    amount = Decimal(amount)
    if amount <= 0:
        raise ValidationError("Amount must be > 0")

    rules = list_allocation_rules(db, tenant_id, wallet_id, trigger_type=trigger_type, active_only=True)
    sub_accounts = {
        sa.id: sa for sa in db.query(SubAccount).filter(
            SubAccount.tenant_id == tenant_id,
            SubAccount.wallet_id == wallet_id,
        ).all()
    }
    by_id = {r.id: r for r in rules}
    specs = [rule_spec_from_db(r) for r in rules]

    previews = []
    for allocation in evaluate(specs, amount):
        rule = by_id[allocation.rule_id]
        sub_account = sub_accounts.get(allocation.sub_account_id)
        active = sub_account is not None and bool(sub_account.is_active)
        current = Decimal(sub_account.current_balance) if sub_account is not None else Decimal("0")
        # lines for inactive sub-accounts would fail on execution; balance stays put
        previews.append(AllocationPreview(
            rule_id=rule.id,
            rule_name=rule.name,
            rule_type=rule.rule_type,
            sub_account_id=allocation.sub_account_id,
            sub_account_name=sub_account.name if sub_account is not None else "",
            calculated_amount=allocation.amount,
            current_balance=current,
            after_balance=current + allocation.amount if active else current,
            sub_account_active=active,
        ))
    return previews


def get_allocation_history(
    db: Session,
    tenant_id: str,
    sub_account_id: int,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    limit: int = 20,
    offset: int = 0,
) -> Tuple[List[AllocationExecution], int]:
    """Executions for a sub-account, newest first, plus the unpaginated count."""
    query = db.query(AllocationExecution).filter(
        AllocationExecution.tenant_id == tenant_id,
        AllocationExecution.sub_account_id == sub_account_id,
    )
    if start_date is not None:
        query = query.filter(AllocationExecution.executed_at >= start_date)
    if end_date is not None:
        query = query.filter(AllocationExecution.executed_at <= end_date)

    total = query.count()
    executions = (
        query.order_by(AllocationExecution.executed_at.desc(), AllocationExecution.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return executions, total
