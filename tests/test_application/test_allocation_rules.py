"""Tests for allocation rule CRUD: validation, scheduling, ordering."""
import pytest
from datetime import datetime
from decimal import Decimal

from subwallet.application.allocation_rules import (
    CreateAllocationRuleUseCase, DeleteAllocationRuleUseCase, UpdateAllocationRuleUseCase,
    list_allocation_rules,
)
from subwallet.application.errors import AllocationRuleValidationError, NotFoundError
from subwallet.infrastructure.db.models import AllocationExecution, AllocationRule

TENANT = "tenant-1"
WALLET = "wallet-1"
# Thursday
_NOW = datetime(2026, 1, 1, 10, 0)


@pytest.fixture
def savings(make_sub_account):
    return make_sub_account("Savings")


def _create(db_session, sub_account_id, **overrides):
    params = dict(
        tenant_id=TENANT,
        wallet_id=WALLET,
        sub_account_id=sub_account_id,
        name="Save 10%",
        rule_type="PERCENTAGE",
        trigger_type="ON_RECEIVE",
        percentage="10",
        now=_NOW,
    )
    params.update(overrides)
    return CreateAllocationRuleUseCase(db_session).execute(**params)


class TestCreateRule:
    def test_create_percentage_rule(self, db_session, savings):
        rule = _create(db_session, savings.id)
        assert rule.id is not None
        assert rule.percentage == Decimal("10")
        assert rule.is_active is True
        assert rule.next_scheduled_at is None

    def test_scheduled_rule_is_armed(self, db_session, savings):
        rule = _create(
            db_session, savings.id,
            name="Weekly", trigger_type="ON_SCHEDULE", frequency="WEEKLY", day_of_week=1,
        )
        # next Monday
        assert rule.next_scheduled_at == datetime(2026, 1, 5)

    def test_fixed_amount_rule(self, db_session, savings):
        rule = _create(db_session, savings.id, rule_type="FIXED_AMOUNT", percentage=None, fixed_amount="250.5")
        assert rule.fixed_amount == Decimal("250.5")

    def test_remainder_rule(self, db_session, savings):
        rule = _create(db_session, savings.id, rule_type="REMAINDER", percentage=None)
        assert rule.rule_type == "REMAINDER"

    @pytest.mark.parametrize("percentage", ["0", "100.01", "-5"])
    def test_percentage_out_of_range(self, db_session, savings, percentage):
        with pytest.raises(AllocationRuleValidationError, match="percentage"):
            _create(db_session, savings.id, percentage=percentage)

    def test_percentage_required(self, db_session, savings):
        with pytest.raises(AllocationRuleValidationError, match="percentage is required"):
            _create(db_session, savings.id, percentage=None)

    def test_fixed_amount_must_be_positive(self, db_session, savings):
        with pytest.raises(AllocationRuleValidationError, match="fixed_amount"):
            _create(db_session, savings.id, rule_type="FIXED_AMOUNT", percentage=None, fixed_amount="0")

    def test_percentage_not_allowed_on_remainder(self, db_session, savings):
        with pytest.raises(AllocationRuleValidationError, match="only allowed"):
            _create(db_session, savings.id, rule_type="REMAINDER", percentage="10")

    def test_schedule_requires_frequency(self, db_session, savings):
        with pytest.raises(AllocationRuleValidationError, match="frequency is required"):
            _create(db_session, savings.id, trigger_type="ON_SCHEDULE")

    def test_frequency_only_for_schedule(self, db_session, savings):
        with pytest.raises(AllocationRuleValidationError, match="frequency is only allowed"):
            _create(db_session, savings.id, frequency="DAILY")

    def test_invalid_day_of_month(self, db_session, savings):
        with pytest.raises(AllocationRuleValidationError, match="day_of_month"):
            _create(db_session, savings.id, trigger_type="ON_SCHEDULE", frequency="MONTHLY", day_of_month=0)

    def test_negative_min_trigger(self, db_session, savings):
        with pytest.raises(AllocationRuleValidationError, match="min_trigger_amount"):
            _create(db_session, savings.id, min_trigger_amount="-1")

    def test_invalid_rule_type(self, db_session, savings):
        with pytest.raises(AllocationRuleValidationError, match="rule type"):
            _create(db_session, savings.id, rule_type="SPLIT")

    def test_duplicate_name(self, db_session, savings):
        _create(db_session, savings.id)
        with pytest.raises(AllocationRuleValidationError, match="already exists"):
            _create(db_session, savings.id)

    def test_sub_account_from_other_wallet(self, db_session, make_sub_account):
        other = make_sub_account("Other", wallet_id="wallet-2")
        with pytest.raises(NotFoundError):
            _create(db_session, other.id)

    def test_nothing_stored_on_error(self, db_session, savings):
        with pytest.raises(AllocationRuleValidationError):
            _create(db_session, savings.id, percentage="150")
        assert db_session.query(AllocationRule).count() == 0


class TestUpdateRule:
    def test_update_percentage(self, db_session, savings):
        rule = _create(db_session, savings.id)
        updated = UpdateAllocationRuleUseCase(db_session).execute(TENANT, rule.id, percentage="25")
        assert updated.percentage == Decimal("25")

    def test_invalid_update_rejected(self, db_session, savings):
        rule = _create(db_session, savings.id)
        with pytest.raises(AllocationRuleValidationError):
            UpdateAllocationRuleUseCase(db_session).execute(TENANT, rule.id, percentage="0")
        db_session.refresh(rule)
        assert rule.percentage == Decimal("10")

    def test_changing_frequency_rearms(self, db_session, savings):
        rule = _create(db_session, savings.id, name="Sched", trigger_type="ON_SCHEDULE", frequency="DAILY")
        assert rule.next_scheduled_at == datetime(2026, 1, 2)
        updated = UpdateAllocationRuleUseCase(db_session).execute(
            TENANT, rule.id, now=_NOW, frequency="MONTHLY", day_of_month=15,
        )
        assert updated.next_scheduled_at == datetime(2026, 2, 15)

    def test_unknown_field(self, db_session, savings):
        rule = _create(db_session, savings.id)
        with pytest.raises(AllocationRuleValidationError, match="Cannot update"):
            UpdateAllocationRuleUseCase(db_session).execute(TENANT, rule.id, rule_type="REMAINDER")

    def test_deactivate(self, db_session, savings):
        rule = _create(db_session, savings.id)
        UpdateAllocationRuleUseCase(db_session).execute(TENANT, rule.id, is_active=False)
        assert list_allocation_rules(db_session, TENANT, WALLET, active_only=True) == []

    def test_other_tenant_cannot_update(self, db_session, savings):
        rule = _create(db_session, savings.id)
        with pytest.raises(NotFoundError):
            UpdateAllocationRuleUseCase(db_session).execute("tenant-2", rule.id, priority=3)


class TestDeleteAndList:
    def test_delete_keeps_executions(self, db_session, savings):
        rule = _create(db_session, savings.id)
        db_session.add(AllocationExecution(
            tenant_id=TENANT, rule_id=rule.id, sub_account_id=savings.id,
            amount=Decimal("5"), triggered_by="ON_RECEIVE", status="COMPLETED",
        ))
        db_session.commit()
        rule_id = rule.id

        DeleteAllocationRuleUseCase(db_session).execute(TENANT, rule_id)

        assert db_session.query(AllocationRule).count() == 0
        assert db_session.query(AllocationExecution).filter(AllocationExecution.rule_id == rule_id).count() == 1

    def test_delete_missing(self, db_session):
        with pytest.raises(NotFoundError):
            DeleteAllocationRuleUseCase(db_session).execute(TENANT, 999)

    def test_list_order(self, db_session, savings):
        low = _create(db_session, savings.id, name="low", priority=1)
        high = _create(db_session, savings.id, name="high", priority=9)
        tie = _create(db_session, savings.id, name="tie", priority=1)
        rules = list_allocation_rules(db_session, TENANT, WALLET)
        assert [r.id for r in rules] == [high.id, low.id, tie.id]

    def test_list_by_trigger(self, db_session, savings):
        _create(db_session, savings.id, name="recv")
        _create(db_session, savings.id, name="manual", trigger_type="MANUAL")
        rules = list_allocation_rules(db_session, TENANT, WALLET, trigger_type="MANUAL")
        assert [r.name for r in rules] == ["manual"]
