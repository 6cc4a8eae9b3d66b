"""Tests for sub-account lifecycle, expenses, transfers, adjustments, reconciliation."""
import pytest
from datetime import date, datetime
from decimal import Decimal

from subwallet.application.allocation_rules import CreateAllocationRuleUseCase
from subwallet.application.budgets import CreateBudgetPeriodUseCase
from subwallet.application.errors import InsufficientFundsError, NotFoundError, SubAccountValidationError
from subwallet.application.sub_accounts import (
    AdjustBalanceUseCase, CreateSubAccountUseCase, DeleteSubAccountUseCase, RecordExpenseUseCase,
    ReturnToMainWalletUseCase, TransferBetweenSubAccountsUseCase, UpdateSubAccountUseCase,
    get_sub_account, get_wallet_balance_overview, list_sub_account_transactions, list_sub_accounts,
    reconcile_all, reconcile_sub_account,
)
from subwallet.infrastructure.db.models import AllocationRule, BudgetPeriod, SubAccount, SubAccountTransaction

TENANT = "tenant-1"
WALLET = "wallet-1"


def _fund(db_session, sub_account_id, amount):
    """Credit through the ledger so reconciliation stays clean"""
    return AdjustBalanceUseCase(db_session).execute(TENANT, sub_account_id, amount, True, "opening balance")


def _balance(db_session, sub_account_id) -> Decimal:
    sub_account = db_session.query(SubAccount).filter(SubAccount.id == sub_account_id).populate_existing().one()
    return Decimal(sub_account.current_balance)


class TestCreateSubAccount:
    def test_create(self, db_session):
        sa = CreateSubAccountUseCase(db_session).execute(TENANT, WALLET, "  Rent ", sub_account_type="RENT")
        assert sa.name == "Rent"
        assert sa.current_balance == Decimal("0")
        assert sa.is_active is True
        assert sa.sort_order == 0

    def test_sort_order_appends(self, db_session):
        CreateSubAccountUseCase(db_session).execute(TENANT, WALLET, "Rent")
        second = CreateSubAccountUseCase(db_session).execute(TENANT, WALLET, "Food")
        assert second.sort_order == 1

    def test_duplicate_name_in_wallet(self, db_session):
        CreateSubAccountUseCase(db_session).execute(TENANT, WALLET, "Rent")
        with pytest.raises(SubAccountValidationError, match="already exists"):
            CreateSubAccountUseCase(db_session).execute(TENANT, WALLET, "Rent")

    def test_same_name_in_other_wallet(self, db_session):
        CreateSubAccountUseCase(db_session).execute(TENANT, WALLET, "Rent")
        other = CreateSubAccountUseCase(db_session).execute(TENANT, "wallet-2", "Rent")
        assert other.wallet_id == "wallet-2"

    def test_empty_name(self, db_session):
        with pytest.raises(SubAccountValidationError, match="name"):
            CreateSubAccountUseCase(db_session).execute(TENANT, WALLET, "   ")

    def test_invalid_type(self, db_session):
        with pytest.raises(SubAccountValidationError, match="type"):
            CreateSubAccountUseCase(db_session).execute(TENANT, WALLET, "Rent", sub_account_type="CAR")

    def test_monthly_budget_positive(self, db_session):
        with pytest.raises(SubAccountValidationError, match="monthly_budget"):
            CreateSubAccountUseCase(db_session).execute(TENANT, WALLET, "Rent", monthly_budget="0")


class TestUpdateSubAccount:
    def test_rename(self, db_session, make_sub_account):
        sa = make_sub_account("Rent")
        updated = UpdateSubAccountUseCase(db_session).execute(TENANT, sa.id, name="Housing", monthly_budget="900")
        assert updated.name == "Housing"
        assert updated.monthly_budget == Decimal("900")

    def test_rename_to_existing(self, db_session, make_sub_account):
        make_sub_account("Rent")
        food = make_sub_account("Food")
        with pytest.raises(SubAccountValidationError, match="already exists"):
            UpdateSubAccountUseCase(db_session).execute(TENANT, food.id, name="Rent")

    def test_balance_is_not_updatable(self, db_session, make_sub_account):
        sa = make_sub_account("Rent")
        with pytest.raises(SubAccountValidationError, match="current_balance"):
            UpdateSubAccountUseCase(db_session).execute(TENANT, sa.id, current_balance="100")

    def test_cannot_deactivate_with_balance(self, db_session, make_sub_account):
        sa = make_sub_account("Rent")
        _fund(db_session, sa.id, "10")
        with pytest.raises(SubAccountValidationError, match="Return the balance"):
            UpdateSubAccountUseCase(db_session).execute(TENANT, sa.id, is_active=False)

    def test_deactivate_empty(self, db_session, make_sub_account):
        sa = make_sub_account("Rent")
        UpdateSubAccountUseCase(db_session).execute(TENANT, sa.id, is_active=False)
        assert list_sub_accounts(db_session, TENANT, WALLET) == []
        assert len(list_sub_accounts(db_session, TENANT, WALLET, include_inactive=True)) == 1

    def test_other_tenant(self, db_session, make_sub_account):
        sa = make_sub_account("Rent")
        with pytest.raises(NotFoundError):
            get_sub_account(db_session, "tenant-2", sa.id)


class TestDeleteSubAccount:
    def test_soft_delete_returns_balance_and_drops_rules(self, db_session, make_sub_account):
        sa = make_sub_account("Vacation")
        _fund(db_session, sa.id, "120.50")
        CreateAllocationRuleUseCase(db_session).execute(
            TENANT, WALLET, sa.id, "Save", "PERCENTAGE", "ON_RECEIVE", percentage="5",
        )

        returned = DeleteSubAccountUseCase(db_session).execute(TENANT, sa.id)

        assert returned == Decimal("120.50")
        assert _balance(db_session, sa.id) == Decimal("0")
        assert db_session.query(AllocationRule).count() == 0
        closed = db_session.query(SubAccount).filter(SubAccount.id == sa.id).one()
        assert closed.is_active is False

        last = db_session.query(SubAccountTransaction).order_by(SubAccountTransaction.id.desc()).first()
        assert last.tx_type == "RETURN_TO_MAIN"
        assert last.reference == "DELETE"
        assert last.amount == Decimal("120.50")

    def test_empty_sub_account_writes_no_entry(self, db_session, make_sub_account):
        sa = make_sub_account("Empty")
        assert DeleteSubAccountUseCase(db_session).execute(TENANT, sa.id) == Decimal("0")
        assert db_session.query(SubAccountTransaction).count() == 0

    def test_already_inactive(self, db_session, make_sub_account):
        sa = make_sub_account("Old", is_active=False)
        with pytest.raises(NotFoundError):
            DeleteSubAccountUseCase(db_session).execute(TENANT, sa.id)


class TestRecordExpense:
    def test_expense_debits_and_tracks_budget(self, db_session, make_sub_account):
        food = make_sub_account("Food")
        _fund(db_session, food.id, "300")
        budget = CreateBudgetPeriodUseCase(db_session).execute(
            TENANT, WALLET, "200", start_date=date(2026, 2, 1), sub_account_id=food.id,
        )

        entry = RecordExpenseUseCase(db_session).execute(
            TENANT, food.id, "175.25", description="groceries",
            source_transaction_id="tx-42", now=datetime(2026, 2, 5),
        )

        assert entry.tx_type == "EXPENSE"
        assert entry.is_credit is False
        assert entry.balance_before == Decimal("300")
        assert entry.balance_after == Decimal("124.75")
        assert _balance(db_session, food.id) == Decimal("124.75")

        period = db_session.query(BudgetPeriod).filter(BudgetPeriod.id == budget.id).populate_existing().one()
        assert period.spent_amount == Decimal("175.25")
        assert period.status == "WARNING"

    def test_insufficient_funds(self, db_session, make_sub_account):
        food = make_sub_account("Food")
        _fund(db_session, food.id, "50")
        with pytest.raises(InsufficientFundsError):
            RecordExpenseUseCase(db_session).execute(TENANT, food.id, "50.01")
        db_session.rollback()
        assert _balance(db_session, food.id) == Decimal("50")
        assert db_session.query(SubAccountTransaction).filter(
            SubAccountTransaction.tx_type == "EXPENSE"
        ).count() == 0

    def test_spend_whole_balance(self, db_session, make_sub_account):
        food = make_sub_account("Food")
        _fund(db_session, food.id, "50")
        RecordExpenseUseCase(db_session).execute(TENANT, food.id, "50")
        assert _balance(db_session, food.id) == Decimal("0")

    def test_wallet_mismatch_is_not_found(self, db_session, make_sub_account):
        food = make_sub_account("Food")
        _fund(db_session, food.id, "50")
        with pytest.raises(NotFoundError):
            RecordExpenseUseCase(db_session).execute(TENANT, food.id, "10", wallet_id="wallet-2")
        db_session.rollback()
        assert _balance(db_session, food.id) == Decimal("50")

    def test_matching_wallet_accepted(self, db_session, make_sub_account):
        food = make_sub_account("Food")
        _fund(db_session, food.id, "50")
        RecordExpenseUseCase(db_session).execute(TENANT, food.id, "10", wallet_id=WALLET)
        assert _balance(db_session, food.id) == Decimal("40")

    @pytest.mark.parametrize("amount", ["0", "-1"])
    def test_amount_must_be_positive(self, db_session, make_sub_account, amount):
        food = make_sub_account("Food")
        with pytest.raises(SubAccountValidationError):
            RecordExpenseUseCase(db_session).execute(TENANT, food.id, amount)


class TestTransfer:
    def test_transfer_writes_paired_entries(self, db_session, make_sub_account):
        rent = make_sub_account("Rent")
        food = make_sub_account("Food")
        _fund(db_session, rent.id, "500")

        outgoing, incoming = TransferBetweenSubAccountsUseCase(db_session).execute(TENANT, rent.id, food.id, "120")

        assert (outgoing.tx_type, incoming.tx_type) == ("TRANSFER_OUT", "TRANSFER_IN")
        assert outgoing.counterpart_sub_account_id == food.id
        assert incoming.counterpart_sub_account_id == rent.id
        assert outgoing.description == "Transfer to Food"
        assert _balance(db_session, rent.id) == Decimal("380")
        assert _balance(db_session, food.id) == Decimal("120")

    def test_insufficient_source(self, db_session, make_sub_account):
        rent = make_sub_account("Rent")
        food = make_sub_account("Food")
        with pytest.raises(InsufficientFundsError):
            TransferBetweenSubAccountsUseCase(db_session).execute(TENANT, rent.id, food.id, "1")
        db_session.rollback()
        assert db_session.query(SubAccountTransaction).count() == 0

    def test_same_sub_account(self, db_session, make_sub_account):
        rent = make_sub_account("Rent")
        with pytest.raises(SubAccountValidationError, match="same"):
            TransferBetweenSubAccountsUseCase(db_session).execute(TENANT, rent.id, rent.id, "1")

    def test_other_wallet(self, db_session, make_sub_account):
        rent = make_sub_account("Rent")
        ops = make_sub_account("Ops", wallet_id="wallet-2")
        _fund(db_session, rent.id, "10")
        with pytest.raises(SubAccountValidationError, match="one wallet"):
            TransferBetweenSubAccountsUseCase(db_session).execute(TENANT, rent.id, ops.id, "5")

    def test_reverse_direction_locks_same_order(self, db_session, make_sub_account):
        rent = make_sub_account("Rent")
        food = make_sub_account("Food")
        _fund(db_session, food.id, "40")
        TransferBetweenSubAccountsUseCase(db_session).execute(TENANT, food.id, rent.id, "40")
        assert _balance(db_session, rent.id) == Decimal("40")
        assert _balance(db_session, food.id) == Decimal("0")


class TestReturnAndAdjust:
    def test_return_to_main(self, db_session, wallet, make_sub_account):
        rent = make_sub_account("Rent")
        _fund(db_session, rent.id, "100")
        entry = ReturnToMainWalletUseCase(db_session).execute(TENANT, rent.id, "30")
        assert entry.tx_type == "RETURN_TO_MAIN"
        assert _balance(db_session, rent.id) == Decimal("70")
        overview = get_wallet_balance_overview(db_session, TENANT, WALLET)
        assert overview.unallocated_balance == Decimal("930")

    def test_adjust_debit(self, db_session, make_sub_account):
        rent = make_sub_account("Rent")
        _fund(db_session, rent.id, "100")
        entry = AdjustBalanceUseCase(db_session).execute(TENANT, rent.id, "0.5", False, "bank fee")
        assert entry.reference == "ADJUSTMENT"
        assert entry.description == "bank fee"
        assert _balance(db_session, rent.id) == Decimal("99.5")

    def test_adjust_requires_reason(self, db_session, make_sub_account):
        rent = make_sub_account("Rent")
        with pytest.raises(SubAccountValidationError, match="reason"):
            AdjustBalanceUseCase(db_session).execute(TENANT, rent.id, "1", True, "  ")

    def test_adjust_cannot_go_negative(self, db_session, make_sub_account):
        rent = make_sub_account("Rent")
        with pytest.raises(InsufficientFundsError):
            AdjustBalanceUseCase(db_session).execute(TENANT, rent.id, "1", False, "fix")


class TestHistoryAndOverview:
    def test_transactions_newest_first(self, db_session, make_sub_account):
        rent = make_sub_account("Rent")
        _fund(db_session, rent.id, "100")
        RecordExpenseUseCase(db_session).execute(TENANT, rent.id, "10")
        RecordExpenseUseCase(db_session).execute(TENANT, rent.id, "20")

        entries, total = list_sub_account_transactions(db_session, TENANT, rent.id, limit=2)

        assert total == 3
        assert [e.amount for e in entries] == [Decimal("20"), Decimal("10")]

    def test_transactions_unknown_sub_account(self, db_session):
        with pytest.raises(NotFoundError):
            list_sub_account_transactions(db_session, TENANT, 404)

    def test_overview(self, db_session, wallet, make_sub_account):
        rent = make_sub_account("Rent")
        food = make_sub_account("Food")
        _fund(db_session, rent.id, "600")
        _fund(db_session, food.id, "150")

        overview = get_wallet_balance_overview(db_session, TENANT, WALLET)

        assert overview.total_balance == Decimal("1000")
        assert overview.allocated_balance == Decimal("750")
        assert overview.unallocated_balance == Decimal("250")
        assert [sa.name for sa in overview.sub_accounts] == ["Rent", "Food"]

    def test_overview_unknown_wallet(self, db_session):
        with pytest.raises(NotFoundError):
            get_wallet_balance_overview(db_session, TENANT, "missing")


class TestReconcile:
    def test_ledger_matches_cached_balance(self, db_session, make_sub_account):
        rent = make_sub_account("Rent")
        food = make_sub_account("Food")
        _fund(db_session, rent.id, "100.10")
        TransferBetweenSubAccountsUseCase(db_session).execute(TENANT, rent.id, food.id, "33.33")
        RecordExpenseUseCase(db_session).execute(TENANT, food.id, "0.03")

        result = reconcile_sub_account(db_session, TENANT, food.id)

        assert result.is_consistent
        assert result.ledger_balance == Decimal("33.30")
        assert reconcile_all(db_session, TENANT) == []

    def test_drift_detected_not_fixed(self, db_session, make_sub_account):
        # balance written directly, bypassing the ledger
        drifted = make_sub_account("Drifted", balance="25")

        result = reconcile_sub_account(db_session, TENANT, drifted.id)

        assert not result.is_consistent
        assert result.drift == Decimal("25")
        assert _balance(db_session, drifted.id) == Decimal("25")
        assert [r.sub_account_id for r in reconcile_all(db_session)] == [drifted.id]
