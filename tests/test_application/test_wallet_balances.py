"""Tests for the mirrored wallet balance and the unallocated figure."""
import pytest
from decimal import Decimal

from subwallet.application.errors import NotFoundError, ValidationError
from subwallet.application.wallets import SyncWalletBalanceUseCase, WalletBalanceReader
from subwallet.infrastructure.db.models import WalletBalance

TENANT = "tenant-1"
WALLET = "wallet-1"


class TestSyncWalletBalance:
    def test_insert_then_update(self, db_session):
        SyncWalletBalanceUseCase(db_session).execute(TENANT, WALLET, Decimal("10"), currency="EUR")
        SyncWalletBalanceUseCase(db_session).execute(TENANT, WALLET, Decimal("25.5"), currency="EUR")

        rows = db_session.query(WalletBalance).all()
        assert len(rows) == 1
        assert rows[0].balance == Decimal("25.5")
        assert rows[0].currency == "EUR"

    def test_negative_rejected(self, db_session):
        with pytest.raises(ValidationError):
            SyncWalletBalanceUseCase(db_session).execute(TENANT, WALLET, Decimal("-1"))

    def test_wallets_are_per_tenant(self, db_session):
        SyncWalletBalanceUseCase(db_session).execute(TENANT, WALLET, Decimal("10"))
        SyncWalletBalanceUseCase(db_session).execute("tenant-2", WALLET, Decimal("20"))
        assert WalletBalanceReader(db_session).get_balance("tenant-2", WALLET) == Decimal("20")


class TestWalletBalanceReader:
    def test_unknown_wallet(self, db_session):
        with pytest.raises(NotFoundError):
            WalletBalanceReader(db_session).get_balance(TENANT, "nope")

    def test_unallocated(self, db_session, wallet, make_sub_account):
        make_sub_account("Rent", balance="600")
        make_sub_account("Food", balance="150.25")
        make_sub_account("Closed", balance="999", is_active=False)
        make_sub_account("Elsewhere", balance="50", wallet_id="wallet-2")

        reader = WalletBalanceReader(db_session)
        assert reader.get_allocated_balance(TENANT, WALLET) == Decimal("750.25")
        assert reader.get_unallocated_balance(TENANT, WALLET) == Decimal("249.75")

    def test_unallocated_floor_at_zero(self, db_session, wallet, make_sub_account):
        make_sub_account("Rent", balance="1500")
        assert WalletBalanceReader(db_session).get_unallocated_balance(TENANT, WALLET) == Decimal("0")

    def test_no_sub_accounts(self, db_session, wallet):
        assert WalletBalanceReader(db_session).get_allocated_balance(TENANT, WALLET) == Decimal("0")
