"""
Wallet balance reader + sync use case.

The wallet service owns the real balance and pushes it here; allocations
only ever look at the mirrored value.
"""
import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.orm import Session

from subwallet.application.errors import NotFoundError, ValidationError
from subwallet.domain.allocation import AMOUNT_QUANT
from subwallet.infrastructure.db.models import SubAccount, WalletBalance

logger = logging.getLogger(__name__)


class WalletBalanceReader:
    """Reads wallet balances and the part of them not yet allocated to sub-accounts"""

    def __init__(self, db: Session):
        self.db = db

    def get_balance(self, tenant_id: str, wallet_id: str) -> Decimal:
        wallet = self.db.query(WalletBalance).filter(
            WalletBalance.tenant_id == tenant_id,
            WalletBalance.wallet_id == wallet_id,
        ).first()
        if not wallet:
            raise NotFoundError(f"Wallet {wallet_id} not found")
        return Decimal(wallet.balance)

    def get_allocated_balance(self, tenant_id: str, wallet_id: str) -> Decimal:
        total = self.db.query(func.coalesce(func.sum(SubAccount.current_balance), 0)).filter(
            SubAccount.tenant_id == tenant_id,
            SubAccount.wallet_id == wallet_id,
            SubAccount.is_active == True,  # noqa: E712
        ).scalar()
        return Decimal(str(total)).quantize(AMOUNT_QUANT)

    def get_unallocated_balance(self, tenant_id: str, wallet_id: str) -> Decimal:
        """Wallet balance minus what active sub-accounts already hold (never below 0)."""
        available = self.get_balance(tenant_id, wallet_id) - self.get_allocated_balance(tenant_id, wallet_id)
        return max(available, Decimal("0"))


class SyncWalletBalanceUseCase:
    """Use case: store the latest wallet balance reported by the wallet service"""

    def __init__(self, db: Session):
        self.db = db

    def execute(
        self,
        tenant_id: str,
        wallet_id: str,
        balance: Decimal,
        currency: str = "USD",
    ) -> WalletBalance:
        balance = Decimal(balance)
        if balance < 0:
            raise ValidationError("Wallet balance cannot be negative")

        wallet = self.db.query(WalletBalance).filter(
            WalletBalance.tenant_id == tenant_id,
            WalletBalance.wallet_id == wallet_id,
        ).with_for_update().first()

        if wallet is None:
            wallet = WalletBalance(tenant_id=tenant_id, wallet_id=wallet_id)
            self.db.add(wallet)

        wallet.balance = balance
        wallet.currency = currency
        wallet.updated_at = datetime.utcnow()

        self.db.commit()
        logger.info("Wallet %s/%s balance synced: %s %s", tenant_id, wallet_id, balance, currency)
        return wallet
