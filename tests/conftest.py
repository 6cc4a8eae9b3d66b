"""
Pytest fixtures for testing
"""
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from subwallet.infrastructure.db.session import Base
from subwallet.infrastructure.db import models  # noqa: F401  (registers tables)
from subwallet.infrastructure.db.models import SubAccount, WalletBalance


TENANT = "tenant-1"
WALLET = "wallet-1"


@pytest.fixture
def db_engine():
    """In-memory SQLite engine shared across threads (TestClient runs sync routes in a pool)."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine) -> Session:
    """Create database session for tests"""
    SessionLocal = sessionmaker(bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def tenant_id():
    return TENANT


@pytest.fixture
def wallet(db_session):
    """Wallet read model with 1000 USD"""
    w = WalletBalance(tenant_id=TENANT, wallet_id=WALLET, currency="USD", balance=Decimal("1000"))
    db_session.add(w)
    db_session.commit()
    return w


@pytest.fixture
def make_sub_account(db_session):
    """Factory: committed sub-account in WALLET"""
    def _make(name, balance="0", wallet_id=WALLET, is_active=True, monthly_budget=None, sub_account_type="CUSTOM"):
        sa = SubAccount(
            tenant_id=TENANT,
            wallet_id=wallet_id,
            name=name,
            sub_account_type=sub_account_type,
            current_balance=Decimal(balance),
            monthly_budget=None if monthly_budget is None else Decimal(monthly_budget),
            is_active=is_active,
            sort_order=0,
        )
        db_session.add(sa)
        db_session.commit()
        return sa
    return _make
