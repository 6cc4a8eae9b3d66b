"""
Engine, sessions and the declarative base.

Request handlers get a session from get_db; background jobs and scripts use
session_scope, which rolls back on error. Both draw from one lazily built
session factory so tests can swap it out.
"""
from contextlib import contextmanager
from typing import Iterator

import psycopg
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from subwallet.config import Settings, get_settings


class Base(DeclarativeBase):
    """Declarative base for the ledger, rule and budget tables"""
    pass


_engine: Engine | None = None
_SessionLocal: sessionmaker | None = None


def _engine_options(settings: Settings, url: str) -> dict:
    options = {"pool_pre_ping": True, "echo": settings.DEBUG}
    if make_url(url).get_backend_name() != "sqlite":
        options.update(
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_recycle=settings.DB_POOL_RECYCLE_SECONDS,
        )
    return options


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        settings = get_settings()
        url = settings.get_sqlalchemy_url()
        _engine = create_engine(url, **_engine_options(settings, url))
    return _engine


def get_session_factory() -> sessionmaker:
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(bind=get_engine(), autoflush=False)
    return _SessionLocal


def get_db() -> Iterator[Session]:
    """FastAPI dependency; use cases commit themselves, the session is always closed."""
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope() -> Iterator[Session]:
    """
    Session for one unit of background work.

    Anything left uncommitted when the block raises is rolled back and the
    exception propagates to the caller.
    """
    db = get_session_factory()()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def check_db_connection() -> None:
    """
    Readiness check: one round trip over a raw psycopg connection.

    Raises:
        psycopg.OperationalError: database unreachable
    """
    with psycopg.connect(get_settings().get_psycopg_dsn(), connect_timeout=3) as conn:
        conn.execute("SELECT 1")
