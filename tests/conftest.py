"""
conftest.py - shared fixtures for the ledger tests

- in-memory SQLite database (one shared connection via StaticPool)
- a manually driven clock
- a LedgerEngine wired to both
- helpers to open and fund accounts
"""

from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from profitra.core.clock import FixedClock
from profitra.core.config import Settings
from profitra.database import Database
from profitra.engine import LedgerEngine
from tests.helpers import START, fund


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        DATABASE_URL="sqlite://",
        BTC_WALLET_ADDRESS="bc1q-system-btc",
        USDT_WALLET_ADDRESS="T-system-usdt",
        SWEEPER_ENABLED=False,
        LEDGER_RETRY_BACKOFF_SECONDS=0,
    )


@pytest.fixture
def database():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    db = Database(engine=engine, retry_backoff=0)
    db.init_schema()
    yield db
    db.dispose()


@pytest.fixture
def file_database(tmp_path):
    """File-backed SQLite, so concurrent sessions really use separate connections."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'ledger.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    db = Database(engine=engine, retry_backoff=0)
    db.init_schema()
    yield db
    db.dispose()


@pytest.fixture
def clock():
    return FixedClock(START)


@pytest.fixture
def engine(database, settings, clock):
    return LedgerEngine(database, settings, clock)


@pytest.fixture
def admin(engine):
    return engine.open_account(email="admin@example.com", name="Admin", is_admin=True)


@pytest.fixture
def account(engine):
    return engine.open_account(email="alice@example.com", name="Alice")


@pytest.fixture
def funded(engine, account, admin):
    def _funded(amount):
        fund(engine, account.id, amount, admin.id)
        return engine.get_account(account.id)
    return _funded


@pytest.fixture
def plan(engine):
    return engine.create_plan(
        name="Starter",
        min_amount=Decimal("100"),
        max_amount=Decimal("10000"),
        roi=Decimal("10"),
        duration_hours=1,
        description="One hour, ten percent",
        features=["Daily support"],
    )


@pytest.fixture
def file_engine(file_database, settings, clock):
    return LedgerEngine(file_database, settings, clock)
