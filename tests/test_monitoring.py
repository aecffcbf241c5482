"""
test_monitoring.py - self-test rows reported by /ready and /selftest
"""

from decimal import Decimal

from profitra.monitoring import run_selftest
from profitra.sweeper import MaturitySweeper


def _rows(result):
    return {c["name"]: c for c in result["checks"]}


def test_quick_selftest_is_ok(database, settings, clock):
    result = run_selftest(database, MaturitySweeper(database, clock), settings)

    assert result["status"] == "ok"
    rows = _rows(result)
    assert set(rows) == {"env:DATABASE_URL", "env:deposit_wallets", "db:select1"}
    assert rows["db:select1"]["detail"] is None
    assert rows["db:select1"]["extra"]["ms"] >= 0
    assert "extra" not in rows["env:DATABASE_URL"]


def test_missing_wallet_degrades(database, settings, clock):
    settings.BTC_WALLET_ADDRESS = None

    result = run_selftest(database, MaturitySweeper(database, clock), settings)

    assert result["status"] == "degraded"
    row = _rows(result)["env:deposit_wallets"]
    assert row["ok"] is False
    assert row["detail"] == "no wallet for BTC"


def test_stopped_sweeper_degrades_when_enabled(database, settings, clock):
    settings.SWEEPER_ENABLED = True

    result = run_selftest(database, MaturitySweeper(database, clock), settings)

    assert result["status"] == "degraded"
    assert _rows(result)["sweeper:running"]["ok"] is False


def test_deep_selftest_reports_backlog(engine, funded, plan, database, settings, clock):
    engine.create_investment(funded(1000).id, plan.id, Decimal("500"))
    sweeper = MaturitySweeper(database, clock)
    clock.advance(hours=2)

    before = _rows(run_selftest(database, sweeper, settings, quick=False, now=clock.now()))
    assert before["sweeper:backlog"]["extra"] == {"overdue": 1}

    sweeper.run_once()
    after = _rows(run_selftest(database, sweeper, settings, quick=False, now=clock.now()))
    assert after["sweeper:backlog"]["extra"] == {"overdue": 0, "last_paid": 1, "last_failed": 0}
