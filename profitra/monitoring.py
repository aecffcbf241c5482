# profitra/monitoring.py
from __future__ import annotations

import time
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func

from profitra import models
from profitra.core.config import Settings
from profitra.database import Database
from profitra.sweeper import MaturitySweeper


def _check(name: str, ok: bool, detail: str = "", **extra: Any) -> Dict[str, Any]:
    """One self-test row; extra keyword values land under `extra` when any are set."""
    row: Dict[str, Any] = {"name": name, "ok": bool(ok), "detail": detail or None}
    extra = {k: v for k, v in extra.items() if v is not None}
    if extra:
        row["extra"] = extra
    return row


def run_selftest(
    database: Database,
    sweeper: MaturitySweeper,
    settings: Settings,
    quick: bool = True,
    now: Optional[datetime] = None,
) -> dict:
    checks: List[Dict[str, Any]] = []

    # --- ENV sanity ---
    checks.append(_check("env:DATABASE_URL", bool(settings.DATABASE_URL)))
    missing = [c for c in settings.deposit_currencies if c not in settings.deposit_wallets]
    checks.append(
        _check(
            "env:deposit_wallets",
            not missing,
            detail=(f"no wallet for {', '.join(missing)}" if missing else ""),
        )
    )

    # --- DB ---
    db_ok = False
    db_err = ""
    t0 = time.time()
    try:
        database.ping()
        db_ok = True
    except Exception as e:
        db_err = repr(e)

    checks.append(_check("db:select1", db_ok, detail=db_err, ms=int((time.time() - t0) * 1000)))

    # --- Sweeper ---
    if settings.SWEEPER_ENABLED:
        checks.append(_check("sweeper:running", sweeper.running))

    # --- Deeper checks ---
    if not quick and db_ok and now is not None:
        # matured but unpaid investments; a healthy sweeper keeps this near zero
        with database.transaction() as db:
            overdue = (
                db.query(func.count(models.Investment.id))
                .filter(
                    models.Investment.status == models.INVESTMENT_ACTIVE,
                    models.Investment.is_profit_paid.is_(False),
                    models.Investment.end_date <= now,
                )
                .scalar()
            )
        last = sweeper.last_result
        checks.append(
            _check(
                "sweeper:backlog",
                True,
                overdue=overdue,
                last_paid=(last.paid if last else None),
                last_failed=(last.failed if last else None),
            )
        )

    status = "ok" if all(c.get("ok") for c in checks) else "degraded"
    return {"status": status, "checks": checks}
