# profitra/yield_engine.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List

from sqlalchemy.orm import Session

from profitra import ledger, models
from profitra.database import Database

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SweepResult:
    processed: int
    paid: int
    skipped: int
    failed: int
    total_paid: Decimal


def due_investment_ids(db: Session, now: datetime) -> List[int]:
    rows = (
        db.query(models.Investment.id)
        .filter(
            models.Investment.status == models.INVESTMENT_ACTIVE,
            models.Investment.is_profit_paid.is_(False),
            models.Investment.end_date <= now,
        )
        .order_by(models.Investment.end_date, models.Investment.id)
        .all()
    )
    return [r[0] for r in rows]


def settle_investment(db: Session, investment_id: int, now: datetime) -> Decimal | None:
    """Pay out one matured investment. Returns the credited total, or None if
    another sweep got to it first.

    The claim is a conditional UPDATE on `is_profit_paid = false`; whichever
    transaction flips the flag owns the payout, the other sees rowcount 0.
    """
    claimed = (
        db.query(models.Investment)
        .filter(
            models.Investment.id == investment_id,
            models.Investment.status == models.INVESTMENT_ACTIVE,
            models.Investment.is_profit_paid.is_(False),
            models.Investment.end_date <= now,
        )
        .update(
            {
                "status": models.INVESTMENT_COMPLETED,
                "is_profit_paid": True,
                "completed_at": now,
            },
            synchronize_session=False,
        )
    )
    if claimed != 1:
        return None

    inv = db.query(models.Investment).filter(models.Investment.id == investment_id).one()
    amount = ledger.to_decimal(inv.amount)
    profit = ledger.to_decimal(inv.profit_amount)
    payout = amount + profit

    account = ledger.lock_account(db, inv.account_id)
    before, after = ledger.apply_balance_change(db, account, payout)
    ledger.record_entry(
        db,
        account=account,
        kind=models.KIND_PROFIT,
        amount=payout,
        status=models.ENTRY_COMPLETED,
        description=f"Investment completed: {amount.normalize():f} + {profit.normalize():f} profit",
        reference_type=models.REF_INVESTMENT,
        reference_id=inv.id,
        balance_before=before,
        balance_after=after,
        meta={"principal": str(amount), "profit": str(profit), "roi": str(inv.roi)},
        now=now,
    )
    return payout


def sweep_matured(database: Database, now: datetime) -> SweepResult:
    """
    Settle every active investment whose end_date has passed:
    - each investment in its own transaction
    - a failure is logged and counted, the batch keeps going
    - safe to run repeatedly or concurrently: already-paid rows are skipped
    """
    with database.transaction() as db:
        ids = due_investment_ids(db, now)

    processed = 0
    paid = 0
    skipped = 0
    failed = 0
    total_paid = Decimal("0")

    for investment_id in ids:
        processed += 1
        try:
            payout = database.run(lambda db, iid=investment_id: settle_investment(db, iid, now))
        except Exception:
            failed += 1
            logger.exception("Payout failed for investment %s; leaving it for the next sweep", investment_id)
            continue

        if payout is None:
            skipped += 1
            continue

        paid += 1
        total_paid += payout
        logger.info("Investment %s matured, credited %s", investment_id, payout)

    if processed:
        logger.info(
            "Sweep finished: processed=%d paid=%d skipped=%d failed=%d total=%s",
            processed, paid, skipped, failed, total_paid,
        )
    return SweepResult(
        processed=processed,
        paid=paid,
        skipped=skipped,
        failed=failed,
        total_paid=ledger.quantize_money(total_paid),
    )
