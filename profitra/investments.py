# profitra/investments.py
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List

from sqlalchemy import desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from profitra import crud, ledger, models
from profitra.core import errors
from profitra.core.clock import Clock, as_utc
from profitra.database import Database
from profitra.schemas import CreateInvestment, InvestmentOut

logger = logging.getLogger(__name__)


# -------- Derived views (pure, computed on read) --------

def total_return(inv: models.Investment) -> Decimal:
    return ledger.to_decimal(inv.amount) + ledger.to_decimal(inv.profit_amount)


def time_remaining(inv: models.Investment, now: datetime) -> timedelta:
    if inv.status != models.INVESTMENT_ACTIVE:
        return timedelta(0)
    return max(timedelta(0), as_utc(inv.end_date) - as_utc(now))


def progress_percentage(inv: models.Investment, now: datetime) -> float:
    start = as_utc(inv.start_date)
    total = (as_utc(inv.end_date) - start).total_seconds()
    if total <= 0:
        return 100.0
    elapsed = (as_utc(now) - start).total_seconds()
    return min(100.0, max(0.0, elapsed / total * 100))


def to_view(inv: models.Investment, now: datetime) -> InvestmentOut:
    return InvestmentOut(
        id=inv.id,
        account_id=inv.account_id,
        plan_id=inv.plan_id,
        plan_name=inv.plan.name,
        plan_duration_hours=inv.plan.duration_hours,
        amount=inv.amount,
        roi=inv.roi,
        profit_amount=inv.profit_amount,
        start_date=inv.start_date,
        end_date=inv.end_date,
        status=inv.status,
        is_profit_paid=inv.is_profit_paid,
        is_reinvestment=inv.is_reinvestment,
        parent_investment_id=inv.parent_investment_id,
        total_return=total_return(inv),
        time_remaining=time_remaining(inv, now).total_seconds(),
        progress_percentage=progress_percentage(inv, now),
    )


# -------- Workflow --------

class InvestmentWorkflow:
    """active -> completed (by the sweeper). `cancelled` exists but nothing sets it yet."""

    def __init__(self, database: Database, clock: Clock):
        self.database = database
        self.clock = clock

    def _check_parent(self, db: Session, cmd: CreateInvestment) -> None:
        parent = (
            db.query(models.Investment)
            .filter(models.Investment.id == cmd.parent_investment_id)
            .first()
        )
        if parent is None or parent.account_id != cmd.account_id:
            raise errors.NotFound(f"investment {cmd.parent_investment_id} not found")
        if parent.status != models.INVESTMENT_COMPLETED or not parent.is_profit_paid:
            raise errors.ValidationError(f"investment {parent.id} has not matured yet")
        already = (
            db.query(models.Investment.id)
            .filter(models.Investment.parent_investment_id == parent.id)
            .first()
        )
        if already:
            raise errors.AlreadyProcessed(f"investment {parent.id} has already been reinvested")

    def create(self, cmd: CreateInvestment) -> models.Investment:
        amount = ledger.quantize_money(cmd.amount)

        def _create(db: Session) -> models.Investment:
            now = self.clock.now()
            plan = crud.get_plan(db, cmd.plan_id)
            if not plan.is_active:
                raise errors.PlanInactive(f"investment plan {plan.name!r} is not active")
            if amount < plan.min_amount or amount > plan.max_amount:
                raise errors.AmountOutOfRange(
                    f"investment amount must be between ${plan.min_amount.normalize():f} "
                    f"and ${plan.max_amount.normalize():f}"
                )
            if cmd.parent_investment_id is not None:
                self._check_parent(db, cmd)

            account = ledger.lock_account(db, cmd.account_id)
            before, after = ledger.apply_balance_change(db, account, -amount)

            inv = models.Investment(
                account_id=account.id,
                plan_id=plan.id,
                amount=amount,
                roi=plan.roi,
                start_date=now,
                end_date=now + timedelta(hours=plan.duration_hours),
                status=models.INVESTMENT_ACTIVE,
                is_profit_paid=False,
                is_reinvestment=cmd.parent_investment_id is not None,
                parent_investment_id=cmd.parent_investment_id,
                created_at=now,
            )
            inv.plan = plan
            db.add(inv)
            try:
                db.flush()
            except IntegrityError as e:
                # unique parent_investment_id: a concurrent reinvest of the same parent won
                if cmd.parent_investment_id is None:
                    raise
                raise errors.AlreadyProcessed(
                    f"investment {cmd.parent_investment_id} has already been reinvested"
                ) from e

            label = "Reinvestment" if inv.is_reinvestment else "Investment"
            ledger.record_entry(
                db,
                account=account,
                kind=models.KIND_INVESTMENT,
                amount=amount,
                status=models.ENTRY_COMPLETED,
                description=f"{label} in {plan.name} plan",
                reference_type=models.REF_INVESTMENT,
                reference_id=inv.id,
                balance_before=before,
                balance_after=after,
                meta={"plan_id": plan.id, "roi": str(plan.roi), "duration_hours": plan.duration_hours},
                now=now,
            )
            return inv

        inv = self.database.run(_create)
        logger.info(
            "Investment %s created: account=%s plan=%s amount=%s roi=%s ends=%s",
            inv.id, inv.account_id, inv.plan_id, inv.amount, inv.roi, inv.end_date.isoformat(),
        )
        return inv

    def get(self, investment_id: int, *, account_id: int | None = None) -> models.Investment:
        with self.database.transaction() as db:
            q = db.query(models.Investment).filter(models.Investment.id == investment_id)
            if account_id is not None:
                q = q.filter(models.Investment.account_id == account_id)
            inv = q.first()
            if inv is None:
                raise errors.NotFound(f"investment {investment_id} not found")
            return inv

    def list_for_account(self, account_id: int) -> List[models.Investment]:
        with self.database.transaction() as db:
            return (
                db.query(models.Investment)
                .filter(models.Investment.account_id == account_id)
                .order_by(desc(models.Investment.created_at), desc(models.Investment.id))
                .all()
            )
