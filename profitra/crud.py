# profitra/crud.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from profitra import models
from profitra.core import errors
from profitra.ledger import to_decimal
from profitra.schemas import OpenAccount, PlanCreate, PlanUpdate

logger = logging.getLogger(__name__)


# -------- Accounts --------

def open_account(db: Session, cmd: OpenAccount) -> models.Account:
    if cmd.email:
        exists = db.query(models.Account.id).filter(models.Account.email == cmd.email).first()
        if exists:
            raise errors.ValidationError(f"account with email {cmd.email} already exists")

    account = models.Account(
        email=cmd.email,
        name=cmd.name,
        is_admin=cmd.is_admin,
        balance=to_decimal("0"),
    )
    db.add(account)
    db.flush()
    logger.info("Opened account %s", account.id)
    return account


def get_account(db: Session, account_id: int) -> models.Account:
    account = db.query(models.Account).filter(models.Account.id == account_id).first()
    if account is None:
        raise errors.NotFound(f"account {account_id} not found")
    return account


# -------- Investment plans --------

def _ensure_unique_name(db: Session, name: str, *, exclude_id: Optional[int] = None) -> None:
    q = db.query(models.InvestmentPlan.id).filter(models.InvestmentPlan.name == name)
    if exclude_id is not None:
        q = q.filter(models.InvestmentPlan.id != exclude_id)
    if q.first():
        raise errors.ValidationError(f"investment plan named {name!r} already exists")


def get_plan(db: Session, plan_id: int) -> models.InvestmentPlan:
    plan = db.query(models.InvestmentPlan).filter(models.InvestmentPlan.id == plan_id).first()
    if plan is None:
        raise errors.NotFound(f"investment plan {plan_id} not found")
    return plan


def count_plan_investments(db: Session, plan_ids: List[int]) -> Dict[int, int]:
    if not plan_ids:
        return {}
    rows = (
        db.query(models.Investment.plan_id, func.count(models.Investment.id))
        .filter(models.Investment.plan_id.in_(plan_ids))
        .group_by(models.Investment.plan_id)
        .all()
    )
    counts = {pid: 0 for pid in plan_ids}
    counts.update({pid: n for pid, n in rows})
    return counts


def list_plans(db: Session, *, active_only: bool = True) -> List[models.InvestmentPlan]:
    q = db.query(models.InvestmentPlan)
    if active_only:
        q = q.filter(models.InvestmentPlan.is_active.is_(True))
    return q.order_by(models.InvestmentPlan.min_amount, models.InvestmentPlan.id).all()


def create_plan(db: Session, cmd: PlanCreate, *, now: datetime) -> models.InvestmentPlan:
    _ensure_unique_name(db, cmd.name)
    plan = models.InvestmentPlan(
        name=cmd.name,
        min_amount=cmd.min_amount,
        max_amount=cmd.max_amount,
        roi=cmd.roi,
        duration_hours=cmd.duration_hours,
        description=cmd.description,
        is_active=cmd.is_active,
        features=list(cmd.features),
        popularity=cmd.popularity,
        created_at=now,
    )
    db.add(plan)
    db.flush()
    logger.info("Created investment plan %s (%s)", plan.id, plan.name)
    return plan


def update_plan(db: Session, plan_id: int, cmd: PlanUpdate, *, now: datetime) -> models.InvestmentPlan:
    """Edit a plan in place. Open investments keep their own roi/end_date snapshot."""
    plan = get_plan(db, plan_id)
    changes = cmd.model_dump(exclude_unset=True, exclude_none=True)

    if "name" in changes and changes["name"] != plan.name:
        _ensure_unique_name(db, changes["name"], exclude_id=plan.id)

    min_amount = to_decimal(changes.get("min_amount", plan.min_amount))
    max_amount = to_decimal(changes.get("max_amount", plan.max_amount))
    if max_amount <= min_amount:
        raise errors.ValidationError("max_amount must be greater than min_amount")

    for field, value in changes.items():
        setattr(plan, field, list(value) if field == "features" else value)
    plan.updated_at = now

    db.add(plan)
    db.flush()
    logger.info("Updated investment plan %s: %s", plan.id, sorted(changes))
    return plan


def toggle_plan(db: Session, plan_id: int, *, now: datetime) -> models.InvestmentPlan:
    plan = get_plan(db, plan_id)
    plan.is_active = not plan.is_active
    plan.updated_at = now
    db.add(plan)
    db.flush()
    logger.info("Investment plan %s %s", plan.id, "activated" if plan.is_active else "deactivated")
    return plan


def delete_plan(db: Session, plan_id: int) -> None:
    plan = get_plan(db, plan_id)
    in_use = db.query(models.Investment.id).filter(models.Investment.plan_id == plan.id).first()
    if in_use:
        raise errors.PlanInUse("cannot delete a plan with existing investments, deactivate it instead")
    db.delete(plan)
    db.flush()
    logger.info("Deleted investment plan %s", plan_id)
