# profitra/ledger.py
from __future__ import annotations

import json
import math
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_DOWN
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import desc
from sqlalchemy.orm import Query, Session

from profitra import models
from profitra.core import errors


def to_decimal(x) -> Decimal:
    if isinstance(x, Decimal):
        return x
    return Decimal(str(x))


def quantize_money(x: Decimal) -> Decimal:
    # 8 decimals, same scale as the MONEY columns
    return to_decimal(x).quantize(Decimal("0.00000001"), rounding=ROUND_DOWN)


def _canonical_json(meta: Dict[str, Any]) -> str:
    return json.dumps(meta, ensure_ascii=False, sort_keys=True, separators=(",", ":"), default=str)


@dataclass(frozen=True)
class Page:
    items: List[Any]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


def paginate(q: Query, *, page: int, limit: int) -> Page:
    total = q.order_by(None).count()
    items = q.offset((page - 1) * limit).limit(limit).all()
    return Page(items=items, total=total, page=page, limit=limit)


# -------- Accounts / balance --------

def lock_account(db: Session, account_id: int) -> models.Account:
    """Load the account row for update (row lock on Postgres, version CAS everywhere)."""
    account = (
        db.query(models.Account)
        .filter(models.Account.id == account_id)
        .with_for_update()
        .first()
    )
    if account is None:
        raise errors.NotFound(f"account {account_id} not found")
    return account


def apply_balance_change(db: Session, account: models.Account, delta) -> Tuple[Decimal, Decimal]:
    """Move `account.balance` by `delta` and flush; returns (balance_before, balance_after).

    The flush issues `UPDATE ... WHERE version = :seen`, so a concurrent
    writer surfaces here as StaleDataError instead of a lost update.
    """
    delta = quantize_money(delta)
    before = to_decimal(account.balance)
    after = before + delta
    if after < 0:
        raise errors.InsufficientFunds(f"insufficient balance: have {before}, need {-delta}")

    account.balance = after
    db.add(account)
    db.flush()
    return before, after


def _check_direction(kind: str, amount: Decimal, before: Decimal, after: Decimal) -> None:
    expected = before + amount if kind in models.CREDIT_KINDS else before - amount
    if after != expected:
        raise errors.ValidationError(
            f"{kind} entry snapshot mismatch: {before} -> {after} for amount {amount}"
        )


def record_entry(
    db: Session,
    *,
    account: models.Account,
    kind: str,
    amount,
    status: str,
    description: str,
    now: datetime,
    reference_type: Optional[str] = None,
    reference_id: Optional[int] = None,
    balance_before: Optional[Decimal] = None,
    balance_after: Optional[Decimal] = None,
    meta: Optional[Dict[str, Any]] = None,
) -> models.LedgerEntry:
    """Append one ledger entry.

    Snapshots default to the current balance on both sides, which is what a
    pending entry with no money moved yet should carry.
    """
    if kind not in models.ENTRY_KINDS:
        raise errors.ValidationError(f"unknown entry kind: {kind}")
    if status not in models.ENTRY_STATUSES:
        raise errors.ValidationError(f"unknown entry status: {status}")

    amt = quantize_money(amount)
    if amt < 0:
        raise errors.ValidationError("amount must be >= 0")

    current = to_decimal(account.balance)
    before = current if balance_before is None else to_decimal(balance_before)
    after = current if balance_after is None else to_decimal(balance_after)
    if status == models.ENTRY_COMPLETED:
        _check_direction(kind, amt, before, after)

    row = models.LedgerEntry(
        account_id=account.id,
        kind=kind,
        amount=amt,
        status=status,
        description=description.strip(),
        reference_type=reference_type,
        reference_id=reference_id,
        balance_before=before,
        balance_after=after,
        meta=(_canonical_json(meta) if meta else None),
        created_at=now,
    )
    db.add(row)
    db.flush()
    return row


def settle_entry(
    db: Session,
    *,
    reference_type: str,
    reference_id: int,
    kind: str,
    status: str,
    now: datetime,
    balance_before: Optional[Decimal] = None,
    balance_after: Optional[Decimal] = None,
) -> models.LedgerEntry:
    """Resolve the pending entry of one workflow entity, exactly once."""
    if status not in (models.ENTRY_COMPLETED, models.ENTRY_FAILED):
        raise errors.ValidationError(f"cannot settle an entry to {status}")

    entry = get_entry_for(db, reference_type=reference_type, reference_id=reference_id, kind=kind)
    if entry is None:
        raise errors.NotFound(f"no {kind} entry for {reference_type} {reference_id}")

    values: Dict[str, Any] = {"status": status, "updated_at": now}
    if balance_before is not None:
        values["balance_before"] = to_decimal(balance_before)
    if balance_after is not None:
        values["balance_after"] = to_decimal(balance_after)
    if status == models.ENTRY_COMPLETED:
        _check_direction(
            kind,
            to_decimal(entry.amount),
            values.get("balance_before", to_decimal(entry.balance_before)),
            values.get("balance_after", to_decimal(entry.balance_after)),
        )

    claimed = (
        db.query(models.LedgerEntry)
        .filter(
            models.LedgerEntry.id == entry.id,
            models.LedgerEntry.status == models.ENTRY_PENDING,
        )
        .update(values, synchronize_session=False)
    )
    if claimed != 1:
        raise errors.AlreadyProcessed(f"{kind} entry {entry.id} is already {entry.status}")

    db.refresh(entry)
    return entry


def get_entry_for(
    db: Session,
    *,
    reference_type: str,
    reference_id: int,
    kind: str,
) -> Optional[models.LedgerEntry]:
    return (
        db.query(models.LedgerEntry)
        .filter(
            models.LedgerEntry.reference_type == reference_type,
            models.LedgerEntry.reference_id == reference_id,
            models.LedgerEntry.kind == kind,
        )
        .order_by(models.LedgerEntry.id)
        .first()
    )


def list_entries(
    db: Session,
    *,
    account_id: Optional[int] = None,
    kind: Optional[str] = None,
    status: Optional[str] = None,
    created_from: Optional[datetime] = None,
    created_to: Optional[datetime] = None,
    page: int = 1,
    limit: int = 20,
) -> Page:
    q = db.query(models.LedgerEntry)
    if account_id is not None:
        q = q.filter(models.LedgerEntry.account_id == account_id)
    if kind:
        q = q.filter(models.LedgerEntry.kind == kind)
    if status:
        q = q.filter(models.LedgerEntry.status == status)
    if created_from is not None:
        q = q.filter(models.LedgerEntry.created_at >= created_from)
    if created_to is not None:
        q = q.filter(models.LedgerEntry.created_at <= created_to)
    q = q.order_by(desc(models.LedgerEntry.created_at), desc(models.LedgerEntry.id))
    return paginate(q, page=page, limit=limit)
