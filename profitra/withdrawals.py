# profitra/withdrawals.py
from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy import desc
from sqlalchemy.orm import Session

from profitra import ledger, models
from profitra.core import errors
from profitra.core.clock import Clock
from profitra.core.config import Settings
from profitra.database import Database
from profitra.schemas import ResolveRequest, SubmitWithdrawal

logger = logging.getLogger(__name__)


class WithdrawalWorkflow:
    """pending -> confirmed | rejected.

    The balance is debited when the request is submitted (held), so approval
    moves no money and rejection refunds it.
    """

    def __init__(self, database: Database, clock: Clock, settings: Settings):
        self.database = database
        self.clock = clock
        self.settings = settings

    def submit(self, cmd: SubmitWithdrawal) -> models.WithdrawalRequest:
        if cmd.currency not in self.settings.withdrawal_currencies:
            raise errors.ValidationError(f"unsupported withdrawal currency: {cmd.currency}")
        amount = ledger.quantize_money(cmd.amount)

        def _submit(db: Session) -> models.WithdrawalRequest:
            now = self.clock.now()
            account = ledger.lock_account(db, cmd.account_id)
            if amount > ledger.to_decimal(account.balance):
                raise errors.InsufficientFunds(f"insufficient balance: have {account.balance}, need {amount}")
            if amount < self.settings.MIN_WITHDRAWAL:
                raise errors.BelowMinimum(f"minimum withdrawal amount is ${self.settings.MIN_WITHDRAWAL}")

            before, after = ledger.apply_balance_change(db, account, -amount)

            req = models.WithdrawalRequest(
                account_id=account.id,
                amount=amount,
                currency=cmd.currency,
                wallet=cmd.wallet,
                status=models.REQUEST_PENDING,
                created_at=now,
            )
            db.add(req)
            db.flush()

            # pending, but the snapshots already show the hold
            ledger.record_entry(
                db,
                account=account,
                kind=models.KIND_WITHDRAWAL,
                amount=amount,
                status=models.ENTRY_PENDING,
                description=f"{cmd.currency} withdrawal request - ${amount.normalize():f}",
                reference_type=models.REF_WITHDRAWAL,
                reference_id=req.id,
                balance_before=before,
                balance_after=after,
                now=now,
            )
            return req

        req = self.database.run(_submit)
        logger.info("Withdrawal request %s submitted: account=%s amount=%s %s", req.id, req.account_id, req.amount, req.currency)
        return req

    def resolve(self, cmd: ResolveRequest) -> models.WithdrawalRequest:
        def _resolve(db: Session) -> models.WithdrawalRequest:
            now = self.clock.now()
            req = db.query(models.WithdrawalRequest).filter(models.WithdrawalRequest.id == cmd.request_id).first()
            if req is None:
                raise errors.NotFound(f"withdrawal request {cmd.request_id} not found")
            if req.status != models.REQUEST_PENDING:
                raise errors.AlreadyProcessed(f"withdrawal request {req.id} has already been {req.status}")

            claimed = (
                db.query(models.WithdrawalRequest)
                .filter(
                    models.WithdrawalRequest.id == req.id,
                    models.WithdrawalRequest.status == models.REQUEST_PENDING,
                )
                .update(
                    {
                        "status": cmd.decision,
                        "admin_notes": cmd.notes,
                        "tx_hash": cmd.tx_hash,
                        "processed_by": cmd.admin_id,
                        "processed_at": now,
                    },
                    synchronize_session=False,
                )
            )
            if claimed != 1:
                raise errors.AlreadyProcessed(f"withdrawal request {req.id} has already been processed")

            if cmd.decision == models.REQUEST_REJECTED:
                account = ledger.lock_account(db, req.account_id)
                before, after = ledger.apply_balance_change(db, account, req.amount)
                ledger.settle_entry(
                    db,
                    reference_type=models.REF_WITHDRAWAL,
                    reference_id=req.id,
                    kind=models.KIND_WITHDRAWAL,
                    status=models.ENTRY_FAILED,
                    balance_before=before,
                    balance_after=after,
                    now=now,
                )
            else:
                ledger.settle_entry(
                    db,
                    reference_type=models.REF_WITHDRAWAL,
                    reference_id=req.id,
                    kind=models.KIND_WITHDRAWAL,
                    status=models.ENTRY_COMPLETED,
                    now=now,
                )

            db.refresh(req)
            return req

        req = self.database.run(_resolve)
        logger.info("Withdrawal request %s %s by admin %s", req.id, req.status, req.processed_by)
        return req

    def list_for_account(self, account_id: int) -> List[models.WithdrawalRequest]:
        with self.database.transaction() as db:
            return (
                db.query(models.WithdrawalRequest)
                .filter(models.WithdrawalRequest.account_id == account_id)
                .order_by(desc(models.WithdrawalRequest.created_at), desc(models.WithdrawalRequest.id))
                .all()
            )

    def list_all(self, *, status: Optional[str] = None, page: int = 1, limit: int = 20) -> ledger.Page:
        with self.database.transaction() as db:
            q = db.query(models.WithdrawalRequest)
            if status:
                q = q.filter(models.WithdrawalRequest.status == status)
            q = q.order_by(desc(models.WithdrawalRequest.created_at), desc(models.WithdrawalRequest.id))
            return ledger.paginate(q, page=page, limit=limit)
