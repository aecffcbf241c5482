# profitra/deposits.py
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
from profitra.schemas import ResolveRequest, SubmitDeposit

logger = logging.getLogger(__name__)


class DepositWorkflow:
    """pending -> confirmed | rejected. Money only moves on confirmation."""

    def __init__(self, database: Database, clock: Clock, settings: Settings):
        self.database = database
        self.clock = clock
        self.settings = settings

    def _wallet_for(self, currency: str) -> str:
        if currency not in self.settings.deposit_currencies:
            raise errors.ValidationError(f"unsupported deposit currency: {currency}")
        address = self.settings.deposit_wallets.get(currency)
        if not address:
            raise errors.ValidationError(f"no deposit wallet configured for {currency}")
        return address

    def submit(self, cmd: SubmitDeposit) -> models.DepositRequest:
        if cmd.amount < self.settings.MIN_DEPOSIT:
            raise errors.BelowMinimum(f"minimum deposit is {self.settings.MIN_DEPOSIT}")
        wallet_address = self._wallet_for(cmd.currency)
        amount = ledger.quantize_money(cmd.amount)

        def _submit(db: Session) -> models.DepositRequest:
            now = self.clock.now()
            account = ledger.lock_account(db, cmd.account_id)

            req = models.DepositRequest(
                account_id=account.id,
                amount=amount,
                currency=cmd.currency,
                wallet_address=wallet_address,
                status=models.REQUEST_PENDING,
                created_at=now,
            )
            db.add(req)
            db.flush()

            ledger.record_entry(
                db,
                account=account,
                kind=models.KIND_DEPOSIT,
                amount=amount,
                status=models.ENTRY_PENDING,
                description=f"{cmd.currency} deposit request - ${amount.normalize():f}",
                reference_type=models.REF_DEPOSIT,
                reference_id=req.id,
                now=now,
            )
            return req

        req = self.database.run(_submit)
        logger.info("Deposit request %s submitted: account=%s amount=%s %s", req.id, req.account_id, req.amount, req.currency)
        return req

    def resolve(self, cmd: ResolveRequest) -> models.DepositRequest:
        def _resolve(db: Session) -> models.DepositRequest:
            now = self.clock.now()
            req = db.query(models.DepositRequest).filter(models.DepositRequest.id == cmd.request_id).first()
            if req is None:
                raise errors.NotFound(f"deposit request {cmd.request_id} not found")
            if req.status != models.REQUEST_PENDING:
                raise errors.AlreadyProcessed(f"deposit request {req.id} has already been {req.status}")

            # claim first, so a second admin racing on the same request loses here
            claimed = (
                db.query(models.DepositRequest)
                .filter(
                    models.DepositRequest.id == req.id,
                    models.DepositRequest.status == models.REQUEST_PENDING,
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
                raise errors.AlreadyProcessed(f"deposit request {req.id} has already been processed")

            if cmd.decision == models.REQUEST_CONFIRMED:
                account = ledger.lock_account(db, req.account_id)
                before, after = ledger.apply_balance_change(db, account, req.amount)
                ledger.settle_entry(
                    db,
                    reference_type=models.REF_DEPOSIT,
                    reference_id=req.id,
                    kind=models.KIND_DEPOSIT,
                    status=models.ENTRY_COMPLETED,
                    balance_before=before,
                    balance_after=after,
                    now=now,
                )
            else:
                # submit-time snapshots are stale by now; record the balance as it stands
                account = ledger.lock_account(db, req.account_id)
                current = ledger.to_decimal(account.balance)
                ledger.settle_entry(
                    db,
                    reference_type=models.REF_DEPOSIT,
                    reference_id=req.id,
                    kind=models.KIND_DEPOSIT,
                    status=models.ENTRY_FAILED,
                    balance_before=current,
                    balance_after=current,
                    now=now,
                )

            db.refresh(req)
            return req

        req = self.database.run(_resolve)
        logger.info("Deposit request %s %s by admin %s", req.id, req.status, req.processed_by)
        return req

    def list_for_account(self, account_id: int) -> List[models.DepositRequest]:
        with self.database.transaction() as db:
            return (
                db.query(models.DepositRequest)
                .filter(models.DepositRequest.account_id == account_id)
                .order_by(desc(models.DepositRequest.created_at), desc(models.DepositRequest.id))
                .all()
            )

    def list_all(self, *, status: Optional[str] = None, page: int = 1, limit: int = 20) -> ledger.Page:
        with self.database.transaction() as db:
            q = db.query(models.DepositRequest)
            if status:
                q = q.filter(models.DepositRequest.status == status)
            q = q.order_by(desc(models.DepositRequest.created_at), desc(models.DepositRequest.id))
            return ledger.paginate(q, page=page, limit=limit)
