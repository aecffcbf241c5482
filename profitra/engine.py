# profitra/engine.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from profitra import crud, ledger, models
from profitra.core.clock import Clock, SystemClock
from profitra.core.config import Settings
from profitra.database import Database
from profitra.deposits import DepositWorkflow
from profitra.investments import InvestmentWorkflow
from profitra.schemas import (
    CreateInvestment,
    LedgerFilters,
    OpenAccount,
    Pagination,
    PlanCreate,
    PlanUpdate,
    ResolveRequest,
    SubmitDeposit,
    SubmitWithdrawal,
    parse_command,
)
from profitra.withdrawals import WithdrawalWorkflow
from profitra.yield_engine import SweepResult, sweep_matured

logger = logging.getLogger(__name__)


class LedgerEngine:
    """Entry point for routing/UI collaborators.

    Arguments arrive raw, are validated into command objects here, and only
    then handed to a workflow that opens the transaction.
    """

    def __init__(self, database: Database, settings: Settings, clock: Optional[Clock] = None):
        self.database = database
        self.settings = settings
        self.clock = clock or SystemClock()
        self.deposits = DepositWorkflow(database, self.clock, settings)
        self.investments = InvestmentWorkflow(database, self.clock)
        self.withdrawals = WithdrawalWorkflow(database, self.clock, settings)

    # -------- Accounts --------

    def open_account(self, *, email: Optional[str] = None, name: Optional[str] = None, is_admin: bool = False) -> models.Account:
        cmd = parse_command(OpenAccount, email=email, name=name, is_admin=is_admin)
        return self.database.run(lambda db: crud.open_account(db, cmd))

    def get_account(self, account_id: int) -> models.Account:
        with self.database.transaction() as db:
            return crud.get_account(db, account_id)

    # -------- Deposits --------

    def submit_deposit(self, account_id: int, amount, currency: str) -> models.DepositRequest:
        cmd = parse_command(SubmitDeposit, account_id=account_id, amount=amount, currency=currency)
        return self.deposits.submit(cmd)

    def resolve_deposit(
        self,
        deposit_id: int,
        admin_id: int,
        decision: str,
        notes: Optional[str] = None,
        tx_hash: Optional[str] = None,
    ) -> models.DepositRequest:
        cmd = parse_command(
            ResolveRequest,
            request_id=deposit_id,
            admin_id=admin_id,
            decision=decision,
            notes=notes,
            tx_hash=tx_hash,
        )
        return self.deposits.resolve(cmd)

    def list_deposits(self, account_id: int) -> List[models.DepositRequest]:
        return self.deposits.list_for_account(account_id)

    def list_all_deposits(self, *, status: Optional[str] = None, page: int = 1, limit: int = 20) -> ledger.Page:
        p = parse_command(Pagination, page=page, limit=limit)
        return self.deposits.list_all(status=status, page=p.page, limit=p.limit)

    # -------- Plans --------

    def create_plan(self, **fields: Any) -> models.InvestmentPlan:
        cmd = parse_command(PlanCreate, **fields)
        return self.database.run(lambda db: crud.create_plan(db, cmd, now=self.clock.now()))

    def update_plan(self, plan_id: int, **fields: Any) -> models.InvestmentPlan:
        cmd = parse_command(PlanUpdate, **fields)
        return self.database.run(lambda db: crud.update_plan(db, plan_id, cmd, now=self.clock.now()))

    def toggle_plan(self, plan_id: int) -> models.InvestmentPlan:
        return self.database.run(lambda db: crud.toggle_plan(db, plan_id, now=self.clock.now()))

    def delete_plan(self, plan_id: int) -> None:
        self.database.run(lambda db: crud.delete_plan(db, plan_id))

    def get_plan(self, plan_id: int) -> models.InvestmentPlan:
        with self.database.transaction() as db:
            return crud.get_plan(db, plan_id)

    def list_plans(self, *, active_only: bool = True) -> List[models.InvestmentPlan]:
        with self.database.transaction() as db:
            return crud.list_plans(db, active_only=active_only)

    def plan_investment_counts(self, plan_ids: List[int]) -> Dict[int, int]:
        with self.database.transaction() as db:
            return crud.count_plan_investments(db, plan_ids)

    # -------- Investments --------

    def create_investment(
        self,
        account_id: int,
        plan_id: int,
        amount,
        *,
        parent_investment_id: Optional[int] = None,
    ) -> models.Investment:
        cmd = parse_command(
            CreateInvestment,
            account_id=account_id,
            plan_id=plan_id,
            amount=amount,
            parent_investment_id=parent_investment_id,
        )
        return self.investments.create(cmd)

    def get_investment(self, investment_id: int, *, account_id: Optional[int] = None) -> models.Investment:
        return self.investments.get(investment_id, account_id=account_id)

    def list_investments(self, account_id: int) -> List[models.Investment]:
        return self.investments.list_for_account(account_id)

    def sweep(self, now: Optional[datetime] = None) -> SweepResult:
        return sweep_matured(self.database, now or self.clock.now())

    def sweep_matured_investments(self, now: Optional[datetime] = None) -> int:
        return self.sweep(now).paid

    # -------- Withdrawals --------

    def submit_withdrawal(self, account_id: int, amount, currency: str, wallet: str) -> models.WithdrawalRequest:
        cmd = parse_command(
            SubmitWithdrawal,
            account_id=account_id,
            amount=amount,
            currency=currency,
            wallet=wallet,
        )
        return self.withdrawals.submit(cmd)

    def resolve_withdrawal(
        self,
        withdrawal_id: int,
        admin_id: int,
        decision: str,
        notes: Optional[str] = None,
        tx_hash: Optional[str] = None,
    ) -> models.WithdrawalRequest:
        cmd = parse_command(
            ResolveRequest,
            request_id=withdrawal_id,
            admin_id=admin_id,
            decision=decision,
            notes=notes,
            tx_hash=tx_hash,
        )
        return self.withdrawals.resolve(cmd)

    def list_withdrawals(self, account_id: int) -> List[models.WithdrawalRequest]:
        return self.withdrawals.list_for_account(account_id)

    def list_all_withdrawals(self, *, status: Optional[str] = None, page: int = 1, limit: int = 20) -> ledger.Page:
        p = parse_command(Pagination, page=page, limit=limit)
        return self.withdrawals.list_all(status=status, page=p.page, limit=p.limit)

    # -------- Ledger --------

    def list_ledger_entries(
        self,
        account_id: Optional[int],
        filters: Optional[Dict[str, Any]] = None,
        pagination: Optional[Dict[str, Any]] = None,
    ) -> ledger.Page:
        """Newest-first page of ledger entries; `account_id=None` lists every account (admin)."""
        f = parse_command(LedgerFilters, **(filters or {}))
        p = parse_command(Pagination, **(pagination or {}))
        scope = account_id if account_id is not None else f.account_id
        with self.database.transaction() as db:
            return ledger.list_entries(
                db,
                account_id=scope,
                kind=f.kind,
                status=f.status,
                created_from=f.created_from,
                created_to=f.created_to,
                page=p.page,
                limit=p.limit,
            )
