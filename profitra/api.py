# profitra/api.py
from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from profitra import investments, ledger
from profitra.core import errors
from profitra.engine import LedgerEngine
from profitra.schemas import (
    DepositRequestOut,
    LedgerEntryOut,
    Page,
    PlanOut,
    SweepOut,
    WithdrawalRequestOut,
)

router = APIRouter(prefix="/api")

_STATUS_BY_ERROR = [
    (errors.NotFound, status.HTTP_404_NOT_FOUND),
    (errors.AlreadyProcessed, status.HTTP_409_CONFLICT),
    (errors.ConcurrencyConflict, status.HTTP_503_SERVICE_UNAVAILABLE),
    (errors.ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (errors.LedgerError, status.HTTP_400_BAD_REQUEST),
]


async def ledger_error_handler(request: Request, exc: errors.LedgerError) -> JSONResponse:
    code = next(http for cls, http in _STATUS_BY_ERROR if isinstance(exc, cls))
    return JSONResponse(
        {"success": False, "error": exc.code, "message": exc.message},
        status_code=code,
    )


# -------- Identity (forwarded by the auth gateway) --------

@dataclass(frozen=True)
class Principal:
    account_id: int
    is_admin: bool


def get_principal(
    x_account_id: Optional[int] = Header(default=None),
    x_account_role: Optional[str] = Header(default=None),
) -> Principal:
    if x_account_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="missing principal")
    return Principal(account_id=x_account_id, is_admin=(x_account_role or "").lower() == "admin")


def require_admin(principal: Principal = Depends(get_principal)) -> Principal:
    if not principal.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="admin only")
    return principal


def get_engine(request: Request) -> LedgerEngine:
    return request.app.state.engine


def _page(p: ledger.Page, out) -> dict:
    return Page(
        items=[out.model_validate(x) for x in p.items],
        total=p.total,
        page=p.page,
        limit=p.limit,
        pages=p.pages,
    ).model_dump(mode="json")


# -------- Bodies --------

class DepositBody(BaseModel):
    amount: Decimal
    currency: str


class ResolveBody(BaseModel):
    status: str
    admin_notes: Optional[str] = None
    transaction_hash: Optional[str] = None


class InvestmentBody(BaseModel):
    plan_id: int
    amount: Decimal
    parent_investment_id: Optional[int] = None


class WithdrawalBody(BaseModel):
    amount: Decimal
    currency: str
    wallet: str


class PlanBody(BaseModel):
    name: Optional[str] = None
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None
    roi: Optional[Decimal] = None
    duration_hours: Optional[int] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None
    features: Optional[List[str]] = None
    popularity: Optional[int] = None


# -------- Deposits --------

@router.post("/deposits", status_code=status.HTTP_201_CREATED)
def create_deposit(
    body: DepositBody,
    principal: Principal = Depends(get_principal),
    engine: LedgerEngine = Depends(get_engine),
):
    req = engine.submit_deposit(principal.account_id, body.amount, body.currency)
    return {"success": True, "data": DepositRequestOut.model_validate(req).model_dump(mode="json")}


@router.get("/deposits")
def my_deposits(
    principal: Principal = Depends(get_principal),
    engine: LedgerEngine = Depends(get_engine),
):
    rows = engine.list_deposits(principal.account_id)
    data = [DepositRequestOut.model_validate(r).model_dump(mode="json") for r in rows]
    return {"success": True, "data": data}


@router.get("/admin/deposits")
def all_deposits(
    status_: Optional[str] = Query(default=None, alias="status"),
    page: int = 1,
    limit: int = 20,
    _: Principal = Depends(require_admin),
    engine: LedgerEngine = Depends(get_engine),
):
    result = engine.list_all_deposits(status=status_, page=page, limit=limit)
    return {"success": True, **_page(result, DepositRequestOut)}


@router.post("/admin/deposits/{deposit_id}/resolve")
def resolve_deposit(
    deposit_id: int,
    body: ResolveBody,
    admin: Principal = Depends(require_admin),
    engine: LedgerEngine = Depends(get_engine),
):
    req = engine.resolve_deposit(
        deposit_id,
        admin.account_id,
        body.status,
        notes=body.admin_notes,
        tx_hash=body.transaction_hash,
    )
    return {"success": True, "data": DepositRequestOut.model_validate(req).model_dump(mode="json")}


# -------- Plans --------

@router.get("/plans")
def active_plans(engine: LedgerEngine = Depends(get_engine)):
    plans = engine.list_plans(active_only=True)
    return {"success": True, "data": [PlanOut.model_validate(p).model_dump(mode="json") for p in plans]}


@router.get("/admin/plans")
def all_plans(_: Principal = Depends(require_admin), engine: LedgerEngine = Depends(get_engine)):
    plans = engine.list_plans(active_only=False)
    counts = engine.plan_investment_counts([p.id for p in plans])
    data = []
    for p in plans:
        out = PlanOut.model_validate(p)
        out.investment_count = counts.get(p.id, 0)
        data.append(out.model_dump(mode="json"))
    return {"success": True, "count": len(data), "data": data}


@router.get("/admin/plans/{plan_id}")
def plan_detail(
    plan_id: int,
    _: Principal = Depends(require_admin),
    engine: LedgerEngine = Depends(get_engine),
):
    plan = engine.get_plan(plan_id)
    out = PlanOut.model_validate(plan)
    out.investment_count = engine.plan_investment_counts([plan.id]).get(plan.id, 0)
    return {"success": True, "data": out.model_dump(mode="json")}


@router.post("/admin/plans", status_code=status.HTTP_201_CREATED)
def create_plan(
    body: PlanBody,
    _: Principal = Depends(require_admin),
    engine: LedgerEngine = Depends(get_engine),
):
    plan = engine.create_plan(**body.model_dump(exclude_none=True))
    return {"success": True, "data": PlanOut.model_validate(plan).model_dump(mode="json")}


@router.put("/admin/plans/{plan_id}")
def update_plan(
    plan_id: int,
    body: PlanBody,
    _: Principal = Depends(require_admin),
    engine: LedgerEngine = Depends(get_engine),
):
    plan = engine.update_plan(plan_id, **body.model_dump(exclude_none=True))
    return {"success": True, "data": PlanOut.model_validate(plan).model_dump(mode="json")}


@router.patch("/admin/plans/{plan_id}/toggle-status")
def toggle_plan(
    plan_id: int,
    _: Principal = Depends(require_admin),
    engine: LedgerEngine = Depends(get_engine),
):
    plan = engine.toggle_plan(plan_id)
    return {"success": True, "data": PlanOut.model_validate(plan).model_dump(mode="json")}


@router.delete("/admin/plans/{plan_id}")
def delete_plan(
    plan_id: int,
    _: Principal = Depends(require_admin),
    engine: LedgerEngine = Depends(get_engine),
):
    engine.delete_plan(plan_id)
    return {"success": True}


# -------- Investments --------

@router.post("/investments", status_code=status.HTTP_201_CREATED)
def create_investment(
    body: InvestmentBody,
    principal: Principal = Depends(get_principal),
    engine: LedgerEngine = Depends(get_engine),
):
    inv = engine.create_investment(
        principal.account_id,
        body.plan_id,
        body.amount,
        parent_investment_id=body.parent_investment_id,
    )
    return {"success": True, "data": investments.to_view(inv, engine.clock.now()).model_dump(mode="json")}


@router.get("/investments")
def my_investments(
    principal: Principal = Depends(get_principal),
    engine: LedgerEngine = Depends(get_engine),
):
    now = engine.clock.now()
    rows = engine.list_investments(principal.account_id)
    return {"success": True, "data": [investments.to_view(i, now).model_dump(mode="json") for i in rows]}


@router.get("/investments/{investment_id}")
def investment_detail(
    investment_id: int,
    principal: Principal = Depends(get_principal),
    engine: LedgerEngine = Depends(get_engine),
):
    inv = engine.get_investment(investment_id, account_id=principal.account_id)
    return {"success": True, "data": investments.to_view(inv, engine.clock.now()).model_dump(mode="json")}


@router.post("/admin/sweep")
def run_sweep(_: Principal = Depends(require_admin), engine: LedgerEngine = Depends(get_engine)):
    result = engine.sweep()
    return {"success": True, "data": SweepOut(**asdict(result)).model_dump(mode="json")}


# -------- Withdrawals --------

@router.post("/withdrawals", status_code=status.HTTP_201_CREATED)
def create_withdrawal(
    body: WithdrawalBody,
    principal: Principal = Depends(get_principal),
    engine: LedgerEngine = Depends(get_engine),
):
    req = engine.submit_withdrawal(principal.account_id, body.amount, body.currency, body.wallet)
    return {"success": True, "data": WithdrawalRequestOut.model_validate(req).model_dump(mode="json")}


@router.get("/withdrawals")
def my_withdrawals(
    principal: Principal = Depends(get_principal),
    engine: LedgerEngine = Depends(get_engine),
):
    rows = engine.list_withdrawals(principal.account_id)
    data = [WithdrawalRequestOut.model_validate(r).model_dump(mode="json") for r in rows]
    return {"success": True, "data": data}


@router.get("/admin/withdrawals")
def all_withdrawals(
    status_: Optional[str] = Query(default=None, alias="status"),
    page: int = 1,
    limit: int = 20,
    _: Principal = Depends(require_admin),
    engine: LedgerEngine = Depends(get_engine),
):
    result = engine.list_all_withdrawals(status=status_, page=page, limit=limit)
    return {"success": True, **_page(result, WithdrawalRequestOut)}


@router.post("/admin/withdrawals/{withdrawal_id}/resolve")
def resolve_withdrawal(
    withdrawal_id: int,
    body: ResolveBody,
    admin: Principal = Depends(require_admin),
    engine: LedgerEngine = Depends(get_engine),
):
    req = engine.resolve_withdrawal(
        withdrawal_id,
        admin.account_id,
        body.status,
        notes=body.admin_notes,
        tx_hash=body.transaction_hash,
    )
    return {"success": True, "data": WithdrawalRequestOut.model_validate(req).model_dump(mode="json")}


# -------- Ledger --------

@router.get("/transactions")
def my_transactions(
    type_: Optional[str] = Query(default=None, alias="type"),
    status_: Optional[str] = Query(default=None, alias="status"),
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: int = 1,
    limit: int = 10,
    principal: Principal = Depends(get_principal),
    engine: LedgerEngine = Depends(get_engine),
):
    filters = {"kind": type_, "status": status_, "created_from": start_date, "created_to": end_date}
    result = engine.list_ledger_entries(principal.account_id, filters, {"page": page, "limit": limit})
    return {"success": True, **_page(result, LedgerEntryOut)}


@router.get("/admin/transactions")
def all_transactions(
    type_: Optional[str] = Query(default=None, alias="type"),
    status_: Optional[str] = Query(default=None, alias="status"),
    account_id: Optional[int] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: int = 1,
    limit: int = 20,
    _: Principal = Depends(require_admin),
    engine: LedgerEngine = Depends(get_engine),
):
    filters = {
        "kind": type_,
        "status": status_,
        "account_id": account_id,
        "created_from": start_date,
        "created_to": end_date,
    }
    result = engine.list_ledger_entries(None, filters, {"page": page, "limit": limit})
    return {"success": True, **_page(result, LedgerEntryOut)}
