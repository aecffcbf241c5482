# profitra/schemas.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Generic, List, Literal, Optional, Type, TypeVar

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from profitra.core import errors

C = TypeVar("C", bound=BaseModel)
T = TypeVar("T")

_DECISION_ALIASES = {"approved": "confirmed", "completed": "confirmed"}


def parse_command(model: Type[C], **data: Any) -> C:
    """Validate raw input into a command; shape errors never reach a transaction."""
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as e:
        raise errors.ValidationError(_format_errors(e)) from e


def _format_errors(e: pydantic.ValidationError) -> str:
    parts = []
    for err in e.errors():
        loc = ".".join(str(x) for x in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "; ".join(parts)


# -------- Commands --------

class _Command(BaseModel):
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)


class OpenAccount(_Command):
    email: Optional[str] = None
    name: Optional[str] = None
    is_admin: bool = False


class SubmitDeposit(_Command):
    account_id: int
    amount: Decimal = Field(gt=0)
    currency: str = Field(min_length=1, max_length=16)

    @field_validator("currency")
    @classmethod
    def _upper(cls, v: str) -> str:
        return v.upper()


class ResolveRequest(_Command):
    request_id: int
    admin_id: int
    decision: Literal["confirmed", "rejected"]
    notes: Optional[str] = None
    tx_hash: Optional[str] = Field(default=None, max_length=128)

    @field_validator("decision", mode="before")
    @classmethod
    def _canonical_decision(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip().lower()
            return _DECISION_ALIASES.get(v, v)
        return v


class CreateInvestment(_Command):
    account_id: int
    plan_id: int
    amount: Decimal = Field(gt=0)
    parent_investment_id: Optional[int] = None


class SubmitWithdrawal(_Command):
    account_id: int
    amount: Decimal = Field(gt=0)
    currency: str = Field(min_length=1, max_length=16)
    wallet: str = Field(min_length=1, max_length=128)

    @field_validator("currency")
    @classmethod
    def _upper(cls, v: str) -> str:
        return v.upper()


class PlanCreate(_Command):
    name: str = Field(min_length=1, max_length=128)
    min_amount: Decimal = Field(ge=1)
    max_amount: Decimal
    roi: Decimal = Field(ge=0, le=100)
    duration_hours: int = Field(ge=1)
    description: str = Field(default="", max_length=500)
    is_active: bool = True
    features: List[str] = Field(default_factory=list)
    popularity: int = 0

    @model_validator(mode="after")
    def _range(self) -> "PlanCreate":
        if self.max_amount <= self.min_amount:
            raise ValueError("max_amount must be greater than min_amount")
        return self


class PlanUpdate(_Command):
    """Partial update; the range check runs against the merged plan."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=128)
    min_amount: Optional[Decimal] = Field(default=None, ge=1)
    max_amount: Optional[Decimal] = None
    roi: Optional[Decimal] = Field(default=None, ge=0, le=100)
    duration_hours: Optional[int] = Field(default=None, ge=1)
    description: Optional[str] = Field(default=None, max_length=500)
    is_active: Optional[bool] = None
    features: Optional[List[str]] = None
    popularity: Optional[int] = None


class LedgerFilters(_Command):
    kind: Optional[Literal["deposit", "investment", "profit", "withdrawal"]] = None
    status: Optional[Literal["pending", "completed", "failed"]] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None
    account_id: Optional[int] = None  # admin listings only


class Pagination(_Command):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)


# -------- Read models --------

class AccountOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: Optional[str] = None
    name: Optional[str] = None
    is_admin: bool
    balance: Decimal


class LedgerEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    account_id: int
    kind: str
    amount: Decimal
    status: str
    description: str
    reference_id: Optional[int] = None
    reference_type: Optional[str] = None
    balance_before: Decimal
    balance_after: Decimal
    created_at: datetime


class DepositRequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    account_id: int
    amount: Decimal
    currency: str
    wallet_address: str
    status: str
    tx_hash: Optional[str] = None
    admin_notes: Optional[str] = None
    processed_by: Optional[int] = None
    processed_at: Optional[datetime] = None
    created_at: datetime


class WithdrawalRequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    account_id: int
    amount: Decimal
    currency: str
    wallet: str
    status: str
    tx_hash: Optional[str] = None
    admin_notes: Optional[str] = None
    processed_by: Optional[int] = None
    processed_at: Optional[datetime] = None
    created_at: datetime


class PlanOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    min_amount: Decimal
    max_amount: Decimal
    roi: Decimal
    duration_hours: int
    description: str
    is_active: bool
    features: List[str]
    popularity: int
    investment_count: Optional[int] = None


class InvestmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    account_id: int
    plan_id: int
    plan_name: str
    plan_duration_hours: int
    amount: Decimal
    roi: Decimal
    profit_amount: Decimal
    start_date: datetime
    end_date: datetime
    status: str
    is_profit_paid: bool
    is_reinvestment: bool
    parent_investment_id: Optional[int] = None
    total_return: Decimal
    time_remaining: float
    progress_percentage: float


class SweepOut(BaseModel):
    processed: int
    paid: int
    skipped: int
    failed: int
    total_paid: Decimal


class Page(BaseModel, Generic[T]):
    items: List[T]
    total: int
    page: int
    limit: int
    pages: int
