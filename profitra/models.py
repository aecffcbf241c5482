# profitra/models.py
from __future__ import annotations

from decimal import Decimal, ROUND_DOWN

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    event,
    inspect,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()

MONEY = Numeric(24, 8)

# ledger entry kinds
KIND_DEPOSIT = "deposit"
KIND_INVESTMENT = "investment"
KIND_PROFIT = "profit"
KIND_WITHDRAWAL = "withdrawal"
ENTRY_KINDS = (KIND_DEPOSIT, KIND_INVESTMENT, KIND_PROFIT, KIND_WITHDRAWAL)
CREDIT_KINDS = (KIND_DEPOSIT, KIND_PROFIT)

# ledger entry statuses
ENTRY_PENDING = "pending"
ENTRY_COMPLETED = "completed"
ENTRY_FAILED = "failed"
ENTRY_STATUSES = (ENTRY_PENDING, ENTRY_COMPLETED, ENTRY_FAILED)

# deposit / withdrawal request statuses
REQUEST_PENDING = "pending"
REQUEST_CONFIRMED = "confirmed"
REQUEST_REJECTED = "rejected"
REQUEST_STATUSES = (REQUEST_PENDING, REQUEST_CONFIRMED, REQUEST_REJECTED)

# investment statuses
INVESTMENT_ACTIVE = "active"
INVESTMENT_COMPLETED = "completed"
INVESTMENT_CANCELLED = "cancelled"
INVESTMENT_STATUSES = (INVESTMENT_ACTIVE, INVESTMENT_COMPLETED, INVESTMENT_CANCELLED)

# polymorphic reference written on ledger entries
REF_DEPOSIT = "DepositRequest"
REF_WITHDRAWAL = "WithdrawalRequest"
REF_INVESTMENT = "Investment"


class Account(Base):
    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), unique=True, nullable=True)
    name = Column(String(128), nullable=True)
    is_admin = Column(Boolean, nullable=False, default=False)

    balance = Column(MONEY, nullable=False, default=Decimal("0"))
    # bumped on every balance write; a stale write raises StaleDataError
    version = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=True)

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_accounts_balance_non_negative"),
    )


class LedgerEntry(Base):
    __tablename__ = "ledger_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)

    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False)

    kind = Column(String(16), nullable=False)  # deposit / investment / profit / withdrawal
    amount = Column(MONEY, nullable=False)
    status = Column(String(16), nullable=False, default=ENTRY_PENDING)
    description = Column(String(255), nullable=False)

    reference_id = Column(Integer, nullable=True)
    reference_type = Column(String(32), nullable=True)  # DepositRequest / WithdrawalRequest / Investment

    balance_before = Column(MONEY, nullable=False, default=Decimal("0"))
    balance_after = Column(MONEY, nullable=False, default=Decimal("0"))
    meta = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_ledger_entries_amount_non_negative"),
        Index("ix_ledger_entries_account_created", "account_id", "created_at"),
        Index("ix_ledger_entries_kind_status", "kind", "status"),
        Index("ix_ledger_entries_reference", "reference_type", "reference_id"),
    )


class DepositRequest(Base):
    __tablename__ = "deposit_requests"

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False)

    amount = Column(MONEY, nullable=False)
    currency = Column(String(16), nullable=False)
    wallet_address = Column(String(128), nullable=False)

    status = Column(String(16), nullable=False, default=REQUEST_PENDING)
    tx_hash = Column(String(128), nullable=True)
    admin_notes = Column(Text, nullable=True)
    processed_by = Column(Integer, nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_deposit_requests_account_status", "account_id", "status"),
        Index("ix_deposit_requests_status_created", "status", "created_at"),
    )


class InvestmentPlan(Base):
    __tablename__ = "investment_plans"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(128), unique=True, nullable=False)

    min_amount = Column(MONEY, nullable=False)
    max_amount = Column(MONEY, nullable=False)
    roi = Column(Numeric(8, 4), nullable=False)  # percent, 0..100
    duration_hours = Column(Integer, nullable=False)

    description = Column(String(500), nullable=False, default="")
    is_active = Column(Boolean, nullable=False, default=True)
    features = Column(JSON, nullable=False, default=list)
    popularity = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=True)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now(), nullable=True)

    __table_args__ = (
        CheckConstraint("max_amount > min_amount", name="ck_investment_plans_range"),
        Index("ix_investment_plans_active", "is_active"),
    )


class Investment(Base):
    __tablename__ = "investments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False)
    plan_id = Column(Integer, ForeignKey("investment_plans.id"), nullable=False)

    amount = Column(MONEY, nullable=False)
    roi = Column(Numeric(8, 4), nullable=False)  # snapshot of plan.roi at creation
    profit_amount = Column(MONEY, nullable=False, default=Decimal("0"))

    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=False)

    status = Column(String(16), nullable=False, default=INVESTMENT_ACTIVE)
    is_profit_paid = Column(Boolean, nullable=False, default=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    is_reinvestment = Column(Boolean, nullable=False, default=False)
    parent_investment_id = Column(Integer, ForeignKey("investments.id"), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False)

    plan = relationship(InvestmentPlan, lazy="joined", innerjoin=True)

    __table_args__ = (
        Index("ix_investments_account_status", "account_id", "status"),
        Index("ix_investments_due", "status", "is_profit_paid", "end_date"),
        Index("ix_investments_plan", "plan_id"),
        Index("ix_investments_parent", "parent_investment_id", unique=True),
    )


class WithdrawalRequest(Base):
    __tablename__ = "withdrawal_requests"

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False)

    amount = Column(MONEY, nullable=False)
    currency = Column(String(16), nullable=False)
    wallet = Column(String(128), nullable=False)

    status = Column(String(16), nullable=False, default=REQUEST_PENDING)
    tx_hash = Column(String(128), nullable=True)
    admin_notes = Column(Text, nullable=True)
    processed_by = Column(Integer, nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_withdrawal_requests_account_created", "account_id", "created_at"),
        Index("ix_withdrawal_requests_status", "status"),
    )


def compute_profit(amount, roi) -> Decimal:
    amt = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    pct = roi if isinstance(roi, Decimal) else Decimal(str(roi))
    return (amt * pct / Decimal("100")).quantize(Decimal("0.00000001"), rounding=ROUND_DOWN)


@event.listens_for(Investment, "before_insert")
def _investment_before_insert(mapper, connection, target: Investment) -> None:
    target.profit_amount = compute_profit(target.amount, target.roi)


@event.listens_for(Investment, "before_update")
def _investment_before_update(mapper, connection, target: Investment) -> None:
    state = inspect(target)
    if state.attrs.end_date.history.deleted:
        raise ValueError("investment end_date is immutable")
    if state.attrs.amount.history.has_changes() or state.attrs.roi.history.has_changes():
        target.profit_amount = compute_profit(target.amount, target.roi)
