# profitra/core/errors.py
from __future__ import annotations


class LedgerError(Exception):
    """Base class for every error a workflow step can surface.

    `code` is a stable machine-readable identifier; the routing layer maps it
    to an HTTP status.
    """

    code = "ledger_error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class NotFound(LedgerError):
    code = "not_found"


class AlreadyProcessed(LedgerError):
    code = "already_processed"


class InsufficientFunds(LedgerError):
    code = "insufficient_funds"


class AmountOutOfRange(LedgerError):
    code = "amount_out_of_range"


class BelowMinimum(AmountOutOfRange):
    code = "below_minimum"


class PlanInactive(LedgerError):
    code = "plan_inactive"


class ValidationError(LedgerError):
    code = "validation_error"


class PlanInUse(ValidationError):
    code = "plan_in_use"


class ConcurrencyConflict(LedgerError):
    """Optimistic-lock retries exhausted."""

    code = "concurrency_conflict"
