"""Exception hierarchy for ledger operations.

Every error carries a stable ``code`` so the calling layer can translate it
into a rejection without string matching on messages.
"""

from typing import Any, Dict


class LedgerError(Exception):
    """Base exception for ledger errors."""

    code = "ledger_error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class LedgerValidationError(LedgerError):
    """Bad caller input. Recovered at the boundary and rejected."""

    code = "validation_error"


class InvalidMonthError(LedgerValidationError):
    """Fiscal year start month (or fiscal month index) out of range."""

    code = "invalid_month"


class InvalidDateError(LedgerValidationError):
    """Missing or unparseable calendar date."""

    code = "invalid_date"


class InvalidAmountError(LedgerValidationError):
    """Amount is not acceptable for the requested operation."""

    code = "invalid_amount"


class NegativeAmountError(InvalidAmountError):
    """Cash amount below zero."""

    code = "negative_amount"


class InsufficientCreditError(LedgerValidationError):
    """Manual adjustment would drive the credit balance below zero."""

    code = "insufficient_credit"


class PeriodNotFoundError(LedgerValidationError):
    """Target billing period does not exist in the unit's ledger."""

    code = "period_not_found"


class PeriodAlreadyBilledError(LedgerValidationError):
    """Billed period cannot be re-billed with a different base charge."""

    code = "period_already_billed"


class CreditPoolMismatchError(LedgerValidationError):
    """Tracks in a unified payment do not share one credit pool."""

    code = "credit_pool_mismatch"


class OverApplicationError(LedgerError):
    """More money applied to a period than it currently owes (programmer error)."""

    code = "over_application"


class DoubleReversalError(LedgerError):
    """Transaction has already been reversed."""

    code = "double_reversal"

    def __init__(self, message: str, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(message)


class LedgerCorruptionError(LedgerError):
    """Reversal would drive a stored amount negative. Never auto-corrected."""

    code = "ledger_corruption"


class StoreError(LedgerError):
    """Document store failure."""

    code = "store_error"


class StoreConflictError(StoreError):
    """A document changed between read and write; the transaction was rolled back."""

    code = "store_conflict"


def error_response(error: LedgerError) -> Dict[str, Any]:
    """Create a standardized rejection payload for the calling layer."""
    return {
        "error": {
            "code": error.code,
            "message": error.message,
        }
    }


__all__ = [
    "LedgerError",
    "LedgerValidationError",
    "InvalidMonthError",
    "InvalidDateError",
    "InvalidAmountError",
    "NegativeAmountError",
    "InsufficientCreditError",
    "PeriodNotFoundError",
    "PeriodAlreadyBilledError",
    "CreditPoolMismatchError",
    "OverApplicationError",
    "DoubleReversalError",
    "LedgerCorruptionError",
    "StoreError",
    "StoreConflictError",
    "error_response",
]
