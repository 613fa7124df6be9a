"""
Accounting Error Taxonomy

Every failed mutation surfaces as an AccountingError carrying a machine-readable
``kind`` and a human message. Errors subclass ValueError so callers that treat
bad input generically keep working.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


class AccountingError(ValueError):
    """Base class for all accounting engine errors"""

    kind = "accounting_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Structured form returned across the boundary"""
        return {
            "kind": self.kind,
            "message": self.message,
            "details": self.details,
        }


class NotFoundError(AccountingError):
    kind = "not_found"


class InvalidEntryError(AccountingError):
    """Journal entry failed validation; nothing was committed"""
    kind = "invalid_entry"


class ImbalancedEntryError(InvalidEntryError):
    """Debits and credits differ by more than the tolerance, or no lines"""
    kind = "imbalanced_entry"


class UnknownAccountError(InvalidEntryError):
    """A journal line references a missing or inactive account"""
    kind = "unknown_account"


class InvalidAccountError(AccountingError):
    """Account definition violates the chart of accounts rules"""
    kind = "invalid_account"


class EntryStateError(AccountingError):
    """Journal entry is not in a state that allows the operation"""
    kind = "entry_state"


class AlreadyVoidError(AccountingError):
    kind = "already_void"


class InsufficientStockError(AccountingError):
    kind = "insufficient_stock"


class OverpaymentError(AccountingError):
    kind = "overpayment"


class VoidedDocumentError(AccountingError):
    kind = "voided_document"


class ImmutableDocumentError(AccountingError):
    """Paid or void documents reject edits and voids"""
    kind = "immutable_document"


class InvalidTransitionError(AccountingError):
    kind = "invalid_transition"


class InvalidAmountError(AccountingError):
    kind = "invalid_amount"


class ConcurrentModificationError(AccountingError):
    """Record changed between read and write"""
    kind = "concurrent_modification"


class MissingExchangeRateError(AccountingError):
    kind = "missing_exchange_rate"


class DepreciationAlreadyRunError(AccountingError):
    kind = "depreciation_already_run"


def error_payload(error: Exception) -> Dict[str, Any]:
    """Structured payload for any exception, accounting or not"""
    if isinstance(error, AccountingError):
        return error.to_dict()
    return {
        "kind": "internal_error",
        "message": str(error) or error.__class__.__name__,
        "details": {"exception": error.__class__.__name__},
    }


@dataclass
class OperationOutcome:
    """
    Result of a sub-step whose failure must not abort the parent operation
    (inventory processing on finalize/void, per-asset depreciation runs).
    """
    success: bool
    result: Optional[Any] = None
    error: Optional[Dict[str, Any]] = None
    skipped: bool = False

    @classmethod
    def ok(cls, result: Any = None) -> 'OperationOutcome':
        return cls(success=True, result=result)

    @classmethod
    def failed(cls, error: Exception) -> 'OperationOutcome':
        return cls(success=False, error=error_payload(error))

    @classmethod
    def not_applicable(cls) -> 'OperationOutcome':
        return cls(success=True, skipped=True)

    def to_dict(self) -> Dict[str, Any]:
        result = self.result
        if hasattr(result, 'to_dict'):
            result = result.to_dict()
        return {
            "success": self.success,
            "skipped": self.skipped,
            "result": result,
            "error": self.error,
        }
