"""
Shared API dependencies: the accounting system instance and error mapping
"""

from decimal import InvalidOperation
from typing import Optional
import logging

from fastapi import HTTPException

from ..system import AccountingSystem
from ..errors import AccountingError, error_payload
from ..logging_config import log_action

logger = logging.getLogger("ledgerline.api")

STATUS_BY_KIND = {
    "not_found": 404,
    "concurrent_modification": 409,
}


# Global accounting system instance, created on first use
accounting_system: Optional[AccountingSystem] = None


def get_accounting_system() -> AccountingSystem:
    """Dependency to get the accounting system"""
    global accounting_system
    if accounting_system is None:
        accounting_system = AccountingSystem()
    return accounting_system


def http_error(error: Exception) -> HTTPException:
    """HTTPException carrying the structured error payload"""
    payload = error_payload(error)
    if isinstance(error, AccountingError):
        status_code = STATUS_BY_KIND.get(error.kind, 400)
    elif isinstance(error, (ValueError, KeyError, InvalidOperation)):
        status_code = 400
        payload["kind"] = "invalid_request"
    else:
        status_code = 500
        log_action(logger, "error", f"Unhandled error: {error}", action="api_request",
                   extra={"exception": error.__class__.__name__})
    return HTTPException(status_code=status_code, detail=payload)
