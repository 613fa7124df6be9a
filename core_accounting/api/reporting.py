"""
Reporting endpoints
"""

from datetime import date
from typing import Optional
from fastapi import APIRouter, Depends
from fastapi.responses import Response

from .dependencies import get_accounting_system, http_error
from ..system import AccountingSystem
from ..currency import Currency
from ..documents import DocumentKind
from ..reporting import ReportFormat, ReportResult


router = APIRouter()

REPORTS = [
    "aging", "trial-balance", "profit-and-loss", "balance-sheet",
    "depreciation-schedule", "inventory-valuation",
]


def _render(system: AccountingSystem, result: ReportResult, format: str):
    if format == ReportFormat.CSV.value:
        content = system.reporting.export_report(result, ReportFormat.CSV)
        return Response(content=content, media_type="text/csv")
    return system.reporting.export_report(result, ReportFormat.DICT)


@router.get("")
async def list_reports():
    """List available reports"""
    return {"reports": REPORTS}


@router.get("/aging")
async def aging_report(
    kind: str = "invoice",
    as_of: Optional[date] = None,
    currency: Optional[str] = None,
    format: str = "dict",
    system: AccountingSystem = Depends(get_accounting_system)
):
    """Receivables (kind=invoice) or payables (kind=bill) aging"""
    try:
        result = system.reporting.aging_report(
            DocumentKind(kind),
            as_of or date.today(),
            Currency[currency] if currency else None
        )
    except Exception as e:
        raise http_error(e)
    return _render(system, result, format)


@router.get("/trial-balance")
async def trial_balance(
    as_of: Optional[date] = None,
    format: str = "dict",
    system: AccountingSystem = Depends(get_accounting_system)
):
    """Trial balance as of a date"""
    return _render(system, system.reporting.trial_balance(as_of), format)


@router.get("/profit-and-loss")
async def profit_and_loss(
    start_date: date,
    end_date: date,
    format: str = "dict",
    system: AccountingSystem = Depends(get_accounting_system)
):
    """Income statement for a period"""
    return _render(system, system.reporting.profit_and_loss(start_date, end_date), format)


@router.get("/balance-sheet")
async def balance_sheet(
    as_of: Optional[date] = None,
    format: str = "dict",
    system: AccountingSystem = Depends(get_accounting_system)
):
    """Balance sheet as of a date"""
    return _render(system, system.reporting.balance_sheet(as_of), format)


@router.get("/depreciation-schedule/{asset_id}")
async def depreciation_schedule(
    asset_id: str,
    format: str = "dict",
    system: AccountingSystem = Depends(get_accounting_system)
):
    """Full depreciation schedule of one asset"""
    try:
        result = system.reporting.depreciation_schedule(asset_id)
    except Exception as e:
        raise http_error(e)
    return _render(system, result, format)


@router.get("/inventory-valuation")
async def inventory_valuation(
    method: str = "weighted_average",
    as_of: Optional[date] = None,
    format: str = "dict",
    system: AccountingSystem = Depends(get_accounting_system)
):
    """Stock valuation per product"""
    try:
        result = system.reporting.inventory_valuation(method, as_of)
    except Exception as e:
        raise http_error(e)
    return _render(system, result, format)
