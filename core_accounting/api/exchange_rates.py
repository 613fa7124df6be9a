"""
Exchange rate endpoints
"""

from datetime import date
from typing import Optional
from fastapi import APIRouter, Depends, Header, status

from .dependencies import get_accounting_system, http_error
from .schemas import RecordRateRequest
from ..system import AccountingSystem
from ..currency import Currency


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def record_rate(
    request: RecordRateRequest,
    actor: Optional[str] = Header(None, alias="X-Actor"),
    system: AccountingSystem = Depends(get_accounting_system)
):
    """Record the rate for a currency pair on a date"""
    try:
        rate = system.exchange_rates.record_rate(
            Currency[request.from_currency],
            Currency[request.to_currency],
            request.rate,
            request.effective_date,
            source=request.source,
            actor=actor
        )
        return rate.to_dict()
    except Exception as e:
        raise http_error(e)


@router.get("")
async def list_rates(
    from_currency: Optional[str] = None,
    to_currency: Optional[str] = None,
    system: AccountingSystem = Depends(get_accounting_system)
):
    """List recorded rates"""
    try:
        rates = system.exchange_rates.list_rates(
            Currency[from_currency] if from_currency else None,
            Currency[to_currency] if to_currency else None
        )
    except Exception as e:
        raise http_error(e)
    return {"rates": [rate.to_dict() for rate in rates]}


@router.get("/convert")
async def convert(
    amount: str,
    from_currency: str,
    to_currency: str,
    on_date: Optional[date] = None,
    system: AccountingSystem = Depends(get_accounting_system)
):
    """Convert an amount; converted is null when no rate covers the date"""
    try:
        source = Currency[from_currency]
        target = Currency[to_currency]
        rate = system.exchange_rates.get_rate(source, target, on_date)
        converted = system.exchange_rates.convert(amount, source, target, on_date)
    except Exception as e:
        raise http_error(e)
    return {
        "amount": amount,
        "from_currency": source.code,
        "to_currency": target.code,
        "rate": str(rate) if rate is not None else None,
        "converted": str(converted) if converted is not None else None,
    }
