"""
Chart of accounts endpoints
"""

from datetime import date
from typing import Optional
from fastapi import APIRouter, Depends, Header, status

from .dependencies import get_accounting_system, http_error
from .schemas import CreateAccountRequest
from ..system import AccountingSystem
from ..accounts import AccountType, NormalBalance
from ..errors import NotFoundError


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_account(
    request: CreateAccountRequest,
    actor: Optional[str] = Header(None, alias="X-Actor"),
    system: AccountingSystem = Depends(get_accounting_system)
):
    """Create a new ledger account"""
    try:
        account = system.chart.create_account(
            code=request.code,
            name=request.name,
            account_type=AccountType(request.account_type),
            normal_balance=NormalBalance(request.normal_balance) if request.normal_balance else None,
            description=request.description,
            actor=actor
        )
        return account.to_dict()
    except Exception as e:
        raise http_error(e)


@router.get("")
async def list_accounts(
    account_type: Optional[str] = None,
    active_only: bool = False,
    system: AccountingSystem = Depends(get_accounting_system)
):
    """List the chart of accounts"""
    try:
        accounts = system.chart.list_accounts(
            account_type=AccountType(account_type) if account_type else None,
            active_only=active_only
        )
    except Exception as e:
        raise http_error(e)
    return {"accounts": [account.to_dict() for account in accounts]}


@router.get("/{code}")
async def get_account(
    code: str,
    as_of: Optional[date] = None,
    system: AccountingSystem = Depends(get_accounting_system)
):
    """Get an account with its balance"""
    account = system.chart.get_account(code)
    if not account:
        raise http_error(NotFoundError(f"Account {code} not found", {"code": code}))

    result = account.to_dict()
    result["balance"] = str(system.ledger.account_balance(code, as_of))
    result["currency"] = system.ledger.base_currency.code
    return result


@router.post("/{code}/deactivate")
async def deactivate_account(
    code: str,
    actor: Optional[str] = Header(None, alias="X-Actor"),
    system: AccountingSystem = Depends(get_accounting_system)
):
    """Deactivate an account; its history is kept"""
    try:
        return system.chart.deactivate_account(code, actor=actor).to_dict()
    except Exception as e:
        raise http_error(e)
