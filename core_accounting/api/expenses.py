"""
Expense endpoints
"""

from datetime import date
from decimal import Decimal
from typing import Optional
from fastapi import APIRouter, Depends, Header, status

from .dependencies import get_accounting_system, http_error
from .schemas import RecordExpenseRequest, PayExpenseRequest, VoidRequest
from ..system import AccountingSystem
from ..expenses import ExpenseStatus


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def record_expense(
    request: RecordExpenseRequest,
    actor: Optional[str] = Header(None, alias="X-Actor"),
    system: AccountingSystem = Depends(get_accounting_system)
):
    """Record a direct expense"""
    try:
        expense = system.expenses.record_expense(
            expense_date=request.expense_date,
            vendor=request.vendor,
            amount=Decimal(request.amount),
            expense_account_code=request.expense_account_code,
            tax_amount=Decimal(request.tax_amount),
            description=request.description,
            payment_method=request.payment_method,
            paid_from_account_code=request.paid_from_account_code,
            mark_as_paid=request.mark_as_paid,
            actor=actor
        )
        return expense.to_dict()
    except Exception as e:
        raise http_error(e)


@router.get("")
async def list_expenses(
    expense_status: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    system: AccountingSystem = Depends(get_accounting_system)
):
    """List expenses"""
    try:
        expenses = system.expenses.list_expenses(
            status=ExpenseStatus(expense_status) if expense_status else None,
            start_date=start_date,
            end_date=end_date
        )
    except Exception as e:
        raise http_error(e)
    return {"expenses": [expense.to_dict() for expense in expenses]}


@router.get("/{expense_id}")
async def get_expense(
    expense_id: str,
    system: AccountingSystem = Depends(get_accounting_system)
):
    """Get an expense"""
    try:
        return system.expenses.require_expense(expense_id).to_dict()
    except Exception as e:
        raise http_error(e)


@router.post("/{expense_id}/pay")
async def pay_expense(
    expense_id: str,
    request: PayExpenseRequest,
    actor: Optional[str] = Header(None, alias="X-Actor"),
    system: AccountingSystem = Depends(get_accounting_system)
):
    """Pay a pending expense"""
    try:
        expense = system.expenses.mark_paid(
            expense_id,
            payment_date=request.payment_date,
            paid_from_account_code=request.paid_from_account_code,
            actor=actor
        )
        return expense.to_dict()
    except Exception as e:
        raise http_error(e)


@router.post("/{expense_id}/void")
async def void_expense(
    expense_id: str,
    request: VoidRequest,
    actor: Optional[str] = Header(None, alias="X-Actor"),
    system: AccountingSystem = Depends(get_accounting_system)
):
    """Void an expense"""
    try:
        return system.expenses.void_expense(expense_id, reason=request.reason, actor=actor).to_dict()
    except Exception as e:
        raise http_error(e)
