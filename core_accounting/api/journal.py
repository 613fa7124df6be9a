"""
Journal entry endpoints
"""

from datetime import date
from typing import Optional
from fastapi import APIRouter, Depends, Header, status

from .dependencies import get_accounting_system, http_error
from .schemas import (
    CreateJournalEntryRequest, UpdateJournalLinesRequest, VoidRequest, ReverseEntryRequest
)
from ..system import AccountingSystem
from ..ledger import JournalEntryStatus, JournalSource


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_entry(
    request: CreateJournalEntryRequest,
    actor: Optional[str] = Header(None, alias="X-Actor"),
    system: AccountingSystem = Depends(get_accounting_system)
):
    """Create a manual journal entry, optionally posting it"""
    try:
        entry = system.ledger.create_entry(
            entry_date=request.entry_date,
            description=request.description,
            lines=[line.to_line() for line in request.lines],
            post_immediately=request.post_immediately,
            memo=request.memo,
            source=JournalSource.MANUAL,
            actor=actor
        )
        return entry.to_dict()
    except Exception as e:
        raise http_error(e)


@router.get("")
async def list_entries(
    source: Optional[str] = None,
    entry_status: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    source_document_id: Optional[str] = None,
    system: AccountingSystem = Depends(get_accounting_system)
):
    """List journal entries"""
    try:
        entries = system.ledger.find_entries(
            source_document_id=source_document_id,
            source=JournalSource(source) if source else None,
            status=JournalEntryStatus(entry_status) if entry_status else None,
            start_date=start_date,
            end_date=end_date
        )
    except Exception as e:
        raise http_error(e)
    return {"entries": [entry.to_dict() for entry in entries]}


@router.get("/{entry_id}")
async def get_entry(
    entry_id: str,
    system: AccountingSystem = Depends(get_accounting_system)
):
    """Get a journal entry"""
    try:
        return system.ledger.require_entry(entry_id).to_dict()
    except Exception as e:
        raise http_error(e)


@router.put("/{entry_id}/lines")
async def update_lines(
    entry_id: str,
    request: UpdateJournalLinesRequest,
    actor: Optional[str] = Header(None, alias="X-Actor"),
    system: AccountingSystem = Depends(get_accounting_system)
):
    """Replace the lines of a draft entry"""
    try:
        entry = system.ledger.update_entry_lines(
            entry_id, [line.to_line() for line in request.lines], actor=actor
        )
        return entry.to_dict()
    except Exception as e:
        raise http_error(e)


@router.post("/{entry_id}/post")
async def post_entry(
    entry_id: str,
    actor: Optional[str] = Header(None, alias="X-Actor"),
    system: AccountingSystem = Depends(get_accounting_system)
):
    """Post a draft entry"""
    try:
        return system.ledger.post_entry(entry_id, actor=actor).to_dict()
    except Exception as e:
        raise http_error(e)


@router.post("/{entry_id}/void")
async def void_entry(
    entry_id: str,
    request: VoidRequest,
    actor: Optional[str] = Header(None, alias="X-Actor"),
    system: AccountingSystem = Depends(get_accounting_system)
):
    """Void a posted entry"""
    try:
        return system.ledger.void_entry(entry_id, reason=request.reason, actor=actor).to_dict()
    except Exception as e:
        raise http_error(e)


@router.post("/{entry_id}/reverse", status_code=status.HTTP_201_CREATED)
async def reverse_entry(
    entry_id: str,
    request: ReverseEntryRequest,
    actor: Optional[str] = Header(None, alias="X-Actor"),
    system: AccountingSystem = Depends(get_accounting_system)
):
    """Post a mirror entry that cancels a posted entry"""
    try:
        reversal = system.ledger.reverse_entry(
            entry_id,
            reversal_date=request.reversal_date,
            description=request.description,
            actor=actor
        )
        return reversal.to_dict()
    except Exception as e:
        raise http_error(e)
