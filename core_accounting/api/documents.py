"""
Invoice and bill endpoints

Both document kinds share one set of routes; create_router binds a router to
a kind so /invoices never serves a bill and vice versa.
"""

from decimal import Decimal
from typing import Optional
from fastapi import APIRouter, Depends, Header, status

from .dependencies import get_accounting_system, http_error
from .schemas import (
    CreateDocumentRequest, ReplaceLinesRequest, FinalizeRequest,
    ApplyPaymentRequest, VoidRequest, OverdueSweepRequest
)
from ..system import AccountingSystem
from ..currency import Currency
from ..documents import Document, DocumentKind, DocumentStatus
from ..errors import NotFoundError


def _require_kind(system: AccountingSystem, document_id: str, kind: DocumentKind) -> Document:
    document = system.documents.get(document_id)
    if not document or document.kind != kind:
        raise NotFoundError(f"{kind.value.capitalize()} {document_id} not found",
                            {"document_id": document_id})
    return document


def create_router(kind: DocumentKind) -> APIRouter:
    """Routes for one document kind"""
    router = APIRouter()

    @router.post("", status_code=status.HTTP_201_CREATED)
    async def create_document(
        request: CreateDocumentRequest,
        actor: Optional[str] = Header(None, alias="X-Actor"),
        system: AccountingSystem = Depends(get_accounting_system)
    ):
        """Create a draft"""
        try:
            document = system.lifecycle.create_draft(
                kind=kind,
                party_id=request.party_id,
                party_name=request.party_name,
                issue_date=request.issue_date,
                lines=[line.to_line() for line in request.lines],
                due_date=request.due_date,
                currency=Currency[request.currency] if request.currency else None,
                exchange_rate=Decimal(request.exchange_rate) if request.exchange_rate else None,
                discount_amount=Decimal(request.discount_amount),
                notes=request.notes,
                actor=actor
            )
            return document.to_dict()
        except Exception as e:
            raise http_error(e)

    @router.get("")
    async def list_documents(
        document_status: Optional[str] = None,
        party_id: Optional[str] = None,
        system: AccountingSystem = Depends(get_accounting_system)
    ):
        """List documents of this kind"""
        try:
            documents = system.documents.list(
                kind=kind,
                status=DocumentStatus(document_status) if document_status else None,
                party_id=party_id
            )
        except Exception as e:
            raise http_error(e)
        return {"documents": [document.to_dict() for document in documents]}

    @router.get("/{document_id}")
    async def get_document(
        document_id: str,
        system: AccountingSystem = Depends(get_accounting_system)
    ):
        """Get a document with its payments"""
        try:
            document = _require_kind(system, document_id, kind)
        except Exception as e:
            raise http_error(e)
        result = document.to_dict()
        result["payments"] = [p.to_dict() for p in system.payments.list_payments(document_id)]
        return result

    @router.put("/{document_id}/lines")
    async def replace_lines(
        document_id: str,
        request: ReplaceLinesRequest,
        actor: Optional[str] = Header(None, alias="X-Actor"),
        system: AccountingSystem = Depends(get_accounting_system)
    ):
        """Replace every line of a draft or unpaid document"""
        try:
            _require_kind(system, document_id, kind)
            result = system.lifecycle.replace_lines(
                document_id,
                [line.to_line() for line in request.lines],
                discount_amount=Decimal(request.discount_amount) if request.discount_amount else None,
                actor=actor
            )
            return result.to_dict()
        except Exception as e:
            raise http_error(e)

    @router.post("/{document_id}/finalize")
    async def finalize_document(
        document_id: str,
        request: FinalizeRequest,
        actor: Optional[str] = Header(None, alias="X-Actor"),
        system: AccountingSystem = Depends(get_accounting_system)
    ):
        """Post a draft and move it to its open (or requested) status"""
        try:
            _require_kind(system, document_id, kind)
            result = system.lifecycle.finalize(
                document_id,
                target_status=DocumentStatus(request.target_status) if request.target_status else None,
                actor=actor,
                payment_method=request.payment_method,
                payment_account_code=request.payment_account_code
            )
            return result.to_dict()
        except Exception as e:
            raise http_error(e)

    @router.post("/{document_id}/payments", status_code=status.HTTP_201_CREATED)
    async def apply_payment(
        document_id: str,
        request: ApplyPaymentRequest,
        actor: Optional[str] = Header(None, alias="X-Actor"),
        system: AccountingSystem = Depends(get_accounting_system)
    ):
        """Apply a payment against the outstanding balance"""
        try:
            _require_kind(system, document_id, kind)
            result = system.lifecycle.apply_payment(
                document_id,
                Decimal(request.amount),
                payment_date=request.payment_date,
                method=request.method,
                reference=request.reference,
                account_code=request.account_code,
                actor=actor
            )
            return result.to_dict()
        except Exception as e:
            raise http_error(e)

    @router.get("/{document_id}/payments")
    async def list_payments(
        document_id: str,
        system: AccountingSystem = Depends(get_accounting_system)
    ):
        """Payments applied to a document"""
        try:
            _require_kind(system, document_id, kind)
        except Exception as e:
            raise http_error(e)
        return {"payments": [p.to_dict() for p in system.payments.list_payments(document_id)]}

    @router.post("/{document_id}/void")
    async def void_document(
        document_id: str,
        request: VoidRequest,
        actor: Optional[str] = Header(None, alias="X-Actor"),
        system: AccountingSystem = Depends(get_accounting_system)
    ):
        """Void a document; drafts are deleted"""
        try:
            _require_kind(system, document_id, kind)
            return system.lifecycle.void(document_id, reason=request.reason, actor=actor).to_dict()
        except Exception as e:
            raise http_error(e)

    return router


invoices_router = create_router(DocumentKind.INVOICE)
bills_router = create_router(DocumentKind.BILL)

router = APIRouter()


@router.post("/mark-overdue")
async def mark_overdue(
    request: OverdueSweepRequest,
    actor: Optional[str] = Header(None, alias="X-Actor"),
    system: AccountingSystem = Depends(get_accounting_system)
):
    """Move open invoices and bills past their due date to overdue"""
    try:
        marked = system.lifecycle.mark_overdue(request.as_of, actor=actor)
    except Exception as e:
        raise http_error(e)
    return {"marked": marked, "as_of": request.as_of.isoformat()}
