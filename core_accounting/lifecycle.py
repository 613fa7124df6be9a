"""
Document Lifecycle Engine

Moves invoices and bills through draft -> finalized -> paid / void and keeps
the ledger and inventory in step with each transition.

Ledger and status changes of one transition commit together. Inventory
processing runs afterwards as its own unit: its failure is reported in the
result and never undoes the committed transition.
"""

from decimal import Decimal
from datetime import datetime, date, timedelta, timezone
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any
import logging
import uuid

from .currency import Currency, Money, ExchangeRateService
from .storage import StorageInterface, next_sequence
from .audit import AuditTrail, AuditEventType
from .ledger import GeneralLedger, JournalLine, JournalSource, JournalEntry
from .inventory import InventoryEngine, StockLine
from .payments import PaymentEngine, PaymentResult
from .documents import (
    Document, DocumentKind, DocumentLine, DocumentStatus, DocumentStore,
    FINALIZE_TARGETS, NUMBER_PREFIXES, OPEN_STATUS, calculate_totals, derive_status
)
from .company import CompanySettingsService
from .locking import DocumentLockManager
from .config import LedgerlineConfig, get_config
from .errors import (
    AlreadyVoidError, ImmutableDocumentError, InvalidTransitionError,
    MissingExchangeRateError, OperationOutcome, OverpaymentError
)
from .logging_config import log_action

logger = logging.getLogger("ledgerline.lifecycle")

OVERDUE_CANDIDATES = (DocumentStatus.SENT, DocumentStatus.PENDING_APPROVAL, DocumentStatus.PARTIAL)


@dataclass
class FinalizeResult:
    document: Document
    journal_entry_id: Optional[str]
    inventory: OperationOutcome
    payment: OperationOutcome = field(default_factory=OperationOutcome.not_applicable)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "document": self.document.to_dict(),
            "journal_entry_id": self.journal_entry_id,
            "inventory": self.inventory.to_dict(),
            "payment": self.payment.to_dict(),
        }


@dataclass
class VoidResult:
    document: Optional[Document]  # None when a draft was deleted
    deleted: bool
    reversal_entry_id: Optional[str]
    inventory: OperationOutcome

    def to_dict(self) -> Dict[str, Any]:
        return {
            "document": self.document.to_dict() if self.document else None,
            "deleted": self.deleted,
            "reversal_entry_id": self.reversal_entry_id,
            "inventory": self.inventory.to_dict(),
        }


@dataclass
class ReplaceLinesResult:
    document: Document
    journal_entry_id: Optional[str]
    inventory: OperationOutcome

    def to_dict(self) -> Dict[str, Any]:
        return {
            "document": self.document.to_dict(),
            "journal_entry_id": self.journal_entry_id,
            "inventory": self.inventory.to_dict(),
        }


class DocumentLifecycleEngine:
    """
    Invoice and bill state machine

    Invoice: draft -> sent | overdue | paid; sent -> partial -> paid.
    Bill: draft -> pending_approval | overdue | paid; then as invoices.
    Any non-paid state -> void. Paid and void documents are immutable.
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        ledger: GeneralLedger,
        inventory: InventoryEngine,
        payments: PaymentEngine,
        exchange_rates: ExchangeRateService,
        settings: CompanySettingsService,
        documents: DocumentStore,
        locks: DocumentLockManager,
        config: Optional[LedgerlineConfig] = None
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.ledger = ledger
        self.inventory = inventory
        self.payments = payments
        self.exchange_rates = exchange_rates
        self.settings = settings
        self.documents = documents
        self.locks = locks
        self.config = config or get_config()

    # Drafts

    def create_draft(
        self,
        kind: DocumentKind,
        party_id: str,
        party_name: str,
        issue_date: date,
        lines: List[DocumentLine],
        due_date: Optional[date] = None,
        currency: Optional[Currency] = None,
        exchange_rate: Optional[Decimal] = None,
        discount_amount: Decimal = Decimal('0'),
        notes: str = "",
        actor: Optional[str] = None
    ) -> Document:
        """
        Create a draft invoice or bill

        Missing line tax rates take the company sales tax rate; the due date
        defaults to issue date plus the company payment terms.

        Raises:
            MissingExchangeRateError: Foreign currency without an explicit
                rate and no recorded rate on the issue date
            InvalidAmountError: A line or the document discount is invalid
        """
        settings = self.settings.get()
        base_currency = self.ledger.base_currency
        currency = currency or base_currency
        rate = self._resolve_rate(currency, base_currency, issue_date, exchange_rate)
        lines = self._with_defaults(lines, settings.sales_tax_rate)
        totals = calculate_totals(lines, currency, discount_amount)

        for line in lines:
            if line.product_id:
                self.inventory.require_product(line.product_id)

        with self.storage.atomic():
            number = next_sequence(self.storage, kind.value)
            now = datetime.now(timezone.utc)
            document = Document(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                number=f"{NUMBER_PREFIXES[kind]}-{number:06d}",
                kind=kind,
                party_id=party_id,
                party_name=party_name,
                issue_date=issue_date,
                due_date=due_date or issue_date + timedelta(days=settings.payment_terms_days),
                currency=currency,
                exchange_rate=rate,
                status=DocumentStatus.DRAFT,
                lines=lines,
                notes=notes,
                created_by=actor
            )
            document.apply_totals(totals)
            self.documents.insert(document)

            self.audit_trail.log_event(
                event_type=AuditEventType.DOCUMENT_CREATED,
                entity_type="document",
                entity_id=document.id,
                metadata={
                    "number": document.number,
                    "kind": kind.value,
                    "party_id": party_id,
                    "total": document.total,
                    "currency": currency.code
                },
                user_id=actor
            )

        log_action(logger, "info", f"Created draft {document.number}", user_id=actor,
                   action="create_draft", resource=document.id,
                   extra={"total": str(document.total), "currency": currency.code})
        return document

    def replace_lines(self, document_id: str, lines: List[DocumentLine],
                      discount_amount: Optional[Decimal] = None,
                      actor: Optional[str] = None) -> ReplaceLinesResult:
        """
        Replace every line of a document and recompute its totals

        On a finalized document the old posting is reversed, a new one is
        posted, and inventory is re-synchronized afterwards.

        Raises:
            ImmutableDocumentError: Document is paid or void
            OverpaymentError: New total is below the amount already paid
        """
        with self.locks.hold(document_id):
            document = self.documents.require(document_id)
            self._ensure_mutable(document, "edit")

            settings = self.settings.get()
            lines = self._with_defaults(lines, settings.sales_tax_rate)
            discount = document.discount_amount if discount_amount is None else discount_amount
            totals = calculate_totals(lines, document.currency, discount)
            if totals.total < document.amount_paid:
                raise OverpaymentError(
                    f"New total {totals.total} is below amount paid {document.amount_paid}",
                    {"document_id": document_id, "total": str(totals.total),
                     "amount_paid": str(document.amount_paid)}
                )
            for line in lines:
                if line.product_id:
                    self.inventory.require_product(line.product_id)

            was_finalized = document.is_finalized
            with self.storage.atomic():
                document.lines = lines
                document.apply_totals(totals)
                if was_finalized:
                    if document.journal_entry_id:
                        self.ledger.reverse_entry(
                            document.journal_entry_id,
                            description=f"Lines replaced on {document.number}",
                            actor=actor
                        )
                    entry = self._post_document(document, actor)
                    document.journal_entry_id = entry.id if entry else None
                    if document.amount_paid > 0:
                        document.status = derive_status(document)
                self.documents.save(document)

                self.audit_trail.log_event(
                    event_type=AuditEventType.DOCUMENT_LINES_REPLACED,
                    entity_type="document",
                    entity_id=document.id,
                    metadata={
                        "number": document.number,
                        "line_count": len(lines),
                        "total": document.total,
                        "journal_entry_id": document.journal_entry_id
                    },
                    user_id=actor
                )

            inventory = OperationOutcome.not_applicable()
            if was_finalized:
                inventory = self._run_inventory(document, "resync", actor)

        log_action(logger, "info", f"Replaced lines on {document.number}", user_id=actor,
                   action="replace_lines", resource=document.id,
                   extra={"total": str(document.total)})
        return ReplaceLinesResult(document, document.journal_entry_id, inventory)

    # Finalize

    def finalize(
        self,
        document_id: str,
        target_status: Optional[DocumentStatus] = None,
        actor: Optional[str] = None,
        payment_method: str = "cash",
        payment_account_code: Optional[str] = None
    ) -> FinalizeResult:
        """
        Finalize a draft: post it, commit the status, then process inventory

        A paid target settles the full balance through the payment engine
        after the document is finalized.

        Raises:
            InvalidTransitionError: Document is not a draft, has no lines, or
                the target status is not reachable for its kind
        """
        with self.locks.hold(document_id):
            document = self.documents.require(document_id)
            if document.status != DocumentStatus.DRAFT:
                raise InvalidTransitionError(
                    f"Only drafts can be finalized; {document.number} is {document.status.value}",
                    {"document_id": document_id, "status": document.status.value}
                )
            target = target_status or OPEN_STATUS[document.kind]
            if target not in FINALIZE_TARGETS[document.kind]:
                raise InvalidTransitionError(
                    f"A {document.kind.value} cannot be finalized to {target.value}",
                    {"document_id": document_id, "target_status": target.value}
                )
            if not document.lines:
                raise InvalidTransitionError(f"Document {document.number} has no lines",
                                             {"document_id": document_id})

            with self.storage.atomic():
                document.apply_totals(calculate_totals(document.lines, document.currency,
                                                       document.discount_amount))
                entry = self._post_document(document, actor)
                document.journal_entry_id = entry.id if entry else None
                if target == DocumentStatus.PAID:
                    # Payment below moves it to paid
                    document.status = OPEN_STATUS[document.kind]
                    if document.total == 0:
                        document.status = DocumentStatus.PAID
                else:
                    document.status = target
                document.finalized_at = datetime.now(timezone.utc)
                self.documents.save(document)

                self.audit_trail.log_event(
                    event_type=AuditEventType.DOCUMENT_FINALIZED,
                    entity_type="document",
                    entity_id=document.id,
                    metadata={
                        "number": document.number,
                        "status": document.status.value,
                        "total": document.total,
                        "journal_entry_id": document.journal_entry_id
                    },
                    user_id=actor
                )

            log_action(logger, "info", f"Finalized {document.number} as {document.status.value}",
                       user_id=actor, action="finalize", resource=document.id,
                       extra={"journal_entry_id": document.journal_entry_id})

            inventory = self._run_inventory(document, "apply", actor)

            payment = OperationOutcome.not_applicable()
            if target == DocumentStatus.PAID and document.balance_due > 0:
                try:
                    payment = OperationOutcome.ok(self.payments.apply(
                        document.id,
                        document.balance_due,
                        payment_date=document.issue_date,
                        method=payment_method,
                        reference=f"Settlement of {document.number}",
                        account_code=payment_account_code,
                        actor=actor
                    ))
                except Exception as exc:
                    log_action(logger, "error", f"Settlement payment failed for {document.number}",
                               user_id=actor, action="finalize", resource=document.id,
                               extra={"error": str(exc)})
                    payment = OperationOutcome.failed(exc)

            return FinalizeResult(
                document=self.documents.require(document.id),
                journal_entry_id=document.journal_entry_id,
                inventory=inventory,
                payment=payment
            )

    def apply_payment(self, document_id: str, amount: Decimal,
                      payment_date: Optional[date] = None, method: str = "cash",
                      reference: str = "", account_code: Optional[str] = None,
                      actor: Optional[str] = None) -> PaymentResult:
        return self.payments.apply(document_id, amount, payment_date, method,
                                   reference, account_code, actor)

    # Void

    def void(self, document_id: str, reason: str = "",
             actor: Optional[str] = None) -> VoidResult:
        """
        Void a document

        A draft is deleted outright. A finalized document gets a reversing
        entry and the void status together, then its inventory is reversed.

        Raises:
            AlreadyVoidError: Document is already void
            ImmutableDocumentError: Document is paid
        """
        with self.locks.hold(document_id):
            document = self.documents.require(document_id)
            if document.status == DocumentStatus.VOID:
                raise AlreadyVoidError(f"Document {document.number} is already void",
                                       {"document_id": document_id})
            self._ensure_mutable(document, "void")

            if document.status == DocumentStatus.DRAFT:
                with self.storage.atomic():
                    self.documents.delete(document.id)
                    self.audit_trail.log_event(
                        event_type=AuditEventType.DOCUMENT_DELETED,
                        entity_type="document",
                        entity_id=document.id,
                        metadata={"number": document.number, "reason": reason},
                        user_id=actor
                    )
                log_action(logger, "info", f"Deleted draft {document.number}", user_id=actor,
                           action="void", resource=document.id)
                return VoidResult(None, True, None, OperationOutcome.not_applicable())

            reversal_entry_id = None
            with self.storage.atomic():
                if document.journal_entry_id:
                    reversal = self.ledger.reverse_entry(
                        document.journal_entry_id,
                        description=f"Void {document.number}: {reason}" if reason else f"Void {document.number}",
                        actor=actor
                    )
                    reversal_entry_id = reversal.id
                document.status = DocumentStatus.VOID
                document.voided_at = datetime.now(timezone.utc)
                document.void_reason = reason
                self.documents.save(document)

                self.audit_trail.log_event(
                    event_type=AuditEventType.DOCUMENT_VOIDED,
                    entity_type="document",
                    entity_id=document.id,
                    metadata={
                        "number": document.number,
                        "reason": reason,
                        "reversal_entry_id": reversal_entry_id,
                        "amount_paid": document.amount_paid
                    },
                    user_id=actor
                )

            log_action(logger, "info", f"Voided {document.number}", user_id=actor,
                       action="void", resource=document.id, extra={"reason": reason})

            inventory = self._run_inventory(document, "reverse", actor)
            return VoidResult(document, False, reversal_entry_id, inventory)

    # Overdue sweep

    def mark_overdue(self, as_of: date, actor: Optional[str] = None) -> int:
        """Move open documents past their due date to overdue; returns the count"""
        marked = 0
        for document in self.documents.list():
            if document.status not in OVERDUE_CANDIDATES or document.due_date >= as_of:
                continue
            with self.locks.hold(document.id):
                current = self.documents.require(document.id)
                if current.status not in OVERDUE_CANDIDATES:
                    continue
                with self.storage.atomic():
                    current.status = DocumentStatus.OVERDUE
                    self.documents.save(current)
                    self.audit_trail.log_event(
                        event_type=AuditEventType.DOCUMENT_OVERDUE,
                        entity_type="document",
                        entity_id=current.id,
                        metadata={"number": current.number, "due_date": current.due_date},
                        user_id=actor
                    )
                marked += 1

        if marked:
            log_action(logger, "info", f"Marked {marked} documents overdue", user_id=actor,
                       action="mark_overdue", extra={"as_of": as_of.isoformat()})
        return marked

    # Queries

    def get_document(self, document_id: str) -> Optional[Document]:
        return self.documents.get(document_id)

    def list_documents(self, kind: Optional[DocumentKind] = None,
                       status: Optional[DocumentStatus] = None) -> List[Document]:
        return self.documents.list(kind=kind, status=status)

    # Internals

    def _resolve_rate(self, currency: Currency, base: Currency, on_date: date,
                      explicit: Optional[Decimal]) -> Decimal:
        if currency == base:
            return Decimal('1')
        if explicit is not None:
            explicit = explicit if isinstance(explicit, Decimal) else Decimal(str(explicit))
            if explicit <= 0:
                raise MissingExchangeRateError("Exchange rate must be positive",
                                               {"currency": currency.code})
            return explicit
        rate = self.exchange_rates.get_rate(currency, base, on_date)
        if rate is None:
            raise MissingExchangeRateError(
                f"No {currency.code}->{base.code} exchange rate on or before {on_date}",
                {"from_currency": currency.code, "to_currency": base.code,
                 "date": on_date.isoformat()}
            )
        return rate

    @staticmethod
    def _with_defaults(lines: List[DocumentLine], tax_rate: Decimal) -> List[DocumentLine]:
        for line in lines:
            if line.tax_rate is None:
                line.tax_rate = tax_rate
        return list(lines)

    @staticmethod
    def _ensure_mutable(document: Document, action: str) -> None:
        if document.status in (DocumentStatus.PAID, DocumentStatus.VOID):
            raise ImmutableDocumentError(
                f"Cannot {action} {document.status.value} document {document.number}",
                {"document_id": document.id, "status": document.status.value}
            )

    def _is_tracked(self, line: DocumentLine) -> bool:
        if not line.product_id:
            return False
        product = self.inventory.get_product(line.product_id)
        return bool(product and product.track_inventory)

    def _document_lines(self, document: Document) -> List[JournalLine]:
        """Balanced posting lines in the document currency"""
        currency = document.currency
        rate = document.exchange_rate
        label = document.number

        def money(value: Decimal) -> Money:
            return Money(value, currency)

        lines: List[JournalLine] = []
        by_account: Dict[str, Decimal] = {}

        if document.kind == DocumentKind.INVOICE:
            for line in document.lines:
                code = line.account_code or self.config.revenue_account_code
                by_account[code] = by_account.get(code, Decimal('0')) + line.line_total
            if document.total > 0:
                lines.append(JournalLine.debit_line(
                    self.config.receivable_account_code, money(document.total), f"{label} receivable", rate))
            if document.discount_amount > 0:
                lines.append(JournalLine.debit_line(
                    self.config.sales_discount_account_code, money(document.discount_amount),
                    f"{label} discount", rate))
            for code, amount in sorted(by_account.items()):
                if amount > 0:
                    lines.append(JournalLine.credit_line(code, money(amount), f"{label} revenue", rate))
            if document.tax_amount > 0:
                lines.append(JournalLine.credit_line(
                    self.config.sales_tax_account_code, money(document.tax_amount), f"{label} sales tax", rate))
            return lines

        for line in document.lines:
            if self._is_tracked(line):
                code = self.config.inventory_account_code
            else:
                code = line.account_code or self.config.expense_account_code
            by_account[code] = by_account.get(code, Decimal('0')) + line.line_total + line.tax_amount
        for code, amount in sorted(by_account.items()):
            if amount > 0:
                lines.append(JournalLine.debit_line(code, money(amount), f"{label} purchase", rate))
        if document.discount_amount > 0:
            lines.append(JournalLine.credit_line(
                self.config.purchase_discount_account_code, money(document.discount_amount),
                f"{label} discount", rate))
        if document.total > 0:
            lines.append(JournalLine.credit_line(
                self.config.payable_account_code, money(document.total), f"{label} payable", rate))
        return lines

    def _post_document(self, document: Document, actor: Optional[str]) -> Optional[JournalEntry]:
        lines = self._document_lines(document)
        if not lines:
            return None
        is_invoice = document.kind == DocumentKind.INVOICE
        return self.ledger.create_entry(
            entry_date=document.issue_date,
            description=f"{'Invoice' if is_invoice else 'Bill'} {document.number} - {document.party_name}",
            lines=lines,
            post_immediately=True,
            source=JournalSource.SALES if is_invoice else JournalSource.PURCHASES,
            source_document_id=document.id,
            actor=actor
        )

    def _stock_lines(self, document: Document) -> List[StockLine]:
        stock_lines = []
        for line in document.lines:
            if not line.product_id:
                continue
            unit_cost = None
            if document.kind == DocumentKind.BILL:
                # Capitalized cost per unit, in base currency
                unit_cost = (line.line_total + line.tax_amount) * document.exchange_rate / line.quantity
            stock_lines.append(StockLine(
                product_id=line.product_id,
                quantity=line.quantity,
                location_id=line.location_id,
                unit_cost=unit_cost,
                description=line.description
            ))
        return stock_lines

    def _run_inventory(self, document: Document, mode: str,
                       actor: Optional[str]) -> OperationOutcome:
        """
        Inventory side of a committed transition, reported instead of raised

        mode is "apply" (finalize), "reverse" (void) or "resync" (line
        replacement on a finalized document).
        """
        stock_lines = self._stock_lines(document)
        has_history = bool(self.inventory.get_movements(reference_id=document.id))
        if not stock_lines and not has_history:
            return OperationOutcome.not_applicable()

        is_invoice = document.kind == DocumentKind.INVOICE
        try:
            if mode == "reverse":
                if is_invoice:
                    result = self.inventory.reverse(document.id, actor=actor)
                else:
                    result = self.inventory.reverse_receipt(document.id, actor=actor)
                return OperationOutcome.ok(result)

            with self.storage.atomic():
                if mode == "resync":
                    if is_invoice:
                        self.inventory.reverse(document.id, actor=actor)
                    else:
                        self.inventory.reverse_receipt(document.id, actor=actor)
                if is_invoice:
                    result = self.inventory.consume(
                        stock_lines, party=document.party_name, actor=actor,
                        document_id=document.id, reference_type="invoice",
                        entry_date=document.issue_date
                    )
                else:
                    result = self.inventory.receive(
                        stock_lines, document_id=document.id, actor=actor,
                        reference_type="bill", entry_date=document.issue_date
                    )
            return OperationOutcome.ok(result)
        except Exception as exc:
            log_action(logger, "error", f"Inventory {mode} failed for {document.number}",
                       user_id=actor, action=f"inventory_{mode}", resource=document.id,
                       extra={"error": str(exc)})
            return OperationOutcome.failed(exc)
