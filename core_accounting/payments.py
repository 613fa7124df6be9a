"""
Payment Application Engine

Applies customer receipts to invoices and supplier payments to bills.
Payments are immutable records; the journal entry for each payment points
back at it through source_document_id.
"""

from decimal import Decimal
from datetime import datetime, date, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Any
import logging
import uuid

from .currency import Currency, Money, quantize_amount
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .ledger import GeneralLedger, JournalLine, JournalSource
from .documents import (
    Document, DocumentKind, DocumentStatus, DocumentStore, derive_status
)
from .locking import DocumentLockManager
from .config import LedgerlineConfig, get_config
from .errors import (
    InvalidAmountError, InvalidTransitionError, OverpaymentError, VoidedDocumentError
)
from .logging_config import log_action

logger = logging.getLogger("ledgerline.payments")


@dataclass
class Payment(StorageRecord):
    """Money received against an invoice or paid against a bill"""
    document_id: str
    document_kind: DocumentKind
    amount: Decimal
    currency: Currency
    payment_date: date
    method: str = "cash"
    reference: str = ""
    account_code: str = "1000"  # cash or bank account moved
    actor: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['document_kind'] = self.document_kind.value
        result['currency'] = self.currency.code
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Payment':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            document_id=data['document_id'],
            document_kind=DocumentKind(data['document_kind']),
            amount=Decimal(data['amount']),
            currency=Currency[data['currency']],
            payment_date=date.fromisoformat(data['payment_date']),
            method=data.get('method', 'cash'),
            reference=data.get('reference', ""),
            account_code=data.get('account_code', '1000'),
            actor=data.get('actor')
        )


@dataclass
class PaymentResult:
    payment: Payment
    new_balance: Decimal
    new_status: DocumentStatus
    journal_entry_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "payment": self.payment.to_dict(),
            "new_balance": str(self.new_balance),
            "new_status": self.new_status.value,
            "journal_entry_id": self.journal_entry_id,
        }


class PaymentEngine:
    """
    Applies payments under the document's lock

    The payment and the document update commit together first; the journal
    entry is posted next. A posting failure deletes the payment and restores
    the document before the error propagates.
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        ledger: GeneralLedger,
        documents: DocumentStore,
        locks: DocumentLockManager,
        config: Optional[LedgerlineConfig] = None
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.ledger = ledger
        self.documents = documents
        self.locks = locks
        self.config = config or get_config()
        self.table_name = "payments"

    def apply(
        self,
        document_id: str,
        amount: Decimal,
        payment_date: Optional[date] = None,
        method: str = "cash",
        reference: str = "",
        account_code: Optional[str] = None,
        actor: Optional[str] = None
    ) -> PaymentResult:
        """
        Apply a payment to an invoice or bill

        Raises:
            InvalidAmountError: amount <= 0
            VoidedDocumentError: Document is void
            InvalidTransitionError: Document is still a draft
            OverpaymentError: amount exceeds the outstanding balance
        """
        amount = amount if isinstance(amount, Decimal) else Decimal(str(amount))
        if amount <= 0:
            raise InvalidAmountError(f"Payment amount must be positive, got {amount}",
                                     {"document_id": document_id, "amount": str(amount)})

        with self.locks.hold(document_id):
            document = self.documents.require(document_id)
            if document.status == DocumentStatus.VOID:
                raise VoidedDocumentError(f"Document {document.number} is void",
                                          {"document_id": document_id})
            if document.status == DocumentStatus.DRAFT:
                raise InvalidTransitionError(
                    f"Document {document.number} is a draft; finalize it before applying payments",
                    {"document_id": document_id}
                )

            amount = quantize_amount(amount, document.currency)
            if amount > document.balance_due:
                raise OverpaymentError(
                    f"Payment {amount} exceeds balance due {document.balance_due} on {document.number}",
                    {"document_id": document_id, "amount": str(amount),
                     "balance_due": str(document.balance_due)}
                )

            payment_date = payment_date or date.today()
            cash_code = account_code or self.config.cash_account_code
            previous_paid = document.amount_paid
            previous_status = document.status
            now = datetime.now(timezone.utc)
            payment = Payment(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                document_id=document.id,
                document_kind=document.kind,
                amount=amount,
                currency=document.currency,
                payment_date=payment_date,
                method=method,
                reference=reference,
                account_code=cash_code,
                actor=actor
            )

            with self.storage.atomic():
                self.storage.save(self.table_name, payment.id, payment.to_dict())
                document.amount_paid = previous_paid + amount
                document.status = derive_status(document)
                self.documents.save(document)

            try:
                entry = self.ledger.create_entry(
                    entry_date=payment_date,
                    description=f"Payment {'received for' if document.kind == DocumentKind.INVOICE else 'made on'} {document.number}",
                    lines=self._payment_lines(document, payment),
                    post_immediately=True,
                    memo=reference,
                    source=JournalSource.PAYMENTS,
                    source_document_id=payment.id,
                    actor=actor
                )
            except Exception as exc:
                self._compensate(payment, previous_paid, previous_status, exc, actor)
                raise

            self.audit_trail.log_event(
                event_type=AuditEventType.PAYMENT_APPLIED,
                entity_type="document",
                entity_id=document.id,
                metadata={
                    "payment_id": payment.id,
                    "amount": amount,
                    "method": method,
                    "new_status": document.status.value,
                    "journal_entry_id": entry.id
                },
                user_id=actor
            )

        log_action(logger, "info", f"Applied payment {amount} to {document.number}",
                   user_id=actor, action="apply_payment", resource=document.id,
                   extra={"payment_id": payment.id, "status": document.status.value})
        return PaymentResult(
            payment=payment,
            new_balance=document.balance_due,
            new_status=document.status,
            journal_entry_id=entry.id
        )

    def list_payments(self, document_id: str) -> List[Payment]:
        payments = [Payment.from_dict(d)
                    for d in self.storage.find(self.table_name, {'document_id': document_id})]
        payments.sort(key=lambda p: (p.payment_date, p.created_at))
        return payments

    def get_payment(self, payment_id: str) -> Optional[Payment]:
        data = self.storage.load(self.table_name, payment_id)
        return Payment.from_dict(data) if data else None

    def _payment_lines(self, document: Document, payment: Payment) -> List[JournalLine]:
        money = Money(payment.amount, payment.currency)
        rate = document.exchange_rate
        if document.kind == DocumentKind.INVOICE:
            return [
                JournalLine.debit_line(payment.account_code, money, f"Receipt {document.number}", rate),
                JournalLine.credit_line(self.config.receivable_account_code, money,
                                        f"Receipt {document.number}", rate),
            ]
        return [
            JournalLine.debit_line(self.config.payable_account_code, money,
                                   f"Payment {document.number}", rate),
            JournalLine.credit_line(payment.account_code, money, f"Payment {document.number}", rate),
        ]

    def _compensate(self, payment: Payment, previous_paid: Decimal,
                    previous_status: DocumentStatus, error: Exception,
                    actor: Optional[str]) -> None:
        """Undo the committed payment write after its posting failed"""
        with self.storage.atomic():
            self.storage.delete(self.table_name, payment.id)
            document = self.documents.require(payment.document_id)
            document.amount_paid = previous_paid
            document.status = previous_status
            self.documents.save(document)
            self.audit_trail.log_event(
                event_type=AuditEventType.PAYMENT_ROLLED_BACK,
                entity_type="document",
                entity_id=payment.document_id,
                metadata={"payment_id": payment.id, "amount": payment.amount,
                          "error": str(error)},
                user_id=actor
            )
        log_action(logger, "error",
                   f"Payment posting failed for {payment.document_id}; payment rolled back",
                   user_id=actor, action="apply_payment", resource=payment.document_id,
                   extra={"payment_id": payment.id, "error": str(error)})
