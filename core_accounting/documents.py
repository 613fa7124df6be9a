"""
Invoice and Bill Documents

Document records, line arithmetic and a version-checked document store.
Sales invoices and purchase bills share one shape; the kind decides numbering,
reachable statuses and how the lifecycle engine posts them.
"""

from decimal import Decimal
from datetime import datetime, date, timezone
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any
from enum import Enum

from .currency import Currency, quantize_amount
from .storage import StorageInterface, StorageRecord
from .errors import ConcurrentModificationError, InvalidAmountError, NotFoundError


class DocumentKind(Enum):
    INVOICE = "invoice"  # sales, receivable
    BILL = "bill"        # purchase, payable


class DocumentStatus(Enum):
    DRAFT = "draft"
    SENT = "sent"                          # finalized invoice
    PENDING_APPROVAL = "pending_approval"  # finalized bill
    PARTIAL = "partial"
    PAID = "paid"
    OVERDUE = "overdue"
    VOID = "void"


NUMBER_PREFIXES = {
    DocumentKind.INVOICE: "INV",
    DocumentKind.BILL: "BILL",
}

# Statuses a draft may be finalized into
FINALIZE_TARGETS = {
    DocumentKind.INVOICE: {DocumentStatus.SENT, DocumentStatus.PAID, DocumentStatus.OVERDUE},
    DocumentKind.BILL: {DocumentStatus.PENDING_APPROVAL, DocumentStatus.PAID, DocumentStatus.OVERDUE},
}

OPEN_STATUS = {
    DocumentKind.INVOICE: DocumentStatus.SENT,
    DocumentKind.BILL: DocumentStatus.PENDING_APPROVAL,
}


def _dec(value: Any) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


@dataclass
class DocumentLine:
    """
    One priced line. discount_percent is 0-100, tax_rate a fraction
    (0.0625 = 6.25%). The three amounts at the end are derived.
    """
    description: str
    quantity: Decimal
    unit_price: Decimal
    discount_percent: Decimal = Decimal('0')
    tax_rate: Optional[Decimal] = None
    account_code: Optional[str] = None
    product_id: Optional[str] = None
    location_id: Optional[str] = None
    line_number: int = 0
    discount_amount: Decimal = Decimal('0')
    tax_amount: Decimal = Decimal('0')
    line_total: Decimal = Decimal('0')  # net of discount, before tax

    def __post_init__(self):
        self.quantity = _dec(self.quantity)
        self.unit_price = _dec(self.unit_price)
        self.discount_percent = _dec(self.discount_percent)
        if self.tax_rate is not None:
            self.tax_rate = _dec(self.tax_rate)

    def validate(self) -> None:
        details = {"line_number": self.line_number, "description": self.description}
        if self.quantity <= 0:
            raise InvalidAmountError("Line quantity must be positive", details)
        if self.unit_price < 0:
            raise InvalidAmountError("Line unit price cannot be negative", details)
        if not Decimal('0') <= self.discount_percent <= Decimal('100'):
            raise InvalidAmountError("Line discount must be between 0 and 100 percent", details)
        if self.tax_rate is not None and self.tax_rate < 0:
            raise InvalidAmountError("Line tax rate cannot be negative", details)

    def compute(self, currency: Currency) -> 'DocumentLine':
        """Fill the derived amounts, each rounded to the currency precision"""
        gross = quantize_amount(self.quantity * self.unit_price, currency)
        self.discount_amount = quantize_amount(gross * self.discount_percent / Decimal('100'), currency)
        self.line_total = gross - self.discount_amount
        self.tax_amount = quantize_amount(self.line_total * (self.tax_rate or Decimal('0')), currency)
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            'line_number': self.line_number,
            'description': self.description,
            'quantity': str(self.quantity),
            'unit_price': str(self.unit_price),
            'discount_percent': str(self.discount_percent),
            'tax_rate': str(self.tax_rate) if self.tax_rate is not None else None,
            'account_code': self.account_code,
            'product_id': self.product_id,
            'location_id': self.location_id,
            'discount_amount': str(self.discount_amount),
            'tax_amount': str(self.tax_amount),
            'line_total': str(self.line_total),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DocumentLine':
        return cls(
            description=data.get('description', ""),
            quantity=Decimal(data['quantity']),
            unit_price=Decimal(data['unit_price']),
            discount_percent=Decimal(data.get('discount_percent', '0')),
            tax_rate=Decimal(data['tax_rate']) if data.get('tax_rate') is not None else None,
            account_code=data.get('account_code'),
            product_id=data.get('product_id'),
            location_id=data.get('location_id'),
            line_number=data.get('line_number', 0),
            discount_amount=Decimal(data.get('discount_amount', '0')),
            tax_amount=Decimal(data.get('tax_amount', '0')),
            line_total=Decimal(data.get('line_total', '0'))
        )


@dataclass
class DocumentTotals:
    subtotal: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    total: Decimal


def calculate_totals(lines: List[DocumentLine], currency: Currency,
                     discount_amount: Decimal = Decimal('0')) -> DocumentTotals:
    """
    Header totals for a set of lines

    subtotal = sum of net line amounts, tax = sum of line taxes,
    total = subtotal + tax - document-level discount.
    """
    discount_amount = quantize_amount(discount_amount, currency)
    if discount_amount < 0:
        raise InvalidAmountError("Document discount cannot be negative")

    subtotal = Decimal('0')
    tax = Decimal('0')
    for index, line in enumerate(lines, start=1):
        line.line_number = index
        line.validate()
        line.compute(currency)
        subtotal += line.line_total
        tax += line.tax_amount

    subtotal = quantize_amount(subtotal, currency)
    tax = quantize_amount(tax, currency)
    if discount_amount > subtotal + tax:
        raise InvalidAmountError(
            "Document discount exceeds the document amount",
            {"discount_amount": str(discount_amount), "gross": str(subtotal + tax)}
        )
    return DocumentTotals(
        subtotal=subtotal,
        tax_amount=tax,
        discount_amount=discount_amount,
        total=subtotal + tax - discount_amount
    )


@dataclass
class Document(StorageRecord):
    """Invoice or bill header with its lines"""
    number: str
    kind: DocumentKind
    party_id: str
    party_name: str
    issue_date: date
    due_date: date
    currency: Currency
    exchange_rate: Decimal  # document currency -> base currency
    status: DocumentStatus
    lines: List[DocumentLine] = field(default_factory=list)
    subtotal: Decimal = Decimal('0')
    tax_amount: Decimal = Decimal('0')
    discount_amount: Decimal = Decimal('0')
    total: Decimal = Decimal('0')
    amount_paid: Decimal = Decimal('0')
    journal_entry_id: Optional[str] = None
    version: int = 0
    notes: str = ""
    created_by: Optional[str] = None
    finalized_at: Optional[datetime] = None
    voided_at: Optional[datetime] = None
    void_reason: Optional[str] = None

    @property
    def balance_due(self) -> Decimal:
        return self.total - self.amount_paid

    @property
    def is_finalized(self) -> bool:
        return self.status not in (DocumentStatus.DRAFT, DocumentStatus.VOID)

    def apply_totals(self, totals: DocumentTotals) -> None:
        self.subtotal = totals.subtotal
        self.tax_amount = totals.tax_amount
        self.discount_amount = totals.discount_amount
        self.total = totals.total

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'number': self.number,
            'kind': self.kind.value,
            'party_id': self.party_id,
            'party_name': self.party_name,
            'issue_date': self.issue_date.isoformat(),
            'due_date': self.due_date.isoformat(),
            'currency': self.currency.code,
            'exchange_rate': str(self.exchange_rate),
            'status': self.status.value,
            'lines': [line.to_dict() for line in self.lines],
            'subtotal': str(self.subtotal),
            'tax_amount': str(self.tax_amount),
            'discount_amount': str(self.discount_amount),
            'total': str(self.total),
            'amount_paid': str(self.amount_paid),
            'balance_due': str(self.balance_due),
            'journal_entry_id': self.journal_entry_id,
            'version': self.version,
            'notes': self.notes,
            'created_by': self.created_by,
            'finalized_at': self.finalized_at.isoformat() if self.finalized_at else None,
            'voided_at': self.voided_at.isoformat() if self.voided_at else None,
            'void_reason': self.void_reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Document':
        finalized_at = data.get('finalized_at')
        voided_at = data.get('voided_at')
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            number=data['number'],
            kind=DocumentKind(data['kind']),
            party_id=data['party_id'],
            party_name=data.get('party_name', ""),
            issue_date=date.fromisoformat(data['issue_date']),
            due_date=date.fromisoformat(data['due_date']),
            currency=Currency[data['currency']],
            exchange_rate=Decimal(data['exchange_rate']),
            status=DocumentStatus(data['status']),
            lines=[DocumentLine.from_dict(line) for line in data.get('lines', [])],
            subtotal=Decimal(data['subtotal']),
            tax_amount=Decimal(data['tax_amount']),
            discount_amount=Decimal(data['discount_amount']),
            total=Decimal(data['total']),
            amount_paid=Decimal(data['amount_paid']),
            journal_entry_id=data.get('journal_entry_id'),
            version=int(data.get('version', 0)),
            notes=data.get('notes', ""),
            created_by=data.get('created_by'),
            finalized_at=datetime.fromisoformat(finalized_at) if finalized_at else None,
            voided_at=datetime.fromisoformat(voided_at) if voided_at else None,
            void_reason=data.get('void_reason')
        )


def derive_status(document: Document) -> DocumentStatus:
    """Payment status as a function of amount_paid against total"""
    if document.amount_paid >= document.total:
        return DocumentStatus.PAID
    if document.amount_paid > 0:
        return DocumentStatus.PARTIAL
    return document.status


class DocumentStore:
    """
    Persistence for documents with optimistic version checks

    Every save bumps the version; a save whose expected version no longer
    matches the stored one is rejected.
    """

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.table_name = "documents"

    def get(self, document_id: str) -> Optional[Document]:
        data = self.storage.load(self.table_name, document_id)
        return Document.from_dict(data) if data else None

    def require(self, document_id: str) -> Document:
        document = self.get(document_id)
        if not document:
            raise NotFoundError(f"Document {document_id} not found", {"document_id": document_id})
        return document

    def insert(self, document: Document) -> Document:
        document.version = 1
        self.storage.save(self.table_name, document.id, document.to_dict())
        return document

    def save(self, document: Document) -> Document:
        """
        Write a changed document read at document.version

        Raises:
            ConcurrentModificationError: The stored version moved on
        """
        stored = self.storage.load(self.table_name, document.id)
        stored_version = int(stored.get('version', 0)) if stored else None
        if stored_version != document.version:
            raise ConcurrentModificationError(
                f"Document {document.number} was modified concurrently",
                {"document_id": document.id, "expected_version": document.version,
                 "stored_version": stored_version}
            )
        document.version += 1
        document.updated_at = datetime.now(timezone.utc)
        self.storage.save(self.table_name, document.id, document.to_dict())
        return document

    def delete(self, document_id: str) -> bool:
        return self.storage.delete(self.table_name, document_id)

    def list(self, kind: Optional[DocumentKind] = None,
             status: Optional[DocumentStatus] = None,
             party_id: Optional[str] = None) -> List[Document]:
        filters = {}
        if kind:
            filters['kind'] = kind.value
        if status:
            filters['status'] = status.value
        if party_id:
            filters['party_id'] = party_id
        documents = [Document.from_dict(d) for d in self.storage.find(self.table_name, filters)]
        documents.sort(key=lambda d: (d.issue_date, d.number))
        return documents
