"""
Expense Recording

Direct expenses that never go through a bill: a receipt paid from cash or
bank. Paid expenses post DR expense / CR the paying account; voiding a paid
expense reverses that entry.
"""

from decimal import Decimal
from datetime import datetime, date, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Any
from enum import Enum
import logging
import uuid

from .currency import Money, quantize_amount
from .storage import StorageInterface, StorageRecord, next_sequence
from .audit import AuditTrail, AuditEventType
from .ledger import GeneralLedger, JournalLine, JournalSource
from .config import LedgerlineConfig, get_config
from .errors import (
    AlreadyVoidError, InvalidAmountError, InvalidTransitionError, NotFoundError,
    VoidedDocumentError
)
from .logging_config import log_action

logger = logging.getLogger("ledgerline.expenses")


class ExpenseStatus(Enum):
    PENDING = "pending"
    PAID = "paid"
    VOID = "void"


@dataclass
class Expense(StorageRecord):
    reference: str  # EXP-YYYYMMDD-NNNN
    expense_date: date
    vendor: str
    amount: Decimal
    tax_amount: Decimal = Decimal('0')
    expense_account_code: str = "6100"
    paid_from_account_code: str = "1000"
    payment_method: str = "cash"
    description: str = ""
    status: ExpenseStatus = ExpenseStatus.PENDING
    journal_entry_id: Optional[str] = None
    paid_date: Optional[date] = None
    void_reason: Optional[str] = None
    created_by: Optional[str] = None

    @property
    def total(self) -> Decimal:
        return self.amount + self.tax_amount

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['status'] = self.status.value
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Expense':
        paid_date = data.get('paid_date')
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            reference=data['reference'],
            expense_date=date.fromisoformat(data['expense_date']),
            vendor=data['vendor'],
            amount=Decimal(data['amount']),
            tax_amount=Decimal(data.get('tax_amount', '0')),
            expense_account_code=data['expense_account_code'],
            paid_from_account_code=data['paid_from_account_code'],
            payment_method=data.get('payment_method', 'cash'),
            description=data.get('description', ""),
            status=ExpenseStatus(data['status']),
            journal_entry_id=data.get('journal_entry_id'),
            paid_date=date.fromisoformat(paid_date) if paid_date else None,
            void_reason=data.get('void_reason'),
            created_by=data.get('created_by')
        )


class ExpenseManager:
    """Records, pays and voids direct expenses"""

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail,
                 ledger: GeneralLedger, config: Optional[LedgerlineConfig] = None):
        self.storage = storage
        self.audit_trail = audit_trail
        self.ledger = ledger
        self.config = config or get_config()
        self.table_name = "expenses"

    def record_expense(
        self,
        expense_date: date,
        vendor: str,
        amount: Decimal,
        expense_account_code: Optional[str] = None,
        tax_amount: Decimal = Decimal('0'),
        description: str = "",
        payment_method: str = "cash",
        paid_from_account_code: Optional[str] = None,
        mark_as_paid: bool = True,
        actor: Optional[str] = None
    ) -> Expense:
        """
        Record an expense, posting it straight away when already paid

        Raises:
            InvalidAmountError: amount <= 0 or negative tax
        """
        currency = self.ledger.base_currency
        amount = quantize_amount(amount, currency)
        tax_amount = quantize_amount(tax_amount, currency)
        if amount <= 0:
            raise InvalidAmountError(f"Expense amount must be positive, got {amount}")
        if tax_amount < 0:
            raise InvalidAmountError("Expense tax cannot be negative")

        with self.storage.atomic():
            day = expense_date.strftime("%Y%m%d")
            sequence = next_sequence(self.storage, f"expense:{day}")
            now = datetime.now(timezone.utc)
            expense = Expense(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                reference=f"EXP-{day}-{sequence:04d}",
                expense_date=expense_date,
                vendor=vendor,
                amount=amount,
                tax_amount=tax_amount,
                expense_account_code=expense_account_code or self.config.expense_account_code,
                paid_from_account_code=paid_from_account_code or self.config.cash_account_code,
                payment_method=payment_method,
                description=description,
                created_by=actor
            )
            if mark_as_paid:
                self._post_payment(expense, expense_date, actor)
            self._save(expense)

            self.audit_trail.log_event(
                event_type=AuditEventType.EXPENSE_RECORDED,
                entity_type="expense",
                entity_id=expense.id,
                metadata={
                    "reference": expense.reference,
                    "vendor": vendor,
                    "total": expense.total,
                    "status": expense.status.value
                },
                user_id=actor
            )

        log_action(logger, "info", f"Recorded expense {expense.reference}", user_id=actor,
                   action="record_expense", resource=expense.id,
                   extra={"total": str(expense.total), "status": expense.status.value})
        return expense

    def mark_paid(self, expense_id: str, payment_date: Optional[date] = None,
                  paid_from_account_code: Optional[str] = None,
                  actor: Optional[str] = None) -> Expense:
        """Pay a pending expense and post it"""
        expense = self.require_expense(expense_id)
        if expense.status == ExpenseStatus.VOID:
            raise VoidedDocumentError(f"Expense {expense.reference} is void",
                                      {"expense_id": expense_id})
        if expense.status == ExpenseStatus.PAID:
            raise InvalidTransitionError(f"Expense {expense.reference} is already paid",
                                         {"expense_id": expense_id})

        with self.storage.atomic():
            if paid_from_account_code:
                expense.paid_from_account_code = paid_from_account_code
            self._post_payment(expense, payment_date or date.today(), actor)
            self._save(expense)
            self.audit_trail.log_event(
                event_type=AuditEventType.EXPENSE_PAID,
                entity_type="expense",
                entity_id=expense.id,
                metadata={"reference": expense.reference, "journal_entry_id": expense.journal_entry_id},
                user_id=actor
            )

        log_action(logger, "info", f"Paid expense {expense.reference}", user_id=actor,
                   action="mark_paid", resource=expense.id)
        return expense

    def void_expense(self, expense_id: str, reason: str = "",
                     actor: Optional[str] = None) -> Expense:
        """
        Void an expense, reversing its entry when it was paid

        Raises:
            AlreadyVoidError: Expense is already void
        """
        expense = self.require_expense(expense_id)
        if expense.status == ExpenseStatus.VOID:
            raise AlreadyVoidError(f"Expense {expense.reference} is already void",
                                   {"expense_id": expense_id})

        with self.storage.atomic():
            reversal_id = None
            if expense.journal_entry_id:
                reversal = self.ledger.reverse_entry(
                    expense.journal_entry_id,
                    description=f"Void expense {expense.reference}",
                    actor=actor
                )
                reversal_id = reversal.id
            expense.status = ExpenseStatus.VOID
            expense.void_reason = reason
            expense.updated_at = datetime.now(timezone.utc)
            self._save(expense)
            self.audit_trail.log_event(
                event_type=AuditEventType.EXPENSE_VOIDED,
                entity_type="expense",
                entity_id=expense.id,
                metadata={"reference": expense.reference, "reason": reason,
                          "reversal_entry_id": reversal_id},
                user_id=actor
            )

        log_action(logger, "info", f"Voided expense {expense.reference}", user_id=actor,
                   action="void_expense", resource=expense.id, extra={"reason": reason})
        return expense

    def get_expense(self, expense_id: str) -> Optional[Expense]:
        data = self.storage.load(self.table_name, expense_id)
        return Expense.from_dict(data) if data else None

    def require_expense(self, expense_id: str) -> Expense:
        expense = self.get_expense(expense_id)
        if not expense:
            raise NotFoundError(f"Expense {expense_id} not found", {"expense_id": expense_id})
        return expense

    def list_expenses(self, status: Optional[ExpenseStatus] = None,
                      start_date: Optional[date] = None,
                      end_date: Optional[date] = None) -> List[Expense]:
        filters = {'status': status.value} if status else {}
        expenses = [Expense.from_dict(d) for d in self.storage.find(self.table_name, filters)]
        if start_date:
            expenses = [e for e in expenses if e.expense_date >= start_date]
        if end_date:
            expenses = [e for e in expenses if e.expense_date <= end_date]
        expenses.sort(key=lambda e: e.reference)
        return expenses

    def _post_payment(self, expense: Expense, paid_date: date, actor: Optional[str]) -> None:
        money = Money(expense.total, self.ledger.base_currency)
        entry = self.ledger.create_entry(
            entry_date=paid_date,
            description=f"Expense {expense.reference} - {expense.vendor}",
            lines=[
                JournalLine.debit_line(expense.expense_account_code, money, expense.description),
                JournalLine.credit_line(expense.paid_from_account_code, money, expense.payment_method),
            ],
            post_immediately=True,
            source=JournalSource.EXPENSES,
            source_document_id=expense.id,
            actor=actor
        )
        expense.status = ExpenseStatus.PAID
        expense.paid_date = paid_date
        expense.journal_entry_id = entry.id
        expense.updated_at = datetime.now(timezone.utc)

    def _save(self, expense: Expense) -> None:
        self.storage.save(self.table_name, expense.id, expense.to_dict())
