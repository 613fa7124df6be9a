"""
Tests for direct expense recording
"""

import pytest
from datetime import date
from decimal import Decimal

from core_accounting.storage import InMemoryStorage
from core_accounting.config import LedgerlineConfig
from core_accounting.system import AccountingSystem
from core_accounting.expenses import ExpenseStatus
from core_accounting.ledger import JournalSource
from core_accounting.errors import (
    AlreadyVoidError, InvalidAmountError, InvalidTransitionError,
    UnknownAccountError, VoidedDocumentError
)


class TestExpenses:
    """Test recording, paying and voiding expenses"""

    def setup_method(self):
        self.system = AccountingSystem(InMemoryStorage(), LedgerlineConfig(storage_backend="memory"))
        self.expenses = self.system.expenses
        self.ledger = self.system.ledger

    def test_paid_expense_posts_immediately(self):
        expense = self.expenses.record_expense(
            date(2024, 3, 5), "Office Depot", Decimal("45.00"),
            tax_amount=Decimal("2.81"), description="Printer paper", actor="alice"
        )
        assert expense.reference == "EXP-20240305-0001"
        assert expense.status == ExpenseStatus.PAID
        assert expense.total == Decimal("47.81")
        assert self.ledger.account_balance("6100") == Decimal("47.81")
        assert self.ledger.account_balance("1000") == Decimal("-47.81")

        entry = self.ledger.get_entry(expense.journal_entry_id)
        assert entry.source == JournalSource.EXPENSES
        assert entry.source_document_id == expense.id

    def test_reference_sequence_per_day(self):
        first = self.expenses.record_expense(date(2024, 3, 5), "A", Decimal("1"))
        second = self.expenses.record_expense(date(2024, 3, 5), "B", Decimal("1"))
        other_day = self.expenses.record_expense(date(2024, 3, 6), "C", Decimal("1"))
        assert first.reference == "EXP-20240305-0001"
        assert second.reference == "EXP-20240305-0002"
        assert other_day.reference == "EXP-20240306-0001"

    def test_pending_expense_then_paid(self):
        expense = self.expenses.record_expense(
            date(2024, 3, 5), "Landlord", Decimal("900.00"),
            expense_account_code="6100", mark_as_paid=False
        )
        assert expense.status == ExpenseStatus.PENDING
        assert expense.journal_entry_id is None
        assert self.ledger.account_balance("6100") == Decimal("0.00")

        paid = self.expenses.mark_paid(expense.id, date(2024, 3, 31), paid_from_account_code="1100")
        assert paid.status == ExpenseStatus.PAID
        assert paid.paid_date == date(2024, 3, 31)
        assert self.ledger.account_balance("1100") == Decimal("-900.00")

        with pytest.raises(InvalidTransitionError):
            self.expenses.mark_paid(expense.id)

    def test_void_paid_expense_reverses_entry(self):
        expense = self.expenses.record_expense(date(2024, 3, 5), "Cafe", Decimal("12.50"))
        voided = self.expenses.void_expense(expense.id, reason="personal")

        assert voided.status == ExpenseStatus.VOID
        assert self.ledger.account_balance("6100") == Decimal("0.00")
        assert self.ledger.get_entry(expense.journal_entry_id).reversed_by is not None
        with pytest.raises(AlreadyVoidError):
            self.expenses.void_expense(expense.id)
        with pytest.raises(VoidedDocumentError):
            self.expenses.mark_paid(expense.id)

    def test_invalid_amounts(self):
        with pytest.raises(InvalidAmountError):
            self.expenses.record_expense(date(2024, 3, 5), "A", Decimal("0"))
        with pytest.raises(InvalidAmountError):
            self.expenses.record_expense(date(2024, 3, 5), "A", Decimal("10"),
                                         tax_amount=Decimal("-1"))

    def test_unknown_account_writes_nothing(self):
        with pytest.raises(UnknownAccountError):
            self.expenses.record_expense(date(2024, 3, 5), "A", Decimal("10"),
                                         expense_account_code="6999")
        assert self.expenses.list_expenses() == []
        # The failed attempt does not consume a reference number
        expense = self.expenses.record_expense(date(2024, 3, 5), "A", Decimal("10"))
        assert expense.reference == "EXP-20240305-0001"

    def test_list_expenses_filters(self):
        self.expenses.record_expense(date(2024, 3, 5), "A", Decimal("1"))
        self.expenses.record_expense(date(2024, 4, 5), "B", Decimal("1"), mark_as_paid=False)

        assert len(self.expenses.list_expenses()) == 2
        assert len(self.expenses.list_expenses(status=ExpenseStatus.PENDING)) == 1
        assert len(self.expenses.list_expenses(start_date=date(2024, 4, 1))) == 1
