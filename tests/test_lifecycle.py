"""
Tests for invoice and bill lifecycle
"""

import pytest
from datetime import date, timedelta
from decimal import Decimal

from core_accounting.storage import InMemoryStorage
from core_accounting.config import LedgerlineConfig
from core_accounting.system import AccountingSystem
from core_accounting.audit import AuditEventType
from core_accounting.currency import Currency
from core_accounting.documents import (
    DocumentKind, DocumentLine, DocumentStatus, calculate_totals
)
from core_accounting.ledger import JournalEntryStatus, JournalSource
from core_accounting.errors import (
    AlreadyVoidError, ImmutableDocumentError, InvalidAmountError,
    InvalidTransitionError, MissingExchangeRateError, NotFoundError, OverpaymentError
)


ISSUE_DATE = date(2024, 1, 10)


@pytest.fixture
def system():
    return AccountingSystem(InMemoryStorage(), LedgerlineConfig(storage_backend="memory"))


@pytest.fixture
def widget(system):
    return system.inventory.register_product(
        "WID-1", "Widget", cost_price=Decimal("10.00"), initial_quantity=Decimal("5")
    )


def consulting_line(quantity="2", price="50.00", tax="0.1"):
    return DocumentLine("Consulting", Decimal(quantity), Decimal(price), tax_rate=Decimal(tax))


def draft(system, lines=None, kind=DocumentKind.INVOICE, **kwargs):
    return system.lifecycle.create_draft(
        kind=kind,
        party_id="cust-1",
        party_name="Acme Ltd",
        issue_date=ISSUE_DATE,
        lines=lines or [consulting_line()],
        actor="alice",
        **kwargs
    )


class TestLineArithmetic:
    """Totals derived from lines"""

    def test_discount_and_tax(self):
        lines = [
            DocumentLine("A", Decimal("3"), Decimal("19.99"), discount_percent=Decimal("10"),
                         tax_rate=Decimal("0.0625")),
            DocumentLine("B", Decimal("1"), Decimal("5.00"), tax_rate=Decimal("0")),
        ]
        totals = calculate_totals(lines, Currency.USD, Decimal("2.00"))

        # 59.97 gross, 6.00 discount, 53.97 net, 3.37 tax
        assert lines[0].discount_amount == Decimal("6.00")
        assert lines[0].line_total == Decimal("53.97")
        assert lines[0].tax_amount == Decimal("3.37")
        assert totals.subtotal == Decimal("58.97")
        assert totals.tax_amount == Decimal("3.37")
        assert totals.total == Decimal("60.34")

    def test_invalid_lines_rejected(self):
        with pytest.raises(InvalidAmountError):
            calculate_totals([DocumentLine("A", Decimal("0"), Decimal("1"))], Currency.USD)
        with pytest.raises(InvalidAmountError):
            calculate_totals([DocumentLine("A", Decimal("1"), Decimal("1"),
                                           discount_percent=Decimal("101"))], Currency.USD)
        with pytest.raises(InvalidAmountError):
            calculate_totals([DocumentLine("A", Decimal("1"), Decimal("1"))], Currency.USD,
                             Decimal("5"))


class TestDrafts:
    """Test draft creation and editing"""

    def test_create_draft(self, system):
        invoice = draft(system)
        assert invoice.number == "INV-000001"
        assert invoice.status == DocumentStatus.DRAFT
        assert invoice.subtotal == Decimal("100.00")
        assert invoice.tax_amount == Decimal("10.00")
        assert invoice.total == Decimal("110.00")
        assert invoice.due_date == ISSUE_DATE + timedelta(days=30)
        assert invoice.version == 1
        # Drafts never touch the ledger
        assert system.ledger.find_entries() == []

    def test_numbering_per_kind(self, system):
        draft(system)
        bill = draft(system, kind=DocumentKind.BILL)
        assert bill.number == "BILL-000001"
        assert draft(system).number == "INV-000002"

    def test_missing_tax_rate_uses_company_rate(self, system):
        invoice = draft(system, lines=[DocumentLine("Item", Decimal("1"), Decimal("100.00"))])
        assert invoice.lines[0].tax_rate == Decimal("0.0625")
        assert invoice.tax_amount == Decimal("6.25")

    def test_unknown_product_rejected(self, system):
        with pytest.raises(NotFoundError):
            draft(system, lines=[DocumentLine("Ghost", Decimal("1"), Decimal("1"),
                                              product_id="missing")])

    def test_foreign_currency_uses_recorded_rate(self, system):
        system.exchange_rates.record_rate(Currency.EUR, Currency.USD, Decimal("1.10"), date(2024, 1, 1))
        invoice = draft(system, currency=Currency.EUR)
        assert invoice.exchange_rate == Decimal("1.10")

        system.lifecycle.finalize(invoice.id)
        assert system.ledger.account_balance("1200") == Decimal("121.00")

    def test_rate_resolved_against_ledger_currency(self, system):
        system.exchange_rates.record_rate(Currency.EUR, Currency.USD, Decimal("1.10"), date(2024, 1, 1))
        with pytest.raises(ValueError):
            system.settings.update(base_currency="EUR")

        # A stored record naming another base currency does not change the ledger's
        settings = system.settings.get()
        settings.base_currency = Currency.EUR
        system.storage.save("company_settings", settings.id, settings.to_dict())
        system.settings.cache.invalidate()

        invoice = draft(system, currency=Currency.EUR, lines=[consulting_line(tax="0")])
        assert invoice.exchange_rate == Decimal("1.10")
        system.lifecycle.finalize(invoice.id)
        assert system.ledger.account_balance("1200") == Decimal("110.00")

        base_invoice = draft(system, lines=[consulting_line(tax="0")])
        assert base_invoice.currency == Currency.USD
        assert base_invoice.exchange_rate == Decimal("1")

    def test_foreign_currency_without_rate(self, system):
        with pytest.raises(MissingExchangeRateError):
            draft(system, currency=Currency.GBP)
        explicit = draft(system, currency=Currency.GBP, exchange_rate=Decimal("1.25"))
        assert explicit.exchange_rate == Decimal("1.25")

    def test_replace_lines_on_draft(self, system):
        invoice = draft(system)
        result = system.lifecycle.replace_lines(invoice.id, [consulting_line("1", "20.00", "0")])
        assert result.document.total == Decimal("20.00")
        assert result.journal_entry_id is None
        assert result.inventory.skipped


class TestFinalize:
    """Test posting on finalize"""

    def test_finalize_invoice_posts_entry(self, system):
        invoice = draft(system)
        result = system.lifecycle.finalize(invoice.id, actor="bob")

        assert result.document.status == DocumentStatus.SENT
        assert result.inventory.skipped
        entry = system.ledger.get_entry(result.journal_entry_id)
        assert entry.status == JournalEntryStatus.POSTED
        assert entry.source == JournalSource.SALES
        assert entry.source_document_id == invoice.id
        assert system.ledger.account_balance("1200") == Decimal("110.00")
        assert system.ledger.account_balance("4100") == Decimal("100.00")
        assert system.ledger.account_balance("2200") == Decimal("10.00")

    def test_finalize_bill(self, system):
        bill = draft(system, kind=DocumentKind.BILL)
        result = system.lifecycle.finalize(bill.id)

        assert result.document.status == DocumentStatus.PENDING_APPROVAL
        assert system.ledger.account_balance("2000") == Decimal("110.00")
        assert system.ledger.account_balance("6100") == Decimal("110.00")

    def test_finalize_twice_rejected(self, system):
        invoice = draft(system)
        system.lifecycle.finalize(invoice.id)
        with pytest.raises(InvalidTransitionError):
            system.lifecycle.finalize(invoice.id)

    def test_unreachable_target_rejected(self, system):
        bill = draft(system, kind=DocumentKind.BILL)
        with pytest.raises(InvalidTransitionError):
            system.lifecycle.finalize(bill.id, target_status=DocumentStatus.SENT)
        assert system.documents.require(bill.id).status == DocumentStatus.DRAFT

    def test_finalize_as_paid_settles_balance(self, system):
        invoice = draft(system)
        result = system.lifecycle.finalize(invoice.id, target_status=DocumentStatus.PAID,
                                           payment_account_code="1100")

        assert result.payment.success
        assert result.document.status == DocumentStatus.PAID
        assert result.document.balance_due == Decimal("0.00")
        assert system.ledger.account_balance("1100") == Decimal("110.00")

    def test_zero_total_finalizes_without_entry(self, system):
        invoice = draft(system, lines=[consulting_line("1", "0.00", "0")])
        result = system.lifecycle.finalize(invoice.id)
        assert result.journal_entry_id is None
        assert result.document.status == DocumentStatus.SENT

    def test_document_discount_posts_to_discount_account(self, system):
        invoice = draft(system, discount_amount=Decimal("10.00"))
        system.lifecycle.finalize(invoice.id)
        assert system.ledger.account_balance("1200") == Decimal("100.00")
        assert system.ledger.account_balance("4900") == Decimal("10.00")


class TestInvoiceScenario:
    """End-to-end invoice flow"""

    def test_pay_then_void_rejected(self, system):
        invoice = draft(system)
        system.lifecycle.finalize(invoice.id)
        payment = system.lifecycle.apply_payment(invoice.id, Decimal("110.00"))

        assert payment.new_status == DocumentStatus.PAID
        assert payment.new_balance == Decimal("0.00")
        with pytest.raises(ImmutableDocumentError):
            system.lifecycle.void(invoice.id)
        with pytest.raises(ImmutableDocumentError):
            system.lifecycle.replace_lines(invoice.id, [consulting_line()])

    def test_stock_invoice_void_restores_stock(self, system, widget):
        invoice = draft(system, lines=[
            DocumentLine("Widget", Decimal("3"), Decimal("25.00"), tax_rate=Decimal("0"),
                         product_id=widget.id)
        ])
        result = system.lifecycle.finalize(invoice.id)

        assert result.inventory.success
        assert system.inventory.get_stock(widget.id) == Decimal("2")
        assert system.ledger.account_balance("5100") == Decimal("30.00")

        voided = system.lifecycle.void(invoice.id, reason="returned")
        assert voided.document.status == DocumentStatus.VOID
        assert voided.reversal_entry_id is not None
        assert voided.inventory.success
        assert system.inventory.get_stock(widget.id) == Decimal("5")
        assert system.ledger.account_balance("5100") == Decimal("0.00")
        assert system.ledger.account_balance("1200") == Decimal("0.00")
        assert system.ledger.account_balance("4100") == Decimal("0.00")

    def test_stock_shortfall_does_not_undo_finalize(self, system, widget):
        invoice = draft(system, lines=[
            DocumentLine("Widget", Decimal("9"), Decimal("25.00"), tax_rate=Decimal("0"),
                         product_id=widget.id)
        ])
        result = system.lifecycle.finalize(invoice.id)

        assert result.document.status == DocumentStatus.SENT
        assert not result.inventory.success
        assert result.inventory.error["kind"] == "insufficient_stock"
        assert system.inventory.get_stock(widget.id) == Decimal("5")
        assert system.ledger.account_balance("1200") == Decimal("225.00")

    def test_bill_receives_stock(self, system, widget):
        bill = draft(system, kind=DocumentKind.BILL, lines=[
            DocumentLine("Widget", Decimal("5"), Decimal("14.00"), tax_rate=Decimal("0"),
                         product_id=widget.id)
        ])
        system.lifecycle.finalize(bill.id)

        product = system.inventory.get_product(widget.id)
        assert product.quantity_on_hand == Decimal("10")
        assert product.cost_price == Decimal("12.0000")
        assert system.ledger.account_balance("1300") == Decimal("70.00")

        system.lifecycle.void(bill.id)
        assert system.inventory.get_stock(widget.id) == Decimal("5")
        assert system.ledger.account_balance("1300") == Decimal("0.00")

    def test_replace_lines_on_finalized_invoice(self, system, widget):
        invoice = draft(system, lines=[
            DocumentLine("Widget", Decimal("2"), Decimal("25.00"), tax_rate=Decimal("0"),
                         product_id=widget.id)
        ])
        first = system.lifecycle.finalize(invoice.id)

        result = system.lifecycle.replace_lines(invoice.id, [
            DocumentLine("Widget", Decimal("4"), Decimal("25.00"), tax_rate=Decimal("0"),
                         product_id=widget.id)
        ])
        assert result.journal_entry_id != first.journal_entry_id
        assert result.inventory.success
        assert system.ledger.get_entry(first.journal_entry_id).reversed_by is not None
        assert system.ledger.account_balance("1200") == Decimal("100.00")
        assert system.inventory.get_stock(widget.id) == Decimal("1")
        assert system.ledger.account_balance("5100") == Decimal("40.00")

    def test_replace_lines_below_amount_paid(self, system):
        invoice = draft(system)
        system.lifecycle.finalize(invoice.id)
        system.lifecycle.apply_payment(invoice.id, Decimal("60.00"))
        with pytest.raises(OverpaymentError):
            system.lifecycle.replace_lines(invoice.id, [consulting_line("1", "10.00", "0")])


class TestVoid:
    """Test void and delete"""

    def test_void_draft_deletes(self, system):
        invoice = draft(system)
        result = system.lifecycle.void(invoice.id)

        assert result.deleted
        assert result.document is None
        assert system.documents.get(invoice.id) is None
        events = system.audit_trail.get_events_for_entity("document", invoice.id)
        assert events[-1].event_type == AuditEventType.DOCUMENT_DELETED

    def test_void_twice(self, system):
        invoice = draft(system)
        system.lifecycle.finalize(invoice.id)
        system.lifecycle.void(invoice.id)
        with pytest.raises(AlreadyVoidError):
            system.lifecycle.void(invoice.id)

    def test_void_partially_paid_leaves_receivable_credit(self, system):
        invoice = draft(system)
        system.lifecycle.finalize(invoice.id)
        system.lifecycle.apply_payment(invoice.id, Decimal("40.00"))
        system.lifecycle.void(invoice.id)

        assert system.ledger.account_balance("1200") == Decimal("-40.00")
        assert system.ledger.account_balance("1000") == Decimal("40.00")


class TestOverdue:
    """Test the overdue sweep"""

    def test_mark_overdue(self, system):
        sent = draft(system)
        system.lifecycle.finalize(sent.id)
        partial = draft(system)
        system.lifecycle.finalize(partial.id)
        system.lifecycle.apply_payment(partial.id, Decimal("10.00"))
        paid = draft(system)
        system.lifecycle.finalize(paid.id, target_status=DocumentStatus.PAID)
        draft(system)

        due = ISSUE_DATE + timedelta(days=30)
        assert system.lifecycle.mark_overdue(due) == 0
        assert system.lifecycle.mark_overdue(due + timedelta(days=1)) == 2

        assert system.documents.require(sent.id).status == DocumentStatus.OVERDUE
        assert system.documents.require(partial.id).status == DocumentStatus.OVERDUE
        assert system.documents.require(paid.id).status == DocumentStatus.PAID
        assert system.lifecycle.mark_overdue(due + timedelta(days=2)) == 0

    def test_overdue_document_accepts_payment(self, system):
        invoice = draft(system)
        system.lifecycle.finalize(invoice.id, target_status=DocumentStatus.OVERDUE)
        result = system.lifecycle.apply_payment(invoice.id, Decimal("110.00"))
        assert result.new_status == DocumentStatus.PAID
