"""
Integration tests for the Ledgerline Accounting API
Tests end-to-end workflows using FastAPI TestClient
"""

import pytest
from fastapi.testclient import TestClient

import core_accounting.api.dependencies
from core_accounting.api import app
from core_accounting.config import LedgerlineConfig
from core_accounting.storage import InMemoryStorage
from core_accounting.system import AccountingSystem


@pytest.fixture
def client():
    """Create a test client backed by an in-memory accounting system"""
    test_system = AccountingSystem(InMemoryStorage(), LedgerlineConfig(storage_backend="memory"))

    original_system = core_accounting.api.dependencies.accounting_system
    core_accounting.api.dependencies.accounting_system = test_system

    client = TestClient(app)
    yield client
    core_accounting.api.dependencies.accounting_system = original_system


def create_invoice(client, lines=None, **extra):
    body = {
        "party_id": "cust-1",
        "party_name": "Acme Ltd",
        "issue_date": "2024-01-10",
        "lines": lines or [{"description": "Consulting", "quantity": "2",
                            "unit_price": "50.00", "tax_rate": "0.1"}],
    }
    body.update(extra)
    r = client.post("/invoices", json=body, headers={"X-Actor": "alice"})
    assert r.status_code == 201
    return r.json()


class TestHealthEndpoints:
    """Test basic health and root endpoints"""

    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "healthy"

    def test_root(self, client):
        r = client.get("/")
        assert r.status_code == 200
        data = r.json()
        assert data["name"] == "Ledgerline Accounting API"
        assert "invoices" in data["endpoints"]


class TestChartAndJournal:
    """Accounts and manual journal entries"""

    def test_seeded_chart(self, client):
        r = client.get("/accounts", params={"account_type": "asset"})
        assert r.status_code == 200
        codes = [a["code"] for a in r.json()["accounts"]]
        assert "1000" in codes
        assert "4100" not in codes

    def test_create_account(self, client):
        r = client.post("/accounts", json={"code": "6150", "name": "Software",
                                           "account_type": "expense"})
        assert r.status_code == 201
        assert r.json()["normal_balance"] == "debit"

        r = client.post("/accounts", json={"code": "6150", "name": "Again",
                                           "account_type": "expense"})
        assert r.status_code == 400
        assert r.json()["detail"]["kind"] == "invalid_account"

    def test_manual_entry_updates_balance(self, client):
        r = client.post("/journal-entries", json={
            "entry_date": "2024-01-01",
            "description": "Owner capital",
            "post_immediately": True,
            "lines": [
                {"account_code": "1000", "debit": "500.00"},
                {"account_code": "3000", "credit": "500.00"},
            ]
        })
        assert r.status_code == 201
        entry = r.json()
        assert entry["status"] == "posted"

        r = client.get("/accounts/1000")
        assert r.json()["balance"] == "500.00"

        r = client.post(f"/journal-entries/{entry['id']}/reverse", json={})
        assert r.status_code == 201
        assert client.get("/accounts/1000").json()["balance"] == "0.00"

    def test_imbalanced_entry_rejected(self, client):
        r = client.post("/journal-entries", json={
            "entry_date": "2024-01-01",
            "description": "Broken",
            "lines": [
                {"account_code": "1000", "debit": "500.00"},
                {"account_code": "3000", "credit": "400.00"},
            ]
        })
        assert r.status_code == 400
        assert r.json()["detail"]["kind"] == "imbalanced_entry"

    def test_unknown_entry(self, client):
        r = client.get("/journal-entries/missing")
        assert r.status_code == 404
        assert r.json()["detail"]["kind"] == "not_found"

    def test_unknown_account(self, client):
        assert client.get("/accounts/1999").status_code == 404


class TestInvoiceFlow:
    """End-to-end invoice lifecycle"""

    def test_full_invoice_lifecycle(self, client):
        invoice = create_invoice(client)
        assert invoice["status"] == "draft"
        assert invoice["total"] == "110.00"

        r = client.post(f"/invoices/{invoice['id']}/finalize", json={})
        assert r.status_code == 200
        assert r.json()["document"]["status"] == "sent"

        r = client.post(f"/invoices/{invoice['id']}/payments", json={"amount": "110.00"})
        assert r.status_code == 201
        assert r.json()["new_status"] == "paid"
        assert r.json()["new_balance"] == "0.00"

        r = client.get(f"/invoices/{invoice['id']}")
        assert r.json()["status"] == "paid"
        assert len(r.json()["payments"]) == 1

        r = client.post(f"/invoices/{invoice['id']}/void", json={"reason": "too late"})
        assert r.status_code == 400
        assert r.json()["detail"]["kind"] == "immutable_document"

    def test_overpayment_rejected(self, client):
        invoice = create_invoice(client)
        client.post(f"/invoices/{invoice['id']}/finalize", json={})

        r = client.post(f"/invoices/{invoice['id']}/payments", json={"amount": "110.01"})
        assert r.status_code == 400
        assert r.json()["detail"]["kind"] == "overpayment"
        assert r.json()["detail"]["details"]["balance_due"] == "110.00"

    def test_invoice_not_served_as_bill(self, client):
        invoice = create_invoice(client)
        assert client.get(f"/bills/{invoice['id']}").status_code == 404

    def test_void_draft_deletes(self, client):
        invoice = create_invoice(client)
        r = client.post(f"/invoices/{invoice['id']}/void", json={})
        assert r.status_code == 200
        assert r.json()["deleted"] is True
        assert client.get(f"/invoices/{invoice['id']}").status_code == 404

    def test_stock_invoice_and_void(self, client):
        r = client.post("/products", json={"sku": "WID-1", "name": "Widget",
                                           "cost_price": "10.00", "initial_quantity": "5"})
        assert r.status_code == 201
        product_id = r.json()["id"]

        invoice = create_invoice(client, lines=[{
            "description": "Widget", "quantity": "3", "unit_price": "25.00",
            "tax_rate": "0", "product_id": product_id
        }])
        r = client.post(f"/invoices/{invoice['id']}/finalize", json={})
        assert r.json()["inventory"]["success"] is True
        assert client.get(f"/products/{product_id}").json()["quantity_on_hand"] == "2"

        client.post(f"/invoices/{invoice['id']}/void", json={"reason": "returned"})
        product = client.get(f"/products/{product_id}").json()
        assert product["quantity_on_hand"] == "5"
        assert client.get("/accounts/5100").json()["balance"] == "0.00"

    def test_mark_overdue(self, client):
        invoice = create_invoice(client)
        client.post(f"/invoices/{invoice['id']}/finalize", json={})

        r = client.post("/documents/mark-overdue", json={"as_of": "2024-03-01"})
        assert r.json()["marked"] == 1
        r = client.get("/invoices", params={"document_status": "overdue"})
        assert len(r.json()["documents"]) == 1

    def test_invalid_status_filter(self, client):
        r = client.get("/invoices", params={"document_status": "nonsense"})
        assert r.status_code == 400
        assert r.json()["detail"]["kind"] == "invalid_request"


class TestOtherResources:
    """Exchange rates, expenses, assets, admin"""

    def test_exchange_rate_conversion(self, client):
        r = client.post("/exchange-rates", json={"from_currency": "USD", "to_currency": "EUR",
                                                 "rate": "0.9", "effective_date": "2024-01-01"})
        assert r.status_code == 201

        r = client.get("/exchange-rates/convert", params={
            "amount": "100", "from_currency": "EUR", "to_currency": "USD", "on_date": "2024-01-15"
        })
        assert r.json()["converted"] == "111.11"

        r = client.get("/exchange-rates/convert", params={
            "amount": "100", "from_currency": "GBP", "to_currency": "USD", "on_date": "2024-01-15"
        })
        assert r.json()["converted"] is None

    def test_expense_flow(self, client):
        r = client.post("/expenses", json={"expense_date": "2024-03-05", "vendor": "Cafe",
                                           "amount": "12.50", "mark_as_paid": False})
        assert r.status_code == 201
        expense = r.json()
        assert expense["status"] == "pending"

        r = client.post(f"/expenses/{expense['id']}/pay", json={"payment_date": "2024-03-06"})
        assert r.json()["status"] == "paid"
        assert client.get("/accounts/6100").json()["balance"] == "12.50"

    def test_asset_depreciation(self, client):
        r = client.post("/assets", json={"name": "Van", "purchase_date": "2024-01-15",
                                         "cost": "1200.00", "useful_life_months": 12})
        assert r.status_code == 201
        asset_id = r.json()["id"]

        r = client.post("/assets/depreciation-runs", json={"on_date": "2024-01-31"})
        assert r.json()["failed"] == 0
        assert len(r.json()["results"]) == 1

        r = client.post(f"/assets/{asset_id}/depreciate", json={"on_date": "2024-01-31"})
        assert r.status_code == 400
        assert r.json()["detail"]["kind"] == "depreciation_already_run"

        r = client.get(f"/reports/depreciation-schedule/{asset_id}")
        assert len(r.json()["data"]) == 12

        r = client.post(f"/assets/{asset_id}/dispose",
                        json={"disposal_date": "2024-02-10", "proceeds": "1000.00"})
        assert r.status_code == 200
        assert r.json()["gain_loss"] == "-100.00"
        assert client.get(f"/assets/{asset_id}").json()["status"] == "disposed"
        assert client.get("/accounts/8920").json()["balance"] == "100.00"

        r = client.post(f"/assets/{asset_id}/dispose", json={"disposal_date": "2024-02-11"})
        assert r.status_code == 400
        assert r.json()["detail"]["kind"] == "invalid_transition"

    def test_company_settings(self, client):
        r = client.put("/admin/company", json={"sales_tax_rate": "0.08"},
                       headers={"X-Actor": "alice"})
        assert r.status_code == 200
        assert r.json()["sales_tax_rate"] == "0.08"

        invoice = create_invoice(client, lines=[{"description": "Item", "unit_price": "100.00"}])
        assert invoice["tax_amount"] == "8.00"

        r = client.put("/admin/company", json={"sales_tax_rate": "-1"})
        assert r.status_code == 400

    def test_audit_endpoints(self, client):
        invoice = create_invoice(client)
        r = client.get("/admin/audit/events", params={"entity_type": "document",
                                                      "entity_id": invoice["id"]})
        events = r.json()["events"]
        assert events[0]["event_type"] == "document_created"
        assert events[0]["user_id"] == "alice"

        assert client.get("/admin/audit/events").status_code == 400

        r = client.get("/admin/audit/verify")
        assert r.json()["valid"] is True


class TestReports:
    """Report endpoints"""

    def test_report_list(self, client):
        assert "trial-balance" in client.get("/reports").json()["reports"]

    def test_trial_balance_and_csv(self, client):
        invoice = create_invoice(client)
        client.post(f"/invoices/{invoice['id']}/finalize", json={})

        r = client.get("/reports/trial-balance", params={"as_of": "2024-01-31"})
        assert r.json()["totals"]["balanced"] is True
        assert r.json()["totals"]["total_debits"] == "110.00"

        r = client.get("/reports/trial-balance", params={"as_of": "2024-01-31", "format": "csv"})
        assert r.headers["content-type"].startswith("text/csv")
        assert r.text.splitlines()[0] == "account_code,account_name,account_type,debit,credit"

    def test_aging_and_profit_and_loss(self, client):
        invoice = create_invoice(client)
        client.post(f"/invoices/{invoice['id']}/finalize", json={})

        r = client.get("/reports/aging", params={"kind": "invoice", "as_of": "2024-03-01"})
        assert r.json()["totals"]["1_30"] == "110.00"

        r = client.get("/reports/profit-and-loss",
                       params={"start_date": "2024-01-01", "end_date": "2024-01-31"})
        assert r.json()["totals"]["net_income"] == "100.00"

        r = client.get("/reports/balance-sheet", params={"as_of": "2024-01-31"})
        assert r.json()["totals"]["balanced"] is True
