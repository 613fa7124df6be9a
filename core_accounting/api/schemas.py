"""
Pydantic schemas for API requests
"""

from decimal import Decimal
from datetime import date
from typing import Dict, List, Optional, Any
from pydantic import BaseModel, Field

from ..currency import Money, Currency
from ..documents import DocumentLine
from ..ledger import JournalLine


class MoneyModel(BaseModel):
    amount: str = Field(..., description="Decimal amount as string")
    currency: str = Field("USD", description="Currency code (USD, EUR, GBP, UGX)")

    def to_money(self) -> Money:
        return Money(Decimal(self.amount), Currency[self.currency])

    @classmethod
    def from_money(cls, money: Money) -> 'MoneyModel':
        return cls(amount=str(money.amount), currency=money.currency.code)


# Chart of accounts
class CreateAccountRequest(BaseModel):
    code: str = Field(..., description="Numeric account code, e.g. 6150")
    name: str
    account_type: str = Field(..., description="asset, liability, equity, revenue or expense")
    normal_balance: Optional[str] = Field(None, description="debit or credit; defaults by type")
    description: str = ""


# Journal entries
class JournalLineModel(BaseModel):
    account_code: str
    debit: str = "0"
    credit: str = "0"
    currency: str = "USD"
    exchange_rate: str = "1"
    description: str = ""

    def to_line(self) -> JournalLine:
        currency = Currency[self.currency]
        return JournalLine(
            account_code=self.account_code,
            description=self.description,
            debit=Money(Decimal(self.debit), currency),
            credit=Money(Decimal(self.credit), currency),
            exchange_rate=Decimal(self.exchange_rate)
        )


class CreateJournalEntryRequest(BaseModel):
    entry_date: date
    description: str
    lines: List[JournalLineModel]
    memo: str = ""
    post_immediately: bool = False


class UpdateJournalLinesRequest(BaseModel):
    lines: List[JournalLineModel]


class VoidRequest(BaseModel):
    reason: str = ""


class ReverseEntryRequest(BaseModel):
    reversal_date: Optional[date] = None
    description: Optional[str] = None


# Invoices and bills
class DocumentLineModel(BaseModel):
    description: str
    quantity: str = "1"
    unit_price: str
    discount_percent: str = "0"
    tax_rate: Optional[str] = Field(None, description="Fraction, e.g. 0.0625; company rate if omitted")
    account_code: Optional[str] = None
    product_id: Optional[str] = None
    location_id: Optional[str] = None

    def to_line(self) -> DocumentLine:
        return DocumentLine(
            description=self.description,
            quantity=Decimal(self.quantity),
            unit_price=Decimal(self.unit_price),
            discount_percent=Decimal(self.discount_percent),
            tax_rate=Decimal(self.tax_rate) if self.tax_rate is not None else None,
            account_code=self.account_code,
            product_id=self.product_id,
            location_id=self.location_id
        )


class CreateDocumentRequest(BaseModel):
    party_id: str
    party_name: str
    issue_date: date
    lines: List[DocumentLineModel]
    due_date: Optional[date] = None
    currency: Optional[str] = None
    exchange_rate: Optional[str] = None
    discount_amount: str = "0"
    notes: str = ""


class ReplaceLinesRequest(BaseModel):
    lines: List[DocumentLineModel]
    discount_amount: Optional[str] = None


class FinalizeRequest(BaseModel):
    target_status: Optional[str] = Field(None, description="sent, pending_approval, overdue or paid")
    payment_method: str = "cash"
    payment_account_code: Optional[str] = None


class ApplyPaymentRequest(BaseModel):
    amount: str
    payment_date: Optional[date] = None
    method: str = "cash"
    reference: str = ""
    account_code: Optional[str] = None


class OverdueSweepRequest(BaseModel):
    as_of: date


# Inventory
class RegisterProductRequest(BaseModel):
    sku: str
    name: str
    track_inventory: bool = True
    cost_price: str = "0"
    initial_quantity: str = "0"
    location_id: Optional[str] = None
    sale_price: Optional[str] = None


class AdjustStockRequest(BaseModel):
    adjustment_type: str = Field(..., description="add, receive, return, remove, sell, damage, shrinkage or adjustment")
    quantity: str
    unit_cost: Optional[str] = None
    update_cost: bool = False
    location_id: Optional[str] = None
    notes: str = ""
    entry_date: Optional[date] = None


class TransferStockRequest(BaseModel):
    from_location_id: str
    to_location_id: str
    quantity: str
    notes: str = ""


# Exchange rates
class RecordRateRequest(BaseModel):
    from_currency: str
    to_currency: str
    rate: str
    effective_date: date
    source: str = "manual"


# Expenses
class RecordExpenseRequest(BaseModel):
    expense_date: date
    vendor: str
    amount: str
    tax_amount: str = "0"
    expense_account_code: Optional[str] = None
    paid_from_account_code: Optional[str] = None
    payment_method: str = "cash"
    description: str = ""
    mark_as_paid: bool = True


class PayExpenseRequest(BaseModel):
    payment_date: Optional[date] = None
    paid_from_account_code: Optional[str] = None


# Fixed assets
class RegisterAssetRequest(BaseModel):
    name: str
    purchase_date: date
    cost: str
    useful_life_months: int
    residual_value: str = "0"
    depreciation_start_date: Optional[date] = None
    paid_from_account_code: Optional[str] = None
    description: str = ""


class DepreciationRunRequest(BaseModel):
    on_date: date


class DisposeAssetRequest(BaseModel):
    disposal_date: date
    proceeds: str = "0"
    proceeds_account_code: Optional[str] = None


# Company settings
class UpdateCompanySettingsRequest(BaseModel):
    name: Optional[str] = None
    base_currency: Optional[str] = None
    sales_tax_rate: Optional[str] = None
    payment_terms_days: Optional[int] = None
    inventory_method: Optional[str] = None
    default_location_id: Optional[str] = None

    def changes(self) -> Dict[str, Any]:
        return {k: v for k, v in self.model_dump().items() if v is not None}
