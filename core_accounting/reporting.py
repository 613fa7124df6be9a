"""
Reporting Engine Module

Read-only financial reports derived from posted ledger lines, open documents,
the fixed asset register and stock levels: aging, trial balance, profit and
loss, balance sheet, depreciation schedules and inventory valuation.

Missing data yields zero rows, never exceptions. Amounts that cannot be
converted to the reporting currency are reported unconverted with a caveat.
"""

import calendar
import csv
import io
import json
from decimal import Decimal
from datetime import datetime, date, timezone
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Any, Union
from enum import Enum

from .currency import Currency, ConversionUnavailable, ExchangeRateService, quantize_amount
from .ledger import GeneralLedger, AccountTotals
from .accounts import AccountType, ChartOfAccounts, type_for_code
from .documents import DocumentKind, DocumentStatus, DocumentStore
from .inventory import InventoryEngine
from .assets import AssetManager, AssetStatus, FixedAsset, monthly_depreciation


class ReportFormat(Enum):
    """Output formats for reports"""
    DICT = "dict"
    CSV = "csv"
    JSON = "json"


class InventoryValuationMethod(Enum):
    WEIGHTED_AVERAGE = "weighted_average"
    FIFO = "fifo"
    LIFO = "lifo"


AGING_BUCKETS = ["current", "1_30", "31_60", "61_90", "over_90"]


def aging_bucket(days_overdue: int) -> str:
    if days_overdue <= 0:
        return "current"
    if days_overdue <= 30:
        return "1_30"
    if days_overdue <= 60:
        return "31_60"
    if days_overdue <= 90:
        return "61_90"
    return "over_90"


def add_months(start: date, months: int) -> date:
    """Same day-of-month `months` later, clamped to the month's last day"""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


@dataclass
class ReportResult:
    """Result of a report execution"""
    report_id: str
    generated_at: datetime
    period_start: Optional[date]
    period_end: Optional[date]
    data: List[Dict[str, Any]] = field(default_factory=list)
    totals: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)
    caveats: List[Dict[str, Any]] = field(default_factory=list)


def _plain(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


class ReportingEngine:
    """
    Financial reports over the ledger and the operational registers
    """

    def __init__(
        self,
        ledger: GeneralLedger,
        chart: ChartOfAccounts,
        documents: DocumentStore,
        inventory: InventoryEngine,
        exchange_rates: ExchangeRateService,
        assets: Optional[AssetManager] = None
    ):
        self.ledger = ledger
        self.chart = chart
        self.documents = documents
        self.inventory = inventory
        self.exchange_rates = exchange_rates
        self.assets = assets

    @property
    def base_currency(self) -> Currency:
        return self.ledger.base_currency

    def _zero(self) -> Decimal:
        return quantize_amount(Decimal('0'), self.base_currency)

    # Aging

    def aging_report(self, kind: DocumentKind, as_of: date,
                     currency: Optional[Currency] = None) -> ReportResult:
        """
        Outstanding receivables (invoices) or payables (bills) by party and
        days past due on as_of

        Buckets: current (not yet due), 1-30, 31-60, 61-90, over 90 days.
        """
        reporting_currency = currency or self.base_currency
        parties: Dict[str, Dict[str, Any]] = {}
        totals = {bucket: self._zero() for bucket in AGING_BUCKETS}
        caveats: List[ConversionUnavailable] = []

        for document in self.documents.list(kind=kind):
            if document.status in (DocumentStatus.DRAFT, DocumentStatus.VOID):
                continue
            if document.issue_date > as_of or document.balance_due <= 0:
                continue

            days_overdue = (as_of - document.due_date).days
            bucket = aging_bucket(days_overdue)
            amount = self.exchange_rates.convert(document.balance_due, document.currency,
                                                 reporting_currency, as_of)
            converted = amount is not None
            if not converted:
                amount = document.balance_due
                caveats.append(ConversionUnavailable(
                    amount=document.balance_due,
                    from_currency=document.currency,
                    to_currency=reporting_currency,
                    on_date=as_of,
                    message=f"No {document.currency.code}->{reporting_currency.code} rate for "
                            f"{document.number}; balance shown unconverted"
                ))

            row = parties.setdefault(document.party_id, {
                'party_id': document.party_id,
                'party_name': document.party_name,
                **{b: self._zero() for b in AGING_BUCKETS},
                'total': self._zero(),
                'documents': []
            })
            row[bucket] += amount
            row['total'] += amount
            totals[bucket] += amount
            row['documents'].append({
                'document_id': document.id,
                'number': document.number,
                'due_date': document.due_date,
                'days_overdue': max(days_overdue, 0),
                'bucket': bucket,
                'balance_due': document.balance_due,
                'currency': document.currency.code,
                'amount': amount,
                'converted': converted
            })

        totals['total'] = sum((totals[b] for b in AGING_BUCKETS), self._zero())
        data = sorted(parties.values(), key=lambda r: r['party_name'])
        return ReportResult(
            report_id=f"aging_{kind.value}",
            generated_at=datetime.now(timezone.utc),
            period_start=None,
            period_end=as_of,
            data=data,
            totals=totals,
            metadata={'row_count': len(data), 'currency': reporting_currency.code,
                      'kind': kind.value},
            caveats=[c.to_dict() for c in caveats]
        )

    # Ledger statements

    def _accounts_with_totals(self, totals: Dict[str, AccountTotals]) -> List[tuple]:
        rows = []
        for code in sorted(totals):
            account = self.chart.get_account(code)
            rows.append((code, account, totals[code]))
        return rows

    def trial_balance(self, as_of: Optional[date] = None) -> ReportResult:
        """Every account with posted activity, in its debit or credit column"""
        as_of = as_of or date.today()
        data = []
        total_debits = self._zero()
        total_credits = self._zero()

        for code, account, bucket in self._accounts_with_totals(self.ledger.account_totals(end_date=as_of)):
            net = bucket.net_debit
            if net == 0:
                continue
            debit = net if net > 0 else self._zero()
            credit = -net if net < 0 else self._zero()
            total_debits += debit
            total_credits += credit
            data.append({
                'account_code': code,
                'account_name': account.name if account else code,
                'account_type': account.account_type.value if account else None,
                'debit': debit,
                'credit': credit,
            })

        difference = total_debits - total_credits
        return ReportResult(
            report_id="trial_balance",
            generated_at=datetime.now(timezone.utc),
            period_start=None,
            period_end=as_of,
            data=data,
            totals={
                'total_debits': total_debits,
                'total_credits': total_credits,
                'difference': difference,
                'balanced': abs(difference) <= self.ledger.tolerance
            },
            metadata={'row_count': len(data), 'currency': self.base_currency.code}
        )

    def profit_and_loss(self, start_date: date, end_date: date) -> ReportResult:
        """
        Income statement for entries dated within the period

        Cost of goods is every 5xxx account, operating expenses 6xxx-9xxx.
        """
        data = []
        revenue = self._zero()
        cost_of_goods = self._zero()
        operating = self._zero()

        for code, account, bucket in self._accounts_with_totals(
                self.ledger.account_totals(start_date, end_date)):
            account_type = account.account_type if account else type_for_code(code)
            if account_type == AccountType.REVENUE:
                amount = -bucket.net_debit
                revenue += amount
                section = "revenue"
            elif account_type == AccountType.EXPENSE:
                amount = bucket.net_debit
                if code.startswith("5"):
                    cost_of_goods += amount
                    section = "cost_of_goods_sold"
                else:
                    operating += amount
                    section = "operating_expenses"
            else:
                continue
            data.append({
                'section': section,
                'account_code': code,
                'account_name': account.name if account else code,
                'amount': amount
            })

        gross_profit = revenue - cost_of_goods
        return ReportResult(
            report_id="profit_and_loss",
            generated_at=datetime.now(timezone.utc),
            period_start=start_date,
            period_end=end_date,
            data=data,
            totals={
                'revenue': revenue,
                'cost_of_goods_sold': cost_of_goods,
                'gross_profit': gross_profit,
                'operating_expenses': operating,
                'net_income': gross_profit - operating
            },
            metadata={'row_count': len(data), 'currency': self.base_currency.code}
        )

    def balance_sheet(self, as_of: Optional[date] = None) -> ReportResult:
        """
        Assets, liabilities and equity as of a date

        Retained earnings are computed as cumulative revenue minus expenses
        to date rather than read from a closing entry.
        """
        as_of = as_of or date.today()
        data = []
        sections = {
            AccountType.ASSET: self._zero(),
            AccountType.LIABILITY: self._zero(),
            AccountType.EQUITY: self._zero(),
        }
        earnings = self._zero()

        for code, account, bucket in self._accounts_with_totals(self.ledger.account_totals(end_date=as_of)):
            account_type = account.account_type if account else type_for_code(code)
            if account_type == AccountType.REVENUE:
                earnings += -bucket.net_debit
                continue
            if account_type == AccountType.EXPENSE:
                earnings -= bucket.net_debit
                continue
            # Contra accounts (accumulated depreciation) reduce their section
            amount = bucket.net_debit if account_type == AccountType.ASSET else -bucket.net_debit
            sections[account_type] += amount
            data.append({
                'section': account_type.value,
                'account_code': code,
                'account_name': account.name if account else code,
                'amount': amount
            })

        data.append({
            'section': AccountType.EQUITY.value,
            'account_code': None,
            'account_name': "Retained Earnings (computed)",
            'amount': earnings
        })
        total_equity = sections[AccountType.EQUITY] + earnings
        liabilities_and_equity = sections[AccountType.LIABILITY] + total_equity
        difference = sections[AccountType.ASSET] - liabilities_and_equity
        return ReportResult(
            report_id="balance_sheet",
            generated_at=datetime.now(timezone.utc),
            period_start=None,
            period_end=as_of,
            data=data,
            totals={
                'total_assets': sections[AccountType.ASSET],
                'total_liabilities': sections[AccountType.LIABILITY],
                'equity_accounts': sections[AccountType.EQUITY],
                'retained_earnings': earnings,
                'total_equity': total_equity,
                'total_liabilities_and_equity': liabilities_and_equity,
                'difference': difference,
                'balanced': abs(difference) <= self.ledger.tolerance
            },
            metadata={'row_count': len(data), 'currency': self.base_currency.code}
        )

    # Assets and stock

    def depreciation_schedule(self, asset: Union[FixedAsset, str]) -> ReportResult:
        """Full straight-line schedule from the depreciation start date"""
        if isinstance(asset, str):
            if self.assets is None:
                raise ValueError("No asset register configured")
            asset = self.assets.require_asset(asset)

        projection = replace(asset, accumulated_depreciation=Decimal('0'), status=AssetStatus.ACTIVE)

        data = []
        period = 0
        while True:
            amount = monthly_depreciation(projection, self.base_currency)
            if amount <= 0:
                break
            period += 1
            projection.accumulated_depreciation += amount
            data.append({
                'period': period,
                'date': add_months(asset.depreciation_start_date, period - 1),
                'depreciation': amount,
                'accumulated_depreciation': projection.accumulated_depreciation,
                'book_value': projection.book_value
            })

        return ReportResult(
            report_id="depreciation_schedule",
            generated_at=datetime.now(timezone.utc),
            period_start=asset.depreciation_start_date,
            period_end=data[-1]['date'] if data else asset.depreciation_start_date,
            data=data,
            totals={
                'cost': asset.cost,
                'residual_value': asset.residual_value,
                'total_depreciation': projection.accumulated_depreciation
            },
            metadata={'row_count': len(data), 'asset_number': asset.asset_number,
                      'method': asset.depreciation_method.value}
        )

    def inventory_valuation(self, method: Union[InventoryValuationMethod, str] = "weighted_average",
                            as_of: Optional[date] = None) -> ReportResult:
        """
        Stock value per tracked product at weighted average cost

        FIFO and LIFO are answered with weighted-average figures and a
        caveat: stock is not tracked in cost layers.
        """
        method = InventoryValuationMethod(method) if isinstance(method, str) else method
        data = []
        total = self._zero()
        for product in self.inventory.list_products():
            if not product.track_inventory:
                continue
            value = quantize_amount(product.quantity_on_hand * product.cost_price, self.base_currency)
            total += value
            data.append({
                'product_id': product.id,
                'sku': product.sku,
                'name': product.name,
                'quantity_on_hand': product.quantity_on_hand,
                'unit_cost': product.cost_price,
                'value': value
            })

        caveats = []
        if method != InventoryValuationMethod.WEIGHTED_AVERAGE:
            caveats.append({
                'method': method.value,
                'message': f"{method.value.upper()} costing is not available without cost layers; "
                           "figures use weighted average cost"
            })

        ledger_balance = self.ledger.account_balance(self.ledger_inventory_code(), as_of)
        return ReportResult(
            report_id="inventory_valuation",
            generated_at=datetime.now(timezone.utc),
            period_start=None,
            period_end=as_of or date.today(),
            data=data,
            totals={'total_value': total, 'ledger_balance': ledger_balance,
                    'difference': total - ledger_balance},
            metadata={'row_count': len(data), 'method': method.value,
                      'applied_method': InventoryValuationMethod.WEIGHTED_AVERAGE.value,
                      'currency': self.base_currency.code},
            caveats=caveats
        )

    def ledger_inventory_code(self) -> str:
        return self.inventory.config.inventory_account_code

    # Export

    def export_report(self, result: ReportResult, format: ReportFormat) -> Union[Dict, str]:
        """
        Export report result in specified format
        """
        if format == ReportFormat.DICT:
            return {
                'report_id': result.report_id,
                'generated_at': result.generated_at.isoformat(),
                'period_start': result.period_start.isoformat() if result.period_start else None,
                'period_end': result.period_end.isoformat() if result.period_end else None,
                'data': _plain(result.data),
                'totals': _plain(result.totals),
                'metadata': _plain(result.metadata),
                'caveats': _plain(result.caveats)
            }

        elif format == ReportFormat.JSON:
            return json.dumps(self.export_report(result, ReportFormat.DICT), indent=2)

        elif format == ReportFormat.CSV:
            output = io.StringIO()
            if result.data:
                rows = [{k: v for k, v in _plain(row).items() if not isinstance(v, list)}
                        for row in result.data]
                writer = csv.DictWriter(output, fieldnames=list(rows[0].keys()))
                writer.writeheader()
                for row in rows:
                    writer.writerow(row)
            csv_content = output.getvalue()
            output.close()
            return csv_content

        else:
            raise ValueError(f"Unsupported export format: {format}")
