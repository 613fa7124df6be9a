"""
Fixed Assets and Depreciation

Straight-line monthly depreciation posted as DR depreciation expense /
CR accumulated depreciation. Accumulated depreciation only grows and never
takes book value below the residual value. Disposal removes cost and
accumulated depreciation and books the gain or loss against the proceeds.
"""

from decimal import Decimal
from datetime import datetime, date, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Any
from enum import Enum
import logging
import uuid

from .currency import Currency, Money, quantize_amount
from .storage import StorageInterface, StorageRecord, next_sequence
from .audit import AuditTrail, AuditEventType
from .ledger import GeneralLedger, JournalLine, JournalSource
from .config import LedgerlineConfig, get_config
from .errors import (
    DepreciationAlreadyRunError, InvalidAmountError, InvalidTransitionError,
    NotFoundError, OperationOutcome
)
from .logging_config import log_action

logger = logging.getLogger("ledgerline.assets")


class DepreciationMethod(Enum):
    STRAIGHT_LINE = "straight_line"


class AssetStatus(Enum):
    ACTIVE = "active"
    FULLY_DEPRECIATED = "fully_depreciated"
    DISPOSED = "disposed"


def period_key(on_date: date) -> str:
    return on_date.strftime("%Y-%m")


@dataclass
class FixedAsset(StorageRecord):
    asset_number: str
    name: str
    purchase_date: date
    depreciation_start_date: date
    cost: Decimal
    residual_value: Decimal
    useful_life_months: int
    accumulated_depreciation: Decimal = Decimal('0')
    depreciation_method: DepreciationMethod = DepreciationMethod.STRAIGHT_LINE
    asset_account_code: str = "1500"
    expense_account_code: str = "6500"
    accumulated_account_code: str = "1510"
    status: AssetStatus = AssetStatus.ACTIVE
    last_depreciation_period: Optional[str] = None  # YYYY-MM
    description: str = ""
    disposal_date: Optional[date] = None
    disposal_proceeds: Optional[Decimal] = None
    disposal_entry_id: Optional[str] = None

    @property
    def book_value(self) -> Decimal:
        return self.cost - self.accumulated_depreciation

    @property
    def depreciable_amount(self) -> Decimal:
        return self.cost - self.residual_value

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['depreciation_method'] = self.depreciation_method.value
        result['status'] = self.status.value
        result['book_value'] = str(self.book_value)
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FixedAsset':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            asset_number=data['asset_number'],
            name=data['name'],
            purchase_date=date.fromisoformat(data['purchase_date']),
            depreciation_start_date=date.fromisoformat(data['depreciation_start_date']),
            cost=Decimal(data['cost']),
            residual_value=Decimal(data['residual_value']),
            useful_life_months=int(data['useful_life_months']),
            accumulated_depreciation=Decimal(data['accumulated_depreciation']),
            depreciation_method=DepreciationMethod(data['depreciation_method']),
            asset_account_code=data['asset_account_code'],
            expense_account_code=data['expense_account_code'],
            accumulated_account_code=data['accumulated_account_code'],
            status=AssetStatus(data['status']),
            last_depreciation_period=data.get('last_depreciation_period'),
            description=data.get('description', ""),
            disposal_date=date.fromisoformat(data['disposal_date']) if data.get('disposal_date') else None,
            disposal_proceeds=Decimal(data['disposal_proceeds']) if data.get('disposal_proceeds') else None,
            disposal_entry_id=data.get('disposal_entry_id')
        )


def monthly_depreciation(asset: FixedAsset, currency: Currency = Currency.USD) -> Decimal:
    """
    One month of straight-line depreciation, capped at what is left to
    depreciate; zero once the asset reaches its residual value
    """
    if asset.status != AssetStatus.ACTIVE or asset.useful_life_months <= 0:
        return Decimal('0.00')
    remaining = asset.depreciable_amount - asset.accumulated_depreciation
    if remaining <= 0:
        return Decimal('0.00')
    amount = quantize_amount(asset.depreciable_amount / Decimal(asset.useful_life_months), currency)
    return min(amount, remaining)


@dataclass
class DepreciationResult:
    asset_id: str
    asset_number: str
    period: str
    amount: Decimal
    journal_entry_id: Optional[str]
    book_value: Decimal
    status: AssetStatus

    def to_dict(self) -> Dict[str, Any]:
        return {
            "asset_id": self.asset_id,
            "asset_number": self.asset_number,
            "period": self.period,
            "amount": str(self.amount),
            "journal_entry_id": self.journal_entry_id,
            "book_value": str(self.book_value),
            "status": self.status.value,
        }


@dataclass
class DisposalResult:
    asset_id: str
    asset_number: str
    proceeds: Decimal
    book_value: Decimal
    gain_loss: Decimal  # positive is a gain
    journal_entry_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "asset_id": self.asset_id,
            "asset_number": self.asset_number,
            "proceeds": str(self.proceeds),
            "book_value": str(self.book_value),
            "gain_loss": str(self.gain_loss),
            "journal_entry_id": self.journal_entry_id,
        }


class AssetManager:
    """Fixed asset register and monthly depreciation runs"""

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail,
                 ledger: GeneralLedger, config: Optional[LedgerlineConfig] = None):
        self.storage = storage
        self.audit_trail = audit_trail
        self.ledger = ledger
        self.config = config or get_config()
        self.table_name = "fixed_assets"

    def register_asset(
        self,
        name: str,
        purchase_date: date,
        cost: Decimal,
        useful_life_months: int,
        residual_value: Decimal = Decimal('0'),
        depreciation_start_date: Optional[date] = None,
        paid_from_account_code: Optional[str] = None,
        description: str = "",
        actor: Optional[str] = None
    ) -> FixedAsset:
        """
        Add an asset to the register

        With paid_from_account_code the purchase is posted as DR fixed assets
        / CR that account.
        """
        currency = self.ledger.base_currency
        cost = quantize_amount(cost, currency)
        residual_value = quantize_amount(residual_value, currency)
        if cost <= 0:
            raise InvalidAmountError("Asset cost must be positive")
        if residual_value < 0 or residual_value > cost:
            raise InvalidAmountError("Residual value must be between zero and cost")
        if useful_life_months <= 0:
            raise InvalidAmountError("Useful life must be at least one month")

        with self.storage.atomic():
            number = next_sequence(self.storage, "fixed_asset")
            now = datetime.now(timezone.utc)
            asset = FixedAsset(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                asset_number=f"FA-{number:06d}",
                name=name,
                purchase_date=purchase_date,
                depreciation_start_date=depreciation_start_date or purchase_date,
                cost=cost,
                residual_value=residual_value,
                useful_life_months=useful_life_months,
                asset_account_code=self.config.fixed_asset_account_code,
                expense_account_code=self.config.depreciation_expense_account_code,
                accumulated_account_code=self.config.accumulated_depreciation_account_code,
                description=description
            )
            if paid_from_account_code:
                money = Money(cost, currency)
                self.ledger.create_entry(
                    entry_date=purchase_date,
                    description=f"Purchase of {asset.asset_number} {name}",
                    lines=[
                        JournalLine.debit_line(asset.asset_account_code, money, name),
                        JournalLine.credit_line(paid_from_account_code, money, name),
                    ],
                    post_immediately=True,
                    source=JournalSource.MANUAL,
                    source_document_id=asset.id,
                    actor=actor
                )
            self._save(asset)

            self.audit_trail.log_event(
                event_type=AuditEventType.ASSET_REGISTERED,
                entity_type="fixed_asset",
                entity_id=asset.id,
                metadata={"asset_number": asset.asset_number, "cost": cost,
                          "useful_life_months": useful_life_months},
                user_id=actor
            )

        log_action(logger, "info", f"Registered asset {asset.asset_number}", user_id=actor,
                   action="register_asset", resource=asset.id)
        return asset

    def get_asset(self, asset_id: str) -> Optional[FixedAsset]:
        data = self.storage.load(self.table_name, asset_id)
        return FixedAsset.from_dict(data) if data else None

    def require_asset(self, asset_id: str) -> FixedAsset:
        asset = self.get_asset(asset_id)
        if not asset:
            raise NotFoundError(f"Fixed asset {asset_id} not found", {"asset_id": asset_id})
        return asset

    def list_assets(self, status: Optional[AssetStatus] = None) -> List[FixedAsset]:
        filters = {'status': status.value} if status else {}
        assets = [FixedAsset.from_dict(d) for d in self.storage.find(self.table_name, filters)]
        assets.sort(key=lambda a: a.asset_number)
        return assets

    def run_depreciation(self, asset_id: str, on_date: date,
                         actor: Optional[str] = None) -> DepreciationResult:
        """
        Post one month of depreciation for the month containing on_date

        Raises:
            DepreciationAlreadyRunError: The month was already posted
            InvalidTransitionError: Asset is not active or not yet in service
        """
        asset = self.require_asset(asset_id)
        period = period_key(on_date)
        if asset.status != AssetStatus.ACTIVE:
            raise InvalidTransitionError(
                f"Asset {asset.asset_number} is {asset.status.value}",
                {"asset_id": asset_id, "status": asset.status.value}
            )
        if asset.last_depreciation_period == period:
            raise DepreciationAlreadyRunError(
                f"Depreciation for {asset.asset_number} already run for {period}",
                {"asset_id": asset_id, "period": period}
            )
        if period_key(asset.depreciation_start_date) > period:
            raise InvalidTransitionError(
                f"Asset {asset.asset_number} starts depreciating in "
                f"{period_key(asset.depreciation_start_date)}",
                {"asset_id": asset_id, "period": period}
            )

        amount = monthly_depreciation(asset, self.ledger.base_currency)
        journal_entry_id = None
        with self.storage.atomic():
            if amount > 0:
                money = Money(amount, self.ledger.base_currency)
                description = f"Depreciation {asset.asset_number} {period}"
                entry = self.ledger.create_entry(
                    entry_date=on_date,
                    description=description,
                    lines=[
                        JournalLine.debit_line(asset.expense_account_code, money, description),
                        JournalLine.credit_line(asset.accumulated_account_code, money, description),
                    ],
                    post_immediately=True,
                    source=JournalSource.DEPRECIATION,
                    source_document_id=asset.id,
                    actor=actor
                )
                journal_entry_id = entry.id
                asset.accumulated_depreciation += amount

            if asset.book_value <= asset.residual_value:
                asset.status = AssetStatus.FULLY_DEPRECIATED
            asset.last_depreciation_period = period
            asset.updated_at = datetime.now(timezone.utc)
            self._save(asset)

            self.audit_trail.log_event(
                event_type=AuditEventType.DEPRECIATION_POSTED,
                entity_type="fixed_asset",
                entity_id=asset.id,
                metadata={"period": period, "amount": amount,
                          "accumulated": asset.accumulated_depreciation,
                          "journal_entry_id": journal_entry_id},
                user_id=actor
            )

        log_action(logger, "info", f"Depreciated {asset.asset_number} by {amount} for {period}",
                   user_id=actor, action="run_depreciation", resource=asset.id)
        return DepreciationResult(asset.id, asset.asset_number, period, amount,
                                  journal_entry_id, asset.book_value, asset.status)

    def run_monthly_depreciation(self, on_date: date,
                                 actor: Optional[str] = None) -> List[OperationOutcome]:
        """Depreciate every active asset due for the month; one outcome per asset"""
        period = period_key(on_date)
        outcomes = []
        for asset in self.list_assets(status=AssetStatus.ACTIVE):
            if asset.last_depreciation_period == period:
                continue
            if period_key(asset.depreciation_start_date) > period:
                continue
            try:
                outcomes.append(OperationOutcome.ok(self.run_depreciation(asset.id, on_date, actor)))
            except Exception as exc:
                log_action(logger, "error", f"Depreciation failed for {asset.asset_number}",
                           user_id=actor, action="run_depreciation", resource=asset.id,
                           extra={"error": str(exc)})
                outcome = OperationOutcome.failed(exc)
                outcome.result = {"asset_id": asset.id, "asset_number": asset.asset_number}
                outcomes.append(outcome)
        return outcomes

    def dispose_asset(self, asset_id: str, disposal_date: date,
                      proceeds: Decimal = Decimal('0'),
                      proceeds_account_code: Optional[str] = None,
                      actor: Optional[str] = None) -> DisposalResult:
        """
        Take an asset off the register

        Posts DR proceeds account for the proceeds, DR accumulated
        depreciation for what was accumulated, CR the asset account for the
        cost, with the difference to the disposal gain or loss account.

        Raises:
            InvalidAmountError: Proceeds are negative
            InvalidTransitionError: Asset is already disposed, or the date is
                before the purchase date
        """
        asset = self.require_asset(asset_id)
        currency = self.ledger.base_currency
        proceeds = quantize_amount(proceeds, currency)
        if asset.status == AssetStatus.DISPOSED:
            raise InvalidTransitionError(f"Asset {asset.asset_number} is already disposed",
                                         {"asset_id": asset_id})
        if proceeds < 0:
            raise InvalidAmountError("Disposal proceeds cannot be negative",
                                     {"asset_id": asset_id, "proceeds": str(proceeds)})
        if disposal_date < asset.purchase_date:
            raise InvalidTransitionError(
                f"Asset {asset.asset_number} cannot be disposed before its purchase date",
                {"asset_id": asset_id, "disposal_date": disposal_date.isoformat()}
            )

        book_value = asset.book_value
        gain_loss = proceeds - book_value
        description = f"Disposal of {asset.asset_number} {asset.name}"
        lines = []
        if proceeds > 0:
            lines.append(JournalLine.debit_line(
                proceeds_account_code or self.config.cash_account_code,
                Money(proceeds, currency), description))
        if asset.accumulated_depreciation > 0:
            lines.append(JournalLine.debit_line(
                asset.accumulated_account_code,
                Money(asset.accumulated_depreciation, currency), description))
        lines.append(JournalLine.credit_line(asset.asset_account_code,
                                             Money(asset.cost, currency), description))
        if gain_loss > 0:
            lines.append(JournalLine.credit_line(self.config.disposal_gain_account_code,
                                                 Money(gain_loss, currency), description))
        elif gain_loss < 0:
            lines.append(JournalLine.debit_line(self.config.disposal_loss_account_code,
                                                Money(-gain_loss, currency), description))

        with self.storage.atomic():
            entry = self.ledger.create_entry(
                entry_date=disposal_date,
                description=description,
                lines=lines,
                post_immediately=True,
                source=JournalSource.ASSET_DISPOSAL,
                source_document_id=asset.id,
                actor=actor
            )
            asset.status = AssetStatus.DISPOSED
            asset.disposal_date = disposal_date
            asset.disposal_proceeds = proceeds
            asset.disposal_entry_id = entry.id
            asset.updated_at = datetime.now(timezone.utc)
            self._save(asset)

            self.audit_trail.log_event(
                event_type=AuditEventType.ASSET_DISPOSED,
                entity_type="fixed_asset",
                entity_id=asset.id,
                metadata={"asset_number": asset.asset_number, "proceeds": proceeds,
                          "book_value": book_value, "gain_loss": gain_loss,
                          "journal_entry_id": entry.id},
                user_id=actor
            )

        log_action(logger, "info", f"Disposed asset {asset.asset_number}, gain/loss {gain_loss}",
                   user_id=actor, action="dispose_asset", resource=asset.id)
        return DisposalResult(asset.id, asset.asset_number, proceeds, book_value,
                              gain_loss, entry.id)

    def _save(self, asset: FixedAsset) -> None:
        self.storage.save(self.table_name, asset.id, asset.to_dict())
