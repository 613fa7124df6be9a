"""
Tests for fixed assets and depreciation runs
"""

import pytest
from datetime import date
from decimal import Decimal

from core_accounting.storage import InMemoryStorage
from core_accounting.config import LedgerlineConfig
from core_accounting.system import AccountingSystem
from core_accounting.assets import AssetStatus, monthly_depreciation
from core_accounting.ledger import JournalSource
from core_accounting.audit import AuditEventType
from core_accounting.errors import (
    DepreciationAlreadyRunError, InvalidAmountError, InvalidTransitionError
)


class TestFixedAssets:
    """Test the asset register and monthly depreciation"""

    def setup_method(self):
        self.system = AccountingSystem(InMemoryStorage(), LedgerlineConfig(storage_backend="memory"))
        self.assets = self.system.assets
        self.ledger = self.system.ledger

    def _van(self, **kwargs):
        params = dict(name="Delivery van", purchase_date=date(2024, 1, 15),
                      cost=Decimal("1200.00"), useful_life_months=10,
                      residual_value=Decimal("200.00"))
        params.update(kwargs)
        return self.assets.register_asset(**params)

    def test_register_asset(self):
        asset = self._van(paid_from_account_code="1100")
        assert asset.asset_number == "FA-000001"
        assert asset.book_value == Decimal("1200.00")
        assert asset.depreciation_start_date == date(2024, 1, 15)
        assert self.ledger.account_balance("1500") == Decimal("1200.00")
        assert self.ledger.account_balance("1100") == Decimal("-1200.00")

    def test_register_without_purchase_entry(self):
        self._van()
        assert self.ledger.find_entries() == []

    @pytest.mark.parametrize("overrides", [
        {"cost": Decimal("0")},
        {"residual_value": Decimal("-1")},
        {"residual_value": Decimal("1500")},
        {"useful_life_months": 0},
    ])
    def test_invalid_assets_rejected(self, overrides):
        with pytest.raises(InvalidAmountError):
            self._van(**overrides)

    def test_monthly_run_posts_depreciation(self):
        asset = self._van()
        result = self.assets.run_depreciation(asset.id, date(2024, 1, 31))

        assert result.amount == Decimal("100.00")
        assert result.period == "2024-01"
        assert result.book_value == Decimal("1100.00")
        entry = self.ledger.get_entry(result.journal_entry_id)
        assert entry.source == JournalSource.DEPRECIATION
        assert self.ledger.account_balance("6500") == Decimal("100.00")
        assert self.ledger.account_balance("1510") == Decimal("100.00")

    def test_same_month_rerun_rejected(self):
        asset = self._van()
        self.assets.run_depreciation(asset.id, date(2024, 1, 31))
        with pytest.raises(DepreciationAlreadyRunError):
            self.assets.run_depreciation(asset.id, date(2024, 1, 20))
        assert self.ledger.account_balance("6500") == Decimal("100.00")

    def test_before_start_rejected(self):
        asset = self._van(depreciation_start_date=date(2024, 3, 1))
        with pytest.raises(InvalidTransitionError):
            self.assets.run_depreciation(asset.id, date(2024, 2, 29))

    def test_never_below_residual(self):
        asset = self._van()
        for month in range(1, 13):
            current = self.assets.get_asset(asset.id)
            if current.status != AssetStatus.ACTIVE:
                break
            self.assets.run_depreciation(asset.id, date(2024, month, 28))

        final = self.assets.get_asset(asset.id)
        assert final.status == AssetStatus.FULLY_DEPRECIATED
        assert final.accumulated_depreciation == Decimal("1000.00")
        assert final.book_value == Decimal("200.00")
        assert monthly_depreciation(final) == Decimal("0.00")
        with pytest.raises(InvalidTransitionError):
            self.assets.run_depreciation(asset.id, date(2025, 1, 31))

    def test_last_month_is_capped(self):
        asset = self._van(cost=Decimal("250.00"), residual_value=Decimal("0"), useful_life_months=2)
        self.assets.run_depreciation(asset.id, date(2024, 1, 31))
        self.assets.run_depreciation(asset.id, date(2024, 2, 29))
        final = self.assets.get_asset(asset.id)
        assert final.accumulated_depreciation == Decimal("250.00")
        assert final.status == AssetStatus.FULLY_DEPRECIATED

    def test_run_monthly_depreciation(self):
        van = self._van()
        laptop = self._van(name="Laptop", cost=Decimal("2400.00"), residual_value=Decimal("0"),
                           useful_life_months=24)
        self._van(name="Future", depreciation_start_date=date(2024, 6, 1))

        outcomes = self.assets.run_monthly_depreciation(date(2024, 1, 31))
        assert len(outcomes) == 2
        assert all(o.success for o in outcomes)
        assert {o.result.asset_id for o in outcomes} == {van.id, laptop.id}
        assert self.ledger.account_balance("6500") == Decimal("200.00")

        # Already run this month
        assert self.assets.run_monthly_depreciation(date(2024, 1, 31)) == []

    def test_run_monthly_reports_failures(self):
        self._van()
        self.system.chart.deactivate_account("6500")

        outcomes = self.assets.run_monthly_depreciation(date(2024, 1, 31))
        assert len(outcomes) == 1
        assert not outcomes[0].success
        assert outcomes[0].error["kind"] == "unknown_account"
        assert outcomes[0].result["asset_number"] == "FA-000001"


class TestAssetDisposal:
    """Test taking assets off the register"""

    def setup_method(self):
        self.system = AccountingSystem(InMemoryStorage(), LedgerlineConfig(storage_backend="memory"))
        self.assets = self.system.assets
        self.ledger = self.system.ledger
        self.van = self.assets.register_asset(
            name="Delivery van", purchase_date=date(2024, 1, 15), cost=Decimal("1200.00"),
            useful_life_months=10, residual_value=Decimal("200.00"),
            paid_from_account_code="1100"
        )

    def test_disposal_at_a_gain(self):
        self.assets.run_depreciation(self.van.id, date(2024, 1, 31))
        self.assets.run_depreciation(self.van.id, date(2024, 2, 29))

        result = self.assets.dispose_asset(self.van.id, date(2024, 3, 15), Decimal("1100.00"),
                                           proceeds_account_code="1100", actor="alice")
        assert result.book_value == Decimal("1000.00")
        assert result.gain_loss == Decimal("100.00")

        entry = self.ledger.get_entry(result.journal_entry_id)
        assert entry.source == JournalSource.ASSET_DISPOSAL
        assert entry.total_debits() == entry.total_credits() == Decimal("1300.00")
        assert self.ledger.account_balance("1500") == Decimal("0.00")
        assert self.ledger.account_balance("1510") == Decimal("0.00")
        assert self.ledger.account_balance("1100") == Decimal("-100.00")
        assert self.ledger.account_balance("4800") == Decimal("100.00")

        asset = self.assets.get_asset(self.van.id)
        assert asset.status == AssetStatus.DISPOSED
        assert asset.disposal_date == date(2024, 3, 15)
        assert asset.disposal_proceeds == Decimal("1100.00")
        assert asset.disposal_entry_id == entry.id
        events = self.system.audit_trail.get_events_by_type(AuditEventType.ASSET_DISPOSED)
        assert events[0].user_id == "alice"

    def test_disposal_at_a_loss(self):
        result = self.assets.dispose_asset(self.van.id, date(2024, 2, 1))
        assert result.gain_loss == Decimal("-1200.00")
        assert self.ledger.account_balance("8920") == Decimal("1200.00")
        assert self.ledger.account_balance("1500") == Decimal("0.00")
        assert self.ledger.account_balance("1000") == Decimal("0.00")

    def test_disposed_asset_is_final(self):
        self.assets.dispose_asset(self.van.id, date(2024, 2, 1), Decimal("500.00"))

        with pytest.raises(InvalidTransitionError):
            self.assets.dispose_asset(self.van.id, date(2024, 2, 2))
        with pytest.raises(InvalidTransitionError):
            self.assets.run_depreciation(self.van.id, date(2024, 2, 29))
        assert self.assets.run_monthly_depreciation(date(2024, 2, 29)) == []
        assert len(self.ledger.find_entries(source=JournalSource.ASSET_DISPOSAL)) == 1

    def test_invalid_disposals_write_nothing(self):
        with pytest.raises(InvalidAmountError):
            self.assets.dispose_asset(self.van.id, date(2024, 2, 1), Decimal("-1"))
        with pytest.raises(InvalidTransitionError):
            self.assets.dispose_asset(self.van.id, date(2024, 1, 1))
        assert self.assets.get_asset(self.van.id).status == AssetStatus.ACTIVE
        assert self.ledger.find_entries(source=JournalSource.ASSET_DISPOSAL) == []
