"""
Accounting System Container

Builds every engine over one storage backend and one audit trail.
"""

from decimal import Decimal
from typing import Optional
import logging

from .storage import StorageInterface, InMemoryStorage, SQLiteStorage
from .audit import AuditTrail, AuditEventType
from .currency import Currency, ExchangeRateService
from .accounts import ChartOfAccounts
from .ledger import GeneralLedger
from .company import CompanySettingsService, CompanySettingsStore
from .documents import DocumentStore
from .locking import DocumentLockManager
from .inventory import InventoryEngine
from .payments import PaymentEngine
from .lifecycle import DocumentLifecycleEngine
from .expenses import ExpenseManager
from .assets import AssetManager
from .reporting import ReportingEngine
from .config import LedgerlineConfig, get_config
from .logging_config import log_action

logger = logging.getLogger("ledgerline.system")


def create_storage(config: LedgerlineConfig) -> StorageInterface:
    """Storage backend selected by configuration"""
    if config.storage_backend == "memory":
        return InMemoryStorage()
    if config.storage_backend == "sqlite":
        return SQLiteStorage(config.sqlite_path)
    raise ValueError(f"Unknown storage backend '{config.storage_backend}'")


class AccountingSystem:
    """Accounting engine with all components initialized"""

    def __init__(self, storage: Optional[StorageInterface] = None,
                 config: Optional[LedgerlineConfig] = None):
        self.config = config or get_config()
        self.storage = storage or create_storage(self.config)
        base_currency = Currency[self.config.base_currency]

        self.audit_trail = AuditTrail(self.storage)
        self.chart = ChartOfAccounts(self.storage, self.audit_trail)
        if self.config.seed_default_chart:
            self.chart.seed_default_chart(actor="system")

        self.ledger = GeneralLedger(
            self.storage, self.audit_trail, self.chart,
            base_currency=base_currency,
            tolerance=Decimal(self.config.balance_tolerance)
        )
        self.exchange_rates = ExchangeRateService(self.storage, self.audit_trail)
        self.settings = CompanySettingsService(
            CompanySettingsStore(self.storage, self.audit_trail, self.config),
            ttl_seconds=self.config.settings_cache_ttl_seconds
        )
        self.documents = DocumentStore(self.storage)
        self.locks = DocumentLockManager()

        self.inventory = InventoryEngine(
            self.storage, self.audit_trail, self.ledger, self.settings, self.config
        )
        self.payments = PaymentEngine(
            self.storage, self.audit_trail, self.ledger, self.documents, self.locks, self.config
        )
        self.lifecycle = DocumentLifecycleEngine(
            self.storage, self.audit_trail, self.ledger, self.inventory, self.payments,
            self.exchange_rates, self.settings, self.documents, self.locks, self.config
        )
        self.expenses = ExpenseManager(self.storage, self.audit_trail, self.ledger, self.config)
        self.assets = AssetManager(self.storage, self.audit_trail, self.ledger, self.config)
        self.reporting = ReportingEngine(
            self.ledger, self.chart, self.documents, self.inventory,
            self.exchange_rates, self.assets
        )

        self.audit_trail.log_event(
            event_type=AuditEventType.SYSTEM_START,
            entity_type="system",
            entity_id="ledgerline",
            metadata={"storage_backend": self.storage.__class__.__name__,
                      "base_currency": base_currency.code}
        )
        log_action(logger, "info", "Accounting system initialized", action="system_start",
                   extra={"storage": self.storage.__class__.__name__})

    def close(self) -> None:
        self.storage.close()
