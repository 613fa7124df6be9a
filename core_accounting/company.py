"""
Company Settings Module

Company-wide defaults (base currency, sales tax rate, payment terms,
inventory method, default stock location) stored as a single record and read
through an explicit TTL cache.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional
import logging
import threading
import time

from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .config import LedgerlineConfig, get_config
from .currency import Currency
from .logging_config import log_action

logger = logging.getLogger("ledgerline.company")

SETTINGS_ID = "company"


@dataclass
class CompanySettings(StorageRecord):
    """Company-wide accounting defaults"""
    name: str
    base_currency: Currency
    sales_tax_rate: Decimal
    payment_terms_days: int
    inventory_method: str = "weighted_average"
    default_location_id: str = "MAIN"

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['base_currency'] = self.base_currency.code
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CompanySettings':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            name=data['name'],
            base_currency=Currency[data['base_currency']],
            sales_tax_rate=Decimal(data['sales_tax_rate']),
            payment_terms_days=int(data['payment_terms_days']),
            inventory_method=data.get('inventory_method', 'weighted_average'),
            default_location_id=data.get('default_location_id', 'MAIN')
        )

    @classmethod
    def defaults(cls, config: LedgerlineConfig) -> 'CompanySettings':
        now = datetime.now(timezone.utc)
        return cls(
            id=SETTINGS_ID,
            created_at=now,
            updated_at=now,
            name=config.company_name,
            base_currency=Currency[config.base_currency],
            sales_tax_rate=Decimal(config.default_sales_tax_rate),
            payment_terms_days=config.default_payment_terms_days,
            inventory_method=config.inventory_method,
            default_location_id=config.default_location_id
        )


class CompanySettingsStore:
    """Loads and saves the single company settings record"""

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail,
                 config: Optional[LedgerlineConfig] = None):
        self.storage = storage
        self.audit_trail = audit_trail
        self.config = config or get_config()
        self.table_name = "company_settings"

    def load(self) -> CompanySettings:
        """Stored settings, or configured defaults when none are stored"""
        data = self.storage.load(self.table_name, SETTINGS_ID)
        if data:
            return CompanySettings.from_dict(data)
        return CompanySettings.defaults(self.config)

    def update(self, actor: Optional[str] = None, **changes: Any) -> CompanySettings:
        """
        Update selected settings fields

        Raises:
            ValueError: On unknown fields, a negative tax rate or a base
                currency other than the one the ledger is kept in
        """
        settings = self.load()
        for key, value in changes.items():
            if key in ('id', 'created_at', 'updated_at') or not hasattr(settings, key):
                raise ValueError(f"Unknown company setting '{key}'")
            if key == 'sales_tax_rate':
                value = Decimal(str(value))
                if value < Decimal('0'):
                    raise ValueError("Sales tax rate cannot be negative")
            if key == 'base_currency':
                if isinstance(value, str):
                    value = Currency[value]
                if value != Currency[self.config.base_currency]:
                    raise ValueError(
                        f"Base currency is fixed at {self.config.base_currency}; "
                        f"the ledger is kept in it"
                    )
            setattr(settings, key, value)

        settings.updated_at = datetime.now(timezone.utc)
        self.storage.save(self.table_name, SETTINGS_ID, settings.to_dict())

        self.audit_trail.log_event(
            event_type=AuditEventType.COMPANY_SETTINGS_UPDATED,
            entity_type="company_settings",
            entity_id=SETTINGS_ID,
            metadata={k: v for k, v in changes.items()},
            user_id=actor
        )
        log_action(logger, "info", "Updated company settings", user_id=actor,
                   action="update_company_settings", resource=SETTINGS_ID,
                   extra={"fields": sorted(changes)})
        return settings


class CompanySettingsCache:
    """
    Read-through cache for company settings with an explicit TTL

    The clock is injectable so expiry can be tested without sleeping.
    """

    def __init__(self, loader: Callable[[], CompanySettings], ttl_seconds: float = 300,
                 clock: Callable[[], float] = time.monotonic):
        self._loader = loader
        self._ttl = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._value: Optional[CompanySettings] = None
        self._loaded_at: Optional[float] = None

    def get(self) -> CompanySettings:
        with self._lock:
            now = self._clock()
            if self._value is None or self._loaded_at is None or now - self._loaded_at >= self._ttl:
                self._value = self._loader()
                self._loaded_at = now
            return self._value

    def invalidate(self) -> None:
        with self._lock:
            self._value = None
            self._loaded_at = None


class CompanySettingsService:
    """Settings access for the engines: cached reads, invalidating writes"""

    def __init__(self, store: CompanySettingsStore, ttl_seconds: float = 300,
                 clock: Callable[[], float] = time.monotonic):
        self.store = store
        self.cache = CompanySettingsCache(store.load, ttl_seconds, clock)

    def get(self) -> CompanySettings:
        return self.cache.get()

    def update(self, actor: Optional[str] = None, **changes: Any) -> CompanySettings:
        settings = self.store.update(actor=actor, **changes)
        self.cache.invalidate()
        return settings
