"""
Multi-Currency Support Module

Handles ISO 4217 currency codes, dated exchange rates, and proper Decimal
precision for financial calculations. NEVER uses float for monetary values.
"""

from decimal import Decimal, ROUND_HALF_UP, getcontext
from dataclasses import dataclass
from datetime import datetime, date, timezone
from typing import Dict, List, Optional, Any, Union
from enum import Enum
import logging

from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .errors import InvalidAmountError
from .logging_config import log_action

# Set global decimal context for financial precision
getcontext().prec = 28  # High precision for financial calculations

logger = logging.getLogger("ledgerline.currency")


class Currency(Enum):
    """ISO 4217 Currency Codes with precision info"""
    USD = ("USD", 2)  # US Dollar, 2 decimal places
    EUR = ("EUR", 2)  # Euro, 2 decimal places
    GBP = ("GBP", 2)  # British Pound, 2 decimal places
    UGX = ("UGX", 0)  # Ugandan Shilling, 0 decimal places

    def __init__(self, code: str, precision: int):
        self.code = code
        self.precision = precision


def quantize_amount(value: Union[Decimal, int, str], currency: Currency) -> Decimal:
    """Round a value half-up to the currency precision"""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(
        Decimal('0.1') ** currency.precision,
        rounding=ROUND_HALF_UP
    )


@dataclass(frozen=True)
class Money:
    """
    Immutable money representation with currency and proper precision.
    All monetary values MUST use this class or raw Decimal.
    """
    amount: Decimal
    currency: Currency

    def __post_init__(self):
        object.__setattr__(self, 'amount', quantize_amount(self.amount, self.currency))

    @classmethod
    def zero(cls, currency: Currency) -> 'Money':
        return cls(Decimal('0'), currency)

    def _check_currency(self, other: 'Money', verb: str) -> None:
        if self.currency != other.currency:
            raise ValueError(f"Cannot {verb} {self.currency.code} and {other.currency.code}")

    def __add__(self, other: 'Money') -> 'Money':
        self._check_currency(other, "add")
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: 'Money') -> 'Money':
        self._check_currency(other, "subtract")
        return Money(self.amount - other.amount, self.currency)

    def __mul__(self, multiplier: Decimal) -> 'Money':
        if not isinstance(multiplier, Decimal):
            multiplier = Decimal(str(multiplier))
        return Money(self.amount * multiplier, self.currency)

    def __neg__(self) -> 'Money':
        return Money(-self.amount, self.currency)

    def __abs__(self) -> 'Money':
        return Money(abs(self.amount), self.currency)

    def __lt__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount < other.amount

    def __le__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount <= other.amount

    def __gt__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount > other.amount

    def __ge__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount >= other.amount

    def is_zero(self) -> bool:
        """Check if amount is exactly zero"""
        return self.amount == Decimal('0')

    def is_positive(self) -> bool:
        return self.amount > Decimal('0')

    def is_negative(self) -> bool:
        return self.amount < Decimal('0')

    def to_string(self) -> str:
        """Format for display"""
        return f"{self.currency.code} {self.amount:,.{self.currency.precision}f}"


@dataclass
class ExchangeRate(StorageRecord):
    """
    One rate fact: 1 unit of from_currency = rate units of to_currency,
    effective from effective_date. Identity is (from, to, effective_date).
    """
    from_currency: Currency
    to_currency: Currency
    rate: Decimal
    effective_date: date
    source: str = "manual"

    @staticmethod
    def make_key(from_currency: Currency, to_currency: Currency, effective_date: date) -> str:
        return f"{from_currency.code}:{to_currency.code}:{effective_date.isoformat()}"

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['from_currency'] = self.from_currency.code
        result['to_currency'] = self.to_currency.code
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ExchangeRate':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            from_currency=Currency[data['from_currency']],
            to_currency=Currency[data['to_currency']],
            rate=Decimal(data['rate']),
            effective_date=date.fromisoformat(data['effective_date']),
            source=data.get('source', 'manual')
        )


@dataclass
class ConversionUnavailable:
    """Soft caveat attached to report output when no rate covers an amount"""
    amount: Decimal
    from_currency: Currency
    to_currency: Currency
    on_date: date
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "amount": str(self.amount),
            "from_currency": self.from_currency.code,
            "to_currency": self.to_currency.code,
            "on_date": self.on_date.isoformat(),
            "message": self.message,
        }


class ExchangeRateService:
    """
    Dated exchange rate store and converter

    Lookups never use a rate dated after the requested date. A missing direct
    pair falls back to the inverse of the opposite pair.
    """

    def __init__(self, storage: StorageInterface, audit_trail: Optional[AuditTrail] = None):
        self.storage = storage
        self.audit_trail = audit_trail
        self.table_name = "exchange_rates"

    def record_rate(
        self,
        from_currency: Currency,
        to_currency: Currency,
        rate: Decimal,
        effective_date: date,
        source: str = "manual",
        actor: Optional[str] = None
    ) -> ExchangeRate:
        """
        Record (or replace) the rate for a currency pair on a date

        Raises:
            InvalidAmountError: If rate is not positive
            ValueError: If both currencies are the same
        """
        if not isinstance(rate, Decimal):
            rate = Decimal(str(rate))
        if rate <= Decimal('0'):
            raise InvalidAmountError(
                f"Exchange rate must be positive, got {rate}",
                {"rate": str(rate)}
            )
        if from_currency == to_currency:
            raise ValueError("Exchange rate requires two different currencies")

        key = ExchangeRate.make_key(from_currency, to_currency, effective_date)
        now = datetime.now(timezone.utc)
        existing = self.storage.load(self.table_name, key)
        created_at = datetime.fromisoformat(existing['created_at']) if existing else now

        fact = ExchangeRate(
            id=key,
            created_at=created_at,
            updated_at=now,
            from_currency=from_currency,
            to_currency=to_currency,
            rate=rate,
            effective_date=effective_date,
            source=source
        )
        self.storage.save(self.table_name, key, fact.to_dict())

        if self.audit_trail:
            self.audit_trail.log_event(
                event_type=AuditEventType.EXCHANGE_RATE_RECORDED,
                entity_type="exchange_rate",
                entity_id=key,
                metadata={"rate": rate, "source": source, "replaced": existing is not None},
                user_id=actor
            )
        log_action(logger, "info", f"Recorded rate {key} = {rate}",
                   user_id=actor, action="record_rate", resource=key)
        return fact

    def _latest_fact(self, from_currency: Currency, to_currency: Currency,
                     on_date: date) -> Optional[ExchangeRate]:
        facts = [
            ExchangeRate.from_dict(data)
            for data in self.storage.find(self.table_name, {
                'from_currency': from_currency.code,
                'to_currency': to_currency.code
            })
        ]
        eligible = [f for f in facts if f.effective_date <= on_date]
        if not eligible:
            return None
        return max(eligible, key=lambda f: f.effective_date)

    def get_rate(self, from_currency: Currency, to_currency: Currency,
                 on_date: Optional[date] = None) -> Optional[Decimal]:
        """
        Rate to multiply a from_currency amount by on the given date

        Returns:
            Decimal rate, or None when neither the pair nor its inverse has a
            fact dated on or before on_date
        """
        if from_currency == to_currency:
            return Decimal('1')
        on_date = on_date or date.today()

        direct = self._latest_fact(from_currency, to_currency, on_date)
        inverse = self._latest_fact(to_currency, from_currency, on_date)

        if direct and (not inverse or direct.effective_date >= inverse.effective_date):
            return direct.rate
        if inverse:
            return Decimal('1') / inverse.rate
        return None

    def convert(self, amount: Decimal, from_currency: Currency, to_currency: Currency,
                on_date: Optional[date] = None) -> Optional[Decimal]:
        """Convert an amount, rounded to the target precision; None without a rate"""
        rate = self.get_rate(from_currency, to_currency, on_date)
        if rate is None:
            return None
        return quantize_amount(Decimal(str(amount)) * rate, to_currency)

    def convert_money(self, money: Money, to_currency: Currency,
                      on_date: Optional[date] = None) -> Optional[Money]:
        converted = self.convert(money.amount, money.currency, to_currency, on_date)
        if converted is None:
            return None
        return Money(converted, to_currency)

    def list_rates(self, from_currency: Optional[Currency] = None,
                   to_currency: Optional[Currency] = None) -> List[ExchangeRate]:
        filters = {}
        if from_currency:
            filters['from_currency'] = from_currency.code
        if to_currency:
            filters['to_currency'] = to_currency.code
        rates = [ExchangeRate.from_dict(data) for data in self.storage.find(self.table_name, filters)]
        rates.sort(key=lambda r: (r.from_currency.code, r.to_currency.code, r.effective_date))
        return rates
