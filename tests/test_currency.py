"""
Tests for Money arithmetic and dated exchange rates
"""

import pytest
from datetime import date
from decimal import Decimal

from core_accounting.storage import InMemoryStorage
from core_accounting.audit import AuditTrail, AuditEventType
from core_accounting.currency import Currency, Money, ExchangeRateService, quantize_amount
from core_accounting.errors import InvalidAmountError


class TestMoney:
    """Test Money value semantics"""

    def test_rounds_half_up_to_currency_precision(self):
        assert Money(Decimal("10.005"), Currency.USD).amount == Decimal("10.01")
        assert Money(Decimal("10.004"), Currency.USD).amount == Decimal("10.00")
        assert Money(Decimal("1500.5"), Currency.UGX).amount == Decimal("1501")

    def test_arithmetic(self):
        a = Money(Decimal("10.25"), Currency.USD)
        b = Money(Decimal("4.75"), Currency.USD)
        assert (a + b).amount == Decimal("15.00")
        assert (a - b).amount == Decimal("5.50")
        assert (a * Decimal("3")).amount == Decimal("30.75")
        assert (-a).is_negative()
        assert abs(-a) == a
        assert b < a

    def test_mixed_currencies_rejected(self):
        with pytest.raises(ValueError):
            Money(Decimal("1"), Currency.USD) + Money(Decimal("1"), Currency.EUR)

    def test_to_string(self):
        assert Money(Decimal("1234.5"), Currency.USD).to_string() == "USD 1,234.50"

    def test_quantize_amount_accepts_strings(self):
        assert quantize_amount("2.345", Currency.EUR) == Decimal("2.35")


class TestExchangeRateService:
    """Test rate storage, lookup and conversion"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)
        self.rates = ExchangeRateService(self.storage, self.audit_trail)

    def test_same_currency_is_identity(self):
        assert self.rates.get_rate(Currency.USD, Currency.USD) == Decimal("1")
        assert self.rates.convert(Decimal("12.34"), Currency.USD, Currency.USD) == Decimal("12.34")

    def test_direct_rate(self):
        self.rates.record_rate(Currency.EUR, Currency.USD, Decimal("1.10"), date(2024, 1, 1))
        assert self.rates.convert(Decimal("100"), Currency.EUR, Currency.USD,
                                  date(2024, 2, 1)) == Decimal("110.00")

    def test_inverse_rate_fallback(self):
        """Only USD->EUR on file: EUR->USD uses the inverse"""
        self.rates.record_rate(Currency.USD, Currency.EUR, Decimal("0.9"), date(2024, 1, 1))
        converted = self.rates.convert(Decimal("100"), Currency.EUR, Currency.USD, date(2024, 1, 15))
        assert converted == Decimal("111.11")

    def test_never_uses_future_rate(self):
        self.rates.record_rate(Currency.EUR, Currency.USD, Decimal("1.10"), date(2024, 1, 1))
        self.rates.record_rate(Currency.EUR, Currency.USD, Decimal("1.20"), date(2024, 3, 1))

        assert self.rates.get_rate(Currency.EUR, Currency.USD, date(2024, 2, 28)) == Decimal("1.10")
        assert self.rates.get_rate(Currency.EUR, Currency.USD, date(2024, 3, 1)) == Decimal("1.20")
        assert self.rates.get_rate(Currency.EUR, Currency.USD, date(2023, 12, 31)) is None

    def test_newer_inverse_wins_over_older_direct(self):
        self.rates.record_rate(Currency.EUR, Currency.USD, Decimal("1.10"), date(2024, 1, 1))
        self.rates.record_rate(Currency.USD, Currency.EUR, Decimal("0.8"), date(2024, 2, 1))
        assert self.rates.get_rate(Currency.EUR, Currency.USD, date(2024, 2, 10)) == Decimal("1.25")

    def test_missing_rate_returns_none(self):
        assert self.rates.convert(Decimal("5"), Currency.GBP, Currency.UGX, date(2024, 1, 1)) is None

    def test_recording_same_day_replaces(self):
        self.rates.record_rate(Currency.GBP, Currency.USD, Decimal("1.25"), date(2024, 1, 1))
        self.rates.record_rate(Currency.GBP, Currency.USD, Decimal("1.30"), date(2024, 1, 1))

        assert len(self.rates.list_rates(Currency.GBP)) == 1
        assert self.rates.get_rate(Currency.GBP, Currency.USD, date(2024, 1, 1)) == Decimal("1.30")
        events = self.audit_trail.get_events_by_type(AuditEventType.EXCHANGE_RATE_RECORDED)
        assert events[-1].metadata["replaced"] is True

    def test_invalid_rates_rejected(self):
        with pytest.raises(InvalidAmountError):
            self.rates.record_rate(Currency.EUR, Currency.USD, Decimal("0"), date(2024, 1, 1))
        with pytest.raises(InvalidAmountError):
            self.rates.record_rate(Currency.EUR, Currency.USD, Decimal("-1.5"), date(2024, 1, 1))
        with pytest.raises(ValueError):
            self.rates.record_rate(Currency.USD, Currency.USD, Decimal("1"), date(2024, 1, 1))
        assert self.rates.list_rates() == []

    def test_convert_money(self):
        self.rates.record_rate(Currency.USD, Currency.UGX, Decimal("3700.5"), date(2024, 1, 1))
        result = self.rates.convert_money(Money(Decimal("2"), Currency.USD), Currency.UGX, date(2024, 1, 2))
        assert result == Money(Decimal("7401"), Currency.UGX)
