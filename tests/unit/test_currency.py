"""
Tests for currency validation at the voucher boundary.

Every voucher carries an ISO 4217 code; unknown codes are rejected before
anything is numbered or written.
"""

import pytest

from ledger_kernel.domain.currency import CurrencyInfo, CurrencyRegistry
from ledger_kernel.exceptions import InvalidCurrencyError, ValidationError


class TestCurrencyValidation:

    def test_valid_currency_codes_accepted(self):
        for code in ["PHP", "USD", "EUR", "GBP", "JPY", "SGD"]:
            assert CurrencyRegistry.is_valid(code)
            assert CurrencyRegistry.validate(code) == code

    def test_lowercase_codes_normalized(self):
        assert CurrencyRegistry.validate("php") == "PHP"
        assert CurrencyRegistry.validate("usd") == "USD"

    def test_whitespace_trimmed(self):
        assert CurrencyRegistry.validate(" PHP ") == "PHP"
        assert CurrencyRegistry.validate("EUR ") == "EUR"

    def test_invalid_currency_codes_rejected(self):
        for code in ["XXY", "ABC", "123", "US", "USDD", "", "X"]:
            assert not CurrencyRegistry.is_valid(code)

    def test_validate_raises_typed_error(self):
        with pytest.raises(InvalidCurrencyError, match="Invalid ISO 4217 currency code") as exc_info:
            CurrencyRegistry.validate("XXY")
        assert exc_info.value.code == "INVALID_CURRENCY"
        assert exc_info.value.field == "currency"

    def test_invalid_currency_is_a_validation_error(self):
        with pytest.raises(ValidationError):
            CurrencyRegistry.validate("USDD")

    def test_validate_raises_on_empty_or_none(self):
        with pytest.raises(InvalidCurrencyError):
            CurrencyRegistry.validate("")
        with pytest.raises(InvalidCurrencyError):
            CurrencyRegistry.validate(None)

    def test_get_info(self):
        info = CurrencyRegistry.get_info("jpy")
        assert info == CurrencyInfo("JPY", 0, "Japanese Yen")
        assert CurrencyRegistry.get_info("XXY") is None
        assert CurrencyRegistry.get_info(None) is None

    def test_all_codes_contains_default_currency(self):
        codes = CurrencyRegistry.all_codes()
        assert "PHP" in codes
        assert isinstance(codes, frozenset)
