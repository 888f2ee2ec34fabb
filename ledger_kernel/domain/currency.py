"""Currency -- ISO 4217 registry used to validate voucher currencies."""

from dataclasses import dataclass
from typing import ClassVar

from ledger_kernel.exceptions import InvalidCurrencyError


@dataclass(frozen=True)
class CurrencyInfo:
    """Information about a single ISO 4217 currency."""

    code: str
    decimal_places: int
    name: str


class CurrencyRegistry:
    """Registry of the ISO 4217 currencies the back office transacts in."""

    _CURRENCIES: ClassVar[dict[str, CurrencyInfo]] = {
        "PHP": CurrencyInfo("PHP", 2, "Philippine Peso"),
        "USD": CurrencyInfo("USD", 2, "US Dollar"),
        "EUR": CurrencyInfo("EUR", 2, "Euro"),
        "GBP": CurrencyInfo("GBP", 2, "Pound Sterling"),
        "JPY": CurrencyInfo("JPY", 0, "Japanese Yen"),
        "CNY": CurrencyInfo("CNY", 2, "Chinese Yuan"),
        "HKD": CurrencyInfo("HKD", 2, "Hong Kong Dollar"),
        "SGD": CurrencyInfo("SGD", 2, "Singapore Dollar"),
        "KRW": CurrencyInfo("KRW", 0, "South Korean Won"),
        "AUD": CurrencyInfo("AUD", 2, "Australian Dollar"),
        "CAD": CurrencyInfo("CAD", 2, "Canadian Dollar"),
        "CHF": CurrencyInfo("CHF", 2, "Swiss Franc"),
        "MYR": CurrencyInfo("MYR", 2, "Malaysian Ringgit"),
        "THB": CurrencyInfo("THB", 2, "Thai Baht"),
        "IDR": CurrencyInfo("IDR", 2, "Indonesian Rupiah"),
        "VND": CurrencyInfo("VND", 0, "Vietnamese Dong"),
        "AED": CurrencyInfo("AED", 2, "UAE Dirham"),
        "SAR": CurrencyInfo("SAR", 2, "Saudi Riyal"),
        "INR": CurrencyInfo("INR", 2, "Indian Rupee"),
        "TWD": CurrencyInfo("TWD", 2, "New Taiwan Dollar"),
        "NZD": CurrencyInfo("NZD", 2, "New Zealand Dollar"),
    }

    @classmethod
    def is_valid(cls, code: str) -> bool:
        """Check if a currency code is valid ISO 4217."""
        if not code or not isinstance(code, str):
            return False
        return code.upper().strip() in cls._CURRENCIES

    @classmethod
    def get_info(cls, code: str) -> CurrencyInfo | None:
        if not code or not isinstance(code, str):
            return None
        return cls._CURRENCIES.get(code.upper().strip())

    @classmethod
    def validate(cls, code: str) -> str:
        """Validate and normalize a currency code.

        Raises:
            InvalidCurrencyError: Code is not a known ISO 4217 currency.
        """
        if not code or not isinstance(code, str):
            raise InvalidCurrencyError(str(code))

        normalized = code.upper().strip()
        if len(normalized) != 3 or normalized not in cls._CURRENCIES:
            raise InvalidCurrencyError(code)
        return normalized

    @classmethod
    def all_codes(cls) -> frozenset[str]:
        return frozenset(cls._CURRENCIES.keys())
