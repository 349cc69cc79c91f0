"""
Currency Catalogue Module

ISO 4217 codes accepted for accounts and transfers. Amounts are always
integers in the smallest unit of the currency; no conversion is done.
"""

from enum import Enum
from typing import List


class UnsupportedCurrencyError(ValueError):
    """Currency code is not in the supported catalogue"""


class Currency(Enum):
    """Supported ISO 4217 currency codes with their full names"""
    USD = ("USD", "US Dollar")
    EUR = ("EUR", "Euro")
    CAD = ("CAD", "Canadian Dollar")

    def __init__(self, code: str, full_name: str):
        self.code = code
        self.full_name = full_name


def is_supported_currency(code: str) -> bool:
    """Check whether a currency code is supported"""
    return code in Currency.__members__


def get_full_currency_name(code: str) -> str:
    """
    Get the full name of a currency

    Args:
        code: ISO 4217 currency code, e.g. "USD"

    Returns:
        Full currency name, e.g. "US Dollar"

    Raises:
        UnsupportedCurrencyError: If the code is not supported
    """
    if not is_supported_currency(code):
        raise UnsupportedCurrencyError(f"Unsupported currency: {code}")
    return Currency[code].full_name


def supported_currencies() -> List[str]:
    """List supported currency codes"""
    return [currency.code for currency in Currency]
