"""
Currency and token code utilities.

Account balances are expressed in ISO 4217 currencies (validated via pycountry).
Wallet balances are expressed in token symbols, which have no registry: they are
only normalized.
"""
import re

import pycountry

_TOKEN_PATTERN = re.compile(r"^[A-Z0-9.\-_$]{1,32}$")


def normalize_token(symbol: str) -> str:
    """
    Normalize a token symbol (strip + upper case).

    Raises:
        ValueError: empty symbol or characters outside [A-Z0-9.-_$]

    Examples:
        >>> normalize_token(" eth ")
        'ETH'
    """
    value = (symbol or "").strip().upper()
    if not _TOKEN_PATTERN.match(value):
        raise ValueError(f"Invalid token symbol: '{symbol}'")
    return value


def is_iso_currency(code: str) -> bool:
    """Check if code is a known ISO 4217 currency code."""
    if not code or len(code) != 3:
        return False
    return pycountry.currencies.get(alpha_3=code.upper()) is not None


def normalize_currency_code(code: str) -> str:
    """
    Normalize and validate an ISO 4217 currency code.

    Raises:
        ValueError: if the code is not a known ISO 4217 currency

    Examples:
        >>> normalize_currency_code("brl")
        'BRL'
    """
    value = (code or "").strip().upper()
    if not is_iso_currency(value):
        raise ValueError(f"Invalid ISO 4217 currency code: '{code}'")
    return value
