"""Money helpers.

Internal storage unit: minor units (cents for USD, 100 minor = 1 major).
Order totals, line prices and provider payloads are all integers in minor
units; conversion to decimal strings only happens at provider boundaries
that require it (e.g. Shopify transaction amounts).
"""

from __future__ import annotations

from decimal import Decimal

MINOR_UNITS_PER_MAJOR: int = 100

CURRENCY_SYMBOLS = {
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "BRL": "R$",
    "COP": "COL$",
}


def to_major_units_str(amount_minor: int) -> str:
    """Render minor units as a two-decimal major-unit string, e.g. 1000 -> '10.00'."""
    return f"{Decimal(amount_minor) / MINOR_UNITS_PER_MAJOR:.2f}"


def format_money(amount_minor: int, currency: str) -> str:
    """Human-readable amount for customer messages, e.g. '$10.00'."""
    code = (currency or "").upper()
    symbol = CURRENCY_SYMBOLS.get(code)
    major = to_major_units_str(amount_minor)
    if symbol:
        return f"{symbol}{major}"
    return f"{major} {code}".strip()
