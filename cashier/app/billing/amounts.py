"""Money helpers: tax-inclusive amounts and display formatting."""
from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Union

Number = Union[Decimal, int, float, str]

CENT = Decimal("0.01")
HUNDRED = Decimal("100")

_CURRENCY_SYMBOLS = {"usd": "$", "cad": "$", "aud": "$", "eur": "€", "gbp": "£", "jpy": "¥"}


def to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() first so 9.99 stays 9.99 instead of its binary expansion.
    return Decimal(str(value))


def quantize_money(value: Number) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def amount_with_tax(amount: Number, tax_percentage: Number) -> Decimal:
    """Gross amount registered with the gateway, rounded half-up to cents."""

    return quantize_money(to_decimal(amount) * (1 + to_decimal(tax_percentage) / HUNDRED))


def tax_portion(amount: Number, tax_percentage: Number) -> Decimal:
    return quantize_money(to_decimal(amount) * to_decimal(tax_percentage) / HUNDRED)


def format_amount(amount: Number, currency: str = "usd") -> str:
    value = quantize_money(amount)
    code = currency.lower()
    symbol = _CURRENCY_SYMBOLS.get(code)
    sign = "-" if value < 0 else ""
    if symbol is None:
        return f"{sign}{abs(value):,.2f} {code.upper()}"
    return f"{sign}{symbol}{abs(value):,.2f}"


__all__ = [
    "amount_with_tax",
    "format_amount",
    "quantize_money",
    "tax_portion",
    "to_decimal",
]
