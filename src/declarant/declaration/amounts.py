"""Tax arithmetic on declaration amounts.

Rates are fractions (``0.055`` for 5.5%). Results are not rounded, callers
apply :func:`truncate_amount` where a two-decimal value is expected.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

CURRENT_TAX_RATES: list[Decimal] = [
    Decimal("0"),
    Decimal("0.021"),
    Decimal("0.055"),
    Decimal("0.1"),
    Decimal("0.2"),
]

_CENT = Decimal("0.01")


def get_excluding_taxes_amount_from_including_taxes_amount(including_taxes_amount: Decimal, tax_rate: Decimal) -> Decimal:
    return including_taxes_amount / (1 + tax_rate)


def get_tax_amount_from_including_and_excluding_taxes_amounts(
    including_taxes_amount: Decimal, excluding_taxes_amount: Decimal
) -> Decimal:
    return including_taxes_amount - excluding_taxes_amount


def truncate_amount(amount: Decimal) -> Decimal:
    return amount.quantize(_CENT, rounding=ROUND_HALF_UP)
