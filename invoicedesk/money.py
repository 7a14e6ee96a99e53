"""Conversions between stored cents and displayed currency."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Union

_CENT = Decimal("1")
_HUNDRED = Decimal(100)


def to_cents(amount: Union[Decimal, int, str]) -> int:
    """Convert a dollar amount into integer cents, rounding half up."""

    value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    return int((value * _HUNDRED).quantize(_CENT, rounding=ROUND_HALF_UP))


def from_cents(cents: int) -> Decimal:
    return (Decimal(int(cents)) / _HUNDRED).quantize(Decimal("0.01"))


def format_currency(cents: int) -> str:
    """Render cents as US dollars, e.g. ``123456 -> "$1,234.56"``."""

    value = from_cents(cents)
    sign = "-" if value < 0 else ""
    return f"{sign}${abs(value):,.2f}"


__all__ = ["format_currency", "from_cents", "to_cents"]
