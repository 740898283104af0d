from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from app.core.constants import CURRENCY_MINOR_UNITS

ZERO = Decimal("0")
CENT = Decimal("0.01")


def to_decimal(value: Any) -> Decimal:
    """Coerce numbers, numeric strings and None into Decimal (None and junk -> 0)."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        return Decimal(int(value))
    if isinstance(value, float):
        return Decimal(str(value))
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return ZERO


def round_money(value: Any) -> Decimal:
    """Round to cents, half up."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def minor_units(currency: str | None) -> int:
    if not currency:
        return 2
    return CURRENCY_MINOR_UNITS.get(currency.upper(), 2)


def currency_epsilon(currency: str | None) -> Decimal:
    """Smallest representable amount of a currency: 0.01 EUR, 1 JPY."""
    return Decimal(1).scaleb(-minor_units(currency))


def non_negative(value: Decimal) -> Decimal:
    return value if value > ZERO else ZERO
