"""Utilities for working with monetary values in Venus."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
# Keeps amounts in cents well inside a signed 64-bit column.
MAX_AMOUNT = Decimal("1000000000000.00")

AmountLike = Union[Decimal, int, float, str]


def to_decimal(value: AmountLike) -> Decimal:
    """Convert ``value`` to a :class:`~decimal.Decimal` with two decimal places.

    Raises :class:`ValueError` for values that are not finite numbers.
    """

    if isinstance(value, bool):
        raise ValueError("Amount must be a number.")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation as exc:
            raise ValueError(f"Amount {value!r} is not a number.") from exc
    else:
        raise ValueError(f"Unsupported amount type: {type(value)!r}")

    if not result.is_finite():
        raise ValueError("Amount must be a finite number.")
    try:
        return result.quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation as exc:
        raise ValueError(f"Amount {value!r} is too large.") from exc


def round2(amount: Decimal) -> Decimal:
    """Round ``amount`` to cents using half-up rounding."""

    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def require_positive(amount: Decimal, *, allow_zero: bool = False) -> Decimal:
    """Ensure ``amount`` is positive (or non-negative when ``allow_zero`` is true)."""

    if allow_zero:
        if amount < Decimal("0"):
            raise ValueError("Amount must be zero or greater.")
    else:
        if amount <= Decimal("0"):
            raise ValueError("Amount must be greater than zero.")
    return amount


def format_currency(amount: Decimal) -> str:
    """Return ``amount`` as a currency formatted string (e.g. ``$12.34``)."""

    return f"${round2(amount):,.2f}"


__all__ = ["AmountLike", "CENT", "MAX_AMOUNT", "ZERO", "format_currency", "require_positive", "round2", "to_decimal"]
