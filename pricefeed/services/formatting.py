from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

_TWO_PLACES = Decimal("0.01")


def format_decimal(value: Any) -> str:
    """Format a numeric value as a string with exactly 2 fractional digits.

    Rounding is ROUND_HALF_UP applied to the exact decimal text of the input,
    so "68000.005" becomes "68000.01". Floats go through ``str`` first to avoid
    binary representation artifacts.
    """
    if value is None or isinstance(value, bool):
        raise ValueError(f"invalid numeric value: {value!r}")
    if isinstance(value, str):
        text = value.strip()
        if not text:
            raise ValueError("invalid numeric value: empty string")
    elif isinstance(value, (int, float, Decimal)):
        text = str(value)
    else:
        raise ValueError(f"invalid numeric value: {value!r}")

    try:
        number = Decimal(text)
    except InvalidOperation as exc:
        raise ValueError(f"invalid numeric value: {value!r}") from exc
    if not number.is_finite():
        raise ValueError(f"invalid numeric value: {value!r}")

    try:
        rounded = number.quantize(_TWO_PLACES, rounding=ROUND_HALF_UP)
    except InvalidOperation as exc:
        # more digits than the decimal context precision can hold
        raise ValueError(f"numeric value out of range: {value!r}") from exc
    if rounded.is_zero():
        # "-0.00" reads as a loss in consumers that infer sign from the text
        rounded = abs(rounded)
    return f"{rounded:.2f}"
