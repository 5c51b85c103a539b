"""Fixed-point money helpers. All amounts carry exactly two decimals."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value: Any) -> Decimal:
    """Coerce a number or numeric string to a two-decimal Decimal.

    Floats go through ``str`` first so 0.1 stays 0.10 rather than
    0.1000000000000000055...
    """
    if value is None or value == "":
        return ZERO
    if isinstance(value, Decimal):
        dec = value
    elif isinstance(value, float):
        dec = Decimal(repr(value))
    else:
        try:
            dec = Decimal(str(value))
        except InvalidOperation as e:
            raise ValueError(f"not a monetary amount: {value!r}") from e
    if not dec.is_finite():
        raise ValueError(f"not a monetary amount: {value!r}")
    try:
        return dec.quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation as e:
        raise ValueError(f"amount out of range: {value!r}") from e


def format_money(amount: Decimal, symbol: str = "") -> str:
    """Render an amount for display. The symbol is a prefix only."""
    amount = to_money(amount)
    if amount < 0:
        return f"-{symbol}{-amount}"
    return f"{symbol}{amount}"


__all__ = ["CENT", "ZERO", "format_money", "to_money"]
