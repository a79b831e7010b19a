"""
Money helpers for the ledger.

- amount: Decimal (NEVER float)
- Quantized to 2 places, ROUND_HALF_UP
- Persisted as decimal strings
"""
from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable, Union

from core.errors import ValidationError

MoneyInput = Union[Decimal, int, str]

ZERO = Decimal("0.00")
_Q2 = Decimal("0.01")


def q2(value: Decimal) -> Decimal:
    """Redondeo a 2 decimales, estilo dinero."""
    return value.quantize(_Q2, rounding=ROUND_HALF_UP)


def to_money(value: Any) -> Decimal:
    if isinstance(value, float):
        raise ValidationError("float forbidden in money-path; use Decimal|int|str")
    if isinstance(value, bool):
        raise ValidationError("amount must be Decimal|int|str")
    if isinstance(value, Decimal):
        dec = value
    elif isinstance(value, int):
        dec = Decimal(value)
    elif isinstance(value, str):
        s = value.strip()
        if not s:
            raise ValidationError("amount required")
        try:
            dec = Decimal(s)
        except (InvalidOperation, ValueError) as exc:
            raise ValidationError(f"invalid amount: {value!r}") from exc
    else:
        raise ValidationError("amount must be Decimal|int|str")
    if not dec.is_finite():
        raise ValidationError("amount must be finite")
    return q2(dec)


def from_doc(value: Any) -> Decimal:
    """Read a stored amount. Missing or empty values count as zero."""
    if value is None or value == "":
        return ZERO
    return q2(Decimal(str(value)))


def to_doc(value: Decimal) -> str:
    return str(q2(value))


def total(values: Iterable[Decimal]) -> Decimal:
    return q2(sum(values, ZERO))
