"""
Milliunit and month helpers.

YNAB stores every amount as integer milliunits: 1000 milliunits is one
unit of currency, so $1.00 = 1000 and $0.01 = 10.
"""

from __future__ import annotations

from datetime import date
from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation

MILLIUNITS_PER_UNIT = 1000


def dollars_to_milliunits(amount: float | str | Decimal) -> int:
    """Round to the nearest milliunit, e.g. ``1.505`` -> ``1505``."""
    try:
        value = Decimal(str(amount))
    except InvalidOperation as exc:
        raise ValueError(f"invalid amount: {amount}") from exc
    if not value.is_finite():
        raise ValueError(f"invalid amount: {amount}")
    return int((value * MILLIUNITS_PER_UNIT).quantize(Decimal(1), rounding=ROUND_HALF_EVEN))


def milliunits_to_dollars(milliunits: int) -> Decimal:
    return Decimal(milliunits) / MILLIUNITS_PER_UNIT


def format_currency(milliunits: int, symbol: str = "$") -> str:
    """
    Format milliunits with two decimals and thousands separators.

    >>> format_currency(1234567)
    '$1,234.57'
    >>> format_currency(-50000)
    '-$50.00'
    """
    value = milliunits_to_dollars(milliunits).quantize(Decimal("0.01"), rounding=ROUND_HALF_EVEN)
    sign = "-" if value < 0 else ""
    return f"{sign}{symbol}{abs(value):,.2f}"


def parse_month(value: str) -> tuple[int, int]:
    """Parse ``YYYY-MM`` or ``YYYY-MM-DD`` into ``(year, month)``; the day is ignored."""
    parts = value.strip().split("-")
    if len(parts) < 2:
        raise ValueError(f"invalid month format: {value} (expected YYYY-MM or YYYY-MM-DD)")
    try:
        year = int(parts[0])
    except ValueError as exc:
        raise ValueError(f"invalid year: {parts[0]}") from exc
    try:
        month = int(parts[1])
    except ValueError as exc:
        raise ValueError(f"invalid month: {parts[1]}") from exc
    if not 1 <= month <= 12:
        raise ValueError(f"month out of range: {month} (must be 1-12)")
    return year, month


def format_month(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"


def month_start(value: str | None = None) -> str:
    """API month key (``YYYY-MM-01``) for ``value``, or for the current month."""
    if value is None:
        return date.today().replace(day=1).isoformat()
    year, month = parse_month(value)
    return f"{format_month(year, month)}-01"
