"""Display formatting for view counts."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

_ONE_DECIMAL = Decimal("0.1")


def _scaled(count: int, unit: int) -> str:
    return str((Decimal(count) / unit).quantize(_ONE_DECIMAL, rounding=ROUND_HALF_UP))


def format_count(count: int) -> str:
    """Return a short human label such as ``"1 view"`` or ``"1.5k views"``.

    Thousands and millions keep exactly one decimal, rounded half-up, so
    ``999_999`` renders as ``"1000.0k views"``.
    """
    if count <= 0:
        return "0 views"
    if count == 1:
        return "1 view"
    if count < 1_000:
        return f"{count} views"
    if count < 1_000_000:
        return f"{_scaled(count, 1_000)}k views"
    return f"{_scaled(count, 1_000_000)}M views"
