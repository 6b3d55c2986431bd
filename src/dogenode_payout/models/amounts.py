"""Fixed-point DOGE amounts."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

KOINU = Decimal("0.00000001")  # smallest DOGE unit, 1e-8
ZERO = Decimal("0")


def quantize(value: Decimal) -> Decimal:
    """Round to whole koinu."""
    return value.quantize(KOINU, rounding=ROUND_HALF_UP)
