from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")


def round2(value: float) -> float:
    """Round half-up to cents.

    Goes through ``str`` so 999.995 rounds to 1000.00 instead of following the
    binary float representation down to 999.99.
    """
    return float(Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP))


def with_tax(pretax: float, vat_rate: float) -> float:
    return round2(Decimal(str(pretax)) * (1 + Decimal(str(vat_rate))))
