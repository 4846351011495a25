"""Unit conversion helpers: micro-currency, ratios and percentages."""

from __future__ import annotations

import math
from typing import Any

MICROS_PER_UNIT = 1_000_000


def to_int(v: Any, default: int = 0) -> int:
    try:
        f = float(v)
    except (TypeError, ValueError):
        return default
    if math.isnan(f) or math.isinf(f):
        return default
    return int(f)


def to_float(v: Any, default: float = 0.0) -> float:
    try:
        f = float(v)
    except (TypeError, ValueError):
        return default
    if math.isnan(f) or math.isinf(f):
        return default
    return f


def safe_divide(numerator: float, denominator: float) -> float:
    """Return numerator / denominator, or 0.0 when the denominator is zero.

    Never returns NaN: a NaN on either side is treated as zero.
    """
    n = to_float(numerator)
    d = to_float(denominator)
    if d == 0:
        return 0.0
    return n / d


def micros_to_currency(micros: Any) -> float:
    """Convert an integer micro-currency amount to base currency units.

    Examples::

        micros_to_currency(50_000_000)  # → 50.0
        micros_to_currency(None)        # → 0.0
    """
    return to_float(micros) / MICROS_PER_UNIT


def currency_to_micros(amount: Any) -> int:
    """Convert a currency amount to whole micros (floored).

    Examples::

        currency_to_micros(0.57)  # → 570000
    """
    return int(math.floor(round(to_float(amount) * MICROS_PER_UNIT, 6)))


def fraction_to_percent(value: Any) -> float:
    return to_float(value) * 100.0


def percent_to_fraction(value: Any) -> float:
    return to_float(value) / 100.0


def normalize_percent(value: Any, kind: str = "percent") -> float:
    """Return *value* as a percentage given its representation *kind*.

    ``kind`` is ``"fraction"`` for 0..1 values (API ratios such as
    ``search_impression_share``) or ``"percent"`` for values already on a
    0..100 scale.
    """
    if kind == "fraction":
        return fraction_to_percent(value)
    if kind == "percent":
        return to_float(value)
    raise ValueError(f"Unknown percent representation: {kind!r}")


def ratio_percent(numerator: float, denominator: float) -> float:
    """numerator / denominator * 100, zero-safe."""
    return safe_divide(numerator, denominator) * 100.0
