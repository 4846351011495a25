"""Tests for micro-currency and percentage helpers."""
from __future__ import annotations

import math

import pytest

from adpilot.units import (
    currency_to_micros,
    fraction_to_percent,
    micros_to_currency,
    normalize_percent,
    percent_to_fraction,
    ratio_percent,
    safe_divide,
    to_float,
    to_int,
)


class TestCoercion:
    def test_to_int_accepts_numeric_strings(self):
        assert to_int("120") == 120
        assert to_int("12.9") == 12

    def test_to_int_defaults_on_garbage(self):
        assert to_int(None) == 0
        assert to_int("abc", default=-1) == -1
        assert to_int(float("nan")) == 0

    def test_to_float_rejects_infinity(self):
        assert to_float(float("inf")) == 0.0
        assert to_float("2.5") == 2.5


class TestMicros:
    def test_micros_to_currency(self):
        assert micros_to_currency(50_000_000) == 50.0
        assert micros_to_currency(None) == 0.0

    def test_currency_to_micros_survives_float_error(self):
        assert currency_to_micros(0.57) == 570000
        assert currency_to_micros(1.1) == 1_100_000

    def test_currency_to_micros_floors(self):
        assert currency_to_micros(0.0000019) == 1


class TestRatios:
    def test_safe_divide_zero_denominator(self):
        assert safe_divide(10, 0) == 0.0

    def test_safe_divide_never_nan(self):
        assert not math.isnan(safe_divide(float("nan"), 3))

    def test_ratio_percent(self):
        assert ratio_percent(8, 300) == pytest.approx(2.6666666, rel=1e-6)
        assert ratio_percent(5, 0) == 0.0

    def test_fraction_percent_roundtrip_values(self):
        assert fraction_to_percent(0.25) == 25.0
        assert percent_to_fraction(25) == 0.25

    def test_normalize_percent(self):
        assert normalize_percent(0.82, kind="fraction") == pytest.approx(82.0)
        assert normalize_percent(82, kind="percent") == 82.0

    def test_normalize_percent_rejects_unknown_kind(self):
        with pytest.raises(ValueError):
            normalize_percent(1, kind="basis_points")
