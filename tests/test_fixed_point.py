from decimal import Decimal

import pytest

from adrena.perps.fixed_point import (
    apply_slippage,
    ceil_div,
    div_round,
    native_leverage_to_ui,
    native_to_ui,
    u128_from_split,
    u128_to_split,
    ui_leverage_to_native,
    ui_to_native,
)


def test_ui_to_native_scales_and_truncates():
    assert ui_to_native("100.0", 6) == 100_000_000
    assert ui_to_native(1.23456789, 6) == 1_234_567
    assert ui_to_native(Decimal("0.0000009"), 6) == 0
    assert ui_to_native(0.1, 9) == 100_000_000


def test_native_to_ui_is_exact():
    assert native_to_ui(1_234_567, 6) == Decimal("1.234567")
    assert native_to_ui(10**10, 10) == 1


def test_leverage_is_four_decimal_bps():
    assert ui_leverage_to_native(5.0) == 50_000
    assert ui_leverage_to_native("1.5") == 15_000
    assert native_leverage_to_ui(500_000) == 50


def test_u128_split_roundtrip():
    value = (7 << 64) + 42
    assert u128_to_split(value) == (7, 42)
    assert u128_from_split(7, 42) == value
    with pytest.raises(ValueError):
        u128_to_split(-1)


def test_div_round_half_away_from_zero():
    assert div_round(5, 2) == 3
    assert div_round(4, 3) == 1
    assert div_round(-5, 2) == -3
    with pytest.raises(ZeroDivisionError):
        div_round(1, 0)


def test_apply_slippage():
    assert apply_slippage(1_000_000, 0.3) == 1_003_000
    assert apply_slippage(1_000_000, -0.3) == 997_000
    assert apply_slippage(1_000_000, 0) == 1_000_000


def test_ceil_div():
    assert ceil_div(10, 3) == 4
    assert ceil_div(9, 3) == 3
