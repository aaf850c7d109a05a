"""Scaled-integer helpers shared by builders, views and position math.

Every amount crosses the program boundary as an integer scaled by a per-entity
decimal count. Human input is truncated on the way in and converted exactly on
the way out.
"""

from __future__ import annotations

from decimal import ROUND_FLOOR, Decimal
from typing import Tuple, Union

PRICE_DECIMALS = 10
USD_DECIMALS = 6
RATE_DECIMALS = 9
LP_DECIMALS = 6
SOL_DECIMALS = 9
# ADX, the lm token
LM_DECIMALS = 6
BPS = 10_000

U64_MAX = (1 << 64) - 1

Number = Union[int, str, float, Decimal]


def _to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        # str() keeps the shortest repr; Decimal(float) would expose binary noise
        return Decimal(str(value))
    return Decimal(value)


def ui_to_native(value: Number, decimals: int) -> int:
    """``floor(value × 10^decimals)``."""
    scaled = _to_decimal(value).scaleb(decimals)
    return int(scaled.to_integral_value(rounding=ROUND_FLOOR))


def native_to_ui(amount: int, decimals: int) -> Decimal:
    """``amount × 10^-decimals`` as an exact ``Decimal``."""
    return Decimal(int(amount)).scaleb(-decimals)


def ui_leverage_to_native(leverage: Number) -> int:
    # 10_000 = x1, 500_000 = x50
    return ui_to_native(leverage, 4)


def native_leverage_to_ui(leverage: int) -> Decimal:
    return Decimal(int(leverage)) / BPS


def u128_from_split(high: int, low: int) -> int:
    return (int(high) << 64) + int(low)


def u128_to_split(value: int) -> Tuple[int, int]:
    """Return ``(high, low)``."""
    if value < 0:
        raise ValueError("u128 cannot be negative")
    return value >> 64, value & U64_MAX


def div_round(numerator: int, denominator: int) -> int:
    """Integer division rounding half away from zero."""
    if denominator == 0:
        raise ZeroDivisionError("div_round by zero")
    negative = (numerator < 0) != (denominator < 0)
    q, r = divmod(abs(numerator), abs(denominator))
    if 2 * r >= abs(denominator):
        q += 1
    return -q if negative else q


def apply_slippage(amount: int, percentage: Number) -> int:
    """Shift ``amount`` by ``percentage`` percent (``-2`` for -2%, ``5`` for 5%).

    The percentage is scaled by 10_000 so up to four decimals survive.
    """
    pct = _to_decimal(percentage)
    pct_scaled = int((abs(pct) * BPS).to_integral_value(rounding=ROUND_FLOOR))
    delta = div_round(amount * pct_scaled, BPS * 100)
    return amount - delta if pct < 0 else amount + delta


def ceil_div(numerator: int, denominator: int) -> int:
    return -(-numerator // denominator)


__all__ = [
    "PRICE_DECIMALS",
    "USD_DECIMALS",
    "RATE_DECIMALS",
    "LP_DECIMALS",
    "SOL_DECIMALS",
    "LM_DECIMALS",
    "BPS",
    "ui_to_native",
    "native_to_ui",
    "ui_leverage_to_native",
    "native_leverage_to_ui",
    "u128_from_split",
    "u128_to_split",
    "div_round",
    "apply_slippage",
    "ceil_div",
]
