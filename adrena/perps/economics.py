"""Local mirror of the program's position math.

Integer arithmetic only. Division truncates toward zero the same way the
program's big-number math does; none of the inputs here are negative so
``//`` matches.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from adrena.perps.fixed_point import (
    BPS,
    PRICE_DECIMALS,
    RATE_DECIMALS,
    USD_DECIMALS,
    native_to_ui,
    ui_to_native,
)
from adrena.perps.models import Custody, Position
from adrena.perps.pdas import Side

SECONDS_PER_HOUR = 3_600


@dataclass(frozen=True)
class PnL:
    profit_usd: int
    loss_usd: int
    borrow_fee_usd: int

    @property
    def net_usd(self) -> int:
        return self.profit_usd - self.loss_usd


def leverage(size_usd: int, collateral_usd: int) -> Decimal:
    if collateral_usd == 0:
        raise ZeroDivisionError("collateral_usd is zero")
    return Decimal(size_usd) / Decimal(collateral_usd)


def leverage_bps(size_usd: int, collateral_usd: int) -> int:
    return size_usd * BPS // collateral_usd


def cumulative_interest(custody: Custody, now: int) -> int:
    """Custody accumulator projected forward to ``now`` (seconds)."""
    state = custody.borrow_rate_state
    total = state.cumulative_interest.value
    if now > state.last_update:
        total += (now - state.last_update) * state.current_rate // SECONDS_PER_HOUR
    return total


def borrow_fee(collateral_custody: Custody, position: Position, now: Optional[int] = None) -> int:
    """Accrued borrow interest in native USD units."""
    now = int(time.time()) if now is None else now
    accrued = cumulative_interest(collateral_custody, now)
    snapshot = position.cumulative_interest_snapshot.value
    position_interest = accrued - snapshot if accrued > snapshot else 0
    interest_usd = position_interest * position.borrow_size_usd // 10**RATE_DECIMALS
    return interest_usd + position.unrealized_interest_usd


def max_profit_usd(
    position: Position,
    collateral_price: Decimal,
    collateral_decimals: int,
    now: Optional[int] = None,
) -> int:
    """Profit cap: locked collateral valued at ``collateral_price``; zero until past ``open_time``."""
    now = int(time.time()) if now is None else now
    if now <= position.open_time:
        return 0
    locked_ui = native_to_ui(position.locked_amount, collateral_decimals)
    return ui_to_native(Decimal(collateral_price) * locked_ui, USD_DECIMALS)


def pnl(
    position: Position,
    exit_price: int,
    interest_usd: int,
    max_profit: Optional[int] = None,
) -> PnL:
    """Net PnL at ``exit_price`` (10-decimal price) after exit fee and borrow fee.

    ``max_profit`` caps a net profit; ``None`` means uncapped.
    """
    entry = position.price
    unrealized_loss = position.exit_fee_usd + interest_usd

    if position.side is Side.LONG:
        profit_diff = exit_price - entry if exit_price > entry else 0
        loss_diff = entry - exit_price if exit_price <= entry else 0
    else:
        profit_diff = entry - exit_price if exit_price < entry else 0
        loss_diff = exit_price - entry if exit_price >= entry else 0

    if profit_diff > 0:
        potential_profit = position.size_usd * profit_diff // entry
        if potential_profit >= unrealized_loss:
            profit = potential_profit - unrealized_loss
            if max_profit is not None and max_profit <= profit:
                profit = max_profit
            return PnL(profit_usd=profit, loss_usd=0, borrow_fee_usd=interest_usd)
        return PnL(profit_usd=0, loss_usd=unrealized_loss - potential_profit, borrow_fee_usd=interest_usd)

    potential_loss = position.size_usd * loss_diff // entry + unrealized_loss
    return PnL(profit_usd=0, loss_usd=potential_loss, borrow_fee_usd=interest_usd)


def liquidation_price(position: Position, custody: Custody, interest_usd: int) -> int:
    """Price (10 decimals) at which margin equals ``size/maxLeverage + liq fee + interest``."""
    entry = position.price
    unrealized_loss = position.liquidation_fee_usd + interest_usd
    max_loss = position.size_usd * BPS // custody.max_leverage + unrealized_loss
    margin = position.collateral_usd

    diff = (max_loss - margin if max_loss >= margin else margin - max_loss) * BPS
    size_scaled = position.size_usd * BPS
    diff = diff * entry // size_scaled

    if position.side is Side.LONG:
        if max_loss >= margin:
            return entry + diff
        return entry - diff if entry > diff else 0

    if max_loss >= margin:
        return entry - diff if entry > diff else 0
    return entry + diff


def break_even_price(
    side: Side,
    entry_price: Decimal,
    exit_fee_usd: Decimal,
    interest_usd: Decimal,
    size_usd: Decimal,
) -> Decimal:
    """Display-only; takes UI decimals."""
    ratio = (Decimal(exit_fee_usd) + Decimal(interest_usd)) / Decimal(size_usd)
    if Side.parse(side) is Side.LONG:
        return Decimal(entry_price) * (1 + ratio)
    return Decimal(entry_price) * (1 - ratio)


@dataclass(frozen=True)
class PositionView:
    """Human-facing figures for one position."""

    position: Position
    side: Side
    initial_leverage: Decimal
    price: Decimal
    size_usd: Decimal
    collateral_usd: Decimal
    break_even_price: Decimal
    borrow_fee_usd: Optional[Decimal] = None
    profit_usd: Optional[Decimal] = None
    loss_usd: Optional[Decimal] = None
    liquidation_price: Optional[Decimal] = None
    stop_loss_limit_price: Optional[Decimal] = None
    stop_loss_close_position_price: Optional[Decimal] = None
    take_profit_limit_price: Optional[Decimal] = None

    @property
    def pnl_usd(self) -> Optional[Decimal]:
        if self.profit_usd is None or self.loss_usd is None:
            return None
        return self.profit_usd - self.loss_usd


def extend_position(
    position: Position,
    custody: Custody,
    collateral_custody: Custody,
    *,
    exit_price: Optional[Decimal] = None,
    collateral_price: Optional[Decimal] = None,
    now: Optional[int] = None,
) -> PositionView:
    """Combine the stored position with locally computed economics.

    PnL needs both prices; without them only the static figures are filled.
    """
    now = int(time.time()) if now is None else now
    price = native_to_ui(position.price, PRICE_DECIMALS)
    size_usd = native_to_ui(position.size_usd, USD_DECIMALS)
    interest = borrow_fee(collateral_custody, position, now)

    view_profit: Optional[Decimal] = None
    view_loss: Optional[Decimal] = None
    if exit_price is not None and collateral_price is not None:
        cap = max_profit_usd(position, collateral_price, collateral_custody.decimals, now)
        result = pnl(position, ui_to_native(exit_price, PRICE_DECIMALS), interest, cap)
        view_profit = native_to_ui(result.profit_usd, USD_DECIMALS)
        view_loss = native_to_ui(result.loss_usd, USD_DECIMALS)

    return PositionView(
        position=position,
        side=position.side,
        initial_leverage=leverage(position.size_usd, position.collateral_usd),
        price=price,
        size_usd=size_usd,
        collateral_usd=native_to_ui(position.collateral_usd, USD_DECIMALS),
        break_even_price=break_even_price(
            position.side,
            price,
            native_to_ui(position.exit_fee_usd, USD_DECIMALS),
            native_to_ui(position.unrealized_interest_usd, USD_DECIMALS),
            size_usd,
        ),
        borrow_fee_usd=native_to_ui(interest, USD_DECIMALS),
        profit_usd=view_profit,
        loss_usd=view_loss,
        liquidation_price=native_to_ui(liquidation_price(position, custody, interest), PRICE_DECIMALS),
        stop_loss_limit_price=(
            native_to_ui(position.stop_loss_limit_price, PRICE_DECIMALS) if position.stop_loss_is_set else None
        ),
        stop_loss_close_position_price=(
            native_to_ui(position.stop_loss_close_position_price, PRICE_DECIMALS)
            if position.stop_loss_is_set
            else None
        ),
        take_profit_limit_price=(
            native_to_ui(position.take_profit_limit_price, PRICE_DECIMALS)
            if position.take_profit_is_set
            else None
        ),
    )


__all__ = [
    "PnL",
    "PositionView",
    "leverage",
    "leverage_bps",
    "cumulative_interest",
    "borrow_fee",
    "max_profit_usd",
    "pnl",
    "liquidation_price",
    "break_even_price",
    "extend_position",
]
