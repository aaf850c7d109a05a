from decimal import Decimal

import pytest
from solders.pubkey import Pubkey

from adrena.perps.economics import (
    borrow_fee,
    break_even_price,
    extend_position,
    leverage,
    liquidation_price,
    max_profit_usd,
    pnl,
)
from adrena.perps.models import BorrowRateState, Custody, Position, U128Split
from adrena.perps.pdas import Side

ENTRY = 100 * 10**10
SIZE = 1_000 * 10**6


def _position(side=Side.LONG, collateral_usd=100 * 10**6, **kwargs):
    return Position(
        pubkey=Pubkey.new_unique(),
        owner=Pubkey.new_unique(),
        pool=Pubkey.new_unique(),
        custody=Pubkey.new_unique(),
        collateral_custody=Pubkey.new_unique(),
        side=side,
        price=ENTRY,
        size_usd=SIZE,
        collateral_usd=collateral_usd,
        **kwargs,
    )


def _custody(max_leverage=100_000, **kwargs):
    return Custody(
        pubkey=Pubkey.new_unique(),
        mint=Pubkey.new_unique(),
        decimals=6,
        is_stable=True,
        oracle=Pubkey.new_unique(),
        trade_oracle=Pubkey.new_unique(),
        max_leverage=max_leverage,
        **kwargs,
    )


def test_liquidation_at_entry_when_margin_equals_max_loss():
    assert liquidation_price(_position(), _custody(), 0) == ENTRY


def test_liquidation_price_moves_against_the_position():
    long = _position(Side.LONG, liquidation_fee_usd=10 * 10**6)
    short = _position(Side.SHORT, liquidation_fee_usd=10 * 10**6)
    assert liquidation_price(long, _custody(), 0) == 101 * 10**10
    assert liquidation_price(short, _custody(), 0) == 99 * 10**10


def test_extra_margin_pushes_long_liquidation_below_entry():
    assert liquidation_price(_position(collateral_usd=200 * 10**6), _custody(), 0) == 90 * 10**10
    assert liquidation_price(_position(Side.SHORT, collateral_usd=200 * 10**6), _custody(), 0) == 110 * 10**10


def test_liquidation_price_floors_at_zero():
    position = _position(collateral_usd=10_000 * 10**6)
    assert liquidation_price(position, _custody(), 0) == 0


def test_pnl_long_profit_after_fees():
    position = _position(exit_fee_usd=1 * 10**6)
    result = pnl(position, 110 * 10**10, interest_usd=2 * 10**6)
    # 10% move on 1000 USD size, minus 3 USD of fees
    assert result.profit_usd == 97 * 10**6
    assert result.loss_usd == 0
    assert result.net_usd == 97 * 10**6


def test_pnl_profit_is_capped():
    result = pnl(_position(), 110 * 10**10, 0, max_profit=50 * 10**6)
    assert result.profit_usd == 50 * 10**6


def test_pnl_short_loss_includes_fees():
    position = _position(Side.SHORT, exit_fee_usd=1 * 10**6)
    result = pnl(position, 105 * 10**10, interest_usd=0)
    assert result.loss_usd == 51 * 10**6


def test_small_profit_eaten_by_fees_is_a_loss():
    position = _position(exit_fee_usd=5 * 10**6)
    result = pnl(position, 1002 * 10**9, interest_usd=0)
    # 0.2% of 1000 = 2 USD profit, 5 USD fee
    assert result.profit_usd == 0
    assert result.loss_usd == 3 * 10**6


def test_borrow_fee_accrues_since_snapshot():
    custody = _custody(
        borrow_rate_state=BorrowRateState(
            current_rate=0,
            cumulative_interest=U128Split(0, 2 * 10**9),
            last_update=1_000,
        )
    )
    position = _position(
        borrow_size_usd=100 * 10**6,
        cumulative_interest_snapshot=U128Split(0, 1 * 10**9),
        unrealized_interest_usd=5,
    )
    assert borrow_fee(custody, position, now=1_000) == 100 * 10**6 + 5


def test_borrow_fee_projects_current_rate_forward():
    custody = _custody(
        borrow_rate_state=BorrowRateState(current_rate=10**8, cumulative_interest=U128Split(), last_update=0)
    )
    position = _position(borrow_size_usd=100 * 10**6)
    # one hour at 10% per hour
    assert borrow_fee(custody, position, now=3_600) == 10 * 10**6


def test_max_profit_zero_before_open_time():
    position = _position(locked_amount=5 * 10**6, open_time=1_000)
    assert max_profit_usd(position, Decimal("2"), 6, now=1_000) == 0
    assert max_profit_usd(position, Decimal("2"), 6, now=1_001) == 10 * 10**6


def test_break_even_and_leverage():
    assert break_even_price(Side.LONG, Decimal(100), Decimal(1), Decimal(1), Decimal(1000)) == Decimal("100.2")
    assert break_even_price("short", Decimal(100), Decimal(1), Decimal(1), Decimal(1000)) == Decimal("99.8")
    assert leverage(SIZE, 100 * 10**6) == 10
    with pytest.raises(ZeroDivisionError):
        leverage(SIZE, 0)


def test_extend_position_without_prices_skips_pnl():
    position = _position(stop_loss_is_set=True, stop_loss_limit_price=95 * 10**10)
    view = extend_position(position, _custody(), _custody(), now=0)
    assert view.initial_leverage == 10
    assert view.liquidation_price == 100
    assert view.profit_usd is None
    assert view.pnl_usd is None
    assert view.stop_loss_limit_price == 95
    assert view.take_profit_limit_price is None


def test_extend_position_with_prices():
    position = _position(locked_amount=1_000 * 10**6, open_time=0)
    view = extend_position(
        position, _custody(), _custody(), exit_price=Decimal("110"), collateral_price=Decimal("1"), now=10
    )
    assert view.profit_usd == 100
    assert view.pnl_usd == 100
