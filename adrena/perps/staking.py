"""Staking tables and early-exit math."""

from __future__ import annotations

import time
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from adrena.perps.fixed_point import native_to_ui
from adrena.perps.models import LockedStake

ALP_STAKE_MULTIPLIERS: Dict[int, Dict[str, float]] = {
    0: {"usdc": 0, "adx": 0},
    90: {"usdc": 0.75, "adx": 1.0},
    180: {"usdc": 1.5, "adx": 1.75},
    360: {"usdc": 2.25, "adx": 2.5},
    540: {"usdc": 3.0, "adx": 3.25},
}

ALP_LOCK_PERIODS: List[int] = [90, 180, 360, 540]

ADX_STAKE_MULTIPLIERS: Dict[int, Dict[str, float]] = {
    0: {"usdc": 1, "adx": 0, "votes": 1},
    90: {"usdc": 1.75, "adx": 1.0, "votes": 1.75},
    180: {"usdc": 2.5, "adx": 1.75, "votes": 2.5},
    360: {"usdc": 3.25, "adx": 2.5, "votes": 3.25},
    540: {"usdc": 4.0, "adx": 3.25, "votes": 4.0},
}

ADX_LOCK_PERIODS: List[int] = [0, 90, 180, 360, 540]

ROUND_MIN_DURATION_SECONDS = 3_600 * 6

EARLY_EXIT_FEE_MIN = 0.15
EARLY_EXIT_FEE_MAX = 0.40


def next_staking_round_start(current_round_start: int) -> int:
    """Earliest second at which the next round can be resolved."""
    return current_round_start + ROUND_MIN_DURATION_SECONDS


def calculate_capped_fee(lock_duration: int, end_time: int, now: Optional[float] = None) -> float:
    """Linear early-exit fee rate on remaining lock time, clamped to ``[0.15, 0.40]``.

    Durations and timestamps are seconds.
    """
    now = time.time() if now is None else now
    if lock_duration <= 0:
        return EARLY_EXIT_FEE_MAX
    elapsed = now - (end_time - lock_duration)
    remaining = lock_duration - elapsed
    rate = remaining / lock_duration
    return min(max(rate, EARLY_EXIT_FEE_MIN), EARLY_EXIT_FEE_MAX)


def estimate_early_exit_fee(stake: LockedStake, decimals: int, now: Optional[float] = None) -> Decimal:
    rate = calculate_capped_fee(stake.lock_duration, stake.end_time, now)
    return native_to_ui(stake.amount, decimals) * Decimal(str(rate))


def active_locked_stakes(stakes: Iterable[LockedStake]) -> List[LockedStake]:
    # empty slots keep stake_time == 0
    return [s for s in stakes if s.stake_time != 0]


__all__ = [
    "ALP_STAKE_MULTIPLIERS",
    "ALP_LOCK_PERIODS",
    "ADX_STAKE_MULTIPLIERS",
    "ADX_LOCK_PERIODS",
    "ROUND_MIN_DURATION_SECONDS",
    "next_staking_round_start",
    "calculate_capped_fee",
    "estimate_early_exit_fee",
    "active_locked_stakes",
]
