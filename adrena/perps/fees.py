"""Priority-fee and compute-unit estimation."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from solders.instruction import Instruction
from solders.pubkey import Pubkey

from adrena.perps.anchor import compute_budget_ixs, is_compute_budget_ix
from adrena.perps.constants import (
    COMPUTE_UNIT_MARGIN,
    MAX_COMPUTE_UNITS,
    MICRO_LAMPORTS_PER_LAMPORT,
    SOLFLARE_EXTRA_UNITS,
)
from adrena.perps.ledger import Ledger, SimulationResult

logger = logging.getLogger(__name__)

# flat fallback in micro-lamports per compute unit
PRIORITY_FEE_TIERS: Dict[str, int] = {
    "medium": 100_000,
    "high": 250_000,
    "ultra": 500_000,
}

# percentile in basis points of the recent fee distribution
PERCENTILE_BY_TIER: Dict[str, int] = {
    "medium": 3_000,
    "high": 5_000,
    "ultra": 7_500,
}

Simulate = Callable[[Sequence[Instruction], Pubkey], Awaitable[SimulationResult]]


@dataclass(frozen=True)
class FeeEstimate:
    priority_fee_rate: int
    compute_unit_ceiling: int
    units_consumed: int

    @property
    def max_priority_fee_lamports(self) -> int:
        return self.priority_fee_rate * self.compute_unit_ceiling // MICRO_LAMPORTS_PER_LAMPORT


def recent_fee_percentile(fees: Sequence[int], percentile_bps: int) -> int:
    """Mean of the fees at or above the percentile rank."""
    if not fees:
        raise ValueError("no recent prioritization fees")
    ordered = sorted(int(f) for f in fees)
    start = min(len(ordered) - 1, len(ordered) * percentile_bps // 10_000)
    tail = ordered[start:]
    return sum(tail) // len(tail)


def apply_fee_cap(rate: int, compute_units: int, max_lamports: Optional[int]) -> int:
    """Lower ``rate`` so that ``rate * compute_units`` stays within ``max_lamports``. Never raises it."""
    if max_lamports is None or compute_units <= 0:
        return rate
    if rate * compute_units / MICRO_LAMPORTS_PER_LAMPORT > max_lamports:
        return max_lamports * MICRO_LAMPORTS_PER_LAMPORT // compute_units
    return rate


def writable_accounts(instructions: Sequence[Instruction]) -> List[Pubkey]:
    seen: List[Pubkey] = []
    for ix in instructions:
        for meta in ix.accounts:
            if meta.is_writable and meta.pubkey not in seen:
                seen.append(meta.pubkey)
    return seen


class FeeEstimator:
    """Works out the priority-fee rate and compute ceiling for one draft.

    A failed fee lookup falls back to the tier's flat fee. A failed simulation
    propagates; nothing is sent without a measured compute figure.
    """

    def __init__(
        self,
        ledger: Ledger,
        simulate: Simulate,
        *,
        tier: str = "high",
        max_priority_fee_lamports: Optional[int] = None,
    ) -> None:
        if tier not in PRIORITY_FEE_TIERS:
            raise ValueError(f"unknown priority fee tier {tier!r}")
        self.ledger = ledger
        self.simulate = simulate
        self.tier = tier
        self.max_priority_fee_lamports = max_priority_fee_lamports

    async def priority_fee_rate(self, instructions: Sequence[Instruction]) -> int:
        flat = PRIORITY_FEE_TIERS[self.tier]
        try:
            fees = await self.ledger.get_recent_prioritization_fees(writable_accounts(instructions))
            rate = recent_fee_percentile(fees, PERCENTILE_BY_TIER[self.tier])
        except Exception as exc:  # noqa: BLE001
            logger.warning("Priority fee lookup failed (%r); using %s flat fee %d", exc, self.tier, flat)
            return flat
        logger.debug("Priority fee %s percentile: %d micro-lamports", self.tier, rate)
        return rate

    async def estimate(
        self,
        instructions: Sequence[Instruction],
        payer: Pubkey,
        *,
        wallet_name: str = "",
    ) -> FeeEstimate:
        body = [ix for ix in instructions if not is_compute_budget_ix(ix)]
        rate = await self.priority_fee_rate(body)

        draft = compute_budget_ixs(MAX_COMPUTE_UNITS, rate) + body
        simulation = await self.simulate(draft, payer)
        units = simulation.units_consumed or MAX_COMPUTE_UNITS

        ceiling = math.ceil(units * COMPUTE_UNIT_MARGIN)
        if wallet_name == "Solflare":
            ceiling += SOLFLARE_EXTRA_UNITS
        ceiling = min(ceiling, MAX_COMPUTE_UNITS)

        capped = apply_fee_cap(rate, ceiling, self.max_priority_fee_lamports)
        if capped != rate:
            logger.info("Priority fee capped from %d to %d micro-lamports", rate, capped)
        return FeeEstimate(priority_fee_rate=capped, compute_unit_ceiling=ceiling, units_consumed=units)


__all__ = [
    "PRIORITY_FEE_TIERS",
    "PERCENTILE_BY_TIER",
    "FeeEstimate",
    "FeeEstimator",
    "recent_fee_percentile",
    "apply_fee_cap",
    "writable_accounts",
]
