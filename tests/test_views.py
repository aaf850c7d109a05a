import asyncio
from decimal import Decimal

import pytest
from solders.compute_budget import set_compute_unit_limit
from solders.pubkey import Pubkey

from adrena.perps import layouts
from adrena.perps.anchor import anchor_sighash
from adrena.perps.constants import token_by_symbol
from adrena.perps.errors import ConfigurationError, UnknownError
from adrena.perps.ledger import SimulationResult
from adrena.perps.models import Position
from adrena.perps.pdas import Side
from adrena.perps.views import ProgramViews


class Recorder:
    def __init__(self, result):
        self.result = result
        self.calls = []

    async def __call__(self, instructions, payer):
        self.calls.append((list(instructions), payer))
        return self.result


def _views(builder, result):
    simulate = Recorder(result)
    return ProgramViews(builder, simulate, Pubkey.new_unique()), simulate


def _position(custodies):
    sol = custodies[1]
    return Position(
        pubkey=Pubkey.new_unique(),
        owner=Pubkey.new_unique(),
        pool=Pubkey.new_unique(),
        custody=sol.pubkey,
        collateral_custody=sol.pubkey,
        side=Side.LONG,
        price=100 * 10**10,
        size_usd=10**9,
        collateral_usd=10**8,
    )


def test_integer_views_decode_little_endian_return_data(builder, custodies):
    views, simulate = _views(builder, SimulationResult(return_data=(123_456_789).to_bytes(8, "little")))
    price = asyncio.run(views.get_liquidation_price(_position(custodies), add_collateral=5))
    assert price == 123_456_789

    (ix,), _ = simulate.calls[0]
    assert bytes(ix.data)[:8] == anchor_sighash("getLiquidationPrice")
    args = layouts.GET_LIQUIDATION_PRICE.parse(bytes(ix.data)[8:])
    assert (args.add_collateral, args.remove_collateral) == (5, 0)


def test_aum_view_carries_remaining_accounts(builder, resolver):
    views, simulate = _views(builder, SimulationResult(return_data=(10**12).to_bytes(16, "little")))
    assert asyncio.run(views.get_assets_under_management()) == 10**12
    (ix,), _ = simulate.calls[0]
    remaining = resolver.remaining_accounts()
    assert list(ix.accounts[-len(remaining):]) == remaining


def test_view_without_return_data_fails(builder):
    views, _ = _views(builder, SimulationResult(logs=["Program log: nothing"]))
    with pytest.raises(UnknownError):
        asyncio.run(views.get_lp_token_price())


def test_zero_liquidity_quote_is_refused(builder):
    views, simulate = _views(builder, SimulationResult())
    with pytest.raises(ConfigurationError):
        asyncio.run(views.get_add_liquidity_amount_and_fee(token_by_symbol("USDC").mint, 0))
    assert simulate.calls == []


def test_claimable_alp_rewards_from_logs(builder, registry):
    logs = [
        "Program log: Transfer rewards amount: 1000000",
        "Program log: Transfer lm_rewards_token_amount: 2500000",
        "Program log: Mint 3000000 LM tokens for ecosystem bucket",
        "Program log: Transfer rewards amount: 2000000",
    ]
    views, simulate = _views(builder, SimulationResult(logs=logs))
    owner = Pubkey.new_unique()
    rewards = asyncio.run(views.simulate_claim_stakes(owner, registry.lp_token_mint))

    assert rewards.pending_usdc_rewards == Decimal("2")
    assert rewards.pending_adx_rewards == Decimal("2.5")
    assert rewards.pending_genesis_adx_rewards == Decimal("3")

    instructions, payer = simulate.calls[0]
    assert payer == owner
    assert instructions[0] == set_compute_unit_limit(1_400_000)
    assert bytes(instructions[-1].data)[:8] == anchor_sighash("claimStakes")


def test_claimable_adx_rewards_from_logs(builder, registry):
    logs = [
        "Program log: Transfer rewards amount: 5000000",
        "Program log: Distribute 7000000 lm rewards",
        "Program log: Mint 9000000 LM tokens for ecosystem bucket",
    ]
    views, _ = _views(builder, SimulationResult(logs=logs))
    rewards = asyncio.run(views.simulate_claim_stakes(Pubkey.new_unique(), registry.lm_token_mint))
    assert rewards.pending_usdc_rewards == Decimal("5")
    assert rewards.pending_adx_rewards == Decimal("7")
    # genesis rewards only exist for ALP
    assert rewards.pending_genesis_adx_rewards == 0


def test_no_reward_logs_means_nothing_pending(builder, registry):
    views, _ = _views(builder, SimulationResult(logs=[]))
    rewards = asyncio.run(views.simulate_claim_stakes(Pubkey.new_unique(), registry.lp_token_mint))
    assert rewards.pending_usdc_rewards == 0
    assert rewards.pending_adx_rewards == 0
