import asyncio

import pytest
from solders.pubkey import Pubkey

from adrena.perps.anchor import readonly_metas
from adrena.perps.constants import ASSOCIATED_TOKEN_PROGRAM, DEFAULT_PUBKEY, token_by_symbol
from adrena.perps.errors import ConfigurationError, CustodyNotFoundError, TransientNetworkError
from adrena.perps.models import LoadState
from adrena.perps.pdas import Side
from adrena.perps.resolver import AccountResolver

SOL = token_by_symbol("SOL").mint
USDC = token_by_symbol("USDC").mint


class DictMetadata:
    """Decodes account bytes by looking them up; stands in for the IDL decoder."""

    def __init__(self):
        self.decoded = {}

    def store(self, ledger, address, value):
        key = bytes(address)
        ledger.accounts[address] = key
        self.decoded[key] = value

    def decode_account(self, data):
        return self.decoded[bytes(data)]


@pytest.fixture
def metadata():
    return DictMetadata()


@pytest.fixture
def dict_resolver(registry, ledger, metadata, pool, custodies, cortex):
    r = AccountResolver(registry, ledger, metadata)
    r.set_snapshot(pool, custodies, cortex)
    return r


def test_remaining_accounts_order(resolver, custodies):
    usdc, sol, bonk = custodies
    expected = readonly_metas(
        [
            usdc.pubkey, sol.pubkey, bonk.pubkey,
            usdc.oracle, sol.oracle, bonk.oracle,
            # bonk shares one oracle for both roles
            usdc.trade_oracle, sol.trade_oracle,
        ]
    )
    assert resolver.remaining_accounts() == expected


def test_custody_lookups(resolver, custodies):
    assert resolver.custody_by_mint(SOL) is custodies[1]
    assert resolver.custody_by_pubkey(custodies[0].pubkey) is custodies[0]
    with pytest.raises(CustodyNotFoundError):
        resolver.custody_by_mint(token_by_symbol("WBTC").mint)
    with pytest.raises(ConfigurationError):
        resolver.require_custody(Pubkey.new_unique())
    assert resolver.staking_reward_custody is custodies[0]


def test_snapshot_required(registry, ledger):
    empty = AccountResolver(registry, ledger, DictMetadata())
    with pytest.raises(ConfigurationError):
        empty.pool
    with pytest.raises(ConfigurationError):
        empty.cortex


def test_ensure_ata_queues_create_only_when_missing(resolver, registry, ledger):
    owner = Pubkey.new_unique()
    pre = []
    ata = asyncio.run(resolver.ensure_ata(owner, SOL, pre))
    assert ata == registry.associated_token_address(owner, SOL)
    assert [ix.program_id for ix in pre] == [ASSOCIATED_TOKEN_PROGRAM]

    ledger.accounts[ata] = b"\x00" * 165
    pre = []
    asyncio.run(resolver.ensure_ata(owner, SOL, pre))
    assert pre == []


def test_ensure_ata_lookup_failure_is_transient(resolver, ledger):
    async def broken(pubkey):
        raise OSError("connection reset")

    ledger.get_account_info = broken
    with pytest.raises(TransientNetworkError):
        asyncio.run(resolver.ensure_ata(Pubkey.new_unique(), SOL, []))


def test_possible_positions_skip_stable_custodies(resolver):
    owner = Pubkey.new_unique()
    # SOL and BONK, long and short each
    assert len(resolver.possible_position_addresses(owner)) == 4
    assert resolver.position_address(owner, SOL, "long") in resolver.possible_position_addresses(owner)


def test_load_positions_ignores_missing_and_foreign(dict_resolver, metadata, ledger, custodies):
    owner = Pubkey.new_unique()
    sol = custodies[1]
    long_address = dict_resolver.position_address(owner, SOL, Side.LONG)
    short_address = dict_resolver.position_address(owner, SOL, Side.SHORT)
    metadata.store(
        ledger,
        long_address,
        {
            "owner": owner,
            "pool": dict_resolver.pool.pubkey,
            "custody": sol.pubkey,
            "collateralCustody": sol.pubkey,
            "side": 1,
            "price": 10**12,
            "sizeUsd": 10**9,
            "collateralUsd": 10**8,
            "stopLossIsSet": 1,
            "stopLossLimitPrice": 9 * 10**11,
        },
    )
    metadata.store(
        ledger,
        short_address,
        {"owner": owner, "custody": Pubkey.new_unique(), "collateral_custody": sol.pubkey, "side": 2},
    )

    positions = asyncio.run(dict_resolver.load_positions(owner))
    assert [p.pubkey for p in positions] == [long_address]
    assert positions[0].side is Side.LONG
    assert positions[0].stop_loss_is_set
    assert positions[0].size_usd == 10**9


def test_profile_with_zero_creation_time_is_absent(dict_resolver, metadata, ledger, registry):
    owner = Pubkey.new_unique()
    assert asyncio.run(dict_resolver.load_user_profile(owner)).state is LoadState.ABSENT

    metadata.store(ledger, registry.user_profile(owner), {"owner": owner, "nickname": "", "createdAt": 0})
    assert asyncio.run(dict_resolver.load_user_profile(owner)).is_absent

    metadata.store(ledger, registry.user_profile(owner), {"owner": owner, "nickname": "degen", "createdAt": 1_700_000_000})
    result = asyncio.run(dict_resolver.load_user_profile(owner))
    assert result.is_present
    assert result.value.nickname == "degen"


def test_user_staking_locked_stakes(dict_resolver, metadata, ledger, registry):
    owner = Pubkey.new_unique()
    address = registry.user_staking(owner, registry.staking(registry.lm_token_mint))
    metadata.store(
        ledger,
        address,
        {
            "owner": owner,
            "stakingType": 1,
            "liquidStake": {"amount": 500},
            "lockedStakes": [
                {"id": 1, "amount": 10, "stakeTime": 5, "endTime": 10, "lockDuration": 5, "resolved": 0},
                {"id": 0, "amount": 0, "stakeTime": 0},
            ],
        },
    )
    result = asyncio.run(dict_resolver.load_user_staking(owner, registry.lm_token_mint))
    staking = result.value
    assert staking.liquid_stake_amount == 500
    assert [s.index for s in staking.locked_stakes] == [0, 1]
    assert staking.locked_stakes[0].resolved is False


def test_refresh_loads_snapshot(registry, ledger, metadata, custodies):
    resolver = AccountResolver(registry, ledger, metadata)
    usdc, sol, _ = custodies
    metadata.store(ledger, registry.main_pool, {"name": "main-pool", "custodies": [usdc.pubkey, sol.pubkey, DEFAULT_PUBKEY]})
    for c in (usdc, sol):
        metadata.store(
            ledger,
            c.pubkey,
            {
                "mint": c.mint,
                "decimals": c.decimals,
                "isStable": int(c.is_stable),
                "oracle": c.oracle,
                "tradeOracle": c.trade_oracle,
                "pricing": {"maxLeverage": 1_000_000},
            },
        )
    recipient = Pubkey.new_unique()
    metadata.store(ledger, registry.cortex, {"protocolFeeRecipient": recipient, "feeRedistributionMint": USDC})

    asyncio.run(resolver.refresh())
    assert resolver.pool.name == "main-pool"
    assert [c.mint for c in resolver.custodies] == [USDC, SOL]
    assert resolver.custody_by_mint(SOL).max_leverage == 1_000_000
    assert resolver.cortex.protocol_fee_recipient == recipient


def test_refresh_fails_on_missing_custody(registry, ledger, metadata):
    resolver = AccountResolver(registry, ledger, metadata)
    metadata.store(ledger, registry.main_pool, {"name": "main-pool", "custodies": [Pubkey.new_unique()]})
    with pytest.raises(ConfigurationError):
        asyncio.run(resolver.refresh())
