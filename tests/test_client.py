import asyncio

import pytest
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from solders.transaction import VersionedTransaction

from adrena.config import AdrenaConfig
from adrena.perps.anchor import anchor_sighash
from adrena.perps.client import AdrenaClient
from adrena.perps.constants import (
    ASSOCIATED_TOKEN_PROGRAM,
    COMPUTE_BUDGET_PROGRAM,
    NATIVE_MINT,
    TOKEN_PROGRAM,
)
from adrena.perps.errors import ConfigurationError
from adrena.perps.idl import ProgramMetadata
from adrena.perps.ledger import SignatureStatus


@pytest.fixture
def client(ledger, signer, pool, custodies, cortex, monkeypatch):
    monkeypatch.delenv("ADRENA_PROGRAM_ID", raising=False)
    monkeypatch.delenv("ADRENA_POOL_NAME", raising=False)
    c = AdrenaClient(AdrenaConfig(), ledger, signer, ProgramMetadata.offline())
    c.resolver.set_snapshot(pool, custodies, cortex)
    ledger.statuses = [SignatureStatus(confirmations=None, confirmation_status="finalized")]
    return c


def _sent(ledger):
    tx = VersionedTransaction.from_bytes(ledger.broadcasts[-1])
    keys = tx.message.account_keys
    return [(keys[ix.program_id_index], bytes(ix.data)) for ix in tx.message.instructions]


def test_sol_liquidity_is_wrapped_and_unwrapped(client, ledger):
    signature = asyncio.run(client.add_liquidity(NATIVE_MINT, 1_000_000, 0))
    programs = [p for p, _ in _sent(ledger)]
    assert programs == [
        COMPUTE_BUDGET_PROGRAM,
        COMPUTE_BUDGET_PROGRAM,
        ASSOCIATED_TOKEN_PROGRAM,  # WSOL account
        SYSTEM_PROGRAM_ID,         # lamports in
        TOKEN_PROGRAM,             # sync native
        ASSOCIATED_TOKEN_PROGRAM,  # LP token account
        client.registry.program_id,
        TOKEN_PROGRAM,             # close WSOL
    ]
    assert signature == str(VersionedTransaction.from_bytes(ledger.broadcasts[-1]).signatures[0])


def test_first_locked_stake_initializes_user_staking(client, ledger):
    asyncio.run(client.add_locked_stake(client.registry.lm_token_mint, 1_000, 90))
    adrena = [data[:8] for program, data in _sent(ledger) if program == client.registry.program_id]
    assert adrena == [anchor_sighash("initUserStaking"), anchor_sighash("addLockedStake")]


def test_liquid_stake_requires_user_staking(client, ledger):
    with pytest.raises(ConfigurationError, match="User staking account not found"):
        asyncio.run(client.add_liquid_stake(client.registry.lm_token_mint, 1_000))
    assert ledger.broadcasts == []


def test_views_simulate_as_the_signer(client, signer):
    assert client.views.payer == signer.public_key
    assert client.owner == signer.public_key


def test_from_config_requires_a_signer(monkeypatch):
    monkeypatch.delenv("WALLET_SECRET_BASE64", raising=False)
    with pytest.raises(ConfigurationError):
        AdrenaClient.from_config(AdrenaConfig())
