import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction

from adrena.perps.constants import DEFAULT_PUBKEY, token_by_symbol
from adrena.perps.idl import ProgramMetadata
from adrena.perps.ledger import BlockhashInfo, SimulationResult
from adrena.perps.models import Cortex, Custody, Pool
from adrena.perps.pdas import AddressRegistry
from adrena.perps.builders import InstructionBuilder
from adrena.perps.resolver import AccountResolver
from adrena.perps.submit import SubmissionEngine


class FakeLedger:
    """In-memory ledger. Queued simulation results and statuses are consumed in order."""

    def __init__(self):
        self.accounts = {}
        self.simulations = []
        self.default_simulation = SimulationResult(logs=[], units_consumed=100_000)
        self.simulated = []
        self.broadcasts = []
        self.broadcast_errors = []
        self.statuses = []
        self.fees = [1_000] * 10
        self.fee_requests = []

    async def simulate(self, tx):
        self.simulated.append(tx)
        if self.simulations:
            item = self.simulations.pop(0)
            if isinstance(item, Exception):
                raise item
            return item
        return self.default_simulation

    async def broadcast(self, raw_tx):
        self.broadcasts.append(raw_tx)
        if self.broadcast_errors:
            raise self.broadcast_errors.pop(0)
        return str(VersionedTransaction.from_bytes(raw_tx).signatures[0])

    async def get_signature_status(self, signature):
        if not self.statuses:
            return None
        if len(self.statuses) > 1:
            return self.statuses.pop(0)
        return self.statuses[0]

    async def get_latest_blockhash(self):
        return BlockhashInfo(Hash.default(), 100)

    async def get_recent_prioritization_fees(self, accounts):
        self.fee_requests.append(list(accounts))
        if isinstance(self.fees, Exception):
            raise self.fees
        return list(self.fees)

    async def get_account_info(self, pubkey):
        return self.accounts.get(pubkey)

    async def get_multiple_accounts(self, pubkeys):
        return [self.accounts.get(p) for p in pubkeys]


class FakeSigner:
    def __init__(self, keypair=None, wallet_name="", decline=False):
        self.keypair = keypair or Keypair()
        self._wallet_name = wallet_name
        self.decline = decline
        self.signed = 0

    @property
    def public_key(self):
        return self.keypair.pubkey()

    @property
    def wallet_name(self):
        return self._wallet_name

    async def sign(self, message):
        if self.decline:
            raise RuntimeError("User rejected the request.")
        self.signed += 1
        return VersionedTransaction(message, [self.keypair])


def make_custody(registry, symbol, *, stable=False, shared_oracle=False, max_leverage=1_000_000):
    info = token_by_symbol(symbol)
    oracle = Pubkey.new_unique()
    return Custody(
        pubkey=registry.custody(info.mint),
        mint=info.mint,
        decimals=info.decimals,
        is_stable=stable,
        oracle=oracle,
        trade_oracle=oracle if shared_oracle else Pubkey.new_unique(),
        max_leverage=max_leverage,
    )


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def signer():
    return FakeSigner()


@pytest.fixture
def registry():
    return AddressRegistry()


@pytest.fixture
def custodies(registry):
    return [
        make_custody(registry, "USDC", stable=True),
        make_custody(registry, "SOL"),
        make_custody(registry, "BONK", shared_oracle=True),
    ]


@pytest.fixture
def pool(registry, custodies):
    return Pool(registry.main_pool, "main-pool", tuple(c.pubkey for c in custodies) + (DEFAULT_PUBKEY,))


@pytest.fixture
def cortex():
    return Cortex(protocol_fee_recipient=Pubkey.new_unique(), fee_redistribution_mint=token_by_symbol("USDC").mint)


@pytest.fixture
def resolver(registry, ledger, pool, custodies, cortex):
    r = AccountResolver(registry, ledger, ProgramMetadata.offline())
    r.set_snapshot(pool, custodies, cortex)
    return r


@pytest.fixture
def builder(registry, resolver):
    return InstructionBuilder(registry, resolver, resolver.metadata)


@pytest.fixture
def engine(ledger, signer):
    return SubmissionEngine(
        ledger,
        signer,
        confirm_timeout_s=0.2,
        poll_interval_s=0.01,
        min_confirmations=10,
        blockhash_retry_limit=2,
        blockhash_retry_delay_s=0,
    )
