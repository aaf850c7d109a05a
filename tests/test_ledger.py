import asyncio

import httpx
import pytest

from adrena.perps.errors import TransientNetworkError
from adrena.perps.ledger import SignatureStatus, SolanaLedger


def test_exhausted_endpoints_raise_transient_error():
    ledger = SolanaLedger(["http://rpc-a.invalid", "http://rpc-b.invalid"], sleep_base=0)
    tried = []

    async def op(_client, url):
        tried.append(url)
        raise httpx.ConnectError("refused")

    async def run():
        try:
            await ledger._call("getSlot", op)
        finally:
            await ledger.close()

    with pytest.raises(TransientNetworkError, match="getSlot"):
        asyncio.run(run())
    assert tried == ["http://rpc-a.invalid", "http://rpc-b.invalid"]


def test_finalized_status_counts_as_confirmed():
    assert SignatureStatus(confirmations=None, confirmation_status="finalized").is_confirmed(10)
    assert not SignatureStatus(confirmations=10).is_confirmed(10)
    assert SignatureStatus(confirmations=11).is_confirmed(10)
