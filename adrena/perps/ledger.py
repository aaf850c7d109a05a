"""Network collaborator: everything the pipeline reads from or writes to the chain."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Sequence, TypeVar

import httpx
from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed, Processed
from solana.rpc.types import TxOpts
from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import VersionedTransaction

from adrena.perps.errors import TransientNetworkError

logger = logging.getLogger(__name__)

R = TypeVar("R")


@dataclass(frozen=True)
class SimulationResult:
    logs: List[str] = field(default_factory=list)
    units_consumed: Optional[int] = None
    return_data: Optional[bytes] = None
    err: Any = None


@dataclass(frozen=True)
class SignatureStatus:
    # None once the slot is rooted
    confirmations: Optional[int]
    err: Any = None
    confirmation_status: Optional[str] = None

    def is_confirmed(self, min_confirmations: int) -> bool:
        if self.confirmation_status == "finalized":
            return True
        return self.confirmations is not None and self.confirmations > min_confirmations


@dataclass(frozen=True)
class BlockhashInfo:
    blockhash: Hash
    last_valid_block_height: int


class Ledger(Protocol):
    async def simulate(self, tx: VersionedTransaction) -> SimulationResult: ...

    async def broadcast(self, raw_tx: bytes) -> str: ...

    async def get_signature_status(self, signature: str) -> Optional[SignatureStatus]: ...

    async def get_latest_blockhash(self) -> BlockhashInfo: ...

    async def get_recent_prioritization_fees(self, accounts: Sequence[Pubkey]) -> List[int]: ...

    async def get_account_info(self, pubkey: Pubkey) -> Optional[bytes]: ...

    async def get_multiple_accounts(self, pubkeys: Sequence[Pubkey]) -> List[Optional[bytes]]: ...


def is_rate_limit(exc: Exception) -> bool:
    s = repr(exc)
    return ("429" in s) or ("Too Many Requests" in s) or ("rate" in s.lower())


def _status_name(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value)
    # solders renders TransactionConfirmationStatus.Finalized
    return text.rsplit(".", 1)[-1].lower()


class SolanaLedger:
    """``Ledger`` over solana-py's ``AsyncClient`` with endpoint rotation.

    Rate limits and RPC exceptions back off on the same endpoint; anything else
    rotates to the next one. Every call is bounded by ``timeout_s``.
    """

    def __init__(
        self,
        endpoints: Sequence[str],
        *,
        timeout_s: float = 10.0,
        attempts_per_endpoint: int = 2,
        sleep_base: float = 0.35,
    ) -> None:
        if not endpoints:
            raise ValueError("no RPC endpoints configured")
        self.endpoints = list(endpoints)
        self.timeout_s = timeout_s
        self.attempts_per_endpoint = attempts_per_endpoint
        self.sleep_base = sleep_base
        self._clients: Dict[str, AsyncClient] = {}
        self._idx = 0

    def _client(self, url: str) -> AsyncClient:
        client = self._clients.get(url)
        if client is None:
            client = AsyncClient(url, timeout=self.timeout_s)
            self._clients[url] = client
        return client

    async def close(self) -> None:
        for client in self._clients.values():
            await client.close()
        self._clients.clear()

    async def _call(self, label: str, op: Callable[[AsyncClient, str], Awaitable[R]]) -> R:
        n = len(self.endpoints)
        idx = self._idx % n
        last_exc: Optional[Exception] = None
        for _ in range(n):
            url = self.endpoints[idx]
            for att in range(self.attempts_per_endpoint):
                try:
                    result = await asyncio.wait_for(op(self._client(url), url), timeout=self.timeout_s)
                    self._idx = idx
                    return result
                except (asyncio.TimeoutError, httpx.HTTPError, SolanaRpcException) as e:
                    last_exc = e
                    if is_rate_limit(e) or isinstance(e, SolanaRpcException):
                        logger.warning(
                            "%s @ %s error %r (attempt %d/%d)",
                            label, url, e, att + 1, self.attempts_per_endpoint,
                        )
                        await asyncio.sleep(self.sleep_base * (2**att))
                        continue
                    logger.warning("%s @ %s error %r; rotating", label, url, e)
                    break
            idx = (idx + 1) % n
        assert last_exc is not None
        raise TransientNetworkError(f"{label} failed on every endpoint", raw=repr(last_exc)) from last_exc

    # -- Ledger ----------------------------------------------------------------
    async def simulate(self, tx: VersionedTransaction) -> SimulationResult:
        async def op(client: AsyncClient, _url: str) -> SimulationResult:
            resp = await client.simulate_transaction(tx, sig_verify=False, commitment=Processed)
            value = resp.value
            ret = value.return_data
            return SimulationResult(
                logs=list(value.logs or []),
                units_consumed=value.units_consumed,
                return_data=bytes(ret.data) if ret is not None else None,
                err=value.err,
            )

        return await self._call("simulate", op)

    async def broadcast(self, raw_tx: bytes) -> str:
        async def op(client: AsyncClient, _url: str) -> str:
            resp = await client.send_raw_transaction(raw_tx, opts=TxOpts(skip_preflight=True, max_retries=0))
            return str(resp.value)

        return await self._call("broadcast", op)

    async def get_signature_status(self, signature: str) -> Optional[SignatureStatus]:
        async def op(client: AsyncClient, _url: str) -> Optional[SignatureStatus]:
            resp = await client.get_signature_statuses([Signature.from_string(signature)])
            status = resp.value[0] if resp.value else None
            if status is None:
                return None
            return SignatureStatus(
                confirmations=status.confirmations,
                err=status.err,
                confirmation_status=_status_name(status.confirmation_status),
            )

        return await self._call("getSignatureStatuses", op)

    async def get_latest_blockhash(self) -> BlockhashInfo:
        async def op(client: AsyncClient, _url: str) -> BlockhashInfo:
            resp = await client.get_latest_blockhash(commitment=Confirmed)
            return BlockhashInfo(resp.value.blockhash, resp.value.last_valid_block_height)

        return await self._call("getLatestBlockhash", op)

    async def get_recent_prioritization_fees(self, accounts: Sequence[Pubkey]) -> List[int]:
        payload = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "getRecentPrioritizationFees",
            "params": [[str(a) for a in accounts]],
        }

        async def op(_client: AsyncClient, url: str) -> List[int]:
            async with httpx.AsyncClient(timeout=self.timeout_s) as http:
                resp = await http.post(url, json=payload)
                resp.raise_for_status()
                body = resp.json()
            if "error" in body:
                raise SolanaRpcException(f"getRecentPrioritizationFees: {body['error']}")
            return [int(row.get("prioritizationFee", 0)) for row in body.get("result") or []]

        return await self._call("getRecentPrioritizationFees", op)

    async def get_account_info(self, pubkey: Pubkey) -> Optional[bytes]:
        async def op(client: AsyncClient, _url: str) -> Optional[bytes]:
            resp = await client.get_account_info(pubkey, commitment=Confirmed)
            return bytes(resp.value.data) if resp.value is not None else None

        return await self._call("getAccountInfo", op)

    async def get_multiple_accounts(self, pubkeys: Sequence[Pubkey]) -> List[Optional[bytes]]:
        async def op(client: AsyncClient, _url: str) -> List[Optional[bytes]]:
            resp = await client.get_multiple_accounts(list(pubkeys), commitment=Confirmed)
            return [bytes(a.data) if a is not None else None for a in resp.value]

        return await self._call("getMultipleAccounts", op)


__all__ = [
    "Ledger",
    "SolanaLedger",
    "SimulationResult",
    "SignatureStatus",
    "BlockhashInfo",
    "is_rate_limit",
]
