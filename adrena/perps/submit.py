"""Submission engine: estimate, sign, broadcast and confirm one transaction.

Stages run strictly in order::

    BUILT -> FEE_ESTIMATED -> SIGNED -> BROADCAST -> CONFIRMED | EXPIRED | REJECTED

Confirmation polling re-broadcasts the same signed bytes, so the signature
never changes once the transaction has been signed.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Protocol, Sequence, Set

from solders.hash import Hash
from solders.instruction import Instruction
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import VersionedTransaction

from adrena.config import AdrenaConfig
from adrena.core.logging import log
from adrena.perps.anchor import compute_budget_ixs, is_compute_budget_ix
from adrena.perps.errors import (
    AdrenaError,
    ExpiredError,
    ProgramErrorTable,
    SimulationRejectedError,
    TransientNetworkError,
    UserDeclinedSignatureError,
    stringify_error,
    translate_error,
)
from adrena.perps.fees import FeeEstimate, FeeEstimator
from adrena.perps.ledger import Ledger, SimulationResult
from adrena.perps.signer import Signer


class SubmissionStage(str, Enum):
    BUILT = "built"
    FEE_ESTIMATED = "fee_estimated"
    SIGNED = "signed"
    BROADCAST = "broadcast"
    CONFIRMED = "confirmed"
    EXPIRED = "expired"
    REJECTED = "rejected"

    @property
    def terminal(self) -> bool:
        return self in (SubmissionStage.CONFIRMED, SubmissionStage.EXPIRED, SubmissionStage.REJECTED)


@dataclass(frozen=True)
class ProgressEvent:
    stage: SubmissionStage
    signature: Optional[str] = None
    detail: Optional[str] = None


class ProgressObserver(Protocol):
    def __call__(self, event: ProgressEvent) -> None: ...


def _simulation_text(result: SimulationResult) -> str:
    return "\n".join([stringify_error(result.err), *result.logs])


class SubmissionEngine:
    def __init__(
        self,
        ledger: Ledger,
        signer: Signer,
        *,
        error_table: Optional[ProgramErrorTable] = None,
        estimator: Optional[FeeEstimator] = None,
        priority_fee_option: str = "high",
        max_priority_fee_lamports: Optional[int] = None,
        confirm_timeout_s: float = 30.0,
        poll_interval_s: float = 0.5,
        min_confirmations: int = 10,
        blockhash_retry_limit: int = 10,
        blockhash_retry_delay_s: float = 0.05,
    ) -> None:
        self.ledger = ledger
        self.signer = signer
        self.error_table = error_table or ProgramErrorTable()
        self.estimator = estimator or FeeEstimator(
            ledger,
            self.simulate,
            tier=priority_fee_option,
            max_priority_fee_lamports=max_priority_fee_lamports,
        )
        self.confirm_timeout_s = confirm_timeout_s
        self.poll_interval_s = poll_interval_s
        self.min_confirmations = min_confirmations
        self.blockhash_retry_limit = blockhash_retry_limit
        self.blockhash_retry_delay_s = blockhash_retry_delay_s
        self._pending: Set["asyncio.Future[str]"] = set()

    @classmethod
    def from_config(
        cls,
        ledger: Ledger,
        signer: Signer,
        config: AdrenaConfig,
        error_table: Optional[ProgramErrorTable] = None,
    ) -> "SubmissionEngine":
        return cls(
            ledger,
            signer,
            error_table=error_table,
            priority_fee_option=config.priority_fee_option,
            max_priority_fee_lamports=config.max_priority_fee_lamports,
            confirm_timeout_s=config.confirm_timeout_s,
            poll_interval_s=config.poll_interval_s,
            min_confirmations=config.min_confirmations,
            blockhash_retry_limit=config.blockhash_retry_limit,
            blockhash_retry_delay_s=config.blockhash_retry_delay_s,
        )


    # ------------------------------------------------------------------
    # Simulation
    # ------------------------------------------------------------------
    async def _latest_blockhash(self) -> Hash:
        attempt = 0
        while True:
            attempt += 1
            try:
                info = await self.ledger.get_latest_blockhash()
            except Exception as exc:  # noqa: BLE001
                error = translate_error(exc, self.error_table)
                if attempt <= self.blockhash_retry_limit:
                    log.debug(
                        f"Blockhash fetch retry {attempt}/{self.blockhash_retry_limit}: {error.message}",
                        source="SubmissionEngine",
                    )
                    await asyncio.sleep(self.blockhash_retry_delay_s)
                    continue
                raise ExpiredError("Blockhash not available", raw=error.raw) from exc
            return info.blockhash

    async def _compile(self, instructions: Sequence[Instruction], payer: Pubkey) -> MessageV0:
        return MessageV0.try_compile(
            payer=payer,
            instructions=list(instructions),
            address_lookup_table_accounts=[],
            recent_blockhash=await self._latest_blockhash(),
        )

    async def simulate(self, instructions: Sequence[Instruction], payer: Pubkey) -> SimulationResult:
        """Simulate unsigned; transient failures are retried, any other failure raises."""
        attempt = 0
        while True:
            attempt += 1
            message = await self._compile(instructions, payer)
            unsigned = VersionedTransaction.populate(
                message, [Signature.default()] * message.header.num_required_signatures
            )
            try:
                result = await self.ledger.simulate(unsigned)
            except Exception as exc:  # noqa: BLE001
                error = translate_error(exc, self.error_table)
            else:
                if result.err is None:
                    return result
                error = translate_error(_simulation_text(result), self.error_table)

            if isinstance(error, TransientNetworkError):
                if attempt <= self.blockhash_retry_limit:
                    log.debug(
                        f"Simulation retry {attempt}/{self.blockhash_retry_limit}: {error.message}",
                        source="SubmissionEngine",
                    )
                    await asyncio.sleep(self.blockhash_retry_delay_s)
                    continue
                raise ExpiredError(error.message, raw=error.raw) from error
            raise SimulationRejectedError(error.message, raw=error.raw) from error

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------
    async def submit(
        self,
        instructions: Sequence[Instruction],
        *,
        observer: Optional[ProgressObserver] = None,
    ) -> str:
        """Run one transaction through every stage and return its confirmed signature.

        Every failure is raised as an :class:`AdrenaError` after a terminal
        event. Once the first broadcast has gone out, cancelling the caller
        does not stop confirmation; the observer still gets the outcome.
        """

        def emit(stage: SubmissionStage, signature: Optional[str] = None, detail: Optional[str] = None) -> None:
            if observer is not None:
                observer(ProgressEvent(stage, signature, detail))

        payer = self.signer.public_key
        body = [ix for ix in instructions if not is_compute_budget_ix(ix)]
        signature: Optional[str] = None
        emit(SubmissionStage.BUILT)

        try:
            estimate = await self.estimator.estimate(body, payer, wallet_name=self.signer.wallet_name)
            log.info(
                f"Priority fee {estimate.priority_fee_rate} micro-lamports, "
                f"compute ceiling {estimate.compute_unit_ceiling} ({estimate.units_consumed} used)",
                source="SubmissionEngine",
            )
            emit(SubmissionStage.FEE_ESTIMATED)

            tx = await self._sign(self.with_compute_budget(body, estimate), payer)
            signature = str(tx.signatures[0])
            raw_tx = bytes(tx)
            emit(SubmissionStage.SIGNED, signature)

            await self._broadcast(raw_tx, signature, attempt=1)
        except Exception as exc:  # noqa: BLE001
            error = self._terminal(exc, signature, emit)
            if error is exc:
                raise
            raise error from exc
        emit(SubmissionStage.BROADCAST, signature)

        confirmation = asyncio.ensure_future(self._confirm(raw_tx, signature, emit))
        self._pending.add(confirmation)
        confirmation.add_done_callback(self._settled)
        return await asyncio.shield(confirmation)

    def _terminal(self, exc: Exception, signature: Optional[str], emit) -> AdrenaError:
        error = translate_error(exc, self.error_table).with_signature(signature)
        stage = SubmissionStage.EXPIRED if isinstance(error, ExpiredError) else SubmissionStage.REJECTED
        emit(stage, signature, error.message)
        return error

    def _settled(self, task: "asyncio.Future[str]") -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            # outcome already reported through the observer
            log.debug(f"Confirmation ended: {task.exception()!r}", source="SubmissionEngine")

    @staticmethod
    def with_compute_budget(body: Sequence[Instruction], estimate: FeeEstimate) -> List[Instruction]:
        return compute_budget_ixs(estimate.compute_unit_ceiling, estimate.priority_fee_rate) + list(body)

    async def _sign(self, instructions: List[Instruction], payer: Pubkey) -> VersionedTransaction:
        message = await self._compile(instructions, payer)
        try:
            return await self.signer.sign(message)
        except Exception as exc:  # noqa: BLE001
            log.info(f"Signature declined: {exc!r}", source="SubmissionEngine")
            raise UserDeclinedSignatureError("User rejected the request", raw=repr(exc)) from exc

    async def _broadcast(self, raw_tx: bytes, signature: str, attempt: int) -> None:
        """Send the signed bytes; a transient failure is left for the next poll to resend."""
        try:
            await self.ledger.broadcast(raw_tx)
        except Exception as exc:  # noqa: BLE001
            error = translate_error(exc, self.error_table)
            if not isinstance(error, TransientNetworkError):
                raise error.with_signature(signature) from exc
            log.warning(f"Broadcast attempt {attempt} failed: {error.message}", source="SubmissionEngine")
            return
        log.debug(f"Broadcast attempt {attempt} for {signature}", source="SubmissionEngine")

    async def _confirm(self, raw_tx: bytes, signature: str, emit) -> str:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.confirm_timeout_s
        attempt = 1
        try:
            while loop.time() < deadline:
                try:
                    status = await self.ledger.get_signature_status(signature)
                except Exception as exc:  # noqa: BLE001
                    log.warning(f"Status poll failed: {exc!r}", source="SubmissionEngine")
                    status = None

                if status is not None and status.err is not None:
                    raise translate_error(status.err, self.error_table).with_signature(signature)

                if status is not None and status.is_confirmed(self.min_confirmations):
                    log.success(f"Transaction confirmed: {signature}", source="SubmissionEngine")
                    emit(SubmissionStage.CONFIRMED, signature)
                    return signature

                attempt += 1
                await self._broadcast(raw_tx, signature, attempt)
                remaining = deadline - loop.time()
                if remaining > 0:
                    await asyncio.sleep(min(self.poll_interval_s, remaining))

            log.warning(
                f"Transaction not confirmed after {self.confirm_timeout_s}s: {signature}",
                source="SubmissionEngine",
            )
            raise ExpiredError("Transaction not confirmed", tx_signature=signature)
        except AdrenaError as err:
            self._terminal(err, signature, emit)
            raise


__all__ = [
    "SubmissionStage",
    "ProgressEvent",
    "ProgressObserver",
    "SubmissionEngine",
]
