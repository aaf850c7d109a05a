import asyncio

import pytest
from solders.compute_budget import set_compute_unit_limit
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction

from adrena.perps.errors import (
    ExpiredError,
    ProgramErrorTable,
    ProgramRejectedError,
    SimulationRejectedError,
    UnknownError,
    UserDeclinedSignatureError,
)
from adrena.perps.ledger import SignatureStatus, SimulationResult
from adrena.perps.submit import SubmissionEngine, SubmissionStage

FINALIZED = SignatureStatus(confirmations=None, confirmation_status="finalized")


def _body(signer):
    return [transfer(TransferParams(from_pubkey=signer.public_key, to_pubkey=Pubkey.new_unique(), lamports=1))]


def _recorder():
    events = []
    return events, events.append


def test_confirmed_submission_returns_signature(engine, ledger, signer):
    ledger.statuses = [FINALIZED]
    events, observer = _recorder()
    signature = asyncio.run(engine.submit(_body(signer), observer=observer))

    assert len(ledger.broadcasts) == 1
    assert str(VersionedTransaction.from_bytes(ledger.broadcasts[0]).signatures[0]) == signature
    assert [e.stage for e in events] == [
        SubmissionStage.BUILT,
        SubmissionStage.FEE_ESTIMATED,
        SubmissionStage.SIGNED,
        SubmissionStage.BROADCAST,
        SubmissionStage.CONFIRMED,
    ]
    assert events[-1].stage.terminal
    assert all(e.signature == signature for e in events[2:])


def test_waits_for_enough_confirmations(engine, ledger, signer):
    ledger.statuses = [
        SignatureStatus(confirmations=3),
        SignatureStatus(confirmations=10),
        SignatureStatus(confirmations=11),
    ]
    asyncio.run(engine.submit(_body(signer)))
    # initial send plus one re-send per unconfirmed poll
    assert len(ledger.broadcasts) == 3


def test_timeout_expires_with_signature_and_rebroadcasts_same_bytes(engine, ledger, signer):
    events, observer = _recorder()
    with pytest.raises(ExpiredError) as exc:
        asyncio.run(engine.submit(_body(signer), observer=observer))

    assert exc.value.message == "Transaction not confirmed"
    assert exc.value.tx_signature == str(VersionedTransaction.from_bytes(ledger.broadcasts[0]).signatures[0])
    assert len(ledger.broadcasts) > 1
    assert len(set(ledger.broadcasts)) == 1
    assert events[-1].stage is SubmissionStage.EXPIRED


def test_transient_broadcast_failure_is_resent_on_next_poll(engine, ledger, signer):
    ledger.broadcast_errors = [ConnectionError("node is behind")]
    ledger.statuses = [None, FINALIZED]
    asyncio.run(engine.submit(_body(signer)))
    assert len(ledger.broadcasts) == 2
    assert len(set(ledger.broadcasts)) == 1


def test_rejected_broadcast_fails_immediately(engine, ledger, signer):
    ledger.broadcast_errors = [RuntimeError("Transaction too large: 1300 > 1232")]
    events, observer = _recorder()
    with pytest.raises(UnknownError) as exc:
        asyncio.run(engine.submit(_body(signer), observer=observer))

    assert "Transaction too large" in exc.value.raw
    assert exc.value.tx_signature == events[-1].signature
    assert exc.value.tx_signature is not None
    assert len(ledger.broadcasts) == 1
    assert [e.stage for e in events][-2:] == [SubmissionStage.SIGNED, SubmissionStage.REJECTED]


def test_blockhash_fetch_failure_ends_expired(engine, ledger, signer):
    calls = []

    async def unreachable():
        calls.append(1)
        raise ConnectionError("rpc down")

    ledger.get_latest_blockhash = unreachable
    events, observer = _recorder()
    with pytest.raises(ExpiredError):
        asyncio.run(engine.submit(_body(signer), observer=observer))

    # first attempt plus blockhash_retry_limit retries
    assert len(calls) == 3
    assert [e.stage for e in events] == [SubmissionStage.BUILT, SubmissionStage.EXPIRED]
    assert signer.signed == 0


def test_blockhash_fetch_recovers(engine, ledger, signer):
    fetch = ledger.get_latest_blockhash
    failures = [ConnectionError("rpc down")]

    async def flaky():
        if failures:
            raise failures.pop()
        return await fetch()

    ledger.get_latest_blockhash = flaky
    ledger.statuses = [FINALIZED]
    asyncio.run(engine.submit(_body(signer)))
    assert len(ledger.broadcasts) == 1


def test_cancel_after_broadcast_still_reaches_outcome(engine, ledger, signer):
    ledger.statuses = [None, FINALIZED]
    events, observer = _recorder()

    async def run():
        task = asyncio.ensure_future(engine.submit(_body(signer), observer=observer))
        while not any(e.stage is SubmissionStage.BROADCAST for e in events):
            await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        for _ in range(100):
            if events[-1].stage.terminal:
                break
            await asyncio.sleep(0.01)

    asyncio.run(run())
    assert events[-1].stage is SubmissionStage.CONFIRMED
    assert len(ledger.broadcasts) == 2


def test_failed_simulation_is_never_signed_or_broadcast(engine, ledger, signer):
    ledger.simulations = [
        SimulationResult(
            logs=[
                "Program log: AnchorError occurred. Error Code: InsufficientCollateral. "
                "Error Number: 6001. Error Message: Insufficient collateral."
            ],
            err={"InstructionError": [0, {"Custom": 6001}]},
        )
    ]
    events, observer = _recorder()
    with pytest.raises(SimulationRejectedError) as exc:
        asyncio.run(engine.submit(_body(signer), observer=observer))

    assert "InsufficientCollateral" in exc.value.message
    assert signer.signed == 0
    assert ledger.broadcasts == []
    assert events[-1].stage is SubmissionStage.REJECTED


def test_declined_signature(engine, ledger, signer):
    signer.decline = True
    with pytest.raises(UserDeclinedSignatureError) as exc:
        asyncio.run(engine.submit(_body(signer)))
    assert exc.value.message == "User rejected the request"
    assert ledger.broadcasts == []


def test_unknown_blockhash_is_retried(engine, ledger, signer):
    ledger.simulations = [SimulationResult(err="BlockhashNotFound"), RuntimeError("BlockhashNotFound")]
    ledger.statuses = [FINALIZED]
    asyncio.run(engine.submit(_body(signer)))
    assert len(ledger.simulated) == 3
    assert len(ledger.broadcasts) == 1


def test_unknown_blockhash_retries_are_bounded(engine, ledger, signer):
    ledger.simulations = [SimulationResult(err="BlockhashNotFound")] * 5
    with pytest.raises(ExpiredError):
        asyncio.run(engine.submit(_body(signer)))
    # first attempt plus blockhash_retry_limit retries
    assert len(ledger.simulated) == 3
    assert ledger.broadcasts == []


def test_on_chain_error_is_translated_with_signature(ledger, signer):
    table = ProgramErrorTable.from_entries([{"code": 6001, "name": "InsufficientCollateral", "msg": "Insufficient collateral"}])
    engine = SubmissionEngine(ledger, signer, error_table=table, confirm_timeout_s=1, poll_interval_s=0.01)
    ledger.statuses = [SignatureStatus(confirmations=1, err={"InstructionError": [2, {"Custom": 6001}]})]
    events, observer = _recorder()
    with pytest.raises(ProgramRejectedError) as exc:
        asyncio.run(engine.submit(_body(signer), observer=observer))

    assert exc.value.message == "Insufficient collateral"
    assert exc.value.tx_signature == events[-1].signature
    assert events[-1].stage is SubmissionStage.REJECTED


def test_compute_budget_from_caller_is_replaced(engine, ledger, signer):
    ledger.statuses = [FINALIZED]
    asyncio.run(engine.submit([set_compute_unit_limit(42), *_body(signer)]))
    tx = VersionedTransaction.from_bytes(ledger.broadcasts[0])
    assert len(tx.message.instructions) == 3
    assert bytes(tx.message.instructions[0].data) == bytes(set_compute_unit_limit(105_000).data)
