import asyncio
import base64
import json

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer

from adrena.perps.signer import KeypairSigner

SEED = bytes(range(32))


def test_secret_formats_resolve_to_same_key():
    kp = Keypair.from_seed(SEED)
    as_json = json.dumps(list(bytes(kp)))
    as_b64_secret = base64.b64encode(bytes(kp)).decode()
    as_b64_seed = base64.b64encode(SEED).decode()
    for raw in (as_json, as_b64_secret, as_b64_seed, bytes(kp)):
        assert KeypairSigner.from_secret(raw).public_key == kp.pubkey()


def test_bad_secret_length():
    with pytest.raises(ValueError):
        KeypairSigner.from_secret(base64.b64encode(b"short").decode())


def test_from_env(monkeypatch):
    monkeypatch.delenv("WALLET_SECRET_BASE64", raising=False)
    assert KeypairSigner.from_env() is None
    monkeypatch.setenv("WALLET_SECRET_BASE64", base64.b64encode(SEED).decode())
    signer = KeypairSigner.from_env(wallet_name="Phantom")
    assert signer.public_key == Keypair.from_seed(SEED).pubkey()
    assert signer.wallet_name == "Phantom"


def test_from_file(tmp_path):
    kp = Keypair.from_seed(SEED)
    path = tmp_path / "id.json"
    path.write_text(json.dumps(list(bytes(kp))))
    assert KeypairSigner.from_file(path).public_key == kp.pubkey()


def test_sign_produces_verifiable_transaction():
    signer = KeypairSigner(Keypair.from_seed(SEED))
    ix = transfer(TransferParams(from_pubkey=signer.public_key, to_pubkey=Pubkey.new_unique(), lamports=5))
    message = MessageV0.try_compile(signer.public_key, [ix], [], Hash.default())
    tx = asyncio.run(signer.sign(message))
    assert tx.verify_with_results() == [True]
