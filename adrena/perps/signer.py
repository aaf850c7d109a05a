"""Signer collaborator."""

from __future__ import annotations

import base64
import json
import os
from pathlib import Path
from typing import Optional, Protocol, Union

from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction


class Signer(Protocol):
    @property
    def public_key(self) -> Pubkey: ...

    @property
    def wallet_name(self) -> str: ...

    async def sign(self, message: MessageV0) -> VersionedTransaction:
        """Return the signed transaction; raise if the user declines."""
        ...


class KeypairSigner:
    """Local keypair. Never declines."""

    def __init__(self, keypair: Keypair, wallet_name: str = "") -> None:
        self._keypair = keypair
        self._wallet_name = wallet_name

    @property
    def public_key(self) -> Pubkey:
        return self._keypair.pubkey()

    @property
    def wallet_name(self) -> str:
        return self._wallet_name

    async def sign(self, message: MessageV0) -> VersionedTransaction:
        return VersionedTransaction(message, [self._keypair])

    # -- loaders ---------------------------------------------------------------
    @classmethod
    def from_secret(cls, raw: Union[str, bytes], wallet_name: str = "") -> "KeypairSigner":
        """Accepts a JSON byte array (id.json), or base64 of a 32-byte seed / 64-byte secret."""
        if isinstance(raw, bytes):
            return cls(_keypair_from_bytes(raw), wallet_name)
        text = raw.strip()
        if text.startswith("["):
            arr = json.loads(text)
            if not isinstance(arr, list) or not all(isinstance(x, int) for x in arr):
                raise ValueError("not a json array id.json")
            return cls(_keypair_from_bytes(bytes(arr)), wallet_name)
        return cls(_keypair_from_bytes(base64.b64decode(text)), wallet_name)

    @classmethod
    def from_file(cls, path: Union[str, Path], wallet_name: str = "") -> "KeypairSigner":
        return cls.from_secret(Path(path).read_text(encoding="utf-8"), wallet_name)

    @classmethod
    def from_env(cls, var: str = "WALLET_SECRET_BASE64", wallet_name: str = "") -> Optional["KeypairSigner"]:
        raw = os.getenv(var, "").strip()
        if not raw:
            return None
        return cls.from_secret(raw, wallet_name)


def _keypair_from_bytes(b: bytes) -> Keypair:
    if len(b) == 64:
        return Keypair.from_bytes(b)
    if len(b) == 32:
        return Keypair.from_seed(b)
    raise ValueError(f"secret length {len(b)} not 32/64")


__all__ = ["Signer", "KeypairSigner"]
