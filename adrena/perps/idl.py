"""Program metadata: the Anchor IDL, its error table and its decoders."""

from __future__ import annotations

import hashlib
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

from anchorpy import Idl
from anchorpy.coder.accounts import AccountsCoder
from anchorpy.coder.types import TypesCoder

from adrena.perps.errors import ProgramErrorEntry, ProgramErrorTable

logger = logging.getLogger(__name__)

AccountFlags = Dict[str, Tuple[bool, bool]]


def account_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"account:{name}".encode()).digest()[:8]


def camel_to_snake(name: str) -> str:
    out = []
    for ch in name:
        out.append("_" + ch.lower() if ch.isupper() else ch)
    s = "".join(out)
    return s[1:] if s.startswith("_") else s


def _read_json(path: Path) -> dict:
    if not path.exists():
        raise FileNotFoundError(
            f"IDL not found at {path}.\n"
            "Export the program IDL as JSON and place it here or set ADRENA_IDL_PATH."
        )
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


class ProgramMetadata:
    """Wraps an anchorpy ``Idl``; used by the error translator, the builders and the view decoders."""

    def __init__(
        self,
        idl: Optional[Idl] = None,
        error_table: Optional[ProgramErrorTable] = None,
        idl_json: Optional[dict] = None,
    ) -> None:
        self.idl = idl
        self.idl_json = idl_json or {}
        self._accounts_coder = AccountsCoder(idl) if idl is not None else None
        self._types_coder = TypesCoder(idl) if idl is not None else None
        if error_table is None:
            error_table = self._table_from_idl(idl)
        self.error_table = error_table
        self._flags: Dict[str, AccountFlags] = {}
        self._order: Dict[str, Dict[str, int]] = {}

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "ProgramMetadata":
        path = Path(path)
        idl_json = _read_json(path)
        idl = Idl.from_json(json.dumps(idl_json))
        meta = cls(idl, idl_json=idl_json)
        logger.debug("IDL loaded from %s (%d errors)", path, len(meta.error_table))
        return meta

    @classmethod
    def offline(cls, error_table: Optional[ProgramErrorTable] = None) -> "ProgramMetadata":
        """Metadata with no IDL: errors only, no decoders, builder defaults for account flags."""
        return cls(None, error_table or ProgramErrorTable())

    @staticmethod
    def _table_from_idl(idl: Optional[Idl]) -> ProgramErrorTable:
        if idl is None or not idl.errors:
            return ProgramErrorTable()
        return ProgramErrorTable(
            ProgramErrorEntry(code=int(e.code), name=str(e.name), msg=e.msg) for e in idl.errors
        )

    # -- instruction accounts --------------------------------------------------
    def account_flags(self, ix_name: str) -> AccountFlags:
        """``{accountName: (is_signer, is_writable)}`` for one instruction; empty when unknown.

        Both the legacy (``isMut``/``isSigner``) and current
        (``writable``/``signer``) IDL spellings are read.
        """
        if ix_name in self._flags:
            return self._flags[ix_name]
        flags: AccountFlags = {}
        snake = camel_to_snake(ix_name)
        for ix in self.idl_json.get("instructions", []) or []:
            if ix.get("name") not in (ix_name, snake):
                continue
            for acc in ix.get("accounts", []) or []:
                signer = bool(acc.get("isSigner", acc.get("signer", False)))
                writable = bool(acc.get("isMut", acc.get("writable", False)))
                flags[acc["name"]] = (signer, writable)
                flags[camel_to_snake(acc["name"])] = (signer, writable)
            break
        self._flags[ix_name] = flags
        return flags

    def account_order(self, ix_name: str) -> Dict[str, int]:
        """Position of each account in the IDL declaration, under both spellings."""
        if ix_name in self._order:
            return self._order[ix_name]
        order: Dict[str, int] = {}
        snake = camel_to_snake(ix_name)
        for ix in self.idl_json.get("instructions", []) or []:
            if ix.get("name") not in (ix_name, snake):
                continue
            for i, acc in enumerate(ix.get("accounts", []) or []):
                order[acc["name"]] = i
                order[camel_to_snake(acc["name"])] = i
            break
        self._order[ix_name] = order
        return order

    # -- decoding --------------------------------------------------------------
    @property
    def has_decoders(self) -> bool:
        return self._accounts_coder is not None

    def _require(self, coder: Any) -> Any:
        if coder is None:
            raise RuntimeError("program IDL not loaded; decoding is unavailable")
        return coder

    def decode_account(self, data: bytes) -> Any:
        """Decode raw account bytes; the account type comes from the discriminator."""
        return self._require(self._accounts_coder).decode(data)

    def decode_type(self, name: str, data: bytes) -> Any:
        return self._require(self._types_coder).decode(name, data)


__all__ = ["ProgramMetadata", "account_discriminator"]
