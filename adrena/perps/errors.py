"""Error taxonomy for the Adrena client and the translator that feeds it."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Mapping, Optional

import httpx

logger = logging.getLogger(__name__)


class AdrenaError(RuntimeError):
    """Base class for every failure surfaced by the client."""

    def __init__(
        self,
        message: str,
        *,
        tx_signature: Optional[str] = None,
        raw: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.tx_signature = tx_signature
        self.raw = raw

    def with_signature(self, signature: Optional[str]) -> "AdrenaError":
        if signature and not self.tx_signature:
            self.tx_signature = signature
        return self

    def __str__(self) -> str:
        if self.tx_signature:
            return f"{self.message} (tx {self.tx_signature})"
        return self.message


class TransientNetworkError(AdrenaError):
    """Retryable transmission failure such as an unknown blockhash."""


class SimulationRejectedError(AdrenaError):
    """The draft transaction failed simulation; it must never be broadcast."""


class ProgramRejectedError(AdrenaError):
    """The program returned a custom error that decoded to a known entry."""

    def __init__(
        self,
        message: str,
        *,
        code: Optional[int] = None,
        name: Optional[str] = None,
        tx_signature: Optional[str] = None,
        raw: Optional[str] = None,
    ) -> None:
        super().__init__(message, tx_signature=tx_signature, raw=raw)
        self.code = code
        self.name = name


class UserDeclinedSignatureError(AdrenaError):
    """The signer refused to sign. Terminal and not retried."""


class ExpiredError(AdrenaError):
    """Broadcast happened but confirmation never arrived before the deadline."""


class ConfigurationError(AdrenaError):
    """Missing account or mint mapping. A caller error, never retried."""


class CustodyNotFoundError(ConfigurationError):
    def __init__(self, mint: Any) -> None:
        super().__init__(f"Cannot find custody for mint {mint}")
        self.mint = mint


class UnknownError(AdrenaError):
    """Anything that could not be classified; ``raw`` keeps the diagnostic."""


# ---------------------------------------------------------------------------
# Program error table
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProgramErrorEntry:
    code: int
    name: str
    msg: Optional[str] = None


class ProgramErrorTable:
    """Name/code lookup over the program's declared errors."""

    def __init__(self, entries: Iterable[ProgramErrorEntry] = ()) -> None:
        self._by_name: Dict[str, ProgramErrorEntry] = {}
        self._by_code: Dict[int, ProgramErrorEntry] = {}
        for entry in entries:
            self._by_name[entry.name] = entry
            self._by_code[entry.code] = entry

    @classmethod
    def from_entries(cls, entries: Iterable[Mapping[str, Any]]) -> "ProgramErrorTable":
        return cls(
            ProgramErrorEntry(code=int(e["code"]), name=str(e["name"]), msg=e.get("msg"))
            for e in entries
        )

    def by_name(self, name: Optional[str]) -> Optional[ProgramErrorEntry]:
        return self._by_name.get(name) if name else None

    def by_code(self, code: Optional[int]) -> Optional[ProgramErrorEntry]:
        return self._by_code.get(code) if code is not None else None

    def __len__(self) -> int:
        return len(self._by_code)


# ---------------------------------------------------------------------------
# Translation
# ---------------------------------------------------------------------------

_HEX_CODE_RE = re.compile(r"custom program error: (0x[\da-fA-F]+)")
_DEC_CODE_RES = (
    re.compile(r'"Custom": ([0-9]+)'),
    re.compile(r"InstructionErrorCustom\(([0-9]+)\)"),
    re.compile(r"Custom\(([0-9]+)\)"),
)
_NAME_RE = re.compile(r"Error Code: ([a-zA-Z]+)")
_MESSAGE_RE = re.compile(r"Error Message: ([a-zA-Z '\.]+)")

INSUFFICIENT_FUNDS_MESSAGE = "Not enough SOL to pay for transaction fees and rent"

# connection-level failures; the request may be repeated unchanged
_TRANSPORT_ERRORS = (OSError, TimeoutError, asyncio.TimeoutError, httpx.TransportError)


def stringify_error(raw: Any) -> str:
    if isinstance(raw, BaseException):
        parts = [str(raw)]
        logs = getattr(raw, "logs", None)
        if logs:
            parts.extend(str(line) for line in logs)
        return "\n".join(parts)
    if isinstance(raw, (dict, list, tuple)):
        try:
            return json.dumps(raw, indent=2, default=str)
        except (TypeError, ValueError):
            return str(raw)
    return str(raw)


def _first_int(patterns: Iterable[re.Pattern], text: str) -> Optional[int]:
    for pattern in patterns:
        match = pattern.search(text)
        if match:
            return int(match.group(1))
    return None


def _translate(raw: Any, table: ProgramErrorTable) -> AdrenaError:
    text = stringify_error(raw)

    hex_match = _HEX_CODE_RE.search(text)
    code_hex = int(hex_match.group(1), 16) if hex_match else None
    code_dec = _first_int(_DEC_CODE_RES, text)
    name_match = _NAME_RE.search(text)
    err_name = name_match.group(1) if name_match else None
    msg_match = _MESSAGE_RE.search(text)
    err_message = msg_match.group(1).strip() if msg_match else None

    if isinstance(raw, _TRANSPORT_ERRORS):
        return TransientNetworkError(f"Network error: {text or type(raw).__name__}", raw=text)

    if "BlockhashNotFound" in text:
        return TransientNetworkError("Blockhash not found", raw=text)

    if "InsufficientFundsForRent" in text:
        return ProgramRejectedError(INSUFFICIENT_FUNDS_MESSAGE, name="InsufficientFundsForRent", raw=text)

    entry = table.by_name(err_name) or table.by_code(code_hex) or table.by_code(code_dec)
    if entry is not None and entry.msg:
        return ProgramRejectedError(entry.msg, code=entry.code, name=entry.name, raw=text)

    if err_name and err_message:
        return ProgramRejectedError(f"{err_name}: {err_message}", name=err_name, raw=text)
    if err_name:
        return ProgramRejectedError(f"Error name: {err_name}", name=err_name, raw=text)
    if code_hex is not None:
        return ProgramRejectedError(f"Error code: {code_hex}", code=code_hex, raw=text)
    if code_dec == 1:
        return ProgramRejectedError("Insufficient SOL", code=1, raw=text)
    if code_dec is not None:
        return ProgramRejectedError(f"Error code: {code_dec}", code=code_dec, raw=text)

    return UnknownError("Unknown error", raw=text)


def translate_error(raw: Any, table: Optional[ProgramErrorTable] = None) -> AdrenaError:
    """Map any raw failure payload to an :class:`AdrenaError`. Never raises."""

    if isinstance(raw, AdrenaError):
        return raw
    try:
        return _translate(raw, table or ProgramErrorTable())
    except Exception as exc:  # noqa: BLE001
        logger.warning("error translation failed: %r", exc)
        return UnknownError("Unknown error", raw=repr(raw))


__all__ = [
    "AdrenaError",
    "TransientNetworkError",
    "SimulationRejectedError",
    "ProgramRejectedError",
    "UserDeclinedSignatureError",
    "ExpiredError",
    "ConfigurationError",
    "CustodyNotFoundError",
    "UnknownError",
    "ProgramErrorEntry",
    "ProgramErrorTable",
    "translate_error",
    "stringify_error",
    "INSUFFICIENT_FUNDS_MESSAGE",
]
