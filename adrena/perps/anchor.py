"""Raw Anchor instruction assembly.

Accounts are declared by name in the program's order with default flags; when
the IDL is loaded its ``isSigner``/``isMut`` flags win.
"""

from __future__ import annotations

import hashlib
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Sequence

from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from adrena.perps.constants import ASSOCIATED_TOKEN_PROGRAM, SYSTEM_PROGRAM, TOKEN_PROGRAM
from adrena.perps.idl import ProgramMetadata, camel_to_snake


class AccountSpec(NamedTuple):
    name: str
    pubkey: Pubkey
    is_signer: bool = False
    is_writable: bool = False


def acc(name: str, pubkey: Pubkey, *, signer: bool = False, mut: bool = False) -> AccountSpec:
    return AccountSpec(name, pubkey, signer, mut)


def readonly_metas(pubkeys: Iterable[Pubkey]) -> List[AccountMeta]:
    return [AccountMeta(pubkey=pk, is_signer=False, is_writable=False) for pk in pubkeys]


def anchor_sighash(ix_name: str) -> bytes:
    """First 8 bytes of ``sha256("global:<snake_name>")``."""
    return hashlib.sha256(f"global:{camel_to_snake(ix_name)}".encode()).digest()[:8]


def encode_args(layout: Any, args: Dict[str, Any]) -> bytes:
    return layout.build(args)


def account_metas(
    ix_name: str,
    accounts: Sequence[AccountSpec],
    metadata: Optional[ProgramMetadata] = None,
) -> List[AccountMeta]:
    flags = metadata.account_flags(ix_name) if metadata is not None else {}
    order = metadata.account_order(ix_name) if metadata is not None else {}
    if order:
        # IDL declaration order is the wire order; unknown names keep their place at the end
        accounts = sorted(accounts, key=lambda s: order.get(s.name, len(order)))
    metas: List[AccountMeta] = []
    for spec in accounts:
        signer, writable = flags.get(spec.name, (spec.is_signer, spec.is_writable))
        metas.append(AccountMeta(pubkey=spec.pubkey, is_signer=signer, is_writable=writable))
    return metas


def build_instruction(
    program_id: Pubkey,
    ix_name: str,
    layout: Any,
    args: Dict[str, Any],
    accounts: Sequence[AccountSpec],
    *,
    remaining: Sequence[AccountMeta] = (),
    metadata: Optional[ProgramMetadata] = None,
) -> Instruction:
    data = anchor_sighash(ix_name) + encode_args(layout, args)
    metas = account_metas(ix_name, accounts, metadata) + list(remaining)
    return Instruction(program_id=program_id, accounts=metas, data=data)


# ---------------------------------------------------------------------------
# Non-Anchor instructions
# ---------------------------------------------------------------------------


def compute_budget_ixs(units: int, micro_lamports: int) -> List[Instruction]:
    """``[SetComputeUnitLimit, SetComputeUnitPrice]``, always in that order."""
    return [
        set_compute_unit_limit(int(units)),
        set_compute_unit_price(int(micro_lamports)),
    ]


def is_compute_budget_ix(ix: Instruction) -> bool:
    return ix.program_id == set_compute_unit_limit(1).program_id


def create_ata_idempotent_ix(payer: Pubkey, ata: Pubkey, owner: Pubkey, mint: Pubkey) -> Instruction:
    # instruction 1 of the associated token program: CreateIdempotent
    return Instruction(
        program_id=ASSOCIATED_TOKEN_PROGRAM,
        accounts=[
            AccountMeta(pubkey=payer, is_signer=True, is_writable=True),
            AccountMeta(pubkey=ata, is_signer=False, is_writable=True),
            AccountMeta(pubkey=owner, is_signer=False, is_writable=False),
            AccountMeta(pubkey=mint, is_signer=False, is_writable=False),
            AccountMeta(pubkey=SYSTEM_PROGRAM, is_signer=False, is_writable=False),
            AccountMeta(pubkey=TOKEN_PROGRAM, is_signer=False, is_writable=False),
        ],
        data=bytes([1]),
    )


__all__ = [
    "AccountSpec",
    "acc",
    "readonly_metas",
    "anchor_sighash",
    "encode_args",
    "account_metas",
    "build_instruction",
    "compute_budget_ixs",
    "is_compute_budget_ix",
    "create_ata_idempotent_ix",
]
