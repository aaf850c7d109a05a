"""Program-derived addresses for the Adrena program.

Derivation is pure: the same seeds and program id always produce the same
address, so results are memoized for the lifetime of the registry.
"""

from __future__ import annotations

import threading
from enum import IntEnum
from typing import Dict, List, NamedTuple, Sequence, Tuple

from solders.pubkey import Pubkey

from adrena.perps.constants import (
    ASSOCIATED_TOKEN_PROGRAM,
    BPF_LOADER_UPGRADEABLE,
    DEFAULT_PROGRAM_ID,
    GOVERNANCE_PROGRAM,
    TOKEN_PROGRAM,
)

__all__ = [
    "Side",
    "PositionKey",
    "AddressRegistry",
    "find_program_address",
    "derive_ata",
]


class Side(IntEnum):
    LONG = 1
    SHORT = 2

    @classmethod
    def parse(cls, value: "Side | str | int") -> "Side":
        if isinstance(value, Side):
            return value
        if isinstance(value, str):
            return cls[value.strip().upper()]
        return cls(int(value))

    @property
    def label(self) -> str:
        return self.name.lower()


class PositionKey(NamedTuple):
    owner: Pubkey
    mint: Pubkey
    side: Side


# ---------------------------------------------------------------------------
# Core helpers
# ---------------------------------------------------------------------------

def find_program_address(seeds: List[bytes], program_id: Pubkey) -> Pubkey:
    pda, _ = Pubkey.find_program_address(seeds, program_id)
    return pda


def derive_ata(owner: Pubkey, mint: Pubkey, token_program: Pubkey = TOKEN_PROGRAM) -> Pubkey:
    return find_program_address(
        [bytes(owner), bytes(token_program), bytes(mint)],
        ASSOCIATED_TOKEN_PROGRAM,
    )


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

_CacheKey = Tuple[Tuple[bytes, ...], Pubkey]


class AddressRegistry:
    """Memoizing derivation of every address the program instructions need.

    Cache entries are never evicted; the inputs are either constants or the
    entity's own identity.
    """

    def __init__(
        self,
        program_id: Pubkey = DEFAULT_PROGRAM_ID,
        *,
        governance_program: Pubkey = GOVERNANCE_PROGRAM,
        governance_realm_name: str = "AdrenaDAO",
        pool_name: str = "main-pool",
    ) -> None:
        self.program_id = program_id
        self.governance_program = governance_program
        self.governance_realm_name = governance_realm_name
        self.pool_name = pool_name
        self._lock = threading.Lock()
        self._cache: Dict[_CacheKey, Tuple[Pubkey, int]] = {}
        self._positions: Dict[PositionKey, Pubkey] = {}

    # -- generic ---------------------------------------------------------------
    def derive(self, seeds: Sequence[bytes], program_id: Pubkey | None = None) -> Tuple[Pubkey, int]:
        program = program_id or self.program_id
        key: _CacheKey = (tuple(bytes(s) for s in seeds), program)
        with self._lock:
            hit = self._cache.get(key)
        if hit is not None:
            return hit
        result = Pubkey.find_program_address(list(key[0]), program)
        with self._lock:
            # another thread may have raced us here; the value is identical
            self._cache.setdefault(key, result)
        return result

    def address(self, seeds: Sequence[bytes], program_id: Pubkey | None = None) -> Pubkey:
        return self.derive(seeds, program_id)[0]

    def cache_size(self) -> int:
        with self._lock:
            return len(self._cache)

    # -- singletons ------------------------------------------------------------
    @property
    def transfer_authority(self) -> Pubkey:
        return self.address([b"transfer_authority"])

    @property
    def cortex(self) -> Pubkey:
        return self.address([b"cortex"])

    @property
    def vest_registry(self) -> Pubkey:
        return self.address([b"vest_registry"])

    @property
    def lm_token_mint(self) -> Pubkey:
        return self.address([b"lm_token_mint"])

    @property
    def governance_token_mint(self) -> Pubkey:
        return self.address([b"governance_token_mint"])

    @property
    def program_data(self) -> Pubkey:
        return self.address([bytes(self.program_id)], BPF_LOADER_UPGRADEABLE)

    @property
    def main_pool(self) -> Pubkey:
        return self.pool(self.pool_name)

    @property
    def lp_token_mint(self) -> Pubkey:
        return self.lp_token_mint_for(self.main_pool)

    @property
    def genesis_lock(self) -> Pubkey:
        return self.address([b"genesis_lock", bytes(self.main_pool)])

    # -- pool / custody --------------------------------------------------------
    def pool(self, name: str) -> Pubkey:
        return self.address([b"pool", name.encode("utf-8")])

    def lp_token_mint_for(self, pool: Pubkey) -> Pubkey:
        return self.address([b"lp_token_mint", bytes(pool)])

    def custody(self, mint: Pubkey, pool: Pubkey | None = None) -> Pubkey:
        return self.address([b"custody", bytes(pool or self.main_pool), bytes(mint)])

    def custody_token_account(self, mint: Pubkey, pool: Pubkey | None = None) -> Pubkey:
        return self.address([b"custody_token_account", bytes(pool or self.main_pool), bytes(mint)])

    # -- staking ---------------------------------------------------------------
    def staking(self, staked_mint: Pubkey) -> Pubkey:
        return self.address([b"staking", bytes(staked_mint)])

    def user_staking(self, owner: Pubkey, staking: Pubkey) -> Pubkey:
        return self.address([b"user_staking", bytes(owner), bytes(staking)])

    def staking_staked_token_vault(self, staking: Pubkey) -> Pubkey:
        return self.address([b"staking_staked_token_vault", bytes(staking)])

    def staking_reward_token_vault(self, staking: Pubkey) -> Pubkey:
        return self.address([b"staking_reward_token_vault", bytes(staking)])

    def staking_lm_reward_token_vault(self, staking: Pubkey) -> Pubkey:
        return self.address([b"staking_lm_reward_token_vault", bytes(staking)])

    # -- users -----------------------------------------------------------------
    def vest(self, owner: Pubkey) -> Pubkey:
        return self.address([b"vest", bytes(owner)])

    def user_profile(self, owner: Pubkey) -> Pubkey:
        return self.address([b"user_profile", bytes(owner)])

    def position(self, owner: Pubkey, custody: Pubkey, side: Side | str, pool: Pubkey | None = None) -> Pubkey:
        side = Side.parse(side)
        return self.address(
            [b"position", bytes(owner), bytes(pool or self.main_pool), bytes(custody), bytes([int(side)])]
        )

    def position_for(self, key: PositionKey) -> Pubkey:
        """Position address keyed by ``(owner, mint, side)``; the custody is derived from the mint."""
        with self._lock:
            hit = self._positions.get(key)
        if hit is not None:
            return hit
        pda = self.position(key.owner, self.custody(key.mint), key.side)
        with self._lock:
            self._positions.setdefault(key, pda)
        return pda

    # -- governance ------------------------------------------------------------
    @property
    def governance_realm(self) -> Pubkey:
        return self.address(
            [b"governance", self.governance_realm_name.encode("utf-8")], self.governance_program
        )

    @property
    def governance_realm_config(self) -> Pubkey:
        return self.address([b"realm-config", bytes(self.governance_realm)], self.governance_program)

    @property
    def governance_governing_token_holding(self) -> Pubkey:
        return self.address(
            [b"governance", bytes(self.governance_realm), bytes(self.governance_token_mint)],
            self.governance_program,
        )

    def governance_governing_token_owner_record(self, owner: Pubkey) -> Pubkey:
        return self.address(
            [
                b"governance",
                bytes(self.governance_realm),
                bytes(self.governance_token_mint),
                bytes(owner),
            ],
            self.governance_program,
        )

    # -- token accounts --------------------------------------------------------
    def associated_token_address(self, owner: Pubkey, mint: Pubkey) -> Pubkey:
        return self.address([bytes(owner), bytes(TOKEN_PROGRAM), bytes(mint)], ASSOCIATED_TOKEN_PROGRAM)
