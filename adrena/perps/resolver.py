"""Resolve logical entities (mints, sides, stakes) into concrete accounts."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from adrena.perps.anchor import create_ata_idempotent_ix, readonly_metas
from adrena.perps.constants import USDC_MINT
from adrena.perps.errors import (
    AdrenaError,
    ConfigurationError,
    CustodyNotFoundError,
    TransientNetworkError,
)
from adrena.perps.idl import ProgramMetadata
from adrena.perps.ledger import Ledger
from adrena.perps.models import Cortex, Custody, LoadResult, Pool, Position, UserProfile, UserStaking
from adrena.perps.pdas import AddressRegistry, PositionKey, Side

logger = logging.getLogger(__name__)


class AccountResolver:
    """Holds the pool/custody snapshot and answers address questions against it.

    The snapshot only changes on :meth:`refresh`. Positions, profiles and
    stakes are always read fresh.
    """

    def __init__(
        self,
        registry: AddressRegistry,
        ledger: Ledger,
        metadata: ProgramMetadata,
        *,
        staking_reward_token_mint: Pubkey = USDC_MINT,
    ) -> None:
        self.registry = registry
        self.ledger = ledger
        self.metadata = metadata
        self.staking_reward_token_mint = staking_reward_token_mint
        self._pool: Optional[Pool] = None
        self._custodies: List[Custody] = []
        self._by_mint: Dict[Pubkey, Custody] = {}
        self._by_pubkey: Dict[Pubkey, Custody] = {}
        self._cortex: Optional[Cortex] = None

    # -- snapshot --------------------------------------------------------------
    def set_snapshot(self, pool: Pool, custodies: Sequence[Custody], cortex: Optional[Cortex] = None) -> None:
        self._pool = pool
        self._custodies = list(custodies)
        self._by_mint = {c.mint: c for c in self._custodies}
        self._by_pubkey = {c.pubkey: c for c in self._custodies}
        if cortex is not None:
            self._cortex = cortex

    @property
    def pool(self) -> Pool:
        if self._pool is None:
            raise ConfigurationError("main pool not loaded")
        return self._pool

    @property
    def custodies(self) -> List[Custody]:
        return list(self._custodies)

    @property
    def cortex(self) -> Cortex:
        if self._cortex is None:
            raise ConfigurationError("cortex not loaded")
        return self._cortex

    async def _fetch_decoded(self, pubkey: Pubkey):
        data = await self.ledger.get_account_info(pubkey)
        if data is None:
            return None
        return self.metadata.decode_account(data)

    async def load_pool(self) -> Pool:
        address = self.registry.main_pool
        decoded = await self._fetch_decoded(address)
        if decoded is None:
            raise ConfigurationError(f"Cannot load pool {address}")
        return Pool.from_account(address, decoded)

    async def load_custodies(self, pool: Pool) -> List[Custody]:
        addresses = pool.active_custodies
        raw = await self.ledger.get_multiple_accounts(addresses)
        if any(r is None for r in raw):
            raise ConfigurationError("Error loading custodies")
        return [
            Custody.from_account(address, self.metadata.decode_account(data))
            for address, data in zip(addresses, raw)
        ]

    async def load_cortex(self) -> Cortex:
        decoded = await self._fetch_decoded(self.registry.cortex)
        if decoded is None:
            raise ConfigurationError("Cannot load cortex")
        return Cortex.from_account(decoded)

    async def refresh(self) -> None:
        pool = await self.load_pool()
        custodies = await self.load_custodies(pool)
        cortex = await self.load_cortex()
        self.set_snapshot(pool, custodies, cortex)
        logger.info("Loaded pool %s with %d custodies", pool.name, len(custodies))

    # -- custody lookups -------------------------------------------------------
    def custody_by_mint(self, mint: Pubkey) -> Custody:
        custody = self._by_mint.get(mint)
        if custody is None:
            raise CustodyNotFoundError(mint)
        return custody

    def custody_by_pubkey(self, pubkey: Pubkey) -> Optional[Custody]:
        return self._by_pubkey.get(pubkey)

    def require_custody(self, pubkey: Pubkey) -> Custody:
        custody = self.custody_by_pubkey(pubkey)
        if custody is None:
            raise ConfigurationError(f"Cannot find custody {pubkey}")
        return custody

    @property
    def staking_reward_custody(self) -> Custody:
        return self.custody_by_mint(self.staking_reward_token_mint)

    def remaining_accounts(self) -> List[AccountMeta]:
        """Custodies, then their oracles, then distinct trade oracles; pool order throughout."""
        ordered: List[Custody] = []
        for pubkey in self.pool.active_custodies:
            custody = self.custody_by_pubkey(pubkey)
            if custody is None:
                raise ConfigurationError("Custody not found")
            ordered.append(custody)
        return (
            readonly_metas(c.pubkey for c in ordered)
            + readonly_metas(c.oracle for c in ordered)
            + readonly_metas(c.trade_oracle for c in ordered if c.trade_oracle != c.oracle)
        )

    # -- associated token accounts ---------------------------------------------
    async def ensure_ata(
        self,
        owner: Pubkey,
        mint: Pubkey,
        pre_instructions: List[Instruction],
        payer: Optional[Pubkey] = None,
    ) -> Pubkey:
        """Return the owner's ATA for ``mint``; queue an idempotent create when it is missing."""
        ata = self.registry.associated_token_address(owner, mint)
        try:
            existing = await self.ledger.get_account_info(ata)
        except AdrenaError:
            raise
        except Exception as exc:
            raise TransientNetworkError(
                f"ATA account for owner {owner} and mint {mint} could not be created", raw=repr(exc)
            ) from exc
        if existing is None:
            pre_instructions.append(create_ata_idempotent_ix(payer or owner, ata, owner, mint))
        return ata

    # -- positions -------------------------------------------------------------
    def position_address(self, owner: Pubkey, mint: Pubkey, side: Side | str) -> Pubkey:
        self.custody_by_mint(mint)
        return self.registry.position_for(PositionKey(owner, mint, Side.parse(side)))

    def possible_position_addresses(self, owner: Pubkey) -> List[Pubkey]:
        out: List[Pubkey] = []
        for custody in self._custodies:
            if custody.is_stable:
                continue
            out.append(self.registry.position_for(PositionKey(owner, custody.mint, Side.LONG)))
            out.append(self.registry.position_for(PositionKey(owner, custody.mint, Side.SHORT)))
        return out

    async def load_positions(
        self, owner: Pubkey, addresses: Optional[Sequence[Pubkey]] = None
    ) -> List[Position]:
        addresses = list(addresses) if addresses is not None else self.possible_position_addresses(owner)
        if not addresses:
            return []
        raw = await self.ledger.get_multiple_accounts(addresses)
        positions: List[Position] = []
        for address, data in zip(addresses, raw):
            if data is None:
                continue
            position = Position.from_account(address, self.metadata.decode_account(data))
            if self.custody_by_pubkey(position.custody) is None or self.custody_by_pubkey(
                position.collateral_custody
            ) is None:
                logger.info("Ignore position with unknown custody %s", address)
                continue
            positions.append(position)
        return positions

    # -- users -----------------------------------------------------------------
    async def load_user_profile(self, owner: Pubkey) -> LoadResult[UserProfile]:
        address = self.registry.user_profile(owner)
        decoded = await self._fetch_decoded(address)
        if decoded is None:
            return LoadResult.absent()
        profile = UserProfile.from_account(address, decoded)
        if profile.created_at == 0:
            return LoadResult.absent()
        return LoadResult.present(profile)

    async def load_user_staking(self, owner: Pubkey, staked_mint: Pubkey) -> LoadResult[UserStaking]:
        staking = self.registry.staking(staked_mint)
        address = self.registry.user_staking(owner, staking)
        decoded = await self._fetch_decoded(address)
        if decoded is None:
            return LoadResult.absent()
        return LoadResult.present(UserStaking.from_account(address, decoded))


__all__ = ["AccountResolver"]
