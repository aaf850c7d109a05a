"""High-level Adrena client.

``AdrenaClient`` is an explicit context object: every collaborator is passed
in at construction and nothing is stored at module level.
"""

from __future__ import annotations

from decimal import Decimal
from typing import List, Optional, Sequence

from solders.instruction import Instruction
from solders.pubkey import Pubkey

from adrena.config import AdrenaConfig, load_endpoints
from adrena.core.logging import log
from adrena.perps.builders import BuiltInstructions, InstructionBuilder, close_price_with_slippage
from adrena.perps.constants import NATIVE_MINT, USDC_MINT
from adrena.perps.economics import PositionView, extend_position
from adrena.perps.errors import ConfigurationError
from adrena.perps.idl import ProgramMetadata
from adrena.perps.ledger import Ledger, SolanaLedger
from adrena.perps.models import LoadResult, LockedStake, Position, UserProfile, UserStaking
from adrena.perps.pdas import AddressRegistry, Side
from adrena.perps.prices import PriceCache
from adrena.perps.resolver import AccountResolver
from adrena.perps.signer import KeypairSigner, Signer
from adrena.perps.submit import ProgressObserver, SubmissionEngine
from adrena.perps.views import ClaimableRewards, ProgramViews


class AdrenaClient:
    def __init__(
        self,
        config: AdrenaConfig,
        ledger: Ledger,
        signer: Signer,
        metadata: ProgramMetadata,
        *,
        prices: Optional[PriceCache] = None,
        usdc_mint: Pubkey = USDC_MINT,
    ) -> None:
        self.config = config
        self.ledger = ledger
        self.signer = signer
        self.metadata = metadata
        self.prices = prices or PriceCache(config.price_cache_ttl_s, config.price_api_base)
        self.registry = AddressRegistry(
            Pubkey.from_string(config.program_id),
            governance_program=Pubkey.from_string(config.governance_program),
            governance_realm_name=config.governance_realm_name,
            pool_name=config.main_pool_name,
        )
        self.resolver = AccountResolver(
            self.registry, ledger, metadata, staking_reward_token_mint=usdc_mint
        )
        self.builder = InstructionBuilder(self.registry, self.resolver, metadata, usdc_mint=usdc_mint)
        self.engine = SubmissionEngine.from_config(ledger, signer, config, metadata.error_table)
        self.views = ProgramViews(self.builder, self.engine.simulate, signer.public_key)

    @classmethod
    def from_config(cls, config: AdrenaConfig, signer: Optional[Signer] = None) -> "AdrenaClient":
        """Wire the mainnet collaborators: RPC endpoints, IDL file and a keypair from the environment."""
        signer = signer or KeypairSigner.from_env(wallet_name=config.wallet_name)
        if signer is None:
            raise ConfigurationError("No signer: set WALLET_SECRET_BASE64 or pass one in")
        ledger = SolanaLedger(load_endpoints(config), timeout_s=config.rpc_timeout_s)
        metadata = ProgramMetadata.from_path(config.idl_path)
        return cls(config, ledger, signer, metadata)

    @property
    def owner(self) -> Pubkey:
        return self.signer.public_key

    async def load(self) -> None:
        await self.resolver.refresh()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    async def positions(self, owner: Optional[Pubkey] = None) -> List[Position]:
        return await self.resolver.load_positions(owner or self.owner)

    async def user_profile(self, owner: Optional[Pubkey] = None) -> LoadResult[UserProfile]:
        return await self.resolver.load_user_profile(owner or self.owner)

    async def user_staking(self, staked_mint: Pubkey, owner: Optional[Pubkey] = None) -> LoadResult[UserStaking]:
        return await self.resolver.load_user_staking(owner or self.owner, staked_mint)

    async def claimable_rewards(self, staked_mint: Pubkey, owner: Optional[Pubkey] = None) -> ClaimableRewards:
        return await self.views.simulate_claim_stakes(owner or self.owner, staked_mint)

    def extend_position(
        self,
        position: Position,
        collateral_price: Optional[Decimal] = None,
        exit_price: Optional[Decimal] = None,
    ) -> PositionView:
        custody = self.resolver.require_custody(position.custody)
        collateral_custody = self.resolver.require_custody(position.collateral_custody)
        return extend_position(
            position,
            custody,
            collateral_custody,
            exit_price=exit_price,
            collateral_price=collateral_price,
        )

    async def extend_positions(self, positions: Sequence[Position]) -> List[PositionView]:
        """Positions with PnL filled from current prices where they are known."""
        mints = set()
        for p in positions:
            mints.add(self.resolver.require_custody(p.custody).mint)
            mints.add(self.resolver.require_custody(p.collateral_custody).mint)
        prices = await self.prices.get_prices(mints)
        views = []
        for p in positions:
            exit_price = prices.get(str(self.resolver.require_custody(p.custody).mint))
            collateral_price = prices.get(str(self.resolver.require_custody(p.collateral_custody).mint))
            views.append(self.extend_position(p, collateral_price, exit_price))
        return views

    # ------------------------------------------------------------------
    # Submission helpers
    # ------------------------------------------------------------------
    async def execute(
        self,
        instructions: Sequence[Instruction],
        *,
        observer: Optional[ProgressObserver] = None,
    ) -> str:
        return await self.engine.submit(instructions, observer=observer)

    async def _run(
        self,
        label: str,
        built: BuiltInstructions,
        observer: Optional[ProgressObserver],
        *,
        wrap_sol: int = 0,
    ) -> str:
        instructions = built.instructions()
        if wrap_sol:
            wrap = await self.builder.prepare_wsol_account(self.owner, wrap_sol)
            instructions = [*wrap, *instructions, self.builder.close_wsol_account(self.owner)]
        log.info(f"{label}: {len(instructions)} instructions", source="AdrenaClient")
        return await self.execute(instructions, observer=observer)

    async def _user_profile_address(self) -> Optional[Pubkey]:
        profile = await self.resolver.load_user_profile(self.owner)
        return profile.value.pubkey if profile.is_present else None

    @staticmethod
    def _wrap_amount(mint: Pubkey, amount: int) -> int:
        return amount if mint == NATIVE_MINT else 0

    # ------------------------------------------------------------------
    # Liquidity
    # ------------------------------------------------------------------
    async def add_liquidity(
        self, mint: Pubkey, amount_in: int, min_lp_amount_out: int, *, observer: Optional[ProgressObserver] = None
    ) -> str:
        built = await self.builder.add_liquidity(self.owner, mint, amount_in, min_lp_amount_out)
        return await self._run("addLiquidity", built, observer, wrap_sol=self._wrap_amount(mint, amount_in))

    async def remove_liquidity(
        self, mint: Pubkey, lp_amount_in: int, min_amount_out: int, *, observer: Optional[ProgressObserver] = None
    ) -> str:
        built = await self.builder.remove_liquidity(self.owner, mint, lp_amount_in, min_amount_out)
        if mint == NATIVE_MINT:
            built.post.append(self.builder.close_wsol_account(self.owner))
        return await self._run("removeLiquidity", built, observer)

    async def add_genesis_liquidity(
        self, amount_in: int, min_lp_amount_out: int, *, observer: Optional[ProgressObserver] = None
    ) -> str:
        built = self.builder.add_genesis_liquidity(self.owner, amount_in, min_lp_amount_out)
        return await self._run("addGenesisLiquidity", built, observer)

    # ------------------------------------------------------------------
    # Positions
    # ------------------------------------------------------------------
    async def open_long(
        self,
        mint: Pubkey,
        collateral_mint: Pubkey,
        price: int,
        collateral_amount: int,
        leverage: int,
        *,
        referrer: Optional[Pubkey] = None,
        observer: Optional[ProgressObserver] = None,
    ) -> str:
        built = await self.builder.open_or_increase_position_long(
            self.owner,
            mint,
            collateral_mint,
            price,
            collateral_amount,
            leverage,
            user_profile=await self._user_profile_address(),
            referrer=referrer,
        )
        return await self._run(
            "openLong", built, observer, wrap_sol=self._wrap_amount(collateral_mint, collateral_amount)
        )

    async def open_short(
        self,
        mint: Pubkey,
        collateral_mint: Pubkey,
        price: int,
        collateral_amount: int,
        leverage: int,
        *,
        referrer: Optional[Pubkey] = None,
        observer: Optional[ProgressObserver] = None,
    ) -> str:
        built = await self.builder.open_or_increase_position_short(
            self.owner,
            mint,
            collateral_mint,
            price,
            collateral_amount,
            leverage,
            user_profile=await self._user_profile_address(),
            referrer=referrer,
        )
        return await self._run(
            "openShort", built, observer, wrap_sol=self._wrap_amount(collateral_mint, collateral_amount)
        )

    async def close_position(
        self,
        position: Position,
        price: int,
        *,
        slippage_bps: int = 0,
        observer: Optional[ProgressObserver] = None,
    ) -> str:
        exit_price = close_price_with_slippage(position.side, price, slippage_bps)
        built = await self.builder.close_position(
            position, exit_price, user_profile=await self._user_profile_address()
        )
        receiving = self.resolver.require_custody(
            position.custody if position.side is Side.LONG else position.collateral_custody
        )
        if receiving.mint == NATIVE_MINT:
            built.post.append(self.builder.close_wsol_account(position.owner))
        return await self._run("closePosition", built, observer)

    async def add_collateral(
        self, position: Position, collateral_amount: int, *, observer: Optional[ProgressObserver] = None
    ) -> str:
        built = self.builder.add_collateral(position, collateral_amount)
        funding = self.resolver.require_custody(
            position.custody if position.side is Side.LONG else position.collateral_custody
        )
        return await self._run(
            "addCollateral", built, observer, wrap_sol=self._wrap_amount(funding.mint, collateral_amount)
        )

    async def remove_collateral(
        self, position: Position, collateral_usd: int, *, observer: Optional[ProgressObserver] = None
    ) -> str:
        built = await self.builder.remove_collateral(position, collateral_usd)
        return await self._run("removeCollateral", built, observer)

    async def set_stop_loss(
        self,
        position: Position,
        stop_loss_limit_price: int,
        close_position_price: Optional[int] = None,
        *,
        observer: Optional[ProgressObserver] = None,
    ) -> str:
        built = self.builder.set_stop_loss(position, stop_loss_limit_price, close_position_price)
        return await self._run("setStopLoss", built, observer)

    async def set_take_profit(
        self, position: Position, take_profit_limit_price: int, *, observer: Optional[ProgressObserver] = None
    ) -> str:
        built = self.builder.set_take_profit(position, take_profit_limit_price)
        return await self._run("setTakeProfit", built, observer)

    async def cancel_stop_loss(self, position: Position, *, observer: Optional[ProgressObserver] = None) -> str:
        return await self._run("cancelStopLoss", self.builder.cancel_stop_loss(position), observer)

    async def cancel_take_profit(self, position: Position, *, observer: Optional[ProgressObserver] = None) -> str:
        return await self._run("cancelTakeProfit", self.builder.cancel_take_profit(position), observer)

    async def swap(
        self,
        mint_in: Pubkey,
        mint_out: Pubkey,
        amount_in: int,
        min_amount_out: int,
        *,
        observer: Optional[ProgressObserver] = None,
    ) -> str:
        built = await self.builder.swap(
            self.owner,
            mint_in,
            mint_out,
            amount_in,
            min_amount_out,
            user_profile=await self._user_profile_address(),
        )
        if mint_out == NATIVE_MINT:
            built.post.append(self.builder.close_wsol_account(self.owner))
        return await self._run("swap", built, observer, wrap_sol=self._wrap_amount(mint_in, amount_in))

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------
    async def init_user_profile(self, nickname: str, *, observer: Optional[ProgressObserver] = None) -> str:
        return await self._run("initUserProfile", self.builder.init_user_profile(self.owner, nickname), observer)

    async def edit_user_profile(self, nickname: str, *, observer: Optional[ProgressObserver] = None) -> str:
        return await self._run("editUserProfile", self.builder.edit_user_profile(self.owner, nickname), observer)

    # ------------------------------------------------------------------
    # Staking
    # ------------------------------------------------------------------
    async def init_user_staking(self, staked_mint: Pubkey, *, observer: Optional[ProgressObserver] = None) -> str:
        built = await self.builder.init_user_staking(self.owner, staked_mint)
        return await self._run("initUserStaking", built, observer)

    async def _require_user_staking(self, staked_mint: Pubkey) -> UserStaking:
        result = await self.resolver.load_user_staking(self.owner, staked_mint)
        if not result.is_present:
            raise ConfigurationError("User staking account not found")
        return result.value

    async def add_liquid_stake(
        self, staked_mint: Pubkey, amount: int, *, observer: Optional[ProgressObserver] = None
    ) -> str:
        await self._require_user_staking(staked_mint)
        built = await self.builder.add_liquid_stake(self.owner, staked_mint, amount)
        return await self._run("addLiquidStake", built, observer)

    async def remove_liquid_stake(
        self, staked_mint: Pubkey, amount: int, *, observer: Optional[ProgressObserver] = None
    ) -> str:
        built = await self.builder.remove_liquid_stake(self.owner, staked_mint, amount)
        return await self._run("removeLiquidStake", built, observer)

    async def add_locked_stake(
        self, staked_mint: Pubkey, amount: int, locked_days: int, *, observer: Optional[ProgressObserver] = None
    ) -> str:
        user_staking = await self.resolver.load_user_staking(self.owner, staked_mint)
        if user_staking.is_present:
            built = await self.builder.add_locked_stake(self.owner, staked_mint, amount, locked_days)
        else:
            init = await self.builder.init_user_staking(self.owner, staked_mint)
            built = await self.builder.add_locked_stake(self.owner, staked_mint, amount, locked_days)
            built = BuiltInstructions([*init.instructions(), *built.pre], built.instruction, built.post)
        return await self._run("addLockedStake", built, observer)

    async def upgrade_locked_stake(
        self,
        staked_mint: Pubkey,
        stake: LockedStake,
        *,
        amount: Optional[int] = None,
        locked_days: Optional[int] = None,
        observer: Optional[ProgressObserver] = None,
    ) -> str:
        built = self.builder.upgrade_locked_stake(
            self.owner, staked_mint, stake.id, amount=amount, locked_days=locked_days
        )
        return await self._run("upgradeLockedStake", built, observer)

    async def remove_locked_stake(
        self,
        staked_mint: Pubkey,
        stake: LockedStake,
        *,
        early_exit: bool = False,
        observer: Optional[ProgressObserver] = None,
    ) -> str:
        built = await self.builder.remove_locked_stake(self.owner, staked_mint, stake, early_exit=early_exit)
        return await self._run("removeLockedStake", built, observer)

    async def claim_stakes(
        self,
        staked_mint: Pubkey,
        *,
        locked_stake_indexes: Optional[Sequence[int]] = None,
        observer: Optional[ProgressObserver] = None,
    ) -> str:
        built = await self.builder.claim_stakes(self.owner, staked_mint, locked_stake_indexes=locked_stake_indexes)
        return await self._run("claimStakes", built, observer)

    async def resolve_staking_round(
        self, staked_mint: Pubkey, *, observer: Optional[ProgressObserver] = None
    ) -> str:
        return await self._run(
            "resolveStakingRound", self.builder.resolve_staking_round(self.owner, staked_mint), observer
        )

    async def claim_vest(self, *, observer: Optional[ProgressObserver] = None) -> str:
        built = await self.builder.claim_vest(self.owner)
        return await self._run("claimVest", built, observer)


__all__ = ["AdrenaClient"]
