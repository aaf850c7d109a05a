"""Instruction builders, one per Adrena operation.

Every builder takes amounts in native integer units and returns a
``BuiltInstructions``. Compute-budget instructions are not added here; the
submission engine prepends them.

Account lists are declared in the program's order with default flags; when
the IDL is loaded it decides both order and flags.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from solders.instruction import Instruction
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from spl.token.instructions import (
    CloseAccountParams,
    SyncNativeParams,
    close_account,
    sync_native,
)

from adrena.perps import layouts
from adrena.perps.anchor import AccountSpec, acc, build_instruction, create_ata_idempotent_ix
from adrena.perps.constants import (
    LONG_OPEN_SLIPPAGE_PCT,
    NATIVE_MINT,
    RENT_SYSVAR,
    SHORT_OPEN_SLIPPAGE_PCT,
    SYSTEM_PROGRAM,
    TOKEN_PROGRAM,
    USDC_MINT,
)
from adrena.perps.errors import ConfigurationError
from adrena.perps.fixed_point import BPS, apply_slippage
from adrena.perps.idl import ProgramMetadata
from adrena.perps.models import Custody, LockedStake, Position
from adrena.perps.pdas import AddressRegistry, Side
from adrena.perps.resolver import AccountResolver

logger = logging.getLogger(__name__)

# SPL token account layout: mint(32) owner(32) amount(u64)
_TOKEN_AMOUNT_OFFSET = 64


@dataclass
class BuiltInstructions:
    pre: List[Instruction]
    instruction: Instruction
    post: List[Instruction] = field(default_factory=list)

    def instructions(self) -> List[Instruction]:
        return [*self.pre, self.instruction, *self.post]


def close_price_with_slippage(side: Side | str, price: int, slippage_bps: int) -> int:
    """Worst acceptable exit price for a close order."""
    side = Side.parse(side)
    if side is Side.SHORT:
        return price * BPS // (BPS - slippage_bps)
    return price * (BPS - slippage_bps) // BPS


class InstructionBuilder:
    def __init__(
        self,
        registry: AddressRegistry,
        resolver: AccountResolver,
        metadata: Optional[ProgramMetadata] = None,
        *,
        usdc_mint: Pubkey = USDC_MINT,
    ) -> None:
        self.registry = registry
        self.resolver = resolver
        self.metadata = metadata
        self.usdc_mint = usdc_mint

    @property
    def program_id(self) -> Pubkey:
        return self.registry.program_id

    def _ix(
        self,
        name: str,
        layout,
        args: dict,
        accounts: Sequence[AccountSpec],
        *,
        remaining: bool = False,
    ) -> Instruction:
        extra = self.resolver.remaining_accounts() if remaining else ()
        return build_instruction(
            self.program_id,
            name,
            layout,
            args,
            accounts,
            remaining=extra,
            metadata=self.metadata,
        )

    def _optional(self, pubkey: Optional[Pubkey]) -> Pubkey:
        # absent optional accounts are passed as the program id
        return pubkey if pubkey is not None else self.program_id

    def _ata(self, owner: Pubkey, mint: Pubkey) -> Pubkey:
        return self.registry.associated_token_address(owner, mint)

    # -- shared account groups -------------------------------------------------
    def _custody_accounts(self, prefix: str, custody: Custody, *, trade_oracle: bool = False,
                          oracle: bool = True, token_account: bool = True) -> List[AccountSpec]:
        out = [acc(prefix, custody.pubkey, mut=True)]
        if oracle:
            out.append(acc(f"{prefix}Oracle", custody.oracle))
        if trade_oracle:
            out.append(acc(f"{prefix}TradeOracle", custody.trade_oracle))
        if token_account:
            out.append(
                acc(f"{prefix}TokenAccount", self.registry.custody_token_account(custody.mint), mut=True)
            )
        return out

    def _staking_pair(self) -> List[AccountSpec]:
        return [
            acc("lmStaking", self.registry.staking(self.registry.lm_token_mint), mut=True),
            acc("lpStaking", self.registry.staking(self.registry.lp_token_mint), mut=True),
        ]

    def _reward_accounts(self) -> List[AccountSpec]:
        reward = self.resolver.staking_reward_custody
        lm_staking = self.registry.staking(self.registry.lm_token_mint)
        lp_staking = self.registry.staking(self.registry.lp_token_mint)
        return [
            acc("stakingRewardTokenCustody", reward.pubkey, mut=True),
            acc("stakingRewardTokenCustodyOracle", reward.oracle),
            acc(
                "stakingRewardTokenCustodyTokenAccount",
                self.registry.custody_token_account(reward.mint),
                mut=True,
            ),
            acc("lmStakingRewardTokenVault", self.registry.staking_reward_token_vault(lm_staking), mut=True),
            acc("lpStakingRewardTokenVault", self.registry.staking_reward_token_vault(lp_staking), mut=True),
        ]

    def _governance_accounts(self, owner: Pubkey) -> List[AccountSpec]:
        r = self.registry
        return [
            acc("governanceTokenMint", r.governance_token_mint, mut=True),
            acc("governanceRealm", r.governance_realm),
            acc("governanceRealmConfig", r.governance_realm_config),
            acc("governanceGoverningTokenHolding", r.governance_governing_token_holding, mut=True),
            acc("governanceGoverningTokenOwnerRecord", r.governance_governing_token_owner_record(owner), mut=True),
            acc("governanceProgram", r.governance_program),
        ]

    def _core(self) -> List[AccountSpec]:
        return [
            acc("transferAuthority", self.registry.transfer_authority),
            acc("cortex", self.registry.cortex, mut=True),
            acc("pool", self.resolver.pool.pubkey, mut=True),
        ]

    def _programs(self, *, system: bool = True) -> List[AccountSpec]:
        out = []
        if system:
            out.append(acc("systemProgram", SYSTEM_PROGRAM))
        out.append(acc("tokenProgram", TOKEN_PROGRAM))
        out.append(acc("adrenaProgram", self.program_id))
        return out

    def _fee_recipient(self) -> AccountSpec:
        return acc("protocolFeeRecipient", self.resolver.cortex.protocol_fee_recipient, mut=True)

    def _position_custodies(self, position: Position):
        custody = self.resolver.custody_by_pubkey(position.custody)
        collateral = self.resolver.custody_by_pubkey(position.collateral_custody)
        if custody is None:
            raise ConfigurationError("Cannot find custody related to position")
        if collateral is None:
            raise ConfigurationError("Cannot find collateral custody related to position")
        return custody, collateral

    # ---------------------------------------------------------------------------
    # Liquidity
    # ---------------------------------------------------------------------------

    async def add_liquidity(
        self, owner: Pubkey, mint: Pubkey, amount_in: int, min_lp_amount_out: int
    ) -> BuiltInstructions:
        custody = self.resolver.custody_by_mint(mint)
        pre: List[Instruction] = []
        lp_token_account = await self.resolver.ensure_ata(owner, self.registry.lp_token_mint, pre)
        accounts = [
            acc("owner", owner, signer=True, mut=True),
            acc("fundingAccount", self._ata(owner, mint), mut=True),
            acc("lpTokenAccount", lp_token_account, mut=True),
            acc("transferAuthority", self.registry.transfer_authority),
            acc("pool", self.resolver.pool.pubkey, mut=True),
            *self._custody_accounts("custody", custody),
            acc("lpTokenMint", self.registry.lp_token_mint, mut=True),
            acc("tokenProgram", TOKEN_PROGRAM),
            *self._staking_pair(),
            acc("cortex", self.registry.cortex, mut=True),
            *self._reward_accounts(),
            acc("lmTokenMint", self.registry.lm_token_mint, mut=True),
            self._fee_recipient(),
            acc("adrenaProgram", self.program_id),
        ]
        ix = self._ix(
            "addLiquidity",
            layouts.ADD_LIQUIDITY,
            {"amount_in": amount_in, "min_lp_amount_out": min_lp_amount_out},
            accounts,
            remaining=True,
        )
        return BuiltInstructions(pre, ix)

    async def remove_liquidity(
        self, owner: Pubkey, mint: Pubkey, lp_amount_in: int, min_amount_out: int
    ) -> BuiltInstructions:
        custody = self.resolver.custody_by_mint(mint)
        pre: List[Instruction] = []
        receiving_account = await self.resolver.ensure_ata(owner, mint, pre)
        accounts = [
            acc("owner", owner, signer=True, mut=True),
            acc("receivingAccount", receiving_account, mut=True),
            acc("lpTokenAccount", self._ata(owner, self.registry.lp_token_mint), mut=True),
            acc("transferAuthority", self.registry.transfer_authority),
            acc("pool", self.resolver.pool.pubkey, mut=True),
            *self._custody_accounts("custody", custody),
            acc("lpTokenMint", self.registry.lp_token_mint, mut=True),
            acc("tokenProgram", TOKEN_PROGRAM),
            *self._staking_pair(),
            acc("cortex", self.registry.cortex, mut=True),
            *self._reward_accounts(),
            self._fee_recipient(),
            acc("adrenaProgram", self.program_id),
        ]
        ix = self._ix(
            "removeLiquidity",
            layouts.REMOVE_LIQUIDITY,
            {"lp_amount_in": lp_amount_in, "min_amount_out": min_amount_out},
            accounts,
            remaining=True,
        )
        return BuiltInstructions(pre, ix)

    def add_genesis_liquidity(self, owner: Pubkey, amount_in: int, min_lp_amount_out: int) -> BuiltInstructions:
        custody = self.resolver.custody_by_mint(self.usdc_mint)
        r = self.registry
        lp_staking = r.staking(r.lp_token_mint)
        accounts = [
            acc("owner", owner, signer=True, mut=True),
            acc("fundingAccount", self._ata(owner, self.usdc_mint), mut=True),
            acc("transferAuthority", r.transfer_authority),
            acc("lpUserStaking", r.user_staking(owner, lp_staking), mut=True),
            acc("lpStaking", lp_staking, mut=True),
            acc("cortex", r.cortex, mut=True),
            acc("pool", self.resolver.pool.pubkey, mut=True),
            acc("lpStakingStakedTokenVault", r.staking_staked_token_vault(lp_staking), mut=True),
            *self._custody_accounts("custody", custody),
            acc("lmTokenMint", r.lm_token_mint, mut=True),
            acc("lpTokenMint", r.lp_token_mint, mut=True),
            *self._governance_accounts(owner),
            *self._programs(),
            acc("genesisLock", r.genesis_lock, mut=True),
        ]
        ix = self._ix(
            "addGenesisLiquidity",
            layouts.ADD_GENESIS_LIQUIDITY,
            {"min_lp_amount_out": min_lp_amount_out, "amount_in": amount_in},
            accounts,
            remaining=True,
        )
        return BuiltInstructions([], ix)

    # ---------------------------------------------------------------------------
    # Positions
    # ---------------------------------------------------------------------------

    async def open_or_increase_position_long(
        self,
        owner: Pubkey,
        mint: Pubkey,
        collateral_mint: Pubkey,
        price: int,
        collateral_amount: int,
        leverage: int,
        *,
        user_profile: Optional[Pubkey] = None,
        referrer: Optional[Pubkey] = None,
    ) -> BuiltInstructions:
        """Open or grow a long on ``mint`` funded with ``collateral_mint``.

        ``price`` is raised by 0.3% before encoding. ``leverage`` is in basis
        points (5x is 50_000).
        """
        receiving = self.resolver.custody_by_mint(collateral_mint)
        principal = self.resolver.custody_by_mint(mint)
        pre: List[Instruction] = []
        await self.resolver.ensure_ata(owner, mint, pre)

        accounts = [
            acc("owner", owner, signer=True, mut=True),
            acc("payer", owner, signer=True, mut=True),
            acc("fundingAccount", self._ata(owner, collateral_mint), mut=True),
            acc("collateralAccount", self._ata(owner, mint), mut=True),
            *self._custody_accounts("receivingCustody", receiving),
            *self._custody_accounts("principalCustody", principal, trade_oracle=True),
            acc("transferAuthority", self.registry.transfer_authority),
            acc("cortex", self.registry.cortex, mut=True),
            *self._staking_pair(),
            acc("pool", self.resolver.pool.pubkey, mut=True),
            acc("position", self.registry.position(owner, principal.pubkey, Side.LONG), mut=True),
            *self._reward_accounts(),
            acc("lpTokenMint", self.registry.lp_token_mint, mut=True),
            acc("userProfile", self._optional(user_profile), mut=True),
            *self._programs(),
            self._fee_recipient(),
        ]
        ix = self._ix(
            "openOrIncreasePositionWithSwapLong",
            layouts.OPEN_POSITION_WITH_SWAP,
            {
                "price": apply_slippage(price, LONG_OPEN_SLIPPAGE_PCT),
                "collateral": collateral_amount,
                "leverage": leverage,
                "referrer": referrer,
            },
            accounts,
        )
        return BuiltInstructions(pre, ix)

    async def open_or_increase_position_short(
        self,
        owner: Pubkey,
        mint: Pubkey,
        collateral_mint: Pubkey,
        price: int,
        collateral_amount: int,
        leverage: int,
        *,
        user_profile: Optional[Pubkey] = None,
        referrer: Optional[Pubkey] = None,
    ) -> BuiltInstructions:
        """Open or grow a short on ``mint``; the position is always backed by USDC.

        ``price`` is lowered by 0.3% before encoding.
        """
        receiving = self.resolver.custody_by_mint(collateral_mint)
        collateral = self.resolver.custody_by_mint(self.usdc_mint)
        principal = self.resolver.custody_by_mint(mint)
        pre: List[Instruction] = []
        await self.resolver.ensure_ata(owner, self.usdc_mint, pre)

        accounts = [
            acc("owner", owner, signer=True, mut=True),
            acc("payer", owner, signer=True, mut=True),
            acc("fundingAccount", self._ata(owner, collateral_mint), mut=True),
            acc("collateralAccount", self._ata(owner, self.usdc_mint), mut=True),
            *self._custody_accounts("receivingCustody", receiving),
            *self._custody_accounts("collateralCustody", collateral),
            *self._custody_accounts("principalCustody", principal, oracle=False, trade_oracle=True),
            acc("transferAuthority", self.registry.transfer_authority),
            acc("cortex", self.registry.cortex, mut=True),
            *self._staking_pair(),
            acc("pool", self.resolver.pool.pubkey, mut=True),
            acc("position", self.registry.position(owner, principal.pubkey, Side.SHORT), mut=True),
            *self._reward_accounts(),
            acc("lpTokenMint", self.registry.lp_token_mint, mut=True),
            self._fee_recipient(),
            acc("userProfile", self._optional(user_profile), mut=True),
            *self._programs(),
        ]
        ix = self._ix(
            "openOrIncreasePositionWithSwapShort",
            layouts.OPEN_POSITION_WITH_SWAP,
            {
                "price": apply_slippage(price, SHORT_OPEN_SLIPPAGE_PCT),
                "collateral": collateral_amount,
                "leverage": leverage,
                "referrer": referrer,
            },
            accounts,
        )
        return BuiltInstructions(pre, ix)

    async def close_position_long(
        self, position: Position, price: int, *, user_profile: Optional[Pubkey] = None
    ) -> BuiltInstructions:
        custody, _ = self._position_custodies(position)
        pre: List[Instruction] = []
        receiving_account = await self.resolver.ensure_ata(position.owner, custody.mint, pre)
        accounts = [
            acc("caller", position.owner, signer=True, mut=True),
            acc("owner", position.owner, mut=True),
            acc("receivingAccount", receiving_account, mut=True),
            acc("transferAuthority", self.registry.transfer_authority),
            acc("pool", self.resolver.pool.pubkey, mut=True),
            acc("position", position.pubkey, mut=True),
            acc("custody", custody.pubkey, mut=True),
            acc("custodyTokenAccount", self.registry.custody_token_account(custody.mint), mut=True),
            acc("custodyOracle", custody.oracle),
            acc("custodyTradeOracle", custody.trade_oracle),
            acc("tokenProgram", TOKEN_PROGRAM),
            *self._staking_pair(),
            acc("cortex", self.registry.cortex, mut=True),
            *self._reward_accounts(),
            acc("lpTokenMint", self.registry.lp_token_mint, mut=True),
            self._fee_recipient(),
            acc("adrenaProgram", self.program_id),
            acc("userProfile", self._optional(user_profile), mut=True),
        ]
        ix = self._ix("closePositionLong", layouts.CLOSE_POSITION, {"price": price}, accounts)
        return BuiltInstructions(pre, ix)

    async def close_position_short(
        self, position: Position, price: int, *, user_profile: Optional[Pubkey] = None
    ) -> BuiltInstructions:
        custody, collateral = self._position_custodies(position)
        pre: List[Instruction] = []
        receiving_account = await self.resolver.ensure_ata(position.owner, collateral.mint, pre)
        accounts = [
            acc("caller", position.owner, signer=True, mut=True),
            acc("owner", position.owner, mut=True),
            acc("receivingAccount", receiving_account, mut=True),
            acc("transferAuthority", self.registry.transfer_authority),
            acc("pool", self.resolver.pool.pubkey, mut=True),
            acc("position", position.pubkey, mut=True),
            acc("custody", custody.pubkey, mut=True),
            acc("custodyTradeOracle", custody.trade_oracle),
            acc("collateralCustody", collateral.pubkey, mut=True),
            acc("collateralCustodyOracle", collateral.oracle),
            acc(
                "collateralCustodyTokenAccount",
                self.registry.custody_token_account(collateral.mint),
                mut=True,
            ),
            acc("tokenProgram", TOKEN_PROGRAM),
            *self._staking_pair(),
            acc("cortex", self.registry.cortex, mut=True),
            *self._reward_accounts(),
            acc("lpTokenMint", self.registry.lp_token_mint, mut=True),
            self._fee_recipient(),
            acc("adrenaProgram", self.program_id),
            acc("userProfile", self._optional(user_profile), mut=True),
        ]
        ix = self._ix("closePositionShort", layouts.CLOSE_POSITION, {"price": price}, accounts)
        return BuiltInstructions(pre, ix)

    async def close_position(
        self, position: Position, price: int, *, user_profile: Optional[Pubkey] = None
    ) -> BuiltInstructions:
        if position.side is Side.LONG:
            return await self.close_position_long(position, price, user_profile=user_profile)
        return await self.close_position_short(position, price, user_profile=user_profile)

    # -- collateral --------------------------------------------------------------

    def add_collateral_long(self, position: Position, collateral_amount: int) -> BuiltInstructions:
        custody, _ = self._position_custodies(position)
        accounts = [
            acc("owner", position.owner, signer=True, mut=True),
            acc("fundingAccount", self._ata(position.owner, custody.mint), mut=True),
            acc("transferAuthority", self.registry.transfer_authority),
            acc("pool", self.resolver.pool.pubkey, mut=True),
            acc("position", position.pubkey, mut=True),
            acc("custody", custody.pubkey, mut=True),
            acc("custodyOracle", custody.oracle),
            acc("custodyTradeOracle", custody.trade_oracle),
            acc("custodyTokenAccount", self.registry.custody_token_account(custody.mint), mut=True),
            acc("tokenProgram", TOKEN_PROGRAM),
            acc("cortex", self.registry.cortex, mut=True),
            acc("adrenaProgram", self.program_id),
        ]
        ix = self._ix("addCollateralLong", layouts.ADD_COLLATERAL, {"collateral": collateral_amount}, accounts)
        return BuiltInstructions([], ix)

    def add_collateral_short(self, position: Position, collateral_amount: int) -> BuiltInstructions:
        custody, collateral = self._position_custodies(position)
        accounts = [
            acc("owner", position.owner, signer=True, mut=True),
            acc("fundingAccount", self._ata(position.owner, collateral.mint), mut=True),
            acc("transferAuthority", self.registry.transfer_authority),
            acc("pool", self.resolver.pool.pubkey, mut=True),
            acc("position", position.pubkey, mut=True),
            acc("custody", custody.pubkey, mut=True),
            acc("custodyTradeOracle", custody.trade_oracle),
            acc("collateralCustody", collateral.pubkey, mut=True),
            acc("tokenProgram", TOKEN_PROGRAM),
            acc("cortex", self.registry.cortex, mut=True),
            acc("adrenaProgram", self.program_id),
            acc("collateralCustodyOracle", collateral.oracle),
            acc(
                "collateralCustodyTokenAccount",
                self.registry.custody_token_account(collateral.mint),
                mut=True,
            ),
        ]
        ix = self._ix("addCollateralShort", layouts.ADD_COLLATERAL, {"collateral": collateral_amount}, accounts)
        return BuiltInstructions([], ix)

    def add_collateral(self, position: Position, collateral_amount: int) -> BuiltInstructions:
        if position.side is Side.LONG:
            return self.add_collateral_long(position, collateral_amount)
        return self.add_collateral_short(position, collateral_amount)

    async def remove_collateral_long(self, position: Position, collateral_usd: int) -> BuiltInstructions:
        custody, _ = self._position_custodies(position)
        pre: List[Instruction] = []
        receiving_account = await self.resolver.ensure_ata(position.owner, custody.mint, pre)
        accounts = [
            acc("owner", position.owner, signer=True, mut=True),
            acc("receivingAccount", receiving_account, mut=True),
            acc("transferAuthority", self.registry.transfer_authority),
            acc("pool", self.resolver.pool.pubkey, mut=True),
            acc("position", position.pubkey, mut=True),
            acc("custody", custody.pubkey, mut=True),
            acc("custodyOracle", custody.oracle),
            acc("custodyTradeOracle", custody.trade_oracle),
            acc("custodyTokenAccount", self.registry.custody_token_account(custody.mint), mut=True),
            acc("tokenProgram", TOKEN_PROGRAM),
            acc("cortex", self.registry.cortex, mut=True),
            acc("adrenaProgram", self.program_id),
        ]
        ix = self._ix(
            "removeCollateralLong", layouts.REMOVE_COLLATERAL, {"collateral_usd": collateral_usd}, accounts
        )
        return BuiltInstructions(pre, ix)

    async def remove_collateral_short(self, position: Position, collateral_usd: int) -> BuiltInstructions:
        custody, collateral = self._position_custodies(position)
        pre: List[Instruction] = []
        receiving_account = await self.resolver.ensure_ata(position.owner, collateral.mint, pre)
        accounts = [
            acc("owner", position.owner, signer=True, mut=True),
            acc("receivingAccount", receiving_account, mut=True),
            acc("transferAuthority", self.registry.transfer_authority),
            acc("pool", self.resolver.pool.pubkey, mut=True),
            acc("position", position.pubkey, mut=True),
            acc("custody", custody.pubkey, mut=True),
            acc("custodyTradeOracle", custody.trade_oracle),
            acc("collateralCustody", collateral.pubkey, mut=True),
            acc("collateralCustodyOracle", collateral.oracle),
            acc(
                "collateralCustodyTokenAccount",
                self.registry.custody_token_account(collateral.mint),
                mut=True,
            ),
            acc("tokenProgram", TOKEN_PROGRAM),
            acc("cortex", self.registry.cortex, mut=True),
            acc("adrenaProgram", self.program_id),
        ]
        ix = self._ix(
            "removeCollateralShort", layouts.REMOVE_COLLATERAL, {"collateral_usd": collateral_usd}, accounts
        )
        return BuiltInstructions(pre, ix)

    async def remove_collateral(self, position: Position, collateral_usd: int) -> BuiltInstructions:
        if position.side is Side.LONG:
            return await self.remove_collateral_long(position, collateral_usd)
        return await self.remove_collateral_short(position, collateral_usd)

    # -- stop loss / take profit -------------------------------------------------

    def _trigger_accounts(self, position: Position) -> List[AccountSpec]:
        self._position_custodies(position)
        return [
            acc("cortex", self.registry.cortex),
            acc("owner", position.owner, signer=True, mut=True),
            acc("pool", self.resolver.pool.pubkey),
            acc("custody", position.custody),
            acc("position", position.pubkey, mut=True),
        ]

    def _set_stop_loss(
        self, name: str, position: Position, stop_loss_limit_price: int, close_position_price: Optional[int]
    ) -> BuiltInstructions:
        ix = self._ix(
            name,
            layouts.SET_STOP_LOSS,
            {"stop_loss_limit_price": stop_loss_limit_price, "close_position_price": close_position_price},
            self._trigger_accounts(position),
        )
        return BuiltInstructions([], ix)

    def set_stop_loss_long(
        self, position: Position, stop_loss_limit_price: int, close_position_price: Optional[int] = None
    ) -> BuiltInstructions:
        return self._set_stop_loss("setStopLossLong", position, stop_loss_limit_price, close_position_price)

    def set_stop_loss_short(
        self, position: Position, stop_loss_limit_price: int, close_position_price: Optional[int] = None
    ) -> BuiltInstructions:
        return self._set_stop_loss("setStopLossShort", position, stop_loss_limit_price, close_position_price)

    def set_stop_loss(
        self, position: Position, stop_loss_limit_price: int, close_position_price: Optional[int] = None
    ) -> BuiltInstructions:
        if position.side is Side.LONG:
            return self.set_stop_loss_long(position, stop_loss_limit_price, close_position_price)
        return self.set_stop_loss_short(position, stop_loss_limit_price, close_position_price)

    def _set_take_profit(self, name: str, position: Position, take_profit_limit_price: int) -> BuiltInstructions:
        ix = self._ix(
            name,
            layouts.SET_TAKE_PROFIT,
            {"take_profit_limit_price": take_profit_limit_price},
            self._trigger_accounts(position),
        )
        return BuiltInstructions([], ix)

    def set_take_profit_long(self, position: Position, take_profit_limit_price: int) -> BuiltInstructions:
        return self._set_take_profit("setTakeProfitLong", position, take_profit_limit_price)

    def set_take_profit_short(self, position: Position, take_profit_limit_price: int) -> BuiltInstructions:
        return self._set_take_profit("setTakeProfitShort", position, take_profit_limit_price)

    def set_take_profit(self, position: Position, take_profit_limit_price: int) -> BuiltInstructions:
        if position.side is Side.LONG:
            return self.set_take_profit_long(position, take_profit_limit_price)
        return self.set_take_profit_short(position, take_profit_limit_price)

    def cancel_stop_loss(self, position: Position) -> BuiltInstructions:
        return BuiltInstructions([], self._ix("cancelStopLoss", layouts.EMPTY, {}, self._trigger_accounts(position)))

    def cancel_take_profit(self, position: Position) -> BuiltInstructions:
        return BuiltInstructions([], self._ix("cancelTakeProfit", layouts.EMPTY, {}, self._trigger_accounts(position)))

    # ---------------------------------------------------------------------------
    # Swap
    # ---------------------------------------------------------------------------

    async def swap(
        self,
        owner: Pubkey,
        mint_in: Pubkey,
        mint_out: Pubkey,
        amount_in: int,
        min_amount_out: int,
        *,
        user_profile: Optional[Pubkey] = None,
    ) -> BuiltInstructions:
        receiving = self.resolver.custody_by_mint(mint_in)
        dispensing = self.resolver.custody_by_mint(mint_out)
        pre: List[Instruction] = []
        receiving_account = await self.resolver.ensure_ata(owner, mint_out, pre)
        accounts = [
            acc("caller", owner, signer=True, mut=True),
            acc("owner", owner, mut=True),
            acc("fundingAccount", self._ata(owner, mint_in), mut=True),
            acc("receivingAccount", receiving_account, mut=True),
            acc("transferAuthority", self.registry.transfer_authority),
            acc("pool", self.resolver.pool.pubkey, mut=True),
            *self._custody_accounts("receivingCustody", receiving),
            *self._custody_accounts("dispensingCustody", dispensing),
            acc("tokenProgram", TOKEN_PROGRAM),
            *self._staking_pair(),
            acc("cortex", self.registry.cortex, mut=True),
            *self._reward_accounts(),
            acc("lpTokenMint", self.registry.lp_token_mint, mut=True),
            self._fee_recipient(),
            acc("userProfile", self._optional(user_profile), mut=True),
            acc("adrenaProgram", self.program_id),
        ]
        ix = self._ix(
            "swap",
            layouts.SWAP,
            {"amount_in": amount_in, "min_amount_out": min_amount_out},
            accounts,
        )
        return BuiltInstructions(pre, ix)

    # ---------------------------------------------------------------------------
    # Profile
    # ---------------------------------------------------------------------------

    def init_user_profile(self, owner: Pubkey, nickname: str) -> BuiltInstructions:
        accounts = [
            acc("user", owner, signer=True),
            acc("payer", owner, signer=True, mut=True),
            acc("userProfile", self.registry.user_profile(owner), mut=True),
            acc("cortex", self.registry.cortex, mut=True),
            acc("systemProgram", SYSTEM_PROGRAM),
        ]
        ix = self._ix("initUserProfile", layouts.USER_PROFILE, {"nickname": nickname}, accounts)
        return BuiltInstructions([], ix)

    def edit_user_profile(self, owner: Pubkey, nickname: str) -> BuiltInstructions:
        accounts = [
            acc("user", owner, signer=True),
            acc("payer", owner, signer=True, mut=True),
            acc("userProfile", self.registry.user_profile(owner), mut=True),
            acc("systemProgram", SYSTEM_PROGRAM),
        ]
        ix = self._ix("editUserProfile", layouts.USER_PROFILE, {"nickname": nickname}, accounts)
        return BuiltInstructions([], ix)

    def delete_user_profile(self, owner: Pubkey) -> BuiltInstructions:
        raise ConfigurationError("deleteUserProfile instruction only available to admin")

    # ---------------------------------------------------------------------------
    # Staking
    # ---------------------------------------------------------------------------

    def _user_staking_accounts(self, owner: Pubkey, staked_mint: Pubkey):
        staking = self.registry.staking(staked_mint)
        return staking, self.registry.user_staking(owner, staking)

    async def init_user_staking(self, owner: Pubkey, staked_mint: Pubkey) -> BuiltInstructions:
        r = self.registry
        staking, user_staking = self._user_staking_accounts(owner, staked_mint)
        pre: List[Instruction] = []
        reward_token_account = await self.resolver.ensure_ata(owner, self.usdc_mint, pre)
        await self.resolver.ensure_ata(owner, staked_mint, pre)
        lm_token_account = await self.resolver.ensure_ata(owner, r.lm_token_mint, pre)
        accounts = [
            acc("owner", owner, signer=True, mut=True),
            acc("rewardTokenAccount", reward_token_account, mut=True),
            acc("lmTokenAccount", lm_token_account, mut=True),
            acc("staking", staking, mut=True),
            acc("userStaking", user_staking, mut=True),
            acc("stakingRewardTokenVault", r.staking_reward_token_vault(staking), mut=True),
            acc("stakingLmRewardTokenVault", r.staking_lm_reward_token_vault(staking), mut=True),
            acc("transferAuthority", r.transfer_authority),
            acc("lmTokenMint", r.lm_token_mint, mut=True),
            acc("cortex", r.cortex, mut=True),
            acc("adrenaProgram", self.program_id),
            acc("tokenProgram", TOKEN_PROGRAM),
            acc("feeRedistributionMint", self.resolver.cortex.fee_redistribution_mint),
            acc("pool", self.resolver.pool.pubkey, mut=True),
            acc("genesisLock", r.genesis_lock, mut=True),
            acc("systemProgram", SYSTEM_PROGRAM),
        ]
        return BuiltInstructions(pre, self._ix("initUserStaking", layouts.EMPTY, {}, accounts))

    async def add_liquid_stake(self, owner: Pubkey, staked_mint: Pubkey, amount: int) -> BuiltInstructions:
        r = self.registry
        staking, user_staking = self._user_staking_accounts(owner, staked_mint)
        pre: List[Instruction] = []
        reward_token_account = await self.resolver.ensure_ata(owner, self.usdc_mint, pre)
        await self.resolver.ensure_ata(owner, staked_mint, pre)
        accounts = [
            acc("owner", owner, signer=True, mut=True),
            acc("fundingAccount", self._ata(owner, staked_mint), mut=True),
            acc("rewardTokenAccount", reward_token_account, mut=True),
            acc("lmTokenAccount", self._ata(owner, r.lm_token_mint), mut=True),
            acc("stakingStakedTokenVault", r.staking_staked_token_vault(staking), mut=True),
            acc("stakingRewardTokenVault", r.staking_reward_token_vault(staking), mut=True),
            acc("stakingLmRewardTokenVault", r.staking_lm_reward_token_vault(staking), mut=True),
            acc("transferAuthority", r.transfer_authority),
            acc("userStaking", user_staking, mut=True),
            acc("staking", staking, mut=True),
            acc("cortex", r.cortex, mut=True),
            acc("lmTokenMint", r.lm_token_mint, mut=True),
            *self._governance_accounts(owner),
            acc("adrenaProgram", self.program_id),
            acc("systemProgram", SYSTEM_PROGRAM),
            acc("tokenProgram", TOKEN_PROGRAM),
            acc("feeRedistributionMint", self.resolver.cortex.fee_redistribution_mint),
            acc("pool", self.resolver.pool.pubkey, mut=True),
            acc("genesisLock", r.genesis_lock, mut=True),
        ]
        return BuiltInstructions(pre, self._ix("addLiquidStake", layouts.ADD_LIQUID_STAKE, {"amount": amount}, accounts))

    async def add_locked_stake(
        self, owner: Pubkey, staked_mint: Pubkey, amount: int, locked_days: int
    ) -> BuiltInstructions:
        r = self.registry
        staking, user_staking = self._user_staking_accounts(owner, staked_mint)
        pre: List[Instruction] = []
        reward_token_account = await self.resolver.ensure_ata(owner, self.usdc_mint, pre)
        await self.resolver.ensure_ata(owner, staked_mint, pre)
        accounts = [
            acc("owner", owner, signer=True, mut=True),
            acc("fundingAccount", self._ata(owner, staked_mint), mut=True),
            acc("rewardTokenAccount", reward_token_account, mut=True),
            acc("stakingStakedTokenVault", r.staking_staked_token_vault(staking), mut=True),
            acc("stakingRewardTokenVault", r.staking_reward_token_vault(staking), mut=True),
            acc("transferAuthority", r.transfer_authority),
            acc("userStaking", user_staking, mut=True),
            acc("staking", staking, mut=True),
            acc("cortex", r.cortex, mut=True),
            acc("lmTokenMint", r.lm_token_mint, mut=True),
            *self._governance_accounts(owner),
            acc("adrenaProgram", self.program_id),
            acc("systemProgram", SYSTEM_PROGRAM),
            acc("tokenProgram", TOKEN_PROGRAM),
            acc("feeRedistributionMint", self.resolver.cortex.fee_redistribution_mint),
        ]
        ix = self._ix(
            "addLockedStake",
            layouts.ADD_LOCKED_STAKE,
            {"amount": amount, "locked_days": locked_days},
            accounts,
        )
        return BuiltInstructions(pre, ix)

    def upgrade_locked_stake(
        self,
        owner: Pubkey,
        staked_mint: Pubkey,
        locked_stake_id: int,
        *,
        amount: Optional[int] = None,
        locked_days: Optional[int] = None,
    ) -> BuiltInstructions:
        r = self.registry
        staking, user_staking = self._user_staking_accounts(owner, staked_mint)
        fee_mint = self.resolver.cortex.fee_redistribution_mint
        funding_account = self._ata(owner, staked_mint)
        reward_token_account = self._ata(owner, fee_mint)
        lm_token_account = self._ata(owner, r.lm_token_mint)
        pre = [
            create_ata_idempotent_ix(owner, funding_account, owner, staked_mint),
            create_ata_idempotent_ix(owner, reward_token_account, owner, fee_mint),
            create_ata_idempotent_ix(owner, lm_token_account, owner, r.lm_token_mint),
        ]
        accounts = [
            acc("owner", owner, signer=True, mut=True),
            acc("fundingAccount", funding_account, mut=True),
            acc("transferAuthority", r.transfer_authority),
            acc("cortex", r.cortex, mut=True),
            *self._governance_accounts(owner),
            acc("systemProgram", SYSTEM_PROGRAM),
            acc("tokenProgram", TOKEN_PROGRAM),
            acc("feeRedistributionMint", fee_mint),
            acc("stakingRewardTokenVault", r.staking_reward_token_vault(staking), mut=True),
            acc("userStaking", user_staking, mut=True),
            acc("staking", staking, mut=True),
            acc("stakingStakedTokenVault", r.staking_staked_token_vault(staking), mut=True),
            acc("lmTokenMint", r.lm_token_mint, mut=True),
            acc("adrenaProgram", self.program_id),
            acc("pool", self.resolver.pool.pubkey, mut=True),
            acc("genesisLock", r.genesis_lock, mut=True),
            acc("rewardTokenAccount", reward_token_account, mut=True),
            acc("lmTokenAccount", lm_token_account, mut=True),
            acc("stakingLmRewardTokenVault", r.staking_lm_reward_token_vault(staking), mut=True),
        ]
        ix = self._ix(
            "upgradeLockedStake",
            layouts.UPGRADE_LOCKED_STAKE,
            {"locked_stake_id": locked_stake_id, "amount": amount, "locked_days": locked_days},
            accounts,
        )
        return BuiltInstructions(pre, ix)

    async def remove_liquid_stake(self, owner: Pubkey, staked_mint: Pubkey, amount: int) -> BuiltInstructions:
        r = self.registry
        staking, user_staking = self._user_staking_accounts(owner, staked_mint)
        pre: List[Instruction] = []
        reward_token_account = await self.resolver.ensure_ata(owner, self.usdc_mint, pre)
        accounts = [
            acc("owner", owner, signer=True, mut=True),
            acc("lmTokenAccount", self._ata(owner, r.lm_token_mint), mut=True),
            acc("rewardTokenAccount", reward_token_account, mut=True),
            acc("stakingStakedTokenVault", r.staking_staked_token_vault(staking), mut=True),
            acc("stakingRewardTokenVault", r.staking_reward_token_vault(staking), mut=True),
            acc("stakingLmRewardTokenVault", r.staking_lm_reward_token_vault(staking), mut=True),
            acc("userStaking", user_staking, mut=True),
            acc("staking", staking, mut=True),
            acc("transferAuthority", r.transfer_authority),
            acc("cortex", r.cortex, mut=True),
            acc("lmTokenMint", r.lm_token_mint, mut=True),
            *self._governance_accounts(owner),
            acc("adrenaProgram", self.program_id),
            acc("systemProgram", SYSTEM_PROGRAM),
            acc("tokenProgram", TOKEN_PROGRAM),
            acc("stakedTokenAccount", self._ata(owner, staked_mint), mut=True),
            acc("feeRedistributionMint", self.resolver.cortex.fee_redistribution_mint),
            acc("genesisLock", r.genesis_lock, mut=True),
            acc("pool", self.resolver.pool.pubkey, mut=True),
        ]
        ix = self._ix("removeLiquidStake", layouts.REMOVE_LIQUID_STAKE, {"amount": amount}, accounts)
        return BuiltInstructions(pre, ix)

    def finalize_locked_stake(
        self, owner: Pubkey, staked_mint: Pubkey, locked_stake_id: int, early_exit: bool = False
    ) -> BuiltInstructions:
        r = self.registry
        staking, user_staking = self._user_staking_accounts(owner, staked_mint)
        accounts = [
            acc("caller", owner, signer=True, mut=True),
            acc("owner", owner, mut=True),
            acc("userStaking", user_staking, mut=True),
            acc("staking", staking, mut=True),
            acc("transferAuthority", r.transfer_authority),
            acc("cortex", r.cortex, mut=True),
            acc("lmTokenMint", r.lm_token_mint, mut=True),
            *self._governance_accounts(owner),
            *self._programs(),
        ]
        ix = self._ix(
            "finalizeLockedStake",
            layouts.FINALIZE_LOCKED_STAKE,
            {"locked_stake_id": locked_stake_id, "early_exit": early_exit},
            accounts,
        )
        return BuiltInstructions([], ix)

    async def remove_locked_stake(
        self, owner: Pubkey, staked_mint: Pubkey, stake: LockedStake, *, early_exit: bool = False
    ) -> BuiltInstructions:
        """Withdraw one locked stake; an unresolved stake is finalized first in the same transaction."""
        r = self.registry
        staking, user_staking = self._user_staking_accounts(owner, staked_mint)
        pre: List[Instruction] = []
        if not stake.resolved:
            pre.append(self.finalize_locked_stake(owner, staked_mint, stake.id, early_exit).instruction)
        staked_token_account = await self.resolver.ensure_ata(owner, staked_mint, pre)
        accounts = [
            acc("owner", owner, signer=True, mut=True),
            acc("lmTokenAccount", self._ata(owner, r.lm_token_mint), mut=True),
            acc("rewardTokenAccount", self._ata(owner, self.usdc_mint), mut=True),
            acc("stakingStakedTokenVault", r.staking_staked_token_vault(staking), mut=True),
            acc("stakingRewardTokenVault", r.staking_reward_token_vault(staking), mut=True),
            acc("stakingLmRewardTokenVault", r.staking_lm_reward_token_vault(staking), mut=True),
            acc("userStaking", user_staking, mut=True),
            acc("staking", staking, mut=True),
            acc("transferAuthority", r.transfer_authority),
            acc("cortex", r.cortex, mut=True),
            acc("lmTokenMint", r.lm_token_mint, mut=True),
            *self._governance_accounts(owner),
            acc("adrenaProgram", self.program_id),
            acc("systemProgram", SYSTEM_PROGRAM),
            acc("tokenProgram", TOKEN_PROGRAM),
            acc("feeRedistributionMint", self.resolver.cortex.fee_redistribution_mint),
            acc("stakedTokenAccount", staked_token_account, mut=True),
            acc("stakedTokenMint", staked_mint),
            acc("pool", self.resolver.pool.pubkey, mut=True),
            acc("genesisLock", r.genesis_lock, mut=True),
        ]
        ix = self._ix(
            "removeLockedStake",
            layouts.REMOVE_LOCKED_STAKE,
            {"locked_stake_index": stake.index},
            accounts,
        )
        return BuiltInstructions(pre, ix)

    async def claim_stakes(
        self,
        owner: Pubkey,
        staked_mint: Pubkey,
        *,
        locked_stake_indexes: Optional[Sequence[int]] = None,
    ) -> BuiltInstructions:
        r = self.registry
        staking, user_staking = self._user_staking_accounts(owner, staked_mint)
        pre: List[Instruction] = []
        reward_token_account = await self.resolver.ensure_ata(owner, self.usdc_mint, pre)
        lm_token_account = await self.resolver.ensure_ata(owner, r.lm_token_mint, pre)
        accounts = [
            acc("caller", owner, signer=True, mut=True),
            acc("payer", owner, signer=True, mut=True),
            acc("owner", owner),
            acc("rewardTokenAccount", reward_token_account, mut=True),
            acc("lmTokenAccount", lm_token_account, mut=True),
            acc("stakingRewardTokenVault", r.staking_reward_token_vault(staking), mut=True),
            acc("stakingLmRewardTokenVault", r.staking_lm_reward_token_vault(staking), mut=True),
            acc("transferAuthority", r.transfer_authority),
            acc("userStaking", user_staking, mut=True),
            acc("staking", staking, mut=True),
            acc("cortex", r.cortex, mut=True),
            acc("lmTokenMint", r.lm_token_mint, mut=True),
            acc("adrenaProgram", self.program_id),
            acc("systemProgram", SYSTEM_PROGRAM),
            acc("tokenProgram", TOKEN_PROGRAM),
            acc("feeRedistributionMint", self.resolver.cortex.fee_redistribution_mint),
            acc("pool", self.resolver.pool.pubkey, mut=True),
            acc("genesisLock", r.genesis_lock, mut=True),
        ]
        indexes = list(locked_stake_indexes) if locked_stake_indexes is not None else None
        ix = self._ix("claimStakes", layouts.CLAIM_STAKES, {"locked_stake_indexes": indexes}, accounts)
        return BuiltInstructions(pre, ix)

    def resolve_staking_round(self, caller: Pubkey, staked_mint: Pubkey) -> BuiltInstructions:
        r = self.registry
        staking = r.staking(staked_mint)
        accounts = [
            acc("caller", caller, signer=True, mut=True),
            acc("payer", caller, signer=True, mut=True),
            acc("stakingStakedTokenVault", r.staking_staked_token_vault(staking), mut=True),
            acc("stakingRewardTokenVault", r.staking_reward_token_vault(staking), mut=True),
            acc("stakingLmRewardTokenVault", r.staking_lm_reward_token_vault(staking), mut=True),
            acc("transferAuthority", r.transfer_authority),
            acc("staking", staking, mut=True),
            acc("cortex", r.cortex, mut=True),
            acc("lmTokenMint", r.lm_token_mint, mut=True),
            acc("feeRedistributionMint", self.resolver.cortex.fee_redistribution_mint),
            *self._programs(),
        ]
        return BuiltInstructions([], self._ix("resolveStakingRound", layouts.EMPTY, {}, accounts))

    async def claim_vest(self, owner: Pubkey) -> BuiltInstructions:
        r = self.registry
        pre: List[Instruction] = []
        receiving_account = await self.resolver.ensure_ata(owner, r.lm_token_mint, pre)
        accounts = [
            acc("caller", owner, signer=True, mut=True),
            acc("payer", owner, signer=True, mut=True),
            acc("owner", owner, mut=True),
            acc("receivingAccount", receiving_account, mut=True),
            acc("transferAuthority", r.transfer_authority),
            acc("cortex", r.cortex, mut=True),
            acc("vestRegistry", r.vest_registry, mut=True),
            acc("vest", r.vest(owner), mut=True),
            acc("lmTokenMint", r.lm_token_mint, mut=True),
            *self._governance_accounts(owner),
            acc("adrenaProgram", self.program_id),
            acc("systemProgram", SYSTEM_PROGRAM),
            acc("tokenProgram", TOKEN_PROGRAM),
            acc("rent", RENT_SYSVAR),
        ]
        return BuiltInstructions(pre, self._ix("claimVest", layouts.EMPTY, {}, accounts))

    # ---------------------------------------------------------------------------
    # Wrapped SOL
    # ---------------------------------------------------------------------------

    async def prepare_wsol_account(self, owner: Pubkey, amount: int) -> List[Instruction]:
        """Make sure the owner's WSOL account exists and holds at least ``amount`` lamports."""
        wsol_ata = self._ata(owner, NATIVE_MINT)
        instructions = [create_ata_idempotent_ix(owner, wsol_ata, owner, NATIVE_MINT)]
        data = await self.resolver.ledger.get_account_info(wsol_ata)
        balance = 0
        if data is not None and len(data) >= _TOKEN_AMOUNT_OFFSET + 8:
            balance = int.from_bytes(data[_TOKEN_AMOUNT_OFFSET:_TOKEN_AMOUNT_OFFSET + 8], "little")
        if amount == 0 or balance >= amount:
            return instructions
        logger.debug("Wrapping %d lamports into %s", amount - balance, wsol_ata)
        instructions.append(
            transfer(TransferParams(from_pubkey=owner, to_pubkey=wsol_ata, lamports=amount - balance))
        )
        instructions.append(sync_native(SyncNativeParams(program_id=TOKEN_PROGRAM, account=wsol_ata)))
        return instructions

    def close_wsol_account(self, owner: Pubkey) -> Instruction:
        return close_account(
            CloseAccountParams(
                program_id=TOKEN_PROGRAM,
                account=self._ata(owner, NATIVE_MINT),
                dest=owner,
                owner=owner,
            )
        )


__all__ = ["BuiltInstructions", "InstructionBuilder", "close_price_with_slippage"]
