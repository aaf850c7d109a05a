"""Read-only program views.

Each view is an instruction that is only ever simulated; the program writes
its answer into the transaction return data.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, List, Optional, Pattern, Sequence

from solders.compute_budget import set_compute_unit_limit
from solders.instruction import Instruction
from solders.pubkey import Pubkey

from adrena.perps import layouts
from adrena.perps.anchor import AccountSpec, acc, build_instruction
from adrena.perps.builders import InstructionBuilder
from adrena.perps.constants import MAX_COMPUTE_UNITS, token_by_symbol
from adrena.perps.errors import ConfigurationError, UnknownError
from adrena.perps.fees import Simulate
from adrena.perps.fixed_point import LM_DECIMALS, native_to_ui
from adrena.perps.models import Position
from adrena.perps.pdas import Side

logger = logging.getLogger(__name__)

# integer return values arrive as little-endian bytes
BN = "BN"

_ALP_REWARD_RE = re.compile(r"Transfer rewards amount: (\d+)")
_ALP_LM_REWARD_RE = re.compile(r"Transfer lm_rewards_token_amount: (\d+)")
_ALP_GENESIS_RE = re.compile(r"Mint (\d+) LM tokens for ecosystem bucket")
_ADX_LM_REWARD_RE = re.compile(r"Distribute (\d+) lm rewards")


@dataclass(frozen=True)
class ClaimableRewards:
    pending_usdc_rewards: Decimal
    pending_adx_rewards: Decimal
    pending_genesis_adx_rewards: Decimal


def _last_match(pattern: Optional[Pattern[str]], logs: Sequence[str]) -> int:
    if pattern is None:
        return 0
    amount = 0
    for line in logs:
        match = pattern.search(line)
        if match:
            amount = int(match.group(1))
    return amount


def decode_return(metadata: Any, type_name: str, data: bytes) -> Any:
    if type_name == BN:
        return int.from_bytes(data, "little")
    return metadata.decode_type(type_name, data)


class ProgramViews:
    def __init__(self, builder: InstructionBuilder, simulate: Simulate, payer: Pubkey) -> None:
        self.builder = builder
        self.registry = builder.registry
        self.resolver = builder.resolver
        self.metadata = builder.metadata
        self.simulate = simulate
        self.payer = payer

    async def _view(
        self,
        ix_name: str,
        layout: Any,
        args: dict,
        accounts: Sequence[AccountSpec],
        type_name: str,
        *,
        remaining: bool = False,
    ) -> Any:
        extra = self.resolver.remaining_accounts() if remaining else ()
        ix = build_instruction(
            self.registry.program_id,
            ix_name,
            layout,
            args,
            accounts,
            remaining=extra,
            metadata=self.metadata,
        )
        result = await self.simulate([ix], self.payer)
        if result.return_data is None:
            raise UnknownError("View expected return data", raw="\n".join(result.logs))
        return decode_return(self.metadata, type_name, result.return_data)

    def _base(self) -> List[AccountSpec]:
        return [
            acc("cortex", self.registry.cortex),
            acc("pool", self.resolver.pool.pubkey),
        ]

    async def get_swap_amount_and_fees(self, mint_in: Pubkey, mint_out: Pubkey, amount_in: int) -> Any:
        receiving = self.resolver.custody_by_mint(mint_in)
        dispensing = self.resolver.custody_by_mint(mint_out)
        accounts = [
            *self._base(),
            acc("receivingCustody", receiving.pubkey),
            acc("receivingCustodyOracle", receiving.oracle),
            acc("dispensingCustody", dispensing.pubkey),
            acc("dispensingCustodyOracle", dispensing.oracle),
        ]
        return await self._view(
            "getSwapAmountAndFees",
            layouts.GET_SWAP_AMOUNT_AND_FEES,
            {"amount_in": amount_in},
            accounts,
            "SwapAmountAndFees",
        )

    async def get_open_position_with_swap_amount_and_fees(
        self,
        collateral_mint: Pubkey,
        mint: Pubkey,
        collateral_amount: int,
        leverage: int,
        side: Side | str,
    ) -> Any:
        side = Side.parse(side)
        receiving = self.resolver.custody_by_mint(collateral_mint)
        principal = self.resolver.custody_by_mint(mint)
        collateral = principal if side is Side.LONG else self.resolver.custody_by_mint(self.builder.usdc_mint)
        accounts = [
            *self._base(),
            acc("receivingCustody", receiving.pubkey),
            acc("receivingCustodyOracle", receiving.oracle),
            acc("collateralCustody", collateral.pubkey),
            acc("collateralCustodyOracle", collateral.oracle),
            acc("principalCustody", principal.pubkey),
            acc("principalCustodyTradeOracle", principal.trade_oracle),
            acc("adrenaProgram", self.registry.program_id),
        ]
        return await self._view(
            "getOpenPositionWithSwapAmountAndFees",
            layouts.GET_OPEN_POSITION_WITH_SWAP_AMOUNT_AND_FEES,
            {"collateral_amount": collateral_amount, "leverage": leverage, "side": int(side)},
            accounts,
            "OpenPositionWithSwapAmountAndFees",
        )

    async def get_entry_price_and_fee(
        self, mint: Pubkey, collateral_mint: Pubkey, collateral: int, leverage: int, side: Side | str
    ) -> Any:
        side = Side.parse(side)
        custody = self.resolver.custody_by_mint(mint)
        collateral_custody = self.resolver.custody_by_mint(collateral_mint)
        accounts = [
            *self._base(),
            acc("custody", custody.pubkey),
            acc("custodyTradeOracle", custody.trade_oracle),
            acc("collateralCustodyOracle", collateral_custody.oracle),
            acc("collateralCustody", collateral_custody.pubkey),
        ]
        return await self._view(
            "getEntryPriceAndFee",
            layouts.GET_ENTRY_PRICE_AND_FEE,
            {"collateral": collateral, "leverage": leverage, "side": int(side)},
            accounts,
            "NewPositionPricesAndFee",
        )

    def _position_accounts(self, position: Position) -> List[AccountSpec]:
        custody = self.resolver.require_custody(position.custody)
        collateral = self.resolver.require_custody(position.collateral_custody)
        return [
            *self._base(),
            acc("position", position.pubkey),
            acc("custody", custody.pubkey),
            acc("custodyTradeOracle", custody.trade_oracle),
            acc("collateralCustodyOracle", collateral.oracle),
            acc("collateralCustody", collateral.pubkey),
        ]

    async def get_exit_price_and_fee(self, position: Position) -> Any:
        return await self._view(
            "getExitPriceAndFee", layouts.EMPTY, {}, self._position_accounts(position), "ExitPriceAndFee"
        )

    async def get_pnl(self, position: Position) -> Any:
        return await self._view("getPnl", layouts.EMPTY, {}, self._position_accounts(position), "ProfitAndLoss")

    async def get_liquidation_price(
        self, position: Position, add_collateral: int = 0, remove_collateral: int = 0
    ) -> int:
        accounts = [spec for spec in self._position_accounts(position) if spec.name != "custodyTradeOracle"]
        return await self._view(
            "getLiquidationPrice",
            layouts.GET_LIQUIDATION_PRICE,
            {"add_collateral": add_collateral, "remove_collateral": remove_collateral},
            accounts,
            BN,
        )

    async def get_assets_under_management(self) -> int:
        return await self._view(
            "getAssetsUnderManagement", layouts.EMPTY, {}, self._base(), BN, remaining=True
        )

    def _liquidity_accounts(self, mint: Pubkey) -> List[AccountSpec]:
        custody = self.resolver.custody_by_mint(mint)
        return [
            *self._base(),
            acc("custody", custody.pubkey),
            acc("custodyOracle", custody.oracle),
            acc("lpTokenMint", self.registry.lp_token_mint),
        ]

    async def get_add_liquidity_amount_and_fee(self, mint: Pubkey, amount_in: int) -> Any:
        if amount_in == 0:
            raise ConfigurationError("Cannot add 0 liquidity")
        return await self._view(
            "getAddLiquidityAmountAndFee",
            layouts.GET_ADD_LIQUIDITY_AMOUNT_AND_FEE,
            {"amount_in": amount_in},
            self._liquidity_accounts(mint),
            "AmountAndFee",
            remaining=True,
        )

    async def get_remove_liquidity_amount_and_fee(self, mint: Pubkey, lp_amount_in: int) -> Any:
        return await self._view(
            "getRemoveLiquidityAmountAndFee",
            layouts.GET_REMOVE_LIQUIDITY_AMOUNT_AND_FEE,
            {"lp_amount_in": lp_amount_in},
            self._liquidity_accounts(mint),
            "AmountAndFee",
            remaining=True,
        )

    async def get_lp_token_price(self) -> int:
        accounts = [*self._base(), acc("lpTokenMint", self.registry.lp_token_mint)]
        return await self._view("getLpTokenPrice", layouts.EMPTY, {}, accounts, BN, remaining=True)

    # ------------------------------------------------------------------
    # Claimable rewards
    # ------------------------------------------------------------------
    async def simulate_claim_stakes(self, owner: Pubkey, staked_mint: Pubkey) -> ClaimableRewards:
        """Simulate a claim and read the pending rewards out of the program logs."""
        built = await self.builder.claim_stakes(owner, staked_mint)
        instructions: List[Instruction] = [set_compute_unit_limit(MAX_COMPUTE_UNITS), *built.instructions()]
        result = await self.simulate(instructions, owner)

        is_alp = staked_mint == self.registry.lp_token_mint
        usdc = _last_match(_ALP_REWARD_RE, result.logs)
        adx = _last_match(_ALP_LM_REWARD_RE if is_alp else _ADX_LM_REWARD_RE, result.logs)
        genesis = _last_match(_ALP_GENESIS_RE if is_alp else None, result.logs)

        usdc_decimals = token_by_symbol("USDC").decimals
        logger.debug("Claimable for %s: usdc=%d adx=%d genesis=%d", owner, usdc, adx, genesis)
        return ClaimableRewards(
            pending_usdc_rewards=native_to_ui(usdc, usdc_decimals),
            pending_adx_rewards=native_to_ui(adx, LM_DECIMALS),
            pending_genesis_adx_rewards=native_to_ui(genesis, LM_DECIMALS),
        )


__all__ = ["ProgramViews", "ClaimableRewards", "decode_return", "BN"]
