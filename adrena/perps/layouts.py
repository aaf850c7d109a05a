"""Borsh layouts for instruction arguments.

Every Adrena instruction takes a single params struct; field order here is the
wire order.
"""

from __future__ import annotations

from anchorpy.borsh_extension import BorshPubkey
from borsh_construct import U8, U32, U64, Bool, CStruct, Option, String, Vec

# -- liquidity --------------------------------------------------------------
ADD_LIQUIDITY = CStruct("amount_in" / U64, "min_lp_amount_out" / U64)
REMOVE_LIQUIDITY = CStruct("lp_amount_in" / U64, "min_amount_out" / U64)
ADD_GENESIS_LIQUIDITY = CStruct("min_lp_amount_out" / U64, "amount_in" / U64)

# -- positions --------------------------------------------------------------
OPEN_POSITION_WITH_SWAP = CStruct(
    "price" / U64,
    "collateral" / U64,
    "leverage" / U32,
    "referrer" / Option(BorshPubkey),
)
CLOSE_POSITION = CStruct("price" / U64)
ADD_COLLATERAL = CStruct("collateral" / U64)
REMOVE_COLLATERAL = CStruct("collateral_usd" / U64)
SWAP = CStruct("amount_in" / U64, "min_amount_out" / U64)

SET_STOP_LOSS = CStruct("stop_loss_limit_price" / U64, "close_position_price" / Option(U64))
SET_TAKE_PROFIT = CStruct("take_profit_limit_price" / U64)
EMPTY = CStruct()

# -- profile ----------------------------------------------------------------
USER_PROFILE = CStruct("nickname" / String)

# -- staking ----------------------------------------------------------------
ADD_LIQUID_STAKE = CStruct("amount" / U64)
REMOVE_LIQUID_STAKE = CStruct("amount" / U64)
ADD_LOCKED_STAKE = CStruct("amount" / U64, "locked_days" / U32)
UPGRADE_LOCKED_STAKE = CStruct(
    "locked_stake_id" / U64,
    "amount" / Option(U64),
    "locked_days" / Option(U32),
)
FINALIZE_LOCKED_STAKE = CStruct("locked_stake_id" / U64, "early_exit" / Bool)
REMOVE_LOCKED_STAKE = CStruct("locked_stake_index" / U64)
CLAIM_STAKES = CStruct("locked_stake_indexes" / Option(Vec(U64)))

# -- views ------------------------------------------------------------------
GET_SWAP_AMOUNT_AND_FEES = CStruct("amount_in" / U64)
GET_OPEN_POSITION_WITH_SWAP_AMOUNT_AND_FEES = CStruct(
    "collateral_amount" / U64,
    "leverage" / U32,
    "side" / U8,
)
# Side is a unit enum {None, Long, Short}; its tag equals the side byte.
GET_ENTRY_PRICE_AND_FEE = CStruct("collateral" / U64, "leverage" / U32, "side" / U8)
GET_LIQUIDATION_PRICE = CStruct("add_collateral" / U64, "remove_collateral" / U64)
GET_ADD_LIQUIDITY_AMOUNT_AND_FEE = CStruct("amount_in" / U64)
GET_REMOVE_LIQUIDITY_AMOUNT_AND_FEE = CStruct("lp_amount_in" / U64)
