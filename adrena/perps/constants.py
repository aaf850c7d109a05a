from __future__ import annotations

from dataclasses import dataclass
from typing import Dict

from solders.pubkey import Pubkey

TOKEN_PROGRAM            = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
SYSTEM_PROGRAM           = Pubkey.from_string("11111111111111111111111111111111")
ASSOCIATED_TOKEN_PROGRAM = Pubkey.from_string("ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL")
RENT_SYSVAR              = Pubkey.from_string("SysvarRent111111111111111111111111111111111")
BPF_LOADER_UPGRADEABLE   = Pubkey.from_string("BPFLoaderUpgradeab1e11111111111111111111111")
COMPUTE_BUDGET_PROGRAM   = Pubkey.from_string("ComputeBudget111111111111111111111111111111")

NATIVE_MINT  = Pubkey.from_string("So11111111111111111111111111111111111111112")
DEFAULT_PUBKEY = Pubkey.default()

DEFAULT_PROGRAM_ID = Pubkey.from_string("13gDzEXCdocbj8iAiqrScGo47NiSuYENGsRqi3SEAwet")
GOVERNANCE_PROGRAM = Pubkey.from_string("GovER5Lthms3bLBqWub97yVrMmEogzX7xNjdXpPPCVZw")

MICRO_LAMPORTS_PER_LAMPORT = 1_000_000

# Upper bound used for the first simulation pass
MAX_COMPUTE_UNITS = 1_400_000
COMPUTE_UNIT_MARGIN = 1.05
# Solflare appends two instructions after signing
SOLFLARE_EXTRA_UNITS = 12_000

LONG_OPEN_SLIPPAGE_PCT = 0.3
SHORT_OPEN_SLIPPAGE_PCT = -0.3


@dataclass(frozen=True)
class TokenInfo:
    mint: Pubkey
    name: str
    symbol: str
    decimals: int
    coingecko_id: str
    pyth_price_update_v2: Pubkey


def _token(mint: str, name: str, symbol: str, decimals: int, coingecko_id: str, pyth: str) -> TokenInfo:
    return TokenInfo(
        mint=Pubkey.from_string(mint),
        name=name,
        symbol=symbol,
        decimals=decimals,
        coingecko_id=coingecko_id,
        pyth_price_update_v2=Pubkey.from_string(pyth),
    )


# Mainnet tokens known to the pool. BTC has no SPL mint and uses the default key.
TOKEN_INFO: Dict[str, TokenInfo] = {
    str(t.mint): t
    for t in (
        _token("EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v", "USD Coin", "USDC", 6,
               "usd-coin", "Dpw1EAVrSB1ibxiDQyTAW6Zip3J4Btk2x4SgApQCeFbX"),
        _token("DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263", "BONK", "BONK", 5,
               "bonk", "DBE3N8uNjhKPRHfANdwGvCZghWXyLPdqdSbEW2XFwBiX"),
        _token("3NZ9JMVBmGAqocybic2c7LQCJScmgsAZ6vQqTDzcqmJh", "Wrapped Bitcoin", "WBTC", 8,
               "wrapped-btc-wormhole", "9gNX5vguzarZZPjTnE1hWze3s6UsZ7dsU3UnAmKPnMHG"),
        _token("11111111111111111111111111111111", "Bitcoin", "BTC", 8,
               "bitcoin", "4cSM2e6rvbGQUFiJbqytoVMi5GgghSMr8LwVrT9VPSPo"),
        _token("J1toso1uCk3RLmjorhTtrVwY9HJ7X8V9yYac6Y7kGCPn", "Jito Staked SOL", "JITOSOL", 9,
               "solana", "AxaxyeDT8JnWERSaTKvFXvPKkEdxnamKSqpWbsSjYg1g"),
        _token("So11111111111111111111111111111111111111112", "SOL", "SOL", 9,
               "solana", "7UVimffxr9ow1uXYxsr4LHAcV58mLzhmwaeKvJ1pjLiE"),
    )
}


def token_by_symbol(symbol: str) -> TokenInfo:
    for info in TOKEN_INFO.values():
        if info.symbol == symbol:
            return info
    raise KeyError(f"unknown token symbol {symbol}")


USDC_MINT = token_by_symbol("USDC").mint
