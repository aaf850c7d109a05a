"""Adrena operator console.

Run via:
  python -m adrena.console addresses --owner <pubkey>
  python -m adrena.console prices <mint> [<mint> ...]
  python -m adrena.console liquidation-price --side long --entry 100 --size-usd 1000 --collateral-usd 100
"""

from __future__ import annotations

import argparse
import asyncio
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from rich import box
from rich.console import Console
from rich.table import Table
from solders.pubkey import Pubkey

from adrena.config import AdrenaConfig, get_config
from adrena.core.logging import configure_console_log, log
from adrena.perps.constants import DEFAULT_PUBKEY, TOKEN_INFO
from adrena.perps.economics import break_even_price, leverage, liquidation_price
from adrena.perps.fixed_point import PRICE_DECIMALS, USD_DECIMALS, native_to_ui, ui_leverage_to_native, ui_to_native
from adrena.perps.models import Custody, Position
from adrena.perps.pdas import AddressRegistry, Side
from adrena.perps.prices import PriceCache

console = Console()


def kv_table(title: str, data: Dict[str, Any]) -> None:
    t = Table(title=title, box=box.SIMPLE, expand=False)
    t.add_column("Key", style="bold cyan")
    t.add_column("Value")
    for k, v in data.items():
        t.add_row(str(k), str(v))
    console.print(t)


def rows_table(title: str, columns: Iterable[str], rows: Iterable[Iterable[Any]]) -> None:
    t = Table(title=title, box=box.MINIMAL_DOUBLE_HEAD, expand=False)
    for col in columns:
        t.add_column(str(col))
    for r in rows:
        t.add_row(*[str(x) for x in r])
    console.print(t)


def _registry(config: AdrenaConfig) -> AddressRegistry:
    return AddressRegistry(
        Pubkey.from_string(config.program_id),
        governance_program=Pubkey.from_string(config.governance_program),
        governance_realm_name=config.governance_realm_name,
        pool_name=config.main_pool_name,
    )


# ──────────────────────────────────────────────────────────────────────────────
# Commands
# ──────────────────────────────────────────────────────────────────────────────


def cmd_addresses(args: argparse.Namespace, config: AdrenaConfig) -> int:
    registry = _registry(config)
    data: Dict[str, Any] = {
        "program": registry.program_id,
        "cortex": registry.cortex,
        "transfer authority": registry.transfer_authority,
        "main pool": registry.main_pool,
        "lp token mint (ALP)": registry.lp_token_mint,
        "lm token mint (ADX)": registry.lm_token_mint,
        "genesis lock": registry.genesis_lock,
        "governance realm": registry.governance_realm,
    }
    if args.owner:
        owner = Pubkey.from_string(args.owner)
        data["user profile"] = registry.user_profile(owner)
        data["vest"] = registry.vest(owner)
        data["ADX user staking"] = registry.user_staking(owner, registry.staking(registry.lm_token_mint))
        data["ALP user staking"] = registry.user_staking(owner, registry.staking(registry.lp_token_mint))
    kv_table("Adrena addresses", data)

    if args.owner:
        rows: List[List[Any]] = []
        for info in TOKEN_INFO.values():
            # stable custodies carry no positions
            if info.symbol == "USDC":
                continue
            custody = registry.custody(info.mint)
            rows.append(
                [info.symbol, registry.position(owner, custody, Side.LONG), registry.position(owner, custody, Side.SHORT)]
            )
        rows_table("Position addresses", ["Token", "Long", "Short"], rows)
    return 0


def cmd_prices(args: argparse.Namespace, config: AdrenaConfig) -> int:
    cache = PriceCache(config.price_cache_ttl_s, config.price_api_base)
    mints = [_resolve_mint(m) for m in args.mints]
    prices = asyncio.run(cache.get_prices(mints))
    rows_table(
        "Prices",
        ["Mint", "Price"],
        [[mint, "unknown" if price is None else price] for mint, price in prices.items()],
    )
    return 0 if all(p is not None for p in prices.values()) else 1


def _resolve_mint(value: str) -> str:
    for info in TOKEN_INFO.values():
        if info.symbol.lower() == value.lower():
            return str(info.mint)
    return value


def cmd_liquidation_price(args: argparse.Namespace, config: AdrenaConfig) -> int:
    side = Side.parse(args.side)
    position = Position(
        pubkey=DEFAULT_PUBKEY,
        owner=DEFAULT_PUBKEY,
        pool=DEFAULT_PUBKEY,
        custody=DEFAULT_PUBKEY,
        collateral_custody=DEFAULT_PUBKEY,
        side=side,
        price=ui_to_native(args.entry, PRICE_DECIMALS),
        size_usd=ui_to_native(args.size_usd, USD_DECIMALS),
        collateral_usd=ui_to_native(args.collateral_usd, USD_DECIMALS),
        liquidation_fee_usd=ui_to_native(args.liquidation_fee_usd, USD_DECIMALS),
        exit_fee_usd=ui_to_native(args.exit_fee_usd, USD_DECIMALS),
    )
    custody = Custody(
        pubkey=DEFAULT_PUBKEY,
        mint=DEFAULT_PUBKEY,
        decimals=0,
        is_stable=False,
        oracle=DEFAULT_PUBKEY,
        trade_oracle=DEFAULT_PUBKEY,
        max_leverage=ui_leverage_to_native(args.max_leverage),
    )
    interest = ui_to_native(args.interest_usd, USD_DECIMALS)
    liq = liquidation_price(position, custody, interest)
    kv_table(
        f"{side.label} liquidation",
        {
            "leverage": f"{leverage(position.size_usd, position.collateral_usd):.2f}x",
            "liquidation price": native_to_ui(liq, PRICE_DECIMALS),
            "break-even price": break_even_price(
                side,
                Decimal(args.entry),
                Decimal(args.exit_fee_usd),
                Decimal(args.interest_usd),
                Decimal(args.size_usd),
            ),
        },
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="adrena", description="Adrena perpetuals operator console")
    p.add_argument("--debug", action="store_true", help="verbose logging")
    sub = p.add_subparsers(dest="command", required=True)

    a = sub.add_parser("addresses", help="print derived program addresses")
    a.add_argument("--owner", help="wallet to derive per-user addresses for")
    a.set_defaults(func=cmd_addresses)

    pr = sub.add_parser("prices", help="fetch token prices")
    pr.add_argument("mints", nargs="+", help="mint addresses or known symbols")
    pr.set_defaults(func=cmd_prices)

    lq = sub.add_parser("liquidation-price", help="offline liquidation price calculator")
    lq.add_argument("--side", choices=["long", "short"], required=True)
    lq.add_argument("--entry", required=True, help="entry price in USD")
    lq.add_argument("--size-usd", required=True)
    lq.add_argument("--collateral-usd", required=True)
    lq.add_argument("--max-leverage", default="100", help="custody max leverage (x)")
    lq.add_argument("--liquidation-fee-usd", default="0")
    lq.add_argument("--exit-fee-usd", default="0")
    lq.add_argument("--interest-usd", default="0")
    lq.set_defaults(func=cmd_liquidation_price)
    return p


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config = get_config()
    configure_console_log(args.debug or config.debug)
    log.debug(f"command={args.command}", source="console")
    return args.func(args, config)


if __name__ == "__main__":
    raise SystemExit(main())
