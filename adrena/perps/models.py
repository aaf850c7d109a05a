"""Typed snapshots of the program accounts the client reads.

All amounts stay in native integer units. ``from_account`` mappers accept the
containers anchorpy produces when decoding an account (attribute access,
snake_case field names); plain dicts are accepted too so records can be built
from JSON dumps.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Generic, List, Optional, Tuple, TypeVar

from solders.pubkey import Pubkey

from adrena.perps.constants import DEFAULT_PUBKEY
from adrena.perps.fixed_point import (
    BPS,
    RATE_DECIMALS,
    USD_DECIMALS,
    native_to_ui,
    u128_from_split,
)
from adrena.perps.pdas import Side

T = TypeVar("T")


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(p[:1].upper() + p[1:] for p in rest)


def _get(obj: Any, name: str, default: Any = None) -> Any:
    # decoders disagree on snake_case vs the IDL's camelCase
    if obj is None:
        return default
    if isinstance(obj, dict):
        if name in obj:
            return obj[name]
        return obj.get(_camel(name), default)
    value = getattr(obj, name, None)
    if value is None:
        value = getattr(obj, _camel(name), None)
    return default if value is None else value


def _int(obj: Any, name: str) -> int:
    value = _get(obj, name, 0)
    return int(value or 0)


def _pubkey(obj: Any, name: str) -> Pubkey:
    value = _get(obj, name)
    if value is None:
        return DEFAULT_PUBKEY
    if isinstance(value, Pubkey):
        return value
    return Pubkey.from_string(str(value))


# ---------------------------------------------------------------------------
# Shared value types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class U128Split:
    high: int = 0
    low: int = 0

    @property
    def value(self) -> int:
        return u128_from_split(self.high, self.low)

    @classmethod
    def from_account(cls, obj: Any) -> "U128Split":
        return cls(high=_int(obj, "high"), low=_int(obj, "low"))


@dataclass(frozen=True)
class BorrowRateState:
    current_rate: int = 0
    cumulative_interest: U128Split = field(default_factory=U128Split)
    last_update: int = 0

    @classmethod
    def from_account(cls, obj: Any) -> "BorrowRateState":
        return cls(
            current_rate=_int(obj, "current_rate"),
            cumulative_interest=U128Split.from_account(_get(obj, "cumulative_interest")),
            last_update=_int(obj, "last_update"),
        )


class LoadState(str, Enum):
    NOT_LOADED = "not_loaded"
    ABSENT = "absent"
    PRESENT = "present"


@dataclass(frozen=True)
class LoadResult(Generic[T]):
    """Result of reading an account that may legitimately not exist yet."""

    state: LoadState
    value: Optional[T] = None

    @classmethod
    def not_loaded(cls) -> "LoadResult[T]":
        return cls(LoadState.NOT_LOADED)

    @classmethod
    def absent(cls) -> "LoadResult[T]":
        return cls(LoadState.ABSENT)

    @classmethod
    def present(cls, value: T) -> "LoadResult[T]":
        return cls(LoadState.PRESENT, value)

    @property
    def is_present(self) -> bool:
        return self.state is LoadState.PRESENT

    @property
    def is_absent(self) -> bool:
        return self.state is LoadState.ABSENT

    @property
    def is_loaded(self) -> bool:
        return self.state is not LoadState.NOT_LOADED


# ---------------------------------------------------------------------------
# Pool / custody
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Custody:
    pubkey: Pubkey
    mint: Pubkey
    decimals: int
    is_stable: bool
    oracle: Pubkey
    trade_oracle: Pubkey
    max_leverage: int  # bps
    max_initial_leverage: int = 0  # bps
    owned: int = 0
    locked: int = 0
    max_position_locked_usd: int = 0
    max_cumulative_short_position_size_usd: int = 0
    borrow_rate_state: BorrowRateState = field(default_factory=BorrowRateState)
    collected_fees_usd: int = 0
    oi_short_usd: int = 0

    @property
    def liquidity(self) -> int:
        return self.owned - self.locked

    @property
    def max_leverage_ui(self) -> Decimal:
        return Decimal(self.max_leverage) / BPS

    @property
    def borrow_fee_ui(self) -> Decimal:
        return native_to_ui(self.borrow_rate_state.current_rate, RATE_DECIMALS)

    @classmethod
    def from_account(cls, pubkey: Pubkey, obj: Any) -> "Custody":
        pricing = _get(obj, "pricing")
        assets = _get(obj, "assets")
        fees = _get(obj, "collected_fees")
        if fees is None:
            collected = 0
        elif isinstance(fees, dict):
            collected = sum(int(v) for v in fees.values())
        else:
            # anchorpy containers expose the struct fields through vars()
            collected = sum(int(v) for v in vars(fees).values() if isinstance(v, int))
        return cls(
            pubkey=pubkey,
            mint=_pubkey(obj, "mint"),
            decimals=_int(obj, "decimals"),
            is_stable=bool(_get(obj, "is_stable", 0)),
            oracle=_pubkey(obj, "oracle"),
            trade_oracle=_pubkey(obj, "trade_oracle"),
            max_leverage=_int(pricing, "max_leverage"),
            max_initial_leverage=_int(pricing, "max_initial_leverage"),
            owned=_int(assets, "owned"),
            locked=_int(assets, "locked"),
            max_position_locked_usd=_int(pricing, "max_position_locked_usd"),
            max_cumulative_short_position_size_usd=_int(
                pricing, "max_cumulative_short_position_size_usd"
            ),
            borrow_rate_state=BorrowRateState.from_account(_get(obj, "borrow_rate_state")),
            collected_fees_usd=collected,
            oi_short_usd=_int(_get(obj, "trade_stats"), "oi_short_usd"),
        )


@dataclass(frozen=True)
class PoolRatios:
    min: int
    max: int
    target: int


@dataclass(frozen=True)
class Pool:
    pubkey: Pubkey
    name: str
    custodies: Tuple[Pubkey, ...]
    ratios: Tuple[PoolRatios, ...] = ()
    aum_usd: int = 0

    @property
    def active_custodies(self) -> List[Pubkey]:
        """Custody slots in pool order, default sentinel slots skipped."""
        return [c for c in self.custodies if c != DEFAULT_PUBKEY]

    @classmethod
    def from_account(cls, pubkey: Pubkey, obj: Any) -> "Pool":
        name_field = _get(obj, "name")
        if isinstance(name_field, str):
            name = name_field
        else:
            name = _limited_string(name_field)
        ratios = tuple(
            PoolRatios(min=_int(r, "min"), max=_int(r, "max"), target=_int(r, "target"))
            for r in (_get(obj, "ratios") or [])
        )
        aum = _get(obj, "aum_usd")
        if aum is None or isinstance(aum, int):
            aum_usd = int(aum or 0)
        else:
            aum_usd = U128Split.from_account(aum).value
        return cls(
            pubkey=pubkey,
            name=name,
            custodies=tuple(_get(obj, "custodies") or ()),
            ratios=ratios,
            aum_usd=aum_usd,
        )


@dataclass(frozen=True)
class Cortex:
    protocol_fee_recipient: Pubkey
    fee_redistribution_mint: Pubkey

    @classmethod
    def from_account(cls, obj: Any) -> "Cortex":
        return cls(
            protocol_fee_recipient=_pubkey(obj, "protocol_fee_recipient"),
            fee_redistribution_mint=_pubkey(obj, "fee_redistribution_mint"),
        )


# ---------------------------------------------------------------------------
# Positions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Position:
    pubkey: Pubkey
    owner: Pubkey
    pool: Pubkey
    custody: Pubkey
    collateral_custody: Pubkey
    side: Side
    price: int
    size_usd: int
    collateral_usd: int
    borrow_size_usd: int = 0
    collateral_amount: int = 0
    locked_amount: int = 0
    unrealized_interest_usd: int = 0
    cumulative_interest_snapshot: U128Split = field(default_factory=U128Split)
    exit_fee_usd: int = 0
    liquidation_fee_usd: int = 0
    open_time: int = 0
    update_time: int = 0
    stop_loss_is_set: bool = False
    stop_loss_limit_price: int = 0
    stop_loss_close_position_price: int = 0
    take_profit_is_set: bool = False
    take_profit_limit_price: int = 0

    @classmethod
    def from_account(cls, pubkey: Pubkey, obj: Any) -> "Position":
        return cls(
            pubkey=pubkey,
            owner=_pubkey(obj, "owner"),
            pool=_pubkey(obj, "pool"),
            custody=_pubkey(obj, "custody"),
            collateral_custody=_pubkey(obj, "collateral_custody"),
            side=Side(_int(obj, "side")),
            price=_int(obj, "price"),
            size_usd=_int(obj, "size_usd"),
            collateral_usd=_int(obj, "collateral_usd"),
            borrow_size_usd=_int(obj, "borrow_size_usd"),
            collateral_amount=_int(obj, "collateral_amount"),
            locked_amount=_int(obj, "locked_amount"),
            unrealized_interest_usd=_int(obj, "unrealized_interest_usd"),
            cumulative_interest_snapshot=U128Split.from_account(
                _get(obj, "cumulative_interest_snapshot")
            ),
            exit_fee_usd=_int(obj, "exit_fee_usd"),
            liquidation_fee_usd=_int(obj, "liquidation_fee_usd"),
            open_time=_int(obj, "open_time"),
            update_time=_int(obj, "update_time"),
            stop_loss_is_set=_int(obj, "stop_loss_is_set") == 1,
            stop_loss_limit_price=_int(obj, "stop_loss_limit_price"),
            stop_loss_close_position_price=_int(obj, "stop_loss_close_position_price"),
            take_profit_is_set=_int(obj, "take_profit_is_set") == 1,
            take_profit_limit_price=_int(obj, "take_profit_limit_price"),
        )


# ---------------------------------------------------------------------------
# User profile
# ---------------------------------------------------------------------------


def _limited_string(obj: Any) -> str:
    if obj is None:
        return ""
    if isinstance(obj, str):
        return obj.replace("\0", "")
    raw = _get(obj, "value") or []
    length = _get(obj, "length")
    data = bytes(int(b) for b in raw)
    if length is not None:
        data = data[: int(length)]
    return data.decode("utf-8", errors="replace").replace("\0", "")


@dataclass(frozen=True)
class TradeStats:
    opened_position_count: int = 0
    liquidated_position_count: int = 0
    opening_average_leverage: int = 0  # bps
    opening_size_usd: int = 0
    profits_usd: int = 0
    losses_usd: int = 0
    fee_paid_usd: int = 0

    @property
    def opening_average_leverage_ui(self) -> Decimal:
        return Decimal(self.opening_average_leverage) / BPS

    @classmethod
    def from_account(cls, obj: Any) -> "TradeStats":
        return cls(
            opened_position_count=_int(obj, "opened_position_count"),
            liquidated_position_count=_int(obj, "liquidated_position_count"),
            opening_average_leverage=_int(obj, "opening_average_leverage"),
            opening_size_usd=_int(obj, "opening_size_usd"),
            profits_usd=_int(obj, "profits_usd"),
            losses_usd=_int(obj, "losses_usd"),
            fee_paid_usd=_int(obj, "fee_paid_usd"),
        )


@dataclass(frozen=True)
class UserProfile:
    pubkey: Pubkey
    owner: Pubkey
    nickname: str
    created_at: int
    swap_count: int = 0
    swap_volume_usd: int = 0
    swap_fee_paid_usd: int = 0
    long_stats: TradeStats = field(default_factory=TradeStats)
    short_stats: TradeStats = field(default_factory=TradeStats)

    @property
    def total_pnl_usd(self) -> Decimal:
        native = (
            self.long_stats.profits_usd
            - self.long_stats.losses_usd
            + self.short_stats.profits_usd
            - self.short_stats.losses_usd
        )
        return native_to_ui(native, USD_DECIMALS)

    @property
    def total_trade_volume_usd(self) -> Decimal:
        return native_to_ui(
            self.long_stats.opening_size_usd + self.short_stats.opening_size_usd, USD_DECIMALS
        )

    @property
    def total_fees_paid_usd(self) -> Decimal:
        return native_to_ui(
            self.swap_fee_paid_usd + self.long_stats.fee_paid_usd + self.short_stats.fee_paid_usd,
            USD_DECIMALS,
        )

    @property
    def opening_average_leverage(self) -> Decimal:
        return (
            self.long_stats.opening_average_leverage_ui
            + self.short_stats.opening_average_leverage_ui
        ) / 2

    @classmethod
    def from_account(cls, pubkey: Pubkey, obj: Any) -> "UserProfile":
        return cls(
            pubkey=pubkey,
            owner=_pubkey(obj, "owner"),
            nickname=_limited_string(_get(obj, "nickname")),
            created_at=_int(obj, "created_at"),
            swap_count=_int(obj, "swap_count"),
            swap_volume_usd=_int(obj, "swap_volume_usd"),
            swap_fee_paid_usd=_int(obj, "swap_fee_paid_usd"),
            long_stats=TradeStats.from_account(_get(obj, "long_stats")),
            short_stats=TradeStats.from_account(_get(obj, "short_stats")),
        )


# ---------------------------------------------------------------------------
# Staking
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LockedStake:
    index: int
    id: int
    amount: int
    stake_time: int
    claim_time: int
    end_time: int
    lock_duration: int
    resolved: bool = False

    @classmethod
    def from_account(cls, index: int, obj: Any) -> "LockedStake":
        return cls(
            index=index,
            id=_int(obj, "id"),
            amount=_int(obj, "amount"),
            stake_time=_int(obj, "stake_time"),
            claim_time=_int(obj, "claim_time"),
            end_time=_int(obj, "end_time"),
            lock_duration=_int(obj, "lock_duration"),
            resolved=bool(_int(obj, "resolved")),
        )


@dataclass(frozen=True)
class UserStaking:
    pubkey: Pubkey
    owner: Pubkey
    staking_type: int
    liquid_stake_amount: int = 0
    locked_stakes: Tuple[LockedStake, ...] = ()

    @classmethod
    def from_account(cls, pubkey: Pubkey, obj: Any) -> "UserStaking":
        staking_type = _get(obj, "staking_type", 0)
        return cls(
            pubkey=pubkey,
            owner=_pubkey(obj, "owner"),
            staking_type=int(staking_type) if isinstance(staking_type, int) else 0,
            liquid_stake_amount=_int(_get(obj, "liquid_stake"), "amount"),
            locked_stakes=tuple(
                LockedStake.from_account(i, s) for i, s in enumerate(_get(obj, "locked_stakes") or [])
            ),
        )


__all__ = [
    "U128Split",
    "BorrowRateState",
    "LoadState",
    "LoadResult",
    "Custody",
    "PoolRatios",
    "Pool",
    "Cortex",
    "Position",
    "TradeStats",
    "UserProfile",
    "LockedStake",
    "UserStaking",
]
