from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parents[1]

DEFAULT_RPC_FALLBACKS = ["https://api.mainnet-beta.solana.com"]

PRIORITY_FEE_OPTIONS = ("medium", "high", "ultra")


def _as_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    v = value.strip().lower()
    return v in {"1", "true", "yes", "y", "on"}


def _as_optional_float(value: Optional[str], default: Optional[float]) -> Optional[float]:
    if value is None:
        return default
    v = value.strip().lower()
    if v in {"", "none", "off", "0"}:
        return None
    return float(v)


def _env(name: str, default: str) -> str:
    return os.getenv(name, default)


@dataclass(frozen=True)
class AdrenaConfig:
    """Configuration container for the Adrena client."""

    # RPC
    rpc_url: str = field(default_factory=lambda: _env("RPC_URL", "").strip())
    rpc_list: str = field(default_factory=lambda: _env("RPC_LIST", ""))
    rpc_timeout_s: float = field(default_factory=lambda: float(_env("RPC_TIMEOUT_S", "10")))

    # Program identity
    program_id: str = field(
        default_factory=lambda: _env(
            "ADRENA_PROGRAM_ID", "13gDzEXCdocbj8iAiqrScGo47NiSuYENGsRqi3SEAwet"
        )
    )
    main_pool_name: str = field(default_factory=lambda: _env("ADRENA_POOL_NAME", "main-pool"))
    governance_program: str = field(
        default_factory=lambda: _env(
            "ADRENA_GOVERNANCE_PROGRAM", "GovER5Lthms3bLBqWub97yVrMmEogzX7xNjdXpPPCVZw"
        )
    )
    governance_realm_name: str = field(default_factory=lambda: _env("ADRENA_REALM_NAME", "AdrenaDAO"))
    cluster: str = field(default_factory=lambda: _env("ADRENA_CLUSTER", "mainnet"))

    # Program metadata (Anchor IDL JSON)
    idl_path: str = field(
        default_factory=lambda: _env("ADRENA_IDL_PATH", str(PROJECT_ROOT / "idl" / "adrena.json"))
    )

    # Priority fees
    priority_fee_option: str = field(default_factory=lambda: _env("ADRENA_PRIORITY_FEE", "high"))
    # in SOL; None disables the cap
    max_priority_fee_sol: Optional[float] = field(
        default_factory=lambda: _as_optional_float(os.getenv("ADRENA_MAX_PRIORITY_FEE"), 0.0001)
    )

    # Submission
    confirm_timeout_s: float = field(default_factory=lambda: float(_env("ADRENA_CONFIRM_TIMEOUT_S", "30")))
    poll_interval_s: float = field(default_factory=lambda: float(_env("ADRENA_POLL_INTERVAL_S", "0.5")))
    min_confirmations: int = field(default_factory=lambda: int(_env("ADRENA_MIN_CONFIRMATIONS", "10")))
    blockhash_retry_limit: int = field(default_factory=lambda: int(_env("ADRENA_BLOCKHASH_RETRIES", "10")))
    blockhash_retry_delay_s: float = field(
        default_factory=lambda: float(_env("ADRENA_BLOCKHASH_RETRY_DELAY_S", "0.05"))
    )

    # Prices
    price_api_base: str = field(default_factory=lambda: _env("ADRENA_PRICE_API", "https://api.jup.ag/price/v2"))
    price_cache_ttl_s: float = field(default_factory=lambda: float(_env("ADRENA_PRICE_TTL_S", "60")))

    # Signer
    wallet_name: str = field(default_factory=lambda: _env("ADRENA_WALLET_NAME", ""))
    debug: bool = field(default_factory=lambda: _as_bool(os.getenv("ADRENA_DEBUG"), False))

    def __post_init__(self) -> None:
        if self.priority_fee_option not in PRIORITY_FEE_OPTIONS:
            raise ValueError(
                f"priority_fee_option must be one of {PRIORITY_FEE_OPTIONS}, got {self.priority_fee_option!r}"
            )

    @property
    def max_priority_fee_lamports(self) -> Optional[int]:
        if self.max_priority_fee_sol is None:
            return None
        return int(self.max_priority_fee_sol * 1_000_000_000)


def load_endpoints(config: AdrenaConfig) -> List[str]:
    """Primary RPC first, then ``RPC_LIST`` extras, then the public fallback."""
    endpoints: List[str] = []
    seen = set()

    def add(u: str) -> None:
        if u and u not in seen:
            seen.add(u)
            endpoints.append(u)

    add(config.rpc_url.strip())
    for extra in config.rpc_list.split(","):
        add(extra.strip())
    for fallback in DEFAULT_RPC_FALLBACKS:
        add(fallback)
    return endpoints


def get_config(env_file: Optional[Path] = None) -> AdrenaConfig:
    """Return an ``AdrenaConfig`` after loading ``.env`` from the project root."""

    load_dotenv(dotenv_path=env_file or PROJECT_ROOT / ".env", override=False)
    return AdrenaConfig()


__all__ = ["AdrenaConfig", "PROJECT_ROOT", "get_config", "load_endpoints"]
