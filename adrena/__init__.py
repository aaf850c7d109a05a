"""Adrena perpetuals client.

Deterministic account addressing, instruction building, fee-aware submission
and an off-chain mirror of the program's position math.

Run the console with ``python -m adrena.console``.
"""

__all__ = ["config", "core", "perps"]
