"""Console logging for the Adrena client.

Components log through ``log`` and tag each line with a ``source`` so one
submission can be followed across the engine, the estimator and the client.
"""

from __future__ import annotations

import logging
from typing import Any

from rich.logging import RichHandler

_PLAIN_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


class SourceLogger:
    """Thin wrapper around :mod:`logging` that prefixes messages with their source."""

    def __init__(self, name: str = "adrena") -> None:
        self._logger = logging.getLogger(name)
        if not self._logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter(_PLAIN_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
            self._logger.addHandler(handler)
        self._logger.setLevel(logging.INFO)

    @property
    def level(self) -> int:
        return self._logger.level

    def use_rich(self, level: int) -> None:
        """Swap the plain stream handler for a rich one."""
        for handler in list(self._logger.handlers):
            self._logger.removeHandler(handler)
        self._logger.addHandler(RichHandler(show_path=False, rich_tracebacks=True, markup=False))
        self._logger.setLevel(level)

    def debug(self, msg: str, source: str | None = None, payload: Any | None = None) -> None:
        self._logger.debug(self._format(msg, source, payload))

    def info(self, msg: str, source: str | None = None, payload: Any | None = None) -> None:
        self._logger.info(self._format(msg, source, payload))

    def warning(self, msg: str, source: str | None = None, payload: Any | None = None) -> None:
        self._logger.warning(self._format(msg, source, payload))

    def error(self, msg: str, source: str | None = None, payload: Any | None = None) -> None:
        self._logger.error(self._format(msg, source, payload))

    def success(self, msg: str, source: str | None = None, payload: Any | None = None) -> None:
        self._logger.info(self._format(f"✅ {msg}", source, payload))

    @staticmethod
    def _format(msg: str, source: str | None, payload: Any | None = None) -> str:
        base = f"[{source}] {msg}" if source else msg
        if payload is not None:
            base = f"{base} {payload}"
        return base


log = SourceLogger()


def configure_console_log(debug: bool = False) -> None:
    """Route ``adrena`` logs through rich at INFO, or DEBUG when asked."""
    log.use_rich(logging.DEBUG if debug else logging.INFO)


__all__ = ["SourceLogger", "log", "configure_console_log"]
