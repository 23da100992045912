"""Distributed-transaction (XA) log file."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import IO

from portcullis.core.exceptions import ResourceError

logger = logging.getLogger(__name__)


class TransactionLog:
    """
    Append-only record of XA transaction state changes.

    One line per entry, ``<timestamp> <message>``. With ``detailed=True``
    every state transition is written, otherwise only outcomes.
    """

    def __init__(self, path: str | Path, detailed: bool = False) -> None:
        self.path = Path(path)
        self.detailed = detailed
        self._fh: IO[str] | None = None

    @property
    def is_open(self) -> bool:
        return self._fh is not None

    def open(self) -> None:
        if self._fh is not None:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._fh = open(self.path, "a", encoding="utf-8")  # noqa: SIM115
        except OSError as exc:
            raise ResourceError(f"can't open xa log-file '{self.path}': {exc}") from exc
        logger.info("XA log file: %s", self.path)

    def write(self, message: str, detail: bool = False) -> None:
        if self._fh is None:
            raise ResourceError(f"xa log-file '{self.path}' is not open")
        if detail and not self.detailed:
            return
        stamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S.%f")
        self._fh.write(f"{stamp} {message}\n")
        self._fh.flush()

    def close(self) -> None:
        if self._fh is None:
            return
        self._fh.close()
        self._fh = None
