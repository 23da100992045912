"""
Background monitor thread.

Runs periodic jobs (replica delay checks, ...) next to the main loop. The
thread observes the runtime's shutdown flag and returns on its own once it
is raised; :meth:`Monitor.stop` additionally wakes and joins it.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Protocol

from portcullis.core.constants import MONITOR_INTERVAL_SECONDS, MONITOR_JOIN_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


class ShutdownFlag(Protocol):
    @property
    def shutdown_requested(self) -> bool: ...


class Monitor:
    def __init__(self, runtime: ShutdownFlag, interval: float = MONITOR_INTERVAL_SECONDS) -> None:
        self._runtime = runtime
        self._interval = interval
        self._jobs: list[tuple[str, Callable[[], None]]] = []
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self.ticks = 0

    @property
    def jobs(self) -> list[str]:
        return [name for name, _ in self._jobs]

    def schedule(self, name: str, job: Callable[[], None]) -> None:
        self._jobs.append((name, job))

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="portcullis-monitor", daemon=True)
        self._thread.start()
        logger.debug("monitor started with %d job(s)", len(self._jobs))

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def stop(self, timeout: float = MONITOR_JOIN_TIMEOUT_SECONDS) -> None:
        """Stop and join the thread. Safe to call when it never started."""
        if self._thread is None:
            return
        self._stop.set()
        self._thread.join(timeout)
        if self._thread.is_alive():
            logger.warning("monitor thread did not stop within %.1fs", timeout)
        else:
            logger.debug("monitor stopped after %d tick(s)", self.ticks)
        self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self._interval):
            if self._runtime.shutdown_requested:
                return
            self.ticks += 1
            for name, job in self._jobs:
                if self._runtime.shutdown_requested:
                    return
                try:
                    job()
                except Exception:
                    logger.exception("monitor job %s failed", name)
