"""
Keepalive supervision and daemonisation.

With ``--keepalive`` the process splits in two roles::

    supervisor ── fork ──> worker (runs the proxy)
        │                     │
        └──── waitpid <───────┘  exit status is the only channel

The supervisor restarts the worker whenever it dies from a signal it was
not asked to deliver (a crash), immediately and without limit. A worker
that exits normally has stopped on purpose: the supervisor exits with the
same status. SIGTERM, SIGINT and SIGHUP received by the supervisor are
forwarded to the worker and the resulting death counts as a stop.

The supervisor keeps no proxy state beyond the worker's pid and last
wait status.
"""

from __future__ import annotations

import logging
import os
import signal
import sys
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from portcullis.core.exceptions import ResourceError

logger = logging.getLogger(__name__)

_FORWARDED_SIGNALS = (signal.SIGTERM, signal.SIGINT, signal.SIGHUP)


class Role(str, Enum):
    SUPERVISOR = "supervisor"
    WORKER = "worker"


@dataclass
class SupervisorState:
    role: Role = Role.SUPERVISOR
    child_pid: int | None = None
    last_status: int | None = None
    restarts: int = 0


@dataclass
class SupervisorResult:
    role: Role
    exit_code: int = 0
    state: SupervisorState = field(default_factory=SupervisorState)


class Supervisor:
    """
    Fork/wait loop for ``--keepalive``.

    ``fork``, ``waitpid`` and ``kill`` default to the :mod:`os` functions and
    can be replaced in tests.
    """

    def __init__(
        self,
        fork: Callable[[], int] = os.fork,
        waitpid: Callable[[int, int], tuple[int, int]] = os.waitpid,
        kill: Callable[[int, int], None] = os.kill,
        forward_signals: bool = True,
    ) -> None:
        self._fork = fork
        self._waitpid = waitpid
        self._kill = kill
        self._forward_signals = forward_signals
        self._stop_signal: int | None = None
        self.state = SupervisorState()

    def run(self) -> SupervisorResult:
        """
        Returns in both processes: ``role=WORKER`` in the child, which should
        carry on starting the proxy, and ``role=SUPERVISOR`` in the parent once
        the worker stopped on purpose.
        """
        previous = self._install_forwarding() if self._forward_signals else {}
        try:
            while True:
                if self._stop_signal is not None:
                    exit_code = 128 + self._stop_signal
                    logger.info(
                        "keepalive: stop requested while no worker was running"
                    )
                    return SupervisorResult(
                        role=Role.SUPERVISOR, exit_code=exit_code, state=self.state
                    )

                try:
                    pid = self._fork()
                except OSError as exc:
                    raise ResourceError(f"keepalive: fork failed: {exc}") from exc

                if pid == 0:
                    _restore_handlers(previous)
                    previous = {}
                    self.state = SupervisorState(role=Role.WORKER)
                    return SupervisorResult(role=Role.WORKER, state=self.state)

                self.state.child_pid = pid
                logger.info("[%d] keepalive: worker %d started", os.getpid(), pid)
                status = self._wait(pid)
                self.state.last_status = status

                stopped, exit_code = self.classify(status)
                if stopped:
                    logger.info("keepalive: worker %d stopped, exit code %d", pid, exit_code)
                    return SupervisorResult(
                        role=Role.SUPERVISOR, exit_code=exit_code, state=self.state
                    )

                self.state.restarts += 1
                logger.critical(
                    "keepalive: worker %d died on signal %d, restarting (restart #%d)",
                    pid,
                    os.WTERMSIG(status),
                    self.state.restarts,
                )
        finally:
            _restore_handlers(previous)

    def classify(self, status: int) -> tuple[bool, int]:
        """Return ``(stopped_on_purpose, exit_code)`` for a raw wait status."""
        if os.WIFEXITED(status):
            return True, os.WEXITSTATUS(status)
        if os.WIFSIGNALED(status):
            signum = os.WTERMSIG(status)
            return self._stop_signal is not None, 128 + signum
        return False, 1

    def _wait(self, pid: int) -> int:
        try:
            _, status = self._waitpid(pid, 0)
        except ChildProcessError as exc:
            raise ResourceError(f"keepalive: waiting for worker {pid} failed: {exc}") from exc
        return status

    # ------------------------------------------------------------------
    # Signal forwarding
    # ------------------------------------------------------------------

    def _install_forwarding(self) -> dict[int, Any]:
        previous: dict[int, Any] = {}
        for signum in _FORWARDED_SIGNALS:
            previous[signum] = signal.signal(signum, self._forward)
        return previous

    def _forward(self, signum: int, frame: object) -> None:
        self._stop_signal = signum
        pid = self.state.child_pid
        if pid:
            logger.info("keepalive: forwarding signal %d to worker %d", signum, pid)
            try:
                self._kill(pid, signum)
            except ProcessLookupError:
                pass


def _restore_handlers(previous: dict[int, Any]) -> None:
    for signum, handler in previous.items():
        signal.signal(signum, handler)


def daemonize() -> None:
    """Detach from the controlling terminal (double fork + setsid)."""
    try:
        if os.fork() > 0:
            os._exit(0)
    except OSError as exc:
        raise ResourceError(f"daemonize: first fork failed: {exc}") from exc

    os.setsid()

    try:
        if os.fork() > 0:
            os._exit(0)
    except OSError as exc:
        raise ResourceError(f"daemonize: second fork failed: {exc}") from exc

    os.chdir("/")
    sys.stdout.flush()
    sys.stderr.flush()
    devnull = os.open(os.devnull, os.O_RDWR)
    for fd in (0, 1, 2):
        os.dup2(devnull, fd)
    if devnull > 2:
        os.close(devnull)
    logger.info("daemon process %d started", os.getpid())
