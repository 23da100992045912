"""
Fatal-signal handler.

On SIGSEGV (and the other fatal signals :mod:`faulthandler` covers) the
tracebacks of all threads are written to the log stream, then the signal is
re-raised with its default disposition so the process dies abnormally and a
supervisor or core-dump facility sees a crash rather than a clean exit.

:mod:`faulthandler` writes straight to the file descriptor from C and does
not allocate, so it keeps working when the heap itself is what broke.
"""

from __future__ import annotations

import faulthandler
import logging
import os
import sys
from collections.abc import Mapping
from typing import IO

logger = logging.getLogger(__name__)

_INSTRUMENTATION_MARKERS = ("vgpreload", "libasan")


def running_under_instrumentation(environ: Mapping[str, str] | None = None) -> bool:
    """True when valgrind or AddressSanitizer is preloaded into the process."""
    env = os.environ if environ is None else environ
    preload = env.get("LD_PRELOAD", "")
    return any(marker in preload for marker in _INSTRUMENTATION_MARKERS)


class CrashHandler:
    """Installs and restores the fatal-signal traceback dump."""

    def __init__(self, environ: Mapping[str, str] | None = None) -> None:
        self._environ = environ
        self.installed = False
        self.stream: IO[str] | None = None
        self._owned: IO[str] | None = None

    def install(self, stream: IO[str] | None = None) -> bool:
        if running_under_instrumentation(self._environ):
            logger.info("memory instrumentation detected, crash handler not installed")
            return False
        target = _with_fileno(stream or sys.stderr)
        if target is None:
            logger.warning("no file descriptor available for crash tracebacks")
            return False
        faulthandler.enable(file=target, all_threads=True)
        self.installed = True
        self.stream = target
        logger.warning("crash tracebacks are written to %s", getattr(target, "name", target))
        return True

    def redirect(self, path: str) -> None:
        """
        Append crash tracebacks to *path* from now on (e.g. the log file).

        The file is opened on a descriptor of its own: the log handler closes
        and reopens its stream on rotation, and faulthandler must never be left
        holding a descriptor number that has been handed out again.
        """
        if not self.installed:
            return
        try:
            target = open(path, "a", encoding="utf-8")
        except OSError as exc:
            logger.warning("cannot open %s for crash tracebacks: %s", path, exc)
            return
        faulthandler.enable(file=target, all_threads=True)
        self._close_owned()
        self._owned = target
        self.stream = target
        logger.debug("crash tracebacks go to %s", path)

    def restore(self) -> None:
        """Back to the default disposition; a later fault is not ours."""
        if not self.installed:
            return
        faulthandler.disable()
        self._close_owned()
        self.installed = False
        self.stream = None

    def _close_owned(self) -> None:
        if self._owned is not None:
            self._owned.close()
            self._owned = None


def _with_fileno(stream: IO[str]) -> IO[str] | None:
    for candidate in (stream, sys.__stderr__):
        if candidate is None:
            continue
        try:
            candidate.fileno()
        except (AttributeError, OSError, ValueError):
            continue
        return candidate
    return None
