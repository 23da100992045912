"""
Logging setup for the daemon.

Until the log file is opened, messages go to stderr through a rich
handler. Once ``--log-file`` is opened they go to the file only. The file
handler is a :class:`logging.handlers.WatchedFileHandler` so an external
rotation (logrotate) is picked up without a restart.

Slow queries are written by the ``portcullis.slowquery`` logger to
``<log-file>.slowquery.log``, one line per entry prefixed with the local
time; that logger does not propagate to the main log.

Handlers are attached to the ``portcullis`` package logger only, never to
the root logger.
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
from typing import IO

from rich.console import Console
from rich.logging import RichHandler

from portcullis.core.constants import SLOW_QUERY_LOG_SUFFIX
from portcullis.core.exceptions import ConfigError, ResourceError

logger = logging.getLogger(__name__)

PACKAGE_LOGGER = "portcullis"
SLOW_QUERY_LOGGER = "portcullis.slowquery"

LOG_LEVELS = {
    "error": logging.ERROR,
    "warning": logging.WARNING,
    "message": logging.INFO,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}
DEFAULT_LEVEL = logging.CRITICAL
STARTUP_LEVEL = logging.INFO

_FILE_FORMAT = "%(asctime)s: (%(levelname)s) %(name)s: %(message)s"
_SLOW_QUERY_FORMAT = "%(asctime)s %(message)s"
_SLOW_QUERY_DATEFMT = "%Y-%m-%d %H:%M:%S"


def parse_level(name: str | None) -> int:
    """Map a ``--log-level`` value to a logging level; unset means CRITICAL."""
    if name is None:
        return DEFAULT_LEVEL
    level = LOG_LEVELS.get(name.strip().lower())
    if level is None:
        raise ConfigError(f"--log-level=... failed, level '{name}' is unknown")
    return level


class LogSetup:
    """Owns every handler portcullis attaches; :meth:`close` removes them all."""

    def __init__(self, console: Console | None = None) -> None:
        self._logger = logging.getLogger(PACKAGE_LOGGER)
        self._slow_logger = logging.getLogger(SLOW_QUERY_LOGGER)
        self._console = console
        self._console_handler: logging.Handler | None = None
        self._file_handler: logging.FileHandler | None = None
        self._slow_handler: logging.FileHandler | None = None
        self.log_file: str | None = None

    @property
    def handler_count(self) -> int:
        return sum(
            1
            for h in (self._console_handler, self._file_handler, self._slow_handler)
            if h is not None
        )

    def start_console(self) -> None:
        """Show startup messages on stderr while the log file is not open yet."""
        if self._console_handler is not None:
            return
        handler = RichHandler(
            console=self._console or Console(stderr=True),
            show_path=False,
            rich_tracebacks=False,
        )
        self._logger.addHandler(handler)
        self._logger.setLevel(STARTUP_LEVEL)
        self._console_handler = handler

    def open_file(self, path: str) -> None:
        try:
            handler = logging.handlers.WatchedFileHandler(path, encoding="utf-8")
        except OSError as exc:
            raise ResourceError(f"can't open log-file '{path}': {exc}") from exc
        handler.setFormatter(logging.Formatter(_FILE_FORMAT))
        self._logger.addHandler(handler)
        self._file_handler = handler
        self.log_file = path

        if self._console_handler is not None:
            self._logger.removeHandler(self._console_handler)
            self._console_handler.close()
            self._console_handler = None

    def open_slow_query_log(self) -> str | None:
        """Open ``<log-file>.slowquery.log``; failure is only a warning."""
        if not self.log_file:
            return None
        path = self.log_file + SLOW_QUERY_LOG_SUFFIX
        try:
            handler = logging.FileHandler(path, mode="a", encoding="utf-8")
        except OSError as exc:
            logger.warning("cannot open slow-query log %s: %s", path, exc)
            return None
        handler.setFormatter(logging.Formatter(_SLOW_QUERY_FORMAT, datefmt=_SLOW_QUERY_DATEFMT))
        self._slow_logger.addHandler(handler)
        self._slow_logger.setLevel(logging.INFO)
        self._slow_logger.propagate = False
        self._slow_handler = handler
        return path

    def set_level(self, name: str | None) -> None:
        self._logger.setLevel(parse_level(name))

    def stream(self) -> IO[str]:
        """The stream fatal-signal tracebacks should be written to."""
        if self._file_handler is not None and self._file_handler.stream is not None:
            return self._file_handler.stream
        return sys.stderr

    def close(self) -> None:
        for handler in (self._file_handler, self._console_handler):
            if handler is not None:
                self._logger.removeHandler(handler)
                handler.close()
        if self._slow_handler is not None:
            self._slow_logger.removeHandler(self._slow_handler)
            self._slow_handler.close()
            self._slow_logger.propagate = True
            self._slow_logger.setLevel(logging.NOTSET)
        self._file_handler = None
        self._console_handler = None
        self._slow_handler = None
        self._logger.setLevel(logging.NOTSET)
