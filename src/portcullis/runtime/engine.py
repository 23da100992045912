"""
Core runtime.

The :class:`Runtime` owns the loaded plugins for the lifetime of the main
loop. :meth:`Runtime.run` starts every plugin, drops root privileges once
the plugins hold their listening sockets, then waits for the shutdown flag.
The flag is a :class:`threading.Event` so the background monitor thread and
signal handlers can both observe and raise it.

Lifecycle::

    runtime = Runtime(loader, config_source)
    runtime.run(config)          # blocks until request_shutdown()
    runtime.close()              # unloads plugins, last loaded first
"""

from __future__ import annotations

import asyncio
import logging
import os
import pwd
import signal
import threading

from portcullis.core.config import ConfigSource
from portcullis.core.exceptions import EngineError, PortcullisError
from portcullis.core.params import ResolvedConfig
from portcullis.plugins.loader import PluginHandle, PluginLoader

logger = logging.getLogger(__name__)

_POLL_INTERVAL_SECONDS = 0.05


class Runtime:
    def __init__(self, loader: PluginLoader, config_source: ConfigSource | None = None) -> None:
        self.loader = loader
        self.config_source = config_source
        self.config: ResolvedConfig | None = None
        self._shutdown = threading.Event()
        self._closed = False

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown.is_set()

    def request_shutdown(self) -> None:
        if not self._shutdown.is_set():
            logger.info("shutdown requested")
        self._shutdown.set()

    def run(self, config: ResolvedConfig) -> None:
        """Run the main loop until shutdown is requested."""
        self.config = config
        try:
            asyncio.run(self._serve(config))
        except PortcullisError:
            raise
        except Exception as exc:
            raise EngineError(f"Failure from main loop: {exc}") from exc

    async def _serve(self, config: ResolvedConfig) -> None:
        installed = self._setup_signal_handlers()
        started: list[PluginHandle] = []
        try:
            for handle in self.loader.handles:
                handle.plugin.start(config)
                started.append(handle)

            drop_privileges(config.user)
            logger.info("portcullis ready, %d plugin(s) running", len(started))

            while not self._shutdown.is_set():
                await asyncio.sleep(_POLL_INTERVAL_SECONDS)
        finally:
            for handle in reversed(started):
                try:
                    handle.plugin.stop()
                except Exception:
                    logger.exception("plugin %s: stop failed", handle.name)
            self._remove_signal_handlers(installed)

    # ------------------------------------------------------------------
    # Signal handling
    # ------------------------------------------------------------------

    def _setup_signal_handlers(self) -> list[int]:
        loop = asyncio.get_running_loop()
        installed: list[int] = []
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self.request_shutdown)
            except (NotImplementedError, RuntimeError, ValueError):
                # not the main thread; the caller owns shutdown
                logger.debug("signal handler for %s not installed", sig.name)
                continue
            installed.append(sig)
        return installed

    def _remove_signal_handlers(self, installed: list[int]) -> None:
        loop = asyncio.get_running_loop()
        for sig in installed:
            loop.remove_signal_handler(sig)

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Release the runtime; plugins are destroyed in reverse load order."""
        if self._closed:
            return
        self._shutdown.set()
        self.loader.unload_all()
        self.config_source = None
        self._closed = True


def drop_privileges(user: str | None) -> None:
    """Switch to *user* when running as root; a no-op otherwise."""
    if not user:
        return
    if os.geteuid() != 0:
        logger.warning("--user=%s ignored, not running as root", user)
        return
    try:
        entry = pwd.getpwnam(user)
    except KeyError:
        raise EngineError(f"unknown user {user!r}") from None
    try:
        os.initgroups(user, entry.pw_gid)
        os.setgid(entry.pw_gid)
        os.setuid(entry.pw_uid)
    except OSError as exc:
        raise EngineError(f"switching to user {user!r} failed: {exc}") from exc
    logger.info("running as user %s (%d/%d)", user, entry.pw_uid, entry.pw_gid)
