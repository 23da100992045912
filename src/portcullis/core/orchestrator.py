"""
Startup/shutdown orchestrator.

:class:`Orchestrator` drives the daemon through a fixed sequence of stages.
The first stage that raises ends startup: its exit code and name are
recorded once in :class:`ExitOutcome` and control jumps to
:meth:`Orchestrator.shutdown`, which releases whatever the earlier stages
created, in a fixed order, skipping what was never created. ``shutdown`` is
idempotent and runs on every exit path, including the early successful
exits of ``--version`` and ``--help``.

Usage::

    code = Orchestrator(sys.argv[1:], argv0=sys.argv[0]).run()
    sys.exit(code)
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

import httpx
from rich.console import Console

from portcullis import __version__
from portcullis.core.constants import ExitCode
from portcullis.core.crash import CrashHandler
from portcullis.core.exceptions import PortcullisError, ResourceError
from portcullis.core.frontend import Frontend
from portcullis.core.limits import set_fd_limit
from portcullis.core.logsetup import LogSetup
from portcullis.core.options import OptionRegistry
from portcullis.core.params import ResolvedConfig, check_defaults, check_modes, derive
from portcullis.core.paths import resolve_base_dir, resolve_path
from portcullis.core.resolver import ConfigResolver
from portcullis.core.supervisor import Role, Supervisor, daemonize
from portcullis.plugins.loader import PluginLoader
from portcullis.runtime.engine import Runtime
from portcullis.runtime.monitor import Monitor
from portcullis.runtime.xalog import TransactionLog

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    INIT = "init"
    PARSE_BASE_OPTIONS = "parse-base-options"
    LOAD_LOCAL_OR_REMOTE_CONFIG = "load-local-or-remote-config"
    RESOLVE_BASE_DIR = "resolve-base-dir"
    INSTALL_CRASH_HANDLER = "install-crash-handler"
    RESOLVE_PATHS = "resolve-paths"
    OPEN_LOG = "open-log"
    INIT_CORE_RUNTIME = "init-core-runtime"
    LOAD_PLUGINS = "load-plugins"
    INIT_PLUGINS = "init-plugins"
    STRICT_PARSE_OPTIONS = "strict-parse-options"
    PRINT_VERSION = "print-version"
    DAEMONIZE = "daemonize"
    SUPERVISE = "supervise"
    WRITE_PID_FILE = "write-pid-file"
    VALIDATE_MODE_AND_DEFAULTS = "validate-mode-and-defaults"
    DERIVE_PARAMETERS = "derive-parameters"
    OPEN_TRANSACTION_LOG = "open-transaction-log"
    RAISE_FILE_LIMIT = "raise-file-limit"
    START_BACKGROUND_MONITOR = "start-background-monitor"
    RUN_MAIN_LOOP = "run-main-loop"
    STOP_BACKGROUND_MONITOR = "stop-background-monitor"
    SHUTDOWN = "shutdown"


# Stages skipped in check mode (config show / validate)
_NOT_IN_CHECK_MODE = frozenset(
    {
        Stage.INSTALL_CRASH_HANDLER,
        Stage.DAEMONIZE,
        Stage.SUPERVISE,
        Stage.WRITE_PID_FILE,
        Stage.OPEN_TRANSACTION_LOG,
        Stage.RAISE_FILE_LIMIT,
        Stage.START_BACKGROUND_MONITOR,
        Stage.RUN_MAIN_LOOP,
        Stage.STOP_BACKGROUND_MONITOR,
    }
)


@dataclass
class ExitOutcome:
    """Exit code and failing stage. Written at most once."""

    code: int = ExitCode.SUCCESS
    location: str | None = None
    _recorded: bool = field(default=False, repr=False)

    def set(self, code: int, location: str | None = None) -> bool:
        if self._recorded:
            return False
        self.code = int(code)
        self.location = location
        self._recorded = True
        return True

    @property
    def is_failure(self) -> bool:
        return self.code != ExitCode.SUCCESS


class _Finish(Exception):
    """Ends startup early without an error (--version, --help, supervisor)."""

    def __init__(self, code: int = ExitCode.SUCCESS) -> None:
        super().__init__(code)
        self.code = code


class Orchestrator:
    """
    Runs the startup stages and the single teardown routine.

    ``runtime_factory`` and ``supervisor_factory`` build the core runtime and
    the keepalive supervisor; tests replace them. With ``check_only=True`` the
    run ends after parameter derivation and nothing is daemonized, written
    or started.
    """

    _STAGES: tuple[tuple[Stage, str], ...] = (
        (Stage.INIT, "_init"),
        (Stage.PARSE_BASE_OPTIONS, "_parse_base_options"),
        (Stage.LOAD_LOCAL_OR_REMOTE_CONFIG, "_load_config"),
        (Stage.RESOLVE_BASE_DIR, "_resolve_base_dir"),
        (Stage.INSTALL_CRASH_HANDLER, "_install_crash_handler"),
        (Stage.RESOLVE_PATHS, "_resolve_paths"),
        (Stage.OPEN_LOG, "_open_log"),
        (Stage.INIT_CORE_RUNTIME, "_init_core_runtime"),
        (Stage.LOAD_PLUGINS, "_load_plugins"),
        (Stage.INIT_PLUGINS, "_init_plugins"),
        (Stage.STRICT_PARSE_OPTIONS, "_strict_parse_options"),
        (Stage.PRINT_VERSION, "_print_version"),
        (Stage.DAEMONIZE, "_daemonize"),
        (Stage.SUPERVISE, "_supervise"),
        (Stage.WRITE_PID_FILE, "_write_pid_file"),
        (Stage.VALIDATE_MODE_AND_DEFAULTS, "_validate_mode_and_defaults"),
        (Stage.DERIVE_PARAMETERS, "_derive_parameters"),
        (Stage.OPEN_TRANSACTION_LOG, "_open_transaction_log"),
        (Stage.RAISE_FILE_LIMIT, "_raise_file_limit"),
        (Stage.START_BACKGROUND_MONITOR, "_start_background_monitor"),
        (Stage.RUN_MAIN_LOOP, "_run_main_loop"),
        (Stage.STOP_BACKGROUND_MONITOR, "_stop_background_monitor"),
    )

    def __init__(
        self,
        argv: list[str],
        *,
        argv0: str | None = None,
        check_only: bool = False,
        console: Console | None = None,
        log_console: Console | None = None,
        http_client: httpx.Client | None = None,
        runtime_factory: Callable[..., Runtime] = Runtime,
        supervisor_factory: Callable[[], Supervisor] = Supervisor,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self.argv = list(argv)
        self.argv0 = argv0 if argv0 is not None else sys.argv[0]
        self.check_only = check_only
        self.console = console or Console()
        self._log_console = log_console
        self._http_client = http_client
        self._runtime_factory = runtime_factory
        self._supervisor_factory = supervisor_factory
        self._environ = environ

        self.outcome = ExitOutcome()
        self.stage = Stage.INIT
        self.completed: list[Stage] = []
        self.pending_error: BaseException | None = None

        # Components, created by their stage; None until then
        self.frontend: Frontend | None = None
        self.registry: OptionRegistry | None = None
        self.resolver: ConfigResolver | None = None
        self.log: LogSetup | None = None
        self.crash_handler: CrashHandler | None = None
        self.loader: PluginLoader | None = None
        self.runtime: Runtime | None = None
        self.monitor: Monitor | None = None
        self.xa_log: TransactionLog | None = None
        self.config: ResolvedConfig | None = None
        self.pid_file: str | None = None
        self.role = Role.WORKER

        self.shutdown_count = 0
        self._printed_version = False
        self._shut_down = False

    # ------------------------------------------------------------------
    # Driver
    # ------------------------------------------------------------------

    def run(self) -> int:
        try:
            for stage, method in self._STAGES:
                if self.check_only and stage in _NOT_IN_CHECK_MODE:
                    continue
                self.stage = stage
                getattr(self, method)()
                self.completed.append(stage)
        except _Finish as finish:
            self.outcome.set(finish.code, self.stage.value if finish.code else None)
        except PortcullisError as exc:
            self.pending_error = exc
            self.outcome.set(exc.exit_code, self.stage.value)
            logger.critical("%s: %s", self.stage.value, exc)
        except Exception as exc:
            self.pending_error = exc
            self.outcome.set(ExitCode.ERROR, self.stage.value)
            logger.critical("%s: unexpected error: %s", self.stage.value, exc, exc_info=True)
        finally:
            self.shutdown()
        return int(self.outcome.code)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _init(self) -> None:
        self.log = LogSetup(self._log_console)
        self.log.start_console()
        self.frontend = Frontend()
        self.registry = OptionRegistry()
        self.crash_handler = CrashHandler(self._environ)

    def _parse_base_options(self) -> None:
        assert self.registry is not None and self.frontend is not None
        self.resolver = ConfigResolver(self.registry, self.frontend, self._http_client)
        self.resolver.parse_base(self.argv)
        if self.frontend.print_version:
            self.console.print(f"portcullis {__version__}")
            self._printed_version = True

    def _load_config(self) -> None:
        assert self.resolver is not None
        self.resolver.load_sources()

    def _resolve_base_dir(self) -> None:
        assert self.frontend is not None
        self.frontend.basedir = resolve_base_dir(self.frontend.basedir, self.argv0)

    def _install_crash_handler(self) -> None:
        assert self.crash_handler is not None and self.log is not None
        self.crash_handler.install(self.log.stream())

    def _resolve_paths(self) -> None:
        assert self.frontend is not None
        fe = self.frontend
        base = fe.basedir or ""
        fe.log_file = resolve_path(base, fe.log_file)
        fe.pid_file = resolve_path(base, fe.pid_file)
        fe.plugin_dir = resolve_path(base, fe.plugin_dir) or fe.plugin_dir
        fe.conf_dir = resolve_path(base, fe.conf_dir) or fe.conf_dir

    def _open_log(self) -> None:
        assert self.frontend is not None and self.log is not None
        fe = self.frontend
        level_name = fe.log_level
        if fe.log_file and not self.check_only:
            self.log.open_file(fe.log_file)
            if self.crash_handler is not None:
                self.crash_handler.redirect(fe.log_file)
            self.log.open_slow_query_log()
        self.log.set_level(level_name)
        logger.info("portcullis %s starting (python %s)", __version__, sys.version.split()[0])
        logger.info("base dir: %s, conf dir: %s", fe.basedir, fe.conf_dir)

    def _init_core_runtime(self) -> None:
        assert self.frontend is not None and self.resolver is not None
        self.loader = PluginLoader(self.frontend.plugin_dir)
        self.runtime = self._runtime_factory(
            self.loader, self.resolver.config_source(self.frontend.conf_dir)
        )

    def _load_plugins(self) -> None:
        assert self.frontend is not None and self.loader is not None
        self.loader.load_all(self.frontend.plugins)

    def _init_plugins(self) -> None:
        assert self.loader is not None and self.registry is not None
        assert self.resolver is not None and self.runtime is not None
        self.loader.register_options(self.registry)
        self.resolver.apply_plugin_sources()
        self.loader.init_all(self.runtime.config_source)

    def _strict_parse_options(self) -> None:
        assert self.frontend is not None and self.resolver is not None
        assert self.registry is not None
        if self.frontend.show_help:
            self.console.print(self.registry.format_help(title="portcullis options"))
            raise _Finish(ExitCode.SUCCESS)
        self.resolver.parse_strict()

    def _print_version(self) -> None:
        assert self.frontend is not None and self.loader is not None
        if not self.frontend.print_version:
            return
        if not self._printed_version:
            self.console.print(f"portcullis {__version__}")
        for handle in self.loader.handles:
            self.console.print(f"  {handle.name}: {handle.plugin.version}")
        raise _Finish(ExitCode.SUCCESS)

    def _daemonize(self) -> None:
        assert self.frontend is not None
        if self.frontend.daemon:
            daemonize()

    def _supervise(self) -> None:
        assert self.frontend is not None
        if not self.frontend.keepalive:
            return
        result = self._supervisor_factory().run()
        self.role = result.role
        if result.role is Role.SUPERVISOR:
            raise _Finish(result.exit_code)

    def _write_pid_file(self) -> None:
        assert self.frontend is not None
        path = self.frontend.pid_file
        if not path:
            return
        try:
            Path(path).write_text(f"{os.getpid()}\n", encoding="utf-8")
        except OSError as exc:
            raise ResourceError(f"can't write pid-file '{path}': {exc}") from exc
        self.pid_file = path

    def _validate_mode_and_defaults(self) -> None:
        assert self.frontend is not None and self.loader is not None
        if check_modes(self.loader.names):
            logger.info("set sharding mode true")
        check_defaults(self.frontend)

    def _derive_parameters(self) -> None:
        assert self.frontend is not None and self.loader is not None
        self.config = derive(self.frontend, self.loader.names)

    def _open_transaction_log(self) -> None:
        assert self.config is not None
        self.xa_log = TransactionLog(self.config.xa_log_file, detailed=self.config.xa_log_detailed)
        self.xa_log.open()

    def _raise_file_limit(self) -> None:
        assert self.config is not None
        if self.config.max_open_files > 0:
            set_fd_limit(self.config.max_open_files)

    def _start_background_monitor(self) -> None:
        assert self.runtime is not None and self.loader is not None
        assert self.config is not None
        self.monitor = Monitor(self.runtime)
        for handle in self.loader.handles:
            for name, job in handle.plugin.monitor_jobs(self.config):
                self.monitor.schedule(f"{handle.name}:{name}", job)
        self.monitor.start()

    def _run_main_loop(self) -> None:
        assert self.runtime is not None and self.config is not None
        self.runtime.run(self.config)

    def _stop_background_monitor(self) -> None:
        if self.monitor is not None:
            self.monitor.stop()

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def shutdown(self) -> None:
        """Release everything, in a fixed order. Runs at most once."""
        if self._shut_down:
            return
        self._shut_down = True
        self.shutdown_count += 1
        self.stage = Stage.SHUTDOWN

        self.pending_error = None

        if self.runtime is not None:
            self.runtime.request_shutdown()
        if self.monitor is not None:
            self.monitor.stop()

        self._log_exit()

        if self.crash_handler is not None:
            self.crash_handler.restore()

        if self.runtime is not None:
            self.runtime.close()
        if self.loader is not None:
            self.loader.unload_all()

        if self.pid_file is not None:
            Path(self.pid_file).unlink(missing_ok=True)
            self.pid_file = None

        if self.registry is not None:
            self.registry.clear()

        if self.log is not None:
            self.log.close()

        if self.xa_log is not None:
            self.xa_log.close()

        self.frontend = None
        self.resolver = None

    def _log_exit(self) -> None:
        fe = self.frontend
        if fe is not None and fe.print_version:
            return
        level = logging.CRITICAL if fe is not None and fe.verbose_shutdown else logging.INFO
        if self.outcome.is_failure:
            logger.log(level, "startup failed in stage %s", self.outcome.location)
        logger.log(level, "shutting down normally, exit code is: %d", self.outcome.code)
