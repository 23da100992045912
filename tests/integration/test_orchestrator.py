"""
Integration tests for the startup/shutdown orchestrator.

Every run goes through the real stages with the built-in plugins. The
runtime used here requests its own shutdown before entering the main loop,
so a successful run starts and stops everything without blocking.
"""

from __future__ import annotations

import io
import json
import logging
import os
from pathlib import Path
from typing import Any

import pytest
from rich.console import Console

from portcullis import __version__
from portcullis.core.constants import ExitCode
from portcullis.core.exceptions import EngineError, ResourceError
from portcullis.core.orchestrator import ExitOutcome, Orchestrator, Stage
from portcullis.core.params import ResolvedConfig
from portcullis.core.supervisor import Role, SupervisorResult
from portcullis.runtime.engine import Runtime


class QuickRuntime(Runtime):
    """Starts and stops the plugins, then returns from the main loop."""

    def run(self, config: ResolvedConfig) -> None:
        self.seen = {h.name: h.plugin for h in self.loader.handles}
        self.request_shutdown()
        super().run(config)


class FailingRuntime(Runtime):
    def run(self, config: ResolvedConfig) -> None:
        raise EngineError("event loop died")


def _orchestrator(
    basedir: Path, *extra: str, runtime: type[Runtime] = QuickRuntime, **kwargs: Any
) -> Orchestrator:
    argv = ["--basedir", str(basedir), "--default-username", "app", "--log-level", "info", *extra]
    kwargs.setdefault("console", Console(file=io.StringIO(), width=200))
    kwargs.setdefault("log_console", Console(file=io.StringIO(), width=200))
    return Orchestrator(argv, argv0="/opt/portcullis/bin/portcullis", runtime_factory=runtime,
                        environ={}, **kwargs)


def _output(orchestrator: Orchestrator) -> str:
    return orchestrator.console.file.getvalue()  # type: ignore[attr-defined]


def _assert_torn_down(orch: Orchestrator) -> None:
    assert orch.shutdown_count == 1
    assert orch.pending_error is None
    assert orch.frontend is None
    if orch.registry is not None:
        assert len(orch.registry) == 0
    if orch.loader is not None:
        assert len(orch.loader) == 0
    if orch.runtime is not None:
        assert orch.runtime.closed
    if orch.monitor is not None:
        assert not orch.monitor.is_alive()
    if orch.log is not None:
        assert orch.log.handler_count == 0
    if orch.xa_log is not None:
        assert not orch.xa_log.is_open
    if orch.crash_handler is not None:
        assert not orch.crash_handler.installed
    assert logging.getLogger("portcullis").handlers == []


# ---------------------------------------------------------------------------
# Successful runs
# ---------------------------------------------------------------------------


class TestSuccessfulRun:
    def test_full_run(self, tmp_path: Path) -> None:
        orch = _orchestrator(tmp_path)
        assert orch.run() == ExitCode.SUCCESS
        assert orch.outcome.location is None
        assert orch.completed[-1] is Stage.STOP_BACKGROUND_MONITOR
        assert orch.config is not None
        assert orch.config.base_dir == str(tmp_path)
        assert (tmp_path / "logs" / "xa.log").exists()
        _assert_torn_down(orch)

    def test_stages_run_in_order(self, tmp_path: Path) -> None:
        orch = _orchestrator(tmp_path)
        orch.run()
        assert orch.completed == [stage for stage, _ in Orchestrator._STAGES]

    def test_log_file_and_slow_query_log(self, tmp_path: Path) -> None:
        orch = _orchestrator(tmp_path, "--log-file", "portcullis.log")
        assert orch.run() == 0
        text = (tmp_path / "portcullis.log").read_text()
        assert "shutting down normally, exit code is: 0" in text
        assert (tmp_path / "portcullis.log.slowquery.log").exists()

    def test_pid_file_written_and_removed(self, tmp_path: Path) -> None:
        seen: dict[str, str] = {}

        class PidRuntime(QuickRuntime):
            def run(self, config: ResolvedConfig) -> None:
                assert config.pid_file is not None
                seen["pid"] = Path(config.pid_file).read_text()
                super().run(config)

        orch = _orchestrator(tmp_path, "--pid-file", "portcullis.pid", runtime=PidRuntime)
        assert orch.run() == 0
        assert seen["pid"] == f"{os.getpid()}\n"
        assert not (tmp_path / "portcullis.pid").exists()

    def test_plugin_options_from_keyfile_and_command_line(self, tmp_path: Path) -> None:
        keyfile = tmp_path / "portcullis.toml"
        keyfile.write_text(
            '[portcullis]\nproxy-address = ":7000"\nproxy-backend-addresses = ["db1:3306"]\n'
        )
        orch = _orchestrator(tmp_path, "-c", str(keyfile), "--proxy-address", ":8000")
        assert orch.run() == 0
        proxy = orch.runtime.seen["proxy"]  # type: ignore[union-attr]
        assert proxy.settings.address == ":8000"
        assert proxy.settings.backend_addresses == ["db1:3306"]

    def test_monitor_jobs_from_plugins(self, tmp_path: Path) -> None:
        orch = _orchestrator(tmp_path, "--check-slave-delay", "-r", "replica:3306")
        assert orch.run() == 0
        assert orch.monitor is not None
        assert orch.monitor.jobs == ["proxy:check-slave-delay"]

    def test_remote_config(self, tmp_path: Path) -> None:
        remote = tmp_path / "remote.json"
        remote.write_text(json.dumps({"portcullis": {"default-db": "shop"}}))
        orch = _orchestrator(tmp_path, "--remote-conf-url", remote.as_uri())
        assert orch.run() == 0
        assert orch.config is not None
        assert orch.config.default_db == "shop"

    def test_shutdown_is_idempotent(self, tmp_path: Path) -> None:
        orch = _orchestrator(tmp_path)
        orch.run()
        orch.shutdown()
        orch.shutdown()
        assert orch.shutdown_count == 1


class TestShutdownMessage:
    def test_info_by_default(self, tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
        _orchestrator(tmp_path).run()
        record = next(r for r in caplog.records if "shutting down normally" in r.getMessage())
        assert record.levelno == logging.INFO

    def test_critical_with_verbose_shutdown(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        _orchestrator(tmp_path, "--verbose-shutdown").run()
        record = next(r for r in caplog.records if "shutting down normally" in r.getMessage())
        assert record.levelno == logging.CRITICAL

    def test_failure_names_stage(self, tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
        _orchestrator(tmp_path, "--bogus").run()
        assert "startup failed in stage strict-parse-options" in caplog.text


# ---------------------------------------------------------------------------
# Early exits
# ---------------------------------------------------------------------------


class TestEarlyExits:
    def test_version(self, tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
        orch = _orchestrator(tmp_path, "--version")
        assert orch.run() == 0
        out = _output(orch)
        assert out.count(f"portcullis {__version__}") == 1
        assert f"proxy: {__version__}" in out
        assert Stage.DAEMONIZE not in orch.completed
        assert "shutting down" not in caplog.text
        _assert_torn_down(orch)

    def test_help(self, tmp_path: Path) -> None:
        orch = _orchestrator(tmp_path, "--help")
        assert orch.run() == 0
        out = _output(orch)
        assert "--default-username" in out
        assert "--proxy-address" in out
        assert Stage.PRINT_VERSION not in orch.completed

    def test_supervisor_role_forwards_worker_exit(self, tmp_path: Path) -> None:
        class FakeSupervisor:
            def run(self) -> SupervisorResult:
                return SupervisorResult(role=Role.SUPERVISOR, exit_code=143)

        orch = _orchestrator(
            tmp_path, "--keepalive", "--pid-file", "p.pid", supervisor_factory=FakeSupervisor
        )
        assert orch.run() == 143
        assert orch.role is Role.SUPERVISOR
        assert Stage.WRITE_PID_FILE not in orch.completed
        assert not (tmp_path / "p.pid").exists()
        assert orch.runtime is not None and orch.runtime.config is None
        _assert_torn_down(orch)

    def test_worker_role_continues(self, tmp_path: Path) -> None:
        class FakeSupervisor:
            def run(self) -> SupervisorResult:
                return SupervisorResult(role=Role.WORKER)

        orch = _orchestrator(tmp_path, "--keepalive", supervisor_factory=FakeSupervisor)
        assert orch.run() == 0
        assert Stage.RUN_MAIN_LOOP in orch.completed

    def test_check_only(self, tmp_path: Path) -> None:
        orch = _orchestrator(
            tmp_path, "--pid-file", "p.pid", "--log-file", "p.log", check_only=True
        )
        assert orch.run() == 0
        assert orch.config is not None
        assert orch.completed[-1] is Stage.DERIVE_PARAMETERS
        assert not (tmp_path / "p.pid").exists()
        assert not (tmp_path / "p.log").exists()
        assert not (tmp_path / "logs").exists()


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


class TestFailures:
    @pytest.mark.parametrize(
        ("extra", "code", "stage"),
        [
            (("--bogus",), ExitCode.CONFIG_ERROR, Stage.STRICT_PARSE_OPTIONS),
            (("-c", "/nonexistent/portcullis.toml"), ExitCode.CONFIG_ERROR,
             Stage.LOAD_LOCAL_OR_REMOTE_CONFIG),
            (("--remote-conf-url", "gopher://conf"), ExitCode.CONFIG_ERROR,
             Stage.LOAD_LOCAL_OR_REMOTE_CONFIG),
            (("--log-level", "loud"), ExitCode.CONFIG_ERROR, Stage.OPEN_LOG),
            (("--plugins", "ghost"), ExitCode.PLUGIN_ERROR, Stage.LOAD_PLUGINS),
            (("--default-pool-size", "0"), ExitCode.VALIDATION_ERROR, Stage.DERIVE_PARAMETERS),
            (("--log-file", "missing/p.log"), ExitCode.RESOURCE_ERROR, Stage.OPEN_LOG),
        ],
    )
    def test_exit_code_and_stage(
        self, tmp_path: Path, extra: tuple[str, ...], code: ExitCode, stage: Stage
    ) -> None:
        orch = _orchestrator(tmp_path, *extra)
        assert orch.run() == code
        assert orch.outcome.location == stage.value
        _assert_torn_down(orch)

    def test_relative_basedir(self) -> None:
        orch = Orchestrator(
            ["--basedir", "relative/dir", "--default-username", "app"],
            console=Console(file=io.StringIO()), log_console=Console(file=io.StringIO()),
            environ={},
        )
        assert orch.run() == ExitCode.CONFIG_ERROR
        assert orch.outcome.location == Stage.RESOLVE_BASE_DIR.value

    def test_missing_default_username(self, tmp_path: Path) -> None:
        orch = Orchestrator(
            ["--basedir", str(tmp_path)],
            console=Console(file=io.StringIO()), log_console=Console(file=io.StringIO()),
            runtime_factory=QuickRuntime, environ={},
        )
        assert orch.run() == ExitCode.VALIDATION_ERROR
        assert orch.outcome.location == Stage.VALIDATE_MODE_AND_DEFAULTS.value

    def test_mode_conflict_stops_before_main_loop(self, tmp_path: Path) -> None:
        (tmp_path / "conf").mkdir()
        (tmp_path / "conf" / "sharding.json").write_text(json.dumps({"vdb": [{"id": 1}]}))
        orch = _orchestrator(tmp_path, "--plugins", "shard,proxy")
        assert orch.run() == ExitCode.VALIDATION_ERROR
        assert orch.outcome.location == Stage.VALIDATE_MODE_AND_DEFAULTS.value
        assert orch.runtime is not None and orch.runtime.config is None
        assert Stage.RUN_MAIN_LOOP not in orch.completed
        _assert_torn_down(orch)

    def test_mode_conflict_without_sharding_config(self, tmp_path: Path) -> None:
        orch = _orchestrator(tmp_path, "--plugins", "shard,proxy")
        assert orch.run() == ExitCode.VALIDATION_ERROR
        assert orch.outcome.location == Stage.VALIDATE_MODE_AND_DEFAULTS.value
        assert Stage.INIT_PLUGINS in orch.completed
        _assert_torn_down(orch)

    def test_main_loop_failure(self, tmp_path: Path) -> None:
        orch = _orchestrator(tmp_path, runtime=FailingRuntime)
        assert orch.run() == ExitCode.RUNTIME_ERROR
        assert orch.outcome.location == Stage.RUN_MAIN_LOOP.value
        _assert_torn_down(orch)

    def test_unexpected_exception(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        orch = _orchestrator(tmp_path)

        def broken() -> None:
            raise ZeroDivisionError("division by zero")

        orch._derive_parameters = broken  # type: ignore[method-assign]
        assert orch.run() == ExitCode.ERROR
        assert orch.outcome.location == Stage.DERIVE_PARAMETERS.value
        record = next(r for r in caplog.records if "unexpected error" in r.getMessage())
        assert record.exc_info is not None
        _assert_torn_down(orch)

    @pytest.mark.parametrize(("stage", "method"), Orchestrator._STAGES)
    def test_fault_at_every_stage_tears_down_once(
        self, tmp_path: Path, stage: Stage, method: str
    ) -> None:
        orch = _orchestrator(tmp_path, "--pid-file", "p.pid", "--log-file", "p.log")

        def inject() -> None:
            raise ResourceError(f"injected at {stage.value}")

        setattr(orch, method, inject)
        assert orch.run() == ExitCode.RESOURCE_ERROR
        assert orch.outcome.location == stage.value
        assert stage not in orch.completed
        assert not (tmp_path / "p.pid").exists()
        _assert_torn_down(orch)


class TestExitOutcome:
    def test_written_once(self) -> None:
        outcome = ExitOutcome()
        assert outcome.set(ExitCode.CONFIG_ERROR, "load-plugins") is True
        assert outcome.set(ExitCode.ERROR, "shutdown") is False
        assert outcome.code == ExitCode.CONFIG_ERROR
        assert outcome.location == "load-plugins"
        assert outcome.is_failure

    def test_default_is_success(self) -> None:
        outcome = ExitOutcome()
        assert outcome.code == 0
        assert not outcome.is_failure
