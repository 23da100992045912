"""Unit tests for the fatal-signal handler."""

from __future__ import annotations

import io
import sys
from pathlib import Path

import pytest

from portcullis.core.crash import CrashHandler, running_under_instrumentation


class TestInstrumentationDetection:
    @pytest.mark.parametrize(
        "preload",
        [
            "/usr/lib/x86_64-linux-gnu/valgrind/vgpreload_memcheck-amd64-linux.so",
            "/usr/lib/gcc/x86_64-linux-gnu/12/libasan.so",
        ],
    )
    def test_detected(self, preload: str) -> None:
        assert running_under_instrumentation({"LD_PRELOAD": preload}) is True

    def test_not_detected(self) -> None:
        assert running_under_instrumentation({}) is False
        assert running_under_instrumentation({"LD_PRELOAD": "libjemalloc.so"}) is False


class TestCrashHandler:
    def test_install_and_restore(self, tmp_path: Path) -> None:
        handler = CrashHandler(environ={})
        with open(tmp_path / "crash.log", "w") as stream:
            assert handler.install(stream) is True
            assert handler.installed is True
            assert handler.stream is stream
            handler.restore()
        assert handler.installed is False
        assert handler.stream is None

    def test_restore_is_idempotent(self) -> None:
        handler = CrashHandler(environ={})
        handler.restore()
        handler.install()
        handler.restore()
        handler.restore()
        assert handler.installed is False

    def test_skipped_under_instrumentation(self, caplog: pytest.LogCaptureFixture) -> None:
        handler = CrashHandler(environ={"LD_PRELOAD": "libasan.so"})
        with caplog.at_level("INFO", logger="portcullis"):
            assert handler.install() is False
        assert handler.installed is False
        assert "crash handler not installed" in caplog.text

    def test_announces_target(self, tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
        handler = CrashHandler(environ={})
        with open(tmp_path / "crash.log", "w") as stream:
            handler.install(stream)
            handler.restore()
        assert "crash tracebacks are written to" in caplog.text
        assert "crash.log" in caplog.text

    def test_stream_without_fileno_falls_back_to_stderr(self) -> None:
        handler = CrashHandler(environ={})
        assert handler.install(io.StringIO()) is True
        assert handler.stream is sys.__stderr__
        handler.restore()

    def test_redirect_uses_own_descriptor(self, tmp_path: Path) -> None:
        log_path = tmp_path / "portcullis.log"
        handler = CrashHandler(environ={})
        with open(log_path, "a") as log_stream:
            handler.install()
            handler.redirect(str(log_path))
            assert handler.stream is not None
            assert handler.stream.name == str(log_path)
            assert handler.stream.fileno() != log_stream.fileno()

        # the log handler closing its stream leaves the crash target usable
        assert not handler.stream.closed
        owned = handler.stream
        handler.restore()
        assert owned.closed

    def test_redirect_again_closes_previous_file(self, tmp_path: Path) -> None:
        handler = CrashHandler(environ={})
        handler.install()
        handler.redirect(str(tmp_path / "a.log"))
        first = handler.stream
        handler.redirect(str(tmp_path / "b.log"))
        assert first is not None and first.closed
        assert handler.stream is not None and handler.stream.name == str(tmp_path / "b.log")
        handler.restore()

    def test_redirect_to_unopenable_file_keeps_target(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        handler = CrashHandler(environ={})
        handler.install()
        before = handler.stream
        handler.redirect(str(tmp_path / "missing-dir" / "p.log"))
        assert handler.stream is before
        assert "cannot open" in caplog.text
        handler.restore()

    def test_redirect_before_install_is_ignored(self, tmp_path: Path) -> None:
        handler = CrashHandler(environ={})
        handler.redirect(str(tmp_path / "a.log"))
        assert handler.stream is None
        assert not (tmp_path / "a.log").exists()
