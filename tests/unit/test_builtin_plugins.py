"""Unit tests for the built-in proxy and shard plugins."""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path

import pytest

from portcullis.core.config import LocalConfigSource, RemoteConfigSource
from portcullis.core.exceptions import PluginError, ValidationError
from portcullis.core.params import ResolvedConfig
from portcullis.plugins.base import parse_address
from portcullis.plugins.proxy import ProxyPlugin
from portcullis.plugins.shard import ShardPlugin

MakeConfig = Callable[..., ResolvedConfig]


class TestParseAddress:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (":4040", ("0.0.0.0", 4040)),
            ("127.0.0.1:5000", ("127.0.0.1", 5000)),
            ("db.internal", ("db.internal", 4040)),
        ],
    )
    def test_valid(self, value: str, expected: tuple[str, int]) -> None:
        assert parse_address(value, 4040) == expected

    @pytest.mark.parametrize("value", ["host:http", ":70000", ":0"])
    def test_invalid(self, value: str) -> None:
        with pytest.raises(ValidationError, match="invalid address"):
            parse_address(value, 4040)


class TestProxyPlugin:
    def test_reads_users(self, tmp_path: Path) -> None:
        (tmp_path / "users.json").write_text(json.dumps({"app": {"password": "pw"}}))
        plugin = ProxyPlugin()
        plugin.init(LocalConfigSource(tmp_path))
        assert plugin.users == {"app": {"password": "pw"}}

    def test_users_must_be_mapping(self) -> None:
        plugin = ProxyPlugin()
        with pytest.raises(PluginError, match="'users' must be a mapping"):
            plugin.init(RemoteConfigSource("http://conf", {"users": ["app"]}))

    def test_start_and_destroy(self, make_config: MakeConfig) -> None:
        plugin = ProxyPlugin()
        plugin.settings.address = "127.0.0.1:6000"
        plugin.start(make_config())
        assert plugin.started is True
        assert plugin.bind == ("127.0.0.1", 6000)
        plugin.stop()
        plugin.destroy()
        assert plugin.started is False
        assert plugin.bind is None

    def test_slave_delay_job(self, make_config: MakeConfig) -> None:
        plugin = ProxyPlugin()
        plugin.settings.read_only_backend_addresses = ["replica:3306"]
        assert plugin.monitor_jobs(make_config()) == []
        jobs = plugin.monitor_jobs(make_config(check_slave_delay=True))
        assert [name for name, _ in jobs] == ["check-slave-delay"]
        jobs[0][1]()


class TestShardPlugin:
    def test_missing_sharding_config_warns(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        plugin = ShardPlugin()
        plugin.init(LocalConfigSource(tmp_path))
        assert plugin.vdbs == []
        assert "no 'sharding' config in local config" in caplog.text

    def test_sharding_must_be_mapping(self) -> None:
        source = RemoteConfigSource("http://conf", {"sharding": ["vdb"]})
        with pytest.raises(PluginError, match="must be a mapping"):
            ShardPlugin().init(source)

    def test_requires_vdbs(self) -> None:
        source = RemoteConfigSource("http://conf", {"sharding": {"vdb": []}})
        with pytest.raises(PluginError, match="non-empty list"):
            ShardPlugin().init(source)

    def test_reads_sharding_config(self, tmp_path: Path) -> None:
        (tmp_path / "sharding.json").write_text(
            json.dumps({"vdb": [{"id": 1, "type": "int"}], "table": [{"table": "orders"}]})
        )
        plugin = ShardPlugin()
        plugin.init(LocalConfigSource(tmp_path))
        assert len(plugin.vdbs) == 1
        assert plugin.tables == [{"table": "orders"}]
