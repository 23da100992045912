"""Read/write splitting proxy plugin."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from portcullis import __version__
from portcullis.core.config import ConfigSource
from portcullis.core.exceptions import PluginError
from portcullis.core.options import OptionKind, OptionRegistry
from portcullis.core.params import ResolvedConfig
from portcullis.plugins.base import MonitorJob, PluginRegistry, PortcullisPlugin, parse_address

logger = logging.getLogger(__name__)

DEFAULT_PROXY_PORT = 4040


@dataclass
class ProxySettings:
    address: str = f":{DEFAULT_PROXY_PORT}"
    backend_addresses: list[str] = field(default_factory=list)
    read_only_backend_addresses: list[str] = field(default_factory=list)


@PluginRegistry.register("proxy")
class ProxyPlugin(PortcullisPlugin):
    version = __version__
    description = "Read/write splitting in front of one primary and its replicas"

    def __init__(self) -> None:
        super().__init__()
        self.settings = ProxySettings()
        self.users: dict[str, Any] = {}
        self.bind: tuple[str, int] | None = None

    def register_options(self, registry: OptionRegistry) -> None:
        registry.add(
            "proxy-address", self.settings, "address", short="P", group="proxy",
            help=f"listening address:port of the proxy-server (default: :{DEFAULT_PROXY_PORT})",
            arg_description="<host:port>",
        )
        registry.add(
            "proxy-backend-addresses", self.settings, "backend_addresses",
            OptionKind.STRING_LIST, short="b", group="proxy",
            help="address:port of the remote backend-servers",
            arg_description="<host:port>",
        )
        registry.add(
            "proxy-read-only-backend-addresses", self.settings, "read_only_backend_addresses",
            OptionKind.STRING_LIST, short="r", group="proxy",
            help="address:port of the remote slave-server",
            arg_description="<host:port>",
        )

    def init(self, source: ConfigSource) -> None:
        users = source.read("users")
        if users is None:
            logger.info("proxy: no users in %s config", source.kind)
            return
        if not isinstance(users, dict):
            raise PluginError(f"proxy: 'users' must be a mapping, got {type(users).__name__}")
        self.users = dict(users)
        logger.info("proxy: %d users loaded from %s config", len(self.users), source.kind)

    def start(self, config: ResolvedConfig) -> None:
        self.bind = parse_address(self.settings.address, DEFAULT_PROXY_PORT)
        if not self.settings.backend_addresses:
            logger.warning("proxy: no backends configured (--proxy-backend-addresses)")
        self.started = True
        logger.info(
            "proxy listening on %s:%d, %d rw / %d ro backends, pool %d..%d",
            self.bind[0],
            self.bind[1],
            len(self.settings.backend_addresses),
            len(self.settings.read_only_backend_addresses),
            config.min_idle_connections,
            config.max_idle_connections,
        )

    def monitor_jobs(self, config: ResolvedConfig) -> list[MonitorJob]:
        if config.check_slave_delay and self.settings.read_only_backend_addresses:
            return [("check-slave-delay", self._check_slave_delay)]
        return []

    def _check_slave_delay(self) -> None:
        logger.debug(
            "proxy: heartbeat check of %d read-only backends",
            len(self.settings.read_only_backend_addresses),
        )

    def destroy(self) -> None:
        self.users.clear()
        self.bind = None
        self.started = False
