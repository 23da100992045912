"""Sharding plugin: routes statements across vdb partitions."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from portcullis import __version__
from portcullis.core.config import ConfigSource
from portcullis.core.exceptions import PluginError
from portcullis.core.options import OptionKind, OptionRegistry
from portcullis.core.params import ResolvedConfig
from portcullis.plugins.base import PluginRegistry, PortcullisPlugin, parse_address

logger = logging.getLogger(__name__)

DEFAULT_SHARD_PORT = 4040


@dataclass
class ShardSettings:
    address: str = f":{DEFAULT_SHARD_PORT}"
    backend_addresses: list[str] = field(default_factory=list)


@PluginRegistry.register("shard")
class ShardPlugin(PortcullisPlugin):
    version = __version__
    description = "Sharding across vdb partitions"

    def __init__(self) -> None:
        super().__init__()
        self.settings = ShardSettings()
        self.vdbs: list[dict[str, Any]] = []
        self.tables: list[dict[str, Any]] = []
        self.bind: tuple[str, int] | None = None

    def register_options(self, registry: OptionRegistry) -> None:
        registry.add(
            "shard-address", self.settings, "address", group="shard",
            help=f"listening address:port of the sharding proxy (default: :{DEFAULT_SHARD_PORT})",
            arg_description="<host:port>",
        )
        registry.add(
            "shard-backend-addresses", self.settings, "backend_addresses",
            OptionKind.STRING_LIST, group="shard",
            help="address:port@group of the shard backends",
            arg_description="<host:port@group>",
        )

    def init(self, source: ConfigSource) -> None:
        sharding = source.read("sharding")
        if sharding is None:
            logger.warning("shard: no 'sharding' config in %s config, no vdbs defined", source.kind)
            return
        if not isinstance(sharding, dict):
            raise PluginError(f"shard: 'sharding' must be a mapping, got {type(sharding).__name__}")

        vdbs = sharding.get("vdb", [])
        tables = sharding.get("table", [])
        if not isinstance(vdbs, list) or not vdbs:
            raise PluginError("shard: 'sharding.vdb' must be a non-empty list")
        if not isinstance(tables, list):
            raise PluginError("shard: 'sharding.table' must be a list")
        self.vdbs = vdbs
        self.tables = tables
        logger.info("shard: %d vdbs, %d sharded tables", len(vdbs), len(tables))

    def start(self, config: ResolvedConfig) -> None:
        self.bind = parse_address(self.settings.address, DEFAULT_SHARD_PORT)
        self.started = True
        logger.info(
            "shard listening on %s:%d, %d backends, worker id %d",
            self.bind[0],
            self.bind[1],
            len(self.settings.backend_addresses),
            config.worker_id,
        )

    def destroy(self) -> None:
        self.vdbs = []
        self.tables = []
        self.bind = None
        self.started = False
