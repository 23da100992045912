"""
Configuration resolution.

Merges the three option sources into the :class:`Frontend` in priority
order::

    command line  >  key-file (--defaults-file)  >  remote config  >  defaults

The command line is parsed first without strictness; file values are then
applied only to options it left unset. Plugin options do not exist until
the plugins are loaded, so :meth:`ConfigResolver.apply_plugin_sources`
re-applies both files after plugin registration and
:meth:`ConfigResolver.parse_strict` re-parses the command-line leftovers.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from portcullis.core.config import (
    ConfigSource,
    LocalConfigSource,
    RemoteConfigSource,
    document_options,
    fetch_remote_config,
    load_keyfile,
)
from portcullis.core.exceptions import ConfigError
from portcullis.core.frontend import Frontend, register_base_options, register_core_options
from portcullis.core.options import OptionRegistry

logger = logging.getLogger(__name__)

_BASE_ONLY = frozenset({"defaults-file", "version", "help"})


class ConfigResolver:
    def __init__(
        self,
        registry: OptionRegistry,
        frontend: Frontend,
        http_client: httpx.Client | None = None,
    ) -> None:
        self.registry = registry
        self.frontend = frontend
        self._http_client = http_client
        self.leftovers: list[str] = []
        self.keyfile_values: dict[str, Any] = {}
        self.remote_document: dict[str, Any] | None = None

    def parse_base(self, argv: list[str]) -> list[str]:
        """Register base and core options and take them from *argv*."""
        register_base_options(self.registry, self.frontend)
        register_core_options(self.registry, self.frontend)
        self.leftovers = self.registry.parse(argv, strict=False)
        return self.leftovers

    def load_sources(self) -> None:
        """Apply the key-file, then the remote config, to unset options."""
        if self.frontend.defaults_file:
            self.keyfile_values = _file_options(load_keyfile(self.frontend.defaults_file))
            unknown = self.registry.apply_mapping(self.keyfile_values, source="key-file")
            if unknown:
                logger.debug("key-file keys left for plugins: %s", ", ".join(unknown))

        if self.frontend.remote_conf_url:
            self.remote_document = fetch_remote_config(
                self.frontend.remote_conf_url, client=self._http_client
            )
            self.registry.apply_mapping(
                _file_options(document_options(self.remote_document)), source="remote config"
            )
            logger.info("remote config loaded from %s", self.frontend.remote_conf_url)

    def apply_plugin_sources(self) -> None:
        """Second pass over both files now that plugin options exist."""
        if self.keyfile_values:
            unknown = self.registry.apply_mapping(self.keyfile_values, source="key-file")
            for key in unknown:
                if not isinstance(self.keyfile_values[key], dict):
                    logger.warning("unknown option %r in key-file ignored", key)
        if self.remote_document is not None:
            self.registry.apply_mapping(
                _file_options(document_options(self.remote_document)), source="remote config"
            )

    def parse_strict(self) -> None:
        try:
            self.leftovers = self.registry.parse(self.leftovers, strict=True)
        except ConfigError as exc:
            raise ConfigError(f"{exc} (use --help to show all options)") from exc

    def config_source(self, conf_dir: str) -> ConfigSource:
        """Where plugins read their config objects from."""
        if self.remote_document is not None and self.frontend.remote_conf_url:
            return RemoteConfigSource(self.frontend.remote_conf_url, self.remote_document)
        return LocalConfigSource(conf_dir)


def _file_options(values: dict[str, Any]) -> dict[str, Any]:
    """Base options are command-line only."""
    return {k: v for k, v in values.items() if k.replace("_", "-") not in _BASE_ONLY}
