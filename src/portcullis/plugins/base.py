"""
Plugin contract and registry.

A plugin is a class with a small lifecycle the control plane drives:

    register_options(registry)   before the strict command-line pass
    init(source)                 after its options were read from files
    start(config)                inside the main loop, once config is final
    monitor_jobs(config)         periodic checks run by the background monitor
    stop()                       when the main loop ends
    destroy()                    at shutdown, in reverse load order

Built-in plugins register themselves with :class:`PluginRegistry`::

    @PluginRegistry.register("proxy")
    class ProxyPlugin(PortcullisPlugin):
        ...
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import TYPE_CHECKING, ClassVar

from portcullis.core.exceptions import ValidationError

if TYPE_CHECKING:
    from portcullis.core.config import ConfigSource
    from portcullis.core.options import OptionRegistry
    from portcullis.core.params import ResolvedConfig

MonitorJob = tuple[str, Callable[[], None]]


class PortcullisPlugin(ABC):
    """Base class for everything listed in ``--plugins``."""

    name: ClassVar[str] = ""
    version: ClassVar[str] = "0.0.0"
    description: ClassVar[str] = ""

    def __init__(self) -> None:
        self.started = False

    def register_options(self, registry: OptionRegistry) -> None:
        """Contribute plugin options; the default plugin has none."""

    def init(self, source: ConfigSource) -> None:
        """Read the plugin's config objects (users, rules, ...)."""

    @abstractmethod
    def start(self, config: ResolvedConfig) -> None: ...

    def monitor_jobs(self, config: ResolvedConfig) -> list[MonitorJob]:
        return []

    def stop(self) -> None:
        self.started = False

    def destroy(self) -> None:
        """Release everything the plugin holds. Must be safe to call twice."""


class PluginRegistry:
    """Name → plugin class, filled by the :meth:`register` decorator."""

    _plugins: ClassVar[dict[str, type[PortcullisPlugin]]] = {}

    @classmethod
    def register(
        cls, name: str
    ) -> Callable[[type[PortcullisPlugin]], type[PortcullisPlugin]]:
        def decorator(plugin_cls: type[PortcullisPlugin]) -> type[PortcullisPlugin]:
            if not plugin_cls.name:
                plugin_cls.name = name
            cls._plugins[name] = plugin_cls
            return plugin_cls

        return decorator

    @classmethod
    def get(cls, name: str) -> type[PortcullisPlugin]:
        try:
            return cls._plugins[name]
        except KeyError:
            available = ", ".join(sorted(cls._plugins)) or "none"
            raise KeyError(f"Unknown plugin {name!r}. Available: {available}") from None

    @classmethod
    def list_all(cls) -> dict[str, type[PortcullisPlugin]]:
        return dict(cls._plugins)


def parse_address(value: str, default_port: int) -> tuple[str, int]:
    """Split ``host:port`` (either part may be empty) into a bind address."""
    host, sep, port_text = value.rpartition(":")
    if not sep:
        host, port_text = value, ""
    try:
        port = int(port_text) if port_text else default_port
    except ValueError:
        raise ValidationError(f"invalid address {value!r}: port is not a number") from None
    if not 0 < port < 65536:
        raise ValidationError(f"invalid address {value!r}: port out of range")
    return host or "0.0.0.0", port
