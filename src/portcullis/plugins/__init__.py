"""Plugins. Importing this package registers the built-in ones."""

from portcullis.plugins import proxy, shard  # noqa: F401
from portcullis.plugins.base import PluginRegistry, PortcullisPlugin

__all__ = ["PluginRegistry", "PortcullisPlugin"]
