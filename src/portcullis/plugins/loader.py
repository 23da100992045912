"""
Plugin loading.

A name listed in ``--plugins`` is looked up, first match wins, in:

1. ``<plugin-dir>/<name>.py``, a module exposing a ``PLUGIN`` class
2. the ``portcullis.plugins`` entry-point group of installed distributions
3. the built-in plugins shipped in :mod:`portcullis.plugins`

Loaded plugins are kept in load order; :meth:`PluginLoader.unload_all`
destroys them in reverse.
"""

from __future__ import annotations

import importlib.util
import logging
import sys
from dataclasses import dataclass
from importlib.metadata import entry_points
from pathlib import Path
from types import ModuleType
from typing import Any

from portcullis.core.config import ConfigSource
from portcullis.core.constants import PLUGIN_ENTRY_POINT_GROUP
from portcullis.core.exceptions import PluginError, PortcullisError
from portcullis.core.options import OptionRegistry
from portcullis.plugins.base import PluginRegistry, PortcullisPlugin

logger = logging.getLogger(__name__)


@dataclass
class PluginHandle:
    name: str
    module: ModuleType
    plugin: PortcullisPlugin
    position: int
    origin: str = "builtin"


class PluginLoader:
    def __init__(self, plugin_dir: str | None = None) -> None:
        self.plugin_dir = plugin_dir
        self._handles: list[PluginHandle] = []
        self._file_modules: list[str] = []

    @property
    def handles(self) -> list[PluginHandle]:
        return list(self._handles)

    @property
    def names(self) -> list[str]:
        return [h.name for h in self._handles]

    def __len__(self) -> int:
        return len(self._handles)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load_all(self, names: list[str]) -> None:
        for name in names:
            self.load(name)

    def load(self, name: str) -> PluginHandle:
        if name in self.names:
            raise PluginError(f"plugin {name!r} is listed twice")

        module, plugin_cls, origin = self._find(name)
        try:
            plugin = plugin_cls()
        except Exception as exc:
            raise PluginError(f"plugin {name!r}: creating {plugin_cls.__name__} failed: {exc}") from exc

        handle = PluginHandle(
            name=name, module=module, plugin=plugin, position=len(self._handles), origin=origin
        )
        self._handles.append(handle)
        logger.info("loaded plugin %s %s (%s)", name, plugin.version, origin)
        return handle

    def _find(self, name: str) -> tuple[ModuleType, type[PortcullisPlugin], str]:
        if self.plugin_dir:
            path = Path(self.plugin_dir) / f"{name}.py"
            if path.is_file():
                module = self._load_file(name, path)
                return module, _plugin_class(getattr(module, "PLUGIN", None), name), str(path)

        for ep in entry_points(group=PLUGIN_ENTRY_POINT_GROUP):
            if ep.name != name:
                continue
            try:
                obj = ep.load()
            except Exception as exc:
                raise PluginError(f"plugin {name!r}: loading entry point {ep.value} failed: {exc}") from exc
            plugin_cls = _plugin_class(obj, name)
            return sys.modules[plugin_cls.__module__], plugin_cls, f"entry point {ep.value}"

        import portcullis.plugins  # noqa: F401  (populates the registry)

        try:
            plugin_cls = PluginRegistry.get(name)
        except KeyError as exc:
            raise PluginError(
                f"plugin {name!r} not found (plugin-dir {self.plugin_dir}): {exc.args[0]}"
            ) from exc
        return sys.modules[plugin_cls.__module__], plugin_cls, "builtin"

    def _load_file(self, name: str, path: Path) -> ModuleType:
        module_name = f"portcullis_plugin_{name}"
        spec = importlib.util.spec_from_file_location(module_name, path)
        if spec is None or spec.loader is None:
            raise PluginError(f"plugin {name!r}: {path} is not a loadable module")
        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        try:
            spec.loader.exec_module(module)
        except Exception as exc:
            del sys.modules[module_name]
            raise PluginError(f"plugin {name!r}: loading {path} failed: {exc}") from exc
        self._file_modules.append(module_name)
        return module

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def register_options(self, registry: OptionRegistry) -> None:
        for handle in self._handles:
            handle.plugin.register_options(registry)

    def init_all(self, source: ConfigSource) -> None:
        for handle in self._handles:
            try:
                handle.plugin.init(source)
            except PortcullisError:
                raise
            except Exception as exc:
                raise PluginError(f"plugin {handle.name!r}: init failed: {exc}") from exc

    def unload_all(self) -> None:
        """Destroy every plugin, last loaded first. Safe to call repeatedly."""
        while self._handles:
            handle = self._handles.pop()
            try:
                handle.plugin.destroy()
            except Exception:
                logger.exception("plugin %s: destroy failed", handle.name)
            logger.debug("unloaded plugin %s", handle.name)
        while self._file_modules:
            sys.modules.pop(self._file_modules.pop(), None)


def _plugin_class(obj: Any, name: str) -> type[PortcullisPlugin]:
    if isinstance(obj, type) and issubclass(obj, PortcullisPlugin):
        return obj
    raise PluginError(f"plugin {name!r} does not provide a PortcullisPlugin subclass (got {obj!r})")
