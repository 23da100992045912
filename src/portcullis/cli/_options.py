"""portcullis options — list daemon options."""

from __future__ import annotations

from rich.console import Console

from portcullis.core.constants import ExitCode
from portcullis.core.exceptions import PortcullisError
from portcullis.core.frontend import Frontend, register_base_options, register_core_options
from portcullis.core.options import OptionRegistry
from portcullis.plugins.loader import PluginLoader


def cmd_options(plugins: str, console: Console, err_console: Console) -> int:
    registry = OptionRegistry()
    frontend = Frontend()
    loader = PluginLoader()
    try:
        register_base_options(registry, frontend)
        register_core_options(registry, frontend)
        loader.load_all([name.strip() for name in plugins.split(",") if name.strip()])
        loader.register_options(registry)
        console.print(registry.format_help(title="portcullis options"))
    except PortcullisError as exc:
        err_console.print(f"[red]error:[/red] {exc}")
        return int(exc.exit_code)
    finally:
        loader.unload_all()
        registry.clear()
    return int(ExitCode.SUCCESS)
