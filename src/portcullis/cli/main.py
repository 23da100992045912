"""
portcullis CLI entry point.

Commands:
  portcullis start [OPTIONS...]          — run the proxy daemon
  portcullis config show [--json|--toml] — print the resolved configuration
  portcullis config validate             — resolve and validate, start nothing
  portcullis options [--plugins ...]     — list every daemon option
  portcullis version [--json]            — show version information

Daemon options (``--basedir``, ``--plugins``, ...) are not parsed by click:
``start`` and the ``config`` commands pass them through untouched to the
orchestrator, which owns the option registry.
"""

from __future__ import annotations

import sys

import click
from rich.console import Console

from portcullis import __version__

console = Console()
err_console = Console(stderr=True)

_PASSTHROUGH = {"ignore_unknown_options": True, "allow_extra_args": True}


# ---------------------------------------------------------------------------
# Root group
# ---------------------------------------------------------------------------


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(__version__, "--version", "-V", message="portcullis %(version)s")
def cli() -> None:
    """portcullis — bootstrap and control plane for a database proxy daemon."""


# ---------------------------------------------------------------------------
# start
# ---------------------------------------------------------------------------


@cli.command(context_settings={**_PASSTHROUGH, "help_option_names": []})
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
def start(args: tuple[str, ...]) -> None:
    """Start the proxy daemon. ``portcullis start --help`` lists its options."""
    from portcullis.cli._start import cmd_start

    sys.exit(cmd_start(list(args), console=console))


# ---------------------------------------------------------------------------
# config
# ---------------------------------------------------------------------------


@cli.group()
def config() -> None:
    """Inspect the resolved configuration."""


@config.command("show", context_settings=_PASSTHROUGH)
@click.option("--json", "fmt", flag_value="json", help="Print as JSON")
@click.option("--toml", "fmt", flag_value="toml", help="Print as a TOML key-file")
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
def config_show(fmt: str | None, args: tuple[str, ...]) -> None:
    """Resolve options, key-file and remote config, then print the result."""
    from portcullis.cli._config_cmd import cmd_config_show

    sys.exit(cmd_config_show(list(args), fmt=fmt, console=console))


@config.command("validate", context_settings=_PASSTHROUGH)
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
def config_validate(args: tuple[str, ...]) -> None:
    """Check that the configuration resolves and validates."""
    from portcullis.cli._config_cmd import cmd_config_validate

    sys.exit(cmd_config_validate(list(args), console=console))


# ---------------------------------------------------------------------------
# options
# ---------------------------------------------------------------------------


@cli.command()
@click.option(
    "--plugins", default="proxy", show_default=True,
    help="Comma-separated plugins whose options to include",
)
def options(plugins: str) -> None:
    """List every daemon option with its default."""
    from portcullis.cli._options import cmd_options

    sys.exit(cmd_options(plugins, console=console, err_console=err_console))


# ---------------------------------------------------------------------------
# version
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--json", "as_json", is_flag=True, default=False)
def version(as_json: bool) -> None:
    """Show version information and built-in plugins."""
    import platform

    from portcullis.plugins import PluginRegistry

    plugins = {name: cls.version for name, cls in sorted(PluginRegistry.list_all().items())}

    if as_json:
        import json

        click.echo(
            json.dumps(
                {
                    "portcullis": __version__,
                    "python": sys.version.split()[0],
                    "platform": sys.platform,
                    "arch": platform.machine(),
                    "plugins": plugins,
                },
                indent=2,
            )
        )
    else:
        console.print(f"portcullis {__version__}")
        console.print(f"Python {sys.version.split()[0]}")
        console.print(f"Platform: {sys.platform} {platform.machine()}")
        console.print("\nBuilt-in plugins:")
        for name, plugin_version in plugins.items():
            console.print(f"  {name:<12} {plugin_version}")


def main() -> None:
    cli()


def daemon_main() -> None:
    """``portcullisd``: the daemon without the command group."""
    from portcullis.core.orchestrator import Orchestrator

    sys.exit(Orchestrator(sys.argv[1:], argv0=sys.argv[0], console=console).run())


if __name__ == "__main__":
    main()
