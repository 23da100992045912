"""portcullis config show / validate — resolve without starting anything."""

from __future__ import annotations

import json
import sys
from typing import Any

import click
import tomli_w
from rich.console import Console
from rich.table import Table

from portcullis.core.constants import SERVICE_SECTION
from portcullis.core.orchestrator import Orchestrator
from portcullis.core.params import ResolvedConfig


def _resolve(args: list[str], console: Console) -> tuple[int, ResolvedConfig | None]:
    orchestrator = Orchestrator(args, argv0=sys.argv[0], check_only=True, console=console)
    code = orchestrator.run()
    return code, orchestrator.config


def cmd_config_show(args: list[str], fmt: str | None, console: Console) -> int:
    code, resolved = _resolve(args, console)
    if code or resolved is None:
        return code

    data = resolved.model_dump(mode="json")
    if fmt == "json":
        click.echo(json.dumps(data, indent=2))
    elif fmt == "toml":
        # TOML has no null
        values = {k: v for k, v in data.items() if v is not None}
        click.echo(tomli_w.dumps({SERVICE_SECTION: values}), nl=False)
    else:
        table = Table(title="Resolved configuration")
        table.add_column("Setting", style="cyan", no_wrap=True)
        table.add_column("Value")
        for key, value in data.items():
            table.add_row(key, _display(value))
        console.print(table)
    return code


def cmd_config_validate(args: list[str], console: Console) -> int:
    code, resolved = _resolve(args, console)
    if code or resolved is None:
        return code
    for warning in resolved.warnings:
        console.print(f"[yellow]warning:[/yellow] {warning}")
    plugins = ", ".join(resolved.plugins)
    console.print(f"[green]configuration is valid[/green] (plugins: {plugins})")
    return code


def _display(value: Any) -> str:
    if value is None:
        return "[dim]unset[/dim]"
    if isinstance(value, list):
        return ", ".join(str(v) for v in value) or "[dim]none[/dim]"
    return str(value)
