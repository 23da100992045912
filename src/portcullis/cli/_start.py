"""portcullis start — run the daemon."""

from __future__ import annotations

import sys

from rich.console import Console

from portcullis.core.orchestrator import Orchestrator


def cmd_start(args: list[str], console: Console) -> int:
    return Orchestrator(args, argv0=sys.argv[0], console=console).run()
