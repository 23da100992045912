"""
Option registry — named, typed option entries writing into target storage.

One registry serves every pass over the command line. The first pass runs
with ``strict=False`` so that tokens belonging to plugin options (not yet
registered) survive as leftovers; after the plugins have registered their
options the leftovers are parsed again with ``strict=True`` and anything
still unrecognised is an error.

Usage::

    registry = OptionRegistry()
    registry.add("daemon", frontend, kind=OptionKind.FLAG, help="Start in daemon-mode")
    leftovers = registry.parse(argv, strict=False)
    registry.apply_mapping(keyfile_values, source="key-file")
    registry.parse(leftovers, strict=True)

Values from files only fill options that no earlier source has set, which is
what gives the command line priority over the key-file and the key-file
priority over the remote config.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from rich.table import Table

from portcullis.core.exceptions import ConfigError, DuplicateOptionError

logger = logging.getLogger(__name__)

MAIN_GROUP = "main"

_TRUE_WORDS = frozenset({"1", "true", "yes", "on"})
_FALSE_WORDS = frozenset({"0", "false", "no", "off"})


class OptionKind(str, Enum):
    FLAG = "flag"
    INT = "int"
    DOUBLE = "double"
    STRING = "string"
    STRING_LIST = "string-list"


@dataclass
class OptionDescriptor:
    """One registered option and the attribute it writes to."""

    name: str
    target: Any
    dest: str
    kind: OptionKind = OptionKind.STRING
    short: str = ""
    help: str = ""
    arg_description: str = ""
    group: str = MAIN_GROUP
    default: Any = None

    @property
    def takes_value(self) -> bool:
        return self.kind is not OptionKind.FLAG


class OptionRegistry:
    """Catalog of options, keyed by long name, with per-option "set" tracking."""

    def __init__(self) -> None:
        self._options: dict[str, OptionDescriptor] = {}
        self._short: dict[str, str] = {}
        self._set: set[str] = set()

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, descriptor: OptionDescriptor) -> OptionDescriptor:
        if descriptor.name in self._options:
            raise DuplicateOptionError(f"option --{descriptor.name} is already registered")
        if descriptor.short and descriptor.short in self._short:
            raise DuplicateOptionError(
                f"short flag -{descriptor.short} of --{descriptor.name} is already used by "
                f"--{self._short[descriptor.short]}"
            )
        descriptor.default = getattr(descriptor.target, descriptor.dest)
        self._options[descriptor.name] = descriptor
        if descriptor.short:
            self._short[descriptor.short] = descriptor.name
        return descriptor

    def add(
        self,
        name: str,
        target: Any,
        dest: str | None = None,
        kind: OptionKind = OptionKind.STRING,
        *,
        short: str = "",
        help: str = "",  # noqa: A002
        arg_description: str = "",
        group: str = MAIN_GROUP,
    ) -> OptionDescriptor:
        """Build and register a descriptor; *dest* defaults to the name in snake_case."""
        return self.register(
            OptionDescriptor(
                name=name,
                target=target,
                dest=dest or name.replace("-", "_"),
                kind=kind,
                short=short,
                help=help,
                arg_description=arg_description,
                group=group,
            )
        )

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, name: str) -> OptionDescriptor | None:
        """Return the descriptor for *name*, tolerating ``-``/``_`` spelling."""
        for candidate in (name, name.replace("_", "-"), name.replace("-", "_")):
            descriptor = self._options.get(candidate)
            if descriptor is not None:
                return descriptor
        return None

    def is_set(self, name: str) -> bool:
        descriptor = self.get(name)
        return descriptor is not None and descriptor.name in self._set

    def groups(self) -> list[str]:
        seen: dict[str, None] = {}
        for descriptor in self._options.values():
            seen.setdefault(descriptor.group, None)
        return list(seen)

    def descriptors(self, group: str | None = None) -> list[OptionDescriptor]:
        return [d for d in self._options.values() if group is None or d.group == group]

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.get(name) is not None

    def __len__(self) -> int:
        return len(self._options)

    def __iter__(self) -> Iterator[OptionDescriptor]:
        return iter(list(self._options.values()))

    def clear(self) -> None:
        self._options.clear()
        self._short.clear()
        self._set.clear()

    # ------------------------------------------------------------------
    # Command line
    # ------------------------------------------------------------------

    def parse(self, args: Sequence[str], strict: bool = False) -> list[str]:
        """
        Consume every recognised option in *args* into its target.

        Returns the tokens that were not consumed, in their original order.
        In strict mode an unrecognised option or a positional argument raises
        :class:`ConfigError` instead.
        """
        leftovers: list[str] = []
        lists_seen: set[str] = set()
        args = list(args)
        i = 0
        while i < len(args):
            token = args[i]
            if token == "--":
                if strict and i + 1 < len(args):
                    raise ConfigError(f"unknown option: {args[i + 1]}")
                leftovers.extend(args[i:])
                break

            descriptor, inline = self._match(token)
            if descriptor is None:
                if strict:
                    raise ConfigError(f"unknown option: {token}")
                leftovers.append(token)
                i += 1
                continue

            if descriptor.takes_value and inline is None:
                if i + 1 >= len(args):
                    raise ConfigError(f"missing value for --{descriptor.name}")
                value: Any = args[i + 1]
                i += 2
            else:
                value = True if inline is None else inline
                i += 1

            self._store(
                descriptor,
                value,
                source="command line",
                append=descriptor.name in lists_seen,
            )
            lists_seen.add(descriptor.name)
        return leftovers

    def _match(self, token: str) -> tuple[OptionDescriptor | None, str | None]:
        if token.startswith("--") and len(token) > 2:
            name, sep, value = token[2:].partition("=")
            return self.get(name), (value if sep else None)
        if token.startswith("-") and len(token) > 1:
            name = self._short.get(token[1])
            if name is None:
                return None, None
            return self._options[name], (token[2:] or None)
        return None, None

    # ------------------------------------------------------------------
    # Key-file / remote values
    # ------------------------------------------------------------------

    def apply_mapping(self, values: Mapping[str, Any], source: str) -> list[str]:
        """
        Apply *values* to options that are still unset.

        Returns the keys that match no registered option; they may belong
        to a plugin that registers its options later.
        """
        unknown: list[str] = []
        for key, raw in values.items():
            descriptor = self.get(key)
            if descriptor is None:
                unknown.append(key)
                continue
            if descriptor.name in self._set:
                logger.debug("--%s already set, ignoring value from %s", descriptor.name, source)
                continue
            self._store(descriptor, raw, source=source)
        return unknown

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    def _store(
        self, descriptor: OptionDescriptor, raw: Any, source: str, append: bool = False
    ) -> None:
        value = _convert(descriptor, raw, source)
        if append and descriptor.kind is OptionKind.STRING_LIST:
            value = list(getattr(descriptor.target, descriptor.dest) or []) + value
        setattr(descriptor.target, descriptor.dest, value)
        self._set.add(descriptor.name)

    # ------------------------------------------------------------------
    # Help
    # ------------------------------------------------------------------

    def format_help(self, title: str = "Options") -> Table:
        """Render every option, one table section per visibility group."""
        table = Table(title=title, show_lines=False)
        table.add_column("Option", style="cyan", no_wrap=True)
        table.add_column("Value")
        table.add_column("Default")
        table.add_column("Description")
        for index, group in enumerate(self.groups()):
            if index:
                table.add_section()
            table.add_row(f"[bold]{group}[/bold]", "", "", "")
            for d in self.descriptors(group):
                flag = f"--{d.name}" + (f", -{d.short}" if d.short else "")
                value = d.arg_description or ("" if d.kind is OptionKind.FLAG else f"<{d.kind.value}>")
                default = "" if d.default in (None, False, [], "") else repr(d.default)
                table.add_row(flag, value, default, d.help)
        return table


def _convert(descriptor: OptionDescriptor, raw: Any, source: str) -> Any:
    kind = descriptor.kind
    where = f"--{descriptor.name} ({source})"

    if kind is OptionKind.FLAG:
        if isinstance(raw, bool):
            return raw
        if isinstance(raw, int) and raw in (0, 1):
            return bool(raw)
        if isinstance(raw, str):
            word = raw.strip().lower()
            if word in _TRUE_WORDS:
                return True
            if word in _FALSE_WORDS:
                return False
        raise ConfigError(f"{where}: expected a boolean, got {raw!r}")

    if kind is OptionKind.INT:
        if isinstance(raw, int) and not isinstance(raw, bool):
            return raw
        if isinstance(raw, str):
            for base in (10, 0):
                try:
                    return int(raw.strip(), base)
                except ValueError:
                    continue
        raise ConfigError(f"{where}: expected an integer, got {raw!r}")

    if kind is OptionKind.DOUBLE:
        if isinstance(raw, (int, float)) and not isinstance(raw, bool):
            return float(raw)
        if isinstance(raw, str):
            try:
                return float(raw.strip())
            except ValueError:
                pass
        raise ConfigError(f"{where}: expected a number, got {raw!r}")

    if kind is OptionKind.STRING_LIST:
        if isinstance(raw, str):
            return [item.strip() for item in raw.split(",") if item.strip()]
        if isinstance(raw, (list, tuple)) and all(isinstance(i, (str, int)) for i in raw):
            return [str(item).strip() for item in raw if str(item).strip()]
        raise ConfigError(f"{where}: expected a list of strings, got {raw!r}")

    if isinstance(raw, (str, int, float)) and not isinstance(raw, bool):
        return str(raw)
    raise ConfigError(f"{where}: expected a string, got {raw!r}")
