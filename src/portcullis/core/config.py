"""
Configuration sources: TOML key-file, remote config document, config source
objects handed to plugins.

Key-file layout::

    [portcullis]
    plugins = ["proxy"]
    default-username = "app"
    default-pool-size = 100
    log-level = "info"

A remote config document (``--remote-conf-url``) is YAML or JSON. Option
values are read from its ``portcullis`` mapping when present, otherwise from
the top level; other top-level entries are named objects plugins can read
through :class:`RemoteConfigSource`.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit
from urllib.request import url2pathname

import httpx
import yaml

from portcullis.core.constants import REMOTE_FETCH_TIMEOUT_SECONDS, SERVICE_SECTION
from portcullis.core.exceptions import ConfigError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Key-file
# ---------------------------------------------------------------------------


def load_keyfile(path: str | Path) -> dict[str, Any]:
    """
    Load the ``[portcullis]`` section of a TOML key-file.

    Raises:
        ConfigError: if the file is missing, unreadable, not valid TOML, or
            has no service section.
    """
    import tomllib

    cfg_path = Path(path).expanduser()
    if not cfg_path.exists():
        raise ConfigError(f"loading config from '{cfg_path}' failed: file not found")

    try:
        with open(cfg_path, "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as exc:
        raise ConfigError(f"loading config from '{cfg_path}' failed: {exc}") from exc

    section = data.get(SERVICE_SECTION)
    if section is None:
        raise ConfigError(f"loading config from '{cfg_path}' failed: no [{SERVICE_SECTION}] section")
    if not isinstance(section, dict):
        raise ConfigError(f"loading config from '{cfg_path}' failed: [{SERVICE_SECTION}] is not a table")
    return section


# ---------------------------------------------------------------------------
# Remote config
# ---------------------------------------------------------------------------


def fetch_remote_config(
    url: str,
    client: httpx.Client | None = None,
    timeout: float = REMOTE_FETCH_TIMEOUT_SECONDS,
) -> dict[str, Any]:
    """
    Fetch and parse the remote config document at *url*.

    ``http``/``https`` URLs are fetched with httpx; ``file`` URLs are read
    directly. Any failure is a :class:`ConfigError`.
    """
    scheme = urlsplit(url).scheme.lower()
    if scheme in ("http", "https"):
        text = _fetch_http(url, client, timeout)
    elif scheme == "file":
        text = _read_file_url(url)
    elif not scheme:
        raise ConfigError(f"remote config url {url!r} has no scheme (expected scheme://...)")
    else:
        raise ConfigError(f"remote config url {url!r}: unsupported scheme {scheme!r}")

    return parse_document(text, source=url)


def _fetch_http(url: str, client: httpx.Client | None, timeout: float) -> str:
    own_client = client is None
    http = client or httpx.Client(timeout=timeout, follow_redirects=True)
    try:
        response = http.get(url)
        response.raise_for_status()
        return response.text
    except httpx.HTTPError as exc:
        raise ConfigError(f"remote config init error: fetching {url} failed: {exc}") from exc
    finally:
        if own_client:
            http.close()


def _read_file_url(url: str) -> str:
    path = Path(url2pathname(urlsplit(url).path))
    try:
        return path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"remote config init error: cannot read {path}: {exc}") from exc


def parse_document(text: str, source: str = "<string>") -> dict[str, Any]:
    """Parse a YAML/JSON config document that must be a mapping."""
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"remote_config parse error in {source}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigError(
            f"remote_config parse error in {source}: expected a mapping, got {type(data).__name__}"
        )
    return data


def document_options(document: dict[str, Any]) -> dict[str, Any]:
    """Return the option values of a remote document."""
    section = document.get(SERVICE_SECTION)
    if isinstance(section, dict):
        return section
    return document


# ---------------------------------------------------------------------------
# Config sources for plugins
# ---------------------------------------------------------------------------


class ConfigSource(ABC):
    """Named config objects (users, sharding rules, ...) a plugin may read."""

    kind: str = ""

    @abstractmethod
    def read(self, name: str) -> Any | None:
        """Return the object called *name*, or ``None`` if there is none."""
        ...


class LocalConfigSource(ConfigSource):
    """Reads ``<conf_dir>/<name>.json``."""

    kind = "local"

    def __init__(self, conf_dir: str | Path) -> None:
        self.conf_dir = Path(conf_dir)

    def read(self, name: str) -> Any | None:
        path = self.conf_dir / f"{name}.json"
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigError(f"cannot load {name!r} from {path}: {exc}") from exc


class RemoteConfigSource(ConfigSource):
    """Serves named objects from an already fetched remote document."""

    kind = "remote"

    def __init__(self, url: str, document: dict[str, Any]) -> None:
        self.url = url
        self._document = document

    def read(self, name: str) -> Any | None:
        return self._document.get(name)
