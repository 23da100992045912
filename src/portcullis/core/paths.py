"""Path resolution against the daemon's base directory."""

from __future__ import annotations

import os
from pathlib import Path

from portcullis.core.exceptions import ConfigError


def resolve_path(base_dir: str | Path, path: str | Path | None) -> str | None:
    """
    Return *path* made absolute against *base_dir*.

    ``None`` stays ``None`` and absolute paths are returned unchanged, so
    resolving an already resolved path is a no-op.
    """
    if path is None:
        return None
    path = os.fspath(path)
    if os.path.isabs(path):
        return path
    return os.path.join(os.fspath(base_dir), path)


def resolve_base_dir(given: str | None, argv0: str) -> str:
    """
    Return the base directory used for every relative path in the config.

    An explicit ``--basedir`` must be absolute. Without one the base is the
    installation prefix: the parent of the directory holding the executable,
    e.g. ``/opt/portcullis`` for ``/opt/portcullis/bin/portcullis``.
    """
    if given:
        if not os.path.isabs(given):
            raise ConfigError(f"--basedir option must be an absolute path, got {given!r}")
        return os.path.normpath(given)
    exe = Path(argv0 or ".").absolute()
    return str(exe.parent.parent)
