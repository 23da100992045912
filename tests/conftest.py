"""Shared fixtures."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator

import pytest

from portcullis.core.frontend import Frontend
from portcullis.core.params import ResolvedConfig, derive


@pytest.fixture(autouse=True)
def _reset_portcullis_loggers() -> Iterator[None]:
    """Leave no handler or level behind on the package loggers."""
    yield
    for name in ("portcullis", "portcullis.slowquery"):
        logger = logging.getLogger(name)
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()
        logger.setLevel(logging.NOTSET)
        logger.propagate = True


@pytest.fixture
def make_config() -> Callable[..., ResolvedConfig]:
    def _make(**overrides: object) -> ResolvedConfig:
        values: dict[str, object] = {"default_username": "app", "basedir": "/opt/portcullis"}
        values.update(overrides)
        return derive(Frontend(**values))  # type: ignore[arg-type]

    return _make
