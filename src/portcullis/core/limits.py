"""Process resource limits."""

from __future__ import annotations

import logging
import resource

from portcullis.core.exceptions import ResourceError

logger = logging.getLogger(__name__)


def get_fd_limit() -> int:
    soft, _ = resource.getrlimit(resource.RLIMIT_NOFILE)
    return soft


def set_fd_limit(limit: int) -> None:
    """Raise the open-files limit (``ulimit -n``) to *limit*."""
    soft, hard = resource.getrlimit(resource.RLIMIT_NOFILE)
    new_hard = hard if hard == resource.RLIM_INFINITY or hard >= limit else limit
    try:
        resource.setrlimit(resource.RLIMIT_NOFILE, (limit, new_hard))
    except (OSError, ValueError) as exc:
        raise ResourceError(f"setting fdlimit = {limit} failed: {exc}") from exc
    logger.debug("max open file-descriptors = %d (was %d)", get_fd_limit(), soft)
