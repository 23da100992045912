"""
Parameter derivation and validation.

:func:`derive` turns the raw :class:`~portcullis.core.frontend.Frontend`
values into the immutable :class:`ResolvedConfig` the runtime consumes.
Values that can be corrected (recover threshold, cache timeout, query time,
packet size, worker id) are clamped; values that cannot are rejected with a
:class:`~portcullis.core.exceptions.ValidationError`.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from portcullis.core.constants import (
    COMPRESSED_OUTPUT_FACTOR,
    MAX_ALLOWED_PACKET_CEIL,
    MAX_ALLOWED_PACKET_FLOOR,
    MAX_QUERY_TIME,
    PROXY_PLUGIN,
    SHARDING_PLUGIN,
    WORKER_ID_MASK,
)
from portcullis.core.exceptions import ModeConflictError, ValidationError
from portcullis.core.frontend import Frontend
from portcullis.core.paths import resolve_path

logger = logging.getLogger(__name__)

# ResolvedConfig field -> option that feeds it, for error messages
_OPTION_NAMES = {
    "min_idle_connections": "default-pool-size",
    "max_idle_connections": "max-pool-size",
    "max_resp_size": "max-resp-size",
    "merged_output_size": "merged-output-size",
    "max_header_size": "max-header-size",
    "slave_delay_down": "slave-delay-down",
    "default_username": "default-username",
}


class ResolvedConfig(BaseModel):
    """Fully merged and validated settings. Frozen once built."""

    model_config = ConfigDict(frozen=True)

    # paths
    base_dir: str
    conf_dir: str
    plugin_dir: str
    log_file: str | None = None
    pid_file: str | None = None
    xa_log_file: str

    # process
    plugins: tuple[str, ...]
    user: str | None = None
    max_open_files: int = Field(default=0, ge=0)
    sharding_mode: bool = False

    # backends
    default_username: str = Field(min_length=1)
    default_charset: str | None = None
    default_db: str | None = None
    min_idle_connections: int = Field(gt=0)
    max_idle_connections: int = Field(gt=0)
    max_resp_size: int = Field(gt=0)
    merged_output_size: int = Field(gt=0)
    compressed_merged_output_size: int = Field(gt=0)
    max_header_size: int = Field(gt=0)
    max_allowed_packet: int = Field(ge=MAX_ALLOWED_PACKET_FLOOR, le=MAX_ALLOWED_PACKET_CEIL)
    worker_id: int = Field(default=0, ge=0, le=WORKER_ID_MASK)

    # features
    client_found_rows: bool = False
    xa_log_detailed: bool = False
    reset_connection_enabled: bool = False
    query_cache_enabled: bool = False
    tcp_stream_enabled: bool = False
    disable_threads: bool = False
    back_compressed: bool = False
    client_compress_support: bool = False
    reduce_connections: bool = False
    disable_dns_cache: bool = False
    master_preferred: bool = False

    # replicas and queries
    check_slave_delay: bool = False
    slave_delay_down: float = Field(gt=0)
    slave_delay_recover: float
    default_query_cache_timeout: int = Field(ge=1)
    long_query_time: int = Field(le=MAX_QUERY_TIME)

    warnings: tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# Checks that run before derivation
# ---------------------------------------------------------------------------


def check_modes(plugin_names: Sequence[str]) -> bool:
    """
    Reject the sharding and proxy plugins being loaded together.

    Returns whether sharding mode is on.
    """
    sharding_mode = SHARDING_PLUGIN in plugin_names
    proxy_mode = PROXY_PLUGIN in plugin_names
    if sharding_mode and proxy_mode:
        raise ModeConflictError(f"{SHARDING_PLUGIN} & {PROXY_PLUGIN} are mutually exclusive")
    return sharding_mode


def check_defaults(raw: Frontend) -> None:
    if not raw.default_username:
        raise ValidationError("proxy needs default username (--default-username)")


# ---------------------------------------------------------------------------
# Derivation
# ---------------------------------------------------------------------------


def derive(raw: Frontend, plugins: Sequence[str] | None = None) -> ResolvedConfig:
    """
    Compute derived settings from *raw* and validate the result.

    *plugins* are the names of the loaded plugins, ``raw.plugins`` if omitted.
    """
    plugin_names = list(raw.plugins if plugins is None else plugins)
    check_defaults(raw)
    sharding_mode = check_modes(plugin_names)
    warnings: list[str] = []

    min_idle = raw.default_pool_size
    if raw.max_pool_size >= min_idle:
        max_idle = raw.max_pool_size
    else:
        max_idle = min_idle * 2
    logger.info("set default pool size:%d", min_idle)
    logger.info("set max pool size:%d", max_idle)

    down = raw.slave_delay_down
    recover = raw.slave_delay_recover
    if recover is not None and recover > 0:
        if recover > down:
            recover = down
            for message in (
                "`slave-delay-recover` should be lower than `slave-delay-down`.",
                f"Set slave-delay-recover={down:.3f}",
            ):
                logger.warning(message)
                warnings.append(message)
    else:
        recover = down / 2

    worker_id = raw.worker_id & WORKER_ID_MASK if raw.worker_id > 0 else 0
    base_dir = raw.basedir or ""

    values = {
        "base_dir": base_dir,
        "conf_dir": raw.conf_dir,
        "plugin_dir": raw.plugin_dir,
        "log_file": raw.log_file,
        "pid_file": raw.pid_file,
        "xa_log_file": resolve_path(base_dir, raw.log_xa_file),
        "plugins": tuple(plugin_names),
        "user": raw.user,
        "max_open_files": raw.max_open_files,
        "sharding_mode": sharding_mode,
        "default_username": raw.default_username,
        "default_charset": raw.default_charset,
        "default_db": raw.default_db,
        "min_idle_connections": min_idle,
        "max_idle_connections": max_idle,
        "max_resp_size": raw.max_resp_size,
        "merged_output_size": raw.merged_output_size,
        "compressed_merged_output_size": raw.merged_output_size * COMPRESSED_OUTPUT_FACTOR,
        "max_header_size": raw.max_header_size,
        "max_allowed_packet": min(
            max(raw.max_allowed_packet, MAX_ALLOWED_PACKET_FLOOR), MAX_ALLOWED_PACKET_CEIL
        ),
        "worker_id": worker_id,
        "client_found_rows": raw.enable_client_found_rows,
        "xa_log_detailed": raw.log_xa_in_detail,
        "reset_connection_enabled": raw.enable_reset_connection,
        "query_cache_enabled": raw.enable_query_cache,
        "tcp_stream_enabled": raw.enable_tcp_stream,
        "disable_threads": raw.disable_threads,
        "back_compressed": raw.enable_back_compress,
        "client_compress_support": raw.enable_client_compress,
        "reduce_connections": raw.reduce_connections,
        "disable_dns_cache": raw.disable_dns_cache,
        "master_preferred": raw.master_preferred,
        "check_slave_delay": raw.check_slave_delay,
        "slave_delay_down": down,
        "slave_delay_recover": recover,
        "default_query_cache_timeout": max(raw.default_query_cache_timeout, 1),
        "long_query_time": min(raw.long_query_time, MAX_QUERY_TIME),
        "warnings": tuple(warnings),
    }

    try:
        resolved = ResolvedConfig.model_validate(values)
    except PydanticValidationError as exc:
        lines = ["invalid settings:"]
        for err in exc.errors():
            field = str(err["loc"][0]) if err["loc"] else ""
            option = _OPTION_NAMES.get(field, field.replace("_", "-")) or "(root)"
            lines.append(f"  --{option}: {err['msg']}")
        raise ValidationError("\n".join(lines)) from exc

    logger.info("set merged output size:%d", resolved.merged_output_size)
    logger.info("set client_found_rows %s", "true" if resolved.client_found_rows else "false")
    if resolved.tcp_stream_enabled:
        logger.info("tcp stream enabled")
    return resolved
