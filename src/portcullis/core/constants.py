"""portcullis constants: exit codes, defaults, limits and filesystem layout."""

from __future__ import annotations

from enum import IntEnum

# ---------------------------------------------------------------------------
# Exit codes
# ---------------------------------------------------------------------------


class ExitCode(IntEnum):
    SUCCESS = 0
    ERROR = 1
    CONFIG_ERROR = 2
    VALIDATION_ERROR = 3
    RESOURCE_ERROR = 4
    PLUGIN_ERROR = 5
    RUNTIME_ERROR = 6


# ---------------------------------------------------------------------------
# Key-file / remote config
# ---------------------------------------------------------------------------

SERVICE_SECTION = "portcullis"
PLUGIN_ENTRY_POINT_GROUP = "portcullis.plugins"
REMOTE_FETCH_TIMEOUT_SECONDS = 10.0

# ---------------------------------------------------------------------------
# Filesystem layout (relative entries are resolved against --basedir)
# ---------------------------------------------------------------------------

DEFAULT_CONF_DIR = "conf"
DEFAULT_PLUGIN_DIR = "lib/portcullis/plugins"
DEFAULT_XA_LOG_FILE = "logs/xa.log"
SLOW_QUERY_LOG_SUFFIX = ".slowquery.log"

# ---------------------------------------------------------------------------
# Plugins
# ---------------------------------------------------------------------------

DEFAULT_PLUGIN = "proxy"
SHARDING_PLUGIN = "shard"
PROXY_PLUGIN = "proxy"

# ---------------------------------------------------------------------------
# Connection pool and buffer defaults
# ---------------------------------------------------------------------------

DEFAULT_POOL_SIZE = 100
DEFAULT_MAX_RESP_SIZE = 10 * 1024 * 1024  # 10 MiB
DEFAULT_MERGED_OUTPUT_SIZE = 8192
DEFAULT_MAX_HEADER_SIZE = 65536
COMPRESSED_OUTPUT_FACTOR = 8

# ---------------------------------------------------------------------------
# Thresholds and limits
# ---------------------------------------------------------------------------

DEFAULT_SLAVE_DELAY_DOWN_SECONDS = 60.0
DEFAULT_QUERY_CACHE_TIMEOUT = 100
MAX_QUERY_TIME = 60 * 60 * 1000  # ms
MAX_ALLOWED_PACKET_FLOOR = 1024
MAX_ALLOWED_PACKET_CEIL = 1024 * 1024 * 1024
MAX_ALLOWED_PACKET_DEFAULT = 32 * 1024 * 1024
WORKER_ID_MASK = 0x3F

# ---------------------------------------------------------------------------
# Background monitor
# ---------------------------------------------------------------------------

MONITOR_INTERVAL_SECONDS = 1.0
MONITOR_JOIN_TIMEOUT_SECONDS = 5.0
