"""
Frontend settings — raw option values before derivation.

:class:`Frontend` holds every core option with its compiled-in default.
Which fields were actually supplied (and by which source) is tracked by
the :class:`~portcullis.core.options.OptionRegistry` they are registered
with, not by the dataclass.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from portcullis.core.constants import (
    DEFAULT_CONF_DIR,
    DEFAULT_MAX_HEADER_SIZE,
    DEFAULT_MAX_RESP_SIZE,
    DEFAULT_MERGED_OUTPUT_SIZE,
    DEFAULT_PLUGIN,
    DEFAULT_PLUGIN_DIR,
    DEFAULT_POOL_SIZE,
    DEFAULT_QUERY_CACHE_TIMEOUT,
    DEFAULT_SLAVE_DELAY_DOWN_SECONDS,
    DEFAULT_XA_LOG_FILE,
    MAX_ALLOWED_PACKET_DEFAULT,
    MAX_QUERY_TIME,
)
from portcullis.core.options import OptionKind, OptionRegistry

FLAG = OptionKind.FLAG
INT = OptionKind.INT
DOUBLE = OptionKind.DOUBLE
STRING = OptionKind.STRING
STRING_LIST = OptionKind.STRING_LIST


@dataclass
class Frontend:
    # base options
    defaults_file: str | None = None
    print_version: bool = False
    show_help: bool = False

    # process
    verbose_shutdown: bool = False
    daemon: bool = False
    keepalive: bool = False
    user: str | None = None
    max_open_files: int = 0
    log_backtrace_on_crash: bool = False

    # paths
    basedir: str | None = None
    conf_dir: str = DEFAULT_CONF_DIR
    pid_file: str | None = None
    plugin_dir: str = DEFAULT_PLUGIN_DIR
    plugins: list[str] = field(default_factory=lambda: [DEFAULT_PLUGIN])
    remote_conf_url: str | None = None

    # logging
    log_level: str | None = None
    log_file: str | None = None
    log_xa_file: str = DEFAULT_XA_LOG_FILE
    log_xa_in_detail: bool = False

    # backends
    default_charset: str | None = None
    default_username: str | None = None
    default_db: str | None = None
    default_pool_size: int = DEFAULT_POOL_SIZE
    max_pool_size: int = 0
    max_resp_size: int = DEFAULT_MAX_RESP_SIZE
    merged_output_size: int = DEFAULT_MERGED_OUTPUT_SIZE
    max_header_size: int = DEFAULT_MAX_HEADER_SIZE
    max_allowed_packet: int = MAX_ALLOWED_PACKET_DEFAULT
    worker_id: int = 0

    # features
    disable_threads: bool = False
    enable_back_compress: bool = False
    enable_client_compress: bool = False
    enable_client_found_rows: bool = False
    reduce_connections: bool = False
    enable_reset_connection: bool = False
    enable_query_cache: bool = False
    enable_tcp_stream: bool = False
    disable_dns_cache: bool = False
    master_preferred: bool = False

    # replicas and queries
    check_slave_delay: bool = False
    slave_delay_down: float = DEFAULT_SLAVE_DELAY_DOWN_SECONDS
    slave_delay_recover: float | None = None
    default_query_cache_timeout: int = DEFAULT_QUERY_CACHE_TIMEOUT
    long_query_time: int = MAX_QUERY_TIME


def register_base_options(registry: OptionRegistry, frontend: Frontend) -> None:
    """Options needed before anything else is known."""
    registry.add(
        "defaults-file", frontend, short="c",
        help="configuration file", arg_description="<file>",
    )
    registry.add(
        "version", frontend, "print_version", FLAG, short="V",
        help="Show version",
    )
    registry.add("help", frontend, "show_help", FLAG, short="h", help="Show help options")


def register_core_options(registry: OptionRegistry, frontend: Frontend) -> None:
    """Options that may appear on the command line, in the key-file or remotely."""
    add = registry.add
    add("verbose-shutdown", frontend, kind=FLAG,
        help="Always log the exit code when shutting down")
    add("daemon", frontend, kind=FLAG, help="Start in daemon-mode")
    add("user", frontend, help="Run portcullis as user", arg_description="<user>")
    add("basedir", frontend,
        help="Base directory to prepend to relative paths in the config",
        arg_description="<absolute path>")
    add("conf-dir", frontend, help="Configuration directory", arg_description="<path>")
    add("pid-file", frontend, help="PID file in case we are started as daemon",
        arg_description="<file>")
    add("plugin-dir", frontend, help="Path to the plugins", arg_description="<path>")
    add("plugins", frontend, kind=STRING_LIST, help="Plugins to load", arg_description="<name>")
    add("log-level", frontend, help="Log all messages of level ... or higher",
        arg_description="(error|warning|info|message|debug)")
    add("log-file", frontend, help="Log all messages in a file", arg_description="<file>")
    add("log-xa-file", frontend, help="Log all xa messages in a file", arg_description="<file>")
    add("log-backtrace-on-crash", frontend, kind=FLAG,
        help="Log a backtrace when the process crashes")
    add("keepalive", frontend, kind=FLAG, help="Try to restart the proxy if it crashed")
    add("max-open-files", frontend, kind=INT, help="Maximum number of open files (ulimit -n)")
    add("default-charset", frontend, help="Set the default character set for backends",
        arg_description="<string>")
    add("default-username", frontend, help="Set the default username for visiting backends",
        arg_description="<string>")
    add("default-db", frontend, help="Set the default db for visiting backends",
        arg_description="<string>")
    add("default-pool-size", frontend, kind=INT,
        help="Set the default pool size for visiting backends", arg_description="<integer>")
    add("max-pool-size", frontend, kind=INT,
        help="Set the max pool size for visiting backends", arg_description="<integer>")
    add("max-resp-size", frontend, kind=INT,
        help="Set the max response size for one backend", arg_description="<integer>")
    add("merged-output-size", frontend, kind=INT,
        help="Set the merged output size for tcp streaming", arg_description="<integer>")
    add("max-header-size", frontend, kind=INT,
        help="Set the max header size for tcp streaming", arg_description="<integer>")
    add("worker_id", frontend, kind=INT,
        help="Set the worker id, between 1 and 63", arg_description="<integer>")
    add("disable-threads", frontend, kind=FLAG, help="Disable all threads creation")
    add("enable-back-compress", frontend, kind=FLAG,
        help="Enable compression for backend interactions")
    add("enable-client-compress", frontend, kind=FLAG,
        help="Enable compression for client interactions")
    add("check-slave-delay", frontend, kind=FLAG, help="Check ro backends with heartbeat")
    add("slave-delay-down", frontend, kind=DOUBLE,
        help="Slave will be set down after reaching this delay in seconds",
        arg_description="<double>")
    add("slave-delay-recover", frontend, kind=DOUBLE,
        help="Slave will recover after dropping below this delay in seconds",
        arg_description="<double>")
    add("default-query-cache-timeout", frontend, kind=INT,
        help="Query cache entry lifetime in ms", arg_description="<integer>")
    add("long-query-time", frontend, kind=INT, help="Long query time in ms",
        arg_description="<integer>")
    add("enable-client-found-rows", frontend, kind=FLAG, help="Set client found rows flag")
    add("reduce-connections", frontend, kind=FLAG,
        help="Reduce connections when idle connection num is too high")
    add("enable-reset-connection", frontend, kind=FLAG,
        help="Restart connections when feature changed")
    add("enable-query-cache", frontend, kind=FLAG, help="Cache read-only query results")
    add("enable-tcp-stream", frontend, kind=FLAG, help="Stream results to clients over tcp")
    add("log-xa-in-detail", frontend, kind=FLAG, help="Log xa in detail")
    add("disable-dns-cache", frontend, kind=FLAG,
        help="Every new connection to backends will resolve domain name")
    add("master-preferred", frontend, kind=FLAG, help="Access to master preferentially")
    add("max-allowed-packet", frontend, kind=INT, help="Max allowed packet as in mysql",
        arg_description="<int>")
    add("remote-conf-url", frontend, help="Remote config url, scheme://...",
        arg_description="<string>")
