"""portcullis exception hierarchy.

Every error carries the process exit code the orchestrator reports when
the error ends startup.
"""

from __future__ import annotations

from portcullis.core.constants import ExitCode


class PortcullisError(Exception):
    """Base exception for all portcullis errors."""

    exit_code: ExitCode = ExitCode.ERROR


class ConfigError(PortcullisError):
    """Raised when options, the key-file or the remote config cannot be used."""

    exit_code = ExitCode.CONFIG_ERROR


class DuplicateOptionError(ConfigError):
    """Raised when an option name or short flag is registered twice."""


class ValidationError(PortcullisError):
    """Raised when resolved settings violate a semantic constraint."""

    exit_code = ExitCode.VALIDATION_ERROR


class ModeConflictError(ValidationError):
    """Raised when mutually exclusive operating modes are both enabled."""


class ResourceError(PortcullisError):
    """Raised when a file, descriptor limit or process cannot be acquired."""

    exit_code = ExitCode.RESOURCE_ERROR


class PluginError(PortcullisError):
    """Raised when a plugin cannot be found, loaded or initialised."""

    exit_code = ExitCode.PLUGIN_ERROR


class EngineError(PortcullisError):
    """Raised when the runtime's main loop reports a failure."""

    exit_code = ExitCode.RUNTIME_ERROR
