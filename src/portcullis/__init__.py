"""
portcullis — bootstrap and control plane for a database proxy daemon.

portcullis turns command-line options, an optional TOML key-file and an
optional remote configuration document into one validated runtime
configuration, starts the proxy runtime through an ordered sequence of
stages, optionally supervises restarts of a crashed worker, and tears
everything down in a fixed order on every exit path.

Package layout (src/portcullis/):
  core/       — options, resolver, paths, params, crash, supervisor, orchestrator
  plugins/    — plugin contract, loader, built-in proxy/shard plugins
  runtime/    — core runtime (main loop), background monitor, transaction log
  cli/        — Click CLI entry point
"""

__version__ = "0.4.0"
__all__ = ["__version__"]
