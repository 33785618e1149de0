"""CLI commands for tmauto.

This package contains all subcommand implementations.
"""

from tmauto.cli.commands import config, run, status

__all__ = ["config", "run", "status"]
