"""CLI package for tmauto.

This package contains the Typer application and all subcommands.
"""

from tmauto.cli.main import app

__all__ = ["app"]
