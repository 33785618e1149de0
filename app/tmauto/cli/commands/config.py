"""Config command implementation.

Shows the effective configuration and creates a default config file.
"""

from pathlib import Path
from typing import Annotated

import typer

from tmauto.cli.display import create_config_table
from tmauto.core.config import AutoBackupConfig, ConfigError, load_config, save_config
from tmauto.core.paths import get_config_path
from tmauto.utils.formatting import (
    console,
    print_error,
    print_info,
    print_success,
    print_warning,
)

app = typer.Typer(
    help="Show or create the configuration file.",
    no_args_is_help=True,
)

ConfigPathOption = Annotated[
    Path | None,
    typer.Option(
        "--config",
        "-c",
        help="Path to config file (default: ~/.config/tmauto/config.toml).",
    ),
]


@app.command()
def show(config_path: ConfigPathOption = None) -> None:
    """Show the effective configuration and any corrections applied."""
    path = config_path or get_config_path()
    try:
        loaded = load_config(path)
    except ConfigError as e:
        print_error(str(e))
        raise typer.Exit(code=1) from e

    if path.exists():
        print_info(f"Config file: {path}")
    else:
        print_info(f"No config file at {path}; using defaults.")

    console.print(create_config_table(loaded.config))
    for warning in loaded.warnings:
        print_warning(warning)


@app.command()
def init(
    config_path: ConfigPathOption = None,
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Overwrite an existing config file."),
    ] = False,
) -> None:
    """Write a config file containing every setting at its default."""
    path = config_path or get_config_path()
    if path.exists() and not force:
        print_error(f"Config already exists: {path}")
        print_info("Use --force to overwrite.")
        raise typer.Exit(code=1)

    try:
        saved = save_config(AutoBackupConfig(), path, include_defaults=True)
    except (ConfigError, OSError) as e:
        print_error(str(e))
        raise typer.Exit(code=1) from e

    print_success(f"Config written to {saved}")
