"""Run command implementation.

Performs one orchestrated auto-backup pass. This is what launchd invokes.
"""

from pathlib import Path
from typing import Annotated

import typer

from tmauto.cli.display import print_run_summary
from tmauto.core.config import ConfigError, load_config, log_config_warnings
from tmauto.core.orchestrator import create_orchestrator
from tmauto.core.paths import ensure_dirs, get_log_path
from tmauto.utils.formatting import print_error
from tmauto.utils.logs import configure_logging

app = typer.Typer(
    help="Run one auto-backup pass.",
    invoke_without_command=True,
)


@app.callback(invoke_without_command=True)
def run_backup(
    config_path: Annotated[
        Path | None,
        typer.Option(
            "--config",
            "-c",
            help="Path to config file (default: ~/.config/tmauto/config.toml).",
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Also log to the terminal.",
        ),
    ] = False,
) -> None:
    """Back up if due, then eject the backup disk.

    Exits 0 when the run ended cleanly (including skips and deferrals) and 1
    when it needs attention.
    """
    try:
        ensure_dirs()
    except RuntimeError as e:
        print_error(str(e))
        raise typer.Exit(code=1) from e

    try:
        loaded = load_config(config_path)
    except ConfigError as e:
        print_error(str(e))
        raise typer.Exit(code=1) from e

    config = loaded.config
    configure_logging(
        get_log_path(),
        verbose=verbose,
        max_bytes=config.max_log_bytes,
        backup_count=config.max_log_files,
    )
    log_config_warnings(loaded)

    report = create_orchestrator(config).run()
    print_run_summary(report)
    raise typer.Exit(code=report.exit_code)
