"""Main CLI application entry point.

Defines the Typer application and global options.
"""

from typing import Annotated

import typer

from tmauto import __version__
from tmauto.cli.commands import config, run, status

# Create main Typer app
app = typer.Typer(
    name="tmauto",
    help="Automatic Time Machine backups when the backup disk is attached.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"tmauto version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = None,
) -> None:
    """tmauto - Back up to Time Machine when the disk shows up, then eject it.

    Meant to be started by launchd on volume mounts, at login and on a timer.
    Every invocation is safe to repeat: overlapping runs and duplicate mount
    events are collapsed.
    """


# Register commands
app.add_typer(run.app, name="run")
app.add_typer(status.app, name="status")
app.add_typer(config.app, name="config")


if __name__ == "__main__":
    app()
