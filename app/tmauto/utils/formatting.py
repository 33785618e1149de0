"""Rich consoles and message helpers for tmauto output.

launchd runs have no terminal; output then goes to plain files, so colors
are only forced for interactive sessions.
"""

import sys
from datetime import datetime

from rich.console import Console

from tmauto.core.theme import get_theme


def _color_system(stream: object) -> str | None:
    """Force truecolor on a TTY so hex theme colors render exactly."""
    isatty = getattr(stream, "isatty", None)
    return "truecolor" if isatty is not None and isatty() else None


console = Console(theme=get_theme(), color_system=_color_system(sys.stdout))
err_console = Console(theme=get_theme(), stderr=True, color_system=_color_system(sys.stderr))


def format_epoch(epoch: int | None) -> str:
    """Format a Unix epoch as local time for display.

    Args:
        epoch: Seconds since the epoch, or None.

    Returns:
        "YYYY-MM-DD HH:MM:SS" in local time, or "-" when unknown.
    """
    if epoch is None:
        return "-"
    return datetime.fromtimestamp(epoch).strftime("%Y-%m-%d %H:%M:%S")


def format_mount(path: str | None) -> str:
    """Format a resolved mount path with mounted/unmounted styling."""
    if path:
        return f"[mounted]{path}[/]"
    return "[unmounted]not mounted[/]"


def print_info(message: str) -> None:
    """Print an info message."""
    console.print(f"[info]{message}[/]")


def print_warning(message: str) -> None:
    """Print a warning message."""
    err_console.print(f"[warning]Warning:[/] {message}")


def print_error(message: str) -> None:
    """Print an error message."""
    err_console.print(f"[error]Error:[/] {message}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[success]{message}[/]")
