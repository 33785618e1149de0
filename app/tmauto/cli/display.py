"""Shared Rich display functions for run reports, status and config.

Provides table builders and summary printers used by the CLI commands.
"""

from typing import Any

from rich.table import Table

from tmauto.core.config import AutoBackupConfig
from tmauto.core.lock import LockRecord
from tmauto.core.suppressor import SuppressionState
from tmauto.models.destination import Destination
from tmauto.models.outcome import RunOutcome, RunReport
from tmauto.utils.formatting import (
    format_epoch,
    format_mount,
    print_error,
    print_info,
    print_success,
)

# Outcomes worth a green summary line; everything else clean is plain info.
_SUCCESS_OUTCOMES = frozenset({RunOutcome.EJECTED, RunOutcome.LEFT_MOUNTED})


def print_run_summary(report: RunReport) -> None:
    """Print a one-line summary of a finished run."""
    outcome = report.outcome
    if outcome is None:
        print_error("Run ended without an outcome")
        return

    parts = [f"Run finished: {outcome.label}"]
    if report.destination_id:
        parts.append(f"destination {report.destination_id}")
    if report.mount_path:
        parts.append(f"at {report.mount_path}")
    if report.backup_performed:
        parts.append("backup attempted")
    message = ", ".join(parts)

    if outcome.needs_attention:
        print_error(message)
    elif outcome in _SUCCESS_OUTCOMES:
        print_success(message)
    else:
        print_info(message)


def create_destinations_table(rows: list[tuple[Destination, str | None]]) -> Table:
    """Create a Rich table of Time Machine destinations.

    Args:
        rows: Pairs of destination record and resolved mount path (or None).

    Returns:
        Rich Table with one row per destination.
    """
    table = Table(
        title="Time Machine Destinations",
        show_header=True,
        header_style="bold_header",
        border_style="border",
    )
    table.add_column("ID", no_wrap=True)
    table.add_column("Name")
    table.add_column("Kind", width=8)
    table.add_column("Declared Mount", style="muted")
    table.add_column("Mounted At")

    for record, mount_path in rows:
        table.add_row(
            record.id or "-",
            record.name or "-",
            record.kind.value,
            record.declared_mount_point or "-",
            format_mount(mount_path),
        )

    return table


def create_state_table(
    *,
    backup_running: bool | None,
    lock_record: LockRecord | None,
    lock_live: bool,
    suppression: SuppressionState | None,
    success_epochs: dict[str, int],
) -> Table:
    """Create a Rich table summarizing the persisted run state."""
    table = Table(
        title="Run State",
        show_header=False,
        border_style="border",
    )
    table.add_column("Item", style="bold")
    table.add_column("Value")

    if backup_running is None:
        running_text = "[muted]unknown (tmutil unavailable)[/]"
    elif backup_running:
        running_text = "[running]running[/]"
    else:
        running_text = "idle"
    table.add_row("Backup", running_text)

    if lock_record is None:
        table.add_row("Lock", "free")
    else:
        owner = "live" if lock_live else "[warning]stale[/]"
        table.add_row(
            "Lock",
            f"pid {lock_record.pid or '?'} ({owner}), since {format_epoch(lock_record.created_epoch)}",
        )

    if suppression is None:
        table.add_row("Last handled mount", "-")
    else:
        table.add_row(
            "Last handled mount",
            f"{suppression.signature} [muted]({format_epoch(suppression.epoch)})[/]",
        )

    if not success_epochs:
        table.add_row("Last success", "-")
    for key, epoch in success_epochs.items():
        label = "Last success" if key == "*" else f"Last success ({key})"
        table.add_row(label, format_epoch(epoch))

    return table


def create_config_table(config: AutoBackupConfig) -> Table:
    """Create a Rich table of effective settings, marking changed values."""
    defaults = AutoBackupConfig()
    table = Table(
        title="Effective Configuration",
        show_header=True,
        header_style="bold_header",
        border_style="border",
    )
    table.add_column("Setting", no_wrap=True)
    table.add_column("Value")
    table.add_column("Default", style="muted")

    for name, value in config.model_dump().items():
        default = getattr(defaults, name)
        value_text = _format_value(value)
        if value != default:
            value_text = f"[info]{value_text}[/]"
        table.add_row(name, value_text, _format_value(default))

    return table


def _format_value(value: Any) -> str:
    if value is None:
        return "-"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
