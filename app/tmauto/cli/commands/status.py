"""Status command implementation.

Read-only view of destinations and persisted run state. Never takes the
run lock and never changes anything.
"""

import json
from pathlib import Path
from typing import Annotated, Any

import typer

from tmauto.backends.diskutil import DiskutilService
from tmauto.backends.tmutil import TmutilService
from tmauto.cli.display import create_destinations_table, create_state_table
from tmauto.core.catalog import CatalogUnavailableError, DestinationCatalog
from tmauto.core.config import ConfigError, load_config
from tmauto.core.lock import RunLock
from tmauto.core.state import StateStore
from tmauto.core.suppressor import DuplicateSuppressor
from tmauto.models.destination import Destination
from tmauto.utils.formatting import console, print_error, print_warning

app = typer.Typer(
    help="Show destinations and run state.",
    invoke_without_command=True,
)


@app.callback(invoke_without_command=True)
def show_status(
    config_path: Annotated[
        Path | None,
        typer.Option(
            "--config",
            "-c",
            help="Path to config file (default: ~/.config/tmauto/config.toml).",
        ),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Print machine-readable JSON."),
    ] = False,
) -> None:
    """Show Time Machine destinations, lock owner and stored state."""
    try:
        config = load_config(config_path).config
    except ConfigError as e:
        print_error(str(e))
        raise typer.Exit(code=1) from e

    backup = TmutilService()
    volumes = DiskutilService()

    catalog = DestinationCatalog(backup, volumes)
    catalog_error: str | None = None
    try:
        records = catalog.refresh()
    except CatalogUnavailableError as e:
        records = []
        catalog_error = str(e)
    rows = [(record, catalog.resolve_mount(record)) for record in records]

    backup_running = backup.is_running() if backup.is_available() else None

    lock = RunLock()
    lock_record = lock.read_record()
    lock_live = lock_record is not None and lock.is_owner_live(lock_record)

    state = StateStore()
    suppression = DuplicateSuppressor(
        state.state_dir, window_seconds=config.duplicate_window_seconds
    ).read()
    success_epochs = state.known_success_epochs()

    if json_output:
        payload: dict[str, Any] = {
            "destinations": [_destination_to_dict(record, mount) for record, mount in rows],
            "catalog_error": catalog_error,
            "backup_running": backup_running,
            "lock": (
                {**lock_record.to_dict(), "live": lock_live} if lock_record is not None else None
            ),
            "last_handled_mount": (
                {"signature": suppression.signature, "epoch": suppression.epoch}
                if suppression is not None
                else None
            ),
            "last_success": success_epochs,
        }
        console.print_json(json.dumps(payload))
        return

    if catalog_error:
        print_warning(catalog_error)
    else:
        console.print(create_destinations_table(rows))
    console.print(
        create_state_table(
            backup_running=backup_running,
            lock_record=lock_record,
            lock_live=lock_live,
            suppression=suppression,
            success_epochs=success_epochs,
        )
    )


def _destination_to_dict(record: Destination, mount_path: str | None) -> dict[str, Any]:
    return {
        "id": record.id,
        "name": record.name,
        "kind": record.kind.value,
        "declared_mount_point": record.declared_mount_point,
        "mount_path": mount_path,
    }
