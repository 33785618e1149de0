"""Destination catalog.

Parses the Time Machine destination listing into Destination records and
resolves which record is reachable right now. Selection is deliberately
strict: when the target is ambiguous the catalog refuses to choose rather
than risk backing up to, or ejecting, the wrong physical disk.
"""

import logging
import plistlib

from tmauto.backends.base import BackupService, VolumeService
from tmauto.models.destination import Destination, DestinationKind

logger = logging.getLogger(__name__)


class CatalogError(Exception):
    """Base exception for destination catalog errors."""


class CatalogUnavailableError(CatalogError):
    """Raised when the destination listing cannot be read or is empty."""


class AmbiguousDestinationError(CatalogError):
    """Raised when several local destinations exist and none is preferred."""

    def __init__(self, local_count: int) -> None:
        super().__init__(f"Multiple local Time Machine destinations detected ({local_count})")
        self.local_count = local_count


class DestinationNotFoundError(CatalogError):
    """Raised when no destination matches the selection rules."""


def parse_destinations(raw: str) -> list[Destination]:
    """Parse ``tmutil destinationinfo -X`` output.

    Entries with no ID, name, kind and mount point at all are skipped.

    Args:
        raw: Plist XML text.

    Returns:
        Destination records in listing order. Empty if the text is not a
        usable plist.
    """
    try:
        data = plistlib.loads(raw.encode("utf-8"))
    except (plistlib.InvalidFileException, ValueError) as e:
        logger.warning("Could not parse destination listing: %s", e)
        return []

    entries = data.get("Destinations") if isinstance(data, dict) else None
    if not isinstance(entries, list):
        return []

    destinations: list[Destination] = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        dest_id = _str_value(entry.get("ID"))
        name = _str_value(entry.get("Name"))
        kind = _str_value(entry.get("Kind"))
        mount_point = _str_value(entry.get("Mount Point"))
        if not (dest_id or name or kind or mount_point):
            continue
        destinations.append(
            Destination(
                id=dest_id,
                name=name,
                kind=DestinationKind.from_raw(kind),
                declared_mount_point=mount_point or None,
            )
        )
    return destinations


def _str_value(value: object) -> str:
    """Return a string plist value, or "" for anything else."""
    return value if isinstance(value, str) else ""


class DestinationCatalog:
    """Current view of the Time Machine destinations.

    The record set is replaced wholesale on every :meth:`refresh`.

    Attributes:
        backup: Backup subsystem providing the listing.
        volumes: Volume manager used to verify mounts.
    """

    def __init__(self, backup: BackupService, volumes: VolumeService) -> None:
        self.backup = backup
        self.volumes = volumes
        self._records: tuple[Destination, ...] = ()

    @property
    def records(self) -> tuple[Destination, ...]:
        """Records from the most recent refresh."""
        return self._records

    def refresh(self) -> list[Destination]:
        """Re-read and parse the destination listing.

        Returns:
            The new ordered list of records.

        Raises:
            CatalogUnavailableError: If the listing fails or yields no records.
        """
        raw = self.backup.destination_info()
        if raw is None:
            msg = "No Time Machine destination found"
            raise CatalogUnavailableError(msg)

        records = parse_destinations(raw)
        if not records:
            msg = "No Time Machine destinations parsed from tmutil output"
            raise CatalogUnavailableError(msg)

        self._records = tuple(records)
        return list(records)

    def resolve_mount(self, record: Destination) -> str | None:
        """Find where a destination is mounted right now.

        Tries the declared mount point, then a lookup by name, then by ID.
        A candidate is accepted only if the OS reports a volume mounted at
        exactly that path.

        Args:
            record: Destination to resolve.

        Returns:
            Verified mount path, or None.
        """
        if record.declared_mount_point and self.volumes.is_mounted(record.declared_mount_point):
            return record.declared_mount_point

        for target in (record.name, record.id):
            if not target:
                continue
            mount_point = self.volumes.mount_point_for(target)
            if mount_point and self.volumes.is_mounted(mount_point):
                return mount_point

        return None

    def local_count(self) -> int:
        """Count Local destinations."""
        return sum(1 for record in self._records if record.is_local)

    def any_local_mounted(self) -> bool:
        """Check if some Local destination resolves to a mounted path."""
        return any(
            record.is_local and self.resolve_mount(record) is not None
            for record in self._records
        )

    def select_index(self, preferred_id: str | None = None) -> int:
        """Choose the destination for this run.

        With a preferred ID, only a case-insensitive ID match is accepted.
        Without one, exactly one Local destination may exist; the first
        mounted Local record wins, else the first Local record.

        Args:
            preferred_id: Destination ID configured by the user, if any.

        Returns:
            Index into :attr:`records`.

        Raises:
            AmbiguousDestinationError: Several Local records and no preference.
            DestinationNotFoundError: Nothing matches.
        """
        if not self._records:
            msg = "Destination catalog is empty"
            raise DestinationNotFoundError(msg)

        if preferred_id:
            wanted = preferred_id.upper()
            for idx, record in enumerate(self._records):
                if record.normalized_id == wanted:
                    return idx
            msg = f"Preferred destination ID not found ({preferred_id})"
            raise DestinationNotFoundError(msg)

        local_count = self.local_count()
        if local_count > 1:
            raise AmbiguousDestinationError(local_count)

        for idx, record in enumerate(self._records):
            if record.is_local and self.resolve_mount(record) is not None:
                return idx

        for idx, record in enumerate(self._records):
            if record.is_local:
                return idx

        msg = "No suitable local destination found in tmutil output"
        raise DestinationNotFoundError(msg)

    def attempt_mount(self, record: Destination) -> str | None:
        """Try to mount a destination that is attached but not mounted.

        For each candidate (declared mount point, name, ID) an already
        mounted path is accepted; otherwise its device is looked up, mounted
        and the resulting mount point verified.

        Args:
            record: Destination to mount.

        Returns:
            Verified mount path, or None.
        """
        candidates = [
            target for target in (record.declared_mount_point, record.name, record.id) if target
        ]
        for candidate in candidates:
            mounted_path = self.volumes.mount_point_for(candidate)
            if mounted_path and self.volumes.is_mounted(mounted_path):
                return mounted_path

            device = self.volumes.device_identifier_for(candidate)
            if not device:
                continue

            if not self.volumes.mount(device):
                logger.debug("Mount command failed for %s", device)
            mounted_path = self.volumes.mount_point_for(device)
            if mounted_path and self.volumes.is_mounted(mounted_path):
                logger.info("Mounted %s at %s", device, mounted_path)
                return mounted_path

        return None
