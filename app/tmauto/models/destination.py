"""Destination models for the Time Machine destination catalog.

This module defines the records parsed from ``tmutil destinationinfo`` and
the destination selected for a single run.
"""

from dataclasses import dataclass
from enum import Enum


class DestinationKind(str, Enum):
    """Kind of Time Machine destination.

    Attributes:
        LOCAL: Directly attached disk.
        NETWORK: Network share or Time Capsule.
        OTHER: Anything tmutil reports that tmauto does not recognize.
    """

    LOCAL = "Local"
    NETWORK = "Network"
    OTHER = "Other"

    @classmethod
    def from_raw(cls, value: str | None) -> "DestinationKind":
        """Map a raw ``Kind`` value to a DestinationKind.

        Args:
            value: Kind string as reported by tmutil, or None.

        Returns:
            Matching kind, or OTHER for unknown/missing values.
        """
        for kind in cls:
            if kind.value == value:
                return kind
        return cls.OTHER


@dataclass(frozen=True, slots=True)
class Destination:
    """A configured backup destination known to Time Machine.

    Identity is ``id``; the remaining fields are descriptive only.

    Attributes:
        id: Destination UUID (may be empty if tmutil did not report one).
        name: Volume name.
        kind: Local, Network or Other.
        declared_mount_point: Mount point reported by tmutil, if any.
    """

    id: str
    name: str
    kind: DestinationKind
    declared_mount_point: str | None = None

    @property
    def is_local(self) -> bool:
        """Check if this is a directly attached destination."""
        return self.kind == DestinationKind.LOCAL

    @property
    def normalized_id(self) -> str:
        """Upper-cased ID for case-insensitive comparison."""
        return self.id.upper()

    @property
    def label(self) -> str:
        """Short human-readable label for logs and notifications."""
        return f"name: {self.name or 'unknown'}, id: {self.id or 'unknown'}"


@dataclass(frozen=True, slots=True)
class SelectedDestination:
    """The single destination a run acts on, with its verified mount path.

    Attributes:
        destination: The catalog record chosen for this run.
        mount_path: Path at which the volume is currently mounted. May
            differ from ``destination.declared_mount_point`` after a remount.
    """

    destination: Destination
    mount_path: str

    def __post_init__(self) -> None:
        """Validate that the run is pinned to an identified, mounted volume."""
        if not self.destination.id:
            msg = "Selected destination must have an ID"
            raise ValueError(msg)
        if not self.mount_path:
            msg = "Selected destination must have a mount path"
            raise ValueError(msg)

    @property
    def id(self) -> str:
        """Destination ID."""
        return self.destination.id
