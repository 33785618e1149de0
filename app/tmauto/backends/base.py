"""Abstract interfaces for the external backup and volume subsystems.

tmauto never transfers data itself. Everything it knows about backups and
volumes comes through these two interfaces, which the macOS implementations
back with ``tmutil`` and ``diskutil``.
"""

from abc import ABC, abstractmethod

from tmauto.utils.shell import CommandResult


class BackupService(ABC):
    """Interface to the external backup subsystem (Time Machine).

    Example:
        >>> service = TmutilService()
        >>> if service.is_available() and not service.is_running():
        ...     result = service.start_backup("0C8F...")
    """

    @abstractmethod
    def is_available(self) -> bool:
        """Check if the backup subsystem can be used on this system."""

    @abstractmethod
    def destination_info(self) -> str | None:
        """Return the raw destination listing (plist XML).

        Returns:
            Listing text, or None if the query failed or returned nothing.
        """

    @abstractmethod
    def is_running(self) -> bool:
        """Read the global "backup in progress" flag."""

    @abstractmethod
    def status_ok(self) -> bool:
        """Check if the status query itself succeeds in this context."""

    @abstractmethod
    def start_backup(self, destination_id: str) -> CommandResult:
        """Request a backup to the given destination.

        Returns as soon as the request is accepted or refused; the backup
        itself runs asynchronously.
        """

    @abstractmethod
    def list_backups(self, mount_path: str) -> CommandResult:
        """List recovery points on the destination mounted at ``mount_path``."""

    @abstractmethod
    def latest_backup(self, mount_path: str) -> CommandResult:
        """Query the most recent recovery point at ``mount_path``."""


class VolumeService(ABC):
    """Interface to the OS volume manager (mount, unmount, eject)."""

    @abstractmethod
    def mount_point_for(self, target: str) -> str | None:
        """Look up where a volume is mounted.

        Args:
            target: Mount path, volume name, volume UUID or device identifier.

        Returns:
            Reported mount point, or None if not mounted or unknown.
        """

    @abstractmethod
    def device_identifier_for(self, target: str) -> str | None:
        """Look up the device identifier (e.g. ``disk4s2``) of a volume."""

    @abstractmethod
    def mount(self, device: str) -> bool:
        """Mount a device. Returns True if the command succeeded."""

    @abstractmethod
    def unmount(self, mount_path: str) -> bool:
        """Unmount a volume. Returns True if the command succeeded."""

    @abstractmethod
    def eject(self, mount_path: str) -> bool:
        """Eject the disk holding a volume. Returns True if the command succeeded."""

    @abstractmethod
    def mount_instance_id(self, mount_path: str) -> str | None:
        """Return an identifier of this particular mount (the root inode).

        Two mounts of the same volume at the same path yield different values.
        """

    def is_mounted(self, target: str) -> bool:
        """Check if a volume is currently mounted.

        For absolute-path targets the reported mount point must equal the
        target exactly, so a path that merely lives on some other mounted
        volume is not accepted.

        Args:
            target: Mount path, volume name or identifier.

        Returns:
            True if the OS reports the volume as mounted.
        """
        mount_point = self.mount_point_for(target)
        if not mount_point:
            return False
        if target.startswith("/") and mount_point != target:
            return False
        return True
