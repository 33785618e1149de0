"""Volume backend implementation.

Wraps ``diskutil`` for mount lookups and mount/unmount/eject operations.
"""

import logging
import os
import plistlib

from tmauto.backends.base import VolumeService
from tmauto.utils.shell import run_tool

logger = logging.getLogger(__name__)


class DiskutilService(VolumeService):
    """VolumeService backed by ``diskutil``.

    Attributes:
        timeout: Timeout in seconds for individual diskutil calls.
    """

    def __init__(self, timeout: float = 60.0) -> None:
        """Initialize the service.

        Args:
            timeout: Timeout in seconds for individual diskutil calls.
        """
        self.timeout = timeout

    def _info(self, target: str) -> dict[str, object] | None:
        """Run ``diskutil info -plist`` and parse the result.

        Args:
            target: Mount path, volume name, UUID or device identifier.

        Returns:
            Parsed info dictionary, or None if unavailable.
        """
        result = run_tool(["diskutil", "info", "-plist", target], timeout=self.timeout)
        if not result.success or not result.stdout.strip():
            return None
        try:
            data = plistlib.loads(result.stdout.encode("utf-8"))
        except (plistlib.InvalidFileException, ValueError) as e:
            logger.debug("Unparseable diskutil info for %r: %s", target, e)
            return None
        return data if isinstance(data, dict) else None

    def _info_value(self, target: str, key: str) -> str | None:
        """Extract a non-empty string value from ``diskutil info``."""
        info = self._info(target)
        if info is None:
            return None
        value = info.get(key)
        if isinstance(value, str) and value:
            return value
        return None

    def mount_point_for(self, target: str) -> str | None:
        """Look up the ``MountPoint`` of a volume."""
        return self._info_value(target, "MountPoint")

    def device_identifier_for(self, target: str) -> str | None:
        """Look up the ``DeviceIdentifier`` of a volume."""
        return self._info_value(target, "DeviceIdentifier")

    def mount(self, device: str) -> bool:
        """Run ``diskutil mount <device>``."""
        logger.info("Mounting %s", device)
        return run_tool(["diskutil", "mount", device], timeout=self.timeout).success

    def unmount(self, mount_path: str) -> bool:
        """Run ``diskutil unmount <path>``."""
        return run_tool(["diskutil", "unmount", mount_path], timeout=self.timeout).success

    def eject(self, mount_path: str) -> bool:
        """Run ``diskutil eject <path>``."""
        return run_tool(["diskutil", "eject", mount_path], timeout=self.timeout).success

    def mount_instance_id(self, mount_path: str) -> str | None:
        """Return the inode of the mount root as a string."""
        try:
            return str(os.stat(mount_path).st_ino)
        except OSError as e:
            logger.debug("Cannot stat mount path %s: %s", mount_path, e)
            return None
