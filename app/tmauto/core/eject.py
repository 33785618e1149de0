"""Safe eject of the backup destination."""

import logging
import time

from tmauto.backends.base import BackupService, VolumeService
from tmauto.core.polling import Sleeper
from tmauto.models.outcome import EjectResult

logger = logging.getLogger(__name__)

UNMOUNT_SETTLE_SECONDS = 2
EJECT_SETTLE_SECONDS = 1
RETRY_BACKOFF_SECONDS = 3


class EjectProtocol:
    """Unmounts and ejects a volume, never while a backup is active.

    The running flag is re-read before every attempt; an attempt is an
    unmount followed by an eject, verified by checking the mount again.
    """

    def __init__(
        self,
        backup: BackupService,
        volumes: VolumeService,
        *,
        retries: int = 3,
        sleep: Sleeper = time.sleep,
    ) -> None:
        if retries < 1:
            msg = f"retries must be >= 1, got {retries}"
            raise ValueError(msg)
        self.backup = backup
        self.volumes = volumes
        self.retries = retries
        self._sleep = sleep

    def attempt(self, mount_path: str) -> EjectResult:
        """Eject the volume mounted at ``mount_path``.

        Returns:
            EJECTED once the volume is no longer mounted (including when it
            already was not), BACKUP_RESUMED if a backup became active,
            STILL_IN_USE when all attempts failed.
        """
        for attempt in range(1, self.retries + 1):
            if self.backup.is_running():
                logger.info("Backup is running during eject attempts; leaving disk mounted")
                return EjectResult.BACKUP_RESUMED
            if not self.volumes.is_mounted(mount_path):
                return EjectResult.EJECTED

            logger.info("Eject attempt %d/%d for %s", attempt, self.retries, mount_path)
            # A failed unmount is not fatal; eject may still succeed.
            self.volumes.unmount(mount_path)
            self._sleep(UNMOUNT_SETTLE_SECONDS)
            if self.volumes.eject(mount_path):
                self._sleep(EJECT_SETTLE_SECONDS)
                if not self.volumes.is_mounted(mount_path):
                    return EjectResult.EJECTED
            self._sleep(RETRY_BACKOFF_SECONDS)

        return EjectResult.STILL_IN_USE
