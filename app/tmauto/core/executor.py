"""Backup execution with contention handling.

Starts a backup to the selected destination and supervises it until the
backup subsystem reports it idle again. A start refused because another
backup is active is waited out and retried exactly once.
"""

import logging
import re
import time

from tmauto.backends.base import BackupService
from tmauto.core.config import AutoBackupConfig
from tmauto.core.decision import output_indicates_access_denied, read_latest_snapshot_id
from tmauto.core.polling import Clock, Sleeper, poll_until
from tmauto.core.state import StateStore
from tmauto.models.outcome import (
    BackupAttempt,
    BackupStatus,
    ExecutionResult,
    ExecutionStatus,
)

logger = logging.getLogger(__name__)

ALREADY_RUNNING_PATTERN = re.compile(
    r"already running|Backup session is already running", re.IGNORECASE
)

# backupd needs a moment after an accepted start before it reports Running = 1
START_GRACE_SECONDS = 60
START_GRACE_POLL_SECONDS = 1

BLOCK_POLL_SECONDS = 5


class BackupExecutor:
    """Runs one backup for a destination and reports a typed result.

    Attributes:
        backup: Backup subsystem.
        state: Store receiving the new last-success timestamp.
        config: Run configuration.
    """

    def __init__(
        self,
        backup: BackupService,
        state: StateStore,
        config: AutoBackupConfig,
        *,
        sleep: Sleeper = time.sleep,
        clock: Clock = time.time,
    ) -> None:
        self.backup = backup
        self.state = state
        self.config = config
        self._sleep = sleep
        self._clock = clock

    def attempt(self, destination_id: str, timeout_seconds: int) -> BackupAttempt:
        """Start a backup and block until it finishes or times out.

        Args:
            destination_id: Destination to back up to.
            timeout_seconds: Ceiling for the started backup to finish.

        Returns:
            BackupAttempt describing what happened.
        """
        result = self.backup.start_backup(destination_id)
        if not result.success:
            if ALREADY_RUNNING_PATTERN.search(result.output) or self.backup.is_running():
                status = BackupStatus.ALREADY_RUNNING
            else:
                status = BackupStatus.FAILED
            return BackupAttempt(status, result.returncode, result.output)

        poll_until(
            self.backup.is_running,
            interval=START_GRACE_POLL_SECONDS,
            ceiling=START_GRACE_SECONDS,
            sleep=self._sleep,
        )
        finished = poll_until(
            lambda: not self.backup.is_running(),
            interval=BLOCK_POLL_SECONDS,
            ceiling=timeout_seconds,
            sleep=self._sleep,
        )
        status = BackupStatus.SUCCESS if finished else BackupStatus.TIMED_OUT
        return BackupAttempt(status, result.returncode, result.output)

    def wait_for_running_backup(self) -> bool:
        """Wait for an already-running backup to finish.

        Returns:
            True if no backup is running (any more), False if one was still
            running when the configured ceiling was reached.
        """
        if not self.backup.is_running():
            return True

        ceiling = self.config.wait_for_running_backup_max_seconds
        logger.info("Detected already-running Time Machine backup; waiting up to %ss", ceiling)
        finished = poll_until(
            lambda: not self.backup.is_running(),
            interval=self.config.running_backup_poll_seconds,
            ceiling=ceiling,
            sleep=self._sleep,
        )
        if finished:
            logger.info("Detected completion of already-running Time Machine backup")
        else:
            logger.info("Backup still running after %ss; leaving disk mounted for safety", ceiling)
        return finished

    def execute(
        self,
        destination_id: str,
        mount_path: str,
        pre_snapshot_id: str | None = None,
    ) -> ExecutionResult:
        """Run the backup step for a selected destination.

        Args:
            destination_id: Destination to back up to.
            mount_path: Where the destination is mounted.
            pre_snapshot_id: Latest snapshot ID before the backup, used for
                verification.

        Returns:
            ExecutionResult. Only SUCCEEDED updates the fallback timestamp.
        """
        timeout = self.config.backup_block_timeout_seconds
        logger.info("Starting Time Machine backup...")
        attempt = self.attempt(destination_id, timeout)
        retried = False

        if attempt.status == BackupStatus.ALREADY_RUNNING:
            logger.info(
                "tmutil reported an already-running backup while starting. "
                "Waiting for completion before eject decision."
            )
            if not self.wait_for_running_backup():
                logger.info("Will retry while destination remains mounted (backup still in progress)")
                return ExecutionResult(ExecutionStatus.STILL_RUNNING, returncode=attempt.returncode)

            logger.info("Retrying destination-specific backup now that the running session has finished")
            attempt = self.attempt(destination_id, timeout)
            retried = True
            if attempt.status == BackupStatus.ALREADY_RUNNING:
                logger.info("Another backup started again before the retry; leaving disk mounted")
                return ExecutionResult(
                    ExecutionStatus.STILL_RUNNING, returncode=attempt.returncode, retried=True
                )

        if attempt.status == BackupStatus.TIMED_OUT:
            logger.info(
                "Backup is still running or unresolved after %ss. Keeping disk mounted for safety.",
                timeout,
            )
            return ExecutionResult(
                ExecutionStatus.TIMED_OUT, returncode=attempt.returncode, retried=retried
            )

        if attempt.status == BackupStatus.FAILED:
            access_denied = output_indicates_access_denied(attempt.output)
            if access_denied:
                logger.error("Time Machine backup command was blocked by Full Disk Access restrictions")
            logger.info(
                "Backup failed with exit code: %d. Keeping disk mounted for safety.",
                attempt.returncode,
            )
            return ExecutionResult(
                ExecutionStatus.FAILED,
                returncode=attempt.returncode,
                retried=retried,
                access_denied=access_denied,
            )

        return self._complete(destination_id, mount_path, pre_snapshot_id, retried)

    def _complete(
        self,
        destination_id: str,
        mount_path: str,
        pre_snapshot_id: str | None,
        retried: bool,
    ) -> ExecutionResult:
        """Verify (if required) and record a finished backup."""
        post_snapshot_id = read_latest_snapshot_id(self.backup, mount_path)

        if self.config.require_snapshot_verification:
            if post_snapshot_id is None:
                logger.info(
                    "Backup completed but snapshot verification is required and no snapshot ID "
                    "was readable; leaving disk mounted for re-check"
                )
                return ExecutionResult(ExecutionStatus.UNVERIFIED, retried=retried)
            if pre_snapshot_id and post_snapshot_id == pre_snapshot_id:
                logger.info(
                    "Backup completed but snapshot verification is required and no new snapshot "
                    "was detected; leaving disk mounted for re-check"
                )
                return ExecutionResult(
                    ExecutionStatus.UNVERIFIED, snapshot_id=post_snapshot_id, retried=retried
                )

        self.state.write_last_success(destination_id, int(self._clock()))
        if post_snapshot_id:
            logger.info("Backup completed successfully (latest snapshot: %s)", post_snapshot_id)
        else:
            logger.info(
                "Backup completed successfully (snapshot ID unavailable; "
                "proceeding by tmutil success exit code)"
            )
        return ExecutionResult(
            ExecutionStatus.SUCCEEDED, snapshot_id=post_snapshot_id, retried=retried
        )
