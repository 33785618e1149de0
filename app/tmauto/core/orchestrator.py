"""Run orchestration.

A run is triggered by a timer, a volume mount or session start, and walks
a fixed sequence of states: take the lock, resolve the destination, confirm
its mount, rule out a duplicate trigger, decide whether a backup is due,
back up or skip, decide on eject, and commit. Any early condition ends the
run cleanly. The lock is released on every exit path.
"""

import logging
import time
from pathlib import Path

from tmauto.backends.base import BackupService, VolumeService
from tmauto.backends.diskutil import DiskutilService
from tmauto.backends.tmutil import TmutilService
from tmauto.core.catalog import (
    AmbiguousDestinationError,
    CatalogUnavailableError,
    DestinationCatalog,
    DestinationNotFoundError,
)
from tmauto.core.config import AutoBackupConfig
from tmauto.core.decision import BackupDueEngine
from tmauto.core.eject import EjectProtocol
from tmauto.core.executor import BackupExecutor
from tmauto.core.lock import RunLock
from tmauto.core.polling import Clock, Sleeper, poll_until
from tmauto.core.state import StateStore
from tmauto.core.suppressor import DuplicateSuppressor, MountSignature
from tmauto.models.destination import Destination, SelectedDestination
from tmauto.models.outcome import (
    EjectResult,
    ExecutionResult,
    ExecutionStatus,
    RunOutcome,
    RunReport,
    RunStage,
)
from tmauto.notify import ACCESS_NOTICE, AMBIGUITY_NOTICE, Notifier

logger = logging.getLogger(__name__)

FAST_PATH_POLL_SECONDS = 1
FAST_PATH_GRACE_SECONDS = 1
MOUNT_REPOLL_SECONDS = 3
AUTOMOUNT_SETTLE_SECONDS = 3

ACCESS_MESSAGE = (
    "Time Machine Auto-Backup needs Full Disk Access. Grant access in "
    "System Settings > Privacy & Security > Full Disk Access."
)
ACCESS_BLOCKED_MESSAGE = (
    "Time Machine Auto-Backup cannot run without Full Disk Access. Grant access in "
    "System Settings > Privacy & Security > Full Disk Access."
)
AMBIGUITY_MESSAGE = (
    "Multiple local Time Machine destinations detected. Set preferred_destination_id "
    "in the tmauto config. You can find IDs with: tmutil destinationinfo -X"
)


class RunOrchestrator:
    """Drives one backup run from trigger to commit.

    All collaborators are injected; unspecified ones are built from the
    config and the default paths.

    Example:
        >>> orchestrator = RunOrchestrator(config, TmutilService(), DiskutilService())
        >>> report = orchestrator.run()
        >>> report.outcome
        <RunOutcome.EJECTED: ('ejected', 0)>
    """

    def __init__(
        self,
        config: AutoBackupConfig,
        backup: BackupService,
        volumes: VolumeService,
        *,
        lock: RunLock | None = None,
        state: StateStore | None = None,
        suppressor: DuplicateSuppressor | None = None,
        notifier: Notifier | None = None,
        sleep: Sleeper = time.sleep,
        clock: Clock = time.time,
    ) -> None:
        self.config = config
        self.backup = backup
        self.volumes = volumes
        self.lock = lock or RunLock(
            max_pid_wait_seconds=config.max_lock_pid_wait_seconds,
            stale_seconds=config.lock_stale_seconds,
            clock=clock,
        )
        self.state = state or StateStore()
        self.suppressor = suppressor or DuplicateSuppressor(
            self.state.state_dir, window_seconds=config.duplicate_window_seconds
        )
        self.notifier = notifier or Notifier(
            enabled=config.notifications_enabled, state=self.state, clock=clock
        )
        self._sleep = sleep
        self._clock = clock

        self.catalog = DestinationCatalog(backup, volumes)
        self.due_engine = BackupDueEngine(backup, self.state, config, clock=clock)
        self.executor = BackupExecutor(backup, self.state, config, sleep=sleep, clock=clock)
        self.ejector = EjectProtocol(
            backup, volumes, retries=config.eject_retry_attempts, sleep=sleep
        )

    def run(self) -> RunReport:
        """Execute one run.

        Returns:
            RunReport with the visited states and the terminal outcome.
        """
        report = RunReport()
        result = self.lock.acquire()
        if not result.acquired:
            logger.debug("Lock denied: %s", result.reason)
            return report.exit_early(RunOutcome.LOCK_DENIED)

        report.enter(RunStage.LOCK_HELD)
        try:
            return self._run_locked(report)
        finally:
            self.lock.release()

    def _run_locked(self, report: RunReport) -> RunReport:
        """Everything after the lock is taken."""
        if not self._refresh_catalog():
            return report.exit_early(RunOutcome.NO_CATALOG)

        if not self.config.allow_automount and not self.catalog.any_local_mounted():
            try:
                mounted = self._wait_for_local_mount()
            except CatalogUnavailableError as e:
                logger.info("%s, exiting", e)
                return report.exit_early(RunOutcome.NO_CATALOG)
            if not mounted:
                logger.debug("No local destination mounted; ignoring unrelated mount event")
                return report.exit_early(RunOutcome.NO_LOCAL_MOUNTED)

        self._sleep(self.config.mount_settle_seconds)
        if not self._refresh_catalog():
            return report.exit_early(RunOutcome.NO_CATALOG)

        record = self._select_destination(report)
        if record is None:
            return report
        report.destination_id = record.id
        report.enter(RunStage.CATALOG_RESOLVED)

        mount_path = self._resolve_mount(record)
        if mount_path is None:
            logger.info(
                "Time Machine destination not mounted or not connected (%s), exiting",
                record.label,
            )
            return report.exit_early(RunOutcome.NOT_MOUNTED)
        selected = SelectedDestination(record, mount_path)
        report.mount_path = mount_path
        report.enter(RunStage.MOUNT_CONFIRMED)

        signature = MountSignature.capture(selected.id, mount_path, self.volumes, self._now())
        if self.suppressor.should_skip(signature.value, self._now()):
            logger.info("Mount session recently handled (%s); exiting duplicate trigger", mount_path)
            return report.exit_early(RunOutcome.DUPLICATE)
        report.enter(RunStage.NOT_DUPLICATE)

        logger.info(
            "Time Machine destination ready (%s) mounted at: %s", record.label, mount_path
        )
        return self._decide_and_act(report, selected, signature)

    def _decide_and_act(
        self,
        report: RunReport,
        selected: SelectedDestination,
        signature: MountSignature,
    ) -> RunReport:
        """Decide on a backup, run it, then decide on eject and commit."""
        if self.backup.is_running():
            if not self.executor.wait_for_running_backup():
                logger.info("Will retry while destination remains mounted (backup still in progress)")
                return report.exit_early(RunOutcome.STILL_RUNNING)
            logger.info(
                "A previously running backup completed; continuing with "
                "destination-specific backup need evaluation"
            )

        reading = self.due_engine.read_history(selected.mount_path)
        if not reading.available:
            if reading.access_denied:
                logger.warning(
                    "Full Disk Access missing for this context (tmutil listbackups blocked); "
                    "using fallback schedule state"
                )
                self._notify_access_denied()
                if not self.backup.status_ok():
                    logger.critical(
                        "Time Machine operations are blocked in this context; "
                        "cannot proceed without Full Disk Access"
                    )
                    self.notifier.alert(ACCESS_BLOCKED_MESSAGE)
                    return report.finish(RunOutcome.ACCESS_BLOCKED)
            else:
                logger.warning(
                    "tmutil listbackups failed with exit code %d; using fallback schedule state",
                    reading.returncode,
                )

        decision = self.due_engine.evaluate(selected.id, reading)
        report.enter(RunStage.DECISION_MADE)

        if decision.due:
            report.backup_performed = True
            execution = self.executor.execute(
                selected.id, selected.mount_path, pre_snapshot_id=reading.snapshot_id
            )
            report.enter(RunStage.BACKUP_EXECUTED)
            failure = self._execution_failure(execution)
            if failure is not None:
                return report.finish(failure)
            self.notifier.notify("Backup completed successfully")
        else:
            report.enter(RunStage.BACKUP_SKIPPED)
            if not self.config.eject_when_no_backup:
                logger.info("Leaving disk mounted because eject_when_no_backup is off")
                report.enter(RunStage.EJECT_DECIDED)
                return self._commit(report, signature, RunOutcome.LEFT_MOUNTED)

        return self._eject(report, selected.mount_path, signature)

    def _execution_failure(self, execution: ExecutionResult) -> RunOutcome | None:
        """Map a non-successful backup step to its outcome, notifying as needed."""
        status = execution.status
        timeout = self.config.backup_block_timeout_seconds
        if status == ExecutionStatus.SUCCEEDED:
            return None
        if status == ExecutionStatus.STILL_RUNNING:
            return RunOutcome.STILL_RUNNING
        if status == ExecutionStatus.UNVERIFIED:
            return RunOutcome.BACKUP_UNVERIFIED
        if status == ExecutionStatus.TIMED_OUT:
            if execution.retried:
                self.notifier.alert(
                    f"Backup retry timed out after {timeout} seconds. Disk was left mounted."
                )
            else:
                self.notifier.alert(
                    f"Backup is still running after {timeout} seconds. Disk was left mounted."
                )
            return RunOutcome.BACKUP_TIMED_OUT

        if execution.access_denied:
            self._notify_access_denied()
        prefix = "Backup retry failed" if execution.retried else "Backup failed"
        self.notifier.alert(
            f"{prefix} (exit code: {execution.returncode}). Disk was left mounted."
        )
        return RunOutcome.BACKUP_FAILED

    def _eject(self, report: RunReport, mount_path: str, signature: MountSignature) -> RunReport:
        """Pre-check, eject and commit."""
        self._sleep(self.config.eject_precheck_delay_seconds)

        if self.backup.is_running():
            logger.info("Backup is running at eject check; leaving disk mounted")
            report.enter(RunStage.EJECT_DECIDED)
            return report.finish(RunOutcome.BACKUP_RESUMED)

        if not self.volumes.is_mounted(mount_path):
            logger.info("Disk already unmounted before eject step")
            report.enter(RunStage.EJECT_DECIDED)
            return self._commit(report, signature, RunOutcome.EJECTED)

        logger.info("Ejecting %s...", mount_path)
        result = self.ejector.attempt(mount_path)
        report.enter(RunStage.EJECT_DECIDED)

        if result == EjectResult.EJECTED:
            logger.info("Disk ejected successfully")
            return self._commit(report, signature, RunOutcome.EJECTED)
        if result == EjectResult.BACKUP_RESUMED:
            logger.info("Backup resumed during eject attempts; leaving disk mounted")
            return report.finish(RunOutcome.BACKUP_RESUMED)

        logger.info(
            "Failed to eject disk after %d attempts (may still be in use)",
            self.config.eject_retry_attempts,
        )
        self.suppressor.clear()
        self.notifier.alert(
            "Time Machine disk could not be ejected and will be retried on the next run."
        )
        return report.finish(RunOutcome.EJECT_FAILED)

    def _commit(
        self, report: RunReport, signature: MountSignature, outcome: RunOutcome
    ) -> RunReport:
        """Record the handled mount instance and finish the run."""
        self.suppressor.commit(signature.value, self._now())
        report.committed = True
        report.enter(RunStage.COMMITTED)
        return report.finish(outcome)

    def _refresh_catalog(self) -> bool:
        """Refresh the catalog, logging why it is unavailable."""
        try:
            self.catalog.refresh()
        except CatalogUnavailableError as e:
            logger.info("%s, exiting", e)
            return False
        return True

    def _wait_for_local_mount(self) -> bool:
        """Give a freshly attached destination a moment to show up as mounted.

        Raises:
            CatalogUnavailableError: If the listing disappears while waiting.
        """

        def local_mounted() -> bool:
            self.catalog.refresh()
            return self.catalog.any_local_mounted()

        if poll_until(
            local_mounted,
            interval=FAST_PATH_POLL_SECONDS,
            ceiling=self.config.fast_path_wait_seconds,
            sleep=self._sleep,
        ):
            return True

        self._sleep(FAST_PATH_GRACE_SECONDS)
        try:
            self.catalog.refresh()
        except CatalogUnavailableError:
            return False
        return self.catalog.any_local_mounted()

    def _select_destination(self, report: RunReport) -> Destination | None:
        """Select the run's destination, finishing the report if none qualifies."""
        preferred = self.config.preferred_destination_id
        try:
            index = self.catalog.select_index(preferred)
        except AmbiguousDestinationError as e:
            logger.info(
                "Multiple local Time Machine destinations detected (%d). "
                "Set preferred_destination_id to avoid wrong-disk actions",
                e.local_count,
            )
            self.notifier.notify_once_per_window(
                AMBIGUITY_NOTICE,
                AMBIGUITY_MESSAGE,
                self.config.ambiguity_notify_cooldown_seconds,
            )
            report.exit_early(RunOutcome.AMBIGUOUS)
            return None
        except DestinationNotFoundError as e:
            if preferred:
                logger.info("%s; exiting to avoid acting on the wrong disk", e)
                report.exit_early(RunOutcome.PREFERRED_NOT_FOUND)
            else:
                logger.info("%s, exiting", e)
                report.exit_early(RunOutcome.NO_DESTINATION)
            return None

        record = self.catalog.records[index]
        if not record.id:
            logger.info("Selected destination has no ID; exiting to avoid unpinned backup/eject behavior")
            report.exit_early(RunOutcome.MISSING_ID)
            return None
        return record

    def _resolve_mount(self, record: Destination) -> str | None:
        """Find the destination's mount path, re-polling briefly and mounting if allowed."""
        found: list[str] = []

        def resolved() -> bool:
            path = self.catalog.resolve_mount(record)
            if path:
                found.append(path)
            return path is not None

        if poll_until(resolved, interval=1, ceiling=MOUNT_REPOLL_SECONDS, sleep=self._sleep):
            return found[-1]

        if not self.config.allow_automount:
            return None

        mount_path = self.catalog.attempt_mount(record)
        if mount_path:
            self._sleep(AUTOMOUNT_SETTLE_SECONDS)
        return mount_path

    def _notify_access_denied(self) -> None:
        """Alert about missing Full Disk Access at most once per cooldown."""
        self.notifier.notify_once_per_window(
            ACCESS_NOTICE,
            ACCESS_MESSAGE,
            self.config.access_notify_cooldown_seconds,
        )

    def _now(self) -> int:
        return int(self._clock())


def create_orchestrator(
    config: AutoBackupConfig,
    *,
    state_dir: Path | None = None,
    lock_dir: Path | None = None,
) -> RunOrchestrator:
    """Build an orchestrator backed by the macOS tools.

    Args:
        config: Validated run configuration.
        state_dir: Optional override for the state directory.
        lock_dir: Optional override for the lock directory.

    Returns:
        A ready-to-run orchestrator.
    """
    state = StateStore(state_dir)
    return RunOrchestrator(
        config,
        TmutilService(),
        DiskutilService(),
        lock=RunLock(
            lock_dir,
            max_pid_wait_seconds=config.max_lock_pid_wait_seconds,
            stale_seconds=config.lock_stale_seconds,
        ),
        state=state,
        suppressor=DuplicateSuppressor(
            state.state_dir, window_seconds=config.duplicate_window_seconds
        ),
    )
