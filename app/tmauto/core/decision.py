"""Backup-due decision.

Decides once per run whether a backup is required. The authoritative input
is the destination's own backup history; when that cannot be read, a
locally persisted last-success timestamp is used instead. Both paths bias
toward backing up: unknown, future or very old timestamps all mean "due".
"""

import logging
import re
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from tmauto.backends.base import BackupService
from tmauto.core.config import AutoBackupConfig
from tmauto.core.polling import Clock
from tmauto.core.state import StateStore

logger = logging.getLogger(__name__)

# Snapshot names look like 2026-10-19-083015
SNAPSHOT_ID_PATTERN = re.compile(r"(\d{4})-(\d{2})-(\d{2})-(\d{2})(\d{2})(\d{2})")
ACCESS_DENIED_PATTERN = re.compile(r"Full Disk Access|Operation not permitted")


def output_indicates_access_denied(output: str) -> bool:
    """Check if tool output looks like a Full Disk Access restriction."""
    return ACCESS_DENIED_PATTERN.search(output) is not None


def extract_latest_snapshot_id(output: str) -> str | None:
    """Return the last snapshot ID appearing in tool output.

    Args:
        output: Output of ``tmutil listbackups`` or ``tmutil latestbackup``.

    Returns:
        Snapshot ID such as ``2026-10-19-083015``, or None.
    """
    matches = list(SNAPSHOT_ID_PATTERN.finditer(output))
    return matches[-1].group(0) if matches else None


def parse_snapshot_timestamp(snapshot_id: str) -> int | None:
    """Convert a snapshot ID into epoch seconds.

    Snapshot names are in local time without an offset. Near a DST change
    the conversion can be off by about an hour; the ambiguous or skipped
    local hour is resolved however ``datetime.timestamp`` resolves it.

    Args:
        snapshot_id: Text containing a ``YYYY-MM-DD-HHMMSS`` snapshot name.

    Returns:
        Epoch seconds, or None if the text does not hold a valid timestamp.
    """
    match = SNAPSHOT_ID_PATTERN.search(snapshot_id)
    if match is None:
        return None
    year, month, day, hour, minute, second = (int(part) for part in match.groups())
    try:
        return int(datetime(year, month, day, hour, minute, second).timestamp())
    except (ValueError, OverflowError, OSError):
        return None


def read_latest_snapshot_id(backup: BackupService, mount_path: str) -> str | None:
    """Query the most recent snapshot ID at ``mount_path``.

    Command failures are not distinguished from an empty history here.
    """
    snapshot_id = extract_latest_snapshot_id(backup.list_backups(mount_path).stdout)
    if snapshot_id is None:
        snapshot_id = extract_latest_snapshot_id(backup.latest_backup(mount_path).stdout)
    return snapshot_id


class HistorySource(Enum):
    """Where the last-backup timestamp came from."""

    HISTORY = "history"
    FALLBACK = "fallback"


class DecisionReason(Enum):
    """Why a backup is or is not due.

    Attributes:
        FIRST_BACKUP: History is readable and holds no backups.
        NO_FALLBACK: History is unreadable and no fallback timestamp exists.
        UNPARSEABLE: The latest snapshot name could not be parsed.
        CLOCK_ANOMALY: The last backup lies in the future.
        OVERDUE: Age reached the forced catch-up limit.
        THRESHOLD_REACHED: Age reached the ordinary threshold.
        NOT_DUE: Age is below the threshold.
    """

    FIRST_BACKUP = "first_backup"
    NO_FALLBACK = "no_fallback"
    UNPARSEABLE = "unparseable"
    CLOCK_ANOMALY = "clock_anomaly"
    OVERDUE = "overdue"
    THRESHOLD_REACHED = "threshold_reached"
    NOT_DUE = "not_due"


@dataclass(frozen=True, slots=True)
class HistoryReading:
    """Result of reading the destination's backup history.

    Attributes:
        available: Whether the history listing could be read.
        snapshot_id: Latest snapshot ID, if any.
        access_denied: Whether the failure looked like a Full Disk Access block.
        returncode: Exit code of the listing command.
    """

    available: bool
    snapshot_id: str | None = None
    access_denied: bool = False
    returncode: int = 0


@dataclass(frozen=True, slots=True)
class BackupDecision:
    """Outcome of the backup-due evaluation.

    Attributes:
        due: Whether a backup should run now.
        reason: Why.
        source: Which timestamp source was used.
        last_backup_epoch: Timestamp the decision was based on, if any.
        elapsed_seconds: Age of that timestamp, if any.
    """

    due: bool
    reason: DecisionReason
    source: HistorySource
    last_backup_epoch: int | None = None
    elapsed_seconds: int | None = None

    @property
    def hours_since(self) -> int | None:
        """Whole hours since the last backup."""
        if self.elapsed_seconds is None:
            return None
        return int(self.elapsed_seconds / 3600)


def evaluate_age(
    last_epoch: int,
    now: int,
    *,
    threshold_seconds: int,
    max_stale_seconds: int,
) -> tuple[bool, DecisionReason]:
    """Apply the threshold rules to a known last-backup time.

    Returns:
        Tuple of (due, reason).
    """
    elapsed = now - last_epoch
    if elapsed < 0:
        return True, DecisionReason.CLOCK_ANOMALY
    if elapsed >= max_stale_seconds:
        return True, DecisionReason.OVERDUE
    if elapsed >= threshold_seconds:
        return True, DecisionReason.THRESHOLD_REACHED
    return False, DecisionReason.NOT_DUE


def decide(
    reading: HistoryReading,
    fallback_epoch: int | None,
    *,
    now: int,
    threshold_seconds: int,
    max_stale_seconds: int,
) -> BackupDecision:
    """Decide whether a backup is due.

    Args:
        reading: Backup history reading.
        fallback_epoch: Persisted last-success time; only consulted when
            the history is unavailable.
        now: Current epoch seconds.
        threshold_seconds: Ordinary minimum interval between backups.
        max_stale_seconds: Age at which a backup is forced regardless.

    Returns:
        The decision.
    """
    if reading.available:
        source = HistorySource.HISTORY
        if reading.snapshot_id is None:
            return BackupDecision(True, DecisionReason.FIRST_BACKUP, source)
        last_epoch = parse_snapshot_timestamp(reading.snapshot_id)
        if last_epoch is None:
            return BackupDecision(True, DecisionReason.UNPARSEABLE, source)
    else:
        source = HistorySource.FALLBACK
        if fallback_epoch is None:
            return BackupDecision(True, DecisionReason.NO_FALLBACK, source)
        last_epoch = fallback_epoch

    due, reason = evaluate_age(
        last_epoch,
        now,
        threshold_seconds=threshold_seconds,
        max_stale_seconds=max_stale_seconds,
    )
    return BackupDecision(due, reason, source, last_epoch, now - last_epoch)


class BackupDueEngine:
    """Reads backup history and decides whether a backup is due.

    Attributes:
        backup: Backup subsystem to query.
        state: Store holding the fallback last-success timestamps.
        config: Run configuration.
    """

    def __init__(
        self,
        backup: BackupService,
        state: StateStore,
        config: AutoBackupConfig,
        clock: Clock = time.time,
    ) -> None:
        self.backup = backup
        self.state = state
        self.config = config
        self._clock = clock

    def read_history(self, mount_path: str) -> HistoryReading:
        """Read the latest snapshot ID for the destination at ``mount_path``.

        Falls back to ``latestbackup`` when the listing succeeds but names
        no snapshot.
        """
        listing = self.backup.list_backups(mount_path)
        if not listing.success:
            return HistoryReading(
                available=False,
                access_denied=output_indicates_access_denied(listing.output),
                returncode=listing.returncode,
            )

        snapshot_id = extract_latest_snapshot_id(listing.stdout)
        if snapshot_id is None:
            snapshot_id = extract_latest_snapshot_id(self.backup.latest_backup(mount_path).stdout)
        return HistoryReading(available=True, snapshot_id=snapshot_id)

    def evaluate(self, destination_id: str, reading: HistoryReading) -> BackupDecision:
        """Decide whether a backup is due for a destination.

        On the history path the observed timestamp is persisted as the new
        fallback value whatever the decision; the fallback path never writes.

        Args:
            destination_id: Selected destination ID.
            reading: History reading from :meth:`read_history`.

        Returns:
            The decision.
        """
        now = int(self._clock())
        fallback_epoch = None
        if not reading.available:
            fallback_epoch = self.state.read_last_success(destination_id)

        decision = decide(
            reading,
            fallback_epoch,
            now=now,
            threshold_seconds=self.config.threshold_seconds,
            max_stale_seconds=self.config.max_fallback_state_age_seconds,
        )

        if decision.source == HistorySource.HISTORY and decision.last_backup_epoch is not None:
            self.state.write_last_success(destination_id, decision.last_backup_epoch)

        self._log_decision(decision, reading)
        return decision

    def _log_decision(self, decision: BackupDecision, reading: HistoryReading) -> None:
        """Log the decision the way the run log has always read."""
        reason = decision.reason
        if reason == DecisionReason.FIRST_BACKUP:
            logger.info("No previous backup found. Starting backup...")
            return
        if reason == DecisionReason.NO_FALLBACK:
            logger.info("Fallback state has no prior successful backup timestamp. Starting backup...")
            return
        if reason == DecisionReason.UNPARSEABLE:
            logger.info("Could not parse backup date (%s). Starting backup to be safe...", reading.snapshot_id)
            return

        if decision.source == HistorySource.HISTORY:
            logger.info("Last backup: %s (%s hours ago)", reading.snapshot_id, decision.hours_since)
        else:
            logger.info(
                "Fallback state: last successful backup run was %s hours ago",
                decision.hours_since,
            )

        if reason == DecisionReason.CLOCK_ANOMALY:
            logger.info("Detected backup timestamp in the future; forcing backup check")
        elif reason == DecisionReason.OVERDUE:
            logger.info(
                "Last backup age exceeded %d hours; forcing backup attempt",
                self.config.max_fallback_state_age_hours,
            )
        elif reason == DecisionReason.NOT_DUE:
            logger.info("Backup not needed (threshold: %d hours)", self.config.backup_threshold_hours)
