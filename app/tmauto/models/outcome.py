"""Outcome models for backup runs.

Each component reports a typed result; the orchestrator folds them into a
single RunOutcome, and only the CLI maps that to a process exit code.
"""

from dataclasses import dataclass, field
from enum import Enum


class BackupStatus(Enum):
    """Result of a single start-and-supervise backup attempt.

    Attributes:
        SUCCESS: Backup started and the running flag cleared.
        TIMED_OUT: Backup still active when the block timeout elapsed.
        ALREADY_RUNNING: Start refused because another backup is active.
        FAILED: Start refused for any other reason.
    """

    SUCCESS = "success"
    TIMED_OUT = "timed_out"
    ALREADY_RUNNING = "already_running"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class BackupAttempt:
    """Outcome of one call to start and supervise a backup.

    Attributes:
        status: What happened.
        returncode: Exit code of the start command.
        output: Combined output of the start command.
    """

    status: BackupStatus
    returncode: int = 0
    output: str = ""


class ExecutionStatus(Enum):
    """Final result of the backup step including contention handling.

    Attributes:
        SUCCEEDED: Backup completed (and verified, if required).
        UNVERIFIED: Backup finished but no new snapshot could be confirmed.
        STILL_RUNNING: A competing backup did not finish within the wait ceiling.
        TIMED_OUT: Our backup did not finish within the block timeout.
        FAILED: The backup could not be started.
    """

    SUCCEEDED = "succeeded"
    UNVERIFIED = "unverified"
    STILL_RUNNING = "still_running"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class ExecutionResult:
    """Outcome of the backup step.

    Attributes:
        status: Final status.
        snapshot_id: Latest snapshot ID after the backup, if readable.
        returncode: Exit code of the last start attempt.
        retried: Whether a second start was issued after contention.
        access_denied: Whether the failure looked like a Full Disk Access block.
    """

    status: ExecutionStatus
    snapshot_id: str | None = None
    returncode: int = 0
    retried: bool = False
    access_denied: bool = False


class EjectResult(Enum):
    """Outcome of the eject protocol.

    Attributes:
        EJECTED: Volume is no longer mounted.
        STILL_IN_USE: All attempts failed; volume left connected.
        BACKUP_RESUMED: A backup became active; eject aborted.
    """

    EJECTED = "ejected"
    STILL_IN_USE = "still_in_use"
    BACKUP_RESUMED = "backup_resumed"


class RunStage(Enum):
    """States of the per-run state machine, in order of progress."""

    START = "start"
    LOCK_HELD = "lock_held"
    CATALOG_RESOLVED = "catalog_resolved"
    MOUNT_CONFIRMED = "mount_confirmed"
    NOT_DUPLICATE = "not_duplicate"
    DECISION_MADE = "decision_made"
    BACKUP_EXECUTED = "backup_executed"
    BACKUP_SKIPPED = "backup_skipped"
    EJECT_DECIDED = "eject_decided"
    COMMITTED = "committed"
    EARLY_EXIT = "early_exit"


class RunOutcome(Enum):
    """Terminal outcome of a run.

    The second element of each value is the process exit code: 0 for runs
    that ended cleanly (including skips and deferrals), 1 for runs that need
    operator attention.
    """

    LOCK_DENIED = ("lock_denied", 0)
    NO_CATALOG = ("no_catalog", 0)
    NO_LOCAL_MOUNTED = ("no_local_mounted", 0)
    AMBIGUOUS = ("ambiguous", 0)
    PREFERRED_NOT_FOUND = ("preferred_not_found", 0)
    NO_DESTINATION = ("no_destination", 0)
    MISSING_ID = ("missing_id", 0)
    NOT_MOUNTED = ("not_mounted", 0)
    DUPLICATE = ("duplicate", 0)
    STILL_RUNNING = ("still_running", 0)
    BACKUP_UNVERIFIED = ("backup_unverified", 0)
    BACKUP_RESUMED = ("backup_resumed", 0)
    EJECTED = ("ejected", 0)
    LEFT_MOUNTED = ("left_mounted", 0)
    ACCESS_BLOCKED = ("access_blocked", 1)
    BACKUP_TIMED_OUT = ("backup_timed_out", 1)
    BACKUP_FAILED = ("backup_failed", 1)
    EJECT_FAILED = ("eject_failed", 1)

    @property
    def label(self) -> str:
        """Machine-friendly outcome name."""
        return self.value[0]

    @property
    def exit_code(self) -> int:
        """Process exit code for this outcome."""
        return self.value[1]

    @property
    def needs_attention(self) -> bool:
        """Check if the outcome should be surfaced to the operator."""
        return self.exit_code != 0


@dataclass(slots=True)
class RunReport:
    """Trace of a single run.

    Attributes:
        outcome: Terminal outcome, set when the run finishes.
        stages: States visited, in order.
        destination_id: ID of the selected destination, if one was selected.
        mount_path: Resolved mount path, if one was confirmed.
        backup_performed: Whether a backup was executed.
        committed: Whether the duplicate-suppression signature was written.
    """

    outcome: RunOutcome | None = None
    stages: list[RunStage] = field(default_factory=lambda: [RunStage.START])
    destination_id: str | None = None
    mount_path: str | None = None
    backup_performed: bool = False
    committed: bool = False

    def enter(self, stage: RunStage) -> None:
        """Record a state transition."""
        self.stages.append(stage)

    def finish(self, outcome: RunOutcome) -> "RunReport":
        """Set the terminal outcome and return self."""
        self.outcome = outcome
        return self

    def exit_early(self, outcome: RunOutcome) -> "RunReport":
        """Record a transition to EARLY_EXIT with the given outcome."""
        self.stages.append(RunStage.EARLY_EXIT)
        return self.finish(outcome)

    @property
    def exit_code(self) -> int:
        """Exit code of the run (0 while unfinished)."""
        return self.outcome.exit_code if self.outcome is not None else 0
