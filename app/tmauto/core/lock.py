"""Single-instance run lock.

A run holds an exclusive directory at a well-known path for its whole
duration. Creating a directory is atomic, so exactly one of several
concurrent runs can succeed. Ownership metadata inside the directory lets a
later run tell a live owner from a crashed one and reclaim stale locks.
"""

import json
import logging
import os
import secrets
import shutil
import sys
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Any

from tmauto.core.paths import LOCK_DIR_NAME, get_lock_dir
from tmauto.core.polling import Clock
from tmauto.utils.process import pid_exists, read_command_line, read_start_key

logger = logging.getLogger(__name__)

# A live owner's command line must contain this to count as a tmauto run.
COMMAND_MARKER = "tmauto"


@dataclass(frozen=True, slots=True)
class LockRecord:
    """Ownership metadata stored in the lock directory.

    Attributes:
        pid: Owner process ID.
        created_epoch: When the lock was taken.
        command: Owner's full command line at acquisition time.
        start_key: Owner's process start time, guards against PID reuse.
    """

    pid: int | None
    created_epoch: int | None
    command: str | None = None
    start_key: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON storage."""
        return {
            "pid": self.pid,
            "created_epoch": self.created_epoch,
            "command": self.command,
            "start_key": self.start_key,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LockRecord":
        """Deserialize from dictionary, dropping values of the wrong type."""
        pid = data.get("pid")
        created = data.get("created_epoch")
        command = data.get("command")
        start_key = data.get("start_key")
        return cls(
            pid=pid if isinstance(pid, int) and not isinstance(pid, bool) and pid > 0 else None,
            created_epoch=created if isinstance(created, int) else None,
            command=command if isinstance(command, str) and command else None,
            start_key=start_key if isinstance(start_key, str) and start_key else None,
        )


class LockStatus(Enum):
    """Result of an acquisition attempt."""

    ACQUIRED = "acquired"
    DENIED = "denied"


@dataclass(frozen=True, slots=True)
class LockResult:
    """Outcome of :meth:`RunLock.acquire`.

    Attributes:
        status: ACQUIRED or DENIED.
        reason: Why the lock was denied.
    """

    status: LockStatus
    reason: str | None = None

    @property
    def acquired(self) -> bool:
        """Check if the lock was acquired."""
        return self.status == LockStatus.ACQUIRED


class RunLock:
    """Directory-based mutual exclusion across tmauto runs.

    Acquisition never blocks: a run that cannot take the lock exits and
    leaves the work to whichever run holds it.

    Example:
        >>> lock = RunLock()
        >>> result = lock.acquire()
        >>> if result.acquired:
        ...     try:
        ...         ...
        ...     finally:
        ...         lock.release()
    """

    OWNER_FILENAME = "owner.json"

    def __init__(
        self,
        lock_dir: Path | None = None,
        *,
        max_pid_wait_seconds: int = 5,
        stale_seconds: int = 1200,
        clock: Clock = time.time,
        pid: int | None = None,
    ) -> None:
        """Initialize the lock.

        Args:
            lock_dir: Lock directory. Default: ~/.cache/tmauto/run.lock
            max_pid_wait_seconds: Ownerless locks younger than this belong to
                a run that has not finished writing its metadata.
            stale_seconds: Ownerless locks older than this are plainly stale.
            clock: Time source returning epoch seconds.
            pid: Process ID recorded as owner. Default: this process.
        """
        self._lock_dir = lock_dir if lock_dir is not None else get_lock_dir()
        self._max_pid_wait_seconds = max_pid_wait_seconds
        self._stale_seconds = stale_seconds
        self._clock = clock
        self._pid = pid if pid is not None else os.getpid()
        self._held = False

    @property
    def lock_dir(self) -> Path:
        """Path of the lock directory."""
        return self._lock_dir

    @property
    def owner_path(self) -> Path:
        """Path of the ownership metadata file."""
        return self._lock_dir / self.OWNER_FILENAME

    @property
    def held(self) -> bool:
        """Check if this instance currently holds the lock."""
        return self._held

    def acquire(self) -> LockResult:
        """Try to take the lock without waiting.

        Returns:
            LockResult; DENIED if another live run holds the lock, if an
            ownerless lock is too young to reclaim, or if reclamation failed.
        """
        if self._held:
            return LockResult(LockStatus.ACQUIRED)

        try:
            self._lock_dir.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error("Cannot create lock parent directory: %s", e)
            return LockResult(LockStatus.DENIED, "lock directory unavailable")

        if self._try_create():
            return LockResult(LockStatus.ACQUIRED)

        if not self._lock_dir.is_dir():
            logger.error("Lock directory could not be created and does not exist; exiting")
            return LockResult(LockStatus.DENIED, "lock directory unavailable")

        identity = _dir_identity(self._lock_dir)
        record = self.read_record()
        if record is not None and self.is_owner_live(record):
            logger.info("Another run is already in progress (pid: %s); exiting", record.pid)
            return LockResult(LockStatus.DENIED, f"in progress (pid {record.pid})")

        age = self._lock_age(record)
        if record is None or record.pid is None:
            if age is not None and age < self._max_pid_wait_seconds:
                logger.info(
                    "Lock exists without a valid PID and is only %ss old; "
                    "assuming active setup race, exiting",
                    age,
                )
                return LockResult(LockStatus.DENIED, "setup in progress")
            if age is not None and age < self._stale_seconds:
                logger.info(
                    "Lock exists without a valid PID for %ss; reclaiming stale setup-race lock",
                    age,
                )

        logger.info(
            "Removing stale lock (pid: %s, age: %ss)",
            record.pid if record and record.pid else "missing",
            age if age is not None else "unknown",
        )
        if not self._reclaim(identity, record):
            logger.info("Stale lock was not reclaimed; exiting")
            return LockResult(LockStatus.DENIED, "stale lock could not be reclaimed")

        if self._try_create():
            return LockResult(LockStatus.ACQUIRED)

        logger.info("Could not acquire lock; exiting")
        return LockResult(LockStatus.DENIED, "lost reclaim race")

    def release(self) -> None:
        """Release the lock if held. Safe to call more than once."""
        if not self._held:
            return
        self._held = False
        try:
            self.owner_path.unlink(missing_ok=True)
            self._lock_dir.rmdir()
        except OSError as e:
            logger.warning("Could not remove lock directory %s: %s", self._lock_dir, e)

    def read_record(self) -> LockRecord | None:
        """Read the current owner record, if present and parseable."""
        return self._read_record_at(self._lock_dir)

    def _read_record_at(self, lock_dir: Path) -> LockRecord | None:
        try:
            data = json.loads((lock_dir / self.OWNER_FILENAME).read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as e:
            logger.debug("Unreadable lock metadata: %s", e)
            return None
        if not isinstance(data, dict):
            return None
        return LockRecord.from_dict(data)

    def is_owner_live(self, record: LockRecord) -> bool:
        """Check if the recorded owner is still the same live tmauto run.

        The owner is live only if its process exists, its start time (when
        recorded) is unchanged, and its command line still looks like a
        tmauto invocation.

        Args:
            record: Lock record to verify.

        Returns:
            True if the owner is live.
        """
        if record.pid is None or not pid_exists(record.pid):
            return False

        current_command = read_command_line(record.pid)
        if not current_command:
            return False

        if record.start_key:
            current_start = read_start_key(record.pid)
            if not current_start or current_start != record.start_key:
                return False

        if COMMAND_MARKER in current_command:
            return True
        return bool(record.command) and current_command == record.command

    def _try_create(self) -> bool:
        """Atomically create the lock directory and record ownership."""
        try:
            self._lock_dir.mkdir()
        except FileExistsError:
            return False
        except OSError as e:
            logger.error("Could not create lock directory %s: %s", self._lock_dir, e)
            return False

        self._held = True
        try:
            self._write_record()
        except OSError as e:
            # The directory alone still excludes other runs.
            logger.warning("Could not write lock metadata: %s", e)
        return True

    def _write_record(self) -> None:
        """Write this process's ownership record into the lock directory."""
        record = LockRecord(
            pid=self._pid,
            created_epoch=int(self._clock()),
            command=read_command_line(self._pid) or " ".join(sys.argv),
            start_key=read_start_key(self._pid),
        )
        with NamedTemporaryFile(
            mode="w",
            encoding="utf-8",
            dir=self._lock_dir,
            delete=False,
            suffix=".tmp",
        ) as f:
            tmp_path = Path(f.name)
            json.dump(record.to_dict(), f)
        os.replace(tmp_path, self.owner_path)

    def _lock_age(self, record: LockRecord | None) -> int | None:
        """Age of the lock in seconds, from metadata or directory mtime."""
        now = int(self._clock())
        if record is not None and record.created_epoch is not None:
            return now - record.created_epoch
        try:
            return now - int(self._lock_dir.stat().st_mtime)
        except OSError:
            return None

    def _reclaim(self, identity: tuple[int, int] | None, record: LockRecord | None) -> bool:
        """Move a stale lock aside and delete it.

        Only the lock that was judged stale is ever deleted: the directory is
        renamed to a unique tombstone first, and put back if the tombstone
        turns out to be a lock another run created in the meantime.

        Args:
            identity: Device and inode of the lock directory when judged.
            record: Owner record read when judged.

        Returns:
            True if the lock path is free.
        """
        if not self._is_safe_lock_path():
            logger.error("Refusing unsafe lock cleanup path: %s", self._lock_dir)
            return False
        if _dir_identity(self._lock_dir) != identity or self.read_record() != record:
            logger.info("Lock changed while being reclaimed; leaving it to its new owner")
            return False

        tombstone = self._lock_dir.with_name(
            f"{LOCK_DIR_NAME}.stale-{self._pid}-{secrets.token_hex(4)}"
        )
        try:
            os.rename(self._lock_dir, tombstone)
        except FileNotFoundError:
            return True
        except OSError as e:
            logger.error("Could not move stale lock aside: %s", e)
            return False

        if _dir_identity(tombstone) != identity or self._read_record_at(tombstone) != record:
            logger.info("Lock was replaced while being reclaimed; restoring it")
            self._restore(tombstone)
            return False

        try:
            shutil.rmtree(tombstone)
        except OSError as e:
            logger.warning("Could not delete stale lock %s: %s", tombstone, e)
        return True

    def _restore(self, tombstone: Path) -> None:
        """Put a lock moved aside by mistake back in place."""
        if self._lock_dir.exists():
            logger.error("Cannot restore lock from %s: %s exists again", tombstone, self._lock_dir)
            return
        try:
            os.rename(tombstone, self._lock_dir)
        except OSError as e:
            logger.error("Could not restore lock from %s: %s", tombstone, e)

    def _is_safe_lock_path(self) -> bool:
        """Check that reclamation can only ever move the lock directory."""
        path = self._lock_dir
        return path.is_absolute() and path.name == LOCK_DIR_NAME and not path.is_symlink()


def _dir_identity(path: Path) -> tuple[int, int] | None:
    """Device and inode of ``path``, or None if it does not exist."""
    try:
        st = path.stat()
    except OSError:
        return None
    return (st.st_dev, st.st_ino)
