"""Persisted run state.

This module provides the StateStore class for the small epoch files tmauto
keeps between runs: the per-destination last-success timestamp used when
backup history cannot be read, and notification cooldown markers.
"""

import logging
import os
import re
from pathlib import Path
from tempfile import NamedTemporaryFile

from tmauto.core.paths import get_state_dir

logger = logging.getLogger(__name__)

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def atomic_write_text(path: Path, text: str) -> None:
    """Replace a file's contents atomically.

    Writes to a temporary file in the same directory and renames it over
    the target, so readers see either the old or the new content.

    Args:
        path: File to write.
        text: New content.

    Raises:
        OSError: If the file cannot be written.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path: Path | None = None
    try:
        with NamedTemporaryFile(
            mode="w",
            encoding="utf-8",
            dir=path.parent,
            delete=False,
            suffix=".tmp",
        ) as f:
            tmp_path = Path(f.name)
            f.write(text)
        os.replace(tmp_path, path)
    except OSError:
        if tmp_path is not None and tmp_path.exists():
            tmp_path.unlink()
        raise


def destination_state_key(destination_id: str) -> str | None:
    """Turn a destination ID into a filename-safe key.

    Args:
        destination_id: Destination ID as reported by tmutil.

    Returns:
        Upper-cased ID restricted to ``[A-Za-z0-9._-]``, or None if nothing
        usable remains.
    """
    safe = _UNSAFE_KEY_CHARS.sub("", destination_id.upper())
    return safe or None


class StateStore:
    """Manages epoch state files in the state directory.

    Storage location: ~/.local/state/tmauto/

    Attributes:
        state_dir: Directory containing the state files.
    """

    SHARED_SUCCESS_FILENAME = "last-successful-backup.epoch"

    def __init__(self, state_dir: Path | None = None) -> None:
        """Initialize StateStore.

        Args:
            state_dir: Optional override for state directory.
                      Default: ~/.local/state/tmauto
        """
        self._state_dir = state_dir if state_dir is not None else get_state_dir()

    @property
    def state_dir(self) -> Path:
        """Directory containing the state files."""
        return self._state_dir

    def last_success_path(self, destination_id: str | None) -> Path:
        """Path of the fallback last-success file for a destination.

        IDs that cannot be turned into a safe key share a single slot.
        """
        key = destination_state_key(destination_id) if destination_id else None
        if key is None:
            return self._state_dir / self.SHARED_SUCCESS_FILENAME
        return self._state_dir / f"last-successful-backup.{key}.epoch"

    def read_last_success(self, destination_id: str | None) -> int | None:
        """Read the fallback last-success epoch for a destination."""
        return self.read_epoch(self.last_success_path(destination_id))

    def write_last_success(self, destination_id: str | None, epoch: int) -> None:
        """Persist the fallback last-success epoch for a destination.

        Errors are logged, not raised: losing the fallback only means a
        later degraded run may back up earlier than strictly needed.
        """
        path = self.last_success_path(destination_id)
        try:
            self.write_epoch(path, epoch)
        except OSError as e:
            logger.warning("Could not write last-success state %s: %s", path, e)

    def known_success_epochs(self) -> dict[str, int]:
        """Return all stored last-success epochs keyed by destination key.

        The shared slot is reported under the key ``"*"``.
        """
        result: dict[str, int] = {}
        if not self._state_dir.is_dir():
            return result
        for path in sorted(self._state_dir.glob("last-successful-backup*.epoch")):
            epoch = self.read_epoch(path)
            if epoch is None:
                continue
            if path.name == self.SHARED_SUCCESS_FILENAME:
                result["*"] = epoch
            else:
                result[path.name.removeprefix("last-successful-backup.").removesuffix(".epoch")] = (
                    epoch
                )
        return result

    def notice_path(self, name: str) -> Path:
        """Path of the cooldown marker for a notification kind."""
        return self._state_dir / f"notice-{name}.epoch"

    def notice_due(self, name: str, cooldown_seconds: int, now: int) -> bool:
        """Check if a cooldown-gated notification may be shown again.

        A marker written in the future (clock moved back) does not suppress.
        """
        last = self.read_epoch(self.notice_path(name))
        if last is None:
            return True
        age = now - last
        return not (0 <= age < cooldown_seconds)

    def mark_notice(self, name: str, now: int) -> None:
        """Record that a cooldown-gated notification was shown."""
        path = self.notice_path(name)
        try:
            self.write_epoch(path, now)
        except OSError as e:
            logger.warning("Could not write notice state %s: %s", path, e)

    @staticmethod
    def read_epoch(path: Path) -> int | None:
        """Read a non-negative integer epoch from a file.

        Returns:
            The epoch, or None if the file is missing or malformed.
        """
        try:
            value = path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.debug("Cannot read state file %s: %s", path, e)
            return None
        return int(value) if value.isascii() and value.isdigit() else None

    @staticmethod
    def write_epoch(path: Path, epoch: int) -> None:
        """Write an epoch to a file atomically.

        Raises:
            OSError: If the file cannot be written.
        """
        atomic_write_text(path, f"{epoch}\n")
