"""Duplicate trigger suppression.

Mount notifications fire for every volume mounted on the system, and one
physical attach can produce several of them. The suppressor remembers the
last mount instance a run fully handled so that repeated triggers for the
same instance within a short window are ignored.
"""

import json
import logging
import os
import secrets
from dataclasses import dataclass
from pathlib import Path

from tmauto.backends.base import VolumeService
from tmauto.core.paths import get_state_dir
from tmauto.core.state import atomic_write_text

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class MountSignature:
    """Fingerprint of one mount instance of one destination.

    Attributes:
        destination_id: Destination ID.
        mount_path: Resolved mount path.
        instance: Mount instance identity (root inode), which changes when
            the same volume is mounted again at the same path.
    """

    destination_id: str
    mount_path: str
    instance: str

    @property
    def value(self) -> str:
        """Serialized signature ``id|path|instance``."""
        return f"{self.destination_id or 'unknown'}|{self.mount_path}|{self.instance}"

    @classmethod
    def capture(
        cls,
        destination_id: str,
        mount_path: str,
        volumes: VolumeService,
        now: int,
    ) -> "MountSignature":
        """Build the signature of the current mount.

        If the mount instance cannot be determined, a unique placeholder is
        used so the signature never matches a stored one.
        """
        instance = volumes.mount_instance_id(mount_path)
        if not instance:
            instance = f"ino-fallback-{now}-{os.getpid()}-{secrets.randbelow(32768)}"
            logger.info(
                "Could not determine mount inode for %s; using fallback signature component",
                mount_path,
            )
        return cls(destination_id=destination_id, mount_path=mount_path, instance=instance)


@dataclass(frozen=True, slots=True)
class SuppressionState:
    """Persisted record of the last handled mount instance."""

    signature: str
    epoch: int


class DuplicateSuppressor:
    """Collapses redundant triggers for an already handled mount instance.

    Storage location: ~/.local/state/tmauto/last-processed-mount.json
    """

    FILENAME = "last-processed-mount.json"

    def __init__(self, state_dir: Path | None = None, window_seconds: int = 120) -> None:
        """Initialize the suppressor.

        Args:
            state_dir: Optional override for state directory.
            window_seconds: Duplicate window in seconds.
        """
        self._state_dir = state_dir if state_dir is not None else get_state_dir()
        self._window_seconds = window_seconds

    @property
    def state_path(self) -> Path:
        """Path to the suppression state file."""
        return self._state_dir / self.FILENAME

    def read(self) -> SuppressionState | None:
        """Read the stored signature and timestamp, if complete and valid."""
        try:
            data = json.loads(self.state_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable suppression state: %s", e)
            return None

        if not isinstance(data, dict):
            return None
        signature = data.get("signature")
        epoch = data.get("epoch")
        if not isinstance(signature, str) or not signature:
            return None
        if not isinstance(epoch, int) or isinstance(epoch, bool):
            return None
        return SuppressionState(signature=signature, epoch=epoch)

    def should_skip(self, signature: str, now: int) -> bool:
        """Check if this mount instance was handled within the window.

        Args:
            signature: Current mount signature value.
            now: Current epoch seconds.

        Returns:
            True iff the stored signature matches and ``0 <= age < window``.
        """
        state = self.read()
        if state is None or state.signature != signature:
            return False
        age = now - state.epoch
        return 0 <= age < self._window_seconds

    def commit(self, signature: str, now: int) -> None:
        """Record a fully handled mount instance, replacing any previous one."""
        payload = json.dumps({"signature": signature, "epoch": now})
        try:
            atomic_write_text(self.state_path, payload + "\n")
        except OSError as e:
            logger.warning("Could not write suppression state: %s", e)

    def clear(self) -> None:
        """Forget the last handled mount so the next trigger acts again."""
        try:
            self.state_path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Could not clear suppression state: %s", e)
