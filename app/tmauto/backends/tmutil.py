"""Time Machine backend implementation.

Wraps the ``tmutil`` command-line tool.
"""

import logging
import re

from tmauto.backends.base import BackupService
from tmauto.utils.shell import CommandResult, command_exists, run_tool

logger = logging.getLogger(__name__)

_RUNNING_PATTERN = re.compile(r"Running\s*=\s*1;")


class TmutilService(BackupService):
    """BackupService backed by ``tmutil``.

    Attributes:
        timeout: Timeout in seconds for individual tmutil calls.
    """

    def __init__(self, timeout: float = 120.0) -> None:
        """Initialize the service.

        Args:
            timeout: Timeout in seconds for individual tmutil calls.
        """
        self.timeout = timeout

    def is_available(self) -> bool:
        """Check if tmutil is available."""
        return command_exists("tmutil")

    def destination_info(self) -> str | None:
        """Run ``tmutil destinationinfo -X``."""
        result = run_tool(["tmutil", "destinationinfo", "-X"], timeout=self.timeout)
        if not result.success:
            logger.debug("tmutil destinationinfo failed (exit %d)", result.returncode)
            return None
        return result.stdout if result.stdout.strip() else None

    def is_running(self) -> bool:
        """Check ``tmutil status`` for ``Running = 1;``."""
        result = run_tool(["tmutil", "status"], timeout=self.timeout)
        return result.success and _RUNNING_PATTERN.search(result.stdout) is not None

    def status_ok(self) -> bool:
        """Check if ``tmutil status`` succeeds."""
        return run_tool(["tmutil", "status"], timeout=self.timeout).success

    def start_backup(self, destination_id: str) -> CommandResult:
        """Run ``tmutil startbackup --auto --destination <id>``."""
        logger.debug("Requesting backup to destination %s", destination_id)
        return run_tool(
            ["tmutil", "startbackup", "--auto", "--destination", destination_id],
            timeout=self.timeout,
        )

    def list_backups(self, mount_path: str) -> CommandResult:
        """Run ``tmutil listbackups -d <mount>``."""
        return run_tool(["tmutil", "listbackups", "-d", mount_path], timeout=self.timeout)

    def latest_backup(self, mount_path: str) -> CommandResult:
        """Run ``tmutil latestbackup -d <mount>``."""
        return run_tool(["tmutil", "latestbackup", "-d", mount_path], timeout=self.timeout)
