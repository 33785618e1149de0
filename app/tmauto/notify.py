"""Desktop notifications via AppleScript.

Notifications are fire-and-forget: a failure to display one is logged and
never affects the run.
"""

import logging
import time

from tmauto.core.polling import Clock
from tmauto.core.state import StateStore
from tmauto.utils.shell import command_exists, run_tool

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Time Machine Auto-Backup"
ALERT_SOUND = "Basso"

ACCESS_NOTICE = "full-disk-access"
AMBIGUITY_NOTICE = "ambiguous-destinations"


def escape_applescript(value: str) -> str:
    """Escape a value for use inside an AppleScript string literal."""
    return value.replace("\\", "\\\\").replace('"', '\\"')


def build_notification_script(message: str, title: str, sound: str | None = None) -> str:
    """Build the ``display notification`` AppleScript statement."""
    script = (
        f'display notification "{escape_applescript(message)}" '
        f'with title "{escape_applescript(title)}"'
    )
    if sound:
        script += f' sound name "{escape_applescript(sound)}"'
    return script


class Notifier:
    """Shows user notifications, optionally rate-limited per kind.

    Attributes:
        enabled: Whether notifications are shown at all.
        state: Store for cooldown markers; without one, cooldowns are ignored.
    """

    def __init__(
        self,
        enabled: bool = True,
        state: StateStore | None = None,
        clock: Clock = time.time,
    ) -> None:
        self.enabled = enabled
        self.state = state
        self._clock = clock

    def notify(self, message: str, *, title: str = DEFAULT_TITLE, sound: str | None = None) -> bool:
        """Show a notification.

        Returns:
            True if the notification was displayed.
        """
        if not self.enabled:
            return False
        if self._deliver(message, title, sound):
            return True
        logger.warning("Could not display notification: %s | %s", title, message)
        return False

    def alert(self, message: str) -> bool:
        """Show a notification with the alert sound."""
        return self.notify(message, sound=ALERT_SOUND)

    def notify_once_per_window(self, name: str, message: str, cooldown_seconds: int) -> bool:
        """Show an alert unless one of the same kind was shown recently.

        The cooldown marker is written even if displaying fails, so a broken
        notification setup does not retry on every run.

        Args:
            name: Notification kind, used for the cooldown marker file.
            message: Text to show.
            cooldown_seconds: Minimum interval between alerts of this kind.

        Returns:
            True if the alert was attempted.
        """
        now = int(self._clock())
        if self.state is not None and not self.state.notice_due(name, cooldown_seconds, now):
            logger.debug("Suppressing %s notification (cooldown)", name)
            return False
        self.alert(message)
        if self.state is not None:
            self.state.mark_notice(name, now)
        return True

    def _deliver(self, message: str, title: str, sound: str | None) -> bool:
        """Run osascript to display the notification."""
        if not command_exists("osascript"):
            logger.debug("osascript not available; notification skipped")
            return False
        script = build_notification_script(message, title, sound)
        return run_tool(["osascript", "-e", script], timeout=10.0).success
