"""Subprocess helpers for the macOS tools tmauto drives.

tmutil, diskutil, ps and osascript are all run through :func:`run_tool`,
which turns every way a tool can fail into a :class:`CommandResult`.
"""

import logging
import shutil
import subprocess
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# Exit codes reported when a tool could not be launched or was killed on timeout
LAUNCH_FAILED = 127
TIMED_OUT = 124


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Captured outcome of one tool invocation.

    Attributes:
        stdout: Captured standard output.
        stderr: Captured standard error.
        returncode: Process exit status (or LAUNCH_FAILED / TIMED_OUT).
    """

    stdout: str
    stderr: str
    returncode: int

    @property
    def success(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        """Combined stdout and stderr, in that order."""
        if self.stdout and self.stderr:
            return f"{self.stdout.rstrip()}\n{self.stderr}"
        return self.stdout or self.stderr


def run_command(args: list[str], *, timeout: float | None = 60.0) -> CommandResult:
    """Run a command with captured text output.

    Raises:
        FileNotFoundError: If the executable does not exist.
        subprocess.TimeoutExpired: If the command exceeds ``timeout``.
    """
    completed = subprocess.run(args, capture_output=True, text=True, timeout=timeout)
    return CommandResult(
        stdout=completed.stdout,
        stderr=completed.stderr,
        returncode=completed.returncode,
    )


def run_tool(args: list[str], *, timeout: float | None = 60.0) -> CommandResult:
    """Run a system tool without raising.

    A missing executable, an OS error or a timeout is logged and reported
    as a failed result, so callers handle every tool failure the same way.

    Args:
        args: Command and arguments.
        timeout: Seconds before the tool is killed.

    Returns:
        CommandResult; returncode is LAUNCH_FAILED if the tool could not be
        started and TIMED_OUT if it was killed.
    """
    try:
        return run_command(args, timeout=timeout)
    except FileNotFoundError as e:
        logger.debug("Command not found: %s (%s)", args[0], e)
        return CommandResult(stdout="", stderr=str(e), returncode=LAUNCH_FAILED)
    except subprocess.TimeoutExpired:
        logger.warning("Command timed out after %ss: %s", timeout, " ".join(args))
        return CommandResult(stdout="", stderr="timed out", returncode=TIMED_OUT)
    except OSError as e:
        logger.warning("Could not execute %s: %s", args[0], e)
        return CommandResult(stdout="", stderr=str(e), returncode=LAUNCH_FAILED)


def command_exists(name: str) -> bool:
    """Check whether ``name`` resolves on PATH."""
    return shutil.which(name) is not None
