"""Process inspection helpers.

Used by the run lock to decide whether a recorded owner process is still
the same live tmauto invocation. Relies on ``ps`` so that the command line
and start time of arbitrary PIDs can be read without extra dependencies.
"""

import os

from tmauto.utils.shell import run_tool


def pid_exists(pid: int) -> bool:
    """Check whether a process with the given PID exists.

    Args:
        pid: Process identifier.

    Returns:
        True if the process exists (even if owned by another user).
    """
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False
    return True


def read_command_line(pid: int) -> str | None:
    """Read the full command line of a process.

    Args:
        pid: Process identifier.

    Returns:
        Command line string, or None if the process cannot be inspected.
    """
    result = run_tool(["ps", "-p", str(pid), "-o", "command="], timeout=10.0)
    if not result.success:
        return None
    lines = result.stdout.strip().splitlines()
    return lines[0].strip() if lines and lines[0].strip() else None


def read_start_key(pid: int) -> str | None:
    """Read a stable start-time key for a process.

    The key is the whitespace-normalized ``lstart`` column, which changes
    if the PID is reused by a different process.

    Args:
        pid: Process identifier.

    Returns:
        Start-time key, or None if it cannot be read.
    """
    result = run_tool(["ps", "-p", str(pid), "-o", "lstart="], timeout=10.0)
    if not result.success:
        return None
    key = " ".join(result.stdout.split())
    return key or None
