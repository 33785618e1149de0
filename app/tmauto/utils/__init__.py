"""Utility modules for tmauto.

This module exports commonly used utility functions.
"""

from tmauto.utils.formatting import (
    console,
    err_console,
    print_error,
    print_info,
    print_success,
    print_warning,
)
from tmauto.utils.shell import CommandResult, command_exists, run_command, run_tool

__all__ = [
    "CommandResult",
    "command_exists",
    "console",
    "err_console",
    "print_error",
    "print_info",
    "print_success",
    "print_warning",
    "run_command",
    "run_tool",
]
