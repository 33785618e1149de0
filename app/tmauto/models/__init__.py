"""Data models for tmauto.

This module exports the core data structures used throughout the application.
"""

from tmauto.models.destination import Destination, DestinationKind, SelectedDestination
from tmauto.models.outcome import (
    BackupAttempt,
    BackupStatus,
    EjectResult,
    ExecutionResult,
    ExecutionStatus,
    RunOutcome,
    RunReport,
    RunStage,
)

__all__ = [
    "BackupAttempt",
    "BackupStatus",
    "Destination",
    "DestinationKind",
    "EjectResult",
    "ExecutionResult",
    "ExecutionStatus",
    "RunOutcome",
    "RunReport",
    "RunStage",
    "SelectedDestination",
]
