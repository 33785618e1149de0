"""Backends for the external backup and volume subsystems."""

from tmauto.backends.base import BackupService, VolumeService
from tmauto.backends.diskutil import DiskutilService
from tmauto.backends.tmutil import TmutilService

__all__ = ["BackupService", "DiskutilService", "TmutilService", "VolumeService"]
