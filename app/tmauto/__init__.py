"""tmauto - automatic Time Machine backups for attached destination disks."""

__version__ = "0.3.0"
