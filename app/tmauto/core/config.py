"""Run configuration and settings.

This module provides the immutable configuration model for tmauto runs and
the I/O functions to load and save it.

Configuration is stored in ~/.config/tmauto/config.toml. Every key is
optional; invalid values never abort a run but are replaced by their
default with a correction warning.
"""

import logging
import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Annotated, Any

import tomli_w
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    field_validator,
)

from tmauto.core.paths import get_config_path

logger = logging.getLogger(__name__)

_UUID_LIKE = re.compile(r"^[0-9A-Fa-f-]+$")


class AutoBackupConfig(BaseModel):
    """Validated settings for a tmauto run.

    Attributes:
        backup_threshold_hours: Minimum hours between backups.
        duplicate_window_seconds: Ignore repeated triggers for the same
            mount instance within this many seconds.
        allow_automount: Try to mount the destination when it is attached
            but not mounted.
        eject_when_no_backup: Eject even when no backup was needed.
        require_snapshot_verification: Require a new snapshot ID before
            treating a backup as complete.
        access_notify_cooldown_seconds: Minimum interval between Full Disk
            Access notifications.
        ambiguity_notify_cooldown_seconds: Minimum interval between
            "multiple local destinations" notifications.
        eject_retry_attempts: Number of eject attempts.
        running_backup_poll_seconds: Poll interval while waiting for an
            already-running backup.
        wait_for_running_backup_max_seconds: Ceiling for that wait.
        lock_stale_seconds: Age after which an ownerless lock is called stale.
        max_lock_pid_wait_seconds: Ownerless locks younger than this are
            treated as another run still writing its metadata.
        fast_path_wait_seconds: How long to wait for a local destination to
            appear before treating the trigger as an unrelated mount.
        mount_settle_seconds: Delay after a relevant mount before selection.
        max_fallback_state_age_hours: Force a backup once the last known
            backup is at least this old.
        backup_block_timeout_seconds: Ceiling for a started backup to finish.
        eject_precheck_delay_seconds: Delay before the eject pre-check.
        preferred_destination_id: Destination ID to target explicitly.
        notifications_enabled: Show desktop notifications.
        max_log_bytes: Rotate the log file at this size (0 disables).
        max_log_files: Number of rotated log files to keep (0 truncates the
            log in place).
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    backup_threshold_hours: Annotated[int, Field(ge=1)] = 72
    duplicate_window_seconds: Annotated[int, Field(ge=0)] = 120
    allow_automount: bool = False
    eject_when_no_backup: bool = True
    require_snapshot_verification: bool = False
    access_notify_cooldown_seconds: Annotated[int, Field(ge=0)] = 86400
    ambiguity_notify_cooldown_seconds: Annotated[int, Field(ge=0)] = 86400
    eject_retry_attempts: Annotated[int, Field(ge=1, le=20)] = 3
    running_backup_poll_seconds: Annotated[int, Field(ge=1, le=3600)] = 15
    wait_for_running_backup_max_seconds: Annotated[int, Field(ge=1)] = 7200
    lock_stale_seconds: Annotated[int, Field(ge=1)] = 1200
    max_lock_pid_wait_seconds: Annotated[int, Field(ge=0)] = 5
    fast_path_wait_seconds: Annotated[int, Field(ge=1)] = 15
    mount_settle_seconds: Annotated[int, Field(ge=0)] = 5
    max_fallback_state_age_hours: Annotated[int, Field(ge=1)] = 336
    backup_block_timeout_seconds: Annotated[int, Field(ge=60)] = 14400
    eject_precheck_delay_seconds: Annotated[int, Field(ge=0)] = 3
    preferred_destination_id: str | None = None
    notifications_enabled: bool = True
    max_log_bytes: Annotated[int, Field(ge=0)] = 5 * 1024 * 1024
    max_log_files: Annotated[int, Field(ge=0)] = 5

    @field_validator("wait_for_running_backup_max_seconds")
    @classmethod
    def validate_wait_ceiling(cls, v: int, info: ValidationInfo) -> int:
        """The wait ceiling must allow at least one poll interval."""
        poll = info.data.get("running_backup_poll_seconds")
        if poll is not None and v < poll:
            msg = f"must be >= running_backup_poll_seconds ({poll})"
            raise ValueError(msg)
        return v

    @field_validator("preferred_destination_id", mode="before")
    @classmethod
    def normalize_preferred_id(cls, v: object) -> object:
        """Treat blank IDs as unset."""
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v

    @property
    def threshold_seconds(self) -> int:
        """Backup threshold in seconds."""
        return self.backup_threshold_hours * 3600

    @property
    def max_fallback_state_age_seconds(self) -> int:
        """Forced catch-up age in seconds."""
        return self.max_fallback_state_age_hours * 3600


@dataclass(frozen=True, slots=True)
class LoadedConfig:
    """A validated configuration plus the corrections applied to reach it.

    Attributes:
        config: The validated configuration.
        warnings: Human-readable correction warnings, in the order applied.
    """

    config: AutoBackupConfig
    warnings: tuple[str, ...] = field(default_factory=tuple)


class ConfigError(Exception):
    """Base exception for configuration errors."""


class ConfigParseError(ConfigError):
    """Raised when the config file cannot be parsed."""


def validate_config_data(data: dict[str, Any]) -> LoadedConfig:
    """Validate raw settings, replacing invalid values with defaults.

    Each invalid or unknown key is removed and reported; validation is then
    retried with the remaining keys until it succeeds.

    Args:
        data: Raw key-value settings (e.g. parsed TOML).

    Returns:
        LoadedConfig with the validated config and correction warnings.
    """
    remaining = dict(data)
    warnings: list[str] = []
    defaults = AutoBackupConfig()
    config: AutoBackupConfig | None = None

    # Each failed pass removes at least one key, so this terminates.
    for _ in range(len(remaining) + 1):
        try:
            config = AutoBackupConfig.model_validate(remaining)
            break
        except ValidationError as e:
            bad_keys = sorted({str(err["loc"][0]) for err in e.errors() if err["loc"]})
            if not bad_keys:
                break
            for key in bad_keys:
                value = remaining.pop(key, None)
                if key in AutoBackupConfig.model_fields:
                    warnings.append(
                        f"Invalid {key} ({value!r}); using default {getattr(defaults, key)!r}"
                    )
                else:
                    warnings.append(f"Unknown setting {key!r} ignored")

    if config is None:
        warnings.append("Configuration could not be validated; using all defaults")
        config = defaults

    preferred = config.preferred_destination_id
    if preferred and not _UUID_LIKE.match(preferred):
        warnings.append(f"preferred_destination_id does not look like a UUID: {preferred}")

    return LoadedConfig(config=config, warnings=tuple(warnings))


def load_config(path: Path | None = None) -> LoadedConfig:
    """Load the run configuration from a TOML file.

    A missing file yields the default configuration without warnings.

    Args:
        path: Path to the config file. If None, uses the default config path.

    Returns:
        LoadedConfig with the validated config and correction warnings.

    Raises:
        ConfigParseError: If the TOML syntax is invalid.
        ConfigError: If the file exists but cannot be read.
    """
    config_path = path or get_config_path()

    if not config_path.exists():
        return LoadedConfig(config=AutoBackupConfig())

    try:
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigParseError(f"Invalid TOML syntax in {config_path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Failed to read config {config_path}: {e}") from e

    return validate_config_data(data)


def log_config_warnings(loaded: LoadedConfig) -> None:
    """Log correction warnings from config loading."""
    for warning in loaded.warnings:
        logger.warning("%s", warning)
    if loaded.warnings:
        logger.warning("One or more config values were corrected to defaults")


def save_config(
    config: AutoBackupConfig,
    path: Path | None = None,
    *,
    include_defaults: bool = False,
) -> Path:
    """Save configuration to a TOML file.

    The file is written atomically by first writing to a temporary file
    and then using os.replace() for atomic rename. Values equal to their
    defaults are omitted unless ``include_defaults`` is set.

    Args:
        config: The configuration to save.
        path: Path to save the config. If None, uses the default config path.
        include_defaults: Write every setting, not only changed ones.

    Returns:
        Path where the config was saved.

    Raises:
        ConfigError: If the file cannot be written.
    """
    config_path = path or get_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)

    data = _config_to_dict(config, include_defaults=include_defaults)

    tmp_path: Path | None = None
    try:
        with NamedTemporaryFile(
            mode="wb",
            dir=config_path.parent,
            delete=False,
            suffix=".tmp",
        ) as f:
            tmp_path = Path(f.name)
            tomli_w.dump(data, f)
        os.replace(str(tmp_path), str(config_path))
    except OSError as e:
        if tmp_path is not None and tmp_path.exists():
            tmp_path.unlink()
        raise ConfigError(f"Failed to write config: {e}") from e

    return config_path


def _config_to_dict(config: AutoBackupConfig, *, include_defaults: bool = False) -> dict[str, Any]:
    """Convert a config to a TOML-ready dict, skipping None (and default) values."""
    defaults = AutoBackupConfig()
    result: dict[str, Any] = {}
    for name, value in config.model_dump().items():
        if value is None or (not include_defaults and value == getattr(defaults, name)):
            continue
        result[name] = value
    return result
