"""Filesystem locations used by tmauto.

Follows the XDG base directory layout:

- config: ``$XDG_CONFIG_HOME/tmauto`` (``~/.config/tmauto``), holds config.toml
- state: ``$XDG_STATE_HOME/tmauto`` (``~/.local/state/tmauto``), holds the
  suppression record, fallback timestamps, notice markers and the log
- cache: ``$XDG_CACHE_HOME/tmauto`` (``~/.cache/tmauto``), holds the run lock
"""

import os
from pathlib import Path

APP_NAME = "tmauto"
LOCK_DIR_NAME = "run.lock"


def _xdg_base(env_var: str, fallback: str) -> Path:
    """Resolve an XDG base directory joined with the app name.

    An unset or empty variable selects ``~/<fallback>``.
    """
    base = os.environ.get(env_var)
    root = Path(base) if base else Path.home() / fallback
    return root / APP_NAME


def get_config_dir() -> Path:
    return _xdg_base("XDG_CONFIG_HOME", ".config")


def get_state_dir() -> Path:
    return _xdg_base("XDG_STATE_HOME", ".local/state")


def get_cache_dir() -> Path:
    return _xdg_base("XDG_CACHE_HOME", ".cache")


def get_config_path() -> Path:
    """Default config file."""
    return get_config_dir() / "config.toml"


def get_log_path() -> Path:
    """Run log; rotated by the logging setup."""
    return get_state_dir() / "tmauto.log"


def get_lock_dir() -> Path:
    """Single-instance lock directory.

    Lives in the cache directory so that wiping state never leaves a run
    believing it still holds the lock.
    """
    return get_cache_dir() / LOCK_DIR_NAME


def _make_dir(path: Path, label: str) -> Path:
    """Create ``path`` with parents.

    Raises:
        RuntimeError: If the directory cannot be created.
    """
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        reason = "Permission denied" if isinstance(e, PermissionError) else str(e)
        msg = f"Cannot create {label} directory {path}: {reason}"
        raise RuntimeError(msg) from e
    return path


def ensure_config_dir() -> Path:
    return _make_dir(get_config_dir(), "config")


def ensure_state_dir() -> Path:
    return _make_dir(get_state_dir(), "state")


def ensure_cache_dir() -> Path:
    return _make_dir(get_cache_dir(), "cache")


def ensure_dirs() -> None:
    """Create config, state and cache directories.

    Called at the start of every run, before the lock is taken.

    Raises:
        RuntimeError: If any directory cannot be created.
    """
    ensure_config_dir()
    ensure_state_dir()
    ensure_cache_dir()
