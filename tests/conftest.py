"""Pytest configuration and shared fixtures.

This module contains in-memory fakes of the backup and volume subsystems
and fixtures used across all test modules.
"""

import logging
import plistlib
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest
from tmauto.backends.base import BackupService, VolumeService
from tmauto.core.config import AutoBackupConfig
from tmauto.core.lock import RunLock
from tmauto.core.state import StateStore
from tmauto.core.suppressor import DuplicateSuppressor
from tmauto.utils.shell import CommandResult

DEST_ID = "0C8F2D4E-1111-4A2B-9C3D-ABCDEF012345"
OTHER_ID = "7A1B2C3D-2222-4E5F-8A9B-0123456789AB"
MOUNT = "/Volumes/Backup"


def make_destinations_xml(entries: list[dict[str, Any]]) -> str:
    """Build ``tmutil destinationinfo -X`` output for the given entries."""
    return plistlib.dumps({"Destinations": entries}).decode("utf-8")


def ok(stdout: str = "") -> CommandResult:
    """Successful command result."""
    return CommandResult(stdout=stdout, stderr="", returncode=0)


def failed(stderr: str = "", returncode: int = 1) -> CommandResult:
    """Failed command result."""
    return CommandResult(stdout="", stderr=stderr, returncode=returncode)


class FakeBackupService(BackupService):
    """Scriptable in-memory BackupService.

    ``running_script`` values are returned by successive is_running() calls;
    once exhausted, ``running`` is returned.
    """

    def __init__(self, destinations_xml: str | None = None) -> None:
        self.destinations_xml = destinations_xml
        self.available = True
        self.running = False
        self.running_script: list[bool] = []
        self.status_succeeds = True
        self.start_results: list[CommandResult] = []
        self.start_calls: list[str] = []
        self.listing: CommandResult = ok()
        self.latest: CommandResult = ok()
        self.listing_calls: list[str] = []
        self.is_running_calls = 0

    def is_available(self) -> bool:
        return self.available

    def destination_info(self) -> str | None:
        return self.destinations_xml

    def is_running(self) -> bool:
        self.is_running_calls += 1
        if self.running_script:
            return self.running_script.pop(0)
        return self.running

    def status_ok(self) -> bool:
        return self.status_succeeds

    def start_backup(self, destination_id: str) -> CommandResult:
        self.start_calls.append(destination_id)
        if self.start_results:
            return self.start_results.pop(0)
        return ok()

    def list_backups(self, mount_path: str) -> CommandResult:
        self.listing_calls.append(mount_path)
        return self.listing

    def latest_backup(self, mount_path: str) -> CommandResult:
        return self.latest


class FakeVolumeService(VolumeService):
    """In-memory VolumeService.

    ``aliases`` maps names, IDs and device identifiers to mount points;
    a mount point only counts while it is in ``mounted``.
    """

    def __init__(self) -> None:
        self.aliases: dict[str, str] = {}
        self.mounted: set[str] = set()
        self.devices: dict[str, str] = {}
        self.mountable: dict[str, str] = {}
        self.inodes: dict[str, str] = {}
        self.unmount_works = True
        self.eject_works = True
        self.mount_calls: list[str] = []
        self.unmount_calls: list[str] = []
        self.eject_calls: list[str] = []

    def attach(self, mount_path: str, *aliases: str, inode: str = "4242") -> None:
        """Mount a volume at ``mount_path`` reachable under ``aliases``."""
        self.mounted.add(mount_path)
        self.inodes[mount_path] = inode
        for alias in aliases:
            self.aliases[alias] = mount_path

    def mount_point_for(self, target: str) -> str | None:
        if target in self.mounted:
            return target
        mount_point = self.aliases.get(target)
        if mount_point and mount_point in self.mounted:
            return mount_point
        return None

    def device_identifier_for(self, target: str) -> str | None:
        return self.devices.get(target)

    def mount(self, device: str) -> bool:
        self.mount_calls.append(device)
        path = self.mountable.get(device)
        if path is None:
            return False
        self.attach(path, device)
        return True

    def unmount(self, mount_path: str) -> bool:
        self.unmount_calls.append(mount_path)
        if self.unmount_works:
            self.mounted.discard(mount_path)
        return self.unmount_works

    def eject(self, mount_path: str) -> bool:
        self.eject_calls.append(mount_path)
        if self.eject_works:
            self.mounted.discard(mount_path)
        return self.eject_works

    def mount_instance_id(self, mount_path: str) -> str | None:
        if mount_path not in self.mounted:
            return None
        return self.inodes.get(mount_path)


class FakeClock:
    """Manually advanced clock; sleeping advances it."""

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def destinations_xml() -> Callable[[list[dict[str, Any]]], str]:
    """Factory for destination listings."""
    return make_destinations_xml


@pytest.fixture
def local_destination() -> dict[str, Any]:
    """A single mounted local destination entry."""
    return {"ID": DEST_ID, "Name": "Backup", "Kind": "Local", "Mount Point": MOUNT}


@pytest.fixture
def fake_backup(local_destination: dict[str, Any]) -> FakeBackupService:
    """Backup service listing one local destination."""
    return FakeBackupService(make_destinations_xml([local_destination]))


@pytest.fixture
def fake_volumes() -> FakeVolumeService:
    """Volume service with the local destination mounted."""
    volumes = FakeVolumeService()
    volumes.attach(MOUNT, "Backup", DEST_ID)
    return volumes


@pytest.fixture
def clock() -> FakeClock:
    """Fake clock whose sleep advances time."""
    return FakeClock()


@pytest.fixture
def config() -> AutoBackupConfig:
    """Default configuration with notifications off."""
    return AutoBackupConfig(notifications_enabled=False)


@pytest.fixture
def state(tmp_path: Path) -> StateStore:
    """State store in a temporary directory."""
    return StateStore(state_dir=tmp_path / "state")


@pytest.fixture
def suppressor(state: StateStore) -> DuplicateSuppressor:
    """Duplicate suppressor sharing the temporary state directory."""
    return DuplicateSuppressor(state.state_dir, window_seconds=120)


@pytest.fixture
def run_lock(tmp_path: Path, clock: FakeClock) -> RunLock:
    """Run lock in a temporary cache directory."""
    return RunLock(tmp_path / "cache" / "run.lock", clock=clock)


@pytest.fixture
def xdg_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Path]:
    """Point all XDG directories into a temporary home.

    Handlers installed on the tmauto logger during the test are removed
    afterwards.
    """
    for var, sub in (
        ("XDG_CONFIG_HOME", "config"),
        ("XDG_STATE_HOME", "state"),
        ("XDG_CACHE_HOME", "cache"),
    ):
        monkeypatch.setenv(var, str(tmp_path / sub))
    yield tmp_path
    logger = logging.getLogger("tmauto")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
