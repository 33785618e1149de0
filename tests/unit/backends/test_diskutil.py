"""Unit tests for the diskutil backend."""

import plistlib
from pathlib import Path
from unittest.mock import MagicMock, patch

from tmauto.backends.base import VolumeService
from tmauto.backends.diskutil import DiskutilService
from tmauto.utils.shell import CommandResult


def info(**values: str) -> CommandResult:
    """Build ``diskutil info -plist`` output."""
    return CommandResult(
        stdout=plistlib.dumps(values).decode("utf-8"), stderr="", returncode=0
    )


NOT_FOUND = CommandResult(stdout="", stderr="Could not find disk", returncode=1)


class TestInterface:
    """Tests for the VolumeService surface."""

    def test_public_methods_match_interface(self) -> None:
        """DiskutilService exposes only VolumeService operations."""
        public = {name for name in vars(DiskutilService) if not name.startswith("_")}
        assert public <= {name for name in vars(VolumeService) if not name.startswith("_")}


class TestLookups:
    """Tests for mount point and device lookups."""

    @patch("tmauto.backends.diskutil.run_tool")
    def test_mount_point(self, mock_tool: MagicMock) -> None:
        """MountPoint is read from the plist."""
        mock_tool.return_value = info(MountPoint="/Volumes/Backup", DeviceIdentifier="disk4s2")

        assert DiskutilService().mount_point_for("Backup") == "/Volumes/Backup"
        assert mock_tool.call_args.args[0] == ["diskutil", "info", "-plist", "Backup"]

    @patch("tmauto.backends.diskutil.run_tool")
    def test_unmounted_volume(self, mock_tool: MagicMock) -> None:
        """An empty MountPoint means not mounted."""
        mock_tool.return_value = info(MountPoint="", DeviceIdentifier="disk4s2")

        service = DiskutilService()
        assert service.mount_point_for("Backup") is None
        assert service.device_identifier_for("Backup") == "disk4s2"

    @patch("tmauto.backends.diskutil.run_tool", return_value=NOT_FOUND)
    def test_unknown_volume(self, mock_tool: MagicMock) -> None:
        """An unknown target yields None."""
        assert DiskutilService().mount_point_for("Nope") is None
        assert not DiskutilService().is_mounted("/Volumes/Nope")

    @patch("tmauto.backends.diskutil.run_tool")
    def test_garbage_output(self, mock_tool: MagicMock) -> None:
        """Unparseable output yields None."""
        mock_tool.return_value = CommandResult(stdout="garbage", stderr="", returncode=0)
        assert DiskutilService().mount_point_for("Backup") is None

    @patch("tmauto.backends.diskutil.run_tool")
    def test_is_mounted_requires_exact_path(self, mock_tool: MagicMock) -> None:
        """A path inside another volume is not a mount point."""
        mock_tool.return_value = info(MountPoint="/")
        assert not DiskutilService().is_mounted("/Volumes/Backup")


class TestOperations:
    """Tests for mount, unmount and eject."""

    @patch("tmauto.backends.diskutil.run_tool")
    def test_commands(self, mock_tool: MagicMock) -> None:
        """Each operation runs the matching diskutil verb."""
        mock_tool.return_value = CommandResult(stdout="", stderr="", returncode=0)
        service = DiskutilService()

        assert service.mount("disk4s2")
        assert service.unmount("/Volumes/Backup")
        assert service.eject("/Volumes/Backup")

        verbs = [c.args[0][:2] for c in mock_tool.call_args_list]
        assert verbs == [["diskutil", "mount"], ["diskutil", "unmount"], ["diskutil", "eject"]]

    @patch("tmauto.backends.diskutil.run_tool", return_value=NOT_FOUND)
    def test_failure(self, mock_tool: MagicMock) -> None:
        """A failing command reports False."""
        assert not DiskutilService().eject("/Volumes/Backup")


class TestMountInstanceId:
    """Tests for mount_instance_id."""

    def test_inode(self, tmp_path: Path) -> None:
        """The root inode identifies the mount."""
        assert DiskutilService().mount_instance_id(str(tmp_path)) == str(tmp_path.stat().st_ino)

    def test_missing_path(self, tmp_path: Path) -> None:
        """A missing path yields None."""
        assert DiskutilService().mount_instance_id(str(tmp_path / "gone")) is None
