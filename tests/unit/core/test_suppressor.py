"""Unit tests for duplicate trigger suppression."""

import json

from conftest import DEST_ID, MOUNT, FakeVolumeService
from tmauto.core.suppressor import DuplicateSuppressor, MountSignature

NOW = 1_700_000_000


class TestMountSignature:
    """Tests for MountSignature."""

    def test_value(self) -> None:
        """The serialized form joins ID, path and instance."""
        signature = MountSignature(DEST_ID, MOUNT, "4242")
        assert signature.value == f"{DEST_ID}|{MOUNT}|4242"

    def test_missing_id(self) -> None:
        """An empty ID is written as 'unknown'."""
        assert MountSignature("", MOUNT, "1").value == f"unknown|{MOUNT}|1"

    def test_capture_uses_inode(self, fake_volumes: FakeVolumeService) -> None:
        """The mount's root inode is the instance."""
        signature = MountSignature.capture(DEST_ID, MOUNT, fake_volumes, NOW)
        assert signature.instance == "4242"

    def test_remount_changes_signature(self, fake_volumes: FakeVolumeService) -> None:
        """Mounting again at the same path yields a new signature."""
        first = MountSignature.capture(DEST_ID, MOUNT, fake_volumes, NOW)
        fake_volumes.attach(MOUNT, inode="9999")
        second = MountSignature.capture(DEST_ID, MOUNT, fake_volumes, NOW)

        assert first.value != second.value

    def test_capture_fallback_is_unique(self) -> None:
        """Without an inode the instance is a placeholder."""
        volumes = FakeVolumeService()
        signature = MountSignature.capture(DEST_ID, MOUNT, volumes, NOW)

        assert signature.instance.startswith(f"ino-fallback-{NOW}-")


class TestDuplicateSuppressor:
    """Tests for DuplicateSuppressor."""

    def test_nothing_stored(self, suppressor: DuplicateSuppressor) -> None:
        """Without state nothing is skipped."""
        assert suppressor.read() is None
        assert not suppressor.should_skip("sig", NOW)

    def test_skip_within_window(self, suppressor: DuplicateSuppressor) -> None:
        """The same signature inside the window is skipped."""
        suppressor.commit("sig", NOW)

        assert suppressor.should_skip("sig", NOW)
        assert suppressor.should_skip("sig", NOW + 119)

    def test_window_expires(self, suppressor: DuplicateSuppressor) -> None:
        """At the window boundary the trigger is acted upon again."""
        suppressor.commit("sig", NOW)
        assert not suppressor.should_skip("sig", NOW + 120)

    def test_future_epoch_not_skipped(self, suppressor: DuplicateSuppressor) -> None:
        """A stored epoch in the future never suppresses."""
        suppressor.commit("sig", NOW + 60)
        assert not suppressor.should_skip("sig", NOW)

    def test_different_signature(self, suppressor: DuplicateSuppressor) -> None:
        """A different mount instance is never skipped."""
        suppressor.commit("sig", NOW)
        assert not suppressor.should_skip("other", NOW)

    def test_commit_replaces(self, suppressor: DuplicateSuppressor) -> None:
        """Only the latest commit is remembered."""
        suppressor.commit("first", NOW)
        suppressor.commit("second", NOW + 1)

        state = suppressor.read()
        assert state is not None
        assert state.signature == "second"
        assert state.epoch == NOW + 1

    def test_clear(self, suppressor: DuplicateSuppressor) -> None:
        """Clearing forgets the stored signature."""
        suppressor.commit("sig", NOW)
        suppressor.clear()
        suppressor.clear()

        assert not suppressor.should_skip("sig", NOW)

    def test_corrupt_file(self, suppressor: DuplicateSuppressor) -> None:
        """Unparseable state is treated as absent."""
        suppressor.state_path.parent.mkdir(parents=True)
        suppressor.state_path.write_text("{not json")

        assert suppressor.read() is None

    def test_incomplete_record(self, suppressor: DuplicateSuppressor) -> None:
        """A record without an epoch is treated as absent."""
        suppressor.state_path.parent.mkdir(parents=True)
        suppressor.state_path.write_text(json.dumps({"signature": "sig"}))

        assert not suppressor.should_skip("sig", NOW)
