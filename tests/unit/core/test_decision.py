"""Unit tests for the backup-due decision.

Tests for snapshot parsing, the pure decision rules and BackupDueEngine.
"""

from datetime import datetime
from pathlib import Path

import pytest
from conftest import MOUNT, FakeBackupService, FakeClock, failed, ok
from tmauto.core.config import AutoBackupConfig
from tmauto.core.decision import (
    BackupDecision,
    BackupDueEngine,
    DecisionReason,
    HistoryReading,
    HistorySource,
    decide,
    evaluate_age,
    extract_latest_snapshot_id,
    output_indicates_access_denied,
    parse_snapshot_timestamp,
    read_latest_snapshot_id,
)
from tmauto.core.state import StateStore

HOUR = 3600
NOW = 1_700_000_000
THRESHOLD = 72 * HOUR
MAX_STALE = 336 * HOUR


def snapshot_id_for(epoch: int) -> str:
    """Format an epoch as a local-time snapshot name."""
    return datetime.fromtimestamp(epoch).strftime("%Y-%m-%d-%H%M%S")


class TestExtractLatestSnapshotId:
    """Tests for extract_latest_snapshot_id."""

    def test_returns_last_match(self) -> None:
        """The last snapshot in the listing wins."""
        output = (
            "/Volumes/Backup/Backups.backupdb/Mac/2026-10-01-101500\n"
            "/Volumes/Backup/Backups.backupdb/Mac/2026-10-18-221003\n"
        )
        assert extract_latest_snapshot_id(output) == "2026-10-18-221003"

    def test_matches_backup_bundle_names(self) -> None:
        """Snapshot IDs inside .backup names are found."""
        output = "/Volumes/Backup/2026-10-19-083015.backup/2026-10-19-083015.backup\n"
        assert extract_latest_snapshot_id(output) == "2026-10-19-083015"

    def test_no_match(self) -> None:
        """Listings without snapshots yield None."""
        assert extract_latest_snapshot_id("No machine directory found\n") is None
        assert extract_latest_snapshot_id("") is None


class TestParseSnapshotTimestamp:
    """Tests for parse_snapshot_timestamp."""

    def test_parses_local_time(self) -> None:
        """Snapshot names are interpreted as local time."""
        expected = int(datetime(2026, 10, 19, 8, 30, 15).timestamp())
        assert parse_snapshot_timestamp("2026-10-19-083015") == expected

    def test_round_trips_through_formatting(self) -> None:
        """A formatted epoch parses back to the same value."""
        assert parse_snapshot_timestamp(snapshot_id_for(NOW)) == NOW

    def test_invalid_calendar_date(self) -> None:
        """Impossible dates yield None instead of raising."""
        assert parse_snapshot_timestamp("2026-13-40-250000") is None

    def test_not_a_snapshot(self) -> None:
        """Text without a snapshot name yields None."""
        assert parse_snapshot_timestamp("latest") is None


class TestOutputIndicatesAccessDenied:
    """Tests for output_indicates_access_denied."""

    @pytest.mark.parametrize(
        "output",
        [
            "tmutil: listbackups requires Full Disk Access privileges.",
            "Operation not permitted",
        ],
    )
    def test_detects_access_messages(self, output: str) -> None:
        """Full Disk Access and permission errors are recognized."""
        assert output_indicates_access_denied(output)

    def test_other_failures(self) -> None:
        """Unrelated errors are not access restrictions."""
        assert not output_indicates_access_denied("No destinations are mounted.")


class TestEvaluateAge:
    """Tests for the threshold rules."""

    def test_recent_backup_not_due(self) -> None:
        """Ten hours against a 72h threshold is not due."""
        due, reason = evaluate_age(
            NOW - 10 * HOUR, NOW, threshold_seconds=THRESHOLD, max_stale_seconds=MAX_STALE
        )
        assert due is False
        assert reason == DecisionReason.NOT_DUE

    def test_old_backup_due(self) -> None:
        """A hundred hours against a 72h threshold is due."""
        due, reason = evaluate_age(
            NOW - 100 * HOUR, NOW, threshold_seconds=THRESHOLD, max_stale_seconds=MAX_STALE
        )
        assert due is True
        assert reason == DecisionReason.THRESHOLD_REACHED

    def test_exactly_at_threshold_is_due(self) -> None:
        """The threshold itself counts as due."""
        due, _ = evaluate_age(
            NOW - THRESHOLD, NOW, threshold_seconds=THRESHOLD, max_stale_seconds=MAX_STALE
        )
        assert due is True

    def test_future_timestamp_is_due(self) -> None:
        """A timestamp in the future forces a backup regardless of threshold."""
        due, reason = evaluate_age(
            NOW + 5 * HOUR, NOW, threshold_seconds=THRESHOLD, max_stale_seconds=MAX_STALE
        )
        assert due is True
        assert reason == DecisionReason.CLOCK_ANOMALY

    def test_overdue_beats_larger_threshold(self) -> None:
        """Reaching the catch-up age is due even under a larger threshold."""
        due, reason = evaluate_age(
            NOW - 400 * HOUR,
            NOW,
            threshold_seconds=1000 * HOUR,
            max_stale_seconds=MAX_STALE,
        )
        assert due is True
        assert reason == DecisionReason.OVERDUE


class TestDecide:
    """Tests for the pure decide function."""

    def _decide(self, reading: HistoryReading, fallback: int | None = None) -> BackupDecision:
        return decide(
            reading,
            fallback,
            now=NOW,
            threshold_seconds=THRESHOLD,
            max_stale_seconds=MAX_STALE,
        )

    def test_first_backup(self) -> None:
        """Readable history without snapshots is a first backup."""
        decision = self._decide(HistoryReading(available=True))
        assert decision.due is True
        assert decision.reason == DecisionReason.FIRST_BACKUP
        assert decision.source == HistorySource.HISTORY

    def test_history_not_due(self) -> None:
        """A recent snapshot is not due."""
        reading = HistoryReading(available=True, snapshot_id=snapshot_id_for(NOW - 10 * HOUR))
        decision = self._decide(reading)
        assert decision.due is False
        assert decision.last_backup_epoch == NOW - 10 * HOUR
        assert decision.hours_since == 10

    def test_unparseable_snapshot_is_due(self) -> None:
        """An unparseable snapshot name forces a backup."""
        decision = self._decide(HistoryReading(available=True, snapshot_id="2026-02-31-000000"))
        assert decision.due is True
        assert decision.reason == DecisionReason.UNPARSEABLE

    def test_history_ignores_fallback(self) -> None:
        """With readable history the fallback timestamp is not consulted."""
        reading = HistoryReading(available=True, snapshot_id=snapshot_id_for(NOW - 100 * HOUR))
        decision = self._decide(reading, fallback=NOW - HOUR)
        assert decision.due is True
        assert decision.source == HistorySource.HISTORY

    def test_unavailable_without_fallback(self) -> None:
        """No history and no fallback means due."""
        decision = self._decide(HistoryReading(available=False))
        assert decision.due is True
        assert decision.reason == DecisionReason.NO_FALLBACK
        assert decision.source == HistorySource.FALLBACK

    def test_fallback_recent(self) -> None:
        """A recent fallback timestamp is not due."""
        decision = self._decide(HistoryReading(available=False), fallback=NOW - 10 * HOUR)
        assert decision.due is False
        assert decision.source == HistorySource.FALLBACK

    def test_fallback_overdue(self) -> None:
        """A fallback older than the catch-up age is due."""
        decision = self._decide(HistoryReading(available=False), fallback=NOW - 400 * HOUR)
        assert decision.due is True
        assert decision.reason == DecisionReason.OVERDUE


class TestReadLatestSnapshotId:
    """Tests for read_latest_snapshot_id."""

    def test_prefers_listing(self) -> None:
        """The listing is used when it names a snapshot."""
        backup = FakeBackupService()
        backup.listing = ok("/Volumes/Backup/2026-10-18-221003.backup\n")
        backup.latest = ok("/Volumes/Backup/2026-01-01-000000.backup\n")
        assert read_latest_snapshot_id(backup, MOUNT) == "2026-10-18-221003"

    def test_falls_back_to_latestbackup(self) -> None:
        """latestbackup is asked when the listing has nothing."""
        backup = FakeBackupService()
        backup.listing = failed("error")
        backup.latest = ok("/Volumes/Backup/2026-10-19-083015.backup\n")
        assert read_latest_snapshot_id(backup, MOUNT) == "2026-10-19-083015"


class TestBackupDueEngine:
    """Tests for BackupDueEngine."""

    @pytest.fixture
    def backup(self) -> FakeBackupService:
        """Backup service with an empty history."""
        return FakeBackupService()

    @pytest.fixture
    def engine(self, backup: FakeBackupService, tmp_path: Path) -> BackupDueEngine:
        """Engine with default thresholds and a fixed clock."""
        return BackupDueEngine(
            backup, StateStore(tmp_path), AutoBackupConfig(), clock=FakeClock(NOW)
        )

    def test_read_history_listing_failure(
        self, engine: BackupDueEngine, backup: FakeBackupService
    ) -> None:
        """A failed listing is unavailable history."""
        backup.listing = failed("something broke", returncode=3)
        reading = engine.read_history(MOUNT)
        assert reading.available is False
        assert reading.access_denied is False
        assert reading.returncode == 3

    def test_read_history_access_denied(
        self, engine: BackupDueEngine, backup: FakeBackupService
    ) -> None:
        """A listing blocked by Full Disk Access is flagged."""
        backup.listing = failed("Operation not permitted")
        reading = engine.read_history(MOUNT)
        assert reading.available is False
        assert reading.access_denied is True

    def test_read_history_uses_latestbackup(
        self, engine: BackupDueEngine, backup: FakeBackupService
    ) -> None:
        """An empty listing falls back to latestbackup."""
        backup.listing = ok("")
        backup.latest = ok("/Volumes/Backup/2026-10-19-083015.backup\n")
        reading = engine.read_history(MOUNT)
        assert reading.available is True
        assert reading.snapshot_id == "2026-10-19-083015"

    def test_history_path_persists_timestamp_even_when_not_due(
        self, engine: BackupDueEngine, tmp_path: Path
    ) -> None:
        """The observed snapshot time is written as the new fallback value."""
        reading = HistoryReading(available=True, snapshot_id=snapshot_id_for(NOW - 10 * HOUR))

        decision = engine.evaluate("dest-1", reading)

        assert decision.due is False
        assert StateStore(tmp_path).read_last_success("dest-1") == NOW - 10 * HOUR

    def test_fallback_path_never_writes(self, engine: BackupDueEngine, tmp_path: Path) -> None:
        """Evaluating from the fallback leaves it unchanged."""
        store = StateStore(tmp_path)
        store.write_last_success("dest-1", NOW - 100 * HOUR)

        decision = engine.evaluate("dest-1", HistoryReading(available=False))

        assert decision.due is True
        assert decision.source == HistorySource.FALLBACK
        assert store.read_last_success("dest-1") == NOW - 100 * HOUR

    def test_fallback_is_per_destination(self, engine: BackupDueEngine, tmp_path: Path) -> None:
        """Another destination's fallback timestamp is not used."""
        StateStore(tmp_path).write_last_success("dest-2", NOW - HOUR)

        decision = engine.evaluate("dest-1", HistoryReading(available=False))

        assert decision.reason == DecisionReason.NO_FALLBACK
