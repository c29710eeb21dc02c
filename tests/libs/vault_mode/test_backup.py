"""Tests for snapshot export, restore and retention."""

import json
import stat
import threading
from datetime import UTC, datetime, timedelta

import pytest

from libs.vault_mode.backup import (
    METADATA_FILE,
    BackupEngine,
    entries_digest,
    snapshot_timestamp,
)
from libs.vault_mode.exceptions import (
    OperationCancelledError,
    SnapshotCorruptError,
    SnapshotNotFoundError,
    StoreSealedError,
)
from libs.vault_mode.types import StorageMode


@pytest.fixture()
def seeded_store(fake_store):
    fake_store.data.update(
        {
            "dev/API_KEY": "abc123",
            "dev/db/PASSWORD": {"user": "app", "password": "pw"},
            "test/TOKEN": "t-1",
            "other/IGNORED": "x",
        }
    )
    return fake_store


def _make_snapshot_dir(backups_dir, when: datetime, digest: str = "0a1b2c3d"):
    snapshot_id = f"{when.strftime('%Y%m%dT%H%M%S%f')}Z-{digest}"
    path = backups_dir / snapshot_id
    path.mkdir(parents=True)
    return snapshot_id


class TestSnapshot:
    def test_captures_prefixes(self, seeded_store, backups):
        snap = backups.snapshot(["dev", "test"], StorageMode.ephemeral)

        assert snap.secret_entries == {
            "dev/API_KEY": "abc123",
            "dev/db/PASSWORD": {"user": "app", "password": "pw"},
            "test/TOKEN": "t-1",
        }
        assert snap.entry_count == 3
        assert snap.listed_count == 3
        assert snap.is_complete
        assert snap.source_mode == StorageMode.ephemeral

    def test_id_is_timestamped_and_content_addressed(self, seeded_store, backups):
        snap = backups.snapshot(["dev"], StorageMode.ephemeral)

        timestamp, digest = snap.snapshot_id.split("-")
        assert digest == entries_digest(snap.secret_entries)[:8]
        assert abs(snapshot_timestamp(snap.snapshot_id) - snap.created_at) < timedelta(seconds=1)
        assert timestamp.endswith("Z")

    def test_layout_on_disk(self, seeded_store, backups):
        snap = backups.snapshot(["dev"], StorageMode.ephemeral)
        snap_dir = backups.backups_dir / snap.snapshot_id

        metadata = json.loads((snap_dir / METADATA_FILE).read_text())
        assert metadata["snapshot_id"] == snap.snapshot_id
        assert "secret_entries" not in metadata
        assert set(metadata["entries"]) == {"dev/API_KEY", "dev/db/PASSWORD"}
        entry_files = list((snap_dir / "entries").iterdir())
        assert len(entry_files) == 2
        for entry_file in entry_files:
            assert stat.S_IMODE(entry_file.stat().st_mode) == 0o600
        assert not [p for p in backups.backups_dir.iterdir() if p.name.startswith(".tmp-")]

    def test_read_failure_is_omitted_not_fatal(self, seeded_store, backups):
        seeded_store.fail_reads.add("dev/db/PASSWORD")

        snap = backups.snapshot(["dev"], StorageMode.ephemeral)

        assert snap.omitted_paths == ["dev/db/PASSWORD"]
        assert snap.entry_count == 1
        assert snap.listed_count == 2
        assert not snap.is_complete

    def test_listing_failure_aborts(self, seeded_store, backups):
        seeded_store.sealed = True

        with pytest.raises(StoreSealedError):
            backups.snapshot(["dev"], StorageMode.persistent)

        assert backups.list_snapshots() == []

    def test_empty_store(self, fake_store, backups):
        snap = backups.snapshot(["dev"], StorageMode.ephemeral)

        assert snap.entry_count == 0
        assert backups.load(snap.snapshot_id).secret_entries == {}


class TestLoadAndVerify:
    def test_load_round_trip(self, seeded_store, backups):
        snap = backups.snapshot(["dev", "test"], StorageMode.ephemeral)

        loaded = backups.load(snap.snapshot_id)

        assert loaded == snap

    def test_unknown_snapshot(self, backups):
        with pytest.raises(SnapshotNotFoundError):
            backups.load("20260101T000000000000Z-deadbeef")

    def test_rejects_path_traversal(self, backups):
        with pytest.raises(SnapshotNotFoundError):
            backups.load("../vault-mode")

    def test_tampered_entry_is_corrupt(self, seeded_store, backups):
        snap = backups.snapshot(["dev"], StorageMode.ephemeral)
        entry_file = next((backups.backups_dir / snap.snapshot_id / "entries").iterdir())
        entry_file.write_text(json.dumps({"path": "dev/API_KEY", "value": "tampered"}))

        with pytest.raises(SnapshotCorruptError):
            backups.verify(snap.snapshot_id)

    def test_missing_metadata_is_corrupt(self, seeded_store, backups):
        snap = backups.snapshot(["dev"], StorageMode.ephemeral)
        (backups.backups_dir / snap.snapshot_id / METADATA_FILE).unlink()

        with pytest.raises(SnapshotCorruptError):
            backups.load(snap.snapshot_id)

    def test_verify_counts_entries(self, seeded_store, backups):
        snap = backups.snapshot(["dev"], StorageMode.ephemeral)

        assert backups.verify(snap.snapshot_id) == 2

    def test_read_metadata_skips_entries(self, seeded_store, backups):
        snap = backups.snapshot(["dev"], StorageMode.ephemeral)

        meta = backups.read_metadata(snap.snapshot_id)

        assert meta.entry_count == 2
        assert meta.secret_entries == {}


class TestRestore:
    def test_restore_writes_sorted_and_overwrites(self, seeded_store, backups):
        snap = backups.snapshot(["dev", "test"], StorageMode.ephemeral)
        seeded_store.data["dev/API_KEY"] = "changed"
        seeded_store.calls.clear()

        count = backups.restore(snap.snapshot_id)

        assert count == 3
        writes = [path for op, path in seeded_store.calls if op == "write"]
        assert writes == sorted(writes)
        assert seeded_store.data["dev/API_KEY"] == "abc123"

    def test_cancel_before_next_write(self, seeded_store, backups):
        snap = backups.snapshot(["dev", "test"], StorageMode.ephemeral)
        seeded_store.data.clear()
        cancel = threading.Event()
        original_write = seeded_store.write

        def write_then_cancel(path, value):
            original_write(path, value)
            cancel.set()

        seeded_store.write = write_then_cancel

        with pytest.raises(OperationCancelledError) as exc_info:
            backups.restore(snap.snapshot_id, cancel_event=cancel)

        assert exc_info.value.completed == 1
        assert len(seeded_store.data) == 1

    def test_cancelled_before_start_writes_nothing(self, seeded_store, backups):
        snap = backups.snapshot(["dev"], StorageMode.ephemeral)
        seeded_store.data.clear()
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(OperationCancelledError) as exc_info:
            backups.restore(snap.snapshot_id, cancel_event=cancel)

        assert exc_info.value.completed == 0
        assert seeded_store.data == {}


class TestRetention:
    def test_list_is_newest_first_by_name(self, backups):
        base = datetime(2026, 3, 1, tzinfo=UTC)
        ids = [_make_snapshot_dir(backups.backups_dir, base + timedelta(hours=h)) for h in (2, 0, 1)]
        (backups.backups_dir / ".tmp-partial").mkdir()
        (backups.backups_dir / "notes.txt").write_text("x")

        assert backups.list_snapshots() == [ids[0], ids[2], ids[1]]
        assert backups.latest() == ids[0]

    def test_prune_keeps_newest(self, backups):
        base = datetime(2026, 3, 1, tzinfo=UTC)
        ids = [
            _make_snapshot_dir(backups.backups_dir, base + timedelta(minutes=m)) for m in range(8)
        ]

        removed = backups.prune(keep=5)

        assert sorted(removed) == sorted(ids[:3])
        assert backups.list_snapshots() == list(reversed(ids[3:]))

    def test_prune_ignores_mtime(self, backups):
        base = datetime(2026, 3, 1, tzinfo=UTC)
        older = _make_snapshot_dir(backups.backups_dir, base)
        newer = _make_snapshot_dir(backups.backups_dir, base + timedelta(days=1))
        # Touch the older snapshot so its mtime is the most recent
        (backups.backups_dir / older / "touched").write_text("x")

        assert backups.prune(keep=1) == [older]
        assert backups.list_snapshots() == [newer]

    def test_prune_fewer_than_keep(self, backups):
        _make_snapshot_dir(backups.backups_dir, datetime(2026, 3, 1, tzinfo=UTC))

        assert backups.prune(keep=5) == []

    def test_prune_rejects_negative(self, backups):
        with pytest.raises(ValueError):
            backups.prune(keep=-1)

    def test_list_without_backups_dir(self, fake_store, tmp_path):
        assert BackupEngine(fake_store, tmp_path / "nope").list_snapshots() == []
