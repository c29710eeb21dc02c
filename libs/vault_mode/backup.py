"""
Secret tree snapshots: export, restore and retention.

This module provides:
- BackupEngine: snapshot / list / load / verify / restore / prune

Snapshot layout (one directory per snapshot under the backups dir):

    <backups>/<YYYYmmddTHHMMSSffffffZ>-<digest8>/
        metadata.json                 # BackupSnapshot fields + per-entry checksums
        entries/<sha256(path)[:16]>.json   # {"path": ..., "value": ...}

The ID is timestamped (sortable, used for retention ordering) and
content-addressed: digest8 is the first 8 hex chars of the SHA-256 of the
canonical entry set. Snapshots are built in a hidden staging directory and
renamed into place, so a listed snapshot is always complete on disk.
Directories are 0o700 and entry files 0o600: they hold secret values.

Snapshot policy:
- Failure to list a prefix (unreachable, sealed, unauthorized) aborts
- Failure to read a single path is logged and recorded in omitted_paths
"""

from __future__ import annotations

import json
import logging
import os
import re
import shutil
import threading
import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from libs.common.file_utils import atomic_write_json, fsync_directory, hash_file_sha256, hash_text_sha256
from libs.vault_mode.client import StoreClient
from libs.vault_mode.exceptions import (
    BackupError,
    OperationCancelledError,
    SnapshotCorruptError,
    SnapshotNotFoundError,
    StoreError,
)
from libs.vault_mode.retry import call_with_backoff
from libs.vault_mode.types import BackupSnapshot, SecretValue, StorageMode

logger = logging.getLogger(__name__)

SNAPSHOT_ID_PATTERN = re.compile(r"^(?P<ts>\d{8}T\d{12}Z)-(?P<digest>[0-9a-f]{8})$")
TIMESTAMP_FORMAT = "%Y%m%dT%H%M%S%fZ"
METADATA_FILE = "metadata.json"
ENTRIES_DIR = "entries"
DEFAULT_RETENTION = 5


def entries_digest(entries: dict[str, SecretValue]) -> str:
    """SHA-256 of the canonical JSON encoding of an entry set."""
    canonical = json.dumps(entries, sort_keys=True, separators=(",", ":"))
    return hash_text_sha256(canonical)


def snapshot_timestamp(snapshot_id: str) -> datetime:
    """Parse the creation timestamp embedded in a snapshot ID.

    Raises:
        ValueError: ID does not follow the snapshot naming scheme
    """
    match = SNAPSHOT_ID_PATTERN.match(snapshot_id)
    if not match:
        raise ValueError(f"Not a snapshot ID: {snapshot_id!r}")
    return datetime.strptime(match.group("ts"), TIMESTAMP_FORMAT).replace(tzinfo=UTC)


def _entry_filename(path: str) -> str:
    return f"{hash_text_sha256(path)[:16]}.json"


class BackupEngine:
    """Export the secret tree to disk and replay it into a store.

    Example:
        engine = BackupEngine(client, Path(".devcontainer/data/vault-backups"))

        snap = engine.snapshot(["dev", "test"], StorageMode.ephemeral)
        engine.restore(snap.snapshot_id)
        engine.prune(keep=5)
    """

    def __init__(self, client: StoreClient, backups_dir: Path) -> None:
        self.client = client
        self.backups_dir = Path(backups_dir)

    # =========================================================================
    # Export
    # =========================================================================

    def snapshot(self, prefixes: list[str], source_mode: StorageMode) -> BackupSnapshot:
        """Export every secret under the given prefixes.

        Args:
            prefixes: Top-level prefixes to export (e.g., ["dev", "test"])
            source_mode: Mode the store is running in (recorded in metadata)

        Returns:
            The snapshot as written to disk. Check ``is_complete`` before
            relying on it for a migration.

        Raises:
            StoreError: A prefix could not be listed
            BackupError: Snapshot could not be written to disk
        """
        listed: list[str] = []
        for prefix in prefixes:
            for path in self.client.list(prefix):
                if path not in listed:
                    listed.append(path)

        entries: dict[str, SecretValue] = {}
        omitted: list[str] = []
        for path in listed:
            try:
                entries[path] = self.client.read(path)
            except StoreError as e:
                logger.warning(
                    "Secret omitted from snapshot",
                    extra={"secret_path": path, "error_type": type(e).__name__},
                )
                omitted.append(path)

        created_at = datetime.now(UTC)
        snapshot_id = f"{created_at.strftime(TIMESTAMP_FORMAT)}-{entries_digest(entries)[:8]}"
        snapshot = BackupSnapshot(
            snapshot_id=snapshot_id,
            source_mode=source_mode,
            created_at=created_at,
            prefixes=list(prefixes),
            entry_count=len(entries),
            listed_count=len(listed),
            omitted_paths=omitted,
            secret_entries=entries,
        )
        self._write(snapshot)

        logger.info(
            "Snapshot created",
            extra={
                "snapshot_id": snapshot_id,
                "source_mode": source_mode.value,
                "entry_count": snapshot.entry_count,
                "omitted_count": len(omitted),
            },
        )
        return snapshot

    def _write(self, snapshot: BackupSnapshot) -> None:
        self.backups_dir.mkdir(parents=True, exist_ok=True)
        final_path = self.backups_dir / snapshot.snapshot_id
        staging = self.backups_dir / f".tmp-{snapshot.snapshot_id}-{uuid.uuid4().hex[:8]}"

        try:
            staging.mkdir(mode=0o700)
            (staging / ENTRIES_DIR).mkdir(mode=0o700)

            checksums: dict[str, dict[str, str]] = {}
            for path, value in snapshot.secret_entries.items():
                filename = _entry_filename(path)
                entry_file = staging / ENTRIES_DIR / filename
                atomic_write_json(entry_file, {"path": path, "value": value}, mode=0o600)
                checksums[path] = {"file": filename, "sha256": hash_file_sha256(entry_file)}

            metadata = snapshot.model_dump(mode="json", exclude={"secret_entries"})
            metadata["entries"] = checksums
            atomic_write_json(staging / METADATA_FILE, metadata, mode=0o600)

            if final_path.exists():
                # Same microsecond and same content: the snapshot already exists
                shutil.rmtree(staging)
                return
            os.rename(staging, final_path)
            fsync_directory(self.backups_dir)
        except OSError as e:
            shutil.rmtree(staging, ignore_errors=True)
            raise BackupError(
                f"Failed to write snapshot {snapshot.snapshot_id}: {e}",
                operation="snapshot",
                path=str(final_path),
            ) from e

    # =========================================================================
    # Inspection
    # =========================================================================

    def list_snapshots(self) -> list[str]:
        """Snapshot IDs, newest first (by the timestamp in the name)."""
        if not self.backups_dir.exists():
            return []

        found: list[tuple[datetime, str]] = []
        for child in self.backups_dir.iterdir():
            if not child.is_dir() or not SNAPSHOT_ID_PATTERN.match(child.name):
                continue
            found.append((snapshot_timestamp(child.name), child.name))

        return [name for _, name in sorted(found, reverse=True)]

    def latest(self) -> str | None:
        snapshots = self.list_snapshots()
        return snapshots[0] if snapshots else None

    def _snapshot_dir(self, snapshot_id: str) -> Path:
        if not SNAPSHOT_ID_PATTERN.match(snapshot_id):
            raise SnapshotNotFoundError(
                f"Invalid snapshot ID: {snapshot_id!r}", operation="load"
            )
        path = self.backups_dir / snapshot_id
        if not path.is_dir():
            raise SnapshotNotFoundError(
                f"Snapshot not found: {snapshot_id}",
                operation="load",
                path=str(path),
            )
        return path

    def _read_metadata(self, snapshot_dir: Path) -> dict[str, Any]:
        try:
            with open(snapshot_dir / METADATA_FILE, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise SnapshotCorruptError(
                f"Snapshot metadata unreadable: {type(e).__name__}",
                operation="load",
                path=str(snapshot_dir),
            ) from e
        if not isinstance(data, dict):
            raise SnapshotCorruptError(
                "Snapshot metadata is not an object", operation="load", path=str(snapshot_dir)
            )
        return data

    def read_metadata(self, snapshot_id: str) -> BackupSnapshot:
        """Load snapshot metadata only (no entry files, no checksum pass)."""
        snapshot_dir = self._snapshot_dir(snapshot_id)
        data = self._read_metadata(snapshot_dir)
        data.pop("entries", None)
        try:
            return BackupSnapshot.model_validate(data)
        except ValidationError as e:
            raise SnapshotCorruptError(
                f"Snapshot metadata invalid: {e.error_count()} error(s)",
                operation="load",
                path=str(snapshot_dir),
            ) from None

    def load(self, snapshot_id: str) -> BackupSnapshot:
        """Load a snapshot, verifying every entry checksum.

        Raises:
            SnapshotNotFoundError: No such snapshot
            SnapshotCorruptError: Metadata or any entry fails verification
        """
        snapshot_dir = self._snapshot_dir(snapshot_id)
        data = self._read_metadata(snapshot_dir)
        checksums = data.pop("entries", None)
        if not isinstance(checksums, dict):
            raise SnapshotCorruptError(
                "Snapshot metadata has no entry index", operation="load", path=str(snapshot_dir)
            )

        entries: dict[str, SecretValue] = {}
        for path, info in checksums.items():
            if not isinstance(info, dict):
                raise SnapshotCorruptError(
                    "Snapshot entry index malformed", operation="load", path=path
                )
            entry_file = snapshot_dir / ENTRIES_DIR / str(info.get("file", ""))
            if not entry_file.is_file():
                raise SnapshotCorruptError(
                    "Snapshot entry file missing", operation="load", path=path
                )
            if hash_file_sha256(entry_file) != info.get("sha256"):
                raise SnapshotCorruptError(
                    "Snapshot entry checksum mismatch", operation="load", path=path
                )
            with open(entry_file, encoding="utf-8") as f:
                entry = json.load(f)
            if entry.get("path") != path:
                raise SnapshotCorruptError(
                    "Snapshot entry path mismatch", operation="load", path=path
                )
            entries[path] = entry["value"]

        if data.get("entry_count") != len(entries):
            raise SnapshotCorruptError(
                f"Snapshot entry count mismatch: metadata says {data.get('entry_count')}, "
                f"found {len(entries)}",
                operation="load",
                path=str(snapshot_dir),
            )

        data["secret_entries"] = entries
        try:
            return BackupSnapshot.model_validate(data)
        except ValidationError as e:
            raise SnapshotCorruptError(
                f"Snapshot metadata invalid: {e.error_count()} error(s)",
                operation="load",
                path=str(snapshot_dir),
            ) from None

    def verify(self, snapshot_id: str) -> int:
        """Verify a snapshot's checksums. Returns the number of entries."""
        return len(self.load(snapshot_id).secret_entries)

    # =========================================================================
    # Import
    # =========================================================================

    def restore(
        self,
        snapshot_id: str,
        cancel_event: threading.Event | None = None,
    ) -> int:
        """Write every captured secret back into the store.

        Writes are serial, in sorted path order, and overwrite existing
        values (last write wins). The cancellation event is checked before
        every write.

        Args:
            snapshot_id: Snapshot to replay
            cancel_event: Set by a signal handler to stop between writes

        Returns:
            Number of secrets written

        Raises:
            OperationCancelledError: Cancelled; ``completed`` holds the count
            SnapshotNotFoundError / SnapshotCorruptError: Snapshot unusable
            WaitTimeoutError: Store unreachable for the whole backoff budget
            StoreError: A write was rejected
        """
        snapshot = self.load(snapshot_id)
        written = 0
        for path in sorted(snapshot.secret_entries):
            if cancel_event is not None and cancel_event.is_set():
                logger.warning(
                    "Restore cancelled",
                    extra={"snapshot_id": snapshot_id, "completed": written},
                )
                raise OperationCancelledError(
                    f"Restore of {snapshot_id} cancelled after {written} of "
                    f"{snapshot.entry_count} write(s)",
                    completed=written,
                )
            value = snapshot.secret_entries[path]
            call_with_backoff(
                lambda path=path, value=value: self.client.write(path, value),
                description=f"write {path}",
            )
            written += 1

        logger.info(
            "Snapshot restored",
            extra={"snapshot_id": snapshot_id, "restored_count": written},
        )
        return written

    # =========================================================================
    # Retention
    # =========================================================================

    def prune(self, keep: int = DEFAULT_RETENTION) -> list[str]:
        """Delete all but the ``keep`` newest snapshots.

        Ordering uses the timestamp in the snapshot name, never mtime.

        Returns:
            IDs of deleted snapshots
        """
        if keep < 0:
            raise ValueError(f"keep must be >= 0, got {keep}")

        removed: list[str] = []
        for snapshot_id in self.list_snapshots()[keep:]:
            shutil.rmtree(self.backups_dir / snapshot_id)
            removed.append(snapshot_id)
            logger.info("Removed old snapshot", extra={"snapshot_id": snapshot_id})

        return removed
