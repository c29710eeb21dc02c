"""
Read-only consistency checks for the configured mode and the live store.

Each check appends a Finding with pass/warn/fail severity to a
ValidationReport. Nothing here mutates the store, the mode record, the
key file or the backups directory.

Checks:
    mode_record             - record present and parseable (absent -> warn)
    store_reachable         - ephemeral: listener answers (unreachable -> warn)
    seal_status             - persistent: initialized and unsealed
    storage_artifacts       - persistent: raft database present on disk
    mode_consistency        - observed store agrees with the record
    unseal_key_permissions  - key file is owner-only
    backup_integrity        - latest snapshot passes checksum verification
"""

from __future__ import annotations

import logging
from pathlib import Path

from libs.vault_mode.backup import BackupEngine
from libs.vault_mode.client import StoreClient
from libs.vault_mode.exceptions import (
    BackupError,
    ModeNotConfiguredError,
    ModeRecordCorruptError,
    StoreError,
)
from libs.vault_mode.keys import UnsealKeyStore
from libs.vault_mode.mode_config import ModeConfig
from libs.vault_mode.seal import SealManager
from libs.vault_mode.types import (
    ModeRecord,
    SealState,
    Severity,
    StorageMode,
    ValidationReport,
)

logger = logging.getLogger(__name__)

RAFT_DB_NAME = "raft.db"


class ValidationReporter:
    """Produce a ValidationReport for the current setup.

    Example:
        reporter = ValidationReporter(client, mode_config, key_store, backups, raft_dir)
        report = reporter.check()
        if report.has_failures:
            ...
    """

    def __init__(
        self,
        client: StoreClient,
        mode_config: ModeConfig,
        key_store: UnsealKeyStore,
        backups: BackupEngine,
        raft_dir: Path,
    ) -> None:
        self.client = client
        self.mode_config = mode_config
        self.key_store = key_store
        self.backups = backups
        self.raft_dir = Path(raft_dir)

    @property
    def raft_db(self) -> Path:
        return self.raft_dir / RAFT_DB_NAME

    def check(self) -> ValidationReport:
        report = ValidationReport()

        record = self._check_mode_record(report)
        mode = record.mode if record else None

        seal_state, store_error = self._observe_store()
        if mode == StorageMode.ephemeral:
            self._check_reachable(report, seal_state, store_error)
        elif mode == StorageMode.persistent:
            self._check_seal_status(report, seal_state, store_error)
            self._check_storage_artifacts(report)

        if record is not None and seal_state is not None:
            self._check_consistency(report, record, seal_state)

        self._check_key_permissions(report, mode)
        self._check_backup_integrity(report)

        logger.info(
            "Validation complete",
            extra={"overall": report.overall.value, "findings": len(report.findings)},
        )
        return report

    # -------------------------------------------------------------------------

    def _check_mode_record(self, report: ValidationReport) -> ModeRecord | None:
        try:
            record = self.mode_config.load()
        except ModeNotConfiguredError:
            report.add(
                "mode_record",
                Severity.warn,
                "No mode record found; defaulting to ephemeral mode",
                ["python scripts/vault_mode.py switch ephemeral|persistent"],
            )
            return self.mode_config.load_or_default()
        except ModeRecordCorruptError as e:
            report.add(
                "mode_record",
                Severity.fail,
                f"Mode record is corrupt: {e}",
                [f"Inspect or remove {self.mode_config.path}, then run a switch"],
            )
            return None

        report.add(
            "mode_record",
            Severity.passed,
            f"Mode record present: {record.mode.value} (auto_unseal={record.auto_unseal})",
        )
        return record

    def _observe_store(self) -> tuple[SealState | None, StoreError | None]:
        try:
            return self.client.health(), None
        except StoreError as e:
            return None, e

    def _check_reachable(
        self,
        report: ValidationReport,
        seal_state: SealState | None,
        store_error: StoreError | None,
    ) -> None:
        if seal_state is None:
            report.add(
                "store_reachable",
                Severity.warn,
                f"Store not reachable at {self.client.url}: {store_error}",
                ["Start the store: docker compose up -d vault-dev"],
            )
        else:
            report.add("store_reachable", Severity.passed, f"Store reachable at {self.client.url}")

    def _check_seal_status(
        self,
        report: ValidationReport,
        seal_state: SealState | None,
        store_error: StoreError | None,
    ) -> None:
        if seal_state is None:
            report.add(
                "seal_status",
                Severity.fail,
                f"Store not reachable at {self.client.url}: {store_error}",
                ["Start the store: docker compose up -d vault-dev"],
            )
        elif not seal_state.initialized:
            report.add(
                "seal_status",
                Severity.fail,
                "Store is not initialized",
                ["python scripts/vault_mode.py switch persistent"],
            )
        elif seal_state.sealed:
            seal = SealManager(self.client, key_file=str(self.key_store.path))
            report.add(
                "seal_status",
                Severity.warn,
                f"Store is sealed (progress {seal_state.progress}/{seal_state.threshold})",
                seal.manual_instructions(seal_state.threshold),
            )
        else:
            report.add("seal_status", Severity.passed, "Store is initialized and unsealed")

    def _check_storage_artifacts(self, report: ValidationReport) -> None:
        if self.raft_db.is_file():
            report.add("storage_artifacts", Severity.passed, f"Raft database present: {self.raft_db}")
        else:
            report.add(
                "storage_artifacts",
                Severity.fail,
                f"Raft database missing: {self.raft_db}",
                ["Check the persistent volume mount for the store's data directory"],
            )

    def _check_consistency(
        self,
        report: ValidationReport,
        record: ModeRecord,
        seal_state: SealState,
    ) -> None:
        if (
            record.mode == StorageMode.persistent
            and not seal_state.initialized
            and self.raft_db.is_file()
        ):
            report.add(
                "mode_consistency",
                Severity.fail,
                "Persistent mode configured and raft data present, but the store "
                "reports uninitialized (store may not be using the persistent config)",
                ["Restart the store: docker compose restart vault-dev"],
            )
        elif record.mode == StorageMode.ephemeral and (
            seal_state.sealed or not seal_state.initialized
        ):
            report.add(
                "mode_consistency",
                Severity.fail,
                "Ephemeral mode configured but the store is sealed or uninitialized "
                "(store appears to run in persistent mode)",
                [
                    "Restart the store: docker compose restart vault-dev",
                    "Or switch: python scripts/vault_mode.py switch persistent",
                ],
            )
        else:
            report.add("mode_consistency", Severity.passed, "Store matches the configured mode")

    def _check_key_permissions(self, report: ValidationReport, mode: StorageMode | None) -> None:
        if self.key_store.exists():
            if self.key_store.permissions_ok():
                report.add("unseal_key_permissions", Severity.passed, "Unseal key file is owner-only")
            else:
                report.add(
                    "unseal_key_permissions",
                    Severity.fail,
                    f"Unseal key file is group/world accessible: {self.key_store.path}",
                    [f"chmod 600 {self.key_store.path}"],
                )
        elif mode == StorageMode.persistent:
            report.add(
                "unseal_key_permissions",
                Severity.warn,
                f"No unseal key file at {self.key_store.path}; auto-unseal unavailable",
            )

    def _check_backup_integrity(self, report: ValidationReport) -> None:
        latest = self.backups.latest()
        if latest is None:
            report.add("backup_integrity", Severity.passed, "No snapshots yet")
            return
        try:
            count = self.backups.verify(latest)
        except BackupError as e:
            report.add(
                "backup_integrity",
                Severity.fail,
                f"Latest snapshot {latest} failed verification: {e}",
                ["Create a fresh snapshot: python scripts/vault_mode.py backup create"],
            )
            return
        report.add(
            "backup_integrity",
            Severity.passed,
            f"Latest snapshot {latest} verified ({count} entries)",
        )
