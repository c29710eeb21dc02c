"""
Mode switch orchestration.

MigrationCoordinator moves the store between ephemeral and persistent modes:

    requested -> confirmed -> backed_up -> reconfigured -> reinitialized
              -> restored -> verified

Each stage either completes or the whole migration fails with a
MigrationFailedError naming the failed stage, the last completed stage, the
snapshot taken before the switch and the exact operator command to resume.
Stages are never partially retried; the only retries are the bounded
backoff around individual store calls.

This is the only component that aborts a multi-step workflow. StoreClient,
SealManager and BackupEngine raise classified errors; this module turns
them into a stage-tagged failure.

Usage:
    coordinator = MigrationCoordinator.from_settings(get_settings())
    result = coordinator.migrate(
        StorageMode.ephemeral,
        StorageMode.persistent,
        confirm_explicit=True,
        auto_unseal=True,
    )
    assert result.succeeded
"""

from __future__ import annotations

import logging
import threading

from libs.common.logging import log_with_context
from libs.vault_mode.backup import DEFAULT_RETENTION, BackupEngine
from libs.vault_mode.client import StoreClient
from libs.vault_mode.exceptions import (
    BackupIncompleteError,
    ManualUnsealRequiredError,
    MigrationFailedError,
    ModeTransitionError,
    OperationCancelledError,
    SameModeError,
    VaultModeError,
)
from libs.vault_mode.keys import UnsealKeyStore
from libs.vault_mode.mode_config import ModeConfig
from libs.vault_mode.orchestrator import ProcessOrchestrator, create_orchestrator
from libs.vault_mode.retry import DEFAULT_TIMEOUT_SECONDS, wait_until_reachable
from libs.vault_mode.seal import SealManager
from libs.vault_mode.settings import VaultModeSettings
from libs.vault_mode.types import (
    EPHEMERAL_ROOT_TOKEN,
    BackupSnapshot,
    MigrationResult,
    MigrationStage,
    ModeRecord,
    SealState,
    Severity,
    StorageMode,
    UnsealKeySet,
    ValidationReport,
)
from libs.vault_mode.validation import ValidationReporter

logger = logging.getLogger(__name__)

CLI = "python scripts/vault_mode.py"


def restore_command(snapshot_id: str | None) -> list[str]:
    if not snapshot_id:
        return []
    return [f"Restore secrets: {CLI} restore {snapshot_id} --yes"]


class MigrationCoordinator:
    """Drive a confirmed mode switch end to end.

    Args:
        client: StoreClient pointed at the store (token is switched per mode)
        mode_config: Authoritative mode record storage
        key_store: Unseal key file storage
        backups: Snapshot engine
        orchestrator: Relaunches the store with the new record
        reporter: Post-switch validation
        prefixes: Secret prefixes exported and restored
        retention: Snapshots kept after a successful switch
        init_shares / init_threshold: Shamir parameters for first init
        ready_timeout: Backoff budget for waiting on the relaunched store
        updated_by: Recorded in the ModeRecord
    """

    def __init__(
        self,
        client: StoreClient,
        mode_config: ModeConfig,
        key_store: UnsealKeyStore,
        backups: BackupEngine,
        orchestrator: ProcessOrchestrator,
        reporter: ValidationReporter,
        prefixes: list[str] | None = None,
        retention: int = DEFAULT_RETENTION,
        init_shares: int = 5,
        init_threshold: int = 3,
        ready_timeout: float = DEFAULT_TIMEOUT_SECONDS,
        updated_by: str = "vault_mode",
    ) -> None:
        self.client = client
        self.mode_config = mode_config
        self.key_store = key_store
        self.backups = backups
        self.orchestrator = orchestrator
        self.reporter = reporter
        self.prefixes = list(prefixes or ["dev", "test", "ci", "prod"])
        self.retention = retention
        self.init_shares = init_shares
        self.init_threshold = init_threshold
        self.ready_timeout = ready_timeout
        self.updated_by = updated_by
        self.seal = SealManager(client, key_file=str(key_store.path), ready_timeout=ready_timeout)

    @classmethod
    def from_settings(
        cls,
        settings: VaultModeSettings,
        client: StoreClient | None = None,
        orchestrator: ProcessOrchestrator | None = None,
        updated_by: str = "vault_mode",
    ) -> MigrationCoordinator:
        """Wire every collaborator from settings."""
        client = client or StoreClient(
            url=settings.vault_addr,
            token=settings.vault_token,
            mount_point=settings.vault_mount,
            verify=settings.vault_verify_tls,
            timeout=settings.vault_request_timeout_seconds,
        )
        mode_config = ModeConfig(settings.mode_file)
        key_store = UnsealKeyStore(settings.unseal_keys_file)
        backups = BackupEngine(client, settings.backups_dir)
        reporter = ValidationReporter(
            client, mode_config, key_store, backups, settings.raft_dir
        )
        return cls(
            client=client,
            mode_config=mode_config,
            key_store=key_store,
            backups=backups,
            orchestrator=orchestrator or create_orchestrator(settings),
            reporter=reporter,
            prefixes=settings.vault_secret_prefixes,
            retention=settings.vault_backup_retention,
            init_shares=settings.vault_init_shares,
            init_threshold=settings.vault_init_threshold,
            ready_timeout=settings.vault_ready_timeout_seconds,
            updated_by=updated_by,
        )

    # =========================================================================
    # Store access per mode
    # =========================================================================

    def _load_keys(self) -> UnsealKeySet | None:
        return self.key_store.load() if self.key_store.exists() else None

    def open_source(self, record: ModeRecord) -> None:
        """Make the store readable in the record's mode.

        Persistent: unseal (subject to the record's auto_unseal flag) and
        authenticate with the stored root token. Ephemeral: use the dev
        root token.
        """
        if record.mode == StorageMode.ephemeral:
            self.client.use_token(EPHEMERAL_ROOT_TOKEN)
            return
        key_set = self._load_keys()
        self.seal.ensure_unsealed(record, key_set)
        if key_set is not None:
            self.client.use_token(key_set.root_token)

    def activate(self, record: ModeRecord, force_unseal: bool = False) -> SealState:
        """Bring a relaunched store into an operable state for the record.

        Persistent: initialize on first activation (persisting the key set
        with owner-only permissions), unseal, and authenticate with the key
        set's root token. A freshly initialized store is always unsealed
        with the keys just generated; ``force_unseal`` extends that to an
        existing store (operator-initiated unseal).

        Returns:
            SealState after activation

        Raises:
            ManualUnsealRequiredError, InsufficientKeysError, UnsealFailedError,
            WaitTimeoutError, StoreError
        """
        if record.mode == StorageMode.ephemeral:
            self.client.use_token(EPHEMERAL_ROOT_TOKEN)
            return self.seal.ensure_unsealed(record, None)

        state = wait_until_reachable(self.client, timeout=self.ready_timeout)
        if not state.initialized:
            key_set = self.client.init(self.init_shares, self.init_threshold)
            self.key_store.save(key_set)
            force_unseal = True
        else:
            key_set = self._load_keys()

        unseal_record = record.model_copy(update={"auto_unseal": True}) if force_unseal else record
        state = self.seal.ensure_unsealed(unseal_record, key_set)
        if key_set is not None:
            self.client.use_token(key_set.root_token)
        return state

    # =========================================================================
    # Migration
    # =========================================================================

    def _advance(self, result: MigrationResult, stage: MigrationStage) -> None:
        result.stage = stage
        result.completed_stages.append(stage)
        log_with_context(
            logger,
            "INFO",
            "Migration stage completed",
            stage=stage.value,
            source_mode=result.source_mode.value,
            target_mode=result.target_mode.value,
        )

    def _fail(
        self,
        result: MigrationResult,
        failed_stage: MigrationStage,
        error: BaseException,
        remediation: list[str],
        report: ValidationReport | None = None,
    ) -> MigrationFailedError:
        last_completed = result.completed_stages[-1]
        if isinstance(error, ManualUnsealRequiredError):
            remediation = error.instructions + remediation
        result.stage = MigrationStage.failed
        log_with_context(
            logger,
            "ERROR",
            "Migration failed",
            failed_stage=failed_stage.value,
            last_completed=last_completed.value,
            error_type=type(error).__name__,
            snapshot_id=result.snapshot_id,
        )
        return MigrationFailedError(
            f"Switch {result.source_mode.value} -> {result.target_mode.value} failed: {error}",
            failed_stage=failed_stage,
            last_completed=last_completed,
            snapshot_id=result.snapshot_id,
            remediation=remediation,
            report=report,
        )

    def migrate(
        self,
        source: StorageMode,
        target: StorageMode,
        confirm_explicit: bool,
        *,
        auto_unseal: bool = False,
        migrate_secrets: bool = True,
        allow_incomplete_backup: bool = False,
        cancel_event: threading.Event | None = None,
    ) -> MigrationResult:
        """
        Switch the store from source to target mode.

        Args:
            source: Mode the caller believes is active (must match the record)
            target: Mode to switch to
            confirm_explicit: Operator confirmation; falsy cancels before any
                side effect
            auto_unseal: auto_unseal flag for the new record (persistent only)
            migrate_secrets: Restore the snapshot into the new store. False
                switches without migrating (snapshot is still attempted as a
                safety net, best effort)
            allow_incomplete_backup: Proceed when the snapshot omitted paths
            cancel_event: Stops the restore loop and stage boundaries

        Returns:
            MigrationResult with stage ``verified`` (success) or ``cancelled``

        Raises:
            SameModeError: source == target (nothing touched)
            ModeTransitionError: source disagrees with the configured mode
            ModeRecordCorruptError: Mode record exists but does not parse
            MigrationFailedError: Any stage after confirmation failed
        """
        if source == target:
            raise SameModeError(f"Already in {target.value} mode; nothing to switch", operation="migrate")

        current = self.mode_config.load_or_default()
        if current.mode != source:
            raise ModeTransitionError(
                f"Configured mode is {current.mode.value}, not {source.value}",
                operation="migrate",
            )

        result = MigrationResult(
            source_mode=source,
            target_mode=target,
            stage=MigrationStage.requested,
            completed_stages=[MigrationStage.requested],
            migrated_secrets=migrate_secrets,
        )

        if not confirm_explicit or (cancel_event is not None and cancel_event.is_set()):
            result.stage = MigrationStage.cancelled
            logger.info("Migration cancelled before any change", extra={"target_mode": target.value})
            return result
        self._advance(result, MigrationStage.confirmed)

        snapshot = self._stage_backup(result, current, migrate_secrets, allow_incomplete_backup)
        self._check_cancel(result, cancel_event, MigrationStage.reconfigured)

        target_record = ModeRecord.for_mode(target, auto_unseal=auto_unseal, updated_by=self.updated_by)
        self._stage_reconfigure(result, target_record)

        self._stage_reinitialize(result, target_record)
        self._check_cancel(result, cancel_event, MigrationStage.restored)

        if migrate_secrets and snapshot is not None:
            try:
                result.restored_count = self.backups.restore(snapshot.snapshot_id, cancel_event)
            except (VaultModeError, OSError) as e:
                raise self._fail(
                    result,
                    MigrationStage.restored,
                    e,
                    restore_command(result.snapshot_id),
                ) from e
        self._advance(result, MigrationStage.restored)

        report = self.reporter.check()
        result.report = report
        if report.has_failures:
            failed = [f"{f.check}: {f.message}" for f in report.findings if f.severity == Severity.fail]
            raise self._fail(
                result,
                MigrationStage.verified,
                ModeTransitionError("; ".join(failed)),
                [f"Inspect: {CLI} status"] + restore_command(result.snapshot_id),
                report=report,
            )
        self._advance(result, MigrationStage.verified)

        try:
            result.pruned = self.backups.prune(self.retention)
        except OSError as e:
            logger.warning("Snapshot pruning failed", extra={"error": str(e)})

        log_with_context(
            logger,
            "INFO",
            "Migration succeeded",
            target_mode=target.value,
            restored_count=result.restored_count,
            snapshot_id=result.snapshot_id,
        )
        return result

    def _check_cancel(
        self,
        result: MigrationResult,
        cancel_event: threading.Event | None,
        next_stage: MigrationStage,
    ) -> None:
        if cancel_event is not None and cancel_event.is_set():
            error = OperationCancelledError(f"Cancelled before {next_stage.value}")
            raise self._fail(
                result,
                next_stage,
                error,
                restore_command(result.snapshot_id),
            ) from error

    def _stage_backup(
        self,
        result: MigrationResult,
        current: ModeRecord,
        migrate_secrets: bool,
        allow_incomplete_backup: bool,
    ) -> BackupSnapshot | None:
        retry_switch = [f"Nothing was changed; fix the error and re-run: {CLI} switch {result.target_mode.value}"]
        try:
            self.open_source(current)
            snapshot = self.backups.snapshot(self.prefixes, current.mode)
        except (VaultModeError, OSError) as e:
            if migrate_secrets:
                raise self._fail(result, MigrationStage.backed_up, e, retry_switch) from e
            logger.warning(
                "Safety snapshot failed; switching without migration",
                extra={"error_type": type(e).__name__},
            )
            self._advance(result, MigrationStage.backed_up)
            return None

        result.snapshot_id = snapshot.snapshot_id
        if migrate_secrets and not snapshot.is_complete and not allow_incomplete_backup:
            error = BackupIncompleteError(snapshot.snapshot_id, snapshot.omitted_paths)
            raise self._fail(
                result,
                MigrationStage.backed_up,
                error,
                retry_switch + ["Or accept the partial snapshot with --allow-incomplete-backup"],
            ) from error
        self._advance(result, MigrationStage.backed_up)
        return snapshot

    def _stage_reconfigure(self, result: MigrationResult, record: ModeRecord) -> None:
        resume = [f"Start the store with: vault {record.launch_command}"]
        if record.mode == StorageMode.persistent:
            resume.append(f"Initialize/unseal it: {CLI} unseal")
        resume += restore_command(result.snapshot_id)

        try:
            self.mode_config.save(record)
            relaunched = self.orchestrator.relaunch(record)
        except (VaultModeError, OSError) as e:
            raise self._fail(result, MigrationStage.reconfigured, e, resume) from e

        if not relaunched:
            raise self._fail(
                result,
                MigrationStage.reconfigured,
                VaultModeError("Store was not relaunched automatically", operation="relaunch"),
                resume,
            )

        try:
            wait_until_reachable(self.client, timeout=self.ready_timeout)
        except VaultModeError as e:
            raise self._fail(result, MigrationStage.reconfigured, e, resume) from e
        self._advance(result, MigrationStage.reconfigured)

    def _stage_reinitialize(self, result: MigrationResult, record: ModeRecord) -> None:
        try:
            self.activate(record)
        except (VaultModeError, OSError) as e:
            remediation = [f"Then resume: {CLI} unseal"] if record.mode == StorageMode.persistent else []
            raise self._fail(
                result,
                MigrationStage.reinitialized,
                e,
                remediation + restore_command(result.snapshot_id),
            ) from e
        self._advance(result, MigrationStage.reinitialized)
