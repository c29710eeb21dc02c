"""
Vault Mode Coordinator Exception Hierarchy.

This module defines every exception raised while coordinating the lifecycle
of the backing secret store: classified store API failures, seal/unseal
outcomes, backup problems and migration aborts.

Exception hierarchy:
    VaultModeError (base, PlatformError)
    ├── StoreError - Raw, classified store API failure
    │   ├── StoreUnreachableError - Listener cannot be reached (retryable)
    │   ├── StoreSealedError - Store answered 503 because it is sealed
    │   ├── StoreUnauthorizedError - Token missing, expired or lacking policy
    │   ├── StoreAlreadyInitializedError - init() against an initialized store
    │   ├── SecretNotFoundError - Path has no live secret
    │   └── StoreRequestError - Any other API error
    ├── ModeNotConfiguredError - No mode record on disk (ephemeral default)
    ├── ModeRecordCorruptError - Mode record exists but does not parse
    ├── KeyMaterialNotFoundError - No unseal key file on disk
    ├── UnsealError
    │   ├── InsufficientKeysError
    │   ├── UnsealFailedError
    │   └── ManualUnsealRequiredError - Carries operator instructions
    ├── BackupError
    │   ├── BackupIncompleteError
    │   ├── SnapshotNotFoundError
    │   └── SnapshotCorruptError
    ├── OperationCancelledError
    ├── WaitTimeoutError
    ├── OrchestratorError
    ├── ModeTransitionError
    │   └── SameModeError
    └── MigrationFailedError - Carries failed stage, last good stage, remediation

Messages MUST NOT include secret values, unseal keys or tokens; only paths,
counts and addresses.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from libs.common.exceptions import PlatformError

if TYPE_CHECKING:
    from libs.vault_mode.types import MigrationStage, ValidationReport


class VaultModeError(PlatformError):
    """
    Base exception for all vault mode coordinator errors.

    Attributes:
        message: Human-readable error message (MUST NOT include secret values)
        operation: Store operation or workflow step (e.g., "read", "unseal")
        path: Secret path the error relates to, if any

    Example:
        >>> str(VaultModeError("Timeout", operation="read", path="dev/API_KEY"))
        'Timeout (operation: read, path: dev/API_KEY)'
    """

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        path: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.path = path

    def __str__(self) -> str:
        context_parts = []
        if self.operation:
            context_parts.append(f"operation: {self.operation}")
        if self.path:
            context_parts.append(f"path: {self.path}")

        if context_parts:
            return f"{self.message} ({', '.join(context_parts)})"
        return self.message


# =============================================================================
# Store API errors
# =============================================================================


class StoreError(VaultModeError):
    """Base class for classified store API failures raised by StoreClient."""


class StoreUnreachableError(StoreError):
    """
    Raised when the store listener cannot be reached.

    Recoverable: the store may be restarting. Callers retry with bounded
    backoff (libs.vault_mode.retry).

    Resolution:
    - Check the store is running: `docker compose ps vault-dev`
    - Check the address: `curl $VAULT_ADDR/v1/sys/seal-status`
    """


class StoreSealedError(StoreError):
    """
    Raised when the store rejects a request because it is sealed.

    Distinct from StoreUnreachableError: the listener answered, with a 503
    and an explicit sealed indicator.

    Resolution:
    - `python scripts/vault_mode.py unseal`
    - or `vault operator unseal` with threshold key shares
    """


class StoreUnauthorizedError(StoreError):
    """
    Raised when the token is missing, expired or lacks the required policy.

    Not recoverable by the coordinator; surfaced to the operator.
    """


class StoreAlreadyInitializedError(StoreError):
    """Raised when init() is called against an already initialized store."""


class SecretNotFoundError(StoreError):
    """Raised when a path has no live secret."""


class StoreRequestError(StoreError):
    """Raised for any other store API error (bad request, server error)."""


# =============================================================================
# Durable state errors
# =============================================================================


class ModeNotConfiguredError(VaultModeError):
    """
    Raised when no mode record exists.

    Expected absence, not a failure: callers treat it as ephemeral mode
    (see ModeConfig.load_or_default).
    """


class ModeRecordCorruptError(VaultModeError):
    """Raised when the mode record file exists but does not parse."""


class KeyMaterialNotFoundError(VaultModeError):
    """Raised when the unseal key file is missing or unreadable."""


# =============================================================================
# Seal errors
# =============================================================================


class UnsealError(VaultModeError):
    """Base class for unseal outcomes that need operator attention."""


class InsufficientKeysError(UnsealError):
    """
    Raised when fewer key shares are available than the unseal threshold.

    Attributes:
        available: Number of key shares found
        threshold: Number of key shares required
    """

    def __init__(self, available: int, threshold: int) -> None:
        super().__init__(
            f"Insufficient unseal keys: need {threshold}, have {available}",
            operation="unseal",
        )
        self.available = available
        self.threshold = threshold


class UnsealFailedError(UnsealError):
    """
    Raised when the store is still sealed after every available key was used,
    or cannot be unsealed at all (e.g., it was never initialized).

    Common causes:
    - Store was re-initialized without updating the key file
    - Keys were edited or truncated
    """


class ManualUnsealRequiredError(UnsealError):
    """
    Raised when the store is sealed and auto-unseal is disabled.

    Attributes:
        instructions: Ordered operator actions that unseal the store
    """

    def __init__(self, instructions: list[str]) -> None:
        super().__init__(
            "Store is sealed and auto-unseal is disabled; manual unseal required",
            operation="unseal",
        )
        self.instructions = list(instructions)


# =============================================================================
# Backup errors
# =============================================================================


class BackupError(VaultModeError):
    """Base class for snapshot, restore and retention errors."""


class BackupIncompleteError(BackupError):
    """
    Raised when a snapshot omitted paths and the caller requires completeness.

    Attributes:
        snapshot_id: Identity of the partial snapshot
        omitted_paths: Paths that could not be read
    """

    def __init__(self, snapshot_id: str, omitted_paths: list[str]) -> None:
        super().__init__(
            f"Snapshot {snapshot_id} omitted {len(omitted_paths)} path(s)",
            operation="snapshot",
        )
        self.snapshot_id = snapshot_id
        self.omitted_paths = list(omitted_paths)


class SnapshotNotFoundError(BackupError):
    """Raised when no snapshot directory exists for the requested ID."""


class SnapshotCorruptError(BackupError):
    """Raised when snapshot metadata or an entry file fails verification."""


# =============================================================================
# Workflow errors
# =============================================================================


class OperationCancelledError(VaultModeError):
    """
    Raised when a cancellation signal stops a multi-write operation.

    Attributes:
        completed: Number of writes that finished before cancellation
    """

    def __init__(self, message: str, completed: int = 0) -> None:
        super().__init__(message, operation="restore")
        self.completed = completed


class WaitTimeoutError(VaultModeError):
    """
    Raised when bounded backoff gives up waiting for the store.

    Attributes:
        attempts: Number of attempts made
        elapsed_seconds: Wall time spent waiting
    """

    def __init__(self, message: str, attempts: int, elapsed_seconds: float) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.elapsed_seconds = elapsed_seconds


class OrchestratorError(VaultModeError):
    """Raised when the process orchestrator fails to relaunch the store."""


class ModeTransitionError(VaultModeError):
    """Raised when a requested mode switch is not a valid transition."""


class SameModeError(ModeTransitionError):
    """Raised when the source and target modes are equal."""


class MigrationFailedError(VaultModeError):
    """
    Raised when a mode migration aborts after confirmation.

    The system state is reported, never silently retried.

    Attributes:
        failed_stage: Stage that was in progress when the failure happened
        last_completed: Last stage that completed successfully
        snapshot_id: Snapshot taken before the switch, if any
        remediation: Exact operator action(s) to recover or resume
        report: Validation report when verification was the failing stage
    """

    def __init__(
        self,
        message: str,
        failed_stage: MigrationStage,
        last_completed: MigrationStage,
        snapshot_id: str | None = None,
        remediation: list[str] | None = None,
        report: ValidationReport | None = None,
    ) -> None:
        super().__init__(message, operation="migrate")
        self.failed_stage = failed_stage
        self.last_completed = last_completed
        self.snapshot_id = snapshot_id
        self.remediation = list(remediation or [])
        self.report = report

    def __str__(self) -> str:
        return (
            f"{self.message} (failed stage: {self.failed_stage.value}, "
            f"last completed: {self.last_completed.value})"
        )
