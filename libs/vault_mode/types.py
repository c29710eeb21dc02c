"""
Core data models for the vault mode coordinator.

This module provides:
- StorageMode: Enum for the two store operating modes
- ModeRecord: Authoritative record of the active mode and its launch command
- UnsealKeySet: Key shares and root token produced by the store's init
- SealState / SealStatus: Live seal state and the derived state-machine state
- BackupSnapshot: Flat path -> value export of the secret tree
- Severity / Finding / ValidationReport: Read-only health findings
- MigrationStage / MigrationResult: Mode switch state machine

Key design decisions:
- Pydantic models for everything persisted to disk (strict validation on load)
- Dataclasses for values that live only for one operation
- Key shares and tokens are excluded from reprs so they cannot leak into logs
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

# Secret payload: a plain string for {"value": v} secrets, else the KV data dict
SecretValue = str | dict[str, Any]

EPHEMERAL_ROOT_TOKEN = "root"
"""Root token the dev-mode server is launched with (-dev-root-token-id)."""


class StorageMode(str, Enum):
    """Operating modes of the backing store.

    - ephemeral: dev server, in-memory storage, never sealed
    - persistent: raft storage on disk, Shamir-sealed on every start
    """

    ephemeral = "ephemeral"
    persistent = "persistent"


LAUNCH_COMMANDS: dict[StorageMode, str] = {
    StorageMode.ephemeral: (
        f"server -dev -dev-root-token-id={EPHEMERAL_ROOT_TOKEN} "
        "-dev-listen-address=0.0.0.0:8200"
    ),
    StorageMode.persistent: "server -config=/vault/config/vault-persistent.hcl",
}


# =============================================================================
# Durable records
# =============================================================================


class ModeRecord(BaseModel):
    """Authoritative record of the selected storage mode.

    The process orchestrator relaunches the store with ``launch_command``;
    nothing else decides how the store starts. Mutated only by the
    MigrationCoordinator after a confirmed switch, never deleted.
    """

    mode: StorageMode = Field(..., description="Selected storage mode")
    auto_unseal: bool = Field(False, description="Unseal from the key file without prompting")
    launch_command: str = Field(..., min_length=1, description="Store server arguments")
    updated_at: datetime = Field(..., description="Last change (UTC)")
    updated_by: str = Field(..., min_length=1, description="User/tool that made the change")

    model_config = {"frozen": True, "extra": "forbid"}

    @classmethod
    def for_mode(
        cls,
        mode: StorageMode,
        auto_unseal: bool = False,
        updated_by: str = "vault_mode",
        updated_at: datetime | None = None,
    ) -> ModeRecord:
        """Build a record with the launch command derived from the mode."""
        return cls(
            mode=mode,
            # Ephemeral stores are never sealed, so the flag is meaningless there
            auto_unseal=auto_unseal if mode == StorageMode.persistent else False,
            launch_command=LAUNCH_COMMANDS[mode],
            updated_at=updated_at or datetime.now(UTC),
            updated_by=updated_by,
        )


class UnsealKeySet(BaseModel):
    """Key shares and root token returned by the store's init operation.

    Produced once at first persistent activation and consumed repeatedly by
    the SealManager. Key order is the generation order and is never re-sorted.
    """

    keys: list[str] = Field(..., min_length=1, repr=False, description="Key shares, in order")
    threshold: int = Field(..., ge=1, description="Shares required to unseal")
    shares: int = Field(..., ge=1, description="Shares generated at init")
    root_token: str = Field(..., min_length=1, repr=False, description="Initial root token")
    created_at: datetime = Field(..., description="Init timestamp (UTC)")

    model_config = {"frozen": True, "extra": "forbid"}

    @model_validator(mode="after")
    def _threshold_within_keys(self) -> UnsealKeySet:
        if self.threshold > len(self.keys):
            raise ValueError(
                f"threshold ({self.threshold}) exceeds number of keys ({len(self.keys)})"
            )
        return self


# =============================================================================
# Seal state
# =============================================================================


@dataclass(frozen=True)
class SealState:
    """Live seal state as reported by the store. Never cached."""

    initialized: bool
    sealed: bool
    progress: int = 0
    threshold: int = 0
    shares: int = 0


class SealStatus(str, Enum):
    """States of the seal state machine.

    State transitions:
    - persistent_uninitialized -> persistent_sealed (init, first activation only)
    - persistent_sealed -> persistent_unsealed (unseal until progress == threshold)
    - persistent_unsealed -> persistent_sealed (external seal action only)
    - ephemeral is terminal: no seal concept applies
    """

    ephemeral = "ephemeral"
    persistent_uninitialized = "persistent_uninitialized"
    persistent_sealed = "persistent_sealed"
    persistent_unsealed = "persistent_unsealed"


# =============================================================================
# Backups
# =============================================================================


class BackupSnapshot(BaseModel):
    """Flat path -> value export of the secret tree.

    Mode-agnostic data: the entries can be replayed into either mode.
    Immutable once written to disk.
    """

    snapshot_id: str = Field(..., description="Timestamp + content digest identity")
    source_mode: StorageMode = Field(..., description="Mode the secrets were exported from")
    created_at: datetime = Field(..., description="Creation timestamp (UTC)")
    prefixes: list[str] = Field(default_factory=list, description="Prefixes exported")
    entry_count: int = Field(..., ge=0, description="Entries actually captured")
    listed_count: int = Field(..., ge=0, description="Paths discovered while listing")
    omitted_paths: list[str] = Field(default_factory=list, description="Paths that failed to read")
    secret_entries: dict[str, SecretValue] = Field(default_factory=dict, repr=False)

    model_config = {"frozen": True}

    @field_validator("snapshot_id")
    @classmethod
    def _no_path_separators(cls, v: str) -> str:
        if not v or "/" in v or v.startswith("."):
            raise ValueError(f"invalid snapshot id: {v!r}")
        return v

    @property
    def is_complete(self) -> bool:
        """True when every listed path was captured."""
        return self.entry_count == self.listed_count and not self.omitted_paths


# =============================================================================
# Validation findings
# =============================================================================


class Severity(str, Enum):
    """Finding severities, ordered pass < warn < fail."""

    passed = "pass"
    warn = "warn"
    fail = "fail"

    @property
    def rank(self) -> int:
        return {"pass": 0, "warn": 1, "fail": 2}[self.value]


@dataclass(frozen=True)
class Finding:
    """One validation check outcome."""

    check: str
    severity: Severity
    message: str
    remediation: list[str] = field(default_factory=list)


@dataclass
class ValidationReport:
    """Ordered list of findings with an aggregate severity."""

    findings: list[Finding] = field(default_factory=list)

    def add(
        self,
        check: str,
        severity: Severity,
        message: str,
        remediation: list[str] | None = None,
    ) -> None:
        self.findings.append(Finding(check, severity, message, list(remediation or [])))

    @property
    def overall(self) -> Severity:
        if not self.findings:
            return Severity.passed
        return max((f.severity for f in self.findings), key=lambda s: s.rank)

    @property
    def has_failures(self) -> bool:
        return any(f.severity == Severity.fail for f in self.findings)

    def by_check(self, check: str) -> list[Finding]:
        return [f for f in self.findings if f.check == check]

    def to_dict(self) -> dict[str, Any]:
        return {
            "overall": self.overall.value,
            "findings": [
                {
                    "check": f.check,
                    "severity": f.severity.value,
                    "message": f.message,
                    "remediation": f.remediation,
                }
                for f in self.findings
            ],
        }


# =============================================================================
# Migration
# =============================================================================


class MigrationStage(str, Enum):
    """Mode switch state machine.

    requested -> confirmed -> backed_up -> reconfigured -> reinitialized
    -> restored -> verified. ``cancelled`` is reachable from requested or
    confirmed; ``failed`` from any in-progress stage.
    """

    requested = "requested"
    confirmed = "confirmed"
    backed_up = "backed_up"
    reconfigured = "reconfigured"
    reinitialized = "reinitialized"
    restored = "restored"
    verified = "verified"
    cancelled = "cancelled"
    failed = "failed"


@dataclass
class MigrationResult:
    """Outcome of MigrationCoordinator.migrate()."""

    source_mode: StorageMode
    target_mode: StorageMode
    stage: MigrationStage
    completed_stages: list[MigrationStage] = field(default_factory=list)
    snapshot_id: str | None = None
    restored_count: int = 0
    migrated_secrets: bool = True
    pruned: list[str] = field(default_factory=list)
    report: ValidationReport | None = None

    @property
    def succeeded(self) -> bool:
        return self.stage == MigrationStage.verified
