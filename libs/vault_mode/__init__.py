"""
Vault mode and migration lifecycle coordinator.

Tracks which storage mode the local secret store runs in (ephemeral dev
server or persistent raft storage), moves secrets across a mode switch,
drives the seal/unseal state machine and reports whether the setup is
consistent.

Components:
    - StoreClient: typed wrapper over the store admin API (client.py)
    - ModeConfig / UnsealKeyStore: durable, atomically written state
    - SealManager: seal/unseal state machine (seal.py)
    - BackupEngine: snapshot, restore, prune (backup.py)
    - ProcessOrchestrator: relaunch the store with a new mode record
    - MigrationCoordinator: mode switch state machine (migration.py)
    - ValidationReporter: read-only pass/warn/fail findings

Quick Start:
    >>> from libs.vault_mode import MigrationCoordinator, StorageMode, get_settings
    >>> coordinator = MigrationCoordinator.from_settings(get_settings())
    >>> coordinator.reporter.check().overall
    <Severity.passed: 'pass'>

Security Requirements:
    - Secret values, unseal keys and tokens are never logged (only paths)
    - Unseal key file is written with mode 0o600
"""

from typing import TYPE_CHECKING, Any

# hvac-backed modules load on first access; the data model, settings and
# exceptions import without touching the HTTP stack.
if TYPE_CHECKING:
    from libs.vault_mode.backup import BackupEngine as BackupEngine
    from libs.vault_mode.client import StoreClient as StoreClient
    from libs.vault_mode.migration import MigrationCoordinator as MigrationCoordinator
    from libs.vault_mode.seal import SealManager as SealManager
    from libs.vault_mode.validation import ValidationReporter as ValidationReporter

from libs.vault_mode.exceptions import (
    MigrationFailedError,
    StoreError,
    StoreSealedError,
    StoreUnreachableError,
    VaultModeError,
)
from libs.vault_mode.keys import UnsealKeyStore
from libs.vault_mode.mode_config import ModeConfig
from libs.vault_mode.settings import VaultModeSettings, get_settings
from libs.vault_mode.types import (
    BackupSnapshot,
    MigrationResult,
    MigrationStage,
    ModeRecord,
    SealState,
    SealStatus,
    Severity,
    StorageMode,
    UnsealKeySet,
    ValidationReport,
)

_LAZY_EXPORTS = {
    "BackupEngine": "libs.vault_mode.backup",
    "StoreClient": "libs.vault_mode.client",
    "MigrationCoordinator": "libs.vault_mode.migration",
    "SealManager": "libs.vault_mode.seal",
    "ValidationReporter": "libs.vault_mode.validation",
}


def __getattr__(name: str) -> Any:
    """Lazy load the hvac-backed components."""
    module_name = _LAZY_EXPORTS.get(name)
    if module_name is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    import importlib

    return getattr(importlib.import_module(module_name), name)


__all__ = [
    # Components
    "BackupEngine",
    "MigrationCoordinator",
    "ModeConfig",
    "SealManager",
    "StoreClient",
    "UnsealKeyStore",
    "ValidationReporter",
    # Settings
    "VaultModeSettings",
    "get_settings",
    # Data model
    "BackupSnapshot",
    "MigrationResult",
    "MigrationStage",
    "ModeRecord",
    "SealState",
    "SealStatus",
    "Severity",
    "StorageMode",
    "UnsealKeySet",
    "ValidationReport",
    # Exceptions
    "MigrationFailedError",
    "StoreError",
    "StoreSealedError",
    "StoreUnreachableError",
    "VaultModeError",
]
