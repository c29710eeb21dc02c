"""
Shared fixtures for tests.

Provides an in-memory stand-in for the store (with its seal semantics), an
orchestrator that relaunches it, and a fully wired MigrationCoordinator
whose files all live under a per-test data directory.
"""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import pytest

from libs.vault_mode.backup import BackupEngine
from libs.vault_mode.exceptions import (
    SecretNotFoundError,
    StoreAlreadyInitializedError,
    StoreRequestError,
    StoreSealedError,
    StoreUnauthorizedError,
    StoreUnreachableError,
)
from libs.vault_mode.keys import UnsealKeyStore
from libs.vault_mode.migration import MigrationCoordinator
from libs.vault_mode.mode_config import ModeConfig
from libs.vault_mode.orchestrator import ProcessOrchestrator
from libs.vault_mode.types import (
    EPHEMERAL_ROOT_TOKEN,
    ModeRecord,
    SealState,
    StorageMode,
    UnsealKeySet,
)
from libs.vault_mode.validation import ValidationReporter

PERSISTENT_ROOT_TOKEN = "hvs.persistent-root"


class FakeStore:
    """In-memory stand-in for StoreClient with the store's seal semantics.

    Ephemeral launches start empty, initialized and unsealed. Persistent
    launches keep their data across restarts and come up sealed once
    initialized.
    """

    def __init__(self, mode: StorageMode = StorageMode.ephemeral) -> None:
        self.url = "http://fake-vault:8200"
        self.mount_point = "secret"
        self.token = EPHEMERAL_ROOT_TOKEN
        self.mode = mode
        self.data: dict = {}
        self.persistent_data: dict = {}
        self.persistent_initialized = False
        self.persistent_keys: list[str] = []
        self.threshold = 0
        self.sealed = False
        self.progress = 0
        self.down_for = 0
        self.unreachable = False
        self.fail_reads: set[str] = set()
        self.calls: list[tuple[str, str | None]] = []
        self.closed = False
        if mode == StorageMode.persistent:
            self.relaunch(mode)

    # -- test controls -------------------------------------------------------

    def relaunch(self, mode: StorageMode) -> None:
        if self.mode == StorageMode.persistent:
            self.persistent_data = self.data
        self.mode = mode
        self.progress = 0
        if mode == StorageMode.ephemeral:
            self.data = {}
            self.sealed = False
        else:
            self.data = self.persistent_data
            self.sealed = self.persistent_initialized

    def seal(self) -> None:
        self.sealed = True
        self.progress = 0

    @property
    def initialized(self) -> bool:
        return self.mode == StorageMode.ephemeral or self.persistent_initialized

    def _expected_token(self) -> str:
        return EPHEMERAL_ROOT_TOKEN if self.mode == StorageMode.ephemeral else PERSISTENT_ROOT_TOKEN

    def _check_reachable(self) -> None:
        if self.unreachable:
            raise StoreUnreachableError("Store unreachable at fake", operation="health")
        if self.down_for > 0:
            self.down_for -= 1
            raise StoreUnreachableError("Store restarting", operation="health")

    def _check_kv(self, operation: str, path: str) -> None:
        self._check_reachable()
        if not self.initialized:
            raise StoreRequestError("Store is not initialized", operation=operation, path=path)
        if self.sealed:
            raise StoreSealedError("Store is sealed", operation=operation, path=path)
        if self.token != self._expected_token():
            raise StoreUnauthorizedError("Permission denied", operation=operation, path=path)

    # -- StoreClient interface -----------------------------------------------

    def use_token(self, token: str) -> None:
        self.token = token

    def health(self) -> SealState:
        self.calls.append(("health", None))
        self._check_reachable()
        return SealState(
            initialized=self.initialized,
            sealed=self.sealed,
            progress=self.progress,
            threshold=self.threshold if self.mode == StorageMode.persistent else 1,
            shares=len(self.persistent_keys) if self.mode == StorageMode.persistent else 1,
        )

    def init(self, shares: int, threshold: int) -> UnsealKeySet:
        self.calls.append(("init", None))
        self._check_reachable()
        if self.initialized:
            raise StoreAlreadyInitializedError("Store is already initialized", operation="init")
        self.persistent_initialized = True
        self.persistent_keys = [f"key-{i}" for i in range(1, shares + 1)]
        self.threshold = threshold
        self.sealed = True
        return UnsealKeySet(
            keys=list(self.persistent_keys),
            threshold=threshold,
            shares=shares,
            root_token=PERSISTENT_ROOT_TOKEN,
            created_at=datetime.now(UTC),
        )

    def unseal(self, key: str) -> SealState:
        self.calls.append(("unseal", key))
        self._check_reachable()
        if key not in self.persistent_keys:
            raise StoreRequestError("invalid key", operation="unseal")
        if self.sealed:
            self.progress += 1
            if self.progress >= self.threshold:
                self.sealed = False
                self.progress = 0
        return SealState(
            initialized=True,
            sealed=self.sealed,
            progress=self.progress,
            threshold=self.threshold,
            shares=len(self.persistent_keys),
        )

    def read(self, path: str):
        self.calls.append(("read", path))
        self._check_kv("read", path)
        if path in self.fail_reads:
            raise StoreRequestError("read failed", operation="read", path=path)
        if path not in self.data:
            raise SecretNotFoundError(f"Secret not found: {path}", operation="read", path=path)
        return self.data[path]

    def list(self, prefix: str) -> list[str]:
        self.calls.append(("list", prefix))
        self._check_kv("list", prefix)
        base = prefix.strip("/") + "/"
        return sorted(p for p in self.data if p.startswith(base))

    def read_all(self, prefixes: list[str]) -> dict:
        return {path: self.read(path) for prefix in prefixes for path in self.list(prefix)}

    def write(self, path: str, value) -> None:
        self.calls.append(("write", path))
        self._check_kv("write", path)
        self.data[path] = value

    def close(self) -> None:
        self.closed = True


class FakeOrchestrator(ProcessOrchestrator):
    """Relaunches the FakeStore and lays down the raft database on disk."""

    def __init__(self, store: FakeStore, raft_dir: Path, relaunch_result: bool = True) -> None:
        self.store = store
        self.raft_dir = raft_dir
        self.relaunch_result = relaunch_result
        self.records: list[ModeRecord] = []

    def relaunch(self, record: ModeRecord) -> bool:
        self.records.append(record)
        if not self.relaunch_result:
            return False
        self.store.relaunch(record.mode)
        if record.mode == StorageMode.persistent:
            self.raft_dir.mkdir(parents=True, exist_ok=True)
            (self.raft_dir / "raft.db").touch()
        return True


@pytest.fixture()
def data_dir(tmp_path: Path) -> Path:
    path = tmp_path / "data"
    path.mkdir()
    return path


@pytest.fixture()
def raft_dir(data_dir: Path) -> Path:
    return data_dir / "vault-data" / "raft"


@pytest.fixture()
def fake_store() -> FakeStore:
    return FakeStore()


@pytest.fixture()
def fake_orchestrator(fake_store: FakeStore, raft_dir: Path) -> FakeOrchestrator:
    return FakeOrchestrator(fake_store, raft_dir)


@pytest.fixture()
def mode_config(data_dir: Path) -> ModeConfig:
    return ModeConfig(data_dir / "vault-mode.json")


@pytest.fixture()
def key_store(data_dir: Path) -> UnsealKeyStore:
    return UnsealKeyStore(data_dir / "vault-unseal-keys.json")


@pytest.fixture()
def backups(fake_store: FakeStore, data_dir: Path) -> BackupEngine:
    return BackupEngine(fake_store, data_dir / "vault-backups")


@pytest.fixture()
def reporter(fake_store, mode_config, key_store, backups, raft_dir) -> ValidationReporter:
    return ValidationReporter(fake_store, mode_config, key_store, backups, raft_dir)


@pytest.fixture()
def coordinator(
    fake_store, mode_config, key_store, backups, fake_orchestrator, reporter
) -> MigrationCoordinator:
    return MigrationCoordinator(
        client=fake_store,
        mode_config=mode_config,
        key_store=key_store,
        backups=backups,
        orchestrator=fake_orchestrator,
        reporter=reporter,
        prefixes=["dev", "test", "ci", "prod"],
        retention=5,
        init_shares=5,
        init_threshold=3,
        ready_timeout=5,
        updated_by="pytest",
    )


@pytest.fixture()
def persistent_setup(coordinator, fake_store, mode_config):
    """Store already switched to persistent mode (unsealed, auto-unseal on)."""
    result = coordinator.migrate(
        StorageMode.ephemeral,
        StorageMode.persistent,
        confirm_explicit=True,
        auto_unseal=True,
    )
    assert result.succeeded
    return coordinator
