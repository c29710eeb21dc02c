"""Tests for unseal key file storage."""

import json
import logging
import stat
from datetime import UTC, datetime

import pytest

from libs.vault_mode.exceptions import KeyMaterialNotFoundError
from libs.vault_mode.keys import UnsealKeyStore
from libs.vault_mode.types import UnsealKeySet


@pytest.fixture()
def key_set():
    return UnsealKeySet(
        keys=["k1", "k2", "k3", "k4", "k5"],
        threshold=3,
        shares=5,
        root_token="hvs.root",
        created_at=datetime(2026, 1, 1, tzinfo=UTC),
    )


class TestUnsealKeySet:
    def test_threshold_cannot_exceed_keys(self):
        with pytest.raises(ValueError):
            UnsealKeySet(
                keys=["k1"],
                threshold=2,
                shares=2,
                root_token="t",
                created_at=datetime.now(UTC),
            )

    def test_repr_hides_material(self, key_set):
        text = repr(key_set)

        assert "k1" not in text
        assert "hvs.root" not in text


class TestUnsealKeyStore:
    def test_save_is_owner_only(self, tmp_path, key_set):
        store = UnsealKeyStore(tmp_path / "vault-unseal-keys.json")

        store.save(key_set)

        mode = stat.S_IMODE(store.path.stat().st_mode)
        assert mode == 0o600
        assert store.permissions_ok()

    def test_round_trip_preserves_key_order(self, tmp_path, key_set):
        store = UnsealKeyStore(tmp_path / "vault-unseal-keys.json")
        store.save(key_set)

        loaded = store.load()

        assert loaded == key_set
        assert loaded.keys == ["k1", "k2", "k3", "k4", "k5"]

    def test_missing_file(self, tmp_path):
        store = UnsealKeyStore(tmp_path / "missing.json")

        assert not store.exists()
        assert not store.permissions_ok()
        with pytest.raises(KeyMaterialNotFoundError):
            store.load()

    def test_invalid_file_does_not_echo_contents(self, tmp_path):
        path = tmp_path / "keys.json"
        path.write_text(json.dumps({"keys": ["super-secret-share"], "threshold": 9}))
        path.chmod(0o600)

        with pytest.raises(KeyMaterialNotFoundError) as exc_info:
            UnsealKeyStore(path).load()

        assert "super-secret-share" not in str(exc_info.value)

    def test_loose_permissions_warn_but_load(self, tmp_path, key_set, caplog):
        store = UnsealKeyStore(tmp_path / "keys.json")
        store.save(key_set)
        store.path.chmod(0o644)

        with caplog.at_level(logging.WARNING, logger="libs.vault_mode.keys"):
            loaded = store.load()

        assert loaded == key_set
        assert not store.permissions_ok()
        assert "insecure permissions" in caplog.text
