"""Tests for ModeRecord persistence."""

import json
from datetime import UTC, datetime
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from libs.vault_mode.exceptions import ModeNotConfiguredError, ModeRecordCorruptError
from libs.vault_mode.mode_config import ModeConfig
from libs.vault_mode.types import LAUNCH_COMMANDS, ModeRecord, StorageMode


class TestModeRecord:
    def test_for_mode_derives_launch_command(self):
        record = ModeRecord.for_mode(StorageMode.persistent, auto_unseal=True)

        assert record.launch_command == "server -config=/vault/config/vault-persistent.hcl"
        assert record.auto_unseal is True

    def test_ephemeral_never_auto_unseals(self):
        record = ModeRecord.for_mode(StorageMode.ephemeral, auto_unseal=True)

        assert record.auto_unseal is False
        assert "-dev-root-token-id=root" in record.launch_command

    def test_record_is_frozen(self):
        record = ModeRecord.for_mode(StorageMode.ephemeral)

        with pytest.raises(ValidationError):
            record.mode = StorageMode.persistent  # type: ignore[misc]


class TestModeConfig:
    def test_load_missing_raises_not_configured(self, tmp_path):
        config = ModeConfig(tmp_path / "vault-mode.json")

        with pytest.raises(ModeNotConfiguredError):
            config.load()

    def test_load_or_default_is_ephemeral(self, tmp_path):
        config = ModeConfig(tmp_path / "vault-mode.json")

        record = config.load_or_default()

        assert record.mode == StorageMode.ephemeral
        assert record.launch_command == LAUNCH_COMMANDS[StorageMode.ephemeral]
        assert not config.exists()

    def test_save_then_load_is_identity(self, tmp_path):
        config = ModeConfig(tmp_path / "nested" / "vault-mode.json")
        record = ModeRecord.for_mode(
            StorageMode.persistent,
            auto_unseal=True,
            updated_by="alice",
            updated_at=datetime(2026, 1, 2, 3, 4, 5, 678901, tzinfo=UTC),
        )

        config.save(record)

        assert config.load() == record

    def test_save_replaces_existing_record(self, tmp_path):
        config = ModeConfig(tmp_path / "vault-mode.json")
        config.save(ModeRecord.for_mode(StorageMode.persistent))
        config.save(ModeRecord.for_mode(StorageMode.ephemeral))

        assert config.load().mode == StorageMode.ephemeral
        assert [p.name for p in tmp_path.iterdir()] == ["vault-mode.json"]

    def test_corrupt_json(self, tmp_path):
        path = tmp_path / "vault-mode.json"
        path.write_text("{not json")

        with pytest.raises(ModeRecordCorruptError):
            ModeConfig(path).load()

    def test_schema_mismatch_is_corrupt(self, tmp_path):
        path = tmp_path / "vault-mode.json"
        path.write_text(json.dumps({"mode": "sideways"}))

        with pytest.raises(ModeRecordCorruptError):
            ModeConfig(path).load()

    def test_load_or_default_does_not_mask_corruption(self, tmp_path):
        path = tmp_path / "vault-mode.json"
        path.write_text("")

        with pytest.raises(ModeRecordCorruptError):
            ModeConfig(path).load_or_default()

    def test_failed_write_keeps_previous_record(self, tmp_path):
        config = ModeConfig(tmp_path / "vault-mode.json")
        original = ModeRecord.for_mode(StorageMode.persistent)
        config.save(original)

        with patch("libs.common.file_utils.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                config.save(ModeRecord.for_mode(StorageMode.ephemeral))

        assert config.load() == original
        assert [p.name for p in tmp_path.iterdir()] == ["vault-mode.json"]
