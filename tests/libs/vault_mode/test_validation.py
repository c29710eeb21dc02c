"""Tests for the read-only validation report."""

import json

import pytest

from libs.vault_mode.exceptions import StoreSealedError
from libs.vault_mode.types import ModeRecord, Severity, StorageMode, ValidationReport


def _severity(report, check):
    findings = report.by_check(check)
    assert len(findings) == 1, f"expected one {check} finding, got {findings}"
    return findings[0].severity


class TestValidationReport:
    def test_overall_is_worst_severity(self):
        report = ValidationReport()
        assert report.overall == Severity.passed

        report.add("a", Severity.passed, "ok")
        report.add("b", Severity.warn, "hmm")
        assert report.overall == Severity.warn
        assert not report.has_failures

        report.add("c", Severity.fail, "bad", ["fix it"])
        assert report.overall == Severity.fail
        assert report.has_failures

    def test_to_dict(self):
        report = ValidationReport()
        report.add("seal_status", Severity.warn, "sealed", ["unseal"])

        assert report.to_dict() == {
            "overall": "warn",
            "findings": [
                {
                    "check": "seal_status",
                    "severity": "warn",
                    "message": "sealed",
                    "remediation": ["unseal"],
                }
            ],
        }


class TestEphemeral:
    def test_unconfigured_defaults_to_ephemeral(self, reporter, mode_config):
        report = reporter.check()

        assert _severity(report, "mode_record") == Severity.warn
        assert _severity(report, "store_reachable") == Severity.passed
        assert _severity(report, "mode_consistency") == Severity.passed
        assert report.by_check("seal_status") == []
        assert report.by_check("storage_artifacts") == []
        assert report.by_check("unseal_key_permissions") == []
        assert not mode_config.exists()

    def test_configured_ephemeral_passes(self, reporter, mode_config):
        mode_config.save(ModeRecord.for_mode(StorageMode.ephemeral))

        report = reporter.check()

        assert report.overall == Severity.passed

    def test_unreachable_store_warns(self, reporter, mode_config, fake_store):
        mode_config.save(ModeRecord.for_mode(StorageMode.ephemeral))
        fake_store.unreachable = True

        report = reporter.check()

        assert _severity(report, "store_reachable") == Severity.warn
        assert report.by_check("mode_consistency") == []
        assert not report.has_failures

    def test_store_running_persistent_is_inconsistent(self, reporter, mode_config, fake_store):
        mode_config.save(ModeRecord.for_mode(StorageMode.ephemeral))
        fake_store.relaunch(StorageMode.persistent)
        fake_store.init(shares=5, threshold=3)

        report = reporter.check()

        assert _severity(report, "mode_consistency") == Severity.fail


class TestPersistent:
    def test_healthy_after_switch(self, persistent_setup, reporter):
        report = reporter.check()

        assert report.overall == Severity.passed
        for check in ("seal_status", "storage_artifacts", "unseal_key_permissions"):
            assert _severity(report, check) == Severity.passed

    def test_sealed_store_warns_with_instructions(self, persistent_setup, reporter, fake_store):
        fake_store.seal()

        report = reporter.check()

        finding = report.by_check("seal_status")[0]
        assert finding.severity == Severity.warn
        assert "sealed" in finding.message
        assert any("vault operator unseal" in step for step in finding.remediation)
        with pytest.raises(StoreSealedError):
            fake_store.read_all(["dev"])

    def test_missing_raft_database_fails(self, persistent_setup, reporter, raft_dir):
        (raft_dir / "raft.db").unlink()

        report = reporter.check()

        assert _severity(report, "storage_artifacts") == Severity.fail

    def test_uninitialized_with_raft_data_is_inconsistent(
        self, reporter, mode_config, fake_store, raft_dir
    ):
        mode_config.save(ModeRecord.for_mode(StorageMode.persistent))
        fake_store.relaunch(StorageMode.persistent)
        raft_dir.mkdir(parents=True)
        (raft_dir / "raft.db").touch()

        report = reporter.check()

        assert _severity(report, "seal_status") == Severity.fail
        assert _severity(report, "mode_consistency") == Severity.fail

    def test_unreachable_persistent_store_fails(self, persistent_setup, reporter, fake_store):
        fake_store.unreachable = True

        report = reporter.check()

        assert _severity(report, "seal_status") == Severity.fail

    def test_loose_key_permissions_fail(self, persistent_setup, reporter, key_store):
        key_store.path.chmod(0o644)

        report = reporter.check()

        finding = report.by_check("unseal_key_permissions")[0]
        assert finding.severity == Severity.fail
        assert finding.remediation == [f"chmod 600 {key_store.path}"]

    def test_missing_key_file_warns(self, persistent_setup, reporter, key_store):
        key_store.path.unlink()

        report = reporter.check()

        assert _severity(report, "unseal_key_permissions") == Severity.warn


class TestArtifacts:
    def test_corrupt_mode_record(self, reporter, mode_config):
        mode_config.path.write_text("{broken")

        report = reporter.check()

        assert _severity(report, "mode_record") == Severity.fail
        assert report.by_check("mode_consistency") == []

    def test_corrupt_latest_backup(self, reporter, backups, fake_store):
        fake_store.data["dev/API_KEY"] = "abc123"
        snap = backups.snapshot(["dev"], StorageMode.ephemeral)
        metadata_file = backups.backups_dir / snap.snapshot_id / "metadata.json"
        metadata = json.loads(metadata_file.read_text())
        metadata["entry_count"] = 5
        metadata_file.write_text(json.dumps(metadata))

        report = reporter.check()

        assert _severity(report, "backup_integrity") == Severity.fail

    def test_verified_backup_passes(self, reporter, backups, fake_store):
        fake_store.data["dev/API_KEY"] = "abc123"
        backups.snapshot(["dev"], StorageMode.ephemeral)

        report = reporter.check()

        finding = report.by_check("backup_integrity")[0]
        assert finding.severity == Severity.passed
        assert "1 entries" in finding.message
