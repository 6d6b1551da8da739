"""Tests for the typer command line interface."""

from __future__ import annotations

import json

import pytest
from typer.testing import CliRunner

from fakes import FakeGraphClient
from intune_sync import cli
from intune_sync.cli import app
from intune_sync.policy_types import PolicyType
from intune_sync.storage import save_backup

runner = CliRunner()


@pytest.fixture(autouse=True)
def isolated_cwd(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("INTUNE_SYNC_CONFIG", raising=False)
    return tmp_path


@pytest.fixture
def backup_file(tmp_path, sample_backup):
    return save_backup(tmp_path / "baseline.json", sample_backup)


class TestCli:
    def test_types_lists_every_policy_type(self) -> None:
        result = runner.invoke(app, ["types"])
        assert result.exit_code == 0
        assert "- deviceConfigurations: Device Configurations" in result.stdout
        assert "- mobileApps: Applications (/deviceAppManagement/mobileApps) [assignments]" in result.stdout

    def test_validate_good_backup(self, backup_file) -> None:
        result = runner.invoke(app, ["validate", str(backup_file)])
        assert result.exit_code == 0
        payload = json.loads(result.stdout)
        assert payload["valid"] is True
        assert payload["policy_count"] == 2

    def test_validate_missing_file(self, tmp_path) -> None:
        result = runner.invoke(app, ["validate", str(tmp_path / "missing.json")])
        assert result.exit_code == 1
        assert "does not exist" in result.stdout

    def test_compare_two_backups(self, tmp_path, sample_backup, backup_file) -> None:
        current = json.loads(json.dumps(sample_backup))
        current["policies"]["deviceConfigurations"][0]["passwordRequired"] = False
        current["policies"]["configurationPolicies"] = []
        current_file = save_backup(tmp_path / "current.json", current)

        result = runner.invoke(app, ["compare", str(backup_file), "--against", str(current_file), "--summary"])

        assert result.exit_code == 0
        assert json.loads(result.stdout) == {
            "summary": {"added": 0, "removed": 1, "modified": 1, "unchanged": 0}
        }

    def test_compare_rejects_unknown_type(self, backup_file) -> None:
        result = runner.invoke(app, ["compare", str(backup_file), "--against", str(backup_file), "--type", "bogus"])
        assert result.exit_code != 0

    def test_compare_without_credentials_fails(self, backup_file) -> None:
        result = runner.invoke(app, ["compare", str(backup_file)])
        assert result.exit_code == 1
        assert "credentials are not configured" in result.stdout

    def test_clone_dry_run_from_backup(self, backup_file) -> None:
        result = runner.invoke(
            app,
            ["clone", "deviceConfigurations", "--from-backup", str(backup_file), "--suffix", " - Copy", "--dry-run"],
        )
        assert result.exit_code == 0
        payload = json.loads(result.stdout)
        assert payload["validation"]["valid"] is True
        assert payload["preview"] == [
            {
                "originalName": "Baseline Policy",
                "newName": "Baseline Policy - Copy",
                "policyType": "deviceConfigurations",
                "supportsClone": True,
            }
        ]

    def test_clone_dry_run_reports_invalid_rule(self, backup_file) -> None:
        result = runner.invoke(
            app,
            ["clone", "deviceConfigurations", "--from-backup", str(backup_file), "--pattern", "copy", "--dry-run"],
        )
        assert result.exit_code == 1
        assert "Pattern must contain {name} placeholder" in result.stdout

    def test_import_without_credentials_fails(self, backup_file, tmp_path) -> None:
        settings = tmp_path / "settings.yaml"
        settings.write_text("graph:\n  tenant_id: t\n", encoding="utf-8")
        result = runner.invoke(app, ["import", str(backup_file), "--config", str(settings)])
        assert result.exit_code == 1
        assert "credentials are not configured" in result.stdout

    def test_clone_invalid_rule_makes_no_graph_calls(self, monkeypatch) -> None:
        graph = FakeGraphClient({PolicyType.DEVICE_CONFIGURATIONS: [{"id": "1", "displayName": "A"}]})
        monkeypatch.setattr(cli, "_build_client", lambda config: graph)

        result = runner.invoke(app, ["clone", "deviceConfigurations", "--pattern", "copy"])

        assert result.exit_code == 1
        assert "Pattern must contain {name} placeholder" in result.stdout
        assert graph.calls == []

    def test_clone_from_tenant_with_fake_client(self, monkeypatch) -> None:
        graph = FakeGraphClient({PolicyType.DEVICE_CONFIGURATIONS: [{"id": "1", "displayName": "A"}]})
        monkeypatch.setattr(cli, "_build_client", lambda config: graph)

        result = runner.invoke(app, ["clone", "deviceConfigurations", "--suffix", " (2)"])

        assert result.exit_code == 0
        assert [doc["displayName"] for doc in graph.created_documents()] == ["A (2)"]

    def test_compare_too_deep_backup_exits_cleanly(self, tmp_path, sample_backup, backup_file) -> None:
        settings = tmp_path / "settings.yaml"
        settings.write_text("engine:\n  max_depth: 5\n", encoding="utf-8")
        deep = current = {}
        for _ in range(10):
            current["child"] = {}
            current = current["child"]
        sample_backup["policies"]["deviceConfigurations"][0]["nested"] = deep
        deep_file = save_backup(tmp_path / "deep.json", sample_backup)

        result = runner.invoke(
            app, ["compare", str(deep_file), "--against", str(deep_file), "--config", str(settings)]
        )

        assert result.exit_code == 1
        assert "nested too deeply" in result.stdout
