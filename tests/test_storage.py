"""Tests for backup and identity mapping persistence."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from intune_sync.models import InputError
from intune_sync.storage import (
    backup_filename,
    load_backup,
    load_identity_mapping,
    save_backup,
    save_identity_mapping,
)


class TestBackups:
    def test_save_then_load(self, tmp_path, sample_backup) -> None:
        path = save_backup(tmp_path / "out" / "backup.json", sample_backup)
        assert load_backup(path) == sample_backup
        assert not (tmp_path / "out" / "backup.tmp").exists()

    def test_missing_file(self, tmp_path) -> None:
        with pytest.raises(InputError, match="does not exist"):
            load_backup(tmp_path / "missing.json")

    @pytest.mark.parametrize("content", ["{not json", "[1, 2]"])
    def test_rejects_bad_content(self, tmp_path, content) -> None:
        path = tmp_path / "bad.json"
        path.write_text(content, encoding="utf-8")
        with pytest.raises(InputError):
            load_backup(path)

    def test_filename(self) -> None:
        now = datetime(2026, 3, 4, 5, 6, 7, tzinfo=timezone.utc)
        name = backup_filename({"organization": {"name": "Contoso Ltd"}}, now)
        assert name == "intune-export-Contoso-Ltd-2026-03-04T05-06-07.json"
        assert backup_filename({}, now).startswith("intune-export-backup-")


class TestIdentityMapping:
    def test_none_path_is_empty(self) -> None:
        assert not load_identity_mapping(None)

    def test_yaml_file(self, tmp_path) -> None:
        path = tmp_path / "mapping.yaml"
        path.write_text("groups:\n  g-old: g-new\n  g-todo: null\nusers:\n  u-old: u-new\n", encoding="utf-8")
        mapping = load_identity_mapping(path)
        assert dict(mapping.groups) == {"g-old": "g-new"}
        assert dict(mapping.users) == {"u-old": "u-new"}

    def test_backup_migration_table_is_accepted(self, tmp_path) -> None:
        path = tmp_path / "backup.json"
        path.write_text(json.dumps({"migrationTable": {"groups": {"a": "b"}, "users": {}}}), encoding="utf-8")
        assert dict(load_identity_mapping(path).groups) == {"a": "b"}

    def test_round_trip_through_save(self, tmp_path) -> None:
        path = tmp_path / "nested" / "mapping.yaml"
        save_identity_mapping(path, {"groups": {"a": "b"}, "users": {"c": "d"}})
        assert load_identity_mapping(path).to_dict() == {"groups": {"a": "b"}, "users": {"c": "d"}}

    @pytest.mark.parametrize("content", ["- a\n- b\n", "groups: [a, b]\n", "groups: {a\n"])
    def test_invalid_files(self, tmp_path, content) -> None:
        path = tmp_path / "mapping.yaml"
        path.write_text(content, encoding="utf-8")
        with pytest.raises(InputError):
            load_identity_mapping(path)

    def test_missing_file(self, tmp_path) -> None:
        with pytest.raises(InputError):
            load_identity_mapping(tmp_path / "nope.yaml")
