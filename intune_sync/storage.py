"""Persistence helpers for backup files and identity mapping tables."""
from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .models import IdentityMapping, InputError


def load_backup(path: Path) -> Dict[str, Any]:
    """Load a backup file produced by an export."""

    if not path.exists():
        raise InputError(f"Backup file '{path}' does not exist.")

    try:
        with path.open("r", encoding="utf-8") as handle:
            payload = json.load(handle)
    except ValueError as exc:
        raise InputError(f"Backup file '{path}' is not valid JSON: {exc}") from exc

    if not isinstance(payload, dict):
        raise InputError(f"Backup file '{path}' must contain a JSON object.")
    return payload


def save_backup(path: Path, backup: Dict[str, Any]) -> Path:
    """Write a backup atomically, returning the path that was written."""

    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(".tmp")
    with tmp_path.open("w", encoding="utf-8") as handle:
        json.dump(backup, handle, indent=2, ensure_ascii=False)
    tmp_path.replace(path)
    return path


def backup_filename(backup: Dict[str, Any], now: Optional[datetime] = None) -> str:
    organization = backup.get("organization") or {}
    name = str(organization.get("name") or "backup").strip() or "backup"
    slug = "-".join(name.split()).replace("/", "-")
    stamp = (now or datetime.now(timezone.utc)).strftime("%Y-%m-%dT%H-%M-%S")
    return f"intune-export-{slug}-{stamp}.json"


def load_identity_mapping(path: Optional[Path]) -> IdentityMapping:
    """Load a ``{groups: {...}, users: {...}}`` table from YAML or JSON.

    A backup's ``migrationTable`` section is accepted as well, so an exported
    template can be filled in and passed back directly.
    """

    if path is None:
        return IdentityMapping()
    if not path.exists():
        raise InputError(f"Identity mapping file '{path}' does not exist.")

    with path.open("r", encoding="utf-8") as handle:
        try:
            payload = yaml.safe_load(handle) or {}
        except yaml.YAMLError as exc:
            raise InputError(f"Identity mapping file '{path}' could not be parsed: {exc}") from exc

    if not isinstance(payload, dict):
        raise InputError(f"Identity mapping file '{path}' must contain a mapping.")
    if "migrationTable" in payload:
        payload = payload.get("migrationTable") or {}
    for section in ("groups", "users"):
        if payload.get(section) is not None and not isinstance(payload.get(section), dict):
            raise InputError(f"Identity mapping section '{section}' must map old ids to new ids.")
    return IdentityMapping.from_dict(payload)


def save_identity_mapping(path: Path, mapping: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(mapping, handle, sort_keys=False)


__all__ = [
    "backup_filename",
    "load_backup",
    "load_identity_mapping",
    "save_backup",
    "save_identity_mapping",
]
