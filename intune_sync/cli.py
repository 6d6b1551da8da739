"""Command line interface for the Intune policy sync toolkit."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

import typer

from .cloner import (
    CloneEngine,
    preview_transformations,
    selection_from_documents,
    validate_transformation,
)
from .config import AppConfig, ConfigurationError, load_config
from .equality import ComparisonDepthError
from .exporter import export_policies
from .graph_client import GraphClient, GraphClientError
from .importer import ImportEngine, import_summary, validate_import_file
from .logging_setup import setup_logging
from .models import IdentityMapping, InputError, NameTransformation
from .policy_types import PolicyType, describe_policy_types
from .reconcile import compare_backups, compare_with_tenant
from .storage import backup_filename, load_backup, load_identity_mapping, save_backup

app = typer.Typer(help="Compare, export, import and clone Intune policies through Microsoft Graph.")


_CONFIG_OPTION = typer.Option(None, "--config", help="Path to a specific settings file (overrides default).")
_TYPE_OPTION = typer.Option(
    None, "--type", "-t", help="Policy type key to include (repeatable). Defaults to all types."
)


def _load_configuration(config_path: Optional[Path]) -> AppConfig:
    try:
        return load_config(config_path)
    except ConfigurationError as exc:
        typer.echo(f"Error: {exc}")
        raise typer.Exit(code=1)


def _build_client(config: AppConfig) -> GraphClient:
    try:
        return GraphClient(config.graph)
    except GraphClientError as exc:
        typer.echo(f"Error: {exc}")
        raise typer.Exit(code=1)


def _load_mapping(config: AppConfig, mapping_path: Optional[Path]) -> IdentityMapping:
    path = mapping_path or config.storage.mapping_file
    try:
        return load_identity_mapping(path)
    except InputError as exc:
        typer.echo(f"Error: {exc}")
        raise typer.Exit(code=1)


def _read_backup(path: Path) -> Dict[str, Any]:
    try:
        return load_backup(path)
    except InputError as exc:
        typer.echo(f"Error: {exc}")
        raise typer.Exit(code=1)


def _echo_progress(current: int, total: int, label: str) -> None:
    typer.echo(f"[{current}/{total}] {label}", err=True)


def _echo_json(payload: Mapping[str, Any]) -> None:
    typer.echo(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def _type_keys(types: Optional[Sequence[str]]) -> Optional[List[str]]:
    if not types:
        return None
    keys: List[str] = []
    for raw in types:
        policy_type = PolicyType.lookup(raw)
        if policy_type is None:
            raise typer.BadParameter(f"Unknown policy type '{raw}'. Use `types` to list them.")
        keys.append(policy_type.value)
    return keys


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
    config_path: Optional[Path] = _CONFIG_OPTION,
) -> None:
    """Configure logging before running a command."""

    try:
        config = load_config(config_path)
    except ConfigurationError:
        # The command reports configuration problems itself.
        setup_logging(debug=verbose)
        return
    setup_logging(config.logging.level, config.logging.file, debug=verbose)


@app.command("types")
def list_types() -> None:
    """Display the supported policy types."""

    for entry in describe_policy_types():
        flags = []
        if entry["supports_assignments"]:
            flags.append("assignments")
        if entry["supports_clone"]:
            flags.append("clone")
        typer.echo(f"- {entry['key']}: {entry['label']} ({entry['endpoint']}) [{', '.join(flags)}]")


@app.command("export")
def export_command(
    output: Optional[Path] = typer.Argument(None, help="Backup file to write. Defaults to the backup directory."),
    types: Optional[List[str]] = _TYPE_OPTION,
    no_assignments: bool = typer.Option(False, "--no-assignments", help="Skip exporting assignments."),
    config_path: Optional[Path] = _CONFIG_OPTION,
) -> None:
    """Export tenant policies to a JSON backup."""

    config = _load_configuration(config_path)
    client = _build_client(config)
    keys = _type_keys(types) or [policy_type.value for policy_type in PolicyType]

    try:
        backup = export_policies(client, keys, include_assignments=not no_assignments, on_progress=_echo_progress)
    except InputError as exc:
        typer.echo(f"Error: {exc}")
        raise typer.Exit(code=1)

    target = output or config.storage.backup_dir / backup_filename(backup)
    save_backup(target, backup)
    typer.echo(f"Exported {backup['exportStats']['exportedPolicies']} policies to {target}.")


@app.command("validate")
def validate_command(backup_path: Path = typer.Argument(..., help="Backup file to check.")) -> None:
    """Check that a backup file can be imported."""

    validation = validate_import_file(_read_backup(backup_path))
    _echo_json(validation.to_dict())
    if not validation.valid:
        raise typer.Exit(code=1)


@app.command("compare")
def compare_command(
    backup_path: Path = typer.Argument(..., help="Baseline backup file."),
    against: Optional[Path] = typer.Option(
        None, "--against", help="Compare with this backup instead of the live tenant."
    ),
    types: Optional[List[str]] = _TYPE_OPTION,
    summary_only: bool = typer.Option(False, "--summary", help="Only print the rollup counts."),
    config_path: Optional[Path] = _CONFIG_OPTION,
) -> None:
    """Compare a backup with the tenant, or with a second backup."""

    config = _load_configuration(config_path)
    baseline = _read_backup(backup_path)
    keys = _type_keys(types)

    try:
        if against is not None:
            report = compare_backups(_read_backup(against), baseline, keys, max_depth=config.engine.max_depth)
        else:
            client = _build_client(config)
            report = compare_with_tenant(
                client, baseline, keys, on_progress=_echo_progress, max_depth=config.engine.max_depth
            )
    except (InputError, ComparisonDepthError) as exc:
        typer.echo(f"Error: {exc}")
        raise typer.Exit(code=1)

    _echo_json({"summary": report.summary} if summary_only else report.to_dict())


@app.command("import")
def import_command(
    backup_path: Path = typer.Argument(..., help="Backup file to import."),
    mode: Optional[str] = typer.Option(
        None, "--mode", help="Conflict handling: always, skip, replace or update."
    ),
    mapping_path: Optional[Path] = typer.Option(
        None, "--mapping", help="YAML/JSON file mapping source group/user ids to target ids."
    ),
    types: Optional[List[str]] = _TYPE_OPTION,
    config_path: Optional[Path] = _CONFIG_OPTION,
) -> None:
    """Import policies from a backup into the tenant."""

    config = _load_configuration(config_path)
    backup = _read_backup(backup_path)
    mapping = _load_mapping(config, mapping_path)
    client = _build_client(config)

    try:
        result = ImportEngine(client).import_policies(
            backup,
            mode=mode or config.engine.default_mode,
            mapping=mapping,
            selected_types=_type_keys(types),
            on_progress=_echo_progress,
        )
    except InputError as exc:
        typer.echo(f"Error: {exc}")
        raise typer.Exit(code=1)

    _echo_json(result.to_dict())
    summary = import_summary(result)
    typer.echo(
        f"Imported {summary['imported']}, skipped {summary['skipped']}, failed {summary['failed']} "
        f"of {summary['total']} policies."
    )


@app.command("clone")
def clone_command(
    policy_type: str = typer.Argument(..., help="Policy type key of the policies to clone."),
    names: Optional[List[str]] = typer.Option(
        None, "--name", "-n", help="Display name of a policy to clone (repeatable). Defaults to all."
    ),
    prefix: Optional[str] = typer.Option(None, "--prefix", help="Text prepended to each name."),
    suffix: Optional[str] = typer.Option(None, "--suffix", help="Text appended to each name."),
    find: Optional[str] = typer.Option(None, "--find", help="Regular expression to replace in each name."),
    replace: Optional[str] = typer.Option(None, "--replace", help="Replacement text for --find."),
    pattern: Optional[str] = typer.Option(None, "--pattern", help="Name template containing {name}."),
    source: Optional[Path] = typer.Option(
        None, "--from-backup", help="Read source policies from a backup instead of the tenant."
    ),
    mapping_path: Optional[Path] = typer.Option(
        None, "--mapping", help="Remap assignment group/user ids with this table."
    ),
    no_check_duplicates: bool = typer.Option(
        False, "--no-check-duplicates", help="Create clones even if the new name already exists."
    ),
    no_assignments: bool = typer.Option(False, "--no-assignments", help="Do not copy assignments."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Only show the names that would be created."),
    config_path: Optional[Path] = _CONFIG_OPTION,
) -> None:
    """Clone policies under transformed names."""

    config = _load_configuration(config_path)
    resolved_type = PolicyType.lookup(policy_type)
    if resolved_type is None:
        raise typer.BadParameter(f"Unknown policy type '{policy_type}'. Use `types` to list them.")
    rule = NameTransformation(prefix=prefix, suffix=suffix, find=find, replace=replace, pattern=pattern)
    validation = validate_transformation(rule)
    if not validation.valid:
        if dry_run:
            _echo_json({"validation": validation.to_dict(), "preview": []})
        else:
            typer.echo(f"Error: {'; '.join(validation.errors)}")
        raise typer.Exit(code=1)

    client: Optional[GraphClient] = None
    if source is not None:
        documents = (_read_backup(source).get("policies") or {}).get(resolved_type.value) or []
    else:
        client = _build_client(config)
        try:
            documents = client.list_policies(resolved_type)
        except GraphClientError as exc:
            typer.echo(f"Error: {exc}")
            raise typer.Exit(code=1)
    selection = selection_from_documents(resolved_type, documents, names)

    if dry_run:
        _echo_json({"validation": validation.to_dict(), "preview": preview_transformations(selection, rule)})
        return

    mapping = _load_mapping(config, mapping_path) if (mapping_path or config.storage.mapping_file) else None
    client = client or _build_client(config)
    check_duplicates = config.engine.check_duplicates and not no_check_duplicates
    try:
        result = CloneEngine(client).clone_policies(
            selection,
            rule,
            check_duplicates=check_duplicates,
            clone_assignments=not no_assignments,
            mapping=mapping,
            on_progress=_echo_progress,
        )
    except InputError as exc:
        typer.echo(f"Error: {exc}")
        raise typer.Exit(code=1)

    _echo_json(result.to_dict())


def run():
    app()


if __name__ == "__main__":
    run()
