"""Import policies from a backup into a tenant with conflict resolution."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .assignments import apply_assignments, remap_assignments, replace_assignments
from .differ import clean_document
from .graph_client import GraphClient, GraphClientError
from .models import (
    ASSIGNMENTS_FIELD,
    IdentityMapping,
    ImportMode,
    ImportOutcome,
    ImportResult,
    ImportStats,
    InputError,
    ValidationResult,
    policy_name,
    type_tag,
)
from .policy_types import PolicyType, lookup_field
from .reconcile import ProgressCallback, find_existing

logger = logging.getLogger(__name__)


def validate_import_file(data: Optional[Mapping[str, Any]]) -> ValidationResult:
    """Check a backup before importing it, without raising."""

    if not data:
        return ValidationResult.from_errors(["Import file is empty or invalid"])

    errors: List[str] = []
    policies = data.get("policies")
    if not policies:
        errors.append("Missing policies data in import file")
    if not data.get("exportDate"):
        errors.append("Missing export date in import file")

    policy_count = 0
    if isinstance(policies, Mapping):
        policy_count = sum(len(items) for items in policies.values() if isinstance(items, list))
        if policy_count == 0:
            errors.append("No policies found in import file")
    elif policies:
        errors.append("Policies data must map policy types to lists")

    return ValidationResult.from_errors(
        errors,
        policy_count=policy_count,
        export_date=data.get("exportDate"),
        organization=data.get("organization"),
    )


class ImportEngine:
    """Creates, skips, replaces or updates policies in the target tenant."""

    def __init__(self, client: GraphClient) -> None:
        self._client = client

    def import_policies(
        self,
        backup: Mapping[str, Any],
        mode: ImportMode | str = ImportMode.ALWAYS,
        mapping: Optional[IdentityMapping] = None,
        selected_types: Optional[Iterable[str]] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ImportResult:
        """Import every selected policy, one at a time.

        Input problems raise :class:`InputError` before anything is sent to
        Graph. A failure on one policy is recorded in its outcome and the run
        continues with the next one.
        """

        import_mode = ImportMode.parse(mode)
        identity_mapping = mapping or IdentityMapping()
        batches = self._plan(backup, selected_types)
        total = sum(len(documents) for _, documents in batches)
        if total == 0:
            raise InputError("No policies selected for import")

        result = ImportResult(stats=ImportStats(total=total))
        current = 0
        for policy_type, documents in batches:
            for document in documents:
                current += 1
                name = policy_name(document) or "Unknown"
                outcome = self._import_one(policy_type, document, name, import_mode, identity_mapping)
                result.outcomes.append(outcome)
                result.stats.record(outcome)
                if on_progress:
                    on_progress(current, total, f"Importing {name}")

        result.stats.end_time = datetime.now(timezone.utc)
        logger.info(
            "Import finished: %s imported, %s skipped, %s failed.",
            result.stats.imported,
            result.stats.skipped,
            result.stats.failed,
        )
        return result

    def _plan(
        self, backup: Mapping[str, Any], selected_types: Optional[Iterable[str]]
    ) -> List[tuple[PolicyType, List[Mapping[str, Any]]]]:
        if not backup or not backup.get("policies"):
            raise InputError("Invalid import file: missing policies data")
        policies = backup["policies"]
        if not isinstance(policies, Mapping):
            raise InputError("Invalid import file: policies must map policy types to lists")

        keys = list(selected_types) if selected_types is not None else list(policies.keys())
        batches: List[tuple[PolicyType, List[Mapping[str, Any]]]] = []
        for key in keys:
            policy_type = PolicyType.lookup(key)
            if policy_type is None:
                raise InputError(f"Unknown policy type '{key}'.")
            documents = policies.get(policy_type.value) or []
            if documents:
                batches.append((policy_type, list(documents)))
        return batches

    def _import_one(
        self,
        policy_type: PolicyType,
        document: Mapping[str, Any],
        name: str,
        mode: ImportMode,
        mapping: IdentityMapping,
    ) -> ImportOutcome:
        outcome = ImportOutcome(name=name, policy_type=policy_type.value, action="imported")
        try:
            existing = None
            if mode is not ImportMode.ALWAYS:
                existing = self._find_existing(policy_type, document, name)

            if existing is not None:
                existing_id = str(existing.get("id"))
                if mode is ImportMode.SKIP:
                    outcome.action = "skipped"
                    outcome.reason = "already exists"
                    return outcome
                if mode is ImportMode.UPDATE:
                    self._update(policy_type, existing_id, document, mapping)
                    outcome.id = existing_id
                    outcome.method = "updated"
                    return outcome
                # REPLACE: the old policy must be gone before its successor is created.
                self._delete(policy_type, existing_id)

            outcome.id = self._create(policy_type, document, mapping)
            outcome.method = "created"
        except GraphClientError as exc:
            logger.warning("Failed to import %s '%s': %s", policy_type.value, name, exc)
            outcome.action = "failed"
            outcome.error = str(exc)
            outcome.id = None
            outcome.method = None
        return outcome

    def _find_existing(
        self, policy_type: PolicyType, document: Mapping[str, Any], name: str
    ) -> Optional[Mapping[str, Any]]:
        tag = type_tag(document)
        required_tag = tag if policy_type.info.polymorphic else None
        return find_existing(self._client, policy_type, name, required_tag, lookup_field(policy_type, tag))

    def _create(self, policy_type: PolicyType, document: Mapping[str, Any], mapping: IdentityMapping) -> Optional[str]:
        try:
            created = self._client.create_policy(policy_type, clean_document(document))
        except GraphClientError as exc:
            raise _wrap("Failed to create policy", exc) from exc
        policy_id = created.get("id")
        assignments = document.get(ASSIGNMENTS_FIELD) or []
        if assignments and policy_id:
            apply_assignments(self._client, policy_type, policy_id, remap_assignments(assignments, mapping))
        return policy_id

    def _update(
        self, policy_type: PolicyType, policy_id: str, document: Mapping[str, Any], mapping: IdentityMapping
    ) -> None:
        try:
            self._client.patch_policy(policy_type, policy_id, clean_document(document))
        except GraphClientError as exc:
            raise _wrap("Failed to update policy", exc) from exc
        assignments = document.get(ASSIGNMENTS_FIELD)
        if assignments:
            replace_assignments(self._client, policy_type, policy_id, remap_assignments(assignments, mapping))

    def _delete(self, policy_type: PolicyType, policy_id: str) -> None:
        try:
            self._client.delete_policy(policy_type, policy_id)
        except GraphClientError as exc:
            raise _wrap("Failed to delete policy", exc) from exc


def _wrap(message: str, exc: GraphClientError) -> GraphClientError:
    return GraphClientError(f"{message}: {exc}")


def import_summary(result: ImportResult) -> Dict[str, int]:
    return {
        "total": result.stats.total,
        "imported": result.stats.imported,
        "skipped": result.stats.skipped,
        "failed": result.stats.failed,
    }


__all__ = ["ImportEngine", "import_summary", "validate_import_file"]
