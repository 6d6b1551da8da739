"""Bulk cloning of policies with pattern-based name transformations."""
from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from .assignments import apply_assignments, copy_assignments, remap_assignments
from .differ import clean_document
from .graph_client import GraphClient, GraphClientError
from .models import (
    ASSIGNMENTS_FIELD,
    CLONE_READ_ONLY_FIELDS,
    CloneOutcome,
    CloneResult,
    IdentityMapping,
    InputError,
    NameTransformation,
    ValidationResult,
    policy_name,
    type_tag,
)
from .policy_types import PolicyType, lookup_field
from .reconcile import ProgressCallback, find_existing

logger = logging.getLogger(__name__)

NAME_PLACEHOLDER = "{name}"


def validate_transformation(rule: NameTransformation) -> ValidationResult:
    errors: List[str] = []
    if not (rule.prefix or rule.suffix or rule.find or rule.pattern):
        errors.append("At least one transformation rule is required")
    if rule.find and rule.replace is None:
        errors.append("Replace value is required when using find")
    if rule.find:
        try:
            re.compile(rule.find)
        except re.error as exc:
            errors.append(f"Find expression is not a valid regular expression: {exc}")
    if rule.pattern and NAME_PLACEHOLDER not in rule.pattern:
        errors.append("Pattern must contain {name} placeholder")
    return ValidationResult.from_errors(errors)


def transform_name(original: str, rule: NameTransformation) -> str:
    """Apply prefix, suffix, find/replace, then pattern.

    A pattern is expanded with the original name and so takes precedence over
    the other rules.
    """

    new_name = original
    if rule.prefix:
        new_name = rule.prefix + new_name
    if rule.suffix:
        new_name = new_name + rule.suffix
    if rule.find and rule.replace is not None:
        replacement = rule.replace
        new_name = re.sub(rule.find, lambda _match: replacement, new_name)
    if rule.pattern:
        new_name = rule.pattern.replace(NAME_PLACEHOLDER, original, 1)
    return new_name


def preview_transformations(
    policies: Mapping[str, Sequence[Mapping[str, Any]]], rule: NameTransformation
) -> List[Dict[str, Any]]:
    preview: List[Dict[str, Any]] = []
    for key, documents in policies.items():
        policy_type = PolicyType.lookup(key)
        for document in documents:
            original = policy_name(document) or ""
            preview.append(
                {
                    "originalName": original,
                    "newName": transform_name(original, rule),
                    "policyType": key,
                    "supportsClone": bool(policy_type and policy_type.info.supports_clone),
                }
            )
    return preview


class CloneEngine:
    """Duplicates policies inside a tenant under transformed names."""

    def __init__(self, client: GraphClient) -> None:
        self._client = client

    def clone_policies(
        self,
        policies: Mapping[str, Sequence[Mapping[str, Any]]],
        rule: NameTransformation,
        check_duplicates: bool = True,
        clone_assignments: bool = True,
        mapping: Optional[IdentityMapping] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> CloneResult:
        validation = validate_transformation(rule)
        if not validation.valid:
            raise InputError("; ".join(validation.errors))

        selection = [(key, document) for key, documents in policies.items() for document in documents or []]
        if not selection:
            raise InputError("No policies selected for cloning")

        result = CloneResult(total=len(selection))
        for index, (key, document) in enumerate(selection, start=1):
            original = policy_name(document) or "Unknown"
            outcome = self._clone_one(key, document, original, rule, check_duplicates, clone_assignments, mapping)
            result.details.append(outcome)
            if on_progress:
                on_progress(index, result.total, f"Cloning {original}")

        logger.info(
            "Clone finished: %s cloned, %s skipped, %s failed.", result.cloned, result.skipped, result.failed
        )
        return result

    def _clone_one(
        self,
        key: str,
        document: Mapping[str, Any],
        original: str,
        rule: NameTransformation,
        check_duplicates: bool,
        clone_assignments: bool,
        mapping: Optional[IdentityMapping],
    ) -> CloneOutcome:
        policy_type = PolicyType.lookup(key)
        if policy_type is None or not policy_type.info.supports_clone:
            return CloneOutcome(
                original_name=original,
                policy_type=key,
                status="skipped",
                reason="type does not support cloning",
            )

        new_name = transform_name(original, rule)
        outcome = CloneOutcome(original_name=original, policy_type=key, status="cloned", new_name=new_name)
        tag = type_tag(document)

        if check_duplicates:
            existing = find_existing(self._client, policy_type, new_name, tag, lookup_field(policy_type, tag))
            if existing is not None:
                outcome.status = "skipped"
                outcome.reason = "name already exists"
                return outcome

        try:
            created = self._client.create_policy(policy_type, self._prepare(policy_type, document, new_name))
        except GraphClientError as exc:
            logger.warning("Failed to clone %s '%s': %s", key, original, exc)
            outcome.status = "failed"
            outcome.error = str(exc)
            return outcome

        outcome.id = created.get("id")
        assignments = document.get(ASSIGNMENTS_FIELD) or []
        if clone_assignments and assignments and outcome.id:
            targets = remap_assignments(assignments, mapping) if mapping else copy_assignments(assignments)
            apply_assignments(self._client, policy_type, outcome.id, targets)
        return outcome

    @staticmethod
    def _prepare(policy_type: PolicyType, document: Mapping[str, Any], new_name: str) -> Dict[str, Any]:
        cleaned = clean_document(document, CLONE_READ_ONLY_FIELDS)
        cleaned[policy_type.info.name_field] = new_name
        for field_name in ("displayName", "name"):
            if field_name in cleaned:
                cleaned[field_name] = new_name
        return cleaned


def selection_from_documents(
    policy_type: PolicyType, documents: Iterable[Mapping[str, Any]], names: Optional[Sequence[str]] = None
) -> Dict[str, List[Mapping[str, Any]]]:
    """Pick the documents to clone, optionally restricted to ``names``."""

    wanted = set(names or [])
    chosen = [doc for doc in documents if not wanted or policy_name(doc) in wanted]
    return {policy_type.value: chosen}


__all__ = [
    "CloneEngine",
    "NAME_PLACEHOLDER",
    "preview_transformations",
    "selection_from_documents",
    "transform_name",
    "validate_transformation",
]
