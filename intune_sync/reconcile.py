"""Match two policy collections by name and classify every policy."""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Hashable, Iterable, List, Mapping, Optional, Sequence

from .differ import diff_properties
from .equality import DEFAULT_MAX_DEPTH
from .graph_client import GraphClient, GraphClientError
from .models import (
    DIFF_IGNORE_FIELDS,
    Classification,
    ComparisonReport,
    ComparisonResult,
    DiffEntry,
    InputError,
    policy_name,
    type_tag,
)
from .policy_types import PolicyType

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], None]
Document = Mapping[str, Any]


def index_by_name(
    documents: Iterable[Document], match_on_type: bool = False
) -> Dict[Hashable, Document]:
    """Index documents by display name; a later duplicate replaces an earlier one."""

    indexed: Dict[Hashable, Document] = {}
    for document in documents:
        name = policy_name(document)
        if not name:
            continue
        key: Hashable = (name, type_tag(document)) if match_on_type else name
        indexed[key] = document
    return indexed


def reconcile(
    current: Sequence[Document],
    baseline: Sequence[Document],
    policy_type: str,
    match_on_type: bool = False,
    ignore_fields: Iterable[str] = DIFF_IGNORE_FIELDS,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> ComparisonResult:
    """Partition two collections into added, removed, modified and unchanged policies.

    ``added`` holds policies only ``current`` has; ``removed`` those only the
    baseline has. Policies present on both sides are diffed property by
    property.
    """

    current_index = index_by_name(current, match_on_type)
    baseline_index = index_by_name(baseline, match_on_type)
    ignored = frozenset(ignore_fields)
    result = ComparisonResult()

    for key, document in current_index.items():
        if key not in baseline_index:
            result.added.append(
                DiffEntry(
                    name=_key_name(key),
                    policy_type=policy_type,
                    classification=Classification.ADDED,
                    current=dict(document),
                )
            )

    for key, document in baseline_index.items():
        if key not in current_index:
            result.removed.append(
                DiffEntry(
                    name=_key_name(key),
                    policy_type=policy_type,
                    classification=Classification.REMOVED,
                    baseline=dict(document),
                )
            )

    for key, document in current_index.items():
        counterpart = baseline_index.get(key)
        if counterpart is None:
            continue
        changes = diff_properties(document, counterpart, ignored, max_depth=max_depth)
        entry = DiffEntry(
            name=_key_name(key),
            policy_type=policy_type,
            classification=Classification.MODIFIED if changes else Classification.UNCHANGED,
            changes=changes,
            current=dict(document),
            baseline=dict(counterpart),
        )
        if changes:
            result.modified.append(entry)
        else:
            result.unchanged.append(entry)

    return result


def _key_name(key: Hashable) -> str:
    return key[0] if isinstance(key, tuple) else str(key)


def find_match(
    documents: Iterable[Document], name: str, type_tag_value: Optional[str] = None
) -> Optional[Document]:
    """Return the last document named ``name`` (and tagged ``type_tag_value`` if given)."""

    match: Optional[Document] = None
    for document in documents:
        if policy_name(document) != name:
            continue
        if type_tag_value and type_tag(document) != type_tag_value:
            continue
        match = document
    return match


def name_exists(documents: Iterable[Document], name: str, type_tag_value: Optional[str] = None) -> bool:
    return find_match(documents, name, type_tag_value) is not None


def find_existing(
    client: GraphClient,
    policy_type: PolicyType,
    name: str,
    type_tag_value: Optional[str],
    name_field: str,
) -> Optional[Document]:
    """Look a policy up on the target tenant; lookup failures count as "not found"."""

    try:
        candidates = client.find_policies_by_name(policy_type, name, name_field)
    except GraphClientError as exc:
        logger.warning("Lookup of '%s' in %s failed, treating as absent: %s", name, policy_type.value, exc)
        return None
    return find_match(candidates, name, type_tag_value)


def _backup_policies(backup: Mapping[str, Any], policy_type: str) -> List[Document]:
    policies = backup.get("policies") or {}
    return list(policies.get(policy_type) or [])


def _is_polymorphic(key: str) -> bool:
    # Same-named documents of different platforms are distinct policies.
    policy_type = PolicyType.lookup(key)
    return bool(policy_type and policy_type.info.polymorphic)


def _resolve_types(backups: Sequence[Mapping[str, Any]], policy_types: Optional[Iterable[str]]) -> List[str]:
    if policy_types is not None:
        return list(policy_types)
    keys: Dict[str, None] = {}
    for backup in backups:
        for key in (backup.get("policies") or {}).keys():
            keys[key] = None
    return list(keys)


def compare_backups(
    current_backup: Mapping[str, Any],
    baseline_backup: Mapping[str, Any],
    policy_types: Optional[Iterable[str]] = None,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> ComparisonReport:
    """Compare two backup files; ``current_backup`` plays the role of "now"."""

    report = ComparisonReport()
    for key in _resolve_types([current_backup, baseline_backup], policy_types):
        report.add(
            key,
            reconcile(
                _backup_policies(current_backup, key),
                _backup_policies(baseline_backup, key),
                key,
                match_on_type=_is_polymorphic(key),
                max_depth=max_depth,
            ),
        )
    return report


def compare_with_tenant(
    client: GraphClient,
    backup: Mapping[str, Any],
    policy_types: Optional[Iterable[str]] = None,
    on_progress: Optional[ProgressCallback] = None,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> ComparisonReport:
    """Compare the tenant's current policies against a backup."""

    keys = _resolve_types([backup], policy_types)
    resolved: List[PolicyType] = []
    for key in keys:
        policy_type = PolicyType.lookup(key)
        if policy_type is None:
            raise InputError(f"Unknown policy type '{key}'.")
        resolved.append(policy_type)

    report = ComparisonReport()
    total = len(resolved)
    for index, policy_type in enumerate(resolved, start=1):
        try:
            current = client.list_policies(policy_type)
        except GraphClientError as exc:
            logger.warning("Failed to fetch %s, comparing against an empty set: %s", policy_type.value, exc)
            current = []
        report.add(
            policy_type.value,
            reconcile(
                current,
                _backup_policies(backup, policy_type.value),
                policy_type.value,
                match_on_type=policy_type.info.polymorphic,
                max_depth=max_depth,
            ),
        )
        if on_progress:
            on_progress(index, total, f"Compared {policy_type.label}")
    return report


__all__ = [
    "ProgressCallback",
    "compare_backups",
    "compare_with_tenant",
    "find_existing",
    "find_match",
    "index_by_name",
    "name_exists",
    "reconcile",
]
