"""Export tenant policies into a backup document."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .graph_client import GraphClient, GraphClientError, GraphError
from .models import ASSIGNMENTS_FIELD, InputError, policy_name
from .policy_types import PolicyType
from .reconcile import ProgressCallback

logger = logging.getLogger(__name__)


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def export_policies(
    client: GraphClient,
    policy_types: Iterable[str],
    include_assignments: bool = True,
    on_progress: Optional[ProgressCallback] = None,
) -> Dict[str, Any]:
    """Fetch the selected policy types into a backup that import and compare accept."""

    resolved: List[PolicyType] = []
    for key in policy_types:
        policy_type = PolicyType.lookup(key)
        if policy_type is None:
            raise InputError(f"Unknown policy type '{key}'.")
        resolved.append(policy_type)
    if not resolved:
        raise InputError("No policy types selected for export")

    started = _utc_now_iso()
    backup: Dict[str, Any] = {
        "exportDate": started,
        "organization": _organization(client),
        "policies": {},
        "migrationTable": {"groups": {}, "users": {}},
        "statistics": {},
    }
    stats = {"totalPolicies": 0, "exportedPolicies": 0, "failedPolicies": 0, "startTime": started}

    total = len(resolved)
    for index, policy_type in enumerate(resolved, start=1):
        try:
            documents = _export_type(client, policy_type, include_assignments)
        except GraphClientError as exc:
            logger.warning("Error exporting %s: %s", policy_type.label, exc)
            documents = []
            stats["failedPolicies"] += 1
        backup["policies"][policy_type.value] = documents
        backup["statistics"][policy_type.value] = len(documents)
        stats["totalPolicies"] += len(documents)
        stats["exportedPolicies"] += len(documents)
        if on_progress:
            on_progress(index, total, f"Exported {policy_type.label}")

    backup["migrationTable"] = migration_template(backup["policies"])
    stats["endTime"] = _utc_now_iso()
    backup["exportStats"] = stats
    return backup


def _organization(client: GraphClient) -> Dict[str, Any]:
    try:
        return client.get_organization()
    except GraphClientError as exc:
        logger.warning("Could not fetch organization info: %s", exc)
        return {"name": "Unknown Organization", "tenantId": None, "verifiedDomains": []}


def _export_type(client: GraphClient, policy_type: PolicyType, include_assignments: bool) -> List[Dict[str, Any]]:
    info = policy_type.info
    exported: List[Dict[str, Any]] = []
    for document in client.list_policies(policy_type, info.export_filter):
        entry = dict(document)
        entry["_metadata"] = {
            "exportDate": _utc_now_iso(),
            "policyType": policy_type.value,
            "originalId": document.get("id"),
        }
        policy_id = document.get("id")
        if info.supports_assignments and include_assignments and policy_id:
            entry[ASSIGNMENTS_FIELD] = _assignments(client, policy_type, policy_id)
        if info.include_content and policy_id:
            try:
                entry["_scriptContent"] = client.get_script_content(policy_id)
            except GraphClientError as exc:
                logger.warning("Could not fetch script content for %s: %s", policy_name(document), exc)
        exported.append(entry)
    return exported


def _assignments(client: GraphClient, policy_type: PolicyType, policy_id: str) -> List[Dict[str, Any]]:
    try:
        return client.list_assignments(policy_type, policy_id)
    except GraphError as exc:
        if exc.status_code in (403, 404):
            return []
        logger.warning("Could not fetch assignments for %s: %s", policy_id, exc)
        return []


def migration_template(policies: Mapping[str, Iterable[Mapping[str, Any]]]) -> Dict[str, Dict[str, None]]:
    """List every group and user id referenced by assignments, mapped to nothing yet."""

    groups: Dict[str, None] = {}
    users: Dict[str, None] = {}
    for documents in policies.values():
        for document in documents:
            for assignment in document.get(ASSIGNMENTS_FIELD) or []:
                target = assignment.get("target") or {}
                if target.get("groupId"):
                    groups[str(target["groupId"])] = None
                elif target.get("userId"):
                    users[str(target["userId"])] = None
    return {"groups": groups, "users": users}


__all__ = ["export_policies", "migration_template"]
