"""Assignment remapping and best-effort assignment application."""
from __future__ import annotations

import copy
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .graph_client import GraphClient, GraphClientError
from .models import IdentityMapping
from .policy_types import PolicyType

logger = logging.getLogger(__name__)

UNIVERSAL_TARGET_MARKERS = (
    "allLicensedUsersAssignmentTarget",
    "allUsersAssignmentTarget",
    "allDevicesAssignmentTarget",
)


def is_universal_target(target: Mapping[str, Any]) -> bool:
    odata_type = str(target.get("@odata.type") or "")
    return any(marker in odata_type for marker in UNIVERSAL_TARGET_MARKERS)


def remap_assignments(
    assignments: Iterable[Mapping[str, Any]], mapping: IdentityMapping
) -> List[Dict[str, Any]]:
    """Rewrite group and user ids for the target tenant.

    Group targets (exclusions included) are looked up in ``mapping.groups`` and
    user targets in ``mapping.users``. Targets with no mapping are dropped;
    "all users" and "all devices" targets pass through unchanged. The result
    never has more entries than the input.
    """

    remapped: List[Dict[str, Any]] = []
    for assignment in assignments or []:
        target = assignment.get("target")
        if not isinstance(target, Mapping):
            continue

        if target.get("groupId"):
            new_id = mapping.groups.get(str(target["groupId"]))
            if not new_id:
                logger.warning("No mapping found for group %s; assignment dropped.", target["groupId"])
                continue
            remapped.append(_with_target(assignment, {**target, "groupId": new_id}))
        elif target.get("userId"):
            new_id = mapping.users.get(str(target["userId"]))
            if not new_id:
                logger.warning("No mapping found for user %s; assignment dropped.", target["userId"])
                continue
            remapped.append(_with_target(assignment, {**target, "userId": new_id}))
        elif is_universal_target(target):
            remapped.append(_with_target(assignment, dict(target)))
        else:
            logger.debug("Unsupported assignment target %s; assignment dropped.", target.get("@odata.type"))
    return remapped


def copy_assignments(assignments: Iterable[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    """Copy assignments unchanged, for use within the same tenant."""

    return [
        _with_target(assignment, dict(assignment["target"]))
        for assignment in assignments or []
        if isinstance(assignment.get("target"), Mapping)
    ]


def _with_target(assignment: Mapping[str, Any], target: Dict[str, Any]) -> Dict[str, Any]:
    # The source assignment id belongs to the source policy.
    result = {key: copy.deepcopy(value) for key, value in assignment.items() if key not in {"id", "target"}}
    result["target"] = copy.deepcopy(target)
    return result


def apply_assignments(
    client: GraphClient,
    policy_type: PolicyType,
    policy_id: str,
    assignments: Iterable[Mapping[str, Any]],
) -> int:
    """Create each assignment, logging failures. Returns how many were created."""

    created = 0
    for assignment in assignments:
        try:
            client.create_assignment(policy_type, policy_id, assignment)
        except GraphClientError as exc:
            logger.warning("Failed to create assignment on %s %s: %s", policy_type.value, policy_id, exc)
            continue
        created += 1
    return created


def replace_assignments(
    client: GraphClient,
    policy_type: PolicyType,
    policy_id: str,
    assignments: Iterable[Mapping[str, Any]],
) -> int:
    """Delete every existing assignment, then create ``assignments``."""

    try:
        existing = client.list_assignments(policy_type, policy_id)
    except GraphClientError as exc:
        logger.warning("Could not list assignments of %s %s: %s", policy_type.value, policy_id, exc)
        existing = []

    for assignment in existing:
        assignment_id: Optional[str] = assignment.get("id")
        if not assignment_id:
            continue
        try:
            client.delete_assignment(policy_type, policy_id, assignment_id)
        except GraphClientError as exc:
            logger.warning("Failed to delete assignment %s: %s", assignment_id, exc)

    return apply_assignments(client, policy_type, policy_id, assignments)


__all__ = [
    "apply_assignments",
    "copy_assignments",
    "is_universal_target",
    "remap_assignments",
    "replace_assignments",
]
