"""In-memory stand-in for the Graph client used by engine tests."""

from __future__ import annotations

import copy
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

from intune_sync.graph_client import GraphError
from intune_sync.models import policy_name
from intune_sync.policy_types import PolicyType


class FakeGraphClient:
    """Records every call and serves policies from a dict per policy type."""

    def __init__(self, policies: Optional[Dict[PolicyType, List[Dict[str, Any]]]] = None) -> None:
        self.policies: Dict[PolicyType, List[Dict[str, Any]]] = {
            key: [copy.deepcopy(doc) for doc in docs] for key, docs in (policies or {}).items()
        }
        self.assignments: Dict[Tuple[PolicyType, str], List[Dict[str, Any]]] = {}
        self.calls: List[Tuple[Any, ...]] = []
        self.failing: Dict[str, Set[Optional[str]]] = {}
        self.organization = {"name": "Contoso", "tenantId": "tenant-1", "verifiedDomains": ["contoso.com"]}
        self.scripts: Dict[str, str] = {}
        self._next_id = 0

    # -- test helpers ---------------------------------------------------
    def fail(self, method: str, key: Optional[str] = None) -> None:
        """Make ``method`` raise, for every call or only when ``key`` is involved."""
        self.failing.setdefault(method, set()).add(key)

    def _maybe_fail(self, method: str, *keys: Optional[str]) -> None:
        targets = self.failing.get(method)
        if targets is None:
            return
        if None in targets or any(key in targets for key in keys if key):
            raise GraphError(500, "InternalServerError", f"{method} failed")

    def call_names(self) -> List[str]:
        return [call[0] for call in self.calls]

    def created_documents(self) -> List[Dict[str, Any]]:
        return [call[2] for call in self.calls if call[0] == "create_policy"]

    # -- client surface ---------------------------------------------------
    def list_policies(self, policy_type: PolicyType, filter_expr: Optional[str] = None) -> List[Dict[str, Any]]:
        self.calls.append(("list_policies", policy_type))
        self._maybe_fail("list_policies", policy_type.value)
        return [copy.deepcopy(doc) for doc in self.policies.get(policy_type, [])]

    def find_policies_by_name(
        self, policy_type: PolicyType, name: str, name_field: str = "displayName"
    ) -> List[Dict[str, Any]]:
        self.calls.append(("find_policies_by_name", policy_type, name, name_field))
        self._maybe_fail("find_policies_by_name", name)
        return [
            copy.deepcopy(doc)
            for doc in self.policies.get(policy_type, [])
            if doc.get(name_field) == name or policy_name(doc) == name
        ]

    def get_policy(self, policy_type: PolicyType, policy_id: str) -> Dict[str, Any]:
        self.calls.append(("get_policy", policy_type, policy_id))
        for doc in self.policies.get(policy_type, []):
            if doc.get("id") == policy_id:
                return copy.deepcopy(doc)
        raise GraphError(404, "NotFound", policy_id)

    def create_policy(self, policy_type: PolicyType, document: Mapping[str, Any]) -> Dict[str, Any]:
        self.calls.append(("create_policy", policy_type, copy.deepcopy(dict(document))))
        self._maybe_fail("create_policy", policy_name(document))
        self._next_id += 1
        created = {**copy.deepcopy(dict(document)), "id": f"new-{self._next_id}"}
        self.policies.setdefault(policy_type, []).append(created)
        return copy.deepcopy(created)

    def patch_policy(self, policy_type: PolicyType, policy_id: str, document: Mapping[str, Any]) -> None:
        self.calls.append(("patch_policy", policy_type, policy_id, copy.deepcopy(dict(document))))
        self._maybe_fail("patch_policy", policy_id)
        for doc in self.policies.get(policy_type, []):
            if doc.get("id") == policy_id:
                doc.update(copy.deepcopy(dict(document)))

    def delete_policy(self, policy_type: PolicyType, policy_id: str) -> None:
        self.calls.append(("delete_policy", policy_type, policy_id))
        self._maybe_fail("delete_policy", policy_id)
        self.policies[policy_type] = [
            doc for doc in self.policies.get(policy_type, []) if doc.get("id") != policy_id
        ]

    def list_assignments(self, policy_type: PolicyType, policy_id: str) -> List[Dict[str, Any]]:
        self.calls.append(("list_assignments", policy_type, policy_id))
        self._maybe_fail("list_assignments", policy_id)
        return copy.deepcopy(self.assignments.get((policy_type, policy_id), []))

    def create_assignment(
        self, policy_type: PolicyType, policy_id: str, assignment: Mapping[str, Any]
    ) -> Dict[str, Any]:
        self.calls.append(("create_assignment", policy_type, policy_id, copy.deepcopy(dict(assignment))))
        self._maybe_fail("create_assignment", policy_id)
        stored = {**copy.deepcopy(dict(assignment)), "id": f"assignment-{len(self.calls)}"}
        self.assignments.setdefault((policy_type, policy_id), []).append(stored)
        return stored

    def delete_assignment(self, policy_type: PolicyType, policy_id: str, assignment_id: str) -> None:
        self.calls.append(("delete_assignment", policy_type, policy_id, assignment_id))
        self._maybe_fail("delete_assignment", assignment_id)
        self.assignments[(policy_type, policy_id)] = [
            item
            for item in self.assignments.get((policy_type, policy_id), [])
            if item.get("id") != assignment_id
        ]

    def get_organization(self) -> Dict[str, Any]:
        self.calls.append(("get_organization",))
        self._maybe_fail("get_organization")
        return dict(self.organization)

    def get_script_content(self, script_id: str) -> Optional[str]:
        self.calls.append(("get_script_content", script_id))
        self._maybe_fail("get_script_content", script_id)
        return self.scripts.get(script_id)
