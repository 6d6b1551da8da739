"""Tests for assignment remapping and application."""

from __future__ import annotations

import logging

from intune_sync.assignments import (
    apply_assignments,
    copy_assignments,
    is_universal_target,
    remap_assignments,
    replace_assignments,
)
from intune_sync.models import IdentityMapping
from intune_sync.policy_types import PolicyType

GROUP = "#microsoft.graph.groupAssignmentTarget"
EXCLUSION = "#microsoft.graph.exclusionGroupAssignmentTarget"
ALL_DEVICES = "#microsoft.graph.allDevicesAssignmentTarget"
ALL_USERS = "#microsoft.graph.allLicensedUsersAssignmentTarget"


def _assignment(target, assignment_id="a-1", **extra):
    return {"id": assignment_id, "target": target, **extra}


class TestRemapAssignments:
    def test_group_is_remapped(self) -> None:
        mapping = IdentityMapping(groups={"g-old": "g-new"})
        result = remap_assignments([_assignment({"@odata.type": GROUP, "groupId": "g-old"})], mapping)
        assert result == [{"target": {"@odata.type": GROUP, "groupId": "g-new"}}]

    def test_exclusion_targets_use_the_group_table(self) -> None:
        mapping = IdentityMapping(groups={"g-old": "g-new"})
        result = remap_assignments([_assignment({"@odata.type": EXCLUSION, "groupId": "g-old"})], mapping)
        assert result[0]["target"] == {"@odata.type": EXCLUSION, "groupId": "g-new"}

    def test_user_is_remapped(self) -> None:
        mapping = IdentityMapping(users={"u-old": "u-new"})
        result = remap_assignments([_assignment({"userId": "u-old"})], mapping)
        assert result[0]["target"]["userId"] == "u-new"

    def test_unmapped_group_is_dropped_with_warning(self, caplog) -> None:
        caplog.set_level(logging.WARNING, logger="intune_sync.assignments")
        result = remap_assignments([_assignment({"@odata.type": GROUP, "groupId": "g-unknown"})], IdentityMapping())
        assert result == []
        assert "g-unknown" in caplog.text

    def test_universal_targets_pass_through(self) -> None:
        assignments = [
            _assignment({"@odata.type": ALL_DEVICES}, "a-1"),
            _assignment({"@odata.type": ALL_USERS}, "a-2", intent="apply"),
        ]
        result = remap_assignments(assignments, IdentityMapping())
        assert result == [
            {"target": {"@odata.type": ALL_DEVICES}},
            {"target": {"@odata.type": ALL_USERS}, "intent": "apply"},
        ]

    def test_unknown_target_and_missing_target_are_dropped(self) -> None:
        assignments = [_assignment({"@odata.type": "#microsoft.graph.somethingElse"}), {"id": "x"}]
        assert remap_assignments(assignments, IdentityMapping(groups={"a": "b"})) == []

    def test_output_never_grows_and_has_no_ids(self) -> None:
        mapping = IdentityMapping(groups={"g1": "n1"}, users={"u1": "n2"})
        assignments = [
            _assignment({"groupId": "g1"}, "a-1"),
            _assignment({"groupId": "g2"}, "a-2"),
            _assignment({"userId": "u1"}, "a-3"),
            _assignment({"@odata.type": ALL_DEVICES}, "a-4"),
        ]
        result = remap_assignments(assignments, mapping)
        assert len(result) == 3 <= len(assignments)
        assert all("id" not in item for item in result)

    def test_input_is_not_mutated(self) -> None:
        source = [_assignment({"groupId": "g1", "filter": {"id": "f"}})]
        result = remap_assignments(source, IdentityMapping(groups={"g1": "g2"}))
        result[0]["target"]["filter"]["id"] = "changed"
        assert source[0]["target"] == {"groupId": "g1", "filter": {"id": "f"}}

    def test_null_mapping_entries_are_ignored(self) -> None:
        mapping = IdentityMapping.from_dict({"groups": {"g1": None, "g2": ""}})
        assert not mapping
        assert remap_assignments([_assignment({"groupId": "g1"})], mapping) == []


class TestCopyAssignments:
    def test_strips_ids_and_keeps_targets(self) -> None:
        source = [_assignment({"@odata.type": GROUP, "groupId": "g1"})]
        assert copy_assignments(source) == [{"target": {"@odata.type": GROUP, "groupId": "g1"}}]

    def test_universal_marker(self) -> None:
        assert is_universal_target({"@odata.type": ALL_DEVICES})
        assert not is_universal_target({"@odata.type": GROUP})


class TestApplyAssignments:
    def test_failures_do_not_stop_the_rest(self, fake_client) -> None:
        fake_client.fail("create_assignment", "p-bad")
        policy_type = PolicyType.DEVICE_CONFIGURATIONS
        items = [{"target": {"groupId": "g1"}}, {"target": {"groupId": "g2"}}]

        assert apply_assignments(fake_client, policy_type, "p-1", items) == 2
        assert apply_assignments(fake_client, policy_type, "p-bad", items) == 0
        assert len(fake_client.assignments[(policy_type, "p-1")]) == 2

    def test_replace_deletes_existing_first(self, fake_client) -> None:
        policy_type = PolicyType.COMPLIANCE_POLICIES
        fake_client.assignments[(policy_type, "p-1")] = [{"id": "old-1", "target": {"groupId": "g0"}}]

        created = replace_assignments(fake_client, policy_type, "p-1", [{"target": {"groupId": "g1"}}])

        assert created == 1
        assert fake_client.call_names() == ["list_assignments", "delete_assignment", "create_assignment"]
        assert [item["target"]["groupId"] for item in fake_client.assignments[(policy_type, "p-1")]] == ["g1"]

    def test_replace_survives_listing_failure(self, fake_client) -> None:
        fake_client.fail("list_assignments")
        created = replace_assignments(
            fake_client, PolicyType.SCRIPTS, "p-1", [{"target": {"@odata.type": ALL_DEVICES}}]
        )
        assert created == 1
