"""Shared pytest fixtures for intune-sync tests."""

import pytest

from fakes import FakeGraphClient


@pytest.fixture
def fake_client():
    """An empty in-memory tenant."""
    return FakeGraphClient()


@pytest.fixture
def sample_backup():
    """A small backup with one device configuration and one settings catalog policy."""
    return {
        "exportDate": "2026-01-05T10:00:00+00:00",
        "organization": {"name": "Contoso"},
        "policies": {
            "deviceConfigurations": [
                {
                    "id": "src-1",
                    "displayName": "Baseline Policy",
                    "@odata.type": "#microsoft.graph.windows10GeneralConfiguration",
                    "passwordRequired": True,
                    "createdDateTime": "2025-12-01T00:00:00Z",
                    "version": 3,
                    "_assignments": [
                        {"id": "a-1", "target": {"@odata.type": "#microsoft.graph.groupAssignmentTarget", "groupId": "g-old"}},
                        {"id": "a-2", "target": {"@odata.type": "#microsoft.graph.allDevicesAssignmentTarget"}},
                    ],
                }
            ],
            "configurationPolicies": [
                {
                    "id": "src-2",
                    "name": "Edge Settings",
                    "settings": [{"id": "0", "value": "on"}],
                }
            ],
        },
    }
