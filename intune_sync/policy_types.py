"""Intune policy types and the Graph resources that back them."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional


@dataclass(frozen=True)
class PolicyTypeInfo:
    """Static description of a Graph collection holding one kind of policy."""

    endpoint: str
    label: str
    supports_assignments: bool = True
    supports_clone: bool = True
    name_field: str = "displayName"
    polymorphic: bool = False
    include_content: bool = False
    export_filter: Optional[str] = None


class PolicyType(Enum):
    DEVICE_CONFIGURATIONS = "deviceConfigurations"
    COMPLIANCE_POLICIES = "compliancePolicies"
    CONFIGURATION_POLICIES = "configurationPolicies"
    MOBILE_APPS = "mobileApps"
    APP_PROTECTION_POLICIES = "appProtectionPolicies"
    APP_CONFIGURATION_POLICIES = "appConfigurationPolicies"
    CONDITIONAL_ACCESS_POLICIES = "conditionalAccessPolicies"
    ENDPOINT_SECURITY_POLICIES = "endpointSecurityPolicies"
    ENROLLMENT_RESTRICTIONS = "enrollmentRestrictions"
    AUTOPILOT_PROFILES = "autopilotProfiles"
    SCRIPTS = "scripts"
    POLICY_SETS = "policySets"
    SCOPE_TAGS = "scopeTags"
    ROLE_DEFINITIONS = "roleDefinitions"

    @property
    def info(self) -> PolicyTypeInfo:
        return _POLICY_TYPE_INFO[self]

    @property
    def endpoint(self) -> str:
        return self.info.endpoint

    @property
    def label(self) -> str:
        return self.info.label

    @classmethod
    def parse(cls, raw: "PolicyType | str") -> "PolicyType":
        """Resolve a policy type from its backup key, e.g. ``deviceConfigurations``."""

        if isinstance(raw, PolicyType):
            return raw
        try:
            return cls(str(raw).strip())
        except ValueError as exc:
            raise ValueError(f"Unknown policy type '{raw}'.") from exc

    @classmethod
    def lookup(cls, raw: str) -> Optional["PolicyType"]:
        try:
            return cls.parse(raw)
        except ValueError:
            return None


_POLICY_TYPE_INFO: Dict[PolicyType, PolicyTypeInfo] = {
    PolicyType.DEVICE_CONFIGURATIONS: PolicyTypeInfo(
        endpoint="/deviceManagement/deviceConfigurations",
        label="Device Configurations",
        polymorphic=True,
    ),
    PolicyType.COMPLIANCE_POLICIES: PolicyTypeInfo(
        endpoint="/deviceManagement/deviceCompliancePolicies",
        label="Compliance Policies",
        polymorphic=True,
    ),
    PolicyType.CONFIGURATION_POLICIES: PolicyTypeInfo(
        endpoint="/deviceManagement/configurationPolicies",
        label="Settings Catalog",
        name_field="name",
    ),
    PolicyType.MOBILE_APPS: PolicyTypeInfo(
        endpoint="/deviceAppManagement/mobileApps",
        label="Applications",
        supports_clone=False,
        polymorphic=True,
        export_filter=(
            "isAssigned eq true or (microsoft.graph.managedApp/appAvailability eq null "
            "or microsoft.graph.managedApp/appAvailability eq 'lineOfBusiness' or isAssigned eq true)"
        ),
    ),
    PolicyType.APP_PROTECTION_POLICIES: PolicyTypeInfo(
        endpoint="/deviceAppManagement/managedAppPolicies",
        label="App Protection Policies",
        polymorphic=True,
    ),
    PolicyType.APP_CONFIGURATION_POLICIES: PolicyTypeInfo(
        endpoint="/deviceAppManagement/mobileAppConfigurations",
        label="App Configuration Policies",
        polymorphic=True,
    ),
    PolicyType.CONDITIONAL_ACCESS_POLICIES: PolicyTypeInfo(
        endpoint="/identity/conditionalAccess/policies",
        label="Conditional Access",
        supports_assignments=False,
    ),
    PolicyType.ENDPOINT_SECURITY_POLICIES: PolicyTypeInfo(
        endpoint="/deviceManagement/intents",
        label="Endpoint Security",
    ),
    PolicyType.ENROLLMENT_RESTRICTIONS: PolicyTypeInfo(
        endpoint="/deviceManagement/deviceEnrollmentConfigurations",
        label="Enrollment Restrictions",
        supports_clone=False,
        polymorphic=True,
    ),
    PolicyType.AUTOPILOT_PROFILES: PolicyTypeInfo(
        endpoint="/deviceManagement/windowsAutopilotDeploymentProfiles",
        label="Autopilot Profiles",
        polymorphic=True,
    ),
    PolicyType.SCRIPTS: PolicyTypeInfo(
        endpoint="/deviceManagement/deviceManagementScripts",
        label="PowerShell Scripts",
        include_content=True,
    ),
    PolicyType.POLICY_SETS: PolicyTypeInfo(
        endpoint="/deviceAppManagement/policySets",
        label="Policy Sets",
        supports_clone=False,
    ),
    PolicyType.SCOPE_TAGS: PolicyTypeInfo(
        endpoint="/deviceManagement/roleScopeTags",
        label="Scope Tags",
        supports_assignments=False,
        supports_clone=False,
    ),
    PolicyType.ROLE_DEFINITIONS: PolicyTypeInfo(
        endpoint="/deviceManagement/roleDefinitions",
        label="Role Definitions",
        supports_assignments=False,
        supports_clone=False,
    ),
}

# Graph types whose collections filter on ``name`` rather than ``displayName``.
_NAME_KEYED_TYPE_MARKERS = ("managedAppProtection", "windowsInformationProtection")


def lookup_field(policy_type: PolicyType, type_tag: Optional[str]) -> str:
    """Return the property used to look a document up by name on the target."""

    if type_tag and any(marker in type_tag for marker in _NAME_KEYED_TYPE_MARKERS):
        return "name"
    return policy_type.info.name_field


def cloneable_types() -> List[PolicyType]:
    return [policy_type for policy_type in PolicyType if policy_type.info.supports_clone]


def describe_policy_types() -> List[Dict[str, object]]:
    """Serialize the policy type table for display."""

    return [
        {
            "key": policy_type.value,
            "label": policy_type.label,
            "endpoint": policy_type.endpoint,
            "supports_assignments": policy_type.info.supports_assignments,
            "supports_clone": policy_type.info.supports_clone,
        }
        for policy_type in PolicyType
    ]


__all__ = [
    "PolicyType",
    "PolicyTypeInfo",
    "cloneable_types",
    "describe_policy_types",
    "lookup_field",
]
