"""Data models for policy comparison, import and clone results."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional


VOLATILE_FIELDS = frozenset(
    {
        "id",
        "createdDateTime",
        "lastModifiedDateTime",
        "version",
        "roleScopeTagIds",
        "isAssigned",
        "_metadata",
        "_assignments",
        "_scriptContent",
        "@odata.context",
        "@odata.etag",
    }
)

# The type tag is matched on, never diffed as a property.
DIFF_IGNORE_FIELDS = VOLATILE_FIELDS | {"@odata.type"}

CLONE_READ_ONLY_FIELDS = frozenset(
    {
        "supportsScopeTags",
        "deployedAppCount",
        "deviceStatuses",
        "userStatuses",
        "deviceStatusOverview",
        "userStatusOverview",
        "installSummary",
    }
)

TYPE_TAG_FIELD = "@odata.type"
ASSIGNMENTS_FIELD = "_assignments"


class InputError(RuntimeError):
    """Raised when an operation is given invalid input before any Graph call is made."""


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def policy_name(document: Mapping[str, Any]) -> Optional[str]:
    """Return the display name used to match a document, falling back to ``name``."""

    name = document.get("displayName") or document.get("name")
    return str(name) if name else None


def type_tag(document: Mapping[str, Any]) -> Optional[str]:
    tag = document.get(TYPE_TAG_FIELD)
    return str(tag) if tag else None


def key_properties(document: Optional[Mapping[str, Any]]) -> Optional[Dict[str, Any]]:
    """Summary of a document for listings."""

    if document is None:
        return None
    return {
        "id": document.get("id"),
        "displayName": policy_name(document),
        "description": document.get("description"),
        "createdDateTime": document.get("createdDateTime"),
        "lastModifiedDateTime": document.get("lastModifiedDateTime"),
        "@odata.type": document.get(TYPE_TAG_FIELD),
    }


class Classification(str, Enum):
    ADDED = "added"
    REMOVED = "removed"
    MODIFIED = "modified"
    UNCHANGED = "unchanged"


@dataclass(frozen=True)
class PropertyChange:
    """One top-level property that differs between two matched documents."""

    property: str
    current_value: str
    baseline_value: str
    kind: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "property": self.property,
            "currentValue": self.current_value,
            "baselineValue": self.baseline_value,
            "kind": self.kind,
        }


@dataclass
class DiffEntry:
    name: str
    policy_type: str
    classification: Classification
    changes: List[PropertyChange] = field(default_factory=list)
    current: Optional[Dict[str, Any]] = None
    baseline: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "name": self.name,
            "type": self.policy_type,
            "classification": self.classification.value,
        }
        if self.classification is Classification.MODIFIED:
            payload["changes"] = [change.to_dict() for change in self.changes]
        if self.current is not None:
            payload["current"] = key_properties(self.current)
        if self.baseline is not None:
            payload["baseline"] = key_properties(self.baseline)
        return payload


@dataclass
class ComparisonResult:
    """Classification of every policy of one type."""

    added: List[DiffEntry] = field(default_factory=list)
    removed: List[DiffEntry] = field(default_factory=list)
    modified: List[DiffEntry] = field(default_factory=list)
    unchanged: List[DiffEntry] = field(default_factory=list)

    def counts(self) -> Dict[str, int]:
        return {
            "added": len(self.added),
            "removed": len(self.removed),
            "modified": len(self.modified),
            "unchanged": len(self.unchanged),
        }

    def names(self, classification: Classification) -> List[str]:
        bucket = getattr(self, classification.value)
        return [entry.name for entry in bucket]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "added": [entry.to_dict() for entry in self.added],
            "removed": [entry.to_dict() for entry in self.removed],
            "modified": [entry.to_dict() for entry in self.modified],
            "unchanged": [entry.to_dict() for entry in self.unchanged],
        }


@dataclass
class ComparisonReport:
    """Comparison results for a batch of policy types plus rollup counts."""

    details: Dict[str, ComparisonResult] = field(default_factory=dict)

    def add(self, policy_type: str, result: ComparisonResult) -> None:
        self.details[policy_type] = result

    @property
    def summary(self) -> Dict[str, int]:
        totals = {"added": 0, "removed": 0, "modified": 0, "unchanged": 0}
        for result in self.details.values():
            for key, value in result.counts().items():
                totals[key] += value
        return totals

    @property
    def has_differences(self) -> bool:
        summary = self.summary
        return bool(summary["added"] or summary["removed"] or summary["modified"])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.summary,
            "details": {key: result.to_dict() for key, result in self.details.items()},
        }


class ImportMode(str, Enum):
    ALWAYS = "always"
    SKIP = "skip"
    REPLACE = "replace"
    UPDATE = "update"

    @classmethod
    def parse(cls, raw: "ImportMode | str | None") -> "ImportMode":
        if isinstance(raw, ImportMode):
            return raw
        if raw is None or not str(raw).strip():
            return cls.ALWAYS
        try:
            return cls(str(raw).strip().lower())
        except ValueError as exc:
            choices = ", ".join(mode.value for mode in cls)
            raise InputError(f"Unknown import mode '{raw}'. Choose one of: {choices}.") from exc


@dataclass
class ImportOutcome:
    name: str
    policy_type: str
    action: str  # imported, skipped, failed
    reason: Optional[str] = None
    error: Optional[str] = None
    id: Optional[str] = None
    method: Optional[str] = None  # created, updated

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"name": self.name, "type": self.policy_type, "action": self.action}
        for key in ("reason", "error", "id", "method"):
            value = getattr(self, key)
            if value is not None:
                payload[key] = value
        return payload


@dataclass
class ImportStats:
    total: int = 0
    imported: int = 0
    skipped: int = 0
    failed: int = 0
    start_time: datetime = field(default_factory=_utc_now)
    end_time: Optional[datetime] = None
    errors: List[Dict[str, str]] = field(default_factory=list)

    def record(self, outcome: ImportOutcome) -> None:
        if outcome.action == "imported":
            self.imported += 1
        elif outcome.action == "skipped":
            self.skipped += 1
        else:
            self.failed += 1
            self.errors.append({"policy": outcome.name, "error": outcome.error or ""})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalPolicies": self.total,
            "importedPolicies": self.imported,
            "skippedPolicies": self.skipped,
            "failedPolicies": self.failed,
            "startTime": self.start_time.isoformat(),
            "endTime": self.end_time.isoformat() if self.end_time else None,
            "errors": list(self.errors),
        }


@dataclass
class ImportResult:
    outcomes: List[ImportOutcome] = field(default_factory=list)
    stats: ImportStats = field(default_factory=ImportStats)

    def _with_action(self, action: str) -> List[ImportOutcome]:
        return [outcome for outcome in self.outcomes if outcome.action == action]

    @property
    def imported(self) -> List[ImportOutcome]:
        return self._with_action("imported")

    @property
    def skipped(self) -> List[ImportOutcome]:
        return self._with_action("skipped")

    @property
    def failed(self) -> List[ImportOutcome]:
        return self._with_action("failed")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": [outcome.to_dict() for outcome in self.imported],
            "skipped": [outcome.to_dict() for outcome in self.skipped],
            "failed": [outcome.to_dict() for outcome in self.failed],
            "importStats": self.stats.to_dict(),
        }


@dataclass(frozen=True)
class IdentityMapping:
    """Old-to-new group and user identifiers for a cross-tenant migration."""

    groups: Mapping[str, str] = field(default_factory=dict)
    users: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "groups", MappingProxyType(_clean_mapping(self.groups)))
        object.__setattr__(self, "users", MappingProxyType(_clean_mapping(self.users)))

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "IdentityMapping":
        data = data or {}
        return cls(groups=data.get("groups") or {}, users=data.get("users") or {})

    def to_dict(self) -> Dict[str, Dict[str, str]]:
        return {"groups": dict(self.groups), "users": dict(self.users)}

    def __bool__(self) -> bool:
        return bool(self.groups or self.users)


def _clean_mapping(raw: Mapping[str, Any]) -> Dict[str, str]:
    # Template entries exported with a null target are not mappings yet.
    cleaned: Dict[str, str] = {}
    for key, value in (raw or {}).items():
        old_id = str(key or "").strip()
        new_id = str(value or "").strip()
        if old_id and new_id:
            cleaned[old_id] = new_id
    return cleaned


@dataclass(frozen=True)
class NameTransformation:
    prefix: Optional[str] = None
    suffix: Optional[str] = None
    find: Optional[str] = None
    replace: Optional[str] = None
    pattern: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "NameTransformation":
        def _value(key: str) -> Optional[str]:
            raw = data.get(key)
            return None if raw is None else str(raw)

        return cls(
            prefix=_value("prefix"),
            suffix=_value("suffix"),
            find=_value("find"),
            replace=_value("replace"),
            pattern=_value("pattern"),
        )

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "prefix": self.prefix,
            "suffix": self.suffix,
            "find": self.find,
            "replace": self.replace,
            "pattern": self.pattern,
        }


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    errors: List[str] = field(default_factory=list)
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_errors(cls, errors: Iterable[str], **details: Any) -> "ValidationResult":
        collected = list(errors)
        return cls(valid=not collected, errors=collected, details=details)

    def to_dict(self) -> Dict[str, Any]:
        return {"valid": self.valid, "errors": list(self.errors), **self.details}


@dataclass
class CloneOutcome:
    original_name: str
    policy_type: str
    status: str  # cloned, skipped, failed
    new_name: Optional[str] = None
    reason: Optional[str] = None
    error: Optional[str] = None
    id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "originalName": self.original_name,
            "type": self.policy_type,
            "status": self.status,
        }
        for key, attr in (("newName", "new_name"), ("reason", "reason"), ("error", "error"), ("id", "id")):
            value = getattr(self, attr)
            if value is not None:
                payload[key] = value
        return payload


@dataclass
class CloneResult:
    total: int = 0
    details: List[CloneOutcome] = field(default_factory=list)

    def _count(self, status: str) -> int:
        return sum(1 for outcome in self.details if outcome.status == status)

    @property
    def cloned(self) -> int:
        return self._count("cloned")

    @property
    def skipped(self) -> int:
        return self._count("skipped")

    @property
    def failed(self) -> int:
        return self._count("failed")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "cloned": self.cloned,
            "skipped": self.skipped,
            "failed": self.failed,
            "details": [outcome.to_dict() for outcome in self.details],
        }


__all__ = [
    "ASSIGNMENTS_FIELD",
    "CLONE_READ_ONLY_FIELDS",
    "Classification",
    "CloneOutcome",
    "CloneResult",
    "ComparisonReport",
    "ComparisonResult",
    "DIFF_IGNORE_FIELDS",
    "DiffEntry",
    "IdentityMapping",
    "ImportMode",
    "ImportOutcome",
    "ImportResult",
    "ImportStats",
    "InputError",
    "NameTransformation",
    "PropertyChange",
    "TYPE_TAG_FIELD",
    "VOLATILE_FIELDS",
    "ValidationResult",
    "key_properties",
    "policy_name",
    "type_tag",
]
