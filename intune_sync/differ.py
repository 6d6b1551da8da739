"""Property-level diffs between two versions of a policy document."""
from __future__ import annotations

import json
from typing import Any, Dict, Iterable, List, Mapping

from .equality import DEFAULT_MAX_DEPTH, is_equal
from .models import DIFF_IGNORE_FIELDS, VOLATILE_FIELDS, PropertyChange


def diff_properties(
    current: Mapping[str, Any],
    baseline: Mapping[str, Any],
    ignore_fields: Iterable[str] = DIFF_IGNORE_FIELDS,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> List[PropertyChange]:
    """List every top-level property whose value differs between the documents.

    Keys are visited in the current document's order, followed by keys that
    only the baseline has.
    """

    ignored = set(ignore_fields)
    keys = list(dict.fromkeys([*current.keys(), *baseline.keys()]))

    changes: List[PropertyChange] = []
    for key in keys:
        if key in ignored:
            continue
        current_value = current.get(key)
        baseline_value = baseline.get(key)
        if is_equal(current_value, baseline_value, max_depth=max_depth):
            continue
        changes.append(
            PropertyChange(
                property=key,
                current_value=format_value(current_value),
                baseline_value=format_value(baseline_value),
                kind=change_kind(current_value, baseline_value),
            )
        )
    return changes


def change_kind(current_value: Any, baseline_value: Any) -> str:
    if current_value is not None and baseline_value is None:
        return "added"
    if current_value is None and baseline_value is not None:
        return "removed"
    return "modified"


def format_value(value: Any) -> str:
    """Render a property value for display."""

    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, separators=(",", ":"), sort_keys=True, ensure_ascii=False, default=str)
    return str(value)


def clean_document(document: Mapping[str, Any], extra_fields: Iterable[str] = ()) -> Dict[str, Any]:
    """Copy a document without the fields the target tenant assigns itself."""

    stripped = VOLATILE_FIELDS | set(extra_fields)
    return {key: value for key, value in document.items() if key not in stripped}


__all__ = ["change_kind", "clean_document", "diff_properties", "format_value"]
