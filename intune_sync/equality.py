"""Deep structural equality over JSON-like policy values."""
from __future__ import annotations

from typing import Any, Mapping

DEFAULT_MAX_DEPTH = 256


class ComparisonDepthError(RuntimeError):
    """Raised when two values nest deeper than the comparison allows."""


def is_equal(left: Any, right: Any, max_depth: int = DEFAULT_MAX_DEPTH) -> bool:
    """Compare two deserialized JSON values.

    Lists compare element-wise in order, so a reordered list is reported as a
    difference. Dicts compare by key set regardless of key order. Booleans are
    never equal to numbers even though Python treats ``True == 1``.
    """

    return _is_equal(left, right, max_depth)


def _is_equal(left: Any, right: Any, depth_left: int) -> bool:
    if depth_left < 0:
        raise ComparisonDepthError("Policy values are nested too deeply to compare.")

    if left is None or right is None:
        return left is None and right is None

    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right

    if _is_number(left) and _is_number(right):
        return left == right

    if isinstance(left, (list, tuple)) and isinstance(right, (list, tuple)):
        if len(left) != len(right):
            return False
        return all(_is_equal(a, b, depth_left - 1) for a, b in zip(left, right))

    if isinstance(left, Mapping) and isinstance(right, Mapping):
        if set(left.keys()) != set(right.keys()):
            return False
        return all(_is_equal(left[key], right[key], depth_left - 1) for key in left)

    if type(left) is not type(right):
        return False
    return left == right


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


__all__ = ["ComparisonDepthError", "DEFAULT_MAX_DEPTH", "is_equal"]
