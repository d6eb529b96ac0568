"""Field comparison helpers used by the diff planner."""

from __future__ import annotations

from typing import Any, Mapping, Optional


def optional_differs(a: Optional[Any], b: Optional[Any]) -> bool:
    """Absent vs absent is equal, absent vs present differs, else compare values."""
    if a is None and b is None:
        return False
    if a is None or b is None:
        return True
    return a != b


def mappings_differ(a: Optional[Mapping[str, str]], b: Optional[Mapping[str, str]]) -> bool:
    """A missing mapping is treated as empty; key order never matters."""
    left = a or {}
    right = b or {}
    if len(left) != len(right):
        return True
    for k, v in left.items():
        if k not in right or right[k] != v:
            return True
    return False
