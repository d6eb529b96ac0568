"""
Diff planner for the uploaded-image resource.

Compares a **desired** spec against the spec portion of the **observed**
state and classifies every changed field:

  * REPLACE: `imageUrl`, `architecture`. The snapshot is fixed to its
    source bytes and CPU architecture at creation time.
  * UPDATE: everything else the user declares (`hcloudToken`,
    `imageCompression`, `imageFormat`, `imageSize`, `serverType`, `labels`,
    `description`).

Unchanged fields produce no entry. Replacement never needs delete-first
ordering for this resource.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Tuple

from .compare import mappings_differ, optional_differs
from .models import DesiredSpec, ObservedState

log = logging.getLogger("huip.diff")


class DiffKind(str, enum.Enum):
    UPDATE = "update"
    REPLACE = "replace"


@dataclass(frozen=True)
class DiffResult:
    """Per-field outcome of a diff.

    Attributes:
        fields: Mapping of wire key to :class:`DiffKind`.
        delete_before_replace: Always False; create-then-delete is allowed.
    """
    fields: Dict[str, DiffKind] = field(default_factory=dict)
    delete_before_replace: bool = False

    @property
    def has_changes(self) -> bool:
        return bool(self.fields)

    @property
    def requires_replace(self) -> bool:
        return any(k is DiffKind.REPLACE for k in self.fields.values())

    def replace_keys(self) -> List[str]:
        return sorted(k for k, v in self.fields.items() if v is DiffKind.REPLACE)

    def update_keys(self) -> List[str]:
        return sorted(k for k, v in self.fields.items() if v is DiffKind.UPDATE)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hasChanges": self.has_changes,
            "deleteBeforeReplace": self.delete_before_replace,
            "detailedDiff": {k: v.value for k, v in sorted(self.fields.items())},
        }


# (wire key, accessor, comparator, kind when changed)
_Rule = Tuple[str, Callable[[DesiredSpec], Any], Callable[[Any, Any], bool], DiffKind]

_RULES: Tuple[_Rule, ...] = (
    ("imageUrl", lambda s: s.source_url, optional_differs, DiffKind.REPLACE),
    ("architecture", lambda s: s.architecture, optional_differs, DiffKind.REPLACE),
    ("hcloudToken", lambda s: s.credential, optional_differs, DiffKind.UPDATE),
    ("imageCompression", lambda s: s.compression, optional_differs, DiffKind.UPDATE),
    ("imageFormat", lambda s: s.format, optional_differs, DiffKind.UPDATE),
    ("imageSize", lambda s: s.expected_size_bytes, optional_differs, DiffKind.UPDATE),
    ("serverType", lambda s: s.server_type_override, optional_differs, DiffKind.UPDATE),
    ("labels", lambda s: s.labels, mappings_differ, DiffKind.UPDATE),
    ("description", lambda s: s.description, optional_differs, DiffKind.UPDATE),
)


def plan_diff(desired: DesiredSpec, observed: ObservedState) -> DiffResult:
    """Compute a :class:`DiffResult` from desired spec vs observed state."""
    current = observed.spec
    changed: Dict[str, DiffKind] = {}
    for key, get, differs, kind in _RULES:
        if differs(get(desired), get(current)):
            changed[key] = kind

    result = DiffResult(fields=changed)
    if result.has_changes:
        log.debug(
            "diff: replace=%s update=%s",
            result.replace_keys(),
            result.update_keys(),
        )
    return result
