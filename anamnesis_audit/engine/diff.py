"""
Field-level diffing between two anamnesis record states.

A record state is a JSON-compatible dict: scalar fields at the top level,
a free-form ``payload`` of arbitrary depth, and the named collections
(allergies, medications, conditions).

Rules:
- Values are compared by canonical (sorted-key) JSON, so key order inside
  nested objects never produces a diff.
- ``payload`` is walked recursively; only nested maps are descended into,
  lists and scalars are opaque leaves. A null facing a map is walked as an
  empty map, so a sub-object appearing from null yields one diff per leaf.
- Collections are compared by cardinality only. Replacing one allergy with
  another in the same update produces no diff for that collection.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, replace
from enum import Enum
from typing import Any, Union

from anamnesis_audit.engine.classifier import is_critical
from anamnesis_audit.engine.fields import COLLECTION_FIELDS, PAYLOAD_FIELD, get_field_label
from anamnesis_audit.engine.types import ChangeType

JSONValue = Union[dict[str, "JSONValue"], list["JSONValue"], str, int, float, bool, None]
RecordState = dict[str, JSONValue]

# Marks a key absent on one side of a nested comparison (distinct from null)
_MISSING = object()


class ValueKind(str, Enum):
    MAP = "map"
    LIST = "list"
    SCALAR = "scalar"


def kind_of(value: Any) -> ValueKind:
    if isinstance(value, dict):
        return ValueKind.MAP
    if isinstance(value, (list, tuple)):
        return ValueKind.LIST
    return ValueKind.SCALAR


@dataclass(frozen=True)
class FieldDiff:
    """One field-level difference between two record states."""

    field_path: str
    label: str
    field_type: str
    old_value: Any
    new_value: Any
    old_display: str | None
    new_display: str | None
    is_critical: bool
    change_type: ChangeType

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["change_type"] = self.change_type.value
        return data


def canonical(value: Any) -> str:
    return json.dumps(value, sort_keys=True, default=str)


def json_type(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    kind = kind_of(value)
    if kind is ValueKind.LIST:
        return "array"
    if kind is ValueKind.MAP:
        return "object"
    return type(value).__name__


def _count_display(count: int) -> str:
    return f"{count} elemento" if count == 1 else f"{count} elementos"


def format_display(value: Any) -> str | None:
    """Human readable rendering stored next to raw values."""
    if value is None:
        return None
    if isinstance(value, bool):
        return "Sí" if value else "No"
    if isinstance(value, (int, float, str)):
        return str(value)
    kind = kind_of(value)
    if kind is ValueKind.LIST:
        return _count_display(len(value))
    if kind is ValueKind.MAP:
        return canonical(value)
    return str(value)


def _make_diff(field_path: str, old_value: Any, new_value: Any, change_type: ChangeType) -> FieldDiff:
    typed_value = new_value if new_value is not None else old_value
    return FieldDiff(
        field_path=field_path,
        label=get_field_label(field_path),
        field_type=json_type(typed_value),
        old_value=old_value,
        new_value=new_value,
        old_display=format_display(old_value),
        new_display=format_display(new_value),
        is_critical=is_critical(field_path),
        change_type=change_type,
    )


def _union_keys(first: dict, second: dict) -> list[str]:
    keys = list(first)
    keys.extend(key for key in second if key not in first)
    return keys


def compute_diff(previous: RecordState | None, new: RecordState | None) -> list[FieldDiff]:
    """Return the field diffs turning ``previous`` into ``new``."""
    if previous is None and new is None:
        return []
    if previous is None:
        return [_make_diff(key, None, value, ChangeType.ADDED) for key, value in new.items()]
    if new is None:
        return [_make_diff(key, value, None, ChangeType.REMOVED) for key, value in previous.items()]

    diffs: list[FieldDiff] = []
    for key in _union_keys(previous, new):
        old_value = previous.get(key)
        new_value = new.get(key)
        if canonical(old_value) == canonical(new_value):
            continue

        nested = None
        if key == PAYLOAD_FIELD and _is_map_or_null(old_value) and _is_map_or_null(new_value):
            nested = _diff_nested(old_value or {}, new_value or {}, key)
        if nested:
            diffs.extend(nested)
        elif key in COLLECTION_FIELDS:
            collection_diff = _diff_collection(key, old_value, new_value)
            if collection_diff is not None:
                diffs.append(collection_diff)
        else:
            diffs.append(_make_diff(key, old_value, new_value, ChangeType.MODIFIED))
    return diffs


def _is_map_or_null(value: Any) -> bool:
    return value is None or kind_of(value) is ValueKind.MAP


def _diff_nested(old_map: dict, new_map: dict, base_path: str) -> list[FieldDiff]:
    diffs: list[FieldDiff] = []
    for key in _union_keys(old_map, new_map):
        field_path = f"{base_path}.{key}"
        old_value = old_map.get(key, _MISSING)
        new_value = new_map.get(key, _MISSING)

        if old_value is not _MISSING and new_value is not _MISSING:
            if canonical(old_value) == canonical(new_value):
                continue
            # null on one side is walked as an empty map
            if _is_map_or_null(old_value) and _is_map_or_null(new_value):
                nested = _diff_nested(old_value or {}, new_value or {}, field_path)
                if nested:
                    diffs.extend(nested)
                    continue
            # {} versus null has no leaf to report, so it stays a parent diff
            change_type = ChangeType.MODIFIED
        elif old_value is _MISSING:
            change_type = ChangeType.ADDED
            old_value = None
        else:
            change_type = ChangeType.REMOVED
            new_value = None

        diffs.append(_make_diff(field_path, old_value, new_value, change_type))
    return diffs


def _diff_collection(field_path: str, old_items: Any, new_items: Any) -> FieldDiff | None:
    old_count = len(old_items) if old_items else 0
    new_count = len(new_items) if new_items else 0
    if old_count == new_count:
        return None

    diff = _make_diff(
        field_path,
        old_items,
        new_items,
        ChangeType.ADDED if new_count > old_count else ChangeType.REMOVED,
    )
    # null and [] both count as zero elements
    return replace(
        diff,
        field_type="array",
        old_display=_count_display(old_count),
        new_display=_count_display(new_count),
    )


def summarize_diffs(diffs: list[FieldDiff]) -> dict[str, Any]:
    """Aggregate counts stored next to the raw diff list."""
    return {
        "total_changes": len(diffs),
        "critical_changes": sum(1 for d in diffs if d.is_critical),
        "added": sum(1 for d in diffs if d.change_type is ChangeType.ADDED),
        "removed": sum(1 for d in diffs if d.change_type is ChangeType.REMOVED),
        "modified": sum(1 for d in diffs if d.change_type is ChangeType.MODIFIED),
        "fields_changed": [d.field_path for d in diffs],
    }
