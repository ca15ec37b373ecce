"""
Clinical criticality and severity classification of record changes.

``requires_review`` intentionally differs from ``is_critical``: it also
catches collection additions/removals (e.g. a new condition) that are not
critical by themselves. It is used only by the review workflow.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Iterable

from anamnesis_audit.engine.fields import (
    CRITICAL_FIELDS,
    HABIT_FIELDS,
    HIGH_PRIORITY_FIELDS,
    PREGNANCY_FIELD,
    SEVERE_ALLERGY,
)
from anamnesis_audit.engine.types import AuditAction, ChangeSeverity, ChangeType

if TYPE_CHECKING:
    from anamnesis_audit.engine.diff import FieldDiff

_REVIEWED_COLLECTIONS = ("allergies", "medications", "conditions")


def is_critical(field_path: str) -> bool:
    return any(field in field_path for field in CRITICAL_FIELDS)


def requires_review(field_path: str, change_type: ChangeType) -> bool:
    if is_critical(field_path):
        return True
    if change_type in (ChangeType.ADDED, ChangeType.REMOVED) and any(
        collection in field_path for collection in _REVIEWED_COLLECTIONS
    ):
        return True
    return PREGNANCY_FIELD in field_path and change_type is ChangeType.MODIFIED


def _is_severe_allergy(item: Any) -> bool:
    return isinstance(item, dict) and item.get("severity") == SEVERE_ALLERGY


def _adds_severe_allergy(diff: FieldDiff) -> bool:
    if "allergies" not in diff.field_path or diff.change_type is not ChangeType.ADDED:
        return False
    if _is_severe_allergy(diff.new_value):
        return True
    if isinstance(diff.new_value, list):
        previous = diff.old_value if isinstance(diff.old_value, list) else []
        return any(_is_severe_allergy(item) and item not in previous for item in diff.new_value)
    return False


def _becomes_pregnant(diff: FieldDiff) -> bool:
    return PREGNANCY_FIELD in diff.field_path and diff.new_value is True and diff.old_value is not True


def _touches(diff: FieldDiff, fields: Iterable[str]) -> bool:
    return any(field in diff.field_path for field in fields)


def classify_severity(diffs: list[FieldDiff], action: AuditAction) -> ChangeSeverity:
    """
    Aggregate severity of a change set, first matching rule wins:

    1. CREATE / VIEW are always LOW.
    2. A severe allergy added, or pregnancy becoming true -> CRITICAL.
    3. Any critical field, chief complaint, pain or urgency -> HIGH.
    4. Habit / hygiene fields -> MEDIUM.
    5. Anything else -> LOW.
    """
    if action in (AuditAction.CREATE, AuditAction.VIEW):
        return ChangeSeverity.LOW
    if any(_adds_severe_allergy(d) or _becomes_pregnant(d) for d in diffs):
        return ChangeSeverity.CRITICAL
    if any(d.is_critical or _touches(d, HIGH_PRIORITY_FIELDS) for d in diffs):
        return ChangeSeverity.HIGH
    if any(_touches(d, HABIT_FIELDS) for d in diffs):
        return ChangeSeverity.MEDIUM
    return ChangeSeverity.LOW
