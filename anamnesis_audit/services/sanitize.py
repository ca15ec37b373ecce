"""
Snapshot sanitization before states are written to the audit log.

- NONE: stored verbatim
- PARTIAL: long free-text fields masked to their last few characters
- FULL: only identifying fields kept (record_id, patient_id, record_type)
"""

from __future__ import annotations

import copy
from typing import Any

from anamnesis_audit.config import settings
from anamnesis_audit.engine.fields import FREE_TEXT_FIELDS, IDENTITY_FIELDS
from anamnesis_audit.engine.types import SanitizeLevel


def mask_text(text: str, visible_chars: int | None = None) -> str:
    visible = settings.SANITIZE_VISIBLE_CHARS if visible_chars is None else visible_chars
    if len(text) <= visible:
        return "***"
    return "***" + text[-visible:]


def _mask_path(data: dict[str, Any], path: str) -> None:
    *parents, leaf = path.split(".")
    node: Any = data
    for part in parents:
        node = node.get(part) if isinstance(node, dict) else None
        if node is None:
            return
    if isinstance(node, dict) and isinstance(node.get(leaf), str):
        node[leaf] = mask_text(node[leaf])


def sanitize_state(
    state: dict[str, Any] | None,
    level: SanitizeLevel | str | None = None,
) -> dict[str, Any] | None:
    """Return a sanitized copy of ``state``; the input is never mutated."""
    if state is None:
        return None
    level = SanitizeLevel(level or settings.AUDIT_SANITIZE_LEVEL)

    if level is SanitizeLevel.NONE:
        return copy.deepcopy(state)
    if level is SanitizeLevel.FULL:
        return {key: state.get(key) for key in IDENTITY_FIELDS}

    sanitized = copy.deepcopy(state)
    for path in FREE_TEXT_FIELDS:
        _mask_path(sanitized, path)
    return sanitized
