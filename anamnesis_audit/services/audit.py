"""
Audit log writer for anamnesis records.

Every write happens in the caller's Session and is only flushed; the caller
commits. The entry and its normalized diff rows therefore commit or roll
back together.
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable
from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from anamnesis_audit.engine.classifier import classify_severity, requires_review
from anamnesis_audit.engine.diff import FieldDiff, compute_diff, summarize_diffs
from anamnesis_audit.engine.types import (
    READ_ONLY_ACTIONS,
    ActorRole,
    AuditAction,
    ChangeSeverity,
    SanitizeLevel,
)
from anamnesis_audit.errors import (
    AuditEngineError,
    AuditIntegrityError,
    InputValidationError,
    NotFoundError,
)
from anamnesis_audit.models.anamnesis import as_utc, utcnow
from anamnesis_audit.models.audit import AuditFieldDiff, AuditLogEntry
from anamnesis_audit.schemas.api import OutsideEncounterContext
from anamnesis_audit.services.context import RequestContext
from anamnesis_audit.services.sanitize import sanitize_state
from anamnesis_audit.services.validation import validate_record_state

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditWriteResult:
    entry: AuditLogEntry
    diffs: list[FieldDiff]
    severity: ChangeSeverity

    @property
    def audit_log_id(self) -> UUID:
        return self.entry.id


def to_jsonable(value: Any) -> Any:
    """Round-trip through JSON so UUIDs and dates are stored as strings."""
    if value is None:
        return None
    return json.loads(json.dumps(value, default=str))


def diffs_for_action(
    action: AuditAction,
    previous_state: dict[str, Any] | None,
    new_state: dict[str, Any] | None,
) -> list[FieldDiff]:
    if action in READ_ONLY_ACTIONS:
        return []
    if action is AuditAction.CREATE:
        return compute_diff(None, new_state)
    if action is AuditAction.DELETE:
        return compute_diff(previous_state, None)
    return compute_diff(previous_state, new_state)


# ---------------------------------------------------------------------------
# Integrity hash – per-row tamper evidence, not a chain
# ---------------------------------------------------------------------------

def calculate_integrity_hash(data: dict[str, Any]) -> str:
    serialized = json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(serialized.encode()).hexdigest()


def _integrity_fields(
    record_id: UUID,
    action: AuditAction,
    actor_id: str,
    performed_at: datetime,
    diff_count: int,
) -> dict[str, Any]:
    return {
        "record_id": str(record_id),
        "action": action.value,
        "actor_id": actor_id,
        "performed_at": as_utc(performed_at).isoformat(timespec="microseconds"),
        "diff_count": diff_count,
    }


def verify_integrity(entry: AuditLogEntry) -> bool:
    expected = calculate_integrity_hash(
        _integrity_fields(
            entry.record_id,
            AuditAction(entry.action),
            entry.actor_id,
            entry.performed_at,
            len(entry.field_diffs or []),
        )
    )
    return expected == entry.integrity_hash


def assert_integrity(entry: AuditLogEntry) -> None:
    if not verify_integrity(entry):
        raise AuditIntegrityError(f"Audit entry {entry.id} does not match its integrity hash")


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

def record_audit_entry(
    db: Session,
    *,
    action: AuditAction | str,
    record_id: UUID,
    patient_id: UUID,
    actor_id: str,
    actor_role: ActorRole | str,
    previous_state: dict[str, Any] | None = None,
    new_state: dict[str, Any] | None = None,
    reason: str | None = None,
    request_context: RequestContext | None = None,
    version_before: int | None = None,
    version_after: int | None = None,
    encounter_id: str | None = None,
    outside_encounter: OutsideEncounterContext | None = None,
    sanitize_level: SanitizeLevel | str | None = None,
) -> AuditWriteResult:
    """Diff, classify, sanitize and persist one audit entry plus its diff rows."""
    action = AuditAction(action)
    actor_role = ActorRole(actor_role)
    validate_record_state(previous_state, "previous_state")
    validate_record_state(new_state, "new_state")

    previous_state = to_jsonable(previous_state)
    new_state = to_jsonable(new_state)
    diffs = diffs_for_action(action, previous_state, new_state)
    severity = classify_severity(diffs, action)
    context = request_context or RequestContext()
    performed_at = utcnow()

    entry = AuditLogEntry(
        id=uuid4(),
        record_id=record_id,
        patient_id=patient_id,
        action=action,
        actor_id=actor_id,
        actor_role=actor_role,
        ip_address=context.ip_address,
        user_agent=context.user_agent,
        session_id=context.session_id,
        request_path=context.path,
        encounter_id=encounter_id,
        previous_state=sanitize_state(previous_state, sanitize_level),
        new_state=sanitize_state(new_state, sanitize_level),
        field_diffs=[d.to_dict() for d in diffs] or None,
        changes_summary=summarize_diffs(diffs),
        severity=severity,
        reason=reason,
        version_before=version_before,
        version_after=version_after,
        integrity_hash=calculate_integrity_hash(
            _integrity_fields(record_id, action, actor_id, performed_at, len(diffs))
        ),
        performed_at=performed_at,
    )
    if outside_encounter is not None:
        entry.is_outside_encounter = True
        entry.information_source = outside_encounter.information_source
        entry.verified_with_patient = outside_encounter.verified_with_patient
        entry.requires_review = any(requires_review(d.field_path, d.change_type) for d in diffs)

    db.add(entry)
    db.add_all(
        AuditFieldDiff(
            audit_log_id=entry.id,
            position=position,
            field_path=d.field_path,
            label=d.label,
            field_type=d.field_type,
            old_value=d.old_value,
            new_value=d.new_value,
            old_display=d.old_display,
            new_display=d.new_display,
            is_critical=d.is_critical,
            change_type=d.change_type,
        )
        for position, d in enumerate(diffs)
    )
    db.flush()
    logger.info(
        "AUDIT: %s %s anamnesis/%s severity=%s diffs=%d",
        actor_id, action.value, record_id, severity.value, len(diffs),
    )
    return AuditWriteResult(entry=entry, diffs=diffs, severity=severity)


def append_audit_log(db: Session, **kwargs: Any) -> UUID:
    """Write an immutable audit log entry and return its id."""
    return record_audit_entry(db, **kwargs).audit_log_id


@dataclass(frozen=True)
class AuditAttempt:
    """
    Outcome of a best-effort audit write.

    Callers must either ``discard()`` it, accepting that the audit entry
    may be missing, or ``raise_for_error()`` to make it mandatory.
    """

    audit_log_id: UUID | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def discard(self) -> None:
        return None

    def raise_for_error(self) -> UUID:
        if self.error is not None:
            raise self.error
        return self.audit_log_id


def attempt_write(db: Session, write: Callable[[], UUID], *, subject: str) -> AuditAttempt:
    """
    Run a secondary audit write that must never abort the operation it accompanies.

    ``write`` runs inside a SAVEPOINT so a failure rolls back only its own rows.
    """
    try:
        with db.begin_nested():
            audit_log_id = write()
    except (AuditEngineError, SQLAlchemyError, ValueError) as exc:
        logger.warning("Best-effort audit write failed for %s: %s", subject, exc, exc_info=True)
        return AuditAttempt(error=exc)
    return AuditAttempt(audit_log_id=audit_log_id)


def attempt_audit_log(db: Session, **kwargs: Any) -> AuditAttempt:
    return attempt_write(
        db,
        lambda: append_audit_log(db, **kwargs),
        subject=f"anamnesis/{kwargs.get('record_id')}",
    )


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def list_audit_log(
    db: Session,
    record_id: UUID,
    *,
    action: AuditAction | None = None,
    severity: ChangeSeverity | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[int, list[AuditLogEntry]]:
    """Newest-first page of a record's audit history and the total match count."""
    if page < 1 or not 1 <= limit <= 100:
        raise InputValidationError("page must be >= 1 and limit between 1 and 100")

    stmt = select(AuditLogEntry).where(AuditLogEntry.record_id == record_id)
    if action is not None:
        stmt = stmt.where(AuditLogEntry.action == action)
    if severity is not None:
        stmt = stmt.where(AuditLogEntry.severity == severity)
    if date_from is not None:
        stmt = stmt.where(AuditLogEntry.performed_at >= date_from)
    if date_to is not None:
        stmt = stmt.where(AuditLogEntry.performed_at <= date_to)

    total = db.scalar(select(func.count()).select_from(stmt.subquery()))
    entries = db.scalars(
        stmt.order_by(AuditLogEntry.performed_at.desc()).offset((page - 1) * limit).limit(limit)
    ).all()
    return total, list(entries)


def get_audit_entry(db: Session, record_id: UUID, audit_log_id: UUID) -> AuditLogEntry:
    entry = db.get(AuditLogEntry, audit_log_id)
    if entry is None or entry.record_id != record_id:
        raise NotFoundError(f"Audit entry {audit_log_id} not found for anamnesis {record_id}")
    return entry
