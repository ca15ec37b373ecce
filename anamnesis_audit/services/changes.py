"""
Change tracking entry point for the record CRUD layer.

Called after the CRUD layer has applied its own write to the live record,
inside the same unit of work. Bumps the version, snapshots, audits, routes
outside-encounter edits through the review workflow and refreshes status.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from anamnesis_audit.engine.diff import compute_diff
from anamnesis_audit.engine.types import ActorRole, AuditAction, ChangeSeverity, RecordStatus
from anamnesis_audit.errors import InputValidationError
from anamnesis_audit.models.anamnesis import utcnow
from anamnesis_audit.schemas.api import OutsideEncounterContext
from anamnesis_audit.services.audit import record_audit_entry
from anamnesis_audit.services.context import RequestContext
from anamnesis_audit.services.review import flag_outside_encounter_changes
from anamnesis_audit.services.status import refresh_record_status
from anamnesis_audit.services.validation import validate_record_state
from anamnesis_audit.services.versions import build_record_state, create_snapshot, get_record

logger = logging.getLogger(__name__)

_TRACKED_ACTIONS = (AuditAction.CREATE, AuditAction.UPDATE, AuditAction.DELETE)


@dataclass(frozen=True)
class ChangeResult:
    audit_log_id: UUID
    version_number: int
    severity: ChangeSeverity
    snapshot_id: UUID | None = None
    # None for DELETE: the CRUD layer removes the row itself
    status: RecordStatus | None = None
    pending_review_ids: list[UUID] = field(default_factory=list)


def record_change(
    db: Session,
    record_id: UUID,
    *,
    action: AuditAction | str,
    actor_id: str,
    actor_role: ActorRole | str,
    previous_state: dict[str, Any] | None = None,
    reason: str | None = None,
    encounter_id: str | None = None,
    outside_encounter: OutsideEncounterContext | None = None,
    request_context: RequestContext | None = None,
    now: datetime | None = None,
) -> ChangeResult:
    """
    Track a CREATE, UPDATE or DELETE of an anamnesis record.

    For UPDATE, ``previous_state`` is the state captured before the CRUD
    layer's write; the new state is read from the live record. An update
    that changes nothing is audited but does not create a version.
    """
    action = AuditAction(action)
    if action not in _TRACKED_ACTIONS:
        raise InputValidationError(f"record_change does not handle {action.value}")
    if outside_encounter is not None and action is not AuditAction.UPDATE:
        raise InputValidationError("Only updates can be flagged as made outside an encounter")
    if action is AuditAction.UPDATE and previous_state is None:
        raise InputValidationError("previous_state is required for updates")
    validate_record_state(previous_state, "previous_state")

    record = get_record(db, record_id, for_update=True)
    now = now or utcnow()
    audit_kwargs = dict(
        record_id=record.id,
        patient_id=record.patient_id,
        actor_id=actor_id,
        actor_role=actor_role,
        reason=reason,
        request_context=request_context,
        encounter_id=encounter_id,
    )

    if action is AuditAction.DELETE:
        write = record_audit_entry(
            db,
            action=action,
            previous_state=previous_state or build_record_state(record),
            version_before=record.version_number,
            **audit_kwargs,
        )
        return ChangeResult(
            audit_log_id=write.audit_log_id,
            version_number=record.version_number,
            severity=write.severity,
        )

    if action is AuditAction.CREATE:
        record.created_by = record.created_by or actor_id
        record.updated_at = now
        snapshot_id = create_snapshot(
            db, record.id, record.version_number,
            reason=reason, encounter_id=encounter_id,
            request_context=request_context, actor_id=actor_id,
        )
        write = record_audit_entry(
            db,
            action=action,
            new_state=build_record_state(record),
            version_after=record.version_number,
            **audit_kwargs,
        )
        status = refresh_record_status(db, record.id, now=now)
        return ChangeResult(
            audit_log_id=write.audit_log_id,
            version_number=record.version_number,
            severity=write.severity,
            snapshot_id=snapshot_id,
            status=status,
        )

    new_state = build_record_state(record)
    version_before = record.version_number
    snapshot_id = None
    if compute_diff(previous_state, new_state):
        record.version_number = version_before + 1
        record.updated_by = actor_id
        record.updated_at = now
        db.flush()
        snapshot_id = create_snapshot(
            db, record.id, record.version_number,
            reason=reason, encounter_id=encounter_id,
            request_context=request_context, actor_id=actor_id,
        )
    else:
        logger.info("Update of anamnesis/%s changed nothing, no new version", record.id)

    write = record_audit_entry(
        db,
        action=action,
        previous_state=previous_state,
        new_state=new_state,
        version_before=version_before,
        version_after=record.version_number,
        outside_encounter=outside_encounter,
        **audit_kwargs,
    )

    pending_review_ids: list[UUID] = []
    if outside_encounter is not None:
        pending_review_ids = flag_outside_encounter_changes(
            db, write, record=record, actor_id=actor_id, context=outside_encounter, now=now
        )
        status = record.status
    else:
        status = refresh_record_status(db, record.id, now=now)

    return ChangeResult(
        audit_log_id=write.audit_log_id,
        version_number=record.version_number,
        severity=write.severity,
        snapshot_id=snapshot_id,
        status=status,
        pending_review_ids=pending_review_ids,
    )
