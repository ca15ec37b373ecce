"""
Snapshot / version store for anamnesis records.

Snapshots are immutable full copies of the record, including its resolved
sub-collections. Version numbers only ever grow: restoring version 2 onto a
record at version 5 produces version 6, back-linked to the restored snapshot.
"""

from __future__ import annotations

import copy
import logging
from datetime import date, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from anamnesis_audit.engine.diff import compute_diff, summarize_diffs
from anamnesis_audit.engine.fields import SCALAR_FIELDS
from anamnesis_audit.engine.types import ActorRole, AuditAction
from anamnesis_audit.errors import MismatchError, NotFoundError
from anamnesis_audit.models.anamnesis import AnamnesisVersion, PatientAnamnesis, utcnow
from anamnesis_audit.schemas.api import (
    FieldDiffOut,
    OutsideEncounterContext,
    VersionComparison,
    VersionSummary,
)
from anamnesis_audit.services.audit import record_audit_entry
from anamnesis_audit.services.context import RequestContext
from anamnesis_audit.services.review import flag_outside_encounter_changes
from anamnesis_audit.services.status import refresh_record_status

logger = logging.getLogger(__name__)

DEFAULT_RESTORE_REASON = "Restauración de versión anterior"

_COPIED_FIELDS = ("record_type",) + SCALAR_FIELDS


# ---------------------------------------------------------------------------
# State building
# ---------------------------------------------------------------------------

def _state_value(value: Any) -> Any:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def _item_value(row: Any, field: str) -> Any:
    value = getattr(row, field)
    if value is None:
        # Rows appended but not yet flushed still lack their column defaults
        default = row.__table__.c[field].default
        if default is not None and default.is_scalar:
            value = default.arg
    return _state_value(value)


def item_state(row: Any) -> dict[str, Any]:
    """State of one allergy, medication or condition row."""
    return {field: _item_value(row, field) for field in row.STATE_FIELDS}


def _fields_state(source: Any) -> dict[str, Any]:
    state = {field: _state_value(getattr(source, field)) for field in _COPIED_FIELDS}
    state["payload"] = copy.deepcopy(source.payload)
    return state


def build_record_state(record: PatientAnamnesis) -> dict[str, Any]:
    """Fully resolved state of the live record, in the shape the differ expects."""
    state = {"record_id": str(record.id), "patient_id": str(record.patient_id)}
    state.update(_fields_state(record))
    state["allergies"] = [item_state(row) for row in record.allergies]
    state["medications"] = [item_state(row) for row in record.medications]
    state["conditions"] = [item_state(row) for row in record.conditions]
    return state


def snapshot_state(snapshot: AnamnesisVersion) -> dict[str, Any]:
    state = {"record_id": str(snapshot.record_id), "patient_id": str(snapshot.patient_id)}
    state.update(_fields_state(snapshot))
    state["allergies"] = copy.deepcopy(snapshot.allergies or [])
    state["medications"] = copy.deepcopy(snapshot.medications or [])
    state["conditions"] = copy.deepcopy(snapshot.conditions or [])
    return state


def _copy_fields(source: Any, target: Any) -> None:
    for field in _COPIED_FIELDS:
        setattr(target, field, getattr(source, field))
    target.payload = copy.deepcopy(source.payload)


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

def get_record(db: Session, record_id: UUID, *, for_update: bool = False) -> PatientAnamnesis:
    record = db.get(PatientAnamnesis, record_id, with_for_update=for_update)
    if record is None:
        raise NotFoundError(f"Anamnesis {record_id} not found")
    return record


def get_version(db: Session, record_id: UUID, version_id: UUID) -> AnamnesisVersion:
    snapshot = db.get(AnamnesisVersion, version_id)
    if snapshot is None:
        raise NotFoundError(f"Version {version_id} not found")
    if snapshot.record_id != record_id:
        raise MismatchError(f"Version {version_id} does not belong to anamnesis {record_id}")
    return snapshot


def list_versions(db: Session, record_id: UUID) -> list[AnamnesisVersion]:
    get_record(db, record_id)
    return list(
        db.scalars(
            select(AnamnesisVersion)
            .where(AnamnesisVersion.record_id == record_id)
            .order_by(AnamnesisVersion.version_number.desc())
        ).all()
    )


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

def create_snapshot(
    db: Session,
    record_id: UUID,
    version_number: int,
    *,
    reason: str | None = None,
    encounter_id: str | None = None,
    request_context: RequestContext | None = None,
    actor_id: str | None = None,
    restored_from_version_id: UUID | None = None,
) -> UUID:
    """Write an immutable snapshot of the record's current state."""
    record = get_record(db, record_id)
    context = request_context or RequestContext()

    snapshot = AnamnesisVersion(
        id=uuid4(),
        record_id=record.id,
        patient_id=record.patient_id,
        version_number=version_number,
        allergies=[item_state(row) for row in record.allergies],
        medications=[item_state(row) for row in record.medications],
        conditions=[item_state(row) for row in record.conditions],
        restored_from_version_id=restored_from_version_id,
        reason=reason,
        encounter_id=encounter_id,
        ip_address=context.ip_address,
        user_agent=context.user_agent,
        created_by=actor_id or record.updated_by or record.created_by,
    )
    _copy_fields(record, snapshot)
    db.add(snapshot)
    db.flush()

    logger.info("Snapshot v%d of anamnesis/%s written", version_number, record_id)
    return snapshot.id


def restore_version(
    db: Session,
    record_id: UUID,
    version_id: UUID,
    *,
    actor_id: str,
    actor_role: ActorRole | str,
    reason: str | None = None,
    request_context: RequestContext | None = None,
    outside_encounter: OutsideEncounterContext | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """
    Restore a snapshot onto the live record and return the resulting state.

    Load and check the snapshot, capture the current state, overwrite the
    record's fields at ``current + 1``, snapshot the result back-linked to
    ``version_id`` and audit a RESTORE. All writes share the caller's unit
    of work.
    """
    snapshot = get_version(db, record_id, version_id)
    record = get_record(db, record_id, for_update=True)
    now = now or utcnow()
    reason = reason or DEFAULT_RESTORE_REASON

    previous_state = build_record_state(record)
    version_before = record.version_number
    version_after = version_before + 1

    _copy_fields(snapshot, record)
    record.version_number = version_after
    record.updated_by = actor_id
    record.updated_at = now
    db.flush()

    create_snapshot(
        db,
        record_id,
        version_after,
        reason=reason,
        request_context=request_context,
        actor_id=actor_id,
        restored_from_version_id=version_id,
    )

    new_state = build_record_state(record)
    write = record_audit_entry(
        db,
        action=AuditAction.RESTORE,
        record_id=record_id,
        patient_id=record.patient_id,
        actor_id=actor_id,
        actor_role=actor_role,
        previous_state=previous_state,
        new_state=new_state,
        reason=reason,
        request_context=request_context,
        version_before=version_before,
        version_after=version_after,
        outside_encounter=outside_encounter,
    )

    if outside_encounter is not None:
        flag_outside_encounter_changes(
            db, write, record=record, actor_id=actor_id, context=outside_encounter, now=now
        )
    else:
        refresh_record_status(db, record_id, now=now)

    logger.info(
        "Restored anamnesis/%s from snapshot v%d: v%d -> v%d",
        record_id, snapshot.version_number, version_before, version_after,
    )
    return new_state


# ---------------------------------------------------------------------------
# Comparison
# ---------------------------------------------------------------------------

def compare_versions(
    db: Session,
    record_id: UUID,
    version_a_id: UUID,
    version_b_id: UUID,
) -> VersionComparison:
    """Diff two snapshots of the same record, A as before and B as after."""
    version_a = get_version(db, record_id, version_a_id)
    version_b = get_version(db, record_id, version_b_id)
    diffs = compute_diff(snapshot_state(version_a), snapshot_state(version_b))
    summary = summarize_diffs(diffs)
    summary.pop("fields_changed")
    return VersionComparison(
        version_a=VersionSummary.model_validate(version_a),
        version_b=VersionSummary.model_validate(version_b),
        diffs=[FieldDiffOut(**diff.to_dict()) for diff in diffs],
        summary=summary,
    )
