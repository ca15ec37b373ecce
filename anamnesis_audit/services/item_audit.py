"""
Per-item change log for a record's allergies and medications.

The main audit log compares collections by count only, so replacing one
allergy with another in the same update leaves no field diff there. This
log keeps one entry per item change, written next to the record change by
the CRUD layer.

Writes are best-effort: each runs in its own SAVEPOINT and a failure is
returned as an ``AuditAttempt`` instead of aborting the record change.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from anamnesis_audit.engine.types import ItemAuditAction
from anamnesis_audit.errors import InputValidationError
from anamnesis_audit.models.anamnesis import utcnow
from anamnesis_audit.models.audit import AllergyAuditEntry, MedicationAuditEntry
from anamnesis_audit.services.audit import AuditAttempt, attempt_write, to_jsonable
from anamnesis_audit.services.versions import get_record

logger = logging.getLogger(__name__)


def infer_item_action(
    previous_value: dict[str, Any] | None,
    new_value: dict[str, Any] | None,
) -> ItemAuditAction:
    """Lifecycle action implied by an item's state before and after a change."""
    if previous_value is None and new_value is None:
        raise InputValidationError("An item change needs a previous or a new value")
    if previous_value is None:
        return ItemAuditAction.ADDED
    if new_value is None:
        return ItemAuditAction.REMOVED

    was_active = previous_value.get("is_active", True)
    is_active = new_value.get("is_active", True)
    if was_active and not is_active:
        return ItemAuditAction.DEACTIVATED
    if is_active and not was_active:
        return ItemAuditAction.REACTIVATED
    return ItemAuditAction.UPDATED


def _log_item_change(
    db: Session,
    model: type,
    *,
    item_id: UUID,
    record_id: UUID,
    actor_id: str,
    action: ItemAuditAction | str | None = None,
    previous_value: dict[str, Any] | None = None,
    new_value: dict[str, Any] | None = None,
    notes: str | None = None,
    now: datetime | None = None,
) -> AuditAttempt:
    def write() -> UUID:
        resolved = ItemAuditAction(action) if action is not None else infer_item_action(previous_value, new_value)
        entry = model(
            id=uuid4(),
            item_id=item_id,
            record_id=record_id,
            action=resolved,
            previous_value=to_jsonable(previous_value),
            new_value=to_jsonable(new_value),
            performed_by=actor_id,
            notes=notes,
            performed_at=now or utcnow(),
        )
        db.add(entry)
        db.flush()
        logger.info(
            "AUDIT: %s %s %s/%s of anamnesis/%s",
            actor_id, resolved.value, model.__tablename__, item_id, record_id,
        )
        return entry.id

    return attempt_write(db, write, subject=f"{model.__tablename__}/{item_id}")


def log_allergy_change(db: Session, *, item_id: UUID, record_id: UUID, **kwargs: Any) -> AuditAttempt:
    """
    Best-effort entry in the allergy change log.

    ``action`` is inferred from the two states when omitted: no previous
    value is ADDED, no new value is REMOVED, an ``is_active`` flip is
    DEACTIVATED or REACTIVATED, anything else UPDATED.
    """
    return _log_item_change(db, AllergyAuditEntry, item_id=item_id, record_id=record_id, **kwargs)


def log_medication_change(db: Session, *, item_id: UUID, record_id: UUID, **kwargs: Any) -> AuditAttempt:
    """Best-effort entry in the medication change log; see ``log_allergy_change``."""
    return _log_item_change(db, MedicationAuditEntry, item_id=item_id, record_id=record_id, **kwargs)


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------

def _history(db: Session, model: type, condition: Any) -> list:
    return list(db.scalars(select(model).where(condition).order_by(model.performed_at.desc())).all())


def get_allergy_history(db: Session, item_id: UUID) -> list[AllergyAuditEntry]:
    return _history(db, AllergyAuditEntry, AllergyAuditEntry.item_id == item_id)


def get_medication_history(db: Session, item_id: UUID) -> list[MedicationAuditEntry]:
    return _history(db, MedicationAuditEntry, MedicationAuditEntry.item_id == item_id)


def get_record_allergy_history(db: Session, record_id: UUID) -> list[AllergyAuditEntry]:
    """Every allergy change of one record, newest first, removed items included."""
    get_record(db, record_id)
    return _history(db, AllergyAuditEntry, AllergyAuditEntry.record_id == record_id)


def get_record_medication_history(db: Session, record_id: UUID) -> list[MedicationAuditEntry]:
    get_record(db, record_id)
    return _history(db, MedicationAuditEntry, MedicationAuditEntry.record_id == record_id)
