"""
Record status state machine.

    NO_RECORD       no anamnesis exists for the patient
    PENDING_REVIEW  at least one unresolved review (wins over EXPIRED)
    EXPIRED         no unresolved reviews, last modification older than the window
    VALID           otherwise

Pending review rows are the source of truth; the flags on the live record
are a cache refreshed after every write that can change them. Staleness is
evaluated lazily on read, there is no background timer.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from anamnesis_audit.config import settings
from anamnesis_audit.engine.types import RecordStatus
from anamnesis_audit.errors import NotFoundError
from anamnesis_audit.models.anamnesis import PatientAnamnesis, as_utc, utcnow
from anamnesis_audit.models.audit import PendingReview
from anamnesis_audit.schemas.api import RecordStatusInfo

logger = logging.getLogger(__name__)


def count_unresolved_reviews(db: Session, record_id: UUID) -> int:
    return db.scalar(
        select(func.count())
        .select_from(PendingReview)
        .where(PendingReview.record_id == record_id, PendingReview.is_approved.is_(None))
    )


def is_stale(last_modified_at: datetime, now: datetime, validity_days: int) -> bool:
    return as_utc(now) - as_utc(last_modified_at) > timedelta(days=validity_days)


def derive_status(
    *,
    exists: bool,
    pending_count: int,
    last_modified_at: datetime | None,
    now: datetime | None = None,
    validity_days: int | None = None,
) -> RecordStatus:
    if not exists:
        return RecordStatus.NO_RECORD
    if pending_count > 0:
        return RecordStatus.PENDING_REVIEW
    window = settings.RECORD_VALIDITY_DAYS if validity_days is None else validity_days
    if last_modified_at is not None and is_stale(last_modified_at, now or utcnow(), window):
        return RecordStatus.EXPIRED
    return RecordStatus.VALID


def refresh_record_status(
    db: Session,
    record_id: UUID,
    *,
    now: datetime | None = None,
    verified_by: str | None = None,
) -> RecordStatus:
    """
    Recompute and cache a record's status after a write.

    ``verified_by`` is the reviewer whose decision triggered the refresh; it
    is recorded as the last verifier when no reviews remain outstanding.
    """
    record = db.get(PatientAnamnesis, record_id)
    if record is None:
        raise NotFoundError(f"Anamnesis {record_id} not found")

    now = now or utcnow()
    pending = count_unresolved_reviews(db, record_id)
    status = derive_status(
        exists=True,
        pending_count=pending,
        last_modified_at=record.updated_at,
        now=now,
    )

    record.status = status
    record.has_pending_reviews = pending > 0
    if pending:
        if record.pending_review_since is None:
            record.pending_review_since = now
    else:
        record.pending_review_since = None
        record.pending_review_reason = None
        if verified_by is not None:
            record.last_verified_at = now
            record.last_verified_by = verified_by
    db.flush()

    logger.info("Anamnesis %s status=%s pending_reviews=%d", record_id, status.value, pending)
    return status


def get_record_for_patient(db: Session, patient_id: UUID) -> PatientAnamnesis | None:
    return db.scalar(select(PatientAnamnesis).where(PatientAnamnesis.patient_id == patient_id))


def get_status_info(db: Session, patient_id: UUID, *, now: datetime | None = None) -> RecordStatusInfo:
    """Read model for the patient's anamnesis; computed live, nothing is written."""
    record = get_record_for_patient(db, patient_id)
    if record is None:
        return RecordStatusInfo(status=RecordStatus.NO_RECORD)

    pending = count_unresolved_reviews(db, record.id)
    status = derive_status(
        exists=True,
        pending_count=pending,
        last_modified_at=record.updated_at,
        now=now,
    )
    return RecordStatusInfo(
        status=status,
        last_verified_at=record.last_verified_at,
        last_verified_by=record.last_verified_by,
        has_pending_reviews=pending > 0,
        pending_review_since=record.pending_review_since if pending else None,
        pending_review_reason=record.pending_review_reason if pending else None,
    )
