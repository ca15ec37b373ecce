"""
Review workflow for anamnesis edits made outside a clinical encounter.

Each review-worthy diff of such an edit becomes one pending review. A
reviewer approves or rejects it exactly once. Rejection records the
clinical decision only; the data change itself is never reverted.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from anamnesis_audit.engine.classifier import requires_review
from anamnesis_audit.engine.types import ChangeSeverity
from anamnesis_audit.errors import AlreadyResolvedError, InputValidationError, NotFoundError
from anamnesis_audit.models.anamnesis import PatientAnamnesis, utcnow
from anamnesis_audit.models.audit import AuditLogEntry, PendingReview
from anamnesis_audit.schemas.api import (
    OutsideEncounterContext,
    PendingReviewListing,
    ReviewAuditInfo,
)
from anamnesis_audit.services.audit import AuditWriteResult
from anamnesis_audit.services.status import refresh_record_status

logger = logging.getLogger(__name__)

DEFAULT_REVIEW_REASON = "Field change requires review"


def flag_outside_encounter_changes(
    db: Session,
    write: AuditWriteResult,
    *,
    record: PatientAnamnesis,
    actor_id: str,
    context: OutsideEncounterContext,
    now: datetime | None = None,
) -> list[UUID]:
    """Create one pending review per review-worthy diff of an audited edit."""
    now = now or utcnow()
    reason = context.reason or DEFAULT_REVIEW_REASON
    reviews = [
        PendingReview(
            id=uuid4(),
            record_id=record.id,
            patient_id=record.patient_id,
            audit_log_id=write.audit_log_id,
            field_path=diff.field_path,
            label=diff.label,
            old_value=diff.old_value,
            new_value=diff.new_value,
            reason=reason,
            severity=ChangeSeverity.CRITICAL if diff.is_critical else write.severity,
            created_by=actor_id,
            created_at=now,
        )
        for diff in write.diffs
        if requires_review(diff.field_path, diff.change_type)
    ]

    if reviews:
        db.add_all(reviews)
        record.has_pending_reviews = True
        if record.pending_review_since is None:
            record.pending_review_since = now
        record.pending_review_reason = reason
        db.flush()
        logger.info(
            "Flagged %d change(s) on anamnesis/%s for review (source=%s)",
            len(reviews), record.id, context.information_source.value,
        )

    refresh_record_status(db, record.id, now=now)
    return [review.id for review in reviews]


def _apply_decision(
    review: PendingReview,
    *,
    reviewer_id: str,
    approve: bool,
    notes: str | None,
    now: datetime,
) -> None:
    review.reviewed_at = now
    review.reviewed_by = reviewer_id
    review.review_notes = notes
    review.is_approved = approve


def _stamp_audit_entries(db: Session, audit_log_ids: Iterable[UUID], reviewer_id: str, now: datetime) -> None:
    for audit_log_id in dict.fromkeys(audit_log_ids):
        entry = db.get(AuditLogEntry, audit_log_id)
        if entry is not None:
            entry.reviewed_at = now
            entry.reviewed_by = reviewer_id


def review_pending_change(
    db: Session,
    review_id: UUID,
    *,
    reviewer_id: str,
    approve: bool,
    notes: str | None = None,
    now: datetime | None = None,
) -> PendingReview:
    review = db.get(PendingReview, review_id, with_for_update=True)
    if review is None:
        raise NotFoundError(f"Pending review {review_id} not found")
    if review.is_approved is not None:
        raise AlreadyResolvedError(f"Pending review {review_id} has already been processed")

    now = now or utcnow()
    _apply_decision(review, reviewer_id=reviewer_id, approve=approve, notes=notes, now=now)
    if approve:
        _stamp_audit_entries(db, [review.audit_log_id], reviewer_id, now)
    db.flush()
    logger.info(
        "Review %s on anamnesis/%s %s by %s",
        review_id, review.record_id, "approved" if approve else "rejected", reviewer_id,
    )

    refresh_record_status(db, review.record_id, now=now, verified_by=reviewer_id)
    return review


def batch_review_pending_changes(
    db: Session,
    review_ids: Iterable[UUID],
    *,
    reviewer_id: str,
    approve: bool,
    notes: str | None = None,
    now: datetime | None = None,
) -> list[UUID]:
    """
    Approve or reject several reviews at once.

    Every id is checked before anything is written: one unknown or already
    resolved id fails the whole batch. Returns the distinct record ids touched.
    """
    ids = list(dict.fromkeys(review_ids))
    if not ids:
        raise InputValidationError("review_ids must not be empty")

    reviews = db.scalars(
        select(PendingReview).where(PendingReview.id.in_(ids)).with_for_update()
    ).all()
    found = {review.id: review for review in reviews}
    missing = [str(review_id) for review_id in ids if review_id not in found]
    if missing:
        raise NotFoundError(f"Pending reviews not found: {', '.join(missing)}")
    resolved = [str(review.id) for review in reviews if review.is_approved is not None]
    if resolved:
        raise AlreadyResolvedError(f"Pending reviews already processed: {', '.join(resolved)}")

    now = now or utcnow()
    ordered = [found[review_id] for review_id in ids]
    for review in ordered:
        _apply_decision(review, reviewer_id=reviewer_id, approve=approve, notes=notes, now=now)
    if approve:
        _stamp_audit_entries(db, (review.audit_log_id for review in ordered), reviewer_id, now)
    db.flush()

    record_ids = list(dict.fromkeys(review.record_id for review in ordered))
    for record_id in record_ids:
        refresh_record_status(db, record_id, now=now, verified_by=reviewer_id)
    logger.info(
        "Batch %s %d review(s) across %d anamnesis record(s) by %s",
        "approved" if approve else "rejected", len(ordered), len(record_ids), reviewer_id,
    )
    return record_ids


# ---------------------------------------------------------------------------
# Review queue listings
# ---------------------------------------------------------------------------

def _to_listing(review: PendingReview) -> PendingReviewListing:
    audit = review.audit_log
    return PendingReviewListing(
        id=review.id,
        record_id=review.record_id,
        patient_id=review.patient_id,
        audit_log_id=review.audit_log_id,
        field_path=review.field_path,
        label=review.label,
        old_value=review.old_value,
        new_value=review.new_value,
        reason=review.reason,
        severity=review.severity,
        created_by=review.created_by,
        created_at=review.created_at,
        audit=ReviewAuditInfo(
            action=audit.action,
            performed_at=audit.performed_at,
            reason=audit.reason,
            severity=audit.severity,
            information_source=audit.information_source,
        ),
    )


def _unresolved(db: Session, *criteria) -> list[PendingReviewListing]:
    reviews = db.scalars(
        select(PendingReview)
        .where(PendingReview.is_approved.is_(None), *criteria)
        .order_by(PendingReview.created_at.desc())
    ).all()
    return [_to_listing(review) for review in reviews]


def list_pending_reviews(db: Session, record_id: UUID) -> list[PendingReviewListing]:
    return _unresolved(db, PendingReview.record_id == record_id)


def list_patient_pending_reviews(db: Session, patient_id: UUID) -> list[PendingReviewListing]:
    return _unresolved(db, PendingReview.patient_id == patient_id)
