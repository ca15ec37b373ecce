"""
FastAPI routes for the anamnesis audit trail, version history and review queue.

The caller's identity arrives in the ``X-Actor-Id`` / ``X-Actor-Role``
headers; authentication happens upstream. Every endpoint is one unit of
work: writes commit at the end of the handler, anything that raises leaves
the session to roll back on close.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Query, Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from anamnesis_audit.config import settings
from anamnesis_audit.engine.types import ActorRole, AuditAction, ChangeSeverity
from anamnesis_audit.models.database import get_db
from anamnesis_audit.schemas.api import (
    AuditLogDetail,
    AuditLogPage,
    AuditLogSummary,
    BatchReviewRequest,
    BatchReviewResponse,
    FieldDiffOut,
    HealthResponse,
    ItemAuditOut,
    PendingReviewListing,
    RecordStatusInfo,
    RestoreRequest,
    RestoreResponse,
    ReviewDecisionRequest,
    ReviewDecisionResponse,
    VersionComparison,
    VersionDetail,
    VersionSummary,
)
from anamnesis_audit.services.audit import (
    attempt_audit_log,
    get_audit_entry,
    list_audit_log,
    verify_integrity,
)
from anamnesis_audit.services.context import RequestContext
from anamnesis_audit.services.item_audit import (
    get_allergy_history,
    get_medication_history,
    get_record_allergy_history,
    get_record_medication_history,
)
from anamnesis_audit.services.review import (
    batch_review_pending_changes,
    list_patient_pending_reviews,
    list_pending_reviews,
    review_pending_change,
)
from anamnesis_audit.services.status import get_status_info
from anamnesis_audit.services.versions import (
    compare_versions,
    get_record,
    get_version,
    list_versions,
    restore_version,
    snapshot_state,
)

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Actor:
    id: str
    role: ActorRole


def get_actor(
    x_actor_id: str = Header(..., min_length=1, max_length=128),
    x_actor_role: ActorRole = Header(...),
) -> Actor:
    return Actor(id=x_actor_id, role=x_actor_role)


def get_request_context(request: Request) -> RequestContext:
    return RequestContext.from_headers(request.headers, request.url.path)


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------

@router.get("/health", response_model=HealthResponse)
def health_check(db: Session = Depends(get_db)):
    """Basic health endpoint – verifies DB connectivity."""
    try:
        db.execute(text("SELECT 1"))
        db_status = "connected"
    except SQLAlchemyError:
        logger.warning("Health check could not reach the database", exc_info=True)
        db_status = "disconnected"
    return HealthResponse(
        status="healthy",
        environment=settings.ENVIRONMENT,
        database=db_status,
    )


# ---------------------------------------------------------------------------
# Status
# ---------------------------------------------------------------------------

@router.get("/patients/{patient_id}/anamnesis/status", response_model=RecordStatusInfo)
def get_patient_anamnesis_status(patient_id: UUID, db: Session = Depends(get_db)):
    return get_status_info(db, patient_id)


# ---------------------------------------------------------------------------
# Audit history
# ---------------------------------------------------------------------------

@router.get("/anamnesis/{record_id}/audit", response_model=AuditLogPage)
def get_audit_history(
    record_id: UUID,
    action: AuditAction | None = None,
    severity: ChangeSeverity | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    """Paginated audit history of one record, newest first."""
    get_record(db, record_id)
    total, entries = list_audit_log(
        db,
        record_id,
        action=action,
        severity=severity,
        date_from=date_from,
        date_to=date_to,
        page=page,
        limit=limit,
    )
    return AuditLogPage(
        total=total,
        page=page,
        limit=limit,
        items=[AuditLogSummary.model_validate(entry) for entry in entries],
    )


@router.get("/anamnesis/{record_id}/audit/{audit_log_id}", response_model=AuditLogDetail)
def get_audit_detail(record_id: UUID, audit_log_id: UUID, db: Session = Depends(get_db)):
    """Full audit entry, with the integrity hash re-checked on read."""
    entry = get_audit_entry(db, record_id, audit_log_id)
    integrity_ok = verify_integrity(entry)
    if not integrity_ok:
        logger.error("Audit entry %s failed its integrity check", entry.id)
    return AuditLogDetail(
        **AuditLogSummary.model_validate(entry).model_dump(),
        ip_address=entry.ip_address,
        user_agent=entry.user_agent,
        previous_state=entry.previous_state,
        new_state=entry.new_state,
        integrity_hash=entry.integrity_hash,
        integrity_ok=integrity_ok,
        diffs=[FieldDiffOut.model_validate(diff) for diff in entry.diffs],
    )


# ---------------------------------------------------------------------------
# Allergy / medication change log
# ---------------------------------------------------------------------------

@router.get("/anamnesis/{record_id}/allergies/history", response_model=list[ItemAuditOut])
def get_record_allergy_changes(record_id: UUID, db: Session = Depends(get_db)):
    return get_record_allergy_history(db, record_id)


@router.get("/anamnesis/{record_id}/medications/history", response_model=list[ItemAuditOut])
def get_record_medication_changes(record_id: UUID, db: Session = Depends(get_db)):
    return get_record_medication_history(db, record_id)


@router.get("/allergies/{item_id}/history", response_model=list[ItemAuditOut])
def get_allergy_changes(item_id: UUID, db: Session = Depends(get_db)):
    return get_allergy_history(db, item_id)


@router.get("/medications/{item_id}/history", response_model=list[ItemAuditOut])
def get_medication_changes(item_id: UUID, db: Session = Depends(get_db)):
    return get_medication_history(db, item_id)


# ---------------------------------------------------------------------------
# Versions
# ---------------------------------------------------------------------------

@router.get("/anamnesis/{record_id}/versions", response_model=list[VersionSummary])
def get_versions(record_id: UUID, db: Session = Depends(get_db)):
    return [VersionSummary.model_validate(snapshot) for snapshot in list_versions(db, record_id)]


@router.get("/anamnesis/{record_id}/versions/compare", response_model=VersionComparison)
def get_version_comparison(
    record_id: UUID,
    version_a: UUID,
    version_b: UUID,
    db: Session = Depends(get_db),
):
    return compare_versions(db, record_id, version_a, version_b)


@router.get("/anamnesis/{record_id}/versions/{version_id}", response_model=VersionDetail)
def get_version_detail(
    record_id: UUID,
    version_id: UUID,
    actor: Actor = Depends(get_actor),
    context: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    """
    Return one snapshot in full.

    Viewing is audited on a best-effort basis: a failed VIEW entry is logged
    and the snapshot is still returned.
    """
    snapshot = get_version(db, record_id, version_id)
    state = snapshot_state(snapshot)

    attempt_audit_log(
        db,
        action=AuditAction.VIEW,
        record_id=record_id,
        patient_id=snapshot.patient_id,
        actor_id=actor.id,
        actor_role=actor.role,
        reason=f"Consulta de versión {snapshot.version_number}",
        request_context=context,
    ).discard()
    db.commit()

    return VersionDetail(**VersionSummary.model_validate(snapshot).model_dump(), state=state)


@router.post("/anamnesis/{record_id}/versions/{version_id}/restore", response_model=RestoreResponse)
def restore_anamnesis_version(
    record_id: UUID,
    version_id: UUID,
    request: RestoreRequest,
    actor: Actor = Depends(get_actor),
    context: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    state = restore_version(
        db,
        record_id,
        version_id,
        actor_id=actor.id,
        actor_role=actor.role,
        reason=request.reason,
        request_context=context,
        outside_encounter=request.outside_encounter,
    )
    record = get_record(db, record_id)
    response = RestoreResponse(
        record_id=record.id,
        version_number=record.version_number,
        state=state,
        status=record.status,
    )
    db.commit()
    return response


# ---------------------------------------------------------------------------
# Review queue
# ---------------------------------------------------------------------------

@router.get("/anamnesis/{record_id}/reviews", response_model=list[PendingReviewListing])
def get_record_reviews(record_id: UUID, db: Session = Depends(get_db)):
    get_record(db, record_id)
    return list_pending_reviews(db, record_id)


@router.get("/patients/{patient_id}/reviews", response_model=list[PendingReviewListing])
def get_patient_reviews(patient_id: UUID, db: Session = Depends(get_db)):
    return list_patient_pending_reviews(db, patient_id)


# Declared before /reviews/{review_id} so "batch" is not parsed as an id
@router.post("/reviews/batch", response_model=BatchReviewResponse)
def review_batch(
    request: BatchReviewRequest,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    record_ids = batch_review_pending_changes(
        db,
        request.review_ids,
        reviewer_id=actor.id,
        approve=request.approve,
        notes=request.notes,
    )
    db.commit()
    return BatchReviewResponse(processed=len(set(request.review_ids)), record_ids=record_ids)


@router.post("/reviews/{review_id}", response_model=ReviewDecisionResponse)
def review_change(
    review_id: UUID,
    request: ReviewDecisionRequest,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    review = review_pending_change(
        db,
        review_id,
        reviewer_id=actor.id,
        approve=request.approve,
        notes=request.notes,
    )
    response = ReviewDecisionResponse.model_validate(review)
    db.commit()
    return response
