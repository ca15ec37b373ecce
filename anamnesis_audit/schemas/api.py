"""Pydantic models for engine inputs, read models and API serialization."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from anamnesis_audit.engine.types import (
    AuditAction,
    ChangeSeverity,
    ChangeType,
    InformationSource,
    ItemAuditAction,
    RecordStatus,
)


# ---------------------------------------------------------------------------
# Outside-encounter edit context
# ---------------------------------------------------------------------------

class OutsideEncounterContext(BaseModel):
    """Supplied by the caller when an edit happens without a clinical encounter."""
    reason: str | None = Field(default=None, max_length=1000)
    information_source: InformationSource = InformationSource.IN_PERSON
    verified_with_patient: bool = False


# ---------------------------------------------------------------------------
# Status read model
# ---------------------------------------------------------------------------

class RecordStatusInfo(BaseModel):
    status: RecordStatus
    last_verified_at: datetime | None = None
    last_verified_by: str | None = None
    has_pending_reviews: bool = False
    pending_review_since: datetime | None = None
    pending_review_reason: str | None = None


# ---------------------------------------------------------------------------
# Review queue
# ---------------------------------------------------------------------------

class ReviewAuditInfo(BaseModel):
    action: AuditAction
    performed_at: datetime
    reason: str | None
    severity: ChangeSeverity
    information_source: InformationSource | None = None


class PendingReviewListing(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    record_id: UUID
    patient_id: UUID
    audit_log_id: UUID
    field_path: str
    label: str
    old_value: Any = None
    new_value: Any = None
    reason: str
    severity: ChangeSeverity
    created_by: str
    created_at: datetime
    audit: ReviewAuditInfo


class ReviewDecisionRequest(BaseModel):
    approve: bool
    notes: str | None = Field(default=None, max_length=2000)


class BatchReviewRequest(ReviewDecisionRequest):
    review_ids: list[UUID] = Field(..., min_length=1, max_length=500)


class ReviewDecisionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    record_id: UUID
    is_approved: bool
    reviewed_at: datetime
    reviewed_by: str
    review_notes: str | None = None


class BatchReviewResponse(BaseModel):
    processed: int
    record_ids: list[UUID]


# ---------------------------------------------------------------------------
# Allergy / medication change log
# ---------------------------------------------------------------------------

class ItemAuditOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    item_id: UUID
    record_id: UUID
    action: ItemAuditAction
    previous_value: dict[str, Any] | None = None
    new_value: dict[str, Any] | None = None
    performed_by: str
    notes: str | None = None
    performed_at: datetime


# ---------------------------------------------------------------------------
# Audit history
# ---------------------------------------------------------------------------

class FieldDiffOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    field_path: str
    label: str
    field_type: str
    old_value: Any = None
    new_value: Any = None
    old_display: str | None = None
    new_display: str | None = None
    is_critical: bool
    change_type: ChangeType


class AuditLogSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    action: AuditAction
    severity: ChangeSeverity
    performed_at: datetime
    actor_id: str
    reason: str | None = None
    encounter_id: str | None = None
    version_before: int | None = None
    version_after: int | None = None
    changes_summary: dict[str, Any] | None = None
    is_outside_encounter: bool = False
    requires_review: bool = False
    reviewed_at: datetime | None = None
    reviewed_by: str | None = None


class AuditLogDetail(AuditLogSummary):
    ip_address: str | None = None
    user_agent: str | None = None
    previous_state: dict[str, Any] | None = None
    new_state: dict[str, Any] | None = None
    integrity_hash: str
    integrity_ok: bool
    diffs: list[FieldDiffOut] = []


class AuditLogPage(BaseModel):
    total: int
    page: int
    limit: int
    items: list[AuditLogSummary]


# ---------------------------------------------------------------------------
# Versions
# ---------------------------------------------------------------------------

class VersionSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    version_number: int
    created_at: datetime
    created_by: str | None = None
    reason: str | None = None
    encounter_id: str | None = None
    restored_from_version_id: UUID | None = None


class VersionDetail(VersionSummary):
    state: dict[str, Any]


class VersionComparison(BaseModel):
    version_a: VersionSummary
    version_b: VersionSummary
    diffs: list[FieldDiffOut]
    summary: dict[str, Any]


class RestoreRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=1000)
    outside_encounter: OutsideEncounterContext | None = None


class RestoreResponse(BaseModel):
    record_id: UUID
    version_number: int
    state: dict[str, Any]
    status: RecordStatus


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------

class HealthResponse(BaseModel):
    status: str = "healthy"
    environment: str
    database: str = "connected"
