"""
Audit trail and review tables.

Audit entries are append-only: after insert only ``reviewed_at`` and
``reviewed_by`` are ever written. Pending reviews are single-use:
``is_approved`` moves from NULL to true/false exactly once. The allergy and
medication change logs are append-only as well.
"""

import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import relationship

from anamnesis_audit.engine.types import (
    ActorRole,
    AuditAction,
    ChangeSeverity,
    ChangeType,
    InformationSource,
    ItemAuditAction,
)
from anamnesis_audit.models.anamnesis import utcnow
from anamnesis_audit.models.database import Base, JSONType


# ---------------------------------------------------------------------------
# Audit log entry – one per action on a record
# ---------------------------------------------------------------------------
class AuditLogEntry(Base):
    __tablename__ = "anamnesis_audit_log"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    # No FK: DELETE entries outlive the record they describe
    record_id = Column(Uuid, nullable=False)
    patient_id = Column(Uuid, nullable=False)
    action = Column(Enum(AuditAction, name="audit_action_enum"), nullable=False)
    actor_id = Column(String(128), nullable=False, comment="User or service identity")
    actor_role = Column(Enum(ActorRole, name="actor_role_enum"), nullable=False)

    # Request context (best effort)
    ip_address = Column(String(64))
    user_agent = Column(String(512))
    session_id = Column(String(128))
    request_path = Column(String(512))
    encounter_id = Column(String(64))

    previous_state = Column(JSONType, comment="Sanitized state before the action")
    new_state = Column(JSONType, comment="Sanitized state after the action")
    field_diffs = Column(JSONType)
    changes_summary = Column(JSONType)
    severity = Column(Enum(ChangeSeverity, name="change_severity_enum"), nullable=False)
    reason = Column(Text)
    version_before = Column(Integer)
    version_after = Column(Integer)
    integrity_hash = Column(String(64), nullable=False)
    performed_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    # Outside-encounter edits
    is_outside_encounter = Column(Boolean, nullable=False, default=False)
    information_source = Column(Enum(InformationSource, name="information_source_enum"))
    verified_with_patient = Column(Boolean)
    requires_review = Column(Boolean, nullable=False, default=False)
    reviewed_at = Column(DateTime(timezone=True))
    reviewed_by = Column(String(128))

    diffs = relationship(
        "AuditFieldDiff",
        back_populates="audit_log",
        order_by="AuditFieldDiff.position",
        lazy="selectin",
    )

    __table_args__ = (
        Index("ix_audit_log_record_performed", "record_id", "performed_at"),
        Index("ix_audit_log_patient", "patient_id"),
    )


# ---------------------------------------------------------------------------
# Normalized field diff – one row per changed field, for querying
# ---------------------------------------------------------------------------
class AuditFieldDiff(Base):
    __tablename__ = "anamnesis_field_diffs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    audit_log_id = Column(Uuid, ForeignKey("anamnesis_audit_log.id"), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    field_path = Column(String(256), nullable=False)
    label = Column(String(256), nullable=False)
    field_type = Column(String(32), nullable=False)
    old_value = Column(JSONType)
    new_value = Column(JSONType)
    old_display = Column(Text)
    new_display = Column(Text)
    is_critical = Column(Boolean, nullable=False, default=False)
    change_type = Column(Enum(ChangeType, name="change_type_enum"), nullable=False)

    audit_log = relationship("AuditLogEntry", back_populates="diffs")

    __table_args__ = (Index("ix_field_diffs_path", "field_path"),)


# ---------------------------------------------------------------------------
# Pending review – a flagged outside-encounter change awaiting sign-off
# ---------------------------------------------------------------------------
class PendingReview(Base):
    __tablename__ = "anamnesis_pending_reviews"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    record_id = Column(Uuid, ForeignKey("patient_anamnesis.id"), nullable=False)
    patient_id = Column(Uuid, nullable=False)
    audit_log_id = Column(Uuid, ForeignKey("anamnesis_audit_log.id"), nullable=False)
    field_path = Column(String(256), nullable=False)
    label = Column(String(256), nullable=False)
    old_value = Column(JSONType)
    new_value = Column(JSONType)
    reason = Column(Text, nullable=False)
    severity = Column(Enum(ChangeSeverity, name="change_severity_enum"), nullable=False)
    created_by = Column(String(128), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    reviewed_at = Column(DateTime(timezone=True))
    reviewed_by = Column(String(128))
    review_notes = Column(Text)
    is_approved = Column(Boolean, nullable=True)

    audit_log = relationship("AuditLogEntry", lazy="selectin")

    __table_args__ = (
        Index("ix_pending_reviews_record", "record_id", "is_approved"),
        Index("ix_pending_reviews_patient", "patient_id", "is_approved"),
    )


# ---------------------------------------------------------------------------
# Per-item change log for allergies and medications
# ---------------------------------------------------------------------------
class ItemAuditMixin:
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    # No FK: REMOVED entries outlive the item row
    record_id = Column(Uuid, nullable=False)
    action = Column(Enum(ItemAuditAction, name="item_audit_action_enum"), nullable=False)
    previous_value = Column(JSONType)
    new_value = Column(JSONType)
    performed_by = Column(String(128), nullable=False)
    notes = Column(Text)
    performed_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class AllergyAuditEntry(ItemAuditMixin, Base):
    __tablename__ = "anamnesis_allergy_audit"

    item_id = Column(Uuid, nullable=False, comment="anamnesis_allergies.id")

    __table_args__ = (
        Index("ix_allergy_audit_item", "item_id", "performed_at"),
        Index("ix_allergy_audit_record", "record_id", "performed_at"),
    )


class MedicationAuditEntry(ItemAuditMixin, Base):
    __tablename__ = "anamnesis_medication_audit"

    item_id = Column(Uuid, nullable=False, comment="anamnesis_medications.id")

    __table_args__ = (
        Index("ix_medication_audit_item", "item_id", "performed_at"),
        Index("ix_medication_audit_record", "record_id", "performed_at"),
    )
