"""
Live anamnesis record and its immutable version snapshots.

The live record is owned by the record CRUD layer; this engine reads it to
build snapshots, overwrites it on restore, and maintains the cached status
flags. ``updated_at`` is the last clinical modification and is set
explicitly by the engine, never by an ORM ``onupdate``, so that status
bookkeeping does not reset staleness.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import relationship

from anamnesis_audit.engine.types import RecordStatus
from anamnesis_audit.models.database import Base, JSONType


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; everything stored here is UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ---------------------------------------------------------------------------
# Clinical fields shared by the live record and its snapshots
# ---------------------------------------------------------------------------
class AnamnesisFieldsMixin:
    record_type = Column(String(32), nullable=False, default="ADULT")
    chief_complaint = Column(Text)
    has_current_pain = Column(Boolean, nullable=False, default=False)
    pain_intensity = Column(Integer, comment="0-10 scale")
    perceived_urgency = Column(String(32))
    has_chronic_conditions = Column(Boolean, nullable=False, default=False)
    has_allergies = Column(Boolean, nullable=False, default=False)
    has_current_medication = Column(Boolean, nullable=False, default=False)
    is_pregnant = Column(Boolean)
    tobacco_smoke_exposure = Column(Boolean)
    bruxism = Column(Boolean)
    daily_brushings = Column(Integer)
    uses_dental_floss = Column(Boolean)
    last_dental_visit = Column(Date)
    has_sucking_habits = Column(Boolean)
    breastfeeding_recorded = Column(Boolean)
    payload = Column(JSONType, comment="Free-form nested clinical data")


# ---------------------------------------------------------------------------
# Live record – one per patient
# ---------------------------------------------------------------------------
class PatientAnamnesis(AnamnesisFieldsMixin, Base):
    __tablename__ = "patient_anamnesis"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    patient_id = Column(Uuid, unique=True, nullable=False)
    version_number = Column(Integer, nullable=False, default=1)

    # Cached review/status flags – the pending review rows are the source of truth
    status = Column(Enum(RecordStatus, name="record_status_enum"), nullable=False, default=RecordStatus.VALID)
    has_pending_reviews = Column(Boolean, nullable=False, default=False)
    pending_review_since = Column(DateTime(timezone=True))
    pending_review_reason = Column(Text)
    last_verified_at = Column(DateTime(timezone=True))
    last_verified_by = Column(String(128))

    created_by = Column(String(128))
    updated_by = Column(String(128))
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    allergies = relationship("AnamnesisAllergy", back_populates="record", lazy="selectin", order_by="AnamnesisAllergy.created_at")
    medications = relationship("AnamnesisMedication", back_populates="record", lazy="selectin", order_by="AnamnesisMedication.created_at")
    conditions = relationship("AnamnesisCondition", back_populates="record", lazy="selectin", order_by="AnamnesisCondition.created_at")
    versions = relationship("AnamnesisVersion", back_populates="record", order_by="AnamnesisVersion.version_number")


# ---------------------------------------------------------------------------
# Relational sub-collections
# ---------------------------------------------------------------------------
class AnamnesisAllergy(Base):
    __tablename__ = "anamnesis_allergies"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    record_id = Column(Uuid, ForeignKey("patient_anamnesis.id"), nullable=False)
    label = Column(String(128), nullable=False)
    severity = Column(Enum("MILD", "MODERATE", "SEVERE", name="allergy_severity_enum"))
    reaction = Column(Text)
    notes = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    record = relationship("PatientAnamnesis", back_populates="allergies")

    STATE_FIELDS = ("label", "severity", "reaction", "notes", "is_active")


class AnamnesisMedication(Base):
    __tablename__ = "anamnesis_medications"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    record_id = Column(Uuid, ForeignKey("patient_anamnesis.id"), nullable=False)
    label = Column(String(128), nullable=False)
    dose = Column(String(64))
    frequency = Column(String(64))
    route = Column(String(64))
    notes = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    record = relationship("PatientAnamnesis", back_populates="medications")

    STATE_FIELDS = ("label", "dose", "frequency", "route", "notes", "is_active")


class AnamnesisCondition(Base):
    __tablename__ = "anamnesis_conditions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    record_id = Column(Uuid, ForeignKey("patient_anamnesis.id"), nullable=False)
    label = Column(String(128), nullable=False)
    notes = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    record = relationship("PatientAnamnesis", back_populates="conditions")

    STATE_FIELDS = ("label", "notes", "is_active")


# ---------------------------------------------------------------------------
# Version snapshot – immutable full copy of the record
# ---------------------------------------------------------------------------
class AnamnesisVersion(AnamnesisFieldsMixin, Base):
    __tablename__ = "anamnesis_versions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    record_id = Column(Uuid, ForeignKey("patient_anamnesis.id"), nullable=False)
    patient_id = Column(Uuid, nullable=False)
    version_number = Column(Integer, nullable=False)

    # Resolved sub-collections at snapshot time
    allergies = Column(JSONType, nullable=False, default=list)
    medications = Column(JSONType, nullable=False, default=list)
    conditions = Column(JSONType, nullable=False, default=list)

    restored_from_version_id = Column(Uuid, ForeignKey("anamnesis_versions.id"), nullable=True)
    reason = Column(Text)
    encounter_id = Column(String(64), comment="Clinical encounter the change was made in")
    ip_address = Column(String(64))
    user_agent = Column(String(512))
    created_by = Column(String(128))
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    record = relationship("PatientAnamnesis", back_populates="versions")

    __table_args__ = (
        UniqueConstraint("record_id", "version_number", name="uq_anamnesis_version_number"),
        Index("ix_anamnesis_versions_record", "record_id"),
    )
