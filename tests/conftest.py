"""Shared fixtures – an in-memory SQLite database per test, no PostgreSQL required."""

import uuid

import pytest
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from anamnesis_audit.engine.types import ActorRole, AuditAction
from anamnesis_audit.models.anamnesis import (
    AnamnesisAllergy,
    AnamnesisCondition,
    AnamnesisMedication,
    PatientAnamnesis,
)
from anamnesis_audit.models.audit import AuditLogEntry  # noqa: F401
from anamnesis_audit.models.database import Base, build_engine
from anamnesis_audit.services.changes import record_change
from anamnesis_audit.services.versions import build_record_state

DOCTOR = "dr-gomez"
RECEPTIONIST = "recep-lucia"


@pytest.fixture
def engine():
    engine = build_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    yield session
    session.rollback()
    session.close()


def _make_record(db, *, allergies=(), medications=(), conditions=(), **fields):
    record = PatientAnamnesis(
        id=uuid.uuid4(),
        patient_id=fields.pop("patient_id", uuid.uuid4()),
        created_by=DOCTOR,
        updated_by=DOCTOR,
        chief_complaint=fields.pop("chief_complaint", "Dolor en muela inferior"),
        has_current_pain=fields.pop("has_current_pain", True),
        pain_intensity=fields.pop("pain_intensity", 4),
        payload=fields.pop("payload", {"custom_notes": "Paciente ansioso con las agujas"}),
        **fields,
    )
    record.allergies = [AnamnesisAllergy(**item) for item in allergies]
    record.medications = [AnamnesisMedication(**item) for item in medications]
    record.conditions = [AnamnesisCondition(**item) for item in conditions]
    db.add(record)
    db.flush()
    record_change(
        db,
        record.id,
        action=AuditAction.CREATE,
        actor_id=DOCTOR,
        actor_role=ActorRole.ODONT,
        encounter_id="enc-001",
    )
    return record


@pytest.fixture
def make_record(db):
    """Create a live record through the CREATE path: version 1, snapshot and audit entry."""

    def factory(**fields):
        return _make_record(db, **fields)

    return factory


@pytest.fixture
def record(make_record):
    return make_record(is_pregnant=False, bruxism=False)


@pytest.fixture
def update_record(db):
    """Apply field changes the way the CRUD layer would, then track them."""

    def apply(record, actor_id=DOCTOR, actor_role=ActorRole.ODONT, outside_encounter=None, **changes):
        previous = build_record_state(record)
        for field, value in changes.items():
            setattr(record, field, value)
        db.flush()
        return record_change(
            db,
            record.id,
            action=AuditAction.UPDATE,
            actor_id=actor_id,
            actor_role=actor_role,
            previous_state=previous,
            outside_encounter=outside_encounter,
        )

    return apply
