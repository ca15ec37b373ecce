"""Tests for the audit log writer, sanitization, request context and integrity checks."""

import uuid

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from anamnesis_audit.engine.types import (
    ActorRole,
    AuditAction,
    ChangeSeverity,
    InformationSource,
    SanitizeLevel,
)
from anamnesis_audit.errors import AuditIntegrityError, InputValidationError, NotFoundError
from anamnesis_audit.models.audit import AuditFieldDiff, AuditLogEntry
from anamnesis_audit.schemas.api import OutsideEncounterContext
from anamnesis_audit.services.audit import (
    append_audit_log,
    assert_integrity,
    attempt_audit_log,
    get_audit_entry,
    list_audit_log,
    record_audit_entry,
    verify_integrity,
)
from anamnesis_audit.services.context import RequestContext
from anamnesis_audit.services.sanitize import mask_text, sanitize_state
from anamnesis_audit.services.versions import build_record_state


def _audit(db, record, **kwargs):
    params = dict(
        action=AuditAction.UPDATE,
        record_id=record.id,
        patient_id=record.patient_id,
        actor_id="dr-gomez",
        actor_role=ActorRole.ODONT,
    )
    params.update(kwargs)
    return record_audit_entry(db, **params)


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

def test_update_entry_stores_diffs_and_summary(db, record):
    previous = build_record_state(record)
    new = {**previous, "has_allergies": True, "bruxism": True}
    write = _audit(db, record, previous_state=previous, new_state=new, version_before=1, version_after=2)
    entry = db.get(AuditLogEntry, write.audit_log_id)

    assert entry.severity is ChangeSeverity.HIGH
    assert entry.changes_summary["total_changes"] == 2
    assert [d.field_path for d in entry.diffs] == ["has_allergies", "bruxism"]
    assert [d["field_path"] for d in entry.field_diffs] == ["has_allergies", "bruxism"]
    assert (entry.version_before, entry.version_after) == (1, 2)
    assert entry.is_outside_encounter is False


def test_read_only_actions_have_no_diffs(db, record):
    state = build_record_state(record)
    for action in (AuditAction.VIEW, AuditAction.EXPORT, AuditAction.PRINT):
        write = _audit(db, record, action=action, previous_state=state, new_state=state)
        assert write.diffs == []
        assert write.entry.field_diffs is None
        assert write.entry.changes_summary["total_changes"] == 0


def test_append_audit_log_returns_id(db, record):
    audit_log_id = append_audit_log(
        db,
        action=AuditAction.PRINT,
        record_id=record.id,
        patient_id=record.patient_id,
        actor_id="recep-lucia",
        actor_role="RECEP",
    )
    assert db.get(AuditLogEntry, audit_log_id).actor_role is ActorRole.RECEP


def test_request_context_is_recorded(db, record):
    context = RequestContext.from_headers(
        {"X-Forwarded-For": "10.0.0.7, 172.16.0.1", "User-Agent": "Mozilla/5.0", "X-Session-Id": "sess-9"},
        path="/api/v1/anamnesis",
    )
    entry = _audit(db, record, action=AuditAction.VIEW, request_context=context).entry

    assert entry.ip_address == "10.0.0.7"
    assert entry.user_agent == "Mozilla/5.0"
    assert entry.session_id == "sess-9"
    assert entry.request_path == "/api/v1/anamnesis"


def test_invalid_state_is_rejected_before_any_write(db, record):
    before = db.scalar(select(func.count()).select_from(AuditLogEntry))
    with pytest.raises(InputValidationError) as exc_info:
        _audit(db, record, previous_state={"pain_intensity": 42}, new_state={"daily_brushings": -1})

    assert len(exc_info.value.errors) == 1
    assert db.scalar(select(func.count()).select_from(AuditLogEntry)) == before


def test_outside_encounter_flags(db, record):
    previous = build_record_state(record)
    context = OutsideEncounterContext(reason="Llamada", information_source=InformationSource.PHONE)
    entry = _audit(
        db, record, previous_state=previous, new_state={**previous, "bruxism": True}, outside_encounter=context
    ).entry

    assert entry.is_outside_encounter is True
    assert entry.information_source is InformationSource.PHONE
    assert entry.verified_with_patient is False
    # bruxism alone does not need a reviewer
    assert entry.requires_review is False


# ---------------------------------------------------------------------------
# Sanitization
# ---------------------------------------------------------------------------

def test_mask_text():
    assert mask_text("Paciente ansioso", visible_chars=4) == "***ioso"
    assert mask_text("abc", visible_chars=4) == "***"


def test_partial_sanitization_masks_free_text_without_mutating_input():
    state = {"record_id": "r", "payload": {"custom_notes": "Paciente ansioso"}, "chief_complaint": "Dolor"}
    sanitized = sanitize_state(state, SanitizeLevel.PARTIAL)

    assert sanitized["payload"]["custom_notes"] == "***ioso"
    assert sanitized["chief_complaint"] == "Dolor"
    assert state["payload"]["custom_notes"] == "Paciente ansioso"


def test_full_sanitization_keeps_identity_only():
    state = {"record_id": "r", "patient_id": "p", "record_type": "ADULT", "chief_complaint": "Dolor"}
    assert sanitize_state(state, "FULL") == {"record_id": "r", "patient_id": "p", "record_type": "ADULT"}


def test_no_sanitization_copies_state():
    state = {"payload": {"custom_notes": "texto"}}
    sanitized = sanitize_state(state, SanitizeLevel.NONE)
    assert sanitized == state
    assert sanitized is not state


def test_stored_states_are_sanitized_but_diffs_are_not(db, record):
    previous = build_record_state(record)
    new = {**previous, "payload": {"custom_notes": "Refiere sangrado al cepillarse"}}
    entry = _audit(db, record, previous_state=previous, new_state=new, sanitize_level="PARTIAL").entry

    assert entry.new_state["payload"]["custom_notes"] == "***arse"
    assert entry.field_diffs[0]["new_value"] == "Refiere sangrado al cepillarse"


# ---------------------------------------------------------------------------
# Request context
# ---------------------------------------------------------------------------

def test_context_falls_back_to_real_ip():
    context = RequestContext.from_headers({"x-real-ip": "192.168.1.4"})
    assert context.ip_address == "192.168.1.4"


def test_context_truncates_user_agent():
    context = RequestContext.from_headers({"user-agent": "x" * 900})
    assert len(context.user_agent) == 512


def test_context_never_raises_on_bad_headers():
    assert RequestContext.from_headers(None, path="/p") == RequestContext(path="/p")
    assert RequestContext.from_headers({"x-forwarded-for": 12}) == RequestContext()


# ---------------------------------------------------------------------------
# Integrity
# ---------------------------------------------------------------------------

def test_integrity_hash_verifies_after_reload(db, record):
    audit_log_id = _audit(db, record, action=AuditAction.VIEW).audit_log_id
    db.commit()
    db.expire_all()

    entry = db.get(AuditLogEntry, audit_log_id)
    assert len(entry.integrity_hash) == 64
    assert verify_integrity(entry)
    assert_integrity(entry)


def test_tampering_is_detected(db, record):
    entry = _audit(db, record, action=AuditAction.VIEW).entry
    entry.actor_id = "someone-else"

    assert not verify_integrity(entry)
    with pytest.raises(AuditIntegrityError):
        assert_integrity(entry)


# ---------------------------------------------------------------------------
# Best-effort writes
# ---------------------------------------------------------------------------

def test_attempt_audit_log_success(db, record):
    attempt = attempt_audit_log(
        db,
        action=AuditAction.VIEW,
        record_id=record.id,
        patient_id=record.patient_id,
        actor_id="dr-gomez",
        actor_role=ActorRole.ODONT,
    )
    assert attempt.ok
    assert db.get(AuditLogEntry, attempt.raise_for_error()) is not None


def test_attempt_audit_log_failure_keeps_outer_transaction(db, record):
    """The insert fails inside the SAVEPOINT; only the audit rows are rolled back."""
    count_before = db.scalar(select(func.count()).select_from(AuditLogEntry))
    record.bruxism = True
    db.flush()
    attempt = attempt_audit_log(
        db,
        action=AuditAction.UPDATE,
        record_id=record.id,
        patient_id=record.patient_id,
        actor_id=None,
        actor_role=ActorRole.ODONT,
        previous_state=build_record_state(record),
        new_state={**build_record_state(record), "daily_brushings": 2},
    )

    assert not attempt.ok
    assert isinstance(attempt.error, IntegrityError)
    with pytest.raises(IntegrityError):
        attempt.raise_for_error()
    attempt.discard()

    db.commit()
    db.expire_all()
    assert db.scalar(select(func.count()).select_from(AuditLogEntry)) == count_before
    orphans = select(func.count()).select_from(AuditFieldDiff).where(AuditFieldDiff.field_path == "daily_brushings")
    assert db.scalar(orphans) == 0
    assert db.get(type(record), record.id).bruxism is True


def test_attempt_audit_log_reports_bad_role(db, record):
    attempt = attempt_audit_log(
        db,
        action=AuditAction.VIEW,
        record_id=record.id,
        patient_id=record.patient_id,
        actor_id="dr-gomez",
        actor_role="NURSE",
    )
    assert isinstance(attempt.error, ValueError)
    assert attempt.audit_log_id is None


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def test_list_audit_log_filters_and_paginates(db, record):
    for _ in range(3):
        _audit(db, record, action=AuditAction.VIEW)

    total, entries = list_audit_log(db, record.id)
    assert total == 4
    assert entries[-1].action is AuditAction.CREATE

    total, entries = list_audit_log(db, record.id, action=AuditAction.VIEW, page=2, limit=2)
    assert total == 3
    assert len(entries) == 1

    total, _ = list_audit_log(db, record.id, severity=ChangeSeverity.CRITICAL)
    assert total == 0


def test_list_audit_log_rejects_bad_paging(db, record):
    with pytest.raises(InputValidationError):
        list_audit_log(db, record.id, page=0)
    with pytest.raises(InputValidationError):
        list_audit_log(db, record.id, limit=101)


def test_get_audit_entry_checks_record(db, record, make_record):
    other = make_record()
    audit_log_id = _audit(db, record, action=AuditAction.VIEW).audit_log_id

    assert get_audit_entry(db, record.id, audit_log_id).id == audit_log_id
    with pytest.raises(NotFoundError):
        get_audit_entry(db, other.id, audit_log_id)
    with pytest.raises(NotFoundError):
        get_audit_entry(db, record.id, uuid.uuid4())


def test_diff_rows_follow_entry_order(db, record):
    previous = build_record_state(record)
    new = {**previous, "bruxism": True, "daily_brushings": 3, "uses_dental_floss": True}
    write = _audit(db, record, previous_state=previous, new_state=new)
    rows = db.scalars(
        select(AuditFieldDiff).where(AuditFieldDiff.audit_log_id == write.audit_log_id).order_by(AuditFieldDiff.position)
    ).all()
    assert [row.field_path for row in rows] == ["bruxism", "daily_brushings", "uses_dental_floss"]
