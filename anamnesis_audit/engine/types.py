"""Closed value sets shared by the differ, classifier, audit writer and status machine."""

from __future__ import annotations

from enum import Enum


class AuditAction(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    VIEW = "VIEW"
    RESTORE = "RESTORE"
    EXPORT = "EXPORT"
    PRINT = "PRINT"


READ_ONLY_ACTIONS = frozenset({AuditAction.VIEW, AuditAction.EXPORT, AuditAction.PRINT})


class ChangeType(str, Enum):
    ADDED = "ADDED"
    REMOVED = "REMOVED"
    MODIFIED = "MODIFIED"


class ChangeSeverity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class RecordStatus(str, Enum):
    NO_RECORD = "NO_RECORD"
    VALID = "VALID"
    PENDING_REVIEW = "PENDING_REVIEW"
    EXPIRED = "EXPIRED"


class ActorRole(str, Enum):
    ADMIN = "ADMIN"
    ODONT = "ODONT"
    RECEP = "RECEP"


class InformationSource(str, Enum):
    IN_PERSON = "IN_PERSON"
    PHONE = "PHONE"
    EMAIL = "EMAIL"
    DOCUMENT = "DOCUMENT"
    PATIENT_PORTAL = "PATIENT_PORTAL"
    OTHER = "OTHER"


class SanitizeLevel(str, Enum):
    NONE = "NONE"
    PARTIAL = "PARTIAL"
    FULL = "FULL"


class ItemAuditAction(str, Enum):
    """Lifecycle of one allergy or medication entry within a record."""

    ADDED = "ADDED"
    UPDATED = "UPDATED"
    DEACTIVATED = "DEACTIVATED"
    REACTIVATED = "REACTIVATED"
    REMOVED = "REMOVED"
