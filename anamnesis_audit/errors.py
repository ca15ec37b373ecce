"""Error taxonomy raised by the audit engine. All propagate to the caller."""


class AuditEngineError(Exception):
    """Base class for engine failures."""


class NotFoundError(AuditEngineError):
    """A referenced record, version, audit entry or review does not exist."""


class MismatchError(AuditEngineError):
    """A version does not belong to the record it is used with."""


class AlreadyResolvedError(AuditEngineError):
    """A pending review was already approved or rejected."""


class InputValidationError(AuditEngineError):
    """Malformed caller input. ``errors`` holds every problem found."""

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message)
        self.errors = errors or [message]


class AuditIntegrityError(AuditEngineError):
    """A stored audit entry no longer matches its integrity hash."""
