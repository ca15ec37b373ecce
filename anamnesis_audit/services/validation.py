"""
JSON Schema validation of caller-supplied record states.

Collects all errors rather than failing on the first one.
"""

from typing import Any

import jsonschema

from anamnesis_audit.errors import InputValidationError
from anamnesis_audit.schemas.record_state import RECORD_STATE_SCHEMA


def validate_against_schema(data: Any, schema: dict[str, Any]) -> list[str]:
    """
    Validate a value against a JSON schema.
    Returns a list of error messages (empty list = valid).
    """
    validator = jsonschema.Draft7Validator(schema)
    return [error.message for error in validator.iter_errors(data)]


def validate_record_state(state: dict[str, Any] | None, name: str = "state") -> None:
    """Raise ``InputValidationError`` listing every structural problem in ``state``."""
    if state is None:
        return
    errors = validate_against_schema(state, RECORD_STATE_SCHEMA)
    if errors:
        raise InputValidationError(f"Invalid {name}: {errors[0]}", [f"{name}: {e}" for e in errors])
