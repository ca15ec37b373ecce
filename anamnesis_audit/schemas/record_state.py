"""
JSON schema for anamnesis record states handed to the engine.

Only structure is checked here; clinical validation belongs to the record
CRUD layer. Unknown top-level keys are allowed so older snapshots stay
diffable after fields are added.
"""

_NULLABLE_BOOLEAN = {"type": ["boolean", "null"]}
_NULLABLE_STRING = {"type": ["string", "null"]}

_COLLECTION_ITEM = {
    "type": "object",
    "properties": {
        "label": {"type": "string"},
        "notes": _NULLABLE_STRING,
        "is_active": {"type": "boolean"},
    },
}

RECORD_STATE_SCHEMA: dict = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "Anamnesis record state",
    "type": "object",
    "properties": {
        "record_id": _NULLABLE_STRING,
        "patient_id": _NULLABLE_STRING,
        "record_type": _NULLABLE_STRING,
        "chief_complaint": _NULLABLE_STRING,
        "has_current_pain": _NULLABLE_BOOLEAN,
        "pain_intensity": {
            "type": ["integer", "null"],
            "minimum": 0,
            "maximum": 10,
            "description": "Patient-reported pain on a 0-10 scale.",
        },
        "perceived_urgency": _NULLABLE_STRING,
        "has_chronic_conditions": _NULLABLE_BOOLEAN,
        "has_allergies": _NULLABLE_BOOLEAN,
        "has_current_medication": _NULLABLE_BOOLEAN,
        "is_pregnant": _NULLABLE_BOOLEAN,
        "tobacco_smoke_exposure": _NULLABLE_BOOLEAN,
        "bruxism": _NULLABLE_BOOLEAN,
        "daily_brushings": {"type": ["integer", "null"], "minimum": 0},
        "uses_dental_floss": _NULLABLE_BOOLEAN,
        "last_dental_visit": {
            "type": ["string", "null"],
            "pattern": "^\\d{4}-\\d{2}-\\d{2}",
            "description": "ISO 8601 date (YYYY-MM-DD).",
        },
        "has_sucking_habits": _NULLABLE_BOOLEAN,
        "breastfeeding_recorded": _NULLABLE_BOOLEAN,
        "payload": {
            "type": ["object", "null"],
            "description": "Free-form nested data of arbitrary depth.",
        },
        "allergies": {
            "type": ["array", "null"],
            "items": {
                **_COLLECTION_ITEM,
                "properties": {
                    **_COLLECTION_ITEM["properties"],
                    "severity": {"enum": ["MILD", "MODERATE", "SEVERE", None]},
                },
            },
        },
        "medications": {"type": ["array", "null"], "items": _COLLECTION_ITEM},
        "conditions": {"type": ["array", "null"], "items": _COLLECTION_ITEM},
    },
}
