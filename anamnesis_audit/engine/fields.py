"""
Static field configuration for the anamnesis record.

Field paths use dot notation; nested free-form data lives under ``payload``.
Labels are shown to clinicians, so they stay in the clinic's language.
"""

SCALAR_FIELDS: tuple[str, ...] = (
    "chief_complaint",
    "has_current_pain",
    "pain_intensity",
    "perceived_urgency",
    "has_chronic_conditions",
    "has_allergies",
    "has_current_medication",
    "is_pregnant",
    "tobacco_smoke_exposure",
    "bruxism",
    "daily_brushings",
    "uses_dental_floss",
    "last_dental_visit",
    "has_sucking_habits",
    "breastfeeding_recorded",
)

IDENTITY_FIELDS: tuple[str, ...] = ("record_id", "patient_id", "record_type")

PAYLOAD_FIELD = "payload"

# Relational sub-collections; compared by cardinality only
COLLECTION_FIELDS: tuple[str, ...] = ("allergies", "medications", "conditions")

FIELD_LABELS: dict[str, str] = {
    "chief_complaint": "Motivo de consulta",
    "has_current_pain": "Tiene dolor actual",
    "pain_intensity": "Intensidad del dolor",
    "perceived_urgency": "Urgencia percibida",
    "has_chronic_conditions": "Tiene enfermedades crónicas",
    "has_allergies": "Tiene alergias",
    "has_current_medication": "Tiene medicación actual",
    "is_pregnant": "Embarazada",
    "tobacco_smoke_exposure": "Expuesto a humo de tabaco",
    "bruxism": "Bruxismo",
    "daily_brushings": "Cepillados por día",
    "uses_dental_floss": "Usa hilo dental",
    "last_dental_visit": "Última visita dental",
    "has_sucking_habits": "Tiene hábitos de succión",
    "breastfeeding_recorded": "Lactancia registrada",
    "payload": "Datos adicionales",
    "payload.women_specific": "Información específica para mujeres",
    "payload.women_specific.is_pregnant": "Embarazada",
    "payload.women_specific.pregnancy_weeks": "Semanas de embarazo",
    "payload.women_specific.last_menstruation": "Última menstruación",
    "payload.women_specific.family_planning": "Planificación familiar",
    "payload.pediatric_specific": "Información pediátrica",
    "payload.pediatric_specific.has_sucking_habits": "Hábitos de succión",
    "payload.pediatric_specific.breastfeeding_recorded": "Lactancia registrada",
    "payload.custom_notes": "Notas adicionales",
    "conditions": "Antecedentes médicos",
    "medications": "Medicaciones",
    "allergies": "Alergias",
}

# Matched by substring against the full field path
CRITICAL_FIELDS: tuple[str, ...] = (
    "has_allergies",
    "allergies",
    "is_pregnant",
    "payload.women_specific.is_pregnant",
    "has_current_medication",
    "medications",
    "has_chronic_conditions",
    "chief_complaint",
    "pain_intensity",
    "perceived_urgency",
)

HIGH_PRIORITY_FIELDS: tuple[str, ...] = ("chief_complaint", "pain_intensity", "perceived_urgency")

HABIT_FIELDS: tuple[str, ...] = ("bruxism", "daily_brushings", "uses_dental_floss")

PREGNANCY_FIELD = "is_pregnant"

SEVERE_ALLERGY = "SEVERE"

# Long free-text paths masked by PARTIAL sanitization
FREE_TEXT_FIELDS: tuple[str, ...] = ("payload.custom_notes", "payload.additional_notes")


def get_field_label(field_path: str) -> str:
    return FIELD_LABELS.get(field_path, field_path)
