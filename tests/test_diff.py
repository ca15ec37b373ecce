"""Tests for the field-level state differ – pure functions, no database required."""

from anamnesis_audit.engine.classifier import classify_severity
from anamnesis_audit.engine.diff import compute_diff, format_display, summarize_diffs
from anamnesis_audit.engine.types import AuditAction, ChangeSeverity, ChangeType


def _state(**overrides):
    state = {
        "record_id": "rec-1",
        "patient_id": "pat-1",
        "chief_complaint": "Control anual",
        "has_allergies": False,
        "is_pregnant": False,
        "payload": {"women_specific": {"is_pregnant": False}, "custom_notes": "Sin novedades"},
        "allergies": [],
    }
    state.update(overrides)
    return state


def test_identical_states_produce_no_diffs():
    assert compute_diff(_state(), _state()) == []


def test_both_absent_produce_no_diffs():
    assert compute_diff(None, None) == []


def test_key_order_does_not_matter():
    """Nested maps are compared canonically, so reordering keys is not a change."""
    previous = _state(payload={"a": {"x": 1, "y": 2}, "b": 1})
    new = _state(payload={"b": 1, "a": {"y": 2, "x": 1}})
    assert compute_diff(previous, new) == []


def test_create_lists_every_field_as_added():
    new = _state()
    diffs = compute_diff(None, new)
    assert [d.field_path for d in diffs] == list(new)
    assert all(d.change_type is ChangeType.ADDED for d in diffs)
    assert all(d.old_value is None for d in diffs)


def test_delete_lists_every_field_as_removed():
    previous = _state()
    diffs = compute_diff(previous, None)
    assert len(diffs) == len(previous)
    assert all(d.change_type is ChangeType.REMOVED and d.new_value is None for d in diffs)


def test_scalar_change_is_modified_with_label_and_display():
    diffs = compute_diff(_state(), _state(has_allergies=True))

    assert len(diffs) == 1
    diff = diffs[0]
    assert diff.field_path == "has_allergies"
    assert diff.label == "Tiene alergias"
    assert diff.change_type is ChangeType.MODIFIED
    assert diff.field_type == "boolean"
    assert (diff.old_display, diff.new_display) == ("No", "Sí")
    assert diff.is_critical


def test_top_level_null_to_value_is_modified():
    """Top-level scalars are always MODIFIED, even from null."""
    diffs = compute_diff(_state(pain_intensity=None), _state(pain_intensity=6))
    assert diffs[0].change_type is ChangeType.MODIFIED
    assert diffs[0].field_type == "number"


def test_nested_payload_leaf_uses_dotted_path():
    previous = _state()
    new = _state(payload={"women_specific": {"is_pregnant": True}, "custom_notes": "Sin novedades"})
    diffs = compute_diff(previous, new)

    assert [d.field_path for d in diffs] == ["payload.women_specific.is_pregnant"]
    assert diffs[0].label == "Embarazada"
    assert diffs[0].is_critical


def test_nested_key_added_and_removed():
    previous = _state(payload={"custom_notes": "Nota", "old_flag": True})
    new = _state(payload={"custom_notes": "Nota", "new_flag": 3})
    diffs = {d.field_path: d for d in compute_diff(previous, new)}

    assert diffs["payload.old_flag"].change_type is ChangeType.REMOVED
    assert diffs["payload.new_flag"].change_type is ChangeType.ADDED
    assert diffs["payload.new_flag"].old_value is None


def test_nested_explicit_null_is_modified_not_added():
    """A key present with null is different from an absent key."""
    previous = _state(payload={"custom_notes": None})
    new = _state(payload={"custom_notes": "Nueva nota"})
    diffs = compute_diff(previous, new)
    assert diffs[0].change_type is ChangeType.MODIFIED


def test_payload_from_null_recurses():
    diffs = compute_diff(_state(payload=None), _state(payload={"custom_notes": "Hola"}))
    assert [(d.field_path, d.change_type) for d in diffs] == [("payload.custom_notes", ChangeType.ADDED)]


def test_nested_object_from_null_recurses_to_leaves():
    previous = _state(payload={"women_specific": None})
    new = _state(payload={"women_specific": {"is_pregnant": True}})
    diffs = compute_diff(previous, new)

    assert [(d.field_path, d.change_type) for d in diffs] == [
        ("payload.women_specific.is_pregnant", ChangeType.ADDED)
    ]
    assert diffs[0].is_critical
    assert classify_severity(diffs, AuditAction.UPDATE) is ChangeSeverity.CRITICAL

    backward = compute_diff(new, previous)
    assert [(d.field_path, d.change_type) for d in backward] == [
        ("payload.women_specific.is_pregnant", ChangeType.REMOVED)
    ]


def test_empty_object_to_null_is_kept_as_parent_diff():
    diffs = compute_diff(_state(payload={"women_specific": {}}), _state(payload={"women_specific": None}))
    assert [(d.field_path, d.change_type) for d in diffs] == [("payload.women_specific", ChangeType.MODIFIED)]

    diffs = compute_diff(_state(payload={}), _state(payload=None))
    assert [(d.field_path, d.change_type) for d in diffs] == [("payload", ChangeType.MODIFIED)]


def test_nested_lists_are_opaque_leaves():
    previous = _state(payload={"tags": ["a", "b"]})
    new = _state(payload={"tags": ["a", "c"]})
    diffs = compute_diff(previous, new)

    assert len(diffs) == 1
    assert diffs[0].field_path == "payload.tags"
    assert diffs[0].field_type == "array"
    assert diffs[0].new_display == "2 elementos"


def test_collection_growth_is_added_with_counts():
    previous = _state(allergies=[])
    new = _state(allergies=[{"label": "Penicilina", "severity": "SEVERE"}])
    diffs = compute_diff(previous, new)

    assert len(diffs) == 1
    diff = diffs[0]
    assert diff.field_path == "allergies"
    assert diff.change_type is ChangeType.ADDED
    assert diff.field_type == "array"
    assert (diff.old_display, diff.new_display) == ("0 elementos", "1 elemento")


def test_collection_shrink_is_removed():
    previous = _state(allergies=[{"label": "Látex"}, {"label": "Polen"}])
    new = _state(allergies=[{"label": "Látex"}])
    diffs = compute_diff(previous, new)
    assert diffs[0].change_type is ChangeType.REMOVED


def test_collection_same_size_swap_is_invisible():
    """Collections are compared by cardinality only."""
    previous = _state(allergies=[{"label": "Látex"}])
    new = _state(allergies=[{"label": "Penicilina"}])
    assert compute_diff(previous, new) == []


def test_collection_null_and_empty_are_equal_counts():
    assert compute_diff(_state(allergies=None), _state(allergies=[])) == []


def test_format_display():
    assert format_display(None) is None
    assert format_display(True) == "Sí"
    assert format_display(False) == "No"
    assert format_display(7) == "7"
    assert format_display([1]) == "1 elemento"
    assert format_display({"b": 1, "a": 2}) == '{"a": 2, "b": 1}'


def test_summarize_diffs_counts():
    previous = _state(payload={"x": 1})
    new = _state(has_allergies=True, payload={"y": 1}, allergies=[{"label": "Látex"}])
    summary = summarize_diffs(compute_diff(previous, new))

    assert summary["total_changes"] == 4
    assert summary["added"] == 2
    assert summary["removed"] == 1
    assert summary["modified"] == 1
    assert summary["critical_changes"] == 2
    assert set(summary["fields_changed"]) == {"has_allergies", "payload.x", "payload.y", "allergies"}


def test_reversing_direction_swaps_values_and_change_types():
    previous = _state(payload={"gone": 1, "kept": {"x": 1}}, allergies=[])
    new = _state(has_allergies=True, payload={"kept": {"x": 2}, "new": True}, allergies=[{"label": "Látex"}])
    swapped = {
        ChangeType.ADDED: ChangeType.REMOVED,
        ChangeType.REMOVED: ChangeType.ADDED,
        ChangeType.MODIFIED: ChangeType.MODIFIED,
    }

    forward = {d.field_path: d for d in compute_diff(previous, new)}
    backward = {d.field_path: d for d in compute_diff(new, previous)}

    assert forward.keys() == backward.keys()
    for path, diff in forward.items():
        assert backward[path].old_value == diff.new_value
        assert backward[path].new_value == diff.old_value
        assert backward[path].change_type is swapped[diff.change_type]
