from forkliftops.domain.job import ChecklistState
from forkliftops.services import checklist_gate


def test_catalog_has_48_unique_items_in_12_categories():
    assert len(checklist_gate.CATALOG) == 12
    assert len(checklist_gate.ALL_ITEMS) == 48
    assert len(set(checklist_gate.ALL_ITEMS)) == 48
    assert set(checklist_gate.MINOR_SERVICE_MANDATORY) <= set(checklist_gate.ALL_ITEMS)


def test_empty_checklist_reports_every_mandatory_item_missing():
    mandatory = [f"item_{i}" for i in range(50)]
    gate = checklist_gate.evaluate({}, mandatory)
    assert gate.complete is False
    assert gate.checked_count == 0
    assert gate.total_mandatory == 50
    assert len(gate.missing_keys) == 50
    assert gate.missing_keys == tuple(mandatory)


def test_not_ok_counts_as_checked():
    mandatory = ["a", "b", "c"]
    gate = checklist_gate.evaluate({"a": ChecklistState.OK, "b": ChecklistState.NOT_OK}, mandatory)
    assert gate.checked_count == 2
    assert gate.missing_keys == ("c",)


def test_fully_set_checklist_is_complete():
    mandatory = checklist_gate.mandatory_for_template("full_service")
    checklist = {k: ChecklistState.OK for k in mandatory}
    gate = checklist_gate.evaluate(checklist, mandatory)
    assert gate.complete is True
    assert gate.missing_keys == ()
    assert gate.checked_count == 48


def test_check_all_marks_every_item_ok_and_items_stay_editable():
    checklist = checklist_gate.check_all({})
    assert all(v == ChecklistState.OK for v in checklist.values())
    assert len(checklist) == 48

    updated, problems = checklist_gate.merge_updates(checklist, {"tyres_front": "not_ok"})
    assert problems == []
    assert updated["tyres_front"] == ChecklistState.NOT_OK
    assert checklist["tyres_front"] == ChecklistState.OK


def test_merge_updates_reports_unknown_and_invalid_items():
    updated, problems = checklist_gate.merge_updates(
        {"load_fork": ChecklistState.OK},
        {"no_such_item": "ok", "lighting_horn": "broken", "load_fork": None, "tyres_rim": True},
    )
    assert len(problems) == 2
    assert "load_fork" not in updated
    assert updated["tyres_rim"] == ChecklistState.OK
    assert "lighting_horn" not in updated


def test_unknown_template_is_rejected():
    try:
        checklist_gate.mandatory_for_template("nope")
    except ValueError as exc:
        assert "nope" in str(exc)
    else:
        raise AssertionError("expected ValueError")
