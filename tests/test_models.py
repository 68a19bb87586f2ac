from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from companion.models import (
    ProjectCreationInput,
    ProjectMetaPatch,
    StructuredState,
    TaskItem,
    normalize_next_actions,
    utc,
)

from conftest import make_state, state_payload


def test_strings_become_medium_tasks_without_dependencies():
    tasks = normalize_next_actions(["Write docs", "Ship it"])
    assert tasks == [
        TaskItem(task="Write docs", effort="medium", dependencies=[]),
        TaskItem(task="Ship it", effort="medium", dependencies=[]),
    ]


def test_normalization_is_idempotent_on_mixed_shapes():
    raw = [
        "Plain string",
        {"task": "Estimate", "effort": "high", "dependencies": ["Plain string"]},
        {"task": "Odd effort", "effort": "huge"},
    ]
    once = normalize_next_actions(raw)
    assert normalize_next_actions(once) == once
    assert once[1].effort == "high"
    assert once[1].dependencies == ["Plain string"]
    assert once[2].effort == "medium"


def test_none_next_actions_normalize_to_empty():
    assert normalize_next_actions(None) == []


def test_state_accepts_camel_case_and_serializes_back():
    state = make_state(completed=["a"], inProgress=["b"], nextActions=["c"])
    assert state.completed == ["a"]
    assert state.in_progress == ["b"]
    dumped = state.to_json_dict()
    assert dumped["inProgress"] == ["b"]
    assert dumped["nextActions"] == ["c"]
    assert "in_progress" not in dumped


def test_state_tasks_property_normalizes_mixed_next_actions():
    state = make_state(nextActions=["one", {"task": "two", "effort": "low"}])
    assert [t.task for t in state.tasks] == ["one", "two"]
    assert [t.effort for t in state.tasks] == ["medium", "low"]


def test_null_lists_are_empty_lists():
    state = StructuredState.model_validate(state_payload(blockers=None, completed=None))
    assert state.blockers == []
    assert state.completed == []


def test_strict_validation_rejects_wrong_shapes():
    with pytest.raises(ValidationError):
        StructuredState.model_validate(state_payload(blockers="just one blocker"))


def test_from_stored_salvages_malformed_state():
    state = StructuredState.from_stored({
        "statusSummary": None,
        "blockers": "single",
        "completed": ["x", 3],
        "nextActions": ["a", {"task": "b", "effort": "high"}],
    })
    assert state.status_summary == ""
    assert state.blockers == ["single"]
    assert state.completed == ["x", "3"]
    assert [t.task for t in state.tasks] == ["a", "b"]


def test_from_stored_passes_none_through():
    assert StructuredState.from_stored(None) is None
    assert StructuredState.from_stored("garbage") is None


def test_utc_marks_naive_values():
    naive = datetime(2026, 1, 1, 10, 0)
    assert utc(naive).tzinfo is timezone.utc


def test_creation_input_requires_name_and_goal():
    with pytest.raises(ValidationError):
        ProjectCreationInput(name="", goal="x")
    data = ProjectCreationInput.model_validate({"name": "N", "goal": "G", "documentContent": "doc"})
    assert data.document_content == "doc"
    assert data.status == "active"


def test_meta_patch_reports_only_given_fields():
    patch = ProjectMetaPatch.model_validate({"name": "Renamed", "initialContext": None})
    assert patch.changes() == {"name": "Renamed", "initial_context": None}


@pytest.mark.parametrize("field", ["name", "goal", "status"])
def test_meta_patch_rejects_explicit_null(field):
    with pytest.raises(ValidationError):
        ProjectMetaPatch.model_validate({field: None})


def test_meta_patch_allows_clearing_initial_context():
    assert ProjectMetaPatch.model_validate({"initialContext": None}).changes() == {"initial_context": None}
