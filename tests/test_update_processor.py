import threading

import pytest

from companion.exceptions import ProcessingFailed
from companion.llm_client import backoff_delay, call_with_retries_sync
from companion.models import Project, TaskItem

from conftest import NOW, FakeLlm, days_ago, make_state, make_update, state_payload


def _project(**kwargs):
    data = {"id": "p1", "name": "Garden app", "goal": "Launch in spring"}
    data.update(kwargs)
    return Project(**data)


# -----------------------
# Retry policy
# -----------------------

def test_backoff_doubles_and_caps():
    assert [backoff_delay(n, 1.0, 30.0) for n in range(1, 7)] == [1.0, 2.0, 4.0, 8.0, 16.0, 30.0]


def test_call_with_retries_returns_first_success():
    calls = []

    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise RuntimeError("boom")
        return "ok"

    delays = []
    assert call_with_retries_sync(flaky, attempts=5, base_delay=0.5, sleep=delays.append) == "ok"
    assert delays == [0.5, 1.0]


def test_call_with_retries_gives_up_after_attempts():
    def always_fails():
        raise RuntimeError("down")

    delays = []
    with pytest.raises(ProcessingFailed) as info:
        call_with_retries_sync(always_fails, attempts=5, base_delay=1.0, sleep=delays.append)
    assert info.value.attempts == 5
    assert isinstance(info.value.__cause__, RuntimeError)
    # no sleep after the last attempt
    assert delays == [1.0, 2.0, 4.0, 8.0]


# -----------------------
# process_update
# -----------------------

def test_process_update_parses_fenced_json(make_processor):
    raw = "```json\n" + '{"statusSummary": "Good", "completed": ["Wireframes"], "nextActions": ["Pick a host"]}' + "\n```"
    llm = FakeLlm(raw)
    state = make_processor(llm).process_update("Finished the wireframes", _project())
    assert state.status_summary == "Good"
    assert state.completed == ["Wireframes"]
    assert state.blockers == []
    assert state.next_actions == ["Pick a host"]
    assert llm.calls[0]["system"]


def test_prompt_carries_previous_state_and_seed_document(make_processor):
    llm = FakeLlm(state_payload())
    project = _project(
        current_state=make_state(blockers=["Waiting on API keys"]),
        initial_context="Background: a gardening planner.",
    )
    make_processor(llm).process_update("Got the keys", project)
    prompt = llm.calls[0]["prompt"]
    assert "Waiting on API keys" in prompt
    assert "Background: a gardening planner." in prompt
    assert "Got the keys" in prompt
    assert "Garden app" in prompt


def test_invalid_json_is_retried_then_fails(make_processor, sleeps):
    llm = FakeLlm(default="this is not json")
    with pytest.raises(ProcessingFailed) as info:
        make_processor(llm).process_update("text", _project())
    assert info.value.attempts == 5
    assert len(llm.calls) == 5
    assert sleeps == [1.0, 2.0, 4.0, 8.0]


def test_wrong_shape_counts_as_failed_attempt(make_processor, sleeps):
    llm = FakeLlm({"blockers": "not a list"}, state_payload(blockers=["real"]))
    state = make_processor(llm).process_update("text", _project())
    assert state.blockers == ["real"]
    assert len(llm.calls) == 2
    assert sleeps == [1.0]


def test_remote_errors_are_retried(make_processor):
    llm = FakeLlm(ConnectionError("reset"), RuntimeError("429 RESOURCE_EXHAUSTED"), state_payload())
    state = make_processor(llm).process_update("text", _project())
    assert state.status_summary == "Making steady headway."
    assert len(llm.calls) == 3


def test_missing_model_fails_without_calls(make_processor):
    with pytest.raises(ProcessingFailed):
        make_processor(None).process_update("text", _project())


def test_slow_attempt_is_abandoned(make_processor):
    release = threading.Event()

    class SlowThenFast:
        def __init__(self):
            self.calls = 0

        def invoke(self, prompt, *, system=None):
            self.calls += 1
            if self.calls == 1:
                release.wait(5)
                return "{}"
            return '{"statusSummary": "second attempt"}'

    llm = SlowThenFast()
    try:
        state = make_processor(llm, attempt_timeout=0.05).process_update("text", _project())
    finally:
        release.set()
    assert state.status_summary == "second attempt"
    assert llm.calls == 2


# -----------------------
# Tags / briefs / next actions
# -----------------------

def test_generate_tags_lowercases_dedupes_and_caps(make_processor):
    llm = FakeLlm({"tags": ["API", "api", "Design", "auth", "ux", "launch", "extra"]})
    assert make_processor(llm).generate_tags("text") == ["api", "design", "auth", "ux", "launch"]


def test_generate_tags_requires_tags_array(make_processor):
    llm = FakeLlm(default={"keywords": ["x"]})
    with pytest.raises(ProcessingFailed):
        make_processor(llm, attempts=2).generate_tags("text")


def test_project_brief_includes_history(make_processor):
    llm = FakeLlm({
        "executiveSummary": "On track.",
        "keyAccomplishments": ["Wireframes"],
        "openQuestions": ["Which host?"],
    })
    project = _project(updates=[make_update("Drew wireframes", at=days_ago(2))], current_state=make_state())
    brief = make_processor(llm).generate_project_brief(project)
    assert brief.project_name == "Garden app"
    assert brief.executive_summary == "On track."
    assert brief.open_questions == ["Which host?"]
    assert "- 2026-03-16: Drew wireframes" in llm.calls[0]["prompt"]


def test_portfolio_brief_uses_measured_metrics(make_processor):
    llm = FakeLlm({
        "portfolioSummary": "Two projects.",
        "overallHealth": "Needs Attention",
        "activeProjectCount": 99,
        "projectHighlights": [{"projectName": "Garden app", "status": "ok", "keyUpdate": "wireframes"}],
        "weeklyMetrics": {"completionRate": 1, "activeBlockers": 42, "momentum": "Accelerating"},
    })
    projects = [
        _project(current_state=make_state(completed=["a"], blockers=["b"]), updates=[make_update(at=days_ago(1))]),
        _project(id="p2", status="paused"),
    ]
    brief = make_processor(llm).generate_portfolio_brief(projects, NOW)
    assert brief.overall_health == "needs-attention"
    assert brief.active_project_count == 1
    assert brief.total_updates_this_week == 1
    assert brief.weekly_metrics.completion_rate == 50
    assert brief.weekly_metrics.active_blockers == 1
    assert brief.weekly_metrics.momentum == "accelerating"
    assert brief.project_highlights[0].key_update == "wireframes"


def test_enrich_next_actions_keeps_wording(make_processor):
    llm = FakeLlm({"tasks": [
        {"task": "Write the tests", "effort": "low", "dependencies": []},
        {"task": "Deploy", "effort": "high", "dependencies": ["Write the tests"]},
    ]})
    tasks = make_processor(llm).enrich_next_actions(["Write tests", "Deploy"], [], [])
    assert tasks == [
        TaskItem(task="Write tests", effort="low"),
        TaskItem(task="Deploy", effort="high", dependencies=["Write the tests"]),
    ]


def test_enrich_next_actions_falls_back_to_defaults(make_processor):
    llm = FakeLlm(default="nope")
    tasks = make_processor(llm, attempts=2).enrich_next_actions(["Write tests"], ["blocked"], [])
    assert tasks == [TaskItem(task="Write tests", effort="medium", dependencies=[])]


def test_enrich_nothing_skips_the_model(make_processor):
    llm = FakeLlm()
    assert make_processor(llm).enrich_next_actions([], [], []) == []
    assert llm.calls == []
