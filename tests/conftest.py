import json
from datetime import datetime, timedelta, timezone

import pytest

from companion.db import build_db_session_factory
from companion.models import StructuredState, Update
from companion.project_store import ProjectStore
from companion.update_processor import UpdateProcessor

NOW = datetime(2026, 3, 18, 15, 0, tzinfo=timezone.utc)  # a Wednesday


class FakeLlm:
    """
    Scripted stand-in for LlmClient.

    Each invoke() pops the next scripted item: strings are returned as the
    model's text, dicts are returned JSON-encoded, exceptions are raised.
    Once the script runs out `default` is used, when set.
    """

    def __init__(self, *script, default=None):
        self.script = list(script)
        self.default = default
        self.calls: list[dict] = []

    def invoke(self, prompt, *, system=None):
        self.calls.append({"prompt": prompt, "system": system})
        if self.script:
            item = self.script.pop(0)
        elif self.default is not None:
            item = self.default
        else:
            raise AssertionError("FakeLlm script exhausted")
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, dict):
            return json.dumps(item)
        return item


def state_payload(**overrides) -> dict:
    payload = {
        "statusSummary": "Making steady headway.",
        "completed": [],
        "inProgress": [],
        "blockers": [],
        "ideasCaptured": [],
        "decisionsMade": [],
        "nextActions": [],
        "clarifyingQuestion": "What is next?",
        "emotionalFeedback": "Sounds good.",
    }
    payload.update(overrides)
    return payload


def make_state(**overrides) -> StructuredState:
    return StructuredState.model_validate(state_payload(**overrides))


def make_update(text="note", *, at=NOW, tags=(), state=None, project_id="p1", uid=None) -> Update:
    return Update(
        id=uid or f"u-{at.isoformat()}-{text}",
        project_id=project_id,
        text=text,
        structured_state=state,
        timestamp=at,
        tags=list(tags),
    )


def days_ago(n: int, hour: int = 12) -> datetime:
    return (NOW - timedelta(days=n)).replace(hour=hour)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def store():
    return ProjectStore(build_db_session_factory("sqlite://"))


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def make_processor(sleeps):
    def _make(llm, **kwargs):
        kwargs.setdefault("attempts", 5)
        kwargs.setdefault("base_delay", 1.0)
        kwargs.setdefault("max_delay", 30.0)
        kwargs.setdefault("attempt_timeout", None)
        return UpdateProcessor(llm, sleep=sleeps.append, **kwargs)

    return _make
