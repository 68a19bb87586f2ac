"""HTTP route tests against an in-memory store and a scripted model."""

from unittest import mock

import pytest
from fastapi.testclient import TestClient

import server
from companion.backend import Backend
from companion.exceptions import StoreUnavailable

from conftest import FakeLlm, state_payload


@pytest.fixture
def llm():
    return FakeLlm()


@pytest.fixture
def backend(store, make_processor, llm):
    backend = Backend(store, make_processor(llm, attempts=2), generate_tags=False)
    server.set_backend(backend)
    try:
        yield backend
    finally:
        server.set_backend(None)


@pytest.fixture
def client(backend):
    return TestClient(server.app)


def _create(client, **extra):
    body = {"name": "Garden app", "goal": "Launch in spring"}
    body.update(extra)
    response = client.post("/api/projects", json=body)
    assert response.status_code == 201
    return response.json()["project"]


def test_health(client):
    assert client.get("/api/health").json() == {"status": "ok"}


def test_health_reports_store_outage(client, backend):
    with mock.patch.object(backend.store, "ping", side_effect=StoreUnavailable("down")):
        response = client.get("/api/health")
    assert response.status_code == 503
    assert response.json()["status"] == "error"


def test_create_requires_name_and_goal(client):
    assert client.post("/api/projects", json={"name": "x"}).status_code == 422
    assert client.post("/api/projects", json={"name": "", "goal": "g"}).status_code == 422


def test_project_lifecycle(client, llm):
    project = _create(client)
    assert project["currentState"] is None
    assert client.get("/api/projects").json()["projects"][0]["id"] == project["id"]

    llm.script.append(state_payload(completed=["Wireframes"], nextActions=["Pick a host"]))
    response = client.post(f"/api/projects/{project['id']}/updates", json={"text": "Did the wireframes"})
    assert response.status_code == 201
    payload = response.json()
    assert payload["processingError"] is None
    assert payload["update"]["structuredState"]["completed"] == ["Wireframes"]
    assert payload["project"]["currentState"]["nextActions"] == ["Pick a host"]

    patched = client.patch(f"/api/projects/{project['id']}", json={"status": "paused"}).json()["project"]
    assert patched["status"] == "paused"

    assert client.delete(f"/api/projects/{project['id']}").status_code == 204
    assert client.get(f"/api/projects/{project['id']}").status_code == 404


def test_seed_document_becomes_first_update(client, llm):
    llm.script.append(state_payload(inProgress=["Research"]))
    response = client.post(
        "/api/projects",
        json={"name": "Garden app", "goal": "Launch", "documentContent": "Plan: research first."},
    )
    assert response.status_code == 201
    project = response.json()["project"]
    assert project["initialContext"] == "Plan: research first."
    assert [u["text"] for u in project["updates"]] == ["Plan: research first."]
    assert project["currentState"]["inProgress"] == ["Research"]


def test_failed_processing_still_stores_update(client, llm):
    project = _create(client)
    llm.default = "nonsense"
    response = client.post(f"/api/projects/{project['id']}/updates", json={"text": "hello"})
    assert response.status_code == 201
    payload = response.json()
    assert payload["update"]["structuredState"] is None
    assert "failed after 2 attempts" in payload["processingError"]


def test_unknown_ids(client):
    assert client.get("/api/projects/nope").status_code == 404
    assert client.post("/api/projects/nope/updates", json={"text": "x"}).status_code == 404
    project = _create(client)
    assert client.delete(f"/api/projects/{project['id']}/updates/nope").status_code == 404


def test_update_text_required(client):
    project = _create(client)
    assert client.post(f"/api/projects/{project['id']}/updates", json={"text": ""}).status_code == 422


def test_store_outage_is_503(client, backend):
    project = _create(client)
    with mock.patch.object(backend.store, "list_projects", side_effect=StoreUnavailable("down")):
        assert client.get("/api/projects").status_code == 503
    assert client.get(f"/api/projects/{project['id']}").status_code == 200


def test_views(client, llm):
    project = _create(client)
    pid = project["id"]
    llm.script.append(state_payload(
        completed=["Repo"],
        inProgress=["API"],
        blockers=["Keys"],
        nextActions=["Tests"],
    ))
    update = client.post(f"/api/projects/{pid}/updates", json={"text": "Set up the repo"}).json()["update"]

    overview = client.get(f"/api/projects/{pid}/overview").json()["overview"]
    assert overview["totalUpdates"] == 1
    assert overview["blockerCount"] == 1
    assert overview["healthScore"] == 90

    tasks = client.get(f"/api/projects/{pid}/tasks", params={"filter": "active"}).json()
    assert [t["text"] for t in tasks["tasks"]] == ["API", "Tests"]
    assert tasks["counts"]["all"] == 4
    assert client.get(f"/api/projects/{pid}/tasks", params={"filter": "bogus"}).status_code == 400

    timeline = client.get(f"/api/projects/{pid}/timeline", params={"q": "repo"}).json()
    assert [u["id"] for u in timeline["updates"]] == [update["id"]]

    comment = client.post(
        f"/api/projects/{pid}/updates/{update['id']}/comments",
        json={"text": "Nice start", "author": "Sam"},
    )
    assert comment.status_code == 201
    assert comment.json()["comment"]["author"] == "Sam"

    momentum = client.get("/api/momentum").json()["metrics"]
    assert momentum["totalUpdates"] == 1
    assert momentum["currentStreak"] == 1

    assert client.delete(f"/api/projects/{pid}/updates/{update['id']}").status_code == 204
    assert client.get(f"/api/projects/{pid}").json()["project"]["updates"] == []


def test_briefs(client, llm):
    project = _create(client)
    llm.script.append({"executiveSummary": "On track."})
    brief = client.post(f"/api/projects/{project['id']}/brief").json()["brief"]
    assert brief["projectName"] == "Garden app"
    assert brief["executiveSummary"] == "On track."

    llm.script.append({"portfolioSummary": "One project.", "overallHealth": "good"})
    brief = client.post("/api/portfolio/brief").json()["brief"]
    assert brief["activeProjectCount"] == 1
    assert brief["weeklyMetrics"]["momentum"] == "steady"


def test_brief_failure_is_502(client, llm):
    project = _create(client)
    llm.default = "nope"
    assert client.post(f"/api/projects/{project['id']}/brief").status_code == 502


def test_enrich_next_actions(client, llm):
    project = _create(client)
    pid = project["id"]
    assert client.post(f"/api/projects/{pid}/next-actions/enrich").json() == {"nextActions": []}

    llm.script.append(state_payload(nextActions=["Tests", "Deploy"]))
    client.post(f"/api/projects/{pid}/updates", json={"text": "planning"})
    llm.script.append({"tasks": [
        {"task": "Tests", "effort": "low", "dependencies": []},
        {"task": "Deploy", "effort": "high", "dependencies": ["Tests"]},
    ]})
    actions = client.post(f"/api/projects/{pid}/next-actions/enrich").json()["nextActions"]
    assert actions == [
        {"task": "Tests", "effort": "low", "dependencies": []},
        {"task": "Deploy", "effort": "high", "dependencies": ["Tests"]},
    ]


def test_generate_tags(client, llm):
    llm.script.append({"tags": ["Launch", "ux"]})
    assert client.post("/api/ai/generate-tags", json={"updateText": "Launch prep"}).json() == {"tags": ["launch", "ux"]}
    assert client.post("/api/ai/generate-tags", json={}).status_code == 422


@pytest.mark.parametrize("field", ["name", "goal", "status"])
def test_patch_cannot_null_required_fields(client, field):
    project = _create(client)
    response = client.patch(f"/api/projects/{project['id']}", json={field: None})
    assert response.status_code == 422
    unchanged = client.get(f"/api/projects/{project['id']}").json()["project"]
    assert unchanged["name"] == "Garden app"
    assert unchanged["goal"] == "Launch in spring"
    assert unchanged["status"] == "active"


def test_patch_can_clear_initial_context(client):
    project = _create(client, documentContent="")
    response = client.patch(f"/api/projects/{project['id']}", json={"initialContext": None})
    assert response.status_code == 200
    assert response.json()["project"]["initialContext"] is None


def test_update_timestamps_come_from_the_server_clock(client, llm):
    project = _create(client)
    llm.default = state_payload()
    first = client.post(
        f"/api/projects/{project['id']}/updates",
        json={"text": "from the future", "timestamp": "2099-01-01T00:00:00Z"},
    )
    second = client.post(f"/api/projects/{project['id']}/updates", json={"text": "right now"})
    assert first.status_code == 201
    assert second.status_code == 201
    assert not first.json()["update"]["timestamp"].startswith("2099")
    assert not second.json()["update"]["timestamp"].startswith("2099")

    overview = client.get(f"/api/projects/{project['id']}/overview").json()["overview"]
    assert overview["recentUpdates"] == 2
