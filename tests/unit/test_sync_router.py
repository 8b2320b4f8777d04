"""
Tests for the interview sync operator routes.
"""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.auth.verify import ADMIN_KEY_HEADER
from app.features.interview_ingest.api.router import _format_sse, router
from app.features.interview_ingest.container import build_container
from app.infrastructure.events import EventBroadcaster
from app.services.elevenlabs import ElevenLabsAPIError
from tests.conftest import AGENT_ID, make_conversation


@pytest.fixture
def container(store, fake_client):
    return build_container(
        store=store, client=fake_client, broadcaster=EventBroadcaster(), agent_id=AGENT_ID
    )


@pytest.fixture
def app(container):
    app = FastAPI()
    app.include_router(router)
    app.state.interview_ingest = container
    return app


@pytest.fixture
def client(app, apply_admin_override):
    apply_admin_override(app)
    with TestClient(app) as test_client:
        yield test_client


def test_admin_key_required(app, monkeypatch):
    monkeypatch.setattr("app.auth.verify.settings.ADMIN_API_KEY", "secret-key")
    test_client = TestClient(app)

    assert test_client.get("/interviews/sync/status").status_code == 401
    wrong = test_client.get("/interviews/sync/status", headers={ADMIN_KEY_HEADER: "nope"})
    assert wrong.status_code == 401
    ok = test_client.get("/interviews/sync/status", headers={ADMIN_KEY_HEADER: "secret-key"})
    assert ok.status_code == 200


def test_admin_routes_closed_without_configured_key(app, monkeypatch):
    monkeypatch.setattr("app.auth.verify.settings.ADMIN_API_KEY", None)

    response = TestClient(app).get(
        "/interviews/sync/status", headers={ADMIN_KEY_HEADER: "anything"}
    )

    assert response.status_code == 503


def test_missing_container_returns_503(apply_admin_override):
    bare = FastAPI()
    bare.include_router(router)
    apply_admin_override(bare)

    response = TestClient(bare).get("/interviews/sync/status")

    assert response.status_code == 503


def test_status(client):
    response = client.get("/interviews/sync/status")

    assert response.status_code == 200
    data = response.json()
    assert data["agent_id"] == AGENT_ID
    assert data["is_polling"] is False
    assert data["poison"]["max_attempts"] == 5


def test_manual_poll_ingests(client, fake_client, store):
    fake_client.add_conversation(make_conversation("conv_1"))

    response = client.post("/interviews/sync/poll")

    assert response.status_code == 200
    assert response.json()["processed"] == 1
    assert "dana.whitfield@example.com" in store.candidates

    events = client.get("/interviews/sync/events/recent", params={"event_type": "candidate-created"})
    assert events.json()["total"] == 1


def test_manual_poll_listing_failure(client, fake_client):
    fake_client.list_error = ElevenLabsAPIError("429 Too Many Requests", status_code=429)

    response = client.post("/interviews/sync/poll")

    assert response.status_code == 502


def test_start_and_stop(client):
    started = client.post("/interviews/sync/start")
    again = client.post("/interviews/sync/start")
    stopped = client.post("/interviews/sync/stop")

    assert started.json() == {"started": True, "is_polling": True}
    assert again.json()["started"] is False
    assert stopped.json() == {"stopped": True, "is_polling": False}


def test_verify(client):
    response = client.get("/interviews/sync/verify", params={"days": 7})

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "synced"
    assert data["issue_count"] == 0


def test_backfill_dry_run(client, fake_client, store):
    fake_client.add_conversation(make_conversation("conv_1"))
    fake_client.add_conversation(make_conversation("conv_2"))

    response = client.post("/interviews/sync/backfill", json={"dry_run": True})

    assert response.status_code == 200
    data = response.json()
    assert data["would_process"] == 2
    assert data["conversation_ids"] == ["conv_1", "conv_2"]
    assert store.candidates == {}


def test_backfill_rejects_inverted_range(client):
    response = client.post(
        "/interviews/sync/backfill",
        json={"start_date": "2025-03-02T00:00:00Z", "end_date": "2025-03-01T00:00:00Z"},
    )

    assert response.status_code == 400


def test_gaps_and_heal(client, fake_client, store):
    fake_client.add_conversation(make_conversation("conv_1"))

    gaps = client.get("/interviews/sync/gaps", params={"days": 7})
    healed = client.post("/interviews/sync/heal", params={"days": 7})

    assert gaps.json()["missing"] == ["conv_1"]
    assert healed.json()["created"] == 1
    assert len(store.candidates) == 1


def test_dashboard_alerts_and_report(client):
    dashboard = client.get("/interviews/sync/dashboard")
    alerts = client.get("/interviews/sync/alerts")
    report = client.get("/interviews/sync/report", params={"days": 7})

    assert dashboard.status_code == 200
    assert dashboard.json()["sync_metrics"]["status"] == "synced"
    assert alerts.json() == {"total": 0, "alerts": []}
    assert report.json()["recommendations"] == []


def test_poison_endpoints(client, container):
    container.poison_handler.force_mark_as_poisoned("conv_bad", "No usable name or email extracted")

    listed = client.get("/interviews/sync/poison")
    assert listed.json()["total"] == 1
    assert listed.json()["conversations"][0]["conversation_id"] == "conv_bad"

    assert client.post("/interviews/sync/poison/conv_missing/retry").status_code == 404
    retried = client.post("/interviews/sync/poison/conv_bad/retry")
    assert retried.json() == {"success": True, "conversation_id": "conv_bad"}
    assert not container.poison_handler.is_poisoned("conv_bad")

    cleared = client.delete("/interviews/sync/poison")
    assert cleared.json() == {"success": True, "cleared": 1}


def test_format_sse():
    frame = _format_sse({"type": "candidate-created", "data": {"candidate_id": "c1"}})

    assert frame.startswith("event: candidate-created\ndata: ")
    assert frame.endswith("\n\n")
    assert '"candidate_id": "c1"' in frame
