"""
Tests for the FastAPI endpoints.
"""

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from httpx import AsyncClient, ASGITransport
from starlette.websockets import WebSocketDisconnect

from eventflow.main import app
from eventflow.workflows.content_review import register_content_review_workflow


# ============================================================
# Sync Test Client (for simple tests)
# ============================================================

@pytest.fixture(scope="module")
def client():
    """TestClient with the application lifespan (demo workflow registered)."""
    with TestClient(app) as test_client:
        yield test_client


class TestRootEndpoints:
    """Tests for root endpoints."""

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200

        data = response.json()
        assert "name" in data
        assert "version" in data
        assert "endpoints" in data
        assert data["demo_workflow"] == "content-review"

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "healthy"
        assert data["workflows_count"] >= 1


class TestWorkflowEndpoints:
    """Tests for workflow endpoints."""

    def test_list_workflows(self, client):
        response = client.get("/workflows/")
        assert response.status_code == 200

        data = response.json()
        assert data["total"] >= 1
        assert "content-review" in [w["name"] for w in data["workflows"]]

    def test_get_demo_workflow(self, client):
        response = client.get("/workflows/content-review")
        assert response.status_code == 200

        data = response.json()
        assert data["entry_point"] == "draft"
        assert data["node_count"] == 2
        assert data["routes"] == {
            "StartEvent": "draft",
            "RevisionRequested": "draft",
            "DraftReady": "review",
        }
        assert "graph TD" in data["mermaid_diagram"]

    def test_get_nonexistent_workflow(self, client):
        response = client.get("/workflows/nonexistent")
        assert response.status_code == 404

    def test_run_suspends_for_review(self, client):
        response = client.post(
            "/workflows/content-review/run",
            json={"initial_state": {"topic": "release notes"}},
        )
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "suspended"
        assert data["interrupted_node"] == "review"
        assert data["interrupt_payload"]["revision"] == 1
        assert data["interrupt_payload"]["question"] == "Approve this draft?"
        assert [step["node"] for step in data["execution_log"]] == ["draft", "review"]

    def test_run_auto_approves_at_limit(self, client):
        response = client.post(
            "/workflows/content-review/run",
            json={"initial_state": {"topic": "faq", "max_revisions": 1}},
        )
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "completed"
        assert data["result"]["auto"] is True
        assert data["final_state"]["approved"] is True

    def test_wakeup_unknown_run(self, client):
        response = client.post(
            "/workflows/content-review/runs/does-not-exist/wakeup",
            json={"feedback": True},
        )
        assert response.status_code == 404

    def test_get_unknown_run(self, client):
        response = client.get("/workflows/runs/does-not-exist")
        assert response.status_code == 404


class TestWebSocket:
    """Tests for the streaming endpoint."""

    def test_stream_start_and_wakeup(self, client):
        with client.websocket_connect("/ws/run/content-review") as websocket:
            websocket.send_json({"action": "start", "initial_state": {"topic": "changelog"}})

            started = websocket.receive_json()
            assert started["type"] == "started"
            workflow_id = started["workflow_id"]

            messages = []
            while True:
                message = websocket.receive_json()
                messages.append(message)
                if message["type"] != "event":
                    break

        assert [m["event_type"] for m in messages[:-1]] == ["DraftProgress", "DraftReady"]
        assert messages[-1]["type"] == "suspended"
        assert messages[-1]["interrupt_payload"]["revision"] == 1

        with client.websocket_connect("/ws/run/content-review") as websocket:
            websocket.send_json({
                "action": "wakeup",
                "workflow_id": workflow_id,
                "feedback": {"approved": True},
            })
            assert websocket.receive_json()["type"] == "started"

            event = websocket.receive_json()
            assert event["event_type"] == "StopEvent"
            assert event["payload"]["result"]["approved"] is True

            final = websocket.receive_json()
            assert final["type"] == "completed"

        record = client.get(f"/workflows/runs/{workflow_id}").json()
        assert record["status"] == "completed"

    def test_invalid_action(self, client):
        with client.websocket_connect("/ws/run/content-review") as websocket:
            websocket.send_json({"action": "dance"})
            message = websocket.receive_json()
            assert message["type"] == "error"

    def test_wakeup_unknown_id(self, client):
        with client.websocket_connect("/ws/run/content-review") as websocket:
            websocket.send_json({"action": "wakeup", "workflow_id": "missing", "feedback": True})
            assert websocket.receive_json()["type"] == "started"
            message = websocket.receive_json()
            assert message["type"] == "error"
            assert "missing" in message["error"]

    def test_unknown_workflow(self, client):
        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect("/ws/run/nonexistent") as websocket:
                websocket.receive_json()


# ============================================================
# Async Tests (for async endpoints)
# ============================================================

@pytest_asyncio.fixture
async def ac():
    """AsyncClient against the app; the lifespan does not run, so register the demo here."""
    await register_content_review_workflow()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as async_client:
        yield async_client


@pytest.mark.asyncio
async def test_review_loop_until_approved(ac):
    """Reject once, then approve; the run record follows every step."""
    response = await ac.post(
        "/workflows/content-review/run",
        json={"initial_state": {"topic": "release notes"}, "workflow_id": "review-loop"},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "suspended"
    assert data["workflow_id"] == "review-loop"

    response = await ac.post(
        "/workflows/content-review/runs/review-loop/wakeup",
        json={"feedback": {"approved": False, "notes": "add a summary"}},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "suspended"
    assert data["resumed"] is True
    assert data["interrupt_payload"]["revision"] == 2
    assert "Addressed: add a summary" in data["interrupt_payload"]["draft"]

    response = await ac.post(
        "/workflows/content-review/runs/review-loop/wakeup",
        json={"feedback": True},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "completed"
    assert data["result"]["approved"] is True
    assert data["result"]["revision"] == 2

    record = (await ac.get("/workflows/runs/review-loop")).json()
    assert record["status"] == "completed"
    assert [step["node"] for step in record["execution_log"]] == [
        "draft", "review", "review", "draft", "review", "review",
    ]

    # the snapshot is gone once the run completed
    response = await ac.post(
        "/workflows/content-review/runs/review-loop/wakeup",
        json={"feedback": True},
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_list_runs_for_workflow(ac):
    await ac.post(
        "/workflows/content-review/run",
        json={"initial_state": {"topic": "listing"}, "workflow_id": "listed-run"},
    )
    response = await ac.get("/workflows/content-review/runs")
    assert response.status_code == 200
    assert "listed-run" in [r["workflow_id"] for r in response.json()["runs"]]


@pytest.mark.asyncio
async def test_run_nonexistent_workflow(ac):
    response = await ac.post("/workflows/nonexistent/run", json={"initial_state": {}})
    assert response.status_code == 404


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
