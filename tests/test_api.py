"""
Tests for the FastAPI endpoints.
"""

import pytest
import asyncio
import time
from typing import Literal

from fastapi.testclient import TestClient
from httpx import AsyncClient, ASGITransport
from starlette.websockets import WebSocketDisconnect

from flowstate.engine.graph import END, Graph
from flowstate.engine.node import passthrough
from flowstate.engine.state import FieldSpec, StateSchema, append
from flowstate.main import create_app
from flowstate.workflows.json_summarizer import create_json_summarizer_workflow


# ============================================================
# Test Workflows
# ============================================================

def route_on_flag(state) -> Literal["P", "Q"]:
    return "P" if state["flag"] else "Q"


def keep_going(state) -> Literal["AGAIN", "DONE"]:
    return "AGAIN"


def explode(state):
    raise RuntimeError("boom")


def schema() -> StateSchema:
    return StateSchema(
        flag=FieldSpec(default=lambda: True),
        count=FieldSpec(default=lambda: 0),
        visited=FieldSpec(default=list, reducer=append),
    )


def branch_workflow():
    graph = Graph(schema(), name="Branch", description="Routes on flag")
    graph.add_node("entry", passthrough)
    graph.add_node("P", lambda state: {"visited": ["P"]})
    graph.add_node("Q", lambda state: {"visited": ["Q"]})
    graph.add_conditional_edges("entry", route_on_flag, {"P": "P", "Q": "Q"})
    graph.add_edge("P", END)
    graph.add_edge("Q", END)
    return graph.compile()


def loop_workflow():
    graph = Graph(schema(), name="Loop")
    graph.add_node("tick", lambda state: {"count": state["count"] + 1})
    graph.add_conditional_edges("tick", keep_going, {"AGAIN": "tick", "DONE": END})
    return graph.compile()


def failing_workflow():
    graph = Graph(schema(), name="Failing")
    graph.add_node("first", lambda state: {"count": 1})
    graph.add_node("explode", explode)
    graph.add_edge("first", "explode")
    graph.add_edge("explode", END)
    return graph.compile()


def slow_loop_workflow():
    def slow_tick(state):
        time.sleep(0.05)
        return {"count": state["count"] + 1}

    graph = Graph(schema(), name="Slow loop")
    graph.add_node("tick", slow_tick)
    graph.add_conditional_edges("tick", keep_going, {"AGAIN": "tick", "DONE": END})
    return graph.compile()


def gated_workflow(started: asyncio.Event, gate: asyncio.Event):
    async def wait_for_gate(state):
        started.set()
        await gate.wait()
        return {"count": 1}

    graph = Graph(schema(), name="Gated")
    graph.add_node("wait", wait_for_gate)
    graph.add_node("after", lambda state: {"visited": ["after"]})
    graph.add_edge("wait", "after")
    graph.add_edge("after", END)
    return graph.compile()


def broken_default_workflow():
    def broken_default():
        raise ValueError("no default today")

    graph = Graph(StateSchema(count=FieldSpec(default=broken_default)), name="Broken")
    graph.add_node("entry", passthrough)
    graph.add_edge("entry", END)
    return graph.compile()


class FixedTemplateWriter:
    async def generate_structured(self, prompt, schema):
        return schema(reducer_template="{{ games | length }} games")


@pytest.fixture
def client():
    app = create_app(workflows={
        "branch": branch_workflow(),
        "loop": loop_workflow(),
        "failing": failing_workflow(),
        "json-summarizer": create_json_summarizer_workflow(FixedTemplateWriter()),
    })
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def slow_client():
    app = create_app(workflows={
        "slow": slow_loop_workflow(),
        "broken": broken_default_workflow(),
    })
    with TestClient(app) as test_client:
        yield test_client


# ============================================================
# Root Endpoints
# ============================================================

class TestRootEndpoints:
    """Tests for root endpoints."""

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200

        data = response.json()
        assert data["name"] == "FlowState"
        assert "endpoints" in data
        assert "branch" in data["workflows"]

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "healthy"
        assert data["workflows_count"] == 4
        assert data["runs_count"] == 0


# ============================================================
# Workflow Endpoints
# ============================================================

class TestWorkflowEndpoints:
    """Tests for workflow endpoints."""

    def test_list_workflows(self, client):
        response = client.get("/workflows/")
        assert response.status_code == 200

        data = response.json()
        assert data["total"] == 4
        names = [w["name"] for w in data["workflows"]]
        assert "json-summarizer" in names

    def test_get_workflow(self, client):
        response = client.get("/workflows/branch")
        assert response.status_code == 200

        data = response.json()
        assert data["title"] == "Branch"
        assert data["entry_point"] == "entry"
        assert data["steps"] == ["entry", "P", "Q"]
        assert data["conditional_edges"]["entry"]["routes"] == {"P": "P", "Q": "Q"}
        assert data["state_fields"] == ["flag", "count", "visited"]
        assert "entry -.->|Q| Q" in data["mermaid_diagram"]

    def test_get_workflow_with_cycle(self, client):
        data = client.get("/workflows/json-summarizer").json()
        assert data["cycles"] == [["prepare_reducer_template", "generate_summary"]]

    def test_get_nonexistent_workflow(self, client):
        response = client.get("/workflows/nonexistent")
        assert response.status_code == 404


# ============================================================
# Execution Endpoints
# ============================================================

class TestRunEndpoints:
    """Tests for running workflows and polling runs."""

    def test_run_workflow(self, client):
        response = client.post("/workflows/branch/run", json={"initial_state": {"flag": False}})
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "completed"
        assert data["workflow"] == "branch"
        assert data["final_state"]["visited"] == ["Q"]
        assert [entry["node"] for entry in data["execution_log"]] == ["entry", "Q"]
        assert data["execution_log"][0]["route_taken"] == "Q"
        assert data["steps"] == 2
        assert data["error"] is None

    def test_run_summarizer(self, client):
        response = client.post("/workflows/json-summarizer/run", json={
            "initial_state": {"json": '{"games": [{"id": 1}, {"id": 2}]}'}
        })

        data = response.json()
        assert data["status"] == "completed"
        assert data["final_state"]["summary"] == "2 games"

    def test_unknown_initial_field(self, client):
        response = client.post("/workflows/branch/run", json={"initial_state": {"nope": 1}})
        assert response.status_code == 400
        assert "nope" in response.json()["detail"]

    def test_run_nonexistent_workflow(self, client):
        response = client.post("/workflows/nonexistent/run", json={})
        assert response.status_code == 404

    def test_failed_run_reports_typed_error(self, client):
        response = client.post("/workflows/failing/run", json={})
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "failed"
        assert data["error"]["type"] == "StepExecutionError"
        assert data["error"]["step"] == "explode"
        assert "RuntimeError" in data["error"]["cause"]
        assert data["final_state"]["count"] == 1

    def test_max_steps(self, client):
        response = client.post("/workflows/loop/run", json={"max_steps": 4})

        data = response.json()
        assert data["status"] == "failed"
        assert data["error"]["type"] == "MaxStepsExceededError"
        assert data["steps"] == 4

    def test_invalid_max_steps(self, client):
        response = client.post("/workflows/loop/run", json={"max_steps": 0})
        assert response.status_code == 422

    def test_get_run(self, client):
        run_id = client.post("/workflows/branch/run", json={}).json()["run_id"]

        response = client.get(f"/runs/{run_id}")
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "completed"
        assert data["workflow"] == "branch"
        assert data["current_state"]["visited"] == ["P"]
        assert data["completed_at"] is not None

    def test_get_nonexistent_run(self, client):
        response = client.get("/runs/nonexistent-run-id")
        assert response.status_code == 404

    def test_list_runs(self, client):
        client.post("/workflows/branch/run", json={})
        client.post("/workflows/failing/run", json={})

        assert client.get("/runs/").json()["total"] == 2

        data = client.get("/runs/", params={"workflow": "failing"}).json()
        assert data["total"] == 1
        assert data["runs"][0]["status"] == "failed"
        assert data["runs"][0]["error"]["type"] == "StepExecutionError"

    def test_async_execution(self, client):
        response = client.post("/workflows/branch/run", json={"async_execution": True})
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "pending"
        assert data["steps"] == 0

        # TestClient runs background tasks before returning
        run = client.get(f"/runs/{data['run_id']}").json()
        assert run["status"] == "completed"
        assert run["steps"] == 2

    def test_cancel_finished_run(self, client):
        run_id = client.post("/workflows/branch/run", json={}).json()["run_id"]

        response = client.post(f"/runs/{run_id}/cancel")
        assert response.status_code == 409

    def test_cancel_nonexistent_run(self, client):
        response = client.post("/runs/nonexistent-run-id/cancel")
        assert response.status_code == 404

    def test_delete_run(self, client):
        run_id = client.post("/workflows/branch/run", json={}).json()["run_id"]

        assert client.delete(f"/runs/{run_id}").status_code == 204
        assert client.get(f"/runs/{run_id}").status_code == 404
        assert client.delete(f"/runs/{run_id}").status_code == 404

    def test_failing_default_supplier(self, slow_client):
        response = slow_client.post("/workflows/broken/run", json={})
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "failed"
        assert data["error"]["type"] == "InitializationError"
        assert "ValueError" in data["error"]["cause"]
        assert data["steps"] == 0

        run = slow_client.get(f"/runs/{data['run_id']}").json()
        assert run["status"] == "failed"
        assert slow_client.delete(f"/runs/{data['run_id']}").status_code == 204


@pytest.mark.asyncio
async def test_cancel_running_run():
    """A cancel request stops a live run before its next step."""
    started = asyncio.Event()
    gate = asyncio.Event()
    app = create_app(workflows={"gated": gated_workflow(started, gate)})

    async with app.router.lifespan_context(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            run_task = asyncio.create_task(ac.post("/workflows/gated/run", json={}))
            await asyncio.wait_for(started.wait(), timeout=5)

            runs = (await ac.get("/runs/", params={"workflow": "gated"})).json()["runs"]
            assert len(runs) == 1
            run_id = runs[0]["run_id"]

            response = await ac.post(f"/runs/{run_id}/cancel")
            assert response.status_code == 200
            assert response.json()["run_id"] == run_id

            gate.set()
            response = await asyncio.wait_for(run_task, timeout=5)

            data = response.json()
            assert data["status"] == "cancelled"
            assert data["steps"] == 1
            assert data["final_state"] == {}
            assert [entry["node"] for entry in data["execution_log"]] == ["wait"]

            run = (await ac.get(f"/runs/{run_id}")).json()
            assert run["status"] == "cancelled"
            assert run["steps"] == 1

            response = await ac.post(f"/runs/{run_id}/cancel")
            assert response.status_code == 409


# ============================================================
# WebSocket Tests
# ============================================================

class TestWebSocket:
    """Tests for streaming runs over WebSocket."""

    def test_stream_run(self, client):
        with client.websocket_connect("/ws/run/branch") as websocket:
            websocket.send_json({"action": "start", "initial_state": {"flag": False}})

            started = websocket.receive_json()
            assert started["type"] == "started"
            run_id = started["run_id"]

            first = websocket.receive_json()
            assert first["type"] == "step"
            assert first["node"] == "entry"
            assert first["route_taken"] == "Q"

            second = websocket.receive_json()
            assert second["node"] == "Q"
            assert second["state"]["visited"] == ["Q"]

            done = websocket.receive_json()
            assert done["type"] == "completed"
            assert done["final_state"]["visited"] == ["Q"]

        assert client.get(f"/runs/{run_id}").json()["status"] == "completed"

    def test_stream_failed_run(self, client):
        with client.websocket_connect("/ws/run/loop") as websocket:
            websocket.send_json({"action": "start", "max_steps": 2})

            assert websocket.receive_json()["type"] == "started"
            assert websocket.receive_json()["type"] == "step"
            assert websocket.receive_json()["type"] == "step"

            done = websocket.receive_json()
            assert done["type"] == "failed"
            assert done["error"]["type"] == "MaxStepsExceededError"

    def test_expected_start_action(self, client):
        with client.websocket_connect("/ws/run/branch") as websocket:
            websocket.send_json({"action": "go"})
            message = websocket.receive_json()
            assert message["type"] == "error"

    def test_unknown_workflow(self, client):
        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect("/ws/run/nonexistent") as websocket:
                websocket.receive_json()

    def test_invalid_max_steps(self, client):
        for max_steps in (0, "abc"):
            with client.websocket_connect("/ws/run/loop") as websocket:
                websocket.send_json({"action": "start", "max_steps": max_steps})
                message = websocket.receive_json()
                assert message["type"] == "error"
                assert message["detail"][0]["loc"] == ["max_steps"]

        assert client.get("/runs/").json()["total"] == 0

    def test_invalid_initial_state(self, client):
        with client.websocket_connect("/ws/run/branch") as websocket:
            websocket.send_json({"action": "start", "initial_state": ["flag"]})
            message = websocket.receive_json()
            assert message["type"] == "error"

    def test_cancel_action(self, slow_client):
        with slow_client.websocket_connect("/ws/run/slow") as websocket:
            websocket.send_json({"action": "start", "max_steps": 1000})
            run_id = websocket.receive_json()["run_id"]

            first = websocket.receive_json()
            assert first["type"] == "step"
            websocket.send_json({"action": "cancel"})

            step_messages = 1
            message = websocket.receive_json()
            while message["type"] == "step":
                step_messages += 1
                message = websocket.receive_json()

            assert message["type"] == "cancelled"
            assert message["final_state"] == {}
            assert message["steps"] == step_messages
            assert message["steps"] < 1000

        run = slow_client.get(f"/runs/{run_id}").json()
        assert run["status"] == "cancelled"
        assert run["steps"] == step_messages

    def test_disconnect_cancels_run(self, slow_client):
        with slow_client.websocket_connect("/ws/run/slow") as websocket:
            websocket.send_json({"action": "start", "max_steps": 1000})
            run_id = websocket.receive_json()["run_id"]
            assert websocket.receive_json()["type"] == "step"

        # leaving the block closes the socket and waits for the handler
        run = slow_client.get(f"/runs/{run_id}").json()
        assert run["status"] == "cancelled"
        assert run["current_state"] == {}
        assert run["steps"] < 1000

        steps_after_disconnect = run["steps"]
        time.sleep(0.2)
        assert slow_client.get(f"/runs/{run_id}").json()["steps"] == steps_after_disconnect
