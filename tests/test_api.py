"""Tests for the HTTP API."""

import json
import runpy
from unittest.mock import patch

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from workflow_builder.config import get_settings
from workflow_builder.engine.models import RunRequest
from workflow_builder.main import app, graph_engine, stream_run, tool_registry


@pytest.fixture
def client():
    """Test client with the startup catalog registered."""
    with TestClient(app) as test_client:
        yield test_client
    graph_engine.workflows.clear()


@pytest.fixture
def workflow_id(client):
    response = client.post("/workflows", json={"name": "api test", "global_input": '{"x": 1}'})
    assert response.status_code == 200
    return response.json()["workflow_id"]


def add_step(client, workflow_id, tool_id):
    response = client.post(f"/workflows/{workflow_id}/steps", json={"tool_id": tool_id})
    assert response.status_code == 200
    return response.json()


class TestCatalog:
    def test_root(self, client):
        data = client.get("/").json()
        assert "matrix.add" in data["available_tools"]

    def test_list_tools(self, client):
        tools = client.get("/tools").json()
        ids = [t["id"] for t in tools]
        assert ids == sorted(ids)
        assert "utils.log" in ids

    def test_categories(self, client):
        cats = client.get("/tools/categories").json()
        assert cats["analysis"] == "Analysis"


class TestWorkflowCrud:
    def test_create_and_get(self, client, workflow_id):
        data = client.get(f"/workflows/{workflow_id}").json()
        assert data["name"] == "api test"
        assert data["status"] == "idle"
        assert data["steps"] == []

    def test_default_input_is_used(self, client):
        wid = client.post("/workflows", json={}).json()["workflow_id"]
        data = client.get(f"/workflows/{wid}").json()
        assert "matrix_a" in json.loads(data["global_input"])

    def test_unknown_workflow(self, client):
        assert client.get("/workflows/missing").status_code == 404

    def test_delete(self, client, workflow_id):
        assert client.delete(f"/workflows/{workflow_id}").status_code == 204
        assert client.get(f"/workflows/{workflow_id}").status_code == 404

    def test_set_input(self, client, workflow_id):
        response = client.put(f"/workflows/{workflow_id}/input", json={"global_input": '{"y": 2}'})
        assert response.json()["global_input"] == '{"y": 2}'


class TestGraphEditing:
    def test_steps_auto_chain(self, client, workflow_id):
        a = add_step(client, workflow_id, "matrix.add")
        b = add_step(client, workflow_id, "utils.log")

        data = client.get(f"/workflows/{workflow_id}").json()
        assert [(c["source"], c["target"]) for c in data["connections"]] == [(a["id"], b["id"])]

    def test_unknown_tool_rejected(self, client, workflow_id):
        response = client.post(f"/workflows/{workflow_id}/steps", json={"tool_id": "nope"})
        assert response.status_code == 400

    def test_edge_errors(self, client, workflow_id):
        a = add_step(client, workflow_id, "matrix.add")
        response = client.post(
            f"/workflows/{workflow_id}/edges", json={"source": a["id"], "target": a["id"]}
        )
        assert response.status_code == 400

    def test_delete_step_and_edge(self, client, workflow_id):
        a = add_step(client, workflow_id, "matrix.add")
        b = add_step(client, workflow_id, "utils.log")
        c = add_step(client, workflow_id, "data.normalize")

        assert client.delete(f"/workflows/{workflow_id}/steps/{b['id']}").status_code == 204
        assert client.delete(f"/workflows/{workflow_id}/steps/{b['id']}").status_code == 404

        edge = client.post(
            f"/workflows/{workflow_id}/edges", json={"source": a["id"], "target": c["id"]}
        ).json()
        assert client.delete(f"/workflows/{workflow_id}/edges/{edge['id']}").status_code == 204
        assert client.get(f"/workflows/{workflow_id}").json()["connections"] == []

    def test_clear_graph(self, client, workflow_id):
        add_step(client, workflow_id, "matrix.add")
        client.post(f"/workflows/{workflow_id}/run", json={})
        data = client.delete(f"/workflows/{workflow_id}/graph").json()
        assert data["steps"] == []
        assert data["log"] == []

    def test_patch(self, client, workflow_id):
        response = client.post(
            f"/workflows/{workflow_id}/patch",
            json={
                "nodes": [
                    {"id": "n1", "tool_id": "matrix.add"},
                    {"id": "n2", "tool_id": "bogus"},
                    {"id": "n3", "tool_id": "utils.log"},
                ],
                "edges": [{"source": "n1", "target": "n3"}, {"source": "n1", "target": "n2"}],
            },
        )
        data = response.json()
        assert [s["id"] for s in data["added"]] == ["n1", "n3"]
        assert [(c["source"], c["target"]) for c in data["connections"]] == [("n1", "n3")]

    def test_assistant_step_reset(self, client, workflow_id):
        add_step(client, workflow_id, "matrix.add")
        response = client.post(
            f"/workflows/{workflow_id}/assistant-step", json={"tool_id": "poly.fit", "reset": True}
        )
        assert response.status_code == 200
        steps = client.get(f"/workflows/{workflow_id}").json()["steps"]
        assert [s["tool_id"] for s in steps] == ["poly.fit"]

    def test_assistant_step_unknown_tool(self, client, workflow_id):
        response = client.post(
            f"/workflows/{workflow_id}/assistant-step", json={"tool_id": "bogus", "reset": True}
        )
        assert response.status_code == 400


class TestExecution:
    def test_run(self, client, workflow_id):
        client.post(
            f"/workflows/{workflow_id}/patch",
            json={
                "nodes": [
                    {"id": "A", "tool_id": "matrix.add"},
                    {"id": "B", "tool_id": "data.normalize"},
                    {"id": "C", "tool_id": "utils.log"},
                ],
                "edges": [{"source": "A", "target": "B"}, {"source": "A", "target": "C"}],
            },
        )
        data = client.post(f"/workflows/{workflow_id}/run", json={}).json()

        assert data["status"] == "completed"
        assert [e["node_id"] for e in data["log"]] == ["A", "B", "C"]
        assert [e["step_label"] for e in data["log"]] == ["A1", "B1", "B2"]
        assert client.get(f"/workflows/{workflow_id}/log").json() == data["log"]

    def test_run_empty_graph(self, client, workflow_id):
        response = client.post(f"/workflows/{workflow_id}/run", json={})
        assert response.status_code == 400

    def test_run_invalid_json(self, client, workflow_id):
        add_step(client, workflow_id, "matrix.add")
        response = client.post(f"/workflows/{workflow_id}/run", json={"global_input": "{oops"})
        assert response.status_code == 400
        assert "Invalid JSON" in response.json()["detail"]

    def test_run_aborted(self, client, workflow_id):
        a = add_step(client, workflow_id, "matrix.add")
        b = add_step(client, workflow_id, "utils.log")
        c = add_step(client, workflow_id, "data.normalize")
        client.post(f"/workflows/{workflow_id}/edges", json={"source": c["id"], "target": b["id"]})

        data = client.post(f"/workflows/{workflow_id}/run", json={}).json()
        assert data["status"] == "aborted"
        assert "cycle" in data["error"]
        assert data["log"][0]["node_id"] == a["id"]

    def test_stream(self, client, workflow_id):
        add_step(client, workflow_id, "matrix.add")
        add_step(client, workflow_id, "utils.log")

        response = client.post(f"/workflows/{workflow_id}/run/stream", json={})
        assert response.status_code == 200
        lines = [json.loads(line) for line in response.text.splitlines() if line]
        assert [e["step_label"] for e in lines] == ["A1", "B1"]

    def test_stream_rejects_before_starting(self, client, workflow_id):
        response = client.post(f"/workflows/{workflow_id}/run/stream", json={})
        assert response.status_code == 400

    def test_stream_on_running_workflow_is_conflict(self, client, workflow_id):
        add_step(client, workflow_id, "matrix.add")
        graph_engine.get_workflow(workflow_id).status = "running"

        response = client.post(f"/workflows/{workflow_id}/run/stream", json={})
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_second_stream_conflicts_before_first_body_starts(self, client, workflow_id):
        add_step(client, workflow_id, "matrix.add")
        workflow = graph_engine.get_workflow(workflow_id)

        first = await stream_run(workflow_id, RunRequest())
        assert workflow.status == "running"

        with pytest.raises(HTTPException) as exc_info:
            await stream_run(workflow_id, RunRequest())
        assert exc_info.value.status_code == 409

        lines = [line async for line in first.body_iterator]
        assert len(lines) == 1
        assert json.loads(lines[0])["step_label"] == "A1"
        assert workflow.status == "idle"


def test_registry_is_shared_with_engine():
    assert graph_engine.tool_registry is tool_registry


def test_module_entry_point_serves_configured_address():
    settings = get_settings()
    with patch("uvicorn.run") as run:
        runpy.run_module("workflow_builder.main", run_name="__main__")

    run.assert_called_once_with(
        "workflow_builder.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
