"""
Tests for the HTTP control surface.
"""

import time

import pytest
from fastapi.testclient import TestClient

import web.state as _state
from web import app
from conftest import call, text_response, tool_response


def wait_for(client, status, attempts=200):
    for _ in range(attempts):
        body = client.get("/api/status").json()
        if body["status"] == status:
            return body
        time.sleep(0.01)
    raise AssertionError(f"status never became {status}: {body}")


@pytest.fixture
def client(controller):
    _state._controller = controller
    with TestClient(app) as c:
        yield c
    _state._controller = None


def test_status_idle(client):
    body = client.get("/api/status").json()
    assert body["status"] == "idle"
    assert body["model"] == "test-model"
    assert body["pending_tool_request"] is None


def test_run_to_completion(client, fake_llm):
    fake_llm.queue(text_response("Hello from the agent."))

    resp = client.post("/api/run", json={"input": "hi"})
    assert resp.status_code == 200
    assert resp.json()["ok"] is True

    wait_for(client, "idle")
    items = client.get("/api/history").json()["items"]
    assert [i["type"] for i in items] == ["user", "assistant"]
    assert items[1]["content"] == "Hello from the agent."


def test_run_requires_input(client):
    resp = client.post("/api/run", json={"input": "   "})
    assert resp.status_code == 400


def test_tool_approval_over_http(client, fake_llm, workdir):
    fake_llm.queue(
        tool_response(call("edit", "e1", path="hello.py", old_string="hello", new_string="http")),
        text_response("Updated."),
    )

    client.post("/api/run", json={"input": "edit it"})
    body = wait_for(client, "tool-request")
    assert body["pending_tool_request"][0]["name"] == "edit"

    conflict = client.post("/api/run", json={"input": "another"})
    assert conflict.status_code == 409

    assert client.post("/api/tool/confirm").json()["ok"] is True
    wait_for(client, "idle")
    assert (workdir / "hello.py").read_text() == "print('http')\n"


def test_tool_rejection_over_http(client, fake_llm):
    fake_llm.queue(tool_response(call("bash", "b1", command="echo hi")), text_response("Ok."))

    client.post("/api/run", json={"input": "run"})
    wait_for(client, "tool-request")
    client.post("/api/tool/reject")
    wait_for(client, "idle")

    types = [i["type"] for i in client.get("/api/history").json()["items"]]
    assert types == ["user", "tool-request", "tool-failure", "assistant"]


def test_checkpoint_flow_over_http(client, fake_llm, workdir):
    fake_llm.queue(tool_response(call("delete_file", "d1", path="hello.py")), text_response("Removed."))

    client.post("/api/run", json={"input": "delete"})
    body = wait_for(client, "checkpoint-request")
    assert body["pending_checkpoint"]["risk_level"] == "high"

    assert client.post("/api/tool/confirm").status_code == 409
    assert client.post("/api/checkpoint/confirm").json()["status"] == "tool-request"
    client.post("/api/tool/confirm")
    wait_for(client, "idle")
    assert not (workdir / "hello.py").exists()


def test_checkpoint_reject_over_http(client, fake_llm, workdir):
    fake_llm.queue(tool_response(call("delete_file", "d1", path="hello.py")), text_response("Kept."))

    client.post("/api/run", json={"input": "delete"})
    wait_for(client, "checkpoint-request")
    client.post("/api/checkpoint/reject")
    wait_for(client, "idle")
    assert (workdir / "hello.py").exists()


def test_stop_while_waiting(client, fake_llm):
    fake_llm.queue(tool_response(call("bash", "b1", command="echo hi")))

    client.post("/api/run", json={"input": "run"})
    wait_for(client, "tool-request")
    client.post("/api/stop")
    wait_for(client, "idle")
    assert client.get("/api/history").json()["items"] == []


def test_confirm_when_idle_is_conflict(client):
    assert client.post("/api/tool/confirm").status_code == 409
    assert client.post("/api/checkpoint/reject").status_code == 409


def test_reset_and_diagnostics(client, fake_llm):
    fake_llm.queue(text_response("one"))
    client.post("/api/run", json={"input": "hi"})
    wait_for(client, "idle")

    diag = client.get("/api/diagnostics").json()
    assert diag["circuit_breakers"] == {}
    assert diag["terminal_sessions"] == []

    assert client.post("/api/reset").json()["ok"] is True
    assert client.get("/api/history").json()["items"] == []
