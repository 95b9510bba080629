"""
Tests for risk assessment, confidence scoring and the CheckpointGate.
"""

import pytest

from agent.checkpoints import (
    CheckpointDecision,
    CheckpointGate,
    CheckpointRequest,
    Evidence,
    assess_risk_level,
    calculate_confidence,
    is_critical_file,
    is_dangerous_command,
    operation_for_tool_call,
)
from agent.steps import ToolCall


@pytest.mark.parametrize("path", [
    "package.json", "app/package.json", "tsconfig.json", ".env", ".env.local",
    "config.py", "src/config.yaml", "pyproject.toml", "setup.py", "requirements-dev.txt",
])
def test_critical_files(path):
    assert is_critical_file(path)


@pytest.mark.parametrize("path", ["src/app.py", "my_config_notes.md", "package.json.bak", None])
def test_ordinary_files(path):
    assert not is_critical_file(path)


@pytest.mark.parametrize("command", [
    "rm -rf /", "sudo rm -rf / --no-preserve-root", "rm -rf ~", "mkfs.ext4 /dev/sda1",
    "dd if=/dev/zero of=/dev/sda", "echo x > /dev/sda", ":(){ :|:& };:",
    "rm -Rf /", "rm -r -f /", "rm --recursive --force /", "rm -rf /*", "sudo rm -rf / ",
    "rm -rf --no-preserve-root /", "rm -fr $HOME", ":(){ :|: & };:", "bomb() { bomb | bomb & }; bomb",
])
def test_dangerous_commands(command):
    assert is_dangerous_command(command)


@pytest.mark.parametrize("command", [
    "rm -rf build/", "rm -r /tmp/scratch", "rm -f /tmp/x.log", "ls -la /", "pytest -q", "echo done > out.txt",
])
def test_ordinary_commands(command):
    assert not is_dangerous_command(command)


def test_risk_levels():
    assert assess_risk_level("delete", "package.json") == "critical"
    assert assess_risk_level("edit", ".env") == "critical"
    assert assess_risk_level("delete", "src/a.py") == "high"
    assert assess_risk_level("bash", "rm -rf /") == "critical"
    assert assess_risk_level("bash", "rm --recursive --force /") == "critical"
    assert assess_risk_level("edit", "src/a.py") == "medium"
    assert assess_risk_level("bash", "pytest") == "medium"
    assert assess_risk_level("create", "package.json") == "low"
    assert assess_risk_level("read", "src/a.py") == "low"


def test_confidence_scores():
    best = calculate_confidence("edit", has_read_file=True, has_validated=True)
    assert best.score == 7
    assert best.recommendation == "proceed"

    plain = calculate_confidence("edit", has_read_file=True)
    assert plain.score == 5
    assert plain.recommendation == "caution"

    unread = calculate_confidence("edit", has_validated=True)
    assert unread.score == 3
    assert unread.recommendation == "abort"
    assert "target was not read first" in unread.factors

    create = calculate_confidence("create")
    assert create.score == 5

    errors = calculate_confidence("edit", has_read_file=True, error_count=9)
    assert errors.score == 0


def test_operation_mapping():
    assert operation_for_tool_call(ToolCall("1", "delete_file", {"path": "a"})) == {"operation": "delete", "target": "a"}
    assert operation_for_tool_call(ToolCall("2", "run_in_terminal", {"command": "npm start"})) == {
        "operation": "bash", "target": "npm start",
    }


class TestGate:
    @pytest.mark.asyncio
    async def test_without_handler(self):
        gate = CheckpointGate()
        low = CheckpointRequest("edit", "medium", "edit a.py", "a.py")
        critical = CheckpointRequest("delete", "critical", "delete .env", ".env")

        assert (await gate.request_checkpoint(low)).approved
        denied = await gate.request_checkpoint(critical)
        assert not denied.approved
        assert "no checkpoint handler is configured" in denied.reason

    @pytest.mark.asyncio
    async def test_handler_decides_everything(self):
        gate = CheckpointGate()
        gate.set_handler(lambda req: CheckpointDecision(approved=req.risk_level == "critical"))
        assert gate.has_handler

        assert (await gate.request_checkpoint(CheckpointRequest("delete", "critical", "x"))).approved
        assert not (await gate.request_checkpoint(CheckpointRequest("edit", "low", "x"))).approved

        gate.clear_handler()
        assert not gate.has_handler

    @pytest.mark.asyncio
    async def test_async_handler(self):
        async def handler(req):
            return CheckpointDecision(approved=False, reason="later")

        decision = await CheckpointGate(handler).request_checkpoint(CheckpointRequest("bash", "medium", "x"))
        assert decision.reason == "later"

    def test_request_for_tool_call(self):
        gate = CheckpointGate()
        request = gate.checkpoint_for_tool_call(
            ToolCall("b1", "bash", {"command": "rm -rf /"}),
            Evidence(has_read_file=False, error_count=1),
        )
        assert request.operation == "bash"
        assert request.risk_level == "critical"
        assert request.file_path is None
        assert request.details["command"] == "rm -rf /"
        assert request.details["recommendation"] == "abort"
        assert request.to_dict()["details"]["tool_call_id"] == "b1"

        edit = gate.checkpoint_for_tool_call(ToolCall("e1", "edit", {"path": "src/a.py"}),
                                             Evidence(has_read_file=True))
        assert edit.file_path == "src/a.py"
        assert edit.risk_level == "medium"
        assert edit.details["confidence"] == 5
