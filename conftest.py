"""
Shared fixtures: a scripted LLM, services, tool executor and controller
rooted in a temporary working directory.
"""

import asyncio
from typing import Any, Dict, List, Optional

import pytest

from agent import AgentRunController, ModelResponse, ToolCall, Usage, create_services
from agent.prepare_step import StepPreparationPipeline
from config import AgentConfig
from tools import ToolExecutor


class Hang:
    """Queue entry that blocks the model call until it is cancelled."""


class FakeLLM:
    """LLM stand-in that replays queued responses and records every call.

    Queue entries are ModelResponse objects, exceptions to raise, or Hang.
    Once the queue is empty it answers with plain text.
    """

    provider_name = "fake"

    def __init__(self, responses: Optional[List[Any]] = None):
        self.responses: List[Any] = list(responses or [])
        self.calls: List[Dict[str, Any]] = []

    def queue(self, *responses: Any) -> "FakeLLM":
        self.responses.extend(responses)
        return self

    async def step(self, messages, model, tools=None, tool_choice=None) -> ModelResponse:
        self.calls.append({"messages": messages, "model": model, "tools": tools, "tool_choice": tool_choice})
        if not self.responses:
            return text_response("Finished.")
        nxt = self.responses.pop(0)
        if isinstance(nxt, Hang):
            await asyncio.Event().wait()
        if isinstance(nxt, BaseException):
            raise nxt
        return nxt


def text_response(text: str, input_tokens: int = 10, output_tokens: int = 5) -> ModelResponse:
    return ModelResponse(text=text, usage=Usage(input_tokens, output_tokens), stop_reason="end_turn")


def tool_response(*calls: ToolCall, text: str = "", input_tokens: int = 10, output_tokens: int = 5) -> ModelResponse:
    return ModelResponse(text=text, tool_calls=list(calls), usage=Usage(input_tokens, output_tokens),
                         stop_reason="tool_use")


def call(name: str, call_id: Optional[str] = None, **arguments: Any) -> ToolCall:
    return ToolCall(id=call_id or f"call-{name}", name=name, arguments=arguments)


@pytest.fixture
def agent_cfg():
    return AgentConfig(
        max_steps=10,
        max_cost_usd=100.0,
        error_threshold=5,
        lock_timeout_seconds=300,
        settle_delay_seconds=0.0,
        auto_approve_tools=False,
        command_timeout=10,
        validate_command="",
    )


@pytest.fixture
def services(agent_cfg):
    return create_services(agent_cfg)


@pytest.fixture
def workdir(tmp_path):
    (tmp_path / "hello.py").write_text("print('hello')\n")
    return tmp_path


@pytest.fixture
def executor(services, workdir, agent_cfg):
    tools = ToolExecutor.from_config(services, agent_cfg, working_directory=str(workdir))
    yield tools
    tools.sessions.kill_all()


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def events():
    return []


@pytest.fixture
def controller(fake_llm, executor, services, agent_cfg, events):
    return AgentRunController(
        fake_llm,
        executor,
        services,
        config=agent_cfg,
        model="test-model",
        system_prompt="You are a test agent.",
        pipeline=StepPreparationPipeline(),
        on_event=events.append,
        context_window=200000,
    )
