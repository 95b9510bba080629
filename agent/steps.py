"""
Per-step records produced by the agent loop.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass(frozen=True)
class ToolCall:
    id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "arguments": dict(self.arguments)}


@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class ToolOutcome:
    """What a tool call produced, as seen by the stop conditions"""
    tool_call_id: str
    tool_name: str
    output: str = ""
    is_error: bool = False


@dataclass
class Step:
    text: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)
    tool_results: List[ToolOutcome] = field(default_factory=list)
    usage: Usage = field(default_factory=Usage)


@dataclass
class ModelResponse:
    """One model turn as returned by an LLM provider"""
    text: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)
    usage: Usage = field(default_factory=Usage)
    stop_reason: str = ""
