"""
Conversation history for the agent run.

History is an append-only list of typed items; the controller only ever
removes items by truncating back to a recorded length (rollback). Items are
converted to provider-neutral chat messages right before each model call,
and the context window is enforced on those messages, never on the history
itself.
"""

import json
import logging
import math
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from .steps import ToolCall

logger = logging.getLogger(__name__)

# Fraction of the model's context window the outgoing messages may use
CONTEXT_SAFETY_RATIO = 0.8

EMPTY_TOOL_OUTPUT = "Tool executed successfully with no output."


def _new_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class UserMessageItem:
    content: str
    id: str = field(default_factory=_new_id)


@dataclass(frozen=True)
class AssistantMessageItem:
    content: str
    id: str = field(default_factory=_new_id)


@dataclass(frozen=True)
class ToolRequestItem:
    calls: Tuple[ToolCall, ...]
    id: str = field(default_factory=_new_id)


@dataclass(frozen=True)
class ToolResultItem:
    tool_call_id: str
    tool_name: str
    output: str
    id: str = field(default_factory=_new_id)


@dataclass(frozen=True)
class ToolFailureItem:
    tool_call_id: str
    tool_name: str
    error: str
    id: str = field(default_factory=_new_id)


HistoryItem = Union[UserMessageItem, AssistantMessageItem, ToolRequestItem, ToolResultItem, ToolFailureItem]


def item_to_message(item: HistoryItem) -> Dict[str, Any]:
    if isinstance(item, UserMessageItem):
        return {"role": "user", "content": item.content}
    if isinstance(item, AssistantMessageItem):
        return {"role": "assistant", "content": item.content}
    if isinstance(item, ToolRequestItem):
        return {
            "role": "assistant",
            "content": "",
            "tool_calls": [call.to_dict() for call in item.calls],
        }
    if isinstance(item, ToolResultItem):
        return {
            "role": "tool",
            "tool_call_id": item.tool_call_id,
            "tool_name": item.tool_name,
            "content": item.output or EMPTY_TOOL_OUTPUT,
        }
    if isinstance(item, ToolFailureItem):
        return {
            "role": "tool",
            "tool_call_id": item.tool_call_id,
            "tool_name": item.tool_name,
            "content": f"Error: {item.error}",
            "is_error": True,
        }
    raise TypeError(f"Unknown history item: {type(item).__name__}")


def to_messages(items: Sequence[HistoryItem], system_prompt: Optional[str] = None) -> List[Dict[str, Any]]:
    """Convert history into chat messages, optionally led by a system message."""
    messages: List[Dict[str, Any]] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    messages.extend(item_to_message(item) for item in items)
    return messages


def item_to_dict(item: HistoryItem) -> Dict[str, Any]:
    """JSON-friendly view of a history item"""
    if isinstance(item, UserMessageItem):
        return {"id": item.id, "type": "user", "content": item.content}
    if isinstance(item, AssistantMessageItem):
        return {"id": item.id, "type": "assistant", "content": item.content}
    if isinstance(item, ToolRequestItem):
        return {"id": item.id, "type": "tool-request", "calls": [c.to_dict() for c in item.calls]}
    if isinstance(item, ToolResultItem):
        return {"id": item.id, "type": "tool-result", "tool_call_id": item.tool_call_id,
                "tool_name": item.tool_name, "output": item.output}
    if isinstance(item, ToolFailureItem):
        return {"id": item.id, "type": "tool-failure", "tool_call_id": item.tool_call_id,
                "tool_name": item.tool_name, "error": item.error}
    raise TypeError(f"Unknown history item: {type(item).__name__}")


# ------------------------------------------------------------------
# Token estimation
# ------------------------------------------------------------------

def estimate_tokens(text: str) -> int:
    """Rough token count: one token per four characters."""
    return math.ceil(len(text) / 4)


def message_text(msg: Dict[str, Any]) -> str:
    content = msg.get("content", "")
    text = content if isinstance(content, str) else json.dumps(content)
    if msg.get("tool_calls"):
        text += json.dumps(msg["tool_calls"])
    return text


def message_tokens(msg: Dict[str, Any]) -> int:
    return estimate_tokens(message_text(msg))


def total_tokens(messages: Sequence[Dict[str, Any]]) -> int:
    return sum(message_tokens(m) for m in messages)


def apply_context_window(messages: List[Dict[str, Any]], context_size: int) -> List[Dict[str, Any]]:
    """Drop the oldest messages until the estimate fits 80% of `context_size`.

    A leading system message is always kept, and at least one other message
    survives even if it alone exceeds the limit.
    """
    limit = int(context_size * CONTEXT_SAFETY_RATIO)
    if total_tokens(messages) <= limit:
        return messages

    start = 1 if messages and messages[0].get("role") == "system" else 0
    trimmed = list(messages)
    dropped = 0
    while len(trimmed) > start + 1 and total_tokens(trimmed) > limit:
        trimmed.pop(start)
        dropped += 1
    logger.info(f"Context window: dropped {dropped} oldest messages (limit {limit} tokens)")
    return trimmed
