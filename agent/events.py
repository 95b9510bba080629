"""
Agent event and run status types.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Any, Optional


class RunStatus(str, Enum):
    IDLE = "idle"
    RESPONDING = "responding"
    TOOL_REQUEST = "tool-request"
    CHECKPOINT_REQUEST = "checkpoint-request"
    EXECUTING_TOOL = "executing-tool"
    INTERRUPTED = "interrupted"
    ERROR = "error"


@dataclass
class AgentEvent:
    """Event emitted during a run"""
    type: str  # status, history, tool_request, checkpoint_request, stop, error
    content: str = ""
    data: Optional[Dict[str, Any]] = None
