"""
Shared mutable state for the web server.

All global variables that are accessed across multiple route modules live here.
Import from web.state to read/write them.
"""

import asyncio
import logging
from typing import Optional, Set

from agent import AgentRunController

logger = logging.getLogger(__name__)

# ============================================================
# Globals
# ============================================================

_controller: Optional[AgentRunController] = None

# Background tasks driving runs; kept referenced until they finish
_tasks: Set["asyncio.Task"] = set()


def get_controller() -> AgentRunController:
    if _controller is None:
        raise RuntimeError("Agent controller is not configured")
    return _controller


def track_task(task: "asyncio.Task") -> "asyncio.Task":
    _tasks.add(task)
    task.add_done_callback(_tasks.discard)
    return task
