"""Shared types for the tools package."""

import os
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from agent.cancellation import CancellationToken
from agent.file_tracker import FileTracker

if TYPE_CHECKING:
    from tools.terminal import TerminalSessions


@dataclass
class ToolContext:
    """Everything a tool implementation may touch"""
    working_directory: str
    file_tracker: FileTracker
    sessions: "TerminalSessions"
    cancel_token: Optional[CancellationToken] = None
    command_timeout: int = 30
    validate_command: str = ""

    def resolve_path(self, path: str) -> str:
        expanded = os.path.expanduser(path)
        if os.path.isabs(expanded):
            return os.path.normpath(expanded)
        return os.path.normpath(os.path.join(self.working_directory, expanded))


def truncate_output(output: str, max_chars: int = 20000) -> str:
    """Keep head and tail of very long command output."""
    if len(output) <= max_chars:
        return output
    lines_out = output.split("\n")
    if len(lines_out) > 200:
        return "\n".join(lines_out[:100]) + f"\n\n... [{len(lines_out) - 150} lines truncated] ...\n\n" + "\n".join(lines_out[-50:])
    return output[:10000] + "\n\n... [truncated] ...\n\n" + output[-5000:]
