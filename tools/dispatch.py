"""Tool execution dispatch."""

import inspect
import os
import logging
from typing import Any, Dict, List, Optional

from agent.cancellation import CancellationToken
from agent.errors import AgentError, RunInterruptedError, ToolError, ValidationError
from agent.services import AgentServices
from tools._common import ToolContext
from tools.schemas import SAFE_TOOLS, TOOL_DEFINITIONS, TOOL_IMPLEMENTATIONS
from tools.terminal import TerminalSessions

logger = logging.getLogger(__name__)


class ToolExecutor:
    """Runs tools by name against a working directory.

    Returns the tool's output string or raises ToolError. RunInterruptedError
    passes through untouched so the controller can interrupt the run.
    """

    def __init__(
        self,
        services: AgentServices,
        working_directory: str = ".",
        sessions: Optional[TerminalSessions] = None,
        command_timeout: int = 30,
        validate_command: str = "",
    ):
        self.services = services
        self.working_directory = os.path.abspath(working_directory)
        self.sessions = sessions or TerminalSessions()
        self.command_timeout = command_timeout
        self.validate_command = validate_command
        self.safe_tools = SAFE_TOOLS
        self.tool_names = [t["name"] for t in TOOL_DEFINITIONS]

    @classmethod
    def from_config(cls, services: AgentServices, config, working_directory: Optional[str] = None) -> "ToolExecutor":
        return cls(
            services,
            working_directory or config.working_directory,
            command_timeout=config.command_timeout,
            validate_command=config.validate_command,
        )

    def _context(self, cancel_token: Optional[CancellationToken]) -> ToolContext:
        return ToolContext(
            working_directory=self.working_directory,
            file_tracker=self.services.file_tracker,
            sessions=self.sessions,
            cancel_token=cancel_token,
            command_timeout=self.command_timeout,
            validate_command=self.validate_command,
        )

    def resolve_path(self, path: str) -> str:
        return self._context(None).resolve_path(path)

    def definitions(self, active_tools: Optional[List[str]] = None) -> List[Dict[str, Any]]:
        """Schemas for the model, limited to `active_tools` when given."""
        if active_tools is None:
            return list(TOOL_DEFINITIONS)
        allowed = set(active_tools)
        return [t for t in TOOL_DEFINITIONS if t["name"] in allowed]

    async def execute(
        self,
        name: str,
        arguments: Dict[str, Any],
        cancel_token: Optional[CancellationToken] = None,
    ) -> str:
        impl = TOOL_IMPLEMENTATIONS.get(name)
        if impl is None:
            raise ToolError(f"Unknown tool: {name}")
        ctx = self._context(cancel_token)
        try:
            result = impl(ctx, **(arguments or {}))
            if inspect.isawaitable(result):
                result = await result
            return result
        except (ToolError, RunInterruptedError):
            raise
        except ValidationError as e:
            raise ToolError(
                e.message + "\n" + "\n".join(f"- {v}" for v in e.violations),
                code="validation_failed",
                details={"violations": e.violations},
            ) from e
        except AgentError:
            raise
        except TypeError as e:
            raise ToolError(f"Invalid arguments for {name}: {e}") from e
        except OSError as e:
            raise ToolError(f"{name} failed: {e}") from e
        except Exception as e:
            logger.exception(f"Tool execution error: {name}")
            raise ToolError(f"Tool error: {e}") from e
