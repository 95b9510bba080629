"""
Tool definitions and implementations for the agent.
Each tool has an Anthropic-compatible schema and an implementation taking a
ToolContext; failures are raised as ToolError.
"""

from tools._common import ToolContext  # noqa: F401
from tools.gitignore import load_gitignore, is_ignored  # noqa: F401
from tools.file_ops import (  # noqa: F401
    read_file,
    read_multiple_files,
    create_file,
    edit_file,
    delete_file,
)
from tools.search_ops import list_directory, grep_search  # noqa: F401
from tools.terminal import (  # noqa: F401
    TerminalSession,
    TerminalSessions,
    bash,
    run_in_terminal,
    get_terminal_output,
    validate,
)
from tools.schemas import (  # noqa: F401
    TOOL_DEFINITIONS,
    TOOL_IMPLEMENTATIONS,
    SAFE_TOOLS,
)
from tools.dispatch import ToolExecutor  # noqa: F401
