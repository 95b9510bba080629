"""Tool schema definitions (Bedrock/Anthropic Messages API) and dispatch maps."""

from typing import Any, Callable, Dict, List

from tools.file_ops import read_file, read_multiple_files, create_file, edit_file, delete_file
from tools.search_ops import list_directory, grep_search
from tools.terminal import bash, run_in_terminal, get_terminal_output, validate


TOOL_DEFINITIONS: List[Dict[str, Any]] = [
    {
        "name": "read_file",
        "description": "Read a file with line numbers. Large files show a structural overview plus head and tail; use offset/limit to read specific sections. Reading a file is required before editing it.",
        "input_schema": {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "File path (relative to working directory)"},
                "offset": {"type": "integer", "description": "1-based line to start from"},
                "limit": {"type": "integer", "description": "Number of lines to read"},
            },
            "required": ["path"],
        },
    },
    {
        "name": "read_multiple_files",
        "description": "Read several files at once. A file that cannot be read is reported inline.",
        "input_schema": {
            "type": "object",
            "properties": {
                "paths": {"type": "array", "items": {"type": "string"}, "description": "File paths"},
            },
            "required": ["paths"],
        },
    },
    {
        "name": "list",
        "description": "List files and directories at a path, respecting .gitignore.",
        "input_schema": {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Directory (default: working directory)"},
            },
        },
    },
    {
        "name": "grep_search",
        "description": "Search file contents with a regular expression. Returns path:line:text matches, respecting .gitignore.",
        "input_schema": {
            "type": "object",
            "properties": {
                "pattern": {"type": "string", "description": "Python regular expression"},
                "path": {"type": "string", "description": "File or directory to search (default: working directory)"},
                "include": {"type": "string", "description": "File name glob, e.g. '*.py'"},
            },
            "required": ["pattern"],
        },
    },
    {
        "name": "create",
        "description": "Create a NEW file. Fails if the file already exists; use 'edit' for existing files.",
        "input_schema": {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "File path (relative to working directory)"},
                "content": {"type": "string", "description": "Full file content"},
            },
            "required": ["path", "content"],
        },
    },
    {
        "name": "edit",
        "description": "Replace an exact string in an existing file. old_string must match exactly once unless replace_all is set. Fails if the file changed on disk since you last read it.",
        "input_schema": {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "File path (relative to working directory)"},
                "old_string": {"type": "string", "description": "Exact text to replace"},
                "new_string": {"type": "string", "description": "Replacement text"},
                "replace_all": {"type": "boolean", "description": "Replace every occurrence"},
            },
            "required": ["path", "old_string", "new_string"],
        },
    },
    {
        "name": "delete_file",
        "description": "Delete a file. Always requires a checkpoint approval.",
        "input_schema": {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "File path (relative to working directory)"},
            },
            "required": ["path"],
        },
    },
    {
        "name": "bash",
        "description": "Run a shell command in the working directory and wait for it. Non-zero exit codes are reported as failures.",
        "input_schema": {
            "type": "object",
            "properties": {
                "command": {"type": "string", "description": "Shell command"},
                "timeout": {"type": "integer", "description": "Timeout in seconds (default: 30)"},
            },
            "required": ["command"],
        },
    },
    {
        "name": "run_in_terminal",
        "description": "Start a long-running command (dev server, watcher) in a background terminal session. Returns a session id for get_terminal_output.",
        "input_schema": {
            "type": "object",
            "properties": {
                "command": {"type": "string", "description": "Shell command"},
                "explanation": {"type": "string", "description": "One sentence on why this is needed"},
            },
            "required": ["command"],
        },
    },
    {
        "name": "get_terminal_output",
        "description": "Get the output of a background terminal session. Finished sessions are closed after their output is returned.",
        "input_schema": {
            "type": "object",
            "properties": {
                "id": {"type": "string", "description": "Session id, e.g. 'terminal-1'"},
            },
            "required": ["id"],
        },
    },
    {
        "name": "validate",
        "description": "Run the project's configured checks (tests, linters, type checkers). Succeeds only if every check exits 0. Takes no arguments; use bash for any other command.",
        "input_schema": {
            "type": "object",
            "properties": {},
        },
    },
]


TOOL_IMPLEMENTATIONS: Dict[str, Callable[..., Any]] = {
    "read_file": read_file,
    "read_multiple_files": read_multiple_files,
    "list": list_directory,
    "grep_search": grep_search,
    "create": create_file,
    "edit": edit_file,
    "delete_file": delete_file,
    "bash": bash,
    "run_in_terminal": run_in_terminal,
    "get_terminal_output": get_terminal_output,
    "validate": validate,
}

# Never need approval: read-only tools plus the configured checks
SAFE_TOOLS = frozenset({
    "read_file", "read_multiple_files", "list", "grep_search",
    "get_terminal_output", "validate",
})
