"""File operation tools: read, create, edit, delete.

Every mutation goes through the shared FileTracker so edits of files that
changed on disk since the agent last read them are refused.
"""

import difflib
import logging
import os
from typing import List, Optional

from agent.errors import ToolError
from tools._common import ToolContext

logger = logging.getLogger(__name__)

_MAX_FULL_READ_LINES = 500


def _require_path(path: str, name: str = "path") -> None:
    if not (path or "").strip():
        raise ToolError(f"{name} is required")


def _extract_structure(lines: List[str]) -> str:
    """Extract a structural summary from source code: imports, classes, functions."""
    structure = []
    for i, line in enumerate(lines):
        stripped = line.strip()
        if stripped.startswith(("import ", "from ")) and i < 50:
            structure.append(f"{i+1:6}|{line.rstrip()}")
        elif stripped.startswith(("class ", "def ", "async def ", "function ", "export ")):
            structure.append(f"{i+1:6}|{line.rstrip()}")
    return "\n".join(structure)


def _number_lines(content: str, path: str, offset: Optional[int], limit: Optional[int]) -> str:
    lines = content.splitlines(keepends=True)
    total_lines = len(lines)

    if offset is not None or limit is not None:
        start = max((offset or 1) - 1, 0)
        end = start + (limit or total_lines)
        selected = lines[start:end]
        line_start = start + 1
        numbered = [f"{line_start + i:6}|{line.rstrip()}" for i, line in enumerate(selected)]
        header = f"[{total_lines} lines total] (showing lines {line_start}-{line_start + len(selected) - 1})"
        return header + "\n" + "\n".join(numbered)

    if total_lines <= _MAX_FULL_READ_LINES:
        numbered = [f"{i+1:6}|{line.rstrip()}" for i, line in enumerate(lines)]
        return f"[{total_lines} lines total]\n" + "\n".join(numbered)

    # Large file: structural overview + head + tail
    head_n, tail_n = 80, 40
    omitted = total_lines - head_n - tail_n
    head = [f"{i+1:6}|{lines[i].rstrip()}" for i in range(head_n)]
    tail = [f"{total_lines - tail_n + i + 1:6}|{lines[total_lines - tail_n + i].rstrip()}" for i in range(tail_n)]
    parts = [
        f"[{total_lines} lines total, showing overview + head + tail of {path}]",
        "[Use offset/limit to read specific sections]", "",
        "-- structure --", _extract_structure(lines), "",
        f"-- first {head_n} lines --", "\n".join(head),
        f"\n  ... ({omitted} lines omitted, use offset={head_n + 1} limit=N to read more) ...\n",
        f"-- last {tail_n} lines --", "\n".join(tail),
    ]
    return "\n".join(parts)


def _compact_diff(old_content: str, new_content: str, path: str, max_lines: int = 60) -> str:
    """Compact unified diff of an edit."""
    old_lines = old_content.splitlines(keepends=True)
    new_lines = new_content.splitlines(keepends=True)
    diff = list(difflib.unified_diff(old_lines, new_lines, fromfile=path, tofile=path, lineterm=""))
    if not diff:
        return ""
    if len(diff) > max_lines:
        diff = diff[:max_lines] + [f"... ({len(diff) - max_lines} more diff lines)"]
    return "\n".join(line.rstrip() for line in diff)


def read_file(ctx: ToolContext, path: str, offset: Optional[int] = None, limit: Optional[int] = None) -> str:
    """Read a file and return line-numbered content."""
    _require_path(path)
    content = ctx.file_tracker.read(ctx.resolve_path(path))
    return _number_lines(content, path, offset, limit)


def read_multiple_files(ctx: ToolContext, paths: List[str]) -> str:
    """Read several files; a failure on one file is reported inline."""
    if not paths:
        raise ToolError("paths is required")
    sections = []
    for path in paths:
        try:
            body = read_file(ctx, path)
        except ToolError as e:
            body = f"Error: {e}"
        sections.append(f"=== {path} ===\n{body}")
    return "\n\n".join(sections)


def create_file(ctx: ToolContext, path: str, content: str) -> str:
    """Create a new file. Fails if the file already exists."""
    _require_path(path)
    full_path = ctx.resolve_path(path)
    ctx.file_tracker.assert_can_create(full_path)
    ctx.file_tracker.write(full_path, content)

    line_count = content.count("\n") + (1 if content and not content.endswith("\n") else 0)
    preview_lines = content.splitlines()[:30]
    diff_text = f"--- /dev/null\n+++ {path}\n@@ -0,0 +1,{len(preview_lines)} @@\n"
    diff_text += "\n".join(f"+{l}" for l in preview_lines)
    if len(content.splitlines()) > 30:
        diff_text += f"\n+... ({len(content.splitlines()) - 30} more lines)"
    return f"Created {line_count} lines in {path}\n{diff_text}"


def edit_file(ctx: ToolContext, path: str, old_string: str, new_string: str, replace_all: bool = False) -> str:
    """Replace an exact string in a file. By default must match exactly one location."""
    _require_path(path)
    full_path = ctx.resolve_path(path)
    ctx.file_tracker.assert_can_edit(full_path)
    content = ctx.file_tracker.read(full_path)

    count = content.count(old_string) if old_string else 0
    if count == 0:
        raise ToolError(
            f"old_string not found in {path}. Ensure it matches exactly, including whitespace "
            f"and indentation. Re-read the file to see current content."
        )
    if count > 1 and not replace_all:
        raise ToolError(
            f"Found {count} occurrences of old_string in {path}. Add more surrounding context "
            f"to make it unique, or set replace_all=true to replace all {count} occurrences."
        )
    if replace_all:
        new_content = content.replace(old_string, new_string)
        replaced = count
    else:
        new_content = content.replace(old_string, new_string, 1)
        replaced = 1
    ctx.file_tracker.write(full_path, new_content)

    diff_text = _compact_diff(content, new_content, path)
    summary = f"Applied edit to {path}" + (f" ({replaced} replacements)" if replaced > 1 else "")
    return f"{summary}\n{diff_text}" if diff_text else summary


def delete_file(ctx: ToolContext, path: str) -> str:
    _require_path(path)
    full_path = ctx.resolve_path(path)
    ctx.file_tracker.assert_can_edit(full_path)
    if os.path.isdir(full_path):
        raise ToolError(f"Path is a directory, not a file: {path}")
    os.remove(full_path)
    ctx.file_tracker.forget(full_path)
    logger.info(f"Deleted {full_path}")
    return f"Deleted {path}"
