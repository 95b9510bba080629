"""Search and discovery tools: directory listing and regex search."""

import fnmatch
import os
import re
import logging
from typing import Iterator, List, Optional, Tuple

from agent.errors import ToolError
from tools._common import ToolContext
from tools.gitignore import load_gitignore, is_ignored

logger = logging.getLogger(__name__)

_MAX_MATCHES = 100
_MAX_SEARCH_FILE_BYTES = 1_000_000


def _format_size(size: float) -> str:
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024:
            return f"{size:.0f}{unit}" if unit == "B" else f"{size:.1f}{unit}"
        size /= 1024
    return f"{size:.1f}TB"


def _walk_files(ctx: ToolContext, root: str) -> Iterator[Tuple[str, str]]:
    """Yield (absolute path, path relative to the working directory), skipping ignored entries."""
    gi = load_gitignore(ctx.working_directory)
    for dirpath, dirnames, filenames in os.walk(root):
        rel_dir = os.path.relpath(dirpath, ctx.working_directory)
        rel_dir = "" if rel_dir == "." else rel_dir.replace(os.sep, "/")
        dirnames[:] = sorted(
            d for d in dirnames
            if not is_ignored(f"{rel_dir}/{d}" if rel_dir else d, d, True, gi)
        )
        for name in sorted(filenames):
            rel = f"{rel_dir}/{name}" if rel_dir else name
            if is_ignored(rel, name, False, gi):
                continue
            yield os.path.join(dirpath, name), rel


def list_directory(ctx: ToolContext, path: Optional[str] = None) -> str:
    """List files and directories at a path, respecting .gitignore."""
    target = path or "."
    full = ctx.resolve_path(target)
    if not os.path.isdir(full):
        raise ToolError(f"Not a directory: {target}")

    gi = load_gitignore(ctx.working_directory)
    lines = []
    for entry in sorted(os.scandir(full), key=lambda e: e.name):
        rel = os.path.relpath(entry.path, ctx.working_directory).replace(os.sep, "/")
        is_dir = entry.is_dir()
        if is_ignored(rel, entry.name, is_dir, gi):
            continue
        if is_dir:
            lines.append(f"  {entry.name}/")
        else:
            lines.append(f"  {entry.name} ({_format_size(entry.stat().st_size)})")

    return f"{full}/\n" + "\n".join(lines) if lines else f"{full}/ (empty)"


def grep_search(ctx: ToolContext, pattern: str, path: Optional[str] = None,
                include: Optional[str] = None) -> str:
    """Search file contents for a regex. `include` filters file names by suffix or glob."""
    try:
        regex = re.compile(pattern)
    except re.error as e:
        raise ToolError(f"Invalid regex {pattern!r}: {e}")
    root = ctx.resolve_path(path or ".")
    if not os.path.exists(root):
        raise ToolError(f"Path not found: {path}")

    include_re = None
    if include:
        include_re = re.compile(fnmatch.translate(include))

    if os.path.isfile(root):
        files = [(root, os.path.relpath(root, ctx.working_directory))]
    else:
        files = _walk_files(ctx, root)

    matches: List[str] = []
    truncated = 0
    for full, rel in files:
        if include_re and not include_re.match(os.path.basename(full)):
            continue
        try:
            if os.path.getsize(full) > _MAX_SEARCH_FILE_BYTES:
                continue
            with open(full, "r", encoding="utf-8", errors="replace") as f:
                for lineno, line in enumerate(f, 1):
                    if regex.search(line):
                        if len(matches) < _MAX_MATCHES:
                            matches.append(f"{rel}:{lineno}:{line.rstrip()}")
                        else:
                            truncated += 1
        except OSError as e:
            logger.debug(f"Skipping unreadable file {full}: {e}")

    if not matches:
        return "No matches found."
    output = "\n".join(matches)
    if truncated:
        output += f"\n\n... [{truncated} more matches truncated]"
    return output
