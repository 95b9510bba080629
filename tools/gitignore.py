""".gitignore-aware filtering for the listing and search tools."""

import os
import logging
from typing import Dict, Optional, Set, Tuple

import pathspec

logger = logging.getLogger(__name__)

SKIP_DIRS: Set[str] = {
    ".git", "node_modules", "__pycache__", ".venv", "venv", "env",
    ".mypy_cache", ".pytest_cache", ".tox", ".eggs",
    "dist", "build", ".next", ".cache", "coverage", "htmlcov",
}

SKIP_EXTENSIONS: Set[str] = {
    ".pyc", ".pyo", ".so", ".dylib", ".o", ".a", ".class", ".map", ".lock",
}

# root -> (.gitignore mtime_ns or None, compiled spec)
_cache: Dict[str, Tuple[Optional[int], Optional[pathspec.PathSpec]]] = {}


def load_gitignore(working_directory: str) -> Optional[pathspec.PathSpec]:
    """PathSpec for the root .gitignore, or None when there is none.

    Recompiled whenever the file's mtime changes.
    """
    path = os.path.join(working_directory, ".gitignore")
    try:
        mtime: Optional[int] = os.stat(path).st_mtime_ns
    except OSError:
        mtime = None

    cached = _cache.get(working_directory)
    if cached is not None and cached[0] == mtime:
        return cached[1]

    spec = None
    if mtime is not None:
        try:
            with open(path, "r", encoding="utf-8", errors="replace") as f:
                spec = pathspec.PathSpec.from_lines("gitwildmatch", f)
        except OSError as e:
            logger.debug(f"Failed to read {path}: {e}")
    _cache[working_directory] = (mtime, spec)
    return spec


def is_ignored(rel_path: str, name: str, is_dir: bool,
               spec: Optional[pathspec.PathSpec]) -> bool:
    """True for build/VCS directories, binary artifacts and .gitignore matches."""
    if is_dir:
        if name in SKIP_DIRS:
            return True
    elif name.endswith((".min.js", ".min.css")) or os.path.splitext(name)[1] in SKIP_EXTENSIONS:
        return True
    if spec is None:
        return False
    return spec.match_file(rel_path + "/" if is_dir else rel_path)
