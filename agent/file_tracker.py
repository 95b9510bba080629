"""
File staleness tracking.

Remembers the modification time of every file the agent has read or written
so edits can be refused when the file changed on disk since the agent last
looked at it.
"""

import logging
import os
import threading
from collections import OrderedDict
from typing import List

from .errors import FileAlreadyExistsError, FileOutdatedError, ToolError

logger = logging.getLogger(__name__)

MAX_TRACKED_FILES = 1000


class FileTracker:
    def __init__(self, max_tracked: int = MAX_TRACKED_FILES):
        self.max_tracked = max_tracked
        self._mtimes: "OrderedDict[str, int]" = OrderedDict()
        self._lock = threading.Lock()

    @staticmethod
    def _normalize(path: str) -> str:
        return os.path.abspath(os.path.expanduser(path))

    @staticmethod
    def _validate(path: str, must_exist: bool) -> None:
        if os.path.islink(path):
            logger.info(f"Following symlink: {path} -> {os.path.realpath(path)}")
        if os.path.isdir(path):
            raise ToolError(f"Path is a directory, not a file: {path}", details={"path": path})
        if must_exist and not os.path.exists(path):
            raise ToolError(f"File not found: {path}", code="file_not_found", details={"path": path})

    def _record(self, path: str) -> None:
        mtime = os.stat(path).st_mtime_ns
        with self._lock:
            if path in self._mtimes:
                self._mtimes.move_to_end(path)
            else:
                while len(self._mtimes) >= self.max_tracked:
                    evicted, _ = self._mtimes.popitem(last=False)
                    logger.debug(f"File tracker full, evicted {evicted}")
            self._mtimes[path] = mtime

    def read(self, path: str) -> str:
        """Read `path` and record its modification time."""
        path = self._normalize(path)
        self._validate(path, must_exist=True)
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            content = f.read()
        self._record(path)
        return content

    def write(self, path: str, content: str) -> None:
        """Write `path` (creating parent directories) and record the new mtime."""
        path = self._normalize(path)
        self._validate(path, must_exist=False)
        parent = os.path.dirname(path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(content)
        self._record(path)

    def assert_can_create(self, path: str) -> None:
        path = self._normalize(path)
        if os.path.exists(path):
            raise FileAlreadyExistsError(path)

    def assert_can_edit(self, path: str) -> None:
        """Refuse edits of files that changed on disk since they were last observed.

        An untracked file that exists is adopted at its current mtime.
        """
        path = self._normalize(path)
        with self._lock:
            recorded = self._mtimes.get(path)

        if recorded is None:
            if not os.path.exists(path):
                raise FileOutdatedError(
                    f"File not found: {path}. Use the 'create' tool to create it first.", path
                )
            logger.debug(f"Adopting untracked file before edit: {path}")
            self._record(path)
            return

        if not os.path.exists(path):
            with self._lock:
                self._mtimes.pop(path, None)
            raise FileOutdatedError(
                f"File seems to have been deleted since it was last read: {path}", path
            )

        current = os.stat(path).st_mtime_ns
        if current > recorded:
            with self._lock:
                self._mtimes.pop(path, None)
            raise FileOutdatedError(
                f"File was modified since it was last read: {path}. "
                f"Read the file again before editing it.",
                path,
            )

    def forget(self, path: str) -> None:
        with self._lock:
            self._mtimes.pop(self._normalize(path), None)

    def clear(self) -> None:
        with self._lock:
            self._mtimes.clear()

    def is_tracked(self, path: str) -> bool:
        with self._lock:
            return self._normalize(path) in self._mtimes

    def tracked_files(self) -> List[str]:
        """Tracked paths, oldest first."""
        with self._lock:
            return list(self._mtimes)

    @property
    def tracked_count(self) -> int:
        with self._lock:
            return len(self._mtimes)
