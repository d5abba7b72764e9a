"""
Backend abstraction for file operations used by the tools.
The agent has full filesystem access: relative paths resolve against the
project directory, absolute paths pass through unchanged.
"""

import logging
import os
import pathlib
from abc import ABC, abstractmethod
from typing import List

logger = logging.getLogger(__name__)


class Backend(ABC):
    """Abstract backend for file system operations."""

    @property
    @abstractmethod
    def working_directory(self) -> str:
        """Return the project directory path."""

    @abstractmethod
    def read_file(self, path: str) -> str:
        """Read file content as text."""

    @abstractmethod
    def write_file(self, path: str, content: str) -> None:
        """Write content to a file (create dirs as needed)."""

    @abstractmethod
    def is_file(self, path: str) -> bool:
        """Check if path is a regular file."""

    @abstractmethod
    def glob_find(self, pattern: str) -> List[str]:
        """Find files matching a glob pattern. Returns project-relative paths."""

    def resolve_path(self, path: str) -> str:
        """Resolve a path relative to the working directory."""
        path = os.path.expanduser(path)
        if os.path.isabs(path):
            return path
        return os.path.normpath(os.path.join(self.working_directory, path))


# ============================================================
# Local Backend
# ============================================================

class LocalBackend(Backend):
    """Backend that operates on the local filesystem."""

    def __init__(self, working_directory: str = "."):
        self._working_directory = os.path.abspath(os.path.expanduser(working_directory))

    @property
    def working_directory(self) -> str:
        return self._working_directory

    def read_file(self, path: str) -> str:
        full = self.resolve_path(path)
        with open(full, "r", encoding="utf-8", newline="") as f:
            return f.read()

    def write_file(self, path: str, content: str) -> None:
        full = self.resolve_path(path)
        parent = os.path.dirname(full)
        if parent:
            os.makedirs(parent, exist_ok=True)
        with open(full, "w", encoding="utf-8", newline="") as f:
            f.write(content)

    def is_file(self, path: str) -> bool:
        return os.path.isfile(self.resolve_path(path))

    def glob_find(self, pattern: str) -> List[str]:
        base = pathlib.Path(self._working_directory)
        matches = []
        for p in base.glob(pattern):
            if not p.is_file():
                continue
            matches.append(p.relative_to(base).as_posix())
        return sorted(matches)
