"""File operation tools: read, write, edit."""

import difflib
import logging
from typing import Optional

from backend import Backend
from tools._common import ToolExecutionError, EditNotFoundError, EditNotUniqueError

logger = logging.getLogger(__name__)


def _require_path(path: str, name: str = "file_path") -> None:
    if not (path or "").strip():
        raise ToolExecutionError(f"{name} is required")


def _read_existing(b: Backend, path: str) -> str:
    if not b.is_file(path):
        raise ToolExecutionError(f"File not found: {path}")
    try:
        return b.read_file(path)
    except UnicodeDecodeError as e:
        raise ToolExecutionError(f"File is not valid UTF-8 text: {path}") from e
    except OSError as e:
        raise ToolExecutionError(f"Could not read {path}: {e.strerror or e}") from e


def compact_diff(old_content: str, new_content: str, path: str, max_lines: int = 60) -> str:
    """Compact unified diff, used in log output for edits."""
    old_lines = old_content.splitlines(keepends=True)
    new_lines = new_content.splitlines(keepends=True)
    diff = list(difflib.unified_diff(old_lines, new_lines, fromfile=path, tofile=path, lineterm=""))
    if len(diff) > max_lines:
        diff = diff[:max_lines] + [f"... ({len(diff) - max_lines} more diff lines)"]
    return "\n".join(line.rstrip() for line in diff)


def read_file(b: Backend, file_path: str, offset: Optional[int] = None,
              limit: Optional[int] = None) -> str:
    """Return file content with 1-based line numbers ("{n}\\t{line}")."""
    _require_path(file_path)
    content = _read_existing(b, file_path)
    lines = content.split("\n")

    start = max((offset or 1) - 1, 0)
    selected = lines[start:]
    if limit is not None:
        selected = selected[:max(limit, 0)]

    return "\n".join(f"{start + i + 1}\t{line}" for i, line in enumerate(selected))


def write_file(b: Backend, file_path: str, content: str) -> str:
    """Create or overwrite a file, creating parent directories."""
    _require_path(file_path)
    try:
        b.write_file(file_path, content)
    except OSError as e:
        raise ToolExecutionError(f"Could not write {file_path}: {e.strerror or e}") from e
    line_count = len(content.split("\n"))
    logger.debug(f"write: {b.resolve_path(file_path)} ({line_count} lines)")
    return f"Wrote {line_count} lines to {file_path}"


def edit_file(b: Backend, file_path: str, old_string: str, new_string: str) -> str:
    """Replace the single occurrence of old_string.

    Zero occurrences raises EditNotFoundError, two or more raises
    EditNotUniqueError; the file is left untouched in both cases.
    """
    _require_path(file_path)
    if old_string == "":
        raise EditNotFoundError("old_string must not be empty.")
    content = _read_existing(b, file_path)

    count = content.count(old_string)
    if count == 0:
        raise EditNotFoundError(
            f"old_string not found in {file_path}. Make sure it matches the file content "
            f"exactly, including whitespace and indentation."
        )
    if count > 1:
        raise EditNotUniqueError(
            f"old_string found {count} times in {file_path}. It must be unique. "
            f"Provide more surrounding context to make it unique.",
            occurrences=count,
        )

    updated = content.replace(old_string, new_string, 1)
    try:
        b.write_file(file_path, updated)
    except OSError as e:
        raise ToolExecutionError(f"Could not write {file_path}: {e.strerror or e}") from e
    logger.debug(f"edit: {file_path}\n{compact_diff(content, updated, file_path)}")
    return f"Edited {file_path}: replaced 1 occurrence"
