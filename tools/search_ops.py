"""Search tools: glob and grep."""

import os
import re
import logging
import pathlib
from typing import List, Optional

from backend import Backend
from tools._common import ToolExecutionError
from tools.gitignore import load_gitignore, is_ignored, is_binary_name, walk_files
from config import tool_config

logger = logging.getLogger(__name__)


def glob_find(b: Backend, pattern: str) -> str:
    """Find files matching a glob pattern, respecting .gitignore."""
    if not (pattern or "").strip():
        raise ToolExecutionError("pattern is required")
    wd = b.working_directory
    gi = load_gitignore(wd)

    try:
        raw_matches = b.glob_find(pattern)
    except (ValueError, NotImplementedError) as e:
        raise ToolExecutionError(f"Invalid glob pattern {pattern!r}: {e}") from e

    matches: List[str] = []
    for m in raw_matches:
        parts = pathlib.PurePosixPath(m).parts
        rel = ""
        skipped = False
        for i, part in enumerate(parts):
            rel = f"{rel}/{part}" if rel else part
            if is_ignored(rel, part, i < len(parts) - 1, gi):
                skipped = True
                break
        if not skipped:
            matches.append(m)

    if not matches:
        return "No files matched the pattern."
    return "\n".join(sorted(matches))


def grep_search(b: Backend, pattern: str, path: Optional[str] = None) -> str:
    """Search file contents for a regex. Returns "{file}:{line}: {content}" lines."""
    try:
        regex = re.compile(pattern)
    except re.error as e:
        raise ToolExecutionError(f"Invalid regex pattern: {pattern}") from e

    wd = b.working_directory
    search_root = b.resolve_path(path) if path else wd

    if os.path.isfile(search_root):
        files = [search_root]
    elif os.path.isdir(search_root):
        files = (f for f in walk_files(wd, search_root) if not is_binary_name(f))
    else:
        return "No matches found."

    max_matches = tool_config.grep_max_matches
    results: List[str] = []
    for file_path in files:
        if len(results) >= max_matches:
            break
        try:
            with open(file_path, "r", encoding="utf-8") as f:
                lines = f.read().split("\n")
        except (OSError, UnicodeDecodeError):
            # binary or unreadable
            continue
        rel = os.path.relpath(file_path, wd).replace(os.sep, "/")
        for i, line in enumerate(lines):
            if regex.search(line):
                results.append(f"{rel}:{i + 1}: {line.strip()}")
                if len(results) >= max_matches:
                    break

    if not results:
        return "No matches found."
    return "\n".join(results)
