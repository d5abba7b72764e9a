""".gitignore-aware filtering helpers for glob and grep."""

import os
import logging
from typing import Dict, Iterator, Optional, Set, Tuple

import pathspec

logger = logging.getLogger(__name__)

_ALWAYS_SKIP_DIRS: Set[str] = {
    ".git", "node_modules", "dist", "build",
    "__pycache__", ".venv", "venv", ".mypy_cache", ".pytest_cache", ".tox",
    ".next", ".nuxt", ".cache", "coverage", "htmlcov",
}

# Binary/media types grep never opens
_BINARY_EXTENSIONS: Set[str] = {
    ".png", ".jpg", ".jpeg", ".gif", ".ico", ".webp",
    ".woff", ".woff2", ".ttf", ".eot",
    ".mp4", ".webm", ".zip", ".tar", ".gz",
    ".pyc", ".pyo", ".so", ".dylib", ".o", ".a", ".class",
}

_gitignore_cache: Dict[str, Tuple[Optional[float], Optional[pathspec.PathSpec]]] = {}


def load_gitignore(root: str) -> Optional[pathspec.PathSpec]:
    """Load and cache .gitignore patterns for a project root.

    The cached spec is reused until the file's mtime changes. Returns a
    PathSpec matcher or None if no .gitignore exists.
    """
    gitignore_path = os.path.join(root, ".gitignore")
    try:
        mtime: Optional[float] = os.path.getmtime(gitignore_path)
    except OSError:
        mtime = None

    cached = _gitignore_cache.get(root)
    if cached is not None and cached[0] == mtime:
        return cached[1]

    spec = None
    if mtime is not None:
        try:
            with open(gitignore_path, "r", encoding="utf-8", errors="replace") as f:
                spec = pathspec.GitIgnoreSpec.from_lines(f)
        except OSError as e:
            logger.debug(f"Failed to read .gitignore: {e}")

    _gitignore_cache[root] = (mtime, spec)
    return spec


def is_ignored(rel_path: str, name: str, is_dir: bool,
               gitignore_spec: Optional[pathspec.PathSpec]) -> bool:
    """Check if a path should be ignored based on .gitignore + hardcoded skips."""
    if name.startswith("."):
        return True
    if is_dir and name in _ALWAYS_SKIP_DIRS:
        return True
    if gitignore_spec:
        check_path = rel_path + "/" if is_dir else rel_path
        if gitignore_spec.match_file(check_path):
            return True
    return False


def is_binary_name(name: str) -> bool:
    _, ext = os.path.splitext(name)
    return ext.lower() in _BINARY_EXTENSIONS


def walk_files(root: str, start: Optional[str] = None) -> Iterator[str]:
    """Yield absolute paths of non-ignored files under ``start`` (default: root).

    Ignore rules are evaluated relative to ``root``.
    """
    gi = load_gitignore(root)
    start = start or root
    for dirpath, dirnames, filenames in os.walk(start):
        rel_dir = os.path.relpath(dirpath, root)
        rel_dir = "" if rel_dir == "." else rel_dir.replace(os.sep, "/")
        dirnames[:] = sorted(
            d for d in dirnames
            if not is_ignored(f"{rel_dir}/{d}" if rel_dir else d, d, True, gi)
        )
        for name in sorted(filenames):
            rel = f"{rel_dir}/{name}" if rel_dir else name
            if is_ignored(rel, name, False, gi):
                continue
            yield os.path.join(dirpath, name)
