"""
Filesystem API for the workspace UI: folder picker, file tree, and a
small editor surface (read, save, create, upload, delete).

Paths are absolute paths on the server machine. A relative path is
resolved against the server's working directory.
"""

import asyncio
import logging
import os
import shutil
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, File, Form, Query, Request, UploadFile
from fastapi.responses import JSONResponse

from web.state import read_body

logger = logging.getLogger(__name__)

router = APIRouter()

_MAX_FILE_SIZE = 2 * 1024 * 1024

_HIDDEN = {
    "node_modules", ".git", ".next", ".cache", ".Trash", "__pycache__",
    ".tox", ".venv", "dist", ".turbo", ".DS_Store",
}

# extension -> highlight.js language
_EXT_LANG: Dict[str, str] = {
    ".ts": "typescript", ".tsx": "typescript",
    ".js": "javascript", ".jsx": "javascript", ".mjs": "javascript", ".cjs": "javascript",
    ".json": "json", ".md": "markdown",
    ".css": "css", ".scss": "scss", ".html": "html", ".xml": "xml", ".svg": "xml",
    ".yaml": "yaml", ".yml": "yaml", ".toml": "toml", ".ini": "ini",
    ".py": "python", ".rs": "rust", ".go": "go", ".java": "java",
    ".c": "c", ".h": "c", ".cpp": "cpp", ".hpp": "cpp",
    ".sh": "bash", ".bash": "bash", ".zsh": "bash",
    ".sql": "sql", ".graphql": "graphql", ".gql": "graphql",
    ".env": "plaintext", ".txt": "plaintext", ".dockerfile": "dockerfile",
    ".rb": "ruby", ".php": "php", ".swift": "swift", ".kt": "kotlin",
    ".dart": "dart", ".lua": "lua", ".r": "r",
    ".vue": "html", ".svelte": "html",
}

_BINARY_EXTENSIONS = {
    ".png", ".jpg", ".jpeg", ".gif", ".bmp", ".ico", ".webp", ".avif",
    ".mp3", ".mp4", ".wav", ".avi", ".mov", ".mkv",
    ".zip", ".tar", ".gz", ".rar", ".7z",
    ".pdf", ".doc", ".docx", ".xls", ".xlsx",
    ".woff", ".woff2", ".ttf", ".otf", ".eot",
    ".exe", ".dll", ".so", ".dylib",
    ".sqlite", ".db",
}


def _resolve(path: str) -> str:
    return os.path.abspath(os.path.expanduser(path))


def _is_binary(name: str) -> bool:
    return os.path.splitext(name)[1].lower() in _BINARY_EXTENSIONS


def detect_language(name: str) -> str:
    """highlight.js language id for a file name (``plaintext`` when unknown)."""
    lower = name.lower()
    if lower == "dockerfile":
        return "dockerfile"
    if lower == "makefile":
        return "makefile"
    if lower in (".gitignore", ".dockerignore"):
        return "plaintext"
    return _EXT_LANG.get(os.path.splitext(lower)[1], "plaintext")


def _sort_key(entry: Dict[str, Any]):
    return (entry["type"] != "dir", entry["name"].lower())


# ------------------------------------------------------------------
# Directory browsing
# ------------------------------------------------------------------

def _list_dirs(current: str) -> List[str]:
    with os.scandir(current) as it:
        names = [
            e.name for e in it
            if e.is_dir() and not e.name.startswith(".") and e.name not in _HIDDEN
        ]
    return sorted(names, key=str.lower)


def _list_tree(directory: str) -> List[Dict[str, str]]:
    entries = []
    with os.scandir(directory) as it:
        for e in it:
            if e.name.startswith(".") and e.name != ".env":
                continue
            if e.name in _HIDDEN:
                continue
            entries.append({"name": e.name, "type": "dir" if e.is_dir() else "file"})
    return sorted(entries, key=_sort_key)


@router.get("/api/fs/dirs")
async def list_dirs(path: Optional[str] = None):
    """Subdirectories of ``path`` (default: home) for the project folder picker."""
    current = _resolve(path or "~")
    try:
        dirs = await asyncio.to_thread(_list_dirs, current)
    except OSError as e:
        logger.debug(f"list_dirs failed for {current}: {e}")
        return JSONResponse({"error": f"Cannot read directory: {current}"}, status_code=400)
    parent = os.path.dirname(current)
    return {"current": current, "parent": parent if parent != current else None, "dirs": dirs}


@router.get("/api/fs/tree")
async def list_tree(path: Optional[str] = None):
    """One level of a directory: dirs first, then files, case-insensitive."""
    if not path:
        return JSONResponse({"error": "path query parameter required"}, status_code=400)
    directory = _resolve(path)
    try:
        entries = await asyncio.to_thread(_list_tree, directory)
    except OSError as e:
        return JSONResponse({"error": f"Cannot read directory: {e}"}, status_code=400)
    return {"entries": entries}


# ------------------------------------------------------------------
# File read / write
# ------------------------------------------------------------------

def _read_text(full: str) -> str:
    with open(full, "r", encoding="utf-8", errors="replace") as f:
        return f.read()


def _write_text(full: str, content: str) -> None:
    os.makedirs(os.path.dirname(full), exist_ok=True)
    with open(full, "w", encoding="utf-8") as f:
        f.write(content)


@router.get("/api/fs/file")
async def read_file(path: Optional[str] = Query(None)):
    """File content with its highlight language; binaries report only their size."""
    if not path:
        return JSONResponse({"error": "path query parameter required"}, status_code=400)
    full = _resolve(path)
    try:
        if not await asyncio.to_thread(os.path.isfile, full):
            return JSONResponse({"error": "Not a file"}, status_code=400)
        size = await asyncio.to_thread(os.path.getsize, full)
        if _is_binary(full):
            return {"binary": True, "size": size}
        if size > _MAX_FILE_SIZE:
            return JSONResponse({"error": "File too large (> 2MB)", "size": size}, status_code=400)
        content = await asyncio.to_thread(_read_text, full)
        return {"content": content, "language": detect_language(os.path.basename(full))}
    except OSError as e:
        logger.error(f"read_file error for path={full!r}: {e}")
        return JSONResponse({"error": f"Cannot read file: {e}"}, status_code=400)


@router.put("/api/fs/file")
async def write_file(request: Request):
    """Save editor content, creating parent directories as needed."""
    body = await read_body(request)
    path, content = body.get("path"), body.get("content")
    if not path or not isinstance(content, str):
        return JSONResponse({"error": "path and content required"}, status_code=400)
    full = _resolve(path)
    try:
        await asyncio.to_thread(_write_text, full, content)
    except OSError as e:
        logger.error(f"write_file error for path={full!r}: {e}")
        return JSONResponse({"error": f"Cannot write file: {e}"}, status_code=400)
    return {"ok": True}


# ------------------------------------------------------------------
# Create / upload / delete
# ------------------------------------------------------------------

def _create(full: str, kind: str) -> None:
    if kind == "dir":
        os.makedirs(full, exist_ok=True)
        return
    _write_text(full, "")


def _delete(full: str) -> None:
    if os.path.isdir(full) and not os.path.islink(full):
        shutil.rmtree(full)
    else:
        os.remove(full)


def _write_bytes(full: str, data: bytes) -> None:
    os.makedirs(os.path.dirname(full), exist_ok=True)
    with open(full, "wb") as f:
        f.write(data)


@router.post("/api/fs/create")
async def create_entry(request: Request):
    body = await read_body(request)
    path, kind = body.get("path"), body.get("type")
    if not path or not kind:
        return JSONResponse({"error": "path and type required"}, status_code=400)
    full = _resolve(path)
    try:
        await asyncio.to_thread(_create, full, kind)
    except OSError as e:
        return JSONResponse({"error": f"Cannot create: {e}"}, status_code=400)
    logger.info(f"Created {kind} {full}")
    return {"ok": True}


@router.post("/api/fs/upload")
async def upload_file(file: Optional[UploadFile] = File(None), path: Optional[str] = Form(None)):
    """Store an uploaded file in the directory ``path`` under its own name."""
    if file is None or not file.filename or not path:
        return JSONResponse({"error": "file and path required"}, status_code=400)
    name = os.path.basename(file.filename)
    dest = os.path.join(_resolve(path), name)
    try:
        data = await file.read()
        await asyncio.to_thread(_write_bytes, dest, data)
    except OSError as e:
        logger.error(f"upload failed for {dest!r}: {e}")
        return JSONResponse({"error": "Upload failed"}, status_code=400)
    return {"ok": True, "name": name}


@router.delete("/api/fs/delete")
async def delete_entry(request: Request):
    """Remove a file or a whole directory tree."""
    body = await read_body(request)
    path = body.get("path")
    if not path:
        return JSONResponse({"error": "path required"}, status_code=400)
    full = _resolve(path)
    try:
        await asyncio.to_thread(_delete, full)
    except OSError as e:
        return JSONResponse({"error": f"Cannot delete: {e}"}, status_code=400)
    logger.info(f"Deleted {full}")
    return {"ok": True}
