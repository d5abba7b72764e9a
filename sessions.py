"""
Session persistence for Coodeen.
Stores sessions with their ordered messages, provider credentials and
small app settings as JSON files under the data directory.
"""

import json
import logging
import os
import re
import threading
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional

from config import get_sessions_dir, get_providers_file, get_settings_file

logger = logging.getLogger(__name__)

SESSION_VERSION = 1

_SAFE_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")

# Session attributes that may be changed after creation
SESSION_SETTINGS = ("title", "provider_id", "model_id", "project_dir", "preview_url", "mode")


@dataclass
class Message:
    """One persisted turn. ``images`` holds a JSON-encoded list of data URLs."""
    id: str
    session_id: str
    role: str
    content: str
    images: Optional[str] = None
    created_at: str = ""


@dataclass
class Session:
    """A persisted chat session."""
    id: str = ""
    version: int = SESSION_VERSION
    title: str = "New Chat"
    provider_id: Optional[str] = None
    model_id: Optional[str] = None
    project_dir: Optional[str] = None
    preview_url: Optional[str] = None
    mode: str = "agent"
    created_at: str = ""
    updated_at: str = ""
    messages: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def message_count(self) -> int:
        return len(self.messages)

    def summary(self) -> Dict[str, Any]:
        """Session record without the message list (for listings)."""
        data = asdict(self)
        data.pop("messages", None)
        data["message_count"] = self.message_count
        return data


class SessionNotFoundError(KeyError):
    """Raised when a session id does not exist."""


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_id() -> str:
    return uuid.uuid4().hex


def _write_json(path: str, data: Any) -> None:
    """Atomic JSON write: temp file then rename."""
    os.makedirs(os.path.dirname(path), exist_ok=True)
    tmp_path = path + ".tmp"
    try:
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        os.replace(tmp_path, path)
    except Exception:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise


def _read_json(path: str, default: Any) -> Any:
    if not os.path.exists(path):
        return default
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError) as e:
        logger.warning(f"Failed to read {path}: {e}")
        return default


class SessionStore:
    """
    Manages session files on disk.

    File layout:  {base_dir}/{session_id}.json
    Each file holds the session record and its messages in creation order.
    """

    def __init__(self, base_dir: Optional[str] = None):
        self.base_dir = base_dir or get_sessions_dir()
        os.makedirs(self.base_dir, exist_ok=True)
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create(
        self,
        title: str = "New Chat",
        provider_id: Optional[str] = None,
        model_id: Optional[str] = None,
        project_dir: Optional[str] = None,
        preview_url: Optional[str] = None,
        mode: str = "agent",
    ) -> Session:
        now = _now_iso()
        session = Session(
            id=_new_id(),
            title=title or "New Chat",
            provider_id=provider_id,
            model_id=model_id,
            project_dir=project_dir,
            preview_url=preview_url,
            mode=mode or "agent",
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self._save(session)
        logger.info(f"Session created: {session.id}")
        return session

    def get(self, session_id: str) -> Optional[Session]:
        if not _SAFE_ID_RE.match(session_id or ""):
            return None
        path = self._path_for(session_id)
        if not os.path.exists(path):
            return None
        return self._read_file(path)

    def list(self) -> List[Session]:
        """All sessions, most recently updated first."""
        sessions: List[Session] = []
        for fname in os.listdir(self.base_dir):
            if not fname.endswith(".json"):
                continue
            sess = self._read_file(os.path.join(self.base_dir, fname))
            if sess:
                sessions.append(sess)
        sessions.sort(key=lambda s: s.updated_at or "", reverse=True)
        return sessions

    def update(self, session_id: str, **settings: Any) -> Session:
        """Change settings fields (title, provider_id, model_id, ...)."""
        unknown = set(settings) - set(SESSION_SETTINGS)
        if unknown:
            raise ValueError(f"Unknown session fields: {', '.join(sorted(unknown))}")
        with self._lock:
            session = self._require(session_id)
            for key, value in settings.items():
                setattr(session, key, value)
            session.updated_at = _now_iso()
            self._save(session)
        return session

    def delete(self, session_id: str) -> bool:
        """Delete a session and its messages. Returns True if deleted."""
        if not _SAFE_ID_RE.match(session_id or ""):
            return False
        with self._lock:
            path = self._path_for(session_id)
            if os.path.exists(path):
                os.remove(path)
                logger.info(f"Session deleted: {session_id}")
                return True
        return False

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def append_message(
        self,
        session_id: str,
        role: str,
        content: str,
        images: Optional[List[str]] = None,
    ) -> Message:
        """Append one immutable message. Images are stored JSON-encoded."""
        if role not in ("user", "assistant", "system"):
            raise ValueError(f"Invalid role: {role}")
        message = Message(
            id=_new_id(),
            session_id=session_id,
            role=role,
            content=content,
            images=json.dumps(images) if images else None,
            created_at=_now_iso(),
        )
        with self._lock:
            session = self._require(session_id)
            session.messages.append(asdict(message))
            session.updated_at = message.created_at
            self._save(session)
        return message

    def list_messages(self, session_id: str) -> List[Message]:
        """Messages of a session in ascending creation order."""
        session = self.get(session_id)
        if session is None:
            return []
        messages = [
            Message(
                id=m.get("id", ""),
                session_id=m.get("session_id", session_id),
                role=m.get("role", "user"),
                content=m.get("content", ""),
                images=m.get("images"),
                created_at=m.get("created_at", ""),
            )
            for m in session.messages
        ]
        # Stable sort keeps append order for equal timestamps
        messages.sort(key=lambda m: m.created_at)
        return messages

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _require(self, session_id: str) -> Session:
        session = self.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def _path_for(self, session_id: str) -> str:
        return os.path.join(self.base_dir, f"{session_id}.json")

    def _save(self, session: Session) -> None:
        _write_json(self._path_for(session.id), asdict(session))

    def _read_file(self, path: str) -> Optional[Session]:
        data = _read_json(path, None)
        if not isinstance(data, dict):
            return None
        return Session(
            id=data.get("id", ""),
            version=data.get("version", SESSION_VERSION),
            title=data.get("title", "New Chat"),
            provider_id=data.get("provider_id"),
            model_id=data.get("model_id"),
            project_dir=data.get("project_dir"),
            preview_url=data.get("preview_url"),
            mode=data.get("mode", "agent"),
            created_at=data.get("created_at", ""),
            updated_at=data.get("updated_at", ""),
            messages=data.get("messages", []),
        )


class ProviderStore:
    """Provider credentials keyed by provider id (providers.json)."""

    def __init__(self, path: Optional[str] = None):
        self.path = path or get_providers_file()
        self._lock = threading.RLock()

    def list(self) -> Dict[str, Dict[str, Any]]:
        return _read_json(self.path, {})

    def get(self, provider_id: str) -> Optional[Dict[str, Any]]:
        """Return {api_key, model_id, created_at} or None."""
        return self.list().get(provider_id)

    def upsert(self, provider_id: str, api_key: str, model_id: str = "") -> Dict[str, Any]:
        with self._lock:
            data = self.list()
            existing = data.get(provider_id) or {}
            record = {
                "api_key": api_key,
                "model_id": model_id,
                "created_at": existing.get("created_at") or _now_iso(),
            }
            data[provider_id] = record
            _write_json(self.path, data)
        logger.info(f"Provider saved: {provider_id}")
        return record

    def delete(self, provider_id: str) -> bool:
        with self._lock:
            data = self.list()
            if provider_id not in data:
                return False
            del data[provider_id]
            _write_json(self.path, data)
        logger.info(f"Provider removed: {provider_id}")
        return True


class ConfigStore:
    """Small key/value settings file (config.json)."""

    ACTIVE_PROVIDER = "active_provider"

    def __init__(self, path: Optional[str] = None):
        self.path = path or get_settings_file()
        self._lock = threading.RLock()

    def get(self, key: str, default: Any = None) -> Any:
        return _read_json(self.path, {}).get(key, default)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            data = _read_json(self.path, {})
            data[key] = value
            _write_json(self.path, data)

    def delete(self, key: str) -> None:
        with self._lock:
            data = _read_json(self.path, {})
            if data.pop(key, None) is not None:
                _write_json(self.path, data)
