"""
Shared state for the web server.

Stores are created lazily and cached per backing path, so every route
module shares one lock per file even when the data directory changes
(tests point ``app_config.data_dir`` at a temporary directory).
"""

import logging
import threading
from typing import Any, Dict, Tuple

from config import get_sessions_dir, get_providers_file, get_settings_file
from sessions import SessionStore, ProviderStore, ConfigStore

logger = logging.getLogger(__name__)

# ============================================================
# Globals
# ============================================================

_stores: Dict[Tuple[str, str], Any] = {}
_stores_lock = threading.Lock()


def _cached(kind: str, path: str, factory):
    key = (kind, path)
    with _stores_lock:
        store = _stores.get(key)
        if store is None:
            store = factory(path)
            _stores[key] = store
            logger.debug(f"Opened {kind} store at {path}")
        return store


def session_store() -> SessionStore:
    return _cached("sessions", get_sessions_dir(), SessionStore)


def provider_store() -> ProviderStore:
    return _cached("providers", get_providers_file(), ProviderStore)


def config_store() -> ConfigStore:
    return _cached("config", get_settings_file(), ConfigStore)


def reset_stores() -> None:
    with _stores_lock:
        _stores.clear()


async def read_body(request) -> Dict[str, Any]:
    """JSON request body as a dict; empty or malformed bodies read as {}."""
    try:
        body = await request.json()
    except ValueError:
        logger.debug(f"Ignoring malformed JSON body on {request.url.path}")
        return {}
    return body if isinstance(body, dict) else {}
