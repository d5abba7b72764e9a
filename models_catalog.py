"""
Remote models catalog (models.json) with a process-wide TTL cache.

The catalog lists provider models and the free-model gateway:

    {"providers": {"<id>": {"label": str, "models": [str]}},
     "free": {"provider": str, "label": str, "baseURL": str,
              "models": [{"id": str, "name": str, "vision"?: bool}]}}

A fresh value is served for ``ttl`` seconds; after that the next access
refetches, and a failed refetch keeps serving the last good value.
"""

import json
import logging
import threading
import time
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from config import app_config, is_vision_model, FREE_PROVIDER_ID

logger = logging.getLogger(__name__)


class CatalogUnavailableError(RuntimeError):
    """The catalog could not be fetched and nothing is cached."""


@dataclass
class _CacheEntry:
    value: Dict[str, Any]
    fetched_at: float


def fetch_models_json(url: str, timeout: float) -> Dict[str, Any]:
    req = urllib.request.Request(url, headers={"Cache-Control": "no-cache"})
    with urllib.request.urlopen(req, timeout=timeout) as resp:
        data = json.loads(resp.read().decode("utf-8"))
    if not isinstance(data, dict):
        raise ValueError("models.json must be an object")
    return data


class ModelsCatalog:
    """Guarded accessor for the cached catalog."""

    def __init__(
        self,
        url: Optional[str] = None,
        ttl: Optional[float] = None,
        fetcher: Optional[Callable[[str, float], Dict[str, Any]]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.url = url or app_config.models_config_url
        self.ttl = app_config.models_cache_ttl if ttl is None else ttl
        self._fetch = fetcher or fetch_models_json
        self._clock = clock
        self._entry: Optional[_CacheEntry] = None
        self._lock = threading.Lock()

    def get(self) -> Dict[str, Any]:
        with self._lock:
            now = self._clock()
            if self._entry is not None and now - self._entry.fetched_at < self.ttl:
                return self._entry.value
            try:
                value = self._fetch(self.url, app_config.models_fetch_timeout)
            except (urllib.error.URLError, OSError, ValueError) as e:
                if self._entry is not None:
                    logger.warning(f"Models catalog refresh failed, serving stale copy: {e}")
                    return self._entry.value
                raise CatalogUnavailableError(
                    "Failed to fetch models config and no cache available"
                ) from e
            self._entry = _CacheEntry(value=value, fetched_at=now)
            logger.debug("Models catalog refreshed")
            return value

    def clear(self) -> None:
        with self._lock:
            self._entry = None

    # --- views ---

    def free_config(self) -> Dict[str, Any]:
        return self.get().get("free") or {}

    def free_models(self) -> List[Dict[str, Any]]:
        return list(self.free_config().get("models") or [])

    def provider_models(self, provider_id: str) -> List[str]:
        entry = (self.get().get("providers") or {}).get(provider_id) or {}
        return list(entry.get("models") or [])


models_catalog = ModelsCatalog()


def model_supports_image(provider_id: str, model_id: str,
                         catalog: Optional[ModelsCatalog] = None) -> bool:
    """Vision capability: catalog flag for free models, else model-id patterns."""
    if provider_id == FREE_PROVIDER_ID:
        catalog = catalog or models_catalog
        try:
            for entry in catalog.free_models():
                if entry.get("id") == model_id and "vision" in entry:
                    return bool(entry["vision"])
        except CatalogUnavailableError:
            logger.debug("Catalog unavailable for vision lookup; using model-id patterns")
    return is_vision_model(model_id)
