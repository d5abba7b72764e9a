"""
Provider settings REST API endpoints.
Credentials are never returned in full; keys are masked to their last 4 characters.
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from config import PROVIDER_MODELS, FREE_PROVIDER_ID, get_provider_models
from models_catalog import models_catalog, CatalogUnavailableError
from providers import mask_key
from web.state import provider_store, read_body

logger = logging.getLogger(__name__)

router = APIRouter()


def _provider_to_json(provider_id: str, record: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": provider_id,
        "apiKey": mask_key(record.get("api_key", "")),
        "modelId": record.get("model_id", ""),
        "createdAt": record.get("created_at", ""),
    }


@router.get("/api/providers")
async def list_providers():
    return [_provider_to_json(pid, rec) for pid, rec in provider_store().list().items()]


@router.get("/api/providers/models/{provider_name}")
async def provider_models(provider_name: str):
    name = provider_name.lower()
    models = get_provider_models(name)
    if not models:
        supported = ", ".join(PROVIDER_MODELS)
        return JSONResponse(
            {"error": f"Unknown provider: {name}. Supported: {supported}"},
            status_code=404,
        )
    return {"provider": name, "models": models}


@router.get("/api/providers/connected-models")
async def connected_models():
    return [
        {"providerId": pid, "models": get_provider_models(pid)}
        for pid in provider_store().list()
        if pid in PROVIDER_MODELS
    ]


@router.get("/api/providers/free-models")
async def free_models():
    try:
        free = models_catalog.free_config()
    except CatalogUnavailableError as e:
        logger.warning(f"Free models unavailable: {e}")
        return JSONResponse({"error": str(e)}, status_code=503)
    return {
        "providerId": FREE_PROVIDER_ID,
        "label": free.get("label", ""),
        "models": free.get("models") or [],
    }


@router.put("/api/providers/{provider_id}")
async def upsert_provider(provider_id: str, request: Request):
    body = await read_body(request)
    api_key = body.get("apiKey")
    if not api_key:
        return JSONResponse({"error": "apiKey is required"}, status_code=400)
    record = provider_store().upsert(provider_id, api_key, body.get("modelId") or "")
    return _provider_to_json(provider_id, record)


@router.delete("/api/providers/{provider_id}")
async def delete_provider(provider_id: str):
    if not provider_store().delete(provider_id):
        return JSONResponse({"error": "Provider not found"}, status_code=404)
    return {"ok": True}
