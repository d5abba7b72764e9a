"""
App settings REST API endpoints (active provider, launch directory).
"""

import logging
import os

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from sessions import ConfigStore
from web.state import config_store, provider_store, read_body

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/api/config/active-provider")
async def get_active_provider():
    return {"providerId": config_store().get(ConfigStore.ACTIVE_PROVIDER)}


@router.put("/api/config/active-provider")
async def set_active_provider(request: Request):
    body = await read_body(request)
    provider_id = body.get("providerId")
    if not provider_id:
        return JSONResponse({"error": "providerId is required"}, status_code=400)
    if provider_store().get(provider_id) is None:
        return JSONResponse(
            {"error": f"Provider '{provider_id}' not found. Configure it first."},
            status_code=404,
        )
    config_store().set(ConfigStore.ACTIVE_PROVIDER, provider_id)
    logger.info(f"Active provider set to {provider_id}")
    return {"providerId": provider_id}


@router.get("/api/config/cwd")
async def get_cwd():
    """Directory the server was launched for (set by the CLI)."""
    return {"cwd": os.environ.get("COODEEN_CWD") or None}
