"""
Session REST API endpoints.
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from sessions import Session, Message, SessionNotFoundError
from tools import Mode
from web.state import session_store, read_body

logger = logging.getLogger(__name__)

router = APIRouter()

# request body key -> Session attribute
_SETTING_KEYS = {
    "title": "title",
    "providerId": "provider_id",
    "modelId": "model_id",
    "projectDir": "project_dir",
    "previewUrl": "preview_url",
    "mode": "mode",
}


def session_to_json(session: Session) -> Dict[str, Any]:
    return {
        "id": session.id,
        "title": session.title,
        "providerId": session.provider_id,
        "modelId": session.model_id,
        "projectDir": session.project_dir,
        "previewUrl": session.preview_url,
        "mode": session.mode,
        "messageCount": session.message_count,
        "createdAt": session.created_at,
        "updatedAt": session.updated_at,
    }


def message_to_json(message: Message) -> Dict[str, Any]:
    return {
        "id": message.id,
        "sessionId": message.session_id,
        "role": message.role,
        "content": message.content,
        "images": message.images,
        "createdAt": message.created_at,
    }


def _settings_from_body(body: Dict[str, Any]) -> Dict[str, Any]:
    settings = {attr: body[key] for key, attr in _SETTING_KEYS.items() if key in body}
    if "mode" in settings:
        settings["mode"] = Mode(settings["mode"]).value
    return settings


def _not_found() -> JSONResponse:
    return JSONResponse({"error": "Session not found"}, status_code=404)


@router.post("/api/sessions")
async def create_session(request: Request):
    body = await read_body(request)
    try:
        settings = _settings_from_body(body)
    except ValueError as e:
        return JSONResponse({"error": str(e)}, status_code=400)
    settings["title"] = settings.get("title") or "New Session"
    session = session_store().create(**settings)
    return JSONResponse(session_to_json(session), status_code=201)


@router.get("/api/sessions")
async def list_sessions():
    return [session_to_json(s) for s in session_store().list()]


@router.get("/api/sessions/{session_id}")
async def get_session(session_id: str):
    session = session_store().get(session_id)
    if session is None:
        return _not_found()
    return session_to_json(session)


@router.patch("/api/sessions/{session_id}")
async def update_session(session_id: str, request: Request):
    body = await read_body(request)
    try:
        settings = _settings_from_body(body)
    except ValueError as e:
        return JSONResponse({"error": str(e)}, status_code=400)
    try:
        session = session_store().update(session_id, **settings)
    except SessionNotFoundError:
        return _not_found()
    return session_to_json(session)


@router.delete("/api/sessions/{session_id}")
async def delete_session(session_id: str):
    if not session_store().delete(session_id):
        return _not_found()
    return {"ok": True}


@router.get("/api/sessions/{session_id}/messages")
async def list_messages(session_id: str):
    store = session_store()
    if store.get(session_id) is None:
        return _not_found()
    return [message_to_json(m) for m in store.list_messages(session_id)]
