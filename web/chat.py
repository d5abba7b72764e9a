"""
Streaming chat endpoint: one agent run (plus an optional chained
execution run) per request, delivered as Server-Sent Events.

Each AgentEvent becomes one ``data: <json>`` frame; ``data: [DONE]``
closes the stream. A client disconnect cancels the run's token.
"""

import contextlib
import json
import logging
import os
from typing import Any, AsyncIterator, Dict, List, Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sse_starlette.sse import EventSourceResponse

from agent import CancellationToken, ErrorEvent, RunRequest, run_with_handoff
from config import app_config
from model_service import parse_data_url
from tools import Mode
from web.state import session_store, provider_store, read_body

logger = logging.getLogger(__name__)

router = APIRouter()

DONE_SENTINEL = "[DONE]"

# Overridable collaborators for the agent runs started here (tests swap
# in scripted resolvers / stream drivers).
run_deps: Dict[str, Any] = {}


def _validate_images(images: Any) -> Optional[List[str]]:
    """Raises ValueError unless ``images`` is a list of base64 data URLs."""
    if not images:
        return None
    if not isinstance(images, list):
        raise ValueError("images must be a list of data URLs")
    for image in images:
        if not isinstance(image, str):
            raise ValueError("images must be a list of data URLs")
        parse_data_url(image)
    return images


async def _event_frames(
    run_request: RunRequest,
    auto_execute: bool,
) -> AsyncIterator[Dict[str, str]]:
    token = run_request.cancellation_token
    events = run_with_handoff(
        run_request,
        store=session_store(),
        auto_execute=auto_execute,
        provider_store=provider_store(),
        **run_deps,
    )
    try:
        async with contextlib.aclosing(events):
            async for event in events:
                if token.cancelled:
                    return
                yield {"data": json.dumps(event.to_dict())}
        if not token.cancelled:
            yield {"data": DONE_SENTINEL}
    except Exception as e:
        if token.cancelled:
            return
        logger.exception(f"Chat stream failed for session {run_request.session_id}")
        yield {"data": json.dumps(ErrorEvent(message=str(e) or "Internal server error").to_dict())}
        yield {"data": DONE_SENTINEL}
    finally:
        # client went away (or the stream finished); stop any in-flight work
        if not token.cancelled:
            token.cancel()


@router.post("/api/chat")
async def chat(request: Request):
    body = await read_body(request)

    session_id = body.get("sessionId")
    if not session_id:
        return JSONResponse({"error": "sessionId is required"}, status_code=400)
    provider_id, model_id = body.get("providerId"), body.get("modelId")
    if not provider_id or not model_id:
        return JSONResponse({"error": "providerId and modelId are required"}, status_code=400)

    session = session_store().get(session_id)
    if session is None:
        return JSONResponse({"error": "Session not found"}, status_code=404)

    try:
        images = _validate_images(body.get("images"))
        mode = Mode(body.get("mode") or session.mode or Mode.AGENT.value)
    except ValueError as e:
        return JSONResponse({"error": str(e)}, status_code=400)

    auto_execute = body.get("autoExecute")
    if auto_execute is None:
        auto_execute = app_config.auto_execute_plan

    run_request = RunRequest(
        session_id=session_id,
        prompt=body.get("prompt") or "",
        provider_id=provider_id,
        model_id=model_id,
        project_dir=(body.get("projectDir") or session.project_dir
                     or os.environ.get("COODEEN_CWD") or os.getcwd()),
        images=images,
        mode=mode,
        cancellation_token=CancellationToken(),
    )
    logger.info(f"Chat request: session={session_id} mode={mode.value} provider={provider_id}")
    return EventSourceResponse(
        _event_frames(run_request, bool(auto_execute)),
        media_type="text/event-stream",
    )
