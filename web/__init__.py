"""
Coodeen - Web API server.
FastAPI app exposing sessions, provider settings, skills, the project
filesystem and the streaming chat endpoint (Server-Sent Events) in
front of the agent loop.

Run:  python -m web [--port 3001] [--dir /path/to/project]
"""

import logging
from datetime import datetime, timezone

from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import app_config
from web import api_config, api_fs, api_providers, api_sessions, api_skills, chat

logger = logging.getLogger(__name__)

# ============================================================
# FastAPI application
# ============================================================

app = FastAPI(title=app_config.title)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in app_config.cors_origin.split(",") if o.strip()],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
async def index():
    return {"message": f"{app_config.title} server running"}


@app.get("/health")
async def health():
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


# ============================================================
# Include routers from submodules
# ============================================================

app.include_router(api_sessions.router)
app.include_router(api_providers.router)
app.include_router(api_config.router)
app.include_router(api_skills.router)
app.include_router(api_fs.router)
app.include_router(chat.router)
