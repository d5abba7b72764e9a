"""
Skill management REST API endpoints.
"""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from tools.skills import SkillError, discover_skills, create_skill, create_skill_raw, delete_skill
from web.state import read_body

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/api/skills")
async def list_skills():
    return [s.to_dict() for s in discover_skills()]


@router.post("/api/skills")
async def add_skill(request: Request):
    body = await read_body(request)
    if not body.get("name"):
        return JSONResponse({"error": "name is required"}, status_code=400)
    try:
        skill = create_skill(body["name"], body.get("description") or "", body.get("content") or "")
    except SkillError as e:
        return JSONResponse({"error": str(e)}, status_code=400)
    return skill.to_dict()


@router.post("/api/skills/raw")
async def add_skill_raw(request: Request):
    body = await read_body(request)
    if not body.get("slug") or not body.get("raw"):
        return JSONResponse({"error": "slug and raw are required"}, status_code=400)
    try:
        create_skill_raw(body["slug"], body["raw"])
    except SkillError as e:
        return JSONResponse({"error": str(e)}, status_code=400)
    return {"ok": True}


@router.delete("/api/skills")
async def remove_skill(request: Request):
    body = await read_body(request)
    if not body.get("name"):
        return JSONResponse({"error": "name is required"}, status_code=400)
    try:
        ok = delete_skill(body["name"])
    except SkillError as e:
        return JSONResponse({"error": str(e)}, status_code=400)
    return {"ok": ok}
