"""Mode-gated tool registry scoped to a project directory."""

import logging
from enum import Enum
from typing import Dict, Optional

from backend import LocalBackend
from tools._common import ToolDefinition
from tools import schemas
from tools.file_ops import read_file, write_file, edit_file
from tools.search_ops import glob_find, grep_search
from tools.external_ops import (
    web_fetch,
    web_search,
    code_search,
    image_fetch,
    image_model_output,
    websearch_description,
)
from tools.plan_ops import plan_write, plan_exit, ask_questions
from tools.skills import load_skill, skill_tool_description

logger = logging.getLogger(__name__)


class Mode(str, Enum):
    AGENT = "agent"
    PLAN = "plan"


def _define(schema, execute, description: Optional[str] = None, to_model_output=None) -> ToolDefinition:
    return ToolDefinition(
        name=schema["name"],
        description=description if description is not None else schema["description"],
        input_schema=schema["input_schema"],
        execute=execute,
        to_model_output=to_model_output,
    )


def create_tools(
    project_dir: str,
    mode: Mode = Mode.AGENT,
    plan_path: Optional[str] = None,
    supports_vision: bool = False,
) -> Dict[str, ToolDefinition]:
    """Build the tool set for one run.

    Tools absent for a mode are not registered at all, so the model cannot
    call them.
    """
    mode = Mode(mode)
    b = LocalBackend(project_dir)

    tools: Dict[str, ToolDefinition] = {
        "read": _define(
            schemas.READ_SCHEMA,
            lambda file_path, offset=None, limit=None: read_file(b, file_path, offset, limit),
        ),
        "glob": _define(schemas.GLOB_SCHEMA, lambda pattern: glob_find(b, pattern)),
        "grep": _define(schemas.GREP_SCHEMA, lambda pattern, path=None: grep_search(b, pattern, path)),
        "webfetch": _define(schemas.WEBFETCH_SCHEMA, web_fetch),
        "websearch": _define(schemas.WEBSEARCH_SCHEMA, web_search, description=websearch_description()),
        "codesearch": _define(schemas.CODESEARCH_SCHEMA, code_search),
        "imagefetch": _define(
            schemas.IMAGEFETCH_SCHEMA,
            image_fetch,
            to_model_output=image_model_output(supports_vision),
        ),
        "skill": _define(schemas.SKILL_SCHEMA, load_skill, description=skill_tool_description()),
    }

    if mode is Mode.AGENT:
        tools["write"] = _define(
            schemas.WRITE_SCHEMA,
            lambda file_path, content: write_file(b, file_path, content),
        )
        tools["edit"] = _define(
            schemas.EDIT_SCHEMA,
            lambda file_path, old_string, new_string: edit_file(b, file_path, old_string, new_string),
        )
    else:
        if not plan_path:
            raise ValueError("plan mode requires a plan_path")
        tools["question"] = _define(schemas.QUESTION_SCHEMA, ask_questions)
        tools["plan_write"] = _define(schemas.PLAN_WRITE_SCHEMA, lambda content: plan_write(plan_path, content))
        tools["plan_exit"] = _define(schemas.PLAN_EXIT_SCHEMA, lambda: plan_exit(plan_path))

    logger.debug(f"Registered {len(tools)} tools for {mode.value} mode in {b.working_directory}")
    return tools
