"""
Tool definitions and implementations for the coding agent.
Each tool has an Anthropic-style schema and an implementation function;
create_tools() assembles the set available in a given mode.
"""

from tools._common import (  # noqa: F401
    ToolDefinition,
    ToolExecutionError,
    ToolInputError,
    EditNotFoundError,
    EditNotUniqueError,
)
from tools.plan_ops import ModeSwitch, get_plan_path, read_plan  # noqa: F401
from tools.registry import Mode, create_tools  # noqa: F401
from tools.schemas import ALWAYS_TOOLS, AGENT_ONLY_TOOLS, PLAN_ONLY_TOOLS, PLAN_EXIT_TOOL  # noqa: F401
