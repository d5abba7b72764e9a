"""Plan-mode tools: question, plan_write, plan_exit."""

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from config import get_plans_dir
from tools._common import ToolExecutionError

logger = logging.getLogger(__name__)

NO_PLAN_PLACEHOLDER = "(no plan file written)"


@dataclass(frozen=True)
class ModeSwitch:
    """Structured plan_exit result: switch to ``mode`` and carry the plan."""
    mode: str
    plan_path: str
    plan_content: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "__mode_switch": True,
            "mode": self.mode,
            "planPath": self.plan_path,
            "planContent": self.plan_content,
        }


def get_plan_path(session_id: str) -> str:
    """Deterministic plan file location for a session."""
    return os.path.join(get_plans_dir(), f"{session_id}.md")


def read_plan(plan_path: str) -> Optional[str]:
    """Plan text, or None when no plan has been written."""
    try:
        with open(plan_path, "r", encoding="utf-8", newline="") as f:
            return f.read()
    except FileNotFoundError:
        return None


def plan_write(plan_path: str, content: str) -> str:
    """Overwrite the plan file (the only writable file in plan mode)."""
    try:
        os.makedirs(os.path.dirname(plan_path), exist_ok=True)
        with open(plan_path, "w", encoding="utf-8", newline="") as f:
            f.write(content)
    except OSError as e:
        raise ToolExecutionError(f"Could not write plan: {e.strerror or e}") from e
    logger.info(f"Plan written: {plan_path}")
    return f"Plan written to {plan_path}"


def plan_exit(plan_path: str) -> ModeSwitch:
    content = read_plan(plan_path)
    return ModeSwitch(mode="agent", plan_path=plan_path, plan_content=content if content is not None else NO_PLAN_PLACEHOLDER)


def ask_questions(questions: List[Dict[str, Any]]) -> str:
    # The client renders the questions; answers arrive as the next user message.
    return "Questions displayed to the user. Their answers will come in the next message."
