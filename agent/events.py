"""
Agent event types streamed to clients.

Each variant serializes to the JSON wire shape with ``to_dict()``.
"""

from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, Union


@dataclass(frozen=True)
class TokenEvent:
    """Incremental assistant text (never the cumulative buffer)."""
    content: str
    type: ClassVar[str] = "token"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "content": self.content}


@dataclass(frozen=True)
class ToolCallEvent:
    name: str
    input: Any
    tool_call_id: str
    type: ClassVar[str] = "tool_call"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "name": self.name, "input": self.input, "toolCallId": self.tool_call_id}


@dataclass(frozen=True)
class ToolResultEvent:
    name: str
    output: Any
    # correlation id for in-process consumers; not part of the wire shape
    tool_call_id: str = field(default="", compare=False)
    type: ClassVar[str] = "tool_result"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "name": self.name, "output": self.output}


@dataclass(frozen=True)
class ModeSwitchEvent:
    mode: str
    plan_path: str
    plan_content: str
    type: ClassVar[str] = "mode_switch"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "mode": self.mode,
            "planPath": self.plan_path,
            "planContent": self.plan_content,
        }


@dataclass(frozen=True)
class DoneEvent:
    """Terminal. ``message_id`` is empty when no text was produced."""
    message_id: str
    type: ClassVar[str] = "done"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "messageId": self.message_id}


@dataclass(frozen=True)
class ErrorEvent:
    """Terminal."""
    message: str
    type: ClassVar[str] = "error"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "message": self.message}


AgentEvent = Union[TokenEvent, ToolCallEvent, ToolResultEvent, ModeSwitchEvent, DoneEvent, ErrorEvent]

TERMINAL_EVENTS = (DoneEvent, ErrorEvent)


def is_terminal(event: AgentEvent) -> bool:
    return isinstance(event, TERMINAL_EVENTS)
