"""
Agent package - the orchestration loop and its building blocks.

- events: AgentEvent variants and their wire shapes
- cancellation: per-run CancellationToken
- conversation: persisted messages -> model turns
- prompts: agent/plan system prompt composition
- stream: multi-step tool-augmented generation (StreamPart)
- loop: AgentRun state machine (resolving -> streaming -> finalizing)
- handoff: plan -> agent chaining after a mode switch
"""

from .events import (
    AgentEvent,
    TokenEvent,
    ToolCallEvent,
    ToolResultEvent,
    ModeSwitchEvent,
    DoneEvent,
    ErrorEvent,
    is_terminal,
)
from .cancellation import CancellationToken, CancellationSignal
from .conversation import build_conversation, decode_images
from .prompts import build_system_prompt
from .stream import StreamPart, stream_text
from .loop import AgentRun, RunRequest, RunState, InvalidTransitionError, run_agent
from .handoff import run_with_handoff, EXECUTE_PLAN_PROMPT

__all__ = [
    # Events
    "AgentEvent",
    "TokenEvent",
    "ToolCallEvent",
    "ToolResultEvent",
    "ModeSwitchEvent",
    "DoneEvent",
    "ErrorEvent",
    "is_terminal",

    # Cancellation
    "CancellationToken",
    "CancellationSignal",

    # Inputs
    "build_conversation",
    "decode_images",
    "build_system_prompt",

    # Loop
    "StreamPart",
    "stream_text",
    "AgentRun",
    "RunRequest",
    "RunState",
    "InvalidTransitionError",
    "run_agent",
    "run_with_handoff",
    "EXECUTE_PLAN_PROMPT",
]
