"""
Plan -> agent handoff.

A plan-mode run that ends with a ``mode_switch`` followed by ``done`` is
chained into a second, agent-mode run with a synthetic user turn. The two
runs stay separate: each has its own terminal event, and the plan file is
the only state carried between them besides the message history.
"""

import logging
from dataclasses import replace
from typing import Any, AsyncIterator, Optional

from sessions import SessionStore
from tools import Mode

from agent.events import AgentEvent, DoneEvent, ModeSwitchEvent
from agent.loop import AgentRun, RunRequest

logger = logging.getLogger(__name__)

EXECUTE_PLAN_PROMPT = "Execute the plan."


async def run_with_handoff(
    request: RunRequest,
    store: Optional[SessionStore] = None,
    auto_execute: bool = True,
    **deps: Any,
) -> AsyncIterator[AgentEvent]:
    """Yield the events of ``request``'s run, then of the chained execution run if any."""
    store = store or SessionStore()
    first = AgentRun(request, store=store, **deps)
    switch: Optional[ModeSwitchEvent] = None
    completed = False

    async for event in first.events():
        if isinstance(event, ModeSwitchEvent):
            switch = event
        elif isinstance(event, DoneEvent):
            completed = True
        yield event

    token = request.cancellation_token
    if switch is None or not completed or token.cancelled:
        return

    target = Mode(switch.mode)
    try:
        store.update(request.session_id, mode=target.value)
    except KeyError:
        logger.warning(f"Session {request.session_id} vanished before handoff")
        return

    if not auto_execute:
        logger.info(f"Session {request.session_id} switched to {target.value}; auto-execute disabled")
        return

    logger.info(f"Session {request.session_id}: plan approved, starting execution run")
    second = replace(
        request,
        prompt=EXECUTE_PLAN_PROMPT,
        images=None,
        mode=target,
        persist_prompt=True,
    )
    async for event in AgentRun(second, store=store, **deps).events():
        yield event
