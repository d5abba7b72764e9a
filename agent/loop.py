r"""
Agent loop: one prompt -> one sequence of AgentEvents.

A run moves through explicit states:

    idle -> resolving -> streaming -> finalizing
                  \           \
                   +-> errored +-> aborted

Resolution failures and model stream errors end the run with a single
``error`` event. Cancellation ends it silently: no event is emitted once
the token has fired. Tool failures are not run-level errors; the model
sees them and may react.
"""

import asyncio
import contextlib
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Callable, List, Optional

from config import app_config
from models_catalog import ModelsCatalog, model_supports_image
from providers import ProviderError, resolve_provider
from sessions import ProviderStore, SessionNotFoundError, SessionStore
from tools import ModeSwitch, Mode, PLAN_EXIT_TOOL, create_tools, get_plan_path, read_plan

from agent.cancellation import CancellationSignal, CancellationToken
from agent.conversation import build_conversation
from agent.events import (
    AgentEvent,
    DoneEvent,
    ErrorEvent,
    ModeSwitchEvent,
    TokenEvent,
    ToolCallEvent,
    ToolResultEvent,
)
from agent.prompts import build_system_prompt
from agent.stream import StreamPart, stream_text

logger = logging.getLogger(__name__)


class RunState(str, Enum):
    IDLE = "idle"
    RESOLVING = "resolving"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    ABORTED = "aborted"
    ERRORED = "errored"


_TRANSITIONS = {
    RunState.IDLE: {RunState.RESOLVING, RunState.ABORTED},
    RunState.RESOLVING: {RunState.STREAMING, RunState.ERRORED, RunState.ABORTED},
    RunState.STREAMING: {RunState.FINALIZING, RunState.ERRORED, RunState.ABORTED},
    RunState.FINALIZING: {RunState.ERRORED, RunState.ABORTED},
    RunState.ABORTED: set(),
    RunState.ERRORED: set(),
}


class InvalidTransitionError(RuntimeError):
    pass


@dataclass
class RunRequest:
    """Everything one run needs. ``images`` are data URLs."""
    session_id: str
    prompt: str
    provider_id: str
    model_id: str
    project_dir: str
    images: Optional[List[str]] = None
    mode: Mode = Mode.AGENT
    cancellation_token: CancellationToken = field(default_factory=CancellationToken)
    # False when the caller has already stored the user turn
    persist_prompt: bool = True


class AgentRun:
    """A single, single-use agent run.

    Collaborators are injectable so the state machine can be driven
    without a live model: ``resolver`` maps (provider_id, model_id) to a
    ResolvedProvider and ``stream_fn`` has the signature of ``stream_text``.
    """

    def __init__(
        self,
        request: RunRequest,
        store: Optional[SessionStore] = None,
        provider_store: Optional[ProviderStore] = None,
        resolver: Callable[..., Any] = resolve_provider,
        stream_fn: Callable[..., AsyncIterator[StreamPart]] = stream_text,
        catalog: Optional[ModelsCatalog] = None,
        max_steps: Optional[int] = None,
        home: Optional[str] = None,
    ):
        self.request = request
        self.store = store or SessionStore()
        self.provider_store = provider_store
        self.catalog = catalog
        self.max_steps = max_steps or app_config.max_steps
        self.home = home or os.path.expanduser("~")
        self._resolver = resolver
        self._stream_fn = stream_fn
        self._state = RunState.IDLE
        self._started = False
        self.text = ""
        self.message_id: Optional[str] = None
        self.mode_switch: Optional[ModeSwitch] = None

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def token(self) -> CancellationToken:
        return self.request.cancellation_token

    def _transition(self, new_state: RunState) -> None:
        if new_state not in _TRANSITIONS[self._state]:
            raise InvalidTransitionError(f"{self._state.value} -> {new_state.value}")
        logger.debug(f"Run {self.request.session_id}: {self._state.value} -> {new_state.value}")
        self._state = new_state

    def _abort(self) -> None:
        if self._state not in (RunState.ABORTED, RunState.ERRORED):
            self._transition(RunState.ABORTED)
        logger.info(f"Run {self.request.session_id} cancelled")

    async def events(self) -> AsyncIterator[AgentEvent]:
        if self._started:
            raise RuntimeError("AgentRun.events() can only be consumed once")
        self._started = True
        req = self.request

        if self.token.cancelled:
            self._abort()
            return

        # ---- resolving ----
        self._transition(RunState.RESOLVING)
        try:
            resolved = await self.token.wait_for(asyncio.to_thread(
                self._resolver, req.provider_id, req.model_id,
                store=self.provider_store, catalog=self.catalog,
            ))
        except CancellationSignal:
            self._abort()
            return
        except ProviderError as e:
            logger.warning(f"Provider resolution failed for {req.provider_id}: {e}")
            self._transition(RunState.ERRORED)
            if not self.token.cancelled:
                yield ErrorEvent(message=str(e))
            return
        except Exception as e:
            logger.exception(f"Provider {req.provider_id} could not be initialized")
            self._transition(RunState.ERRORED)
            if not self.token.cancelled:
                yield ErrorEvent(message=str(e) or type(e).__name__)
            return

        # ---- streaming ----
        self._transition(RunState.STREAMING)
        stream = self._stream(resolved.model)
        try:
            async with contextlib.aclosing(stream):
                async for event in stream:
                    if self.token.cancelled:
                        self._abort()
                        return
                    yield event
                    if isinstance(event, ErrorEvent):
                        return
        except CancellationSignal:
            self._abort()
            return
        except SessionNotFoundError:
            self._transition(RunState.ERRORED)
            if not self.token.cancelled:
                yield ErrorEvent(message=f"Session not found: {req.session_id}")
            return
        except Exception as e:
            if self.token.cancelled:
                self._abort()
                return
            logger.exception(f"Run {req.session_id} failed while streaming")
            if self._state is not RunState.ERRORED:
                self._transition(RunState.ERRORED)
            yield ErrorEvent(message=str(e) or type(e).__name__)
            return

        # ---- finalizing ----
        if self.token.cancelled:
            self._abort()
            return
        self._transition(RunState.FINALIZING)
        message_id = ""
        if self.text:
            try:
                message = self.store.append_message(req.session_id, "assistant", self.text)
            except (OSError, KeyError) as e:
                logger.error(f"Failed to persist assistant message for {req.session_id}: {e}")
                self._transition(RunState.ERRORED)
                if not self.token.cancelled:
                    yield ErrorEvent(message=f"Failed to save response: {e}")
                return
            message_id = message.id
        self.message_id = message_id
        if self.token.cancelled:
            self._abort()
            return
        yield DoneEvent(message_id=message_id)

    async def _stream(self, model: Any) -> AsyncIterator[AgentEvent]:
        """Assemble inputs, drive the model and classify its parts."""
        req = self.request
        mode = Mode(req.mode)

        history = self.store.list_messages(req.session_id)
        messages = build_conversation(history, req.prompt, req.images)
        if req.persist_prompt:
            self.store.append_message(req.session_id, "user", req.prompt, req.images or None)

        plan_path = get_plan_path(req.session_id)
        plan_text = read_plan(plan_path) if mode is Mode.AGENT else None
        system_prompt = build_system_prompt(mode, req.model_id, self.home, req.project_dir, plan_text)

        supports_vision = await asyncio.to_thread(
            model_supports_image, req.provider_id, req.model_id, self.catalog
        )
        tools = create_tools(req.project_dir, mode, plan_path if mode is Mode.PLAN else None, supports_vision)
        logger.info(
            f"Run {req.session_id}: {mode.value} mode, {req.provider_id}/{req.model_id}, "
            f"{len(messages)} turns, {len(tools)} tools"
        )

        parts = self._stream_fn(model, system_prompt, messages, tools, self.max_steps, self.token)
        async with contextlib.aclosing(parts):
            async for part in parts:
                if self.token.cancelled:
                    raise CancellationSignal()

                if part.type == "text-delta":
                    if not part.text:
                        continue
                    self.text += part.text
                    yield TokenEvent(content=part.text)

                elif part.type == "tool-call":
                    yield ToolCallEvent(name=part.tool_name, input=part.input, tool_call_id=part.tool_call_id)

                elif part.type == "tool-result":
                    output = part.output
                    switch = output if isinstance(output, ModeSwitch) else None
                    yield ToolResultEvent(
                        name=part.tool_name,
                        output=switch.to_dict() if switch else output,
                        tool_call_id=part.tool_call_id,
                    )
                    if switch and part.tool_name == PLAN_EXIT_TOOL and self.mode_switch is None:
                        self.mode_switch = switch
                        yield ModeSwitchEvent(
                            mode=switch.mode,
                            plan_path=switch.plan_path,
                            plan_content=switch.plan_content,
                        )

                elif part.type == "error":
                    self._transition(RunState.ERRORED)
                    yield ErrorEvent(message=str(part.error) if part.error else "Model stream error")
                    return

                elif part.type == "tool-error":
                    logger.debug(f"Tool error reported to model: {part.tool_name}: {part.error}")


def run_agent(request: RunRequest, **deps: Any) -> AsyncIterator[AgentEvent]:
    """Start a run and return its event sequence."""
    return AgentRun(request, **deps).events()
