"""
Multi-step, tool-augmented generation.

``stream_text`` drives a model through up to ``max_steps`` steps: each step
streams one model response, then executes any tool calls it made (one at a
time) and feeds the results back for the next step. Progress is reported as
a flat sequence of ``StreamPart`` values.
"""

import asyncio
import contextlib
import json
import logging
import threading
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional

from agent.cancellation import CancellationToken
from model_service import ChatModel, ModelStreamError
from tools import ToolDefinition, ToolExecutionError, ToolInputError

logger = logging.getLogger(__name__)

_STREAM_DONE = object()


@dataclass(frozen=True)
class StreamPart:
    """One increment of model output.

    type is one of: step-start, text-delta, tool-call, tool-result,
    tool-error, step-finish, finish, error.
    """
    type: str
    text: str = ""
    tool_call_id: str = ""
    tool_name: str = ""
    input: Any = None
    output: Any = None
    error: Optional[BaseException] = None
    finish_reason: Optional[str] = None


async def _model_chunks(
    model: ChatModel,
    messages: List[Dict[str, Any]],
    system_prompt: str,
    tool_specs: List[Dict[str, Any]],
    cancel: CancellationToken,
) -> AsyncIterator[Dict[str, Any]]:
    """Run the model's sync stream in a background thread, forwarding chunks."""
    loop = asyncio.get_running_loop()
    chunk_queue: asyncio.Queue = asyncio.Queue()
    stop = threading.Event()

    def _put(item: Any) -> None:
        try:
            loop.call_soon_threadsafe(chunk_queue.put_nowait, item)
        except RuntimeError:
            # event loop already closed
            stop.set()

    def _stream_producer() -> None:
        gen = None
        try:
            gen = iter(model.stream(messages, system_prompt, tool_specs))
            for c in gen:
                if stop.is_set() or cancel.cancelled:
                    break
                _put(c)
            _put(_STREAM_DONE)
        except Exception as exc:
            _put(exc)
        finally:
            close = getattr(gen, "close", None)
            if close is not None:
                close()

    producer_thread = threading.Thread(target=_stream_producer, daemon=True)
    producer_thread.start()
    try:
        while True:
            chunk = await cancel.wait_for(chunk_queue.get())
            if chunk is _STREAM_DONE:
                return
            if isinstance(chunk, Exception):
                raise chunk
            yield chunk
    finally:
        stop.set()


def _finish_call(tool: Dict[str, Any], json_parts: List[str], fallback_id: str) -> Dict[str, Any]:
    raw = "".join(json_parts)
    try:
        tool_input = json.loads(raw) if raw.strip() else {}
        bad_json = False
    except json.JSONDecodeError:
        tool_input, bad_json = raw, True
    return {
        "id": tool.get("id") or fallback_id,
        "name": tool.get("name", ""),
        "input": tool_input,
        "bad_json": bad_json,
    }


def _json_safe(output: Any) -> Any:
    to_dict = getattr(output, "to_dict", None)
    return to_dict() if callable(to_dict) else output


async def _execute_tool(
    tool: Optional[ToolDefinition],
    name: str,
    tool_input: Any,
    cancel: CancellationToken,
) -> Any:
    if tool is None:
        raise ToolExecutionError(f"Unknown tool: {name}")
    if not isinstance(tool_input, dict):
        raise ToolInputError(f"Invalid input for {name}: expected a JSON object")
    return await cancel.wait_for(asyncio.to_thread(tool.run, tool_input))


async def stream_text(
    model: ChatModel,
    system_prompt: str,
    messages: List[Dict[str, Any]],
    tools: Dict[str, ToolDefinition],
    max_steps: int,
    cancel: CancellationToken,
) -> AsyncIterator[StreamPart]:
    """Yield StreamParts until the model stops calling tools or the step ceiling is hit.

    Model errors become an ``error`` part and end the stream. Tool errors
    become ``tool-error`` parts and are reported back to the model.
    CancellationSignal propagates to the caller.
    """
    history = list(messages)
    tool_specs = [t.spec() for t in tools.values()]
    finish_reason = "step-limit"

    for step in range(max_steps):
        yield StreamPart(type="step-start")

        text = ""
        calls: List[Dict[str, Any]] = []
        current_tool: Optional[Dict[str, Any]] = None
        json_parts: List[str] = []
        stop_reason: Optional[str] = None

        chunks = _model_chunks(model, history, system_prompt, tool_specs, cancel)
        try:
            async with contextlib.aclosing(chunks):
                async for chunk in chunks:
                    chunk_type = chunk.get("type", "")
                    if chunk_type == "text":
                        content = chunk.get("content", "")
                        text += content
                        yield StreamPart(type="text-delta", text=content)
                    elif chunk_type == "tool_use_start":
                        current_tool = dict(chunk.get("data") or {})
                        json_parts = []
                    elif chunk_type == "tool_use_delta":
                        json_parts.append(chunk.get("content", ""))
                    elif chunk_type == "tool_use_end" and current_tool is not None:
                        call = _finish_call(current_tool, json_parts, f"call_{step}_{len(calls)}")
                        calls.append(call)
                        current_tool = None
                        yield StreamPart(
                            type="tool-call",
                            tool_call_id=call["id"],
                            tool_name=call["name"],
                            input=call["input"],
                        )
                    elif chunk_type == "message_end":
                        stop_reason = chunk.get("stop_reason")
        except ModelStreamError as e:
            logger.error(f"Model stream error on step {step + 1}: {e}")
            yield StreamPart(type="error", error=e)
            return

        assistant_parts: List[Dict[str, Any]] = []
        if text:
            assistant_parts.append({"type": "text", "text": text})
        for call in calls:
            assistant_parts.append({
                "type": "tool_call",
                "id": call["id"],
                "name": call["name"],
                "input": call["input"] if isinstance(call["input"], dict) else {},
            })
        history.append({"role": "assistant", "content": assistant_parts})

        if not calls:
            yield StreamPart(type="step-finish", finish_reason=stop_reason)
            finish_reason = stop_reason or "end_turn"
            break

        results: List[Dict[str, Any]] = []
        for call in calls:
            cancel.raise_if_cancelled()
            tool = tools.get(call["name"])
            try:
                if call["bad_json"]:
                    raise ToolInputError(f"Invalid input for {call['name']}: arguments are not valid JSON")
                output = await _execute_tool(tool, call["name"], call["input"], cancel)
            except ToolExecutionError as e:
                logger.warning(f"Tool {call['name']} failed: {e}")
                results.append({"type": "tool_result", "id": call["id"], "name": call["name"],
                                "output": str(e), "is_error": True})
                yield StreamPart(type="tool-error", tool_call_id=call["id"], tool_name=call["name"],
                                 input=call["input"], error=e)
                continue
            except (OSError, ValueError, TypeError, LookupError) as e:
                logger.warning(f"Tool {call['name']} raised {type(e).__name__}: {e}")
                results.append({"type": "tool_result", "id": call["id"], "name": call["name"],
                                "output": f"{type(e).__name__}: {e}", "is_error": True})
                yield StreamPart(type="tool-error", tool_call_id=call["id"], tool_name=call["name"],
                                 input=call["input"], error=e)
                continue

            results.append({
                "type": "tool_result",
                "id": call["id"],
                "name": call["name"],
                "output": _json_safe(tool.model_output(output)),
                "is_error": False,
            })
            yield StreamPart(type="tool-result", tool_call_id=call["id"], tool_name=call["name"],
                             input=call["input"], output=output)

        history.append({"role": "tool", "content": results})
        yield StreamPart(type="step-finish", finish_reason=stop_reason)

    yield StreamPart(type="finish", finish_reason=finish_reason)
