"""
Language-model adapters.

Every adapter exposes a synchronous ``stream()`` generator that yields chunk
dicts in one shared dialect, regardless of vendor:

    {"type": "text", "content": str}
    {"type": "tool_use_start", "data": {"id": str, "name": str}}
    {"type": "tool_use_delta", "content": partial_json}
    {"type": "tool_use_end"}
    {"type": "message_end", "stop_reason": str, "usage": dict}

Messages passed in use the neutral conversation format built by the agent:
user turns are a string or ``[{"type": "image", "image": data_url}, ...,
{"type": "text", "text": str}]``; assistant turns are lists of ``text`` and
``tool_call`` parts; ``tool`` turns are lists of ``tool_result`` parts.
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, Generator, Iterable, List, Optional, Tuple

import anthropic
import boto3
import openai
from botocore.exceptions import BotoCoreError, ClientError

from config import aws_config, model_config

logger = logging.getLogger(__name__)

Chunk = Dict[str, Any]

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+);base64,(?P<data>[A-Za-z0-9+/=\s]+)$")


class ModelStreamError(Exception):
    """The provider reported an error while generating."""


def parse_data_url(url: str) -> Tuple[str, str]:
    """Split ``data:<mime>;base64,<data>`` into (mime, data). Raises ValueError."""
    match = _DATA_URL_RE.match(url or "")
    if not match:
        raise ValueError("not a base64 data URL")
    return match.group("mime"), re.sub(r"\s+", "", match.group("data"))


def _output_text(output: Any) -> str:
    if isinstance(output, str):
        return output
    return json.dumps(output, ensure_ascii=False)


class ChatModel(ABC):
    """Base adapter. Subclasses implement ``stream``."""

    provider_id = ""

    def __init__(self, model_id: str):
        self.model_id = model_id

    @abstractmethod
    def stream(
        self,
        messages: List[Dict[str, Any]],
        system_prompt: str,
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> Generator[Chunk, None, None]:
        """Yield normalized chunks for one model step."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.provider_id}:{self.model_id})"


# ============================================================
# Anthropic Messages format (Anthropic API and Bedrock)
# ============================================================

def _anthropic_image(part: Dict[str, Any]) -> Dict[str, Any]:
    if "image" in part:
        mime, data = parse_data_url(part["image"])
    else:
        mime, data = part["media_type"], part["data"]
    return {"type": "image", "source": {"type": "base64", "media_type": mime, "data": data}}


def format_messages_anthropic(messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Neutral conversation -> Anthropic ``messages``."""
    formatted: List[Dict[str, Any]] = []
    for msg in messages:
        role, content = msg["role"], msg["content"]
        if role == "system":
            continue
        if isinstance(content, str):
            formatted.append({"role": role, "content": content if content.strip() else "(no content)"})
            continue

        blocks: List[Dict[str, Any]] = []
        for part in content:
            ptype = part.get("type")
            if ptype == "text":
                if part.get("text", "").strip():
                    blocks.append({"type": "text", "text": part["text"]})
            elif ptype == "image":
                blocks.append(_anthropic_image(part))
            elif ptype == "tool_call":
                blocks.append({
                    "type": "tool_use",
                    "id": part["id"],
                    "name": part["name"],
                    "input": part.get("input") or {},
                })
            elif ptype == "tool_result":
                output = part.get("output")
                if isinstance(output, list):
                    result_content: Any = [
                        _anthropic_image(p) if p.get("type") == "image" else {"type": "text", "text": p.get("text", "")}
                        for p in output
                    ]
                else:
                    result_content = _output_text(output)
                blocks.append({
                    "type": "tool_result",
                    "tool_use_id": part["id"],
                    "content": result_content,
                    "is_error": bool(part.get("is_error")),
                })
        if not blocks:
            blocks = [{"type": "text", "text": "(no content)"}]
        # tool results travel as a user turn
        formatted.append({"role": "user" if role == "tool" else role, "content": blocks})
    return formatted


def translate_anthropic_events(events: Iterable[Dict[str, Any]]) -> Generator[Chunk, None, None]:
    """Anthropic streaming events (as dicts) -> chunk dialect."""
    current_block_type = "text"
    for chunk in events:
        event_type = chunk.get("type", "")

        if event_type == "content_block_start":
            block = chunk.get("content_block", {})
            current_block_type = block.get("type", "text")
            if current_block_type == "tool_use":
                yield {
                    "type": "tool_use_start",
                    "content": "",
                    "data": {"id": block.get("id", ""), "name": block.get("name", "")},
                }

        elif event_type == "content_block_delta":
            delta = chunk.get("delta", {})
            delta_type = delta.get("type", "")
            if delta_type == "text_delta":
                text = delta.get("text", "")
                if text:
                    yield {"type": "text", "content": text}
            elif delta_type == "input_json_delta":
                partial = delta.get("partial_json", "")
                if partial:
                    yield {"type": "tool_use_delta", "content": partial}

        elif event_type == "content_block_stop":
            if current_block_type == "tool_use":
                yield {"type": "tool_use_end", "content": ""}
            current_block_type = "text"

        elif event_type == "message_delta":
            yield {
                "type": "message_end",
                "content": "",
                "usage": chunk.get("usage") or {},
                "stop_reason": (chunk.get("delta") or {}).get("stop_reason"),
            }

        elif event_type == "error":
            err = chunk.get("error") or {}
            raise ModelStreamError(err.get("message") or "Model stream error")


def _anthropic_request(messages, system_prompt: str, tools) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "max_tokens": model_config.max_tokens,
        "system": system_prompt,
        "messages": format_messages_anthropic(messages),
    }
    if model_config.temperature is not None:
        body["temperature"] = model_config.temperature
    if tools:
        body["tools"] = tools
    return body


class AnthropicModel(ChatModel):
    provider_id = "anthropic"

    def __init__(self, model_id: str, api_key: str):
        super().__init__(model_id)
        self.client = anthropic.Anthropic(api_key=api_key)

    def stream(self, messages, system_prompt, tools=None):
        body = _anthropic_request(messages, system_prompt, tools)
        logger.info(f"Streaming from model: anthropic/{self.model_id}")
        try:
            events = self.client.messages.create(model=self.model_id, stream=True, **body)
            yield from translate_anthropic_events(e.model_dump() for e in events)
        except anthropic.APIError as e:
            logger.error(f"Anthropic streaming error: {e}")
            raise ModelStreamError(getattr(e, "message", None) or str(e)) from e


class BedrockModel(ChatModel):
    """Claude on Amazon Bedrock. ``profile`` selects the AWS credentials profile."""

    provider_id = "bedrock"

    def __init__(self, model_id: str, profile: Optional[str] = None):
        super().__init__(model_id)
        session_kwargs: Dict[str, Any] = {"region_name": aws_config.region}
        profile = profile if profile and profile != "default" else aws_config.profile_name
        if profile:
            session_kwargs["profile_name"] = profile
        try:
            self.client = boto3.Session(**session_kwargs).client("bedrock-runtime")
        except BotoCoreError as e:
            raise ModelStreamError(f"Failed to initialize Bedrock client: {e}") from e

    def stream(self, messages, system_prompt, tools=None):
        body = _anthropic_request(messages, system_prompt, tools)
        body["anthropic_version"] = "bedrock-2023-05-31"
        logger.info(f"Streaming from model: bedrock/{self.model_id}")
        try:
            response = self.client.invoke_model_with_response_stream(
                modelId=self.model_id,
                body=json.dumps(body),
                contentType="application/json",
                accept="application/json",
            )
            events = (json.loads(event["chunk"]["bytes"]) for event in response["body"] if "chunk" in event)
            yield from translate_anthropic_events(events)
        except ClientError as e:
            error_message = e.response.get("Error", {}).get("Message", str(e))
            logger.error(f"Bedrock streaming error: {error_message}")
            raise ModelStreamError(f"Streaming error: {error_message}") from e
        except BotoCoreError as e:
            logger.error(f"Bedrock streaming error: {e}")
            raise ModelStreamError(f"Streaming error: {e}") from e


# ============================================================
# OpenAI Chat Completions format (OpenAI, Google, free gateway)
# ============================================================

def format_messages_openai(messages: List[Dict[str, Any]], system_prompt: str) -> List[Dict[str, Any]]:
    formatted: List[Dict[str, Any]] = [{"role": "system", "content": system_prompt}]
    for msg in messages:
        role, content = msg["role"], msg["content"]
        if isinstance(content, str):
            formatted.append({"role": role, "content": content})
            continue

        if role == "user":
            parts = []
            for part in content:
                if part.get("type") == "image":
                    parts.append({"type": "image_url", "image_url": {"url": part["image"]}})
                elif part.get("type") == "text":
                    parts.append({"type": "text", "text": part["text"]})
            formatted.append({"role": "user", "content": parts})

        elif role == "assistant":
            text = "".join(p.get("text", "") for p in content if p.get("type") == "text")
            entry: Dict[str, Any] = {"role": "assistant", "content": text or None}
            calls = [p for p in content if p.get("type") == "tool_call"]
            if calls:
                entry["tool_calls"] = [
                    {
                        "id": c["id"],
                        "type": "function",
                        "function": {"name": c["name"], "arguments": json.dumps(c.get("input") or {})},
                    }
                    for c in calls
                ]
            formatted.append(entry)

        elif role == "tool":
            pending_images = []
            for part in content:
                output = part.get("output")
                if isinstance(output, list):
                    text = "\n".join(p.get("text", "") for p in output if p.get("type") == "text")
                    pending_images.extend(p for p in output if p.get("type") == "image")
                else:
                    text = _output_text(output)
                formatted.append({"role": "tool", "tool_call_id": part["id"], "content": text})
            # tool messages cannot carry images; attach them as a user turn
            if pending_images:
                formatted.append({
                    "role": "user",
                    "content": [
                        {"type": "image_url", "image_url": {"url": f"data:{p['media_type']};base64,{p['data']}"}}
                        for p in pending_images
                    ],
                })
    return formatted


def format_tools_openai(tools: Optional[List[Dict[str, Any]]]) -> Optional[List[Dict[str, Any]]]:
    if not tools:
        return None
    return [
        {
            "type": "function",
            "function": {
                "name": t["name"],
                "description": t.get("description", ""),
                "parameters": t.get("input_schema") or {"type": "object", "properties": {}},
            },
        }
        for t in tools
    ]


_FINISH_REASONS = {"tool_calls": "tool_use", "stop": "end_turn", "length": "max_tokens"}


class OpenAIChatModel(ChatModel):
    """OpenAI-compatible chat completions (OpenAI, Google, free gateway)."""

    def __init__(self, model_id: str, api_key: str, base_url: Optional[str] = None,
                 provider_id: str = "openai"):
        super().__init__(model_id)
        self.provider_id = provider_id
        self.client = openai.OpenAI(api_key=api_key, base_url=base_url)

    def stream(self, messages, system_prompt, tools=None):
        kwargs: Dict[str, Any] = {
            "model": self.model_id,
            "messages": format_messages_openai(messages, system_prompt),
            "stream": True,
        }
        oa_tools = format_tools_openai(tools)
        if oa_tools:
            kwargs["tools"] = oa_tools
        if model_config.temperature is not None:
            kwargs["temperature"] = model_config.temperature

        logger.info(f"Streaming from model: {self.provider_id}/{self.model_id}")
        # Tool call fragments arrive keyed by index; emit them whole at the end
        calls: Dict[int, Dict[str, str]] = {}
        finish_reason = None
        usage: Dict[str, Any] = {}
        try:
            for chunk in self.client.chat.completions.create(**kwargs):
                if getattr(chunk, "usage", None):
                    usage = chunk.usage.model_dump()
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                delta = choice.delta
                if delta is not None:
                    if delta.content:
                        yield {"type": "text", "content": delta.content}
                    for tc in delta.tool_calls or []:
                        slot = calls.setdefault(tc.index, {"id": "", "name": "", "arguments": ""})
                        if tc.id:
                            slot["id"] = tc.id
                        if tc.function is not None:
                            if tc.function.name:
                                slot["name"] += tc.function.name
                            if tc.function.arguments:
                                slot["arguments"] += tc.function.arguments
                if choice.finish_reason:
                    finish_reason = choice.finish_reason
        except openai.OpenAIError as e:
            logger.error(f"{self.provider_id} streaming error: {e}")
            raise ModelStreamError(getattr(e, "message", None) or str(e)) from e

        for index in sorted(calls):
            call = calls[index]
            yield {"type": "tool_use_start", "content": "", "data": {"id": call["id"] or f"call_{index}", "name": call["name"]}}
            if call["arguments"]:
                yield {"type": "tool_use_delta", "content": call["arguments"]}
            yield {"type": "tool_use_end", "content": ""}

        yield {
            "type": "message_end",
            "content": "",
            "usage": usage,
            "stop_reason": _FINISH_REASONS.get(finish_reason or "", finish_reason),
        }
