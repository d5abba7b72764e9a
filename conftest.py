"""Shared pytest fixtures.

Every test gets its own data directory (sessions, plans, skills,
providers) so nothing touches ~/.coodeen.
"""

import copy
import json
from typing import Any, Dict, List

import pytest

from config import app_config
from model_service import ChatModel
from providers import ResolvedProvider
from sessions import SessionStore


# ============================================================================
# Scripted model
# ============================================================================


def text_chunk(text: str) -> Dict[str, Any]:
    return {"type": "text", "content": text}


def tool_chunks(call_id: str, name: str, tool_input: Any) -> List[Dict[str, Any]]:
    raw = tool_input if isinstance(tool_input, str) else json.dumps(tool_input)
    return [
        {"type": "tool_use_start", "content": "", "data": {"id": call_id, "name": name}},
        {"type": "tool_use_delta", "content": raw},
        {"type": "tool_use_end", "content": ""},
    ]


def end_chunk(stop_reason: str = "end_turn") -> Dict[str, Any]:
    return {"type": "message_end", "content": "", "usage": {}, "stop_reason": stop_reason}


class ScriptedModel(ChatModel):
    """Replays one scripted list of chunks per model step.

    An Exception in a script is raised at that point of the stream.
    """

    provider_id = "fake"

    def __init__(self, steps: List[List[Any]], model_id: str = "fake-model"):
        super().__init__(model_id)
        self.steps = list(steps)
        self.calls: List[Dict[str, Any]] = []

    def stream(self, messages, system_prompt, tools=None):
        self.calls.append({
            "messages": copy.deepcopy(messages),
            "system_prompt": system_prompt,
            "tools": [t["name"] for t in tools or []],
        })
        script = self.steps.pop(0) if self.steps else [end_chunk()]
        for chunk in script:
            if isinstance(chunk, Exception):
                raise chunk
            yield chunk


def make_resolver(model: ChatModel):
    def _resolve(provider_id, model_id, store=None, catalog=None):
        return ResolvedProvider(model=model, provider_id=provider_id, model_id=model_id)
    return _resolve


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def data_dir(tmp_path, monkeypatch):
    """Point the application data directory at a fresh temp dir."""
    home = tmp_path / "coodeen-home"
    home.mkdir()
    monkeypatch.setattr(app_config, "data_dir", str(home))
    return home


@pytest.fixture
def project_dir(tmp_path):
    project = tmp_path / "project"
    project.mkdir()
    return project


@pytest.fixture
def store(data_dir):
    return SessionStore()


@pytest.fixture
def session(store, project_dir):
    return store.create(
        title="Test",
        provider_id="fake",
        model_id="fake-model",
        project_dir=str(project_dir),
    )
