"""Tests for the agent loop, the step driver and the plan handoff."""

import json
import pathlib
import threading
import warnings

import pytest

from conftest import ScriptedModel, end_chunk, make_resolver, text_chunk, tool_chunks
from agent import (
    EXECUTE_PLAN_PROMPT,
    AgentRun,
    CancellationToken,
    DoneEvent,
    ErrorEvent,
    InvalidTransitionError,
    ModeSwitchEvent,
    RunRequest,
    RunState,
    TokenEvent,
    ToolCallEvent,
    ToolResultEvent,
    build_conversation,
    build_system_prompt,
    is_terminal,
    run_agent,
    run_with_handoff,
)
from agent import loop
from model_service import ModelStreamError
from sessions import Message, ProviderStore
from tools import Mode, get_plan_path, read_plan, registry

PNG_URL = "data:image/png;base64,iVBORw0KGgo="
JPEG_URL = "data:image/jpeg;base64,/9j/4AAQ"


async def collect(events):
    return [e async for e in events]


def make_request(session, prompt="hello", **kwargs):
    return RunRequest(
        session_id=session.id,
        prompt=prompt,
        provider_id="fake",
        model_id="fake-model",
        project_dir=session.project_dir,
        **kwargs,
    )


def assert_single_terminal_last(events):
    terminals = [e for e in events if is_terminal(e)]
    assert len(terminals) == 1
    assert events[-1] is terminals[0]


class TestResolution:
    """Resolution failures end the run before any model call."""

    @pytest.mark.asyncio
    async def test_unconfigured_provider_yields_one_error(self, session, store):
        request = RunRequest(
            session_id=session.id,
            prompt="hi",
            provider_id="anthropic",
            model_id="claude-sonnet-4-20250514",
            project_dir=session.project_dir,
        )
        run = AgentRun(request, store=store, provider_store=ProviderStore())

        events = await collect(run.events())

        assert len(events) == 1
        assert isinstance(events[0], ErrorEvent)
        assert "anthropic" in events[0].message
        assert "Settings" in events[0].message
        assert run.state is RunState.ERRORED
        assert store.list_messages(session.id) == []

    @pytest.mark.asyncio
    async def test_empty_api_key_is_a_configuration_error(self, session, store):
        providers = ProviderStore()
        providers.upsert("openai", "   ")
        request = RunRequest(
            session_id=session.id,
            prompt="hi",
            provider_id="openai",
            model_id="gpt-4o",
            project_dir=session.project_dir,
        )

        events = await collect(run_agent(request, store=store, provider_store=providers))

        assert [e.to_dict()["type"] for e in events] == ["error"]
        assert "API key not configured for openai" in events[0].message


class TestLoop:

    @pytest.mark.asyncio
    async def test_text_run_persists_and_reports_message_id(self, session, store):
        model = ScriptedModel([[text_chunk("Hel"), text_chunk("lo!"), end_chunk()]])
        run = AgentRun(make_request(session), store=store, resolver=make_resolver(model))

        events = await collect(run.events())

        assert [e.content for e in events if isinstance(e, TokenEvent)] == ["Hel", "lo!"]
        assert_single_terminal_last(events)
        done = events[-1]
        assert isinstance(done, DoneEvent)

        messages = store.list_messages(session.id)
        assert [(m.role, m.content) for m in messages] == [("user", "hello"), ("assistant", "Hello!")]
        assert done.message_id == messages[-1].id
        assert run.state is RunState.FINALIZING

    @pytest.mark.asyncio
    async def test_no_text_gives_empty_message_id(self, session, store):
        model = ScriptedModel([[end_chunk()]])
        events = await collect(run_agent(make_request(session), store=store, resolver=make_resolver(model)))

        assert events == [DoneEvent(message_id="")]
        assert [m.role for m in store.list_messages(session.id)] == ["user"]

    def test_loop_module_compiles_without_warnings(self):
        """The state diagram in the module docstring has no invalid escapes."""
        path = pathlib.Path(loop.__file__)
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            compile(path.read_text(encoding="utf-8"), str(path), "exec")

    @pytest.mark.asyncio
    async def test_history_precedes_new_prompt(self, session, store):
        store.append_message(session.id, "user", "first")
        store.append_message(session.id, "assistant", "answer")
        model = ScriptedModel([[text_chunk("ok"), end_chunk()]])

        await collect(run_agent(make_request(session, "second"), store=store, resolver=make_resolver(model)))

        sent = model.calls[0]["messages"]
        assert [(m["role"], m["content"]) for m in sent] == [
            ("user", "first"),
            ("assistant", "answer"),
            ("user", "second"),
        ]

    @pytest.mark.asyncio
    async def test_model_error_is_final_event(self, session, store):
        model = ScriptedModel([[text_chunk("partial"), ModelStreamError("overloaded")]])
        run = AgentRun(make_request(session), store=store, resolver=make_resolver(model))

        events = await collect(run.events())

        assert isinstance(events[0], TokenEvent)
        assert_single_terminal_last(events)
        assert isinstance(events[-1], ErrorEvent)
        assert events[-1].message == "overloaded"
        assert run.state is RunState.ERRORED
        assert [m.role for m in store.list_messages(session.id)] == ["user"]

    @pytest.mark.asyncio
    async def test_missing_session_is_an_error(self, store, project_dir):
        model = ScriptedModel([[text_chunk("x"), end_chunk()]])
        request = RunRequest(
            session_id="does-not-exist",
            prompt="hi",
            provider_id="fake",
            model_id="fake-model",
            project_dir=str(project_dir),
        )

        events = await collect(run_agent(request, store=store, resolver=make_resolver(model)))

        assert len(events) == 1
        assert events[0].message == "Session not found: does-not-exist"
        assert model.calls == []

    @pytest.mark.asyncio
    async def test_events_are_single_use(self, session, store):
        model = ScriptedModel([[end_chunk()]])
        run = AgentRun(make_request(session), store=store, resolver=make_resolver(model))
        await collect(run.events())
        with pytest.raises(RuntimeError):
            await collect(run.events())

    def test_invalid_transition(self, session, store):
        run = AgentRun(make_request(session), store=store)
        with pytest.raises(InvalidTransitionError):
            run._transition(RunState.FINALIZING)


class TestCancellation:
    """A cancelled run stops emitting and never reports an error."""

    @pytest.mark.asyncio
    async def test_cancel_before_start_emits_nothing(self, session, store):
        model = ScriptedModel([[text_chunk("never"), end_chunk()]])
        request = make_request(session)
        request.cancellation_token.cancel()
        run = AgentRun(request, store=store, resolver=make_resolver(model))

        assert await collect(run.events()) == []
        assert run.state is RunState.ABORTED
        assert model.calls == []
        assert store.list_messages(session.id) == []

    @pytest.mark.asyncio
    async def test_cancel_mid_stream_stops_events(self, session, store):
        model = ScriptedModel([[text_chunk("one"), text_chunk("two"), text_chunk("three"), end_chunk()]])
        token = CancellationToken()
        run = AgentRun(make_request(session, cancellation_token=token), store=store,
                       resolver=make_resolver(model))

        received = []
        async for event in run.events():
            received.append(event)
            token.cancel()

        assert received == [TokenEvent(content="one")]
        assert run.state is RunState.ABORTED
        assert [m.role for m in store.list_messages(session.id)] == ["user"]

    @pytest.mark.asyncio
    async def test_cancel_during_tool_drops_its_result(self, session, store, monkeypatch):
        """A tool still running when the token fires never reports a result."""
        release = threading.Event()
        token = CancellationToken()

        def slow_glob(backend, pattern):
            token.cancel()
            release.wait(5)
            return "late.py"

        monkeypatch.setattr(registry, "glob_find", slow_glob)
        model = ScriptedModel([
            [*tool_chunks("g1", "glob", {"pattern": "*.py"}), end_chunk("tool_use")],
            [text_chunk("never"), end_chunk()],
        ])
        run = AgentRun(make_request(session, cancellation_token=token), store=store,
                       resolver=make_resolver(model))

        try:
            events = await collect(run.events())
        finally:
            release.set()

        assert [type(e) for e in events] == [ToolCallEvent]
        assert run.state is RunState.ABORTED
        assert len(model.calls) == 1
        assert [m.role for m in store.list_messages(session.id)] == ["user"]


class TestTools:

    @pytest.mark.asyncio
    async def test_tool_call_and_result_are_correlated(self, session, store, project_dir):
        (project_dir / "notes.txt").write_text("remember", encoding="utf-8")
        model = ScriptedModel([
            [*tool_chunks("call_1", "read", {"file_path": "notes.txt"}), end_chunk("tool_use")],
            [text_chunk("It says remember."), end_chunk()],
        ])

        events = await collect(run_agent(make_request(session), store=store, resolver=make_resolver(model)))

        call = next(e for e in events if isinstance(e, ToolCallEvent))
        result = next(e for e in events if isinstance(e, ToolResultEvent))
        assert call.to_dict() == {
            "type": "tool_call", "name": "read", "input": {"file_path": "notes.txt"}, "toolCallId": "call_1",
        }
        assert result.to_dict() == {"type": "tool_result", "name": "read", "output": "1\tremember"}
        assert result.tool_call_id == call.tool_call_id
        assert events.index(call) < events.index(result)

        tool_turn = model.calls[1]["messages"][-1]
        assert tool_turn["role"] == "tool"
        assert tool_turn["content"][0]["id"] == "call_1"
        assert tool_turn["content"][0]["is_error"] is False

    @pytest.mark.asyncio
    async def test_tool_error_goes_back_to_model(self, session, store, project_dir):
        (project_dir / "a.py").write_text("x = 1\nx = 1\n", encoding="utf-8")
        model = ScriptedModel([
            [*tool_chunks("c1", "edit", {"file_path": "a.py", "old_string": "x = 1", "new_string": "y"}),
             end_chunk("tool_use")],
            [text_chunk("Could not edit."), end_chunk()],
        ])

        events = await collect(run_agent(make_request(session), store=store, resolver=make_resolver(model)))

        assert not any(isinstance(e, ErrorEvent) for e in events)
        assert not any(isinstance(e, ToolResultEvent) for e in events)
        assert isinstance(events[-1], DoneEvent)
        result = model.calls[1]["messages"][-1]["content"][0]
        assert result["is_error"] is True
        assert "found 2 times" in result["output"]
        assert (project_dir / "a.py").read_text(encoding="utf-8") == "x = 1\nx = 1\n"

    @pytest.mark.asyncio
    async def test_unknown_tool_and_bad_json_are_tool_errors(self, session, store):
        model = ScriptedModel([
            [*tool_chunks("c1", "shell", {"cmd": "ls"}), *tool_chunks("c2", "read", "{not json"),
             end_chunk("tool_use")],
            [end_chunk()],
        ])

        events = await collect(run_agent(make_request(session), store=store, resolver=make_resolver(model)))

        assert isinstance(events[-1], DoneEvent)
        results = model.calls[1]["messages"][-1]["content"]
        assert [r["id"] for r in results] == ["c1", "c2"]
        assert all(r["is_error"] for r in results)
        assert "Unknown tool: shell" in results[0]["output"]

    @pytest.mark.asyncio
    async def test_step_ceiling(self, session, store):
        glob_step = [*tool_chunks("g", "glob", {"pattern": "*.py"}), end_chunk("tool_use")]
        model = ScriptedModel([list(glob_step) for _ in range(5)])
        run = AgentRun(make_request(session), store=store, resolver=make_resolver(model), max_steps=3)

        events = await collect(run.events())

        assert len(model.calls) == 3
        assert sum(isinstance(e, ToolCallEvent) for e in events) == 3
        assert isinstance(events[-1], DoneEvent)

    @pytest.mark.asyncio
    async def test_mode_gates_offered_tools(self, session, store):
        model = ScriptedModel([[end_chunk()], [end_chunk()]])
        await collect(run_agent(make_request(session), store=store, resolver=make_resolver(model)))
        await collect(run_agent(make_request(session, mode=Mode.PLAN), store=store,
                                resolver=make_resolver(model)))

        agent_tools, plan_tools = model.calls[0]["tools"], model.calls[1]["tools"]
        assert "edit" in agent_tools and "plan_exit" not in agent_tools
        assert "plan_exit" in plan_tools and "edit" not in plan_tools


class TestImages:

    @pytest.mark.asyncio
    async def test_images_lead_the_user_turn(self, session, store):
        model = ScriptedModel([[text_chunk("Two images."), end_chunk()]])
        request = make_request(session, "describe", images=[PNG_URL, JPEG_URL])

        await collect(run_agent(request, store=store, resolver=make_resolver(model)))

        content = model.calls[0]["messages"][-1]["content"]
        assert [p["type"] for p in content] == ["image", "image", "text"]
        assert [p["image"] for p in content[:2]] == [PNG_URL, JPEG_URL]
        assert content[2]["text"] == "describe"

        stored = store.list_messages(session.id)[0]
        assert json.loads(stored.images) == [PNG_URL, JPEG_URL]

    def test_stored_images_replay_as_multipart(self, session, store):
        message = store.append_message(session.id, "user", "look", [PNG_URL])
        turns = build_conversation([message], "again")
        assert turns[0]["content"][0] == {"type": "image", "image": PNG_URL}
        assert turns[1] == {"role": "user", "content": "again"}

    @pytest.mark.parametrize("raw", ["not json", "null", "[1]", '{"a": 1}', '["data:xx"]'])
    def test_malformed_stored_images_fall_back_to_text(self, raw):
        message = Message(id="m1", session_id="s1", role="user", content="hi", images=raw)
        turns = build_conversation([message], "next")
        assert turns[0] == {"role": "user", "content": "hi"}
        assert turns[1] == {"role": "user", "content": "next"}


class TestPlanHandoff:

    def plan_model(self, plan_text, extra_steps=()):
        return ScriptedModel([
            [*tool_chunks("p1", "plan_write", {"content": plan_text}), end_chunk("tool_use")],
            [*tool_chunks("p2", "plan_exit", {}), end_chunk("tool_use")],
            [text_chunk("Switching to build."), end_chunk()],
            *extra_steps,
        ])

    @pytest.mark.asyncio
    async def test_plan_exit_emits_mode_switch_before_done(self, session, store):
        plan_text = "# Plan\n\n1. Add tests\n2. Ship"
        model = self.plan_model(plan_text)
        run = AgentRun(make_request(session, "go", mode=Mode.PLAN), store=store,
                       resolver=make_resolver(model))

        events = await collect(run.events())

        switches = [e for e in events if isinstance(e, ModeSwitchEvent)]
        assert len(switches) == 1
        switch = switches[0]
        assert events.index(switch) < len(events) - 1
        assert isinstance(events[-1], DoneEvent)
        assert switch.mode == "agent"
        assert switch.plan_path == get_plan_path(session.id)
        assert switch.plan_content == read_plan(switch.plan_path) == plan_text

        exit_result = events[events.index(switch) - 1]
        assert isinstance(exit_result, ToolResultEvent)
        assert exit_result.output["__mode_switch"] is True
        assert run.mode_switch is not None

    @pytest.mark.asyncio
    async def test_handoff_chains_execution_run(self, session, store):
        plan_text = "1. Write main.py"
        model = self.plan_model(plan_text, extra_steps=[[text_chunk("Done executing."), end_chunk()]])
        request = make_request(session, "plan it", mode=Mode.PLAN)

        events = await collect(run_with_handoff(request, store=store, resolver=make_resolver(model)))

        dones = [i for i, e in enumerate(events) if isinstance(e, DoneEvent)]
        switch_at = next(i for i, e in enumerate(events) if isinstance(e, ModeSwitchEvent))
        assert len(dones) == 2
        assert switch_at < dones[0]

        assert store.get(session.id).mode == "agent"
        contents = [(m.role, m.content) for m in store.list_messages(session.id)]
        assert contents == [
            ("user", "plan it"),
            ("assistant", "Switching to build."),
            ("user", EXECUTE_PLAN_PROMPT),
            ("assistant", "Done executing."),
        ]

        execution_call = model.calls[-1]
        assert "## Active Plan" in execution_call["system_prompt"]
        assert plan_text in execution_call["system_prompt"]
        assert "edit" in execution_call["tools"]

    @pytest.mark.asyncio
    async def test_handoff_without_auto_execute_only_switches_mode(self, session, store):
        model = self.plan_model("plan")
        request = make_request(session, "plan it", mode=Mode.PLAN)

        events = await collect(run_with_handoff(request, store=store, auto_execute=False,
                                                resolver=make_resolver(model)))

        assert sum(isinstance(e, DoneEvent) for e in events) == 1
        assert store.get(session.id).mode == "agent"
        assert len(model.calls) == 3

    @pytest.mark.asyncio
    async def test_plain_run_does_not_chain(self, session, store):
        model = ScriptedModel([[text_chunk("hi"), end_chunk()]])
        events = await collect(run_with_handoff(make_request(session), store=store,
                                                resolver=make_resolver(model)))
        assert [type(e) for e in events] == [TokenEvent, DoneEvent]
        assert len(model.calls) == 1


class TestSystemPrompt:

    def test_agent_prompt_includes_plan_verbatim(self):
        plan = "Use {braces} as-is"
        prompt = build_system_prompt(Mode.AGENT, "m1", "/home/u", "/work/app", plan)
        assert "m1" in prompt
        assert "/work/app" in prompt
        assert prompt.endswith(plan)

    def test_plan_prompt_ignores_plan_text(self):
        prompt = build_system_prompt(Mode.PLAN, "m1", "/home/u", "/work/app", "secret plan")
        assert "Plan Mode" in prompt
        assert "secret plan" not in prompt

    def test_plan_prompt_rules(self):
        prompt = build_system_prompt(Mode.PLAN, "m1", "/home/u", "/work/app")
        # clarify first
        assert "## FIRST response: call the question tool then STOP" in prompt
        assert "Call the `question` tool with 2-5 clarifying questions" in prompt
        assert "Do NOT research or plan yet" in prompt
        assert "ALWAYS call the question tool first before planning." in prompt
        # plan lives in the plan file, chat stays short
        assert "Write the full, detailed plan to the plan file with plan_write" in prompt
        assert "reply only with a short bullet-point summary of the plan" in prompt
        assert "Detailed plan content belongs in the plan file only; chat replies stay concise bullet points." in prompt
        assert "You CANNOT write or edit project files." in prompt
        # exit on approval only
        assert "Call plan_exit ONLY after the user explicitly approves the plan" in prompt
        assert prompt.index("question tool") < prompt.index("plan_write")

    def test_agent_prompt_without_plan(self):
        prompt = build_system_prompt(Mode.AGENT, "m1", "/home/u", "/work/app")
        assert "Active Plan" not in prompt
