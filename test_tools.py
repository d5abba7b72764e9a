"""Tests for the tool implementations and the mode-gated registry."""

import io
import json
import urllib.error
import warnings

import pytest

from backend import LocalBackend
from tools import (
    ALWAYS_TOOLS,
    EditNotFoundError,
    EditNotUniqueError,
    Mode,
    ModeSwitch,
    ToolExecutionError,
    ToolInputError,
    create_tools,
    get_plan_path,
    read_plan,
)
from tools import external_ops
from tools.file_ops import edit_file, read_file, write_file
from tools.gitignore import is_ignored, load_gitignore
from tools.plan_ops import NO_PLAN_PLACEHOLDER, plan_exit, plan_write
from tools.search_ops import glob_find, grep_search
from tools.skills import (
    SkillError,
    create_skill,
    create_skill_raw,
    delete_skill,
    discover_skills,
    load_skill,
)


class TestEdit:
    """edit replaces exactly one occurrence or fails without touching the file."""

    def test_single_occurrence_is_replaced(self, project_dir):
        target = project_dir / "app.py"
        target.write_text("a = 1\nb = 2\nc = 3\n", encoding="utf-8")
        b = LocalBackend(str(project_dir))

        result = edit_file(b, "app.py", "b = 2", "b = 20")

        assert result == "Edited app.py: replaced 1 occurrence"
        assert target.read_text(encoding="utf-8") == "a = 1\nb = 20\nc = 3\n"

    def test_not_found_leaves_file_unchanged(self, project_dir):
        target = project_dir / "app.py"
        target.write_text("a = 1\n", encoding="utf-8")
        b = LocalBackend(str(project_dir))

        with pytest.raises(EditNotFoundError):
            edit_file(b, "app.py", "missing", "x")
        assert target.read_text(encoding="utf-8") == "a = 1\n"

    def test_multiple_occurrences_leave_file_unchanged(self, project_dir):
        target = project_dir / "app.py"
        original = "x = 1\nx = 1\n"
        target.write_text(original, encoding="utf-8")
        b = LocalBackend(str(project_dir))

        with pytest.raises(EditNotUniqueError) as exc_info:
            edit_file(b, "app.py", "x = 1", "x = 2")
        assert exc_info.value.occurrences == 2
        assert target.read_text(encoding="utf-8") == original

    def test_error_kinds_are_distinct(self):
        assert not issubclass(EditNotFoundError, EditNotUniqueError)
        assert not issubclass(EditNotUniqueError, EditNotFoundError)
        assert issubclass(EditNotFoundError, ToolExecutionError)
        assert issubclass(EditNotUniqueError, ToolExecutionError)

    def test_missing_file(self, project_dir):
        b = LocalBackend(str(project_dir))
        with pytest.raises(ToolExecutionError, match="File not found"):
            edit_file(b, "nope.py", "a", "b")

    def test_crlf_content_is_preserved(self, project_dir):
        target = project_dir / "win.txt"
        target.write_bytes(b"one\r\ntwo\r\n")
        b = LocalBackend(str(project_dir))

        edit_file(b, "win.txt", "two", "2")

        assert target.read_bytes() == b"one\r\n2\r\n"


class TestReadWrite:

    def test_read_numbers_lines(self, project_dir):
        (project_dir / "f.txt").write_text("alpha\nbeta\ngamma", encoding="utf-8")
        b = LocalBackend(str(project_dir))
        assert read_file(b, "f.txt") == "1\talpha\n2\tbeta\n3\tgamma"

    def test_read_offset_and_limit(self, project_dir):
        (project_dir / "f.txt").write_text("a\nb\nc\nd", encoding="utf-8")
        b = LocalBackend(str(project_dir))
        assert read_file(b, "f.txt", offset=2, limit=2) == "2\tb\n3\tc"

    def test_write_creates_parents(self, project_dir):
        b = LocalBackend(str(project_dir))
        result = write_file(b, "src/pkg/mod.py", "x = 1\ny = 2")
        assert result == "Wrote 2 lines to src/pkg/mod.py"
        assert (project_dir / "src" / "pkg" / "mod.py").read_text(encoding="utf-8") == "x = 1\ny = 2"

    def test_absolute_paths_pass_through(self, project_dir, tmp_path):
        outside = tmp_path / "outside.txt"
        b = LocalBackend(str(project_dir))
        write_file(b, str(outside), "hello")
        assert outside.read_text(encoding="utf-8") == "hello"


class TestSearch:

    @pytest.fixture
    def tree(self, project_dir):
        (project_dir / "src").mkdir()
        (project_dir / "src" / "main.py").write_text("def main():\n    return 42\n", encoding="utf-8")
        (project_dir / "src" / "util.py").write_text("TODO = 'later'\n", encoding="utf-8")
        (project_dir / "node_modules").mkdir()
        (project_dir / "node_modules" / "dep.py").write_text("def main(): pass\n", encoding="utf-8")
        (project_dir / "generated").mkdir()
        (project_dir / "generated" / "out.py").write_text("def main(): pass\n", encoding="utf-8")
        (project_dir / ".gitignore").write_text("generated/\n", encoding="utf-8")
        return project_dir

    def test_glob_skips_ignored_dirs(self, tree):
        b = LocalBackend(str(tree))
        assert glob_find(b, "**/*.py") == "src/main.py\nsrc/util.py"

    def test_glob_no_match(self, tree):
        b = LocalBackend(str(tree))
        assert glob_find(b, "**/*.rs") == "No files matched the pattern."

    def test_grep_reports_file_and_line(self, tree):
        b = LocalBackend(str(tree))
        assert grep_search(b, r"return \d+") == "src/main.py:2: return 42"

    def test_grep_skips_ignored(self, tree):
        b = LocalBackend(str(tree))
        assert grep_search(b, "def main") == "src/main.py:1: def main():"

    def test_grep_in_single_file(self, tree):
        b = LocalBackend(str(tree))
        assert grep_search(b, "TODO", "src/util.py") == "src/util.py:1: TODO = 'later'"

    def test_grep_no_matches(self, tree):
        b = LocalBackend(str(tree))
        assert grep_search(b, "nothing_here") == "No matches found."

    def test_grep_invalid_regex(self, tree):
        b = LocalBackend(str(tree))
        with pytest.raises(ToolExecutionError, match="Invalid regex"):
            grep_search(b, "(unclosed")

    def test_gitignore_loads_without_warnings(self, tree):
        """Parsing .gitignore must not raise pathspec deprecation warnings."""
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            spec = load_gitignore(str(tree))
        assert spec is not None
        assert is_ignored("generated", "generated", True, spec) is True
        assert is_ignored("src", "src", True, spec) is False


class TestRegistry:

    def test_agent_mode_gating(self, project_dir):
        tools = create_tools(str(project_dir), Mode.AGENT)
        assert set(ALWAYS_TOOLS) <= set(tools)
        assert {"write", "edit"} <= set(tools)
        assert not {"plan_write", "plan_exit", "question"} & set(tools)

    def test_plan_mode_gating(self, project_dir, data_dir):
        plan_path = get_plan_path("s1")
        tools = create_tools(str(project_dir), Mode.PLAN, plan_path=plan_path)
        assert set(ALWAYS_TOOLS) <= set(tools)
        assert {"plan_write", "plan_exit", "question"} <= set(tools)
        assert "write" not in tools
        assert "edit" not in tools

    def test_plan_mode_requires_plan_path(self, project_dir):
        with pytest.raises(ValueError):
            create_tools(str(project_dir), Mode.PLAN)

    def test_input_is_validated_before_execution(self, project_dir):
        tools = create_tools(str(project_dir), Mode.AGENT)
        with pytest.raises(ToolInputError):
            tools["write"].run({"file_path": "x.txt"})
        with pytest.raises(ToolInputError):
            tools["read"].run({"file_path": "x.txt", "bogus": 1})
        assert not (project_dir / "x.txt").exists()

    def test_registry_tools_are_scoped_to_project(self, project_dir):
        tools = create_tools(str(project_dir), Mode.AGENT)
        tools["write"].run({"file_path": "notes.md", "content": "hi"})
        assert (project_dir / "notes.md").read_text(encoding="utf-8") == "hi"
        assert tools["read"].run({"file_path": "notes.md"}) == "1\thi"

    def test_imagefetch_output_transform(self, project_dir):
        output = {"base64": "AAAA", "mime": "image/png", "url": "https://x/y.png", "sizeKB": 1}
        vision = create_tools(str(project_dir), supports_vision=True)["imagefetch"]
        text_only = create_tools(str(project_dir), supports_vision=False)["imagefetch"]

        parts = vision.model_output(output)
        assert parts[0] == {"type": "image", "media_type": "image/png", "data": "AAAA"}
        assert parts[1]["type"] == "text"
        assert "does not support vision" in text_only.model_output(output)


class TestPlanTools:

    def test_plan_path_is_deterministic(self, data_dir):
        assert get_plan_path("abc") == get_plan_path("abc")
        assert get_plan_path("abc").endswith("abc.md")
        assert str(data_dir) in get_plan_path("abc")

    def test_plan_write_then_exit(self, data_dir):
        path = get_plan_path("s1")
        content = "# Plan\n\n1. Do the thing\r\n2. Done  \n"
        assert plan_write(path, content) == f"Plan written to {path}"

        switch = plan_exit(path)
        assert isinstance(switch, ModeSwitch)
        assert switch.mode == "agent"
        assert switch.plan_path == path
        assert switch.plan_content == content
        assert read_plan(path) == content

    def test_plan_exit_without_plan(self, data_dir):
        switch = plan_exit(get_plan_path("missing"))
        assert switch.plan_content == NO_PLAN_PLACEHOLDER

    def test_mode_switch_payload(self):
        payload = ModeSwitch(mode="agent", plan_path="/p.md", plan_content="x").to_dict()
        assert payload == {"__mode_switch": True, "mode": "agent", "planPath": "/p.md", "planContent": "x"}

    def test_plan_tools_only_write_plan_file(self, project_dir, data_dir):
        plan_path = get_plan_path("s2")
        tools = create_tools(str(project_dir), Mode.PLAN, plan_path=plan_path)
        tools["plan_write"].run({"content": "plan body"})
        assert read_plan(plan_path) == "plan body"
        assert list(project_dir.iterdir()) == []


class TestSkills:

    def test_create_discover_load(self, data_dir):
        create_skill("deploy", "Ship it", "Run the deploy script.")
        skills = discover_skills()
        assert [s.name for s in skills] == ["deploy"]
        assert skills[0].description == "Ship it"

        loaded = load_skill("deploy")
        assert loaded.startswith('<skill_content name="deploy">')
        assert "Run the deploy script." in loaded

    def test_unknown_skill_lists_available(self, data_dir):
        create_skill("lint", "", "Run ruff.")
        assert load_skill("nope") == 'Skill "nope" not found. Available skills: lint'

    def test_raw_skill_requires_frontmatter(self, data_dir):
        with pytest.raises(SkillError):
            create_skill_raw("bad", "no frontmatter here")
        create_skill_raw("good", "---\nname: good\ndescription: d\n---\nbody")
        assert [s.name for s in discover_skills()] == ["good"]

    def test_delete_skill(self, data_dir):
        create_skill("tmp", "", "x")
        assert delete_skill("tmp") is True
        assert delete_skill("tmp") is False
        with pytest.raises(SkillError):
            delete_skill("../escape")


class _FakeResponse(io.BytesIO):

    def __init__(self, body: bytes, content_type: str):
        super().__init__(body)
        self.headers = _Headers(content_type, len(body))

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


class _Headers(dict):

    def __init__(self, content_type: str, length: int):
        super().__init__({"Content-Type": content_type, "Content-Length": str(length)})

    def get_content_charset(self):
        return "utf-8"


class TestNetworkTools:

    def test_webfetch_markdown(self, monkeypatch):
        html = b"<html><script>x()</script><h1>Title</h1><p>Hello <b>world</b></p></html>"

        def fake_urlopen(req, timeout):
            assert req.full_url == "https://example.com"
            return _FakeResponse(html, "text/html")

        monkeypatch.setattr(external_ops.urllib.request, "urlopen", fake_urlopen)
        result = external_ops.web_fetch("example.com")
        assert result.startswith("Content from https://example.com:\n\n")
        assert "# Title" in result
        assert "**world**" in result
        assert "x()" not in result

    def test_webfetch_timeout_is_tool_error(self, monkeypatch):
        def fake_urlopen(req, timeout):
            raise urllib.error.URLError(TimeoutError("timed out"))

        monkeypatch.setattr(external_ops.urllib.request, "urlopen", fake_urlopen)
        with pytest.raises(ToolExecutionError, match="timed out"):
            external_ops.web_fetch("https://slow.example.com", timeout=5)

    def test_websearch_parses_sse(self, monkeypatch):
        event = {"result": {"content": [{"type": "text", "text": "Result A"}]}}
        body = f"event: message\ndata: {json.dumps(event)}\n\n".encode("utf-8")
        monkeypatch.setattr(
            external_ops.urllib.request, "urlopen",
            lambda req, timeout: _FakeResponse(body, "text/event-stream"),
        )
        assert external_ops.web_search("python news") == "Result A"

    def test_imagefetch_rejects_non_image(self, monkeypatch):
        monkeypatch.setattr(
            external_ops.urllib.request, "urlopen",
            lambda req, timeout: _FakeResponse(b"<html/>", "text/html"),
        )
        with pytest.raises(ToolExecutionError, match="did not return an image"):
            external_ops.image_fetch("https://example.com/page")

    def test_imagefetch_encodes(self, monkeypatch):
        monkeypatch.setattr(
            external_ops.urllib.request, "urlopen",
            lambda req, timeout: _FakeResponse(b"\x89PNG", "image/png"),
        )
        out = external_ops.image_fetch("https://example.com/a.png")
        assert out == {"base64": "iVBORw==", "mime": "image/png", "url": "https://example.com/a.png", "sizeKB": 0}
