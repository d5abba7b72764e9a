"""
Coodeen - local-first AI coding assistant.
Terminal UI built with Textual + Rich, driving the same agent loop as the web server.
"""

import argparse
import json
import logging
import os
import sys
import time
from typing import Any, Optional

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import VerticalScroll
from textual.widgets import Header, Footer, Input, Static, Collapsible
from textual.reactive import reactive
from textual import on, work

from rich.text import Text
from rich.table import Table
from rich.markdown import Markdown
from rich.markup import escape as rich_escape

from agent import (
    AgentEvent,
    CancellationToken,
    DoneEvent,
    ErrorEvent,
    ModeSwitchEvent,
    RunRequest,
    TokenEvent,
    ToolCallEvent,
    ToolResultEvent,
    run_with_handoff,
)
from config import app_config, FREE_PROVIDER_ID
from sessions import SessionStore, ProviderStore, ConfigStore, Session
from tools import Mode

# Configure logging to file so it doesn't interfere with the TUI
logging.basicConfig(
    filename="coodeen.log",
    level=getattr(logging, app_config.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# ============================================================
# Constants
# ============================================================

SPINNER_FRAMES = ["⣷", "⣯", "⣟", "⡿", "⢿", "⣻", "⣽", "⣾"]

TOOL_ICONS = {
    "read":       "\U0001f4c4 ",
    "write":      "✏️ ",
    "edit":       "\U0001f527 ",
    "glob":       "\U0001f50e ",
    "grep":       "\U0001f50d ",
    "webfetch":   "\U0001f310 ",
    "websearch":  "\U0001f310 ",
    "codesearch": "\U0001f4da ",
    "imagefetch": "\U0001f5bc ",
    "plan_write": "\U0001f4dd ",
    "plan_exit":  "▶ ",
}

TOOL_DANGER = {"write", "edit"}

# Lines to show before collapsing
COLLAPSE_LINE_THRESHOLD = 8
COLLAPSE_CHAR_THRESHOLD = 400

PROMPT_PLACEHOLDER = " ❯ What would you like me to do?  (/help for commands)"


def _describe_tool_input(name: str, tool_input: Any) -> str:
    if not isinstance(tool_input, dict):
        return rich_escape(str(tool_input)[:60])
    for key in ("file_path", "pattern", "url", "query", "name"):
        if key in tool_input:
            value = rich_escape(str(tool_input[key]))
            if name == "write":
                lc = str(tool_input.get("content", "")).count("\n") + 1
                return f"[bold]{value}[/bold] [#6e7681]({lc} lines)[/#6e7681]"
            return f"[bold]{value}[/bold]"
    return rich_escape(json.dumps(tool_input)[:60])


def _result_text(output: Any) -> str:
    if isinstance(output, str):
        return output
    if isinstance(output, dict) and "base64" in output:
        return f"Image fetched: {output.get('url', '')} ({output.get('mime', '')}, {output.get('sizeKB', 0)}KB)"
    return json.dumps(output, indent=2)


# ============================================================
# TUI Application
# ============================================================

class CoodeenApp(App):
    """Coodeen - Coding Agent TUI"""

    TITLE = "Coodeen"

    CSS = """
    Screen {
        background: #101418;
        layout: vertical;
    }

    #transcript {
        height: 1fr;
        padding: 0 1;
        scrollbar-size-vertical: 1;
    }

    #transcript > Static, #transcript > Collapsible {
        height: auto;
    }

    #transcript > Collapsible {
        margin-left: 3;
        border: none;
        padding: 0;
    }

    .assistant-text {
        margin: 1 0 0 0;
    }

    #prompt {
        dock: bottom;
        margin: 0 1;
        border: round #3b4252;
        background: #151a21;
    }

    #prompt:focus {
        border: round #88c0d0;
    }

    #status-line {
        dock: bottom;
        height: 1;
        padding: 0 1;
        color: #7b8594;
        background: #151a21;
    }
    """

    BINDINGS = [
        Binding("ctrl+c", "cancel_or_quit", "Cancel / Quit", priority=True),
        Binding("ctrl+l", "clear_screen", "Clear"),
        Binding("ctrl+p", "toggle_mode", "Plan / Agent"),
    ]

    is_running = reactive(False)

    def __init__(
        self,
        project_dir: str = ".",
        provider_id: Optional[str] = None,
        model_id: Optional[str] = None,
        session_id: Optional[str] = None,
        mode: Mode = Mode.AGENT,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.project_dir = os.path.abspath(project_dir)
        self._store = SessionStore()
        self._providers = ProviderStore()
        self._settings = ConfigStore()
        self.provider_id = provider_id or self._settings.get(ConfigStore.ACTIVE_PROVIDER)
        self.model_id = model_id or self._default_model(self.provider_id)
        self.mode = Mode(mode)
        self._requested_session = session_id
        self._session: Optional[Session] = None
        self._token: Optional[CancellationToken] = None
        self._current_text = ""
        self._text_widget: Optional[Static] = None
        self._widget_counter = 0
        self._spinner_idx = 0
        self._spinner_timer = None
        self._task_start_time: Optional[float] = None
        self._tool_count = 0

    def _default_model(self, provider_id: Optional[str]) -> Optional[str]:
        if not provider_id or provider_id == FREE_PROVIDER_ID:
            return None
        record = self._providers.get(provider_id) or {}
        return record.get("model_id") or None

    def compose(self) -> ComposeResult:
        yield Header()
        yield Static("", id="status-line")
        yield VerticalScroll(id="transcript")
        yield Input(placeholder=PROMPT_PLACEHOLDER, id="prompt")
        yield Footer()

    # ============================================================
    # Output helpers
    # ============================================================

    def _next_id(self, prefix: str = "out") -> str:
        self._widget_counter += 1
        return f"{prefix}-{self._widget_counter}"

    def _log(self, renderable) -> None:
        scroll = self.query_one("#transcript", VerticalScroll)
        scroll.mount(Static(renderable, id=self._next_id()))
        scroll.scroll_end(animate=False)

    def _log_collapsible(self, title: str, full_content: str, style: str = "#586e75") -> None:
        scroll = self.query_one("#transcript", VerticalScroll)
        body = Static(Text(full_content, style=style), id=self._next_id("body"))
        scroll.mount(Collapsible(body, title=title, collapsed=True, id=self._next_id("coll")))
        scroll.scroll_end(animate=False)

    def _error(self, message: str) -> None:
        self._log(Text.from_markup(f"\n   [bold #f85149]✗ {rich_escape(message)}[/bold #f85149]"))

    # ============================================================
    # Lifecycle
    # ============================================================

    def on_mount(self) -> None:
        self._load_or_create_session()
        self._show_welcome()
        self._update_status()
        self.query_one("#prompt", Input).focus()

    def _load_or_create_session(self) -> None:
        if self._requested_session:
            self._session = self._store.get(self._requested_session)
            if self._session is None:
                self._error(f"Session not found: {self._requested_session}")
        if self._session is None:
            self._session = self._store.create(
                title=os.path.basename(self.project_dir) or "New Session",
                provider_id=self.provider_id,
                model_id=self.model_id,
                project_dir=self.project_dir,
                mode=self.mode.value,
            )
        else:
            self.mode = Mode(self._session.mode or Mode.AGENT.value)
            logger.info(f"Resumed session {self._session.id}")

    def _show_welcome(self) -> None:
        self._log(Text.from_markup("\n[bold #58a6ff]coodeen[/bold #58a6ff]"))
        model = f"{self.provider_id}/{self.model_id}" if self.provider_id and self.model_id else "no model selected"
        self._log(Text.from_markup(f"[#8b949e]{rich_escape(model)}  ·  mode: {self.mode.value}[/#8b949e]"))
        self._log(Text.from_markup(f"[#6e7681]dir: {rich_escape(self.project_dir)}[/#6e7681]"))
        if self._session and self._session.message_count:
            self._log(Text.from_markup(
                f"[#6e7681]session: {self._session.id} (resumed, {self._session.message_count} messages)[/#6e7681]"
            ))
        self._log(Text.from_markup(
            "\n[#484f58]Type a task to begin  ·  /help for commands  ·  Ctrl+C to cancel[/#484f58]\n"
        ))

    # ============================================================
    # Status Bar
    # ============================================================

    def _update_status(self) -> None:
        parts = [f"{self.provider_id or '?'}/{self.model_id or '?'}", self.mode.value]
        if self._session:
            parts.append(self._session.id[:8])
        if self.is_running:
            frame = SPINNER_FRAMES[self._spinner_idx % len(SPINNER_FRAMES)]
            elapsed = ""
            if self._task_start_time:
                elapsed = f" {int(time.time() - self._task_start_time)}s"
            parts.append(f"{frame}{elapsed}")
        self.query_one("#status-line", Static).update(" · ".join(parts))

    def _start_spinner(self) -> None:
        self._spinner_idx = 0
        self._task_start_time = time.time()
        self._tool_count = 0
        self._spinner_timer = self.set_interval(0.1, self._tick_spinner)

    def _stop_spinner(self) -> None:
        if self._spinner_timer:
            self._spinner_timer.stop()
            self._spinner_timer = None

    def _tick_spinner(self) -> None:
        self._spinner_idx += 1
        self._update_status()

    # ============================================================
    # Input Handling
    # ============================================================

    @on(Input.Submitted, "#prompt")
    async def on_input_submitted(self, event: Input.Submitted) -> None:
        text = event.value.strip()
        self.query_one("#prompt", Input).value = ""
        if not text:
            return
        if text.startswith("/"):
            self._handle_command(text)
            return
        if self.is_running:
            self._log(Text("   Agent is busy, Ctrl+C to cancel", style="italic #e3b341"))
            return
        self._run_task(text)

    def _handle_command(self, command: str) -> None:
        parts = command.split(maxsplit=1)
        cmd = parts[0].lower()
        arg = parts[1].strip() if len(parts) > 1 else ""

        if cmd == "/help":
            tbl = Table.grid(padding=(0, 2))
            tbl.add_column(style="bold #58a6ff")
            tbl.add_column(style="#8b949e")
            tbl.add_row("/help", "Show this help")
            tbl.add_row("/clear", "Clear the screen")
            tbl.add_row("/new", "Start a new session")
            tbl.add_row("/sessions", "List sessions")
            tbl.add_row("/mode <agent|plan>", "Switch mode")
            tbl.add_row("/model <provider>/<model>", "Select the model")
            tbl.add_row("/quit", "Exit")
            tbl.add_row("", "")
            tbl.add_row("Ctrl+C", "Cancel / Quit")
            tbl.add_row("Ctrl+P", "Toggle plan / agent mode")
            self._log(Text(""))
            self._log(tbl)

        elif cmd == "/clear":
            self.action_clear_screen()

        elif cmd == "/new":
            self._session = None
            self._requested_session = None
            self._load_or_create_session()
            self._log(Text("   New session started.", style="#3fb950"))

        elif cmd == "/sessions":
            tbl = Table.grid(padding=(0, 2))
            tbl.add_column(style="bold #8b949e")
            tbl.add_column(style="#c9d1d9")
            tbl.add_column(style="#6e7681")
            for s in self._store.list()[:20]:
                marker = "▶ " if self._session and s.id == self._session.id else "  "
                tbl.add_row(marker + s.id[:8], s.title, f"{s.message_count} msgs · {s.updated_at[:19]}")
            self._log(tbl)

        elif cmd == "/mode":
            try:
                self._set_mode(Mode(arg or ("plan" if self.mode is Mode.AGENT else "agent")))
            except ValueError:
                self._error(f"Unknown mode: {arg}")

        elif cmd == "/model":
            provider_id, _, model_id = arg.partition("/")
            if not provider_id or not model_id:
                self._error("Usage: /model <provider>/<model>")
            else:
                self.provider_id, self.model_id = provider_id, model_id
                if self._session:
                    self._session = self._store.update(self._session.id, provider_id=provider_id, model_id=model_id)
                self._log(Text(f"   ✓ {provider_id}/{model_id}", style="#3fb950"))

        elif cmd in ("/quit", "/exit"):
            self.exit()

        else:
            self._error(f"Unknown command: {cmd}")

        self._update_status()

    def _set_mode(self, mode: Mode) -> None:
        self.mode = mode
        if self._session:
            self._session = self._store.update(self._session.id, mode=mode.value)
        self._log(Text(f"   ✓ {mode.value} mode", style="#d2a8ff"))
        self._update_status()

    # ============================================================
    # Agent Execution
    # ============================================================

    @work(thread=False)
    async def _run_task(self, task: str) -> None:
        if not self.provider_id or not self.model_id:
            self._error("No model selected. Use /model <provider>/<model>.")
            return

        self._log(Text(""))
        self._log(Text.from_markup(f"[bold #f0f6fc]❯ [/bold #f0f6fc][#c9d1d9]{rich_escape(task)}[/#c9d1d9]"))

        self._token = CancellationToken()
        request = RunRequest(
            session_id=self._session.id,
            prompt=task,
            provider_id=self.provider_id,
            model_id=self.model_id,
            project_dir=self.project_dir,
            mode=self.mode,
            cancellation_token=self._token,
        )

        self.is_running = True
        self._start_spinner()
        self._update_status()
        try:
            async for event in run_with_handoff(
                request,
                store=self._store,
                auto_execute=app_config.auto_execute_plan,
                provider_store=self._providers,
            ):
                self._handle_agent_event(event)
        except Exception as e:
            logger.exception("Agent task error")
            self._error(str(e))
        finally:
            self._end_text()
            if self._token.cancelled:
                self._log(Text.from_markup("\n   [#e3b341]cancelled[/#e3b341]"))
            self.is_running = False
            self._stop_spinner()
            self._session = self._store.get(self._session.id) or self._session
            self._update_status()

    def _end_text(self) -> None:
        if self._text_widget is not None and not self._current_text.strip():
            self._text_widget.remove()
        self._text_widget = None
        self._current_text = ""

    def _handle_agent_event(self, event: AgentEvent) -> None:
        scroll = self.query_one("#transcript", VerticalScroll)

        # --- Text (streams live) ---
        if isinstance(event, TokenEvent):
            if self._text_widget is None:
                self._current_text = ""
                self._text_widget = Static("", id=self._next_id("text"), classes="assistant-text")
                scroll.mount(self._text_widget)
            self._current_text += event.content
            self._text_widget.update(Markdown(self._current_text))
            scroll.scroll_end(animate=False)
            return

        self._end_text()

        # --- Tool Calls ---
        if isinstance(event, ToolCallEvent):
            icon = TOOL_ICONS.get(event.name, "• ")
            color = "#f0883e" if event.name in TOOL_DANGER else "#3fb950"
            desc = _describe_tool_input(event.name, event.input)
            self._log(Text.from_markup(f"   [{color}]{icon}{rich_escape(event.name)} {desc}[/{color}]"))
            self._tool_count += 1

        # --- Tool Results (expandable) ---
        elif isinstance(event, ToolResultEvent):
            result_text = _result_text(event.output)
            result_lines = result_text.split("\n")
            if len(result_lines) > COLLAPSE_LINE_THRESHOLD or len(result_text) > COLLAPSE_CHAR_THRESHOLD:
                title = f"   ✓ {result_lines[0][:80]}  ({len(result_lines)} lines)"
                self._log_collapsible(title, result_text, style="#6e7681")
            else:
                self._log(Text(f"   ✓ {result_text}", style="#6e7681"))

        # --- Plan approved ---
        elif isinstance(event, ModeSwitchEvent):
            self.mode = Mode(event.mode)
            self._log(Text.from_markup(
                f"\n   [bold #d2a8ff]Plan approved → {rich_escape(event.mode)} mode[/bold #d2a8ff]"
                f"  [#6e7681]{rich_escape(event.plan_path)}[/#6e7681]"
            ))
            self._log_collapsible("   plan", event.plan_content, style="#c9d1d9")

        # --- Errors ---
        elif isinstance(event, ErrorEvent):
            self._error(event.message)

        # --- Done ---
        elif isinstance(event, DoneEvent):
            elapsed = ""
            if self._task_start_time:
                elapsed = f"{round(time.time() - self._task_start_time, 1)}s"
                if self._tool_count:
                    elapsed += f" · {self._tool_count} tool calls"
            if elapsed:
                self._log(Text.from_markup(f"\n   [#484f58]{elapsed}[/#484f58]"))

        self._update_status()

    # ============================================================
    # Actions
    # ============================================================

    def action_cancel_or_quit(self) -> None:
        if self.is_running and self._token is not None:
            self._token.cancel()
            self._log(Text.from_markup("   [italic #e3b341]cancelling…[/italic #e3b341]"))
        else:
            self.exit()

    def action_clear_screen(self) -> None:
        self.query_one("#transcript", VerticalScroll).remove_children()

    def action_toggle_mode(self) -> None:
        if not self.is_running:
            self._set_mode(Mode.PLAN if self.mode is Mode.AGENT else Mode.AGENT)


# ============================================================
# Entry Point
# ============================================================

def main():
    parser = argparse.ArgumentParser(
        description="Coodeen - local AI coding assistant",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py                                    Run in current directory
  python main.py -d ~/my-project                    Run in a specific project directory
  python main.py --provider anthropic --model claude-sonnet-4-20250514
  python main.py --plan                             Start in plan mode
        """,
    )
    parser.add_argument("-d", "--directory", default=".",
                        help="Project directory for the agent (default: current directory)")
    parser.add_argument("--provider", default=None, help="Provider id (default: active provider)")
    parser.add_argument("--model", default=None, help="Model id (default: the provider's saved model)")
    parser.add_argument("--session", default=None, help="Resume a session by id")
    parser.add_argument("--plan", action="store_true", help="Start in plan mode")

    args = parser.parse_args()

    project_dir = os.path.abspath(os.path.expanduser(args.directory))
    if not os.path.isdir(project_dir):
        print(f"Error: {project_dir} is not a directory")
        sys.exit(1)

    app = CoodeenApp(
        project_dir=project_dir,
        provider_id=args.provider,
        model_id=args.model,
        session_id=args.session,
        mode=Mode.PLAN if args.plan else Mode.AGENT,
    )
    app.run()


if __name__ == "__main__":
    main()
