"""Textual-based UI for dockyard."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from textual import events
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.screen import ModalScreen
from textual.widgets import Footer, Header, Input, Static
from rich.markup import escape as rich_escape

from .config import config_manager
from .evaluator import Evaluator
from .model import CommandResult, EngineContext
from .session import clear_session, load_session, save_session
from .state import CommandWorker, StateManager
from .utils import IdGenerator, SeededIdGenerator, format_size
from .workspace import load_workspace

logger = logging.getLogger(__name__)


class ConfirmScreen(ModalScreen[bool]):
    def __init__(self, question: str) -> None:
        super().__init__()
        self.question = question

    def compose(self) -> ComposeResult:
        yield Vertical(
            Static("Confirm", classes="modal_title"),
            Static(self.question, classes="modal_body"),
            Static("[Enter/Y] Yes    [Esc/N] No", classes="modal_hint"),
            id="modal",
        )

    async def on_key(self, event: events.Key) -> None:
        if event.key in ("enter", "y", "Y"):
            self.dismiss(True)
        elif event.key in ("escape", "n", "N"):
            self.dismiss(False)


def render_yard(ctx: EngineContext) -> str:
    """Plain-text summary of images, containers, stack and ports."""
    lines = ["IMAGES"]
    for key, img in ctx.images.items():
        lines.append(f"  {key:<28} {img.short_id}  {format_size(img.size)}")
    if not ctx.images:
        lines.append("  (none)")

    lines.append("")
    lines.append("CONTAINERS")
    active = ctx.active_containers()
    for c in active:
        ports = ", ".join(f"{pm.host_port}->{pm.container_port}" for pm in c.ports)
        lines.append(f"  {c.name:<20} {c.status:<8} {ports}")
    if not active:
        lines.append("  (none)")

    for stack in ctx.compose_stacks.values():
        lines.append("")
        lines.append(f"COMPOSE [{stack.name}]")
        for service in stack.service_names:
            cid = stack.container_ids.get(service)
            c = ctx.containers.get(cid) if cid else None
            lines.append(f"  {service:<20} {c.status if c else 'not started'}")

    if ctx.bound_ports:
        lines.append("")
        lines.append("PORTS")
        for port, cid in sorted(ctx.bound_ports.items(), key=lambda kv: int(kv[0]) if kv[0].isdigit() else 0):
            owner = ctx.containers.get(cid)
            lines.append(f"  {port:<6} {owner.name if owner else cid}")
    return "\n".join(lines)


def render_events(ctx: EngineContext, limit: int = 50) -> str:
    tail = ctx.event_log[-limit:]
    if not tail:
        return "(no events yet)"
    return "\n".join(f"{e.timestamp[11:19]}  {e.type:<24} {e.human_summary}" for e in tail)


class DockyardApp(App[None]):
    TITLE = "dockyard"
    SUB_TITLE = "Docker CLI simulator"

    CSS = """
    Screen {
      layout: vertical;
    }

    #main {
      height: 1fr;
    }

    #output {
      width: 60%;
      height: 1fr;
      border: round $accent;
      padding: 0 1;
      overflow: auto;
    }

    #side {
      width: 40%;
      height: 1fr;
    }

    #yard {
      height: 1fr;
      border: round $accent;
      padding: 0 1;
      overflow: auto;
    }

    #events {
      height: 1fr;
      border: round $accent;
      padding: 0 1;
      overflow: auto;
    }

    #status {
      height: 1;
      padding: 0 1;
      background: $panel;
      color: $text;
    }

    #modal {
      width: 70;
      height: auto;
      border: round $accent;
      background: $surface;
      padding: 1 2;
      align: center middle;
    }

    .modal_title {
      text-style: bold;
      margin-bottom: 1;
    }

    .modal_body {
      margin-bottom: 1;
    }

    .modal_hint {
      color: $text-muted;
    }
    """

    BINDINGS = [
        Binding("ctrl+q", "quit", "Quit"),
        Binding("ctrl+l", "clear_output", "Clear"),
        Binding("ctrl+e", "toggle_events", "Events"),
        Binding("ctrl+s", "save_session", "Save"),
        Binding("ctrl+r", "reset_session", "Reset"),
    ]

    def __init__(self, initial: Optional[EngineContext] = None, workspace_dir: Optional[Path] = None) -> None:
        super().__init__()
        cfg = config_manager.get_config()
        self.workspace_dir = workspace_dir or config_manager.get_workspace_dir()
        ids = SeededIdGenerator(cfg.engine.seed) if cfg.engine.seed is not None else IdGenerator()
        self.state_mgr = StateManager(initial, Evaluator(ids, cfg.engine))
        self.command_worker = CommandWorker(self.state_mgr, callback=self._on_result_from_thread)
        self.max_output_lines = cfg.ui.max_output_lines
        self.show_events = cfg.ui.show_event_log
        self.output_lines: list[str] = []
        self.history: list[str] = []
        self._history_index = 0
        self._rendered_version = -1

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        yield Horizontal(
            Static("", id="output", markup=False),
            Vertical(
                Static("", id="yard", markup=False),
                Static("", id="events", markup=False),
                id="side",
            ),
            id="main",
        )
        yield Input(placeholder="docker ...", id="command")
        yield Static("", id="status", markup=False)
        yield Footer()

    def on_mount(self) -> None:
        self.query_one("#events", Static).display = self.show_events
        self.command_worker.start()
        self.set_interval(0.25, self._tick)
        self.query_one("#command", Input).focus()
        self._refresh_panels()

    async def on_input_submitted(self, event: Input.Submitted) -> None:
        raw = event.value
        event.input.value = ""
        if not raw.strip():
            return
        self.history.append(raw)
        self._history_index = len(self.history)
        self._append_output([f"$ {raw}"])
        workspace = load_workspace(self.workspace_dir)
        self.command_worker.submit(raw, workspace)

    async def on_key(self, event: events.Key) -> None:
        if len(self.screen_stack) > 1 or not self.history or event.key not in ("up", "down"):
            return
        step = -1 if event.key == "up" else 1
        self._history_index = max(0, min(len(self.history), self._history_index + step))
        value = self.history[self._history_index] if self._history_index < len(self.history) else ""
        field = self.query_one("#command", Input)
        field.value = value
        field.cursor_position = len(value)
        event.stop()

    def _on_result_from_thread(self, raw: str, result: CommandResult) -> None:
        self.call_from_thread(self._append_output, result.output)

    def _append_output(self, lines: list[str]) -> None:
        self.output_lines.extend(lines)
        if len(self.output_lines) > self.max_output_lines:
            self.output_lines = self.output_lines[-self.max_output_lines:]
        self._refresh_panels()

    def _tick(self) -> None:
        if self.state_mgr.get_version() != self._rendered_version:
            self._refresh_panels()

    def _refresh_panels(self) -> None:
        ctx = self.state_mgr.get_snapshot()
        self._rendered_version = self.state_mgr.get_version()
        self.query_one("#output", Static).update(rich_escape("\n".join(self.output_lines)))
        self.query_one("#yard", Static).update(rich_escape(render_yard(ctx)))
        self.query_one("#events", Static).update(rich_escape(render_events(ctx)))
        self.query_one("#status", Static).update(rich_escape(self._render_status(ctx)))

    def _render_status(self, ctx: EngineContext) -> str:
        if ctx.last_error:
            return f"Last error: {ctx.last_error}"
        running = sum(1 for c in ctx.active_containers() if c.is_running)
        return f"{len(ctx.images)} image(s)  {running} running  {len(ctx.event_log)} event(s)"

    def action_clear_output(self) -> None:
        self.output_lines = []
        self._refresh_panels()

    def action_toggle_events(self) -> None:
        self.show_events = not self.show_events
        self.query_one("#events", Static).display = self.show_events

    def action_save_session(self) -> None:
        ok = save_session(self.state_mgr.get_snapshot())
        self._append_output(["(session saved)" if ok else "(failed to save session, see log)"])

    def action_reset_session(self) -> None:
        def done(confirmed: Optional[bool]) -> None:
            if confirmed:
                clear_session()
                self.state_mgr.reset()
                self._append_output(["(session reset)"])

        self.push_screen(ConfirmScreen("Discard all images, containers and events?"), done)


def run(initial: Optional[EngineContext] = None, workspace_dir: Optional[Path] = None) -> None:
    app = DockyardApp(initial if initial is not None else load_session(), workspace_dir)
    try:
        app.run()
    finally:
        app.command_worker.stop()
        save_session(app.state_mgr.get_snapshot())
