"""
Textual front-end for the session list.

A thin host around SessionListController: a table of sessions refreshed on
the controller's poll interval, and key bindings that map to controller
actions. Attaching suspends the app and hands the terminal to tmux until
the user detaches (Ctrl+Q).
"""

import os
import sys
from typing import List, Optional

from rich.text import Text
from textual.app import App, ComposeResult
from textual.widgets import DataTable, Footer, Header

from . import __version__
from .controller import SessionListController, SessionView
from .session import STATE_EXITED, STATE_IDLE, STATE_WAITING_USER, STATE_WORKING
from .settings import TIMINGS


STATE_STYLES = {
    STATE_WORKING: "bold green",
    STATE_IDLE: "dim",
    STATE_WAITING_USER: "bold yellow",
    STATE_EXITED: "red",
}


def format_state(view: SessionView) -> Text:
    state = view.session.state
    if not view.alive:
        return Text(f"{state} (stopped)", style="dim red")
    return Text(state, style=STATE_STYLES.get(state, ""))


def format_row(view: SessionView) -> List:
    session = view.session
    flag = "⚑" if session.is_flagged else ""
    return [
        flag,
        session.display_name,
        format_state(view),
        session.status or "",
        session.branch_name or "",
        "✓" if view.shell_alive else "",
        session.comment,
    ]


class SessionListApp(App):
    """agentdeck session list"""

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("enter", "attach", "Attach"),
        ("s", "attach_shell", "Shell"),
        ("x", "kill", "Kill"),
        ("K", "move_up", "Move up"),
        ("J", "move_down", "Move down"),
        ("a", "toggle_archive", "Archive"),
        ("f", "toggle_flag", "Flag"),
        ("o", "open_editor", "Editor"),
        ("r", "refresh", "Refresh"),
    ]

    def __init__(self, controller: SessionListController, poll_interval: Optional[float] = None):
        super().__init__()
        self.controller = controller
        self.poll_interval = TIMINGS.poll_interval if poll_interval is None else poll_interval
        self._shown_error: Optional[str] = None

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        yield DataTable(id="sessions", cursor_type="row", zebra_stripes=True)
        yield Footer()

    def on_mount(self) -> None:
        self.title = f"agentdeck v{__version__}"
        table = self.query_one("#sessions", DataTable)
        table.add_columns("", "Session", "State", "Status", "Branch", "Shell", "Comment")
        self.controller.poll(force=True)
        if self.controller.prompt_monitor_enabled:
            self.controller.start_monitors()
        self._render_sessions()
        self.set_interval(self.poll_interval, self.tick)

    def on_unmount(self) -> None:
        self.controller.stop_monitors()

    def tick(self) -> None:
        if self.controller.poll():
            self._render_sessions()
        for name in self.controller.drain_prompt_notifications():
            self.notify(f"{name} is waiting for input", title="agentdeck")
        self._show_error()

    def _show_error(self) -> None:
        error = self.controller.error
        if error and error != self._shown_error:
            self.notify(error, severity="error", timeout=self.controller.error_clear_delay)
        self._shown_error = error

    def _render_sessions(self) -> None:
        table = self.query_one("#sessions", DataTable)
        selected = self.selected_name()
        table.clear()
        for view in self.controller.items:
            table.add_row(*format_row(view), key=view.name)
        if self.controller.prompt_monitor_enabled:
            self.sub_title = f"watching {len(self.controller.monitored_names)} session(s)"
        names = self.controller.visible_names
        if selected in names:
            table.move_cursor(row=names.index(selected))

    def selected_name(self) -> Optional[str]:
        table = self.query_one("#sessions", DataTable)
        names = self.controller.visible_names
        if not names or table.cursor_row is None or not 0 <= table.cursor_row < len(names):
            return None
        return names[table.cursor_row]

    def _after_action(self) -> None:
        self._render_sessions()
        self._show_error()

    def on_data_table_row_selected(self, event: DataTable.RowSelected) -> None:
        # The table consumes Enter itself
        self.action_attach()

    def action_attach(self) -> None:
        name = self.selected_name()
        if name is None:
            return
        with self.suspend():
            self.controller.attach(name)
        self._after_action()

    def action_attach_shell(self) -> None:
        name = self.selected_name()
        if name is None:
            return
        with self.suspend():
            self.controller.attach_shell(name)
        self._after_action()

    def action_kill(self) -> None:
        name = self.selected_name()
        if name is not None:
            self.controller.kill(name)
            self._after_action()

    def action_move_up(self) -> None:
        name = self.selected_name()
        if name is not None and self.controller.move_up(name):
            self._after_action()

    def action_move_down(self) -> None:
        name = self.selected_name()
        if name is not None and self.controller.move_down(name):
            self._after_action()

    def action_toggle_archive(self) -> None:
        name = self.selected_name()
        if name is not None:
            self.controller.toggle_archive(name)
            self._after_action()

    def action_toggle_flag(self) -> None:
        name = self.selected_name()
        if name is not None:
            self.controller.toggle_flag(name)
            self._after_action()

    def action_open_editor(self) -> None:
        name = self.selected_name()
        if name is not None and not self.controller.open_in_editor(name):
            self._show_error()

    def action_refresh(self) -> None:
        self.controller.refresh()
        self._after_action()


def run_tui(controller: SessionListController) -> None:
    """Run the interactive session list."""
    if not sys.stdout.isatty():
        print("Error: Must run in a TTY terminal", file=sys.stderr)
        sys.exit(1)

    os.environ.setdefault("TERM", "xterm-256color")
    SessionListApp(controller).run()
