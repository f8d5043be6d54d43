"""
Interactive session list controller.

The controller is a read-mostly cache of the registry. Every tick it
compares the registry's cheap revision marker with the last one seen and
rebuilds the visible list only when it changed. User actions are
delegated to SessionService/TmuxClient/SessionRegistry and followed by a
forced refresh; the controller itself owns no authoritative state.
"""

import queue
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .config import get_error_clear_delay, get_prompt_monitor_enabled, load_config
from .exceptions import AgentDeckError, SessionNotFoundError
from .logging_config import get_logger
from .monitor import PromptMonitor, make_notification_queue
from .protocols import EditorOpener
from .registry import SessionRegistry
from .session import Session
from .session_service import SessionService
from .tmux_client import TmuxClient


logger = get_logger("controller")

_NEVER_POLLED = object()


@dataclass
class SessionView:
    """One row of the session list."""

    session: Session
    alive: bool = False
    shell_alive: bool = False
    aux: Any = None

    @property
    def name(self) -> str:
        return self.session.name


class SessionListController:
    """Polls the registry and runs lifecycle actions for the UI."""

    def __init__(
        self,
        registry: SessionRegistry,
        tmux: TmuxClient,
        service: Optional[SessionService] = None,
        editor: Optional[EditorOpener] = None,
        config: Optional[Dict[str, Any]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        config = load_config() if config is None else config
        self.registry = registry
        self.tmux = tmux
        self.service = service or SessionService(tmux, registry)
        self.editor = editor
        self.clock = clock
        self.error_clear_delay = get_error_clear_delay(config)
        self.prompt_monitor_enabled = get_prompt_monitor_enabled(config)

        self.items: List[SessionView] = []
        self._last_revision: Any = _NEVER_POLLED
        self._aux: Dict[str, Any] = {}
        self._error: Optional[str] = None
        self._error_at = 0.0

        self._monitors: Dict[str, PromptMonitor] = {}
        self._monitoring = False
        self.notifications: "queue.Queue[str]" = make_notification_queue()

    # -- errors ------------------------------------------------------------

    def set_error(self, message: str) -> None:
        logger.warning("%s", message)
        self._error = message
        self._error_at = self.clock()

    @property
    def error(self) -> Optional[str]:
        """Current error message, or None once it has expired."""
        if self._error is not None and self.clock() - self._error_at >= self.error_clear_delay:
            self._error = None
        return self._error

    # -- polling -----------------------------------------------------------

    @property
    def visible_names(self) -> List[str]:
        return [item.name for item in self.items]

    def get(self, name: str) -> Optional[SessionView]:
        for item in self.items:
            if item.name == name:
                return item
        return None

    def poll(self, force: bool = False) -> bool:
        """Reconcile with the registry. Returns True if the list was rebuilt."""
        try:
            revision = self.registry.revision()
        except AgentDeckError as e:
            self.set_error(str(e))
            return False
        if not force and revision == self._last_revision:
            return False

        try:
            collection = self.registry.load()
        except AgentDeckError as e:
            self.set_error(str(e))
            return False

        try:
            live = {s.name for s in self.tmux.list()}
        except AgentDeckError as e:
            self.set_error(str(e))
            live = set()

        self._aux = {name: value for name, value in self._aux.items() if name in collection.sessions}
        self.items = [
            SessionView(
                session=session,
                alive=session.name in live,
                shell_alive=bool(session.shell_session) and session.shell_session in live,
                aux=self._aux.get(session.name),
            )
            for session in collection.ordered()
        ]
        self._last_revision = revision

        if self._monitoring:
            self._sync_monitors()
        return True

    def refresh(self) -> bool:
        return self.poll(force=True)

    def set_aux(self, name: str, value: Any) -> None:
        """Cache derived data for a session; it survives rebuilds."""
        self._aux[name] = value
        item = self.get(name)
        if item is not None:
            item.aux = value

    # -- actions -----------------------------------------------------------

    def _act(self, action: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        try:
            result = action(*args, **kwargs)
        except AgentDeckError as e:
            self.set_error(str(e))
            return None
        self.refresh()
        return result

    def attach(self, name: str) -> bool:
        """Attach to a session, re-creating it if it vanished; blocks until detach."""
        def _attach():
            self.service.ensure_running(name)
            done = self.tmux.attach(name)
            done.wait()
            return True

        return bool(self._act(_attach))

    def attach_shell(self, name: str) -> bool:
        """Attach to the session's companion shell, creating it if needed."""
        def _attach_shell():
            shell_name = self.service.get_or_create_shell_session(name)
            self.service.ensure_running(shell_name)
            done = self.tmux.attach(shell_name)
            done.wait()
            return True

        return bool(self._act(_attach_shell))

    def kill(self, name: str) -> None:
        self._act(self.service.kill_session, name)

    def rename(self, name: str, new_display_name: str) -> Optional[Session]:
        return self._act(self.service.rename_session, name, new_display_name)

    def _swap_with_neighbour(self, name: str, offset: int) -> bool:
        names = self.visible_names
        if name not in names:
            self.set_error(str(SessionNotFoundError(name, "session list")))
            return False
        index = names.index(name)
        target = index + offset
        if target < 0 or target >= len(names):
            return False
        self._act(self.registry.swap_positions, name, names[target])
        return True

    def move_up(self, name: str) -> bool:
        return self._swap_with_neighbour(name, -1)

    def move_down(self, name: str) -> bool:
        return self._swap_with_neighbour(name, 1)

    def toggle_archive(self, name: str) -> Optional[bool]:
        return self._act(self.service.archive_session, name)

    def toggle_flag(self, name: str) -> Optional[bool]:
        return self._act(self.registry.toggle_flag, name)

    def set_comment(self, name: str, comment: str) -> None:
        self._act(self.registry.set_comment, name, comment)

    def set_status(self, name: str, status: Optional[str]) -> None:
        self._act(self.registry.set_status, name, status)

    def send_text(self, name: str, text: str) -> None:
        self._act(self.service.send_text, name, text)

    def open_in_editor(self, name: str) -> bool:
        item = self.get(name)
        if self.editor is None or item is None or not item.session.workdir:
            return False
        try:
            self.editor.open(item.session.workdir)
        except Exception as e:
            self.set_error(f"failed to open editor: {e}")
            return False
        return True

    # -- prompt monitors ---------------------------------------------------

    def start_monitors(self) -> None:
        """Start one prompt monitor per live session."""
        self._monitoring = True
        self._sync_monitors()

    def _sync_monitors(self) -> None:
        wanted = {item.name for item in self.items if item.alive and not item.session.is_companion}
        for name in list(self._monitors):
            if name not in wanted:
                self._monitors.pop(name).stop()
        for name in wanted - set(self._monitors):
            monitor = PromptMonitor(self.tmux, name, self.notifications)
            monitor.start()
            self._monitors[name] = monitor

    def stop_monitors(self) -> None:
        self._monitoring = False
        monitors, self._monitors = self._monitors, {}
        for monitor in monitors.values():
            monitor.stop()

    @property
    def monitored_names(self) -> List[str]:
        return sorted(self._monitors)

    def drain_prompt_notifications(self) -> List[str]:
        names = []
        while True:
            try:
                names.append(self.notifications.get_nowait())
            except queue.Empty:
                return names
