"""
Background prompt monitor for one session.

Every tick the pane is captured and, when it changed, classified with
the prompt heuristics. Entering the waiting state emits the session name
on a queue; leaving it is silent. The hook channel is authoritative; this
only runs for agents that do not report hooks.
"""

import queue
import threading
from typing import Optional

from .exceptions import AgentDeckError
from .logging_config import get_logger
from .prompt_patterns import PromptPatterns, is_waiting_for_user
from .settings import MONITOR_CAPTURE_LINES, MONITOR_QUEUE_SIZE, TIMINGS
from .tmux_client import TmuxClient


logger = get_logger("monitor")


def make_notification_queue(maxsize: int = MONITOR_QUEUE_SIZE) -> "queue.Queue[str]":
    return queue.Queue(maxsize=maxsize)


class PromptMonitor:
    """Polls one session and reports transitions into the waiting state."""

    def __init__(
        self,
        tmux: TmuxClient,
        session_name: str,
        notifications: "queue.Queue[str]",
        interval: Optional[float] = None,
        patterns: Optional[PromptPatterns] = None,
    ):
        self.tmux = tmux
        self.session_name = session_name
        self.notifications = notifications
        self.interval = TIMINGS.monitor_interval if interval is None else interval
        self.patterns = patterns
        self.is_waiting = False
        self._last_content: Optional[str] = None
        self._stop_event = threading.Event()
        self._stop_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(
            target=self._run, name=f"monitor-{self.session_name}", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        """Signal the ticker to exit. Only the first call has any effect."""
        with self._stop_lock:
            if self._stop_event.is_set():
                return
            self._stop_event.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=self.interval + 1.0)

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval):
            try:
                self.check_for_prompt()
            except Exception:
                # A failed tick is skipped, never fatal
                logger.exception("prompt check failed for %s", self.session_name)

    def check_for_prompt(self) -> bool:
        """Run one tick. Returns True if a notification was emitted."""
        if not self.tmux.exists(self.session_name):
            return False

        try:
            content = self.tmux.capture_pane(self.session_name, -MONITOR_CAPTURE_LINES)
        except AgentDeckError as e:
            logger.debug("capture failed for %s: %s", self.session_name, e)
            return False

        if content == self._last_content:
            return False
        self._last_content = content

        waiting_now = is_waiting_for_user(content, self.patterns)
        if waiting_now and not self.is_waiting:
            self.is_waiting = True
            try:
                self.notifications.put_nowait(self.session_name)
            except queue.Full:
                logger.debug("notification queue full, dropped %s", self.session_name)
                return False
            return True
        if not waiting_now and self.is_waiting:
            self.is_waiting = False
        return False
