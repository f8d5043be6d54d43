"""Hook-driven session state machine.

The agent reports its lifecycle through hooks configured at launch. Every
hook runs the same re-entry command in a fresh process:

    agentdeck notify <session> <event> --execution-id=<id>

which updates the session's state in the registry. The mapping from agent
hooks to events:

    SessionStart                     -> start
    UserPromptSubmit                 -> prompt
    Stop                             -> stop
    PermissionRequest                -> permission-request
    SessionEnd                       -> end
    PreToolUse  (AskUserQuestion)    -> notification
    PostToolUse (AskUserQuestion)    -> working
    PostToolUseFailure               -> tool-failure
    SubagentStart / SubagentStop     -> subagent-start / subagent-stop
    PreCompact                       -> pre-compact
    Setup                            -> setup

A hook must never break or block the agent, so a session missing from the
registry is not an error. Only registry persistence failures propagate.
"""

import os
import shlex
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from .config import get_strict_execution_id
from .exceptions import PersistenceError, SessionNotFoundError
from .logging_config import get_logger
from .protocols import SoundPlayer
from .registry import SessionRegistry
from .session import STATE_EXITED, STATE_IDLE, STATE_WAITING_USER, STATE_WORKING
from .settings import ENV_EXECUTION_ID


logger = get_logger("hooks")

UNKNOWN_EXECUTION_ID = "unknown"

# Event name -> resulting state. None means the event does not change state.
EVENT_STATES: Dict[str, Optional[str]] = {
    "start": STATE_WAITING_USER,
    "prompt": STATE_WORKING,
    "working": STATE_WORKING,
    "stop": STATE_IDLE,
    "notification": None,
    "end": STATE_EXITED,
    "permission-request": STATE_WAITING_USER,
    "tool-failure": STATE_WORKING,
    "subagent-start": STATE_WORKING,
    "subagent-stop": STATE_WORKING,
    "pre-compact": STATE_WORKING,
    "setup": STATE_WORKING,
}

# Unrecognized or missing events behave like "stop"
DEFAULT_EVENT = "stop"

SOUND_EVENTS = frozenset({"stop", "start", "notification", "permission-request", "end"})

# (agent hook name, tool matcher, agentdeck event)
AGENT_HOOKS: List[Tuple[str, Optional[str], str]] = [
    ("Stop", None, "stop"),
    ("UserPromptSubmit", None, "prompt"),
    ("SessionStart", None, "start"),
    ("PermissionRequest", None, "permission-request"),
    ("SessionEnd", None, "end"),
    ("PreToolUse", "AskUserQuestion", "notification"),
    ("PostToolUse", "AskUserQuestion", "working"),
    ("PostToolUseFailure", None, "tool-failure"),
    ("SubagentStart", None, "subagent-start"),
    ("SubagentStop", None, "subagent-stop"),
    ("PreCompact", None, "pre-compact"),
    ("Setup", None, "setup"),
]


def normalize_event(event: Optional[str]) -> str:
    """Lowercase a hook event, mapping unknown or missing ones to "stop"."""
    event = (event or "").strip().lower()
    if event in EVENT_STATES:
        return event
    return DEFAULT_EVENT


def state_for_event(event: Optional[str]) -> Optional[str]:
    """State a hook event leads to (None for informational events)."""
    return EVENT_STATES[normalize_event(event)]


def should_play_sound(event: Optional[str]) -> bool:
    return (event or "").strip().lower() in SOUND_EVENTS


def build_notify_command(executable: str, session_name: str, event: str, execution_id: str) -> str:
    return (
        f"{shlex.quote(executable)} notify {shlex.quote(session_name)} {event} "
        f"--execution-id={shlex.quote(execution_id)}"
    )


def build_hooks_settings(executable: str, session_name: str, execution_id: str) -> Dict[str, Any]:
    """Build the agent ``--settings`` document that wires every hook to notify."""
    hooks: Dict[str, List[Dict[str, Any]]] = {}
    for hook_name, matcher, event in AGENT_HOOKS:
        entry: Dict[str, Any] = {}
        if matcher:
            entry["matcher"] = matcher
        entry["hooks"] = [{
            "type": "command",
            "command": build_notify_command(executable, session_name, event, execution_id),
        }]
        hooks.setdefault(hook_name, []).append(entry)
    return {"hooks": hooks}


@dataclass
class HandleResult:
    """Outcome of one hook event."""

    session_name: str
    event: str
    state: Optional[str]
    applied: bool
    reason: str = ""


class NotifyHandler:
    """Applies hook events to the registry.

    By default the execution ID is recorded but never gates a transition,
    so a late "stop" from an earlier run of the same session name can still
    mark a newer run idle. With ``strict`` enabled, an event whose known
    execution ID differs from the stored one is ignored.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        strict: Optional[bool] = None,
        sound_player: Optional[SoundPlayer] = None,
    ):
        self.registry = registry
        self.strict = get_strict_execution_id() if strict is None else strict
        self.sound_player = sound_player

    def resolve_execution_id(self, session_name: str, flag_value: Optional[str] = None) -> str:
        """Pick the execution ID: flag, then environment, then registry."""
        if flag_value:
            return flag_value
        from_env = os.environ.get(ENV_EXECUTION_ID)
        if from_env:
            return from_env
        try:
            session = self.registry.get(session_name)
        except PersistenceError as e:
            logger.warning("cannot read registry for execution id: %s", e)
            session = None
        if session is not None and session.execution_id:
            return session.execution_id
        return UNKNOWN_EXECUTION_ID

    def _play_sound(self, event: str) -> None:
        if self.sound_player is None or not should_play_sound(event):
            return
        try:
            self.sound_player.play(event)
        except Exception as e:
            logger.error("failed to play sound for %s: %s", event, e)

    def handle(
        self,
        session_name: str,
        event: Optional[str],
        execution_id: Optional[str] = None,
    ) -> HandleResult:
        """Apply one hook event.

        Raises:
            PersistenceError: If the registry cannot be read or written
        """
        normalized = normalize_event(event)
        if normalized != (event or "").strip().lower():
            logger.info("unrecognized event %r for %s, treating as %s", event, session_name, normalized)

        self._play_sound(normalized)

        new_state = state_for_event(normalized)
        if new_state is None:
            logger.info("event %s for %s is informational", normalized, session_name)
            return HandleResult(session_name, normalized, None, False, "informational")

        session = self.registry.get(session_name)
        if session is None:
            logger.info("session %s not in registry, ignoring %s", session_name, normalized)
            return HandleResult(session_name, normalized, new_state, False, "not found")

        incoming = execution_id if execution_id and execution_id != UNKNOWN_EXECUTION_ID else None
        if (
            self.strict
            and incoming
            and session.execution_id
            and session.execution_id != UNKNOWN_EXECUTION_ID
            and session.execution_id != incoming
        ):
            logger.warning(
                "ignoring %s for %s: execution id %s does not match %s",
                normalized, session_name, incoming, session.execution_id,
            )
            return HandleResult(session_name, normalized, new_state, False, "stale execution id")

        try:
            self.registry.update_state(session_name, new_state, execution_id=incoming)
        except SessionNotFoundError:
            logger.info("session %s deleted before %s was applied", session_name, normalized)
            return HandleResult(session_name, normalized, new_state, False, "not found")

        logger.info("session %s: %s -> %s", session_name, normalized, new_state)
        return HandleResult(session_name, normalized, new_state, True)
