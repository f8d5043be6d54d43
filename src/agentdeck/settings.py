"""
Centralized settings and paths for agentdeck.

Paths are resolved at call time so that AGENTDECK_STATE_DIR (used for test
isolation and for running several independent registries) is always honored.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


# Environment variables understood by agentdeck and forwarded into sessions
ENV_STATE_DIR = "AGENTDECK_STATE_DIR"
ENV_TMUX_SOCKET = "AGENTDECK_TMUX_SOCKET"
ENV_SESSION_NAME = "AGENTDECK_SESSION_NAME"
ENV_EXECUTION_ID = "AGENTDECK_EXECUTION_ID"
ENV_DEBUG = "AGENTDECK_DEBUG"
ENV_DEBUG_FILE = "AGENTDECK_DEBUG_FILE"
ENV_CLAUDE_CONFIG_DIR = "CLAUDE_CONFIG_DIR"


@dataclass(frozen=True)
class Timings:
    """Intervals and timeouts, in seconds."""

    poll_interval: float = 2.0
    monitor_interval: float = 2.0
    create_timeout: float = 2.0
    create_poll_step: float = 0.05
    lock_timeout: float = 5.0
    lock_poll_step: float = 0.02
    error_clear_delay: float = 10.0


TIMINGS = Timings()

# Monitor capture window and classification window
MONITOR_CAPTURE_LINES = 30
MONITOR_TAIL_LINES = 5

# Queue size for prompt notifications (sends beyond this are dropped)
MONITOR_QUEUE_SIZE = 16

# Suffix for companion shell sessions
SHELL_SUFFIX = "-shell"


def get_state_dir() -> Path:
    """Get the agentdeck state directory (~/.agentdeck by default)."""
    state_dir = os.environ.get(ENV_STATE_DIR)
    if state_dir:
        return Path(state_dir)
    return Path.home() / ".agentdeck"


def get_registry_path() -> Path:
    """Get the path of the session registry document."""
    return get_state_dir() / "sessions.json"


def get_config_path() -> Path:
    """Get the path of the user YAML config."""
    return get_state_dir() / "config.yaml"


def get_log_dir() -> Path:
    return get_state_dir() / "logs"


def get_hook_log_path(session_name: str) -> Path:
    """Get the per-session log file used by hook invocations."""
    return get_log_dir() / "hooks" / f"{session_name}.log"


def get_tmux_socket() -> Optional[str]:
    return os.environ.get(ENV_TMUX_SOCKET) or None


def debug_enabled() -> bool:
    return os.environ.get(ENV_DEBUG) == "1"
