"""
User configuration loaded from <state dir>/config.yaml.

Every key is optional. A missing, empty or malformed file behaves like an
empty config so that a broken file never prevents hooks from running.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .settings import TIMINGS, get_config_path


DEFAULT_STATUSES = ["spec", "plan", "implement", "review", "done"]
DEFAULT_AGENT_COMMAND = "claude"
VALID_STATUS_POSITIONS = ("top", "bottom")


def _config_path(path: Optional[Path] = None) -> Path:
    return path if path is not None else get_config_path()


def load_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """Load the YAML config as a dict ({} when absent or invalid)."""
    config_path = _config_path(path)
    if not config_path.exists():
        return {}

    try:
        with open(config_path) as f:
            data = yaml.safe_load(f)
    except (yaml.YAMLError, OSError):
        return {}

    if not isinstance(data, dict):
        return {}
    return data


def get_agent_command(config: Optional[Dict[str, Any]] = None) -> str:
    config = load_config() if config is None else config
    value = config.get("agent_command")
    if isinstance(value, str) and value.strip():
        return value.strip()
    return DEFAULT_AGENT_COMMAND


def get_tmux_status_position(config: Optional[Dict[str, Any]] = None) -> Optional[str]:
    config = load_config() if config is None else config
    value = config.get("tmux_status_position")
    if value in VALID_STATUS_POSITIONS:
        return value
    return None


def get_statuses(config: Optional[Dict[str, Any]] = None) -> List[str]:
    """Get the list of implementation statuses a session can be tagged with."""
    config = load_config() if config is None else config
    value = config.get("statuses")
    if isinstance(value, list):
        statuses = [str(s).strip() for s in value if str(s).strip()]
        if statuses:
            return statuses
    return list(DEFAULT_STATUSES)


def get_strict_execution_id(config: Optional[Dict[str, Any]] = None) -> bool:
    config = load_config() if config is None else config
    return config.get("strict_execution_id") is True


def get_prompt_monitor_enabled(config: Optional[Dict[str, Any]] = None) -> bool:
    config = load_config() if config is None else config
    return config.get("prompt_monitor") is True


def get_error_clear_delay(config: Optional[Dict[str, Any]] = None) -> float:
    config = load_config() if config is None else config
    value = config.get("error_clear_delay")
    if isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0:
        return float(value)
    return TIMINGS.error_clear_delay
