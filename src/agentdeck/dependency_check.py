"""
Dependency checking for external binaries (tmux and the agent CLI).
"""

import shutil
import subprocess
from typing import Optional, Tuple

from .exceptions import ClaudeNotFoundError, TmuxNotFoundError


def find_executable(name: str) -> Optional[str]:
    """Find the path to an executable, or None if it is not on PATH."""
    return shutil.which(name)


def check_tmux() -> Tuple[bool, Optional[str], Optional[str]]:
    """Check if tmux is available and get its version.

    Returns:
        Tuple of (is_available, path, version)
    """
    path = find_executable("tmux")
    if not path:
        return False, None, None

    try:
        result = subprocess.run(
            [path, "-V"],
            capture_output=True,
            text=True,
            timeout=5
        )
        version = result.stdout.strip() if result.returncode == 0 else None
        return True, path, version
    except (subprocess.SubprocessError, OSError):
        return True, path, None


def check_claude(command: str = "claude") -> Tuple[bool, Optional[str], Optional[str]]:
    """Check if the agent CLI is available and get its version.

    Returns:
        Tuple of (is_available, path, version)
    """
    path = find_executable(command)
    if not path:
        return False, None, None

    try:
        result = subprocess.run(
            [path, "--version"],
            capture_output=True,
            text=True,
            timeout=10
        )
        if result.returncode == 0:
            return True, path, result.stdout.strip()
        return True, path, None
    except (subprocess.SubprocessError, OSError):
        return True, path, None


def require_tmux() -> str:
    """Ensure tmux is available.

    Raises:
        TmuxNotFoundError: If tmux is not found
    """
    available, path, _ = check_tmux()
    if not available:
        raise TmuxNotFoundError(
            "tmux is required but not found. "
            "Install it with: brew install tmux (macOS) or apt install tmux (Linux)"
        )
    return path


def require_claude(command: str = "claude") -> str:
    """Ensure the agent CLI is available.

    Raises:
        ClaudeNotFoundError: If the command is not found
    """
    path = find_executable(command)
    if not path:
        raise ClaudeNotFoundError(
            f"'{command}' is required but not found. "
            "Install Claude Code from: https://claude.ai/claude-code"
        )
    return path
