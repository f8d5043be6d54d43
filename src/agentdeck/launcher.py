"""
Agent launcher: the ``agentdeck start`` step run inside a tmux session.

The start command typed into a new session runs ``agentdeck start``, which
looks its session up in the registry, wires every agent hook back to
``agentdeck notify`` through ``--settings`` and replaces itself with the
agent process so the agent receives signals directly.
"""

import json
import os
import time
from typing import Dict, List, Optional, Tuple

from .config import get_agent_command, load_config
from .dependency_check import require_claude
from .exceptions import PersistenceError
from .hook_handler import UNKNOWN_EXECUTION_ID, build_hooks_settings
from .logging_config import get_logger
from .registry import SessionRegistry
from .session import Session
from .settings import ENV_CLAUDE_CONFIG_DIR, ENV_EXECUTION_ID, ENV_SESSION_NAME
from .tmux_client import agentdeck_executable


logger = get_logger("launcher")

UNKNOWN_SESSION = "unknown"

# The start command may run before the creating process has registered
# the session; give the registry a moment to catch up.
REGISTRY_WAIT = 1.0
REGISTRY_WAIT_STEP = 0.1


def build_agent_argv(
    agent_command: str,
    session_name: str,
    execution_id: str,
    allow_dangerously_skip_permissions: bool = False,
    extra_args: Optional[List[str]] = None,
    executable: Optional[str] = None,
) -> List[str]:
    """Build the agent's argv with hook settings attached."""
    settings = build_hooks_settings(executable or agentdeck_executable(), session_name, execution_id)
    argv = [agent_command, "--settings", json.dumps(settings)]
    if allow_dangerously_skip_permissions:
        argv.append("--allow-dangerously-skip-permissions")
    argv.extend(extra_args or [])
    return argv


def build_agent_env(claude_dir: Optional[str], environ: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    env = dict(os.environ if environ is None else environ)
    if claude_dir:
        env[ENV_CLAUDE_CONFIG_DIR] = claude_dir
    return env


def _lookup_session(registry: SessionRegistry, name: str) -> Optional[Session]:
    deadline = time.monotonic() + REGISTRY_WAIT
    while True:
        try:
            session = registry.get(name)
        except PersistenceError as e:
            logger.warning("cannot read registry: %s", e)
            return None
        if session is not None or time.monotonic() >= deadline:
            return session
        time.sleep(REGISTRY_WAIT_STEP)


def resolve_launch(registry: SessionRegistry) -> Tuple[str, str, Optional[Session]]:
    """Work out (session name, execution id, session) for this launch."""
    session_name = os.environ.get(ENV_SESSION_NAME) or UNKNOWN_SESSION
    session = None
    if session_name != UNKNOWN_SESSION:
        session = _lookup_session(registry, session_name)

    if session is not None and session.execution_id:
        execution_id = session.execution_id
    else:
        execution_id = os.environ.get(ENV_EXECUTION_ID) or UNKNOWN_EXECUTION_ID
        if session is None:
            logger.warning("session %s not found, using execution id %s", session_name, execution_id)
    return session_name, execution_id, session


def start_agent(registry: SessionRegistry, extra_args: Optional[List[str]] = None) -> None:
    """Replace this process with the agent, hooks configured.

    Raises:
        ClaudeNotFoundError: If the agent command is not on PATH
    """
    agent_command = get_agent_command(load_config())
    agent_path = require_claude(agent_command)

    session_name, execution_id, session = resolve_launch(registry)
    skip_permissions = bool(session and session.allow_dangerously_skip_permissions)
    claude_dir = session.claude_dir if session else None
    if skip_permissions:
        logger.warning("session %s runs with --allow-dangerously-skip-permissions", session_name)

    argv = build_agent_argv(
        os.path.basename(agent_command),
        session_name,
        execution_id,
        allow_dangerously_skip_permissions=skip_permissions,
        extra_args=extra_args,
    )
    logger.info("starting agent for %s (execution id %s)", session_name, execution_id)
    os.execvpe(agent_path, argv, build_agent_env(claude_dir))
