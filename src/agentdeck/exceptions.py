"""
Exception hierarchy for agentdeck.

Lifecycle operations raise these to their callers; the CLI turns them into
user-facing messages and exit codes.
"""

from typing import List, Optional, Sequence


class AgentDeckError(Exception):
    """Base class for all agentdeck errors."""


class SessionNotFoundError(AgentDeckError):
    """A session is absent from the registry or from tmux."""

    def __init__(self, name: str, where: str = "registry"):
        self.name = name
        self.where = where
        super().__init__(f"session '{name}' not found in {where}")


class SessionExistsError(AgentDeckError):
    """A session name is already taken."""

    def __init__(self, name: str, where: str = "registry"):
        self.name = name
        self.where = where
        super().__init__(f"session '{name}' already exists in {where}")


class InvalidSessionNameError(AgentDeckError):
    """A session name cannot be used."""

    def __init__(self, name: str, reason: str = "invalid characters"):
        self.name = name
        self.reason = reason
        super().__init__(f"invalid session name '{name}': {reason}")


class AlreadyAttachedError(AgentDeckError):
    """An attachment to this session is already outstanding."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"already attached to session '{name}'")


class NotAttachedError(AgentDeckError):
    """Detach was requested for a session that is not attached."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"not attached to session '{name}'")


class CreationTimeoutError(AgentDeckError):
    """A tmux session never became visible after creation."""

    def __init__(self, name: str, timeout: float):
        self.name = name
        self.timeout = timeout
        super().__init__(f"timeout waiting for session '{name}' to be created ({timeout:.1f}s)")


class TmuxCommandError(AgentDeckError):
    """tmux exited non-zero. Carries the combined output for diagnostics."""

    def __init__(self, command: Sequence[str], returncode: int, output: str = ""):
        self.command: List[str] = list(command)
        self.returncode = returncode
        self.output = output
        message = f"tmux {' '.join(self.command)} failed with exit code {returncode}"
        if output:
            message += f": {output}"
        super().__init__(message)


class PersistenceError(AgentDeckError):
    """The session registry could not be read, written or locked."""

    def __init__(self, message: str, path: Optional[str] = None):
        self.path = path
        super().__init__(f"{message} ({path})" if path else message)


class TmuxNotFoundError(AgentDeckError):
    """tmux is not installed."""


class ClaudeNotFoundError(AgentDeckError):
    """The agent CLI is not installed."""


class MissingRepoSourceError(AgentDeckError):
    """A session cannot be duplicated because it records no repository source."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"source session '{name}' has no repository source")
