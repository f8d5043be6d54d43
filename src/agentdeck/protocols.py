"""
Protocol definitions for external collaborators.

agentdeck consumes these capabilities but does not implement them: git
worktree provisioning, opening a path in an editor, playing sounds and
authenticating remote users all live outside this package. Tests and
integrations supply implementations through dependency injection.
"""

from typing import Any, List, Optional, Protocol, runtime_checkable


@runtime_checkable
class TmuxCommandResult(Protocol):
    """Shape of libtmux's tmux_cmd result."""

    returncode: int
    stdout: List[str]
    stderr: List[str]


@runtime_checkable
class TmuxServerInterface(Protocol):
    """The part of libtmux.Server that TmuxClient relies on."""

    def cmd(self, cmd: str, *args: Any, target: Optional[str] = None) -> TmuxCommandResult:
        """Run a tmux command against this server's socket."""
        ...


@runtime_checkable
class WorktreeProvider(Protocol):
    """Creates and removes git worktrees for sessions."""

    def create_worktree(self, repo_path: str, worktree_path: str, branch_name: str) -> None:
        """Create ``worktree_path`` from ``repo_path`` on ``branch_name``.

        Raises:
            Exception: Any failure; the session is not created
        """
        ...

    def remove_worktree(self, repo_path: str, worktree_path: str) -> None:
        """Remove a worktree. Callers treat failures as best-effort."""
        ...


@runtime_checkable
class EditorOpener(Protocol):
    """Opens a filesystem path in the user's editor."""

    def open(self, path: str) -> None:
        ...


@runtime_checkable
class SoundPlayer(Protocol):
    """Plays an audible cue for a hook event."""

    def play(self, event: str) -> None:
        ...
