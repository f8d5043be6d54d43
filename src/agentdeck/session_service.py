"""
Session lifecycle orchestration.

SessionService combines the tmux client and the registry so that the CLI
and the interactive controller perform lifecycle operations identically.
Primary steps raise; secondary cleanup (companion shells, worktrees) is
logged and skipped on failure.
"""

import os
import uuid
from typing import Optional

from .config import get_tmux_status_position, load_config
from .exceptions import (
    AgentDeckError,
    MissingRepoSourceError,
    SessionExistsError,
    SessionNotFoundError,
    TmuxCommandError,
)
from .logging_config import get_structured_logger
from .naming import shell_session_name, validate_session_name
from .protocols import WorktreeProvider
from .registry import SessionRegistry
from .session import STATE_IDLE, STATE_WAITING_USER, Session
from .settings import ENV_EXECUTION_ID
from .tmux_client import TmuxClient


logger = get_structured_logger("service")


def new_execution_id() -> str:
    """Execution ID for sessions created by this process."""
    return os.environ.get(ENV_EXECUTION_ID) or str(uuid.uuid4())


class SessionService:
    """Lifecycle operations over one tmux client and one registry."""

    def __init__(
        self,
        tmux: TmuxClient,
        registry: SessionRegistry,
        worktrees: Optional[WorktreeProvider] = None,
        status_position: Optional[str] = None,
    ):
        self.tmux = tmux
        self.registry = registry
        self.worktrees = worktrees
        if status_position is None:
            status_position = get_tmux_status_position(load_config())
        self.status_position = status_position

    def _require(self, name: str) -> Session:
        session = self.registry.get(name)
        if session is None:
            raise SessionNotFoundError(name)
        return session

    # -- creation ----------------------------------------------------------

    def create_session(
        self,
        display_name: str,
        workdir: Optional[str] = None,
        repo_path: Optional[str] = None,
        repo_info: Optional[str] = None,
        repo_source: Optional[str] = None,
        branch_name: Optional[str] = None,
        worktree: Optional[str] = None,
        claude_dir: Optional[str] = None,
        initial_prompt: Optional[str] = None,
        allow_dangerously_skip_permissions: bool = False,
    ) -> Session:
        """Create the tmux session, start the agent and register it at the head.

        Raises:
            InvalidSessionNameError: If the display name sanitizes to nothing
            SessionExistsError: If the name is taken in the registry or tmux
            CreationTimeoutError / TmuxCommandError: If tmux creation fails
        """
        name = validate_session_name(display_name)
        log = logger.with_context(session=name)
        if self.registry.get(name) is not None:
            raise SessionExistsError(name)

        if worktree and repo_path and self.worktrees is not None:
            branch_name = branch_name or name
            log.info("creating worktree", path=worktree, branch=branch_name)
            self.worktrees.create_worktree(repo_path, worktree, branch_name)

        execution_id = new_execution_id()
        start_dir = worktree or workdir or repo_path
        self.tmux.create(
            name,
            workdir=start_dir,
            claude_dir=claude_dir,
            status_position=self.status_position,
            execution_id=execution_id,
        )

        session = Session(
            name=name,
            display_name=display_name,
            state=STATE_WAITING_USER,
            execution_id=execution_id,
            worktree_path=worktree,
            repo_path=repo_path or (workdir if not worktree else None),
            repo_info=repo_info,
            repo_source=repo_source or repo_path or workdir,
            branch_name=branch_name,
            claude_dir=claude_dir,
            initial_prompt=initial_prompt,
            allow_dangerously_skip_permissions=allow_dangerously_skip_permissions,
        )
        try:
            self.registry.add(session)
        except Exception:
            log.error("registry add failed, killing tmux session")
            try:
                self.tmux.kill(name)
            except AgentDeckError as e:
                log.warning("rollback kill failed", error=e)
            raise

        if initial_prompt:
            try:
                self.send_text(name, initial_prompt)
            except AgentDeckError as e:
                log.warning("failed to send initial prompt", error=e)

        log.info("session created")
        return session

    def duplicate_session(
        self,
        name: str,
        new_display_name: str,
        branch_name: Optional[str] = None,
    ) -> Session:
        """Create a new session from an existing session's repository.

        The new session inherits the repository source, claude dir and
        skip-permissions flag. With a worktree provider and a source that
        lives in a worktree, the new session gets a sibling worktree on
        ``branch_name`` (default: the new session name); otherwise it starts
        in the source repository.

        Raises:
            SessionNotFoundError: If the source session is not registered
            MissingRepoSourceError: If the source records no repository source
        """
        source = self._require(name)
        if not source.repo_source:
            raise MissingRepoSourceError(name)

        new_name = validate_session_name(new_display_name)
        worktree = None
        if self.worktrees is not None and source.worktree_path and source.repo_path:
            worktree = os.path.join(os.path.dirname(source.worktree_path.rstrip(os.sep)), new_name)
        else:
            branch_name = branch_name or source.branch_name

        logger.info("duplicating session", source=name, new=new_name)
        return self.create_session(
            new_display_name,
            workdir=None if source.repo_path else source.repo_source,
            repo_path=source.repo_path,
            repo_info=source.repo_info,
            repo_source=source.repo_source,
            branch_name=branch_name,
            worktree=worktree,
            claude_dir=source.claude_dir,
            allow_dangerously_skip_permissions=source.allow_dangerously_skip_permissions,
        )

    def add_session(self, session: Session) -> Session:
        """Register metadata only; no tmux session is created."""
        return self.registry.add(session)

    def ensure_running(self, name: str) -> bool:
        """Make sure the tmux session for a registered session exists.

        Returns:
            True if it had to be re-created
        """
        session = self._require(name)
        if self.tmux.exists(name):
            return False

        log = logger.with_context(session=name)
        log.info("tmux session missing, re-creating")
        try:
            if session.is_companion:
                self.tmux.create_shell(name, workdir=session.workdir, status_position=self.status_position)
            else:
                self.tmux.create(
                    name,
                    workdir=session.workdir,
                    claude_dir=session.claude_dir,
                    status_position=self.status_position,
                    execution_id=session.execution_id or None,
                )
        except SessionExistsError:
            # Someone else re-created it first
            log.info("session re-created concurrently")
            return False
        return True

    def get_or_create_shell_session(self, name: str) -> str:
        """Return the companion shell's name, creating it if needed."""
        session = self._require(name)
        shell_name = session.shell_session or shell_session_name(name)
        log = logger.with_context(session=name, shell=shell_name)

        if not self.tmux.exists(shell_name):
            try:
                self.tmux.create_shell(shell_name, workdir=session.workdir, status_position=self.status_position)
            except SessionExistsError:
                log.info("shell session created concurrently")

        if self.registry.get(shell_name) is None:
            companion = Session(
                name=shell_name,
                display_name=shell_name,
                state=STATE_IDLE,
                worktree_path=session.worktree_path,
                repo_path=session.repo_path,
                parent_name=name,
            )
            try:
                self.registry.add(companion)
            except SessionExistsError:
                pass
        if session.shell_session != shell_name:
            self.registry.link_shell_session(name, shell_name)
        return shell_name

    # -- destruction -------------------------------------------------------

    def _kill_quietly(self, name: str, what: str) -> None:
        try:
            self.tmux.kill(name)
        except AgentDeckError as e:
            logger.warning(f"failed to kill {what}", session=name, error=e)

    def _remove_worktree_quietly(self, session: Session) -> None:
        if not session.worktree_path or not session.repo_path:
            return
        if self.worktrees is None:
            logger.info("no worktree provider, keeping worktree", session=session.name, path=session.worktree_path)
            return
        try:
            self.worktrees.remove_worktree(session.repo_path, session.worktree_path)
        except Exception as e:
            logger.warning("failed to remove worktree", session=session.name, path=session.worktree_path, error=e)

    def kill_session(self, name: str) -> None:
        """Kill a session and its companion shell and forget both."""
        session = self.registry.get(name)
        if session is not None and session.shell_session:
            self._kill_quietly(session.shell_session, "shell session")
            try:
                self.registry.delete(session.shell_session)
            except SessionNotFoundError:
                pass

        self._kill_quietly(name, "session")
        try:
            self.registry.delete(name)
        except SessionNotFoundError:
            pass
        logger.info("session killed", session=name)

    def delete_session(self, name: str, kill_tmux: bool = True, remove_worktree: bool = True) -> Session:
        """Delete a registered session.

        Raises:
            SessionNotFoundError: If the session is not registered
        """
        session = self._require(name)

        if kill_tmux:
            if session.shell_session:
                self._kill_quietly(session.shell_session, "shell session")
            if self.tmux.exists(name):
                self._kill_quietly(name, "session")

        if session.shell_session:
            try:
                self.registry.delete(session.shell_session)
            except SessionNotFoundError:
                pass
        self.registry.delete(name)

        if remove_worktree:
            self._remove_worktree_quietly(session)

        logger.info("session deleted", session=name)
        return session

    def archive_session(self, name: str, remove_worktree: bool = False) -> bool:
        """Toggle a session's archived flag. Returns the new value."""
        session = self._require(name)
        if remove_worktree:
            self._remove_worktree_quietly(session)
        archived = self.registry.toggle_archive(name)
        logger.info("archive toggled", session=name, archived=archived)
        return archived

    # -- rename ------------------------------------------------------------

    def rename_session(self, old: str, new_display_name: str) -> Session:
        """Rename a session (tmux and registry) from a new display label.

        Both stores are checked for collisions before anything changes. If
        the registry update fails after tmux was renamed, tmux is renamed
        back.
        """
        session = self._require(old)
        new = validate_session_name(new_display_name)

        if new == old:
            return self.registry.update_display_name(old, new_display_name)

        if self.registry.get(new) is not None:
            raise SessionExistsError(new)
        live = self.tmux.exists(old)
        if live and self.tmux.exists(new):
            raise SessionExistsError(new, "tmux")

        if live:
            self.tmux.rename(old, new)
        try:
            renamed = self.registry.rename(old, new, display_name=new_display_name)
        except Exception:
            if live:
                try:
                    self.tmux.rename(new, old)
                except AgentDeckError as e:
                    logger.error("failed to roll back tmux rename", session=new, error=e)
            raise

        if session.shell_session:
            new_shell = shell_session_name(new)
            try:
                if self.tmux.exists(session.shell_session):
                    self.tmux.rename(session.shell_session, new_shell)
                self.registry.rename(session.shell_session, new_shell, display_name=new_shell)
            except AgentDeckError as e:
                logger.warning("failed to rename shell session", session=session.shell_session, error=e)

        logger.info("session renamed", old=old, new=new)
        return renamed

    # -- interaction -------------------------------------------------------

    def send_text(self, name: str, text: str) -> None:
        """Type text into the session and press Enter."""
        self.tmux.send_keys(name, "-l", text)
        self.tmux.send_keys(name, "Enter")

    def capture(self, name: str, lines: int = 50) -> str:
        """Capture the last ``lines`` lines of a registered session's pane.

        Raises:
            SessionNotFoundError: If the session is not registered
            TmuxCommandError: If its tmux session is not running
        """
        self._require(name)
        if not self.tmux.exists(name):
            raise TmuxCommandError(
                ["capture-pane", "-t", name], 1, f"tmux session '{name}' is not running"
            )
        return self.tmux.capture_pane(name, -abs(lines))
