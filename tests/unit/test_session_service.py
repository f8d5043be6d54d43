"""
Unit tests for SessionService lifecycle operations.

tmux is simulated with FakeTmuxServer; the registry is real and lives in
a temporary directory.
"""

import pytest

from agentdeck.exceptions import (
    InvalidSessionNameError,
    MissingRepoSourceError,
    PersistenceError,
    SessionExistsError,
    SessionNotFoundError,
    TmuxCommandError,
)
from agentdeck.registry import SessionRegistry
from agentdeck.session import STATE_IDLE, STATE_WAITING_USER
from agentdeck.session_service import SessionService, new_execution_id
from agentdeck.tmux_client import TmuxClient

from tests.fixtures import FakeTmuxServer, create_session


class RecordingWorktrees:
    def __init__(self, fail_remove=False):
        self.created = []
        self.removed = []
        self.fail_remove = fail_remove

    def create_worktree(self, repo_path, worktree_path, branch_name):
        self.created.append((repo_path, worktree_path, branch_name))

    def remove_worktree(self, repo_path, worktree_path):
        if self.fail_remove:
            raise RuntimeError("worktree is dirty")
        self.removed.append((repo_path, worktree_path))


@pytest.fixture
def server():
    return FakeTmuxServer()


@pytest.fixture
def registry(tmp_path):
    return SessionRegistry(tmp_path / "sessions.json")


@pytest.fixture
def worktrees():
    return RecordingWorktrees()


@pytest.fixture
def service(server, registry, worktrees):
    return SessionService(TmuxClient(server=server), registry, worktrees=worktrees, status_position="bottom")


class TestCreateSession:

    def test_creates_tmux_and_registry_entry(self, service, server, registry):
        session = service.create_session("My Feature", workdir="/tmp/project")

        assert session.name == "My_Feature"
        assert session.display_name == "My Feature"
        assert session.state == STATE_WAITING_USER
        assert "My_Feature" in server.sessions
        assert registry.get("My_Feature") is not None

    def test_new_session_goes_to_head(self, service, registry):
        service.create_session("first")
        service.create_session("second")

        assert registry.load().ordered_names == ["second", "first"]

    def test_execution_id_is_recorded_and_injected(self, service, server, registry):
        session = service.create_session("alpha")

        assert session.execution_id
        command = server.sent_keys["alpha"][0][0]
        assert f"AGENTDECK_EXECUTION_ID={session.execution_id}" in command

    def test_initial_prompt_is_sent(self, service, server):
        service.create_session("alpha", initial_prompt="write the tests")

        assert ("-l", "write the tests") in server.sent_keys["alpha"]
        assert server.sent_keys["alpha"][-1] == ("Enter",)

    def test_existing_name_raises_before_tmux(self, service, server, registry):
        registry.add(create_session("alpha"))

        with pytest.raises(SessionExistsError):
            service.create_session("alpha")

        assert "alpha" not in server.sessions

    def test_existing_tmux_session_raises(self, service, server, registry):
        server.new_session("alpha")

        with pytest.raises(SessionExistsError):
            service.create_session("alpha")

        assert registry.get("alpha") is None

    def test_unusable_name_raises(self, service):
        with pytest.raises(InvalidSessionNameError):
            service.create_session("!!!")

    def test_registry_failure_kills_tmux_session(self, service, server, registry, monkeypatch):
        def broken_add(session):
            raise PersistenceError("disk full")

        monkeypatch.setattr(registry, "add", broken_add)

        with pytest.raises(PersistenceError):
            service.create_session("alpha")

        assert "alpha" not in server.sessions

    def test_worktree_is_created(self, service, worktrees, server):
        session = service.create_session(
            "alpha", repo_path="/src/repo", worktree="/src/repo-alpha", branch_name="feat"
        )

        assert worktrees.created == [("/src/repo", "/src/repo-alpha", "feat")]
        assert server.workdirs["alpha"] == "/src/repo-alpha"
        assert session.worktree_path == "/src/repo-alpha"

    def test_status_position_applied(self, service, server):
        service.create_session("alpha")

        assert server.options["alpha"]["status-position"] == "bottom"

    def test_new_execution_id_prefers_environment(self, monkeypatch):
        monkeypatch.setenv("AGENTDECK_EXECUTION_ID", "outer-run")

        assert new_execution_id() == "outer-run"

    def test_repo_source_defaults_to_repo_path_or_workdir(self, service):
        from_repo = service.create_session("alpha", repo_path="/src/repo")
        from_dir = service.create_session("beta", workdir="/tmp/project")

        assert from_repo.repo_source == "/src/repo"
        assert from_dir.repo_source == "/tmp/project"


class TestAddSession:

    def test_registers_without_tmux(self, service, server, registry):
        service.add_session(create_session("alpha"))

        assert registry.get("alpha") is not None
        assert "alpha" not in server.sessions

    def test_duplicate_raises(self, service, registry):
        registry.add(create_session("alpha"))

        with pytest.raises(SessionExistsError):
            service.add_session(create_session("alpha"))


class TestDuplicateSession:

    def test_copies_launch_options(self, service, server, registry):
        registry.add(create_session(
            "alpha",
            repo_source="/src/repo",
            repo_path="/src/repo",
            repo_info="acme/repo",
            branch_name="main",
            claude_dir="/home/u/.claude-work",
            allow_dangerously_skip_permissions=True,
        ))

        dup = service.duplicate_session("alpha", "alpha two", branch_name="feature")

        assert dup.name == "alpha_two"
        assert dup.repo_source == "/src/repo"
        assert dup.repo_info == "acme/repo"
        assert dup.claude_dir == "/home/u/.claude-work"
        assert dup.allow_dangerously_skip_permissions is True
        assert dup.branch_name == "feature"
        assert server.workdirs["alpha_two"] == "/src/repo"
        assert registry.load().ordered_names[0] == "alpha_two"

    def test_keeps_source_branch_without_override(self, service, registry):
        registry.add(create_session("alpha", repo_source="/src/repo", repo_path="/src/repo", branch_name="main"))

        dup = service.duplicate_session("alpha", "beta")

        assert dup.branch_name == "main"

    def test_sibling_worktree_for_worktree_source(self, service, worktrees, server, registry):
        registry.add(create_session(
            "alpha",
            repo_source="/src/repo",
            repo_path="/src/repo",
            worktree_path="/src/worktrees/alpha",
        ))

        dup = service.duplicate_session("alpha", "beta", branch_name="fix-login")

        assert worktrees.created == [("/src/repo", "/src/worktrees/beta", "fix-login")]
        assert dup.worktree_path == "/src/worktrees/beta"
        assert server.workdirs["beta"] == "/src/worktrees/beta"

    def test_directory_source_without_repo_path(self, service, server, registry):
        registry.add(create_session("alpha", repo_source="/tmp/scratch"))

        service.duplicate_session("alpha", "beta")

        assert server.workdirs["beta"] == "/tmp/scratch"

    def test_source_without_repo_source_raises(self, service, server, registry):
        registry.add(create_session("alpha"))

        with pytest.raises(MissingRepoSourceError):
            service.duplicate_session("alpha", "beta")

        assert "beta" not in server.sessions

    def test_unknown_source_raises(self, service):
        with pytest.raises(SessionNotFoundError):
            service.duplicate_session("ghost", "beta")

    def test_taken_name_raises(self, service, registry):
        registry.add(create_session("alpha", repo_source="/src/repo"))
        registry.add(create_session("beta"))

        with pytest.raises(SessionExistsError):
            service.duplicate_session("alpha", "beta")


class TestEnsureRunning:

    def test_recreates_missing_session(self, service, server, registry):
        registry.add(create_session("alpha", repo_path="/tmp/repo", execution_id="exec-1"))

        assert service.ensure_running("alpha") is True
        assert "alpha" in server.sessions
        assert "AGENTDECK_EXECUTION_ID=exec-1" in server.sent_keys["alpha"][0][0]

    def test_live_session_untouched(self, service, server, registry):
        registry.add(create_session("alpha"))
        server.new_session("alpha")

        assert service.ensure_running("alpha") is False

    def test_unregistered_raises(self, service):
        with pytest.raises(SessionNotFoundError):
            service.ensure_running("ghost")

    def test_companion_recreated_as_shell(self, service, server, registry):
        registry.add(create_session("alpha-shell", parent_name="alpha"))

        service.ensure_running("alpha-shell")

        assert server.sent_keys["alpha-shell"] == []


class TestShellSession:

    def test_creates_and_links_shell(self, service, server, registry):
        registry.add(create_session("alpha", repo_path="/tmp/repo"))

        shell = service.get_or_create_shell_session("alpha")

        assert shell == "alpha-shell"
        assert "alpha-shell" in server.sessions
        assert server.workdirs["alpha-shell"] == "/tmp/repo"
        assert registry.get("alpha").shell_session == "alpha-shell"
        assert registry.get("alpha-shell").parent_name == "alpha"

    def test_reuses_existing_shell(self, service, server, registry):
        registry.add(create_session("alpha"))
        service.get_or_create_shell_session("alpha")

        assert service.get_or_create_shell_session("alpha") == "alpha-shell"
        assert len([c for c in server.commands if c[0] == "new-session"]) == 1


class TestDeleteAndKill:

    def test_delete_kills_tmux_and_removes_worktree(self, service, server, registry, worktrees):
        registry.add(create_session("alpha", repo_path="/r", worktree_path="/r-wt"))
        server.new_session("alpha")

        service.delete_session("alpha")

        assert registry.get("alpha") is None
        assert "alpha" not in server.sessions
        assert worktrees.removed == [("/r", "/r-wt")]

    def test_delete_can_skip_tmux_and_worktree(self, service, server, registry, worktrees):
        registry.add(create_session("alpha", repo_path="/r", worktree_path="/r-wt"))
        server.new_session("alpha")

        service.delete_session("alpha", kill_tmux=False, remove_worktree=False)

        assert registry.get("alpha") is None
        assert "alpha" in server.sessions
        assert worktrees.removed == []

    def test_delete_removes_companion(self, service, server, registry):
        registry.add(create_session("alpha"))
        service.get_or_create_shell_session("alpha")

        service.delete_session("alpha")

        assert registry.get("alpha-shell") is None
        assert "alpha-shell" not in server.sessions

    def test_delete_unknown_raises(self, service):
        with pytest.raises(SessionNotFoundError):
            service.delete_session("ghost")

    def test_worktree_failure_is_not_fatal(self, server, registry):
        service = SessionService(
            TmuxClient(server=server), registry, worktrees=RecordingWorktrees(fail_remove=True),
            status_position="bottom",
        )
        registry.add(create_session("alpha", repo_path="/r", worktree_path="/r-wt"))

        service.delete_session("alpha")

        assert registry.get("alpha") is None

    def test_kill_session_forgets_it(self, service, server, registry):
        registry.add(create_session("alpha"))
        server.new_session("alpha")

        service.kill_session("alpha")

        assert registry.get("alpha") is None
        assert "alpha" not in server.sessions

    def test_kill_session_tolerates_dead_tmux(self, service, registry):
        registry.add(create_session("alpha"))

        service.kill_session("alpha")

        assert registry.get("alpha") is None


class TestArchive:

    def test_archive_toggles(self, service, registry):
        registry.add(create_session("alpha"))

        assert service.archive_session("alpha") is True
        assert service.archive_session("alpha") is False

    def test_archive_can_remove_worktree(self, service, registry, worktrees):
        registry.add(create_session("alpha", repo_path="/r", worktree_path="/r-wt"))

        service.archive_session("alpha", remove_worktree=True)

        assert worktrees.removed == [("/r", "/r-wt")]


class TestRename:

    def test_rename_moves_tmux_and_registry(self, service, server, registry):
        service.create_session("alpha")

        renamed = service.rename_session("alpha", "Beta Two")

        assert renamed.name == "Beta_Two"
        assert renamed.display_name == "Beta Two"
        assert "Beta_Two" in server.sessions
        assert "alpha" not in server.sessions
        assert registry.get("alpha") is None

    def test_rename_round_trip(self, service, server, registry):
        service.create_session("alpha")

        service.rename_session("alpha", "beta")
        service.rename_session("beta", "alpha")

        assert "alpha" in server.sessions
        assert registry.get("alpha").display_name == "alpha"

    def test_same_name_only_updates_label(self, service, server, registry):
        service.create_session("alpha")

        renamed = service.rename_session("alpha", "alpha!")

        assert renamed.name == "alpha"
        assert registry.get("alpha").display_name == "alpha!"

    def test_rename_onto_registered_name_raises(self, service, server, registry):
        service.create_session("alpha")
        service.create_session("beta")

        with pytest.raises(SessionExistsError):
            service.rename_session("alpha", "beta")

        assert "alpha" in server.sessions

    def test_rename_onto_live_tmux_name_raises(self, service, server, registry):
        service.create_session("alpha")
        server.new_session("beta")

        with pytest.raises(SessionExistsError):
            service.rename_session("alpha", "beta")

        assert registry.get("alpha") is not None

    def test_rename_registry_failure_rolls_back_tmux(self, service, server, registry, monkeypatch):
        service.create_session("alpha")

        def broken_rename(old, new, display_name=None):
            raise PersistenceError("disk full")

        monkeypatch.setattr(registry, "rename", broken_rename)

        with pytest.raises(PersistenceError):
            service.rename_session("alpha", "beta")

        assert "alpha" in server.sessions
        assert "beta" not in server.sessions

    def test_rename_moves_companion(self, service, server, registry):
        service.create_session("alpha")
        service.get_or_create_shell_session("alpha")

        service.rename_session("alpha", "beta")

        assert "beta-shell" in server.sessions
        assert registry.get("beta-shell").parent_name == "beta"
        assert registry.get("beta").shell_session == "beta-shell"


class TestInteraction:

    def test_send_text(self, service, server):
        server.new_session("alpha")

        service.send_text("alpha", "hello; rm -rf /")

        assert server.sent_keys["alpha"] == [("-l", "hello; rm -rf /"), ("Enter",)]

    def test_capture(self, service, server, registry):
        registry.add(create_session("alpha"))
        server.new_session("alpha", "\n".join(f"line {i}" for i in range(100)))

        content = service.capture("alpha", lines=3)

        assert content.split("\n") == ["line 97", "line 98", "line 99"]

    def test_capture_unregistered(self, service):
        with pytest.raises(SessionNotFoundError):
            service.capture("ghost")

    def test_capture_not_running(self, service, registry):
        registry.add(create_session("alpha"))

        with pytest.raises(TmuxCommandError):
            service.capture("alpha")

    def test_state_untouched_by_service_metadata_ops(self, service, registry):
        registry.add(create_session("alpha"))

        service.archive_session("alpha")

        assert registry.get("alpha").state == STATE_IDLE
