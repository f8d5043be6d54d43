"""
Test fixtures and factories for agentdeck unit tests.

FakeTmuxServer stands in for libtmux.Server: it answers ``cmd(*args)``
with objects carrying returncode/stdout/stderr, simulating just enough
tmux behavior (sessions, exit codes, pane buffers, sent keys) for the
client, service, monitor and controller.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from agentdeck.session import STATE_IDLE, Session


@dataclass
class FakeResult:
    """Mirrors libtmux's tmux_cmd result."""
    returncode: int = 0
    stdout: List[str] = field(default_factory=list)
    stderr: List[str] = field(default_factory=list)


def _strip_target(target: str) -> str:
    # "=name" and "=name:" both address session "name"
    if target.startswith("="):
        target = target[1:]
    return target.split(":", 1)[0]


def _option_value(args, flag) -> Optional[str]:
    if flag in args:
        return args[args.index(flag) + 1]
    return None


class FakeTmuxServer:
    """In-memory tmux server.

    Attributes:
        sessions: name -> pane content
        sent_keys: name -> list of key tuples sent
        commands: every argv tuple received
        fail_commands: tmux command names that exit 1 with an error
        create_invisible: new sessions are accepted but never listed
    """

    def __init__(self):
        self.sessions: Dict[str, str] = {}
        self.workdirs: Dict[str, Optional[str]] = {}
        self.options: Dict[str, Dict[str, str]] = {}
        self.sent_keys: Dict[str, List[tuple]] = {}
        self.bindings: Dict[tuple, tuple] = {}
        self.sourced: List[str] = []
        self.commands: List[tuple] = []
        self.fail_commands: set = set()
        self.create_invisible = False

    def new_session(self, name: str, content: str = "") -> None:
        self.sessions[name] = content
        self.sent_keys.setdefault(name, [])

    def set_pane(self, name: str, content: str) -> None:
        self.sessions[name] = content

    def _missing(self, name: str) -> FakeResult:
        return FakeResult(1, [], [f"can't find session: {name}"])

    def cmd(self, *args: str) -> FakeResult:
        self.commands.append(args)
        command = args[0]
        if command in self.fail_commands:
            return FakeResult(1, [], [f"{command}: simulated failure"])

        handler = getattr(self, "_" + command.replace("-", "_"), None)
        if handler is None:
            return FakeResult(1, [], [f"unknown command: {command}"])
        return handler(list(args[1:]))

    def _has_session(self, args) -> FakeResult:
        name = _strip_target(_option_value(args, "-t"))
        return FakeResult(0 if name in self.sessions else 1)

    def _new_session(self, args) -> FakeResult:
        name = _option_value(args, "-s")
        if name in self.sessions:
            return FakeResult(1, [], [f"duplicate session: {name}"])
        if self.create_invisible:
            return FakeResult(0)
        self.new_session(name)
        self.workdirs[name] = _option_value(args, "-c")
        return FakeResult(0)

    def _list_sessions(self, args) -> FakeResult:
        if not self.sessions:
            return FakeResult(1, [], ["no server running on /tmp/tmux-1000/default"])
        return FakeResult(0, [f"{name}\t1700000000" for name in self.sessions])

    def _kill_session(self, args) -> FakeResult:
        name = _strip_target(_option_value(args, "-t"))
        if name not in self.sessions:
            return self._missing(name)
        del self.sessions[name]
        self.sent_keys.pop(name, None)
        return FakeResult(0)

    def _rename_session(self, args) -> FakeResult:
        name = _strip_target(_option_value(args, "-t"))
        new = args[-1]
        if name not in self.sessions:
            return self._missing(name)
        if new in self.sessions:
            return FakeResult(1, [], [f"duplicate session: {new}"])
        self.sessions[new] = self.sessions.pop(name)
        self.sent_keys[new] = self.sent_keys.pop(name, [])
        return FakeResult(0)

    def _send_keys(self, args) -> FakeResult:
        name = _strip_target(_option_value(args, "-t"))
        if name not in self.sessions:
            return self._missing(name)
        self.sent_keys.setdefault(name, []).append(tuple(args[2:]))
        return FakeResult(0)

    def _capture_pane(self, args) -> FakeResult:
        name = _strip_target(_option_value(args, "-t"))
        if name not in self.sessions:
            return self._missing(name)
        lines = self.sessions[name].split("\n")
        start = _option_value(args, "-S")
        if start is not None and int(start) < 0:
            lines = lines[int(start):]
        return FakeResult(0, lines)

    def _bind_key(self, args) -> FakeResult:
        self.bindings[(args[1], args[2])] = tuple(args[3:])
        return FakeResult(0)

    def _set_option(self, args) -> FakeResult:
        name = _strip_target(_option_value(args, "-t"))
        if name not in self.sessions:
            return self._missing(name)
        self.options.setdefault(name, {})[args[-2]] = args[-1]
        return FakeResult(0)

    def _source_file(self, args) -> FakeResult:
        self.sourced.append(args[0])
        return FakeResult(0)


def create_session(
    name: str = "test-session",
    display_name: Optional[str] = None,
    state: str = STATE_IDLE,
    **kwargs,
) -> Session:
    """Create a Session with sensible defaults for tests."""
    return Session(name=name, display_name=display_name or name, state=state, **kwargs)


def populate_registry(registry, *names: str) -> List[Session]:
    """Add sessions so that the order ends up as ``names``."""
    added = []
    for name in reversed(names):
        added.append(registry.add(create_session(name)))
    return list(reversed(added))


PANE_CONTENT_WORKING = """
⏺ Reading the configuration file...

  Reading config.json...
  Esc to interrupt
"""

PANE_CONTENT_WAITING = """
⏺ I've finished analyzing the code. Here's what I found:

  1. The main function looks good
  2. Tests are passing

  Would you like me to make any changes?
"""

PANE_CONTENT_PRESS_ENTER = """
Installing dependencies... done

Press Enter to continue
"""

PANE_CONTENT_ANSI_QUESTION = "\x1b[1;33mShould I\x1b[0m run the tests\x1b[2K"
