"""
tmux client: session lifecycle, key injection, capture and PTY attach.

Commands run through a libtmux Server (one per client instance, optionally
on a dedicated socket). Attaching does not exec tmux; it runs
``tmux attach-session`` on a pseudo-terminal and forwards bytes between
it and our own stdin/stdout, so Ctrl+Q can always detach regardless of
tmux's key bindings.
"""

import fcntl
import os
import select
import shlex
import shutil
import signal
import subprocess
import sys
import termios
import threading
import time
import tty
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

import libtmux
from libtmux.exc import TmuxCommandNotFound

from .exceptions import (
    AlreadyAttachedError,
    CreationTimeoutError,
    InvalidSessionNameError,
    NotAttachedError,
    SessionExistsError,
    SessionNotFoundError,
    TmuxCommandError,
    TmuxNotFoundError,
)
from .logging_config import get_logger
from .protocols import TmuxServerInterface
from .settings import (
    ENV_CLAUDE_CONFIG_DIR,
    ENV_DEBUG,
    ENV_DEBUG_FILE,
    ENV_EXECUTION_ID,
    ENV_SESSION_NAME,
    TIMINGS,
    get_tmux_socket,
)


logger = get_logger("tmux")

# Ctrl+Q on the input stream detaches
DETACH_BYTE = 17

_READ_SIZE = 4096

# Bound to C-] so the user can hop between a session and its companion shell.
SWAP_SCRIPT = """current=$(tmux display-message -p '#{session_name}')
case "$current" in
  *-shell) target="${current%-shell}"; kind=agent ;;
  *) target="$current-shell"; kind=shell ;;
esac
if tmux has-session -t "=$target" 2>/dev/null; then
  tmux switch-client -t "=$target"
else
  tmux display-message "No $kind session found for $current"
fi"""


@dataclass
class TmuxSession:
    """A live tmux session."""

    name: str
    created_at: Optional[datetime] = None


@dataclass
class _Attachment:
    master_fd: int
    wake_r: int
    wake_w: int
    proc: subprocess.Popen
    input_fd: int
    output_fd: int
    done: threading.Event = field(default_factory=threading.Event)
    closed: bool = False
    saved_tty: Optional[list] = None
    input_thread: Optional[threading.Thread] = None
    output_thread: Optional[threading.Thread] = None


class _AttachmentState:
    """Per-session attachment slot, guarded by its own lock."""

    def __init__(self):
        self.lock = threading.Lock()
        self.current: Optional[_Attachment] = None


def _session_target(name: str) -> str:
    # '=' forces an exact match; tmux would otherwise accept prefixes
    return f"={name}"


def _pane_target(name: str) -> str:
    return f"={name}:"


def agentdeck_executable() -> str:
    """Command used to re-enter agentdeck from inside a session."""
    argv0 = sys.argv[0] if sys.argv else ""
    if argv0 and os.path.basename(argv0) == "agentdeck" and os.path.exists(argv0):
        return os.path.abspath(argv0)
    return shutil.which("agentdeck") or "agentdeck"


def build_start_command(
    name: str,
    workdir: Optional[str] = None,
    claude_dir: Optional[str] = None,
    execution_id: Optional[str] = None,
    executable: Optional[str] = None,
    environ: Optional[Dict[str, str]] = None,
) -> str:
    """Build the shell line typed into a new session to launch the agent.

    The line changes into ``workdir``, clears the screen, exports the
    session identity (plus debug and execution-correlation variables when
    present) and runs ``agentdeck start``.
    """
    env = os.environ if environ is None else environ
    assignments = [f"{ENV_SESSION_NAME}={shlex.quote(name)}"]
    if claude_dir:
        assignments.append(f"{ENV_CLAUDE_CONFIG_DIR}={shlex.quote(claude_dir)}")
    if env.get(ENV_DEBUG) == "1":
        assignments.append(f"{ENV_DEBUG}=1")
        if env.get(ENV_DEBUG_FILE):
            assignments.append(f"{ENV_DEBUG_FILE}={shlex.quote(env[ENV_DEBUG_FILE])}")
    execution_id = execution_id or env.get(ENV_EXECUTION_ID)
    if execution_id:
        assignments.append(f"{ENV_EXECUTION_ID}={shlex.quote(execution_id)}")

    start = f"{' '.join(assignments)} {shlex.quote(executable or agentdeck_executable())} start"
    if workdir:
        return f"cd {shlex.quote(workdir)} && clear && {start}"
    return f"clear && {start}"


class TmuxClient:
    """Wraps the tmux binary for one tmux server.

    Args:
        server: libtmux Server (or compatible object with ``cmd``). Built
            lazily from ``socket_name`` when omitted.
        socket_name: tmux ``-L`` socket; defaults to AGENTDECK_TMUX_SOCKET
        input_fd: descriptor read while attached (default: stdin)
        output_fd: descriptor written while attached (default: stdout)
    """

    def __init__(
        self,
        server: Optional[TmuxServerInterface] = None,
        socket_name: Optional[str] = None,
        input_fd: Optional[int] = None,
        output_fd: Optional[int] = None,
    ):
        self._socket_name = socket_name or get_tmux_socket()
        self._server = server
        self._input_fd = input_fd
        self._output_fd = output_fd
        self._attachments: Dict[str, _AttachmentState] = {}
        self._attachments_lock = threading.Lock()

    @property
    def server(self) -> TmuxServerInterface:
        """Lazy-load the tmux server connection."""
        if self._server is None:
            if self._socket_name:
                self._server = libtmux.Server(socket_name=self._socket_name)
            else:
                self._server = libtmux.Server()
        return self._server

    @property
    def socket_name(self) -> Optional[str]:
        return self._socket_name

    # -- command plumbing --------------------------------------------------

    def _cmd(self, *args: str):
        try:
            return self.server.cmd(*args)
        except TmuxCommandNotFound as e:
            raise TmuxNotFoundError("tmux is required but not found") from e

    def _run(self, *args: str) -> List[str]:
        """Run a tmux command, raising TmuxCommandError on non-zero exit."""
        result = self._cmd(*args)
        if result.returncode != 0:
            output = "\n".join(list(result.stdout) + list(result.stderr))
            raise TmuxCommandError(args, result.returncode, output)
        return list(result.stdout)

    # -- queries -----------------------------------------------------------

    def exists(self, name: str) -> bool:
        """Whether a tmux session with exactly this name is live."""
        if not name:
            return False
        return self._cmd("has-session", "-t", _session_target(name)).returncode == 0

    def list(self) -> List[TmuxSession]:
        """List live sessions. No tmux server (exit code 1) means no sessions."""
        args = ("list-sessions", "-F", "#{session_name}\t#{session_created}")
        result = self._cmd(*args)
        if result.returncode == 1:
            return []
        if result.returncode != 0:
            output = "\n".join(list(result.stdout) + list(result.stderr))
            raise TmuxCommandError(args, result.returncode, output)

        sessions = []
        for line in result.stdout:
            name, _, created = line.strip().partition("\t")
            if not name:
                continue
            created_at = None
            if created.isdigit():
                created_at = datetime.fromtimestamp(int(created))
            sessions.append(TmuxSession(name=name, created_at=created_at))
        return sessions

    def capture_pane(self, name: str, start_line: int = -30) -> str:
        """Pane content from ``start_line`` (negative: from the bottom) to the end."""
        lines = self._run("capture-pane", "-p", "-t", _pane_target(name), "-S", str(start_line))
        return "\n".join(lines)

    # -- creation ----------------------------------------------------------

    def _create_base(self, name: str, workdir: Optional[str], status_position: Optional[str]) -> None:
        if not name:
            raise InvalidSessionNameError(name, "empty name")
        if self.exists(name):
            raise SessionExistsError(name, "tmux")

        shell = os.environ.get("SHELL") or "bash"
        args = ["new-session", "-d", "-s", name]
        if workdir:
            args += ["-c", workdir]
        args.append(shell)

        result = self._cmd(*args)
        if result.returncode != 0:
            output = "\n".join(list(result.stdout) + list(result.stderr))
            if "duplicate session" in output:
                raise SessionExistsError(name, "tmux")
            raise TmuxCommandError(args, result.returncode, output)

        try:
            self.bind_key("root", "C-q", "detach-client")
        except TmuxCommandError as e:
            logger.warning("failed to bind C-q: %s", e)
        try:
            self.bind_key("root", "C-]", "run-shell", SWAP_SCRIPT)
        except TmuxCommandError as e:
            logger.warning("failed to bind C-]: %s", e)
        if status_position:
            try:
                self.set_option(name, "status-position", status_position)
            except TmuxCommandError as e:
                logger.warning("failed to set status position: %s", e)

        self._wait_for(name)

    def _wait_for(self, name: str) -> None:
        deadline = time.monotonic() + TIMINGS.create_timeout
        while True:
            if self.exists(name):
                return
            if time.monotonic() >= deadline:
                raise CreationTimeoutError(name, TIMINGS.create_timeout)
            time.sleep(TIMINGS.create_poll_step)

    def create(
        self,
        name: str,
        workdir: Optional[str] = None,
        claude_dir: Optional[str] = None,
        status_position: Optional[str] = None,
        execution_id: Optional[str] = None,
    ) -> TmuxSession:
        """Create a session and launch the agent in it.

        Creation and agent launch are separate steps: if the start command
        cannot be injected the session still exists and is returned.

        Raises:
            SessionExistsError: If a tmux session with this name is live
            CreationTimeoutError: If the session never became visible
            TmuxCommandError: If tmux refused to create it
        """
        logger.info("creating tmux session %s (workdir=%s)", name, workdir)
        self._create_base(name, workdir, status_position)

        command = build_start_command(name, workdir=workdir, claude_dir=claude_dir, execution_id=execution_id)
        logger.debug("start command for %s: %s", name, command)
        try:
            self.send_keys(name, command, "Enter")
        except TmuxCommandError as e:
            logger.error("failed to start agent in %s: %s", name, e)

        return TmuxSession(name=name, created_at=datetime.now())

    def create_shell(
        self,
        name: str,
        workdir: Optional[str] = None,
        status_position: Optional[str] = None,
    ) -> TmuxSession:
        """Create a plain shell session (no agent)."""
        logger.info("creating shell session %s (workdir=%s)", name, workdir)
        self._create_base(name, workdir, status_position)
        return TmuxSession(name=name, created_at=datetime.now())

    # -- mutation ----------------------------------------------------------

    def kill(self, name: str) -> None:
        self._run("kill-session", "-t", _session_target(name))
        logger.info("killed tmux session %s", name)

    def rename(self, old: str, new: str) -> None:
        """Rename a session. Both collisions are checked before tmux is touched."""
        if not old or not new:
            raise InvalidSessionNameError(new or old, "session names cannot be empty")
        if not self.exists(old):
            raise SessionNotFoundError(old, "tmux")
        if self.exists(new):
            raise SessionExistsError(new, "tmux")
        self._run("rename-session", "-t", _session_target(old), new)
        logger.info("renamed tmux session %s -> %s", old, new)

    def send_keys(self, name: str, *keys: str) -> None:
        """Inject keys (tmux key names or text) into the session's pane."""
        self._run("send-keys", "-t", _pane_target(name), *keys)

    def bind_key(self, table: str, key: str, *command: str) -> None:
        self._run("bind-key", "-T", table, key, *command)

    def set_option(self, name: str, option: str, value: str) -> None:
        self._run("set-option", "-t", _session_target(name), option, value)

    def source_file(self, path: str) -> None:
        self._run("source-file", path)

    # -- attach / detach ---------------------------------------------------

    def attach_command(self, name: str) -> List[str]:
        """argv of the tmux client run on the PTY."""
        argv = ["tmux"]
        if self._socket_name:
            argv += ["-L", self._socket_name]
        return argv + ["attach-session", "-t", _session_target(name)]

    @staticmethod
    def attach_environment() -> Dict[str, str]:
        """Current environment without TMUX/TMUX_PANE, so nested attach works."""
        return {k: v for k, v in os.environ.items() if k not in ("TMUX", "TMUX_PANE")}

    def _state_for(self, name: str) -> _AttachmentState:
        with self._attachments_lock:
            state = self._attachments.get(name)
            if state is None:
                state = self._attachments[name] = _AttachmentState()
            return state

    def is_attached(self, name: str) -> bool:
        with self._attachments_lock:
            state = self._attachments.get(name)
        if state is None:
            return False
        with state.lock:
            return state.current is not None

    def attach(self, name: str) -> threading.Event:
        """Attach our stdin/stdout to a session through a PTY.

        Returns:
            Event set exactly once, when the attachment ends

        Raises:
            AlreadyAttachedError: If this session is already attached
        """
        state = self._state_for(name)
        with state.lock:
            if state.current is not None:
                raise AlreadyAttachedError(name)

            input_fd = self._input_fd if self._input_fd is not None else sys.stdin.fileno()
            output_fd = self._output_fd if self._output_fd is not None else sys.stdout.fileno()

            master_fd, slave_fd = os.openpty()
            try:
                if os.isatty(output_fd):
                    termios.tcsetwinsize(master_fd, termios.tcgetwinsize(output_fd))
                proc = subprocess.Popen(
                    self.attach_command(name),
                    stdin=slave_fd,
                    stdout=slave_fd,
                    stderr=slave_fd,
                    env=self.attach_environment(),
                    start_new_session=True,
                    preexec_fn=_make_controlling_tty,
                )
            except OSError:
                os.close(master_fd)
                raise
            finally:
                os.close(slave_fd)

            wake_r, wake_w = os.pipe()
            attachment = _Attachment(
                master_fd=master_fd,
                wake_r=wake_r,
                wake_w=wake_w,
                proc=proc,
                input_fd=input_fd,
                output_fd=output_fd,
            )
            if os.isatty(input_fd):
                attachment.saved_tty = termios.tcgetattr(input_fd)
                tty.setraw(input_fd)

            attachment.input_thread = threading.Thread(
                target=self._forward_input, args=(name, state, attachment),
                name=f"attach-in-{name}", daemon=True,
            )
            attachment.output_thread = threading.Thread(
                target=self._forward_output, args=(name, state, attachment),
                name=f"attach-out-{name}", daemon=True,
            )
            state.current = attachment
            attachment.input_thread.start()
            attachment.output_thread.start()

        logger.info("attached to %s", name)
        return attachment.done

    def detach(self, name: str) -> None:
        """End the attachment to ``name``.

        Closing the PTY master and the wake pipe is what stops the
        forwarding threads, even mid-read.

        Raises:
            NotAttachedError: If the session is not attached
        """
        with self._attachments_lock:
            state = self._attachments.get(name)
        if state is None:
            raise NotAttachedError(name)
        with state.lock:
            if state.current is None:
                raise NotAttachedError(name)
            self._release(state.current)
            state.current = None
        logger.info("detached from %s", name)

    def _release(self, attachment: _Attachment) -> None:
        # Called with the state lock held; fd numbers may be reused once closed
        attachment.closed = True
        for fd in (attachment.master_fd, attachment.wake_w):
            try:
                os.close(fd)
            except OSError:
                pass
        if attachment.saved_tty is not None:
            try:
                termios.tcsetattr(attachment.input_fd, termios.TCSAFLUSH, attachment.saved_tty)
            except termios.error as e:
                logger.warning("failed to restore terminal mode: %s", e)
        if attachment.proc.poll() is None:
            try:
                attachment.proc.send_signal(signal.SIGHUP)
            except ProcessLookupError:
                pass
        attachment.done.set()

    def _detach_if_current(self, name: str, state: _AttachmentState, attachment: _Attachment) -> None:
        with state.lock:
            if state.current is not attachment:
                return
            self._release(attachment)
            state.current = None
        logger.info("tmux client for %s exited, detached", name)

    def _forward_input(self, name: str, state: _AttachmentState, attachment: _Attachment) -> None:
        while True:
            try:
                ready, _, _ = select.select([attachment.input_fd, attachment.wake_r], [], [])
                if attachment.wake_r in ready:
                    return
                data = os.read(attachment.input_fd, 1024)
            except (OSError, ValueError):
                return
            if not data:
                return

            index = data.find(bytes([DETACH_BYTE]))
            if index >= 0:
                if index > 0:
                    self._write_master(state, attachment, data[:index])
                self._detach_if_current(name, state, attachment)
                return

            if not self._write_master(state, attachment, data):
                return

    def _forward_output(self, name: str, state: _AttachmentState, attachment: _Attachment) -> None:
        while True:
            try:
                ready, _, _ = select.select([attachment.master_fd, attachment.wake_r], [], [])
                if attachment.wake_r in ready:
                    break
                data = self._read_master(state, attachment)
            except (OSError, ValueError):
                data = b""
            if not data:
                # tmux client exited (EIO on the master) or we were detached
                self._detach_if_current(name, state, attachment)
                break
            if not self._write_all(attachment.output_fd, data):
                self._detach_if_current(name, state, attachment)
                break

        if attachment.input_thread is not None:
            attachment.input_thread.join(timeout=1.0)
        try:
            os.close(attachment.wake_r)
        except OSError:
            pass
        try:
            attachment.proc.wait(timeout=5)
        except subprocess.TimeoutExpired:
            attachment.proc.kill()
            attachment.proc.wait()

    @staticmethod
    def _read_master(state: _AttachmentState, attachment: _Attachment) -> bytes:
        """Read from the PTY master unless the attachment was released."""
        with state.lock:
            if attachment.closed:
                return b""
            return os.read(attachment.master_fd, _READ_SIZE)

    def _write_master(self, state: _AttachmentState, attachment: _Attachment, data: bytes) -> bool:
        with state.lock:
            if attachment.closed:
                return False
            return self._write_all(attachment.master_fd, data)

    @staticmethod
    def _write_all(fd: int, data: bytes) -> bool:
        view = memoryview(data)
        while view:
            try:
                written = os.write(fd, view)
            except OSError:
                return False
            view = view[written:]
        return True


def _make_controlling_tty() -> None:
    # Runs in the child after setsid(): adopt the PTY slave (fd 0)
    fcntl.ioctl(0, termios.TIOCSCTTY, 0)
