"""
Session and SessionCollection data model.

Session records are what the registry persists, keyed by name. Only the
four liveness states below are ever observable; anything else read from
disk is coerced to idle.
"""

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from typing import Dict, List, Optional


STATE_WORKING = "working"
STATE_IDLE = "idle"
STATE_WAITING_USER = "waiting_user"
STATE_EXITED = "exited"

VALID_STATES = (STATE_WORKING, STATE_IDLE, STATE_WAITING_USER, STATE_EXITED)


def now_iso() -> str:
    return datetime.now().isoformat()


def coerce_state(state: Optional[str]) -> str:
    """Map any value to one of the valid states (unknown -> idle)."""
    if state in VALID_STATES:
        return state
    return STATE_IDLE


@dataclass
class Session:
    """A named session wrapping one agent process in tmux."""

    name: str
    display_name: str = ""
    state: str = STATE_IDLE
    execution_id: str = ""

    # Provenance (all optional; absent for sessions outside a worktree)
    worktree_path: Optional[str] = None
    repo_path: Optional[str] = None
    repo_info: Optional[str] = None
    repo_source: Optional[str] = None
    branch_name: Optional[str] = None

    # Agent launch options
    claude_dir: Optional[str] = None
    allow_dangerously_skip_permissions: bool = False
    initial_prompt: Optional[str] = None

    # Companion shell: weak reference by name in both directions
    shell_session: Optional[str] = None
    parent_name: Optional[str] = None

    # User metadata
    is_archived: bool = False
    is_flagged: bool = False
    comment: str = ""
    status: Optional[str] = None

    created_at: str = field(default_factory=now_iso)
    last_updated: str = field(default_factory=now_iso)

    def __post_init__(self):
        if not self.display_name:
            self.display_name = self.name
        self.state = coerce_state(self.state)

    @property
    def is_companion(self) -> bool:
        return self.parent_name is not None

    @property
    def workdir(self) -> Optional[str]:
        """Directory the session's processes start in."""
        return self.worktree_path or self.repo_path

    def touch(self) -> None:
        self.last_updated = now_iso()

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Session":
        """Build a Session from persisted data, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in known}
        kwargs["state"] = coerce_state(kwargs.get("state"))
        return cls(**kwargs)


@dataclass
class SessionCollection:
    """Snapshot of the registry: sessions plus the manual order."""

    sessions: Dict[str, Session] = field(default_factory=dict)
    ordered_names: List[str] = field(default_factory=list)
    revision: int = 0
    updated_at: Optional[str] = None

    def __len__(self) -> int:
        return len(self.sessions)

    def __contains__(self, name: str) -> bool:
        return name in self.sessions

    def get(self, name: str) -> Optional[Session]:
        return self.sessions.get(name)

    def ordered(self) -> List[Session]:
        """Top-level sessions in manual order."""
        return [self.sessions[n] for n in self.ordered_names if n in self.sessions]
