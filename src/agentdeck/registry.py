"""
Persistent, ordered session registry.

The registry is a single JSON document shared by every agentdeck process:

    {
      "version": 1,
      "revision": 42,
      "updated_at": "2026-01-01T12:00:00",
      "order": ["b", "a"],
      "sessions": {"a": {...}, "b": {...}}
    }

Mutators run read-modify-write under an exclusive inter-process lock and
commit with an atomic rename, so the controller and concurrent hook
invocations never corrupt the file. Readers do not lock.

"order" is the manual order of top-level sessions. Companion shell
sessions are reached through their parent and are never ordered.
"""

from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

from .exceptions import PersistenceError, SessionExistsError, SessionNotFoundError
from .locking import atomic_write_json, exclusive_lock, read_json
from .logging_config import get_logger
from .session import VALID_STATES, Session, SessionCollection, now_iso
from .settings import get_registry_path


logger = get_logger("registry")

SCHEMA_VERSION = 1

# (mtime_ns, inode, size) of the backing file
Revision = Tuple[int, int, int]


class SessionRegistry:
    """Durable keyed collection of sessions with a manual order."""

    def __init__(self, path: Optional[Path] = None, lock_timeout: Optional[float] = None):
        self._path = Path(path) if path is not None else get_registry_path()
        self._lock_timeout = lock_timeout

    @property
    def path(self) -> Path:
        return self._path

    # -- reading -----------------------------------------------------------

    def _read_collection(self) -> SessionCollection:
        """Read the full document (archived included) and normalize order."""
        data = read_json(self._path)
        if data is None:
            return SessionCollection()

        raw_sessions = data.get("sessions") or {}
        if not isinstance(raw_sessions, dict):
            raise PersistenceError("registry 'sessions' is not a mapping", str(self._path))

        sessions = {}
        for name, raw in raw_sessions.items():
            if not isinstance(raw, dict):
                logger.warning("skipping malformed registry entry %r", name)
                continue
            raw = dict(raw)
            raw["name"] = name
            try:
                sessions[name] = Session.from_dict(raw)
            except TypeError as e:
                logger.warning("skipping malformed registry entry %r: %s", name, e)

        order = data.get("order")
        return SessionCollection(
            sessions=sessions,
            ordered_names=self._normalize_order(sessions, order if isinstance(order, list) else None),
            revision=int(data.get("revision") or 0),
            updated_at=data.get("updated_at"),
        )

    @staticmethod
    def _normalize_order(sessions, order: Optional[List[str]]) -> List[str]:
        top_level = {name for name, s in sessions.items() if not s.is_companion}
        if order is None:
            return sorted(top_level)

        result = []
        seen = set()
        for name in order:
            if name in top_level and name not in seen:
                result.append(name)
                seen.add(name)
        result.extend(sorted(top_level - seen))
        return result

    def load(self, include_archived: bool = False) -> SessionCollection:
        """Load the registry. A missing or empty file is an empty collection.

        Raises:
            PersistenceError: If the file exists but cannot be parsed
        """
        collection = self._read_collection()
        if include_archived:
            return collection

        visible = {name: s for name, s in collection.sessions.items() if not s.is_archived}
        collection.sessions = visible
        collection.ordered_names = [n for n in collection.ordered_names if n in visible]
        return collection

    def get(self, name: str) -> Optional[Session]:
        return self._read_collection().get(name)

    def list(self, include_archived: bool = False) -> List[Session]:
        """Sessions in display order, each companion right after its parent."""
        collection = self.load(include_archived=include_archived)
        result = []
        placed = set()
        for session in collection.ordered():
            result.append(session)
            placed.add(session.name)
            companion = collection.get(session.shell_session) if session.shell_session else None
            if companion is not None:
                result.append(companion)
                placed.add(companion.name)
        for name in sorted(set(collection.sessions) - placed):
            result.append(collection.sessions[name])
        return result

    def revision(self) -> Optional[Revision]:
        """Cheap change marker for the backing file (None if it is absent)."""
        try:
            st = self._path.stat()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise PersistenceError(f"cannot stat registry: {e}", str(self._path)) from e
        return (st.st_mtime_ns, st.st_ino, st.st_size)

    # -- writing -----------------------------------------------------------

    def _write(self, collection: SessionCollection) -> None:
        collection.revision += 1
        collection.updated_at = now_iso()
        atomic_write_json(self._path, {
            "version": SCHEMA_VERSION,
            "revision": collection.revision,
            "updated_at": collection.updated_at,
            "order": list(collection.ordered_names),
            "sessions": {
                name: {k: v for k, v in s.to_dict().items() if k != "name"}
                for name, s in collection.sessions.items()
            },
        })

    @contextmanager
    def _transaction(self) -> Iterator[SessionCollection]:
        """Locked read-modify-write. The yielded collection is committed on exit."""
        with exclusive_lock(self._path, timeout=self._lock_timeout):
            collection = self._read_collection()
            yield collection
            collection.ordered_names = self._normalize_order(collection.sessions, collection.ordered_names)
            self._write(collection)

    @staticmethod
    def _require(collection: SessionCollection, name: str) -> Session:
        session = collection.get(name)
        if session is None:
            raise SessionNotFoundError(name)
        return session

    def save(self, collection: SessionCollection) -> None:
        """Replace the whole registry with ``collection``."""
        with exclusive_lock(self._path, timeout=self._lock_timeout):
            current = self._read_collection()
            to_write = SessionCollection(
                sessions=dict(collection.sessions),
                ordered_names=self._normalize_order(collection.sessions, list(collection.ordered_names)),
                revision=max(current.revision, collection.revision),
            )
            self._write(to_write)
            collection.revision = to_write.revision
            collection.updated_at = to_write.updated_at

    def add(self, session: Session) -> Session:
        """Add a session at the head of the manual order.

        Raises:
            SessionExistsError: If the name is taken
        """
        with self._transaction() as collection:
            if session.name in collection:
                raise SessionExistsError(session.name)
            session.touch()
            collection.sessions[session.name] = session
            if not session.is_companion:
                collection.ordered_names.insert(0, session.name)
        logger.info("added session %s", session.name)
        return session

    def delete(self, name: str) -> Session:
        """Remove a session and any companion references to it."""
        with self._transaction() as collection:
            session = self._require(collection, name)
            del collection.sessions[name]
            collection.ordered_names = [n for n in collection.ordered_names if n != name]
            for other in collection.sessions.values():
                if other.shell_session == name:
                    other.shell_session = None
                    other.touch()
                if other.parent_name == name:
                    # Orphaned companions become top-level peers
                    other.parent_name = None
                    other.touch()
        logger.info("deleted session %s", name)
        return session

    def update_state(self, name: str, state: str, execution_id: Optional[str] = None) -> Session:
        """Set a session's liveness state, recording the execution ID if given."""
        if state not in VALID_STATES:
            raise ValueError(f"invalid session state: {state!r}")
        with self._transaction() as collection:
            session = self._require(collection, name)
            session.state = state
            if execution_id:
                session.execution_id = execution_id
            session.touch()
        return session

    def update_display_name(self, name: str, display_name: str) -> Session:
        with self._transaction() as collection:
            session = self._require(collection, name)
            session.display_name = display_name
            session.touch()
        return session

    def toggle_flag(self, name: str) -> bool:
        with self._transaction() as collection:
            session = self._require(collection, name)
            session.is_flagged = not session.is_flagged
            session.touch()
        return session.is_flagged

    def toggle_archive(self, name: str) -> bool:
        with self._transaction() as collection:
            session = self._require(collection, name)
            session.is_archived = not session.is_archived
            session.touch()
        return session.is_archived

    def set_comment(self, name: str, comment: Optional[str]) -> Session:
        """Set the comment; an empty or blank comment clears it."""
        with self._transaction() as collection:
            session = self._require(collection, name)
            session.comment = (comment or "").strip()
            session.touch()
        return session

    def set_status(self, name: str, status: Optional[str]) -> Session:
        """Set the implementation status; None or blank clears it."""
        with self._transaction() as collection:
            session = self._require(collection, name)
            session.status = (status or "").strip() or None
            session.touch()
        return session

    def swap_positions(self, first: str, second: str) -> None:
        """Exchange two sessions' places in the manual order.

        This is the only reordering primitive; applying it twice restores
        the original order.
        """
        with self._transaction() as collection:
            order = collection.ordered_names
            for name in (first, second):
                if name not in order:
                    raise SessionNotFoundError(name, "session order")
            i, j = order.index(first), order.index(second)
            order[i], order[j] = order[j], order[i]
            self._require(collection, first).touch()
            self._require(collection, second).touch()

    def rename(self, old: str, new: str, display_name: Optional[str] = None) -> Session:
        """Move a session to a new key, keeping its position and links.

        Raises:
            SessionNotFoundError: If ``old`` is absent
            SessionExistsError: If ``new`` is taken
        """
        with self._transaction() as collection:
            session = self._require(collection, old)
            if new != old and new in collection:
                raise SessionExistsError(new)

            del collection.sessions[old]
            session.name = new
            if display_name is not None:
                session.display_name = display_name
            session.touch()
            collection.sessions[new] = session
            collection.ordered_names = [new if n == old else n for n in collection.ordered_names]

            for other in collection.sessions.values():
                if other.parent_name == old:
                    other.parent_name = new
                if other.shell_session == old:
                    other.shell_session = new
        logger.info("renamed session %s -> %s", old, new)
        return session

    def link_shell_session(self, parent: str, shell: str) -> None:
        """Record ``shell`` as the companion shell session of ``parent``."""
        with self._transaction() as collection:
            parent_session = self._require(collection, parent)
            shell_session = self._require(collection, shell)
            parent_session.shell_session = shell
            shell_session.parent_name = parent
            parent_session.touch()
            shell_session.touch()
            collection.ordered_names = [n for n in collection.ordered_names if n != shell]
