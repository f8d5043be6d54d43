"""
Inter-process file locking and atomic writes for the registry.

The controller and short-lived hook processes share one registry file.
Every read-modify-write runs under an exclusive flock on a sidecar
"<file>.lock"; documents are replaced atomically so readers never need
the lock.
"""

import fcntl
import json
import os
import tempfile
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

from .exceptions import PersistenceError
from .settings import TIMINGS


_THREAD_MUTEXES: Dict[str, threading.Lock] = {}
_THREAD_MUTEXES_GUARD = threading.Lock()


def lock_path_for(target: Path) -> Path:
    return target.with_suffix(target.suffix + ".lock")


def _thread_mutex(path: Path) -> threading.Lock:
    key = str(path.resolve())
    with _THREAD_MUTEXES_GUARD:
        lock = _THREAD_MUTEXES.get(key)
        if lock is None:
            lock = _THREAD_MUTEXES[key] = threading.Lock()
    return lock


@contextmanager
def exclusive_lock(
    target: Path,
    timeout: Optional[float] = None,
    poll_interval: Optional[float] = None,
) -> Iterator[Path]:
    """Hold an exclusive lock for ``target`` for the duration of the context.

    Threads of this process are serialized by an in-process mutex first,
    then ``fcntl.flock(LOCK_EX | LOCK_NB)`` is retried until ``timeout``.

    Raises:
        PersistenceError: If the lock cannot be acquired in time
    """
    timeout = TIMINGS.lock_timeout if timeout is None else timeout
    poll_interval = TIMINGS.lock_poll_step if poll_interval is None else poll_interval

    lock_target = lock_path_for(Path(target))
    try:
        lock_target.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise PersistenceError(f"cannot create state directory: {e}", str(lock_target.parent)) from e

    deadline = time.monotonic() + timeout
    mutex = _thread_mutex(lock_target)
    if not mutex.acquire(timeout=timeout):
        raise PersistenceError(f"timed out after {timeout}s waiting for registry lock", str(lock_target))

    try:
        try:
            fh = open(lock_target, "a+")
        except OSError as e:
            raise PersistenceError(f"cannot open lock file: {e}", str(lock_target)) from e

        try:
            while True:
                try:
                    fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except BlockingIOError:
                    if time.monotonic() >= deadline:
                        raise PersistenceError(
                            f"timed out after {timeout}s waiting for registry lock",
                            str(lock_target),
                        )
                    time.sleep(poll_interval)

            try:
                yield Path(target)
            finally:
                fcntl.flock(fh.fileno(), fcntl.LOCK_UN)
        finally:
            fh.close()
    finally:
        mutex.release()


def atomic_write_json(path: Path, data: Dict[str, Any]) -> None:
    """Write JSON to ``path`` via temp file, fsync and rename.

    A crash mid-write leaves either the previous document or the new one.

    Raises:
        PersistenceError: If the document cannot be written
    """
    path = Path(path)
    tmp_name = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        with os.fdopen(fd, "w") as f:
            json.dump(data, f, indent=2)
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
        tmp_name = None
    except (OSError, TypeError, ValueError) as e:
        raise PersistenceError(f"cannot write registry: {e}", str(path)) from e
    finally:
        if tmp_name is not None:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass


def read_json(path: Path) -> Optional[Dict[str, Any]]:
    """Read a JSON document.

    Returns:
        The parsed mapping, or None when the file is missing or empty

    Raises:
        PersistenceError: If the file is unreadable or not a JSON object
    """
    path = Path(path)
    try:
        text = path.read_text()
    except FileNotFoundError:
        return None
    except OSError as e:
        raise PersistenceError(f"cannot read registry: {e}", str(path)) from e

    if not text.strip():
        return None

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise PersistenceError(f"registry is not valid JSON: {e}", str(path)) from e

    if not isinstance(data, dict):
        raise PersistenceError("registry document is not a JSON object", str(path))
    return data
