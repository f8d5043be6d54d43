"""
Read the per-session hook logs written by ``agentdeck notify``.

Each session has one file, <state dir>/logs/hooks/<session>.log, with
lines in HOOK_FORMAT:

    2026-10-18 14:30:22 INFO stop agentdeck.hooks: session alpha: stop -> idle

Lines that do not match (tracebacks, older formats) are skipped.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, List, Optional

from .logging_config import DEFAULT_DATEFMT, get_logger
from .settings import get_log_dir


logger = get_logger("hook_logs")

_LINE_RE = re.compile(
    r"^(?P<time>\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}) "
    r"(?P<level>[A-Z]+) (?P<event>[\w-]+) (?P<logger>\S+): (?P<message>.*)$"
)

_DURATION_RE = re.compile(r"(\d+)([smhd])")
_DURATION_UNITS = {"s": "seconds", "m": "minutes", "h": "hours", "d": "days"}


@dataclass
class HookLogEntry:
    """One line of a hook log."""

    timestamp: datetime
    session: str
    event: str
    level: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "time": self.timestamp.isoformat(),
            "session": self.session,
            "event": self.event,
            "level": self.level,
            "msg": self.message,
        }


def parse_duration(text: str) -> timedelta:
    """Parse durations like "30m", "1h", "2d" or "1h30m".

    Raises:
        ValueError: If the text is not a duration
    """
    text = text.strip()
    parts = _DURATION_RE.findall(text)
    if not parts or "".join(n + u for n, u in parts) != text:
        raise ValueError(f"invalid duration '{text}' (use e.g. 30m, 1h, 2d)")
    kwargs: Dict[str, int] = {}
    for number, unit in parts:
        key = _DURATION_UNITS[unit]
        kwargs[key] = kwargs.get(key, 0) + int(number)
    return timedelta(**kwargs)


def parse_hook_log_line(line: str, session: str) -> Optional[HookLogEntry]:
    match = _LINE_RE.match(line.rstrip("\n"))
    if not match:
        return None
    try:
        timestamp = datetime.strptime(match.group("time"), DEFAULT_DATEFMT)
    except ValueError:
        return None
    return HookLogEntry(
        timestamp=timestamp,
        session=session,
        event=match.group("event"),
        level=match.group("level"),
        message=match.group("message"),
    )


def hook_log_dir() -> Path:
    return get_log_dir() / "hooks"


def read_hook_logs(
    session: Optional[str] = None,
    since: Optional[datetime] = None,
    log_dir: Optional[Path] = None,
) -> List[HookLogEntry]:
    """Collect hook log entries, newest first.

    Args:
        session: Only read this session's log
        since: Drop entries older than this (local time)
        log_dir: Directory holding the logs (default: the hook log dir)
    """
    log_dir = hook_log_dir() if log_dir is None else log_dir
    if session:
        paths = [log_dir / f"{session}.log"]
    elif log_dir.is_dir():
        paths = sorted(log_dir.glob("*.log"))
    else:
        paths = []

    entries: List[HookLogEntry] = []
    for path in paths:
        if not path.is_file():
            continue
        if since is not None and datetime.fromtimestamp(path.stat().st_mtime) < since:
            continue
        try:
            with open(path, errors="replace") as f:
                for line in f:
                    entry = parse_hook_log_line(line, path.stem)
                    if entry is None:
                        continue
                    if since is None or entry.timestamp >= since:
                        entries.append(entry)
        except OSError as e:
            logger.warning("cannot read hook log %s: %s", path, e)

    entries.sort(key=lambda e: e.timestamp, reverse=True)
    return entries
