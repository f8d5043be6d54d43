"""
Logging configuration for agentdeck.

Every module logs through a child of the "agentdeck" logger. Interactive
commands log warnings to stderr; hook invocations run inside the agent's
terminal and therefore log to a per-session file only.
"""

import logging
import os
import re
import sys
from pathlib import Path
from typing import Any, Optional

from .settings import ENV_DEBUG_FILE, debug_enabled, get_hook_log_path, get_log_dir


ROOT_LOGGER = "agentdeck"
DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
DEFAULT_DATEFMT = "%Y-%m-%d %H:%M:%S"
# Hook log lines carry the event between level and logger name
HOOK_FORMAT = "%(asctime)s %(levelname)s {event} %(name)s: %(message)s"


def get_logger(name: str) -> logging.Logger:
    """Get a logger namespaced under agentdeck (e.g. agentdeck.registry)."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def setup_logging(
    level: int = logging.INFO,
    log_file: Optional[Path] = None,
    console: bool = True,
    rich_console: bool = False,
    file_format: str = DEFAULT_FORMAT,
) -> logging.Logger:
    """Configure the agentdeck logger.

    Args:
        level: Log level for the agentdeck logger
        log_file: Optional file to append log records to
        console: Whether to log to stderr
        rich_console: Use rich's handler for console output when available
        file_format: Record format for the log file

    Returns:
        The root agentdeck logger
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.handlers.clear()
    logger.setLevel(level)

    if console:
        handler: logging.Handler
        if rich_console:
            try:
                from rich.logging import RichHandler

                handler = RichHandler(
                    show_path=False,
                    rich_tracebacks=False,
                    console=_stderr_console(),
                )
            except ImportError:
                handler = logging.StreamHandler(sys.stderr)
                handler.setFormatter(logging.Formatter(DEFAULT_FORMAT, DEFAULT_DATEFMT))
        else:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(logging.Formatter(DEFAULT_FORMAT, DEFAULT_DATEFMT))
        logger.addHandler(handler)

    if log_file is not None:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(file_format, DEFAULT_DATEFMT))
        logger.addHandler(file_handler)

    return logger


def _stderr_console():
    from rich.console import Console

    return Console(stderr=True)


def _debug_log_file() -> Path:
    configured = os.environ.get(ENV_DEBUG_FILE)
    if configured:
        return Path(configured)
    return get_log_dir() / "agentdeck.log"


def setup_cli_logging() -> logging.Logger:
    """Configure logging for interactive commands.

    Warnings go to stderr. AGENTDECK_DEBUG=1 switches to debug level and
    mirrors records into the debug log file.
    """
    if debug_enabled():
        setup_logging(
            level=logging.DEBUG,
            log_file=_debug_log_file(),
            console=True,
            rich_console=True,
        )
    else:
        setup_logging(level=logging.WARNING, console=True, rich_console=True)
    return get_logger("cli")


def setup_hook_logging(session_name: str, event: str = "") -> logging.Logger:
    """Configure file-only logging for a hook invocation.

    stdout and stderr belong to the agent running in the session, so
    nothing is ever written there.
    """
    level = logging.DEBUG if debug_enabled() else logging.INFO
    tag = re.sub(r"[^\w-]", "", (event or "").lower()) or "-"
    try:
        setup_logging(
            level=level,
            log_file=get_hook_log_path(session_name or "unknown"),
            console=False,
            file_format=HOOK_FORMAT.format(event=tag),
        )
    except OSError:
        # No usable log file: stay silent rather than fall back to stderr
        root = logging.getLogger(ROOT_LOGGER)
        root.handlers.clear()
        root.addHandler(logging.NullHandler())
    logger = get_logger("hooks")
    if event:
        logger.debug("hook invoked: session=%s event=%s", session_name, event)
    return logger


class StructuredLogger:
    """Logger wrapper that appends key=value context to every message."""

    def __init__(self, logger: logging.Logger, **context: Any):
        self._logger = logger
        self._context = context

    def with_context(self, **context: Any) -> "StructuredLogger":
        merged = {**self._context, **context}
        return StructuredLogger(self._logger, **merged)

    def _format_message(self, msg: str, **kwargs: Any) -> str:
        all_context = {**self._context, **kwargs}
        if not all_context:
            return msg
        context_str = " ".join(f"{k}={v}" for k, v in all_context.items())
        return f"{msg} [{context_str}]"

    def debug(self, msg: str, **kwargs: Any) -> None:
        self._logger.debug(self._format_message(msg, **kwargs))

    def info(self, msg: str, **kwargs: Any) -> None:
        self._logger.info(self._format_message(msg, **kwargs))

    def warning(self, msg: str, **kwargs: Any) -> None:
        self._logger.warning(self._format_message(msg, **kwargs))

    def error(self, msg: str, **kwargs: Any) -> None:
        self._logger.error(self._format_message(msg, **kwargs))

    def exception(self, msg: str, **kwargs: Any) -> None:
        self._logger.exception(self._format_message(msg, **kwargs))


def get_structured_logger(name: str) -> StructuredLogger:
    return StructuredLogger(get_logger(name))
