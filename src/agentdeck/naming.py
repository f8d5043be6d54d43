"""
Session name handling.

A session's name doubles as its tmux session key, so display labels are
reduced to a character set tmux accepts verbatim.
"""

from .exceptions import InvalidSessionNameError
from .settings import SHELL_SUFFIX


# Characters collapsed into a single underscore. tmux rewrites '.' (and ':')
# in session names, so they never reach the key as-is.
_SEPARATORS = frozenset("()/.")


def sanitize_session_name(display_name: str) -> str:
    """Convert a display label into a tmux-safe session name.

    Letters, digits and '-' are kept, as are explicit underscores. Whitespace,
    parentheses, '/' and '.' become one underscore (never leading, never
    doubled). Everything else is dropped, and trailing underscores trimmed.

    >>> sanitize_session_name("Fix (login) bug!")
    'Fix_login_bug'
    """
    result = []
    last_was_underscore = False

    for ch in display_name:
        if ch.isalnum() or ch == "-":
            result.append(ch)
            last_was_underscore = False
        elif ch == "_":
            result.append("_")
            last_was_underscore = True
        elif ch.isspace() or ch in _SEPARATORS:
            if result and not last_was_underscore:
                result.append("_")
                last_was_underscore = True

    return "".join(result).rstrip("_")


def validate_session_name(display_name: str) -> str:
    """Sanitize a label and make sure something usable is left.

    Raises:
        InvalidSessionNameError: If nothing remains after sanitizing
    """
    name = sanitize_session_name(display_name)
    if not name:
        raise InvalidSessionNameError(display_name, "no usable characters")
    return name


def shell_session_name(name: str) -> str:
    """Name of the companion shell session for a session."""
    return f"{name}{SHELL_SUFFIX}"
