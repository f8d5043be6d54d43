"""
Patterns for the prompt monitor's "agent is waiting for the user" heuristic.

This is a fallback for agents that do not report lifecycle hooks: false
positives (a stray '?') and misses are both acceptable.
"""

import re
from dataclasses import dataclass, field
from typing import List

from .settings import MONITOR_TAIL_LINES

# Regex to match ANSI escape sequences (colors, cursor movement, etc.)
ANSI_ESCAPE_PATTERN = re.compile(r'\x1b\[[0-9;?]*[a-zA-Z]')


def strip_ansi(text: str) -> str:
    """Remove ANSI escape sequences from text."""
    return ANSI_ESCAPE_PATTERN.sub('', text)


@dataclass
class PromptPatterns:
    """Markers that suggest the agent is waiting for input.

    Matched case-insensitively against the last few lines of the pane.
    """

    waiting_patterns: List[str] = field(default_factory=lambda: [
        "press enter to continue",
        "would you like me to",
        "should i",
        "what would you like",
        "how can i help",
        # Generic trailing question
        "?",
    ])

    tail_lines: int = MONITOR_TAIL_LINES


DEFAULT_PATTERNS = PromptPatterns()


def matches_any(text: str, patterns: List[str], case_sensitive: bool = False) -> bool:
    """Check if text contains any of the patterns."""
    if not case_sensitive:
        text = text.lower()
        return any(p.lower() in text for p in patterns)
    return any(p in text for p in patterns)


def last_lines(content: str, count: int) -> List[str]:
    """The last ``count`` lines of content (all of them if there are fewer)."""
    lines = content.split("\n")
    if len(lines) > count:
        return lines[-count:]
    return lines


def is_waiting_for_user(content: str, patterns: PromptPatterns = None) -> bool:
    """Classify pane content as waiting for the user."""
    patterns = patterns or DEFAULT_PATTERNS
    tail = "\n".join(last_lines(strip_ansi(content), patterns.tail_lines))
    return matches_any(tail, patterns.waiting_patterns)
