"""Message-pattern classification of agent failures."""

from typing import Optional, Tuple

_TRANSIENT_PATTERNS: Tuple[str, ...] = (
    "rate limit",
    "429",
    "timed out",
    "timeout",
    "econnreset",
    "econnrefused",
    "socket hang up",
    "network error",
    "overloaded",
    "503",
    "502",
)

# Matched case-sensitively against the raw message
_SESSION_PATTERNS: Tuple[str, ...] = (
    "session",
    "resume",
    "not found",
    "invalid",
)


def _first_match(text: str, patterns: Tuple[str, ...]) -> Optional[str]:
    for pattern in patterns:
        if pattern in text:
            return pattern
    return None


def transient_pattern(message: str) -> Optional[str]:
    """Return the transient-error pattern a message matches, if any."""
    return _first_match((message or "").lower(), _TRANSIENT_PATTERNS)


def is_transient_error(message: str) -> bool:
    """Rate limiting, network blips, timeouts and upstream 5xx/overload."""
    return transient_pattern(message) is not None


def is_session_error(message: str) -> bool:
    """Whether a failure looks like a stale or unknown resume session."""
    return _first_match(message or "", _SESSION_PATTERNS) is not None
