"""Custom exceptions for the agentrelay system."""

from typing import Optional


class AgentError(Exception):
    """Base exception for agent invocation errors."""

    def __init__(self, message: str, retryable: bool = False, original_error: Optional[Exception] = None):
        """
        Initialize agent error.

        Args:
            message: Error message
            retryable: Whether this error is worth one automatic retry
            original_error: Original exception that caused this error
        """
        super().__init__(message)
        self.retryable = retryable
        self.original_error = original_error


class AgentInvocationError(AgentError):
    """The external agent process failed or reported an error result."""

    def __init__(self, message: str, retryable: bool = False, original_error: Optional[Exception] = None):
        super().__init__(message, retryable=retryable, original_error=original_error)


class AgentRateLimitError(AgentInvocationError):
    """The agent backend refused the call because of rate limiting."""

    def __init__(self, message: str = "Rate limit exceeded (429)", original_error: Optional[Exception] = None):
        super().__init__(message, retryable=True, original_error=original_error)


class AgentTimeoutError(AgentError):
    """The invocation exceeded its wall-clock budget."""

    def __init__(self, timeout: float, original_error: Optional[Exception] = None):
        self.timeout = timeout
        message = f"Executor timed out after {format_duration(timeout)}"
        super().__init__(message, retryable=False, original_error=original_error)


class AgentStalledError(AgentError):
    """The invocation produced no activity past the kill + grace window."""

    def __init__(self, idle_seconds: float, original_error: Optional[Exception] = None):
        self.idle_seconds = idle_seconds
        message = f"Executor stalled: no activity for {format_duration(idle_seconds)}"
        super().__init__(message, retryable=False, original_error=original_error)


class AgentCancelledError(AgentError):
    """The invocation was cancelled by the caller."""

    def __init__(self, message: str = "Executor was cancelled", original_error: Optional[Exception] = None):
        super().__init__(message, retryable=False, original_error=original_error)


class SessionExpiredError(AgentInvocationError):
    """Resuming the agent session failed."""

    def __init__(self, session_id: str, original_error: Optional[Exception] = None):
        self.session_id = session_id
        message = f"Session {session_id} could not be resumed"
        super().__init__(message, retryable=False, original_error=original_error)


class StateError(Exception):
    """Error related to durable state."""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message)
        self.original_error = original_error


class StateCorruptionError(StateError):
    """Error when a state document cannot be parsed."""

    def __init__(self, filename: str, original_error: Optional[Exception] = None):
        self.filename = filename
        message = f"State file corrupted: {filename}"
        super().__init__(message, original_error=original_error)


def format_duration(seconds: float) -> str:
    """Format a duration in seconds for user-facing messages (e.g. '2m 30s')."""
    total = int(seconds)
    if total < 60:
        return f"{total}s"
    minutes, secs = divmod(total, 60)
    if minutes < 60:
        return f"{minutes}m {secs}s" if secs else f"{minutes}m"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes}m"
