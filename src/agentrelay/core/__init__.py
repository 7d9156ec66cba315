"""Core utilities for the agentrelay system."""

from .exceptions import (
    AgentError,
    AgentInvocationError,
    AgentTimeoutError,
    AgentRateLimitError,
    AgentStalledError,
    AgentCancelledError,
    SessionExpiredError,
    StateError,
    StateCorruptionError,
)
from .logger import AgentLogger

__all__ = [
    # Exceptions
    "AgentError",
    "AgentInvocationError",
    "AgentTimeoutError",
    "AgentRateLimitError",
    "AgentStalledError",
    "AgentCancelledError",
    "SessionExpiredError",
    "StateError",
    "StateCorruptionError",
    # Logger
    "AgentLogger",
]
