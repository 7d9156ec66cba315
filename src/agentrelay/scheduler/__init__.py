"""Scheduling primitives.

This module provides per-chat mutual exclusion for the task coordinator.
"""

from .chat_locks import ChatLocks

__all__ = [
    "ChatLocks",
]
