"""Per-chat mutual exclusion and cancellation tokens."""

import asyncio
from typing import Dict, Set


class ChatLocks:
    """Tracks, per chat, whether a reply is being composed and whether a
    background execution is running.

    The two flags are kept apart on purpose: only the executor-busy flag
    decides whether a new request is queued. Pure synchronous state with no
    timers; all calls happen on the event loop thread.
    """

    def __init__(self):
        self._locks: Dict[int, asyncio.Event] = {}
        self._executor_busy: Set[int] = set()

    def is_locked(self, chat_id: int) -> bool:
        return chat_id in self._locks

    def lock(self, chat_id: int) -> asyncio.Event:
        """Lock a chat and return a fresh cancellation token, replacing any prior one."""
        token = asyncio.Event()
        self._locks[chat_id] = token
        return token

    def unlock(self, chat_id: int) -> None:
        self._locks.pop(chat_id, None)

    def cancel(self, chat_id: int) -> bool:
        """Fire the chat's token and clear the lock. Returns whether a lock existed."""
        token = self._locks.pop(chat_id, None)
        if token is None:
            return False
        token.set()
        return True

    def set_executor_busy(self, chat_id: int) -> None:
        self._executor_busy.add(chat_id)

    def set_executor_idle(self, chat_id: int) -> None:
        self._executor_busy.discard(chat_id)

    def is_executor_busy(self, chat_id: int) -> bool:
        return chat_id in self._executor_busy

    def busy_chats(self) -> Set[int]:
        return set(self._executor_busy)
