"""Per-chat FIFO backlog persisted across restarts."""

import secrets
import threading
import time
from typing import Dict, List, Optional

from agentrelay.core.logger import AgentLogger, default_logger
from agentrelay.models import QueuedTask, QueueStats, TaskRequest
from .json_store import JsonDocumentStore

DEFAULT_MAX_QUEUE_PER_CHAT = 5
QUEUE_FILENAME = "task_queue.json"


def _new_queue_id() -> str:
    return f"q-{int(time.time() * 1000)}-{secrets.token_hex(3)}"


class TaskQueue:
    """Bounded per-chat queue of requests waiting for their chat to go idle.

    Every mutation rewrites ``task_queue.json`` before returning, since the
    document is the only record of backlog work if the process dies.
    """

    def __init__(
        self,
        state_dir: str,
        max_per_chat: int = DEFAULT_MAX_QUEUE_PER_CHAT,
        logger: Optional[AgentLogger] = None,
    ):
        """
        Initialize task queue.

        Args:
            state_dir: Directory for the queue document
            max_per_chat: Capacity of each chat's queue
            logger: Logger instance
        """
        self.max_per_chat = max_per_chat
        self.logger = logger or default_logger()
        self._store = JsonDocumentStore(state_dir, QUEUE_FILENAME, logger=self.logger)
        self._queues: Dict[int, List[QueuedTask]] = {}
        self._lock = threading.RLock()

    def load(self) -> None:
        """Load queued tasks from disk. Call on startup."""
        data = self._store.load(dict)
        queues: Dict[int, List[QueuedTask]] = {}
        if isinstance(data, dict):
            for chat_key, items in data.items():
                try:
                    chat_id = int(chat_key)
                except (TypeError, ValueError):
                    continue
                if not isinstance(items, list):
                    continue
                tasks = []
                for item in items:
                    try:
                        tasks.append(QueuedTask.from_dict(item))
                    except (KeyError, TypeError, ValueError) as e:
                        self.logger.warning(f"[TaskQueue] Skipping malformed queued task for chat {chat_id}: {e}")
                if tasks:
                    queues[chat_id] = tasks
        with self._lock:
            self._queues = queues
        total = self.get_total_count()
        if total > 0:
            self.logger.info(f"[TaskQueue] Loaded {total} queued task(s) from disk")

    def enqueue(self, request: TaskRequest) -> Optional[QueuedTask]:
        """
        Append a request to its chat's queue.

        Returns:
            The queued task, or None if the chat's queue is full
        """
        with self._lock:
            chat_queue = self._queues.get(request.chat_id, [])
            if len(chat_queue) >= self.max_per_chat:
                self.logger.info(
                    f"[TaskQueue] Queue full for chat {request.chat_id} (max {self.max_per_chat})"
                )
                return None
            queued = QueuedTask(id=_new_queue_id(), request=request)
            chat_queue.append(queued)
            self._queues[request.chat_id] = chat_queue
            self._save()
            position = len(chat_queue)
        self.logger.info(f"[TaskQueue] Task {queued.id} queued for chat {request.chat_id} (position {position})")
        return queued

    def dequeue(self, chat_id: int) -> Optional[QueuedTask]:
        """Pop the oldest task for a chat, or None if there is none."""
        with self._lock:
            chat_queue = self._queues.get(chat_id)
            if not chat_queue:
                return None
            task = chat_queue.pop(0)
            if not chat_queue:
                del self._queues[chat_id]
            self._save()
            remaining = len(chat_queue)
        self.logger.info(f"[TaskQueue] Task {task.id} dequeued for chat {chat_id} ({remaining} remaining)")
        return task

    def peek(self, chat_id: int) -> List[QueuedTask]:
        """Snapshot of a chat's queue, oldest first."""
        with self._lock:
            return list(self._queues.get(chat_id, []))

    def get_queue_length(self, chat_id: int) -> int:
        with self._lock:
            return len(self._queues.get(chat_id, []))

    def cancel(self, task_id: str) -> Optional[QueuedTask]:
        """Remove a queued task by id from whichever chat holds it."""
        with self._lock:
            for chat_id, chat_queue in self._queues.items():
                for index, task in enumerate(chat_queue):
                    if task.id == task_id:
                        removed = chat_queue.pop(index)
                        if not chat_queue:
                            del self._queues[chat_id]
                        self._save()
                        self.logger.info(f"[TaskQueue] Queued task {task_id} cancelled (chat {chat_id})")
                        return removed
        return None

    def cancel_by_position(self, chat_id: int, position: int) -> Optional[QueuedTask]:
        """Remove the task at a 1-based position in a chat's queue."""
        with self._lock:
            chat_queue = self._queues.get(chat_id)
            if not chat_queue or position < 1 or position > len(chat_queue):
                return None
            removed = chat_queue.pop(position - 1)
            if not chat_queue:
                del self._queues[chat_id]
            self._save()
        self.logger.info(f"[TaskQueue] Queued task {removed.id} cancelled by position {position} (chat {chat_id})")
        return removed

    def clear_chat(self, chat_id: int) -> int:
        """Drop every queued task for a chat. Returns how many were removed."""
        with self._lock:
            chat_queue = self._queues.pop(chat_id, None)
            if not chat_queue:
                return 0
            self._save()
        self.logger.info(f"[TaskQueue] Cleared {len(chat_queue)} queued task(s) for chat {chat_id}")
        return len(chat_queue)

    def get_total_count(self) -> int:
        with self._lock:
            return sum(len(q) for q in self._queues.values())

    def get_chats_with_queued(self) -> List[int]:
        with self._lock:
            return list(self._queues.keys())

    def has_queued(self) -> bool:
        with self._lock:
            return bool(self._queues)

    def get_stats(self) -> QueueStats:
        with self._lock:
            by_chat = {chat_id: len(q) for chat_id, q in self._queues.items()}
        return QueueStats(total=sum(by_chat.values()), chats=len(by_chat), by_chat=by_chat)

    def _save(self) -> None:
        data = {
            str(chat_id): [task.to_dict() for task in tasks]
            for chat_id, tasks in self._queues.items()
        }
        self._store.save(data)
