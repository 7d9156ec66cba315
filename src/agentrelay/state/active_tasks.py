"""Crash-detection record of in-flight tasks."""

import secrets
import threading
import time
from typing import List, Optional

from agentrelay.core.logger import AgentLogger, default_logger
from agentrelay.models import ActiveTaskRecord, Complexity
from .json_store import JsonDocumentStore

ACTIVE_TASKS_FILENAME = "active_tasks.json"


def _new_task_id() -> str:
    return f"task-{int(time.time() * 1000)}-{secrets.token_hex(3)}"


class ActiveTaskTracker:
    """Durable list of tasks whose invocation has started but not finished.

    ``track`` is written to disk before the agent is invoked and ``complete``
    removes the record on both success and failure. A record still present
    at load time therefore means the process died mid-task, and its
    ``session_id`` (when set) is the handle for resuming.
    """

    def __init__(self, state_dir: str, logger: Optional[AgentLogger] = None):
        self.logger = logger or default_logger()
        self._store = JsonDocumentStore(state_dir, ACTIVE_TASKS_FILENAME, logger=self.logger)
        self._tasks: List[ActiveTaskRecord] = []
        self._lock = threading.RLock()

    def load(self) -> None:
        """Load active tasks from disk. Call on startup."""
        data = self._store.load(list)
        tasks = []
        if isinstance(data, list):
            for item in data:
                try:
                    tasks.append(ActiveTaskRecord.from_dict(item))
                except (KeyError, TypeError, ValueError) as e:
                    self.logger.warning(f"[ActiveTaskTracker] Skipping malformed record: {e}")
        with self._lock:
            self._tasks = tasks
        if tasks:
            self.logger.info(
                f"[ActiveTaskTracker] Loaded {len(tasks)} active task(s) from disk (possible crash recovery)"
            )

    def track(
        self,
        chat_id: int,
        task: str,
        complexity: Complexity = Complexity.MODERATE,
        cwd: str = ".",
        session_id: str = "",
    ) -> str:
        """
        Record a task as in flight. Call BEFORE the agent is invoked.

        Returns:
            The record id
        """
        record = ActiveTaskRecord(
            id=_new_task_id(),
            chat_id=chat_id,
            task=task,
            complexity=complexity,
            cwd=cwd,
            session_id=session_id,
        )
        with self._lock:
            self._tasks.append(record)
            self._save()
        self.logger.debug(f"[ActiveTaskTracker] Tracking {record.id} for chat {chat_id}")
        return record.id

    def update_session_id(self, task_id: str, session_id: str) -> bool:
        """Attach the agent's session handle to a record."""
        if not session_id:
            return False
        with self._lock:
            for record in self._tasks:
                if record.id == task_id:
                    if record.session_id == session_id:
                        return True
                    record.session_id = session_id
                    self._save()
                    self.logger.debug(f"[ActiveTaskTracker] {task_id} session id set to {session_id}")
                    return True
        return False

    def complete(self, task_id: str) -> None:
        """Remove a record after the invocation finished (success or failure)."""
        if self._remove(task_id):
            self.logger.debug(f"[ActiveTaskTracker] {task_id} completed")

    def remove(self, task_id: str) -> bool:
        """Dismiss a record without it having completed (e.g. user acknowledged the crash)."""
        return self._remove(task_id)

    def clear_all(self) -> None:
        with self._lock:
            self._tasks = []
            self._save()

    def get(self, task_id: str) -> Optional[ActiveTaskRecord]:
        with self._lock:
            for record in self._tasks:
                if record.id == task_id:
                    return ActiveTaskRecord.from_dict(record.to_dict())
        return None

    def get_all(self) -> List[ActiveTaskRecord]:
        with self._lock:
            return [ActiveTaskRecord.from_dict(r.to_dict()) for r in self._tasks]

    def has_interrupted(self) -> bool:
        with self._lock:
            return bool(self._tasks)

    def get_for_chat(self, chat_id: int) -> List[ActiveTaskRecord]:
        return [r for r in self.get_all() if r.chat_id == chat_id]

    def _remove(self, task_id: str) -> bool:
        with self._lock:
            before = len(self._tasks)
            self._tasks = [r for r in self._tasks if r.id != task_id]
            if len(self._tasks) == before:
                return False
            self._save()
            return True

    def _save(self) -> None:
        self._store.save([r.to_dict() for r in self._tasks])
