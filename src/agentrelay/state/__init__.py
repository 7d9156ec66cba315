"""Durable state for crash recovery."""

from .json_store import JsonDocumentStore
from .task_queue import TaskQueue, DEFAULT_MAX_QUEUE_PER_CHAT
from .active_tasks import ActiveTaskTracker
from .plan_store import PlanStore
from .agent_config import AgentConfigStore

__all__ = [
    "JsonDocumentStore",
    "TaskQueue",
    "DEFAULT_MAX_QUEUE_PER_CHAT",
    "ActiveTaskTracker",
    "PlanStore",
    "AgentConfigStore",
]
