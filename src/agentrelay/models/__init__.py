"""Data models for the agentrelay system."""

from .task import (
    Complexity,
    TaskRequest,
    QueuedTask,
    ActiveTaskRecord,
    PendingPlan,
    QueueStats,
)
from .agent import (
    AgentPhase,
    ExecutionPhase,
    AgentEntry,
    RegistryEventType,
    RegistryEvent,
    RegistrySnapshot,
    StreamEventType,
    StreamEvent,
    StatusUpdate,
    ExecutorResult,
    PlanResult,
    ExecutorEventKind,
    ExecutorEvent,
)
from .settings import (
    StallThresholds,
    ExecutorSettings,
    DEFAULT_TIMEOUTS,
    DEFAULT_STALL_WARNING,
    DEFAULT_STALL_KILL,
    DEFAULT_STALL_GRACE_MULTIPLIER,
)

__all__ = [
    # Task models
    "Complexity",
    "TaskRequest",
    "QueuedTask",
    "ActiveTaskRecord",
    "PendingPlan",
    "QueueStats",
    # Agent models
    "AgentPhase",
    "ExecutionPhase",
    "AgentEntry",
    "RegistryEventType",
    "RegistryEvent",
    "RegistrySnapshot",
    "StreamEventType",
    "StreamEvent",
    "StatusUpdate",
    "ExecutorResult",
    "PlanResult",
    "ExecutorEventKind",
    "ExecutorEvent",
    # Settings
    "StallThresholds",
    "ExecutorSettings",
    "DEFAULT_TIMEOUTS",
    "DEFAULT_STALL_WARNING",
    "DEFAULT_STALL_KILL",
    "DEFAULT_STALL_GRACE_MULTIPLIER",
]
