"""Agent invocation data models."""

import copy
import time
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Dict, Any, List, Optional


class AgentPhase(str, Enum):
    """Lifecycle phase of an invocation. COMPLETED and FAILED are terminal."""
    PLANNING = "planning"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (AgentPhase.COMPLETED, AgentPhase.FAILED)


class ExecutionPhase(str, Enum):
    """Which Executor entry point an invocation belongs to."""
    PLAN = "plan"
    EXECUTE = "execute"


@dataclass
class AgentEntry:
    """Registry view of one invocation."""
    id: str
    role: str
    chat_id: int
    description: str
    phase: AgentPhase
    started_at: float
    last_activity_at: float
    completed_at: Optional[float] = None
    success: Optional[bool] = None
    cost_usd: Optional[float] = None
    progress: Optional[str] = None
    recent_output: List[str] = field(default_factory=list)

    def copy(self) -> "AgentEntry":
        """Deep copy so observers never share state with the registry."""
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = asdict(self)
        data["phase"] = self.phase.value
        return data


class RegistryEventType(str, Enum):
    """Change notifications published by AgentRegistry."""
    REGISTERED = "registered"
    UPDATED = "updated"
    OUTPUT = "output"
    COMPLETED = "completed"
    FAILED = "failed"
    REMOVED = "removed"


@dataclass
class RegistryEvent:
    type: RegistryEventType
    agent: AgentEntry
    timestamp: float


@dataclass
class RegistrySnapshot:
    agents: List[AgentEntry]
    recently_completed: List[AgentEntry]
    timestamp: float


class StreamEventType(str, Enum):
    """Typed activity parsed from the agent's output stream."""
    FILE_READ = "file_read"
    FILE_EDIT = "file_edit"
    FILE_WRITE = "file_write"
    COMMAND = "command"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    STATUS_TEXT = "status_text"


@dataclass
class StreamEvent:
    type: StreamEventType
    detail: str
    timestamp: float = field(default_factory=time.time)
    extra: Optional[Dict[str, Any]] = None


@dataclass
class StatusUpdate:
    """Free-form progress message for the caller."""
    message: str
    important: bool = False
    type: str = "status"


@dataclass
class ExecutorResult:
    """Terminal value of an execute-phase run."""
    success: bool
    result: str
    cost_usd: float = 0.0
    duration_ms: int = 0
    needs_restart: bool = False


@dataclass
class PlanResult:
    """Terminal value of a plan-phase run."""
    plan_text: str
    cost_usd: float = 0.0
    duration_ms: int = 0


class ExecutorEventKind(str, Enum):
    STATUS = "status"
    STREAM = "stream"
    INVOCATION = "invocation"
    RESULT = "result"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (ExecutorEventKind.RESULT, ExecutorEventKind.ERROR)


@dataclass
class ExecutorEvent:
    """One item on an invocation's outbound event channel.

    ``payload`` is a StatusUpdate, StreamEvent, raw record list,
    ExecutorResult/PlanResult or the raised exception, depending on ``kind``.
    """
    kind: ExecutorEventKind
    payload: Any
