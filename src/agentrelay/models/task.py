"""Task-related data models."""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Dict, Any, Optional


class Complexity(str, Enum):
    """Coarse size of the requested work; scales timeouts and stall thresholds."""
    TRIVIAL = "trivial"
    MODERATE = "moderate"
    COMPLEX = "complex"

    @classmethod
    def from_string(cls, value: Optional[str]) -> "Complexity":
        """Create from string, defaulting to MODERATE if empty or invalid."""
        if isinstance(value, cls):
            return value
        try:
            return cls((value or "").lower())
        except ValueError:
            return cls.MODERATE


@dataclass(frozen=True)
class TaskRequest:
    """A unit of work requested by a chat. Immutable once created."""
    chat_id: int
    task: str
    context: str = ""
    complexity: Complexity = Complexity.MODERATE
    raw_message: str = ""
    memory_context: Optional[str] = None
    cwd: str = "."

    def __post_init__(self):
        if not isinstance(self.complexity, Complexity):
            object.__setattr__(self, "complexity", Complexity.from_string(self.complexity))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = asdict(self)
        data["complexity"] = self.complexity.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TaskRequest":
        """Create TaskRequest from dictionary."""
        return cls(
            chat_id=int(data["chat_id"]),
            task=data.get("task", ""),
            context=data.get("context", ""),
            complexity=Complexity.from_string(data.get("complexity")),
            raw_message=data.get("raw_message", ""),
            memory_context=data.get("memory_context"),
            cwd=data.get("cwd", "."),
        )


@dataclass
class QueuedTask:
    """A TaskRequest waiting in a chat's queue."""
    id: str
    request: TaskRequest
    queued_at: Optional[str] = None

    def __post_init__(self):
        if self.queued_at is None:
            self.queued_at = datetime.now().isoformat()

    @property
    def chat_id(self) -> int:
        return self.request.chat_id

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "queued_at": self.queued_at,
            **self.request.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QueuedTask":
        """Create QueuedTask from dictionary."""
        return cls(
            id=data["id"],
            request=TaskRequest.from_dict(data),
            queued_at=data.get("queued_at"),
        )


@dataclass
class ActiveTaskRecord:
    """Durable marker for a task in flight. Surviving a restart means a crash."""
    id: str
    chat_id: int
    task: str
    complexity: Complexity = Complexity.MODERATE
    cwd: str = "."
    session_id: str = ""
    started_at: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.complexity, Complexity):
            self.complexity = Complexity.from_string(self.complexity)
        if self.started_at is None:
            self.started_at = datetime.now().isoformat()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "chat_id": self.chat_id,
            "session_id": self.session_id,
            "task": self.task,
            "complexity": self.complexity.value,
            "cwd": self.cwd,
            "started_at": self.started_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ActiveTaskRecord":
        """Create ActiveTaskRecord from dictionary."""
        return cls(
            id=data["id"],
            chat_id=int(data["chat_id"]),
            task=data.get("task", ""),
            complexity=Complexity.from_string(data.get("complexity")),
            cwd=data.get("cwd", "."),
            session_id=data.get("session_id", "") or "",
            started_at=data.get("started_at"),
        )


@dataclass
class PendingPlan:
    """A plan awaiting approval. At most one per chat."""
    chat_id: int
    task: str
    plan_text: str
    context: str = ""
    complexity: Complexity = Complexity.MODERATE
    project_dir: str = "."
    raw_message: str = ""
    memory_context: Optional[str] = None
    created_at: Optional[str] = None
    revision_count: int = 0

    def __post_init__(self):
        if not isinstance(self.complexity, Complexity):
            self.complexity = Complexity.from_string(self.complexity)
        if self.created_at is None:
            self.created_at = datetime.now().isoformat()

    @classmethod
    def from_request(cls, request: TaskRequest, plan_text: str, revision_count: int = 0) -> "PendingPlan":
        """Build the plan record for a finished plan-phase run."""
        return cls(
            chat_id=request.chat_id,
            task=request.task,
            plan_text=plan_text,
            context=request.context,
            complexity=request.complexity,
            project_dir=request.cwd,
            raw_message=request.raw_message,
            memory_context=request.memory_context,
            revision_count=revision_count,
        )

    def to_request(self, context: Optional[str] = None) -> TaskRequest:
        """Rebuild the TaskRequest this plan was made for, optionally with new context."""
        return TaskRequest(
            chat_id=self.chat_id,
            task=self.task,
            context=self.context if context is None else context,
            complexity=self.complexity,
            raw_message=self.raw_message,
            memory_context=self.memory_context,
            cwd=self.project_dir,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = asdict(self)
        data["complexity"] = self.complexity.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PendingPlan":
        """Create PendingPlan from dictionary."""
        return cls(
            chat_id=int(data["chat_id"]),
            task=data.get("task", ""),
            plan_text=data.get("plan_text", ""),
            context=data.get("context", ""),
            complexity=Complexity.from_string(data.get("complexity")),
            project_dir=data.get("project_dir", "."),
            raw_message=data.get("raw_message", ""),
            memory_context=data.get("memory_context"),
            created_at=data.get("created_at"),
            revision_count=int(data.get("revision_count", 0)),
        )


@dataclass
class QueueStats:
    """Queue totals across all chats."""
    total: int = 0
    chats: int = 0
    by_chat: Dict[int, int] = field(default_factory=dict)
