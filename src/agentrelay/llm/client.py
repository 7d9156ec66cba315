"""Abstract contract for invoking the external coding agent."""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional

from agentrelay.core.exceptions import AgentCancelledError
from agentrelay.core.logger import AgentLogger, default_logger
from .classifier import is_session_error


@dataclass
class InvocationRequest:
    """Everything one agent run needs.

    ``allowed_tools`` of None leaves the agent's default tool set; an empty
    string disables every tool. ``on_output`` receives stdout chunks
    only; stderr chunks go to ``on_stderr``.
    """
    prompt: str
    cwd: str = "."
    system_prompt: Optional[str] = None
    model: Optional[str] = None
    allowed_tools: Optional[str] = None
    session_id: Optional[str] = None
    abort_event: Optional[asyncio.Event] = None
    on_activity: Optional[Callable[[], None]] = None
    on_output: Optional[Callable[[str], None]] = None
    on_stderr: Optional[Callable[[str], None]] = None
    on_records: Optional[Callable[[List[Dict[str, Any]]], None]] = None
    label: str = "agent"


@dataclass
class InvocationResult:
    result: str
    session_id: str = ""
    cost_usd: float = 0.0
    duration_ms: Optional[int] = None
    is_error: bool = False
    num_turns: Optional[int] = None
    stop_reason: Optional[str] = None
    records: List[Dict[str, Any]] = field(default_factory=list)


class AgentClient(ABC):
    """Abstract base class for agent backends.

    This interface allows switching between backends (the Claude CLI, a
    scripted fake in tests, ...). ``invoke`` owns the session-expiry policy;
    backends implement a single attempt in ``_invoke_once``.
    """

    def __init__(self, logger: Optional[AgentLogger] = None):
        self.logger = logger or default_logger()

    async def invoke(self, request: InvocationRequest) -> InvocationResult:
        """
        Run the agent once, reissuing without the session id if resuming failed.

        The reissue is at most one extra attempt and does not count against
        the caller's transient-error retry.

        Raises:
            AgentCancelledError: If the abort event fired
            AgentError: For any other failure
        """
        try:
            return await self._invoke_once(request)
        except AgentCancelledError:
            raise
        except Exception as e:
            if request.session_id and is_session_error(str(e)):
                self.logger.warning(
                    f"[AgentClient] Session {request.session_id} could not be resumed, retrying without it"
                )
                return await self._invoke_once(replace(request, session_id=None))
            raise

    @abstractmethod
    async def _invoke_once(self, request: InvocationRequest) -> InvocationResult:
        """
        Run one attempt of the agent.

        Implementations must call ``request.on_activity`` for every output
        chunk and ``on_output`` / ``on_stderr`` for stdout / stderr chunks,
        honour ``request.abort_event`` by terminating the run and raising
        AgentCancelledError, and pass the decoded output records to
        ``request.on_records`` before returning.
        """

    async def check_available(self) -> bool:
        """Whether the backend can be used at all."""
        return True
