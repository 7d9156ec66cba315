"""Shared fixtures: a scripted agent client, temporary state and fast settings."""

import asyncio
import json
from dataclasses import dataclass, field
from typing import List, Optional

import pytest

from agentrelay.agents.registry import AgentRegistry
from agentrelay.core.exceptions import AgentCancelledError
from agentrelay.core.logger import AgentLogger
from agentrelay.llm.client import AgentClient, InvocationRequest, InvocationResult
from agentrelay.models import ExecutorSettings, StallThresholds
from agentrelay.state.active_tasks import ActiveTaskTracker


@dataclass
class Step:
    """What the fake agent does on one invocation attempt."""
    chunks: List[str] = field(default_factory=list)
    result: str = "All done."
    session_id: str = "sess-1"
    cost_usd: float = 0.01
    is_error: bool = False
    error: Optional[Exception] = None
    hang: bool = False
    chunk_interval: float = 0.0
    gate: Optional[asyncio.Event] = None


class FakeAgentClient(AgentClient):
    """Agent backend that replays scripted steps instead of spawning a process."""

    def __init__(self, steps: Optional[List[Step]] = None):
        super().__init__()
        self.steps = list(steps or [])
        self.requests: List[InvocationRequest] = []

    def script(self, *steps: Step) -> "FakeAgentClient":
        self.steps.extend(steps)
        return self

    async def _sleep_or_abort(self, request: InvocationRequest, seconds: float) -> None:
        if request.abort_event is None:
            await asyncio.sleep(seconds)
            return
        try:
            await asyncio.wait_for(request.abort_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        raise AgentCancelledError("Cancelled")

    async def _invoke_once(self, request: InvocationRequest) -> InvocationResult:
        self.requests.append(request)
        step = self.steps.pop(0) if self.steps else Step()

        if request.abort_event is not None and request.abort_event.is_set():
            raise AgentCancelledError("Cancelled")

        for chunk in step.chunks:
            if step.chunk_interval:
                await self._sleep_or_abort(request, step.chunk_interval)
            if request.on_activity is not None:
                request.on_activity()
            if request.on_output is not None:
                request.on_output(chunk)

        if step.gate is not None:
            await step.gate.wait()
        if step.hang:
            await request.abort_event.wait()
            raise AgentCancelledError("Cancelled")
        if step.error is not None:
            raise step.error

        record = {
            "type": "result",
            "subtype": "success",
            "session_id": step.session_id,
            "total_cost_usd": step.cost_usd,
            "duration_ms": 10,
            "is_error": step.is_error,
            "num_turns": 1,
            "result": step.result,
        }
        if request.on_records is not None:
            request.on_records([record])
        return InvocationResult(
            result=step.result,
            session_id=step.session_id,
            cost_usd=step.cost_usd,
            duration_ms=10,
            is_error=step.is_error,
            num_turns=1,
            records=[record],
        )


def tool_use_line(name: str, **tool_input) -> str:
    """One NDJSON assistant record containing a single tool call."""
    return json.dumps({
        "type": "assistant",
        "message": {"content": [{"type": "tool_use", "name": name, "input": tool_input}]},
    }) + "\n"


@pytest.fixture
def state_dir(tmp_path):
    path = tmp_path / "state"
    path.mkdir()
    return str(path)


@pytest.fixture
def logger():
    return AgentLogger(log_dir=None)


@pytest.fixture
def fake_client():
    return FakeAgentClient()


@pytest.fixture
def registry():
    return AgentRegistry()


@pytest.fixture
def tracker(state_dir):
    tracker = ActiveTaskTracker(state_dir)
    tracker.load()
    return tracker


@pytest.fixture
def fast_settings():
    """Settings with sub-second timers; stall detection effectively off."""
    return ExecutorSettings(
        timeouts=StallThresholds(trivial=5, moderate=5, complex=5),
        plan_timeout_cap=5,
        stall_warning=StallThresholds(trivial=60, moderate=60, complex=60),
        stall_kill=StallThresholds(trivial=120, moderate=120, complex=120),
        stall_check_interval=0.01,
        heartbeat_interval=60,
        status_update_interval=0,
        transient_retry_delay=0.01,
    )
