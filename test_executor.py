"""Tests for the Executor using the scripted fake agent client."""

import asyncio
import json

import pytest

from agentrelay.agents.executor import Executor
from agentrelay.agents.prompts import PLAN_TOOLS
from agentrelay.core.exceptions import (
    AgentCancelledError,
    AgentInvocationError,
    AgentStalledError,
    AgentTimeoutError,
)
from agentrelay.models import (
    AgentPhase,
    Complexity,
    ExecutionPhase,
    ExecutorEventKind,
    ExecutorResult,
    StallThresholds,
    StreamEventType,
    TaskRequest,
)
from conftest import Step, tool_use_line


def _request(task: str = "Add a health check", chat_id: int = 42) -> TaskRequest:
    return TaskRequest(
        chat_id=chat_id,
        task=task,
        context="Service is a Flask app",
        complexity=Complexity.MODERATE,
        raw_message=f"please: {task}",
        cwd="/srv/app",
    )


def _tiers(value: float) -> StallThresholds:
    return StallThresholds(trivial=value, moderate=value, complex=value)


def test_execute_success_tracks_and_releases(fake_client, registry, tracker, fast_settings):
    """The tracker holds the task (with its session id) only while it runs."""
    fake_client.script(Step(result="Added /health. NOTE: Service restart needed.", session_id="sess-42"))
    executor = Executor(fake_client, registry, settings=fast_settings, task_tracker=tracker)
    seen_during_run = []

    def on_invocation(records):
        seen_during_run.extend(tracker.get_all())

    result = asyncio.run(executor.execute(_request(), on_invocation=on_invocation))

    assert result.success
    assert result.needs_restart
    assert result.cost_usd == pytest.approx(0.01)
    assert [r.session_id for r in seen_during_run] == ["sess-42"]
    assert tracker.get_all() == [], "Tracker must be empty after completion"

    history = registry.get_completed_history()
    assert len(history) == 1
    assert history[0].phase == AgentPhase.COMPLETED
    assert history[0].role == "executor"

    request = fake_client.requests[0]
    assert request.allowed_tools is None
    assert request.cwd == "/srv/app"
    assert "## Task\nAdd a health check" in request.prompt
    assert "## Context\nService is a Flask app" in request.prompt
    assert "## Working Directory\n/srv/app" in request.prompt


def test_transient_error_retried_exactly_once(fake_client, registry, fast_settings):
    fake_client.script(
        Step(error=AgentInvocationError("HTTP 429 Too Many Requests")),
        Step(result="ok after retry"),
    )
    executor = Executor(fake_client, registry, settings=fast_settings)
    statuses = []

    result = asyncio.run(executor.execute(_request(), on_status_update=statuses.append))

    assert result.success
    assert result.result == "ok after retry"
    assert len(fake_client.requests) == 2
    retry_notices = [s for s in statuses if s.message == "Hit transient error, retrying..."]
    assert len(retry_notices) == 1
    assert retry_notices[0].important


def test_transient_error_twice_fails(fake_client, registry, fast_settings):
    fake_client.script(
        Step(error=AgentInvocationError("upstream overloaded")),
        Step(error=AgentInvocationError("upstream overloaded")),
        Step(result="never reached"),
    )
    executor = Executor(fake_client, registry, settings=fast_settings)

    result = asyncio.run(executor.execute(_request()))

    assert not result.success
    assert result.result == "Executor error: upstream overloaded"
    assert len(fake_client.requests) == 2


def test_non_transient_error_not_retried(fake_client, registry, tracker, fast_settings):
    fake_client.script(Step(error=AgentInvocationError("invalid task")), Step(result="never reached"))
    executor = Executor(fake_client, registry, settings=fast_settings, task_tracker=tracker)

    result = asyncio.run(executor.execute(_request()))

    assert isinstance(result, ExecutorResult)
    assert not result.success
    assert result.result == "Executor error: invalid task"
    assert len(fake_client.requests) == 1
    assert tracker.get_all() == []
    assert registry.get_completed_history()[0].phase == AgentPhase.FAILED


def test_hard_timeout_is_reported_and_not_retried(fake_client, registry, tracker, fast_settings):
    settings = fast_settings.with_overrides(timeouts=_tiers(0.05))
    fake_client.script(Step(hang=True), Step(result="never reached"))
    executor = Executor(fake_client, registry, settings=settings, task_tracker=tracker)
    statuses = []

    result = asyncio.run(executor.execute(_request(), on_status_update=statuses.append))

    assert not result.success
    assert result.result.startswith("Executor timed out after")
    assert len(fake_client.requests) == 1
    assert any("timed out" in s.message and s.important for s in statuses)
    assert tracker.get_all() == []


def test_stall_kill_aborts_with_distinct_message(fake_client, registry, fast_settings):
    settings = fast_settings.with_overrides(
        stall_warning=_tiers(0.02),
        stall_kill=_tiers(0.04),
        stall_grace_multiplier=1.5,
    )
    fake_client.script(Step(hang=True))
    executor = Executor(fake_client, registry, settings=settings)
    statuses = []

    result = asyncio.run(executor.execute(_request(), on_status_update=statuses.append))

    assert not result.success
    assert result.result.startswith("Executor stalled")
    messages = [s.message for s in statuses]
    assert any("may be stalled" in m for m in messages)
    assert any("grace period" in m for m in messages)
    assert any("killed after" in m for m in messages)
    assert len(fake_client.requests) == 1


def test_external_cancellation(fake_client, registry, fast_settings):
    fake_client.script(Step(hang=True))
    executor = Executor(fake_client, registry, settings=fast_settings)

    async def run():
        token = asyncio.Event()
        asyncio.get_running_loop().call_later(0.05, token.set)
        return await executor.execute(_request(), abort_event=token)

    result = asyncio.run(run())

    assert not result.success
    assert result.result == "Executor was cancelled"


def test_already_cancelled_token_never_invokes(fake_client, registry, fast_settings):
    executor = Executor(fake_client, registry, settings=fast_settings)

    async def run():
        token = asyncio.Event()
        token.set()
        return await executor.execute(_request(), abort_event=token)

    result = asyncio.run(run())
    assert result.result == "Executor was cancelled"


def test_tool_activity_becomes_status_and_stream_events(fake_client, registry, fast_settings):
    fake_client.script(Step(chunks=[
        tool_use_line("Read", file_path="/srv/app/app.py"),
        tool_use_line("Bash", command="pytest -q"),
    ]))
    executor = Executor(fake_client, registry, settings=fast_settings)
    statuses, events = [], []

    asyncio.run(executor.execute(
        _request(),
        on_status_update=statuses.append,
        on_stream_event=events.append,
    ))

    assert [e.type for e in events] == [StreamEventType.FILE_READ, StreamEventType.COMMAND]
    assert "Reading /srv/app/app.py" in [s.message for s in statuses]
    assert len(registry.get_completed_history()[0].recent_output) == 2


def test_session_expiry_reissues_without_session(fake_client, registry, fast_settings):
    fake_client.script(
        Step(error=AgentInvocationError("No conversation found with session ID old-sess")),
        Step(result="fresh start", session_id="sess-new"),
    )
    executor = Executor(fake_client, registry, settings=fast_settings)

    result = asyncio.run(executor.execute(_request(), session_id="old-sess"))

    assert result.success
    assert [r.session_id for r in fake_client.requests] == ["old-sess", None]


def test_plan_is_read_only_and_returns_plan(fake_client, registry, fast_settings):
    fake_client.script(Step(result="### What needs to change\nAdd /health", cost_usd=0.02))
    executor = Executor(fake_client, registry, settings=fast_settings)

    result = asyncio.run(executor.plan(_request()))

    assert result.plan_text.startswith("### What needs to change")
    assert result.cost_usd == pytest.approx(0.02)
    request = fake_client.requests[0]
    assert request.allowed_tools == PLAN_TOOLS
    assert "PLANNING ONLY" in request.system_prompt
    entry = registry.get_completed_history()[0]
    assert entry.description == "[PLAN] Add a health check"
    assert entry.phase == AgentPhase.COMPLETED


def test_plan_revision_prompt(fake_client, registry, fast_settings):
    executor = Executor(fake_client, registry, settings=fast_settings)

    asyncio.run(executor.plan(_request(), revision_feedback="Skip the database", previous_plan="Old plan"))

    system_prompt = fake_client.requests[0].system_prompt
    assert "### Previous Plan\nOld plan" in system_prompt
    assert "### User Feedback\nSkip the database" in system_prompt


def test_plan_errors_are_raised_not_retried(fake_client, registry, fast_settings):
    fake_client.script(Step(error=AgentInvocationError("HTTP 429")), Step(result="never reached"))
    executor = Executor(fake_client, registry, settings=fast_settings)

    with pytest.raises(AgentInvocationError):
        asyncio.run(executor.plan(_request()))
    assert len(fake_client.requests) == 1
    assert registry.get_completed_history()[0].phase == AgentPhase.FAILED


def test_plan_timeout_and_stall_raise(fake_client, registry, fast_settings):
    executor = Executor(fake_client, registry, settings=fast_settings.with_overrides(timeouts=_tiers(0.1)))
    fake_client.script(Step(hang=True))
    with pytest.raises(AgentTimeoutError):
        asyncio.run(executor.plan(_request()))

    stalling = Executor(fake_client, registry, settings=fast_settings.with_overrides(
        stall_warning=_tiers(0.02),
        stall_kill=_tiers(0.04),
    ))
    fake_client.script(Step(hang=True))
    with pytest.raises(AgentStalledError):
        asyncio.run(stalling.plan(_request()))


def test_plan_cancellation_raises(fake_client, registry, fast_settings):
    fake_client.script(Step(hang=True))
    executor = Executor(fake_client, registry, settings=fast_settings)

    async def run():
        token = asyncio.Event()
        asyncio.get_running_loop().call_later(0.05, token.set)
        await executor.plan(_request(), abort_event=token)

    with pytest.raises(AgentCancelledError):
        asyncio.run(run())


def test_plan_timeout_is_half_execute_budget_capped(fast_settings):
    settings = fast_settings.with_overrides(
        timeouts=StallThresholds(trivial=300, moderate=900, complex=2700),
        plan_timeout_cap=600,
    )
    assert settings.plan_timeout_for(Complexity.TRIVIAL) == 150
    assert settings.plan_timeout_for(Complexity.MODERATE) == 450
    assert settings.plan_timeout_for(Complexity.COMPLEX) == 600
    assert settings.plan_timeout_for("unknown") == 450


def test_stream_yields_events_until_result(fake_client, registry, fast_settings):
    fake_client.script(Step(chunks=[tool_use_line("Edit", file_path="a.py")], result="done"))
    executor = Executor(fake_client, registry, settings=fast_settings)

    async def collect():
        return [event async for event in executor.stream(ExecutionPhase.EXECUTE, _request())]

    events = asyncio.run(collect())

    kinds = [e.kind for e in events]
    assert kinds[-1] == ExecutorEventKind.RESULT
    assert ExecutorEventKind.STREAM in kinds
    assert ExecutorEventKind.INVOCATION in kinds
    assert events[-1].payload.result == "done"


def test_stream_plan_failure_ends_with_error(fake_client, registry, fast_settings):
    fake_client.script(Step(error=AgentInvocationError("invalid task")))
    executor = Executor(fake_client, registry, settings=fast_settings)

    async def collect():
        return [event async for event in executor.stream(ExecutionPhase.PLAN, _request())]

    events = asyncio.run(collect())

    assert events[-1].kind == ExecutorEventKind.ERROR
    assert isinstance(events[-1].payload, AgentInvocationError)


def test_session_id_recorded_while_running(fake_client, registry, tracker, fast_settings):
    """The init record's session id reaches the tracker before the run ends."""
    executor = Executor(fake_client, registry, settings=fast_settings, task_tracker=tracker)
    init_line = json.dumps({"type": "system", "subtype": "init", "session_id": "sess-early"}) + "\n"
    mid_run = []

    async def run():
        gate = asyncio.Event()
        fake_client.script(Step(chunks=[init_line], session_id="sess-early", gate=gate))
        job = asyncio.create_task(executor.execute(_request()))
        await asyncio.sleep(0.05)
        mid_run.extend(r.session_id for r in tracker.get_all())
        gate.set()
        return await job

    result = asyncio.run(run())

    assert result.success
    assert mid_run == ["sess-early"], "Session id must be stored as soon as the agent reports it"
    assert tracker.get_all() == []


def test_heartbeat_while_agent_is_quiet(fake_client, registry, fast_settings):
    settings = fast_settings.with_overrides(heartbeat_interval=0.02)
    executor = Executor(fake_client, registry, settings=settings)
    statuses = []

    async def run():
        gate = asyncio.Event()
        asyncio.get_running_loop().call_later(0.1, gate.set)
        fake_client.script(Step(gate=gate))
        return await executor.execute(_request(), on_status_update=statuses.append)

    result = asyncio.run(run())

    assert result.success
    heartbeats = [s.message for s in statuses if s.message.startswith("Still working")]
    assert len(heartbeats) >= 2
    assert heartbeats[0].endswith("elapsed)")


def test_throttled_status_keeps_first_and_latest(fake_client, registry, fast_settings):
    """Messages inside the interval coalesce; the latest one is flushed later."""
    settings = fast_settings.with_overrides(status_update_interval=0.05)
    executor = Executor(fake_client, registry, settings=settings)
    statuses = []
    burst = (
        tool_use_line("Read", file_path="a")
        + tool_use_line("Read", file_path="b")
        + tool_use_line("Read", file_path="c")
    )

    async def run():
        gate = asyncio.Event()
        asyncio.get_running_loop().call_later(0.2, gate.set)
        fake_client.script(Step(chunks=[burst], gate=gate))
        return await executor.execute(_request(), on_status_update=statuses.append)

    result = asyncio.run(run())

    assert result.success
    reads = [s.message for s in statuses if s.message.startswith("Reading")]
    assert reads == ["Reading a", "Reading c"]


def test_activity_after_stall_warning_recovers(fake_client, registry, fast_settings):
    settings = fast_settings.with_overrides(stall_warning=_tiers(0.03), stall_kill=_tiers(10))
    fake_client.script(Step(chunks=[tool_use_line("Bash", command="make")], chunk_interval=0.15))
    executor = Executor(fake_client, registry, settings=settings)
    statuses = []

    result = asyncio.run(executor.execute(_request(), on_status_update=statuses.append))

    assert result.success
    messages = [s.message for s in statuses]
    warning = next(i for i, m in enumerate(messages) if "may be stalled" in m)
    recovered = messages.index("Executor is active again")
    assert warning < recovered
    assert not any("killed after" in m for m in messages)
